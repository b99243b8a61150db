from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any, Iterable

from govscan.models import ClassificationLabel, Finding, Fingerprint, RateEstimate

logger = logging.getLogger("govscan.classifier")


def parse_label(value: ClassificationLabel | str) -> ClassificationLabel:
    if isinstance(value, ClassificationLabel):
        return value
    try:
        return ClassificationLabel(value.strip().lower().replace("-", "_"))
    except ValueError:
        allowed = ", ".join(label.value for label in ClassificationLabel)
        raise ValueError(f"Unknown classification label {value!r}; expected one of: {allowed}") from None


class Classifier:
    """Records human-supplied labels for sampled findings and estimates TP rates.

    Labels are keyed by finding fingerprint. Rates are recomputed from the
    current labels on every call.
    """

    def __init__(self) -> None:
        self._labels: dict[Fingerprint, ClassificationLabel] = {}

    def __len__(self) -> int:
        return len(self._labels)

    def record_label(self, finding: Finding | Fingerprint, label: ClassificationLabel | str) -> None:
        fingerprint = finding.fingerprint if isinstance(finding, Finding) else tuple(finding)
        new_label = parse_label(label)
        previous = self._labels.get(fingerprint, ClassificationLabel.UNCLASSIFIED)
        if new_label is ClassificationLabel.UNCLASSIFIED:
            self._labels.pop(fingerprint, None)
        else:
            self._labels[fingerprint] = new_label
        logger.info(
            "Label %s -> %s for %s %s:%d",
            previous.value,
            new_label.value,
            fingerprint[1],
            fingerprint[2],
            fingerprint[3],
            extra={
                "rule_id": fingerprint[1],
                "fingerprint": list(fingerprint),
                "label": new_label.value,
                "previous_label": previous.value,
            },
        )

    def label_for(self, finding: Finding | Fingerprint) -> ClassificationLabel:
        fingerprint = finding.fingerprint if isinstance(finding, Finding) else tuple(finding)
        return self._labels.get(fingerprint, ClassificationLabel.UNCLASSIFIED)

    def estimate_rate(self, rule_id: str) -> RateEstimate:
        true_positive = false_positive = informational = 0
        for fingerprint, label in self._labels.items():
            if fingerprint[1] != rule_id:
                continue
            if label is ClassificationLabel.TRUE_POSITIVE:
                true_positive += 1
            elif label is ClassificationLabel.FALSE_POSITIVE:
                false_positive += 1
            elif label is ClassificationLabel.INFORMATIONAL:
                informational += 1
        return RateEstimate(
            rule_id=rule_id,
            sample_size=true_positive + false_positive + informational,
            true_positive_count=true_positive,
            false_positive_count=false_positive,
            informational_count=informational,
        )

    def estimate_all(self, rule_ids: Iterable[str]) -> dict[str, RateEstimate]:
        return {rule_id: self.estimate_rate(rule_id) for rule_id in rule_ids}

    def load_labels(self, path: str | Path) -> int:
        """Merge labels from a label store file. Returns the number applied."""
        payload = json.loads(Path(path).read_text(encoding="utf-8"))
        if not isinstance(payload, dict):
            raise ValueError("Label store must be a JSON object.")
        entries = payload.get("labels")
        if not isinstance(entries, list):
            raise ValueError("Label store must contain a 'labels' array.")

        applied = 0
        for entry in entries:
            parsed = _parse_entry(entry)
            if parsed is None:
                continue
            fingerprint, label = parsed
            self.record_label(fingerprint, label)
            applied += 1
        return applied

    def save_labels(self, path: str | Path) -> None:
        entries = [
            {
                "repository_id": fingerprint[0],
                "rule_id": fingerprint[1],
                "file_path": fingerprint[2],
                "line_number": fingerprint[3],
                "column_offset": fingerprint[4],
                "label": label.value,
            }
            for fingerprint, label in sorted(self._labels.items())
        ]
        output_path = Path(path)
        output_path.parent.mkdir(parents=True, exist_ok=True)
        output_path.write_text(json.dumps({"labels": entries}, indent=2) + "\n", encoding="utf-8")


def _parse_entry(entry: Any) -> tuple[Fingerprint, ClassificationLabel] | None:
    if not isinstance(entry, dict):
        return None
    repository_id = entry.get("repository_id", "")
    rule_id = entry.get("rule_id")
    file_path = entry.get("file_path")
    line_number = entry.get("line_number")
    column_offset = entry.get("column_offset", 1)
    if not isinstance(repository_id, str) or not isinstance(rule_id, str) or not isinstance(file_path, str):
        return None
    if not isinstance(line_number, int) or not isinstance(column_offset, int):
        return None
    try:
        label = parse_label(entry.get("label", ""))
    except (ValueError, AttributeError):
        logger.warning("Ignoring label entry with invalid label: %r", entry.get("label"))
        return None
    return (repository_id, rule_id, file_path, line_number, column_offset), label
