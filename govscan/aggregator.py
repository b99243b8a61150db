from __future__ import annotations

from collections import defaultdict
import random
from typing import Iterable

from govscan.models import AggregateResult, Finding

DEFAULT_SAMPLE_SIZE = 10
DEFAULT_SEED = 0


def sort_key(finding: Finding) -> tuple[str, str, str, int, int]:
    return (finding.repository_id, finding.rule_id, finding.file_path, finding.line_number, finding.column_offset)


def _dedupe_key(finding: Finding, multiline_rules: frozenset[str]) -> tuple[str, str, str, int, int]:
    # A multiline rule counts a matched line once, whatever the column.
    column = 0 if finding.rule_id in multiline_rules else finding.column_offset
    return (finding.repository_id, finding.rule_id, finding.file_path, finding.line_number, column)


def dedupe(findings: Iterable[Finding], multiline_rules: frozenset[str] = frozenset()) -> list[Finding]:
    unique: dict[tuple[str, str, str, int, int], Finding] = {}
    for finding in sorted(findings, key=sort_key):
        unique.setdefault(_dedupe_key(finding, multiline_rules), finding)
    return sorted(unique.values(), key=sort_key)


def draw_sample(findings: list[Finding], sample_size: int, seed: int, rule_id: str, repository_id: str) -> list[Finding]:
    """Pick a reproducible sample from findings already in sort order.

    The generator is seeded per ``(seed, rule_id, repository_id)`` so one
    rule's sample does not move when another rule gains findings.
    """
    if sample_size <= 0:
        return []
    if len(findings) <= sample_size:
        return list(findings)
    rng = random.Random(f"{seed}:{rule_id}:{repository_id}")
    picked = rng.sample(range(len(findings)), sample_size)
    return [findings[idx] for idx in sorted(picked)]


class Aggregator:
    """Collects worker batches and derives per-(rule, repository) results.

    ``add_batch`` is meant to be called from the single coordinating thread.
    """

    def __init__(
        self,
        sample_size: int = DEFAULT_SAMPLE_SIZE,
        seed: int = DEFAULT_SEED,
        multiline_rules: frozenset[str] = frozenset(),
    ) -> None:
        self.sample_size = sample_size
        self.seed = seed
        self.multiline_rules = multiline_rules
        self._unique: dict[tuple[str, str, str, int, int], Finding] = {}

    def add_batch(self, findings: Iterable[Finding]) -> None:
        for finding in findings:
            key = _dedupe_key(finding, self.multiline_rules)
            current = self._unique.get(key)
            if current is None or sort_key(finding) < sort_key(current):
                self._unique[key] = finding

    def findings(self) -> list[Finding]:
        return sorted(self._unique.values(), key=sort_key)

    def results(self) -> dict[tuple[str, str], AggregateResult]:
        grouped: dict[tuple[str, str], list[Finding]] = defaultdict(list)
        for finding in self.findings():
            grouped[(finding.rule_id, finding.repository_id)].append(finding)

        results: dict[tuple[str, str], AggregateResult] = {}
        for (rule_id, repository_id), group in sorted(grouped.items()):
            results[(rule_id, repository_id)] = AggregateResult(
                rule_id=rule_id,
                repository_id=repository_id,
                finding_count=len(group),
                files_with_findings=len({finding.file_path for finding in group}),
                sample=draw_sample(group, self.sample_size, self.seed, rule_id, repository_id),
            )
        return results


def aggregate(
    findings: Iterable[Finding],
    *,
    sample_size: int = DEFAULT_SAMPLE_SIZE,
    seed: int = DEFAULT_SEED,
    multiline_rules: frozenset[str] = frozenset(),
) -> dict[tuple[str, str], AggregateResult]:
    aggregator = Aggregator(sample_size=sample_size, seed=seed, multiline_rules=multiline_rules)
    aggregator.add_batch(findings)
    return aggregator.results()


def rollup_by_rule(
    results: dict[tuple[str, str], AggregateResult],
    sample_size: int = DEFAULT_SAMPLE_SIZE,
    seed: int = DEFAULT_SEED,
) -> dict[str, AggregateResult]:
    """Fold per-repository results into one result per rule.

    The rule sample is a seeded draw over the pooled repository samples, so
    every repository can contribute evidence.
    """
    rolled: dict[str, AggregateResult] = {}
    pooled: dict[str, list[Finding]] = defaultdict(list)
    for (rule_id, _repository_id), result in sorted(results.items()):
        current = rolled.get(rule_id)
        if current is None:
            current = AggregateResult(rule_id=rule_id, repository_id="", finding_count=0)
            rolled[rule_id] = current
        current.finding_count += result.finding_count
        current.files_with_findings += result.files_with_findings
        pooled[rule_id].extend(result.sample)
    for rule_id, current in rolled.items():
        current.sample = draw_sample(sorted(pooled[rule_id], key=sort_key), sample_size, seed, rule_id, "")
    return rolled
