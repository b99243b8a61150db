from __future__ import annotations

import json
from pathlib import Path
from typing import Any, Iterable, Mapping

from govscan.aggregator import rollup_by_rule
from govscan.catalog import Catalog
from govscan.models import AggregateResult, Finding, RateEstimate, SkipRecord

REPORT_FORMATS = ("text", "json")


def _finding_to_dict(finding: Finding) -> dict[str, Any]:
    return {
        "file_path": finding.file_path,
        "line_number": finding.line_number,
        "matched_text": finding.matched_text,
        "repository_id": finding.repository_id,
    }


def _rate_value(estimate: RateEstimate | None) -> float | None:
    if estimate is None or estimate.estimated_rate is None:
        return None
    return round(estimate.estimated_rate, 4)


def _rule_rows(
    aggregate_results: Mapping[tuple[str, str], AggregateResult],
    catalog: Catalog,
    sample_size: int,
    seed: int = 0,
) -> list[tuple[str, AggregateResult]]:
    rolled = rollup_by_rule(dict(aggregate_results), sample_size=sample_size, seed=seed)
    rule_ids = sorted(set(catalog.rule_ids) | set(rolled))
    return [
        (rule_id, rolled.get(rule_id) or AggregateResult(rule_id=rule_id, repository_id="", finding_count=0))
        for rule_id in rule_ids
    ]


def _rule_meta(catalog: Catalog, rule_id: str) -> tuple[str, str]:
    if rule_id in catalog:
        rule = catalog.lookup(rule_id)
        return rule.category, rule.severity_tier
    return "unknown", "unknown"


def to_json_report(
    aggregate_results: Mapping[tuple[str, str], AggregateResult],
    rate_estimates: Mapping[str, RateEstimate],
    *,
    catalog: Catalog,
    skipped: Iterable[SkipRecord] = (),
    incomplete: bool = False,
    files_scanned: int = 0,
    sample_size: int = 10,
    seed: int = 0,
) -> dict[str, Any]:
    rows = _rule_rows(aggregate_results, catalog, sample_size, seed)
    rules_payload = []
    for rule_id, result in rows:
        category, severity = _rule_meta(catalog, rule_id)
        rules_payload.append(
            {
                "rule_id": rule_id,
                "category": category,
                "severity_tier": severity,
                "finding_count": result.finding_count,
                "files_with_findings": result.files_with_findings,
                "estimated_rate": _rate_value(rate_estimates.get(rule_id)),
                "sample": [_finding_to_dict(finding) for finding in result.sample],
            }
        )
    return {
        "incomplete": incomplete,
        "files_scanned": files_scanned,
        "findings_total": sum(result.finding_count for _, result in rows),
        "rules": rules_payload,
        "repositories": [
            {
                "repository_id": repository_id,
                "rule_id": rule_id,
                "finding_count": result.finding_count,
                "files_with_findings": result.files_with_findings,
            }
            for (rule_id, repository_id), result in sorted(
                aggregate_results.items(), key=lambda item: (item[0][1], item[0][0])
            )
        ],
        "skipped": [
            {"path": record.path, "reason": record.reason, "detail": record.detail}
            for record in sorted(skipped, key=lambda record: (record.path, record.reason))
        ],
    }


def to_text_report(
    aggregate_results: Mapping[tuple[str, str], AggregateResult],
    rate_estimates: Mapping[str, RateEstimate],
    *,
    catalog: Catalog,
    skipped: Iterable[SkipRecord] = (),
    incomplete: bool = False,
    files_scanned: int = 0,
    sample_size: int = 10,
    seed: int = 0,
) -> str:
    rows = _rule_rows(aggregate_results, catalog, sample_size, seed)
    skipped_records = sorted(skipped, key=lambda record: (record.path, record.reason))
    total = sum(result.finding_count for _, result in rows)

    lines: list[str] = []
    if incomplete:
        lines.append("INCOMPLETE: scan was cancelled before every file was processed.")
    lines.append(f"Summary: files={files_scanned} findings={total} rules={len(rows)} skipped={len(skipped_records)}")
    lines.append("")

    table = [("RULE", "CATEGORY", "SEVERITY", "FINDINGS", "TP RATE")]
    for rule_id, result in rows:
        category, severity = _rule_meta(catalog, rule_id)
        rate = _rate_value(rate_estimates.get(rule_id))
        table.append(
            (
                rule_id,
                category,
                severity,
                str(result.finding_count),
                "unclassified" if rate is None else f"{rate * 100.0:.1f}%",
            )
        )
    widths = [max(len(row[col]) for row in table) for col in range(len(table[0]))]
    for row in table:
        cells = [row[0].ljust(widths[0]), row[1].ljust(widths[1]), row[2].ljust(widths[2])]
        cells.extend([row[3].rjust(widths[3]), row[4].rjust(widths[4])])
        lines.append("  ".join(cells).rstrip())

    for rule_id, result in rows:
        if not result.sample:
            continue
        lines.append("")
        lines.append(f"EVIDENCE {rule_id} ({len(result.sample)} of {result.finding_count})")
        for finding in result.sample:
            location = f"{finding.file_path}:{finding.line_number}"
            if finding.repository_id:
                location = f"{finding.repository_id}/{location}"
            excerpt = finding.matched_text.replace("\n", "\\n")
            lines.append(f"  {location}  {excerpt}")

    lines.append("")
    lines.append("Skipped:")
    if not skipped_records:
        lines.append("  none")
    for record in skipped_records:
        detail = f" ({record.detail})" if record.detail else ""
        lines.append(f"  {record.path}  {record.reason}{detail}")
    return "\n".join(lines) + "\n"


def render(
    aggregate_results: Mapping[tuple[str, str], AggregateResult],
    rate_estimates: Mapping[str, RateEstimate],
    output_format: str,
    *,
    catalog: Catalog,
    skipped: Iterable[SkipRecord] = (),
    incomplete: bool = False,
    files_scanned: int = 0,
    sample_size: int = 10,
    seed: int = 0,
) -> str:
    options = {
        "catalog": catalog,
        "skipped": list(skipped),
        "incomplete": incomplete,
        "files_scanned": files_scanned,
        "sample_size": sample_size,
        "seed": seed,
    }
    if output_format == "json":
        return json.dumps(to_json_report(aggregate_results, rate_estimates, **options), indent=2) + "\n"
    if output_format == "text":
        return to_text_report(aggregate_results, rate_estimates, **options)
    raise ValueError(f"Unsupported report format: {output_format}")


def write_report(rendered: str, out: str | None) -> None:
    if out is None:
        print(rendered, end="")
        return
    output_path = Path(out)
    output_path.parent.mkdir(parents=True, exist_ok=True)
    output_path.write_text(rendered, encoding="utf-8")
