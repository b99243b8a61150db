from __future__ import annotations

import re
import time
from typing import Iterable, Iterator

import regex

from govscan.errors import MatchTimeoutError
from govscan.globs import is_admitted
from govscan.models import Finding, Rule

INLINE_IGNORE_PATTERN = re.compile(r"govscan:ignore(?:\s+([A-Za-z0-9_, .-]+))?", re.IGNORECASE)
DEFAULT_WINDOW_LINES = 64
DEFAULT_MAX_EXCERPT_LENGTH = 200


def applicable_rules(file_path: str, rules: Iterable[Rule]) -> list[Rule]:
    return [rule for rule in rules if is_admitted(file_path, rule.include_globs, rule.exclude_globs)]


def truncate_excerpt(text: str, max_length: int) -> str:
    if max_length <= 0:
        return ""
    return text if len(text) <= max_length else text[:max_length]


def match(
    file_path: str,
    content: str,
    rules: Iterable[Rule],
    *,
    repository_id: str = "",
    window_lines: int = DEFAULT_WINDOW_LINES,
    max_excerpt_length: int = DEFAULT_MAX_EXCERPT_LENGTH,
    deadline: float | None = None,
    budget_ms: float = 0.0,
    inline_ignore: bool = True,
) -> list[Finding]:
    """Apply every admitted rule to ``content`` and return findings.

    Findings are ordered by line, then column, then rule id. ``deadline`` is
    a ``time.monotonic()`` value; once it passes, MatchTimeoutError is raised
    and no partial result is returned.
    """
    selected = applicable_rules(file_path, rules)
    if not selected:
        return []

    lines = content.splitlines()
    findings: list[Finding] = []
    try:
        for rule in selected:
            _check_deadline(deadline, file_path, budget_ms)
            if rule.multiline:
                findings.extend(
                    _match_windowed(
                        rule, file_path, lines, repository_id, window_lines, max_excerpt_length, deadline, budget_ms
                    )
                )
            else:
                findings.extend(
                    _match_lines(rule, file_path, lines, repository_id, max_excerpt_length, deadline, budget_ms)
                )
    except TimeoutError:
        # Raised by the regex engine when the remaining budget runs out mid-match.
        raise MatchTimeoutError(file_path, budget_ms) from None
    _check_deadline(deadline, file_path, budget_ms)

    if inline_ignore and findings:
        findings = _drop_ignored(findings, lines)
    findings.sort(key=lambda finding: (finding.line_number, finding.column_offset, finding.rule_id))
    return findings


def _match_lines(
    rule: Rule,
    file_path: str,
    lines: list[str],
    repository_id: str,
    max_excerpt_length: int,
    deadline: float | None,
    budget_ms: float,
) -> list[Finding]:
    findings: list[Finding] = []
    for idx, line in enumerate(lines, start=1):
        _check_deadline(deadline, file_path, budget_ms)
        for found in _finditer(rule, line, deadline):
            if found.end() == found.start():
                continue
            findings.append(
                Finding(
                    rule_id=rule.id,
                    file_path=file_path,
                    line_number=idx,
                    column_offset=found.start() + 1,
                    matched_text=truncate_excerpt(found.group(0), max_excerpt_length),
                    repository_id=repository_id,
                )
            )
    return findings


def _match_windowed(
    rule: Rule,
    file_path: str,
    lines: list[str],
    repository_id: str,
    window_lines: int,
    max_excerpt_length: int,
    deadline: float | None,
    budget_ms: float,
) -> list[Finding]:
    # Only matches that begin on the window's first line are kept, so each
    # match is reported once, at its start line.
    window = max(1, window_lines)
    findings: list[Finding] = []
    for start in range(len(lines)):
        _check_deadline(deadline, file_path, budget_ms)
        first_line_length = len(lines[start])
        text = "\n".join(lines[start : start + window])
        for found in _finditer(rule, text, deadline):
            if found.start() > first_line_length:
                break
            if found.end() == found.start():
                continue
            findings.append(
                Finding(
                    rule_id=rule.id,
                    file_path=file_path,
                    line_number=start + 1,
                    column_offset=found.start() + 1,
                    matched_text=truncate_excerpt(found.group(0), max_excerpt_length),
                    repository_id=repository_id,
                )
            )
    return findings


def _finditer(rule: Rule, text: str, deadline: float | None) -> Iterator[regex.Match[str]]:
    if deadline is None:
        return rule.compiled.finditer(text, concurrent=True)
    # The regex engine stops on its own once the remaining budget is spent.
    return rule.compiled.finditer(text, concurrent=True, timeout=max(deadline - time.monotonic(), 1e-6))


def _check_deadline(deadline: float | None, file_path: str, budget_ms: float) -> None:
    if deadline is not None and time.monotonic() > deadline:
        raise MatchTimeoutError(file_path, budget_ms)


def _drop_ignored(findings: list[Finding], lines: list[str]) -> list[Finding]:
    ignore_map = inline_ignore_map(lines)
    if not ignore_map:
        return findings
    kept: list[Finding] = []
    for finding in findings:
        ignored = ignore_map.get(finding.line_number)
        if ignored is not None and ("*" in ignored or finding.rule_id in ignored):
            continue
        kept.append(finding)
    return kept


def inline_ignore_map(lines: list[str]) -> dict[int, set[str]]:
    rule_map: dict[int, set[str]] = {}
    for idx, line in enumerate(lines, start=1):
        found = INLINE_IGNORE_PATTERN.search(line)
        if not found:
            continue
        rules = found.group(1)
        if rules is None:
            rule_map[idx] = {"*"}
            continue
        parsed = {token for token in re.split(r"[,\s]+", rules) if token}
        rule_map[idx] = parsed if parsed else {"*"}
    return rule_map
