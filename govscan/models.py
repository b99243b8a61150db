from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Literal

import regex

Category = Literal[
    "secrets",
    "injection",
    "destructive-governance",
    "insecure-defaults",
    "claim-verification",
    "scope-control",
]
SeverityTier = Literal["high", "medium", "low", "informational"]
SkipReason = Literal["binary", "too_large", "unreadable", "timeout", "decode_error"]

CATEGORIES: tuple[str, ...] = (
    "secrets",
    "injection",
    "destructive-governance",
    "insecure-defaults",
    "claim-verification",
    "scope-control",
)
SEVERITY_TIERS: tuple[str, ...] = ("high", "medium", "low", "informational")

Fingerprint = tuple[str, str, str, int, int]


class ClassificationLabel(str, Enum):
    TRUE_POSITIVE = "true_positive"
    FALSE_POSITIVE = "false_positive"
    INFORMATIONAL = "informational"
    UNCLASSIFIED = "unclassified"


@dataclass(frozen=True, slots=True)
class Rule:
    id: str
    pattern: str
    category: Category
    severity_tier: SeverityTier
    include_globs: tuple[str, ...]
    exclude_globs: tuple[str, ...] = ()
    ignore_case: bool = False
    multiline: bool = False
    title: str = ""
    description: str = ""
    compiled: regex.Pattern[str] = field(init=False, repr=False, compare=False)

    def __post_init__(self) -> None:
        flags = regex.IGNORECASE if self.ignore_case else 0
        if self.multiline:
            flags |= regex.MULTILINE
        # regex.error propagates; the catalog loader turns it into InvalidRuleError.
        object.__setattr__(self, "compiled", regex.compile(self.pattern, flags))
        if not self.title:
            object.__setattr__(self, "title", self.id)


@dataclass(frozen=True, slots=True)
class Finding:
    rule_id: str
    file_path: str
    line_number: int
    column_offset: int
    matched_text: str
    repository_id: str = ""

    @property
    def fingerprint(self) -> Fingerprint:
        return (self.repository_id, self.rule_id, self.file_path, self.line_number, self.column_offset)


@dataclass(frozen=True, slots=True)
class SkipRecord:
    path: str
    reason: SkipReason
    detail: str = ""


@dataclass(slots=True)
class AggregateResult:
    rule_id: str
    repository_id: str
    finding_count: int
    files_with_findings: int = 0
    sample: list[Finding] = field(default_factory=list)


@dataclass(frozen=True, slots=True)
class RateEstimate:
    rule_id: str
    sample_size: int
    true_positive_count: int
    false_positive_count: int = 0
    informational_count: int = 0

    @property
    def estimated_rate(self) -> float | None:
        if self.sample_size == 0:
            return None
        return self.true_positive_count / self.sample_size

    def projected_true_positives(self, finding_count: int) -> float | None:
        rate = self.estimated_rate
        if rate is None:
            return None
        return rate * finding_count


@dataclass(slots=True)
class ScanResult:
    findings: list[Finding]
    aggregates: dict[tuple[str, str], AggregateResult]
    skipped: list[SkipRecord]
    files_scanned: int
    incomplete: bool = False
    seed: int = 0
    sample_size: int = 10
