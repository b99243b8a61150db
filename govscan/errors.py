from __future__ import annotations


class GovscanError(Exception):
    """Base class for all errors raised by govscan."""


class InvalidRuleError(GovscanError):
    """A catalog entry is malformed. Aborts the run before any file is scanned."""


class UnknownRuleError(GovscanError, KeyError):
    def __init__(self, rule_id: str) -> None:
        super().__init__(rule_id)
        self.rule_id = rule_id

    def __str__(self) -> str:
        return f"Unknown rule id: {self.rule_id}"


class RootPathError(GovscanError):
    """The scan root does not exist or cannot be read."""


class WalkError(GovscanError):
    def __init__(self, path: str, reason: str) -> None:
        super().__init__(f"{path}: {reason}")
        self.path = path
        self.reason = reason


class MatchTimeoutError(GovscanError):
    def __init__(self, path: str, budget_ms: float) -> None:
        super().__init__(f"{path}: scan exceeded {budget_ms:g}ms budget")
        self.path = path
        self.budget_ms = budget_ms
