from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any, Iterable, Iterator, Mapping

import regex

try:
    import tomllib
except ModuleNotFoundError:  # pragma: no cover
    import tomli as tomllib

from govscan.errors import InvalidRuleError, UnknownRuleError
from govscan.models import CATEGORIES, SEVERITY_TIERS, Rule

logger = logging.getLogger("govscan.catalog")

DEFAULT_CATALOG = Path(__file__).parent / "catalogs" / "default.toml"


def default_catalog_path() -> Path:
    return DEFAULT_CATALOG


class Catalog:
    """Read-only set of rules, keyed by id.

    Built once per process and shared by every worker without locking.
    """

    def __init__(self, rules: Iterable[Rule]) -> None:
        by_id: dict[str, Rule] = {}
        for rule in rules:
            if rule.id in by_id:
                raise InvalidRuleError(f"Duplicate rule id: {rule.id}")
            by_id[rule.id] = rule
        self._rules: dict[str, Rule] = dict(sorted(by_id.items()))

    @property
    def rules(self) -> list[Rule]:
        return list(self._rules.values())

    @property
    def rule_ids(self) -> list[str]:
        return list(self._rules)

    @property
    def multiline_rule_ids(self) -> frozenset[str]:
        return frozenset(rule.id for rule in self._rules.values() if rule.multiline)

    def lookup(self, rule_id: str) -> Rule:
        try:
            return self._rules[rule_id]
        except KeyError:
            raise UnknownRuleError(rule_id) from None

    def select(
        self,
        enabled: Iterable[str] | None = None,
        disabled: Iterable[str] = (),
        categories: Iterable[str] | None = None,
    ) -> Catalog:
        enabled_ids = None if enabled is None else [self.lookup(rule_id).id for rule_id in enabled]
        disabled_ids = {self.lookup(rule_id).id for rule_id in disabled}
        category_set = None if categories is None else set(categories)
        if category_set is not None:
            unknown = sorted(category_set - set(CATEGORIES))
            if unknown:
                raise InvalidRuleError(f"Unknown categories: {', '.join(unknown)}")

        selected: list[Rule] = []
        for rule in self._rules.values():
            if enabled_ids is not None and rule.id not in enabled_ids:
                continue
            if rule.id in disabled_ids:
                continue
            if category_set is not None and rule.category not in category_set:
                continue
            selected.append(rule)
        return Catalog(selected)

    def __contains__(self, rule_id: object) -> bool:
        return rule_id in self._rules

    def __iter__(self) -> Iterator[Rule]:
        return iter(self._rules.values())

    def __len__(self) -> int:
        return len(self._rules)


def load_catalog(source: str | Path | Mapping[str, Any]) -> Catalog:
    if isinstance(source, Mapping):
        payload: Mapping[str, Any] = source
        origin = "<mapping>"
    else:
        payload = _read_catalog_file(Path(source))
        origin = str(source)

    entries = payload.get("rules")
    if not isinstance(entries, list):
        raise InvalidRuleError(f"{origin}: catalog must contain a 'rules' array.")

    rules: list[Rule] = []
    seen: set[str] = set()
    for index, entry in enumerate(entries, start=1):
        rule = _parse_rule(entry, index, origin)
        if rule.id in seen:
            raise InvalidRuleError(f"{origin}: duplicate rule id '{rule.id}' (rule #{index})")
        seen.add(rule.id)
        rules.append(rule)

    catalog = Catalog(rules)
    logger.info("Loaded %d rules from %s", len(catalog), origin)
    return catalog


def _read_catalog_file(path: Path) -> Mapping[str, Any]:
    if not path.exists():
        raise FileNotFoundError(f"Rule catalog not found: {path}")
    try:
        if path.suffix.lower() == ".json":
            payload = json.loads(path.read_text(encoding="utf-8"))
        else:
            with path.open("rb") as fh:
                payload = tomllib.load(fh)
    except (json.JSONDecodeError, tomllib.TOMLDecodeError) as exc:
        raise InvalidRuleError(f"{path}: unable to parse catalog: {exc}") from exc
    if not isinstance(payload, dict):
        raise InvalidRuleError(f"{path}: catalog must be an object.")
    return payload


def _parse_rule(entry: Any, index: int, origin: str) -> Rule:
    if not isinstance(entry, dict):
        raise InvalidRuleError(f"{origin}: rule #{index} must be a table/object.")

    rule_id = entry.get("id")
    if not isinstance(rule_id, str) or not rule_id.strip():
        raise InvalidRuleError(f"{origin}: rule #{index} is missing an id.")
    where = f"{origin}: rule '{rule_id}' (#{index})"

    pattern = entry.get("pattern")
    if not isinstance(pattern, str) or pattern == "":
        raise InvalidRuleError(f"{where} has an empty pattern.")

    category = entry.get("category")
    if category not in CATEGORIES:
        raise InvalidRuleError(f"{where} has unknown category {category!r}; expected one of: {', '.join(CATEGORIES)}")

    severity = entry.get("severity_tier", entry.get("severity"))
    if severity not in SEVERITY_TIERS:
        raise InvalidRuleError(
            f"{where} has unknown severity tier {severity!r}; expected one of: {', '.join(SEVERITY_TIERS)}"
        )

    include_globs = _parse_globs(entry.get("include_globs"), f"{where} include_globs")
    if not include_globs:
        raise InvalidRuleError(f"{where} has an empty include_globs set.")
    exclude_globs = _parse_globs(entry.get("exclude_globs", []), f"{where} exclude_globs")

    try:
        return Rule(
            id=rule_id,
            pattern=pattern,
            category=category,
            severity_tier=severity,
            include_globs=include_globs,
            exclude_globs=exclude_globs,
            ignore_case=bool(entry.get("ignore_case", False)),
            multiline=bool(entry.get("multiline", False)),
            title=str(entry.get("title", "")),
            description=str(entry.get("description", "")),
        )
    except regex.error as exc:
        raise InvalidRuleError(f"{where} has a pattern that does not compile: {exc}") from exc


def _parse_globs(value: Any, where: str) -> tuple[str, ...]:
    if value is None:
        return ()
    if isinstance(value, str):
        value = [value]
    if not isinstance(value, list) or not all(isinstance(item, str) and item.strip() for item in value):
        raise InvalidRuleError(f"{where} must be a list of non-empty strings.")
    return tuple(dict.fromkeys(item.strip() for item in value))
