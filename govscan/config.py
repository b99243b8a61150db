from __future__ import annotations

from dataclasses import dataclass, field
import os
from pathlib import Path
try:
    import tomllib
except ModuleNotFoundError:  # pragma: no cover
    import tomli as tomllib

from govscan.reporters import REPORT_FORMATS


DEFAULT_INCLUDE_GLOBS = ["**/*"]
DEFAULT_EXCLUDE_GLOBS = [
    ".git",
    ".hg",
    ".svn",
    ".venv",
    "venv",
    "__pycache__",
    "node_modules",
    ".mypy_cache",
    ".pytest_cache",
    ".tox",
    ".nox",
    ".ruff_cache",
    ".gradle",
    ".eggs",
    "*.egg-info",
    "dist",
    "build",
    "*.pyc",
    "*.class",
    "*.jar",
    "*.whl",
]
DEFAULT_MAX_FILE_SIZE = 1_000_000
DEFAULT_TIMEOUT_MS = 500
DEFAULT_BATCH_SIZE = 32
DEFAULT_WINDOW_LINES = 64
DEFAULT_MAX_EXCERPT_LENGTH = 200
DEFAULT_SAMPLE_SIZE = 10
DEFAULT_SEED = 0


def default_threads() -> int:
    return os.cpu_count() or 1


@dataclass(slots=True)
class ScanConfig:
    catalog: str | None = None
    include_globs: list[str] = field(default_factory=lambda: DEFAULT_INCLUDE_GLOBS.copy())
    exclude_globs: list[str] = field(default_factory=lambda: DEFAULT_EXCLUDE_GLOBS.copy())
    max_file_size: int = DEFAULT_MAX_FILE_SIZE
    timeout_ms: int = DEFAULT_TIMEOUT_MS
    threads: int = field(default_factory=default_threads)
    batch_size: int = DEFAULT_BATCH_SIZE
    window_lines: int = DEFAULT_WINDOW_LINES
    max_excerpt_length: int = DEFAULT_MAX_EXCERPT_LENGTH
    multi_repo: bool = False
    inline_ignore: bool = True
    enabled_rules: list[str] | None = None
    disabled_rules: list[str] = field(default_factory=list)
    categories: list[str] | None = None


@dataclass(slots=True)
class SamplingConfig:
    sample_size: int = DEFAULT_SAMPLE_SIZE
    seed: int = DEFAULT_SEED
    labels: str | None = None


@dataclass(slots=True)
class ReportConfig:
    output_format: str = "text"
    out: str | None = None
    strict: bool = False


@dataclass(slots=True)
class Config:
    scan: ScanConfig = field(default_factory=ScanConfig)
    sampling: SamplingConfig = field(default_factory=SamplingConfig)
    report: ReportConfig = field(default_factory=ReportConfig)


def load_config(path: str | None) -> Config:
    if path is None:
        default = Path("govscan.toml")
        if not default.exists():
            return Config()
        path = str(default)

    cfg_path = Path(path)
    if not cfg_path.exists():
        raise FileNotFoundError(f"Config file not found: {cfg_path}")

    try:
        with cfg_path.open("rb") as fh:
            payload = tomllib.load(fh)
    except tomllib.TOMLDecodeError as exc:
        raise ValueError(f"{cfg_path}: invalid TOML: {exc}") from exc

    scan = payload.get("scan", {})
    sampling = payload.get("sampling", {})
    report = payload.get("report", {})
    for name, section in (("scan", scan), ("sampling", sampling), ("report", report)):
        if not isinstance(section, dict):
            raise ValueError(f"{cfg_path}: [{name}] must be a table.")

    config = Config()
    config.scan.catalog = scan.get("catalog")
    config.scan.include_globs = list(scan.get("include_globs", config.scan.include_globs))
    config.scan.exclude_globs = list(scan.get("exclude_globs", config.scan.exclude_globs))
    config.scan.max_file_size = _int(scan, "max_file_size", config.scan.max_file_size)
    config.scan.timeout_ms = _int(scan, "timeout_ms", config.scan.timeout_ms)
    config.scan.threads = _int(scan, "threads", config.scan.threads)
    config.scan.batch_size = _int(scan, "batch_size", config.scan.batch_size)
    config.scan.window_lines = _int(scan, "window_lines", config.scan.window_lines)
    config.scan.max_excerpt_length = _int(scan, "max_excerpt_length", config.scan.max_excerpt_length)
    config.scan.multi_repo = bool(scan.get("multi_repo", config.scan.multi_repo))
    config.scan.inline_ignore = bool(scan.get("inline_ignore", config.scan.inline_ignore))
    enabled_rules = scan.get("enabled_rules")
    config.scan.enabled_rules = [str(rule) for rule in enabled_rules] if enabled_rules is not None else None
    config.scan.disabled_rules = [str(rule) for rule in scan.get("disabled_rules", config.scan.disabled_rules)]
    categories = scan.get("categories")
    config.scan.categories = [str(category) for category in categories] if categories is not None else None
    config.sampling.sample_size = _int(sampling, "sample_size", config.sampling.sample_size)
    config.sampling.seed = _int(sampling, "seed", config.sampling.seed)
    config.sampling.labels = sampling.get("labels")
    config.report.output_format = report.get("format", config.report.output_format)
    config.report.out = report.get("out")
    config.report.strict = bool(report.get("strict", config.report.strict))
    return config


def validate_config(config: Config) -> list[str]:
    errors: list[str] = []
    if config.report.output_format not in REPORT_FORMATS:
        errors.append(f"format must be one of: {', '.join(REPORT_FORMATS)}")

    numeric_values: list[tuple[str, int]] = [
        ("max_file_size", config.scan.max_file_size),
        ("timeout_ms", config.scan.timeout_ms),
        ("max_excerpt_length", config.scan.max_excerpt_length),
        ("sample_size", config.sampling.sample_size),
    ]
    for name, value in numeric_values:
        if value < 0:
            errors.append(f"{name} must be >= 0")

    positive_values: list[tuple[str, int]] = [
        ("threads", config.scan.threads),
        ("batch_size", config.scan.batch_size),
        ("window_lines", config.scan.window_lines),
    ]
    for name, value in positive_values:
        if value < 1:
            errors.append(f"{name} must be >= 1")

    if not config.scan.include_globs:
        errors.append("include_globs must be non-empty")
    if config.scan.enabled_rules is not None and len(config.scan.enabled_rules) == 0:
        errors.append("enabled_rules must be non-empty when set")
    return errors


def _int(section: dict, key: str, default: int) -> int:
    value = section.get(key, default)
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValueError(f"{key} must be an integer, got {value!r}")
    return value
