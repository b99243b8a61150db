from __future__ import annotations

import argparse
from collections import Counter
import json
from pathlib import Path
import sys
import threading

from govscan import __version__
from govscan.catalog import Catalog, default_catalog_path, load_catalog
from govscan.classifier import Classifier, parse_label
from govscan.config import Config, load_config, validate_config
from govscan.errors import InvalidRuleError, RootPathError, UnknownRuleError
from govscan.logging_config import configure_logging
from govscan.models import CATEGORIES, ScanResult
from govscan.reporters import REPORT_FORMATS, render, write_report
from govscan.scanner import ScanOptions, scan

EXIT_OK = 0
EXIT_CATALOG_ERROR = 1
EXIT_ROOT_ERROR = 2
EXIT_INCOMPLETE = 3

MANUAL = """\
Examples:
  govscan scan . --format json --out report.json
  govscan scan --root corpus/ --multi-repo --seed 42 --sample-size 10
  govscan label --labels labels.json --repository app --rule secret-assignment \\
      --file src/settings.py --line 3 true_positive
  govscan scan . --labels labels.json        # fills in true-positive rates
  govscan rules --format json

Exit codes: 0 report produced, 1 catalog error, 2 unreadable root or bad
configuration, 3 incomplete run with --strict.
"""


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="govscan",
        description="Pattern-based security and governance scanner.",
        epilog=MANUAL,
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    parser.add_argument(
        "--log-level",
        default="WARNING",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Logging level for progress and audit messages.",
    )
    parser.add_argument("--log-json", action="store_true", help="Emit log records as JSON lines.")
    parser.add_argument("--log-file", help="Also write log records to this file.")
    subparsers = parser.add_subparsers(dest="command", required=True)

    scan_cmd = subparsers.add_parser("scan", help="Scan a tree (or corpus of repositories) and report findings.")
    scan_cmd.add_argument("path", nargs="?", help="Path to scan (same as --root).")
    scan_cmd.add_argument("--root", help="Path to scan. Defaults to the current directory.")
    scan_cmd.add_argument("--catalog", help="Rule catalog file (TOML or JSON). Defaults to the bundled catalog.")
    scan_cmd.add_argument("--config", help="Path to govscan TOML config.")
    scan_cmd.add_argument("--format", choices=list(REPORT_FORMATS), help="Report output format.")
    scan_cmd.add_argument("--out", help="Write report to file. Defaults to stdout.")
    scan_cmd.add_argument("--sample-size", type=int, help="Evidence sample size per rule.")
    scan_cmd.add_argument("--seed", type=int, help="Seed for reproducible sampling.")
    scan_cmd.add_argument("--threads", type=int, help="Worker threads. Defaults to the CPU count.")
    scan_cmd.add_argument("--max-file-size", type=int, help="Skip files larger than this many bytes.")
    scan_cmd.add_argument("--timeout-ms", type=int, help="Per-file scan budget in milliseconds (0 disables).")
    scan_cmd.add_argument("--window-lines", type=int, help="Line window for multiline rules.")
    scan_cmd.add_argument("--include", action="append", default=[], help="Include glob (repeatable).")
    scan_cmd.add_argument("--exclude", action="append", default=[], help="Extra exclude glob (repeatable).")
    scan_cmd.add_argument("--enable-rule", action="append", default=[], help="Only run specific rule ids.")
    scan_cmd.add_argument("--disable-rule", action="append", default=[], help="Disable specific rule ids.")
    scan_cmd.add_argument("--category", action="append", default=[], choices=list(CATEGORIES), help="Only run rules in this category.")
    scan_cmd.add_argument("--multi-repo", action="store_true", help="Treat each sub-directory of root as a repository.")
    scan_cmd.add_argument("--labels", help="Label store used for true-positive rate estimates.")
    scan_cmd.add_argument("--no-inline-ignore", action="store_true", help="Disable govscan:ignore comments.")
    scan_cmd.add_argument("--strict", action="store_true", help="Exit 3 when the run is incomplete or a file timed out.")

    label_cmd = subparsers.add_parser("label", help="Record a classification label for a sampled finding.")
    label_cmd.add_argument("label", help="true_positive, false_positive, informational or unclassified.")
    label_cmd.add_argument("--labels", required=True, help="Label store file (created if missing).")
    label_cmd.add_argument("--rule", required=True, help="Rule id of the finding.")
    label_cmd.add_argument("--file", required=True, help="File path as shown in the report.")
    label_cmd.add_argument("--line", type=int, required=True, help="Line number of the finding.")
    label_cmd.add_argument("--column", type=int, default=1, help="Column offset of the finding.")
    label_cmd.add_argument("--repository", default="", help="Repository id as shown in the report.")

    rules_cmd = subparsers.add_parser("rules", help="List the rules of a catalog.")
    rules_cmd.add_argument("--catalog", help="Rule catalog file. Defaults to the bundled catalog.")
    rules_cmd.add_argument("--format", choices=list(REPORT_FORMATS), default="text", help="Output format.")

    return parser


def main(argv: list[str] | None = None) -> None:
    parser = build_parser()
    args = parser.parse_args(argv)
    configure_logging(args.log_level, log_file=args.log_file, json_format=args.log_json)

    if args.command == "scan":
        raise SystemExit(run_scan(args))
    if args.command == "label":
        raise SystemExit(run_label(args))
    if args.command == "rules":
        raise SystemExit(run_rules(args))


def run_scan(args: argparse.Namespace) -> int:
    try:
        config = load_config(args.config)
    except (OSError, ValueError, TypeError) as exc:
        print(f"[config] {exc}", file=sys.stderr)
        return EXIT_ROOT_ERROR
    merged = merge_cli_with_config(args, config)
    validation_errors = validate_config(merged)
    if validation_errors:
        for error in validation_errors:
            print(f"[config] {error}", file=sys.stderr)
        return EXIT_ROOT_ERROR

    try:
        catalog = load_selected_catalog(merged)
    except (InvalidRuleError, UnknownRuleError, FileNotFoundError) as exc:
        print(f"[catalog] {exc}", file=sys.stderr)
        return EXIT_CATALOG_ERROR

    classifier = Classifier()
    if merged.sampling.labels and Path(merged.sampling.labels).exists():
        try:
            classifier.load_labels(merged.sampling.labels)
        except (ValueError, OSError) as exc:
            print(f"[labels] {exc}", file=sys.stderr)
            return EXIT_ROOT_ERROR

    root = args.root or args.path or "."
    options = ScanOptions.from_config(root, merged)
    try:
        result = run_cancellable_scan(options, catalog)
    except RootPathError as exc:
        print(f"[scan] {exc}", file=sys.stderr)
        return EXIT_ROOT_ERROR

    rendered = render(
        result.aggregates,
        classifier.estimate_all(catalog.rule_ids),
        merged.report.output_format,
        catalog=catalog,
        skipped=result.skipped,
        incomplete=result.incomplete,
        files_scanned=result.files_scanned,
        sample_size=result.sample_size,
        seed=result.seed,
    )
    write_report(rendered, merged.report.out)
    print_summary(result)

    timed_out = any(record.reason == "timeout" for record in result.skipped)
    if merged.report.strict and (result.incomplete or timed_out):
        return EXIT_INCOMPLETE
    return EXIT_OK


def run_cancellable_scan(options: ScanOptions, catalog: Catalog) -> ScanResult:
    """Run ``scan`` on a helper thread so Ctrl-C turns into a cancellation."""
    cancel_event = threading.Event()
    outcome: dict[str, object] = {}

    def target() -> None:
        try:
            outcome["result"] = scan(options, catalog, cancel_event=cancel_event)
        except BaseException as exc:  # re-raised on the calling thread
            outcome["error"] = exc

    worker = threading.Thread(target=target, name="govscan-scan", daemon=True)
    worker.start()
    while worker.is_alive():
        try:
            worker.join(0.2)
        except KeyboardInterrupt:
            print("[scan] interrupted; finishing in-flight files", file=sys.stderr)
            cancel_event.set()

    error = outcome.get("error")
    if isinstance(error, BaseException):
        raise error
    result = outcome.get("result")
    if not isinstance(result, ScanResult):
        raise RuntimeError("scan thread finished without a result")
    return result


def load_selected_catalog(config: Config) -> Catalog:
    catalog = load_catalog(config.scan.catalog or default_catalog_path())
    if config.scan.enabled_rules is None and not config.scan.disabled_rules and config.scan.categories is None:
        return catalog
    return catalog.select(
        enabled=config.scan.enabled_rules,
        disabled=config.scan.disabled_rules,
        categories=config.scan.categories,
    )


def run_label(args: argparse.Namespace) -> int:
    try:
        label = parse_label(args.label)
    except ValueError as exc:
        print(f"[labels] {exc}", file=sys.stderr)
        return EXIT_ROOT_ERROR

    classifier = Classifier()
    store = Path(args.labels)
    try:
        if store.exists():
            classifier.load_labels(store)
        fingerprint = (args.repository, args.rule, args.file, args.line, args.column)
        classifier.record_label(fingerprint, label)
        classifier.save_labels(store)
    except (ValueError, OSError) as exc:
        print(f"[labels] {exc}", file=sys.stderr)
        return EXIT_ROOT_ERROR
    print(f"[labels] {args.rule} {args.file}:{args.line} -> {label.value} ({len(classifier)} labels)", file=sys.stderr)
    return EXIT_OK


def run_rules(args: argparse.Namespace) -> int:
    try:
        catalog = load_catalog(args.catalog or default_catalog_path())
    except (InvalidRuleError, FileNotFoundError) as exc:
        print(f"[catalog] {exc}", file=sys.stderr)
        return EXIT_CATALOG_ERROR

    if args.format == "json":
        payload = [
            {
                "id": rule.id,
                "title": rule.title,
                "category": rule.category,
                "severity_tier": rule.severity_tier,
                "multiline": rule.multiline,
                "pattern": rule.pattern,
                "include_globs": list(rule.include_globs),
                "exclude_globs": list(rule.exclude_globs),
            }
            for rule in catalog
        ]
        print(json.dumps(payload, indent=2))
        return EXIT_OK

    for rule in catalog:
        print(f"{rule.id:<28} {rule.category:<24} {rule.severity_tier:<14} {rule.title}")
    return EXIT_OK


def merge_cli_with_config(args: argparse.Namespace, config: Config) -> Config:
    merged = config
    if args.catalog:
        merged.scan.catalog = args.catalog
    if args.include:
        merged.scan.include_globs = list(dict.fromkeys(args.include))
    if args.exclude:
        merged.scan.exclude_globs = list(dict.fromkeys([*merged.scan.exclude_globs, *args.exclude]))
    if args.enable_rule:
        merged.scan.enabled_rules = list(dict.fromkeys([*(merged.scan.enabled_rules or []), *args.enable_rule]))
    if args.disable_rule:
        merged.scan.disabled_rules = list(dict.fromkeys([*merged.scan.disabled_rules, *args.disable_rule]))
    if args.category:
        merged.scan.categories = list(dict.fromkeys(args.category))
    if args.multi_repo:
        merged.scan.multi_repo = True
    if args.no_inline_ignore:
        merged.scan.inline_ignore = False
    if args.threads is not None:
        merged.scan.threads = args.threads
    if args.max_file_size is not None:
        merged.scan.max_file_size = args.max_file_size
    if args.timeout_ms is not None:
        merged.scan.timeout_ms = args.timeout_ms
    if args.window_lines is not None:
        merged.scan.window_lines = args.window_lines
    if args.sample_size is not None:
        merged.sampling.sample_size = args.sample_size
    if args.seed is not None:
        merged.sampling.seed = args.seed
    if args.labels:
        merged.sampling.labels = args.labels
    if args.format:
        merged.report.output_format = args.format
    if args.out:
        merged.report.out = args.out
    if args.strict:
        merged.report.strict = True
    return merged


def print_summary(result: ScanResult) -> None:
    reasons = Counter(record.reason for record in result.skipped)
    line = (
        f"[summary] files={result.files_scanned} findings={len(result.findings)} "
        f"rules_hit={len({finding.rule_id for finding in result.findings})} "
        f"skipped={len(result.skipped)}"
    )
    if reasons:
        line += " (" + ", ".join(f"{reason}={count}" for reason, count in sorted(reasons.items())) + ")"
    if result.incomplete:
        line += " incomplete=true"
    print(line, file=sys.stderr)


if __name__ == "__main__":
    main()
