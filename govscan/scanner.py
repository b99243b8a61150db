from __future__ import annotations

from concurrent.futures import FIRST_COMPLETED, Future, ThreadPoolExecutor, wait
from dataclasses import dataclass, field
from itertools import islice
import logging
from pathlib import Path
import threading
import time
from typing import Iterator

from govscan.aggregator import Aggregator
from govscan.catalog import Catalog
from govscan.config import (
    DEFAULT_BATCH_SIZE,
    DEFAULT_EXCLUDE_GLOBS,
    DEFAULT_INCLUDE_GLOBS,
    DEFAULT_MAX_EXCERPT_LENGTH,
    DEFAULT_MAX_FILE_SIZE,
    DEFAULT_SAMPLE_SIZE,
    DEFAULT_SEED,
    DEFAULT_TIMEOUT_MS,
    DEFAULT_WINDOW_LINES,
    Config,
    default_threads,
)
from govscan.errors import MatchTimeoutError, WalkError
from govscan.matcher import match
from govscan.models import Finding, Rule, ScanResult, SkipRecord
from govscan.walker import iter_repositories, read_text, relative_posix, walk

logger = logging.getLogger("govscan.scanner")


@dataclass(slots=True)
class ScanOptions:
    root: str
    include_globs: list[str] = field(default_factory=lambda: DEFAULT_INCLUDE_GLOBS.copy())
    exclude_globs: list[str] = field(default_factory=lambda: DEFAULT_EXCLUDE_GLOBS.copy())
    max_file_size: int = DEFAULT_MAX_FILE_SIZE
    timeout_ms: int = DEFAULT_TIMEOUT_MS
    threads: int = field(default_factory=default_threads)
    batch_size: int = DEFAULT_BATCH_SIZE
    sample_size: int = DEFAULT_SAMPLE_SIZE
    seed: int = DEFAULT_SEED
    window_lines: int = DEFAULT_WINDOW_LINES
    max_excerpt_length: int = DEFAULT_MAX_EXCERPT_LENGTH
    multi_repo: bool = False
    inline_ignore: bool = True

    @classmethod
    def from_config(cls, root: str, config: Config) -> ScanOptions:
        return cls(
            root=root,
            include_globs=list(config.scan.include_globs),
            exclude_globs=list(config.scan.exclude_globs),
            max_file_size=config.scan.max_file_size,
            timeout_ms=config.scan.timeout_ms,
            threads=config.scan.threads,
            batch_size=config.scan.batch_size,
            sample_size=config.sampling.sample_size,
            seed=config.sampling.seed,
            window_lines=config.scan.window_lines,
            max_excerpt_length=config.scan.max_excerpt_length,
            multi_repo=config.scan.multi_repo,
            inline_ignore=config.scan.inline_ignore,
        )


@dataclass(slots=True)
class _WorkItem:
    repository_id: str
    path: Path
    relative: str


@dataclass(slots=True)
class _BatchResult:
    findings: list[Finding]
    skipped: list[SkipRecord]
    files_scanned: int
    cancelled: bool = False


def _iter_work(options: ScanOptions, skipped: list[SkipRecord]) -> Iterator[_WorkItem]:
    for repository_id, repo_root in iter_repositories(options.root, options.multi_repo):
        base = repo_root.parent if repo_root.is_file() else repo_root
        prefix = f"{repository_id}/" if options.multi_repo else ""
        repo_skipped: list[SkipRecord] = []
        for file_path in walk(
            repo_root,
            options.include_globs,
            options.exclude_globs,
            max_file_size=options.max_file_size,
            skipped=repo_skipped,
        ):
            skipped.extend(SkipRecord(prefix + record.path, record.reason, record.detail) for record in repo_skipped)
            repo_skipped.clear()
            yield _WorkItem(repository_id=repository_id, path=file_path, relative=relative_posix(file_path, base))
        skipped.extend(SkipRecord(prefix + record.path, record.reason, record.detail) for record in repo_skipped)


def scan_file(item: _WorkItem, rules: list[Rule], options: ScanOptions) -> list[Finding]:
    content = read_text(item.path)
    deadline = None
    if options.timeout_ms > 0:
        deadline = time.monotonic() + options.timeout_ms / 1000.0
    return match(
        item.relative,
        content,
        rules,
        repository_id=item.repository_id,
        window_lines=options.window_lines,
        max_excerpt_length=options.max_excerpt_length,
        deadline=deadline,
        budget_ms=options.timeout_ms,
        inline_ignore=options.inline_ignore,
    )


def _scan_batch(
    batch: list[_WorkItem],
    rules: list[Rule],
    options: ScanOptions,
    cancel_event: threading.Event,
    prefix_for: dict[str, str],
) -> _BatchResult:
    findings: list[Finding] = []
    skipped: list[SkipRecord] = []
    scanned = 0
    for item in batch:
        # Files already started always finish; only untouched ones are dropped.
        if cancel_event.is_set():
            return _BatchResult(findings=findings, skipped=skipped, files_scanned=scanned, cancelled=True)
        display = prefix_for.get(item.repository_id, "") + item.relative
        try:
            file_findings = scan_file(item, rules, options)
        except WalkError as exc:
            logger.warning("Skipping unreadable file %s: %s", display, exc.reason, extra={"path": display})
            skipped.append(SkipRecord(path=display, reason="unreadable", detail=exc.reason))
            continue
        except MatchTimeoutError:
            logger.warning(
                "Abandoned %s after %dms", display, options.timeout_ms, extra={"path": display, "reason": "timeout"}
            )
            skipped.append(SkipRecord(path=display, reason="timeout", detail=f"exceeded {options.timeout_ms}ms"))
            continue
        findings.extend(file_findings)
        scanned += 1
    return _BatchResult(findings=findings, skipped=skipped, files_scanned=scanned)


def _batches(items: Iterator[_WorkItem], size: int) -> Iterator[list[_WorkItem]]:
    while True:
        batch = list(islice(items, size))
        if not batch:
            return
        yield batch


def scan(options: ScanOptions, catalog: Catalog, *, cancel_event: threading.Event | None = None) -> ScanResult:
    """Scan ``options.root`` with every rule in ``catalog``.

    The walker output is cut into batches that run on a thread pool. Batch
    results are merged on the calling thread only, and the final order does
    not depend on which worker finished first. Setting ``cancel_event`` stops
    dispatching; in-flight files complete and the result is marked
    incomplete.
    """
    cancel = cancel_event or threading.Event()
    rules = catalog.rules
    aggregator = Aggregator(
        sample_size=options.sample_size,
        seed=options.seed,
        multiline_rules=catalog.multiline_rule_ids,
    )
    walk_skipped: list[SkipRecord] = []
    batch_skipped: list[SkipRecord] = []
    files_scanned = 0
    incomplete = False

    repositories = list(iter_repositories(options.root, options.multi_repo))
    prefix_for = {repository_id: f"{repository_id}/" for repository_id, _ in repositories} if options.multi_repo else {}
    work = _iter_work(options, walk_skipped)
    max_in_flight = max(1, options.threads) * 2

    logger.info(
        "Scanning %s with %d rules (threads=%d, seed=%d)", options.root, len(rules), options.threads, options.seed
    )
    with ThreadPoolExecutor(max_workers=max(1, options.threads), thread_name_prefix="govscan") as pool:
        pending: set[Future[_BatchResult]] = set()
        batches = _batches(work, max(1, options.batch_size))
        exhausted = False
        while True:
            while not exhausted and not cancel.is_set() and len(pending) < max_in_flight:
                batch = next(batches, None)
                if batch is None:
                    exhausted = True
                    break
                pending.add(pool.submit(_scan_batch, batch, rules, options, cancel, prefix_for))
            if not pending:
                break
            done, pending = wait(pending, return_when=FIRST_COMPLETED)
            for future in done:
                result = future.result()
                aggregator.add_batch(result.findings)
                batch_skipped.extend(result.skipped)
                files_scanned += result.files_scanned
                incomplete = incomplete or result.cancelled
        if cancel.is_set() and not exhausted and next(batches, None) is not None:
            incomplete = True

    if incomplete:
        logger.warning("Scan cancelled after %d files; report is incomplete", files_scanned)

    skipped = sorted(walk_skipped + batch_skipped, key=lambda record: (record.path, record.reason))
    logger.info("Scanned %d files, %d skipped", files_scanned, len(skipped))
    return ScanResult(
        findings=aggregator.findings(),
        aggregates=aggregator.results(),
        skipped=skipped,
        files_scanned=files_scanned,
        incomplete=incomplete,
        seed=options.seed,
        sample_size=options.sample_size,
    )
