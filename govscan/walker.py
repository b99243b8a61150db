from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Iterator

from govscan.errors import RootPathError, WalkError
from govscan.globs import excludes_directory, is_admitted
from govscan.models import SkipRecord

logger = logging.getLogger("govscan.walker")

BINARY_SNIFF_BYTES = 8192


def relative_posix(path: Path, root: Path) -> str:
    try:
        return path.relative_to(root).as_posix()
    except ValueError:
        return path.as_posix()


def walk(
    root: str | Path,
    include_globs: tuple[str, ...] | list[str],
    exclude_globs: tuple[str, ...] | list[str] = (),
    *,
    max_file_size: int = 0,
    binary_sniff_bytes: int = BINARY_SNIFF_BYTES,
    skipped: list[SkipRecord] | None = None,
) -> Iterator[Path]:
    """Yield candidate files under ``root`` in a stable order.

    Every call starts a fresh enumeration. Files that are too large, binary
    or unreadable are not yielded; when ``skipped`` is given a SkipRecord is
    appended for each of them. ``max_file_size`` of 0 disables the size cap.
    """
    root_path = Path(root)
    if root_path.is_file():
        candidates: Iterator[Path] = iter([root_path])
        base = root_path.parent
    else:
        candidates = _iter_tree(root_path, exclude_globs, skipped)
        base = root_path

    for file_path in candidates:
        relative = relative_posix(file_path, base)
        if not is_admitted(relative, include_globs, exclude_globs):
            continue
        try:
            reason = _skip_reason(file_path, max_file_size, binary_sniff_bytes)
        except WalkError as exc:
            logger.warning("Skipping unreadable path %s: %s", relative, exc.reason, extra={"path": relative})
            if skipped is not None:
                skipped.append(SkipRecord(path=relative, reason="unreadable", detail=exc.reason))
            continue
        if reason is not None:
            logger.debug("Skipping %s (%s)", relative, reason[0], extra={"path": relative, "reason": reason[0]})
            if skipped is not None:
                skipped.append(SkipRecord(path=relative, reason=reason[0], detail=reason[1]))
            continue
        yield file_path


def _iter_tree(
    root: Path,
    exclude_globs: tuple[str, ...] | list[str],
    skipped: list[SkipRecord] | None = None,
) -> Iterator[Path]:
    def on_error(exc: OSError) -> None:
        relative = relative_posix(Path(exc.filename), root) if exc.filename else "."
        detail = exc.strerror or str(exc)
        logger.warning("Skipping unreadable directory %s: %s", relative, detail, extra={"path": relative})
        if skipped is not None:
            skipped.append(SkipRecord(path=relative, reason="unreadable", detail=detail))

    for dirpath, dirnames, filenames in os.walk(root, topdown=True, onerror=on_error, followlinks=False):
        dir_path = Path(dirpath)
        dirnames[:] = sorted(
            name for name in dirnames if not excludes_directory(relative_posix(dir_path / name, root), exclude_globs)
        )
        for filename in sorted(filenames):
            file_path = dir_path / filename
            if file_path.is_symlink():
                continue
            yield file_path


def _skip_reason(path: Path, max_file_size: int, binary_sniff_bytes: int) -> tuple[str, str] | None:
    try:
        size = path.stat().st_size
    except OSError as exc:
        raise WalkError(str(path), exc.strerror or str(exc)) from exc
    if max_file_size > 0 and size > max_file_size:
        return ("too_large", f"{size} bytes > {max_file_size}")
    if binary_sniff_bytes > 0 and size > 0:
        try:
            with path.open("rb") as fh:
                head = fh.read(binary_sniff_bytes)
        except OSError as exc:
            raise WalkError(str(path), exc.strerror or str(exc)) from exc
        if b"\x00" in head:
            return ("binary", "null byte in leading content")
    return None


def read_text(path: Path) -> str:
    try:
        return path.read_text(encoding="utf-8", errors="replace")
    except OSError as exc:
        raise WalkError(str(path), exc.strerror or str(exc)) from exc


def iter_repositories(root: str | Path, multi_repo: bool = False) -> Iterator[tuple[str, Path]]:
    """Yield ``(repository_id, path)`` pairs for a root or a corpus of repositories."""
    root_path = Path(root)
    if not root_path.exists():
        raise RootPathError(f"Scan root not found: {root_path}")
    if not os.access(root_path, os.R_OK):
        raise RootPathError(f"Scan root is not readable: {root_path}")
    if not multi_repo or root_path.is_file():
        yield (root_path.resolve().name, root_path)
        return
    try:
        children = sorted(child for child in root_path.iterdir() if child.is_dir() and not child.is_symlink())
    except OSError as exc:
        raise RootPathError(f"Unable to list corpus root {root_path}: {exc}") from exc
    for child in children:
        yield (child.name, child)
