from __future__ import annotations

from functools import lru_cache
import re
from typing import Iterable


@lru_cache(maxsize=1024)
def compile_glob(glob: str) -> re.Pattern[str]:
    """Translate a path glob into an anchored regular expression.

    ``**`` spans any number of directories, ``*`` and ``?`` never cross a
    ``/``. A glob without a ``/`` matches the basename at any depth.
    """
    pattern = glob.strip()
    if pattern.startswith("./"):
        pattern = pattern[2:]
    if "/" not in pattern.rstrip("/"):
        pattern = "**/" + pattern
    pattern = pattern.rstrip("/") or "**"

    out: list[str] = []
    i = 0
    while i < len(pattern):
        ch = pattern[i]
        if pattern.startswith("**/", i):
            out.append("(?:.*/)?")
            i += 3
        elif pattern.startswith("**", i):
            out.append(".*")
            i += 2
        elif ch == "*":
            out.append("[^/]*")
            i += 1
        elif ch == "?":
            out.append("[^/]")
            i += 1
        elif ch == "[":
            end = pattern.find("]", i + 1)
            if end == -1:
                out.append(re.escape(ch))
                i += 1
                continue
            body = pattern[i + 1 : end]
            if body.startswith("!"):
                body = "^" + body[1:]
            out.append(f"[{body.replace(chr(92), chr(92) * 2)}]")
            i = end + 1
        else:
            out.append(re.escape(ch))
            i += 1
    return re.compile("".join(out) + r"\Z")


def glob_matches(path: str, glob: str) -> bool:
    return compile_glob(glob).match(path) is not None


def matches_any(path: str, globs: Iterable[str]) -> bool:
    return any(glob_matches(path, glob) for glob in globs)


def is_excluded(path: str, exclude_globs: Iterable[str]) -> bool:
    """True when the path, or any directory containing it, matches an exclude glob."""
    globs = tuple(exclude_globs)
    if not globs:
        return False
    parts = path.split("/")
    for end in range(len(parts), 0, -1):
        if matches_any("/".join(parts[:end]), globs):
            return True
    return False


def is_admitted(path: str, include_globs: Iterable[str], exclude_globs: Iterable[str]) -> bool:
    # Exclude wins even when an include glob also matches.
    if is_excluded(path, exclude_globs):
        return False
    return matches_any(path, include_globs)


def excludes_directory(dir_path: str, exclude_globs: Iterable[str]) -> bool:
    """True when an exclude glob matches the directory itself or everything below it."""
    for glob in exclude_globs:
        if glob_matches(dir_path, glob):
            return True
        stripped = glob.rstrip("/")
        if stripped.endswith("/**") and glob_matches(dir_path, stripped[:-3]):
            return True
    return False
