"""Glob matching over POSIX paths relative to the indexed root."""

from __future__ import annotations

import re
from functools import lru_cache
from typing import Iterable, Pattern


@lru_cache(maxsize=512)
def glob_to_regex(pattern: str) -> Pattern[str]:
    """Compile a glob into an anchored regex.

    ``**/`` matches zero or more directories, ``**`` anything, ``*`` anything
    within one path segment and ``?`` a single non-separator character.
    """
    out = []
    i = 0
    while i < len(pattern):
        ch = pattern[i]
        if ch == "*":
            if pattern.startswith("**/", i):
                out.append("(?:.*/)?")
                i += 3
                continue
            if pattern.startswith("**", i):
                out.append(".*")
                i += 2
                continue
            out.append("[^/]*")
        elif ch == "?":
            out.append("[^/]")
        else:
            out.append(re.escape(ch))
        i += 1
    return re.compile("".join(out) + r"\Z")


def glob_match(path: str, pattern: str) -> bool:
    """Match *path* against *pattern*; slash-free patterns also match the basename."""
    if glob_to_regex(pattern).match(path):
        return True
    if "/" not in pattern:
        return bool(glob_to_regex(pattern).match(path.rsplit("/", 1)[-1]))
    return False


def matches_any(path: str, patterns: Iterable[str]) -> bool:
    return any(glob_match(path, p) for p in patterns)


def path_matches(path: str, target: str) -> bool:
    """True if *path* equals *target*, lives under the directory *target*, or matches it as a glob."""
    prefix = target.rstrip("/")
    if path == prefix or path.startswith(prefix + "/"):
        return True
    return glob_match(path, target)
