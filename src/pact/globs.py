"""Minimal glob matching for test discovery.

Only two wildcards exist: `*` matches within one path segment, `**` matches
across segments. Everything else is literal. Paths are relative and use `/`.
A leading `**/` may match nothing, so `**/*.test.ts` also matches a root-level
`a.test.ts`. Elsewhere `**` is just any run of characters, so
`src/**/a.test.ts` needs at least one directory between the two.
"""

from __future__ import annotations

import re
from collections.abc import Iterable
from functools import lru_cache


@lru_cache(maxsize=256)
def glob_to_regex(pattern: str) -> re.Pattern[str]:
    parts: list[str] = []
    i = 0
    while i < len(pattern):
        if i == 0 and pattern.startswith("**/"):
            parts.append("(?:.*/)?")
            i += 3
        elif pattern.startswith("**", i):
            parts.append(".*")
            i += 2
        elif pattern[i] == "*":
            parts.append("[^/]*")
            i += 1
        else:
            parts.append(re.escape(pattern[i]))
            i += 1
    return re.compile("".join(parts))


def matches(path: str, pattern: str) -> bool:
    return glob_to_regex(pattern).fullmatch(path) is not None


def matches_any(path: str, patterns: Iterable[str]) -> bool:
    return any(matches(path, p) for p in patterns)
