"""Path glob matching for rule and exclude patterns.

Patterns use gitignore wildmatch syntax (via pathspec), matched against POSIX
paths relative to the watched root:
- `*` matches within one path segment, `?` one character, `[...]` a class.
- `**/` may match zero directories, so `src/**/*.rs` matches `src/lib.rs`.
- A pattern without `/` matches at any depth (`*.rs` matches `src/lib.rs`).
- `dir/` and `dir/**` match everything below `dir`.
"""
from __future__ import annotations

from functools import lru_cache
from typing import Iterable, Tuple

import pathspec


def normalize_path(path: str) -> str:
    p = str(path or "").replace("\\", "/").strip()
    while p.startswith("./"):
        p = p[2:]
    return p.lstrip("/")


def _clean_patterns(patterns: Iterable[str]) -> Tuple[str, ...]:
    out = []
    for raw in patterns:
        pat = str(raw or "").strip()
        while pat.startswith("./"):
            pat = pat[2:]
        if pat:
            out.append(pat)
    return tuple(out)


@lru_cache(maxsize=256)
def compile_spec(patterns: Tuple[str, ...]) -> pathspec.PathSpec:
    return pathspec.PathSpec.from_lines("gitwildmatch", patterns)


def glob_match(path: str, pattern: str) -> bool:
    return matches_any(path, (pattern,))


def matches_any(path: str, patterns: Iterable[str]) -> bool:
    cleaned = _clean_patterns(patterns)
    if not cleaned:
        return False
    return compile_spec(cleaned).match_file(normalize_path(path))
