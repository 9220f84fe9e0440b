from __future__ import annotations

import re

_MARKERS = (
    re.compile(r"^\s{0,3}#{1,6}\s+\S", re.MULTILINE),  # heading
    re.compile(r"(\*\*|__)[^\s*_].*?\1"),  # strong emphasis
    re.compile(r"(?<![\w*])\*[^\s*][^*\n]*\*(?![\w*])"),  # emphasis
    re.compile(r"^\s*(```|~~~)", re.MULTILINE),  # code fence
    re.compile(r"^\s*\|.*\|\s*$", re.MULTILINE),  # table row
    re.compile(r"^\s*([-*+]|\d+[.)])\s+\S", re.MULTILINE),  # list bullet
)


def looks_like_markdown(text: str) -> bool:
    """True when an Analysis/QueryResponse payload should be rendered as rich text."""
    s = text or ""
    return any(p.search(s) for p in _MARKERS)
