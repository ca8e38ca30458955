"""OCR text cleanup and fuzzy keyword matching."""

from __future__ import annotations

import re
from typing import Iterable

_NOISE_RE = re.compile(r"[^\w\s.\-]")
# Common seven-segment / OCR letter-for-digit confusions.
_CONFUSIONS = str.maketrans({"O": "0", "l": "1", "S": "5"})

MAX_KEYWORD_DISTANCE = 2


def clean_text(text: str | None, *, uppercase: bool = True) -> str:
    if not text:
        return ""
    cleaned = _NOISE_RE.sub("", text).translate(_CONFUSIONS).strip()
    return cleaned.upper() if uppercase else cleaned


def levenshtein(a: str, b: str) -> int:
    if a == b:
        return 0
    if not a:
        return len(b)
    if not b:
        return len(a)
    prev = list(range(len(b) + 1))
    for i, ca in enumerate(a, start=1):
        cur = [i]
        for j, cb in enumerate(b, start=1):
            cost = 0 if ca == cb else 1
            cur.append(min(prev[j] + 1, cur[j - 1] + 1, prev[j - 1] + cost))
        prev = cur
    return prev[-1]


def match_keyword(
    text: str,
    keywords: Iterable[str],
    *,
    case_sensitive: bool = False,
    max_distance: int = MAX_KEYWORD_DISTANCE,
) -> str | None:
    """Return the first keyword contained in ``text`` or within edit distance of it.

    Keywords go through the same cleanup as the text so a configured "Cycling"
    still matches after the l->1 substitution.
    """
    if not text:
        return None
    hay = text if case_sensitive else text.lower()
    for keyword in keywords:
        needle = clean_text(keyword, uppercase=not case_sensitive)
        if not needle:
            continue
        if not case_sensitive:
            needle = needle.lower()
        if needle in hay or levenshtein(hay, needle) <= max_distance:
            return keyword
    return None


__all__ = ["clean_text", "levenshtein", "match_keyword", "MAX_KEYWORD_DISTANCE"]
