"""
Levenshtein distance for last-resort fuzzy team matching.

Callers pass already-normalized names; the metric itself is plain
unit-cost insert/delete/substitute.
"""
from __future__ import annotations

from rapidfuzz.distance import Levenshtein


def edit_distance(a: str, b: str) -> int:
    """Classic Levenshtein distance; edit_distance(x, x) == 0."""
    return Levenshtein.distance(a or "", b or "")


def within_distance(a: str, b: str, max_distance: int) -> bool:
    """True when the two strings are at most max_distance edits apart.

    Uses the score cutoff so long unrelated names bail out early.
    """
    if max_distance < 0:
        return False
    return Levenshtein.distance(a or "", b or "", score_cutoff=max_distance) <= max_distance
