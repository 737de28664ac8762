"""
Team name canonicalization for cross-feed comparison.

The live hub and the prediction endpoint spell the same club differently
("FC Bayern München II" vs "Bayern 2"). normalize_team_name() reduces both
to one comparison key:

    1. transliterate + NFKD accent removal (ASCII only)
    2. lowercase, trim, collapse whitespace
    3. drop everything but letters, digits, spaces and hyphens
    4. drop one leading and one trailing club token (fc, sc, sv, ...)
    5. reserve-team suffixes (ii, iii, 2nd, 2) become " 2"
    6. collapse whitespace again
    7. known irregular aliases override the computed key

The function is pure and total: empty or None input yields "".
"""
from __future__ import annotations

import re
import unicodedata
from functools import lru_cache

_TRANSLIT_MAP: dict[str, str] = {
    "ß": "ss",
    "ø": "o",
    "æ": "ae",
    "œ": "oe",
    "đ": "d",
    "ł": "l",
    "ı": "i",
}
_PUNCT_RE = re.compile(r"[^a-z0-9\s-]")
_SPACE_RE = re.compile(r"\s+")
_PARENS_RE = re.compile(r"\([^)]*\)")
_RESERVE_SUFFIX_RE = re.compile(r"\s+(?:i{1,3}|2nd|2)$")

CLUB_TOKENS: frozenset[str] = frozenset({"fc", "sc", "sv", "tsv", "vfb", "fsv", "afc", "cf"})

# Keyed on the computed form, not the raw input
TEAM_ALIASES: dict[str, str] = {
    "1 fc magdeburg 2": "magdeburg 2",
    "1 fc magdeburg": "magdeburg",
    "1 fc koln": "koln",
    "1 fc union berlin": "union berlin",
    "1 fsv mainz 05": "mainz 05",
    "bayern munchen": "bayern munich",
    "bayern munchen 2": "bayern munich 2",
    "man utd": "manchester united",
    "man united": "manchester united",
    "man city": "manchester city",
    "paris saint-germain": "psg",
    "paris st-germain": "psg",
    "paris sg": "psg",
    "inter milan": "inter",
    "internazionale": "inter",
    "wolves": "wolverhampton",
    "spurs": "tottenham",
    "tottenham hotspur": "tottenham",
}


def _fold(text: str) -> str:
    for src, dst in _TRANSLIT_MAP.items():
        text = text.replace(src, dst)
    text = unicodedata.normalize("NFKD", text)
    return text.encode("ascii", "ignore").decode("ascii")


def _strip_club_tokens(text: str) -> str:
    tokens = text.split(" ")
    if len(tokens) > 1 and tokens[0] in CLUB_TOKENS:
        tokens = tokens[1:]
    if len(tokens) > 1 and tokens[-1] in CLUB_TOKENS:
        tokens = tokens[:-1]
    return " ".join(tokens)


@lru_cache(maxsize=4096)
def normalize_team_name(name: str | None) -> str:
    """Return the comparison key for a team name."""
    if not name:
        return ""

    text = _fold(str(name).lower()).strip()
    text = _SPACE_RE.sub(" ", text)
    text = _PUNCT_RE.sub("", text)
    text = _SPACE_RE.sub(" ", text).strip()
    if not text:
        return ""

    text = _strip_club_tokens(text)
    text = _RESERVE_SUFFIX_RE.sub(" 2", text)
    text = _SPACE_RE.sub(" ", text).strip()

    return TEAM_ALIASES.get(text, text)


def clean_display_name(name: str | None) -> str:
    """Strip parenthesised qualifiers: "Arsenal (Eng)" -> "Arsenal"."""
    if not name:
        return ""
    return _SPACE_RE.sub(" ", _PARENS_RE.sub("", str(name))).strip()
