"""
Team name canonicalization used for cross-source fixture matching.

Bookmakers disagree on how they spell a club: "Manchester United FC",
"Man Utd" and "Manchester Utd" are all the same side. The normalized form
drops club affixes and punctuation so the similarity matcher only sees the
distinctive part of the name.
"""
from __future__ import annotations

import re
import unicodedata
from functools import lru_cache
from typing import Optional

# Club-type prefixes/suffixes carried by one source and not another.
CLUB_AFFIXES: tuple[str, ...] = (
    "fc", "sc", "cf", "afc", "rfc", "ac", "as", "ss", "us", "cd", "ud", "sd", "rc",
    "real", "atletico", "athletic", "dynamo",
)

# Descriptive words that only some sources keep.
GENERIC_WORDS: tuple[str, ...] = (
    "city", "town", "wanderers", "rovers", "albion", "argyle", "forest", "hotspur", "inter",
)

# Short forms seen on bookmaker pages, expanded before affix removal.
ABBREVIATIONS: dict[str, str] = {
    "man": "manchester",
    "nottm": "nottingham",
    "spurs": "tottenham",
    "wolves": "wolverhampton",
    "sheff": "sheffield",
    "united": "utd",
}

_AFFIX_RE = re.compile(r"\b(?:" + "|".join(CLUB_AFFIXES + GENERIC_WORDS) + r")\b")
_ABBREV_RE = re.compile(r"\b(?:" + "|".join(ABBREVIATIONS) + r")\b")
_SEPARATOR_RE = re.compile(r"[-/_]")
_PUNCT_RE = re.compile(r"[^\w\s]")
_SPACE_RE = re.compile(r"\s+")


def _fold_accents(value: str) -> str:
    decomposed = unicodedata.normalize("NFKD", value)
    return "".join(ch for ch in decomposed if not unicodedata.combining(ch))


@lru_cache(maxsize=4096)
def _normalize(name: str) -> str:
    value = _fold_accents(name).lower()
    value = _SEPARATOR_RE.sub(" ", value)
    value = _PUNCT_RE.sub("", value)
    value = _ABBREV_RE.sub(lambda m: ABBREVIATIONS[m.group(0)], value)
    value = _AFFIX_RE.sub(" ", value)
    return _SPACE_RE.sub(" ", value).strip()


def normalize_team_name(name: Optional[str]) -> str:
    """
    Reduce a free-text team name to its canonical matching key.

    >>> normalize_team_name("Arsenal FC")
    'arsenal'
    >>> normalize_team_name("Nottingham Forest")
    'nottingham'
    >>> normalize_team_name("Man Utd")
    'manchester utd'
    """
    if not name:
        return ""
    return _normalize(name)
