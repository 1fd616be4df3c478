"""
Fuzzy fixture matching across odds sources.
"""
from __future__ import annotations

from typing import Protocol

from rapidfuzz.distance import Levenshtein

from ingest.normalization.team_names import normalize_team_name

DEFAULT_MATCH_THRESHOLD = 0.75


class HasTeams(Protocol):
    home_team: str
    away_team: str


def string_similarity(a: str, b: str) -> float:
    """Levenshtein similarity in [0, 1], relative to the longer string."""
    if a == b:
        return 1.0
    if not a or not b:
        return 0.0
    longer = max(len(a), len(b))
    return (longer - Levenshtein.distance(a, b)) / longer


def is_same_match(a: HasTeams, b: HasTeams, threshold: float = DEFAULT_MATCH_THRESHOLD) -> bool:
    """
    True when two records describe the same fixture.

    Both sides must clear the threshold, either in the reported order or with
    home/away swapped (some sources list the away side first).
    """
    home_a = normalize_team_name(a.home_team)
    away_a = normalize_team_name(a.away_team)
    home_b = normalize_team_name(b.home_team)
    away_b = normalize_team_name(b.away_team)

    if (
        string_similarity(home_a, home_b) >= threshold
        and string_similarity(away_a, away_b) >= threshold
    ):
        return True
    return (
        string_similarity(home_a, away_b) >= threshold
        and string_similarity(away_a, home_b) >= threshold
    )
