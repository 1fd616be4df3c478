"""
Merge/deduplication of per-source odds into canonical matches.

Records are validated, ordered by source trust, then folded one by one into
the result list:

- no existing match        -> appended
- strictly better priority -> replaces the existing match outright
- equal priority           -> merged (best price per outcome, counts summed)
- worse priority           -> discarded

The scan is linear per record. Batches are one sport from a handful of
sources, so the quadratic cost stays small.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Iterable, Mapping, Optional

from ingest.matching.similarity import DEFAULT_MATCH_THRESHOLD, is_same_match
from ingest.validation.odds import OddsLimits, validate_odds
from shared.config import Settings, get_settings
from shared.models.domain import Match, NormalizedOdds, RawOddsRecord
from shared.utils.logging import get_logger

logger = get_logger(__name__)

DEFAULT_SOURCE_PRIORITY = 10


@dataclass
class MergeResult:
    """Matches from one reconcile pass plus what happened to the inputs."""

    matches: list[Match] = field(default_factory=list)
    records: int = 0
    rejected: int = 0

    @property
    def accepted(self) -> int:
        return self.records - self.rejected


def get_source_priorities(settings: Settings | None = None) -> dict[str, int]:
    """Source trust ranking from configuration. Lower number wins."""
    settings = settings or get_settings()
    return dict(settings.source_priorities)


def _max_optional(a: Optional[float], b: Optional[float]) -> Optional[float]:
    present = [v for v in (a, b) if v is not None]
    return max(present) if present else None


def _to_match(odds: NormalizedOdds, priority: int) -> Match:
    return Match(
        home_team=odds.home_team,
        away_team=odds.away_team,
        home_win=odds.home_win,
        draw=odds.draw,
        away_win=odds.away_win,
        bookmaker_count=odds.bookmaker_count,
        source=odds.source,
        priority=priority,
        sources=(odds.source,),
    )


def _combine(existing: Match, odds: NormalizedOdds) -> Match:
    """Equal-priority merge. Identity fields stay with the first-seen record."""
    sources = existing.sources
    if odds.source not in sources:
        sources = sources + (odds.source,)
    return existing.model_copy(
        update={
            "home_win": max(existing.home_win, odds.home_win),
            "away_win": max(existing.away_win, odds.away_win),
            "draw": _max_optional(existing.draw, odds.draw),
            "bookmaker_count": (existing.bookmaker_count or 1) + (odds.bookmaker_count or 1),
            "sources": sources,
        }
    )


def reconcile_odds(
    records: Iterable[RawOddsRecord],
    sport_slug: str,
    source_priorities: Mapping[str, int],
    *,
    default_priority: int = DEFAULT_SOURCE_PRIORITY,
    threshold: float = DEFAULT_MATCH_THRESHOLD,
    limits: OddsLimits | None = None,
) -> MergeResult:
    """
    Reconcile one sport's raw odds into canonical matches.

    Output order is first-seen order of each fixture after the priority sort.
    Invalid records never reach the fold and are counted in ``rejected``.
    No odds value is ever invented: every price in the output came from some
    accepted input record.
    """
    records = list(records)

    def priority_of(record: RawOddsRecord) -> int:
        return source_priorities.get(record.source, default_priority)

    # sorted() is stable, so sources of equal priority keep input order
    ordered = sorted(records, key=priority_of)

    result = MergeResult(records=len(records))
    matches = result.matches
    for record in ordered:
        odds = validate_odds(record, sport_slug, limits)
        if odds is None:
            result.rejected += 1
            continue
        priority = priority_of(record)

        index = next(
            (i for i, m in enumerate(matches) if is_same_match(m, odds, threshold)),
            None,
        )
        if index is None:
            matches.append(_to_match(odds, priority))
            continue

        existing = matches[index]
        if priority < existing.priority:
            matches[index] = _to_match(odds, priority)
        elif priority == existing.priority:
            matches[index] = _combine(existing, odds)

    logger.info(
        "odds_merged",
        sport=sport_slug,
        records=result.records,
        rejected=result.rejected,
        matches=len(matches),
    )
    return result


def merge_odds(
    records: Iterable[RawOddsRecord],
    sport_slug: str,
    source_priorities: Mapping[str, int],
    *,
    default_priority: int = DEFAULT_SOURCE_PRIORITY,
    threshold: float = DEFAULT_MATCH_THRESHOLD,
    limits: OddsLimits | None = None,
) -> list[Match]:
    """Canonical matches only; see ``reconcile_odds``."""
    return reconcile_odds(
        records,
        sport_slug,
        source_priorities,
        default_priority=default_priority,
        threshold=threshold,
        limits=limits,
    ).matches
