"""
Odds validation boundary.

Every scraped record passes through ``validate_odds`` before it can reach the
merge engine. Rejections are expected (scrapers misread pages all the time),
so they are logged at debug and never raised.
"""
from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Optional

from shared.config import Settings
from shared.models.domain import NormalizedOdds, RawOddsRecord
from shared.models.enums import MarketType
from shared.utils.logging import get_logger

logger = get_logger(__name__)

SPORT_MARKET_TYPES: dict[str, MarketType] = {
    "football": MarketType.THREE_WAY,
    "soccer": MarketType.THREE_WAY,
    "basketball": MarketType.TWO_WAY,
    "tennis": MarketType.TWO_WAY,
    "baseball": MarketType.TWO_WAY,
    "hockey": MarketType.TWO_WAY,
    "american_football": MarketType.TWO_WAY,
}


def market_type_for(sport_slug: str) -> MarketType:
    return SPORT_MARKET_TYPES.get(sport_slug, MarketType.THREE_WAY)


@dataclass(frozen=True)
class OddsLimits:
    """Sanity bounds for a scraped line. Heuristic; tune from data."""
    min_price: float = 1.01
    max_price: float = 1000.0
    min_implied_probability: float = 0.90
    max_implied_probability: float = 1.50
    min_name_length: int = 2
    max_name_length: int = 100

    @classmethod
    def from_settings(cls, settings: Settings) -> "OddsLimits":
        return cls(
            min_price=settings.odds_min_price,
            max_price=settings.odds_max_price,
            min_implied_probability=settings.odds_min_implied_probability,
            max_implied_probability=settings.odds_max_implied_probability,
            min_name_length=settings.team_name_min_length,
            max_name_length=settings.team_name_max_length,
        )


DEFAULT_LIMITS = OddsLimits()


def _reject(record: RawOddsRecord, reason: str, **context: object) -> None:
    logger.debug(
        "odds_rejected",
        reason=reason,
        source=record.source,
        home_team=record.home_team,
        away_team=record.away_team,
        **context,
    )
    return None


def validate_odds(
    record: RawOddsRecord,
    sport_slug: str,
    limits: OddsLimits | None = None,
) -> Optional[NormalizedOdds]:
    """
    Check one record against its sport's market shape and the sanity bounds.

    Returns the accepted record as NormalizedOdds, or None when rejected.
    A 2-way market has no draw outcome, so any scraped draw price is dropped
    before checking. A 3-way record without a draw is accepted and the
    implied probability is taken over the prices that are present.
    """
    limits = limits or DEFAULT_LIMITS
    market = market_type_for(sport_slug)

    home_team = (record.home_team or "").strip()
    away_team = (record.away_team or "").strip()
    if not home_team or not away_team:
        return _reject(record, "missing_team_name")
    for name in (home_team, away_team):
        if not limits.min_name_length <= len(name) <= limits.max_name_length:
            return _reject(record, "team_name_length", length=len(name))

    if record.home_win is None or record.away_win is None:
        return _reject(record, "missing_price")

    draw = record.draw if market is MarketType.THREE_WAY else None
    prices = {"home_win": record.home_win, "away_win": record.away_win}
    if draw is not None:
        prices["draw"] = draw

    for field, price in prices.items():
        if not math.isfinite(price) or not limits.min_price <= price <= limits.max_price:
            return _reject(record, "price_out_of_range", field=field, price=price)

    odds = NormalizedOdds(
        source=record.source,
        home_team=home_team,
        away_team=away_team,
        home_win=record.home_win,
        draw=draw,
        away_win=record.away_win,
        bookmaker_count=record.bookmaker_count,
    )
    implied = odds.implied_probability
    if not limits.min_implied_probability <= implied <= limits.max_implied_probability:
        return _reject(record, "implied_probability_out_of_range", implied=round(implied, 4))
    return odds
