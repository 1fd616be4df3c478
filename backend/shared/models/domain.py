"""
Pydantic v2 domain models shared across the Sport Sage core.
These are the in-process representations of odds data, NOT ORM models.
"""
from __future__ import annotations

import uuid
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

from shared.models.enums import EventStatus


# ── Base ────────────────────────────────────────────────────────────────
class DomainModel(BaseModel):
    model_config = ConfigDict(from_attributes=True, populate_by_name=True)


# ── Odds ────────────────────────────────────────────────────────────────
class RawOddsRecord(DomainModel):
    """One scraped line for a fixture, exactly as a source reported it.

    Scrapers emit camelCase keys (``homeTeam``, ``homeWin``...); both those
    and the snake_case field names are accepted.
    """
    source: str = ""
    home_team: Optional[str] = Field(default=None, alias="homeTeam")
    away_team: Optional[str] = Field(default=None, alias="awayTeam")
    home_win: Optional[float] = Field(default=None, alias="homeWin")
    draw: Optional[float] = None
    away_win: Optional[float] = Field(default=None, alias="awayWin")
    bookmaker_count: Optional[int] = Field(default=None, alias="bookmakerCount")


class NormalizedOdds(DomainModel):
    """A RawOddsRecord that passed validation for its sport's market type."""
    source: str
    home_team: str
    away_team: str
    home_win: float
    draw: Optional[float] = None
    away_win: float
    bookmaker_count: Optional[int] = None

    @property
    def implied_probability(self) -> float:
        total = 1 / self.home_win + 1 / self.away_win
        if self.draw is not None:
            total += 1 / self.draw
        return total


class Match(DomainModel):
    """Canonical fixture produced by one merge cycle. Replaced, never mutated."""
    model_config = ConfigDict(from_attributes=True, populate_by_name=True, frozen=True)

    home_team: str
    away_team: str
    home_win: float
    draw: Optional[float] = None
    away_win: float
    bookmaker_count: Optional[int] = None
    source: str
    priority: int
    sources: tuple[str, ...] = ()

    @property
    def source_count(self) -> int:
        return len(self.sources)


# ── Lifecycle ───────────────────────────────────────────────────────────
class EventStatusReport(DomainModel):
    """Upstream fixture status as reported by a results feed."""
    event_id: uuid.UUID
    status: EventStatus
    home_score: Optional[int] = None
    away_score: Optional[int] = None
    period: Optional[str] = None
