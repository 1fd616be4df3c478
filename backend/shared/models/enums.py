"""Domain enumerations for the Sport Sage core."""
from __future__ import annotations

from enum import Enum


class MarketType(str, Enum):
    """Shape of the match-result market for a sport."""
    TWO_WAY = "2way"
    THREE_WAY = "3way"


class EventStatus(str, Enum):
    SCHEDULED = "scheduled"
    LIVE = "live"
    FINISHED = "finished"
    CANCELLED = "cancelled"
    POSTPONED = "postponed"

    @property
    def is_terminal(self) -> bool:
        return self in (EventStatus.FINISHED, EventStatus.CANCELLED)

    @property
    def voids_predictions(self) -> bool:
        return self in (EventStatus.CANCELLED, EventStatus.POSTPONED)


class PredictionStatus(str, Enum):
    PENDING = "pending"
    WON = "won"
    LOST = "lost"
    VOID = "void"
    CASHOUT = "cashout"


class AuditAction(str, Enum):
    CREATE = "create"
    UPDATE = "update"
    DELETE = "delete"
    FLAG = "flag"
    UNFLAG = "unflag"
    HOLD = "hold"
    RELEASE = "release"
    SETTLE = "settle"
    VOID = "void"


class TransactionType(str, Enum):
    PREDICTION_STAKE = "prediction_stake"
    PREDICTION_WIN = "prediction_win"
    PREDICTION_REFUND = "prediction_refund"


class Currency(str, Enum):
    COINS = "coins"
    STARS = "stars"
    GEMS = "gems"
