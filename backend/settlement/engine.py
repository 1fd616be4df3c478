"""
Auto-void engine.

Finds cancelled or postponed events that still have pending predictions,
voids each prediction and refunds its stake, then writes one audit entry per
event. The void, the balance credit and the ledger row for a prediction are a
single database transaction; the void is a conditional claim on
``status = 'pending'``, so a prediction is refunded at most once no matter
how many runs overlap.
"""
from __future__ import annotations

import asyncio
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Optional

from sqlalchemy import exists, func, select, update

from shared.config import Settings, get_settings
from shared.models.enums import Currency, EventStatus, PredictionStatus, TransactionType
from shared.models.orm import EventORM, PredictionORM, TransactionORM, UserORM
from shared.utils.database import DatabaseManager
from shared.utils.logging import get_logger
from shared.utils.metrics import (
    COINS_REFUNDED,
    PREDICTIONS_VOIDED,
    SETTLEMENT_FAILURES,
    VOIDABLE_EVENTS,
)

from settlement.audit import record_event_void

logger = get_logger(__name__)

VOIDING_STATUSES = [s.value for s in EventStatus if s.voids_predictions]


class SettlementError(Exception):
    """A refund could not be applied; the prediction's transaction is rolled back."""


@dataclass
class VoidableEvent:
    event_id: uuid.UUID
    status: EventStatus


@dataclass
class PendingPrediction:
    prediction_id: uuid.UUID
    user_id: uuid.UUID
    stake: int


@dataclass
class VoidedPrediction:
    prediction_id: uuid.UUID
    user_id: uuid.UUID
    refunded: int
    balance_after: int


@dataclass
class EventVoidResult:
    event_id: uuid.UUID
    status: EventStatus
    pending: int = 0
    voided: list[VoidedPrediction] = field(default_factory=list)
    failed: int = 0
    audited: bool = False

    @property
    def refunded_coins(self) -> int:
        return sum(v.refunded for v in self.voided)


@dataclass
class SettlementRunResult:
    events: list[EventVoidResult] = field(default_factory=list)

    @property
    def voided_count(self) -> int:
        return sum(len(e.voided) for e in self.events)

    @property
    def refunded_coins(self) -> int:
        return sum(e.refunded_coins for e in self.events)

    @property
    def failed_count(self) -> int:
        return sum(e.failed for e in self.events)


class AutoVoidEngine:
    """Voids and refunds pending predictions on cancelled/postponed events."""

    def __init__(self, db: DatabaseManager, settings: Settings | None = None) -> None:
        self._db = db
        self._settings = settings or get_settings()

    async def find_voidable_events(self) -> list[VoidableEvent]:
        """Single query: voiding-status events with at least one pending prediction."""
        has_pending = exists().where(
            PredictionORM.event_id == EventORM.id,
            PredictionORM.status == PredictionStatus.PENDING.value,
        )

        async def _query() -> list[Any]:
            async with self._db.read_session() as session:
                return (
                    await session.execute(
                        select(EventORM.id, EventORM.status)
                        .where(EventORM.status.in_(VOIDING_STATUSES), has_pending)
                        .order_by(EventORM.start_time)
                    )
                ).all()

        try:
            rows = await asyncio.wait_for(_query(), timeout=self._settings.storage_timeout_s)
        except Exception as exc:
            logger.error("voidable_events_query_failed", error=str(exc), exc_info=True)
            raise
        VOIDABLE_EVENTS.set(len(rows))
        return [VoidableEvent(event_id=r.id, status=EventStatus(r.status)) for r in rows]

    async def _load_pending(self, event_id: uuid.UUID) -> list[PendingPrediction]:
        async with self._db.read_session() as session:
            rows = (
                await session.execute(
                    select(PredictionORM.id, PredictionORM.user_id, PredictionORM.stake)
                    .where(
                        PredictionORM.event_id == event_id,
                        PredictionORM.status == PredictionStatus.PENDING.value,
                    )
                    .order_by(PredictionORM.created_at, PredictionORM.id)
                )
            ).all()
        return [PendingPrediction(prediction_id=r.id, user_id=r.user_id, stake=r.stake) for r in rows]

    async def _void_prediction(
        self, pending: PendingPrediction, event_status: EventStatus
    ) -> Optional[VoidedPrediction]:
        """
        Claim, refund and ledger one prediction in one transaction.

        Returns None when the prediction was no longer pending (someone else
        settled it first). Raises on any storage failure, after rollback.
        """
        async with self._db.write_session() as session:
            claimed = await session.execute(
                update(PredictionORM)
                .where(
                    PredictionORM.id == pending.prediction_id,
                    PredictionORM.status == PredictionStatus.PENDING.value,
                )
                .values(
                    status=PredictionStatus.VOID.value,
                    settled_at=datetime.now(timezone.utc),
                    settled_coins=pending.stake,
                )
                .execution_options(synchronize_session=False)
            )
            if claimed.rowcount != 1:
                return None

            credited = await session.execute(
                update(UserORM)
                .where(UserORM.id == pending.user_id)
                .values(coins=UserORM.coins + pending.stake, updated_at=func.now())
                .execution_options(synchronize_session=False)
            )
            if credited.rowcount != 1:
                raise SettlementError(f"user {pending.user_id} not found for refund")

            balance = (
                await session.execute(select(UserORM.coins).where(UserORM.id == pending.user_id))
            ).scalar_one()

            session.add(
                TransactionORM(
                    user_id=pending.user_id,
                    type=TransactionType.PREDICTION_REFUND.value,
                    currency=Currency.COINS.value,
                    amount=pending.stake,
                    balance_after=balance,
                    description=f"Refund: event {event_status.value}",
                    reference_id=pending.prediction_id,
                    reference_type="prediction",
                )
            )

        return VoidedPrediction(
            prediction_id=pending.prediction_id,
            user_id=pending.user_id,
            refunded=pending.stake,
            balance_after=balance,
        )

    async def _write_audit(self, result: EventVoidResult) -> None:
        async with self._db.write_session() as session:
            await record_event_void(
                session,
                event_id=result.event_id,
                status=result.status,
                pending_count=result.pending,
                prediction_ids=[v.prediction_id for v in result.voided],
                refunded_coins=result.refunded_coins,
            )

    async def void_event(self, event: VoidableEvent) -> EventVoidResult:
        """
        Void every pending prediction of one event, one at a time.

        Per-prediction failures are logged and skipped; the remaining
        predictions are still processed and the next run picks up whatever
        is still pending.
        """
        result = EventVoidResult(event_id=event.event_id, status=event.status)
        timeout = self._settings.storage_timeout_s

        try:
            pending = await asyncio.wait_for(self._load_pending(event.event_id), timeout=timeout)
        except Exception as exc:
            SETTLEMENT_FAILURES.labels(stage="load").inc()
            logger.error(
                "pending_predictions_load_failed",
                event_id=str(event.event_id),
                error=str(exc),
                exc_info=True,
            )
            result.failed += 1
            return result
        result.pending = len(pending)

        for prediction in pending:
            try:
                voided = await asyncio.wait_for(
                    self._void_prediction(prediction, event.status), timeout=timeout
                )
            except Exception as exc:
                result.failed += 1
                SETTLEMENT_FAILURES.labels(stage="void").inc()
                logger.error(
                    "prediction_void_failed",
                    event_id=str(event.event_id),
                    prediction_id=str(prediction.prediction_id),
                    user_id=str(prediction.user_id),
                    stake=prediction.stake,
                    error=str(exc),
                    exc_info=True,
                )
                continue
            if voided is None:
                logger.debug("prediction_already_settled", prediction_id=str(prediction.prediction_id))
                continue
            result.voided.append(voided)
            PREDICTIONS_VOIDED.labels(event_status=event.status.value).inc()
            COINS_REFUNDED.inc(voided.refunded)

        if result.voided:
            try:
                await asyncio.wait_for(self._write_audit(result), timeout=timeout)
                result.audited = True
            except Exception as exc:
                SETTLEMENT_FAILURES.labels(stage="audit").inc()
                logger.error(
                    "void_audit_failed",
                    event_id=str(event.event_id),
                    voided=len(result.voided),
                    refunded_coins=result.refunded_coins,
                    prediction_ids=[str(v.prediction_id) for v in result.voided],
                    error=str(exc),
                    exc_info=True,
                )

        logger.info(
            "event_predictions_voided",
            event_id=str(event.event_id),
            status=event.status.value,
            voided=len(result.voided),
            refunded_coins=result.refunded_coins,
            failed=result.failed,
        )
        return result

    async def run(self) -> SettlementRunResult:
        """Process every voidable event. Events run concurrently, bounded by settings."""
        events = await self.find_voidable_events()
        run = SettlementRunResult()
        if not events:
            logger.debug("no_voidable_events")
            return run

        sem = asyncio.Semaphore(max(1, self._settings.settlement_max_concurrent_events))

        async def _bounded(event: VoidableEvent) -> EventVoidResult:
            async with sem:
                return await self.void_event(event)

        run.events = list(await asyncio.gather(*(_bounded(e) for e in events)))
        logger.info(
            "auto_void_complete",
            events=len(run.events),
            voided=run.voided_count,
            refunded_coins=run.refunded_coins,
            failed=run.failed_count,
        )
        return run
