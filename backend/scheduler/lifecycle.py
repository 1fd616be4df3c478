"""
Event lifecycle state machine.

    scheduled ──> live ──> finished
        │          │
        │          └─────> postponed ──> scheduled
        ├────────────────> postponed     (rescheduled)
        └────────────────> cancelled <── postponed

``finished`` and ``cancelled`` are terminal. Every status write is
conditional on the status the caller observed, so concurrent sweeps and
feed updates never overwrite each other and re-running a sweep is a no-op.
"""
from __future__ import annotations

import asyncio
import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Optional

from sqlalchemy import func, select, update

from shared.config import Settings, get_settings
from shared.models.domain import EventStatusReport
from shared.models.enums import EventStatus
from shared.models.orm import EventORM, SportORM
from shared.utils.database import DatabaseManager
from shared.utils.logging import get_logger
from shared.utils.metrics import EVENT_TRANSITION_FAILURES, EVENT_TRANSITIONS

logger = get_logger(__name__)

ALLOWED_TRANSITIONS: dict[EventStatus, frozenset[EventStatus]] = {
    EventStatus.SCHEDULED: frozenset({EventStatus.LIVE, EventStatus.CANCELLED, EventStatus.POSTPONED}),
    EventStatus.LIVE: frozenset({EventStatus.FINISHED, EventStatus.POSTPONED}),
    EventStatus.POSTPONED: frozenset({EventStatus.SCHEDULED, EventStatus.CANCELLED}),
    EventStatus.FINISHED: frozenset(),
    EventStatus.CANCELLED: frozenset(),
}

FULL_TIME_PERIOD = "FT"


class InvalidTransitionError(ValueError):
    def __init__(self, current: EventStatus, target: EventStatus) -> None:
        super().__init__(f"{current.value} -> {target.value} is not an allowed transition")
        self.current = current
        self.target = target


def can_transition(current: EventStatus, target: EventStatus) -> bool:
    return target in ALLOWED_TRANSITIONS[current]


def check_transition(current: EventStatus, target: EventStatus) -> None:
    if not can_transition(current, target):
        raise InvalidTransitionError(current, target)


def as_utc(value: datetime) -> datetime:
    """Stored timestamps come back naive from SQLite; they are always UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


@dataclass
class TransitionResult:
    candidates: int = 0
    transitioned: int = 0
    skipped: int = 0
    failed: int = 0


class EventLifecycleService:
    """Drives persisted events through their status lifecycle."""

    def __init__(self, db: DatabaseManager, settings: Settings | None = None) -> None:
        self._db = db
        self._settings = settings or get_settings()

    async def _conditional_update(
        self,
        event_id: uuid.UUID,
        expected: EventStatus,
        target: EventStatus,
        **values: Any,
    ) -> bool:
        """Write ``target`` only if the row still holds ``expected``. True when written."""

        async def _write() -> bool:
            async with self._db.write_session() as session:
                result = await session.execute(
                    update(EventORM)
                    .where(EventORM.id == event_id, EventORM.status == expected.value)
                    .values(status=target.value, updated_at=func.now(), **values)
                    .execution_options(synchronize_session=False)
                )
                return result.rowcount == 1

        written = await asyncio.wait_for(_write(), timeout=self._settings.storage_timeout_s)
        if written:
            EVENT_TRANSITIONS.labels(from_status=expected.value, to_status=target.value).inc()
        return written

    # ── Scheduled → live sweep ──────────────────────────────────────────

    async def transition_due_events(self, now: Optional[datetime] = None) -> TransitionResult:
        """
        Move every scheduled event whose start time has passed to live.

        One query finds the candidates; each row is then written on its own so
        a failure on one event does not hold back the rest.
        """
        now = now or datetime.now(timezone.utc)
        result = TransitionResult()

        async def _query() -> list[Any]:
            async with self._db.read_session() as session:
                return (
                    await session.execute(
                        select(EventORM.id, EventORM.home_team_name, EventORM.away_team_name)
                        .where(
                            EventORM.status == EventStatus.SCHEDULED.value,
                            EventORM.start_time <= now,
                        )
                        .order_by(EventORM.start_time)
                    )
                ).all()

        try:
            rows = await asyncio.wait_for(_query(), timeout=self._settings.storage_timeout_s)
        except Exception as exc:
            logger.error("due_events_query_failed", error=str(exc), exc_info=True)
            raise

        result.candidates = len(rows)
        if not rows:
            logger.debug("no_due_events")
            return result

        for row in rows:
            try:
                moved = await self._conditional_update(row.id, EventStatus.SCHEDULED, EventStatus.LIVE)
            except Exception as exc:
                result.failed += 1
                EVENT_TRANSITION_FAILURES.inc()
                logger.error(
                    "event_transition_failed",
                    event_id=str(row.id),
                    error=str(exc),
                    exc_info=True,
                )
                continue
            if moved:
                result.transitioned += 1
                logger.info(
                    "event_live",
                    event_id=str(row.id),
                    home=row.home_team_name,
                    away=row.away_team_name,
                )
            else:
                result.skipped += 1

        logger.info(
            "events_transitioned",
            transitioned=result.transitioned,
            candidates=result.candidates,
            failed=result.failed,
        )
        return result

    # ── Stale live cleanup ──────────────────────────────────────────────

    def max_live_duration(self, sport_slug: Optional[str]) -> timedelta:
        hours = self._settings.stale_live_hours.get(
            sport_slug or "", self._settings.stale_live_default_hours
        )
        return timedelta(hours=hours)

    async def finish_stale_events(self, now: Optional[datetime] = None) -> TransitionResult:
        """
        Close out events stuck in live well past any plausible final whistle.

        A results feed that never reports full time would otherwise leave the
        event live forever.
        """
        now = now or datetime.now(timezone.utc)
        result = TransitionResult()

        async def _query() -> list[Any]:
            async with self._db.read_session() as session:
                return (
                    await session.execute(
                        select(EventORM.id, EventORM.start_time, SportORM.slug)
                        .join(SportORM, SportORM.id == EventORM.sport_id)
                        .where(EventORM.status == EventStatus.LIVE.value)
                    )
                ).all()

        try:
            rows = await asyncio.wait_for(_query(), timeout=self._settings.storage_timeout_s)
        except Exception as exc:
            logger.error("stale_events_query_failed", error=str(exc), exc_info=True)
            raise

        stale = [r for r in rows if as_utc(r.start_time) + self.max_live_duration(r.slug) <= now]
        result.candidates = len(stale)

        for row in stale:
            try:
                moved = await self._conditional_update(
                    row.id,
                    EventStatus.LIVE,
                    EventStatus.FINISHED,
                    period=func.coalesce(EventORM.period, FULL_TIME_PERIOD),
                )
            except Exception as exc:
                result.failed += 1
                EVENT_TRANSITION_FAILURES.inc()
                logger.error(
                    "stale_event_finish_failed",
                    event_id=str(row.id),
                    error=str(exc),
                    exc_info=True,
                )
                continue
            if moved:
                result.transitioned += 1
                logger.warning(
                    "stale_event_finished",
                    event_id=str(row.id),
                    sport=row.slug,
                    started=as_utc(row.start_time).isoformat(),
                )
            else:
                result.skipped += 1

        if result.candidates:
            logger.info("stale_events_cleaned", finished=result.transitioned, candidates=result.candidates)
        return result

    # ── Feed status reports ─────────────────────────────────────────────

    async def apply_status_report(self, report: EventStatusReport) -> bool:
        """
        Apply an upstream status report for one event.

        Reports that would leave a terminal status or skip a step are logged
        and ignored. Returns True when the event row was updated.
        """
        timeout = self._settings.storage_timeout_s

        async def _read_status() -> Optional[str]:
            async with self._db.read_session() as session:
                return (
                    await session.execute(select(EventORM.status).where(EventORM.id == report.event_id))
                ).scalar_one_or_none()

        current_value = await asyncio.wait_for(_read_status(), timeout=timeout)
        if current_value is None:
            logger.warning("status_report_unknown_event", event_id=str(report.event_id))
            return False

        current = EventStatus(current_value)
        values: dict[str, Any] = {}
        if report.home_score is not None:
            values["home_score"] = report.home_score
        if report.away_score is not None:
            values["away_score"] = report.away_score
        if report.period is not None:
            values["period"] = report.period

        if current == report.status:
            if not values:
                return False

            async def _write_scores() -> bool:
                async with self._db.write_session() as session:
                    res = await session.execute(
                        update(EventORM)
                        .where(EventORM.id == report.event_id, EventORM.status == current.value)
                        .values(updated_at=func.now(), **values)
                        .execution_options(synchronize_session=False)
                    )
                    return res.rowcount == 1

            return await asyncio.wait_for(_write_scores(), timeout=timeout)

        try:
            check_transition(current, report.status)
        except InvalidTransitionError as exc:
            logger.warning("status_report_rejected", event_id=str(report.event_id), reason=str(exc))
            return False

        moved = await self._conditional_update(report.event_id, current, report.status, **values)
        if not moved:
            logger.info(
                "status_report_lost_race",
                event_id=str(report.event_id),
                expected=current.value,
                target=report.status.value,
            )
        return moved
