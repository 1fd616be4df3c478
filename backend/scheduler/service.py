"""
Scheduled maintenance cycle for events and predictions.

One cycle runs, in order:
1. scheduled -> live sweep for events whose start time has passed
2. stale live cleanup
3. auto-void of pending predictions on cancelled/postponed events

Timing is owned by the external cron; ``python -m scheduler.service`` runs
exactly one cycle and exits non-zero if any job failed systemically.
"""
from __future__ import annotations

import asyncio
import signal
import sys
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Awaitable, Callable, Optional, TypeVar

from shared.config import Settings, get_settings
from shared.utils.database import DatabaseManager
from shared.utils.logging import get_logger, run_context, setup_logging
from shared.utils.metrics import JOB_DURATION, atrack_latency, start_metrics_server

from scheduler.lifecycle import EventLifecycleService, TransitionResult
from settlement.engine import AutoVoidEngine, SettlementRunResult

logger = get_logger(__name__)

T = TypeVar("T")


class CycleFailedError(RuntimeError):
    """One or more jobs of a cycle failed outright."""

    def __init__(self, failed_jobs: list[str]) -> None:
        super().__init__(f"scheduler jobs failed: {', '.join(failed_jobs)}")
        self.failed_jobs = failed_jobs


@dataclass
class CycleReport:
    started_at: datetime
    run_id: str = ""
    transitions: Optional[TransitionResult] = None
    stale: Optional[TransitionResult] = None
    settlement: Optional[SettlementRunResult] = None
    failed_jobs: list[str] = field(default_factory=list)


class SchedulerService:
    """Runs the lifecycle and settlement jobs against one database."""

    def __init__(
        self,
        db: DatabaseManager,
        settings: Settings | None = None,
        lifecycle: EventLifecycleService | None = None,
        settlement: AutoVoidEngine | None = None,
    ) -> None:
        self._db = db
        self._settings = settings or get_settings()
        self._lifecycle = lifecycle or EventLifecycleService(db, self._settings)
        self._settlement = settlement or AutoVoidEngine(db, self._settings)

    async def _run_job(
        self, name: str, job: Callable[[], Awaitable[T]], report: CycleReport
    ) -> Optional[T]:
        try:
            async with atrack_latency(JOB_DURATION, job=name):
                return await job()
        except Exception as exc:
            # jobs log their own failure context
            logger.error("scheduler_job_failed", job=name, error=str(exc))
            report.failed_jobs.append(name)
            return None

    async def run_cycle(self, now: Optional[datetime] = None) -> CycleReport:
        """
        Run every job once. Jobs are independent: a failed lifecycle sweep
        does not stop settlement. Raises CycleFailedError afterwards if any
        job failed.
        """
        now = now or datetime.now(timezone.utc)

        with run_context("scheduler_cycle") as run_id:
            report = CycleReport(started_at=now, run_id=run_id)
            report.transitions = await self._run_job(
                "transition_events", lambda: self._lifecycle.transition_due_events(now), report
            )
            report.stale = await self._run_job(
                "cleanup_stale_events", lambda: self._lifecycle.finish_stale_events(now), report
            )
            report.settlement = await self._run_job("auto_void", self._settlement.run, report)

            if report.failed_jobs:
                raise CycleFailedError(report.failed_jobs)
            logger.info("scheduler_cycle_complete", started_at=now.isoformat())
        return report


async def main() -> int:
    """Scheduler entrypoint: one cycle, then exit."""
    settings = get_settings()
    setup_logging("scheduler", settings)
    start_metrics_server()

    db = DatabaseManager(settings)
    await db.connect()

    service = SchedulerService(db, settings)
    task = asyncio.ensure_future(service.run_cycle())

    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, task.cancel)
        except (ValueError, OSError, RuntimeError, NotImplementedError) as exc:
            logger.warning("signal_handler_unavailable", signal=sig, error=str(exc))

    logger.info("scheduler_cycle_started", instance_id=settings.instance_id)
    try:
        await task
        return 0
    except CycleFailedError:
        return 1
    except asyncio.CancelledError:
        logger.warning("scheduler_cycle_cancelled")
        return 130
    finally:
        await db.disconnect()
        logger.info("scheduler_service_stopped")


if __name__ == "__main__":
    sys.exit(asyncio.run(main()))
