"""
Metrics collection for the Sport Sage core.
Wraps prometheus_client with async-safe patterns.
"""
from __future__ import annotations

import time
from contextlib import asynccontextmanager, contextmanager
from typing import AsyncIterator, Iterator

from prometheus_client import Counter, Gauge, Histogram, start_http_server

from shared.config import get_settings
from shared.utils.logging import get_logger

logger = get_logger(__name__)

# ── Counters ────────────────────────────────────────────────────────────
ODDS_RECORDS = Counter(
    "ss_odds_records_total",
    "Raw odds records seen by the ingest cycle",
    ["sport", "outcome"],
)
MATCHES_EMITTED = Counter(
    "ss_matches_emitted_total",
    "Canonical matches produced by the merge engine",
    ["sport"],
)
EVENT_TRANSITIONS = Counter(
    "ss_event_transitions_total",
    "Event status transitions written by the lifecycle sweep",
    ["from_status", "to_status"],
)
EVENT_TRANSITION_FAILURES = Counter(
    "ss_event_transition_failures_total",
    "Per-event transition writes that failed and were skipped",
)
PREDICTIONS_VOIDED = Counter(
    "ss_predictions_voided_total",
    "Predictions voided by the auto-void engine",
    ["event_status"],
)
COINS_REFUNDED = Counter(
    "ss_coins_refunded_total",
    "Coins refunded to users by the auto-void engine",
)
SETTLEMENT_FAILURES = Counter(
    "ss_settlement_failures_total",
    "Prediction or audit writes that failed during auto-void",
    ["stage"],
)

# ── Histograms ──────────────────────────────────────────────────────────
JOB_DURATION = Histogram(
    "ss_job_duration_seconds",
    "Wall time of a scheduled job",
    ["job"],
    buckets=(0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0),
)
MERGE_DURATION = Histogram(
    "ss_merge_duration_seconds",
    "Time to validate and merge one sport's odds batch",
    ["sport"],
    buckets=(0.001, 0.005, 0.01, 0.05, 0.1, 0.5, 1.0),
)

# ── Gauges ──────────────────────────────────────────────────────────────
VOIDABLE_EVENTS = Gauge(
    "ss_voidable_events",
    "Cancelled/postponed events with pending predictions at last sweep",
)


@contextmanager
def track_latency(histogram: Histogram, **labels: str) -> Iterator[None]:
    """Context manager to track operation latency."""
    start = time.perf_counter()
    try:
        yield
    finally:
        elapsed = time.perf_counter() - start
        histogram.labels(**labels).observe(elapsed)


@asynccontextmanager
async def atrack_latency(histogram: Histogram, **labels: str) -> AsyncIterator[None]:
    """Async context manager to track operation latency."""
    start = time.perf_counter()
    try:
        yield
    finally:
        elapsed = time.perf_counter() - start
        histogram.labels(**labels).observe(elapsed)


def start_metrics_server(port: int | None = None) -> None:
    """Start the Prometheus metrics HTTP server."""
    settings = get_settings()
    if not settings.metrics_enabled:
        return
    metrics_port = port or settings.metrics_port
    try:
        start_http_server(metrics_port)
        logger.info("metrics_server_started", port=metrics_port)
    except OSError as exc:
        logger.warning("metrics_server_failed", error=str(exc), port=metrics_port)
