"""
Odds ingest cycle.

Takes one sport's worth of raw scraper output, runs it through the
validation and merge pipeline, and hands the canonical matches to a sink.
The scraping layer that produces the raw records lives elsewhere; this
module only sees dictionaries or RawOddsRecord objects.

Run standalone against a JSON dump of scraped records:

    python -m ingest.service football scraped.json
"""
from __future__ import annotations

import asyncio
import json
import sys
from typing import Any, Iterable, Mapping, Protocol, Sequence, Union

from pydantic import ValidationError

from ingest.merge.engine import get_source_priorities, reconcile_odds
from ingest.validation.odds import OddsLimits
from shared.config import Settings, get_settings
from shared.models.domain import Match, RawOddsRecord
from shared.utils.logging import get_logger, run_context, setup_logging
from shared.utils.metrics import (
    MATCHES_EMITTED,
    MERGE_DURATION,
    ODDS_RECORDS,
    track_latency,
)

logger = get_logger(__name__)

RawInput = Union[RawOddsRecord, Mapping[str, Any]]


class MatchSink(Protocol):
    """Downstream consumer of a cycle's canonical matches."""

    async def publish(self, sport_slug: str, matches: Sequence[Match]) -> None:
        ...


class JsonLinesSink:
    """Writes each match as one JSON line. Used by the standalone entrypoint."""

    def __init__(self, stream: Any = None) -> None:
        self._stream = stream or sys.stdout

    async def publish(self, sport_slug: str, matches: Sequence[Match]) -> None:
        for match in matches:
            payload = {"sport": sport_slug, **match.model_dump(mode="json")}
            self._stream.write(json.dumps(payload) + "\n")
        self._stream.flush()


class OddsIngestService:
    """Runs validate -> merge -> publish for one sport at a time."""

    def __init__(self, sink: MatchSink, settings: Settings | None = None) -> None:
        self._sink = sink
        self._settings = settings or get_settings()
        self._limits = OddsLimits.from_settings(self._settings)
        self._priorities = get_source_priorities(self._settings)

    def _parse(self, raw: Iterable[RawInput]) -> list[RawOddsRecord]:
        records: list[RawOddsRecord] = []
        for item in raw:
            if isinstance(item, RawOddsRecord):
                records.append(item)
                continue
            try:
                records.append(RawOddsRecord.model_validate(item))
            except ValidationError as exc:
                logger.debug("odds_record_unparseable", error=str(exc), record=repr(item)[:200])
        return records

    def merge(self, sport_slug: str, raw: Iterable[RawInput]) -> list[Match]:
        """Parse, validate and merge without publishing."""
        raw = list(raw)
        records = self._parse(raw)
        with track_latency(MERGE_DURATION, sport=sport_slug):
            result = reconcile_odds(
                records,
                sport_slug,
                self._priorities,
                default_priority=self._settings.default_source_priority,
                threshold=self._settings.match_similarity_threshold,
                limits=self._limits,
            )

        ODDS_RECORDS.labels(sport=sport_slug, outcome="received").inc(len(raw))
        ODDS_RECORDS.labels(sport=sport_slug, outcome="unparseable").inc(len(raw) - len(records))
        ODDS_RECORDS.labels(sport=sport_slug, outcome="rejected").inc(result.rejected)
        ODDS_RECORDS.labels(sport=sport_slug, outcome="accepted").inc(result.accepted)
        MATCHES_EMITTED.labels(sport=sport_slug).inc(len(result.matches))
        return result.matches

    async def run_cycle(self, sport_slug: str, raw: Iterable[RawInput]) -> list[Match]:
        """
        One ingest cycle for a sport.

        Bad records are dropped inside the pipeline. A sink failure or timeout
        is not recoverable within the cycle and propagates to the caller.
        """
        with run_context("ingest_cycle", sport=sport_slug):
            matches = self.merge(sport_slug, raw)
            try:
                await asyncio.wait_for(
                    self._sink.publish(sport_slug, matches),
                    timeout=self._settings.publish_timeout_s,
                )
            except Exception as exc:
                logger.error(
                    "match_publish_failed",
                    matches=len(matches),
                    error=str(exc),
                    exc_info=True,
                )
                raise
            logger.info("ingest_cycle_complete", matches=len(matches))
        return matches


async def main(argv: Sequence[str] | None = None) -> int:
    """Merge a JSON array of scraped records and print the canonical matches."""
    args = list(sys.argv[1:] if argv is None else argv)
    setup_logging("ingest")
    if len(args) != 2:
        logger.error("usage", expected="python -m ingest.service <sport> <records.json>")
        return 2

    sport_slug, path = args
    with open(path, encoding="utf-8") as fh:
        raw = json.load(fh)

    service = OddsIngestService(JsonLinesSink())
    await service.run_cycle(sport_slug, raw)
    return 0


if __name__ == "__main__":
    sys.exit(asyncio.run(main()))
