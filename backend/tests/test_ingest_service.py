"""
Tests for the odds ingest cycle (parse -> merge -> publish).

Run: pytest backend/tests/test_ingest_service.py -v
"""
from __future__ import annotations

import asyncio
import io
import json
from unittest.mock import AsyncMock, MagicMock

import pytest
import structlog
from prometheus_client import REGISTRY

from shared.config import Settings
from shared.models.domain import Match, RawOddsRecord
from ingest.service import JsonLinesSink, OddsIngestService


@pytest.fixture
def ingest_settings() -> Settings:
    return Settings(
        database_url="sqlite+aiosqlite:///:memory:",
        publish_timeout_s=0.2,
        metrics_enabled=False,
    )


@pytest.fixture
def sink() -> MagicMock:
    s = MagicMock()
    s.publish = AsyncMock(return_value=None)
    return s


def _raw(source: str, home_win: float, count: int | None = None) -> dict:
    return {
        "source": source,
        "homeTeam": "Arsenal FC",
        "awayTeam": "Chelsea",
        "homeWin": home_win,
        "draw": 3.5,
        "awayWin": 4.0,
        "bookmakerCount": count,
    }


class TestRunCycle:
    @pytest.mark.asyncio
    async def test_camel_case_records_merged_and_published(
        self, sink: MagicMock, ingest_settings: Settings
    ) -> None:
        service = OddsIngestService(sink, ingest_settings)
        matches = await service.run_cycle(
            "football", [_raw("bmbets", 1.9, 3), _raw("oddscanner", 2.0, 4)]
        )

        assert len(matches) == 1
        assert matches[0].home_win == 2.0
        assert matches[0].bookmaker_count == 7
        sink.publish.assert_awaited_once_with("football", matches)

    @pytest.mark.asyncio
    async def test_unparseable_records_dropped(self, sink: MagicMock, ingest_settings: Settings) -> None:
        service = OddsIngestService(sink, ingest_settings)
        matches = await service.run_cycle(
            "football",
            [{"source": "bmbets", "homeTeam": "Arsenal", "homeWin": "not-a-number"}, _raw("bmbets", 1.9)],
        )
        assert len(matches) == 1

    @pytest.mark.asyncio
    async def test_accepts_model_instances(self, sink: MagicMock, ingest_settings: Settings) -> None:
        service = OddsIngestService(sink, ingest_settings)
        record = RawOddsRecord.model_validate(_raw("oddsportal", 1.9))
        matches = await service.run_cycle("football", [record])
        assert matches[0].source == "oddsportal"
        assert matches[0].priority == 1

    @pytest.mark.asyncio
    async def test_empty_batch_still_published(self, sink: MagicMock, ingest_settings: Settings) -> None:
        service = OddsIngestService(sink, ingest_settings)
        assert await service.run_cycle("tennis", []) == []
        sink.publish.assert_awaited_once_with("tennis", [])

    @pytest.mark.asyncio
    async def test_sink_failure_propagates(self, sink: MagicMock, ingest_settings: Settings) -> None:
        sink.publish.side_effect = ConnectionError("downstream gone")
        service = OddsIngestService(sink, ingest_settings)
        with pytest.raises(ConnectionError):
            await service.run_cycle("football", [_raw("bmbets", 1.9)])

    @pytest.mark.asyncio
    async def test_sink_timeout_propagates(self, ingest_settings: Settings) -> None:
        class SlowSink:
            async def publish(self, sport_slug: str, matches: list[Match]) -> None:
                await asyncio.sleep(5)

        service = OddsIngestService(SlowSink(), ingest_settings)
        with pytest.raises(asyncio.TimeoutError):
            await service.run_cycle("football", [_raw("bmbets", 1.9)])

    def test_configured_priorities_used(self, sink: MagicMock) -> None:
        settings = Settings(
            database_url="sqlite+aiosqlite:///:memory:",
            source_priorities={"bmbets": 1, "oddsportal": 5},
        )
        service = OddsIngestService(sink, settings)
        matches = service.merge("football", [_raw("oddsportal", 1.9), _raw("bmbets", 2.0)])
        assert matches[0].source == "bmbets"


class TestJsonLinesSink:
    @pytest.mark.asyncio
    async def test_writes_one_line_per_match(self) -> None:
        stream = io.StringIO()
        match = Match(
            home_team="Arsenal",
            away_team="Chelsea",
            home_win=2.0,
            draw=3.5,
            away_win=4.0,
            bookmaker_count=2,
            source="bmbets",
            priority=2,
            sources=("bmbets", "oddscanner"),
        )
        await JsonLinesSink(stream).publish("football", [match, match])

        lines = stream.getvalue().splitlines()
        assert len(lines) == 2
        payload = json.loads(lines[0])
        assert payload["sport"] == "football"
        assert payload["home_win"] == 2.0
        assert payload["sources"] == ["bmbets", "oddscanner"]


# ── Metrics and log context ─────────────────────────────────────────────

def _odds_count(sport: str, outcome: str) -> float:
    value = REGISTRY.get_sample_value("ss_odds_records_total", {"sport": sport, "outcome": outcome})
    return value or 0.0


class TestCycleAccounting:
    def test_rejected_and_accepted_counted(self, sink: MagicMock, ingest_settings: Settings) -> None:
        sport = "football"
        before = {o: _odds_count(sport, o) for o in ("received", "unparseable", "rejected", "accepted")}
        bad_price = {**_raw("bmbets", 1.9), "homeWin": 0.5}

        OddsIngestService(sink, ingest_settings).merge(
            sport,
            [_raw("bmbets", 1.9), _raw("oddscanner", 2.0), bad_price, {"source": "x", "homeWin": "n/a"}],
        )

        assert _odds_count(sport, "received") - before["received"] == 4
        assert _odds_count(sport, "unparseable") - before["unparseable"] == 1
        assert _odds_count(sport, "rejected") - before["rejected"] == 1
        assert _odds_count(sport, "accepted") - before["accepted"] == 2

    @pytest.mark.asyncio
    async def test_cycle_binds_run_context(self, ingest_settings: Settings) -> None:
        seen: list[dict] = []

        class RecordingSink:
            async def publish(self, sport_slug: str, matches: list[Match]) -> None:
                seen.append(structlog.contextvars.get_contextvars())

        service = OddsIngestService(RecordingSink(), ingest_settings)
        await service.run_cycle("football", [_raw("bmbets", 1.9)])
        await service.run_cycle("football", [_raw("bmbets", 1.9)])

        assert [ctx["job"] for ctx in seen] == ["ingest_cycle", "ingest_cycle"]
        assert all(ctx["sport"] == "football" for ctx in seen)
        assert seen[0]["run_id"] != seen[1]["run_id"]
        assert "run_id" not in structlog.contextvars.get_contextvars()
