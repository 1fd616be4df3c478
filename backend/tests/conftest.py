"""
Shared fixtures: settings pointed at a throwaway SQLite file and a seeded
DatabaseManager for storage-backed tests.
"""
from __future__ import annotations

import asyncio
import uuid
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import AsyncIterator, Optional

import pytest
from sqlalchemy import select

from shared.config import Settings
from shared.models.enums import EventStatus, PredictionStatus
from shared.models.orm import EventORM, PredictionORM, SportORM, UserORM
from shared.utils.database import DatabaseManager


@pytest.fixture
def settings(tmp_path: Path) -> Settings:
    return Settings(
        database_url=f"sqlite+aiosqlite:///{tmp_path / 'sportsage.db'}",
        storage_timeout_s=5.0,
        metrics_enabled=False,
    )


@pytest.fixture
async def db(settings: Settings) -> AsyncIterator[DatabaseManager]:
    manager = DatabaseManager(settings)
    await manager.connect()
    await manager.create_schema()
    yield manager
    await manager.disconnect()


class Seed:
    """Row factories for storage tests."""

    def __init__(self, db: DatabaseManager) -> None:
        self._db = db
        self._sports: dict[str, uuid.UUID] = {}

    async def sport(self, slug: str = "football") -> uuid.UUID:
        if slug in self._sports:
            return self._sports[slug]
        async with self._db.write_session() as session:
            sport = SportORM(slug=slug, name=slug.replace("_", " ").title())
            session.add(sport)
            await session.flush()
            self._sports[slug] = sport.id
        return self._sports[slug]

    async def user(self, coins: int = 1000, username: Optional[str] = None) -> uuid.UUID:
        async with self._db.write_session() as session:
            user = UserORM(username=username or f"user-{uuid.uuid4().hex[:8]}", coins=coins)
            session.add(user)
            await session.flush()
            return user.id

    async def event(
        self,
        start_time: datetime,
        status: EventStatus = EventStatus.SCHEDULED,
        sport: str = "football",
        home: str = "Arsenal",
        away: str = "Chelsea",
        period: Optional[str] = None,
    ) -> uuid.UUID:
        sport_id = await self.sport(sport)
        async with self._db.write_session() as session:
            event = EventORM(
                sport_id=sport_id,
                home_team_name=home,
                away_team_name=away,
                start_time=start_time,
                status=status.value,
                period=period,
            )
            session.add(event)
            await session.flush()
            return event.id

    async def prediction(
        self,
        event_id: uuid.UUID,
        user_id: uuid.UUID,
        stake: int,
        status: PredictionStatus = PredictionStatus.PENDING,
    ) -> uuid.UUID:
        async with self._db.write_session() as session:
            prediction = PredictionORM(
                event_id=event_id,
                user_id=user_id,
                stake=stake,
                status=status.value,
                settled_at=None if status == PredictionStatus.PENDING else datetime.now(timezone.utc),
            )
            session.add(prediction)
            await session.flush()
            return prediction.id

    async def get(self, model: type, row_id: uuid.UUID):
        async with self._db.read_session() as session:
            return (await session.execute(select(model).where(model.id == row_id))).scalar_one()

    async def all(self, model: type) -> list:
        async with self._db.read_session() as session:
            return list((await session.execute(select(model))).scalars())


@pytest.fixture
def seed(db: DatabaseManager) -> Seed:
    return Seed(db)


class StalledDatabase:
    """DatabaseManager stand-in whose sessions never open."""

    @asynccontextmanager
    async def read_session(self) -> AsyncIterator[None]:
        await asyncio.Event().wait()
        yield None

    write_session = read_session


@pytest.fixture
def stalled_db() -> StalledDatabase:
    return StalledDatabase()


@pytest.fixture
def short_timeout_settings(settings: Settings) -> Settings:
    return settings.model_copy(update={"storage_timeout_s": 0.1})
