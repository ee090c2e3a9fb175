"""Helpers shared by the test modules: a controllable clock and a seeded engine."""

from __future__ import annotations

from typing import Any, List, Optional, Sequence

from .catalog import Catalog
from .db import InMemoryDatabase, Settings
from .events import EventStore
from .game import GameController
from .models import Challenge, Screenshot
from .utils import ts_to_date

# 2026-01-01T12:00:00Z
NOON_NEW_YEAR = 1_767_225_600.0 + 12 * 3600


class FakeClock:
    def __init__(self, start: float = NOON_NEW_YEAR):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


async def passthrough_url(image_ref: str) -> str:
    return image_ref


def screenshot_for(position: int) -> Screenshot:
    """Screenshot ``100 + n`` of game ``10 + n`` sits at position ``n``."""
    return Screenshot(id=100 + position, game_id=10 + position, image_url=f"shots/{100 + position}.jpg")


class World:
    """A fresh database with one published challenge and a controller over it."""

    def __init__(self, controller: GameController, clock: FakeClock, challenge: Challenge, database: Any, events: EventStore):
        self.controller = controller
        self.clock = clock
        self.challenge = challenge
        self.db = database
        self.events = events

    @property
    def catalog(self) -> Catalog:
        return self.controller.catalog

    async def start(self, user_id: str = "alice") -> str:
        result = await self.controller.start_challenge(self.challenge.id, user_id)
        return result.session.session_id

    async def guess(self, session_id: str, position: int, correct: bool = True, user_id: str = "alice", **kwargs):
        shot = screenshot_for(position)
        game_id = shot.game_id if correct else 999
        return await self.controller.submit_guess(
            session_id, shot.id, position, game_id, "some game", user_id, **kwargs
        )


async def build_world(
    positions: int = 3,
    time_limit_seconds: int = 60,
    bonus_multipliers: Optional[Sequence[float]] = None,
    clock: Optional[FakeClock] = None,
    **settings_overrides: Any,
) -> World:
    database = InMemoryDatabase()
    events = EventStore(database)
    catalog = Catalog(database)
    clock = clock or FakeClock()
    options = {
        "BASE_POINTS": 1000,
        "DECAY_RATE_PER_SECOND": 2.0,
        "WRONG_GUESS_PENALTY": 100,
        "LOCK_TIMEOUT_SEC": 0.5,
        "CATCH_UP_WINDOW_DAYS": 1,
    }
    options.update(settings_overrides)
    controller = GameController(
        database=database,
        events=events,
        catalog=catalog,
        settings=Settings(**options),
        clock=clock,
        url_resolver=passthrough_url,
    )
    shots: List[Screenshot] = [screenshot_for(n) for n in range(1, positions + 1)]
    challenge = await catalog.publish_challenge(
        ts_to_date(clock()),
        shots,
        time_limit_seconds=time_limit_seconds,
        bonus_multipliers=bonus_multipliers,
    )
    return World(controller, clock, challenge, database, events)
