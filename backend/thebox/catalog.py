"""Read-only reference data: challenges, tiers and their screenshots.

Play code only reads from here. ``publish_challenge`` is the entry point for
the scheduling job that creates each day's puzzle.
"""

from __future__ import annotations

import datetime as dt
from typing import Any, List, Optional, Sequence

from .db import db as default_db
from .errors import NotFound
from .logging_config import get_logger
from .models import Challenge, Screenshot, Tier, TierScreenshot
from .utils import new_id

logger = get_logger(__name__)


class Catalog:
    def __init__(self, database: Any = None):
        self.db = database if database is not None else default_db

    async def get_challenge(self, challenge_id: str) -> Challenge | None:
        doc = await self.db.challenges.find_one({"id": challenge_id})
        return Challenge(**doc) if doc else None

    async def find_challenge_by_date(self, day: dt.date) -> Challenge | None:
        doc = await self.db.challenges.find_one({"date": day})
        return Challenge(**doc) if doc else None

    async def get_tiers(self, challenge_id: str) -> List[Tier]:
        cursor = self.db.tiers.find({"challenge_id": challenge_id}).sort("tier_number", 1)
        return [Tier(**doc) async for doc in cursor]

    async def get_tier(self, tier_id: str) -> Tier | None:
        doc = await self.db.tiers.find_one({"id": tier_id})
        return Tier(**doc) if doc else None

    async def first_tier(self, challenge_id: str) -> Tier:
        tiers = await self.get_tiers(challenge_id)
        if not tiers:
            raise NotFound("Challenge has no tiers", challenge_id=challenge_id)
        return tiers[0]

    async def get_tier_screenshots(self, tier_id: str) -> List[TierScreenshot]:
        cursor = self.db.tier_screenshots.find({"tier_id": tier_id}).sort("position", 1)
        return [TierScreenshot(**doc) async for doc in cursor]

    async def count_positions(self, tier_id: str) -> int:
        return await self.db.tier_screenshots.count_documents({"tier_id": tier_id})

    async def get_tier_screenshot(self, tier_id: str, position: int) -> TierScreenshot | None:
        doc = await self.db.tier_screenshots.find_one({"tier_id": tier_id, "position": position})
        return TierScreenshot(**doc) if doc else None

    async def canonical_game_id(self, screenshot_id: int) -> Optional[int]:
        doc = await self.db.screenshots.find_one({"id": screenshot_id})
        return doc["game_id"] if doc else None

    async def publish_challenge(
        self,
        day: dt.date,
        screenshots: Sequence[Screenshot],
        *,
        time_limit_seconds: int,
        bonus_multipliers: Sequence[float] | None = None,
        tier_name: str = "Daily Challenge",
    ) -> Challenge:
        """Create the challenge for ``day`` with a single tier.

        ``screenshots`` are bound to positions 1..N in the given order.
        """
        if not screenshots:
            raise ValueError("A challenge needs at least one screenshot")
        if time_limit_seconds <= 0:
            raise ValueError("time_limit_seconds must be positive")
        if bonus_multipliers is not None and len(bonus_multipliers) != len(screenshots):
            raise ValueError("bonus_multipliers must match screenshots one to one")
        if await self.find_challenge_by_date(day):
            raise ValueError(f"A challenge already exists for {day.isoformat()}")

        challenge = Challenge(id=new_id(), date=day)
        tier = Tier(
            id=new_id(),
            challenge_id=challenge.id,
            tier_number=1,
            name=tier_name,
            time_limit_seconds=time_limit_seconds,
        )

        for position, shot in enumerate(screenshots, start=1):
            await self.db.screenshots.update_one({"id": shot.id}, {"$set": shot.model_dump()}, upsert=True)
            multiplier = bonus_multipliers[position - 1] if bonus_multipliers is not None else 1.0
            binding = TierScreenshot(
                tier_id=tier.id,
                position=position,
                screenshot_id=shot.id,
                image_url=shot.image_url,
                bonus_multiplier=multiplier,
            )
            await self.db.tier_screenshots.insert_one(binding.model_dump())

        await self.db.tiers.insert_one(tier.model_dump())
        await self.db.challenges.insert_one(challenge.model_dump())

        logger.info(
            "challenge published",
            extra={"challenge_id": challenge.id, "date": day.isoformat(), "positions": len(screenshots)},
        )
        return challenge


catalog = Catalog()
