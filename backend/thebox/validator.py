from __future__ import annotations

from typing import Optional

from pydantic import BaseModel, ConfigDict

from .catalog import Catalog
from .errors import InvalidPosition, NotFound
from .models import TierScreenshot


class Verdict(BaseModel):
    model_config = ConfigDict(frozen=True)

    binding: TierScreenshot
    canonical_game_id: int
    is_correct: bool


class GuessValidator:
    """Decides whether a submitted game matches the screenshot at a position.

    Only the submitted game id is compared. Free text is kept on the guess
    record for display and audit.
    """

    def __init__(self, catalog: Catalog):
        self.catalog = catalog

    async def check(self, tier_id: str, position: int, screenshot_id: int, submitted_game_id: Optional[int]) -> Verdict:
        binding = await self.catalog.get_tier_screenshot(tier_id, position)
        if binding is None:
            raise InvalidPosition("No screenshot at this position", tier_id=tier_id, position=position)
        if binding.screenshot_id != screenshot_id:
            raise InvalidPosition(
                "Screenshot does not belong to this position",
                position=position,
                screenshot_id=screenshot_id,
            )

        canonical = await self.catalog.canonical_game_id(binding.screenshot_id)
        if canonical is None:
            raise NotFound("Screenshot not found", screenshot_id=binding.screenshot_id)

        return Verdict(
            binding=binding,
            canonical_game_id=canonical,
            is_correct=submitted_game_id is not None and submitted_game_id == canonical,
        )
