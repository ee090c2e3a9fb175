import datetime as dt
from typing import List, Optional

from pydantic import BaseModel, Field

from .models import Screenshot


class PublishChallengeIn(BaseModel):
    date: dt.date
    time_limit_seconds: int = Field(gt=0)
    screenshots: List[Screenshot] = Field(min_length=1)
    bonus_multipliers: Optional[List[float]] = None
    tier_name: str = "Daily Challenge"


class PublishChallengeOut(BaseModel):
    challenge_id: str
    date: dt.date


class GuessIn(BaseModel):
    screenshot_id: int
    position: int
    game_id: Optional[int] = None
    guess_text: str = ""
    # Reported by the client for audit; scoring uses server time only
    round_time_taken_ms: Optional[int] = None


class NavigateIn(BaseModel):
    position: int
