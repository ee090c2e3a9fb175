from __future__ import annotations

import datetime as dt
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field


class PositionState(str, Enum):
    NOT_VISITED = "not_visited"
    SKIPPED = "skipped"
    CORRECT = "correct"


class CompletionReason(str, Enum):
    ALL_CORRECT = "all_correct"
    TIME_EXPIRED = "time_expired"
    FORFEITED = "forfeited"


# Reference data. Immutable once published.

class Challenge(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    date: dt.date


class Tier(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    challenge_id: str
    tier_number: int = 1
    name: str = "Daily Challenge"
    time_limit_seconds: int


class TierScreenshot(BaseModel):
    model_config = ConfigDict(frozen=True)

    tier_id: str
    position: int
    screenshot_id: int
    image_url: str
    bonus_multiplier: float = 1.0


class Screenshot(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: int
    game_id: int
    image_url: str


# Play state. A GameSession document embeds its tier sessions and their
# guess logs so that one write replaces the whole aggregate.

class Guess(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    tier_session_id: str
    screenshot_id: int
    position: int
    submitted_game_id: Optional[int] = None
    guess_text: str = ""
    is_correct: bool
    session_elapsed_ms: int
    score_awarded: int = 0
    client_elapsed_ms: Optional[int] = None  # audit only
    created_at: float


class TierSession(BaseModel):
    id: str
    tier_id: str
    started_at: float
    wrong_guesses: int = 0
    current_position: int = 1
    position_states: List[PositionState] = Field(default_factory=list)
    guesses: List[Guess] = Field(default_factory=list)


class GameSession(BaseModel):
    id: str
    user_id: str
    challenge_id: str
    total_score: int = 0
    is_completed: bool = False
    is_catch_up: bool = False
    started_at: float
    completed_at: Optional[float] = None
    completion_reason: Optional[CompletionReason] = None
    tier_sessions: List[TierSession] = Field(default_factory=list)

    @property
    def active_tier_session(self) -> TierSession:
        return self.tier_sessions[-1]


class CompletionRecord(BaseModel):
    model_config = ConfigDict(frozen=True)

    session_id: str
    user_id: str
    challenge_id: str
    total_score: int
    completion_reason: CompletionReason
    completed_at: float
    is_catch_up: bool = False
    screenshots_found: int
    wrong_guesses: int
    unfound_positions: List[int] = Field(default_factory=list)


# Views handed back to callers.

class SessionSnapshot(BaseModel):
    session_id: str
    challenge_id: str
    tier_session_id: str
    current_position: int
    position_states: List[PositionState]
    total_score: int
    wrong_guesses: int
    screenshots_found: int
    total_screenshots: int
    is_completed: bool
    is_catch_up: bool = False
    completion_reason: Optional[CompletionReason] = None
    started_at: float
    deadline_ts: float
    # Lets the client run its own display-only countdown
    base_points: int
    decay_rate_per_second: float
    completion: Optional[CompletionRecord] = None


class StartResult(BaseModel):
    resumed: bool
    session: SessionSnapshot


class ScreenshotView(BaseModel):
    screenshot_id: int
    position: int
    image_url: str
    bonus_multiplier: float
    state: PositionState


class GuessOutcome(BaseModel):
    is_correct: bool
    position: int
    position_state: PositionState
    score_awarded: int = 0
    wrong_guess_penalty: int = 0
    total_score: int
    wrong_guesses: int
    session_elapsed_ms: int
    next_position: int
    correct_game_id: Optional[int] = None
    is_completed: bool = False
    completion: Optional[CompletionRecord] = None


class YesterdayChallenge(BaseModel):
    challenge_id: str
    date: dt.date
    has_played: bool
    is_completed: bool = False


class TodayChallenge(BaseModel):
    challenge_id: Optional[str] = None
    date: dt.date
    total_screenshots: int = 0
    has_played: bool = False
    user_session: Optional[SessionSnapshot] = None
    yesterday: Optional[YesterdayChallenge] = None
