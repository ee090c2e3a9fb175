from __future__ import annotations

import asyncio
import datetime as dt
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Awaitable, Callable, Dict, List, Optional, Tuple

from .catalog import Catalog, catalog as default_catalog
from .completion import CompletionResolver, is_expired
from .db import Settings, db as default_db, settings as default_settings
from .errors import (
    AlreadyCompleted,
    AlreadySolved,
    Busy,
    ChallengeUnavailable,
    Forbidden,
    InvalidNavigation,
    InvalidPosition,
    NotFound,
    SessionCompleted,
)
from .events import EventStore, event_store as default_event_store
from .logging_config import get_logger
from .models import (
    CompletionReason,
    CompletionRecord,
    GameSession,
    Guess,
    GuessOutcome,
    PositionState,
    ScreenshotView,
    SessionSnapshot,
    StartResult,
    Tier,
    TierSession,
    TodayChallenge,
    YesterdayChallenge,
)
from .positions import PositionTracker
from .scoring import apply_penalty, award_for, elapsed_ms
from .storage import screenshot_url
from .utils import new_id, now_ts, ts_to_date
from .validator import GuessValidator

logger = get_logger(__name__)

Outbox = List[Tuple[str, Dict[str, Any]]]


class GameController:
    """Server-side authority over every game session.

    All mutations of a session run under that session's lock; reads load the
    session document as one consistent copy.
    """

    def __init__(
        self,
        database: Any = None,
        events: EventStore | None = None,
        catalog: Catalog | None = None,
        settings: Settings | None = None,
        clock: Callable[[], float] = now_ts,
        url_resolver: Callable[[str], Awaitable[str]] = screenshot_url,
    ):
        self.db = database if database is not None else default_db
        self.events = events if events is not None else default_event_store
        self.catalog = catalog if catalog is not None else default_catalog
        self.settings = settings if settings is not None else default_settings
        self.clock = clock
        self.url_resolver = url_resolver
        self.validator = GuessValidator(self.catalog)
        self.resolver = CompletionResolver(self.db, self.events)
        self.locks: Dict[str, asyncio.Lock] = {}
        self._lock_users: Dict[str, int] = {}

    def _lock(self, key: str) -> asyncio.Lock:
        self.locks.setdefault(key, asyncio.Lock())
        return self.locks[key]

    @asynccontextmanager
    async def _locked(self, key: str) -> AsyncIterator[Outbox]:
        """Hold the lock for ``key``.

        Yields an outbox; events put there reach their listeners after the
        lock is released. The lock entry is dropped once nobody holds or
        waits for it.
        """
        lock = self._lock(key)
        self._lock_users[key] = self._lock_users.get(key, 0) + 1
        outbox: Outbox = []
        try:
            try:
                await asyncio.wait_for(lock.acquire(), timeout=self.settings.LOCK_TIMEOUT_SEC)
            except asyncio.TimeoutError as exc:
                raise Busy("Session is busy, retry shortly", lock_key=key) from exc
            try:
                yield outbox
            finally:
                lock.release()
        finally:
            self._lock_users[key] -= 1
            if not self._lock_users[key]:
                del self._lock_users[key]
                self.locks.pop(key, None)
            for session_id, payload in outbox:
                await self.events.notify(session_id, payload)

    # persistence

    async def get_session(self, session_id: str) -> GameSession | None:
        doc = await self.db.game_sessions.find_one({"id": session_id})
        return GameSession(**doc) if doc else None

    async def save_session(self, s: GameSession):
        await self.db.game_sessions.update_one(
            {"id": s.id},
            {"$set": s.model_dump()},
            upsert=True,
        )

    async def _find_user_session(self, user_id: str, challenge_id: str) -> GameSession | None:
        doc = await self.db.game_sessions.find_one({"user_id": user_id, "challenge_id": challenge_id})
        return GameSession(**doc) if doc else None

    async def _load_owned(self, session_id: str, user_id: str) -> GameSession:
        s = await self.get_session(session_id)
        if not s:
            raise NotFound("Session not found", session_id=session_id)
        if s.user_id != user_id:
            raise Forbidden("Session belongs to another player", session_id=session_id, user_id=user_id)
        return s

    async def _tier_for(self, s: GameSession) -> Tier:
        tier = await self.catalog.get_tier(s.active_tier_session.tier_id)
        if not tier:
            raise NotFound("Tier not found", tier_id=s.active_tier_session.tier_id)
        return tier

    # completion

    async def _emit(self, record: CompletionRecord, outbox: Outbox) -> None:
        payload = await self.resolver.emit(record)
        if payload is not None:
            outbox.append((record.session_id, payload))

    async def _complete(self, s: GameSession, reason: CompletionReason, now: float, outbox: Outbox) -> CompletionRecord:
        record = self.resolver.finalize(s, reason, now)
        await self.save_session(s)
        await self._emit(record, outbox)
        return record

    async def _ensure_open(self, s: GameSession, tier: Tier, now: float, outbox: Outbox) -> None:
        """Raise SessionCompleted unless ``s`` may still change.

        Must be called with the session lock held: an expired session is
        finalized here, and a completion event that failed to store earlier
        is stored now, before the error is raised.
        """
        if s.is_completed:
            record = self.resolver.record_for(s)
            await self._emit(record, outbox)
            raise SessionCompleted("Session already completed", completion=record, session_id=s.id)
        if is_expired(s, tier, now):
            record = await self._complete(s, CompletionReason.TIME_EXPIRED, now, outbox)
            raise SessionCompleted("Time is up", completion=record, session_id=s.id)

    async def _expire_if_due(self, s: GameSession, tier: Tier) -> GameSession:
        """Finalize an open session whose time ran out; return the fresh copy."""
        if s.is_completed or not is_expired(s, tier, self.clock()):
            return s
        async with self._locked(s.id) as outbox:
            s = await self.get_session(s.id)
            now = self.clock()
            if not s.is_completed and is_expired(s, tier, now):
                await self._complete(s, CompletionReason.TIME_EXPIRED, now, outbox)
        return s

    # views

    def _snapshot(self, s: GameSession, tier: Tier) -> SessionSnapshot:
        ts = s.active_tier_session
        tracker = PositionTracker(ts.position_states)
        return SessionSnapshot(
            session_id=s.id,
            challenge_id=s.challenge_id,
            tier_session_id=ts.id,
            current_position=ts.current_position,
            position_states=list(ts.position_states),
            total_score=s.total_score,
            wrong_guesses=ts.wrong_guesses,
            screenshots_found=len(tracker.correct_positions()),
            total_screenshots=tracker.size,
            is_completed=s.is_completed,
            is_catch_up=s.is_catch_up,
            completion_reason=s.completion_reason,
            started_at=ts.started_at,
            deadline_ts=ts.started_at + tier.time_limit_seconds,
            base_points=self.settings.BASE_POINTS,
            decay_rate_per_second=self.settings.DECAY_RATE_PER_SECOND,
            completion=self.resolver.record_for(s) if s.is_completed else None,
        )

    # operations

    def _play_window(self, day: dt.date, now: float) -> bool:
        """Return whether playing ``day`` now is a catch-up; raise if not playable."""
        today = ts_to_date(now)
        if day > today:
            raise ChallengeUnavailable("Challenge is not available yet", date=day.isoformat())
        window = self.settings.CATCH_UP_WINDOW_DAYS
        if window is not None and (today - day).days > window:
            raise ChallengeUnavailable(
                "This challenge is no longer available",
                date=day.isoformat(),
                catch_up_window_days=window,
            )
        return day < today

    async def start_challenge(self, challenge_id: str, user_id: str) -> StartResult:
        challenge = await self.catalog.get_challenge(challenge_id)
        if not challenge:
            raise NotFound("Challenge not found", challenge_id=challenge_id)
        tier = await self.catalog.first_tier(challenge.id)
        positions = await self.catalog.count_positions(tier.id)
        if positions == 0:
            raise NotFound("Challenge has no screenshots", challenge_id=challenge_id)

        async with self._locked(f"start:{user_id}:{challenge_id}"):
            existing = await self._find_user_session(user_id, challenge_id)
            if existing:
                existing = await self._expire_if_due(existing, tier)
                if existing.is_completed:
                    raise AlreadyCompleted(
                        "You have already completed this challenge",
                        session_id=existing.id,
                        challenge_id=challenge_id,
                    )
                logger.info("resuming existing session", extra={"session_id": existing.id, "user_id": user_id})
                return StartResult(resumed=True, session=self._snapshot(existing, tier))

            now = self.clock()
            is_catch_up = self._play_window(challenge.date, now)
            s = GameSession(
                id=new_id(),
                user_id=user_id,
                challenge_id=challenge.id,
                is_catch_up=is_catch_up,
                started_at=now,
                tier_sessions=[
                    TierSession(
                        id=new_id(),
                        tier_id=tier.id,
                        started_at=now,
                        current_position=1,
                        position_states=PositionTracker.fresh(positions).states,
                    )
                ],
            )
            await self.save_session(s)

        logger.info(
            "new game session started",
            extra={"session_id": s.id, "challenge_id": challenge_id, "user_id": user_id, "is_catch_up": is_catch_up},
        )
        await self.events.append(s.id, {"type": "session_started", "positions": positions})
        return StartResult(resumed=False, session=self._snapshot(s, tier))

    async def get_snapshot(self, session_id: str, user_id: str) -> SessionSnapshot:
        s = await self._load_owned(session_id, user_id)
        tier = await self._tier_for(s)
        s = await self._expire_if_due(s, tier)
        return self._snapshot(s, tier)

    async def get_screenshot(self, session_id: str, position: int, user_id: str) -> ScreenshotView:
        s = await self._load_owned(session_id, user_id)
        tier = await self._tier_for(s)
        s = await self._expire_if_due(s, tier)
        if s.is_completed:
            raise SessionCompleted(
                "Session already completed",
                completion=self.resolver.record_for(s),
                session_id=s.id,
            )

        tracker = PositionTracker(s.active_tier_session.position_states)
        if not tracker.exists(position):
            raise InvalidPosition("Position out of range", session_id=session_id, position=position)
        binding = await self.catalog.get_tier_screenshot(tier.id, position)
        if not binding:
            raise NotFound("Screenshot not found", session_id=session_id, position=position)

        return ScreenshotView(
            screenshot_id=binding.screenshot_id,
            position=binding.position,
            image_url=await self.url_resolver(binding.image_url),
            bonus_multiplier=binding.bonus_multiplier,
            state=tracker.state(position),
        )

    async def submit_guess(
        self,
        session_id: str,
        screenshot_id: int,
        position: int,
        submitted_game_id: Optional[int],
        guess_text: str,
        user_id: str,
        client_elapsed_ms: Optional[int] = None,
    ) -> GuessOutcome:
        async with self._locked(session_id) as outbox:
            s = await self._load_owned(session_id, user_id)
            tier = await self._tier_for(s)
            now = self.clock()
            await self._ensure_open(s, tier, now, outbox)

            ts = s.active_tier_session
            tracker = PositionTracker(ts.position_states)
            if not tracker.exists(position):
                raise InvalidPosition("Position out of range", session_id=session_id, position=position)
            if tracker.state(position) == PositionState.CORRECT:
                raise AlreadySolved("Position already solved", session_id=session_id, position=position)
            if position != ts.current_position:
                raise InvalidPosition(
                    "Guess is not for the current position",
                    session_id=session_id,
                    position=position,
                    current_position=ts.current_position,
                )

            verdict = await self.validator.check(ts.tier_id, position, screenshot_id, submitted_game_id)
            elapsed = elapsed_ms(ts.started_at, now)

            awarded = 0
            penalty = 0
            if verdict.is_correct:
                awarded = award_for(
                    ts.started_at,
                    now,
                    self.settings.BASE_POINTS,
                    self.settings.DECAY_RATE_PER_SECOND,
                    verdict.binding.bonus_multiplier,
                )
                tracker.mark_correct(position)
                s.total_score += awarded
                next_position = tracker.next_navigable_after(position)
                if next_position is not None:
                    ts.current_position = next_position
            else:
                ts.wrong_guesses += 1
                before = s.total_score
                s.total_score = apply_penalty(s.total_score, self.settings.WRONG_GUESS_PENALTY)
                penalty = before - s.total_score

            ts.guesses.append(
                Guess(
                    id=new_id(),
                    tier_session_id=ts.id,
                    screenshot_id=screenshot_id,
                    position=position,
                    submitted_game_id=submitted_game_id,
                    guess_text=guess_text,
                    is_correct=verdict.is_correct,
                    session_elapsed_ms=elapsed,
                    score_awarded=awarded,
                    client_elapsed_ms=client_elapsed_ms,
                    created_at=now,
                )
            )

            record = None
            if tracker.all_correct():
                record = self.resolver.finalize(s, CompletionReason.ALL_CORRECT, now)
            await self.save_session(s)
            await self.events.append(
                s.id,
                {
                    "type": "guess",
                    "position": position,
                    "isCorrect": verdict.is_correct,
                    "scoreAwarded": awarded,
                    "totalScore": s.total_score,
                },
            )
            if record is not None:
                await self._emit(record, outbox)

        logger.info(
            "guess submitted",
            extra={
                "session_id": session_id,
                "user_id": user_id,
                "position": position,
                "is_correct": verdict.is_correct,
                "score_awarded": awarded,
                "penalty": penalty,
                "session_elapsed_ms": elapsed,
                "client_elapsed_ms": client_elapsed_ms,
                "guess_text": guess_text,
            },
        )

        return GuessOutcome(
            is_correct=verdict.is_correct,
            position=position,
            position_state=tracker.state(position),
            score_awarded=awarded,
            wrong_guess_penalty=penalty,
            total_score=s.total_score,
            wrong_guesses=ts.wrong_guesses,
            session_elapsed_ms=elapsed,
            next_position=ts.current_position,
            correct_game_id=verdict.canonical_game_id if verdict.is_correct else None,
            is_completed=s.is_completed,
            completion=record,
        )

    async def navigate(self, session_id: str, target_position: int, user_id: str) -> SessionSnapshot:
        async with self._locked(session_id) as outbox:
            s = await self._load_owned(session_id, user_id)
            tier = await self._tier_for(s)
            await self._ensure_open(s, tier, self.clock(), outbox)

            ts = s.active_tier_session
            if not PositionTracker(ts.position_states).exists(target_position):
                raise InvalidNavigation(
                    "Position does not exist",
                    session_id=session_id,
                    position=target_position,
                )
            ts.current_position = target_position
            await self.save_session(s)

        logger.info("navigated", extra={"session_id": session_id, "position": target_position})
        return self._snapshot(s, tier)

    async def skip(self, session_id: str, user_id: str) -> SessionSnapshot:
        async with self._locked(session_id) as outbox:
            s = await self._load_owned(session_id, user_id)
            tier = await self._tier_for(s)
            now = self.clock()
            await self._ensure_open(s, tier, now, outbox)

            ts = s.active_tier_session
            tracker = PositionTracker(ts.position_states)
            skipped_from = ts.current_position
            tracker.mark_skipped(skipped_from)

            next_position = tracker.next_navigable_after(skipped_from)
            reason = None
            if next_position is not None:
                ts.current_position = next_position
            else:
                # Nothing else left to play: let the resolver decide, otherwise stay put.
                reason = self.resolver.terminal_reason(s, tier, now)

            if reason is not None:
                await self._complete(s, reason, now, outbox)
            else:
                await self.save_session(s)

        logger.info(
            "position skipped",
            extra={"session_id": session_id, "position": skipped_from, "next_position": ts.current_position},
        )
        return self._snapshot(s, tier)

    async def forfeit(self, session_id: str, user_id: str) -> CompletionRecord:
        async with self._locked(session_id) as outbox:
            s = await self._load_owned(session_id, user_id)
            tier = await self._tier_for(s)
            now = self.clock()
            await self._ensure_open(s, tier, now, outbox)
            record = await self._complete(s, CompletionReason.FORFEITED, now, outbox)

        logger.info("game ended by user (forfeit)", extra={"session_id": session_id, "user_id": user_id})
        return record

    async def get_today_challenge(self, user_id: Optional[str] = None, day: Optional[dt.date] = None) -> TodayChallenge:
        today = ts_to_date(self.clock())
        target = day or today

        challenge = await self.catalog.find_challenge_by_date(target)
        if not challenge:
            return TodayChallenge(date=target)

        tiers = await self.catalog.get_tiers(challenge.id)
        total = await self.catalog.count_positions(tiers[0].id) if tiers else 0

        user_session = None
        if user_id and tiers:
            s = await self._find_user_session(user_id, challenge.id)
            if s:
                s = await self._expire_if_due(s, tiers[0])
                user_session = self._snapshot(s, tiers[0])

        yesterday = None
        if day is None and user_id:
            previous = await self.catalog.find_challenge_by_date(today - dt.timedelta(days=1))
            if previous:
                played = await self._find_user_session(user_id, previous.id)
                yesterday = YesterdayChallenge(
                    challenge_id=previous.id,
                    date=previous.date,
                    has_played=played is not None,
                    is_completed=bool(played and played.is_completed),
                )

        return TodayChallenge(
            challenge_id=challenge.id,
            date=challenge.date,
            total_screenshots=total,
            has_played=user_session is not None,
            user_session=user_session,
            yesterday=yesterday,
        )


controller = GameController()
