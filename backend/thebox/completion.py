from __future__ import annotations

from typing import Any, Optional

from pymongo import ReturnDocument

from .db import db as default_db
from .events import EventStore, event_store as default_event_store
from .logging_config import get_logger
from .models import CompletionReason, CompletionRecord, GameSession, Tier
from .positions import PositionTracker
from .utils import ts_to_iso

logger = get_logger(__name__)

SESSION_COMPLETED_EVENT = "session_completed"


def is_expired(session: GameSession, tier: Tier, now: float) -> bool:
    started_at = session.active_tier_session.started_at
    return now - started_at >= tier.time_limit_seconds


class CompletionResolver:
    """Owns the in_progress -> completed transition of a game session."""

    def __init__(self, database: Any = None, events: EventStore | None = None):
        self.db = database if database is not None else default_db
        self.events = events if events is not None else default_event_store

    def terminal_reason(self, session: GameSession, tier: Tier, now: float) -> Optional[CompletionReason]:
        if session.is_completed:
            return session.completion_reason
        tracker = PositionTracker(session.active_tier_session.position_states)
        if tracker.all_correct():
            return CompletionReason.ALL_CORRECT
        if is_expired(session, tier, now):
            return CompletionReason.TIME_EXPIRED
        return None

    def finalize(self, session: GameSession, reason: CompletionReason, now: float) -> CompletionRecord:
        """Mark ``session`` completed in place and build its result record."""
        if session.is_completed:
            raise ValueError(f"session {session.id} is already completed")
        session.is_completed = True
        session.completed_at = now
        session.completion_reason = reason
        return self.record_for(session)

    def record_for(self, session: GameSession) -> CompletionRecord:
        if not session.is_completed or session.completion_reason is None or session.completed_at is None:
            raise ValueError(f"session {session.id} is not completed")
        tracker = PositionTracker(session.active_tier_session.position_states)
        return CompletionRecord(
            session_id=session.id,
            user_id=session.user_id,
            challenge_id=session.challenge_id,
            total_score=session.total_score,
            completion_reason=session.completion_reason,
            completed_at=session.completed_at,
            is_catch_up=session.is_catch_up,
            screenshots_found=len(tracker.correct_positions()),
            wrong_guesses=sum(ts.wrong_guesses for ts in session.tier_sessions),
            unfound_positions=tracker.unfound_positions(),
        )

    async def emit(self, record: CompletionRecord) -> Optional[dict[str, Any]]:
        """Persist ``record`` and store its completion event.

        Must run under the session lock. Returns the stored payload so the
        caller can notify listeners once the lock is released, or None when
        the event was already stored by an earlier call. A failed store
        leaves the row unpublished and the next call retries it.
        """
        row = await self.db.completions.find_one_and_update(
            {"session_id": record.session_id},
            {"$setOnInsert": {**record.model_dump(mode="json"), "published": False}},
            upsert=True,
            return_document=ReturnDocument.AFTER,
        )
        if row and row.get("published"):
            return None

        payload = self.event_payload(record)
        if not await self.events.count(record.session_id, SESSION_COMPLETED_EVENT):
            await self.events.append(record.session_id, payload)
        await self.db.completions.update_one({"session_id": record.session_id}, {"$set": {"published": True}})

        logger.info(
            "game completed",
            extra={
                "session_id": record.session_id,
                "user_id": record.user_id,
                "final_score": record.total_score,
                "completion_reason": record.completion_reason.value,
                "screenshots_found": record.screenshots_found,
            },
        )
        return payload

    @staticmethod
    def event_payload(record: CompletionRecord) -> dict[str, Any]:
        return {
            "type": SESSION_COMPLETED_EVENT,
            "sessionId": record.session_id,
            "userId": record.user_id,
            "challengeId": record.challenge_id,
            "totalScore": record.total_score,
            "completionReason": record.completion_reason.value,
            "completedAt": ts_to_iso(record.completed_at),
            "isCatchUp": record.is_catch_up,
            "screenshotsFound": record.screenshots_found,
            "wrongGuesses": record.wrong_guesses,
            "unfoundPositions": record.unfound_positions,
        }
