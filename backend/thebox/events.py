from __future__ import annotations

from typing import Any, Awaitable, Callable, Dict, List

from pymongo import ReturnDocument

from .db import db
from .logging_config import get_logger
from .utils import now_ts

logger = get_logger(__name__)

Listener = Callable[[str, dict[str, Any]], Awaitable[None]]


class EventStore:
    """Per-session event log.

    Clients poll it over HTTP; in-process collaborators (leaderboard,
    achievements) subscribe to event types and are called after the event
    has been stored.
    """

    def __init__(self, database: Any = None):
        database = database if database is not None else db
        self.counters_collection = database.session_event_counters
        self.events_collection = database.session_events
        self._listeners: Dict[str, List[Listener]] = {}

    def subscribe(self, event_type: str, listener: Listener) -> None:
        self._listeners.setdefault(event_type, []).append(listener)

    async def _next_seq(self, session_id: str) -> int:
        counter_doc = await self.counters_collection.find_one_and_update(
            {"_id": session_id},
            {"$inc": {"seq": 1}},
            upsert=True,
            return_document=ReturnDocument.AFTER,
        )
        if not counter_doc:
            # Some Mongo-compatible providers return None after an upsert.
            counter_doc = await self.counters_collection.find_one({"_id": session_id})
        return int((counter_doc or {}).get("seq", 1))

    async def append(self, session_id: str, payload: dict[str, Any]) -> int:
        """Store a new event for a session and return its sequence number."""
        seq = await self._next_seq(session_id)
        await self.events_collection.insert_one(
            {
                "session_id": session_id,
                "seq": seq,
                "type": payload.get("type"),
                "timestamp": now_ts(),
                "payload": payload,
            }
        )
        return seq

    async def publish(self, session_id: str, payload: dict[str, Any]) -> int:
        """Append ``payload`` and hand it to the listeners of its type.

        A failing listener is logged and skipped; the event stays stored.
        """
        seq = await self.append(session_id, payload)
        await self.notify(session_id, payload)
        return seq

    async def notify(self, session_id: str, payload: dict[str, Any]) -> None:
        """Hand an already stored event to the listeners of its type."""
        for listener in self._listeners.get(payload.get("type", ""), []):
            try:
                await listener(session_id, payload)
            except Exception:
                logger.exception(
                    "event listener failed",
                    extra={"session_id": session_id, "event_type": payload.get("type")},
                )

    async def list(self, session_id: str, after: int | None = None, limit: int = 200) -> List[dict[str, Any]]:
        """Return events for a session that occur after the given sequence."""
        query: dict[str, Any] = {"session_id": session_id}
        if after is not None:
            query["seq"] = {"$gt": after}

        cursor = self.events_collection.find(query).sort("seq", 1).limit(limit)
        return [
            {"seq": doc["seq"], "timestamp": doc.get("timestamp"), "payload": doc.get("payload", {})}
            async for doc in cursor
        ]

    async def count(self, session_id: str, event_type: str) -> int:
        return await self.events_collection.count_documents({"session_id": session_id, "type": event_type})


event_store = EventStore()
