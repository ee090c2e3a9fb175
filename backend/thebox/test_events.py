from __future__ import annotations

from unittest import IsolatedAsyncioTestCase

from .db import InMemoryDatabase
from .events import EventStore


class EventStoreTests(IsolatedAsyncioTestCase):
    def setUp(self) -> None:  # noqa: D401 - standard unittest hook
        self.store = EventStore(InMemoryDatabase())

    async def test_sequence_numbers_increase_per_session(self):
        seqs = [await self.store.append("s1", {"type": "guess", "n": n}) for n in range(3)]
        other = await self.store.append("s2", {"type": "guess"})

        self.assertEqual(seqs, [1, 2, 3])
        self.assertEqual(other, 1)

    async def test_list_after_sequence(self):
        for n in range(4):
            await self.store.append("s1", {"type": "guess", "n": n})

        events = await self.store.list("s1", after=2)

        self.assertEqual([e["seq"] for e in events], [3, 4])
        self.assertEqual(events[0]["payload"], {"type": "guess", "n": 2})
        self.assertEqual(len(await self.store.list("s1", limit=2)), 2)

    async def test_publish_notifies_matching_listeners(self):
        seen = []

        async def on_completed(session_id, payload):
            seen.append((session_id, payload["type"]))

        self.store.subscribe("session_completed", on_completed)
        await self.store.publish("s1", {"type": "guess"})
        await self.store.publish("s1", {"type": "session_completed"})

        self.assertEqual(seen, [("s1", "session_completed")])
        self.assertEqual(await self.store.count("s1", "session_completed"), 1)

    async def test_failing_listener_is_logged(self):
        called = []

        async def broken(session_id, payload):
            raise RuntimeError("boom")

        async def healthy(session_id, payload):
            called.append(session_id)

        self.store.subscribe("session_completed", broken)
        self.store.subscribe("session_completed", healthy)

        with self.assertLogs("backend.thebox.events", level="ERROR") as logs:
            seq = await self.store.publish("s1", {"type": "session_completed"})

        self.assertEqual(seq, 1)
        self.assertEqual(called, ["s1"])
        self.assertIn("event listener failed", logs.output[0])
