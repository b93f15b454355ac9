"""Tests for the client synchronization engine."""

from __future__ import annotations

import asyncio
import unittest
from datetime import datetime, timedelta, timezone

from chatsync.client.models import ClientOptions, ConnectionStatus, PendingMessage, PendingStatus
from chatsync.client.sync_engine import ChatSyncEngine
from chatsync.config import Settings
from chatsync.errors import ConnectionLost, TransientStoreError
from chatsync.schemas.message import MessageRead
from chatsync.schemas.stream import ConnectedEvent, ErrorEvent, MessagesEvent

_BASE = datetime.now(timezone.utc) - timedelta(minutes=10)


def _message(idx: int, body: str | None = None, *, sender_id: str = "user-ada", at: datetime | None = None) -> MessageRead:
    return MessageRead(
        id=idx,
        conversation_id="global",
        sender_id=sender_id,
        sender_name="Ada",
        body=body or f"message {idx}",
        timestamp=at or _BASE + timedelta(seconds=idx),
    )


class _FakeTransport:
    def __init__(self, *snapshots) -> None:
        self.snapshots = list(snapshots) or [[]]
        self.queues: list[asyncio.Queue] = []
        self.snapshot_calls: list[dict] = []
        self.stream_opens = 0
        self.closed_streams = 0

    def add_stream(self, *items) -> asyncio.Queue:
        queue: asyncio.Queue = asyncio.Queue()
        for item in items:
            queue.put_nowait(item)
        self.queues.append(queue)
        return queue

    async def fetch_snapshot(self, conversation_id, *, since=None, limit=100, latest=False):
        self.snapshot_calls.append({"conversation_id": conversation_id, "limit": limit, "latest": latest})
        item = self.snapshots.pop(0) if len(self.snapshots) > 1 else self.snapshots[0]
        if isinstance(item, Exception):
            raise item
        return list(item)

    async def send_message(self, conversation_id, text, kind="text"):
        raise AssertionError("not used")

    async def stream_events(self, conversation_id):
        self.stream_opens += 1
        if not self.queues:
            raise ConnectionLost("connection refused")
        queue = self.queues.pop(0)
        try:
            while True:
                item = await queue.get()
                if item is None:
                    return
                if isinstance(item, Exception):
                    raise item
                yield item
        finally:
            self.closed_streams += 1


async def _wait_until(predicate, timeout: float = 2.0) -> None:
    async def _poll() -> None:
        while not predicate():
            await asyncio.sleep(0.005)

    await asyncio.wait_for(_poll(), timeout=timeout)


def _pending(body: str, *, status: PendingStatus = PendingStatus.SENDING) -> PendingMessage:
    return PendingMessage(
        conversation_id="global",
        sender_id="user-ada",
        sender_name="Ada",
        body=body,
        status=status,
    )


class ChatSyncEngineStateTests(unittest.IsolatedAsyncioTestCase):
    def setUp(self) -> None:
        self.renders: list[list] = []

    def _engine(self, transport: _FakeTransport, **options) -> ChatSyncEngine:
        return ChatSyncEngine(
            "global",
            transport,
            options=ClientOptions(**options),
            on_change=self.renders.append,
        )

    async def test_snapshot_sets_base_and_confirmed_count(self) -> None:
        transport = _FakeTransport([_message(1), _message(2)])
        engine = self._engine(transport, snapshot_limit=50)

        self.assertTrue(await engine.load_snapshot())

        self.assertEqual([m.id for m in engine.visible], [1, 2])
        self.assertEqual(engine.last_confirmed_count, 2)
        self.assertFalse(engine.loading)
        self.assertEqual(transport.snapshot_calls, [{"conversation_id": "global", "limit": 50, "latest": True}])
        self.assertEqual(len(self.renders), 1)

    async def test_unchanged_count_is_ignored_without_rerender(self) -> None:
        engine = self._engine(_FakeTransport([_message(1), _message(2), _message(3)]))
        await engine.load_snapshot()
        renders_before = len(self.renders)

        changed = engine.apply_event(MessagesEvent(messages=[_message(1), _message(2), _message(3)], count=3))

        self.assertFalse(changed)
        self.assertEqual(len(self.renders), renders_before)

    async def test_stale_lower_count_is_ignored(self) -> None:
        engine = self._engine(_FakeTransport([_message(1), _message(2)]))
        await engine.load_snapshot()

        self.assertFalse(engine.apply_event(MessagesEvent(messages=[_message(1)], count=1)))
        self.assertEqual([m.id for m in engine.visible], [1, 2])

    async def test_duplicate_delivery_is_idempotent(self) -> None:
        engine = self._engine(_FakeTransport([_message(1)]))
        await engine.load_snapshot()
        engine.add_pending(_pending("draft"))
        event = MessagesEvent(messages=[_message(1), _message(2)], count=2)

        self.assertTrue(engine.apply_event(event))
        once = [m.id for m in engine.visible]
        self.assertFalse(engine.apply_event(event))

        self.assertEqual([m.id for m in engine.visible], once)

    async def test_delta_absorbs_matching_pending_and_keeps_the_rest(self) -> None:
        engine = self._engine(_FakeTransport([_message(1)]))
        await engine.load_snapshot()
        matched = _pending("hello")
        unmatched = _pending("not yet stored")
        failed = _pending("hello", status=PendingStatus.FAILED)
        for entry in (failed, matched, unmatched):
            engine.add_pending(entry)

        confirmed_hello = _message(2, "hello", at=matched.origin_timestamp + timedelta(seconds=1))
        engine.apply_event(MessagesEvent(messages=[_message(1), confirmed_hello], count=2))

        visible = engine.visible
        self.assertEqual(visible[:2], [_message(1), confirmed_hello])
        self.assertEqual(visible[2:], [failed, unmatched])
        self.assertEqual(sum(1 for m in visible if m.body == "hello" and isinstance(m, MessageRead)), 1)

    async def test_update_pending_drops_entry_already_in_confirmed_base(self) -> None:
        engine = self._engine(_FakeTransport([_message(1), _message(2, "hi")]))
        await engine.load_snapshot()
        pending = _pending("hi")
        pending.origin_timestamp = datetime.now(timezone.utc) + timedelta(minutes=5)
        engine.add_pending(pending)

        still_listed = engine.update_pending(pending, status=PendingStatus.SENT, confirmed=_message(2, "hi"))

        self.assertFalse(still_listed)
        self.assertEqual(engine.pending, [])
        self.assertIs(pending.status, PendingStatus.SENT)

    async def test_error_event_degrades_until_next_delta(self) -> None:
        engine = self._engine(_FakeTransport([_message(1)]))
        await engine.load_snapshot()
        engine.apply_event(ConnectedEvent(conversation_id="global"))
        self.assertIs(engine.status, ConnectionStatus.ONLINE)

        engine.apply_event(ErrorEvent(error="store timed out"))
        self.assertIs(engine.status, ConnectionStatus.DEGRADED)
        self.assertEqual(engine.error, "store timed out")

        engine.apply_event(MessagesEvent(messages=[_message(1), _message(2)], count=2))
        self.assertIs(engine.status, ConnectionStatus.ONLINE)
        self.assertIsNone(engine.error)

    async def test_snapshot_failure_reports_offline(self) -> None:
        engine = self._engine(_FakeTransport(TransientStoreError("Chat server HTTP 503")))

        self.assertFalse(await engine.load_snapshot())

        self.assertIs(engine.status, ConnectionStatus.OFFLINE)
        self.assertIn("503", engine.error)
        self.assertEqual(engine.visible, [])

    async def test_unexpected_snapshot_failure_is_contained(self) -> None:
        engine = self._engine(_FakeTransport(KeyError("data")))

        self.assertFalse(await engine.load_snapshot())
        self.assertIs(engine.status, ConnectionStatus.OFFLINE)


class ClientOptionsTests(unittest.TestCase):
    def test_options_resolve_from_settings_with_overrides(self) -> None:
        settings = Settings(chat_snapshot_limit=40, chat_reconcile_window_seconds=2.0, message_max_length=300)

        options = ClientOptions.from_settings(settings, max_reconnect_attempts=3)

        self.assertEqual(options.snapshot_limit, 40)
        self.assertEqual(options.reconcile_window_seconds, 2.0)
        self.assertEqual(options.reconnect_delay_seconds, settings.chat_reconnect_delay_seconds)
        self.assertEqual(options.max_message_length, 300)
        self.assertEqual(options.max_reconnect_attempts, 3)


class ChatSyncEngineConnectionTests(unittest.IsolatedAsyncioTestCase):
    def setUp(self) -> None:
        self.sleeps: list[float] = []

    async def _sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        await asyncio.sleep(0)

    async def test_reconnects_after_delay_with_fresh_snapshot(self) -> None:
        transport = _FakeTransport([_message(1)], [_message(1), _message(2)])
        transport.add_stream(ConnectedEvent(conversation_id="global"), ConnectionLost("stream dropped"))
        transport.add_stream(
            ConnectedEvent(conversation_id="global"),
            MessagesEvent(messages=[_message(1), _message(2), _message(3)], count=3),
        )
        engine = ChatSyncEngine("global", transport, sleep=self._sleep)

        engine.start()
        await _wait_until(lambda: engine.last_confirmed_count == 3)
        await engine.stop()

        self.assertEqual(self.sleeps, [5.0])
        self.assertEqual(len(transport.snapshot_calls), 2)
        self.assertEqual([m.id for m in engine.visible], [1, 2, 3])
        self.assertEqual(transport.closed_streams, 2)
        self.assertIs(engine.status, ConnectionStatus.CLOSED)

    async def test_reconnect_attempts_are_bounded_and_spaced(self) -> None:
        transport = _FakeTransport([_message(1)])
        engine = ChatSyncEngine(
            "global",
            transport,
            options=ClientOptions(reconnect_delay_seconds=2.5, max_reconnect_attempts=2),
            sleep=self._sleep,
        )

        await asyncio.wait_for(engine.run(), timeout=2)

        self.assertEqual(self.sleeps, [2.5, 2.5])
        self.assertEqual(transport.stream_opens, 3)
        self.assertIs(engine.status, ConnectionStatus.OFFLINE)
        self.assertIn("Trying to reconnect", engine.error)

    async def test_clean_end_of_stream_reconnects(self) -> None:
        transport = _FakeTransport([_message(1)])
        transport.add_stream(ConnectedEvent(conversation_id="global"), None)
        engine = ChatSyncEngine(
            "global",
            transport,
            options=ClientOptions(max_reconnect_attempts=1),
            sleep=self._sleep,
        )

        await asyncio.wait_for(engine.run(), timeout=2)

        self.assertEqual(transport.stream_opens, 2)
        self.assertEqual(self.sleeps, [5.0])
        self.assertIs(engine.status, ConnectionStatus.OFFLINE)

    async def test_stop_closes_open_stream(self) -> None:
        transport = _FakeTransport([_message(1)])
        transport.add_stream(ConnectedEvent(conversation_id="global"))
        engine = ChatSyncEngine("global", transport, sleep=self._sleep)

        engine.start()
        await _wait_until(lambda: engine.status is ConnectionStatus.ONLINE)
        await engine.stop()

        self.assertEqual(transport.closed_streams, 1)
        self.assertIs(engine.status, ConnectionStatus.CLOSED)
        self.assertEqual(self.sleeps, [])


if __name__ == "__main__":
    unittest.main()
