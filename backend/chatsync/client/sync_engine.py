"""Client-side source of truth for one conversation's visible messages."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from contextlib import aclosing
from datetime import timedelta

from chatsync.client.models import ClientOptions, ConnectionStatus, PendingMessage, PendingStatus
from chatsync.client.reconcile import reconcile_pending
from chatsync.client.transport import ChatTransport
from chatsync.errors import ChatError, ConnectionLost
from chatsync.schemas.message import MessageRead
from chatsync.schemas.stream import ConnectedEvent, ErrorEvent, MessagesEvent, StreamEvent

logger = logging.getLogger(__name__)

VisibleMessage = MessageRead | PendingMessage


class ChatSyncEngine:
    """Merge the snapshot, stream deltas and optimistic sends into one list.

    All mutation happens on the event loop that runs the engine, so no
    locking is needed. The visible list is the latest confirmed window
    followed by pending entries that have not been matched yet.
    """

    def __init__(
        self,
        conversation_id: str,
        transport: ChatTransport,
        *,
        options: ClientOptions | None = None,
        on_change: Callable[[list[VisibleMessage]], None] | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self.conversation_id = conversation_id
        self.options = options or ClientOptions()
        self.confirmed: list[MessageRead] = []
        self.pending: list[PendingMessage] = []
        self.last_confirmed_count = 0
        self.status = ConnectionStatus.IDLE
        self.error: str | None = None
        self.loading = True
        self._transport = transport
        self._on_change = on_change
        self._sleep = sleep
        self._window = timedelta(seconds=self.options.reconcile_window_seconds)
        self._stopped = False
        self._stream_healthy = False
        self._task: asyncio.Task | None = None

    @property
    def visible(self) -> list[VisibleMessage]:
        return [*self.confirmed, *self.pending]

    async def load_snapshot(self) -> bool:
        """Fetch the initial window; return False when it could not be loaded."""

        try:
            messages = await self._transport.fetch_snapshot(
                self.conversation_id,
                limit=self.options.snapshot_limit,
                latest=True,
            )
        except ChatError as exc:
            self._set_error(str(exc), ConnectionStatus.OFFLINE)
            return False
        except Exception as exc:
            logger.exception("chat.snapshot_failed conversation_id=%s", self.conversation_id)
            self._set_error(f"Failed to load messages: {exc}", ConnectionStatus.OFFLINE)
            return False

        self.confirmed = list(messages)
        self.pending = reconcile_pending(self.pending, self.confirmed, self._window)
        self.last_confirmed_count = len(self.confirmed)
        self.loading = False
        self._notify()
        return True

    def apply_event(self, event: StreamEvent) -> bool:
        """Apply one stream event; return True when the visible list changed."""

        if isinstance(event, MessagesEvent):
            return self.apply_messages(event.messages, event.count)
        if isinstance(event, ErrorEvent):
            self._set_error(event.error, ConnectionStatus.DEGRADED)
            return False
        if isinstance(event, ConnectedEvent):
            self.status = ConnectionStatus.ONLINE
            self.error = None
        return False

    def apply_messages(self, messages: list[MessageRead], count: int) -> bool:
        # Stale or repeated deliveries carry a count we have already seen.
        if count <= self.last_confirmed_count:
            return False
        self.pending = reconcile_pending(self.pending, messages, self._window)
        self.confirmed = list(messages)
        self.last_confirmed_count = count
        if self.status is ConnectionStatus.DEGRADED:
            self.status = ConnectionStatus.ONLINE
            self.error = None
        self._notify()
        return True

    def get_pending(self, temp_id: str) -> PendingMessage | None:
        for entry in self.pending:
            if entry.id == temp_id:
                return entry
        return None

    def add_pending(self, pending: PendingMessage) -> None:
        self.pending.append(pending)
        self._notify()

    def update_pending(
        self,
        pending: PendingMessage,
        *,
        status: PendingStatus,
        error: str | None = None,
        confirmed: MessageRead | None = None,
    ) -> bool:
        """Record a send outcome; return True if the entry is still listed."""

        pending.status = status
        pending.error = error
        if confirmed is not None:
            pending.confirmed = confirmed
        if pending not in self.pending:
            return False
        if confirmed is not None and any(message.id == confirmed.id for message in self.confirmed):
            self.pending.remove(pending)
            self._notify()
            return False
        self._notify()
        return True

    def remove_pending(self, temp_id: str) -> PendingMessage | None:
        entry = self.get_pending(temp_id)
        if entry is None:
            return None
        self.pending.remove(entry)
        self._notify()
        return entry

    def start(self) -> asyncio.Task:
        """Run the engine in a background task on the current loop."""

        if self._task is None or self._task.done():
            self._task = asyncio.create_task(self.run())
        return self._task

    async def stop(self) -> None:
        """Close the stream and stop reconnecting."""

        self._stopped = True
        task, self._task = self._task, None
        if task is not None and not task.done():
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass
        self.status = ConnectionStatus.CLOSED

    async def run(self) -> None:
        """Snapshot, stream and reconnect until stopped or out of attempts."""

        self._stopped = False
        attempts = 0
        self.status = ConnectionStatus.CONNECTING
        try:
            while not self._stopped:
                self._stream_healthy = False
                try:
                    if not await self.load_snapshot():
                        raise ConnectionLost(self.error or "Failed to load messages.")
                    await self._consume_stream()
                    if self._stopped:
                        break
                    raise ConnectionLost("Event stream ended.")
                except ChatError as exc:
                    self._set_error(f"Connection lost. Trying to reconnect... ({exc})", ConnectionStatus.RECONNECTING)
                except Exception as exc:
                    logger.exception("chat.stream_failed conversation_id=%s", self.conversation_id)
                    self._set_error(f"Connection lost. Trying to reconnect... ({exc})", ConnectionStatus.RECONNECTING)

                if self._stream_healthy:
                    attempts = 0
                attempts += 1
                limit = self.options.max_reconnect_attempts
                if limit is not None and attempts > limit:
                    logger.warning(
                        "chat.reconnect_exhausted conversation_id=%s attempts=%d",
                        self.conversation_id,
                        attempts - 1,
                    )
                    self.status = ConnectionStatus.OFFLINE
                    return
                logger.info(
                    "chat.reconnect_scheduled conversation_id=%s attempt=%d delay_s=%.1f",
                    self.conversation_id,
                    attempts,
                    self.options.reconnect_delay_seconds,
                )
                await self._sleep(self.options.reconnect_delay_seconds)
        finally:
            if self._stopped:
                self.status = ConnectionStatus.CLOSED

    async def _consume_stream(self) -> None:
        async with aclosing(self._transport.stream_events(self.conversation_id)) as stream:
            async for event in stream:
                if isinstance(event, ConnectedEvent):
                    self._stream_healthy = True
                self.apply_event(event)
                if self._stopped:
                    return

    def _set_error(self, message: str, status: ConnectionStatus) -> None:
        logger.warning(
            "chat.sync_degraded conversation_id=%s status=%s error=%s",
            self.conversation_id,
            status.value,
            message,
        )
        self.error = message
        self.status = status

    def _notify(self) -> None:
        if self._on_change is not None:
            self._on_change(self.visible)
