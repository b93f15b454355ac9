"""Polling bridge that turns store changes into a one-way event stream."""

from __future__ import annotations

import asyncio
import enum
import logging
from collections.abc import AsyncIterator, Awaitable, Callable
from time import monotonic

from starlette.concurrency import run_in_threadpool

from chatsync.schemas.stream import ConnectedEvent, ErrorEvent, MessagesEvent, StreamEvent
from chatsync.services.messages import MessageStore

logger = logging.getLogger(__name__)

DEFAULT_POLL_INTERVAL_SECONDS = 5.0
DEFAULT_MAX_LIFETIME_SECONDS = 30 * 60.0
DEFAULT_SNAPSHOT_LIMIT = 100


class BridgeState(str, enum.Enum):
    CONNECTING = "connecting"
    STREAMING = "streaming"
    CLOSED = "closed"


def format_sse(event: ConnectedEvent | MessagesEvent | ErrorEvent) -> str:
    """Render one event as a server-sent-events `data:` frame."""

    return f"data: {event.model_dump_json()}\n\n"


class ChangeFeedBridge:
    """Forward message-count changes for one conversation to one client.

    Each open stream owns its own bridge. Bridges never share state; every
    instance re-reads the store on its own schedule, so a stalled client
    only holds up its own polling task.

    The bridge emits ``connected`` right away, then polls ``store.count()``
    every ``poll_interval`` seconds. When the count differs from the last
    observation it reads the newest ``snapshot_limit`` messages and emits
    them as a ``messages`` event. Store failures become ``error`` events and
    polling carries on. The stream ends when the client goes away or after
    ``max_lifetime`` seconds.
    """

    def __init__(
        self,
        conversation_id: str,
        store: MessageStore,
        *,
        poll_interval: float = DEFAULT_POLL_INTERVAL_SECONDS,
        max_lifetime: float = DEFAULT_MAX_LIFETIME_SECONDS,
        snapshot_limit: int = DEFAULT_SNAPSHOT_LIMIT,
        is_disconnected: Callable[[], Awaitable[bool]] | None = None,
        clock: Callable[[], float] = monotonic,
    ) -> None:
        if poll_interval <= 0:
            raise ValueError("poll_interval must be positive")
        self.conversation_id = conversation_id
        self.state = BridgeState.CONNECTING
        self.last_count = 0
        self._store = store
        self._poll_interval = poll_interval
        self._max_lifetime = max_lifetime
        self._snapshot_limit = snapshot_limit
        self._is_disconnected = is_disconnected
        self._clock = clock
        self._closed = asyncio.Event()

    def close(self) -> None:
        """Ask the polling loop to stop at its next wake-up."""

        self._closed.set()

    async def events(self) -> AsyncIterator[StreamEvent]:
        deadline = self._clock() + self._max_lifetime
        try:
            self.state = BridgeState.STREAMING
            yield ConnectedEvent(conversation_id=self.conversation_id)
            logger.info("chat.bridge_opened conversation_id=%s", self.conversation_id)

            while True:
                remaining = deadline - self._clock()
                if remaining <= 0:
                    logger.info("chat.bridge_expired conversation_id=%s", self.conversation_id)
                    break
                if await self._wait(min(self._poll_interval, remaining)):
                    break
                if self._clock() >= deadline:
                    logger.info("chat.bridge_expired conversation_id=%s", self.conversation_id)
                    break
                if await self._client_gone():
                    logger.info("chat.bridge_client_disconnected conversation_id=%s", self.conversation_id)
                    break
                event = await self.poll_once()
                if event is not None:
                    yield event
        finally:
            self.state = BridgeState.CLOSED
            self._closed.set()

    async def poll_once(self) -> MessagesEvent | ErrorEvent | None:
        """Run one poll; return the event to emit, if any."""

        try:
            count = await run_in_threadpool(self._store.count, self.conversation_id)
            if count == self.last_count:
                return None
            messages = await run_in_threadpool(
                self._store.list_latest,
                self.conversation_id,
                limit=self._snapshot_limit,
            )
        except Exception as exc:
            logger.warning(
                "chat.bridge_poll_failed conversation_id=%s error=%s",
                self.conversation_id,
                exc,
                exc_info=True,
            )
            return ErrorEvent(error=str(exc) or exc.__class__.__name__)

        self.last_count = count
        return MessagesEvent(messages=messages, count=count)

    async def _wait(self, seconds: float) -> bool:
        try:
            await asyncio.wait_for(self._closed.wait(), timeout=seconds)
        except asyncio.TimeoutError:
            return False
        return True

    async def _client_gone(self) -> bool:
        if self._is_disconnected is None:
            return False
        return await self._is_disconnected()
