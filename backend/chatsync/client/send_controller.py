"""Optimistic sends: show immediately, confirm or fail later."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable
from datetime import datetime, timezone

from chatsync.client.models import PendingMessage, PendingStatus
from chatsync.client.sync_engine import ChatSyncEngine
from chatsync.client.transport import ChatTransport
from chatsync.errors import ChatError
from chatsync.schemas.message import SenderIdentity
from chatsync.validation import clean_message_body

logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class OptimisticSendController:
    """Insert pending entries before the network call and settle them after.

    A failed entry stays visible with status ``failed`` until the user
    retries or discards it. Nothing is retried automatically.
    """

    def __init__(
        self,
        engine: ChatSyncEngine,
        transport: ChatTransport,
        sender: SenderIdentity,
        *,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._engine = engine
        self._transport = transport
        self._sender = sender
        self._clock = clock
        self._in_flight: set[asyncio.Task] = set()

    @property
    def sending(self) -> bool:
        return bool(self._in_flight)

    async def send(self, text: str, kind: str = "text") -> PendingMessage:
        """Send `text` and wait for the outcome.

        Raises MessageValidationError, without touching the network, when
        the trimmed text is empty or too long.
        """

        pending = self._prepare(text, kind)
        await self._deliver(pending)
        return pending

    def submit(self, text: str, kind: str = "text") -> PendingMessage:
        """Insert the pending entry now and deliver it in the background."""

        pending = self._prepare(text, kind)
        task = asyncio.create_task(self._deliver(pending))
        self._in_flight.add(task)
        task.add_done_callback(self._in_flight.discard)
        return pending

    async def retry(self, pending: PendingMessage | str) -> PendingMessage:
        """Drop a failed entry and send its text again as a new entry."""

        entry = self._failed_entry(pending)
        self._engine.remove_pending(entry.id)
        return await self.send(entry.body, entry.kind)

    def discard(self, pending: PendingMessage | str) -> PendingMessage:
        """Drop a failed entry without resending it."""

        entry = self._failed_entry(pending)
        self._engine.remove_pending(entry.id)
        return entry

    def _prepare(self, text: str, kind: str) -> PendingMessage:
        body = clean_message_body(text, max_length=self._engine.options.max_message_length)
        pending = PendingMessage(
            conversation_id=self._engine.conversation_id,
            sender_id=self._sender.user_id,
            sender_name=self._sender.display_name,
            sender_avatar=self._sender.avatar_url,
            body=body,
            kind=kind,
            origin_timestamp=self._clock(),
        )
        self._engine.add_pending(pending)
        return pending

    async def _deliver(self, pending: PendingMessage) -> None:
        try:
            confirmed = await self._transport.send_message(pending.conversation_id, pending.body, pending.kind)
        except ChatError as exc:
            logger.warning(
                "chat.send_failed conversation_id=%s temp_id=%s error=%s",
                pending.conversation_id,
                pending.id,
                exc,
            )
            self._engine.update_pending(pending, status=PendingStatus.FAILED, error=str(exc))
            return
        except Exception:
            logger.exception(
                "chat.send_failed_unexpected conversation_id=%s temp_id=%s",
                pending.conversation_id,
                pending.id,
            )
            self._engine.update_pending(pending, status=PendingStatus.FAILED, error="Failed to send message.")
            return

        self._engine.update_pending(pending, status=PendingStatus.SENT, confirmed=confirmed)

    def _failed_entry(self, pending: PendingMessage | str) -> PendingMessage:
        temp_id = pending if isinstance(pending, str) else pending.id
        entry = self._engine.get_pending(temp_id)
        if entry is None:
            raise KeyError(temp_id)
        if entry.status is not PendingStatus.FAILED:
            raise ValueError(f"Only failed messages can be retried or discarded (status={entry.status.value}).")
        return entry
