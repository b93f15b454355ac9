"""Client transports for the chat snapshot, send and stream endpoints."""

from __future__ import annotations

import json
import logging
from collections.abc import AsyncIterator, Iterable, Iterator
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Protocol
from urllib.parse import quote

import httpx
from pydantic import ValidationError

from chatsync.errors import ChatError, ConnectionLost, MessageValidationError, TransientStoreError
from chatsync.schemas.message import MessageRead, SenderIdentity
from chatsync.schemas.stream import StreamEvent, stream_event_adapter

logger = logging.getLogger(__name__)


class ChatTransport(Protocol):
    """Network operations the sync engine and send controller depend on."""

    async def fetch_snapshot(
        self,
        conversation_id: str,
        *,
        since: datetime | None = None,
        limit: int = 100,
        latest: bool = False,
    ) -> list[MessageRead]:
        """Return the ordered message window."""

    async def send_message(self, conversation_id: str, text: str, kind: str = "text") -> MessageRead:
        """Persist a message and return the confirmed copy."""

    def stream_events(self, conversation_id: str) -> AsyncIterator[StreamEvent]:
        """Yield stream events until the connection ends; closing it closes the connection."""


class SseDecoder:
    """Incremental decoder for `data:` frames on a server-sent-events stream."""

    def __init__(self) -> None:
        self._data: list[str] = []

    def feed(self, line: str) -> StreamEvent | None:
        """Consume one line; return an event when a frame completes."""

        line = line.rstrip("\r\n")
        if not line:
            return self._dispatch()
        if line.startswith(":"):
            return None
        field_name, _, value = line.partition(":")
        if field_name == "data":
            self._data.append(value[1:] if value.startswith(" ") else value)
        return None

    def _dispatch(self) -> StreamEvent | None:
        if not self._data:
            return None
        payload = "\n".join(self._data)
        self._data = []
        try:
            return stream_event_adapter.validate_json(payload)
        except ValidationError:
            logger.warning("chat.stream_frame_invalid payload=%s", payload[:200])
            return None


def parse_sse_lines(lines: Iterable[str]) -> Iterator[StreamEvent]:
    """Decode every complete event in `lines`."""

    decoder = SseDecoder()
    for line in lines:
        event = decoder.feed(line)
        if event is not None:
            yield event


def _raise_for_http_error(code: int, detail: str) -> None:
    if code in (400, 422):
        raise MessageValidationError(detail)
    if code >= 500:
        raise TransientStoreError(f"Chat server HTTP {code}: {detail}")
    raise ChatError(f"Chat server HTTP {code}: {detail}")


def _error_detail(raw: str) -> str:
    try:
        decoded = json.loads(raw)
    except json.JSONDecodeError:
        return raw
    detail = decoded.get("detail") if isinstance(decoded, dict) else None
    return detail if isinstance(detail, str) else raw


@dataclass(slots=True)
class HttpChatTransport:
    """ChatTransport over the REST and event-stream endpoints using httpx.

    Each call opens its own `httpx.AsyncClient`, so leaving a stream early
    closes its socket and the server sees the disconnect.
    """

    base_url: str
    user: SenderIdentity
    timeout_seconds: float = 30
    http_transport: httpx.AsyncBaseTransport | None = None

    async def fetch_snapshot(
        self,
        conversation_id: str,
        *,
        since: datetime | None = None,
        limit: int = 100,
        latest: bool = False,
    ) -> list[MessageRead]:
        params: dict[str, str] = {"limit": str(limit)}
        if since is not None:
            params["since"] = since.isoformat()
        if latest:
            params["latest"] = "true"
        decoded = await self._call_json("GET", f"{self._conversation_path(conversation_id)}/messages", params=params)
        try:
            return [MessageRead.model_validate(row) for row in decoded["data"]["messages"]]
        except (KeyError, TypeError, ValidationError) as exc:
            raise ChatError("Chat server returned an unexpected snapshot") from exc

    async def send_message(self, conversation_id: str, text: str, kind: str = "text") -> MessageRead:
        decoded = await self._call_json(
            "POST",
            f"{self._conversation_path(conversation_id)}/messages",
            payload={"text": text, "kind": kind},
        )
        try:
            return MessageRead.model_validate(decoded["data"])
        except (KeyError, TypeError, ValidationError) as exc:
            raise ChatError("Chat server returned an unexpected message") from exc

    async def stream_events(self, conversation_id: str) -> AsyncIterator[StreamEvent]:
        headers = {**self._headers(), "Accept": "text/event-stream"}
        # No read timeout: the server stays silent while nothing changes.
        timeout = httpx.Timeout(self.timeout_seconds, read=None)
        decoder = SseDecoder()
        try:
            async with self._client(timeout) as client:
                async with client.stream(
                    "GET", f"{self._conversation_path(conversation_id)}/stream", headers=headers
                ) as resp:
                    if resp.is_error:
                        await resp.aread()
                        _raise_for_http_error(resp.status_code, _error_detail(resp.text))
                    async for line in resp.aiter_lines():
                        event = decoder.feed(line)
                        if event is not None:
                            yield event
        except httpx.TransportError as exc:
            raise ConnectionLost(f"Event stream dropped: {exc}") from exc
        raise ConnectionLost("Event stream closed by server.")

    def _conversation_path(self, conversation_id: str) -> str:
        return f"/chat/{quote(conversation_id, safe='')}"

    def _headers(self) -> dict[str, str]:
        headers = {"X-User-Id": self.user.user_id, "X-User-Name": self.user.display_name}
        if self.user.avatar_url:
            headers["X-User-Avatar"] = self.user.avatar_url
        return headers

    def _client(self, timeout: httpx.Timeout) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            base_url=self.base_url.rstrip("/"),
            timeout=timeout,
            transport=self.http_transport,
        )

    async def _call_json(
        self,
        method: str,
        path: str,
        *,
        params: dict[str, str] | None = None,
        payload: dict[str, Any] | None = None,
    ) -> Any:
        try:
            async with self._client(httpx.Timeout(self.timeout_seconds)) as client:
                resp = await client.request(method, path, params=params, json=payload, headers=self._headers())
        except httpx.TransportError as exc:
            raise ConnectionLost(f"Chat server unreachable: {exc}") from exc
        if resp.is_error:
            _raise_for_http_error(resp.status_code, _error_detail(resp.text))
        try:
            return resp.json()
        except ValueError as exc:
            raise ChatError("Chat server returned invalid JSON") from exc
