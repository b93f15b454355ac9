"""Chat snapshot, send and streaming routes."""

from contextlib import aclosing
from datetime import datetime

from fastapi import APIRouter, BackgroundTasks, Depends, HTTPException, Path, Query, Request
from fastapi.responses import StreamingResponse
from sqlalchemy.orm import Session

from chatsync.auth import get_current_user
from chatsync.config import Settings, get_settings
from chatsync.db.dependencies import get_db, get_message_store
from chatsync.errors import MessageValidationError, TransientStoreError
from chatsync.schemas.common import CONVERSATION_ID_MAX_LENGTH, ApiResponse
from chatsync.schemas.message import MessageRead, MessageSendRequest, MessageSnapshot, SenderIdentity
from chatsync.services.change_feed import ChangeFeedBridge, format_sse
from chatsync.services.messages import (
    MessageStore,
    append_message,
    list_latest_messages,
    list_messages_since,
)
from chatsync.services.notifications import notify_message_confirmed

ConversationIdParam = Path(..., min_length=1, max_length=CONVERSATION_ID_MAX_LENGTH)

router = APIRouter(prefix="/chat/{conversation_id}")

_STREAM_HEADERS = {
    "Cache-Control": "no-cache",
    "Connection": "keep-alive",
    "X-Accel-Buffering": "no",
}


@router.get("/messages", response_model=ApiResponse[MessageSnapshot])
def get_messages(
    conversation_id: str = ConversationIdParam,
    since: datetime | None = Query(default=None),
    limit: int | None = Query(default=None, ge=1),
    latest: bool = Query(default=False),
    _: SenderIdentity = Depends(get_current_user),
    settings: Settings = Depends(get_settings),
    db: Session = Depends(get_db),
) -> ApiResponse[MessageSnapshot]:
    """Return the ordered message window, optionally after a `since` cursor."""

    capped = min(limit or settings.chat_snapshot_limit, settings.chat_snapshot_limit)
    try:
        if latest and since is None:
            records = list_latest_messages(db, conversation_id, limit=capped)
        else:
            records = list_messages_since(db, conversation_id, since=since, limit=capped)
    except TransientStoreError as exc:
        raise HTTPException(status_code=503, detail=str(exc)) from exc

    messages = [MessageRead.model_validate(record) for record in records]
    latest_timestamp = messages[-1].timestamp if messages else since
    return ApiResponse(
        data=MessageSnapshot(
            messages=messages,
            latest_timestamp=latest_timestamp,
            has_new_messages=bool(messages),
        )
    )


@router.post("/messages", response_model=ApiResponse[MessageRead], status_code=201)
def send_message(
    payload: MessageSendRequest,
    background_tasks: BackgroundTasks,
    conversation_id: str = ConversationIdParam,
    user: SenderIdentity = Depends(get_current_user),
    settings: Settings = Depends(get_settings),
    db: Session = Depends(get_db),
) -> ApiResponse[MessageRead]:
    """Persist a message and return the confirmed copy."""

    try:
        created = append_message(
            db,
            conversation_id,
            sender=user,
            body=payload.text,
            kind=payload.kind,
            max_length=settings.message_max_length,
        )
    except MessageValidationError as exc:
        raise HTTPException(status_code=422, detail=str(exc)) from exc
    except TransientStoreError as exc:
        raise HTTPException(status_code=503, detail=str(exc)) from exc

    message = MessageRead.model_validate(created)
    background_tasks.add_task(notify_message_confirmed, message)
    return ApiResponse(data=message)


@router.get("/stream")
async def stream_messages(
    request: Request,
    conversation_id: str = ConversationIdParam,
    _: SenderIdentity = Depends(get_current_user),
    settings: Settings = Depends(get_settings),
    store: MessageStore = Depends(get_message_store),
) -> StreamingResponse:
    """Open a one-way event stream of `connected`, `messages` and `error` events."""

    bridge = ChangeFeedBridge(
        conversation_id,
        store,
        poll_interval=settings.chat_poll_interval_seconds,
        max_lifetime=settings.chat_stream_max_lifetime_seconds,
        snapshot_limit=settings.chat_snapshot_limit,
        is_disconnected=request.is_disconnected,
    )

    async def _frames():
        async with aclosing(bridge.events()) as events:
            async for event in events:
                yield format_sse(event)

    return StreamingResponse(_frames(), media_type="text/event-stream", headers=_STREAM_HEADERS)
