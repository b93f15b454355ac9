"""Event models carried over the chat event stream."""

from typing import Annotated, Literal, Union

from pydantic import BaseModel, Field, TypeAdapter

from chatsync.schemas.message import MessageRead


class ConnectedEvent(BaseModel):
    """First event on every stream."""

    type: Literal["connected"] = "connected"
    conversation_id: str


class MessagesEvent(BaseModel):
    """Full message window, sent whenever the stored count changes."""

    type: Literal["messages"] = "messages"
    messages: list[MessageRead]
    count: int


class ErrorEvent(BaseModel):
    """A poll failed; the stream stays open."""

    type: Literal["error"] = "error"
    error: str


StreamEvent = Annotated[Union[ConnectedEvent, MessagesEvent, ErrorEvent], Field(discriminator="type")]

stream_event_adapter: TypeAdapter[StreamEvent] = TypeAdapter(StreamEvent)
