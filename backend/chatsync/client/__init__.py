"""Client-side chat synchronization package."""

from chatsync.client.models import ClientOptions, ConnectionStatus, PendingMessage, PendingStatus
from chatsync.client.send_controller import OptimisticSendController
from chatsync.client.sync_engine import ChatSyncEngine
from chatsync.client.transport import ChatTransport, HttpChatTransport

__all__ = [
    "ChatSyncEngine",
    "ChatTransport",
    "ClientOptions",
    "ConnectionStatus",
    "HttpChatTransport",
    "OptimisticSendController",
    "PendingMessage",
    "PendingStatus",
]
