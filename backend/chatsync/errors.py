"""Error taxonomy shared by the chat server and client."""


class ChatError(RuntimeError):
    """Base class for chat delivery failures."""


class MessageValidationError(ChatError):
    """Raised when a message body is empty or too long."""


class TransientStoreError(ChatError):
    """Raised when the message store is temporarily unavailable."""


class ConnectionLost(ChatError):
    """Raised when the event stream drops or the server cannot be reached."""
