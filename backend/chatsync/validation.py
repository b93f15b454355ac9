"""Input checks shared by the send endpoint and the optimistic client."""

from chatsync.errors import MessageValidationError

DEFAULT_MAX_MESSAGE_LENGTH = 1000


def clean_message_body(text: str | None, *, max_length: int = DEFAULT_MAX_MESSAGE_LENGTH) -> str:
    """Return the trimmed body or raise when it cannot be sent."""

    trimmed = (text or "").strip()
    if not trimmed:
        raise MessageValidationError("Message text is required.")
    if len(trimmed) > max_length:
        raise MessageValidationError(f"Message text must be at most {max_length} characters.")
    return trimmed
