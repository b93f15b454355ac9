"""Identity supplied by the upstream authentication layer."""

from fastapi import Header, HTTPException

from chatsync.schemas.message import SenderIdentity


def get_current_user(
    x_user_id: str | None = Header(default=None),
    x_user_name: str | None = Header(default=None),
    x_user_avatar: str | None = Header(default=None),
) -> SenderIdentity:
    """Return the caller's identity; trusted as forwarded by the auth proxy."""

    user_id = (x_user_id or "").strip()
    if not user_id:
        raise HTTPException(status_code=401, detail="Unauthorized")
    return SenderIdentity(
        user_id=user_id,
        display_name=(x_user_name or "").strip() or user_id,
        avatar_url=(x_user_avatar or "").strip() or None,
    )
