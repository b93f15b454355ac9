"""Matching of pending sends against confirmed server messages."""

from __future__ import annotations

from collections.abc import Sequence
from datetime import timedelta

from chatsync.client.models import PendingMessage, PendingStatus
from chatsync.schemas.message import MessageRead


def matches_confirmed(pending: PendingMessage, message: MessageRead, window: timedelta) -> bool:
    """Return True when `message` looks like the server copy of `pending`.

    Body, sender and an arrival time within `window` of the client origin
    time must all agree. Two identical messages from the same sender inside
    the window cannot be told apart; widening the window merges more of
    them, narrowing it risks leaving a duplicate behind on clock skew.
    """

    if pending.body != message.body or pending.sender_id != message.sender_id:
        return False
    return abs(message.timestamp - pending.origin_timestamp) <= window


def reconcile_pending(
    pending: Sequence[PendingMessage],
    confirmed: Sequence[MessageRead],
    window: timedelta,
) -> list[PendingMessage]:
    """Return the pending entries not absorbed by `confirmed`.

    Entries that already hold their server copy are matched by id first.
    The rest fall back to `matches_confirmed`. Each confirmed message
    absorbs at most one entry and failed entries always survive.
    """

    remaining = list(pending)
    unclaimed: list[MessageRead] = []
    for message in confirmed:
        for index, entry in enumerate(remaining):
            if entry.confirmed is not None and entry.confirmed.id == message.id:
                del remaining[index]
                break
        else:
            unclaimed.append(message)

    for message in unclaimed:
        for index, entry in enumerate(remaining):
            if entry.status is PendingStatus.FAILED or entry.confirmed is not None:
                continue
            if matches_confirmed(entry, message, window):
                del remaining[index]
                break
    return remaining
