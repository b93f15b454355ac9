"""Tests for pending/confirmed message matching."""

from __future__ import annotations

import unittest
from datetime import datetime, timedelta, timezone

from chatsync.client.models import PendingMessage, PendingStatus, is_temp_id
from chatsync.client.reconcile import matches_confirmed, reconcile_pending
from chatsync.schemas.message import MessageRead

_NOW = datetime(2026, 10, 17, 9, 30, tzinfo=timezone.utc)
_WINDOW = timedelta(seconds=5)


def _pending(body: str = "hello", *, sender_id: str = "user-ada", offset: float = 0.0, **kwargs) -> PendingMessage:
    return PendingMessage(
        conversation_id="global",
        sender_id=sender_id,
        sender_name="Ada",
        body=body,
        origin_timestamp=_NOW + timedelta(seconds=offset),
        **kwargs,
    )


def _confirmed(message_id: int, body: str = "hello", *, sender_id: str = "user-ada", offset: float = 0.0) -> MessageRead:
    return MessageRead(
        id=message_id,
        conversation_id="global",
        sender_id=sender_id,
        sender_name="Ada",
        body=body,
        timestamp=_NOW + timedelta(seconds=offset),
    )


class MatchingTests(unittest.TestCase):
    def test_same_body_sender_within_window_matches(self) -> None:
        self.assertTrue(matches_confirmed(_pending(), _confirmed(1, offset=4.9), _WINDOW))
        self.assertTrue(matches_confirmed(_pending(offset=3), _confirmed(1), _WINDOW))

    def test_outside_window_or_different_sender_or_body_does_not_match(self) -> None:
        self.assertFalse(matches_confirmed(_pending(), _confirmed(1, offset=5.5), _WINDOW))
        self.assertFalse(matches_confirmed(_pending(), _confirmed(1, sender_id="user-grace"), _WINDOW))
        self.assertFalse(matches_confirmed(_pending(), _confirmed(1, body="hello!"), _WINDOW))

    def test_temporary_ids_never_look_like_server_ids(self) -> None:
        pending = _pending()

        self.assertTrue(is_temp_id(pending.id))
        self.assertFalse(is_temp_id(42))
        self.assertNotEqual(pending.id, _pending().id)


class ReconcilePendingTests(unittest.TestCase):
    def test_matched_pending_is_removed_and_unmatched_kept_in_order(self) -> None:
        matched = _pending("hello")
        other = _pending("still typing", offset=1)

        remaining = reconcile_pending([matched, other], [_confirmed(1, "hello", offset=0.4)], _WINDOW)

        self.assertEqual(remaining, [other])

    def test_failed_entries_are_never_absorbed(self) -> None:
        failed = _pending(status=PendingStatus.FAILED)

        remaining = reconcile_pending([failed], [_confirmed(1)], _WINDOW)

        self.assertEqual(remaining, [failed])

    def test_each_confirmed_message_absorbs_one_pending_entry(self) -> None:
        first = _pending("ok")
        second = _pending("ok", offset=0.5)

        remaining = reconcile_pending([first, second], [_confirmed(7, "ok", offset=0.2)], _WINDOW)

        self.assertEqual(remaining, [second])

    def test_entry_with_server_copy_matches_by_id_even_with_clock_skew(self) -> None:
        sent = _pending("hello", status=PendingStatus.SENT, confirmed=_confirmed(9, "hello", offset=60))
        sending = _pending("hello", offset=58)

        remaining = reconcile_pending([sent, sending], [_confirmed(9, "hello", offset=60)], _WINDOW)

        self.assertEqual(remaining, [sending])

    def test_entry_with_server_copy_ignores_other_confirmed_messages(self) -> None:
        sent = _pending("hello", status=PendingStatus.SENT, confirmed=_confirmed(9, "hello", offset=0.1))

        remaining = reconcile_pending([sent], [_confirmed(8, "hello")], _WINDOW)

        self.assertEqual(remaining, [sent])


if __name__ == "__main__":
    unittest.main()
