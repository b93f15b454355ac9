"""Seed a demo chat conversation.

Usage (from repository root):
    python backend/scripts/seed_demo.py [--reset]

Usage (from backend directory):
    python scripts/seed_demo.py
    # or
    python -m scripts.seed_demo
"""

from __future__ import annotations

import argparse
import sys
from pathlib import Path

from sqlalchemy import delete

# Make `chatsync` imports work whether the script is run from repo root or backend/.
BACKEND_DIR = Path(__file__).resolve().parents[1]
if str(BACKEND_DIR) not in sys.path:
    sys.path.insert(0, str(BACKEND_DIR))

from chatsync.config import get_settings
from chatsync.db.session import SessionLocal
from chatsync.models.chat_message import ChatMessage
from chatsync.schemas.message import SenderIdentity
from chatsync.services.messages import append_message, count_messages


def build_demo_messages() -> list[tuple[SenderIdentity, str]]:
    """Return a short deterministic exchange between three members."""

    ada = SenderIdentity(user_id="user-ada", display_name="Ada")
    grace = SenderIdentity(user_id="user-grace", display_name="Grace")
    linus = SenderIdentity(user_id="user-linus", display_name="Linus")
    return [
        (ada, "Morning everyone! Is the meetup still on for Friday?"),
        (grace, "Yes, 6pm at the usual place."),
        (linus, "I'll bring the projector."),
        (ada, "Perfect, see you there."),
    ]


def reset_conversation(db, conversation_id: str) -> None:
    """Remove existing messages for the demo conversation."""

    db.execute(delete(ChatMessage).where(ChatMessage.conversation_id == conversation_id))
    db.commit()


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    """Parse script CLI arguments."""

    parser = argparse.ArgumentParser(description="Seed a demo chat conversation.")
    parser.add_argument(
        "--conversation-id",
        default=get_settings().global_conversation_id,
        help="Conversation ID to seed (default: the global conversation)",
    )
    parser.add_argument(
        "--reset",
        action="store_true",
        help="Delete existing messages for the conversation before seeding.",
    )
    return parser.parse_args(argv)


def main(argv: list[str] | None = None) -> None:
    """Seed demo data and print a short summary."""

    args = parse_args(argv)
    conversation_id: str = args.conversation_id

    with SessionLocal() as db:
        if args.reset:
            reset_conversation(db, conversation_id)
        for sender, body in build_demo_messages():
            append_message(db, conversation_id, sender=sender, body=body)
        total = count_messages(db, conversation_id)

    print("Seed complete")
    print(f"conversation_id={conversation_id}")
    print(f"messages_total={total}")
    print()
    print("Inspect (send X-User-Id):")
    print(f"  GET /chat/{conversation_id}/messages")
    print(f"  GET /chat/{conversation_id}/stream")


if __name__ == "__main__":
    main()
