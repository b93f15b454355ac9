"""Real-time chat delivery with optimistic client reconciliation."""
