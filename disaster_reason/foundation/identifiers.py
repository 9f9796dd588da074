"""Identifier generation for clusters, incidents, and outbox entries."""

from __future__ import annotations

from uuid import UUID, uuid4


def new_id() -> UUID:
    """Generate a random UUID v4."""
    return uuid4()
