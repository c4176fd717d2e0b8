"""Shared helpers for webhook models."""

from __future__ import annotations

from uuid import uuid4


def generate_id(prefix: str) -> str:
    """Generate a unique ID with the given prefix.

    Examples:
        generate_id("evt") -> "evt_a1b2c3d4e5f6"
        generate_id("whk") -> "whk_a1b2c3d4e5f6"
    """
    return f"{prefix}_{uuid4().hex[:12]}"
