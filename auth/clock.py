"""
auth/clock.py -- Injectable time source.

Every token and bucket timestamp in auth/ comes from a Clock so tests can
move time forward deterministically instead of sleeping.
"""

from __future__ import annotations

from collections.abc import Callable
from datetime import datetime, timezone

Clock = Callable[[], datetime]


def utc_now() -> datetime:
    """Default Clock: the current aware UTC time."""
    return datetime.now(timezone.utc)
