"""Run and point identifier helpers."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Container


def generate_run_id() -> str:
    now = datetime.now(tz=timezone.utc)
    return now.strftime("run-%Y%m%dT%H%M%S%fZ")


def assigned_point_id(index: int, taken: Container[str] = frozenset()) -> str:
    """Identifier given to input records that carry none of their own.

    A suffix is added while the plain form clashes with an id in ``taken``.
    """
    base = f"pt-{index:06d}"
    candidate = base
    suffix = 1
    while candidate in taken:
        candidate = f"{base}-{suffix}"
        suffix += 1
    return candidate
