from __future__ import annotations

from collections.abc import Callable
from datetime import UTC, datetime
from typing import Any

from .mocks import ANY, FakeTablestoreClient


def fixed_clock(now: datetime) -> Callable[[], datetime]:
    if now.tzinfo is None:
        now = now.replace(tzinfo=UTC)

    def clock() -> datetime:
        return now

    return clock


def wire_row(primary_key: list[tuple[Any, ...]], attributes: list[tuple[Any, ...]] | None = None) -> dict[str, Any]:
    return {"primary_key": list(primary_key), "attribute_columns": list(attributes or [])}


__all__ = [
    "ANY",
    "FakeTablestoreClient",
    "fixed_clock",
    "wire_row",
]
