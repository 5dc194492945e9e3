from __future__ import annotations

from collections.abc import Iterator
from dataclasses import dataclass
from typing import Any


@dataclass(frozen=True)
class Result[T]:
    error: Exception | None = None
    value: T | None = None

    @classmethod
    def success(cls, value: T) -> Result[T]:
        return cls(error=None, value=value)

    @classmethod
    def failure(cls, error: Exception) -> Result[T]:
        return cls(error=error, value=None)

    @property
    def ok(self) -> bool:
        return self.error is None

    def unwrap(self) -> T | None:
        if self.error is not None:
            raise self.error
        return self.value

    def __iter__(self) -> Iterator[Any]:
        yield self.error
        yield self.value
