from __future__ import annotations

from collections.abc import Callable, Mapping
from dataclasses import dataclass, fields, is_dataclass
from typing import Any

from .converter import Bound

type RequestCheck = Mapping[str, Any] | Callable[[Mapping[str, Any]], None]


class _Wildcard:
    def __eq__(self, other: object) -> bool:
        return True

    def __hash__(self) -> int:
        return 0

    def __repr__(self) -> str:  # pragma: no cover
        return "ANY"


ANY: Any = _Wildcard()


def describe_mismatch(expected: Any, actual: Any, path: str = "request") -> str | None:
    """Return why ``actual`` does not satisfy ``expected``, or ``None`` when it does.

    Mappings match as subsets. Key cells may be tuples or lists on either side.
    Range sentinels must be the same bound, and condition or sort records are
    compared field by field so ``ANY`` can stand in for any part of them.
    """
    if expected is ANY:
        return None

    if isinstance(expected, Bound):
        if actual is not expected:
            return f"{path}: expected {expected} sentinel, got {actual!r}"
        return None

    if isinstance(expected, Mapping):
        if not isinstance(actual, Mapping):
            return f"{path}: expected mapping, got {type(actual).__name__}"
        for key, value in expected.items():
            if key not in actual:
                return f"{path}: missing key {key!r}"
            if problem := describe_mismatch(value, actual[key], f"{path}.{key}"):
                return problem
        return None

    if isinstance(expected, (list, tuple)):
        if not isinstance(actual, (list, tuple)):
            return f"{path}: expected sequence, got {type(actual).__name__}"
        if len(expected) != len(actual):
            return f"{path}: expected {len(expected)} entries, got {len(actual)}"
        for i, (want, got) in enumerate(zip(expected, actual, strict=True)):
            if problem := describe_mismatch(want, got, f"{path}[{i}]"):
                return problem
        return None

    if is_dataclass(expected) and not isinstance(expected, type):
        if type(actual) is not type(expected):
            return f"{path}: expected {type(expected).__name__}, got {type(actual).__name__}"
        for f in fields(expected):
            if problem := describe_mismatch(getattr(expected, f.name), getattr(actual, f.name), f"{path}.{f.name}"):
                return problem
        return None

    if expected != actual:
        return f"{path}: expected {expected!r}, got {actual!r}"
    return None


@dataclass(frozen=True)
class _Expectation:
    method: str
    check: RequestCheck | None = None
    response: Mapping[str, Any] | None = None
    error: Exception | None = None

    def verify(self, method: str, req: Mapping[str, Any]) -> None:
        if method != self.method:
            raise AssertionError(f"expected {self.method}, got {method}")
        if callable(self.check):
            self.check(req)
        elif self.check is not None and (problem := describe_mismatch(self.check, req, method)):
            raise AssertionError(problem)


class FakeTablestoreClient:
    """In-memory stand-in for the store client that replays scripted responses in order."""

    def __init__(self) -> None:
        self._script: list[_Expectation] = []
        self.calls: list[tuple[str, dict[str, Any]]] = []

    def expect(
        self,
        method: str,
        check: RequestCheck | None = None,
        *,
        response: Mapping[str, Any] | None = None,
        error: Exception | None = None,
    ) -> FakeTablestoreClient:
        self._script.append(_Expectation(method, check, response, error))
        return self

    def requests(self, method: str) -> list[dict[str, Any]]:
        return [req for name, req in self.calls if name == method]

    def assert_no_pending(self) -> None:
        if self._script:
            pending = ", ".join(step.method for step in self._script)
            raise AssertionError(f"pending expected calls: {pending}")

    def _dispatch(self, method: str, req: dict[str, Any]) -> Mapping[str, Any]:
        self.calls.append((method, dict(req)))
        if not self._script:
            raise AssertionError(f"unexpected call: {method}")

        step = self._script.pop(0)
        step.verify(method, req)
        if step.error is not None:
            raise step.error
        return dict(step.response or {})

    def get_range(self, **kwargs: Any) -> Mapping[str, Any]:
        return self._dispatch("get_range", kwargs)

    def search(self, **kwargs: Any) -> Mapping[str, Any]:
        return self._dispatch("search", kwargs)

    def get_row(self, **kwargs: Any) -> Mapping[str, Any]:
        return self._dispatch("get_row", kwargs)

    def put_row(self, **kwargs: Any) -> Mapping[str, Any]:
        return self._dispatch("put_row", kwargs)

    def update_row(self, **kwargs: Any) -> Mapping[str, Any]:
        return self._dispatch("update_row", kwargs)

    def delete_row(self, **kwargs: Any) -> Mapping[str, Any]:
        return self._dispatch("delete_row", kwargs)

    def batch_write_row(self, **kwargs: Any) -> Mapping[str, Any]:
        return self._dispatch("batch_write_row", kwargs)

    def create_table(self, **kwargs: Any) -> Mapping[str, Any]:
        return self._dispatch("create_table", kwargs)

    def delete_table(self, **kwargs: Any) -> Mapping[str, Any]:
        return self._dispatch("delete_table", kwargs)

    def describe_table(self, **kwargs: Any) -> Mapping[str, Any]:
        return self._dispatch("describe_table", kwargs)

    def create_search_index(self, **kwargs: Any) -> Mapping[str, Any]:
        return self._dispatch("create_search_index", kwargs)

    def delete_search_index(self, **kwargs: Any) -> Mapping[str, Any]:
        return self._dispatch("delete_search_index", kwargs)
