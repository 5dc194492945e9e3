from __future__ import annotations

import re

from .errors import NameValidationError

MaxNameLength = 255
MinTableNameLength = 3

_NAME_PATTERN = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")


def validate_table_name(name: str) -> None:
    if len(name) < MinTableNameLength or len(name) > MaxNameLength:
        raise NameValidationError(kind="table name", detail=f"length must be {MinTableNameLength}..{MaxNameLength}")
    _validate_pattern(name, kind="table name")


def validate_index_name(name: str) -> None:
    if not name or len(name) > MaxNameLength:
        raise NameValidationError(kind="index name", detail=f"length must be 1..{MaxNameLength}")
    _validate_pattern(name, kind="index name")


def validate_column_name(name: str) -> None:
    if not name or len(name) > MaxNameLength:
        raise NameValidationError(kind="column name", detail=f"length must be 1..{MaxNameLength}")
    _validate_pattern(name, kind="column name")


def _validate_pattern(name: str, *, kind: str) -> None:
    if _NAME_PATTERN.match(name) is None:
        raise NameValidationError(
            kind=kind,
            detail=f"{name!r} must start with a letter or underscore and contain only alphanumerics and underscores",
        )
