from __future__ import annotations

from collections.abc import Iterable


class TablestoreOdmError(Exception):
    pass


class SchemaDefinitionError(TablestoreOdmError, ValueError):
    pass


class ConditionBuildError(TablestoreOdmError, ValueError):
    pass


class ValidationError(TablestoreOdmError):
    pass


class NameValidationError(ValidationError):
    def __init__(self, *, kind: str, detail: str) -> None:
        super().__init__(f"invalid {kind}: {detail}")
        self.kind = kind
        self.detail = detail


class MarshallingError(TablestoreOdmError):
    def __init__(self, message: str, *, fields: Iterable[str] = ()) -> None:
        self.fields = tuple(fields)
        if self.fields:
            message = f"{message}: {', '.join(self.fields)}"
        super().__init__(message)


class ConfigurationError(TablestoreOdmError):
    pass


class StoreError(TablestoreOdmError):
    def __init__(self, *, code: str, message: str) -> None:
        super().__init__(f"{code}: {message}")
        self.code = code
        self.message = message


class NotFoundError(StoreError):
    pass


class ConditionFailedError(StoreError):
    pass


class AlreadyExistsError(StoreError):
    pass


class TransportError(StoreError):
    pass
