from __future__ import annotations

from tablestore import OTSClientError, OTSServiceError

from .errors import (
    AlreadyExistsError,
    ConditionFailedError,
    NotFoundError,
    StoreError,
    TransportError,
)


def map_service_error(err: OTSServiceError) -> Exception:
    code = str(err.get_error_code() or "")
    message = str(err.get_error_message() or "")

    if code == "OTSConditionCheckFail":
        return ConditionFailedError(code=code, message=message)
    if code == "OTSObjectNotExist":
        return NotFoundError(code=code, message=message)
    if code == "OTSObjectAlreadyExist":
        return AlreadyExistsError(code=code, message=message)

    return StoreError(code=code or "UnknownError", message=message or str(err))


def map_client_error(err: OTSClientError) -> Exception:
    message = str(err.get_error_message() or "") or str(err)
    return TransportError(code="OTSClientError", message=message)
