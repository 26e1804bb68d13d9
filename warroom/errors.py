"""Error taxonomy and the result shape returned by internal helpers.

Helpers that sit between the dashboard and the store catch store errors and
return an ``OperationResult`` instead of raising, so callers only branch on
``success``. Route-level operations raise the typed errors below and the API
layer maps them to status codes.
"""

from typing import NotRequired, TypedDict


class WarRoomError(Exception):
    """Base class for all war room errors."""


class ConfigurationMissingError(WarRoomError):
    """The store or AI provider is not configured."""


class NotFoundError(WarRoomError):
    """A referenced service or incident does not exist."""


class ValidationFailedError(WarRoomError):
    """A required request field is missing or invalid."""


class StoreError(WarRoomError):
    """The incident store failed to serve a read."""


class StoreMutationError(StoreError):
    """The incident store rejected or failed a write."""


class OperationResult(TypedDict):
    success: bool
    message: str
    error: NotRequired[str]


def ok(message: str) -> OperationResult:
    return OperationResult(success=True, message=message)


def failed(error: str, message: str | None = None) -> OperationResult:
    return OperationResult(success=False, message=message or error, error=error)
