"""Exception types raised by the turn engine."""

from __future__ import annotations

from http import HTTPStatus
from typing import Any

from parley.schema import ERROR_CONTENT_TYPE, InvokeResponse


class ParleyError(Exception):
    """Base exception for parley."""


class ConfigurationError(ParleyError):
    """Raised when a required collaborator or setting is missing."""


class ClosedContextError(ParleyError):
    """Raised when a disposed turn context is used."""

    def __init__(self, operation: str) -> None:
        super().__init__(f"turn context is closed; cannot {operation}")
        self.operation = operation


class PipelineError(ParleyError, ValueError):
    """Base exception for malformed calls into the pipeline."""


class EmptyBatchError(PipelineError):
    """Raised when a send batch contains no activities."""

    def __init__(self) -> None:
        super().__init__("expecting one or more activities, but the batch was empty")


class MissingActivityError(PipelineError):
    """Raised when an operation receives no activity."""

    def __init__(self, where: str = "turn context") -> None:
        super().__init__(f"{where} must have a non-null activity")


class MissingTypeError(PipelineError):
    """Raised when an activity has no type."""

    def __init__(self) -> None:
        super().__init__("activity must have a non-null type")


class StorageConflictError(ParleyError):
    """Raised when a write carries an ETag that does not match the stored one."""

    def __init__(self, key: str, expected: str | None, actual: str | None) -> None:
        super().__init__(f"etag conflict for key={key!r}: write={expected!r} stored={actual!r}")
        self.key = key
        self.expected = expected
        self.actual = actual


class StateKeyError(ParleyError, ValueError):
    """Raised when a state scope cannot derive its storage key from the activity."""


class PropertyNotFoundError(ParleyError, KeyError):
    """Raised when a value-typed state property is read before it was set."""

    def __init__(self, name: str) -> None:
        super().__init__(name)
        self.name = name

    def __str__(self) -> str:
        return f"state property {self.name!r} not found"


class UnauthorizedError(ParleyError):
    """Raised when an inbound request fails authentication."""


class InvokeError(ParleyError):
    """Structured failure of an invoke activity, converted into its response."""

    def __init__(
        self,
        status: int = HTTPStatus.NOT_IMPLEMENTED,
        code: str | None = None,
        message: str | None = None,
        body: Any = None,
    ) -> None:
        super().__init__(message or code or HTTPStatus(status).phrase)
        self.status = int(status)
        self.code = code
        self.message = message
        self.body = body

    def to_invoke_response(self) -> InvokeResponse:
        if self.body is not None or self.code is None:
            return InvokeResponse(status=self.status, body=self.body)
        return InvokeResponse(
            status=self.status,
            body={
                "statusCode": self.status,
                "type": ERROR_CONTENT_TYPE,
                "value": {"code": self.code, "message": self.message or ""},
            },
        )


class MissingInvokeResponseError(ParleyError):
    """Raised when a bot accepted an invoke activity but produced no response."""

    status = int(HTTPStatus.NOT_IMPLEMENTED)

    def __init__(self, name: str | None) -> None:
        super().__init__(f"invoke activity name={name!r} completed without an invoke response")
        self.name = name
