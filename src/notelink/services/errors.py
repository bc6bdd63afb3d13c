"""Exception hierarchy for the session services.

Gateways raise these; the session components catch them at the boundary of
each background operation and record them in the session store instead of
letting them escape into the event loop.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, ClassVar


class ErrorCode:
    """Machine-readable error identifiers."""

    NETWORK = "network_error"
    TIMEOUT = "timeout"
    HTTP_STATUS = "http_status"
    INVALID_RESPONSE = "invalid_response"
    UNAUTHORIZED = "unauthorized"


@dataclass
class NoteLinkError(Exception):
    """Base class for all errors raised by NoteLink services.

    Attributes:
        error_code: Machine-readable error identifier.
        message: Human-readable error description.
        details: Additional structured information.
    """

    error_code: str
    message: str
    details: dict[str, Any] = field(default_factory=dict)

    # Transient failures the HTTP client retries with backoff.
    retryable: ClassVar[bool] = False

    def __post_init__(self) -> None:
        Exception.__init__(self, self.message)

    def to_dict(self) -> dict[str, Any]:
        result: dict[str, Any] = {"error": self.error_code, "message": self.message}
        if self.details:
            result["details"] = dict(self.details)
        return result

    def __str__(self) -> str:
        return self.message


@dataclass
class GatewayError(NoteLinkError):
    """A request to the workspace API failed."""

    error_code: str = field(default=ErrorCode.HTTP_STATUS)
    message: str = field(default="Request failed")
    details: dict[str, Any] = field(default_factory=dict)
    status_code: int | None = None


@dataclass
class GatewayUnavailableError(GatewayError):
    """The workspace API could not be reached (connection refused, DNS...)."""

    error_code: str = field(default=ErrorCode.NETWORK)
    message: str = field(default="Workspace service is unreachable")

    retryable: ClassVar[bool] = True


@dataclass
class GatewayTimeoutError(GatewayUnavailableError):
    error_code: str = field(default=ErrorCode.TIMEOUT)
    message: str = field(default="Workspace service timed out")


__all__ = [
    "ErrorCode",
    "GatewayError",
    "GatewayTimeoutError",
    "GatewayUnavailableError",
    "NoteLinkError",
]
