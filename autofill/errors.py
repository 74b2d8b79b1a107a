"""Exception hierarchy shared by the gateway, simulator and job service."""

from typing import Any, Optional


class AutofillError(Exception):
    """Base class for all errors raised by this package."""


class GatewayError(AutofillError):
    """A backend call did not produce a usable result."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.message = message
        self.status_code = status_code


class TransportError(GatewayError):
    """The request could not complete (DNS, connection refused, timeout)."""


class BackendError(GatewayError):
    """The backend answered with a non-success status."""

    def __init__(
        self,
        message: str,
        status_code: Optional[int] = None,
        code: Optional[str] = None,
        detail: Any = None,
    ):
        super().__init__(message, status_code=status_code)
        self.code = code
        self.detail = detail


class NotFoundError(BackendError):
    """The requested job, docset or output does not exist."""

    def __init__(self, message: str, code: str = "NOT_FOUND", detail: Any = None):
        super().__init__(message, status_code=404, code=code, detail=detail)


class JobStateError(AutofillError):
    """A local precondition for a job operation is not met."""
