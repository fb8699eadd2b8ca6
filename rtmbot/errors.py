"""
Error taxonomy.

Every failure raised by rtmbot derives from RtmError. Transport-level
failures (TransportFailed, MalformedRecord) never reach the application:
the connection supervisor consumes them and reconnects.
"""

from __future__ import annotations

from typing import Any


class RtmError(Exception):
    """Base class for all rtmbot errors."""
    pass


# ---------------------------------------------------------------------------
# REST collaborator
# ---------------------------------------------------------------------------

class ApiError(RtmError):
    """Base class for web API failures."""
    pass


class ApiRequestError(ApiError):
    """The HTTP request itself failed (DNS, connect, timeout...)."""
    pass


class ApiStatusError(ApiError):
    """Non-2xx HTTP status."""

    def __init__(self, status_code: int, endpoint: str = "") -> None:
        super().__init__(f"{endpoint or 'API'} returned HTTP {status_code}")
        self.status_code = status_code
        self.endpoint = endpoint


class ApiDecodeError(ApiError):
    """Response body is not a JSON object."""
    pass


class ApiResponseError(ApiError):
    """Backend answered with ok=false."""

    def __init__(self, detail: Any, endpoint: str = "") -> None:
        super().__init__(f"{endpoint or 'API'} error: {detail}")
        self.detail = detail
        self.endpoint = endpoint


# ---------------------------------------------------------------------------
# Real-time session
# ---------------------------------------------------------------------------

class HandshakeFailed(RtmError):
    """The session-start exchange could not be completed."""
    pass


class BackendRejected(RtmError):
    """Session-start reached the backend, which marked the session not OK."""

    def __init__(self, detail: Any) -> None:
        super().__init__(f"backend rejected session: {detail}")
        self.detail = detail


class TransportFailed(RtmError):
    """Live socket read or write failed."""
    pass


class MalformedRecord(TransportFailed):
    """An inbound frame could not be decoded into a record."""
    pass


class HandlerFailure(RtmError):
    """A registered rule handler raised."""

    def __init__(self, pattern: str, exc: BaseException) -> None:
        super().__init__(f"handler for {pattern!r} failed: {exc!r}")
        self.pattern = pattern


class SessionClosed(RtmError):
    """The connection was shut down."""
    pass
