"""Exceptions raised by focustrack.

I/O and external-service failures are logged and degraded rather than raised;
the exceptions here signal programming errors or undecodable data.
"""


class FocusTrackError(Exception):
    """Base class for focustrack errors."""


class SessionClosedError(FocusTrackError):
    """Raised when mutating a session that already has an end date."""


class SessionDecodeError(FocusTrackError, ValueError):
    """Raised when a persisted session record cannot be decoded."""


class FocusSessionError(FocusTrackError):
    """Raised on invalid focus block transitions (e.g. starting twice)."""
