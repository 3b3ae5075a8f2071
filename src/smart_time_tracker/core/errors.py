"""Error taxonomy shared by the tracker client and the ingestion server."""


class TrackerError(Exception):
    """Base class for all Smart Time Tracker errors.

    Messages of server-side subclasses are returned to API callers, so they
    must not contain sensitive data.
    """


class ValidationError(TrackerError):
    """Raised when input is missing or malformed."""


class NotFoundOrExpired(TrackerError):
    """Raised when a pairing code is unknown or past its expiry."""

    def __init__(self, message: str = "Invalid or expired pair_code") -> None:
        super().__init__(message)


class InvalidOrExpired(NotFoundOrExpired):
    """Raised when a bearer token is unknown or past its expiry."""

    def __init__(self, message: str = "Invalid or expired token") -> None:
        super().__init__(message)


class Unauthorized(TrackerError):
    """Raised when a bearer token was presented but could not be validated."""

    def __init__(self, message: str = "Invalid or expired token") -> None:
        super().__init__(message)


class GenerationExhausted(TrackerError):
    """Raised when no unique pairing code could be generated."""

    def __init__(self, message: str = "Failed to generate pairing code") -> None:
        super().__init__(message)


class StorageError(TrackerError):
    """Raised when the log storage backend rejects a batch."""

    def __init__(self, message: str, details: dict | None = None) -> None:
        super().__init__(message)
        self.details = details or {}


class TransientTransportFailure(TrackerError):
    """Network error or non-success response while talking to the server."""

    def __init__(self, message: str, status: int | None = None) -> None:
        super().__init__(message)
        self.status = status


class TabUnavailable(TrackerError):
    """Raised by tab resolvers when a tab vanished or has no URL."""
