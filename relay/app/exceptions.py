"""Custom exceptions for the relay application."""


class RelayException(Exception):
    """Base class for relay exceptions with HTTP status code.
    
    All custom exceptions should inherit from this class and define
    their specific status_code for consistent HTTP response handling.
    """
    status_code: int = 500
    
    def __init__(self, message: str = "Relay error"):
        self.message = message
        super().__init__(message)


class ConfigurationError(RelayException):
    """Raised when a rate limit category has no usable window/limit.

    Fatal at startup: the rate limit engine refuses to be constructed.
    """
    status_code = 500


class StorageError(RelayException):
    """Base class for counter store failures."""
    status_code = 503


class StorageTransportError(StorageError):
    """Raised when the shared counter store is unreachable or times out.

    The engine recovers from this locally (fail-open by default), so it
    never reaches the HTTP layer during normal request handling.
    """

    def __init__(self, message: str = "Counter store unavailable", key: str | None = None):
        self.key = key
        super().__init__(message)


class StorageRaceAnomaly(StorageError):
    """Raised when a counter store returns a state its contract rules out."""

    def __init__(self, key: str, count: int):
        self.key = key
        self.count = count
        super().__init__(f"Impossible counter state for {key!r}: count={count}")


class BadRequestError(RelayException):
    """Raised when a request body or parameter is unusable.

    Maps to HTTP 400 Bad Request.
    """
    status_code = 400
