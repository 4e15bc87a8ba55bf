"""Custom exception classes for the uploader."""

from typing import Optional


class UploaderError(Exception):
    """
    Base exception class for all uploader errors.
    """
    pass


class TransportError(UploaderError):
    """
    Raised when a chunk send attempt fails (network error, timeout,
    non-2xx response, unreadable source).
    """

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class TransportAbortedError(TransportError):
    """
    Raised by a transport whose in-flight send was cancelled through abort().
    """
    pass


class InitiativeInterrupt(UploaderError):
    """
    Raised inside the retry loop when the caller interrupted or cancelled
    the chunk. Never reported as an upload error.
    """

    def __init__(self, message: str = "initiative interrupt"):
        super().__init__(message)


class InvalidTransitionError(UploaderError):
    """
    Raised when a file or chunk status change is not in the transition table.
    """

    def __init__(self, entity: str, current, target):
        super().__init__(f"Invalid {entity} transition: {current.value} -> {target.value}")
        self.entity = entity
        self.current = current
        self.target = target


class ConsistencyError(UploaderError):
    """
    Describes a broken scheduler invariant. Logged, never raised to callers.
    """
    pass
