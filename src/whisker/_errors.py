"""Whisker error hierarchy.

All whisker-specific errors inherit from WhiskerError for easy catching.
"""


class WhiskerError(Exception):
    """Base error for all whisker operations."""


class ConfigError(WhiskerError):
    """Invalid or missing configuration."""


class WatchError(WhiskerError):
    """A filesystem watch could not be armed for a path."""


class SessionError(WhiskerError):
    """A viewer request was rejected before or during a session.

    Carries the HTTP status the endpoint answers with.  These are client
    errors, never server faults.
    """

    def __init__(self, message: str, *, status: int = 400) -> None:
        super().__init__(message)
        self.status = status
