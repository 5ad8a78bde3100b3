"""
Domain errors raised by the repository and service layers.

The HTTP layer maps each class to a status code; nothing here knows about
HTTP.
"""
from typing import Any, Dict


class TrackerError(Exception):
    """Base class for issue tracker errors."""


class NotFoundError(TrackerError):
    """A point read or delete target is absent."""

    def __init__(self, entity: str, key: str):
        self.entity = entity
        self.key = key
        super().__init__(f"{entity} not found.")


class ConflictError(TrackerError):
    """A write would violate a uniqueness rule (duplicate email, id collision)."""

    def __init__(self, message: str, **context: Any):
        self.message = message
        self.context: Dict[str, Any] = context
        super().__init__(message)


class InvalidCredentialsError(TrackerError):
    def __init__(self, email: str):
        self.email = email
        super().__init__("Incorrect email or password.")


class StoreUnavailableError(TrackerError):
    """The document store could not be reached or prepared."""
