"""
Collector Exceptions

Error kinds raised across the collector:

    CollectorError            base class
    ├── ApiError              upstream answered with something unusable
    │   └── TransientFetchError   every retry attempt failed
    └── StorageError          a read or write against the database failed

Malformed numeric fields never raise (they normalize to None), and health
probes report booleans instead of raising.
"""

from typing import Optional


class CollectorError(Exception):
    """Base class for all collector errors."""


class ApiError(CollectorError):
    """
    Upstream API failure.

    Attributes:
        status: Application status code from the payload, if one was returned
    """

    def __init__(self, message: str, status: Optional[str] = None):
        super().__init__(message)
        self.status = status


class TransientFetchError(ApiError):
    """Raised when a request failed on every retry attempt."""

    def __init__(self, message: str, attempts: int, status: Optional[str] = None):
        super().__init__(message, status=status)
        self.attempts = attempts


class StorageError(CollectorError):
    """Database read/write failure."""
