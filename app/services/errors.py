from __future__ import annotations

from typing import Any, Optional


class SiteRequestError(Exception):
    """Base class for errors raised by the request queue services."""

    def __init__(self, message: str, *, context: Optional[dict[str, Any]] = None) -> None:
        super().__init__(message)
        self.message = message
        self.context = context or {}


class NotFound(SiteRequestError):
    pass


class InvalidTransition(SiteRequestError):
    pass


class ValidationError(SiteRequestError):
    pass


class PayloadTooLarge(ValidationError):
    pass


class StorageFailure(SiteRequestError):
    pass


class PartialFailure(SiteRequestError):
    """A side effect failed after the primary state change was committed."""
