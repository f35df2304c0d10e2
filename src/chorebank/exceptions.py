"""Custom exception hierarchy for the ChoreBank package."""

from __future__ import annotations

from typing import Optional


class ChoreBankError(Exception):
    """Base class for all ChoreBank specific errors."""

    retryable = False


class NotFoundError(ChoreBankError):
    """Raised when a referenced chore, override, log or account is absent."""


class ValidationError(ChoreBankError, ValueError):
    """Raised when a request is malformed or breaks a business rule."""


class InsufficientFundsError(ValidationError):
    """Raised when a transfer would overdraw the source account."""


class ConcurrencyConflictError(ChoreBankError):
    """Raised when a version-stamped write finds the row has moved on.

    Callers should re-read the record and re-apply their change.
    """

    retryable = True

    def __init__(self, entity: str, entity_id: object, expected_version: Optional[int]) -> None:
        self.entity = entity
        self.entity_id = entity_id
        self.expected_version = expected_version
        super().__init__(
            f"{entity} {entity_id} was modified concurrently (expected version {expected_version})."
        )


class StorageFailureError(ChoreBankError):
    """Raised when the store keeps failing after the bounded retries."""


__all__ = [
    "ChoreBankError",
    "ConcurrencyConflictError",
    "InsufficientFundsError",
    "NotFoundError",
    "StorageFailureError",
    "ValidationError",
]
