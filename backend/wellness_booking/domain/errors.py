from __future__ import annotations

from datetime import datetime
from typing import Sequence


class DomainError(Exception):
    """Base class for booking-core failures that callers are expected to handle."""


class ValidationError(DomainError):
    def __init__(self, message: str, *, fields: Sequence[str] = ()) -> None:
        super().__init__(message)
        self.fields = list(fields)


class BookingConflictError(DomainError):
    """Proposed window overlaps another user's active booking."""

    def __init__(self, message: str, *, conflicts: Sequence[tuple[datetime, datetime]] = ()) -> None:
        super().__init__(message)
        self.conflicts = list(conflicts)


class StoreUnavailableError(DomainError):
    """Reservation or slot store could not be reached. Safe to retry."""


class BookingNotFoundError(DomainError):
    pass


class SlotNotFoundError(DomainError):
    pass


class CancelNotAllowedError(DomainError):
    pass


class RescheduleNotAllowedError(DomainError):
    pass


class VersionConflictError(DomainError):
    pass


class InvalidTransitionError(DomainError):
    pass


class RoutingUnavailableError(Exception):
    """Live routing provider failed; the distance estimator falls back to zones."""
