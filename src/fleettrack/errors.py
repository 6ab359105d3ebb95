"""Error taxonomy for the trip tracking and routing core.

The core raises these synchronously and never retries. The HTTP layer maps
each ``error_code`` onto a status code, see ``fleettrack.main``.
"""

from __future__ import annotations

from typing import Any, Optional


class FleetTrackError(Exception):
    """Base class for all domain errors."""

    error_code = "FLEETTRACK_ERROR"

    def __init__(self, message: str, *, details: Optional[dict[str, Any]] = None) -> None:
        super().__init__(message)
        self.message = message
        self.details = details or {}


class NotFoundError(FleetTrackError):
    """Referenced trip, anomaly, vehicle, route or task link does not exist."""

    error_code = "RESOURCE_NOT_FOUND"

    def __init__(self, resource: str, identifier: str) -> None:
        super().__init__(
            f"{resource} with identifier '{identifier}' not found",
            details={"resource": resource, "identifier": identifier},
        )
        self.resource = resource
        self.identifier = identifier


class InvalidStateError(FleetTrackError):
    """Operation attempted against a trip that is not in the required state."""

    error_code = "INVALID_STATE"


class ConflictError(FleetTrackError):
    """Duplicate active trip for an employee or duplicate task link."""

    error_code = "RESOURCE_CONFLICT"


class ValidationError(FleetTrackError):
    """Malformed input such as a GPS sample without usable coordinates."""

    error_code = "VALIDATION_ERROR"

    def __init__(self, message: str, field: Optional[str] = None) -> None:
        super().__init__(message, details={"field": field} if field else None)
        self.field = field


class ForbiddenError(FleetTrackError):
    """Record belongs to a different organization."""

    error_code = "FORBIDDEN"
