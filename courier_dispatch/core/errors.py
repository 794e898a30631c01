# courier_dispatch/core/errors.py
"""
Typed domain errors for the dispatch engine.

Each error carries the HTTP status it maps to and a stable machine code.
The transport layer converts ``DispatchError`` subtypes to JSON responses
without embedding business logic in the route handlers.

Routing provider failures are deliberately absent: they are recovered
locally by the haversine fallback and never reach a caller.
"""
from __future__ import annotations


class DispatchError(Exception):
    """Base class for all dispatch domain errors."""

    status_code: int = 500
    code: str = "internal_error"

    def __init__(self, detail: str = "Internal error"):
        self.detail = detail
        super().__init__(detail)


# ---------------------------------------------------------------------------
# 400
# ---------------------------------------------------------------------------

class ValidationError(DispatchError):
    """Invalid request payload or value (400)."""

    status_code = 400
    code = "validation_error"


# ---------------------------------------------------------------------------
# 403
# ---------------------------------------------------------------------------

class NotAssignedCourierError(DispatchError):
    """The courier acting on a delivery is not the one assigned to it (403)."""

    status_code = 403
    code = "not_assigned_courier"


# ---------------------------------------------------------------------------
# 404
# ---------------------------------------------------------------------------

class NotFoundError(DispatchError):
    """Resource not found (404)."""

    status_code = 404
    code = "not_found"


class ProfileNotFoundError(NotFoundError):
    code = "profile_not_found"


class DeliveryNotFoundError(NotFoundError):
    code = "delivery_not_found"


class LocationUnavailableError(NotFoundError):
    """Courier has neither a live nor a home coordinate."""

    code = "location_unavailable"


# ---------------------------------------------------------------------------
# 409
# ---------------------------------------------------------------------------

class ConflictError(DispatchError):
    """Conflicting state (409)."""

    status_code = 409
    code = "conflict"


class ProfileInactiveError(ConflictError):
    code = "profile_inactive"


class CourierOfflineError(ConflictError):
    code = "courier_offline"


class AlreadyAssignedError(ConflictError):
    """Another courier claimed the delivery first."""

    code = "already_assigned"


class InvalidTransitionError(ConflictError):
    """Transition not allowed from the delivery's current status."""

    code = "invalid_transition"


class ProfileAlreadyExistsError(ConflictError):
    code = "profile_already_exists"


class DeliveryAlreadyExistsError(ConflictError):
    code = "delivery_already_exists"


# ---------------------------------------------------------------------------
# 5xx
# ---------------------------------------------------------------------------

class EarningsUnavailableError(DispatchError):
    """Earnings service rejected or failed the delivery notification (502)."""

    status_code = 502
    code = "earnings_unavailable"


class TransitionTimeoutError(DispatchError):
    """Lifecycle transaction did not finish in time (504)."""

    status_code = 504
    code = "transition_timeout"
