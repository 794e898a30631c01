from __future__ import annotations

from courier_dispatch.core.domain import Coordinate, CourierProfile
from courier_dispatch.core.errors import LocationUnavailableError


def uses_live_location(profile: CourierProfile) -> bool:
    """Live GPS wins only when tracking is on, the courier is online and a fix exists."""
    return (
        profile.gps_tracking_enabled
        and profile.online
        and profile.current_location is not None
    )


def effective_location(profile: CourierProfile) -> Coordinate:
    """
    Coordinate used for matching this courier.

    Raises:
        LocationUnavailableError: neither a usable live fix nor a home
            coordinate exists.  Never defaults silently, so an
            unlocatable courier is not dispatched.
    """
    if uses_live_location(profile):
        return profile.current_location

    if profile.home_location is not None:
        return profile.home_location

    raise LocationUnavailableError(
        f"Courier '{profile.courier_id}' has no usable location"
    )
