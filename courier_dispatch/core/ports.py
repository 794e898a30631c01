from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Awaitable, Callable, Optional, Protocol, Sequence, Union

from courier_dispatch.core.domain import (
    Coordinate,
    CourierProfile,
    DeliveryOrder,
    DeliveryStatus,
    PickupPoint,
    TravelMode,
)


# ============================================================================
# ROUTING PROVIDER (consumed, untrusted)
# ============================================================================

@dataclass(frozen=True)
class RouteResult:
    distance_km: float
    duration_min: int


@dataclass(frozen=True)
class ProviderError:
    """A failed routing call, returned as a value rather than raised."""
    reason: str
    message: str = ""


RouteOutcome = Union[RouteResult, ProviderError]


class RoutingProvider(Protocol):
    name: str

    async def route(
        self, origin: Coordinate, destination: Coordinate, mode: TravelMode
    ) -> RouteOutcome: ...

    async def route_many(
        self, origin: Coordinate, destinations: Sequence[Coordinate], mode: TravelMode
    ) -> list[RouteOutcome]:
        """One outcome per destination, in the same order."""
        ...


# ============================================================================
# REPOSITORIES
# ============================================================================

TransitionHook = Callable[[DeliveryOrder], Awaitable[None]]


class AsyncCourierProfileRepository(Protocol):
    async def get(self, courier_id: str) -> Optional[CourierProfile]: ...
    async def create(self, profile: CourierProfile) -> None: ...

    # Writes touch only their own columns and return the stored profile,
    # or None when the row is missing (or, for set_online, inactive).

    async def update(
        self, courier_id: str, changes: dict, at: datetime
    ) -> Optional[CourierProfile]: ...

    async def set_online(
        self, courier_id: str, online: bool, at: datetime
    ) -> Optional[CourierProfile]:
        """Going online only succeeds for an active profile."""
        ...

    async def set_current_location(
        self, courier_id: str, location: Coordinate, at: datetime
    ) -> Optional[CourierProfile]: ...


class AsyncDeliveryOrderRepository(Protocol):
    async def get(self, delivery_id: str) -> Optional[DeliveryOrder]: ...
    async def create(self, delivery: DeliveryOrder) -> None: ...

    async def list_pending(self) -> list[DeliveryOrder]:
        """Unassigned PENDING deliveries, oldest first."""
        ...

    async def transition(
        self,
        delivery_id: str,
        *,
        from_statuses: frozenset[DeliveryStatus],
        to_status: DeliveryStatus,
        at: datetime,
        expected_courier_id: Optional[str] = None,
        assign_courier_id: Optional[str] = None,
        cancel_reason: Optional[str] = None,
        before_commit: Optional[TransitionHook] = None,
    ) -> Optional[DeliveryOrder]:
        """
        Conditionally move a delivery to ``to_status``.

        The update applies only if the current status is in
        ``from_statuses`` and, when given, the assigned courier equals
        ``expected_courier_id``.  ``assign_courier_id`` additionally
        requires the delivery to be unassigned and claims it.

        ``before_commit`` runs inside the same transaction with the
        updated delivery; if it raises, nothing is persisted.

        Returns the updated delivery, or ``None`` if the condition did
        not hold (the caller reloads to find out why).
        """
        ...


# ============================================================================
# COLLABORATORS
# ============================================================================

class PickupLocationService(Protocol):
    async def pickup_for(self, delivery: DeliveryOrder) -> Optional[PickupPoint]: ...


@dataclass(frozen=True)
class EarningsEvent:
    delivery_id: str
    order_id: str
    courier_id: str
    fee_cents: int
    delivered_at: datetime


class EarningsService(Protocol):
    async def record_delivery(self, event: EarningsEvent) -> None:
        """Raise on failure; the delivery transition is rolled back."""
        ...


@dataclass(frozen=True)
class DeliveryNotification:
    recipient_role: str  # "buyer" | "seller" | "courier"
    recipient_id: str
    delivery_id: str
    status: str
    title: str
    body: str


class DeliveryNotifier(Protocol):
    async def send(self, notification: DeliveryNotification) -> bool: ...
