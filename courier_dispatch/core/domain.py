from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Optional

from courier_dispatch.core.errors import ValidationError
from courier_dispatch.core.time_slots import TimeSlot


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


# ============================================================================
# GEO
# ============================================================================

@dataclass(frozen=True)
class Coordinate:
    """WGS84 latitude/longitude pair, validated on construction."""
    lat: float
    lng: float

    def __post_init__(self) -> None:
        if not -90.0 <= self.lat <= 90.0:
            raise ValidationError(f"Latitude out of range: {self.lat}")
        if not -180.0 <= self.lng <= 180.0:
            raise ValidationError(f"Longitude out of range: {self.lng}")

    def as_dict(self) -> dict[str, float]:
        return {"lat": self.lat, "lng": self.lng}


class TravelMode(str, Enum):
    DRIVING = "driving"
    WALKING = "walking"
    BICYCLING = "bicycling"


# ============================================================================
# COURIER
# ============================================================================

class Weekday(str, Enum):
    MONDAY = "MONDAY"
    TUESDAY = "TUESDAY"
    WEDNESDAY = "WEDNESDAY"
    THURSDAY = "THURSDAY"
    FRIDAY = "FRIDAY"
    SATURDAY = "SATURDAY"
    SUNDAY = "SUNDAY"

    @classmethod
    def of(cls, moment: datetime) -> "Weekday":
        return list(cls)[moment.weekday()]


class TransportMode(str, Enum):
    BIKE = "BIKE"
    CAR = "CAR"
    SCOOTER = "SCOOTER"
    PUBLIC_TRANSPORT = "PUBLIC_TRANSPORT"
    WALKING = "WALKING"


@dataclass
class CourierProfile:
    """
    Availability profile of a single courier.

    ``time_slots`` holds parsed slots (see ``core.time_slots``); an empty
    ``available_days`` or ``time_slots`` means "no restriction".
    """
    courier_id: str
    home_location: Optional[Coordinate]
    max_distance_km: float = 10.0
    active: bool = True
    online: bool = False
    available_days: frozenset[Weekday] = frozenset()
    time_slots: tuple[TimeSlot, ...] = ()
    transport_modes: tuple[TransportMode, ...] = (TransportMode.BIKE,)
    gps_tracking_enabled: bool = False
    current_location: Optional[Coordinate] = None
    location_updated_at: Optional[datetime] = None
    home_address: Optional[str] = None
    display_name: Optional[str] = None
    last_online_at: Optional[datetime] = None
    last_offline_at: Optional[datetime] = None
    created_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)


# ============================================================================
# DELIVERY ORDER
# ============================================================================

class DeliveryStatus(str, Enum):
    PENDING = "PENDING"
    ACCEPTED = "ACCEPTED"
    PICKED_UP = "PICKED_UP"
    DELIVERED = "DELIVERED"
    CANCELLED = "CANCELLED"


TERMINAL_STATUSES = frozenset({DeliveryStatus.DELIVERED, DeliveryStatus.CANCELLED})

# target status → statuses it may be entered from
ALLOWED_SOURCES: dict[DeliveryStatus, frozenset[DeliveryStatus]] = {
    DeliveryStatus.ACCEPTED: frozenset({DeliveryStatus.PENDING}),
    DeliveryStatus.PICKED_UP: frozenset({DeliveryStatus.ACCEPTED}),
    DeliveryStatus.DELIVERED: frozenset({DeliveryStatus.PICKED_UP}),
    DeliveryStatus.CANCELLED: frozenset({
        DeliveryStatus.PENDING,
        DeliveryStatus.ACCEPTED,
        DeliveryStatus.PICKED_UP,
    }),
}

# status → timestamp attribute stamped when the status is entered
STATUS_TIMESTAMP_FIELD: dict[DeliveryStatus, str] = {
    DeliveryStatus.ACCEPTED: "accepted_at",
    DeliveryStatus.PICKED_UP: "picked_up_at",
    DeliveryStatus.DELIVERED: "delivered_at",
    DeliveryStatus.CANCELLED: "cancelled_at",
}


@dataclass
class DeliveryOrder:
    """Dispatch unit linked 1:1 to a purchase order."""
    id: str
    order_id: str
    fee_cents: int
    status: DeliveryStatus = DeliveryStatus.PENDING
    courier_id: Optional[str] = None
    estimated_time_min: Optional[int] = None
    product_id: Optional[str] = None
    seller_id: Optional[str] = None
    buyer_id: Optional[str] = None
    dropoff_location: Optional[Coordinate] = None
    delivery_address: Optional[str] = None
    notes: Optional[str] = None
    cancel_reason: Optional[str] = None
    created_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)
    accepted_at: Optional[datetime] = None
    picked_up_at: Optional[datetime] = None
    delivered_at: Optional[datetime] = None
    cancelled_at: Optional[datetime] = None

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    def is_open_for_matching(self) -> bool:
        return self.status == DeliveryStatus.PENDING and self.courier_id is None


# ============================================================================
# CATALOG / MATCHING
# ============================================================================

@dataclass(frozen=True)
class PickupPoint:
    """Where a delivery is collected, as reported by the catalog service."""
    location: Coordinate
    product_title: Optional[str] = None
    seller_name: Optional[str] = None
    address: Optional[str] = None


@dataclass(frozen=True)
class DistanceResult:
    """
    Travel distance between two points.

    ``source`` is ``"route"`` when the routing provider answered and
    ``"haversine"`` for the straight-line fallback, whose duration is
    only an average-speed estimate.
    """
    distance_km: float
    duration_min: Optional[int]
    source: str = "route"

    @property
    def is_fallback(self) -> bool:
        return self.source == "haversine"


@dataclass(frozen=True)
class MatchCandidate:
    delivery: DeliveryOrder
    pickup: PickupPoint
    distance: DistanceResult
    courier_location: Coordinate
    dropoff_distance_km: Optional[float] = None
    estimated_time_min: Optional[int] = None


@dataclass(frozen=True)
class MatchResult:
    courier_id: str
    courier_location: Coordinate
    radius_km: float
    candidates: list[MatchCandidate]
    skipped_without_pickup: int = 0
