# courier_dispatch/service/models.py
"""
Pydantic request/response models for the dispatch API.

These live *outside* the transport layer so the service can
validate payloads without depending on FastAPI.
"""
from __future__ import annotations

import re
from datetime import datetime

from pydantic import BaseModel, Field, field_validator

from courier_dispatch.core.domain import (
    Coordinate,
    CourierProfile,
    DeliveryOrder,
    MatchCandidate,
    MatchResult,
    TransportMode,
    Weekday,
)
from courier_dispatch.core.lifecycle import ToggleResult

_ID_RE = re.compile(r"^[a-zA-Z0-9_-]+$")


def _check_id(v: str) -> str:
    if not _ID_RE.match(v):
        raise ValueError("must contain only alphanumeric, hyphen, or underscore characters")
    return v


# ---------------------------------------------------------------------------
# Request models
# ---------------------------------------------------------------------------

class CoordinateIn(BaseModel):
    lat: float = Field(..., ge=-90, le=90)
    lng: float = Field(..., ge=-180, le=180)

    def to_domain(self) -> Coordinate:
        return Coordinate(self.lat, self.lng)


class CreateCourierRequest(BaseModel):
    """Onboard a courier."""

    courier_id: str = Field(..., min_length=1, max_length=128)
    display_name: str | None = Field(default=None, max_length=256)
    home_location: CoordinateIn
    home_address: str | None = Field(default=None, max_length=512)
    max_distance_km: float = Field(default=10.0, gt=0, le=200)
    available_days: list[Weekday] = Field(default_factory=list)
    time_slots: list[str] = Field(default_factory=list, max_length=24)
    transport_modes: list[TransportMode] = Field(
        default_factory=lambda: [TransportMode.BIKE], min_length=1,
    )
    gps_tracking_enabled: bool = False

    @field_validator("courier_id")
    @classmethod
    def courier_id_must_be_slug(cls, v: str) -> str:
        return _check_id(v)


class UpdateProfileRequest(BaseModel):
    """Update an existing profile (partial)."""

    display_name: str | None = Field(default=None, max_length=256)
    home_location: CoordinateIn | None = None
    home_address: str | None = Field(default=None, max_length=512)
    max_distance_km: float | None = Field(default=None, gt=0, le=200)
    available_days: list[Weekday] | None = None
    time_slots: list[str] | None = Field(default=None, max_length=24)
    transport_modes: list[TransportMode] | None = Field(default=None, min_length=1)
    gps_tracking_enabled: bool | None = None
    active: bool | None = None

    def has_updates(self) -> bool:
        return bool(self.model_dump(exclude_none=True))


class AvailabilityRequest(BaseModel):
    online: bool


class CreateDeliveryRequest(BaseModel):
    """Register a delivery for a purchase order."""

    id: str | None = Field(default=None, min_length=1, max_length=128)
    order_id: str = Field(..., min_length=1, max_length=128)
    fee_cents: int = Field(..., ge=0)
    estimated_time_min: int | None = Field(default=None, ge=0)
    product_id: str | None = Field(default=None, max_length=128)
    seller_id: str | None = Field(default=None, max_length=128)
    buyer_id: str | None = Field(default=None, max_length=128)
    dropoff_location: CoordinateIn | None = None
    delivery_address: str | None = Field(default=None, max_length=512)
    notes: str | None = Field(default=None, max_length=1000)

    @field_validator("id")
    @classmethod
    def id_must_be_slug(cls, v: str | None) -> str | None:
        return _check_id(v) if v is not None else v


class CourierActionRequest(BaseModel):
    courier_id: str = Field(..., min_length=1, max_length=128)


class CancelRequest(BaseModel):
    courier_id: str = Field(..., min_length=1, max_length=128)
    reason: str | None = Field(default=None, max_length=500)


class AdminCancelRequest(BaseModel):
    reason: str = Field(..., min_length=1, max_length=500)


class UpsertPickupPointRequest(BaseModel):
    """Pickup coordinate for a product, pushed by the catalog service."""

    location: CoordinateIn
    product_title: str | None = Field(default=None, max_length=256)
    seller_name: str | None = Field(default=None, max_length=256)
    address: str | None = Field(default=None, max_length=512)


# ---------------------------------------------------------------------------
# Response models
# ---------------------------------------------------------------------------

class CoordinateOut(BaseModel):
    lat: float
    lng: float

    @classmethod
    def from_domain(cls, c: Coordinate | None) -> CoordinateOut | None:
        return cls(lat=c.lat, lng=c.lng) if c is not None else None


class ProfileResponse(BaseModel):
    courier_id: str
    display_name: str | None = None
    active: bool
    online: bool
    max_distance_km: float
    available_days: list[Weekday]
    time_slots: list[str]
    transport_modes: list[TransportMode]
    gps_tracking_enabled: bool
    home_location: CoordinateOut | None = None
    home_address: str | None = None
    current_location: CoordinateOut | None = None
    location_updated_at: datetime | None = None
    last_online_at: datetime | None = None
    last_offline_at: datetime | None = None
    created_at: datetime
    updated_at: datetime

    @classmethod
    def from_domain(cls, p: CourierProfile) -> ProfileResponse:
        return cls(
            courier_id=p.courier_id,
            display_name=p.display_name,
            active=p.active,
            online=p.online,
            max_distance_km=p.max_distance_km,
            available_days=[d for d in Weekday if d in p.available_days],
            time_slots=[s.label for s in p.time_slots],
            transport_modes=list(p.transport_modes),
            gps_tracking_enabled=p.gps_tracking_enabled,
            home_location=CoordinateOut.from_domain(p.home_location),
            home_address=p.home_address,
            current_location=CoordinateOut.from_domain(p.current_location),
            location_updated_at=p.location_updated_at,
            last_online_at=p.last_online_at,
            last_offline_at=p.last_offline_at,
            created_at=p.created_at,
            updated_at=p.updated_at,
        )


class AvailabilityResponse(BaseModel):
    """Toggle result; ``warning`` is advisory and never blocks going online."""

    courier_id: str
    online: bool
    within_schedule: bool
    warning: str | None = None
    last_online_at: datetime | None = None
    last_offline_at: datetime | None = None

    @classmethod
    def from_domain(cls, result: ToggleResult) -> AvailabilityResponse:
        p = result.profile
        return cls(
            courier_id=p.courier_id,
            online=p.online,
            within_schedule=result.availability.within_schedule if result.availability else True,
            warning=result.warning,
            last_online_at=p.last_online_at,
            last_offline_at=p.last_offline_at,
        )


class DeliveryResponse(BaseModel):
    id: str
    order_id: str
    status: str
    courier_id: str | None = None
    fee_cents: int
    estimated_time_min: int | None = None
    product_id: str | None = None
    seller_id: str | None = None
    buyer_id: str | None = None
    dropoff_location: CoordinateOut | None = None
    delivery_address: str | None = None
    notes: str | None = None
    cancel_reason: str | None = None
    created_at: datetime
    updated_at: datetime
    accepted_at: datetime | None = None
    picked_up_at: datetime | None = None
    delivered_at: datetime | None = None
    cancelled_at: datetime | None = None

    @classmethod
    def from_domain(cls, d: DeliveryOrder) -> DeliveryResponse:
        return cls(
            id=d.id,
            order_id=d.order_id,
            status=d.status.value,
            courier_id=d.courier_id,
            fee_cents=d.fee_cents,
            estimated_time_min=d.estimated_time_min,
            product_id=d.product_id,
            seller_id=d.seller_id,
            buyer_id=d.buyer_id,
            dropoff_location=CoordinateOut.from_domain(d.dropoff_location),
            delivery_address=d.delivery_address,
            notes=d.notes,
            cancel_reason=d.cancel_reason,
            created_at=d.created_at,
            updated_at=d.updated_at,
            accepted_at=d.accepted_at,
            picked_up_at=d.picked_up_at,
            delivered_at=d.delivered_at,
            cancelled_at=d.cancelled_at,
        )


class PickupSummary(BaseModel):
    location: CoordinateOut
    product_title: str | None = None
    seller_name: str | None = None
    address: str | None = None


class MatchCandidateOut(BaseModel):
    delivery_id: str
    order_id: str
    fee_cents: int
    distance_km: float
    duration_min: int | None = None
    distance_source: str
    estimated_time_min: int | None = None
    dropoff_distance_km: float | None = None
    delivery_address: str | None = None
    pickup: PickupSummary

    @classmethod
    def from_domain(cls, c: MatchCandidate) -> MatchCandidateOut:
        return cls(
            delivery_id=c.delivery.id,
            order_id=c.delivery.order_id,
            fee_cents=c.delivery.fee_cents,
            distance_km=c.distance.distance_km,
            duration_min=c.distance.duration_min,
            distance_source=c.distance.source,
            estimated_time_min=c.estimated_time_min,
            dropoff_distance_km=c.dropoff_distance_km,
            delivery_address=c.delivery.delivery_address,
            pickup=PickupSummary(
                location=CoordinateOut.from_domain(c.pickup.location),
                product_title=c.pickup.product_title,
                seller_name=c.pickup.seller_name,
                address=c.pickup.address,
            ),
        )


class MatchResponse(BaseModel):
    courier_id: str
    courier_location: CoordinateOut
    radius_km: float
    total: int
    candidates: list[MatchCandidateOut]

    @classmethod
    def from_domain(cls, r: MatchResult) -> MatchResponse:
        return cls(
            courier_id=r.courier_id,
            courier_location=CoordinateOut.from_domain(r.courier_location),
            radius_km=r.radius_km,
            total=len(r.candidates),
            candidates=[MatchCandidateOut.from_domain(c) for c in r.candidates],
        )


class OkResponse(BaseModel):
    """Generic success response."""

    ok: bool = True
    product_id: str | None = None
