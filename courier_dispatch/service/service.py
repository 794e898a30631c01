# courier_dispatch/service/service.py
"""
Dispatch Application Service: the single orchestration point for the
courier and delivery API.

Responsibilities:
    1. Turn validated request models into domain objects
    2. Delegate matching to ``OrderMatcher`` and state changes to
       ``DeliveryLifecycleManager``
    3. Return response DTOs

The transport layer (http_app.py) stays a thin adapter:
    parse request → call service → DispatchError maps to JSON.

``build_dispatch_service`` wires repositories and collaborators from
settings; ``storage_backend`` picks asyncpg or in-memory repositories.
"""
from __future__ import annotations

import uuid
from typing import Iterable
from zoneinfo import ZoneInfo

from courier_dispatch.config import Settings, settings
from courier_dispatch.core.domain import CourierProfile, DeliveryOrder, PickupPoint, utcnow
from courier_dispatch.core.errors import (
    DeliveryNotFoundError,
    ProfileNotFoundError,
    ValidationError,
)
from courier_dispatch.core.geo import GeoDistanceCalculator
from courier_dispatch.core.lifecycle import DeliveryLifecycleManager
from courier_dispatch.core.matcher import MatchingConfig, OrderMatcher
from courier_dispatch.core.time_slots import TimeSlot, TimeSlotFormatError, parse_time_slots
from courier_dispatch.infra.logging_config import get_logger
from courier_dispatch.service.models import (
    AdminCancelRequest,
    AvailabilityResponse,
    CancelRequest,
    CoordinateIn,
    CourierActionRequest,
    CreateCourierRequest,
    CreateDeliveryRequest,
    DeliveryResponse,
    MatchResponse,
    OkResponse,
    ProfileResponse,
    UpdateProfileRequest,
    UpsertPickupPointRequest,
)

logger = get_logger(__name__)


def _parse_slots(raws: Iterable[str]) -> tuple[TimeSlot, ...]:
    try:
        return parse_time_slots(raws, strict=True)
    except TimeSlotFormatError as exc:
        raise ValidationError(str(exc)) from None


class DispatchApplicationService:
    """
    Orchestrates courier and delivery operations.

    Stateless apart from its collaborators; safe to use as a singleton.
    """

    def __init__(
        self,
        *,
        profiles,
        deliveries,
        pickups,
        matcher: OrderMatcher,
        lifecycle: DeliveryLifecycleManager,
        health_checker=None,
    ) -> None:
        self.profiles = profiles
        self.deliveries = deliveries
        self.pickups = pickups
        self.matcher = matcher
        self.lifecycle = lifecycle
        self.health_checker = health_checker

    # ------------------------------------------------------------------
    # Couriers
    # ------------------------------------------------------------------

    async def create_courier(self, req: CreateCourierRequest) -> ProfileResponse:
        now = utcnow()
        profile = CourierProfile(
            courier_id=req.courier_id,
            display_name=req.display_name,
            home_location=req.home_location.to_domain(),
            home_address=req.home_address,
            max_distance_km=req.max_distance_km,
            available_days=frozenset(req.available_days),
            time_slots=_parse_slots(req.time_slots),
            transport_modes=tuple(dict.fromkeys(req.transport_modes)),
            gps_tracking_enabled=req.gps_tracking_enabled,
            created_at=now,
            updated_at=now,
        )
        await self.profiles.create(profile)
        logger.info("Courier onboarded", extra={"courier_id": profile.courier_id})
        return ProfileResponse.from_domain(profile)

    async def get_profile(self, courier_id: str) -> ProfileResponse:
        return ProfileResponse.from_domain(await self._require_profile(courier_id))

    async def update_profile(self, courier_id: str, req: UpdateProfileRequest) -> ProfileResponse:
        if not req.has_updates():
            raise ValidationError("No fields to update")

        changes: dict = {}
        if req.display_name is not None:
            changes["display_name"] = req.display_name
        if req.home_location is not None:
            changes["home_location"] = req.home_location.to_domain()
        if req.home_address is not None:
            changes["home_address"] = req.home_address
        if req.max_distance_km is not None:
            changes["max_distance_km"] = req.max_distance_km
        if req.available_days is not None:
            changes["available_days"] = frozenset(req.available_days)
        if req.time_slots is not None:
            changes["time_slots"] = _parse_slots(req.time_slots)
        if req.transport_modes is not None:
            changes["transport_modes"] = tuple(dict.fromkeys(req.transport_modes))
        if req.gps_tracking_enabled is not None:
            changes["gps_tracking_enabled"] = req.gps_tracking_enabled
        if req.active is not None:
            changes["active"] = req.active
            if not req.active:
                changes["online"] = False

        updated = await self.profiles.update(courier_id, changes, at=utcnow())
        if updated is None:
            raise ProfileNotFoundError(f"Courier profile '{courier_id}' not found")
        return ProfileResponse.from_domain(updated)

    async def set_availability(self, courier_id: str, online: bool) -> AvailabilityResponse:
        result = await self.lifecycle.set_online(courier_id, online)
        return AvailabilityResponse.from_domain(result)

    async def update_location(self, courier_id: str, location: CoordinateIn) -> ProfileResponse:
        profile = await self.lifecycle.update_location(courier_id, location.to_domain())
        return ProfileResponse.from_domain(profile)

    async def get_matches(self, courier_id: str) -> MatchResponse:
        return MatchResponse.from_domain(await self.matcher.match(courier_id))

    # ------------------------------------------------------------------
    # Deliveries
    # ------------------------------------------------------------------

    async def create_delivery(self, req: CreateDeliveryRequest) -> DeliveryResponse:
        now = utcnow()
        delivery = DeliveryOrder(
            id=req.id or uuid.uuid4().hex,
            order_id=req.order_id,
            fee_cents=req.fee_cents,
            estimated_time_min=req.estimated_time_min,
            product_id=req.product_id,
            seller_id=req.seller_id,
            buyer_id=req.buyer_id,
            dropoff_location=req.dropoff_location.to_domain() if req.dropoff_location else None,
            delivery_address=req.delivery_address,
            notes=req.notes,
            created_at=now,
            updated_at=now,
        )
        await self.deliveries.create(delivery)
        return DeliveryResponse.from_domain(delivery)

    async def get_delivery(self, delivery_id: str) -> DeliveryResponse:
        delivery = await self.deliveries.get(delivery_id)
        if delivery is None:
            raise DeliveryNotFoundError(f"Delivery '{delivery_id}' not found")
        return DeliveryResponse.from_domain(delivery)

    async def accept(self, delivery_id: str, req: CourierActionRequest) -> DeliveryResponse:
        return DeliveryResponse.from_domain(await self.lifecycle.accept(delivery_id, req.courier_id))

    async def mark_picked_up(self, delivery_id: str, req: CourierActionRequest) -> DeliveryResponse:
        return DeliveryResponse.from_domain(
            await self.lifecycle.mark_picked_up(delivery_id, req.courier_id)
        )

    async def mark_delivered(self, delivery_id: str, req: CourierActionRequest) -> DeliveryResponse:
        return DeliveryResponse.from_domain(
            await self.lifecycle.mark_delivered(delivery_id, req.courier_id)
        )

    async def cancel(self, delivery_id: str, req: CancelRequest) -> DeliveryResponse:
        return DeliveryResponse.from_domain(
            await self.lifecycle.cancel(delivery_id, req.reason, courier_id=req.courier_id)
        )

    async def admin_cancel(self, delivery_id: str, req: AdminCancelRequest) -> DeliveryResponse:
        return DeliveryResponse.from_domain(
            await self.lifecycle.cancel(delivery_id, req.reason, courier_id=None)
        )

    # ------------------------------------------------------------------
    # Catalog projection
    # ------------------------------------------------------------------

    async def upsert_pickup_point(self, product_id: str, req: UpsertPickupPointRequest) -> OkResponse:
        await self.pickups.upsert(
            product_id,
            PickupPoint(
                location=req.location.to_domain(),
                product_title=req.product_title,
                seller_name=req.seller_name,
                address=req.address,
            ),
        )
        return OkResponse(product_id=product_id)

    async def _require_profile(self, courier_id: str) -> CourierProfile:
        profile = await self.profiles.get(courier_id)
        if profile is None:
            raise ProfileNotFoundError(f"Courier profile '{courier_id}' not found")
        return profile


# ---------------------------------------------------------------------------
# Wiring
# ---------------------------------------------------------------------------

def build_routing_provider(s: Settings):
    if not s.routing_enabled:
        return None
    from courier_dispatch.infra.routing import GoogleDistanceMatrixProvider
    return GoogleDistanceMatrixProvider(
        s.google_maps_api_key,
        base_url=s.routing_base_url,
        timeout_seconds=s.routing_timeout_seconds,
    )


def build_dispatch_service(s: Settings | None = None) -> DispatchApplicationService:
    """Wire the service from settings (repositories, routing, collaborators)."""
    from courier_dispatch.infra.webhooks import get_delivery_notifier, get_earnings_service

    s = s or settings

    health_checker = None
    if s.storage_backend == "memory":
        from courier_dispatch.infra.memory_repos import (
            InMemoryCourierProfileRepository,
            InMemoryDeliveryOrderRepository,
            InMemoryPickupLocationService,
        )
        profiles = InMemoryCourierProfileRepository()
        deliveries = InMemoryDeliveryOrderRepository()
        pickups = InMemoryPickupLocationService()
    else:
        from courier_dispatch.infra.health_checks_async import get_async_health_checker
        from courier_dispatch.infra.pg_courier_repo_async import AsyncPostgresCourierProfileRepository
        from courier_dispatch.infra.pg_delivery_repo_async import AsyncPostgresDeliveryOrderRepository
        from courier_dispatch.infra.pg_pickup_repo_async import AsyncPostgresPickupLocationService
        profiles = AsyncPostgresCourierProfileRepository()
        deliveries = AsyncPostgresDeliveryOrderRepository()
        pickups = AsyncPostgresPickupLocationService()
        health_checker = get_async_health_checker()

    calculator = GeoDistanceCalculator(
        build_routing_provider(s),
        timeout_seconds=s.routing_timeout_seconds,
        fallback_speed_kmh=s.fallback_speed_kmh,
    )
    matcher = OrderMatcher(
        profiles, deliveries, pickups, calculator, MatchingConfig.from_settings(s),
    )
    lifecycle = DeliveryLifecycleManager(
        profiles,
        deliveries,
        get_earnings_service(s),
        get_delivery_notifier(s),
        transition_timeout_seconds=s.transition_timeout_seconds,
        schedule_tz=ZoneInfo(s.schedule_timezone),
        lang=s.schedule_warning_lang,
    )

    logger.info(
        f"Dispatch service wired: storage={s.storage_backend}, routing={calculator.provider_name}"
    )
    return DispatchApplicationService(
        profiles=profiles,
        deliveries=deliveries,
        pickups=pickups,
        matcher=matcher,
        lifecycle=lifecycle,
        health_checker=health_checker,
    )


# ---------------------------------------------------------------------------
# Singleton
# ---------------------------------------------------------------------------

_svc: DispatchApplicationService | None = None


def get_dispatch_service() -> DispatchApplicationService:
    """Get the global DispatchApplicationService singleton."""
    global _svc
    if _svc is None:
        _svc = build_dispatch_service()
    return _svc


def reset_dispatch_service() -> None:
    """Reset the singleton (for testing)."""
    global _svc
    _svc = None
