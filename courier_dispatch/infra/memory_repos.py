# courier_dispatch/infra/memory_repos.py
"""
In-process repositories for local development and tests.

They implement the same ports as the asyncpg repositories.  Stored
objects are copied in and out so callers never share mutable state with
the store.  Profile writes merge only the fields they change.  A
delivery transition works on a copy and only replaces the stored order
after ``before_commit`` succeeded, all under one ``asyncio.Lock``: that
is the compare-and-set.
"""
from __future__ import annotations

import asyncio
from dataclasses import replace
from datetime import datetime
from typing import Optional

from courier_dispatch.core.domain import (
    STATUS_TIMESTAMP_FIELD,
    Coordinate,
    CourierProfile,
    DeliveryOrder,
    DeliveryStatus,
    PickupPoint,
)
from courier_dispatch.core.errors import DeliveryAlreadyExistsError, ProfileAlreadyExistsError
from courier_dispatch.core.ports import TransitionHook


class InMemoryCourierProfileRepository:

    def __init__(self) -> None:
        self._profiles: dict[str, CourierProfile] = {}
        self._lock = asyncio.Lock()

    async def get(self, courier_id: str) -> Optional[CourierProfile]:
        profile = self._profiles.get(courier_id)
        return replace(profile) if profile else None

    async def create(self, profile: CourierProfile) -> None:
        async with self._lock:
            if profile.courier_id in self._profiles:
                raise ProfileAlreadyExistsError(
                    f"Courier profile '{profile.courier_id}' already exists"
                )
            self._profiles[profile.courier_id] = replace(profile)

    async def update(
        self, courier_id: str, changes: dict, at: datetime
    ) -> Optional[CourierProfile]:
        return await self._apply(courier_id, dict(changes, updated_at=at))

    async def set_online(
        self, courier_id: str, online: bool, at: datetime
    ) -> Optional[CourierProfile]:
        stamp = "last_online_at" if online else "last_offline_at"
        return await self._apply(
            courier_id,
            {"online": online, stamp: at, "updated_at": at},
            require_active=online,
        )

    async def set_current_location(
        self, courier_id: str, location: Coordinate, at: datetime
    ) -> Optional[CourierProfile]:
        return await self._apply(
            courier_id,
            {"current_location": location, "location_updated_at": at, "updated_at": at},
        )

    async def _apply(
        self, courier_id: str, changes: dict, *, require_active: bool = False
    ) -> Optional[CourierProfile]:
        async with self._lock:
            current = self._profiles.get(courier_id)
            if current is None or (require_active and not current.active):
                return None
            updated = replace(current, **changes)
            self._profiles[courier_id] = updated
            return replace(updated)


class InMemoryDeliveryOrderRepository:

    def __init__(self) -> None:
        # dicts keep insertion order, which is creation order here
        self._orders: dict[str, DeliveryOrder] = {}
        self._lock = asyncio.Lock()

    async def get(self, delivery_id: str) -> Optional[DeliveryOrder]:
        order = self._orders.get(delivery_id)
        return replace(order) if order else None

    async def create(self, delivery: DeliveryOrder) -> None:
        async with self._lock:
            if delivery.id in self._orders or any(
                o.order_id == delivery.order_id for o in self._orders.values()
            ):
                raise DeliveryAlreadyExistsError(
                    f"Delivery for order '{delivery.order_id}' already exists"
                )
            self._orders[delivery.id] = replace(delivery)

    async def list_pending(self) -> list[DeliveryOrder]:
        return [replace(o) for o in self._orders.values() if o.is_open_for_matching()]

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
        async with self._lock:
            current = self._orders.get(delivery_id)
            if current is None or current.status not in from_statuses:
                return None
            if assign_courier_id is not None and current.courier_id is not None:
                return None
            if expected_courier_id is not None and current.courier_id != expected_courier_id:
                return None

            changes = {
                "status": to_status,
                "updated_at": at,
                STATUS_TIMESTAMP_FIELD[to_status]: at,
            }
            if assign_courier_id is not None:
                changes["courier_id"] = assign_courier_id
            if cancel_reason is not None:
                changes["cancel_reason"] = cancel_reason

            updated = replace(current, **changes)
            if before_commit is not None:
                await before_commit(replace(updated))

            self._orders[delivery_id] = updated
            return replace(updated)


class InMemoryPickupLocationService:
    """Pickup points keyed by product id."""

    def __init__(self, points: dict[str, PickupPoint] | None = None) -> None:
        self._points: dict[str, PickupPoint] = dict(points or {})

    async def pickup_for(self, delivery: DeliveryOrder) -> Optional[PickupPoint]:
        if not delivery.product_id:
            return None
        return self._points.get(delivery.product_id)

    async def upsert(self, product_id: str, pickup: PickupPoint) -> None:
        self._points[product_id] = pickup
