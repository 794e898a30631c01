# courier_dispatch/core/lifecycle.py
"""
Delivery lifecycle manager.

State machine:

    PENDING ──accept──▶ ACCEPTED ──pickup──▶ PICKED_UP ──deliver──▶ DELIVERED
       │                   │                     │
       └───────────────────┴──────cancel─────────┴──────────────▶ CANCELLED

Every transition is a single conditional update in the repository
(compare-and-set on status, plus the courier assignment where it
matters).  When the condition does not hold, the delivery is reloaded
to report *why*: not found, already assigned, not the assigned courier,
or a transition the current status does not allow.

Transitions are bounded by ``transition_timeout_seconds``.  On expiry
the repository transaction is cancelled and rolled back, so the order
is left exactly as it was.

The courier online toggle and the live GPS update also live here: they
are the only other writes a courier makes.
"""
from __future__ import annotations

import asyncio
from dataclasses import dataclass
from datetime import datetime, tzinfo
from typing import Callable, Optional

from courier_dispatch.core.availability import AvailabilityCheck, check_availability
from courier_dispatch.core.domain import (
    ALLOWED_SOURCES,
    Coordinate,
    CourierProfile,
    DeliveryOrder,
    DeliveryStatus,
    utcnow,
)
from courier_dispatch.core.errors import (
    AlreadyAssignedError,
    DeliveryNotFoundError,
    DispatchError,
    EarningsUnavailableError,
    InvalidTransitionError,
    NotAssignedCourierError,
    ProfileInactiveError,
    ProfileNotFoundError,
    TransitionTimeoutError,
)
from courier_dispatch.core.notifications import build_notifications
from courier_dispatch.core.ports import (
    AsyncCourierProfileRepository,
    AsyncDeliveryOrderRepository,
    DeliveryNotifier,
    EarningsEvent,
    EarningsService,
    TransitionHook,
)
from courier_dispatch.infra.audit_log import audit_event
from courier_dispatch.infra.logging_config import LogContext, get_logger, mask_coordinates
from courier_dispatch.infra.metrics import DispatchMetrics

logger = get_logger(__name__)


@dataclass(frozen=True)
class ToggleResult:
    """Outcome of an online/offline toggle."""
    profile: CourierProfile
    availability: Optional[AvailabilityCheck] = None

    @property
    def warning(self) -> Optional[str]:
        return self.availability.warning if self.availability else None


class DeliveryLifecycleManager:

    def __init__(
        self,
        profiles: AsyncCourierProfileRepository,
        deliveries: AsyncDeliveryOrderRepository,
        earnings: EarningsService,
        notifier: Optional[DeliveryNotifier] = None,
        *,
        transition_timeout_seconds: float = 10.0,
        schedule_tz: Optional[tzinfo] = None,
        lang: str = "en",
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._profiles = profiles
        self._deliveries = deliveries
        self._earnings = earnings
        self._notifier = notifier
        self._timeout = transition_timeout_seconds
        self._schedule_tz = schedule_tz
        self._lang = lang
        self._clock = clock

    # ------------------------------------------------------------------
    # Courier state
    # ------------------------------------------------------------------

    async def set_online(
        self, courier_id: str, online: bool, now: Optional[datetime] = None
    ) -> ToggleResult:
        """
        Toggle a courier online or offline.

        Going online runs the schedule check and returns its warning, but
        is never refused on schedule grounds.  An inactive profile cannot
        go online at all.
        """
        profile = await self._require_profile(courier_id)
        now = now or self._clock()

        availability = None
        if online:
            if not profile.active:
                raise ProfileInactiveError(f"Courier profile '{courier_id}' is inactive")
            availability = check_availability(
                profile, now, lang=self._lang, tz=self._schedule_tz,
            )

        updated = await self._bounded(
            self._profiles.set_online(courier_id, online, now), "toggle",
        )
        if updated is None:
            # deactivated between the read and the write
            if online:
                raise ProfileInactiveError(f"Courier profile '{courier_id}' is inactive")
            raise ProfileNotFoundError(f"Courier profile '{courier_id}' not found")

        within = availability.within_schedule if availability else True
        DispatchMetrics.availability_toggled(online, within)
        audit_event(
            "courier.online" if online else "courier.offline",
            courier_id=courier_id,
            detail="" if within else "outside declared schedule",
        )
        return ToggleResult(profile=updated, availability=availability)

    async def update_location(
        self, courier_id: str, location: Coordinate, now: Optional[datetime] = None
    ) -> CourierProfile:
        """Store the courier's live GPS position."""
        now = now or self._clock()

        updated = await self._bounded(
            self._profiles.set_current_location(courier_id, location, now), "location update",
        )
        if updated is None:
            raise ProfileNotFoundError(f"Courier profile '{courier_id}' not found")

        LogContext(logger, courier_id=courier_id).debug(
            "Live location updated to (%s)", mask_coordinates(location.lat, location.lng),
        )
        return updated

    # ------------------------------------------------------------------
    # Delivery transitions
    # ------------------------------------------------------------------

    async def accept(self, delivery_id: str, courier_id: str) -> DeliveryOrder:
        profile = await self._require_profile(courier_id)
        if not profile.active:
            raise ProfileInactiveError(f"Courier profile '{courier_id}' is inactive")

        return await self._transition(
            delivery_id,
            DeliveryStatus.ACCEPTED,
            courier_id=courier_id,
            assign_courier_id=courier_id,
        )

    async def mark_picked_up(self, delivery_id: str, courier_id: str) -> DeliveryOrder:
        return await self._transition(
            delivery_id,
            DeliveryStatus.PICKED_UP,
            courier_id=courier_id,
            expected_courier_id=courier_id,
        )

    async def mark_delivered(self, delivery_id: str, courier_id: str) -> DeliveryOrder:
        """
        Complete a delivery and record the courier's earnings.

        The earnings call runs inside the transition's transaction: if it
        fails, the delivery stays PICKED_UP and ``EarningsUnavailableError``
        is raised.
        """
        return await self._transition(
            delivery_id,
            DeliveryStatus.DELIVERED,
            courier_id=courier_id,
            expected_courier_id=courier_id,
            before_commit=self._record_earnings,
        )

    async def cancel(
        self,
        delivery_id: str,
        reason: Optional[str] = None,
        courier_id: Optional[str] = None,
    ) -> DeliveryOrder:
        """
        Cancel from any non-terminal status.

        A courier may only cancel their own assignment; ``courier_id=None``
        is the administrative override.
        """
        return await self._transition(
            delivery_id,
            DeliveryStatus.CANCELLED,
            courier_id=courier_id,
            expected_courier_id=courier_id,
            cancel_reason=reason,
        )

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    async def _transition(
        self,
        delivery_id: str,
        to_status: DeliveryStatus,
        *,
        courier_id: Optional[str],
        expected_courier_id: Optional[str] = None,
        assign_courier_id: Optional[str] = None,
        cancel_reason: Optional[str] = None,
        before_commit: Optional[TransitionHook] = None,
    ) -> DeliveryOrder:
        log = LogContext(logger, courier_id=courier_id, delivery_id=delivery_id)

        updated = await self._bounded(
            self._deliveries.transition(
                delivery_id,
                from_statuses=ALLOWED_SOURCES[to_status],
                to_status=to_status,
                at=self._clock(),
                expected_courier_id=expected_courier_id,
                assign_courier_id=assign_courier_id,
                cancel_reason=cancel_reason,
                before_commit=before_commit,
            ),
            f"transition to {to_status.value}",
        )

        if updated is None:
            raise await self._explain_rejection(delivery_id, to_status, courier_id, expected_courier_id)

        DispatchMetrics.transition(to_status.value)
        log.info("Delivery moved to %s", to_status.value)
        audit_event(
            f"delivery.{to_status.value.lower()}",
            courier_id=updated.courier_id,
            delivery_id=delivery_id,
            detail=f"reason={cancel_reason}" if cancel_reason else "",
            extra={"order_id": updated.order_id, "by_admin": courier_id is None},
        )

        await self._notify(updated)
        return updated

    async def _explain_rejection(
        self,
        delivery_id: str,
        to_status: DeliveryStatus,
        courier_id: Optional[str],
        expected_courier_id: Optional[str],
    ) -> DispatchError:
        current = await self._deliveries.get(delivery_id)
        if current is None:
            return DeliveryNotFoundError(f"Delivery '{delivery_id}' not found")

        if current.is_terminal:
            return InvalidTransitionError(
                f"Delivery '{delivery_id}' is {current.status.value}; no further transitions allowed"
            )

        if to_status == DeliveryStatus.ACCEPTED and current.courier_id is not None:
            DispatchMetrics.accept_conflict()
            LogContext(logger, courier_id=courier_id, delivery_id=delivery_id).info(
                "Accept lost: delivery already assigned",
            )
            return AlreadyAssignedError(f"Delivery '{delivery_id}' is already assigned")

        if current.status not in ALLOWED_SOURCES[to_status]:
            return InvalidTransitionError(
                f"Cannot move delivery '{delivery_id}' from {current.status.value} to {to_status.value}"
            )

        if expected_courier_id is not None and current.courier_id != expected_courier_id:
            return NotAssignedCourierError(
                f"Courier '{courier_id}' is not assigned to delivery '{delivery_id}'"
            )

        return InvalidTransitionError(
            f"Delivery '{delivery_id}' changed concurrently; retry"
        )

    async def _record_earnings(self, delivery: DeliveryOrder) -> None:
        event = EarningsEvent(
            delivery_id=delivery.id,
            order_id=delivery.order_id,
            courier_id=delivery.courier_id,
            fee_cents=delivery.fee_cents,
            delivered_at=delivery.delivered_at,
        )
        try:
            await self._earnings.record_delivery(event)
        except EarningsUnavailableError:
            raise
        except Exception as exc:
            LogContext(logger, courier_id=delivery.courier_id, delivery_id=delivery.id).error(
                "Earnings service failed: %s", exc, exc_info=True,
            )
            raise EarningsUnavailableError(
                f"Earnings service unavailable for delivery '{delivery.id}'"
            ) from exc

    async def _notify(self, delivery: DeliveryOrder) -> None:
        if self._notifier is None:
            return

        for notification in build_notifications(delivery, self._lang):
            try:
                sent = await self._notifier.send(notification)
            except Exception as exc:
                logger.warning(
                    "Notification to %s failed for delivery %s: %s",
                    notification.recipient_role, delivery.id, exc,
                    exc_info=True,
                )
                sent = False
            if not sent:
                DispatchMetrics.notification_failed(notification.recipient_role)

    async def _require_profile(self, courier_id: str) -> CourierProfile:
        profile = await self._profiles.get(courier_id)
        if profile is None:
            raise ProfileNotFoundError(f"Courier profile '{courier_id}' not found")
        return profile

    async def _bounded(self, awaitable, what: str):
        try:
            return await asyncio.wait_for(awaitable, timeout=self._timeout)
        except asyncio.TimeoutError:
            logger.error("%s timed out after %.1fs", what.capitalize(), self._timeout)
            raise TransitionTimeoutError(
                f"{what.capitalize()} did not complete within {self._timeout:.1f}s"
            ) from None
