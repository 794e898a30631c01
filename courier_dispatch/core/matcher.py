# courier_dispatch/core/matcher.py
"""
Order matcher: which pending deliveries a courier should see.

For one courier: resolve the effective coordinate, take every
unassigned PENDING delivery, look up its pickup point, measure the
courier → pickup distance, keep what lies within the courier's radius
and rank it nearest first.

Every call recomputes from scratch.  Nothing is cached between calls
because both the courier's position and the pending pool keep moving.
"""
from __future__ import annotations

import asyncio
from dataclasses import dataclass
from typing import Literal

from courier_dispatch.core.domain import (
    Coordinate,
    CourierProfile,
    DeliveryOrder,
    MatchCandidate,
    MatchResult,
    PickupPoint,
    TravelMode,
)
from courier_dispatch.core.errors import (
    CourierOfflineError,
    ProfileInactiveError,
    ProfileNotFoundError,
)
from courier_dispatch.core.geo import GeoDistanceCalculator
from courier_dispatch.core.location import effective_location, uses_live_location
from courier_dispatch.core.ports import (
    AsyncCourierProfileRepository,
    AsyncDeliveryOrderRepository,
    PickupLocationService,
)
from courier_dispatch.infra.logging_config import LogContext, get_logger, mask_coordinates
from courier_dispatch.infra.metrics import DispatchMetrics

logger = get_logger(__name__)


@dataclass(frozen=True)
class MatchingConfig:
    """
    Matching parameters.

    Attributes:
        default_max_distance_km: radius for profiles without a positive one
        max_candidates: cap on returned candidates (``None`` = no cap)
        tie_break: ``"insertion"`` keeps creation order among equal
            distances, ``"fee_desc"`` puts the higher fee first
        requires_online: reject offline couriers with ``CourierOfflineError``
        require_dropoff_in_radius: also require courier → dropoff within
            radius when the delivery has a dropoff coordinate
        travel_mode: mode passed to the routing provider
        minutes_per_km: rough estimate for deliveries without one
    """
    default_max_distance_km: float = 10.0
    max_candidates: int | None = 20
    tie_break: Literal["insertion", "fee_desc"] = "insertion"
    requires_online: bool = False
    require_dropoff_in_radius: bool = False
    travel_mode: TravelMode = TravelMode.DRIVING
    minutes_per_km: float = 5.0

    @classmethod
    def from_settings(cls, s) -> "MatchingConfig":
        return cls(
            default_max_distance_km=s.match_default_max_distance_km,
            max_candidates=s.match_max_candidates if s.match_max_candidates > 0 else None,
            tie_break=s.match_tie_break,
            requires_online=s.match_requires_online,
            require_dropoff_in_radius=s.match_require_dropoff_in_radius,
            travel_mode=TravelMode(s.default_travel_mode),
            minutes_per_km=s.match_minutes_per_km,
        )


class OrderMatcher:
    """Stateless; safe to run concurrently for many couriers."""

    def __init__(
        self,
        profiles: AsyncCourierProfileRepository,
        deliveries: AsyncDeliveryOrderRepository,
        pickups: PickupLocationService,
        calculator: GeoDistanceCalculator,
        config: MatchingConfig | None = None,
    ) -> None:
        self._profiles = profiles
        self._deliveries = deliveries
        self._pickups = pickups
        self._calculator = calculator
        self.config = config or MatchingConfig()

    def radius_for(self, profile: CourierProfile) -> float:
        if profile.max_distance_km and profile.max_distance_km > 0:
            return float(profile.max_distance_km)
        return self.config.default_max_distance_km

    async def match(self, courier_id: str) -> MatchResult:
        """
        Ranked candidates for ``courier_id``.

        Raises:
            ProfileNotFoundError: no profile for the courier
            ProfileInactiveError: profile is soft-disabled
            CourierOfflineError: offline while ``requires_online`` is set
            LocationUnavailableError: courier cannot be located
        """
        log = LogContext(logger, courier_id=courier_id)
        DispatchMetrics.match_requested()

        with DispatchMetrics.track_match_time():
            profile = await self._profiles.get(courier_id)
            if profile is None:
                DispatchMetrics.match_rejected(ProfileNotFoundError.code)
                raise ProfileNotFoundError(f"Courier profile '{courier_id}' not found")
            if not profile.active:
                DispatchMetrics.match_rejected(ProfileInactiveError.code)
                raise ProfileInactiveError(f"Courier profile '{courier_id}' is inactive")
            if self.config.requires_online and not profile.online:
                DispatchMetrics.match_rejected(CourierOfflineError.code)
                raise CourierOfflineError(f"Courier '{courier_id}' is offline")

            origin = effective_location(profile)
            radius = self.radius_for(profile)

            pending = await self._deliveries.list_pending()
            pending = [d for d in pending if d.is_open_for_matching()]

            pickups = await asyncio.gather(*(self._pickups.pickup_for(d) for d in pending))

            located: list[tuple[DeliveryOrder, PickupPoint]] = []
            skipped = 0
            for delivery, pickup in zip(pending, pickups):
                if pickup is None:
                    skipped += 1
                    DispatchMetrics.pickup_missing()
                    log.debug("Skipping delivery %s: no pickup coordinate", delivery.id)
                    continue
                located.append((delivery, pickup))

            distances = await self._calculator.distances(
                origin, [p.location for _, p in located], self.config.travel_mode,
            )

            in_range = [
                (delivery, pickup, dist)
                for (delivery, pickup), dist in zip(located, distances)
                if dist.distance_km <= radius
            ]

            candidates = await self._with_dropoff(origin, radius, in_range)
            candidates = self._rank(candidates)
            if self.config.max_candidates is not None:
                candidates = candidates[: self.config.max_candidates]

        DispatchMetrics.candidates_returned(len(candidates))
        log.info(
            "Matched %d/%d pending deliveries within %.1f km of (%s), source=%s",
            len(candidates), len(pending), radius,
            mask_coordinates(origin.lat, origin.lng),
            "gps" if uses_live_location(profile) else "home",
        )

        return MatchResult(
            courier_id=courier_id,
            courier_location=origin,
            radius_km=radius,
            candidates=candidates,
            skipped_without_pickup=skipped,
        )

    async def _with_dropoff(
        self,
        origin: Coordinate,
        radius: float,
        in_range: list,
    ) -> list[MatchCandidate]:
        with_dropoff = [i for i, (d, _, _) in enumerate(in_range) if d.dropoff_location is not None]
        dropoff_results = await self._calculator.distances(
            origin,
            [in_range[i][0].dropoff_location for i in with_dropoff],
            self.config.travel_mode,
        )
        dropoff_km = {i: r.distance_km for i, r in zip(with_dropoff, dropoff_results)}

        candidates: list[MatchCandidate] = []
        for i, (delivery, pickup, dist) in enumerate(in_range):
            to_dropoff = dropoff_km.get(i)
            if (
                self.config.require_dropoff_in_radius
                and to_dropoff is not None
                and to_dropoff > radius
            ):
                continue
            candidates.append(
                MatchCandidate(
                    delivery=delivery,
                    pickup=pickup,
                    distance=dist,
                    courier_location=origin,
                    dropoff_distance_km=to_dropoff,
                    estimated_time_min=self._estimate_minutes(delivery, dist.distance_km, to_dropoff),
                )
            )
        return candidates

    def _estimate_minutes(
        self, delivery: DeliveryOrder, pickup_km: float, dropoff_km: float | None
    ) -> int:
        if delivery.estimated_time_min is not None:
            return delivery.estimated_time_min
        total_km = pickup_km + (dropoff_km or 0.0)
        return round(total_km * self.config.minutes_per_km)

    def _rank(self, candidates: list[MatchCandidate]) -> list[MatchCandidate]:
        # sorted() is stable: equal keys keep creation order
        if self.config.tie_break == "fee_desc":
            return sorted(candidates, key=lambda c: (c.distance.distance_km, -c.delivery.fee_cents))
        return sorted(candidates, key=lambda c: c.distance.distance_km)
