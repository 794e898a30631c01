# courier_dispatch/core/geo.py
"""
GeoDistance calculator.

Asks the routing provider for a travel distance and duration.  Whatever
goes wrong on that path (no provider configured, timeout, malformed
response, provider error) is mapped to the great-circle haversine
distance, so ``distance()`` and ``distances()`` never raise for valid
coordinates.

Haversine results carry ``source="haversine"`` and a duration estimated
at a fixed average speed.
"""
from __future__ import annotations

import asyncio
import math
from typing import Sequence

from courier_dispatch.core.domain import Coordinate, DistanceResult, TravelMode
from courier_dispatch.core.ports import ProviderError, RouteOutcome, RouteResult, RoutingProvider
from courier_dispatch.infra.logging_config import get_logger, mask_coordinates
from courier_dispatch.infra.metrics import DispatchMetrics

logger = get_logger(__name__)

EARTH_RADIUS_KM = 6371.0
DEFAULT_FALLBACK_SPEED_KMH = 50.0


def haversine_km(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    """Great-circle distance between two points in kilometres."""
    dlat = math.radians(lat2 - lat1)
    dlon = math.radians(lon2 - lon1)
    a = (
        math.sin(dlat / 2) ** 2
        + math.cos(math.radians(lat1))
        * math.cos(math.radians(lat2))
        * math.sin(dlon / 2) ** 2
    )
    # float rounding can push a just past 1 for near-antipodal points
    return EARTH_RADIUS_KM * 2 * math.asin(math.sqrt(min(1.0, a)))


def round_km(distance_km: float) -> float:
    return round(distance_km, 1)


def _usable_km(value) -> bool:
    return (
        isinstance(value, (int, float))
        and not isinstance(value, bool)
        and math.isfinite(value)
        and value >= 0
    )


class GeoDistanceCalculator:
    """
    Distance between coordinates with a guaranteed local fallback.

    Stateless apart from its configuration; safe to share between
    concurrent match requests.
    """

    def __init__(
        self,
        provider: RoutingProvider | None = None,
        *,
        timeout_seconds: float = 5.0,
        fallback_speed_kmh: float = DEFAULT_FALLBACK_SPEED_KMH,
    ) -> None:
        self._provider = provider
        self._timeout = timeout_seconds
        self._fallback_speed_kmh = fallback_speed_kmh

    @property
    def provider_name(self) -> str:
        return self._provider.name if self._provider is not None else "none"

    def straight_line(self, origin: Coordinate, destination: Coordinate) -> DistanceResult:
        """Haversine distance with an average-speed duration estimate."""
        km = haversine_km(origin.lat, origin.lng, destination.lat, destination.lng)
        duration = math.ceil(km / self._fallback_speed_kmh * 60) if self._fallback_speed_kmh > 0 else None
        return DistanceResult(distance_km=round_km(km), duration_min=duration, source="haversine")

    async def distance(
        self,
        origin: Coordinate,
        destination: Coordinate,
        mode: TravelMode = TravelMode.DRIVING,
    ) -> DistanceResult:
        if self._provider is None:
            DispatchMetrics.routing_fallback("not_configured")
            return self.straight_line(origin, destination)

        outcome = await self._call(self._provider.route(origin, destination, mode))
        return self._resolve(origin, destination, outcome)

    async def distances(
        self,
        origin: Coordinate,
        destinations: Sequence[Coordinate],
        mode: TravelMode = TravelMode.DRIVING,
    ) -> list[DistanceResult]:
        """One-origin, many-destination distances using a single provider call."""
        if not destinations:
            return []

        if self._provider is None:
            DispatchMetrics.routing_fallback("not_configured")
            return [self.straight_line(origin, d) for d in destinations]

        outcomes = await self._call(self._provider.route_many(origin, list(destinations), mode))
        if isinstance(outcomes, ProviderError):
            outcomes = [outcomes] * len(destinations)
        elif len(outcomes) != len(destinations):
            logger.warning(
                "Routing provider %s returned %d results for %d destinations",
                self.provider_name, len(outcomes), len(destinations),
            )
            outcomes = [ProviderError("malformed", "result count mismatch")] * len(destinations)

        return [
            self._resolve(origin, dest, outcome)
            for dest, outcome in zip(destinations, outcomes)
        ]

    async def _call(self, awaitable):
        """Await a provider call under the timeout; failures become ``ProviderError``."""
        try:
            return await asyncio.wait_for(awaitable, timeout=self._timeout)
        except asyncio.TimeoutError:
            return ProviderError("timeout", f"no answer within {self._timeout:.1f}s")
        except Exception as exc:
            logger.warning(
                "Routing provider %s raised %s: %s",
                self.provider_name, exc.__class__.__name__, exc,
                exc_info=True,
            )
            return ProviderError("exception", str(exc))

    def _resolve(
        self, origin: Coordinate, destination: Coordinate, outcome: RouteOutcome
    ) -> DistanceResult:
        if isinstance(outcome, RouteResult) and _usable_km(outcome.distance_km):
            return DistanceResult(
                distance_km=round_km(outcome.distance_km),
                duration_min=outcome.duration_min,
                source="route",
            )

        reason = outcome.reason if isinstance(outcome, ProviderError) else "malformed"
        logger.warning(
            "Routing fallback (%s) for %s → %s",
            reason,
            mask_coordinates(origin.lat, origin.lng),
            mask_coordinates(destination.lat, destination.lng),
        )
        DispatchMetrics.routing_fallback(reason)
        return self.straight_line(origin, destination)
