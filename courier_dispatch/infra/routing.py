# courier_dispatch/infra/routing.py
"""
Route distances via the Google Distance Matrix API.

``GoogleDistanceMatrixProvider`` implements the ``RoutingProvider`` port.
Failures come back as ``ProviderError`` values (HTTP error, non-OK API
status, unroutable element, network error, timeout); the geo calculator
maps those to the haversine fallback.

Uses the shared aiohttp session from ``http_client`` with a per-request
timeout.  The API accepts at most 25 destinations per request, so larger
batches are split and fetched concurrently.
"""
from __future__ import annotations

import asyncio
import math
from typing import Sequence

import aiohttp

from courier_dispatch.core.domain import Coordinate, TravelMode
from courier_dispatch.core.ports import ProviderError, RouteOutcome, RouteResult
from courier_dispatch.infra.http_client import get_routing_session
from courier_dispatch.infra.logging_config import get_logger, mask_coordinates

logger = get_logger(__name__)

DISTANCE_MATRIX_URL = "https://maps.googleapis.com/maps/api/distancematrix/json"
MAX_DESTINATIONS_PER_REQUEST = 25


def _fmt(c: Coordinate) -> str:
    return f"{c.lat},{c.lng}"


def _parse_element(element: dict) -> RouteOutcome:
    """Convert one Distance Matrix element to a route outcome."""
    status = element.get("status")
    if status != "OK":
        return ProviderError("element_status", str(status))

    try:
        meters = element["distance"]["value"]
        seconds = element["duration"]["value"]
    except (KeyError, TypeError):
        return ProviderError("malformed", "element without distance/duration")

    if not isinstance(meters, (int, float)) or not isinstance(seconds, (int, float)):
        return ProviderError("malformed", "non-numeric distance/duration")

    return RouteResult(
        distance_km=meters / 1000,
        duration_min=math.ceil(seconds / 60),
    )


class GoogleDistanceMatrixProvider:
    """Distance Matrix client.  One instance per application."""

    name = "google"

    def __init__(
        self,
        api_key: str,
        *,
        base_url: str = DISTANCE_MATRIX_URL,
        timeout_seconds: float = 5.0,
        session_factory=get_routing_session,
    ) -> None:
        self._api_key = api_key
        self._base_url = base_url
        self._timeout = timeout_seconds
        self._session_factory = session_factory

    async def route(
        self, origin: Coordinate, destination: Coordinate, mode: TravelMode = TravelMode.DRIVING
    ) -> RouteOutcome:
        outcomes = await self._fetch(origin, [destination], mode)
        if isinstance(outcomes, ProviderError):
            return outcomes
        return outcomes[0]

    async def route_many(
        self,
        origin: Coordinate,
        destinations: Sequence[Coordinate],
        mode: TravelMode = TravelMode.DRIVING,
    ) -> list[RouteOutcome]:
        """One outcome per destination, in order; batches beyond 25 are split."""
        if not destinations:
            return []

        chunks = [
            list(destinations[i:i + MAX_DESTINATIONS_PER_REQUEST])
            for i in range(0, len(destinations), MAX_DESTINATIONS_PER_REQUEST)
        ]
        results = await asyncio.gather(*(self._fetch(origin, chunk, mode) for chunk in chunks))

        outcomes: list[RouteOutcome] = []
        for chunk, result in zip(chunks, results):
            if isinstance(result, ProviderError):
                outcomes.extend([result] * len(chunk))
            else:
                outcomes.extend(result)
        return outcomes

    async def _fetch(
        self,
        origin: Coordinate,
        destinations: list[Coordinate],
        mode: TravelMode,
    ) -> list[RouteOutcome] | ProviderError:
        params = {
            "origins": _fmt(origin),
            "destinations": "|".join(_fmt(d) for d in destinations),
            "mode": TravelMode(mode).value,
            "units": "metric",
            "key": self._api_key,
        }
        masked = mask_coordinates(origin.lat, origin.lng)

        try:
            session = self._session_factory()
            timeout = aiohttp.ClientTimeout(total=self._timeout)

            async with session.get(
                self._base_url,
                params=params,
                headers={"Accept": "application/json"},
                timeout=timeout,
            ) as resp:
                if resp.status != 200:
                    logger.warning(
                        "Distance Matrix returned HTTP %d for origin (%s)", resp.status, masked,
                    )
                    return ProviderError("http_status", str(resp.status))

                data = await resp.json(content_type=None)

        except TimeoutError:
            logger.warning("Distance Matrix timeout for origin (%s)", masked)
            return ProviderError("timeout", f"no answer within {self._timeout:.1f}s")

        except aiohttp.ClientError as exc:
            logger.warning("Distance Matrix network error for origin (%s): %s", masked, exc)
            return ProviderError("network", str(exc))

        if not isinstance(data, dict):
            return ProviderError("malformed", "response is not a JSON object")

        api_status = data.get("status")
        if api_status != "OK":
            logger.warning(
                "Distance Matrix status %s for origin (%s): %s",
                api_status, masked, data.get("error_message", ""),
            )
            return ProviderError("api_status", str(api_status))

        rows = data.get("rows") or []
        elements = rows[0].get("elements") if rows and isinstance(rows[0], dict) else None
        if not isinstance(elements, list) or len(elements) != len(destinations):
            return ProviderError("malformed", "unexpected rows/elements shape")

        return [
            _parse_element(e) if isinstance(e, dict) else ProviderError("malformed", "element is not an object")
            for e in elements
        ]
