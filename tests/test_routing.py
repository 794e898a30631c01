# tests/test_routing.py
"""
Tests for the Google Distance Matrix provider.

All tests mock the HTTP layer. No actual Google API calls.
"""
from __future__ import annotations

from unittest.mock import AsyncMock, MagicMock

import aiohttp
import pytest

from courier_dispatch.core.domain import Coordinate, TravelMode
from courier_dispatch.core.ports import ProviderError, RouteResult
from courier_dispatch.infra.routing import (
    MAX_DESTINATIONS_PER_REQUEST,
    GoogleDistanceMatrixProvider,
    _parse_element,
)

ORIGIN = Coordinate(52.3676, 4.9041)
DEST = Coordinate(52.0907, 5.1214)


def _element(meters=4200, seconds=610, status="OK"):
    return {
        "status": status,
        "distance": {"value": meters, "text": f"{meters / 1000} km"},
        "duration": {"value": seconds, "text": "10 mins"},
    }


def _matrix(elements, status="OK"):
    return {
        "status": status,
        "origin_addresses": ["Amsterdam"],
        "destination_addresses": ["x"] * len(elements),
        "rows": [{"elements": elements}],
    }


def _make_mock_response(status=200, json_data=None):
    """Create a mock aiohttp response."""
    resp = AsyncMock()
    resp.status = status
    resp.json = AsyncMock(return_value=json_data if json_data is not None else {})
    return resp


def _make_mock_session(*responses):
    """Create a mock session whose .get() returns the given responses in turn."""
    contexts = []
    for response in responses:
        ctx = AsyncMock()
        ctx.__aenter__ = AsyncMock(return_value=response)
        ctx.__aexit__ = AsyncMock(return_value=False)
        contexts.append(ctx)

    session = MagicMock()
    session.get = MagicMock(side_effect=contexts)
    return session


def _provider(session):
    return GoogleDistanceMatrixProvider("test-key", session_factory=lambda: session)


# ============================================================================
# _parse_element()
# ============================================================================

class TestParseElement:

    def test_ok_element(self):
        result = _parse_element(_element(meters=4200, seconds=610))
        assert result == RouteResult(distance_km=4.2, duration_min=11)

    def test_duration_rounds_up(self):
        assert _parse_element(_element(seconds=60)).duration_min == 1
        assert _parse_element(_element(seconds=61)).duration_min == 2

    def test_non_ok_status(self):
        result = _parse_element({"status": "ZERO_RESULTS"})
        assert isinstance(result, ProviderError)
        assert result.reason == "element_status"
        assert result.message == "ZERO_RESULTS"

    def test_missing_distance(self):
        result = _parse_element({"status": "OK", "duration": {"value": 10}})
        assert result.reason == "malformed"

    def test_non_numeric_value(self):
        result = _parse_element({"status": "OK", "distance": {"value": "far"}, "duration": {"value": 10}})
        assert result.reason == "malformed"


# ============================================================================
# GoogleDistanceMatrixProvider
# ============================================================================

class TestRoute:

    @pytest.mark.asyncio
    async def test_successful_route(self):
        session = _make_mock_session(_make_mock_response(json_data=_matrix([_element()])))

        result = await _provider(session).route(ORIGIN, DEST, TravelMode.DRIVING)

        assert result == RouteResult(distance_km=4.2, duration_min=11)

    @pytest.mark.asyncio
    async def test_request_params(self):
        session = _make_mock_session(_make_mock_response(json_data=_matrix([_element()])))

        await _provider(session).route(ORIGIN, DEST, TravelMode.BICYCLING)

        params = session.get.call_args.kwargs["params"]
        assert params["origins"] == "52.3676,4.9041"
        assert params["destinations"] == "52.0907,5.1214"
        assert params["mode"] == "bicycling"
        assert params["units"] == "metric"
        assert params["key"] == "test-key"

    @pytest.mark.asyncio
    async def test_http_error(self):
        session = _make_mock_session(_make_mock_response(status=500))

        result = await _provider(session).route(ORIGIN, DEST)

        assert isinstance(result, ProviderError)
        assert result.reason == "http_status"

    @pytest.mark.asyncio
    async def test_api_status_error(self):
        body = {"status": "REQUEST_DENIED", "error_message": "bad key", "rows": []}
        session = _make_mock_session(_make_mock_response(json_data=body))

        result = await _provider(session).route(ORIGIN, DEST)

        assert result.reason == "api_status"
        assert result.message == "REQUEST_DENIED"

    @pytest.mark.asyncio
    async def test_timeout(self):
        session = MagicMock()
        session.get = MagicMock(side_effect=TimeoutError())

        result = await _provider(session).route(ORIGIN, DEST)

        assert result.reason == "timeout"

    @pytest.mark.asyncio
    async def test_network_error(self):
        session = MagicMock()
        session.get = MagicMock(side_effect=aiohttp.ClientConnectionError("refused"))

        result = await _provider(session).route(ORIGIN, DEST)

        assert result.reason == "network"

    @pytest.mark.asyncio
    async def test_non_object_body(self):
        session = _make_mock_session(_make_mock_response(json_data=["not", "a", "dict"]))

        result = await _provider(session).route(ORIGIN, DEST)

        assert result.reason == "malformed"


class TestRouteMany:

    @pytest.mark.asyncio
    async def test_empty_destinations(self):
        session = _make_mock_session()
        assert await _provider(session).route_many(ORIGIN, []) == []
        session.get.assert_not_called()

    @pytest.mark.asyncio
    async def test_one_outcome_per_destination(self):
        body = _matrix([_element(1000, 120), {"status": "NOT_FOUND"}])
        session = _make_mock_session(_make_mock_response(json_data=body))

        results = await _provider(session).route_many(ORIGIN, [DEST, ORIGIN])

        assert results[0] == RouteResult(1.0, 2)
        assert isinstance(results[1], ProviderError)

    @pytest.mark.asyncio
    async def test_element_count_mismatch(self):
        session = _make_mock_session(_make_mock_response(json_data=_matrix([_element()])))

        results = await _provider(session).route_many(ORIGIN, [DEST, ORIGIN])

        assert all(isinstance(r, ProviderError) and r.reason == "malformed" for r in results)

    @pytest.mark.asyncio
    async def test_large_batches_are_split(self):
        total = MAX_DESTINATIONS_PER_REQUEST + 5
        first = _make_mock_response(json_data=_matrix([_element(1000, 60)] * MAX_DESTINATIONS_PER_REQUEST))
        second = _make_mock_response(json_data=_matrix([_element(2000, 120)] * 5))
        session = _make_mock_session(first, second)

        results = await _provider(session).route_many(ORIGIN, [DEST] * total)

        assert session.get.call_count == 2
        assert len(results) == total
        assert results[0].distance_km == 1.0
        assert results[-1].distance_km == 2.0

    @pytest.mark.asyncio
    async def test_failed_chunk_only_affects_its_destinations(self):
        first = _make_mock_response(json_data=_matrix([_element()] * MAX_DESTINATIONS_PER_REQUEST))
        second = _make_mock_response(status=503)
        session = _make_mock_session(first, second)

        results = await _provider(session).route_many(ORIGIN, [DEST] * (MAX_DESTINATIONS_PER_REQUEST + 1))

        assert all(isinstance(r, RouteResult) for r in results[:MAX_DESTINATIONS_PER_REQUEST])
        assert results[-1].reason == "http_status"
