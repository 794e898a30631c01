# tests/test_http_app.py
"""
End-to-end tests for the HTTP API against the in-memory backend.

The service singleton is rebuilt for every test so state never leaks.
"""
from __future__ import annotations

from datetime import datetime, timezone

import pytest
from fastapi.testclient import TestClient

from courier_dispatch.service.service import reset_dispatch_service
from courier_dispatch.transport.http_app import app


@pytest.fixture
def client():
    reset_dispatch_service()
    with TestClient(app) as c:
        yield c
    reset_dispatch_service()


@pytest.fixture
def admin_headers(admin_token):
    return {"Authorization": f"Bearer {admin_token}"}


def _courier(courier_id="courier_1", **overrides) -> dict:
    body = {
        "courier_id": courier_id,
        "display_name": "Sanne",
        "home_location": {"lat": 52.0, "lng": 5.0},
        "max_distance_km": 5,
        "available_days": ["MONDAY", "TUESDAY"],
        "time_slots": ["9-12", "avond"],
        "transport_modes": ["BIKE"],
    }
    body.update(overrides)
    return body


def _delivery(order_id="order_1", **overrides) -> dict:
    body = {
        "order_id": order_id,
        "fee_cents": 650,
        "product_id": "product_1",
        "buyer_id": "buyer_1",
        "seller_id": "seller_1",
        "delivery_address": "Neude 11, Utrecht",
    }
    body.update(overrides)
    return body


def _create_delivery(client, **overrides) -> str:
    resp = client.post("/deliveries", json=_delivery(**overrides))
    assert resp.status_code == 201
    return resp.json()["id"]


# ============================================================================
# Health / infrastructure
# ============================================================================

class TestInfrastructure:

    def test_health(self, client):
        resp = client.get("/health")
        assert resp.status_code == 200
        assert resp.json() == {"status": "healthy"}

    def test_ready_memory_backend(self, client):
        resp = client.get("/ready")
        assert resp.status_code == 200
        assert resp.json()["status"] == "healthy"
        assert resp.json()["storage"] == "memory"

    def test_request_id_and_security_headers(self, client):
        resp = client.get("/health", headers={"X-Request-ID": "req-123"})
        assert resp.headers["X-Request-ID"] == "req-123"
        assert resp.headers["X-Content-Type-Options"] == "nosniff"
        assert resp.headers["Cache-Control"] == "no-store"

    def test_unknown_route(self, client):
        resp = client.get("/nope")
        assert resp.status_code == 404
        assert resp.json() == {"error": "Not found"}

    def test_metrics_requires_token(self, client):
        assert client.get("/metrics").status_code == 401
        resp = client.get("/metrics", headers={"Authorization": "Bearer wrong"})
        assert resp.status_code == 401

    def test_metrics_with_token(self, client, admin_headers):
        client.get("/health")
        resp = client.get("/metrics", headers=admin_headers)
        assert resp.status_code == 200
        assert "counters" in resp.json()
        assert "histograms" in resp.json()


# ============================================================================
# Couriers
# ============================================================================

class TestCouriers:

    def test_create_and_get_profile(self, client):
        resp = client.post("/couriers", json=_courier())
        assert resp.status_code == 201
        body = resp.json()
        assert body["courier_id"] == "courier_1"
        assert body["time_slots"] == ["09:00-12:00", "evening"]
        assert body["active"] is True
        assert body["online"] is False

        resp = client.get("/couriers/courier_1/profile")
        assert resp.status_code == 200
        assert resp.json()["home_location"] == {"lat": 52.0, "lng": 5.0}

    def test_unknown_profile(self, client):
        resp = client.get("/couriers/ghost/profile")
        assert resp.status_code == 404
        assert resp.json()["code"] == "profile_not_found"

    def test_duplicate_courier(self, client):
        client.post("/couriers", json=_courier())
        resp = client.post("/couriers", json=_courier())
        assert resp.status_code == 409
        assert resp.json()["code"] == "profile_already_exists"

    def test_malformed_time_slot_rejected(self, client):
        resp = client.post("/couriers", json=_courier(time_slots=["lunchtime"]))
        assert resp.status_code == 400
        assert resp.json()["code"] == "validation_error"
        assert "lunchtime" in resp.json()["error"]

    def test_out_of_range_coordinate_rejected(self, client):
        resp = client.post("/couriers", json=_courier(home_location={"lat": 95.0, "lng": 5.0}))
        assert resp.status_code == 400
        assert resp.json()["code"] == "validation_error"

    def test_bad_courier_id_rejected(self, client):
        resp = client.post("/couriers", json=_courier(courier_id="has spaces"))
        assert resp.status_code == 400

    def test_non_object_body_rejected(self, client):
        resp = client.post("/couriers", json=["not", "an", "object"])
        assert resp.status_code == 400
        assert resp.json()["code"] == "validation_error"

    def test_update_profile(self, client):
        client.post("/couriers", json=_courier())
        resp = client.put("/couriers/courier_1/profile", json={"max_distance_km": 12, "time_slots": ["morning"]})
        assert resp.status_code == 200
        assert resp.json()["max_distance_km"] == 12
        assert resp.json()["time_slots"] == ["morning"]

    def test_update_profile_empty_body(self, client):
        client.post("/couriers", json=_courier())
        resp = client.put("/couriers/courier_1/profile", json={})
        assert resp.status_code == 400

    def test_deactivate_takes_courier_offline(self, client):
        client.post("/couriers", json=_courier(time_slots=[], available_days=[]))
        client.post("/couriers/courier_1/availability", json={"online": True})

        resp = client.put("/couriers/courier_1/profile", json={"active": False})
        assert resp.json()["active"] is False
        assert resp.json()["online"] is False

    def test_go_online_without_schedule(self, client):
        client.post("/couriers", json=_courier(time_slots=[], available_days=[]))

        resp = client.post("/couriers/courier_1/availability", json={"online": True})

        assert resp.status_code == 200
        body = resp.json()
        assert body["online"] is True
        assert body["within_schedule"] is True
        assert body["warning"] is None
        assert body["last_online_at"] is not None

    def test_go_online_outside_schedule_warns(self, client):
        client.post("/couriers", json=_courier(time_slots=["09:00-12:00"], available_days=[]))
        # 12:00 UTC on a Monday is 13:00 in Amsterdam
        fixed = datetime(2024, 1, 1, 12, 0, tzinfo=timezone.utc)
        client.app.state.dispatch.lifecycle._clock = lambda: fixed

        resp = client.post("/couriers/courier_1/availability", json={"online": True})

        assert resp.status_code == 200
        assert resp.json()["online"] is True
        assert resp.json()["within_schedule"] is False
        assert "13:00" in resp.json()["warning"]

    def test_inactive_cannot_go_online(self, client):
        client.post("/couriers", json=_courier())
        client.put("/couriers/courier_1/profile", json={"active": False})

        resp = client.post("/couriers/courier_1/availability", json={"online": True})
        assert resp.status_code == 409
        assert resp.json()["code"] == "profile_inactive"

    def test_update_location(self, client):
        client.post("/couriers", json=_courier())
        resp = client.post("/couriers/courier_1/location", json={"lat": 52.01, "lng": 5.01})
        assert resp.status_code == 200
        assert resp.json()["current_location"] == {"lat": 52.01, "lng": 5.01}


# ============================================================================
# Matching
# ============================================================================

class TestMatches:

    def test_match_flow(self, client, admin_headers):
        client.post("/couriers", json=_courier())
        resp = client.put(
            "/admin/pickup-points/product_1",
            json={"location": {"lat": 52.02, "lng": 5.0}, "product_title": "Lasagne"},
            headers=admin_headers,
        )
        assert resp.status_code == 200
        assert resp.json() == {"ok": True, "product_id": "product_1"}

        delivery_id = _create_delivery(client)
        _create_delivery(client, order_id="order_far", product_id="product_far")

        resp = client.get("/couriers/courier_1/matches")

        assert resp.status_code == 200
        body = resp.json()
        assert body["total"] == 1
        assert body["radius_km"] == 5.0
        assert body["courier_location"] == {"lat": 52.0, "lng": 5.0}
        candidate = body["candidates"][0]
        assert candidate["delivery_id"] == delivery_id
        assert candidate["distance_km"] == 2.2
        assert candidate["distance_source"] == "haversine"
        assert candidate["pickup"]["product_title"] == "Lasagne"
        assert candidate["fee_cents"] == 650

    def test_inactive_courier_gets_error_not_empty_list(self, client):
        client.post("/couriers", json=_courier())
        client.put("/couriers/courier_1/profile", json={"active": False})

        resp = client.get("/couriers/courier_1/matches")
        assert resp.status_code == 409
        assert resp.json()["code"] == "profile_inactive"

    def test_unknown_courier(self, client):
        resp = client.get("/couriers/ghost/matches")
        assert resp.status_code == 404
        assert resp.json()["code"] == "profile_not_found"

    def test_pickup_upsert_requires_token(self, client):
        resp = client.put("/admin/pickup-points/p1", json={"location": {"lat": 52.0, "lng": 5.0}})
        assert resp.status_code == 401


# ============================================================================
# Deliveries
# ============================================================================

class TestDeliveries:

    def test_create_and_get(self, client):
        delivery_id = _create_delivery(client)

        resp = client.get(f"/deliveries/{delivery_id}")
        assert resp.status_code == 200
        assert resp.json()["status"] == "PENDING"
        assert resp.json()["courier_id"] is None

    def test_create_with_explicit_id(self, client):
        resp = client.post("/deliveries", json=_delivery(id="delivery-abc"))
        assert resp.json()["id"] == "delivery-abc"

    def test_duplicate_order(self, client):
        _create_delivery(client)
        resp = client.post("/deliveries", json=_delivery())
        assert resp.status_code == 409
        assert resp.json()["code"] == "delivery_already_exists"

    def test_negative_fee_rejected(self, client):
        resp = client.post("/deliveries", json=_delivery(fee_cents=-1))
        assert resp.status_code == 400

    def test_unknown_delivery(self, client):
        resp = client.get("/deliveries/missing")
        assert resp.status_code == 404
        assert resp.json()["code"] == "delivery_not_found"

    def test_full_lifecycle(self, client):
        client.post("/couriers", json=_courier())
        delivery_id = _create_delivery(client)

        resp = client.post(f"/deliveries/{delivery_id}/accept", json={"courier_id": "courier_1"})
        assert resp.status_code == 200
        assert resp.json()["status"] == "ACCEPTED"
        assert resp.json()["courier_id"] == "courier_1"

        resp = client.post(f"/deliveries/{delivery_id}/pickup", json={"courier_id": "courier_1"})
        assert resp.json()["status"] == "PICKED_UP"

        resp = client.post(f"/deliveries/{delivery_id}/deliver", json={"courier_id": "courier_1"})
        assert resp.status_code == 200
        assert resp.json()["status"] == "DELIVERED"
        assert resp.json()["delivered_at"] is not None

        resp = client.post(f"/deliveries/{delivery_id}/cancel", json={"courier_id": "courier_1"})
        assert resp.status_code == 409
        assert resp.json()["code"] == "invalid_transition"

    def test_second_accept_conflicts(self, client):
        client.post("/couriers", json=_courier("courier_1"))
        client.post("/couriers", json=_courier("courier_2"))
        delivery_id = _create_delivery(client)

        client.post(f"/deliveries/{delivery_id}/accept", json={"courier_id": "courier_1"})
        resp = client.post(f"/deliveries/{delivery_id}/accept", json={"courier_id": "courier_2"})

        assert resp.status_code == 409
        assert resp.json()["code"] == "already_assigned"

    def test_foreign_courier_cannot_pick_up(self, client):
        client.post("/couriers", json=_courier("courier_1"))
        client.post("/couriers", json=_courier("courier_2"))
        delivery_id = _create_delivery(client)
        client.post(f"/deliveries/{delivery_id}/accept", json={"courier_id": "courier_1"})

        resp = client.post(f"/deliveries/{delivery_id}/pickup", json={"courier_id": "courier_2"})

        assert resp.status_code == 403
        assert resp.json()["code"] == "not_assigned_courier"

    def test_courier_cancel(self, client):
        client.post("/couriers", json=_courier())
        delivery_id = _create_delivery(client)
        client.post(f"/deliveries/{delivery_id}/accept", json={"courier_id": "courier_1"})

        resp = client.post(
            f"/deliveries/{delivery_id}/cancel",
            json={"courier_id": "courier_1", "reason": "bike broke down"},
        )

        assert resp.status_code == 200
        assert resp.json()["status"] == "CANCELLED"
        assert resp.json()["cancel_reason"] == "bike broke down"

    def test_admin_cancel(self, client, admin_headers):
        delivery_id = _create_delivery(client)

        resp = client.post(f"/admin/deliveries/{delivery_id}/cancel", json={"reason": "fraud"})
        assert resp.status_code == 401

        resp = client.post(
            f"/admin/deliveries/{delivery_id}/cancel", json={"reason": "fraud"}, headers=admin_headers,
        )
        assert resp.status_code == 200
        assert resp.json()["status"] == "CANCELLED"

    def test_accept_requires_courier_id(self, client):
        delivery_id = _create_delivery(client)
        resp = client.post(f"/deliveries/{delivery_id}/accept", json={})
        assert resp.status_code == 400
