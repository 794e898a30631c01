# tests/test_middleware.py
"""Tests for courier_dispatch/transport/middleware.py: request ID, logging, error handling."""
from __future__ import annotations

from fastapi import FastAPI
from fastapi.testclient import TestClient

from courier_dispatch.infra.metrics import get_metrics_collector
from courier_dispatch.transport.middleware import (
    ErrorHandlingMiddleware,
    RequestIDMiddleware,
    RequestLoggingMiddleware,
)


def _build_app(raise_for: set[str] | None = None, logging_enabled: bool = True):
    """Build a minimal FastAPI app with middleware for testing."""
    app = FastAPI()
    # Order matters: ErrorHandling wraps RequestID
    app.add_middleware(ErrorHandlingMiddleware)
    app.add_middleware(RequestLoggingMiddleware, enabled=logging_enabled)
    app.add_middleware(RequestIDMiddleware)

    raise_for = raise_for or set()

    @app.get("/test")
    def test_endpoint():
        if "/test" in raise_for:
            raise RuntimeError("boom")
        return {"ok": True}

    return app


# ============================================================================
# RequestIDMiddleware
# ============================================================================

class TestRequestIDMiddleware:
    def test_generates_request_id(self):
        client = TestClient(_build_app())
        resp = client.get("/test")
        assert resp.status_code == 200
        assert len(resp.headers["X-Request-ID"]) == 36

    def test_preserves_existing_request_id(self):
        client = TestClient(_build_app())
        resp = client.get("/test", headers={"X-Request-ID": "courier-req-7"})
        assert resp.headers["X-Request-ID"] == "courier-req-7"


# ============================================================================
# RequestLoggingMiddleware
# ============================================================================

class TestRequestLoggingMiddleware:
    def test_counts_requests_by_status(self):
        client = TestClient(_build_app())
        client.get("/test")
        client.get("/test")

        metrics = get_metrics_collector()
        assert metrics.get_metrics()["counters"]["http_requests_total{method=GET,status=200}"] == 2
        assert metrics.get_metrics()["histograms"]["http_request_duration_seconds"]["count"] == 2

    def test_disabled_records_nothing(self):
        client = TestClient(_build_app(logging_enabled=False))
        client.get("/test")

        assert get_metrics_collector().get_metrics()["counters"] == {}


# ============================================================================
# ErrorHandlingMiddleware
# ============================================================================

class TestErrorHandlingMiddleware:
    def test_normal_request_passes_through(self):
        client = TestClient(_build_app(), raise_server_exceptions=False)
        resp = client.get("/test")
        assert resp.status_code == 200
        assert resp.json() == {"ok": True}

    def test_unhandled_error_returns_500(self):
        client = TestClient(_build_app(raise_for={"/test"}), raise_server_exceptions=False)
        resp = client.get("/test", headers={"X-Request-ID": "req-500"})

        assert resp.status_code == 500
        assert resp.json() == {
            "error": "Internal server error",
            "code": "internal_error",
            "request_id": "req-500",
        }
