# tests/test_security.py
"""Tests for courier_dispatch/transport/security.py: admin auth and headers."""
from __future__ import annotations

import logging
from unittest.mock import MagicMock, patch

import pytest
from fastapi import HTTPException
from fastapi.security import HTTPAuthorizationCredentials
from starlette.responses import Response


def _make_mock_settings(**overrides):
    """Return a MagicMock that behaves like courier_dispatch.config.settings."""
    defaults = {
        "admin_token": "aB3cD5eF7gH9iJ1kL3mN5oP7qR9sT1uX",
        "is_production": False,
        "is_staging": False,
    }
    defaults.update(overrides)
    mock = MagicMock()
    for k, v in defaults.items():
        setattr(mock, k, v)
    return mock


def _bearer(token: str) -> HTTPAuthorizationCredentials:
    return HTTPAuthorizationCredentials(scheme="Bearer", credentials=token)


# ============================================================================
# Token validation
# ============================================================================

class TestTokenValidation:
    def test_strong_token_no_warnings(self):
        from courier_dispatch.transport.security import validate_token_strength
        assert validate_token_strength("aB3cD5eF7gH9iJ1kL3mN5oP7qR9sT1uX", "ADMIN_TOKEN") == []

    def test_short_token_warning(self):
        from courier_dispatch.transport.security import validate_token_strength
        warnings = validate_token_strength("shortAa1", "ADMIN_TOKEN")
        assert any("too short" in w for w in warnings)
        assert all(w.startswith("ADMIN_TOKEN") for w in warnings)

    def test_weak_pattern_warning(self):
        from courier_dispatch.transport.security import validate_token_strength
        warnings = validate_token_strength("Xy7" * 12 + "Password", "ADMIN_TOKEN")
        assert warnings == [
            "ADMIN_TOKEN contains weak pattern 'password'. Use a cryptographically random token"
        ]

    def test_startup_check_logs_weak_token(self, caplog):
        from courier_dispatch.transport import security
        with patch.object(security, "settings", _make_mock_settings(admin_token="admin")):
            with caplog.at_level(logging.WARNING):
                security.check_configured_tokens()
        assert any("SECURITY" in r.getMessage() for r in caplog.records)


# ============================================================================
# Admin token dependency
# ============================================================================

class TestRequireAdminToken:
    def test_valid_token(self):
        from courier_dispatch.transport import security
        mock = _make_mock_settings()
        with patch.object(security, "settings", mock):
            assert security.require_admin_token(_bearer(mock.admin_token)) is None

    def test_missing_header(self):
        from courier_dispatch.transport import security
        with patch.object(security, "settings", _make_mock_settings()):
            with pytest.raises(HTTPException) as exc_info:
                security.require_admin_token(None)
        assert exc_info.value.status_code == 401
        assert exc_info.value.detail == "Authentication required"
        assert exc_info.value.headers == {"WWW-Authenticate": "Bearer"}

    def test_wrong_token(self):
        from courier_dispatch.transport import security
        with patch.object(security, "settings", _make_mock_settings()):
            with pytest.raises(HTTPException) as exc_info:
                security.require_admin_token(_bearer("not-the-token"))
        assert exc_info.value.status_code == 401
        assert exc_info.value.detail == "Invalid credentials"

    def test_unconfigured_token_is_unavailable(self):
        from courier_dispatch.transport import security
        with patch.object(security, "settings", _make_mock_settings(admin_token=None)):
            with pytest.raises(HTTPException) as exc_info:
                security.require_admin_token(_bearer("anything"))
        assert exc_info.value.status_code == 503


# ============================================================================
# Security headers
# ============================================================================

class TestSecurityHeaders:
    def test_dev_headers(self):
        from courier_dispatch.transport import security
        with patch.object(security, "settings", _make_mock_settings()):
            resp = security.add_security_headers(Response())
        assert resp.headers["X-Frame-Options"] == "DENY"
        assert resp.headers["Cache-Control"] == "no-store"
        assert "Strict-Transport-Security" not in resp.headers

    def test_prod_adds_hsts(self):
        from courier_dispatch.transport import security
        with patch.object(security, "settings", _make_mock_settings(is_production=True)):
            resp = security.add_security_headers(Response())
        assert resp.headers["Strict-Transport-Security"].startswith("max-age=")

    def test_existing_cache_control_kept(self):
        from courier_dispatch.transport import security
        resp = Response(headers={"Cache-Control": "max-age=60"})
        with patch.object(security, "settings", _make_mock_settings()):
            security.add_security_headers(resp)
        assert resp.headers["Cache-Control"] == "max-age=60"
