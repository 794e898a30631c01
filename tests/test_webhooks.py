# tests/test_webhooks.py
"""
Tests for the outbound collaborators: earnings service and delivery
notifiers (webhook + audit-log variants). HTTP is mocked.
"""
from __future__ import annotations

import logging
from datetime import datetime, timezone
from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock

import aiohttp
import pytest

from courier_dispatch.core.errors import EarningsUnavailableError
from courier_dispatch.core.ports import DeliveryNotification, EarningsEvent
from courier_dispatch.infra.metrics import get_metrics_collector
from courier_dispatch.infra.webhooks import (
    AuditLedgerEarningsService,
    AuditLogNotifier,
    WebhookDeliveryNotifier,
    WebhookEarningsService,
    get_delivery_notifier,
    get_earnings_service,
)

EVENT = EarningsEvent(
    delivery_id="delivery_1",
    order_id="order_1",
    courier_id="courier_1",
    fee_cents=650,
    delivered_at=datetime(2024, 1, 1, 12, 0, tzinfo=timezone.utc),
)

NOTIFICATION = DeliveryNotification(
    recipient_role="buyer",
    recipient_id="buyer_1",
    delivery_id="delivery_1",
    status="PICKED_UP",
    title="Order picked up",
    body="Your order #order_1 has been picked up and is on its way to you!",
)


def _make_mock_response(status=200, text=""):
    resp = AsyncMock()
    resp.status = status
    resp.text = AsyncMock(return_value=text)
    return resp


def _make_mock_session(response=None, error: Exception | None = None):
    """Create a mock session whose .post() returns the response (or raises)."""
    session = MagicMock()
    if error is not None:
        session.post = MagicMock(side_effect=error)
        return session

    ctx = AsyncMock()
    ctx.__aenter__ = AsyncMock(return_value=response)
    ctx.__aexit__ = AsyncMock(return_value=False)
    session.post = MagicMock(return_value=ctx)
    return session


# ============================================================================
# Earnings
# ============================================================================

class TestWebhookEarningsService:

    @pytest.mark.asyncio
    async def test_posts_event(self):
        session = _make_mock_session(_make_mock_response(201))
        service = WebhookEarningsService("https://payouts.test/deliveries", session_factory=lambda: session)

        await service.record_delivery(EVENT)

        url = session.post.call_args[0][0]
        kwargs = session.post.call_args.kwargs
        assert url == "https://payouts.test/deliveries"
        assert kwargs["json"] == {
            "delivery_id": "delivery_1",
            "order_id": "order_1",
            "courier_id": "courier_1",
            "fee_cents": 650,
            "delivered_at": "2024-01-01T12:00:00+00:00",
        }
        assert kwargs["headers"]["Idempotency-Key"] == "delivery-delivery_1"
        assert get_metrics_collector().get_metrics()["counters"]["earnings_recorded"] == 1

    @pytest.mark.asyncio
    async def test_http_error_raises(self):
        session = _make_mock_session(_make_mock_response(500, "boom"))
        service = WebhookEarningsService("https://payouts.test", session_factory=lambda: session)

        with pytest.raises(EarningsUnavailableError, match="HTTP 500"):
            await service.record_delivery(EVENT)
        assert get_metrics_collector().get_metrics()["counters"]["earnings_failed{reason=http_status}"] == 1

    @pytest.mark.asyncio
    async def test_timeout_raises(self):
        session = _make_mock_session(error=TimeoutError())
        service = WebhookEarningsService("https://payouts.test", session_factory=lambda: session)

        with pytest.raises(EarningsUnavailableError, match="timed out"):
            await service.record_delivery(EVENT)

    @pytest.mark.asyncio
    async def test_network_error_raises(self):
        session = _make_mock_session(error=aiohttp.ClientConnectionError("refused"))
        service = WebhookEarningsService("https://payouts.test", session_factory=lambda: session)

        with pytest.raises(EarningsUnavailableError, match="unreachable"):
            await service.record_delivery(EVENT)


class TestAuditLedgerEarningsService:

    @pytest.mark.asyncio
    async def test_writes_audit_record(self, caplog):
        with caplog.at_level(logging.INFO, logger="audit"):
            await AuditLedgerEarningsService().record_delivery(EVENT)

        records = [r for r in caplog.records if r.name == "audit"]
        assert len(records) == 1
        assert records[0].audit_action == "earnings.recorded"
        assert records[0].delivery_id == "delivery_1"
        assert "fee_cents=650" in records[0].getMessage()


# ============================================================================
# Notifiers
# ============================================================================

class TestWebhookDeliveryNotifier:

    @pytest.mark.asyncio
    async def test_success(self):
        session = _make_mock_session(_make_mock_response(202))
        notifier = WebhookDeliveryNotifier("https://push.test", session_factory=lambda: session)

        assert await notifier.send(NOTIFICATION) is True
        assert session.post.call_args.kwargs["json"]["recipient_role"] == "buyer"
        assert notifier.name == "webhook"

    @pytest.mark.asyncio
    async def test_http_error_returns_false(self):
        session = _make_mock_session(_make_mock_response(503))
        notifier = WebhookDeliveryNotifier("https://push.test", session_factory=lambda: session)

        assert await notifier.send(NOTIFICATION) is False

    @pytest.mark.asyncio
    async def test_network_error_returns_false(self):
        session = _make_mock_session(error=aiohttp.ClientConnectionError("refused"))
        notifier = WebhookDeliveryNotifier("https://push.test", session_factory=lambda: session)

        assert await notifier.send(NOTIFICATION) is False


class TestAuditLogNotifier:

    @pytest.mark.asyncio
    async def test_logs_and_succeeds(self, caplog):
        with caplog.at_level(logging.INFO, logger="audit"):
            assert await AuditLogNotifier().send(NOTIFICATION) is True

        assert any(r.audit_action == "notification.sent" for r in caplog.records if r.name == "audit")


# ============================================================================
# Factories
# ============================================================================

def _settings(**overrides):
    values = dict(
        earnings_webhook_url=None,
        notification_webhook_url=None,
        webhook_timeout_seconds=5.0,
    )
    values.update(overrides)
    return SimpleNamespace(**values)


class TestFactories:

    def test_audit_defaults(self):
        assert isinstance(get_earnings_service(_settings()), AuditLedgerEarningsService)
        assert isinstance(get_delivery_notifier(_settings()), AuditLogNotifier)

    def test_webhooks_when_configured(self):
        s = _settings(
            earnings_webhook_url="https://payouts.test",
            notification_webhook_url="https://push.test",
        )
        assert isinstance(get_earnings_service(s), WebhookEarningsService)
        assert isinstance(get_delivery_notifier(s), WebhookDeliveryNotifier)
