# courier_dispatch/infra/webhooks.py
"""
Outbound collaborators: earnings service and delivery notifications.

Each has two implementations:
- webhook - JSON POST to a configured URL via the shared aiohttp session
- audit   - records the event in the audit log (no URL configured)

Earnings failures raise ``EarningsUnavailableError`` so the delivery
transition rolls back.  Notification failures return ``False``; the
lifecycle manager logs and counts them.

Usage:
    earnings = get_earnings_service()
    notifier = get_delivery_notifier()
"""
from __future__ import annotations

import abc
from dataclasses import asdict

import aiohttp

from courier_dispatch.config import settings
from courier_dispatch.core.errors import EarningsUnavailableError
from courier_dispatch.core.ports import DeliveryNotification, EarningsEvent
from courier_dispatch.infra.audit_log import audit_event
from courier_dispatch.infra.http_client import get_webhook_session
from courier_dispatch.infra.logging_config import get_logger
from courier_dispatch.infra.metrics import inc_counter

logger = get_logger(__name__)


def _earnings_payload(event: EarningsEvent) -> dict:
    payload = asdict(event)
    payload["delivered_at"] = event.delivered_at.isoformat() if event.delivered_at else None
    return payload


class WebhookEarningsService:
    """POSTs each completed delivery to the earnings/payout service."""

    name = "webhook"

    def __init__(self, url: str, *, timeout_seconds: float = 5.0, session_factory=get_webhook_session):
        self._url = url
        self._timeout = timeout_seconds
        self._session_factory = session_factory

    async def record_delivery(self, event: EarningsEvent) -> None:
        try:
            session = self._session_factory()
            async with session.post(
                self._url,
                json=_earnings_payload(event),
                headers={"Idempotency-Key": f"delivery-{event.delivery_id}"},
                timeout=aiohttp.ClientTimeout(total=self._timeout),
            ) as resp:
                if resp.status >= 300:
                    body = (await resp.text())[:200]
                    logger.error(
                        f"Earnings service rejected delivery: status={resp.status} body={body}",
                        extra={"delivery_id": event.delivery_id, "courier_id": event.courier_id},
                    )
                    inc_counter("earnings_failed", reason="http_status")
                    raise EarningsUnavailableError(
                        f"Earnings service returned HTTP {resp.status}"
                    )

        except TimeoutError:
            inc_counter("earnings_failed", reason="timeout")
            raise EarningsUnavailableError("Earnings service timed out") from None

        except aiohttp.ClientError as exc:
            logger.error(
                f"Earnings service network error: {exc}",
                extra={"delivery_id": event.delivery_id, "courier_id": event.courier_id},
            )
            inc_counter("earnings_failed", reason="network")
            raise EarningsUnavailableError("Earnings service unreachable") from exc

        inc_counter("earnings_recorded")
        logger.info(
            f"Earnings recorded: fee_cents={event.fee_cents}",
            extra={"delivery_id": event.delivery_id, "courier_id": event.courier_id},
        )


class AuditLedgerEarningsService:
    """Records earnings in the audit log when no earnings service is configured."""

    name = "audit"

    async def record_delivery(self, event: EarningsEvent) -> None:
        audit_event(
            "earnings.recorded",
            courier_id=event.courier_id,
            delivery_id=event.delivery_id,
            detail=f"fee_cents={event.fee_cents}",
            extra={"order_id": event.order_id},
        )
        inc_counter("earnings_recorded")


class DeliveryNotifier(abc.ABC):
    """Base class for delivery notifiers"""

    @property
    @abc.abstractmethod
    def name(self) -> str:
        """Notifier name for logging/metrics"""

    @abc.abstractmethod
    async def send(self, notification: DeliveryNotification) -> bool:
        """
        Deliver one notification.

        Returns:
            True if sent successfully, False otherwise
        """


class WebhookDeliveryNotifier(DeliveryNotifier):

    def __init__(self, url: str, *, timeout_seconds: float = 5.0, session_factory=get_webhook_session):
        self._url = url
        self._timeout = timeout_seconds
        self._session_factory = session_factory

    @property
    def name(self) -> str:
        return "webhook"

    async def send(self, notification: DeliveryNotification) -> bool:
        try:
            session = self._session_factory()
            async with session.post(
                self._url,
                json=asdict(notification),
                timeout=aiohttp.ClientTimeout(total=self._timeout),
            ) as resp:
                if resp.status >= 300:
                    logger.warning(
                        f"Notification webhook error: status={resp.status}, role={notification.recipient_role}",
                        extra={"delivery_id": notification.delivery_id},
                    )
                    return False

        except (TimeoutError, aiohttp.ClientError) as exc:
            logger.warning(
                f"Notification webhook failed: {type(exc).__name__}, role={notification.recipient_role}",
                extra={"delivery_id": notification.delivery_id},
            )
            return False

        inc_counter("delivery_notifications_sent", role=notification.recipient_role)
        return True


class AuditLogNotifier(DeliveryNotifier):
    """Writes notifications to the audit log when no webhook is configured."""

    @property
    def name(self) -> str:
        return "audit"

    async def send(self, notification: DeliveryNotification) -> bool:
        audit_event(
            "notification.sent",
            delivery_id=notification.delivery_id,
            detail=f"role={notification.recipient_role} title={notification.title}",
            extra={"recipient_id": notification.recipient_id, "status": notification.status},
        )
        return True


def get_earnings_service(s=None):
    s = s or settings
    if s.earnings_webhook_url:
        return WebhookEarningsService(
            s.earnings_webhook_url, timeout_seconds=s.webhook_timeout_seconds,
        )
    return AuditLedgerEarningsService()


def get_delivery_notifier(s=None) -> DeliveryNotifier:
    s = s or settings
    if s.notification_webhook_url:
        return WebhookDeliveryNotifier(
            s.notification_webhook_url, timeout_seconds=s.webhook_timeout_seconds,
        )
    return AuditLogNotifier()
