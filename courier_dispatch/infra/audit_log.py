# courier_dispatch/infra/audit_log.py
"""
Audit logging for dispatch state changes.

Lifecycle transitions, online toggles, earnings records and notification
fallbacks go to a dedicated logger named "audit" (separate from the
application log) so they can be routed to their own sink via logging
configuration.
"""
from __future__ import annotations

import logging
from typing import Any

_audit_logger = logging.getLogger("audit")


def audit_event(
    action: str,
    *,
    courier_id: str | None = None,
    delivery_id: str | None = None,
    detail: str = "",
    extra: dict[str, Any] | None = None,
) -> None:
    """
    Record an audit event.

    Args:
        action: Action name (e.g., "delivery.accepted", "courier.online")
        courier_id: Courier affected (if applicable)
        delivery_id: Delivery affected (if applicable)
        detail: Human-readable detail
        extra: Additional structured context
    """
    record = {
        "audit_action": action,
        "courier_id": courier_id or "",
        "delivery_id": delivery_id or "",
        "detail": detail,
    }
    if extra:
        record.update(extra)

    _audit_logger.info(
        f"AUDIT: {action} courier={courier_id or '-'} delivery={delivery_id or '-'} {detail}",
        extra=record,
    )
