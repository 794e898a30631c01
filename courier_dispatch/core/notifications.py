# courier_dispatch/core/notifications.py
"""
Role-dependent delivery notifications.

After a committed transition each party hears about it in its own terms:
on pickup the buyer learns the order is on its way, the seller that the
product was collected, and the courier to head for the delivery address.

Texts are plain strings keyed by language, status and role.  Parties
whose id is unknown on the delivery are skipped.
"""
from __future__ import annotations

from courier_dispatch.core.domain import DeliveryOrder, DeliveryStatus
from courier_dispatch.core.ports import DeliveryNotification

ROLES = ("buyer", "seller", "courier")


def build_notifications(delivery: DeliveryOrder, lang: str = "en") -> list[DeliveryNotification]:
    """Messages for every known party of ``delivery`` in its current status."""
    by_status = _MESSAGES.get(lang, _MESSAGES["en"]).get(delivery.status)
    if not by_status:
        return []

    recipients = {
        "buyer": delivery.buyer_id,
        "seller": delivery.seller_id,
        "courier": delivery.courier_id,
    }

    notifications: list[DeliveryNotification] = []
    for role in ROLES:
        recipient_id = recipients[role]
        template = by_status.get(role)
        if not recipient_id or template is None:
            continue
        title, body = template
        notifications.append(
            DeliveryNotification(
                recipient_role=role,
                recipient_id=recipient_id,
                delivery_id=delivery.id,
                status=delivery.status.value,
                title=title,
                body=body.format(order=delivery.order_id, reason=delivery.cancel_reason or "-"),
            )
        )
    return notifications


# ---------------------------------------------------------------------------
# Message catalogue: lang → status → role → (title, body)
# ---------------------------------------------------------------------------

_MESSAGES: dict[str, dict[DeliveryStatus, dict[str, tuple[str, str]]]] = {
    "en": {
        DeliveryStatus.ACCEPTED: {
            "buyer": ("Courier found", "A courier has accepted the delivery of order #{order}."),
            "seller": ("Courier on the way", "A courier will collect order #{order} from you soon."),
            "courier": ("Delivery accepted", "You accepted order #{order}. Go to the pickup address."),
        },
        DeliveryStatus.PICKED_UP: {
            "buyer": ("Order picked up", "Your order #{order} has been picked up and is on its way to you!"),
            "seller": ("Product collected", "Your product for order #{order} has been collected by the courier."),
            "courier": ("Product picked up", "Product picked up for order #{order}. Go to the delivery address now."),
        },
        DeliveryStatus.DELIVERED: {
            "buyer": ("Order delivered", "Your order #{order} has been delivered. Enjoy!"),
            "seller": ("Order delivered", "Order #{order} has been delivered to the buyer."),
            "courier": ("Delivery completed", "Order #{order} is delivered. Your earnings have been recorded."),
        },
        DeliveryStatus.CANCELLED: {
            "buyer": ("Delivery cancelled", "The delivery of order #{order} was cancelled ({reason})."),
            "seller": ("Delivery cancelled", "The delivery of order #{order} was cancelled ({reason})."),
            "courier": ("Delivery cancelled", "Order #{order} was cancelled ({reason}). No further action needed."),
        },
    },
    "nl": {
        DeliveryStatus.ACCEPTED: {
            "buyer": ("Bezorger gevonden", "Een bezorger heeft de bezorging van bestelling #{order} geaccepteerd."),
            "seller": ("Bezorger onderweg", "Een bezorger haalt bestelling #{order} binnenkort bij je op."),
            "courier": ("Opdracht geaccepteerd", "Je hebt bestelling #{order} geaccepteerd. Ga naar het ophaaladres."),
        },
        DeliveryStatus.PICKED_UP: {
            "buyer": ("Bestelling opgehaald", "Je bestelling #{order} is opgehaald en onderweg naar jou!"),
            "seller": ("Product opgehaald", "Je product voor bestelling #{order} is opgehaald door de bezorger."),
            "courier": ("Product opgehaald", "Product opgehaald voor bestelling #{order}. Ga nu naar het bezorgadres."),
        },
        DeliveryStatus.DELIVERED: {
            "buyer": ("Bestelling bezorgd", "Je bestelling #{order} is bezorgd. Eet smakelijk!"),
            "seller": ("Bestelling bezorgd", "Bestelling #{order} is bij de koper bezorgd."),
            "courier": ("Bezorging voltooid", "Bestelling #{order} is bezorgd. Je verdiensten zijn geregistreerd."),
        },
        DeliveryStatus.CANCELLED: {
            "buyer": ("Bezorging geannuleerd", "De bezorging van bestelling #{order} is geannuleerd ({reason})."),
            "seller": ("Bezorging geannuleerd", "De bezorging van bestelling #{order} is geannuleerd ({reason})."),
            "courier": ("Opdracht geannuleerd", "Bestelling #{order} is geannuleerd ({reason}). Je hoeft niets meer te doen."),
        },
    },
}
