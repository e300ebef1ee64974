"""
Outbox of domain notifications.

Notifications are written to the store inside the caller's unit of work, so a
rolled-back operation never announces anything. Delivery (email, chat, …) is
left to whatever drains the outbox.
"""

from datetime import datetime
from typing import Any

import structlog

from reconciliation.models import Notification
from reconciliation.store import DataStore

logger = structlog.get_logger(__name__)

INVOICE_CREATED = "invoice_created"
INVOICE_PAID = "invoice_paid"
ADJUSTMENT_CREATED = "adjustment_created"
REFUND_REQUEST_CREATED = "refund_request_created"
REFUND_REQUEST_APPROVED = "refund_request_approved"
REFUND_REQUEST_REJECTED = "refund_request_rejected"


def notify(
    store: DataStore,
    kind: str,
    entity_id: str,
    summary: str,
    now: datetime,
    **payload: Any,
) -> Notification:
    notification = Notification(
        kind=kind,
        entity_id=entity_id,
        summary=summary,
        payload=payload,
        created_at=now,
    )
    store.add_notification(notification)
    logger.info("notification_queued", kind=kind, entity_id=entity_id, summary=summary)
    return notification
