from datetime import datetime, timezone
from decimal import Decimal
from typing import Optional

import structlog

from reconciliation import notifications
from reconciliation.errors import ValidationError
from reconciliation.models import (
    AdjustmentPage,
    AdjustmentStatus,
    AdjustmentType,
    AdjustmentView,
    PayoutAdjustment,
)
from reconciliation.money import ZERO, to_money
from reconciliation.store import DataStore, new_id

logger = structlog.get_logger(__name__)


def record_adjustment(
    order_id: str,
    adjustment_type: AdjustmentType,
    reason: str,
    store: DataStore,
    *,
    amount: Optional[Decimal] = None,
    now: Optional[datetime] = None,
) -> PayoutAdjustment:
    """
    Queue a correction for an order whose payout invoice is already finalized.

    The original invoice keeps its numbers; the negative amount is folded into
    the organization's next invoice. CANCELLATION takes back everything the
    order contributed, REFUND takes back the caller-supplied ``amount``.
    """
    now = now or datetime.now(timezone.utc)
    if adjustment_type == AdjustmentType.CARRY_OVER:
        raise ValidationError("Carry-over adjustments are created by invoice generation only")
    if not reason or not reason.strip():
        raise ValidationError("An adjustment needs a reason")

    with store.lock_for(f"order:{order_id}"), store.unit_of_work():
        order = store.require_order(order_id)
        if order.payout_invoice_id is None:
            raise ValidationError(
                f"Order {order.display_number} is not on a payout invoice yet; nothing to adjust"
            )
        invoice = store.require_invoice(order.payout_invoice_id)
        line = invoice.line_for(order.id)
        contribution = line.invoiced_amount if line else to_money(order.total_amount or ZERO)

        if adjustment_type == AdjustmentType.CANCELLATION:
            magnitude = contribution
        else:
            if amount is None:
                raise ValidationError("A refund adjustment needs an amount")
            magnitude = to_money(abs(Decimal(amount)))
            if magnitude == ZERO:
                raise ValidationError("Refund amount must be greater than zero")
        if magnitude > contribution:
            raise ValidationError(
                f"Adjustment of {magnitude} exceeds the {contribution} order "
                f"{order.display_number} contributed to invoice {invoice.invoice_number}"
            )

        adjustment = PayoutAdjustment(
            id=new_id("adj"),
            organization_id=order.organization_id,
            order_id=order.id,
            original_invoice_id=invoice.id,
            type=adjustment_type,
            amount=-magnitude,
            reason=reason.strip(),
            created_at=now,
        )
        # raises ConflictError when the order was already corrected
        store.add_adjustment(adjustment)
        notifications.notify(
            store,
            notifications.ADJUSTMENT_CREATED,
            adjustment.id,
            f"{adjustment_type.value.title()} of {magnitude} on order {order.display_number} "
            f"will be deducted from the next payout",
            now,
            organization_id=order.organization_id,
            order_id=order.id,
            original_invoice_id=invoice.id,
        )

    logger.info(
        "adjustment_recorded",
        adjustment_id=adjustment.id,
        order_id=order.id,
        type=adjustment_type.value,
        amount=str(adjustment.amount),
        original_invoice_id=invoice.id,
    )
    return adjustment


def list_adjustments(
    organization_id: str,
    store: DataStore,
    status: Optional[AdjustmentStatus] = None,
    limit: int = 100,
) -> AdjustmentPage:
    store.require_organization(organization_id)
    adjustments = sorted(
        store.get_adjustments_for_organization(organization_id, status),
        key=lambda a: a.created_at,
        reverse=True,
    )

    views = []
    for adjustment in adjustments[:limit]:
        order = store.get_order(adjustment.order_id) if adjustment.order_id else None
        original = store.get_invoice(adjustment.original_invoice_id)
        applied = store.get_invoice(adjustment.adjustment_invoice_id) if adjustment.adjustment_invoice_id else None
        views.append(AdjustmentView(
            adjustment=adjustment,
            order_number=order.display_number if order else None,
            original_invoice_number=original.invoice_number if original else None,
            applied_invoice_number=applied.invoice_number if applied else None,
        ))

    return AdjustmentPage(
        adjustments=views,
        total=len(adjustments),
        limit=limit,
        has_more=len(adjustments) > limit,
    )
