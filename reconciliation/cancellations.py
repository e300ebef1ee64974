"""
Order ledger events: a paid order is cancelled or (partially) refunded.

The customer always gets a refund voucher. If the seller has already been
invoiced for the order, the money is clawed back through a payout adjustment;
otherwise the order is patched so the refunded part never reaches an invoice.
"""

from datetime import datetime, timezone
from decimal import Decimal
from typing import Optional

import structlog

from reconciliation.adjustments import record_adjustment
from reconciliation.errors import ValidationError
from reconciliation.models import (
    AdjustmentType,
    CancellationInitiator,
    CancellationOutcome,
    Order,
    PaymentStatus,
)
from reconciliation.money import ZERO, to_money
from reconciliation.store import DataStore
from reconciliation.vouchers import issue_refund_voucher

logger = structlog.get_logger(__name__)


def _refundable(order: Order, store: DataStore) -> Decimal:
    if order.payout_invoice_id is not None:
        invoice = store.require_invoice(order.payout_invoice_id)
        line = invoice.line_for(order.id)
        if line is not None:
            return line.invoiced_amount
    return to_money((order.total_amount or ZERO) - order.refunded_amount)


def cancel_order(
    order_id: str,
    initiator: CancellationInitiator,
    store: DataStore,
    *,
    reason: str,
    refund_type: AdjustmentType = AdjustmentType.CANCELLATION,
    amount: Optional[Decimal] = None,
    now: Optional[datetime] = None,
) -> CancellationOutcome:
    now = now or datetime.now(timezone.utc)
    if refund_type == AdjustmentType.CARRY_OVER:
        raise ValidationError("Orders are cancelled or refunded, not carried over")

    with store.lock_for(f"order:{order_id}"), store.unit_of_work():
        order = store.require_order(order_id)

        existing = store.find_voucher_for_order(order.id)
        if existing is not None:
            logger.info("cancellation_already_processed", order_id=order.id, voucher_id=existing.id)
            return CancellationOutcome(
                order_id=order.id,
                voucher=existing,
                adjustment=store.find_adjustment_for_order(order.id),
            )

        if order.payment_status != PaymentStatus.PAID:
            raise ValidationError(
                f"Only paid orders can be refunded; order {order.display_number} is "
                f"{order.payment_status.value}"
            )

        refundable = _refundable(order, store)
        if refund_type == AdjustmentType.CANCELLATION:
            refund = refundable
        else:
            if amount is None:
                raise ValidationError("A refund needs an amount")
            refund = to_money(amount)
            if refund <= ZERO or refund > refundable:
                raise ValidationError(
                    f"Refund amount must be between 0 and {refundable} for order {order.display_number}"
                )

        voucher = issue_refund_voucher(order, refund, initiator, store, now=now)

        adjustment = None
        if order.payout_invoice_id is not None:
            adjustment = record_adjustment(
                order.id, refund_type, reason, store, amount=refund, now=now,
            )

        refunded = to_money(order.refunded_amount + refund)
        fully_refunded = refund_type == AdjustmentType.CANCELLATION or refunded >= (order.total_amount or ZERO)
        store.save_order(order.model_copy(update={
            "refunded_amount": refunded,
            "payment_status": PaymentStatus.REFUNDED if fully_refunded else order.payment_status,
            "cancellation_initiator": initiator,
        }))

    logger.info(
        "order_cancellation_processed",
        order_id=order.id,
        initiator=initiator.value,
        refund_type=refund_type.value,
        amount=str(refund),
        voucher_id=voucher.id,
        adjustment_id=adjustment.id if adjustment else None,
    )
    return CancellationOutcome(order_id=order.id, voucher=voucher, adjustment=adjustment)
