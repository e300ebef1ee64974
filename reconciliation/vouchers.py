import secrets
import string
from datetime import datetime, timezone
from decimal import Decimal
from typing import Optional

import structlog

from reconciliation.eligibility import derive_status, monetary_refund_eligible_at
from reconciliation.errors import ReconciliationError, ValidationError
from reconciliation.models import (
    CancellationInitiator,
    DiscountType,
    Order,
    Voucher,
    VoucherView,
)
from reconciliation.money import ZERO, to_money
from reconciliation.store import DataStore, new_id

logger = structlog.get_logger(__name__)

_CODE_ALPHABET = string.ascii_uppercase + string.digits
_CODE_ATTEMPTS = 10


def _refund_code() -> str:
    return "REFUND-" + "".join(secrets.choice(_CODE_ALPHABET) for _ in range(6))


def _unique_code(store: DataStore) -> str:
    for _ in range(_CODE_ATTEMPTS):
        code = _refund_code()
        if store.find_voucher_by_code(code) is None:
            return code
    raise ReconciliationError("Failed to generate a unique voucher code")


def issue_refund_voucher(
    order: Order,
    amount: Decimal,
    initiator: CancellationInitiator,
    store: DataStore,
    *,
    wait_days: Optional[int] = None,
    now: Optional[datetime] = None,
) -> Voucher:
    """
    Issue the single-use platform credit that replaces a cash refund.

    One voucher per order: if the order already produced one it is returned
    unchanged. Seller-initiated vouchers become convertible to cash after
    ``wait_days``; customer-initiated ones never do.
    """
    now = now or datetime.now(timezone.utc)
    amount = to_money(amount)
    if amount <= ZERO:
        raise ValidationError("Refund voucher amount must be greater than zero")
    if wait_days is None:
        wait_days = store.payout_settings.monetary_refund_wait_days

    with store.lock_for(f"order:{order.id}"), store.unit_of_work():
        existing = store.find_voucher_for_order(order.id)
        if existing is not None:
            logger.info("voucher_issue_skipped", order_id=order.id, voucher_id=existing.id)
            return existing

        voucher = Voucher(
            id=new_id("vch"),
            code=_unique_code(store),
            name=f"Refund Voucher - Order {order.display_number}",
            description="Refund voucher issued for cancelled order",
            discount_type=DiscountType.REFUND,
            discount_value=amount,
            assigned_to_user_id=order.customer_id,
            cancellation_initiator=initiator,
            source_order_id=order.id,
            monetary_refund_eligible_at=monetary_refund_eligible_at(initiator, now, wait_days),
            usage_limit=1,
            valid_from=now,
            valid_until=None,
            created_at=now,
        )
        store.save_voucher(voucher)

    logger.info(
        "voucher_issued",
        voucher_id=voucher.id,
        code=voucher.code,
        order_id=order.id,
        amount=str(amount),
        initiator=initiator.value,
        eligible_at=voucher.monetary_refund_eligible_at.isoformat() if voucher.monetary_refund_eligible_at else None,
    )
    return voucher


def view_voucher(voucher: Voucher, now: datetime) -> VoucherView:
    return VoucherView(voucher=voucher, status=derive_status(voucher, now))


def list_user_vouchers(
    user_id: str,
    store: DataStore,
    *,
    now: Optional[datetime] = None,
    include_used: bool = False,
) -> list[VoucherView]:
    now = now or datetime.now(timezone.utc)
    vouchers = [
        v for v in store.get_vouchers_for_user(user_id)
        if include_used or v.used_count == 0
    ]
    vouchers.sort(key=lambda v: v.created_at, reverse=True)
    return [view_voucher(v, now) for v in vouchers]
