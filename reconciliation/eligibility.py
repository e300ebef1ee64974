"""
Voucher status derivation.

Everything here is a pure function of the stored voucher and ``now``; nothing
is written back. Read paths call ``derive_status`` every time.
"""

import math
from datetime import datetime, timedelta
from typing import Optional

from reconciliation.models import (
    CancellationInitiator,
    EligibilityResult,
    Voucher,
    VoucherComputedStatus,
    VoucherStatus,
)

_DAY_SECONDS = 24 * 60 * 60


def monetary_refund_eligible_at(
    initiator: Optional[CancellationInitiator],
    issued_at: datetime,
    wait_days: int,
) -> Optional[datetime]:
    """Only seller-caused cancellations ever become eligible for cash."""
    if initiator != CancellationInitiator.SELLER:
        return None
    return issued_at + timedelta(days=wait_days)


def _days_until(target: datetime, now: datetime) -> int:
    return math.ceil((target - now).total_seconds() / _DAY_SECONDS)


def derive_status(voucher: Voucher, now: datetime) -> VoucherStatus:
    is_expired = voucher.valid_until is not None and voucher.valid_until < now
    is_used = voucher.used_count > 0
    eligible_at = voucher.monetary_refund_eligible_at
    is_seller = voucher.cancellation_initiator == CancellationInitiator.SELLER

    is_eligible = is_seller and eligible_at is not None and now >= eligible_at and not is_used

    days_until_eligible = None
    if is_seller and eligible_at is not None and now < eligible_at and not is_used:
        days_until_eligible = _days_until(eligible_at, now)

    if not voucher.is_active:
        computed = VoucherComputedStatus.REFUNDED
    elif is_used:
        computed = VoucherComputedStatus.USED
    elif is_expired:
        computed = VoucherComputedStatus.EXPIRED
    elif now < voucher.valid_from:
        computed = VoucherComputedStatus.INACTIVE
    else:
        computed = VoucherComputedStatus.ACTIVE

    return VoucherStatus(
        computed_status=computed,
        is_expired=is_expired,
        is_used=is_used,
        is_monetary_refund_eligible=is_eligible,
        days_until_eligible=days_until_eligible,
    )


def check_monetary_refund_eligibility(voucher: Voucher, now: datetime) -> EligibilityResult:
    """Like ``derive_status`` but explains why a voucher is not eligible."""
    if voucher.cancellation_initiator != CancellationInitiator.SELLER:
        return EligibilityResult(
            is_eligible=False,
            reason="Monetary refunds are only available for seller-initiated cancellations",
        )
    if voucher.used_count > 0:
        return EligibilityResult(
            is_eligible=False,
            reason="This voucher has already been used and cannot be refunded",
        )
    if not voucher.is_active:
        return EligibilityResult(
            is_eligible=False,
            reason="This voucher has already been refunded",
        )

    status = derive_status(voucher, now)
    if status.is_monetary_refund_eligible:
        return EligibilityResult(is_eligible=True)

    days = status.days_until_eligible
    if days is None:
        return EligibilityResult(is_eligible=False, reason="This voucher has no monetary refund date")
    return EligibilityResult(
        is_eligible=False,
        days_remaining=days,
        reason=f"Monetary refund will be available in {days} day{'s' if days != 1 else ''}",
    )
