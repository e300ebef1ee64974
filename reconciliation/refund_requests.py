"""
Voucher refund review workflow.

A customer asks to turn an eligible refund voucher into cash; an admin
approves or rejects. PENDING -> APPROVED | REJECTED, both terminal.
"""

from datetime import datetime, timezone
from decimal import Decimal
from typing import Optional

import structlog

from reconciliation import notifications
from reconciliation.eligibility import check_monetary_refund_eligibility
from reconciliation.errors import (
    ConflictError,
    IneligibleError,
    NotFoundError,
    PermissionDeniedError,
    ValidationError,
)
from reconciliation.models import (
    CustomerSnapshot,
    DiscountType,
    RefundRequestStatus,
    ReviewerSnapshot,
    SourceOrderSnapshot,
    VoucherRefundRequest,
    VoucherSnapshot,
)
from reconciliation.money import ZERO, to_money
from reconciliation.store import DataStore, new_id

logger = structlog.get_logger(__name__)

MESSAGE_MIN_LENGTH = 10
MESSAGE_MAX_LENGTH = 1000


def _clean_message(message: Optional[str], required: bool) -> Optional[str]:
    if message is None or not message.strip():
        if required:
            raise ValidationError("Admin message is required")
        return None
    message = message.strip()
    if not MESSAGE_MIN_LENGTH <= len(message) <= MESSAGE_MAX_LENGTH:
        raise ValidationError(
            f"Admin message must be between {MESSAGE_MIN_LENGTH} and {MESSAGE_MAX_LENGTH} characters"
        )
    return message


def _reviewer_snapshot(store: DataStore, reviewer_id: str) -> ReviewerSnapshot:
    reviewer = store.get_customer(reviewer_id)
    if reviewer is None or not reviewer.is_admin:
        raise PermissionDeniedError("Permission denied. Only admins can review voucher refund requests")
    return ReviewerSnapshot(
        first_name=reviewer.first_name,
        last_name=reviewer.last_name,
        email=reviewer.email,
    )


def create_refund_request(
    voucher_id: str,
    requested_by_id: str,
    store: DataStore,
    *,
    requested_amount: Optional[Decimal] = None,
    now: Optional[datetime] = None,
) -> VoucherRefundRequest:
    now = now or datetime.now(timezone.utc)

    with store.lock_for(f"voucher:{voucher_id}"), store.unit_of_work():
        voucher = store.require_voucher(voucher_id)
        if voucher.assigned_to_user_id != requested_by_id:
            raise PermissionDeniedError("You can only request refunds for your own vouchers")
        if voucher.discount_type != DiscountType.REFUND:
            raise IneligibleError("Only refund vouchers are eligible for monetary refund requests")
        if store.find_request_for_voucher(voucher.id, RefundRequestStatus.APPROVED) is not None:
            raise ConflictError("A monetary refund has already been approved for this voucher")

        eligibility = check_monetary_refund_eligibility(voucher, now)
        if not eligibility.is_eligible:
            raise IneligibleError(
                eligibility.reason or "This voucher is not eligible for monetary refund",
                days_remaining=eligibility.days_remaining,
            )

        if store.find_request_for_voucher(voucher.id) is not None:
            raise ConflictError("A pending monetary refund request already exists for this voucher")

        amount = to_money(requested_amount if requested_amount is not None else voucher.discount_value)
        if amount <= ZERO:
            raise ValidationError("Requested amount must be greater than zero")
        if amount > voucher.discount_value:
            raise ValidationError(
                f"Requested amount {amount} exceeds the voucher value {voucher.discount_value}"
            )

        customer = store.get_customer(requested_by_id)
        if customer is None:
            raise NotFoundError("Customer", requested_by_id)

        source_order_info = None
        if voucher.source_order_id:
            order = store.get_order(voucher.source_order_id)
            if order is not None:
                source_order_info = SourceOrderSnapshot(
                    order_id=order.id,
                    order_number=order.order_number,
                    total_amount=order.total_amount,
                )

        request = VoucherRefundRequest(
            id=new_id("vrr"),
            voucher_id=voucher.id,
            requested_by_id=requested_by_id,
            requested_amount=amount,
            voucher_info=VoucherSnapshot(
                code=voucher.code,
                name=voucher.name,
                discount_value=voucher.discount_value,
                cancellation_initiator=voucher.cancellation_initiator,
                created_at=voucher.created_at,
                monetary_refund_eligible_at=voucher.monetary_refund_eligible_at,
            ),
            customer_info=CustomerSnapshot(
                first_name=customer.first_name,
                last_name=customer.last_name,
                email=customer.email,
                phone=customer.phone or "",
            ),
            source_order_info=source_order_info,
            created_at=now,
            updated_at=now,
        )
        store.save_refund_request(request)
        store.save_voucher(voucher.model_copy(update={"monetary_refund_requested_at": now}))
        notifications.notify(
            store,
            notifications.REFUND_REQUEST_CREATED,
            request.id,
            f"Monetary refund of {amount} requested for voucher {voucher.code}",
            now,
            voucher_id=voucher.id,
            requested_by_id=requested_by_id,
        )

    logger.info(
        "refund_request_created",
        request_id=request.id,
        voucher_id=voucher.id,
        amount=str(amount),
    )
    return request


def approve_refund_request(
    request_id: str,
    reviewer_id: str,
    store: DataStore,
    *,
    message: Optional[str] = None,
    now: Optional[datetime] = None,
) -> VoucherRefundRequest:
    """
    Approve a pending request. The cash payout itself happens elsewhere; here
    the voucher is retired so it can neither be redeemed nor requested again.
    """
    now = now or datetime.now(timezone.utc)

    with store.unit_of_work():
        reviewer_info = _reviewer_snapshot(store, reviewer_id)
        request = store.require_refund_request(request_id)
        if request.is_terminal:
            raise ConflictError(f"Voucher refund request is already {request.status.value.lower()}")
        message = _clean_message(message, required=False)

        voucher = store.require_voucher(request.voucher_id)
        if voucher.used_count > 0:
            raise IneligibleError("Cannot approve a monetary refund for a voucher that has already been used")

        approved = store.compare_and_set_request_status(
            request_id,
            RefundRequestStatus.PENDING,
            request.model_copy(update={
                "status": RefundRequestStatus.APPROVED,
                "admin_message": message,
                "reviewed_by_id": reviewer_id,
                "reviewed_at": now,
                "reviewer_info": reviewer_info,
                "updated_at": now,
            }),
        )
        store.save_voucher(voucher.model_copy(update={
            "is_active": False,
            "used_count": max(voucher.usage_limit or 1, voucher.used_count + 1),
        }))
        notifications.notify(
            store,
            notifications.REFUND_REQUEST_APPROVED,
            request_id,
            f"Monetary refund of {request.requested_amount} approved for voucher {voucher.code}",
            now,
            voucher_id=voucher.id,
            requested_by_id=request.requested_by_id,
            amount=str(request.requested_amount),
        )

    logger.info("refund_request_resolved", request_id=request_id, status="APPROVED", reviewer_id=reviewer_id)
    return approved


def reject_refund_request(
    request_id: str,
    reviewer_id: str,
    message: str,
    store: DataStore,
    *,
    now: Optional[datetime] = None,
) -> VoucherRefundRequest:
    """Reject a pending request; the voucher stays usable as platform credit."""
    now = now or datetime.now(timezone.utc)

    with store.unit_of_work():
        reviewer_info = _reviewer_snapshot(store, reviewer_id)
        request = store.require_refund_request(request_id)
        if request.is_terminal:
            raise ConflictError(f"Voucher refund request is already {request.status.value.lower()}")
        message = _clean_message(message, required=True)

        rejected = store.compare_and_set_request_status(
            request_id,
            RefundRequestStatus.PENDING,
            request.model_copy(update={
                "status": RefundRequestStatus.REJECTED,
                "admin_message": message,
                "reviewed_by_id": reviewer_id,
                "reviewed_at": now,
                "reviewer_info": reviewer_info,
                "updated_at": now,
            }),
        )
        voucher = store.get_voucher(request.voucher_id)
        if voucher is not None:
            store.save_voucher(voucher.model_copy(update={"monetary_refund_requested_at": None}))
        notifications.notify(
            store,
            notifications.REFUND_REQUEST_REJECTED,
            request_id,
            f"Monetary refund request for voucher {request.voucher_info.code} rejected",
            now,
            voucher_id=request.voucher_id,
            requested_by_id=request.requested_by_id,
            admin_message=message,
        )

    logger.info("refund_request_resolved", request_id=request_id, status="REJECTED", reviewer_id=reviewer_id)
    return rejected


def list_refund_requests(
    store: DataStore,
    status: Optional[RefundRequestStatus] = None,
    requested_by_id: Optional[str] = None,
) -> list[VoucherRefundRequest]:
    requests = [
        r for r in store.list_refund_requests()
        if (status is None or r.status == status)
        and (requested_by_id is None or r.requested_by_id == requested_by_id)
    ]
    return sorted(requests, key=lambda r: r.created_at, reverse=True)
