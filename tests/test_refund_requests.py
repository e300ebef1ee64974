"""
Unit tests for the voucher refund review workflow.
"""

import threading
from decimal import Decimal

import pytest

from reconciliation.eligibility import derive_status
from reconciliation.errors import (
    ConflictError,
    IneligibleError,
    NotFoundError,
    PermissionDeniedError,
    ValidationError,
)
from reconciliation.models import (
    CancellationInitiator,
    DiscountType,
    RefundRequestStatus,
    VoucherComputedStatus,
)
from reconciliation.notifications import (
    REFUND_REQUEST_APPROVED,
    REFUND_REQUEST_CREATED,
    REFUND_REQUEST_REJECTED,
)
from reconciliation.refund_requests import (
    approve_refund_request,
    create_refund_request,
    list_refund_requests,
    reject_refund_request,
)
from tests.helpers import ADMIN, CUSTOMER, day, make_store, order, voucher

REJECTION = "Please use the voucher on your next purchase."


def store_with(v=None):
    store = make_store()
    store.save_order(order("O-1", 1000, day(-3)))
    store.save_voucher(v or voucher())
    return store


def pending_request(store, now=None):
    return create_refund_request("vch_test", CUSTOMER, store, now=now or day(15))


class TestCreate:
    def test_eligible_voucher(self):
        store = store_with()

        req = pending_request(store)

        assert req.status == RefundRequestStatus.PENDING
        assert req.requested_amount == Decimal("1000.00")
        assert req.voucher_info.code == "REFUND-TEST01"
        assert req.voucher_info.cancellation_initiator == CancellationInitiator.SELLER
        assert req.customer_info.first_name == "Maria"
        assert req.source_order_info.order_id == "O-1"
        assert store.get_voucher("vch_test").monetary_refund_requested_at == day(15)
        assert [n.kind for n in store.list_notifications()] == [REFUND_REQUEST_CREATED]

    def test_partial_amount(self):
        store = store_with()

        req = create_refund_request("vch_test", CUSTOMER, store, requested_amount=Decimal("400"), now=day(15))

        assert req.requested_amount == Decimal("400.00")

    def test_amount_above_voucher_value(self):
        store = store_with()
        with pytest.raises(ValidationError, match="exceeds the voucher value"):
            create_refund_request("vch_test", CUSTOMER, store, requested_amount=Decimal("1000.01"), now=day(15))

    def test_zero_amount(self):
        store = store_with()
        with pytest.raises(ValidationError, match="greater than zero"):
            create_refund_request("vch_test", CUSTOMER, store, requested_amount=Decimal("0"), now=day(15))

    def test_too_early(self):
        store = store_with()

        with pytest.raises(IneligibleError, match="available in 4 days") as exc_info:
            pending_request(store, now=day(10))

        assert exc_info.value.days_remaining == 4
        assert exc_info.value.to_dict()["days_remaining"] == 4
        assert store.refund_requests == {}

    def test_customer_initiated_voucher(self):
        store = store_with(voucher(initiator=CancellationInitiator.CUSTOMER))

        with pytest.raises(IneligibleError, match="seller-initiated"):
            pending_request(store, now=day(30))

    def test_used_voucher(self):
        store = store_with(voucher(used_count=1))

        with pytest.raises(IneligibleError, match="already been used"):
            pending_request(store)

    def test_non_refund_voucher(self):
        store = store_with(voucher().model_copy(update={"discount_type": DiscountType.FIXED_AMOUNT}))

        with pytest.raises(IneligibleError, match="Only refund vouchers"):
            pending_request(store)

    def test_someone_elses_voucher(self):
        store = store_with(voucher(assigned_to="U-2"))

        with pytest.raises(PermissionDeniedError):
            pending_request(store)

    def test_unknown_voucher(self):
        with pytest.raises(NotFoundError):
            create_refund_request("vch_missing", CUSTOMER, make_store(), now=day(15))

    def test_unknown_customer(self):
        store = make_store()
        store.save_voucher(voucher(assigned_to="U-999"))

        with pytest.raises(NotFoundError, match="Customer"):
            create_refund_request("vch_test", "U-999", store, now=day(15))

    def test_second_pending_request_conflicts(self):
        store = store_with()
        pending_request(store)

        with pytest.raises(ConflictError, match="pending"):
            pending_request(store, now=day(16))

        assert len(store.refund_requests) == 1

    def test_concurrent_requests_yield_one(self):
        store = store_with()
        outcomes = []

        def submit():
            try:
                outcomes.append(pending_request(store))
            except ConflictError as exc:
                outcomes.append(exc)

        threads = [threading.Thread(target=submit) for _ in range(8)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        created = [o for o in outcomes if not isinstance(o, Exception)]
        assert len(created) == 1
        assert len(store.refund_requests) == 1


class TestApprove:
    def test_approve_retires_voucher(self):
        store = store_with()
        req = pending_request(store)

        approved = approve_refund_request(req.id, ADMIN, store, now=day(16))

        assert approved.status == RefundRequestStatus.APPROVED
        assert approved.reviewed_by_id == ADMIN
        assert approved.reviewed_at == day(16)
        assert approved.reviewer_info.email == "ana.reyes@platform.example"
        assert approved.admin_message is None
        v = store.get_voucher("vch_test")
        assert not v.is_active
        assert v.used_count == 1
        status = derive_status(v, day(16))
        assert status.computed_status == VoucherComputedStatus.REFUNDED
        assert not status.is_monetary_refund_eligible
        assert store.list_notifications()[-1].kind == REFUND_REQUEST_APPROVED

    def test_approve_twice_conflicts(self):
        store = store_with()
        req = pending_request(store)
        approve_refund_request(req.id, ADMIN, store, now=day(16))

        with pytest.raises(ConflictError, match="already approved"):
            approve_refund_request(req.id, ADMIN, store, now=day(17))

    def test_new_request_after_approval_conflicts(self):
        store = store_with()
        req = pending_request(store)
        approve_refund_request(req.id, ADMIN, store, now=day(16))

        with pytest.raises(ConflictError, match="already been approved"):
            pending_request(store, now=day(17))

        assert len(store.refund_requests) == 1

    def test_customer_cannot_approve_own_request(self):
        store = store_with()
        req = pending_request(store)

        with pytest.raises(PermissionDeniedError, match="Only admins"):
            approve_refund_request(req.id, CUSTOMER, store, now=day(16))

        assert store.get_refund_request(req.id).status == RefundRequestStatus.PENDING
        assert store.get_voucher("vch_test").is_active

    def test_unknown_reviewer_denied(self):
        store = store_with()
        req = pending_request(store)

        with pytest.raises(PermissionDeniedError):
            approve_refund_request(req.id, "ADMIN-404", store, now=day(16))

        assert store.get_refund_request(req.id).reviewer_info is None

    def test_voucher_used_meanwhile(self):
        store = store_with()
        req = pending_request(store)
        store.save_voucher(store.get_voucher("vch_test").model_copy(update={"used_count": 1}))

        with pytest.raises(IneligibleError, match="already been used"):
            approve_refund_request(req.id, ADMIN, store, now=day(16))

        assert store.get_refund_request(req.id).status == RefundRequestStatus.PENDING

    def test_short_message_rejected(self):
        store = store_with()
        req = pending_request(store)

        with pytest.raises(ValidationError, match="between 10 and 1000"):
            approve_refund_request(req.id, ADMIN, store, message="ok", now=day(16))

    def test_unknown_request(self):
        with pytest.raises(NotFoundError):
            approve_refund_request("vrr_missing", ADMIN, make_store())

    def test_approve_and_reject_race(self):
        store = store_with()
        req = pending_request(store)
        results = []
        barrier = threading.Barrier(2)

        def approve():
            barrier.wait()
            try:
                results.append(approve_refund_request(req.id, ADMIN, store, now=day(16)).status)
            except ConflictError:
                results.append("conflict")

        def reject():
            barrier.wait()
            try:
                results.append(reject_refund_request(req.id, ADMIN, REJECTION, store, now=day(16)).status)
            except ConflictError:
                results.append("conflict")

        threads = [threading.Thread(target=approve), threading.Thread(target=reject)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert results.count("conflict") == 1
        final = store.get_refund_request(req.id).status
        assert final in (RefundRequestStatus.APPROVED, RefundRequestStatus.REJECTED)
        assert final in results


class TestReject:
    def test_reject_keeps_voucher_usable(self):
        store = store_with()
        req = pending_request(store)

        rejected = reject_refund_request(req.id, ADMIN, REJECTION, store, now=day(16))

        assert rejected.status == RefundRequestStatus.REJECTED
        assert rejected.admin_message == REJECTION
        assert rejected.reviewed_by_id == ADMIN
        assert rejected.reviewer_info.first_name == "Ana"
        v = store.get_voucher("vch_test")
        assert v.is_active
        assert v.used_count == 0
        assert v.monetary_refund_requested_at is None
        assert store.list_notifications()[-1].kind == REFUND_REQUEST_REJECTED

    def test_message_required(self):
        store = store_with()
        req = pending_request(store)

        with pytest.raises(ValidationError, match="required"):
            reject_refund_request(req.id, ADMIN, "", store, now=day(16))

        assert store.get_refund_request(req.id).status == RefundRequestStatus.PENDING

    def test_non_admin_cannot_reject(self):
        store = store_with()
        req = pending_request(store)

        with pytest.raises(PermissionDeniedError):
            reject_refund_request(req.id, CUSTOMER, REJECTION, store, now=day(16))

        assert store.get_refund_request(req.id).status == RefundRequestStatus.PENDING
        assert store.get_voucher("vch_test").monetary_refund_requested_at == day(15)

    def test_reject_after_approve_conflicts(self):
        store = store_with()
        req = pending_request(store)
        approve_refund_request(req.id, ADMIN, store, now=day(16))

        with pytest.raises(ConflictError):
            reject_refund_request(req.id, ADMIN, REJECTION, store, now=day(17))

    def test_customer_may_ask_again_after_rejection(self):
        store = store_with()
        first = pending_request(store)
        reject_refund_request(first.id, ADMIN, REJECTION, store, now=day(16))

        second = pending_request(store, now=day(17))

        assert second.id != first.id
        assert second.status == RefundRequestStatus.PENDING


class TestList:
    def test_filters_and_order(self):
        store = store_with()
        first = pending_request(store, now=day(15))
        reject_refund_request(first.id, ADMIN, REJECTION, store, now=day(16))
        second = pending_request(store, now=day(17))

        assert [r.id for r in list_refund_requests(store)] == [second.id, first.id]
        assert [r.id for r in list_refund_requests(store, RefundRequestStatus.PENDING)] == [second.id]
        assert list_refund_requests(store, requested_by_id="U-2") == []
