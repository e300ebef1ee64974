"""
Unit tests for refund voucher issuance and order cancellation.
"""

import re
from decimal import Decimal

import pytest

from reconciliation.cancellations import cancel_order
from reconciliation.errors import ValidationError
from reconciliation.invoices import generate_invoice
from reconciliation.models import (
    AdjustmentStatus,
    AdjustmentType,
    CancellationInitiator,
    DiscountType,
    PaymentStatus,
    VoucherComputedStatus,
)
from reconciliation.vouchers import issue_refund_voucher, list_user_vouchers
from tests.helpers import CUSTOMER, ORG, WEEK1, day, make_store, order

SELLER = CancellationInitiator.SELLER
CUSTOMER_SIDE = CancellationInitiator.CUSTOMER


class TestIssueVoucher:
    def test_seller_voucher(self):
        store = make_store()
        o = order("O-1", 1000, day(1))
        store.save_order(o)

        v = issue_refund_voucher(o, Decimal("1000"), SELLER, store, now=day(8))

        assert re.fullmatch(r"REFUND-[A-Z0-9]{6}", v.code)
        assert v.discount_type == DiscountType.REFUND
        assert v.discount_value == Decimal("1000.00")
        assert v.assigned_to_user_id == CUSTOMER
        assert v.source_order_id == "O-1"
        assert v.usage_limit == 1
        assert v.used_count == 0
        assert v.is_active
        assert v.valid_from == day(8)
        assert v.valid_until is None
        assert v.monetary_refund_eligible_at == day(22)
        assert v.name == "Refund Voucher - Order ORD-O-1"

    def test_customer_voucher_has_no_eligibility_date(self):
        store = make_store()
        o = order("O-1", 1000, day(1))

        v = issue_refund_voucher(o, Decimal("500"), CUSTOMER_SIDE, store, now=day(8))

        assert v.monetary_refund_eligible_at is None

    def test_wait_days_from_settings(self):
        store = make_store(monetary_refund_wait_days=7)
        o = order("O-1", 1000, day(1))

        v = issue_refund_voucher(o, Decimal("500"), SELLER, store, now=day(8))

        assert v.monetary_refund_eligible_at == day(15)

    def test_explicit_wait_days(self):
        store = make_store()
        o = order("O-1", 1000, day(1))

        v = issue_refund_voucher(o, Decimal("500"), SELLER, store, wait_days=0, now=day(8))

        assert v.monetary_refund_eligible_at == day(8)

    def test_one_voucher_per_order(self):
        store = make_store()
        o = order("O-1", 1000, day(1))

        first = issue_refund_voucher(o, Decimal("1000"), SELLER, store, now=day(8))
        second = issue_refund_voucher(o, Decimal("250"), CUSTOMER_SIDE, store, now=day(9))

        assert second.id == first.id
        assert second.discount_value == Decimal("1000.00")
        assert len(store.vouchers) == 1

    @pytest.mark.parametrize("amount", ["0", "-5"])
    def test_non_positive_amount_rejected(self, amount):
        store = make_store()
        with pytest.raises(ValidationError, match="greater than zero"):
            issue_refund_voucher(order("O-1", 1000), Decimal(amount), SELLER, store)
        assert store.vouchers == {}

    def test_codes_are_unique(self):
        store = make_store()
        codes = {
            issue_refund_voucher(order(f"O-{i}", 100), Decimal("100"), SELLER, store).code
            for i in range(50)
        }
        assert len(codes) == 50


class TestListUserVouchers:
    def test_newest_first_with_status(self):
        store = make_store()
        issue_refund_voucher(order("O-1", 100), Decimal("100"), SELLER, store, now=day(1))
        issue_refund_voucher(order("O-2", 200), Decimal("200"), CUSTOMER_SIDE, store, now=day(2))

        views = list_user_vouchers(CUSTOMER, store, now=day(3))

        assert [v.voucher.source_order_id for v in views] == ["O-2", "O-1"]
        assert views[1].status.days_until_eligible == 12
        assert views[0].status.days_until_eligible is None
        assert all(v.status.computed_status == VoucherComputedStatus.ACTIVE for v in views)

    def test_used_vouchers_hidden_by_default(self):
        store = make_store()
        v = issue_refund_voucher(order("O-1", 100), Decimal("100"), SELLER, store, now=day(1))
        store.save_voucher(v.model_copy(update={"used_count": 1}))

        assert list_user_vouchers(CUSTOMER, store, now=day(2)) == []
        shown = list_user_vouchers(CUSTOMER, store, now=day(2), include_used=True)
        assert shown[0].status.computed_status == VoucherComputedStatus.USED

    def test_other_users_vouchers_excluded(self):
        store = make_store()
        issue_refund_voucher(order("O-1", 100, customer="U-2"), Decimal("100"), SELLER, store)

        assert list_user_vouchers(CUSTOMER, store) == []


class TestCancelOrder:
    def test_cancel_before_invoicing(self):
        store = make_store()
        store.save_order(order("O-1", 1000, day(1)))

        outcome = cancel_order("O-1", SELLER, store, reason="Out of stock", now=day(2))

        assert outcome.adjustment is None
        assert outcome.voucher.discount_value == Decimal("1000.00")
        updated = store.get_order("O-1")
        assert updated.payment_status == PaymentStatus.REFUNDED
        assert updated.refunded_amount == Decimal("1000.00")
        assert updated.cancellation_initiator == SELLER
        # never reaches an invoice
        assert generate_invoice(ORG, *WEEK1, store, now=WEEK1[1]) is None

    def test_partial_refund_before_invoicing_reduces_gross(self):
        store = make_store()
        store.save_order(order("O-1", 1000, day(1)))

        cancel_order(
            "O-1", CUSTOMER_SIDE, store,
            reason="One item missing", refund_type=AdjustmentType.REFUND, amount=Decimal("300"), now=day(2),
        )
        invoice = generate_invoice(ORG, *WEEK1, store, now=WEEK1[1])

        assert store.get_order("O-1").payment_status == PaymentStatus.PAID
        assert invoice.gross_amount == Decimal("700.00")

    def test_cancel_after_invoicing_records_adjustment(self):
        store = make_store()
        store.save_order(order("O-1", 1000, day(1)))
        invoice = generate_invoice(ORG, *WEEK1, store, now=WEEK1[1])

        outcome = cancel_order("O-1", SELLER, store, reason="Seller cancelled", now=day(8))

        adj = outcome.adjustment
        assert adj is not None
        assert adj.amount == Decimal("-1000.00")
        assert adj.original_invoice_id == invoice.id
        assert adj.status == AdjustmentStatus.PENDING
        assert outcome.voucher.monetary_refund_eligible_at == day(22)
        assert store.get_order("O-1").payout_invoice_id == invoice.id

    def test_partial_refund_after_invoicing(self):
        store = make_store()
        store.save_order(order("O-1", 1000, day(1)))
        generate_invoice(ORG, *WEEK1, store, now=WEEK1[1])

        outcome = cancel_order(
            "O-1", SELLER, store,
            reason="Damaged", refund_type=AdjustmentType.REFUND, amount=Decimal("150"), now=day(8),
        )

        assert outcome.adjustment.amount == Decimal("-150.00")
        assert outcome.adjustment.type == AdjustmentType.REFUND
        assert outcome.voucher.discount_value == Decimal("150.00")

    def test_repeat_cancellation_is_idempotent(self):
        store = make_store()
        store.save_order(order("O-1", 1000, day(1)))
        generate_invoice(ORG, *WEEK1, store, now=WEEK1[1])

        first = cancel_order("O-1", SELLER, store, reason="Seller cancelled", now=day(8))
        second = cancel_order("O-1", SELLER, store, reason="Seller cancelled", now=day(9))

        assert second.voucher.id == first.voucher.id
        assert second.adjustment.id == first.adjustment.id
        assert len(store.vouchers) == 1
        assert len(store.adjustments) == 1

    def test_unpaid_order_rejected(self):
        store = make_store()
        store.save_order(order("O-1", 1000, day(1), status=PaymentStatus.PENDING))

        with pytest.raises(ValidationError, match="Only paid orders"):
            cancel_order("O-1", SELLER, store, reason="Out of stock")

        assert store.vouchers == {}

    def test_refund_larger_than_order_rejected(self):
        store = make_store()
        store.save_order(order("O-1", 1000, day(1)))

        with pytest.raises(ValidationError, match="between 0 and 1000.00"):
            cancel_order(
                "O-1", SELLER, store,
                reason="Damaged", refund_type=AdjustmentType.REFUND, amount=Decimal("1200"),
            )

        assert store.vouchers == {}
        assert store.get_order("O-1").refunded_amount == Decimal("0")

    def test_failed_adjustment_rolls_back_voucher(self):
        store = make_store()
        store.save_order(order("O-1", 1000, day(1)))
        generate_invoice(ORG, *WEEK1, store, now=WEEK1[1])

        with pytest.raises(ValidationError, match="reason"):
            cancel_order("O-1", SELLER, store, reason=" ", now=day(8))

        assert store.vouchers == {}
        assert store.get_order("O-1").payment_status == PaymentStatus.PAID
