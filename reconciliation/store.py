import threading
import uuid
from contextlib import contextmanager
from datetime import datetime
from typing import Iterator, Optional

from reconciliation.config import Settings, settings as default_settings
from reconciliation.errors import ConflictError, NotFoundError
from reconciliation.models import (
    AdjustmentStatus,
    Customer,
    Notification,
    Order,
    Organization,
    PayoutAdjustment,
    PayoutInvoice,
    PayoutSettings,
    RefundRequestStatus,
    Voucher,
    VoucherRefundRequest,
)

_TABLES = (
    "organizations",
    "customers",
    "orders",
    "invoices",
    "adjustments",
    "vouchers",
    "refund_requests",
    "notifications",
)


def new_id(prefix: str) -> str:
    return f"{prefix}_{uuid.uuid4().hex[:16]}"


class DataStore:
    """
    In-process tables of immutable-by-convention pydantic records.

    Records are replaced, never mutated in place, so a shallow copy of each
    table is a complete snapshot for ``unit_of_work`` rollback.
    """

    def __init__(self, settings: Optional[Settings] = None) -> None:
        self._settings_source = settings or default_settings
        self._write_lock = threading.RLock()
        self._key_locks: dict[str, threading.RLock] = {}
        self._key_locks_guard = threading.Lock()
        self.clear()

    # ── transactions & locks ─────────────────────────────────────────────────

    @contextmanager
    def unit_of_work(self) -> Iterator["DataStore"]:
        """All writes inside the block commit together or not at all."""
        with self._write_lock:
            snapshot = {name: dict(getattr(self, name)) for name in _TABLES}
            settings_snapshot = self.payout_settings
            try:
                yield self
            except BaseException:
                for name, rows in snapshot.items():
                    setattr(self, name, rows)
                self.payout_settings = settings_snapshot
                raise

    def lock_for(self, key: str) -> threading.RLock:
        """A lock scoped to one key, e.g. ``org:<id>`` or ``order:<id>``."""
        with self._key_locks_guard:
            lock = self._key_locks.get(key)
            if lock is None:
                lock = self._key_locks[key] = threading.RLock()
            return lock

    # ── writes ────────────────────────────────────────────────────────────────

    def add_organization(self, org: Organization) -> None:
        self.organizations[org.id] = org

    def add_customer(self, customer: Customer) -> None:
        self.customers[customer.id] = customer

    def save_order(self, order: Order) -> None:
        self.orders[order.id] = order

    def assign_payout_invoice(self, order_id: str, invoice_id: str) -> Order:
        order = self.require_order(order_id)
        if order.payout_invoice_id is not None and order.payout_invoice_id != invoice_id:
            raise ConflictError(
                f"Order '{order_id}' already belongs to invoice '{order.payout_invoice_id}'"
            )
        updated = order.model_copy(update={"payout_invoice_id": invoice_id})
        self.orders[order_id] = updated
        return updated

    def save_invoice(self, invoice: PayoutInvoice) -> None:
        self.invoices[invoice.id] = invoice

    def add_adjustment(self, adjustment: PayoutAdjustment) -> None:
        if adjustment.order_id is not None and self.find_adjustment_for_order(adjustment.order_id):
            raise ConflictError(f"Order '{adjustment.order_id}' already has a payout adjustment")
        self.adjustments[adjustment.id] = adjustment

    def save_adjustment(self, adjustment: PayoutAdjustment) -> None:
        if adjustment.id not in self.adjustments:
            raise NotFoundError("Payout adjustment", adjustment.id)
        self.adjustments[adjustment.id] = adjustment

    def save_voucher(self, voucher: Voucher) -> None:
        self.vouchers[voucher.id] = voucher

    def save_refund_request(self, request: VoucherRefundRequest) -> None:
        self.refund_requests[request.id] = request

    def compare_and_set_request_status(
        self,
        request_id: str,
        expected: RefundRequestStatus,
        updated: VoucherRefundRequest,
    ) -> VoucherRefundRequest:
        with self._write_lock:
            current = self.require_refund_request(request_id)
            if current.status != expected:
                raise ConflictError(
                    f"Voucher refund request is already {current.status.value.lower()}"
                )
            self.refund_requests[request_id] = updated
            return updated

    def add_notification(self, notification: Notification) -> None:
        self.notifications[f"{len(self.notifications):08d}"] = notification

    def clear(self) -> None:
        for name in _TABLES:
            setattr(self, name, {})
        cfg = self._settings_source
        self.payout_settings = PayoutSettings(
            default_platform_fee_percentage=cfg.default_platform_fee_percentage,
            minimum_payout_amount=cfg.minimum_payout_amount,
            monetary_refund_wait_days=cfg.monetary_refund_wait_days,
            cutoff_day_of_week=cfg.cutoff_day_of_week,
            payout_day_of_week=cfg.payout_day_of_week,
        )

    # ── reads ─────────────────────────────────────────────────────────────────

    def get_organization(self, org_id: str) -> Optional[Organization]:
        return self.organizations.get(org_id)

    def require_organization(self, org_id: str) -> Organization:
        org = self.organizations.get(org_id)
        if org is None:
            raise NotFoundError("Organization", org_id)
        return org

    def list_organizations(self) -> list[Organization]:
        return list(self.organizations.values())

    def get_customer(self, customer_id: str) -> Optional[Customer]:
        return self.customers.get(customer_id)

    def get_order(self, order_id: str) -> Optional[Order]:
        return self.orders.get(order_id)

    def require_order(self, order_id: str) -> Order:
        order = self.orders.get(order_id)
        if order is None:
            raise NotFoundError("Order", order_id)
        return order

    def get_orders_for_organization(self, org_id: str) -> list[Order]:
        return [o for o in self.orders.values() if o.organization_id == org_id]

    def get_invoice(self, invoice_id: str) -> Optional[PayoutInvoice]:
        return self.invoices.get(invoice_id)

    def require_invoice(self, invoice_id: str) -> PayoutInvoice:
        invoice = self.invoices.get(invoice_id)
        if invoice is None:
            raise NotFoundError("Payout invoice", invoice_id)
        return invoice

    def get_invoices_for_organization(self, org_id: str) -> list[PayoutInvoice]:
        return [i for i in self.invoices.values() if i.organization_id == org_id]

    def find_invoice_for_period(self, org_id: str, period_start: datetime) -> Optional[PayoutInvoice]:
        for invoice in self.invoices.values():
            if invoice.organization_id == org_id and invoice.period_start == period_start:
                return invoice
        return None

    def get_adjustments_for_organization(
        self,
        org_id: str,
        status: Optional[AdjustmentStatus] = None,
    ) -> list[PayoutAdjustment]:
        return [
            a for a in self.adjustments.values()
            if a.organization_id == org_id and (status is None or a.status == status)
        ]

    def find_adjustment_for_order(self, order_id: str) -> Optional[PayoutAdjustment]:
        for adjustment in self.adjustments.values():
            if adjustment.order_id == order_id:
                return adjustment
        return None

    def get_voucher(self, voucher_id: str) -> Optional[Voucher]:
        return self.vouchers.get(voucher_id)

    def require_voucher(self, voucher_id: str) -> Voucher:
        voucher = self.vouchers.get(voucher_id)
        if voucher is None:
            raise NotFoundError("Voucher", voucher_id)
        return voucher

    def find_voucher_by_code(self, code: str) -> Optional[Voucher]:
        code = code.upper()
        for voucher in self.vouchers.values():
            if voucher.code.upper() == code:
                return voucher
        return None

    def find_voucher_for_order(self, order_id: str) -> Optional[Voucher]:
        for voucher in self.vouchers.values():
            if voucher.source_order_id == order_id:
                return voucher
        return None

    def get_vouchers_for_user(self, user_id: str) -> list[Voucher]:
        return [v for v in self.vouchers.values() if v.assigned_to_user_id == user_id]

    def get_refund_request(self, request_id: str) -> Optional[VoucherRefundRequest]:
        return self.refund_requests.get(request_id)

    def require_refund_request(self, request_id: str) -> VoucherRefundRequest:
        request = self.refund_requests.get(request_id)
        if request is None or request.is_deleted:
            raise NotFoundError("Voucher refund request", request_id)
        return request

    def find_request_for_voucher(
        self,
        voucher_id: str,
        status: RefundRequestStatus = RefundRequestStatus.PENDING,
    ) -> Optional[VoucherRefundRequest]:
        for request in self.refund_requests.values():
            if (
                request.voucher_id == voucher_id
                and request.status == status
                and not request.is_deleted
            ):
                return request
        return None

    def list_refund_requests(self) -> list[VoucherRefundRequest]:
        return [r for r in self.refund_requests.values() if not r.is_deleted]

    def list_notifications(self) -> list[Notification]:
        return list(self.notifications.values())


# module-level singleton used by the app
store = DataStore()
