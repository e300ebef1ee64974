from pydantic import BaseModel, ConfigDict, Field
from enum import Enum
from datetime import datetime
from decimal import Decimal
from typing import Any, Optional


class PaymentStatus(str, Enum):
    PENDING = "PENDING"
    PAID = "PAID"
    REFUNDED = "REFUNDED"
    CANCELLED = "CANCELLED"


class InvoiceStatus(str, Enum):
    PENDING = "PENDING"
    PAID = "PAID"


class AdjustmentType(str, Enum):
    REFUND = "REFUND"
    CANCELLATION = "CANCELLATION"
    CARRY_OVER = "CARRY_OVER"  # negative balance moved to the next invoice


class AdjustmentStatus(str, Enum):
    PENDING = "PENDING"
    APPLIED = "APPLIED"


class DiscountType(str, Enum):
    PERCENTAGE = "PERCENTAGE"
    FIXED_AMOUNT = "FIXED_AMOUNT"
    REFUND = "REFUND"


class CancellationInitiator(str, Enum):
    CUSTOMER = "CUSTOMER"
    SELLER = "SELLER"


class VoucherComputedStatus(str, Enum):
    ACTIVE = "active"
    INACTIVE = "inactive"
    EXPIRED = "expired"
    USED = "used"
    REFUNDED = "refunded"


class RefundRequestStatus(str, Enum):
    PENDING = "PENDING"
    APPROVED = "APPROVED"
    REJECTED = "REJECTED"


# ── Parties (owned elsewhere, read here) ─────────────────────────────────────

class Organization(BaseModel):
    id: str
    name: str
    slug: str
    email: str
    platform_fee_percentage: Optional[Decimal] = None  # overrides the default


class Customer(BaseModel):
    id: str
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    email: str
    phone: Optional[str] = None
    is_admin: bool = False

    @property
    def display_name(self) -> str:
        name = f"{self.first_name or ''} {self.last_name or ''}".strip()
        return name or self.email


class Order(BaseModel):
    id: str
    organization_id: str
    customer_id: str
    order_number: Optional[str] = None
    order_date: datetime
    paid_at: Optional[datetime] = None
    payment_status: PaymentStatus
    total_amount: Optional[Decimal] = None
    item_count: int = 1
    voucher_discount_applied: Decimal = Decimal("0")
    voucher_code: Optional[str] = None
    # refunds taken before the order reached an invoice
    refunded_amount: Decimal = Decimal("0")
    cancellation_initiator: Optional[CancellationInitiator] = None
    payout_invoice_id: Optional[str] = None  # written once

    @property
    def display_number(self) -> str:
        return self.order_number or f"ORD-{self.id[-8:]}"


# ── Payout settings ───────────────────────────────────────────────────────────

class PayoutSettings(BaseModel):
    default_platform_fee_percentage: Decimal
    minimum_payout_amount: Decimal
    monetary_refund_wait_days: int
    cutoff_day_of_week: int
    payout_day_of_week: int
    updated_at: Optional[datetime] = None
    updated_by_id: Optional[str] = None
    last_run_at: Optional[datetime] = None
    last_run_status: Optional[str] = None
    last_run_invoices_generated: Optional[int] = None


# ── Payout invoices ───────────────────────────────────────────────────────────

class OrganizationSnapshot(BaseModel):
    model_config = ConfigDict(frozen=True)

    name: str
    slug: str
    email: str


class InvoiceOrderLine(BaseModel):
    model_config = ConfigDict(frozen=True)

    order_id: str
    order_number: str
    order_date: datetime
    customer_name: str
    # the order's contribution to gross_amount
    invoiced_amount: Decimal
    item_count: int
    voucher_discount: Decimal
    voucher_code: Optional[str] = None


class InvoiceAdjustmentLine(BaseModel):
    model_config = ConfigDict(frozen=True)

    adjustment_id: str
    order_id: Optional[str] = None
    order_number: Optional[str] = None
    type: AdjustmentType
    amount: Decimal
    reason: str


class StatusChange(BaseModel):
    model_config = ConfigDict(frozen=True)

    status: InvoiceStatus
    changed_at: datetime
    changed_by: Optional[str] = None
    reason: Optional[str] = None


class PayoutInvoice(BaseModel):
    id: str
    organization_id: str
    invoice_number: str
    organization_info: OrganizationSnapshot
    period_start: datetime
    period_end: datetime
    gross_amount: Decimal
    platform_fee_percentage: Decimal
    platform_fee_amount: Decimal
    total_voucher_discount: Decimal
    # gross - fee - voucher discount; never touched by adjustments
    net_amount: Decimal
    total_adjustment_amount: Decimal = Decimal("0.00")
    adjustment_count: int = 0
    # what is actually owed: max(0, net + adjustments)
    payable_amount: Decimal
    order_count: int
    item_count: int
    order_summary: list[InvoiceOrderLine] = Field(default_factory=list)
    adjustment_summary: list[InvoiceAdjustmentLine] = Field(default_factory=list)
    status: InvoiceStatus = InvoiceStatus.PENDING
    status_history: list[StatusChange] = Field(default_factory=list)
    paid_at: Optional[datetime] = None
    paid_by_id: Optional[str] = None
    payment_reference: Optional[str] = None
    payment_notes: Optional[str] = None
    created_at: datetime

    def line_for(self, order_id: str) -> Optional[InvoiceOrderLine]:
        for line in self.order_summary:
            if line.order_id == order_id:
                return line
        return None


class PayoutAdjustment(BaseModel):
    id: str
    organization_id: str
    order_id: Optional[str] = None  # None only for CARRY_OVER
    original_invoice_id: str
    adjustment_invoice_id: Optional[str] = None
    type: AdjustmentType
    amount: Decimal  # always <= 0
    reason: str
    status: AdjustmentStatus = AdjustmentStatus.PENDING
    created_at: datetime
    applied_at: Optional[datetime] = None


# ── Vouchers ──────────────────────────────────────────────────────────────────

class Voucher(BaseModel):
    id: str
    code: str
    name: str
    description: Optional[str] = None
    discount_type: DiscountType
    discount_value: Decimal
    assigned_to_user_id: Optional[str] = None
    cancellation_initiator: Optional[CancellationInitiator] = None
    source_order_id: Optional[str] = None
    monetary_refund_eligible_at: Optional[datetime] = None  # SELLER only
    monetary_refund_requested_at: Optional[datetime] = None
    usage_limit: Optional[int] = None
    used_count: int = 0
    is_active: bool = True
    valid_from: datetime
    valid_until: Optional[datetime] = None
    created_at: datetime


class VoucherStatus(BaseModel):
    """Derived on every read, never stored."""

    computed_status: VoucherComputedStatus
    is_expired: bool
    is_used: bool
    is_monetary_refund_eligible: bool
    days_until_eligible: Optional[int] = None


class VoucherView(BaseModel):
    voucher: Voucher
    status: VoucherStatus


class EligibilityResult(BaseModel):
    is_eligible: bool
    days_remaining: Optional[int] = None
    reason: Optional[str] = None


# ── Voucher refund requests ───────────────────────────────────────────────────

class VoucherSnapshot(BaseModel):
    model_config = ConfigDict(frozen=True)

    code: str
    name: str
    discount_value: Decimal
    cancellation_initiator: Optional[CancellationInitiator] = None
    created_at: datetime
    monetary_refund_eligible_at: Optional[datetime] = None


class CustomerSnapshot(BaseModel):
    model_config = ConfigDict(frozen=True)

    first_name: Optional[str] = None
    last_name: Optional[str] = None
    email: str
    phone: str = ""


class ReviewerSnapshot(BaseModel):
    model_config = ConfigDict(frozen=True)

    first_name: Optional[str] = None
    last_name: Optional[str] = None
    email: str


class SourceOrderSnapshot(BaseModel):
    model_config = ConfigDict(frozen=True)

    order_id: str
    order_number: Optional[str] = None
    total_amount: Optional[Decimal] = None


class VoucherRefundRequest(BaseModel):
    id: str
    voucher_id: str
    requested_by_id: str
    status: RefundRequestStatus = RefundRequestStatus.PENDING
    requested_amount: Decimal
    admin_message: Optional[str] = None
    reviewed_by_id: Optional[str] = None
    reviewed_at: Optional[datetime] = None
    reviewer_info: Optional[ReviewerSnapshot] = None
    voucher_info: VoucherSnapshot
    customer_info: CustomerSnapshot
    source_order_info: Optional[SourceOrderSnapshot] = None
    is_deleted: bool = False
    created_at: datetime
    updated_at: datetime

    @property
    def is_terminal(self) -> bool:
        return self.status != RefundRequestStatus.PENDING


# ── Notifications ─────────────────────────────────────────────────────────────

class Notification(BaseModel):
    kind: str
    entity_id: str
    summary: str
    payload: dict[str, Any] = Field(default_factory=dict)
    created_at: datetime


# ── Operation results ─────────────────────────────────────────────────────────

class FailedRun(BaseModel):
    organization_id: str
    code: str
    message: str


class GenerationRunResult(BaseModel):
    period_start: datetime
    period_end: datetime
    invoices_created: list[str] = Field(default_factory=list)
    skipped: list[str] = Field(default_factory=list)
    failed: list[FailedRun] = Field(default_factory=list)

    @property
    def success(self) -> bool:
        return not self.failed


class CancellationOutcome(BaseModel):
    order_id: str
    voucher: Voucher
    adjustment: Optional[PayoutAdjustment] = None


class AdjustmentView(BaseModel):
    adjustment: PayoutAdjustment
    order_number: Optional[str] = None
    original_invoice_number: Optional[str] = None
    applied_invoice_number: Optional[str] = None


class AdjustmentPage(BaseModel):
    adjustments: list[AdjustmentView]
    total: int
    limit: int
    has_more: bool


class OrganizationTotals(BaseModel):
    organization_id: str
    name: str
    gross_amount: Decimal
    net_amount: Decimal


class PayoutSummary(BaseModel):
    total_invoices: int
    pending_invoices: int
    paid_invoices: int
    total_gross_amount: Decimal
    total_platform_fees: Decimal
    total_net_amount: Decimal
    total_payable_amount: Decimal
    total_order_count: int
    paid_amount: Decimal
    pending_amount: Decimal
    unique_organizations: int
    recent_invoices: list[PayoutInvoice]
    top_organizations: list[OrganizationTotals]
