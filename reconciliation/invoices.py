from datetime import datetime, timedelta, timezone
from decimal import Decimal
from typing import Optional

import structlog

from reconciliation import notifications
from reconciliation.errors import (
    ConflictError,
    InvoiceGenerationError,
    ReconciliationError,
    ValidationError,
)
from reconciliation.models import (
    AdjustmentStatus,
    AdjustmentType,
    FailedRun,
    GenerationRunResult,
    InvoiceAdjustmentLine,
    InvoiceOrderLine,
    InvoiceStatus,
    Order,
    Organization,
    OrganizationSnapshot,
    OrganizationTotals,
    PaymentStatus,
    PayoutAdjustment,
    PayoutInvoice,
    PayoutSummary,
    StatusChange,
)
from reconciliation.money import ZERO, percentage_of, to_money, total
from reconciliation.store import DataStore, new_id

logger = structlog.get_logger(__name__)


def _now(now: Optional[datetime]) -> datetime:
    return now or datetime.now(timezone.utc)


def _paid_within(order: Order, start: datetime, end: datetime) -> bool:
    # legacy orders have no paid_at; fall back to when they were placed
    moment = order.paid_at or order.order_date
    return start <= moment <= end


def _contribution(order: Order) -> Decimal:
    """What the order adds to gross: its total less refunds taken before invoicing."""
    return to_money(order.total_amount - order.refunded_amount)


def _check_amounts(org_id: str, orders: list[Order]) -> None:
    for order in orders:
        if order.total_amount is None:
            raise InvoiceGenerationError(
                f"Order {order.display_number} has no total amount",
                organization_id=org_id,
                order_id=order.id,
            )
        if order.total_amount < 0 or _contribution(order) < 0:
            raise InvoiceGenerationError(
                f"Order {order.display_number} has a negative amount ({order.total_amount})",
                organization_id=org_id,
                order_id=order.id,
            )


def _invoice_number(org: Organization, period_end: datetime, store: DataStore) -> str:
    sequence = len(store.get_invoices_for_organization(org.id)) + 1
    return f"PI-{period_end:%Y%m%d}-{org.slug.upper()[:10]}-{sequence:03d}"


def _order_line(order: Order, store: DataStore) -> InvoiceOrderLine:
    customer = store.get_customer(order.customer_id)
    return InvoiceOrderLine(
        order_id=order.id,
        order_number=order.display_number,
        order_date=order.order_date,
        customer_name=customer.display_name if customer else order.customer_id,
        invoiced_amount=_contribution(order),
        item_count=order.item_count,
        voucher_discount=to_money(order.voucher_discount_applied),
        voucher_code=order.voucher_code,
    )


def _adjustment_line(adjustment: PayoutAdjustment, store: DataStore) -> InvoiceAdjustmentLine:
    order = store.get_order(adjustment.order_id) if adjustment.order_id else None
    return InvoiceAdjustmentLine(
        adjustment_id=adjustment.id,
        order_id=adjustment.order_id,
        order_number=order.display_number if order else None,
        type=adjustment.type,
        amount=adjustment.amount,
        reason=adjustment.reason,
    )


def _generate(
    organization_id: str,
    period_start: datetime,
    period_end: datetime,
    store: DataStore,
    now: datetime,
) -> tuple[Optional[PayoutInvoice], bool]:
    """Returns (invoice, created). A silent skip is (None, False)."""
    if period_start > period_end:
        raise ValidationError("period_start must not be after period_end")

    org = store.require_organization(organization_id)
    log = logger.bind(organization_id=org.id, period_start=period_start.isoformat())

    # order selection and commit are one unit of work; concurrent order
    # writes wait for it
    with store.lock_for(f"org:{org.id}"), store.unit_of_work():
        existing = store.find_invoice_for_period(org.id, period_start)
        if existing is not None:
            log.info("invoice_generation_skipped", reason="already_exists", invoice_id=existing.id)
            return existing, False

        # ── 1. Paid, not yet invoiced orders inside the window ───────────────
        orders = sorted(
            (
                o for o in store.get_orders_for_organization(org.id)
                if o.payment_status == PaymentStatus.PAID
                and o.payout_invoice_id is None
                and _paid_within(o, period_start, period_end)
            ),
            key=lambda o: o.paid_at or o.order_date,
        )
        _check_amounts(org.id, orders)

        # ── 2. Corrections queued since earlier invoices ─────────────────────
        pending = sorted(
            store.get_adjustments_for_organization(org.id, AdjustmentStatus.PENDING),
            key=lambda a: a.created_at,
        )

        if not orders and not pending:
            log.debug("invoice_generation_skipped", reason="nothing_to_invoice")
            return None, False

        # ── 3. Totals ────────────────────────────────────────────────────────
        cfg = store.payout_settings
        gross = total(_contribution(o) for o in orders)
        if gross < cfg.minimum_payout_amount:
            log.info(
                "invoice_generation_skipped",
                reason="below_minimum_payout",
                gross_amount=str(gross),
                minimum=str(cfg.minimum_payout_amount),
            )
            return None, False

        fee_percentage = (
            org.platform_fee_percentage
            if org.platform_fee_percentage is not None
            else cfg.default_platform_fee_percentage
        )
        fee = percentage_of(gross, fee_percentage)
        voucher_discount = total(o.voucher_discount_applied for o in orders)
        net = gross - fee - voucher_discount

        adjustment_total = total(a.amount for a in pending)
        balance = net + adjustment_total
        payable = max(ZERO, balance)

        invoice_id = new_id("inv")
        invoice_number = _invoice_number(org, period_end, store)
        history = [StatusChange(status=InvoiceStatus.PENDING, changed_at=now, reason="Invoice generated by system")]
        status = InvoiceStatus.PENDING
        paid_at = None
        if payable == ZERO:
            status = InvoiceStatus.PAID
            paid_at = now
            history.append(StatusChange(status=InvoiceStatus.PAID, changed_at=now, reason="Zero payout"))

        invoice = PayoutInvoice(
            id=invoice_id,
            organization_id=org.id,
            invoice_number=invoice_number,
            organization_info=OrganizationSnapshot(name=org.name, slug=org.slug, email=org.email),
            period_start=period_start,
            period_end=period_end,
            gross_amount=gross,
            platform_fee_percentage=Decimal(fee_percentage),
            platform_fee_amount=fee,
            total_voucher_discount=voucher_discount,
            net_amount=net,
            total_adjustment_amount=adjustment_total,
            adjustment_count=len(pending),
            payable_amount=payable,
            order_count=len(orders),
            item_count=sum(o.item_count for o in orders),
            order_summary=[_order_line(o, store) for o in orders],
            adjustment_summary=[_adjustment_line(a, store) for a in pending],
            status=status,
            status_history=history,
            paid_at=paid_at,
            created_at=now,
        )

        # ── 4. Invoice, order assignment and adjustments ─────────────────────
        store.save_invoice(invoice)
        for order in orders:
            store.assign_payout_invoice(order.id, invoice_id)
        for adjustment in pending:
            store.save_adjustment(adjustment.model_copy(update={
                "status": AdjustmentStatus.APPLIED,
                "adjustment_invoice_id": invoice_id,
                "applied_at": now,
            }))
        if balance < ZERO:
            store.add_adjustment(PayoutAdjustment(
                id=new_id("adj"),
                organization_id=org.id,
                original_invoice_id=invoice_id,
                type=AdjustmentType.CARRY_OVER,
                amount=balance,
                reason=f"Negative balance carried forward from invoice {invoice_number}",
                created_at=now,
            ))
        notifications.notify(
            store,
            notifications.INVOICE_CREATED,
            invoice_id,
            f"Payout invoice {invoice_number} for {org.name}: {payable} payable",
            now,
            organization_id=org.id,
            payable_amount=str(payable),
        )

    log.info(
        "invoice_generated",
        invoice_id=invoice_id,
        invoice_number=invoice_number,
        gross_amount=str(gross),
        platform_fee_amount=str(fee),
        net_amount=str(net),
        adjustment_total=str(adjustment_total),
        payable_amount=str(payable),
        order_count=len(orders),
        adjustment_count=len(pending),
    )
    return invoice, True


def generate_invoice(
    organization_id: str,
    period_start: datetime,
    period_end: datetime,
    store: DataStore,
    *,
    now: Optional[datetime] = None,
) -> Optional[PayoutInvoice]:
    """
    Invoice an organization's paid, unassigned orders for one period.

    Safe to call repeatedly: an existing invoice for the same organization and
    period is returned as-is. Returns None when there is nothing to invoice.
    """
    invoice, _ = _generate(organization_id, period_start, period_end, store, _now(now))
    return invoice


def generate_invoices_for_period(
    period_start: datetime,
    period_end: datetime,
    store: DataStore,
    *,
    now: Optional[datetime] = None,
) -> GenerationRunResult:
    """Scheduled entry point: every organization is invoiced independently."""
    now = _now(now)
    result = GenerationRunResult(period_start=period_start, period_end=period_end)

    for org in sorted(store.list_organizations(), key=lambda o: o.id):
        try:
            invoice, created = _generate(org.id, period_start, period_end, store, now)
        except ReconciliationError as exc:
            logger.error(
                "invoice_generation_failed",
                organization_id=org.id,
                code=exc.code,
                error=exc.message,
            )
            result.failed.append(FailedRun(organization_id=org.id, code=exc.code, message=exc.message))
            continue
        if created:
            result.invoices_created.append(invoice.id)
        else:
            result.skipped.append(org.id)

    store.payout_settings = store.payout_settings.model_copy(update={
        "last_run_at": now,
        "last_run_status": "SUCCESS" if result.success else "PARTIAL_FAILURE",
        "last_run_invoices_generated": len(result.invoices_created),
    })
    logger.info(
        "invoice_run_completed",
        invoices_created=len(result.invoices_created),
        skipped=len(result.skipped),
        failed=len(result.failed),
    )
    return result


def previous_period(now: datetime, cutoff_day_of_week: int) -> tuple[datetime, datetime]:
    """
    The most recently completed weekly window.

    ``cutoff_day_of_week`` counts from 0=Sunday. With the default Wednesday
    cutoff the window is Wednesday 00:00 UTC through Tuesday end-of-day.
    """
    now = now.astimezone(timezone.utc)
    cutoff_weekday = (cutoff_day_of_week + 6) % 7  # to Monday=0
    midnight = now.replace(hour=0, minute=0, second=0, microsecond=0)
    current_start = midnight - timedelta(days=(now.weekday() - cutoff_weekday) % 7)
    start = current_start - timedelta(days=7)
    end = current_start - timedelta(microseconds=1)
    return start, end


def mark_invoice_paid(
    invoice_id: str,
    paid_by_id: str,
    store: DataStore,
    *,
    payment_reference: Optional[str] = None,
    payment_notes: Optional[str] = None,
    now: Optional[datetime] = None,
) -> PayoutInvoice:
    now = _now(now)
    with store.unit_of_work():
        invoice = store.require_invoice(invoice_id)
        if invoice.status == InvoiceStatus.PAID:
            raise ConflictError(f"Invoice {invoice.invoice_number} is already marked as paid")

        updated = invoice.model_copy(update={
            "status": InvoiceStatus.PAID,
            "paid_at": now,
            "paid_by_id": paid_by_id,
            "payment_reference": payment_reference,
            "payment_notes": payment_notes,
            "status_history": [
                *invoice.status_history,
                StatusChange(
                    status=InvoiceStatus.PAID,
                    changed_at=now,
                    changed_by=paid_by_id,
                    reason=payment_notes or "Marked as paid by admin",
                ),
            ],
        })
        store.save_invoice(updated)
        notifications.notify(
            store,
            notifications.INVOICE_PAID,
            invoice_id,
            f"Payout invoice {invoice.invoice_number} paid: {invoice.payable_amount}",
            now,
            organization_id=invoice.organization_id,
            payment_reference=payment_reference,
        )

    logger.info("invoice_marked_paid", invoice_id=invoice_id, paid_by_id=paid_by_id)
    return updated


def list_invoices(
    store: DataStore,
    organization_id: Optional[str] = None,
    status: Optional[InvoiceStatus] = None,
) -> list[PayoutInvoice]:
    invoices = [
        i for i in store.invoices.values()
        if (organization_id is None or i.organization_id == organization_id)
        and (status is None or i.status == status)
    ]
    return sorted(invoices, key=lambda i: i.period_start, reverse=True)


def payout_summary(
    store: DataStore,
    period_start: Optional[datetime] = None,
    period_end: Optional[datetime] = None,
) -> PayoutSummary:
    invoices = [
        i for i in store.invoices.values()
        if (period_start is None or i.period_start >= period_start)
        and (period_end is None or i.period_end <= period_end)
    ]
    paid = [i for i in invoices if i.status == InvoiceStatus.PAID]
    pending = [i for i in invoices if i.status == InvoiceStatus.PENDING]

    per_org: dict[str, OrganizationTotals] = {}
    for inv in invoices:
        current = per_org.get(inv.organization_id)
        if current is None:
            per_org[inv.organization_id] = OrganizationTotals(
                organization_id=inv.organization_id,
                name=inv.organization_info.name,
                gross_amount=inv.gross_amount,
                net_amount=inv.net_amount,
            )
        else:
            current.gross_amount += inv.gross_amount
            current.net_amount += inv.net_amount

    return PayoutSummary(
        total_invoices=len(invoices),
        pending_invoices=len(pending),
        paid_invoices=len(paid),
        total_gross_amount=total(i.gross_amount for i in invoices),
        total_platform_fees=total(i.platform_fee_amount for i in invoices),
        total_net_amount=total(i.net_amount for i in invoices),
        total_payable_amount=total(i.payable_amount for i in invoices),
        total_order_count=sum(i.order_count for i in invoices),
        paid_amount=total(i.payable_amount for i in paid),
        pending_amount=total(i.payable_amount for i in pending),
        unique_organizations=len(per_org),
        recent_invoices=sorted(invoices, key=lambda i: i.created_at, reverse=True)[:5],
        top_organizations=sorted(per_org.values(), key=lambda t: t.gross_amount, reverse=True)[:5],
    )
