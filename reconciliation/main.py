"""
HTTP surface of the reconciliation engine.

Run with:
    uvicorn reconciliation.main:app --host 0.0.0.0 --port 8000
"""

import uuid
from contextlib import asynccontextmanager
from datetime import datetime
from typing import Optional

from fastapi import Depends, FastAPI, HTTPException, Query, Request

from reconciliation.adjustments import list_adjustments
from reconciliation.cancellations import cancel_order
from reconciliation.clock import Clock, SystemClock, as_utc
from reconciliation.errors import (
    ConflictError,
    IneligibleError,
    InvoiceGenerationError,
    NotFoundError,
    PermissionDeniedError,
    ReconciliationError,
    ValidationError,
)
from reconciliation.invoices import (
    generate_invoice,
    generate_invoices_for_period,
    list_invoices,
    mark_invoice_paid,
    payout_summary,
    previous_period,
)
from reconciliation.logging_config import bind_context, clear_context, configure_logging
from reconciliation.models import AdjustmentStatus, InvoiceStatus, RefundRequestStatus
from reconciliation.payout_settings import update_payout_settings
from reconciliation.refund_requests import (
    approve_refund_request,
    create_refund_request,
    list_refund_requests,
    reject_refund_request,
)
from reconciliation.schemas import (
    ApproveRefundRequestBody,
    CancelOrderRequest,
    CreateRefundRequestBody,
    GenerateAllInvoicesRequest,
    GenerateInvoiceRequest,
    MarkInvoicePaidRequest,
    RejectRefundRequestBody,
    UpdatePayoutSettingsRequest,
)
from reconciliation.store import DataStore, store
from reconciliation.vouchers import list_user_vouchers

_system_clock = SystemClock()


def get_store() -> DataStore:
    return store


def get_clock() -> Clock:
    return _system_clock


@asynccontextmanager
async def lifespan(app: FastAPI):
    configure_logging()
    # Auto-seed on startup so the service is immediately usable
    from scripts.seed_data import seed
    seed(store)
    yield


app = FastAPI(
    title="Marketplace Reconciliation Service",
    version="1.0.0",
    description="Seller payout invoices, post-invoice adjustments and refund vouchers",
    lifespan=lifespan,
)


@app.middleware("http")
async def request_context(request: Request, call_next):
    clear_context()
    bind_context(request_id=request.headers.get("x-request-id") or uuid.uuid4().hex)
    return await call_next(request)


def _http_error(exc: ReconciliationError) -> HTTPException:
    if isinstance(exc, NotFoundError):
        status = 404
    elif isinstance(exc, PermissionDeniedError):
        status = 403
    elif isinstance(exc, ConflictError):
        status = 409
    elif isinstance(exc, (IneligibleError, InvoiceGenerationError)):
        status = 422
    elif isinstance(exc, ValidationError):
        status = 400
    else:
        status = 500
    return HTTPException(status, exc.to_dict())


# ── Organizations ─────────────────────────────────────────────────────────────

@app.get("/api/v1/organizations", summary="List all organizations")
def list_organizations(db: DataStore = Depends(get_store)):
    return {"organizations": [o.model_dump() for o in db.list_organizations()]}


@app.get(
    "/api/v1/organizations/{organization_id}/adjustments",
    summary="List payout adjustments for an organization",
)
def get_adjustments(
    organization_id: str,
    status: Optional[AdjustmentStatus] = Query(default=None),
    limit: int = Query(default=100, ge=1, le=500),
    db: DataStore = Depends(get_store),
):
    try:
        page = list_adjustments(organization_id, db, status=status, limit=limit)
    except ReconciliationError as exc:
        raise _http_error(exc)
    return page.model_dump()


# ── Payout invoices ───────────────────────────────────────────────────────────

@app.post("/api/v1/payouts/invoices/generate", summary="Generate one organization's invoice for a period")
def post_generate_invoice(
    body: GenerateInvoiceRequest,
    db: DataStore = Depends(get_store),
    clock: Clock = Depends(get_clock),
):
    try:
        invoice = generate_invoice(
            body.organization_id, body.period_start, body.period_end, db, now=clock.now(),
        )
    except ReconciliationError as exc:
        raise _http_error(exc)
    if invoice is None:
        return {"status": "skipped", "invoice": None}
    return {"status": "ok", "invoice": invoice.model_dump()}


@app.post("/api/v1/payouts/invoices/generate-all", summary="Generate invoices for every organization")
def post_generate_all(
    body: GenerateAllInvoicesRequest,
    db: DataStore = Depends(get_store),
    clock: Clock = Depends(get_clock),
):
    now = clock.now()
    if body.period_start is None or body.period_end is None:
        start, end = previous_period(now, db.payout_settings.cutoff_day_of_week)
    else:
        start, end = body.period_start, body.period_end
    if start > end:
        raise HTTPException(400, {"code": ValidationError.code, "message": "period_start must not be after period_end"})
    result = generate_invoices_for_period(start, end, db, now=now)
    return result.model_dump()


@app.get("/api/v1/payouts/invoices", summary="List payout invoices")
def get_invoices(
    organization_id: Optional[str] = Query(default=None),
    status: Optional[InvoiceStatus] = Query(default=None),
    db: DataStore = Depends(get_store),
):
    return {"invoices": [i.model_dump() for i in list_invoices(db, organization_id, status)]}


@app.get("/api/v1/payouts/invoices/{invoice_id}", summary="Get a payout invoice")
def get_invoice(invoice_id: str, db: DataStore = Depends(get_store)):
    try:
        return db.require_invoice(invoice_id).model_dump()
    except ReconciliationError as exc:
        raise _http_error(exc)


@app.post("/api/v1/payouts/invoices/{invoice_id}/mark-paid", summary="Record that an invoice was paid out")
def post_mark_paid(
    invoice_id: str,
    body: MarkInvoicePaidRequest,
    db: DataStore = Depends(get_store),
    clock: Clock = Depends(get_clock),
):
    try:
        invoice = mark_invoice_paid(
            invoice_id,
            body.paid_by_id,
            db,
            payment_reference=body.payment_reference,
            payment_notes=body.payment_notes,
            now=clock.now(),
        )
    except ReconciliationError as exc:
        raise _http_error(exc)
    return invoice.model_dump()


@app.get("/api/v1/payouts/summary", summary="Payout totals across invoices")
def get_summary(
    period_start: Optional[datetime] = Query(default=None),
    period_end: Optional[datetime] = Query(default=None),
    db: DataStore = Depends(get_store),
):
    return payout_summary(
        db,
        as_utc(period_start) if period_start else None,
        as_utc(period_end) if period_end else None,
    ).model_dump()


@app.get("/api/v1/payouts/settings", summary="Get platform payout settings")
def get_settings(db: DataStore = Depends(get_store)):
    return db.payout_settings.model_dump()


@app.put("/api/v1/payouts/settings", summary="Update platform payout settings")
def put_settings(
    body: UpdatePayoutSettingsRequest,
    db: DataStore = Depends(get_store),
    clock: Clock = Depends(get_clock),
):
    try:
        updated = update_payout_settings(
            db,
            body.updated_by_id,
            **body.model_dump(exclude={"updated_by_id"}),
            now=clock.now(),
        )
    except ReconciliationError as exc:
        raise _http_error(exc)
    return updated.model_dump()


# ── Orders & vouchers ─────────────────────────────────────────────────────────

@app.post("/api/v1/orders/{order_id}/cancel", summary="Cancel or refund a paid order")
def post_cancel_order(
    order_id: str,
    body: CancelOrderRequest,
    db: DataStore = Depends(get_store),
    clock: Clock = Depends(get_clock),
):
    try:
        outcome = cancel_order(
            order_id,
            body.initiator,
            db,
            reason=body.reason,
            refund_type=body.type,
            amount=body.amount,
            now=clock.now(),
        )
    except ReconciliationError as exc:
        raise _http_error(exc)
    return outcome.model_dump()


@app.get("/api/v1/users/{user_id}/vouchers", summary="List a customer's vouchers with derived status")
def get_user_vouchers(
    user_id: str,
    include_used: bool = Query(default=False),
    db: DataStore = Depends(get_store),
    clock: Clock = Depends(get_clock),
):
    views = list_user_vouchers(user_id, db, now=clock.now(), include_used=include_used)
    return {"vouchers": [v.model_dump() for v in views]}


@app.post(
    "/api/v1/vouchers/{voucher_id}/refund-requests",
    status_code=201,
    summary="Request conversion of a voucher into a monetary refund",
)
def post_refund_request(
    voucher_id: str,
    body: CreateRefundRequestBody,
    db: DataStore = Depends(get_store),
    clock: Clock = Depends(get_clock),
):
    try:
        request = create_refund_request(
            voucher_id,
            body.requested_by_id,
            db,
            requested_amount=body.requested_amount,
            now=clock.now(),
        )
    except ReconciliationError as exc:
        raise _http_error(exc)
    return request.model_dump()


# ── Admin ─────────────────────────────────────────────────────────────────────

@app.get("/api/v1/admin/voucher-refund-requests", summary="List voucher refund requests")
def get_refund_requests(
    status: Optional[RefundRequestStatus] = Query(default=None),
    db: DataStore = Depends(get_store),
):
    return {"requests": [r.model_dump() for r in list_refund_requests(db, status)]}


@app.post("/api/v1/admin/voucher-refund-requests/{request_id}/approve", summary="Approve a refund request")
def post_approve(
    request_id: str,
    body: ApproveRefundRequestBody,
    db: DataStore = Depends(get_store),
    clock: Clock = Depends(get_clock),
):
    try:
        request = approve_refund_request(
            request_id, body.reviewer_id, db, message=body.message, now=clock.now(),
        )
    except ReconciliationError as exc:
        raise _http_error(exc)
    return request.model_dump()


@app.post("/api/v1/admin/voucher-refund-requests/{request_id}/reject", summary="Reject a refund request")
def post_reject(
    request_id: str,
    body: RejectRefundRequestBody,
    db: DataStore = Depends(get_store),
    clock: Clock = Depends(get_clock),
):
    try:
        request = reject_refund_request(
            request_id, body.reviewer_id, body.message, db, now=clock.now(),
        )
    except ReconciliationError as exc:
        raise _http_error(exc)
    return request.model_dump()


@app.get("/api/v1/admin/notifications", summary="Queued notifications")
def get_notifications(db: DataStore = Depends(get_store)):
    return {"notifications": [n.model_dump() for n in db.list_notifications()]}


@app.post("/api/v1/admin/seed", summary="Re-seed test data")
def reseed(db: DataStore = Depends(get_store)):
    from scripts.seed_data import seed
    db.clear()
    seed(db)
    return {
        "status": "seeded",
        "organizations": len(db.organizations),
        "customers": len(db.customers),
        "orders": len(db.orders),
    }
