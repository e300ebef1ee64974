"""Request bodies for the HTTP API."""

from datetime import datetime
from decimal import Decimal
from typing import Optional

from pydantic import BaseModel, Field, field_validator

from reconciliation.clock import as_utc
from reconciliation.models import AdjustmentType, CancellationInitiator


class GenerateInvoiceRequest(BaseModel):
    organization_id: str
    period_start: datetime
    period_end: datetime

    @field_validator("period_start", "period_end")
    @classmethod
    def utc_period(cls, value: datetime) -> datetime:
        return as_utc(value)


class GenerateAllInvoicesRequest(BaseModel):
    # both omitted: the most recently completed weekly period
    period_start: Optional[datetime] = None
    period_end: Optional[datetime] = None

    @field_validator("period_start", "period_end")
    @classmethod
    def utc_period(cls, value: Optional[datetime]) -> Optional[datetime]:
        return as_utc(value) if value is not None else None


class MarkInvoicePaidRequest(BaseModel):
    paid_by_id: str
    payment_reference: Optional[str] = None
    payment_notes: Optional[str] = None


class UpdatePayoutSettingsRequest(BaseModel):
    updated_by_id: str
    default_platform_fee_percentage: Optional[Decimal] = Field(default=None, ge=0, le=100)
    minimum_payout_amount: Optional[Decimal] = Field(default=None, ge=0)
    monetary_refund_wait_days: Optional[int] = Field(default=None, ge=0)
    cutoff_day_of_week: Optional[int] = Field(default=None, ge=0, le=6)
    payout_day_of_week: Optional[int] = Field(default=None, ge=0, le=6)


class CancelOrderRequest(BaseModel):
    initiator: CancellationInitiator
    reason: str = Field(min_length=1)
    type: AdjustmentType = AdjustmentType.CANCELLATION
    amount: Optional[Decimal] = Field(default=None, gt=0)


class CreateRefundRequestBody(BaseModel):
    requested_by_id: str
    requested_amount: Optional[Decimal] = Field(default=None, gt=0)


class ApproveRefundRequestBody(BaseModel):
    reviewer_id: str
    message: Optional[str] = None


class RejectRefundRequestBody(BaseModel):
    reviewer_id: str
    message: str
