"""Shared builders for the test modules."""

from datetime import datetime, timedelta, timezone
from decimal import Decimal
from typing import Optional

from reconciliation.config import Settings
from reconciliation.models import (
    CancellationInitiator,
    Customer,
    DiscountType,
    Order,
    Organization,
    PaymentStatus,
    Voucher,
)
from reconciliation.store import DataStore

T0 = datetime(2026, 1, 7, tzinfo=timezone.utc)  # a Wednesday
END_OF_WEEK = timedelta(days=7) - timedelta(microseconds=1)

WEEK1 = (T0, T0 + END_OF_WEEK)
WEEK2 = (T0 + timedelta(days=7), T0 + timedelta(days=7) + END_OF_WEEK)
WEEK3 = (T0 + timedelta(days=14), T0 + timedelta(days=14) + END_OF_WEEK)

ORG = "ORG-1"
CUSTOMER = "U-1"
ADMIN = "ADMIN-1"


def day(n: float) -> datetime:
    return T0 + timedelta(days=n)


def make_store(**settings) -> DataStore:
    store = DataStore(settings=Settings(env="test", log_level="WARNING", **settings))
    store.add_organization(Organization(
        id=ORG,
        name="Acme Goods",
        slug="acme-goods",
        email="finance@acme.example",
    ))
    store.add_customer(Customer(
        id=CUSTOMER,
        first_name="Maria",
        last_name="Santos",
        email="maria@example.com",
        phone="+639170000001",
    ))
    store.add_customer(Customer(
        id=ADMIN,
        first_name="Ana",
        last_name="Reyes",
        email="ana.reyes@platform.example",
        is_admin=True,
    ))
    return store


def order(
    id: str,
    amount,
    paid_at: Optional[datetime] = None,
    *,
    org: str = ORG,
    customer: str = CUSTOMER,
    status: PaymentStatus = PaymentStatus.PAID,
    voucher_discount=0,
    refunded=0,
) -> Order:
    paid_at = paid_at or day(1)
    return Order(
        id=id,
        organization_id=org,
        customer_id=customer,
        order_number=f"ORD-{id}",
        order_date=paid_at - timedelta(hours=1),
        paid_at=paid_at if status != PaymentStatus.PENDING else None,
        payment_status=status,
        total_amount=Decimal(str(amount)) if amount is not None else None,
        voucher_discount_applied=Decimal(str(voucher_discount)),
        refunded_amount=Decimal(str(refunded)),
    )


def voucher(
    *,
    initiator: Optional[CancellationInitiator] = CancellationInitiator.SELLER,
    issued_at: datetime = T0,
    eligible_after_days: Optional[int] = 14,
    value="1000",
    used_count: int = 0,
    is_active: bool = True,
    valid_until: Optional[datetime] = None,
    assigned_to: str = CUSTOMER,
) -> Voucher:
    eligible_at = None
    if initiator == CancellationInitiator.SELLER and eligible_after_days is not None:
        eligible_at = issued_at + timedelta(days=eligible_after_days)
    return Voucher(
        id="vch_test",
        code="REFUND-TEST01",
        name="Refund Voucher - Order ORD-1",
        discount_type=DiscountType.REFUND,
        discount_value=Decimal(value),
        assigned_to_user_id=assigned_to,
        cancellation_initiator=initiator,
        source_order_id="O-1",
        monetary_refund_eligible_at=eligible_at,
        usage_limit=1,
        used_count=used_count,
        is_active=is_active,
        valid_from=issued_at,
        valid_until=valid_until,
        created_at=issued_at,
    )
