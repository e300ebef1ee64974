"""
Deterministic test-data generator.

Produces:
  - 3 organizations (default 15 % fee, one with a custom 10 % fee)
  - 40 customers and one admin reviewer (ADMIN-001)
  - 180 orders spread over the four weeks starting Wed 2026-01-07
    - ~80 % paid
    - ~10 % awaiting payment
    - ~10 % refunded before payout
  - ~15 % of paid orders used a small seller-funded voucher
"""

import random
from datetime import datetime, timedelta, timezone
from decimal import Decimal

from reconciliation.models import Customer, Order, Organization, PaymentStatus
from reconciliation.store import DataStore

SEED = 42
START = datetime(2026, 1, 7, tzinfo=timezone.utc)  # a Wednesday
END   = START + timedelta(weeks=4) - timedelta(seconds=1)

_FIRST_NAMES = ["Ana", "Ben", "Carla", "Diego", "Ella", "Fritz", "Gina", "Hugo", "Ines", "Jomar"]
_LAST_NAMES  = ["Reyes", "Santos", "Cruz", "Garcia", "Mendoza", "Bautista", "Ramos", "Aquino"]


def _rand_dt(rng: random.Random, lo: datetime = START, hi: datetime = END) -> datetime:
    delta = hi - lo
    secs = rng.randint(0, int(delta.total_seconds()))
    return lo + timedelta(seconds=secs)


def seed(store: DataStore) -> None:
    rng = random.Random(SEED)

    # ── organizations ────────────────────────────────────────────────────────
    orgs = [
        Organization(
            id="ORG-001",
            name="Kalye Threads",
            slug="kalye-threads",
            email="finance@kalyethreads.ph",
        ),
        Organization(
            id="ORG-002",
            name="Habi Weaves",
            slug="habi-weaves",
            email="accounts@habiweaves.ph",
            platform_fee_percentage=Decimal("10"),
        ),
        Organization(
            id="ORG-003",
            name="Isla Prints Collective",
            slug="isla-prints-collective",
            email="billing@islaprints.ph",
        ),
    ]
    for org in orgs:
        store.add_organization(org)

    # ── customers ────────────────────────────────────────────────────────────
    customer_ids: list[str] = []
    for n in range(1, 41):
        first = rng.choice(_FIRST_NAMES)
        last = rng.choice(_LAST_NAMES)
        cid = f"U-{n:03d}"
        customer_ids.append(cid)
        store.add_customer(Customer(
            id=cid,
            first_name=first,
            last_name=last,
            email=f"{first.lower()}.{last.lower()}{n}@example.com",
            phone=f"+63917{rng.randint(1_000_000, 9_999_999)}",
        ))
    store.add_customer(Customer(
        id="ADMIN-001",
        first_name="Platform",
        last_name="Admin",
        email="admin@platform.example",
        is_admin=True,
    ))

    # ── orders ───────────────────────────────────────────────────────────────
    total    = 180
    n_paid   = int(total * 0.80)  # 144
    n_unpaid = int(total * 0.10)  #  18
    # the rest were refunded before any payout ran

    for i in range(total):
        org = rng.choice(orgs)
        ordered_at = _rand_dt(rng)
        amount = Decimal(rng.randrange(250, 8_000)).quantize(Decimal("0.01"))
        voucher_discount = Decimal("0")
        voucher_code = None

        if i < n_paid:
            status = PaymentStatus.PAID
            paid_at = ordered_at + timedelta(minutes=rng.randint(1, 180))
            if rng.random() < 0.15:
                voucher_discount = Decimal(rng.choice([50, 100, 150]))
                voucher_code = rng.choice(["WELCOME50", "PAYDAY100", "SALE150"])
        elif i < n_paid + n_unpaid:
            status = PaymentStatus.PENDING
            paid_at = None
        else:
            status = PaymentStatus.REFUNDED
            paid_at = ordered_at + timedelta(minutes=rng.randint(1, 180))

        store.save_order(Order(
            id=f"O-{i + 1:04d}",
            organization_id=org.id,
            customer_id=rng.choice(customer_ids),
            order_number=f"ORD-2026{i + 1:05d}",
            order_date=ordered_at,
            paid_at=paid_at,
            payment_status=status,
            total_amount=amount,
            item_count=rng.randint(1, 4),
            voucher_discount_applied=voucher_discount,
            voucher_code=voucher_code,
            refunded_amount=amount if status == PaymentStatus.REFUNDED else Decimal("0"),
        ))
