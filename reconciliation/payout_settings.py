from datetime import datetime, timezone
from decimal import Decimal
from typing import Optional

import structlog

from reconciliation.errors import ValidationError
from reconciliation.models import PayoutSettings
from reconciliation.store import DataStore

logger = structlog.get_logger(__name__)


def update_payout_settings(
    store: DataStore,
    updated_by_id: str,
    *,
    default_platform_fee_percentage: Optional[Decimal] = None,
    minimum_payout_amount: Optional[Decimal] = None,
    monetary_refund_wait_days: Optional[int] = None,
    cutoff_day_of_week: Optional[int] = None,
    payout_day_of_week: Optional[int] = None,
    now: Optional[datetime] = None,
) -> PayoutSettings:
    """Patch the platform payout settings; ``None`` leaves a field unchanged."""
    if default_platform_fee_percentage is not None and not 0 <= default_platform_fee_percentage <= 100:
        raise ValidationError("Default platform fee percentage must be between 0 and 100")
    if minimum_payout_amount is not None and minimum_payout_amount < 0:
        raise ValidationError("Minimum payout amount must not be negative")
    if monetary_refund_wait_days is not None and monetary_refund_wait_days < 0:
        raise ValidationError("Monetary refund wait must not be negative")
    if cutoff_day_of_week is not None and not 0 <= cutoff_day_of_week <= 6:
        raise ValidationError("Cut-off day must be between 0 (Sunday) and 6 (Saturday)")
    if payout_day_of_week is not None and not 0 <= payout_day_of_week <= 6:
        raise ValidationError("Payout day must be between 0 (Sunday) and 6 (Saturday)")

    changes = {
        name: value
        for name, value in (
            ("default_platform_fee_percentage", default_platform_fee_percentage),
            ("minimum_payout_amount", minimum_payout_amount),
            ("monetary_refund_wait_days", monetary_refund_wait_days),
            ("cutoff_day_of_week", cutoff_day_of_week),
            ("payout_day_of_week", payout_day_of_week),
        )
        if value is not None
    }
    with store.unit_of_work():
        store.payout_settings = store.payout_settings.model_copy(update={
            **changes,
            "updated_at": now or datetime.now(timezone.utc),
            "updated_by_id": updated_by_id,
        })

    logger.info("payout_settings_updated", updated_by_id=updated_by_id, fields=sorted(changes))
    return store.payout_settings
