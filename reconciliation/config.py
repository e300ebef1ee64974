import os
from decimal import Decimal

from pydantic import BaseModel, Field

_PREFIX = "RECONCILIATION_"

# Log level per environment when LOG_LEVEL is not set explicitly
_LEVELS = {
    "production": "INFO",
    "staging": "INFO",
    "development": "DEBUG",
    "test": "WARNING",
}


class Settings(BaseModel):
    env: str = "development"
    log_level: str = "INFO"

    default_platform_fee_percentage: Decimal = Field(default=Decimal("15"), ge=0, le=100)
    minimum_payout_amount: Decimal = Field(default=Decimal("0"), ge=0)
    monetary_refund_wait_days: int = Field(default=14, ge=0)

    # 0=Sunday … 6=Saturday
    cutoff_day_of_week: int = Field(default=3, ge=0, le=6)
    payout_day_of_week: int = Field(default=5, ge=0, le=6)

    @classmethod
    def from_env(cls) -> "Settings":
        env = (os.getenv(f"{_PREFIX}ENV") or os.getenv("ENVIRONMENT") or "development").lower()
        values: dict = {
            "env": env,
            "log_level": os.getenv(f"{_PREFIX}LOG_LEVEL", _LEVELS.get(env, "INFO")),
        }
        for name in (
            "default_platform_fee_percentage",
            "minimum_payout_amount",
            "monetary_refund_wait_days",
            "cutoff_day_of_week",
            "payout_day_of_week",
        ):
            raw = os.getenv(f"{_PREFIX}{name.upper()}")
            if raw is not None:
                values[name] = raw
        return cls(**values)


settings = Settings.from_env()
