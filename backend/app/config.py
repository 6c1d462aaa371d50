"""
Billing configuration.

Values come from environment variables (a .env file is honoured). The pure
billing and grouping modules never read the environment themselves; routers
and scripts build a BillingPolicy here and pass its fields through.
"""

import os
from dataclasses import dataclass
from decimal import Decimal, InvalidOperation

from dotenv import load_dotenv

load_dotenv()

DEFAULT_TIMEZONE = "America/New_York"
DEFAULT_GRACE_PERIOD_DAYS = 1
DEFAULT_DAILY_RATE = Decimal("2.00")
DEFAULT_ABANDONMENT_DAYS = 30
DEFAULT_WAIVE_REASON_MIN_LENGTH = 5


@dataclass(frozen=True)
class BillingPolicy:
    """Package storage fee policy for one mail center."""
    timezone: str = DEFAULT_TIMEZONE
    grace_period_days: int = DEFAULT_GRACE_PERIOD_DAYS
    daily_rate: Decimal = DEFAULT_DAILY_RATE
    abandonment_days: int = DEFAULT_ABANDONMENT_DAYS
    waive_reason_min_length: int = DEFAULT_WAIVE_REASON_MIN_LENGTH


def _int_env(name: str, default: int) -> int:
    raw = os.getenv(name, "").strip()
    if not raw:
        return default
    try:
        value = int(raw)
    except ValueError:
        raise ValueError(f"{name} must be an integer, got {raw!r}")
    if value < 0:
        raise ValueError(f"{name} must not be negative, got {value}")
    return value


def _decimal_env(name: str, default: Decimal) -> Decimal:
    raw = os.getenv(name, "").strip()
    if not raw:
        return default
    try:
        value = Decimal(raw)
    except InvalidOperation:
        raise ValueError(f"{name} must be a number, got {raw!r}")
    if value < 0:
        raise ValueError(f"{name} must not be negative, got {value}")
    return value


def get_billing_policy() -> BillingPolicy:
    """
    Build the active BillingPolicy from the environment.

    Recognised variables:
        BILLING_TIMEZONE          civil timezone for day boundaries
        FEE_GRACE_PERIOD_DAYS     free calendar days before fees accrue
        FEE_DAILY_RATE            charge per billable day
        FEE_ABANDONMENT_DAYS      days after which a package counts as abandoned
        WAIVE_REASON_MIN_LENGTH   minimum characters in a waive reason

    Raises:
        ValueError: if a numeric variable is malformed or negative.
    """
    return BillingPolicy(
        timezone=os.getenv("BILLING_TIMEZONE", "").strip() or DEFAULT_TIMEZONE,
        grace_period_days=_int_env("FEE_GRACE_PERIOD_DAYS", DEFAULT_GRACE_PERIOD_DAYS),
        daily_rate=_decimal_env("FEE_DAILY_RATE", DEFAULT_DAILY_RATE),
        abandonment_days=_int_env("FEE_ABANDONMENT_DAYS", DEFAULT_ABANDONMENT_DAYS),
        waive_reason_min_length=_int_env(
            "WAIVE_REASON_MIN_LENGTH", DEFAULT_WAIVE_REASON_MIN_LENGTH
        ),
    )
