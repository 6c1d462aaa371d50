"""
Package storage fee engine.

Computes billable days from a package's receipt time, turns them into a fee
amount, and applies the pending -> paid / pending -> waived transitions.
Everything here is pure: fees go in, new fees come out, and the caller
persists them (with a conditional update on fee_status = 'pending').

Business rules (defaults, see app.config.BillingPolicy):
- Day 0 is the arrival day; the first ``grace_period_days`` days are free
- Each billable day after that costs ``daily_rate``
- A package sitting ``abandonment_days`` or more is considered abandoned
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from typing import Dict, Iterable, List, Optional, Union

from app.config import DEFAULT_TIMEZONE, DEFAULT_WAIVE_REASON_MIN_LENGTH, BillingPolicy
from app.errors import InvalidStateError, MalformedInstantError, ValidationError
from app.models.fee import Fee, FeeStatus, PaymentMethod, RevenueStats
from app.services.calendar_days import (
    Instant,
    calendar_days_elapsed,
    format_for_persistence,
    parse_instant,
    utc_now,
)

logger = logging.getLogger(__name__)

CENT = Decimal("0.01")
PICKED_UP = "Picked Up"


# ---------------------------------------------------------------------------
# Day and amount calculation
# ---------------------------------------------------------------------------

def _to_decimal(value, name: str) -> Decimal:
    """Parse a money value, raising ValidationError for anything not a finite number."""
    try:
        amount = Decimal(str(value))
    except InvalidOperation:
        raise ValidationError(f"{name} must be a number, got {value!r}")
    if not amount.is_finite():
        raise ValidationError(f"{name} must be a finite number, got {value!r}")
    return amount


def compute_days_charged(
    received: Instant,
    as_of: Instant,
    grace_period_days: int,
    tz: str = DEFAULT_TIMEZONE,
) -> int:
    """
    Billable days: calendar days elapsed in ``tz`` minus the grace period.

    Never negative, including when ``as_of`` is earlier than ``received``.

    Raises:
        ValidationError: if grace_period_days is negative.
        MalformedInstantError: if either timestamp cannot be parsed.
    """
    if grace_period_days < 0:
        raise ValidationError(f"grace_period_days must not be negative, got {grace_period_days}")
    elapsed = calendar_days_elapsed(received, as_of, tz)
    return max(0, elapsed - grace_period_days)


def compute_fee_amount(days_charged: int, daily_rate: Union[Decimal, str, int, float]) -> Decimal:
    """
    Fee for ``days_charged`` billable days at ``daily_rate``, rounded half-up to cents.

    Raises:
        ValidationError: if days_charged or daily_rate is negative, or the
            rate is not a finite number.
    """
    rate = _to_decimal(daily_rate, "daily_rate")
    if days_charged < 0:
        raise ValidationError(f"days_charged must not be negative, got {days_charged}")
    if rate < 0:
        raise ValidationError(f"daily_rate must not be negative, got {rate}")
    return (Decimal(days_charged) * rate).quantize(CENT, rounding=ROUND_HALF_UP)


@dataclass
class FeeCalculation:
    """Result of pricing one package as of a given instant."""
    days_elapsed: int
    days_charged: int
    fee_amount: Decimal


def calculate_fee_for_package(
    received: Instant,
    as_of: Instant,
    grace_period_days: int,
    daily_rate: Decimal,
    tz: str = DEFAULT_TIMEZONE,
) -> FeeCalculation:
    """Combine compute_days_charged() and compute_fee_amount() for one package."""
    days_elapsed = calendar_days_elapsed(received, as_of, tz)
    days_charged = compute_days_charged(received, as_of, grace_period_days, tz)
    return FeeCalculation(
        days_elapsed=max(0, days_elapsed),
        days_charged=days_charged,
        fee_amount=compute_fee_amount(days_charged, daily_rate),
    )


def is_abandoned(
    received: Instant,
    as_of: Instant,
    abandonment_days: int,
    tz: str = DEFAULT_TIMEZONE,
) -> bool:
    """True once a package has sat ``abandonment_days`` calendar days or more."""
    return calendar_days_elapsed(received, as_of, tz) >= abandonment_days


def new_fee_record(
    mail_item_id: str,
    contact_id: str,
    user_id: str,
    received: Instant,
    policy: BillingPolicy,
    as_of: Optional[Instant] = None,
) -> Dict:
    """
    Insert payload for the fee of a newly logged package.

    Back-dated packages start with the fee they have already accrued rather
    than at $0.
    """
    as_of = as_of if as_of is not None else utc_now()
    calc = calculate_fee_for_package(
        received, as_of, policy.grace_period_days, policy.daily_rate, policy.timezone
    )
    return {
        "mail_item_id": mail_item_id,
        "contact_id": contact_id,
        "user_id": user_id,
        "fee_amount": str(calc.fee_amount),
        "days_charged": calc.days_charged,
        "daily_rate": str(policy.daily_rate),
        "grace_period_days": policy.grace_period_days,
        "fee_status": FeeStatus.PENDING.value,
        "last_calculated_at": format_for_persistence(as_of, policy.timezone),
    }


# ---------------------------------------------------------------------------
# State transitions
# ---------------------------------------------------------------------------

def _require_pending(fee: Fee, action: str) -> None:
    if fee.fee_status != FeeStatus.PENDING:
        raise InvalidStateError(
            f"Cannot {action} fee {fee.fee_id}: fee is already {fee.fee_status.value}"
        )


def mark_paid(
    fee: Fee,
    payment_method: Union[PaymentMethod, str] = PaymentMethod.CASH,
    collected_amount: Optional[Union[Decimal, str, int, float]] = None,
    collected_by: Optional[str] = None,
    as_of: Optional[Instant] = None,
    tz: str = DEFAULT_TIMEZONE,
) -> Fee:
    """
    Return a copy of ``fee`` settled as paid.

    ``collected_amount`` is recorded verbatim, without rounding, when staff
    applied a discount; whether a discount is reasonable is the caller's
    call. fee_amount is left untouched so the accrued charge stays visible
    next to what was taken.

    Raises:
        InvalidStateError: if the fee is not pending.
        ValidationError: on an unknown payment method, or a collected_amount
            that is negative or not a number.
    """
    _require_pending(fee, "pay")

    try:
        method = PaymentMethod(payment_method)
    except ValueError:
        valid = ", ".join(m.value for m in PaymentMethod)
        raise ValidationError(f"Invalid payment method. Valid options: {valid}")

    amount = None
    if collected_amount is not None:
        amount = _to_decimal(collected_amount, "collected_amount")
        if amount < 0:
            raise ValidationError(f"collected_amount must not be negative, got {amount}")

    paid_at = as_of if as_of is not None else utc_now()
    return fee.model_copy(update={
        "fee_status": FeeStatus.PAID,
        "paid_date": format_for_persistence(paid_at, tz),
        "payment_method": method,
        "collected_amount": amount,
        "collected_by": collected_by,
    })


def waive(
    fee: Fee,
    reason: Optional[str],
    waived_by: Optional[str] = None,
    as_of: Optional[Instant] = None,
    tz: str = DEFAULT_TIMEZONE,
    min_reason_length: int = DEFAULT_WAIVE_REASON_MIN_LENGTH,
) -> Fee:
    """
    Return a copy of ``fee`` forgiven with a recorded reason.

    Raises:
        ValidationError: if the trimmed reason is empty or too short.
        InvalidStateError: if the fee is not pending.
    """
    cleaned = (reason or "").strip()
    if not cleaned:
        raise ValidationError("Waive reason is required")
    if len(cleaned) < min_reason_length:
        raise ValidationError(f"Waive reason must be at least {min_reason_length} characters")

    _require_pending(fee, "waive")

    waived_at = as_of if as_of is not None else utc_now()
    return fee.model_copy(update={
        "fee_status": FeeStatus.WAIVED,
        "waived_date": format_for_persistence(waived_at, tz),
        "waived_by": waived_by,
        "waive_reason": cleaned,
    })


def recalculate(
    fee: Fee,
    as_of: Instant,
    received: Optional[Instant] = None,
    tz: str = DEFAULT_TIMEZONE,
) -> Fee:
    """
    Bring a pending fee's snapshot up to ``as_of``.

    Paid and waived fees are historical and come back unchanged, as do fees
    whose package was already picked up (the debt stops growing at pickup).
    The fee's own daily_rate and grace_period_days are used so a policy
    change never re-prices fees that were created under the old one.

    ``received`` defaults to the joined mail item's received_date.

    Raises:
        ValidationError: if no received timestamp is available.
        MalformedInstantError: if it cannot be parsed.
    """
    if fee.fee_status != FeeStatus.PENDING:
        return fee
    if fee.mail_items is not None and fee.mail_items.status == PICKED_UP:
        return fee

    if received is None:
        if fee.mail_items is None:
            raise ValidationError(f"Fee {fee.fee_id} has no received_date to recalculate from")
        received = fee.mail_items.received_date

    calc = calculate_fee_for_package(
        received, as_of, fee.grace_period_days, fee.daily_rate, tz
    )
    return fee.model_copy(update={
        "days_charged": calc.days_charged,
        "fee_amount": calc.fee_amount,
        "last_calculated_at": format_for_persistence(as_of, tz),
    })


@dataclass
class BatchRecalculation:
    """Outcome of recalculating many fees; one bad row never aborts the rest."""
    updated: List[Fee] = field(default_factory=list)
    skipped: List[str] = field(default_factory=list)
    errors: Dict[str, str] = field(default_factory=dict)

    @property
    def total(self) -> int:
        return len(self.updated) + len(self.skipped) + len(self.errors)


def recalculate_batch(
    fees: Iterable[Fee],
    as_of: Instant,
    tz: str = DEFAULT_TIMEZONE,
) -> BatchRecalculation:
    """
    Recalculate every fee, collecting per-fee errors instead of raising.

    A fee lands in ``skipped`` when recalculation leaves it as it was
    (settled, or its package already picked up).
    """
    result = BatchRecalculation()
    for fee in fees:
        try:
            new_fee = recalculate(fee, as_of, tz=tz)
        except (MalformedInstantError, ValidationError) as exc:
            logger.warning(f"Skipping fee {fee.fee_id} during recalculation: {exc}")
            result.errors[fee.fee_id] = str(exc)
            continue

        if new_fee is fee:
            result.skipped.append(fee.fee_id)
        else:
            result.updated.append(new_fee)
    return result


# ---------------------------------------------------------------------------
# Aggregation
# ---------------------------------------------------------------------------

def settled_amount(fee: Fee) -> Decimal:
    """
    The amount a fee stands for in reports.

    Pending and waived fees are worth their fee_amount (owed or forgiven);
    paid fees are worth what was actually collected, falling back to
    fee_amount when no separate collection amount was recorded.
    """
    if fee.fee_status == FeeStatus.PAID and fee.collected_amount is not None:
        return fee.collected_amount
    return fee.fee_amount


def sum_outstanding(fees: Iterable[Fee]) -> Decimal:
    """Total fee_amount across pending fees."""
    total = sum(
        (fee.fee_amount for fee in fees if fee.fee_status == FeeStatus.PENDING),
        Decimal("0"),
    )
    return total.quantize(CENT, rounding=ROUND_HALF_UP)


def sum_by_contact(
    fees: Iterable[Fee],
    status: Optional[FeeStatus] = FeeStatus.PENDING,
) -> Dict[str, Decimal]:
    """
    Per-contact totals of settled_amount().

    Defaults to pending fees (what each customer owes); pass
    ``status=FeeStatus.PAID`` for collected revenue per customer or
    ``status=None`` for every fee except waived ones.
    """
    totals: Dict[str, Decimal] = {}
    for fee in fees:
        if fee.contact_id is None:
            continue
        if status is None:
            if fee.fee_status == FeeStatus.WAIVED:
                continue
        elif fee.fee_status != status:
            continue
        totals[fee.contact_id] = totals.get(fee.contact_id, Decimal("0")) + settled_amount(fee)
    return {cid: amount.quantize(CENT, rounding=ROUND_HALF_UP) for cid, amount in totals.items()}


def revenue_stats(
    fees: Iterable[Fee],
    paid_from: Optional[datetime] = None,
    paid_to: Optional[datetime] = None,
    tz: str = DEFAULT_TIMEZONE,
) -> RevenueStats:
    """
    Revenue, outstanding and waived totals across ``fees``.

    ``paid_from`` / ``paid_to`` restrict which paid fees count as revenue
    (inclusive, compared on paid_date). Pending and waived totals are never
    date-filtered.
    """
    paid_total = Decimal("0")
    pending_total = Decimal("0")
    waived_total = Decimal("0")
    paid_count = pending_count = waived_count = 0

    for fee in fees:
        if fee.fee_status == FeeStatus.PAID:
            if paid_from is not None or paid_to is not None:
                if not fee.paid_date:
                    continue
                paid_at = parse_instant(fee.paid_date, tz)
                if paid_from is not None and paid_at < paid_from:
                    continue
                if paid_to is not None and paid_at > paid_to:
                    continue
            paid_total += settled_amount(fee)
            paid_count += 1
        elif fee.fee_status == FeeStatus.PENDING:
            pending_total += fee.fee_amount
            pending_count += 1
        else:
            waived_total += fee.fee_amount
            waived_count += 1

    return RevenueStats(
        total_revenue=paid_total.quantize(CENT, rounding=ROUND_HALF_UP),
        outstanding_fees=pending_total.quantize(CENT, rounding=ROUND_HALF_UP),
        waived_fees=waived_total.quantize(CENT, rounding=ROUND_HALF_UP),
        paid_count=paid_count,
        pending_count=pending_count,
        waived_count=waived_count,
    )
