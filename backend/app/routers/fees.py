"""
Package storage fee API endpoints.
"""

import logging
from decimal import Decimal
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException

from app.auth import get_current_user, verify_cron_secret, verify_fee_ownership
from app.config import BillingPolicy, get_billing_policy
from app.db import supabase_admin as supabase
from app.errors import InvalidStateError, MalformedInstantError, MailCenterError
from app.models.fee import (
    ContactBalance,
    Fee,
    FeeActionResponse,
    FeePayRequest,
    FeeStatus,
    FeeWaiveRequest,
    RecalculationResult,
    RevenueStats,
)
from app.services.calendar_days import end_of_calendar_day, start_of_calendar_day, utc_now
from app.services.fee_calc import (
    mark_paid,
    revenue_stats,
    settled_amount,
    sum_by_contact,
    waive,
)
from app.services.fee_store import (
    FEE_SELECT,
    fee_from_row,
    get_fee_for_mail_item,
    log_fee_action,
    persist_transition,
    recalculate_pending_fees,
)

logger = logging.getLogger(__name__)

router = APIRouter()

FEE_WITH_CONTACT_SELECT = (
    FEE_SELECT + ", contacts (contact_id, contact_person, company_name, mailbox_number)"
)


def to_http_error(exc: MailCenterError) -> HTTPException:
    """Map a domain error onto the status code the frontend expects."""
    if isinstance(exc, InvalidStateError):
        return HTTPException(status_code=409, detail=str(exc))
    if isinstance(exc, MalformedInstantError):
        return HTTPException(status_code=422, detail=str(exc))
    return HTTPException(status_code=400, detail=str(exc))


@router.get("/", response_model=List[Fee])
async def list_fees(user_id: str = Depends(get_current_user)):
    """All fees for the authenticated user, newest first."""
    result = (
        supabase.table("package_fees")
        .select(FEE_WITH_CONTACT_SELECT)
        .eq("user_id", user_id)
        .order("created_at", desc=True)
        .execute()
    )
    return [fee_from_row(row) for row in (result.data or [])]


@router.get("/outstanding", response_model=List[Fee])
async def list_outstanding_fees(user_id: str = Depends(get_current_user)):
    """
    Pending fees, highest amount first.

    Amounts are the stored snapshot from the last recalculation (daily cron
    or POST /recalculate); reading does not re-price them.
    """
    result = (
        supabase.table("package_fees")
        .select(FEE_WITH_CONTACT_SELECT)
        .eq("user_id", user_id)
        .eq("fee_status", FeeStatus.PENDING.value)
        .order("fee_amount", desc=True)
        .execute()
    )
    return [fee_from_row(row) for row in (result.data or [])]


@router.get("/revenue", response_model=RevenueStats)
async def get_revenue_stats(
    start_date: Optional[str] = None,
    end_date: Optional[str] = None,
    user_id: str = Depends(get_current_user),
    policy: BillingPolicy = Depends(get_billing_policy),
) -> RevenueStats:
    """
    Revenue collected, outstanding and waived totals.

    Query parameters (optional, ``YYYY-MM-DD`` in the mail center's timezone):
    - **start_date**: count payments from the start of this day
    - **end_date**: count payments through the end of this day

    Paid fees count what was actually collected when a discount was applied.
    """
    try:
        paid_from = start_of_calendar_day(start_date, policy.timezone) if start_date else None
        paid_to = end_of_calendar_day(end_date, policy.timezone) if end_date else None
    except MailCenterError as e:
        raise to_http_error(e)

    result = (
        supabase.table("package_fees")
        .select("*")
        .eq("user_id", user_id)
        .execute()
    )
    fees = [fee_from_row(row) for row in (result.data or [])]
    return revenue_stats(fees, paid_from=paid_from, paid_to=paid_to, tz=policy.timezone)


@router.get("/unpaid/{contact_id}", response_model=ContactBalance)
async def get_unpaid_fees_for_contact(
    contact_id: str,
    user_id: str = Depends(get_current_user),
) -> ContactBalance:
    """Pending fees one customer owes, including packages already picked up."""
    result = (
        supabase.table("package_fees")
        .select(FEE_SELECT)
        .eq("user_id", user_id)
        .eq("contact_id", contact_id)
        .eq("fee_status", FeeStatus.PENDING.value)
        .execute()
    )
    fees = [fee_from_row(row) for row in (result.data or [])]
    total = sum_by_contact(fees).get(contact_id, Decimal("0.00"))
    return ContactBalance(contact_id=contact_id, total_owed=total, fees=fees)


@router.get("/mail-item/{mail_item_id}", response_model=Fee)
async def get_fee_for_package(
    mail_item_id: str,
    user_id: str = Depends(get_current_user),
) -> Fee:
    """The storage fee attached to a package. 404 if it has none."""
    fee = get_fee_for_mail_item(mail_item_id)
    if fee is None or fee.user_id != user_id:
        raise HTTPException(status_code=404, detail="No fee found for this mail item")
    return fee


@router.post("/recalculate", response_model=RecalculationResult)
async def recalculate_fees(
    user_id: str = Depends(get_current_user),
    policy: BillingPolicy = Depends(get_billing_policy),
) -> RecalculationResult:
    """Re-price the authenticated user's pending fees as of now."""
    logger.info(f"Manual fee recalculation triggered by user {user_id}")
    return recalculate_pending_fees(utc_now(), policy.timezone, user_id=user_id)


@router.post(
    "/cron/update",
    response_model=RecalculationResult,
    dependencies=[Depends(verify_cron_secret)],
)
async def cron_update_fees(
    policy: BillingPolicy = Depends(get_billing_policy),
) -> RecalculationResult:
    """
    Daily scheduler hook: re-price pending fees for every user.

    Requires the ``X-Cron-Secret`` header to match CRON_SECRET.
    """
    logger.info("Daily cron job triggered - updating all package fees")
    result = recalculate_pending_fees(utc_now(), policy.timezone)
    return result.model_copy(update={"message": "Daily fee update complete"})


@router.post(
    "/{fee_id}/pay",
    response_model=FeeActionResponse,
    responses={
        400: {"description": "Invalid payment method or amount"},
        403: {"description": "Authenticated user does not own this fee"},
        404: {"description": "Fee not found"},
        409: {"description": "Fee is already paid or waived"},
    },
)
async def pay_fee(
    fee_id: str,
    body: FeePayRequest,
    user_id: str = Depends(get_current_user),
    policy: BillingPolicy = Depends(get_billing_policy),
) -> FeeActionResponse:
    """
    Mark a fee as paid.

    ``collected_amount`` may differ from the accrued fee_amount when staff
    give a discount; it is stored alongside, not in place of, fee_amount.
    """
    row = await verify_fee_ownership(fee_id, user_id)
    fee = fee_from_row(row)

    try:
        paid = mark_paid(
            fee,
            payment_method=body.payment_method,
            collected_amount=body.collected_amount,
            collected_by=body.collected_by,
            tz=policy.timezone,
        )
        stored = persist_transition(paid)
    except MailCenterError as e:
        raise to_http_error(e)

    amount = settled_amount(stored)
    method = paid.payment_method.value
    logger.info(f"Marked fee {fee_id} as paid: ${amount} via {method}")
    return FeeActionResponse(
        message=f"Collected ${amount:.2f} via {method}",
        fee=stored,
    )


@router.post(
    "/{fee_id}/waive",
    response_model=FeeActionResponse,
    responses={
        400: {"description": "Waive reason missing or too short"},
        403: {"description": "Authenticated user does not own this fee"},
        404: {"description": "Fee not found"},
        409: {"description": "Fee is already paid or waived"},
    },
)
async def waive_fee(
    fee_id: str,
    body: FeeWaiveRequest,
    user_id: str = Depends(get_current_user),
    policy: BillingPolicy = Depends(get_billing_policy),
) -> FeeActionResponse:
    """Forgive a pending fee. A reason of at least a few characters is required."""
    row = await verify_fee_ownership(fee_id, user_id)
    fee = fee_from_row(row)

    try:
        waived = waive(
            fee,
            body.reason,
            waived_by=user_id,
            tz=policy.timezone,
            min_reason_length=policy.waive_reason_min_length,
        )
        stored = persist_transition(waived)
    except MailCenterError as e:
        raise to_http_error(e)

    logger.info(f"Waived fee {fee_id}: ${stored.fee_amount} - Reason: {stored.waive_reason}")
    log_fee_action(
        mail_item_id=stored.mail_item_id,
        action_type="Fee Waived",
        description=f"Waived ${stored.fee_amount:.2f} storage fee",
        notes=f"Reason: {stored.waive_reason}",
        performed_by=user_id,
    )
    return FeeActionResponse(message=f"Waived ${stored.fee_amount:.2f} fee", fee=stored)
