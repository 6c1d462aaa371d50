"""
Grouped mail log endpoints.

The mail log shows one row per customer, day and item type; a customer's
profile shows one row per day and item type. Both read mail_items and
group them with app.services.mail_grouping.
"""

import logging
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException

from app.auth import get_current_user, verify_contact_ownership
from app.config import BillingPolicy, get_billing_policy
from app.db import supabase_admin as supabase
from app.errors import MailCenterError
from app.models.mail_item import ContactGroupedMailItemsResponse, GroupedMailItemsResponse
from app.services.calendar_days import (
    days_ago_as_calendar_day,
    end_of_calendar_day,
    format_for_persistence,
    now_as_calendar_day,
    start_of_calendar_day,
)
from app.services.mail_grouping import count_by_type, group_mail_items, group_mail_items_simple

logger = logging.getLogger(__name__)

router = APIRouter()

MAIL_ITEM_SELECT = (
    "mail_item_id, contact_id, item_type, status, received_date, quantity, description, "
    "contacts (contact_id, contact_person, company_name, mailbox_number)"
)

# Mail log default window when no dates are given
DEFAULT_LOOKBACK_DAYS = 30


@router.get("/grouped", response_model=GroupedMailItemsResponse)
async def get_grouped_mail_items(
    start_date: Optional[str] = None,
    end_date: Optional[str] = None,
    contact_id: Optional[str] = None,
    user_id: str = Depends(get_current_user),
    policy: BillingPolicy = Depends(get_billing_policy),
) -> GroupedMailItemsResponse:
    """
    Mail log grouped by customer, calendar day and item type.

    Query parameters (``YYYY-MM-DD`` in the mail center's timezone):
    - **start_date**: first day to include (default: 30 days ago)
    - **end_date**: last day to include, inclusive (default: today)
    - **contact_id**: restrict to one customer

    Rows with unreadable timestamps are left out and listed under ``skipped``.
    """
    tz = policy.timezone
    try:
        start_day = start_date or days_ago_as_calendar_day(DEFAULT_LOOKBACK_DAYS, tz)
        end_day = end_date or now_as_calendar_day(tz)
        range_start = format_for_persistence(start_of_calendar_day(start_day, tz), tz)
        range_end = format_for_persistence(end_of_calendar_day(end_day, tz), tz)
    except MailCenterError as e:
        raise HTTPException(status_code=422, detail=str(e))

    query = (
        supabase.table("mail_items")
        .select(MAIL_ITEM_SELECT)
        .eq("user_id", user_id)
        .gte("received_date", range_start)
        .lte("received_date", range_end)
    )
    if contact_id:
        query = query.eq("contact_id", contact_id)
    rows = query.execute().data or []

    result = group_mail_items(rows, tz=tz)
    if result.errors:
        logger.warning(f"Skipped {len(result.errors)} mail items while grouping for user {user_id}")

    return GroupedMailItemsResponse(
        groups=result.groups,
        counts_by_type=count_by_type(result.groups),
        skipped=result.errors,
    )


@router.get("/contact/{contact_id}/grouped", response_model=ContactGroupedMailItemsResponse)
async def get_contact_grouped_mail_items(
    contact_id: str,
    user_id: str = Depends(get_current_user),
    policy: BillingPolicy = Depends(get_billing_policy),
) -> ContactGroupedMailItemsResponse:
    """
    A single customer's mail history grouped by calendar day and item type,
    most recent day first.

    Requires authentication. User must own the contact.
    """
    await verify_contact_ownership(contact_id, user_id)

    rows = (
        supabase.table("mail_items")
        .select(MAIL_ITEM_SELECT)
        .eq("contact_id", contact_id)
        .execute()
    ).data or []

    result = group_mail_items_simple(rows, tz=policy.timezone)
    return ContactGroupedMailItemsResponse(
        contact_id=contact_id,
        groups=result.groups,
        counts_by_type=count_by_type(result.groups),
        skipped=result.errors,
    )
