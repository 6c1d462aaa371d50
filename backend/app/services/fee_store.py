"""
Supabase persistence for package fees.

The fee engine (app.services.fee_calc) decides what a fee should become;
this module writes it. Every state change is a conditional update on
fee_status = 'pending', so two staff members paying and waiving the same fee
at once cannot both succeed.
"""

import logging
from decimal import Decimal
from enum import Enum
from typing import Dict, Iterable, List, Optional, Tuple

from pydantic import ValidationError as PydanticValidationError

from app.config import BillingPolicy
from app.db import supabase_admin
from app.errors import InvalidStateError
from app.models.fee import Fee, FeeStatus, RecalculationFailure, RecalculationResult
from app.services.calendar_days import Instant, format_for_persistence, utc_now
from app.services.fee_calc import new_fee_record, recalculate_batch

logger = logging.getLogger(__name__)

FEE_SELECT = "*, mail_items (mail_item_id, received_date, status, item_type)"

STATE_FIELDS = {
    FeeStatus.PAID: ("fee_status", "paid_date", "payment_method", "collected_amount", "collected_by"),
    FeeStatus.WAIVED: ("fee_status", "waived_date", "waived_by", "waive_reason"),
}
RECALC_FIELDS = ("fee_amount", "days_charged", "last_calculated_at")


def fee_from_row(row: Dict) -> Fee:
    return Fee.model_validate(row)


def _db_value(value):
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, Decimal):
        return str(value)
    return value


def update_payload(fee: Fee, fields: Iterable[str]) -> Dict:
    """Column -> value dict for the given Fee fields, in DB-friendly types."""
    return {name: _db_value(getattr(fee, name)) for name in fields}


def create_fee_record(
    mail_item_id: str,
    contact_id: str,
    user_id: str,
    received: Instant,
    policy: BillingPolicy,
    as_of: Optional[Instant] = None,
) -> Fee:
    """
    Insert the pending fee for a newly logged package.

    Args:
        mail_item_id: the package's mail_items row.
        contact_id: customer the package belongs to.
        user_id: mail center account that owns the row.
        received: the package's received_date.
        policy: grace period, daily rate and timezone to snapshot on the fee.
        as_of: calculation time, defaults to now.

    Returns:
        The stored Fee.

    Raises:
        MalformedInstantError: if ``received`` cannot be parsed.
        Exception: if the insert returns no row.
    """
    payload = new_fee_record(mail_item_id, contact_id, user_id, received, policy, as_of)
    result = supabase_admin.table("package_fees").insert(payload).execute()
    if not result.data:
        raise Exception(f"Failed to create fee record for package {mail_item_id}")

    logger.info(f"Created fee record for package {mail_item_id}")
    return fee_from_row(result.data[0])


def get_fee_for_mail_item(mail_item_id: str) -> Optional[Fee]:
    """The fee attached to a mail item, or None if it has none."""
    result = (
        supabase_admin.table("package_fees")
        .select(FEE_SELECT)
        .eq("mail_item_id", mail_item_id)
        .execute()
    )
    if not result.data:
        return None
    return fee_from_row(result.data[0])


def persist_transition(fee: Fee) -> Fee:
    """
    Write a paid/waived fee, but only if the row is still pending.

    Raises:
        InvalidStateError: if the row was settled by someone else first.
    """
    payload = update_payload(fee, STATE_FIELDS[fee.fee_status])
    result = (
        supabase_admin.table("package_fees")
        .update(payload)
        .eq("fee_id", fee.fee_id)
        .eq("fee_status", FeeStatus.PENDING.value)
        .execute()
    )
    if not result.data:
        raise InvalidStateError("Fee not found or already processed")

    stored = fee_from_row(result.data[0])
    if stored.mail_items is None and fee.mail_items is not None:
        stored = stored.model_copy(update={"mail_items": fee.mail_items})
    return stored


def log_fee_action(
    mail_item_id: str,
    action_type: str,
    description: str,
    performed_by: str,
    notes: Optional[str] = None,
    as_of: Optional[Instant] = None,
) -> None:
    """
    Append an action_history row for a fee event.

    History is informational: a failed insert is logged and swallowed so the
    fee change it describes still goes through.
    """
    row = {
        "mail_item_id": mail_item_id,
        "action_type": action_type,
        "action_description": description,
        "notes": notes,
        "performed_by": performed_by,
        "action_timestamp": format_for_persistence(as_of if as_of is not None else utc_now()),
    }
    try:
        supabase_admin.table("action_history").insert(
            {k: v for k, v in row.items() if v is not None}
        ).execute()
    except Exception as e:
        logger.error(f"Failed to log {action_type} to action_history for {mail_item_id}: {e}")


def fetch_pending_fees(user_id: Optional[str] = None) -> Tuple[List[Fee], List[RecalculationFailure]]:
    """
    Load pending fees (all users, or one) with their mail items joined.

    Rows that don't fit the Fee model are returned as failures instead.
    """
    query = (
        supabase_admin.table("package_fees")
        .select(FEE_SELECT)
        .eq("fee_status", FeeStatus.PENDING.value)
    )
    if user_id:
        query = query.eq("user_id", user_id)
    rows = query.execute().data or []

    fees: List[Fee] = []
    failures: List[RecalculationFailure] = []
    for row in rows:
        try:
            fees.append(fee_from_row(row))
        except PydanticValidationError as e:
            logger.warning(f"Unreadable fee row {row.get('fee_id')}: {e}")
            failures.append(RecalculationFailure(fee_id=str(row.get("fee_id")), error=str(e)))
    return fees, failures


def recalculate_pending_fees(
    as_of: Instant,
    tz: str,
    user_id: Optional[str] = None,
    dry_run: bool = False,
) -> RecalculationResult:
    """
    Refresh days_charged / fee_amount of every pending fee as of ``as_of``.

    Used by POST /api/fees/recalculate (one user), the cron endpoint and the
    daily script (all users). A fee settled between read and write is left
    alone by the conditional update and counted as skipped.
    """
    fees, unreadable = fetch_pending_fees(user_id)
    failures = list(unreadable)
    logger.info(f"Found {len(fees)} pending package fees to update")

    batch = recalculate_batch(fees, as_of, tz=tz)
    failures.extend(
        RecalculationFailure(fee_id=fee_id, error=error) for fee_id, error in batch.errors.items()
    )

    updated = 0
    skipped = len(batch.skipped)
    for fee in batch.updated:
        if dry_run:
            updated += 1
            continue
        try:
            result = (
                supabase_admin.table("package_fees")
                .update(update_payload(fee, RECALC_FIELDS))
                .eq("fee_id", fee.fee_id)
                .eq("fee_status", FeeStatus.PENDING.value)
                .execute()
            )
        except Exception as e:
            logger.error(f"Error updating fee {fee.fee_id}: {e}")
            failures.append(RecalculationFailure(fee_id=fee.fee_id, error=str(e)))
            continue

        if result.data:
            logger.info(f"Updated fee {fee.fee_id}: ${fee.fee_amount} ({fee.days_charged} billable days)")
            updated += 1
        else:
            skipped += 1

    total = len(fees) + len(unreadable)
    logger.info(
        f"Fee update complete: {updated} updated, {skipped} skipped, "
        f"{len(failures)} errors, {total} total"
    )
    return RecalculationResult(
        updated=updated,
        skipped=skipped,
        errors=len(failures),
        total=total,
        failures=failures,
    )
