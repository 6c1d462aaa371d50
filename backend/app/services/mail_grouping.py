"""
Mail item grouping.

Collapses raw mail_items rows into one row per (customer, calendar day, item
type) for the mail log, or per (calendar day, item type) for a single
customer's profile. Calendar days are taken in the mail center's civil
timezone, never from the UTC date in the stored timestamp.

Grouping is a pure function of its input: order of the incoming rows does not
change the groups, their members, or the status shown for them.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Dict, Iterable, List, Optional, Tuple, Union

from pydantic import ValidationError as PydanticValidationError

from app.config import DEFAULT_TIMEZONE
from app.errors import MalformedInstantError, ValidationError
from app.models.mail_item import (
    GroupingFailure,
    MailItem,
    MailItemGroup,
    SimpleMailItemGroup,
)
from app.services.calendar_days import format_for_persistence, parse_instant, to_calendar_day

logger = logging.getLogger(__name__)

# Shown first-to-last inside "Mixed (...)"; anything unlisted sorts after, alphabetically
STATUS_PRIORITY: List[str] = [
    "Picked Up",
    "Notified",
    "Received",
    "Forwarded",
    "Scanned & Sent",
    "Abandoned",
]

MailItemInput = Union[MailItem, Dict]


@dataclass
class GroupingResult:
    """Groups built from the valid rows plus one failure per rejected row."""
    groups: List = field(default_factory=list)
    errors: List[GroupingFailure] = field(default_factory=list)


@dataclass(frozen=True)
class _Entry:
    item: MailItem
    received_at: datetime
    calendar_day: str
    quantity: int

    @property
    def sort_key(self) -> Tuple[datetime, str]:
        # mail_item_id breaks ties between identical timestamps
        return (self.received_at, self.item.mail_item_id)


def status_sort_key(status: str) -> Tuple[int, str]:
    try:
        return (STATUS_PRIORITY.index(status), "")
    except ValueError:
        return (len(STATUS_PRIORITY), status)


def display_status(statuses: Iterable[str]) -> str:
    """
    The single shared status, or ``"Mixed (a, b, ...)"`` in priority order.
    """
    ordered = sorted(set(statuses), key=status_sort_key)
    if len(ordered) == 1:
        return ordered[0]
    return f"Mixed ({', '.join(ordered)})"


def item_quantity(quantity: Optional[int]) -> int:
    """
    Effective quantity of a row: missing (or legacy 0) counts as one item.

    Raises:
        ValidationError: if the quantity is negative.
    """
    if quantity is None or quantity == 0:
        return 1
    if quantity < 0:
        raise ValidationError(f"quantity must not be negative, got {quantity}")
    return quantity


def _has_text(value: Optional[str]) -> bool:
    return bool(value and value.strip())


def _prepare(
    items: Iterable[MailItemInput],
    tz: str,
    strict: bool,
) -> Tuple[List[_Entry], List[GroupingFailure]]:
    """Validate rows and project each onto its calendar day."""
    entries: List[_Entry] = []
    errors: List[GroupingFailure] = []

    for raw in items:
        mail_item_id = raw.get("mail_item_id") if isinstance(raw, dict) else getattr(raw, "mail_item_id", None)
        try:
            item = raw if isinstance(raw, MailItem) else MailItem.model_validate(raw)
            received_at = parse_instant(item.received_date, tz)
            entries.append(_Entry(
                item=item,
                received_at=received_at,
                calendar_day=to_calendar_day(received_at, tz),
                quantity=item_quantity(item.quantity),
            ))
        except (MalformedInstantError, ValidationError, PydanticValidationError) as exc:
            if strict:
                raise
            logger.warning(f"Skipping mail item {mail_item_id} while grouping: {exc}")
            errors.append(GroupingFailure(mail_item_id=mail_item_id, error=str(exc)))

    return entries, errors


def _bucket(entries: List[_Entry], key_fn) -> Dict[tuple, List[_Entry]]:
    buckets: Dict[tuple, List[_Entry]] = {}
    for entry in entries:
        buckets.setdefault(key_fn(entry), []).append(entry)
    # Members oldest first; input order never leaks into the result
    return {key: sorted(members, key=lambda e: e.sort_key) for key, members in buckets.items()}


def group_mail_items(
    items: Iterable[MailItemInput],
    tz: str = DEFAULT_TIMEZONE,
    strict: bool = False,
) -> GroupingResult:
    """
    Group rows by (contact_id, calendar day, item_type).

    Each group sums quantities, collects the distinct statuses, and derives
    a display status. Groups are ordered by most recent activity first, then
    by group key. Members are ordered oldest first.

    Args:
        items: mail_items rows, as MailItem models or plain dicts.
        tz: civil timezone deciding which day a timestamp belongs to.
        strict: raise on the first bad row instead of reporting it in
            ``errors``.

    Returns:
        GroupingResult whose ``groups`` are MailItemGroup instances.
    """
    entries, errors = _prepare(items, tz, strict)
    buckets = _bucket(
        entries,
        lambda e: (e.item.contact_id, e.calendar_day, e.item.item_type),
    )

    built: List[Tuple[datetime, MailItemGroup]] = []
    for (contact_id, day, item_type), members in buckets.items():
        statuses = sorted({m.item.status for m in members}, key=status_sort_key)
        latest = members[-1]
        contact = next((m.item.contacts for m in members if m.item.contacts is not None), None)
        group = MailItemGroup(
            group_key=f"{contact_id}|{day}|{item_type}",
            contact_id=contact_id,
            contact=contact,
            calendar_day=day,
            item_type=item_type,
            items=[m.item for m in members],
            total_quantity=sum(m.quantity for m in members),
            statuses=statuses,
            display_status=display_status(statuses),
            latest_received_date=format_for_persistence(latest.received_at, tz),
            has_description=any(_has_text(m.item.description) for m in members),
        )
        built.append((latest.received_at, group))

    built.sort(key=lambda pair: pair[1].group_key)
    built.sort(key=lambda pair: pair[0], reverse=True)
    return GroupingResult(groups=[group for _, group in built], errors=errors)


def group_mail_items_simple(
    items: Iterable[MailItemInput],
    tz: str = DEFAULT_TIMEZONE,
    strict: bool = False,
) -> GroupingResult:
    """
    Group a single customer's rows by (calendar day, item_type).

    latest_status / latest_description come from the member with the latest
    received_date. Groups are ordered by calendar day, most recent first
    (item type breaks ties); members are ordered oldest first.
    """
    entries, errors = _prepare(items, tz, strict)
    buckets = _bucket(entries, lambda e: (e.calendar_day, e.item.item_type))

    groups = []
    for (day, item_type), members in buckets.items():
        latest = members[-1].item
        groups.append(SimpleMailItemGroup(
            group_key=f"{day}_{item_type}",
            item_type=item_type,
            calendar_day=day,
            items=[m.item for m in members],
            total_quantity=sum(m.quantity for m in members),
            latest_status=latest.status,
            latest_description=latest.description,
        ))

    groups.sort(key=lambda g: g.item_type)
    groups.sort(key=lambda g: g.calendar_day, reverse=True)
    return GroupingResult(groups=groups, errors=errors)


def count_by_type(groups: Iterable[Union[MailItemGroup, SimpleMailItemGroup]]) -> Dict[str, int]:
    """Total quantity per item type, e.g. ``{"Letter": 3, "Package": 1}``."""
    counts: Dict[str, int] = {}
    for group in groups:
        counts[group.item_type] = counts.get(group.item_type, 0) + group.total_quantity
    return counts
