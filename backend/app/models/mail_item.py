"""
Pydantic models for mail items and their day-level groupings.
"""

from datetime import datetime
from typing import List, Optional, Union
from pydantic import BaseModel


class ContactSummary(BaseModel):
    """Contact columns embedded in mail_items / package_fees queries."""
    contact_id: Optional[str] = None
    contact_person: Optional[str] = None
    company_name: Optional[str] = None
    mailbox_number: Optional[str] = None


class MailItem(BaseModel):
    """
    A mail_items row.

    received_date is kept exactly as given (a stored string or a datetime); it
    is parsed (and validated) by the grouping and billing code so one bad row
    can be reported on its own. Groups report latest_received_date normalized
    to the local persisted form.
    quantity may be missing on legacy rows and then counts as 1.
    """
    mail_item_id: str
    contact_id: str
    item_type: str
    status: str
    received_date: Union[datetime, str]
    quantity: Optional[int] = None
    description: Optional[str] = None
    contacts: Optional[ContactSummary] = None

    class Config:
        from_attributes = True


class MailItemGroup(BaseModel):
    """Items for one customer, one calendar day and one item type."""
    group_key: str  # contact_id|YYYY-MM-DD|item_type
    contact_id: str
    contact: Optional[ContactSummary] = None
    calendar_day: str
    item_type: str
    items: List[MailItem]
    total_quantity: int
    statuses: List[str]
    display_status: str  # the shared status, or "Mixed (...)"
    latest_received_date: str
    has_description: bool


class SimpleMailItemGroup(BaseModel):
    """Items for one calendar day and one item type of a single customer."""
    group_key: str  # YYYY-MM-DD_item_type
    item_type: str
    calendar_day: str
    items: List[MailItem]
    total_quantity: int
    latest_status: str
    latest_description: Optional[str] = None


class GroupingFailure(BaseModel):
    """A mail item left out of a grouping pass."""
    mail_item_id: Optional[str] = None
    error: str


class GroupedMailItemsResponse(BaseModel):
    groups: List[MailItemGroup]
    counts_by_type: dict
    skipped: List[GroupingFailure] = []


class ContactGroupedMailItemsResponse(BaseModel):
    contact_id: str
    groups: List[SimpleMailItemGroup]
    counts_by_type: dict
    skipped: List[GroupingFailure] = []
