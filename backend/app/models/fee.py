"""
Pydantic models for package storage fees.
"""

from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import List, Optional, Union
from pydantic import BaseModel, Field, computed_field

from app.models.mail_item import ContactSummary


class FeeStatus(str, Enum):
    PENDING = "pending"
    PAID = "paid"
    WAIVED = "waived"


class PaymentMethod(str, Enum):
    CASH = "cash"
    CARD = "card"
    VENMO = "venmo"
    ZELLE = "zelle"
    CHECK = "check"
    OTHER = "other"


class FeeMailItem(BaseModel):
    """The slice of the mail_items row joined onto a fee by Supabase."""
    mail_item_id: str
    received_date: Union[datetime, str]
    status: Optional[str] = None
    item_type: Optional[str] = None


class Fee(BaseModel):
    """
    Full package_fees record from database.

    days_charged and fee_amount are a snapshot taken at last_calculated_at;
    pending fees are brought current by recalculation, settled fees never move.
    """
    fee_id: str
    mail_item_id: str
    contact_id: Optional[str] = None
    user_id: Optional[str] = None
    fee_amount: Decimal = Field(default=Decimal("0.00"), ge=0)
    days_charged: int = Field(default=0, ge=0)
    daily_rate: Decimal = Field(default=Decimal("2.00"), ge=0)
    grace_period_days: int = Field(default=1, ge=0)
    fee_status: FeeStatus = FeeStatus.PENDING
    payment_method: Optional[PaymentMethod] = None
    paid_date: Optional[str] = None
    collected_amount: Optional[Decimal] = Field(default=None, ge=0)
    collected_by: Optional[str] = None
    waived_date: Optional[str] = None
    waived_by: Optional[str] = None
    waive_reason: Optional[str] = None
    last_calculated_at: Optional[str] = None
    created_at: Optional[str] = None
    # Joined rows, present when the query embeds them
    mail_items: Optional[FeeMailItem] = None
    contacts: Optional[ContactSummary] = None

    class Config:
        from_attributes = True

    @computed_field  # type: ignore[misc]
    @property
    def amount_due(self) -> Decimal:
        """What the customer still owes: fee_amount while pending, else 0."""
        if self.fee_status == FeeStatus.PENDING:
            return self.fee_amount
        return Decimal("0.00")


class FeePayRequest(BaseModel):
    """Request body for POST /api/fees/{fee_id}/pay."""
    payment_method: PaymentMethod = PaymentMethod.CASH
    # Manual discounts: staff may collect less (or more) than fee_amount
    collected_amount: Optional[Decimal] = Field(default=None, ge=0)
    collected_by: Optional[str] = None


class FeeWaiveRequest(BaseModel):
    """Request body for POST /api/fees/{fee_id}/waive."""
    reason: str


class FeeActionResponse(BaseModel):
    """Response for pay / waive endpoints."""
    success: bool = True
    message: str
    fee: Fee


class RevenueStats(BaseModel):
    """Totals returned by GET /api/fees/revenue."""
    total_revenue: Decimal
    outstanding_fees: Decimal
    waived_fees: Decimal
    paid_count: int
    pending_count: int
    waived_count: int


class ContactBalance(BaseModel):
    """Unpaid storage fees for one customer."""
    contact_id: str
    total_owed: Decimal
    fees: List[Fee]


class RecalculationFailure(BaseModel):
    fee_id: str
    error: str


class RecalculationResult(BaseModel):
    """Summary of a batch fee recalculation run."""
    success: bool = True
    message: str = "Fee recalculation complete"
    updated: int
    skipped: int
    errors: int
    total: int
    failures: List[RecalculationFailure] = Field(default_factory=list)
