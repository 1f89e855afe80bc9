"""Leave Pydantic v2 schemas — request / response validation.

Naming conventions:
  - *Create / *Update / *Request  → request bodies (write)
  - *Out                          → response bodies (read)
"""

from __future__ import annotations

import uuid
from datetime import date, datetime
from decimal import Decimal
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from time_manager.common.constants import LeaveLedgerKind


# ═════════════════════════════════════════════════════════════════════
# Leave Type
# ═════════════════════════════════════════════════════════════════════


class LeaveTypeCreate(BaseModel):
    code: str = Field(..., min_length=1, max_length=20)
    label: str = Field(..., min_length=1, max_length=100)

    @field_validator("code")
    @classmethod
    def _normalise_code(cls, v: str) -> str:
        return v.strip().upper()


class LeaveTypeUpdate(BaseModel):
    label: Optional[str] = Field(None, min_length=1, max_length=100)


class LeaveTypeOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    code: str
    label: str


# ═════════════════════════════════════════════════════════════════════
# Leave Account
# ═════════════════════════════════════════════════════════════════════


class LeaveAccountCreate(BaseModel):
    """Payload for opening a leave account for a user."""

    user_id: uuid.UUID
    leave_type_code: str = Field(..., min_length=1, max_length=20)
    opening_balance: Optional[Decimal] = Field(None, max_digits=8, decimal_places=2)
    accrual_per_month: Optional[Decimal] = Field(
        None, ge=0, max_digits=6, decimal_places=3
    )
    max_carryover: Optional[Decimal] = Field(
        None, ge=0, max_digits=8, decimal_places=2
    )
    carryover_expire_on: Optional[date] = None


class LeaveAccountUpdate(BaseModel):
    """Partial update.

    Numeric fields left out keep their stored value. ``carryover_expire_on``
    is always written, so omitting it clears the expiry date.
    """

    opening_balance: Optional[Decimal] = Field(None, max_digits=8, decimal_places=2)
    accrual_per_month: Optional[Decimal] = Field(
        None, ge=0, max_digits=6, decimal_places=3
    )
    max_carryover: Optional[Decimal] = Field(
        None, ge=0, max_digits=8, decimal_places=2
    )
    carryover_expire_on: Optional[date] = None


class LeaveAccountOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    user_id: uuid.UUID
    leave_type_code: str
    opening_balance: Decimal
    accrual_per_month: Decimal
    max_carryover: Optional[Decimal] = None
    carryover_expire_on: Optional[date] = None
    created_at: datetime


class BalanceOut(BaseModel):
    account_id: uuid.UUID
    leave_type_code: str
    balance: Decimal
    as_of: datetime


# ═════════════════════════════════════════════════════════════════════
# Ledger
# ═════════════════════════════════════════════════════════════════════


class LeaveLedgerCreate(BaseModel):
    """Manual ledger movement. ``amount`` is a magnitude; the kind decides
    whether it credits or debits the account."""

    account_id: uuid.UUID
    entry_date: Optional[date] = Field(None, description="Defaults to today")
    kind: LeaveLedgerKind
    amount: Decimal = Field(..., ge=0, max_digits=9, decimal_places=3)
    reference_absence_id: Optional[uuid.UUID] = None
    note: Optional[str] = Field(None, max_length=255)


class LeaveLedgerUpdate(BaseModel):
    entry_date: Optional[date] = None
    amount: Optional[Decimal] = Field(None, ge=0, max_digits=9, decimal_places=3)
    note: Optional[str] = Field(None, max_length=255)


class LeaveLedgerEntryOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    account_id: uuid.UUID
    entry_date: date
    kind: LeaveLedgerKind
    amount: Decimal
    reference_absence_id: Optional[uuid.UUID] = None
    accrual_period: Optional[date] = None
    note: Optional[str] = None
    created_at: datetime


# ═════════════════════════════════════════════════════════════════════
# Accrual / carryover runs
# ═════════════════════════════════════════════════════════════════════


class AccrualRunRequest(BaseModel):
    period: date = Field(..., description="Any day of the month to accrue")


class CarryoverExpiryRequest(BaseModel):
    as_of: date


class MaterialisationResult(BaseModel):
    created: int
