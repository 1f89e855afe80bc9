"""KPI Pydantic v2 schemas — response bodies only."""

from __future__ import annotations

import uuid
from datetime import date
from decimal import Decimal
from typing import Optional

from pydantic import BaseModel, Field

from time_manager.common.constants import KpiScope


class AttendanceKpi(BaseModel):
    absence_requests: int = 0
    approved_absences: int = 0
    approved_days: Decimal = Decimal("0")
    absence_by_type: dict[str, int] = Field(default_factory=dict)


class TimeKpi(BaseModel):
    total_worked_minutes: int = 0
    avg_worked_minutes: int = 0
    total_overtime_minutes: int = 0


class PunctualityKpi(BaseModel):
    arrivals: int = 0
    late_arrivals: int = 0
    late_rate: Decimal = Decimal("0")
    avg_delay_minutes: Decimal = Decimal("0")
    early_leaves: int = 0


class LeaveBalanceItem(BaseModel):
    account_id: uuid.UUID
    user_id: uuid.UUID
    leave_type: str
    opening_balance: Decimal
    accrued: Decimal
    debited: Decimal
    adjusted: Decimal
    expired: Decimal
    current_balance: Decimal


class KpiReport(BaseModel):
    scope: KpiScope
    scope_id: Optional[uuid.UUID] = None
    start: date
    end: date
    user_count: int = 0
    team_count: Optional[int] = None
    attendance: AttendanceKpi = Field(default_factory=AttendanceKpi)
    time: TimeKpi = Field(default_factory=TimeKpi)
    punctuality: PunctualityKpi = Field(default_factory=PunctualityKpi)
    leave_balances: list[LeaveBalanceItem] = Field(default_factory=list)
