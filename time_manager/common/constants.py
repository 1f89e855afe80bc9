"""Enums and constants for time_manager — matching the stored VARCHAR values."""

from __future__ import annotations

import enum
from datetime import time
from decimal import Decimal


# ── Directory / Roles ───────────────────────────────────────────────

class UserRole(str, enum.Enum):
    employee = "employee"
    manager = "manager"
    admin = "admin"


# ── Absences ────────────────────────────────────────────────────────

class AbsenceStatus(str, enum.Enum):
    PENDING = "PENDING"
    APPROVED = "APPROVED"
    REJECTED = "REJECTED"


class AbsenceType(str, enum.Enum):
    SICK = "SICK"
    VACATION = "VACATION"
    PERSONAL = "PERSONAL"
    FORMATION = "FORMATION"
    OTHER = "OTHER"
    RTT = "RTT"


class AbsencePeriod(str, enum.Enum):
    AM = "AM"
    PM = "PM"
    FULL_DAY = "FULL_DAY"


# Default working hours stamped on half-day absence rows
HALF_DAY_HOURS: dict[AbsencePeriod, tuple[time, time]] = {
    AbsencePeriod.AM: (time(8, 0), time(12, 0)),
    AbsencePeriod.PM: (time(13, 0), time(17, 0)),
}


# ── Leave ledger ────────────────────────────────────────────────────

class LeaveLedgerKind(str, enum.Enum):
    ACCRUAL = "ACCRUAL"
    DEBIT = "DEBIT"
    ADJUSTMENT = "ADJUSTMENT"
    CARRYOVER_EXPIRE = "CARRYOVER_EXPIRE"


# Kinds that add to the balance; every other kind subtracts.
CREDIT_KINDS: frozenset[LeaveLedgerKind] = frozenset(
    {LeaveLedgerKind.ACCRUAL, LeaveLedgerKind.ADJUSTMENT}
)

HALF_DAY_UNITS = Decimal("0.5")
FULL_DAY_UNITS = Decimal("1.0")


# ── Attendance ──────────────────────────────────────────────────────

class ClockKind(str, enum.Enum):
    IN = "IN"
    OUT = "OUT"


class WorkDay(str, enum.Enum):
    MON = "MON"
    TUE = "TUE"
    WED = "WED"
    THU = "THU"
    FRI = "FRI"
    SAT = "SAT"
    SUN = "SUN"

    @classmethod
    def from_weekday(cls, weekday: int) -> "WorkDay":
        """Map ``date.weekday()`` (0=Mon … 6=Sun) to a WorkDay."""
        return list(cls)[weekday]


class WorkPeriod(str, enum.Enum):
    AM = "AM"
    PM = "PM"


# ── KPI ─────────────────────────────────────────────────────────────

class KpiScope(str, enum.Enum):
    user = "user"
    team = "team"
    organization = "organization"

