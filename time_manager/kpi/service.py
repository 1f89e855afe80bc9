"""KPI service — attendance, worked time, punctuality and leave balances.

Business logic:
  - Scope is one user, the members of a team, or every active user
  - An absence counts when its days overlap the range; approved day units
    only count the days that fall inside the range
  - Worked time pairs IN/OUT clock events: an IN opens a session when none
    is open, an OUT closes it. Orphan OUTs and unterminated INs count 0.
    Minutes are attributed to the local day of the IN
  - An arrival is the first IN inside a scheduled period's window; it is
    late after ``start_time + grace``. Delay is measured from ``start_time``
  - Leave balances are recomputed per kind and cross-checked against
    ``BalanceEngine.current_balance``
"""

from __future__ import annotations

import logging
import uuid
from collections import defaultdict
from dataclasses import dataclass, field
from datetime import date, datetime, time, timedelta, timezone
from decimal import Decimal
from typing import Optional, Sequence
from zoneinfo import ZoneInfo

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from time_manager.absence.models import Absence
from time_manager.attendance.models import ClockEntry, WorkSchedule
from time_manager.attendance.service import AttendanceService
from time_manager.common.constants import (
    AbsenceStatus,
    ClockKind,
    KpiScope,
    LeaveLedgerKind,
    WorkDay,
)
from time_manager.common.exceptions import InternalError, ValidationException
from time_manager.config import settings
from time_manager.directory.service import DirectoryService
from time_manager.kpi.schemas import (
    AttendanceKpi,
    KpiReport,
    LeaveBalanceItem,
    PunctualityKpi,
    TimeKpi,
)
from time_manager.leave.service import BalanceEngine, LeaveAccountService
from time_manager.leave.units import compute_units

logger = logging.getLogger(__name__)

_RATE_PLACES = Decimal("0.0001")
_MINUTE_PLACES = Decimal("0.01")


def _as_utc(at: datetime) -> datetime:
    # SQLite hands timestamps back naive; they are stored in UTC
    return at.replace(tzinfo=timezone.utc) if at.tzinfo is None else at


def _minutes(delta: timedelta) -> int:
    return int(delta.total_seconds() // 60)


def worked_minutes_by_day(
    entries: Sequence[ClockEntry], tz: ZoneInfo,
) -> dict[date, int]:
    """Pair chronologically sorted IN/OUT events into worked minutes per
    local day of the opening IN."""
    worked: dict[date, int] = defaultdict(int)
    pending_in: Optional[datetime] = None
    for entry in entries:
        if entry.kind == ClockKind.IN:
            if pending_in is None:
                pending_in = _as_utc(entry.at)
        elif entry.kind == ClockKind.OUT and pending_in is not None:
            out = _as_utc(entry.at)
            worked[pending_in.astimezone(tz).date()] += max(0, _minutes(out - pending_in))
            pending_in = None
    return dict(worked)


@dataclass
class _UserTimeStats:
    worked: int = 0
    overtime: int = 0
    arrivals: int = 0
    late: int = 0
    early_leaves: int = 0
    delays: list[int] = field(default_factory=list)

    def merge(self, other: "_UserTimeStats") -> None:
        self.worked += other.worked
        self.overtime += other.overtime
        self.arrivals += other.arrivals
        self.late += other.late
        self.early_leaves += other.early_leaves
        self.delays.extend(other.delays)


def user_time_stats(
    entries: Sequence[ClockEntry],
    schedules: Sequence[WorkSchedule],
    start: date,
    end: date,
    tz: ZoneInfo,
    grace_minutes: int,
) -> _UserTimeStats:
    """Worked time, overtime and punctuality of one user over [start, end]."""
    stats = _UserTimeStats()
    worked_by_day = worked_minutes_by_day(entries, tz)
    stats.worked = sum(
        minutes for day, minutes in worked_by_day.items() if start <= day <= end
    )

    ins_by_day: dict[date, list[datetime]] = defaultdict(list)
    outs_by_day: dict[date, list[datetime]] = defaultdict(list)
    for entry in entries:
        local = _as_utc(entry.at).astimezone(tz)
        bucket = ins_by_day if entry.kind == ClockKind.IN else outs_by_day
        bucket[local.date()].append(local)

    by_weekday: dict[WorkDay, list[WorkSchedule]] = defaultdict(list)
    for schedule in schedules:
        by_weekday[WorkDay(schedule.day_of_week)].append(schedule)

    grace = timedelta(minutes=grace_minutes)
    day = start
    while day <= end:
        periods = sorted(
            by_weekday.get(WorkDay.from_weekday(day.weekday()), []),
            key=lambda s: s.start_time,
        )
        if not periods:
            day += timedelta(days=1)
            continue

        planned = sum(
            _minutes(
                datetime.combine(day, s.end_time) - datetime.combine(day, s.start_time)
            )
            for s in periods
        )
        stats.overtime += max(0, worked_by_day.get(day, 0) - planned)

        ins = sorted(ins_by_day.get(day, []))
        for i, period in enumerate(periods):
            window_start = periods[i - 1].end_time if i > 0 else time.min
            window_end = periods[i + 1].start_time if i + 1 < len(periods) else None
            arrival = next(
                (
                    t for t in ins
                    if t.time() >= window_start
                    and (window_end is None or t.time() < window_end)
                ),
                None,
            )
            if arrival is None:
                continue
            stats.arrivals += 1
            scheduled = datetime.combine(day, period.start_time, tzinfo=tz)
            if arrival > scheduled + grace:
                stats.late += 1
                stats.delays.append(_minutes(arrival - scheduled))

        outs = outs_by_day.get(day)
        if outs:
            last_end = max(s.end_time for s in periods)
            if max(outs) < datetime.combine(day, last_end, tzinfo=tz) - grace:
                stats.early_leaves += 1

        day += timedelta(days=1)
    return stats


def _absence_overlaps(absence: Absence, start: date, end: date) -> bool:
    dates = [d.absence_date for d in absence.days]
    if not dates:
        return False
    return min(dates) <= end and max(dates) >= start


class KpiService:
    """Read-only rollups over a date range."""

    @staticmethod
    async def _users_in_scope(
        db: AsyncSession, scope: KpiScope, scope_id: Optional[uuid.UUID],
    ) -> list[uuid.UUID]:
        if scope == KpiScope.user:
            if scope_id is None:
                raise ValidationException({"scope_id": ["A user id is required."]})
            user = await DirectoryService.find_user(db, scope_id)
            return [user.id]
        if scope == KpiScope.team:
            if scope_id is None:
                raise ValidationException({"scope_id": ["A team id is required."]})
            members = await DirectoryService.list_team_members(db, scope_id)
            return [m.id for m in members]
        users = await DirectoryService.list_users(db, active_only=True)
        return [u.id for u in users]

    @staticmethod
    async def attendance(
        db: AsyncSession, user_ids: list[uuid.UUID], start: date, end: date,
    ) -> AttendanceKpi:
        kpi = AttendanceKpi()
        if not user_ids:
            return kpi

        result = await db.execute(
            select(Absence)
            .where(
                Absence.user_id.in_(user_ids),
                Absence.start_date <= end,
                Absence.end_date >= start,
            )
            .options(selectinload(Absence.days))
        )
        by_type: dict[str, int] = defaultdict(int)
        for absence in result.scalars().all():
            if not _absence_overlaps(absence, start, end):
                continue
            kpi.absence_requests += 1
            by_type[absence.type.value] += 1
            if absence.status == AbsenceStatus.APPROVED:
                kpi.approved_absences += 1
                kpi.approved_days += compute_units(
                    d.period for d in absence.days if start <= d.absence_date <= end
                )
        kpi.absence_by_type = dict(sorted(by_type.items()))
        return kpi

    @staticmethod
    async def time_and_punctuality(
        db: AsyncSession,
        user_ids: list[uuid.UUID],
        start: date,
        end: date,
        *,
        tz: ZoneInfo,
        grace_minutes: int,
    ) -> tuple[TimeKpi, PunctualityKpi]:
        start_at = datetime.combine(start, time.min, tzinfo=tz).astimezone(timezone.utc)
        end_at = datetime.combine(end + timedelta(days=1), time.min, tzinfo=tz).astimezone(
            timezone.utc
        )
        clocks = await AttendanceService.list_clock_entries(db, user_ids, start_at, end_at)
        schedules = await AttendanceService.list_schedules(db, user_ids)

        total = _UserTimeStats()
        for user_id in user_ids:
            total.merge(
                user_time_stats(
                    clocks.get(user_id, []),
                    schedules.get(user_id, []),
                    start,
                    end,
                    tz,
                    grace_minutes,
                )
            )

        time_kpi = TimeKpi(
            total_worked_minutes=total.worked,
            avg_worked_minutes=total.worked // len(user_ids) if user_ids else 0,
            total_overtime_minutes=total.overtime,
        )
        punctuality = PunctualityKpi(
            arrivals=total.arrivals,
            late_arrivals=total.late,
            early_leaves=total.early_leaves,
        )
        if total.arrivals:
            punctuality.late_rate = (
                Decimal(total.late) / Decimal(total.arrivals)
            ).quantize(_RATE_PLACES)
        if total.delays:
            punctuality.avg_delay_minutes = (
                Decimal(sum(total.delays)) / Decimal(len(total.delays))
            ).quantize(_MINUTE_PLACES)
        return time_kpi, punctuality

    @staticmethod
    async def leave_balances(
        db: AsyncSession, user_ids: list[uuid.UUID],
    ) -> list[LeaveBalanceItem]:
        items: list[LeaveBalanceItem] = []
        for account in await LeaveAccountService.list_by_users(db, user_ids):
            totals = await BalanceEngine.kind_totals(db, account.id)
            current = BalanceEngine.balance_from_totals(account.opening_balance, totals)
            expected = await BalanceEngine.current_balance(db, account.id)
            if current != expected:
                logger.error(
                    "Balance mismatch on account %s: breakdown %s, engine %s",
                    account.id, current, expected,
                )
                raise InternalError(
                    f"Balance of leave account {account.id} is inconsistent.",
                )
            items.append(
                LeaveBalanceItem(
                    account_id=account.id,
                    user_id=account.user_id,
                    leave_type=account.leave_type_code,
                    opening_balance=Decimal(account.opening_balance),
                    accrued=totals[LeaveLedgerKind.ACCRUAL],
                    debited=totals[LeaveLedgerKind.DEBIT],
                    adjusted=totals[LeaveLedgerKind.ADJUSTMENT],
                    expired=totals[LeaveLedgerKind.CARRYOVER_EXPIRE],
                    current_balance=current,
                )
            )
        return items

    @staticmethod
    async def compute_kpi(
        db: AsyncSession,
        scope: KpiScope,
        scope_id: Optional[uuid.UUID],
        start: date,
        end: date,
        *,
        grace_minutes: Optional[int] = None,
        tz: Optional[ZoneInfo] = None,
    ) -> KpiReport:
        """Full report for a scope over the inclusive range [start, end]."""
        if start > end:
            raise ValidationException({"start": ["start must be on or before end."]})

        user_ids = await KpiService._users_in_scope(db, scope, scope_id)
        tz = tz or ZoneInfo(settings.TIMEZONE)
        grace = settings.KPI_GRACE_MINUTES if grace_minutes is None else grace_minutes

        time_kpi, punctuality = await KpiService.time_and_punctuality(
            db, user_ids, start, end, tz=tz, grace_minutes=grace,
        )
        report = KpiReport(
            scope=scope,
            scope_id=scope_id,
            start=start,
            end=end,
            user_count=len(user_ids),
            attendance=await KpiService.attendance(db, user_ids, start, end),
            time=time_kpi,
            punctuality=punctuality,
            leave_balances=await KpiService.leave_balances(db, user_ids),
        )
        if scope == KpiScope.organization:
            report.team_count = await DirectoryService.count_teams(db)

        logger.debug(
            "KPI %s %s %s..%s over %d users", scope.value, scope_id, start, end, len(user_ids),
        )
        return report
