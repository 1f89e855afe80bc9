"""Attendance read helpers — clock events and weekly work schedules."""

from __future__ import annotations

import uuid
from collections import defaultdict
from datetime import datetime
from typing import Sequence

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from time_manager.attendance.models import ClockEntry, WorkSchedule


class AttendanceService:

    @staticmethod
    async def list_clock_entries(
        db: AsyncSession,
        user_ids: Sequence[uuid.UUID],
        start_at: datetime,
        end_at: datetime,
    ) -> dict[uuid.UUID, list[ClockEntry]]:
        """Clock events with ``start_at <= at < end_at``, grouped per user in
        chronological order."""
        grouped: dict[uuid.UUID, list[ClockEntry]] = defaultdict(list)
        if not user_ids:
            return grouped
        result = await db.execute(
            select(ClockEntry)
            .where(
                ClockEntry.user_id.in_(list(user_ids)),
                ClockEntry.at >= start_at,
                ClockEntry.at < end_at,
            )
            .order_by(ClockEntry.user_id, ClockEntry.at)
        )
        for entry in result.scalars().all():
            grouped[entry.user_id].append(entry)
        return grouped

    @staticmethod
    async def list_schedules(
        db: AsyncSession, user_ids: Sequence[uuid.UUID],
    ) -> dict[uuid.UUID, list[WorkSchedule]]:
        grouped: dict[uuid.UUID, list[WorkSchedule]] = defaultdict(list)
        if not user_ids:
            return grouped
        result = await db.execute(
            select(WorkSchedule)
            .where(WorkSchedule.user_id.in_(list(user_ids)))
            .order_by(WorkSchedule.user_id, WorkSchedule.start_time)
        )
        for schedule in result.scalars().all():
            grouped[schedule.user_id].append(schedule)
        return grouped
