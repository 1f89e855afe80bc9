"""Attendance ORM models: ClockEntry, WorkSchedule."""

from __future__ import annotations

import uuid
from datetime import datetime, time

import sqlalchemy as sa
from sqlalchemy.orm import Mapped, mapped_column

from time_manager.common.constants import ClockKind, WorkDay, WorkPeriod
from time_manager.database import Base


class ClockEntry(Base):
    __tablename__ = "clock_entries"
    __table_args__ = (
        sa.Index("idx_clock_user_at", "user_id", "at"),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        sa.Uuid,
        primary_key=True,
        default=uuid.uuid4,
    )
    user_id: Mapped[uuid.UUID] = mapped_column(
        sa.Uuid, sa.ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    )
    kind: Mapped[ClockKind] = mapped_column(
        sa.Enum(ClockKind, name="clock_kind", native_enum=False, length=3),
        nullable=False,
    )
    at: Mapped[datetime] = mapped_column(sa.DateTime(timezone=True), nullable=False)


class WorkSchedule(Base):
    __tablename__ = "work_schedules"
    __table_args__ = (
        sa.UniqueConstraint(
            "user_id", "day_of_week", "period", name="uq_ws_user_day_period"
        ),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        sa.Uuid,
        primary_key=True,
        default=uuid.uuid4,
    )
    user_id: Mapped[uuid.UUID] = mapped_column(
        sa.Uuid, sa.ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    )
    day_of_week: Mapped[WorkDay] = mapped_column(
        sa.Enum(WorkDay, name="work_day", native_enum=False, length=3),
        nullable=False,
    )
    period: Mapped[WorkPeriod] = mapped_column(
        sa.Enum(WorkPeriod, name="work_period", native_enum=False, length=2),
        nullable=False,
    )
    start_time: Mapped[time] = mapped_column(sa.Time, nullable=False)
    end_time: Mapped[time] = mapped_column(sa.Time, nullable=False)
