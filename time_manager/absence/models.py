"""Absence ORM models: Absence, AbsenceDay."""

from __future__ import annotations

import uuid
from datetime import date, datetime, time, timezone
from typing import Optional

import sqlalchemy as sa
from sqlalchemy.orm import Mapped, mapped_column, relationship

from time_manager.common.constants import AbsencePeriod, AbsenceStatus, AbsenceType
from time_manager.database import Base


class Absence(Base):
    __tablename__ = "absences"

    id: Mapped[uuid.UUID] = mapped_column(
        sa.Uuid,
        primary_key=True,
        default=uuid.uuid4,
    )
    user_id: Mapped[uuid.UUID] = mapped_column(
        sa.Uuid, sa.ForeignKey("users.id"), nullable=False
    )
    start_date: Mapped[date] = mapped_column(sa.Date, nullable=False)
    end_date: Mapped[date] = mapped_column(sa.Date, nullable=False)
    type: Mapped[AbsenceType] = mapped_column(
        sa.Enum(AbsenceType, name="absence_type", native_enum=False, length=20),
        nullable=False,
    )
    reason: Mapped[Optional[str]] = mapped_column(sa.Text)
    supporting_document_url: Mapped[Optional[str]] = mapped_column(sa.String(500))
    status: Mapped[AbsenceStatus] = mapped_column(
        sa.Enum(AbsenceStatus, name="absence_status", native_enum=False, length=20),
        default=AbsenceStatus.PENDING,
        nullable=False,
    )
    approved_by: Mapped[Optional[uuid.UUID]] = mapped_column(
        sa.Uuid, sa.ForeignKey("users.id")
    )
    approved_at: Mapped[Optional[datetime]] = mapped_column(sa.DateTime(timezone=True))
    created_at: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True), default=lambda: datetime.now(timezone.utc)
    )
    updated_at: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )

    # Relationships
    days: Mapped[list[AbsenceDay]] = relationship(
        back_populates="absence",
        cascade="all, delete-orphan",
        order_by="AbsenceDay.absence_date",
    )


class AbsenceDay(Base):
    __tablename__ = "absence_days"

    id: Mapped[uuid.UUID] = mapped_column(
        sa.Uuid,
        primary_key=True,
        default=uuid.uuid4,
    )
    absence_id: Mapped[uuid.UUID] = mapped_column(
        sa.Uuid, sa.ForeignKey("absences.id", ondelete="CASCADE"), nullable=False
    )
    absence_date: Mapped[date] = mapped_column(sa.Date, nullable=False)
    period: Mapped[Optional[AbsencePeriod]] = mapped_column(
        sa.Enum(AbsencePeriod, name="absence_period", native_enum=False, length=20),
        default=AbsencePeriod.FULL_DAY,
    )
    start_time: Mapped[Optional[time]] = mapped_column(sa.Time)
    end_time: Mapped[Optional[time]] = mapped_column(sa.Time)

    # Relationships
    absence: Mapped[Absence] = relationship(back_populates="days")
