"""Absence service layer — request lifecycle and its ledger side effects.

Business logic:
  - New absences start PENDING with one day row per calendar date
  - Owners may edit or delete their absence only while it is PENDING;
    managers (of a shared team) and admins may always
  - Only managers and admins decide; the decision is APPROVED or REJECTED
  - Every mutation notifies the accounting bridge in the same transaction,
    so a failed debit rolls the whole change back
"""

from __future__ import annotations

import logging
import uuid
from datetime import date, datetime, timedelta, timezone
from typing import Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from time_manager.absence.models import Absence, AbsenceDay
from time_manager.absence.schemas import AbsenceCreate, AbsenceUpdate
from time_manager.common.constants import (
    HALF_DAY_HOURS,
    AbsencePeriod,
    AbsenceStatus,
    UserRole,
)
from time_manager.common.exceptions import (
    ForbiddenException,
    NotFoundException,
    ValidationException,
)
from time_manager.directory.models import User
from time_manager.directory.service import DirectoryService
from time_manager.leave.accounting import LeaveAccountingBridge

logger = logging.getLogger(__name__)


def build_days(
    start_date: date,
    end_date: date,
    period_by_date: Optional[dict[date, AbsencePeriod]] = None,
) -> list[AbsenceDay]:
    """One AbsenceDay per date in [start_date, end_date]; half days carry
    the default morning / afternoon hours."""
    overrides = period_by_date or {}
    days: list[AbsenceDay] = []
    current = start_date
    while current <= end_date:
        period = overrides.get(current) or AbsencePeriod.FULL_DAY
        start_time, end_time = HALF_DAY_HOURS.get(period, (None, None))
        days.append(
            AbsenceDay(
                absence_date=current,
                period=period,
                start_time=start_time,
                end_time=end_time,
            )
        )
        current += timedelta(days=1)
    return days


def _validate_dates(start_date: Optional[date], end_date: Optional[date]) -> None:
    if start_date is None or end_date is None:
        raise ValidationException(
            {"start_date": ["start_date and end_date are required."]}
        )
    if start_date > end_date:
        raise ValidationException(
            {"end_date": ["end_date must be on or after start_date."]}
        )


class AbsenceService:
    """Async absence operations: create, read, edit, decide, delete."""

    # ─────────────────────────────────────────────────────────────────
    # Helpers
    # ─────────────────────────────────────────────────────────────────

    @staticmethod
    async def get(db: AsyncSession, absence_id: uuid.UUID) -> Absence:
        """Load an absence with its days, or raise NotFoundException."""
        result = await db.execute(
            select(Absence)
            .where(Absence.id == absence_id)
            .options(selectinload(Absence.days))
        )
        absence = result.scalars().first()
        if absence is None:
            raise NotFoundException("Absence", str(absence_id))
        return absence

    @staticmethod
    async def _ensure_can_act(db: AsyncSession, actor: User, target_user_id: uuid.UUID) -> None:
        if not await DirectoryService.can_act_on(db, actor, target_user_id):
            raise ForbiddenException()

    @staticmethod
    def _ensure_editable_by(actor: User, absence: Absence) -> None:
        if actor.role in (UserRole.admin, UserRole.manager):
            return
        if absence.status != AbsenceStatus.PENDING:
            raise ForbiddenException(
                detail="Owners can only change an absence while it is PENDING.",
            )

    # ─────────────────────────────────────────────────────────────────
    # Create / read
    # ─────────────────────────────────────────────────────────────────

    @staticmethod
    async def create(db: AsyncSession, user_id: uuid.UUID, body: AbsenceCreate) -> Absence:
        await DirectoryService.find_user(db, user_id)
        _validate_dates(body.start_date, body.end_date)

        absence = Absence(
            user_id=user_id,
            start_date=body.start_date,
            end_date=body.end_date,
            type=body.type,
            reason=body.reason,
            supporting_document_url=body.supporting_document_url,
            status=AbsenceStatus.PENDING,
            days=build_days(body.start_date, body.end_date, body.period_by_date),
        )
        db.add(absence)
        await db.flush()
        logger.info(
            "User %s requested %s absence %s (%s → %s)",
            user_id, absence.type.value, absence.id, absence.start_date, absence.end_date,
        )
        return absence

    @staticmethod
    async def get_visible_to(db: AsyncSession, actor: User, absence_id: uuid.UUID) -> Absence:
        absence = await AbsenceService.get(db, absence_id)
        await AbsenceService._ensure_can_act(db, actor, absence.user_id)
        return absence

    @staticmethod
    async def list_for_user(db: AsyncSession, user_id: uuid.UUID) -> list[Absence]:
        """Absences of a user, most recent first."""
        result = await db.execute(
            select(Absence)
            .where(Absence.user_id == user_id)
            .options(selectinload(Absence.days))
            .order_by(Absence.start_date.desc())
        )
        return list(result.scalars().all())

    @staticmethod
    async def list_visible_to(
        db: AsyncSession, actor: User, target_user_id: uuid.UUID,
    ) -> list[Absence]:
        await AbsenceService._ensure_can_act(db, actor, target_user_id)
        return await AbsenceService.list_for_user(db, target_user_id)

    @staticmethod
    async def list_for_team(db: AsyncSession, actor: User, team_id: uuid.UUID) -> list[Absence]:
        """Absences of every member of a team. Managers must belong to it."""
        if actor.role != UserRole.admin and not await DirectoryService.is_team_member(
            db, team_id, actor.id,
        ):
            raise ForbiddenException(detail="Not a member of this team.")
        members = await DirectoryService.list_team_members(db, team_id)
        if not members:
            return []
        result = await db.execute(
            select(Absence)
            .where(Absence.user_id.in_([m.id for m in members]))
            .options(selectinload(Absence.days))
            .order_by(Absence.start_date.desc())
        )
        return list(result.scalars().all())

    # ─────────────────────────────────────────────────────────────────
    # Mutations
    # ─────────────────────────────────────────────────────────────────

    @staticmethod
    async def update(
        db: AsyncSession,
        actor: User,
        absence_id: uuid.UUID,
        body: AbsenceUpdate,
        bridge: Optional[LeaveAccountingBridge] = None,
    ) -> Absence:
        """Partial update. Day rows are rebuilt when the dates or the
        per-date periods change, before the ledger is reconciled."""
        absence = await AbsenceService.get(db, absence_id)
        await AbsenceService._ensure_can_act(db, actor, absence.user_id)
        AbsenceService._ensure_editable_by(actor, absence)

        dates_changed = False
        if body.start_date is not None and body.start_date != absence.start_date:
            absence.start_date = body.start_date
            dates_changed = True
        if body.end_date is not None and body.end_date != absence.end_date:
            absence.end_date = body.end_date
            dates_changed = True
        if body.type is not None:
            absence.type = body.type
        if body.reason is not None:
            absence.reason = body.reason
        if body.supporting_document_url is not None:
            absence.supporting_document_url = body.supporting_document_url

        _validate_dates(absence.start_date, absence.end_date)

        if dates_changed or body.period_by_date is not None:
            if body.period_by_date is not None:
                overrides = body.period_by_date
            else:
                # Keep the half days of dates that survive the new range
                overrides = {d.absence_date: d.period for d in absence.days if d.period}
            absence.days = build_days(absence.start_date, absence.end_date, overrides)

        await db.flush()

        if absence.status == AbsenceStatus.APPROVED:
            await (bridge or LeaveAccountingBridge.from_settings()).on_absence_changed(
                db, absence,
            )
        return absence

    @staticmethod
    async def set_status(
        db: AsyncSession,
        approver: User,
        absence_id: uuid.UUID,
        status: AbsenceStatus,
        bridge: Optional[LeaveAccountingBridge] = None,
    ) -> Absence:
        if status == AbsenceStatus.PENDING:
            raise ValidationException({"status": ["Status must be APPROVED or REJECTED."]})

        absence = await AbsenceService.get(db, absence_id)
        if approver.role not in (UserRole.admin, UserRole.manager):
            raise ForbiddenException()
        await AbsenceService._ensure_can_act(db, approver, absence.user_id)

        absence.status = status
        absence.approved_by = approver.id
        absence.approved_at = datetime.now(timezone.utc)
        await db.flush()
        logger.info("Absence %s set to %s by %s", absence.id, status.value, approver.id)

        await (bridge or LeaveAccountingBridge.from_settings()).on_absence_changed(
            db, absence,
        )
        return absence

    @staticmethod
    async def delete(
        db: AsyncSession,
        actor: User,
        absence_id: uuid.UUID,
        bridge: Optional[LeaveAccountingBridge] = None,
    ) -> None:
        absence = await AbsenceService.get(db, absence_id)
        await AbsenceService._ensure_can_act(db, actor, absence.user_id)
        AbsenceService._ensure_editable_by(actor, absence)

        await (bridge or LeaveAccountingBridge.from_settings()).on_absence_deleted(
            db, absence.id,
        )
        await db.delete(absence)
        await db.flush()
        logger.info("Deleted absence %s", absence_id)
