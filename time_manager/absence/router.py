"""Absence router — request, edit, decide and delete absences.

All endpoints require authentication. Decisions need the manager role.
"""


import uuid
from typing import Optional

from fastapi import APIRouter, Depends, Query, Response
from sqlalchemy.ext.asyncio import AsyncSession

from time_manager.absence.schemas import (
    AbsenceCreate,
    AbsenceOut,
    AbsenceStatusUpdate,
    AbsenceUpdate,
)
from time_manager.absence.service import AbsenceService
from time_manager.auth.dependencies import get_current_user, require_role
from time_manager.common.constants import UserRole
from time_manager.database import get_db
from time_manager.directory.models import User

router = APIRouter(prefix="", tags=["absences"])


# ── POST / ──────────────────────────────────────────────────────────

@router.post("", response_model=AbsenceOut, status_code=201)
async def create_absence(
    body: AbsenceCreate,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """Request an absence for the authenticated user. Starts PENDING."""
    return await AbsenceService.create(db, user.id, body)


# ── GET / ───────────────────────────────────────────────────────────

@router.get("", response_model=list[AbsenceOut])
async def list_absences(
    user_id: Optional[uuid.UUID] = Query(None),
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """List the caller's absences, or another user's when permitted."""
    return await AbsenceService.list_visible_to(db, user, user_id or user.id)


# ── GET /teams/{team_id} ────────────────────────────────────────────

@router.get("/teams/{team_id}", response_model=list[AbsenceOut])
async def list_team_absences(
    team_id: uuid.UUID,
    user: User = Depends(require_role(UserRole.manager)),
    db: AsyncSession = Depends(get_db),
):
    return await AbsenceService.list_for_team(db, user, team_id)


# ── GET /{id} ───────────────────────────────────────────────────────

@router.get("/{absence_id}", response_model=AbsenceOut)
async def get_absence(
    absence_id: uuid.UUID,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    return await AbsenceService.get_visible_to(db, user, absence_id)


# ── PATCH /{id} ─────────────────────────────────────────────────────

@router.patch("/{absence_id}", response_model=AbsenceOut)
async def update_absence(
    absence_id: uuid.UUID,
    body: AbsenceUpdate,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """Edit an absence. An approved absence has its leave debit refreshed."""
    return await AbsenceService.update(db, user, absence_id, body)


# ── PUT /{id}/status ────────────────────────────────────────────────

@router.put("/{absence_id}/status", response_model=AbsenceOut)
async def set_absence_status(
    absence_id: uuid.UUID,
    body: AbsenceStatusUpdate,
    user: User = Depends(require_role(UserRole.manager)),
    db: AsyncSession = Depends(get_db),
):
    """Approve or reject. Approval debits the mapped leave account."""
    return await AbsenceService.set_status(db, user, absence_id, body.status)


# ── DELETE /{id} ────────────────────────────────────────────────────

@router.delete("/{absence_id}", status_code=204)
async def delete_absence(
    absence_id: uuid.UUID,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    await AbsenceService.delete(db, user, absence_id)
    return Response(status_code=204)
