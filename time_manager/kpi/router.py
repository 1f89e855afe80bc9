"""KPI router — per-user, per-team and organization-wide reports.

Reports are expensive to compute, so each endpoint has its own rate limit.
"""


import uuid
from datetime import date

from fastapi import APIRouter, Depends, Query, Request
from sqlalchemy.ext.asyncio import AsyncSession

from time_manager.auth.dependencies import get_current_user, require_role
from time_manager.common.constants import KpiScope, UserRole
from time_manager.common.exceptions import ForbiddenException
from time_manager.common.rate_limit import limiter
from time_manager.database import get_db
from time_manager.directory.models import User
from time_manager.directory.service import DirectoryService
from time_manager.kpi.schemas import KpiReport
from time_manager.kpi.service import KpiService

router = APIRouter(prefix="", tags=["kpi"])


# ── GET /users/{user_id} ────────────────────────────────────────────

@router.get("/users/{user_id}", response_model=KpiReport)
@limiter.limit("30/minute")
async def user_kpi(
    request: Request,
    user_id: uuid.UUID,
    start: date = Query(...),
    end: date = Query(...),
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """KPI of a single user. Self, a manager of a shared team, or admin."""
    if not await DirectoryService.can_act_on(db, user, user_id):
        raise ForbiddenException()
    return await KpiService.compute_kpi(db, KpiScope.user, user_id, start, end)


# ── GET /teams/{team_id} ────────────────────────────────────────────

@router.get("/teams/{team_id}", response_model=KpiReport)
@limiter.limit("30/minute")
async def team_kpi(
    request: Request,
    team_id: uuid.UUID,
    start: date = Query(...),
    end: date = Query(...),
    user: User = Depends(require_role(UserRole.manager)),
    db: AsyncSession = Depends(get_db),
):
    """KPI of a team. Managers must belong to the team."""
    await DirectoryService.get_team(db, team_id)
    if user.role != UserRole.admin and not await DirectoryService.is_team_member(
        db, team_id, user.id,
    ):
        raise ForbiddenException(detail="Not a member of this team.")
    return await KpiService.compute_kpi(db, KpiScope.team, team_id, start, end)


# ── GET /organization ───────────────────────────────────────────────

@router.get("/organization", response_model=KpiReport)
@limiter.limit("10/minute")
async def organization_kpi(
    request: Request,
    start: date = Query(...),
    end: date = Query(...),
    user: User = Depends(require_role(UserRole.admin)),
    db: AsyncSession = Depends(get_db),
):
    return await KpiService.compute_kpi(db, KpiScope.organization, None, start, end)
