"""Directory service — user and team lookups consumed by leave, absence and KPI code."""

from __future__ import annotations

import uuid

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import aliased

from time_manager.common.constants import UserRole
from time_manager.common.exceptions import NotFoundException
from time_manager.directory.models import Team, TeamMember, User


class DirectoryService:
    """Read access to users and teams."""

    @staticmethod
    async def find_user(db: AsyncSession, user_id: uuid.UUID) -> User:
        """Return the user or raise NotFoundException."""
        user = await db.get(User, user_id)
        if user is None:
            raise NotFoundException("User", str(user_id))
        return user

    @staticmethod
    async def list_users(db: AsyncSession, *, active_only: bool = True) -> list[User]:
        query = select(User).order_by(User.email)
        if active_only:
            query = query.where(User.is_active.is_(True))
        result = await db.execute(query)
        return list(result.scalars().all())

    @staticmethod
    async def get_team(db: AsyncSession, team_id: uuid.UUID) -> Team:
        team = await db.get(Team, team_id)
        if team is None:
            raise NotFoundException("Team", str(team_id))
        return team

    @staticmethod
    async def count_teams(db: AsyncSession) -> int:
        result = await db.execute(select(func.count(Team.id)))
        return result.scalar_one()

    @staticmethod
    async def list_team_members(db: AsyncSession, team_id: uuid.UUID) -> list[User]:
        """Members of a team, NotFoundException for an unknown team."""
        await DirectoryService.get_team(db, team_id)
        result = await db.execute(
            select(User)
            .join(TeamMember, TeamMember.user_id == User.id)
            .where(TeamMember.team_id == team_id)
            .order_by(User.email)
        )
        return list(result.scalars().all())

    @staticmethod
    async def is_team_member(
        db: AsyncSession, team_id: uuid.UUID, user_id: uuid.UUID,
    ) -> bool:
        result = await db.execute(
            select(TeamMember.id).where(
                TeamMember.team_id == team_id,
                TeamMember.user_id == user_id,
            )
        )
        return result.scalar() is not None

    @staticmethod
    async def can_act_on(
        db: AsyncSession, actor: User, target_user_id: uuid.UUID,
    ) -> bool:
        """Admins act on anyone, everybody acts on themselves, and a
        manager acts on the members of any team they belong to."""
        if actor.role == UserRole.admin or actor.id == target_user_id:
            return True
        if actor.role != UserRole.manager:
            return False

        mine = aliased(TeamMember)
        theirs = aliased(TeamMember)
        result = await db.execute(
            select(func.count())
            .select_from(mine)
            .join(theirs, theirs.team_id == mine.team_id)
            .where(mine.user_id == actor.id, theirs.user_id == target_user_id)
        )
        return result.scalar_one() > 0
