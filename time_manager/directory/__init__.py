"""Directory module — User, Team, TeamMember models and lookups."""

from time_manager.directory.models import Team, TeamMember, User

__all__ = ["User", "Team", "TeamMember"]
