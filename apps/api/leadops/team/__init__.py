from leadops.team.models import AgentProfile, TeamInvite

__all__ = ["AgentProfile", "TeamInvite"]
