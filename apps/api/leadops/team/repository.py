from __future__ import annotations

from datetime import datetime

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from leadops.platform.security.roles import Role
from leadops.team.models import AgentProfile, TeamInvite


class AgentProfileRepository:
    def get_by_user(self, session: Session, tenant_id: str, user_id: str) -> AgentProfile | None:
        return session.scalar(
            select(AgentProfile).where(AgentProfile.tenant_id == tenant_id, AgentProfile.user_id == user_id)
        )

    def list_members(self, session: Session, tenant_id: str) -> list[AgentProfile]:
        return list(
            session.scalars(
                select(AgentProfile)
                .where(AgentProfile.tenant_id == tenant_id)
                .order_by(AgentProfile.created_at.asc(), AgentProfile.id.asc())
            )
        )

    def count_active_brokers(self, session: Session, tenant_id: str) -> int:
        count = session.scalar(
            select(func.count(AgentProfile.id)).where(
                AgentProfile.tenant_id == tenant_id,
                AgentProfile.role == Role.BROKER.value,
                AgentProfile.is_active.is_(True),
            )
        )
        return int(count or 0)

    def list_active_brokers_round_robin(self, session: Session, tenant_id: str) -> list[AgentProfile]:
        """Active brokers, least recently assigned first, then by seniority."""
        return list(
            session.scalars(
                select(AgentProfile)
                .where(
                    AgentProfile.tenant_id == tenant_id,
                    AgentProfile.role == Role.BROKER.value,
                    AgentProfile.is_active.is_(True),
                )
                .order_by(
                    AgentProfile.last_lead_assigned_at.asc().nulls_first(),
                    AgentProfile.created_at.asc(),
                    AgentProfile.id.asc(),
                )
            )
        )

    def add(self, session: Session, profile: AgentProfile) -> AgentProfile:
        session.add(profile)
        session.flush()
        return profile


class TeamInviteRepository:
    def get_pending_for_email(self, session: Session, tenant_id: str, email: str, now: datetime) -> TeamInvite | None:
        return session.scalar(
            select(TeamInvite)
            .where(
                TeamInvite.tenant_id == tenant_id,
                func.lower(TeamInvite.email) == email.lower(),
                TeamInvite.status == "pending",
                TeamInvite.expires_at > now,
            )
            .order_by(TeamInvite.created_at.desc())
            .limit(1)
        )

    def get_by_token(self, session: Session, token: str) -> TeamInvite | None:
        return session.scalar(select(TeamInvite).where(TeamInvite.token == token))

    def list_pending(self, session: Session, tenant_id: str) -> list[TeamInvite]:
        return list(
            session.scalars(
                select(TeamInvite)
                .where(TeamInvite.tenant_id == tenant_id, TeamInvite.status == "pending")
                .order_by(TeamInvite.created_at.desc())
            )
        )

    def add(self, session: Session, invite: TeamInvite) -> TeamInvite:
        session.add(invite)
        session.flush()
        return invite
