from __future__ import annotations

import secrets
from dataclasses import dataclass, field
from datetime import datetime, timedelta

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from leadops.billing.schemas import SeatCapacityAlertRead, SeatUsageRead
from leadops.billing.seats import get_seat_capacity_alert
from leadops.billing.service import SeatBillingService
from leadops.core.auth import AuthUser
from leadops.core.config import get_settings
from leadops.platform.audit import AuditEntry, AuditTrail
from leadops.platform.errors import BusinessRuleError, NotFoundError, ValidationFailure
from leadops.platform.security import AuthContext, AuthenticationError, AuthorizationError, can_manage_team, consumes_seat
from leadops.platform.timeutils import as_utc, utcnow
from leadops.team.errors import INVITE_PENDING_MESSAGE, SEAT_LIMIT_MESSAGE, to_domain_error
from leadops.team.models import AgentProfile, TeamInvite
from leadops.team.repository import AgentProfileRepository, TeamInviteRepository
from leadops.team.schemas import (
    InviteAccept,
    InviteCreate,
    InviteRead,
    MemberRead,
    MemberStatusResult,
    MemberStatusUpdate,
    TeamOverviewRead,
)


@dataclass(slots=True)
class TeamService:
    agent_repository: AgentProfileRepository = AgentProfileRepository()
    invite_repository: TeamInviteRepository = TeamInviteRepository()
    seats: SeatBillingService = field(default_factory=SeatBillingService)
    audit: AuditTrail = field(default_factory=AuditTrail)

    def get_overview(self, session: Session, ctx: AuthContext) -> TeamOverviewRead:
        self._require_team_role(ctx)
        usage = self.seats.get_usage(session, ctx.tenant_id)
        session.commit()
        alert = get_seat_capacity_alert(usage, get_settings().seat_alert_threshold)
        return TeamOverviewRead(
            members=[MemberRead.model_validate(item) for item in self.agent_repository.list_members(session, ctx.tenant_id)],
            pending_invites=[InviteRead.model_validate(item) for item in self.invite_repository.list_pending(session, ctx.tenant_id)],
            usage=SeatUsageRead(**usage.as_dict()),
            alert=SeatCapacityAlertRead(level=alert.level, threshold=alert.threshold, message=alert.message) if alert else None,
        )

    def create_invite(
        self, session: Session, ctx: AuthContext, payload: InviteCreate, *, now: datetime | None = None
    ) -> InviteRead:
        self._require_team_role(ctx)
        current_time = now or utcnow()
        email = str(payload.email).strip().lower()

        if self.invite_repository.get_pending_for_email(session, ctx.tenant_id, email, current_time) is not None:
            self._reject(
                session,
                ctx,
                action="invite_blocked_pending",
                message="Invite blocked: a pending invite already exists for this email.",
                metadata={"email": email, "role": payload.role},
                error=BusinessRuleError("invite_already_pending", INVITE_PENDING_MESSAGE),
            )

        if consumes_seat(payload.role):
            usage = self.seats.lock_usage(session, ctx.tenant_id)
            if usage.available <= 0:
                self._reject(
                    session,
                    ctx,
                    action="invite_blocked_limit",
                    message="Invite blocked: broker seat limit reached.",
                    metadata={"email": email, "used": usage.used, "seat_limit": usage.seat_limit},
                    error=BusinessRuleError("broker_seat_limit_reached", SEAT_LIMIT_MESSAGE),
                )

        invite = self.invite_repository.add(
            session,
            TeamInvite(
                tenant_id=ctx.tenant_id,
                email=email,
                role=payload.role,
                status="pending",
                token=secrets.token_urlsafe(32),
                invited_by=ctx.user_id,
                expires_at=current_time + timedelta(days=get_settings().team_invite_ttl_days),
            ),
        )
        self._commit(session)
        self.audit.dispatch(
            session,
            AuditEntry(
                tenant_id=ctx.tenant_id,
                actor_id=ctx.user_id,
                target_id=str(invite.id),
                action="invite_created",
                message="Team invite created.",
                metadata={"email": email, "role": payload.role},
            ),
        )
        return InviteRead.model_validate(invite)

    def accept_invite(
        self,
        session: Session,
        user: AuthUser,
        token: str,
        payload: InviteAccept,
        *,
        now: datetime | None = None,
    ) -> MemberRead:
        if user.is_anonymous:
            raise AuthenticationError("authentication required")
        current_time = now or utcnow()

        invite = self.invite_repository.get_by_token(session, token)
        if invite is None or invite.status != "pending":
            raise NotFoundError("invite not found")
        if as_utc(invite.expires_at) <= current_time:
            invite.status = "expired"
            self._commit(session)
            raise BusinessRuleError("invite_expired", "This invite has expired.")

        tenant_id = invite.tenant_id
        profile = self.agent_repository.get_by_user(session, tenant_id, user.sub)
        activating_broker = consumes_seat(invite.role) and not (
            profile is not None and consumes_seat(profile.role) and profile.is_active
        )
        if activating_broker:
            usage = self.seats.lock_usage(session, tenant_id)
            if usage.available <= 0:
                self.audit.dispatch(
                    session,
                    AuditEntry(
                        tenant_id=tenant_id,
                        actor_id=user.sub,
                        target_id=str(invite.id),
                        action="invite_accept_blocked_limit",
                        level="warning",
                        message="Invite acceptance blocked: broker seat limit reached.",
                        metadata={"used": usage.used, "seat_limit": usage.seat_limit},
                    ),
                )
                raise BusinessRuleError("broker_seat_limit_reached", SEAT_LIMIT_MESSAGE)

        if profile is None:
            profile = self.agent_repository.add(
                session,
                AgentProfile(
                    tenant_id=tenant_id,
                    user_id=user.sub,
                    full_name=(payload.full_name or "").strip() or None,
                    email=invite.email,
                    role=invite.role,
                    is_active=True,
                ),
            )
        else:
            profile.role = invite.role
            profile.is_active = True

        invite.status = "accepted"
        invite.accepted_at = current_time
        self._commit(session)
        self.audit.dispatch(
            session,
            AuditEntry(
                tenant_id=tenant_id,
                actor_id=user.sub,
                target_id=str(profile.id),
                action="invite_accepted",
                message="Team invite accepted.",
                metadata={"invite_id": str(invite.id), "role": invite.role},
            ),
        )
        return MemberRead.model_validate(profile)

    def set_member_status(self, session: Session, ctx: AuthContext, payload: MemberStatusUpdate) -> MemberStatusResult:
        self._require_team_role(ctx)
        member = self.agent_repository.get_by_user(session, ctx.tenant_id, payload.user_id)
        if member is None:
            raise NotFoundError("member not found")
        if not consumes_seat(member.role):
            raise ValidationFailure("only broker members can be activated or deactivated")
        if member.is_active == payload.is_active:
            return MemberStatusResult(unchanged=True, member=MemberRead.model_validate(member))

        if payload.is_active:
            usage = self.seats.lock_usage(session, ctx.tenant_id)
            if usage.available <= 0:
                self._reject(
                    session,
                    ctx,
                    action="member_status_blocked_limit",
                    message="Broker reactivation blocked: seat limit reached.",
                    metadata={"user_id": member.user_id, "used": usage.used, "seat_limit": usage.seat_limit},
                    error=BusinessRuleError("broker_seat_limit_reached", SEAT_LIMIT_MESSAGE),
                    target_id=str(member.id),
                )

        member.is_active = payload.is_active
        self._commit(session)
        self.audit.dispatch(
            session,
            AuditEntry(
                tenant_id=ctx.tenant_id,
                actor_id=ctx.user_id,
                target_id=str(member.id),
                action="member_reactivated" if payload.is_active else "member_deactivated",
                message="Broker reactivated." if payload.is_active else "Broker deactivated.",
                metadata={"user_id": member.user_id},
            ),
        )
        return MemberStatusResult(member=MemberRead.model_validate(member))

    def _reject(
        self,
        session: Session,
        ctx: AuthContext,
        *,
        action: str,
        message: str,
        metadata: dict[str, object],
        error: BusinessRuleError,
        target_id: str | None = None,
    ) -> None:
        session.rollback()
        self.audit.dispatch(
            session,
            AuditEntry(
                tenant_id=ctx.tenant_id,
                actor_id=ctx.user_id,
                target_id=target_id,
                action=action,
                level="warning",
                message=message,
                metadata=metadata,
            ),
        )
        raise error

    @staticmethod
    def _commit(session: Session) -> None:
        try:
            session.commit()
        except SQLAlchemyError as exc:
            session.rollback()
            raise to_domain_error(exc) from exc

    @staticmethod
    def _require_team_role(ctx: AuthContext) -> None:
        if not can_manage_team(ctx.role):
            raise AuthorizationError("only owner or manager may manage the team")


team_service = TeamService()
