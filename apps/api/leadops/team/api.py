from __future__ import annotations

from fastapi import APIRouter, Depends, status
from sqlalchemy.orm import Session

from leadops.core.auth import AuthUser, get_current_user
from leadops.core.database import get_db
from leadops.platform.security import AuthContext, get_auth_context
from leadops.team.schemas import (
    InviteAccept,
    InviteCreate,
    InviteRead,
    MemberRead,
    MemberStatusResult,
    MemberStatusUpdate,
    TeamOverviewRead,
)
from leadops.team.service import team_service


router = APIRouter(prefix="/api/settings/team", tags=["team"])
invites_router = APIRouter(prefix="/api/team/invites", tags=["team"])


@router.get("", response_model=TeamOverviewRead)
def get_team(
    db: Session = Depends(get_db),
    ctx: AuthContext = Depends(get_auth_context),
) -> TeamOverviewRead:
    return team_service.get_overview(db, ctx)


@router.post("/invite", response_model=InviteRead, status_code=status.HTTP_201_CREATED)
def create_invite(
    payload: InviteCreate,
    db: Session = Depends(get_db),
    ctx: AuthContext = Depends(get_auth_context),
) -> InviteRead:
    return team_service.create_invite(db, ctx, payload)


@router.post("/member-status", response_model=MemberStatusResult)
def set_member_status(
    payload: MemberStatusUpdate,
    db: Session = Depends(get_db),
    ctx: AuthContext = Depends(get_auth_context),
) -> MemberStatusResult:
    return team_service.set_member_status(db, ctx, payload)


@invites_router.post("/{token}/accept", response_model=MemberRead)
def accept_invite(
    token: str,
    payload: InviteAccept,
    db: Session = Depends(get_db),
    user: AuthUser = Depends(get_current_user),
) -> MemberRead:
    return team_service.accept_invite(db, user, token, payload)
