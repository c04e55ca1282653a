import uuid

from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy import func, select
from sqlalchemy.orm import Session

from stockbook.core.api_docs import error_responses
from stockbook.core.deps import get_db
from stockbook.core.permissions import require_business_roles
from stockbook.core.security_current import BusinessAccess, get_current_user
from stockbook.core.time_utils import as_utc, utc_now
from stockbook.models.account import BusinessMembership, TeamInvitation, User
from stockbook.schemas.common import PaginationMeta
from stockbook.schemas.team import (
    TeamInvitationAcceptIn,
    TeamInvitationCreateIn,
    TeamInvitationCreateOut,
    TeamInvitationListOut,
    TeamInvitationOut,
    TeamMemberCreateIn,
    TeamMemberListOut,
    TeamMemberOut,
    TeamMemberUpdateIn,
)
from stockbook.services.account_service import find_user_by_email
from stockbook.services.activity_service import log_audit_event
from stockbook.services.team_invitation_service import (
    InvitationConflictError,
    InvitationEmailMismatchError,
    InvitationError,
    InvitationNotFoundError,
    accept_invitation,
    create_invitation,
    expire_stale_invitations,
    resolve_pending_invitation,
)

router = APIRouter(prefix="/team", tags=["team"])


def _member_out(membership: BusinessMembership, user: User) -> TeamMemberOut:
    return TeamMemberOut(
        membership_id=membership.id,
        user_id=user.id,
        email=user.email,
        username=user.username,
        full_name=user.full_name,
        role=membership.role,
        is_active=membership.is_active,
        created_at=as_utc(membership.created_at),
    )


def _invitation_out(invitation: TeamInvitation) -> TeamInvitationOut:
    return TeamInvitationOut(
        invitation_id=invitation.id,
        business_id=invitation.business_id,
        invited_by_user_id=invitation.invited_by_user_id,
        accepted_by_user_id=invitation.accepted_by_user_id,
        email=invitation.email,
        role=invitation.role,
        status=invitation.status,
        expires_at=as_utc(invitation.expires_at),
        invited_at=as_utc(invitation.invited_at),
        accepted_at=as_utc(invitation.accepted_at) if invitation.accepted_at else None,
        revoked_at=as_utc(invitation.revoked_at) if invitation.revoked_at else None,
    )


def _invitation_http_error(exc: InvitationError) -> HTTPException:
    if isinstance(exc, InvitationNotFoundError):
        return HTTPException(status_code=404, detail=str(exc))
    if isinstance(exc, InvitationEmailMismatchError):
        return HTTPException(status_code=403, detail=str(exc))
    if isinstance(exc, InvitationConflictError):
        return HTTPException(status_code=409, detail=str(exc))
    return HTTPException(status_code=400, detail=str(exc))


def _get_membership_or_404(db: Session, *, business_id: str, membership_id: str) -> tuple[BusinessMembership, User]:
    row = db.execute(
        select(BusinessMembership, User)
        .join(User, User.id == BusinessMembership.user_id)
        .where(
            BusinessMembership.id == membership_id,
            BusinessMembership.business_id == business_id,
        )
    ).first()
    if not row:
        raise HTTPException(status_code=404, detail="Membership not found")
    return row[0], row[1]


def _guard_self_change(
    access: BusinessAccess,
    membership: BusinessMembership,
    *,
    new_role: str | None,
    new_is_active: bool | None,
) -> None:
    if membership.user_id != access.user.id:
        return
    if new_is_active is False:
        raise HTTPException(status_code=400, detail="You cannot deactivate your own membership")
    if new_role is not None and new_role != "admin":
        raise HTTPException(status_code=400, detail="You cannot remove your own admin role")


def _audit_membership_change(
    db: Session,
    *,
    access: BusinessAccess,
    action: str,
    membership: BusinessMembership,
    member: User,
    previous: dict | None,
) -> None:
    log_audit_event(
        db,
        business_id=access.business.id,
        actor_user_id=access.user.id,
        action=action,
        target_type="business_membership",
        target_id=membership.id,
        metadata_json={
            "user_id": member.id,
            "email": member.email,
            "previous": previous,
            "next": {"role": membership.role, "is_active": membership.is_active},
        },
    )


@router.get(
    "/members",
    response_model=TeamMemberListOut,
    summary="List team memberships",
    responses=error_responses(401, 403, 422, 500),
)
def list_team_members(
    include_inactive: bool = Query(default=False),
    limit: int = Query(default=50, ge=1, le=200),
    offset: int = Query(default=0, ge=0),
    db: Session = Depends(get_db),
    access: BusinessAccess = Depends(require_business_roles("admin")),
):
    filters = [BusinessMembership.business_id == access.business.id]
    if not include_inactive:
        filters.append(BusinessMembership.is_active.is_(True))

    total = int(db.execute(select(func.count(BusinessMembership.id)).where(*filters)).scalar_one())
    rows = db.execute(
        select(BusinessMembership, User)
        .join(User, User.id == BusinessMembership.user_id)
        .where(*filters)
        .order_by(BusinessMembership.created_at.asc())
        .offset(offset)
        .limit(limit)
    ).all()

    items = [_member_out(membership, user) for membership, user in rows]
    count = len(items)
    return TeamMemberListOut(
        items=items,
        pagination=PaginationMeta(
            total=total,
            limit=limit,
            offset=offset,
            count=count,
            has_next=(offset + count) < total,
        ),
    )


@router.post(
    "/members",
    response_model=TeamMemberOut,
    summary="Add an existing user to the team",
    responses=error_responses(400, 401, 403, 404, 409, 422, 500),
)
def add_team_member(
    payload: TeamMemberCreateIn,
    db: Session = Depends(get_db),
    access: BusinessAccess = Depends(require_business_roles("admin")),
):
    target_user = find_user_by_email(db, payload.email)
    if not target_user:
        raise HTTPException(status_code=404, detail="User not found")

    existing = db.execute(
        select(BusinessMembership).where(
            BusinessMembership.business_id == access.business.id,
            BusinessMembership.user_id == target_user.id,
        )
    ).scalar_one_or_none()
    if existing and existing.is_active:
        raise HTTPException(status_code=409, detail="User is already an active team member")

    if existing:
        previous = {"role": existing.role, "is_active": existing.is_active}
        existing.role = payload.role
        existing.is_active = True
        membership = existing
        action = "team.member.reactivated"
    else:
        previous = None
        membership = BusinessMembership(
            id=str(uuid.uuid4()),
            business_id=access.business.id,
            user_id=target_user.id,
            role=payload.role,
            is_active=True,
        )
        db.add(membership)
        action = "team.member.added"

    _audit_membership_change(
        db, access=access, action=action, membership=membership, member=target_user, previous=previous
    )
    db.commit()
    db.refresh(membership)
    return _member_out(membership, target_user)


@router.patch(
    "/members/{membership_id}",
    response_model=TeamMemberOut,
    summary="Update team member role or status",
    responses=error_responses(400, 401, 403, 404, 422, 500),
)
def update_team_member(
    membership_id: str,
    payload: TeamMemberUpdateIn,
    db: Session = Depends(get_db),
    access: BusinessAccess = Depends(require_business_roles("admin")),
):
    membership, member = _get_membership_or_404(
        db, business_id=access.business.id, membership_id=membership_id
    )
    _guard_self_change(access, membership, new_role=payload.role, new_is_active=payload.is_active)

    previous = {"role": membership.role, "is_active": membership.is_active}
    if payload.role is not None:
        membership.role = payload.role
    if payload.is_active is not None:
        membership.is_active = payload.is_active

    _audit_membership_change(
        db, access=access, action="team.member.updated", membership=membership, member=member, previous=previous
    )
    db.commit()
    db.refresh(membership)
    return _member_out(membership, member)


@router.delete(
    "/members/{membership_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    summary="Deactivate team member",
    responses=error_responses(400, 401, 403, 404, 500),
)
def deactivate_team_member(
    membership_id: str,
    db: Session = Depends(get_db),
    access: BusinessAccess = Depends(require_business_roles("admin")),
):
    membership, member = _get_membership_or_404(
        db, business_id=access.business.id, membership_id=membership_id
    )
    _guard_self_change(access, membership, new_role=None, new_is_active=False)
    if not membership.is_active:
        return None

    previous = {"role": membership.role, "is_active": membership.is_active}
    membership.is_active = False
    _audit_membership_change(
        db, access=access, action="team.member.deactivated", membership=membership, member=member, previous=previous
    )
    db.commit()
    return None


@router.get(
    "/invitations",
    response_model=TeamInvitationListOut,
    summary="List team invitations",
    responses=error_responses(401, 403, 422, 500),
)
def list_team_invitations(
    status_filter: str | None = Query(default=None, alias="status"),
    limit: int = Query(default=50, ge=1, le=200),
    offset: int = Query(default=0, ge=0),
    db: Session = Depends(get_db),
    access: BusinessAccess = Depends(require_business_roles("admin")),
):
    expire_stale_invitations(db, access.business.id)
    db.commit()

    filters = [TeamInvitation.business_id == access.business.id]
    if status_filter:
        filters.append(TeamInvitation.status == status_filter.strip().lower())

    total = int(db.execute(select(func.count(TeamInvitation.id)).where(*filters)).scalar_one())
    rows = db.execute(
        select(TeamInvitation)
        .where(*filters)
        .order_by(TeamInvitation.invited_at.desc())
        .offset(offset)
        .limit(limit)
    ).scalars().all()

    items = [_invitation_out(invitation) for invitation in rows]
    count = len(items)
    return TeamInvitationListOut(
        items=items,
        pagination=PaginationMeta(
            total=total,
            limit=limit,
            offset=offset,
            count=count,
            has_next=(offset + count) < total,
        ),
    )


@router.post(
    "/invitations",
    response_model=TeamInvitationCreateOut,
    summary="Invite a teammate by email",
    description=(
        "Queues an invitation carrying the role the invitee will receive. The raw token is "
        "only returned here; the invitee redeems it through /team/invitations/accept or "
        "by registering with it."
    ),
    responses=error_responses(400, 401, 403, 409, 422, 500),
)
def create_team_invitation(
    payload: TeamInvitationCreateIn,
    db: Session = Depends(get_db),
    access: BusinessAccess = Depends(require_business_roles("admin")),
):
    try:
        invitation, raw_token = create_invitation(
            db,
            business_id=access.business.id,
            invited_by_user_id=access.user.id,
            email=payload.email,
            role=payload.role,
            expires_in_days=payload.expires_in_days,
        )
    except InvitationError as exc:
        raise _invitation_http_error(exc) from exc

    log_audit_event(
        db,
        business_id=access.business.id,
        actor_user_id=access.user.id,
        action="team.invitation.created",
        target_type="team_invitation",
        target_id=invitation.id,
        metadata_json={
            "email": invitation.email,
            "role": invitation.role,
            "expires_at": as_utc(invitation.expires_at).isoformat(),
        },
    )
    db.commit()
    db.refresh(invitation)
    return TeamInvitationCreateOut(
        **_invitation_out(invitation).model_dump(),
        invitation_token=raw_token,
    )


@router.delete(
    "/invitations/{invitation_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    summary="Revoke a pending invitation",
    responses=error_responses(400, 401, 403, 404, 500),
)
def revoke_team_invitation(
    invitation_id: str,
    db: Session = Depends(get_db),
    access: BusinessAccess = Depends(require_business_roles("admin")),
):
    invitation = db.execute(
        select(TeamInvitation).where(
            TeamInvitation.id == invitation_id,
            TeamInvitation.business_id == access.business.id,
        )
    ).scalar_one_or_none()
    if not invitation:
        raise HTTPException(status_code=404, detail="Invitation not found")
    if invitation.status != "pending":
        raise HTTPException(status_code=400, detail="Only pending invitations can be revoked")

    invitation.status = "revoked"
    invitation.revoked_at = utc_now()
    log_audit_event(
        db,
        business_id=access.business.id,
        actor_user_id=access.user.id,
        action="team.invitation.revoked",
        target_type="team_invitation",
        target_id=invitation.id,
        metadata_json={"email": invitation.email, "role": invitation.role},
    )
    db.commit()
    return None


@router.post(
    "/invitations/accept",
    response_model=TeamMemberOut,
    summary="Accept an invitation for the signed-in user",
    responses=error_responses(400, 401, 403, 404, 409, 422, 500),
)
def accept_team_invitation(
    payload: TeamInvitationAcceptIn,
    db: Session = Depends(get_db),
    actor: User = Depends(get_current_user),
):
    try:
        invitation = resolve_pending_invitation(db, payload.invitation_token)
        membership, previous = accept_invitation(db, invitation=invitation, user=actor)
    except InvitationError as exc:
        raise _invitation_http_error(exc) from exc

    log_audit_event(
        db,
        business_id=invitation.business_id,
        actor_user_id=actor.id,
        action="team.invitation.accepted",
        target_type="team_invitation",
        target_id=invitation.id,
        metadata_json={
            "email": invitation.email,
            "role": membership.role,
            "membership_id": membership.id,
            "previous": previous,
        },
    )
    db.commit()
    db.refresh(membership)
    return _member_out(membership, actor)
