import hashlib
import secrets
import uuid
from datetime import timedelta

from sqlalchemy import func, select, update
from sqlalchemy.orm import Session

from stockbook.core.config import settings
from stockbook.core.time_utils import as_utc, utc_now
from stockbook.models.account import BusinessMembership, TeamInvitation, User


class InvitationError(ValueError):
    pass


class InvitationNotFoundError(InvitationError):
    pass


class InvitationInactiveError(InvitationError):
    pass


class InvitationEmailMismatchError(InvitationError):
    pass


class InvitationConflictError(InvitationError):
    pass


def generate_team_invitation_token() -> str:
    return f"ti_{secrets.token_urlsafe(24)}"


def hash_team_invitation_token(raw_token: str) -> str:
    token_material = f"{settings.secret_key}:{(raw_token or '').strip()}"
    return hashlib.sha256(token_material.encode("utf-8")).hexdigest()


def is_invitation_expired(invitation: TeamInvitation) -> bool:
    return as_utc(invitation.expires_at) <= utc_now()


def expire_stale_invitations(db: Session, business_id: str) -> None:
    db.execute(
        update(TeamInvitation)
        .where(
            TeamInvitation.business_id == business_id,
            TeamInvitation.status == "pending",
            TeamInvitation.expires_at <= utc_now(),
        )
        .values(status="expired")
        .execution_options(synchronize_session=False)
    )


def create_invitation(
    db: Session,
    *,
    business_id: str,
    invited_by_user_id: str,
    email: str,
    role: str,
    expires_in_days: int,
) -> tuple[TeamInvitation, str]:
    """Queue an invitation and return it with the raw token, which is not stored."""
    normalized_email = email.strip().lower()
    active_member = db.execute(
        select(BusinessMembership.id)
        .join(User, User.id == BusinessMembership.user_id)
        .where(
            BusinessMembership.business_id == business_id,
            BusinessMembership.is_active.is_(True),
            func.lower(User.email) == normalized_email,
        )
    ).first()
    if active_member:
        raise InvitationConflictError("User is already an active team member")

    expire_stale_invitations(db, business_id)
    pending = db.execute(
        select(TeamInvitation.id).where(
            TeamInvitation.business_id == business_id,
            func.lower(TeamInvitation.email) == normalized_email,
            TeamInvitation.status == "pending",
        )
    ).first()
    if pending:
        raise InvitationConflictError("An active invitation already exists for this email")

    raw_token = generate_team_invitation_token()
    now = utc_now()
    invitation = TeamInvitation(
        id=str(uuid.uuid4()),
        business_id=business_id,
        invited_by_user_id=invited_by_user_id,
        email=normalized_email,
        role=role,
        token_hash=hash_team_invitation_token(raw_token),
        status="pending",
        expires_at=now + timedelta(days=expires_in_days),
        invited_at=now,
    )
    db.add(invitation)
    db.flush()
    return invitation, raw_token


def resolve_pending_invitation(db: Session, raw_token: str) -> TeamInvitation:
    invitation = db.execute(
        select(TeamInvitation).where(TeamInvitation.token_hash == hash_team_invitation_token(raw_token))
    ).scalar_one_or_none()
    if not invitation:
        raise InvitationNotFoundError("Invitation not found")
    if invitation.status != "pending" or invitation.revoked_at is not None:
        raise InvitationInactiveError("Invitation is no longer active")
    if is_invitation_expired(invitation):
        raise InvitationInactiveError("Invitation has expired")
    return invitation


def accept_invitation(
    db: Session, *, invitation: TeamInvitation, user: User
) -> tuple[BusinessMembership, dict | None]:
    """Grant the invited role to ``user`` and close the invitation.

    Returns the membership and its previous state (``None`` when it is new).
    """
    if invitation.email.lower() != user.email.lower():
        raise InvitationEmailMismatchError("Invitation email does not match your account")

    membership = db.execute(
        select(BusinessMembership).where(
            BusinessMembership.business_id == invitation.business_id,
            BusinessMembership.user_id == user.id,
        )
    ).scalar_one_or_none()
    if membership and membership.is_active:
        raise InvitationConflictError("You are already an active team member")

    if membership:
        previous = {"role": membership.role, "is_active": membership.is_active}
        membership.role = invitation.role
        membership.is_active = True
    else:
        previous = None
        membership = BusinessMembership(
            id=str(uuid.uuid4()),
            business_id=invitation.business_id,
            user_id=user.id,
            role=invitation.role,
            is_active=True,
        )
        db.add(membership)

    invitation.status = "accepted"
    invitation.accepted_by_user_id = user.id
    invitation.accepted_at = utc_now()
    db.flush()
    return membership, previous
