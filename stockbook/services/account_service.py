import re
import uuid
from dataclasses import dataclass

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from stockbook.core.id_utils import generate_short_token
from stockbook.core.security import hash_password
from stockbook.models.account import Business, BusinessMembership, TeamInvitation, User
from stockbook.models.warehouse import Warehouse
from stockbook.services.activity_service import publish_change
from stockbook.services.inventory_service import ensure_default_warehouse
from stockbook.services.team_invitation_service import (
    InvitationEmailMismatchError,
    accept_invitation,
    resolve_pending_invitation,
)


class AccountError(ValueError):
    pass


class EmailAlreadyRegisteredError(AccountError):
    pass


@dataclass(frozen=True)
class ProvisionedAccount:
    user: User
    business: Business
    membership: BusinessMembership
    warehouse: Warehouse


def slugify_username(seed: str) -> str:
    cleaned = re.sub(r"[^a-z0-9_]+", "_", seed.strip().lower())
    cleaned = re.sub(r"_+", "_", cleaned).strip("_")
    return cleaned[:30] or "user"


def username_taken(db: Session, username: str, *, exclude_user_id: str | None = None) -> bool:
    stmt = select(User.id).where(func.lower(User.username) == username.lower())
    if exclude_user_id:
        stmt = stmt.where(User.id != exclude_user_id)
    return db.execute(stmt.limit(1)).scalar_one_or_none() is not None


def unique_username(db: Session, preferred: str | None, fallback_seed: str) -> str:
    base = slugify_username(preferred or fallback_seed)
    candidate = base
    while username_taken(db, candidate):
        candidate = f"{base[:22]}_{generate_short_token(6)}"
    return candidate


def find_user_by_email(db: Session, email: str) -> User | None:
    return db.execute(
        select(User).where(func.lower(User.email) == email.strip().lower())
    ).scalar_one_or_none()


def provision_account(
    db: Session,
    *,
    email: str,
    password: str,
    full_name: str,
    username: str | None = None,
    business_name: str | None = None,
) -> ProvisionedAccount:
    """Create a user together with their business, admin membership and default warehouse."""
    normalized_email = email.strip().lower()
    if find_user_by_email(db, normalized_email):
        raise EmailAlreadyRegisteredError("Email already registered")

    user = User(
        email=normalized_email,
        username=unique_username(db, username, normalized_email.split("@")[0]),
        full_name=full_name,
        hashed_password=hash_password(password),
    )
    db.add(user)
    db.flush()

    business = Business(
        id=str(uuid.uuid4()),
        owner_user_id=user.id,
        name=(business_name or "").strip() or f"{full_name}'s business",
    )
    db.add(business)
    db.flush()

    membership = BusinessMembership(
        id=str(uuid.uuid4()),
        business_id=business.id,
        user_id=user.id,
        role="admin",
        is_active=True,
    )
    db.add(membership)

    warehouse = ensure_default_warehouse(db, business.id)
    publish_change(
        db,
        business_id=business.id,
        entity_type="warehouse",
        entity_id=warehouse.id,
        action="created",
        payload={"name": warehouse.name},
    )
    return ProvisionedAccount(user=user, business=business, membership=membership, warehouse=warehouse)


def provision_invited_account(
    db: Session,
    *,
    invitation_token: str,
    email: str,
    password: str,
    full_name: str,
    username: str | None = None,
) -> tuple[User, BusinessMembership, TeamInvitation]:
    """Create a user who joins the inviting business instead of starting a new one."""
    invitation = resolve_pending_invitation(db, invitation_token)
    normalized_email = email.strip().lower()
    if invitation.email.lower() != normalized_email:
        raise InvitationEmailMismatchError("Invitation email does not match the registration email")
    if find_user_by_email(db, normalized_email):
        raise EmailAlreadyRegisteredError("Email already registered")

    user = User(
        email=normalized_email,
        username=unique_username(db, username, normalized_email.split("@")[0]),
        full_name=full_name,
        hashed_password=hash_password(password),
    )
    db.add(user)
    db.flush()

    membership, _ = accept_invitation(db, invitation=invitation, user=user)
    return user, membership, invitation
