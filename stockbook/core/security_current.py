from dataclasses import dataclass

from fastapi import Depends, HTTPException
from fastapi.security import OAuth2PasswordBearer
from sqlalchemy import case, select
from sqlalchemy.orm import Session

from stockbook.core.deps import get_db
from stockbook.core.security import TokenValidationError, decode_token
from stockbook.models.account import Business, BusinessMembership, User

oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/auth/token")


@dataclass(frozen=True)
class BusinessAccess:
    business: Business
    user: User
    role: str
    membership_id: str

    @property
    def actor_label(self) -> str:
        """Human-readable identity cached on ledger entries and orders."""
        return self.user.full_name or self.user.username or self.user.email


def _membership_role_rank():
    return case(
        (BusinessMembership.role == "admin", 0),
        (BusinessMembership.role == "manager", 1),
        (BusinessMembership.role == "seller", 2),
        else_=3,
    )


def _resolve_business_access(db: Session, user: User) -> BusinessAccess | None:
    row = db.execute(
        select(BusinessMembership, Business)
        .join(Business, Business.id == BusinessMembership.business_id)
        .where(
            BusinessMembership.user_id == user.id,
            BusinessMembership.is_active.is_(True),
        )
        .order_by(_membership_role_rank(), BusinessMembership.created_at.asc())
        .limit(1)
    ).first()
    if not row:
        return None

    membership, business = row
    role = (membership.role or "viewer").lower()
    return BusinessAccess(business=business, user=user, role=role, membership_id=membership.id)


def get_current_user(token: str = Depends(oauth2_scheme), db: Session = Depends(get_db)) -> User:
    try:
        payload = decode_token(token, expected_type="access")
    except TokenValidationError as exc:
        raise HTTPException(status_code=401, detail=str(exc)) from exc

    user = db.execute(select(User).where(User.id == payload.get("sub"))).scalar_one_or_none()
    if not user or not user.is_active:
        raise HTTPException(status_code=401, detail="User not found")
    return user


def get_current_business_access(
    user: User = Depends(get_current_user), db: Session = Depends(get_db)
) -> BusinessAccess:
    access = _resolve_business_access(db, user)
    if not access:
        raise HTTPException(status_code=404, detail="Business not found")
    return access
