from datetime import datetime

from pydantic import BaseModel, ConfigDict, EmailStr, field_validator, model_validator

from stockbook.core.permissions import ALLOWED_ROLES
from stockbook.schemas.common import PaginationMeta


def _normalize_role(value: str) -> str:
    role = value.strip().lower()
    if role not in ALLOWED_ROLES:
        raise ValueError(f"role must be one of: {', '.join(ALLOWED_ROLES)}")
    return role


class TeamMemberCreateIn(BaseModel):
    email: EmailStr
    role: str = "seller"

    @field_validator("role")
    @classmethod
    def validate_role(cls, value: str) -> str:
        return _normalize_role(value)

    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "email": "seller@example.com",
                "role": "seller",
            }
        }
    )


class TeamMemberUpdateIn(BaseModel):
    role: str | None = None
    is_active: bool | None = None

    @field_validator("role")
    @classmethod
    def validate_role(cls, value: str | None) -> str | None:
        if value is None:
            return None
        return _normalize_role(value)

    @model_validator(mode="after")
    def validate_any_field_present(self) -> "TeamMemberUpdateIn":
        if self.role is None and self.is_active is None:
            raise ValueError("At least one field must be provided")
        return self


class TeamMemberOut(BaseModel):
    membership_id: str
    user_id: str
    email: EmailStr
    username: str
    full_name: str | None = None
    role: str
    is_active: bool
    created_at: datetime


class TeamMemberListOut(BaseModel):
    items: list[TeamMemberOut]
    pagination: PaginationMeta


class TeamInvitationCreateIn(BaseModel):
    email: EmailStr
    role: str = "seller"
    expires_in_days: int = 7

    @field_validator("role")
    @classmethod
    def validate_role(cls, value: str) -> str:
        return _normalize_role(value)

    @field_validator("expires_in_days")
    @classmethod
    def validate_expiry(cls, value: int) -> int:
        if value < 1 or value > 30:
            raise ValueError("expires_in_days must be between 1 and 30")
        return value

    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "email": "clerk@example.com",
                "role": "manager",
                "expires_in_days": 7,
            }
        }
    )


class TeamInvitationOut(BaseModel):
    invitation_id: str
    business_id: str
    invited_by_user_id: str
    accepted_by_user_id: str | None = None
    email: EmailStr
    role: str
    status: str
    expires_at: datetime
    invited_at: datetime
    accepted_at: datetime | None = None
    revoked_at: datetime | None = None


class TeamInvitationCreateOut(TeamInvitationOut):
    invitation_token: str


class TeamInvitationListOut(BaseModel):
    items: list[TeamInvitationOut]
    pagination: PaginationMeta


class TeamInvitationAcceptIn(BaseModel):
    invitation_token: str

    @field_validator("invitation_token")
    @classmethod
    def validate_token(cls, value: str) -> str:
        token = value.strip()
        if not token:
            raise ValueError("invitation_token is required")
        return token

    model_config = ConfigDict(
        json_schema_extra={"example": {"invitation_token": "ti_abc123"}}
    )
