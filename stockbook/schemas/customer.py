from datetime import datetime

from pydantic import BaseModel, ConfigDict, EmailStr, field_validator

from stockbook.schemas.common import PaginationMeta


class CustomerCreateIn(BaseModel):
    name: str
    phone: str | None = None
    email: EmailStr | None = None
    note: str | None = None

    @field_validator("name")
    @classmethod
    def validate_name(cls, value: str) -> str:
        cleaned = " ".join(value.split())
        if not cleaned:
            raise ValueError("name is required")
        return cleaned

    @field_validator("phone", "note")
    @classmethod
    def normalize_optional_text(cls, value: str | None) -> str | None:
        if value is None:
            return None
        cleaned = value.strip()
        return cleaned or None

    @field_validator("email")
    @classmethod
    def normalize_email(cls, value: EmailStr | None) -> EmailStr | None:
        if value is None:
            return None
        return str(value).strip().lower()

    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "name": "Kofi Mensah",
                "phone": "+233201234567",
                "email": "kofi@example.com",
                "note": "Wholesale buyer",
            }
        }
    )


class CustomerOut(BaseModel):
    id: str
    name: str
    phone: str | None = None
    email: EmailStr | None = None
    note: str | None = None
    order_count: int = 0
    created_at: datetime


class CustomerListOut(BaseModel):
    items: list[CustomerOut]
    pagination: PaginationMeta
    q: str | None = None
