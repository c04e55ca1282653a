from datetime import datetime

from pydantic import BaseModel, field_validator, model_validator


class WarehouseCreate(BaseModel):
    name: str
    location: str | None = None

    @field_validator("name")
    @classmethod
    def validate_name(cls, value: str) -> str:
        cleaned = value.strip()
        if not cleaned:
            raise ValueError("name is required")
        return cleaned

    @field_validator("location")
    @classmethod
    def normalize_location(cls, value: str | None) -> str | None:
        if value is None:
            return None
        return value.strip() or None


class WarehouseUpdate(BaseModel):
    name: str | None = None
    location: str | None = None

    @field_validator("name")
    @classmethod
    def validate_name(cls, value: str | None) -> str | None:
        if value is None:
            return None
        cleaned = value.strip()
        if not cleaned:
            raise ValueError("name cannot be empty")
        return cleaned

    @model_validator(mode="after")
    def validate_any_field_present(self) -> "WarehouseUpdate":
        if not self.model_fields_set:
            raise ValueError("At least one field must be provided")
        return self


class WarehouseOut(BaseModel):
    id: str
    name: str
    location: str | None = None
    is_default: bool
    created_at: datetime
