from datetime import datetime
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator

from stockbook.core.time_utils import as_utc
from stockbook.schemas.common import PaginationMeta

MovementType = Literal["in", "out", "adjustment", "damaged", "sale", "purchase", "transfer"]


class MovementCreate(BaseModel):
    variant_id: str
    warehouse_id: str | None = Field(
        default=None, description="Defaults to the business default warehouse."
    )
    quantity: int = Field(
        ...,
        description=(
            "Magnitude for in/purchase/out/sale/damaged (the sign is applied from the type). "
            "Signed value for adjustment and transfer. Cannot be zero."
        ),
    )
    movement_type: MovementType
    reference: str | None = Field(default=None, max_length=255)

    @field_validator("quantity")
    @classmethod
    def validate_non_zero_quantity(cls, value: int) -> int:
        if value == 0:
            raise ValueError("quantity cannot be zero")
        return value

    @field_validator("reference")
    @classmethod
    def normalize_reference(cls, value: str | None) -> str | None:
        if value is None:
            return None
        cleaned = value.strip()
        return cleaned or None

    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "variant_id": "variant-id-here",
                "quantity": 3,
                "movement_type": "out",
                "reference": "Walk-in sale",
            }
        }
    )


class MovementOut(BaseModel):
    id: str
    variant_id: str
    warehouse_id: str
    quantity: int
    movement_type: str
    reference: str | None = None
    actor_user_id: str | None = None
    actor_label: str | None = None
    product_name: str | None = None
    variant_name: str | None = None
    sku: str | None = None
    created_at: datetime


class StockLevelOut(BaseModel):
    id: str
    variant_id: str
    product_id: str
    product_name: str
    variant_name: str
    sku: str | None = None
    warehouse_id: str
    warehouse_name: str
    quantity: int
    safety_stock: int
    initial_quantity: int
    status: str
    last_modified: datetime


class MovementRecordOut(BaseModel):
    movement: MovementOut
    stock_level: StockLevelOut


class StockLevelUpdate(BaseModel):
    safety_stock: int = Field(ge=0)


class MovementListOut(BaseModel):
    items: list[MovementOut]
    pagination: PaginationMeta


class StockLevelListOut(BaseModel):
    items: list[StockLevelOut]
    pagination: PaginationMeta


def movement_out(entry) -> MovementOut:
    return MovementOut(
        id=entry.id,
        variant_id=entry.variant_id,
        warehouse_id=entry.warehouse_id,
        quantity=entry.quantity,
        movement_type=entry.movement_type,
        reference=entry.reference,
        actor_user_id=entry.actor_user_id,
        actor_label=entry.actor_label,
        product_name=entry.product_name_cache,
        variant_name=entry.variant_name_cache,
        sku=entry.sku_cache,
        created_at=as_utc(entry.created_at),
    )
