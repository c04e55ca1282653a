from datetime import datetime
from decimal import Decimal
from typing import Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from stockbook.schemas.common import PaginationMeta

OrderStatus = Literal["pending", "completed", "cancelled"]


class OrderItemIn(BaseModel):
    variant_id: str
    qty: int = Field(gt=0)
    unit_price: Optional[Decimal] = Field(default=None, ge=0, description="Defaults to the variant price.")


class OrderCreate(BaseModel):
    customer_name: str
    warehouse_id: Optional[str] = None
    note: Optional[str] = Field(default=None, max_length=255)
    items: list[OrderItemIn] = Field(min_length=1)

    @field_validator("customer_name")
    @classmethod
    def validate_customer_name(cls, value: str) -> str:
        cleaned = " ".join(value.split())
        if not cleaned:
            raise ValueError("customer_name is required")
        return cleaned

    @model_validator(mode="after")
    def validate_unique_variants(self) -> "OrderCreate":
        variant_ids = [item.variant_id for item in self.items]
        if len(variant_ids) != len(set(variant_ids)):
            raise ValueError("Each variant may appear only once per order")
        return self

    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "customer_name": "Kofi Mensah",
                "note": "Pickup on Friday",
                "items": [
                    {"variant_id": "variant-id-here", "qty": 2},
                ],
            }
        }
    )


class OrderStatusUpdateIn(BaseModel):
    status: Literal["completed", "cancelled"]

    model_config = ConfigDict(json_schema_extra={"example": {"status": "completed"}})


class OrderItemOut(BaseModel):
    id: str
    variant_id: str
    product_name: str | None = None
    variant_name: str | None = None
    qty: int
    unit_price: float
    line_total: float


class OrderOut(BaseModel):
    id: str
    reference: str
    customer_id: str | None = None
    customer_name: str
    warehouse_id: str
    status: OrderStatus
    total_amount: float
    note: str | None = None
    items: list[OrderItemOut]
    completed_at: datetime | None = None
    created_at: datetime
    updated_at: datetime


class OrderListOut(BaseModel):
    items: list[OrderOut]
    pagination: PaginationMeta
    status: OrderStatus | None = None
