from datetime import datetime
from decimal import Decimal
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from stockbook.schemas.common import PaginationMeta


def _clean_optional(value: Optional[str]) -> Optional[str]:
    if value is None:
        return None
    cleaned = value.strip()
    return cleaned or None


def _clean_images(value: Optional[list[str]]) -> Optional[list[str]]:
    if value is None:
        return None
    return [url.strip() for url in value if url and url.strip()]


class VariantCreate(BaseModel):
    variant_name: str
    price: Decimal = Field(ge=0)
    barcode: Optional[str] = None
    initial_quantity: int = Field(default=0, ge=0)
    safety_stock: int = Field(default=0, ge=0)

    @field_validator("variant_name")
    @classmethod
    def validate_variant_name(cls, value: str) -> str:
        cleaned = value.strip()
        if not cleaned:
            raise ValueError("variant_name is required")
        return cleaned

    @field_validator("barcode")
    @classmethod
    def normalize_barcode(cls, value: Optional[str]) -> Optional[str]:
        return _clean_optional(value)

    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "variant_name": "Blue / 6 yards",
                "price": 45.0,
                "barcode": "6151100000011",
                "initial_quantity": 12,
                "safety_stock": 3,
            }
        }
    )


class VariantAddIn(VariantCreate):
    warehouse_id: Optional[str] = None


class ProductCreate(BaseModel):
    name: str
    sku: Optional[str] = None
    description: Optional[str] = None
    category: Optional[str] = None
    images: list[str] = Field(default_factory=list)
    warehouse_id: Optional[str] = None
    variants: list[VariantCreate] = Field(min_length=1)

    @field_validator("name")
    @classmethod
    def validate_name(cls, value: str) -> str:
        cleaned = value.strip()
        if not cleaned:
            raise ValueError("name is required")
        return cleaned

    @field_validator("sku", "description", "category")
    @classmethod
    def normalize_optional_text(cls, value: Optional[str]) -> Optional[str]:
        return _clean_optional(value)

    @field_validator("images")
    @classmethod
    def normalize_images(cls, value: list[str]) -> list[str]:
        return _clean_images(value) or []

    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "name": "Ankara Wax Print",
                "sku": "ANK-WAX",
                "description": "100% cotton wax print",
                "category": "fabrics",
                "images": ["https://cdn.example.com/ankara.jpg"],
                "variants": [
                    {
                        "variant_name": "Blue / 6 yards",
                        "price": 45.0,
                        "initial_quantity": 12,
                        "safety_stock": 3,
                    }
                ],
            }
        }
    )


class VariantUpdate(BaseModel):
    id: str
    variant_name: Optional[str] = None
    price: Optional[Decimal] = Field(default=None, ge=0)
    barcode: Optional[str] = None

    @field_validator("variant_name")
    @classmethod
    def validate_variant_name(cls, value: Optional[str]) -> Optional[str]:
        if value is None:
            return None
        cleaned = value.strip()
        if not cleaned:
            raise ValueError("variant_name cannot be empty")
        return cleaned


class ProductUpdate(BaseModel):
    name: Optional[str] = None
    sku: Optional[str] = None
    description: Optional[str] = None
    category: Optional[str] = None
    images: Optional[list[str]] = None
    variants: Optional[list[VariantUpdate]] = None

    @field_validator("name")
    @classmethod
    def validate_name(cls, value: Optional[str]) -> Optional[str]:
        if value is None:
            return None
        cleaned = value.strip()
        if not cleaned:
            raise ValueError("name cannot be empty")
        return cleaned

    @field_validator("sku", "description", "category")
    @classmethod
    def normalize_optional_text(cls, value: Optional[str]) -> Optional[str]:
        return _clean_optional(value)

    @field_validator("images")
    @classmethod
    def normalize_images(cls, value: Optional[list[str]]) -> Optional[list[str]]:
        return _clean_images(value)

    @model_validator(mode="after")
    def validate_any_field_present(self) -> "ProductUpdate":
        if not self.model_fields_set:
            raise ValueError("At least one field must be provided")
        return self


class ProductCreateOut(BaseModel):
    id: str
    variant_ids: list[str]


class VariantCreateOut(BaseModel):
    id: str
    stock_level_id: str


class ProductDeleteOut(BaseModel):
    id: str
    deleted: bool = True


class VariantStatisticsOut(BaseModel):
    variant_id: str
    total_received: int
    total_shipped: int
    total_damaged: int
    last_received_date: Optional[datetime] = None


class VariantStockLevelOut(BaseModel):
    id: str
    warehouse_id: str
    warehouse_name: str
    quantity: int
    safety_stock: int
    initial_quantity: int
    status: str
    last_modified: datetime


class VariantOut(BaseModel):
    id: str
    product_id: str
    variant_name: str
    price: float
    barcode: Optional[str] = None
    stock: int
    stock_levels: list[VariantStockLevelOut]
    statistics: VariantStatisticsOut
    created_at: datetime


class ProductOut(BaseModel):
    id: str
    name: str
    sku: Optional[str] = None
    category: Optional[str] = None
    images: list[str]
    variant_count: int
    total_stock: int
    total_safety_stock: int
    status: str
    created_at: datetime
    updated_at: datetime


class ProductDetailOut(ProductOut):
    description: Optional[str] = None
    variants: list[VariantOut]


class ProductListOut(BaseModel):
    items: list[ProductOut]
    pagination: PaginationMeta
