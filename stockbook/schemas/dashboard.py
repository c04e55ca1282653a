from pydantic import BaseModel

from stockbook.schemas.inventory import MovementOut


class CriticalProductOut(BaseModel):
    product_id: str
    name: str
    sku: str | None = None
    total_stock: int
    total_safety_stock: int
    status: str


class DashboardSummaryOut(BaseModel):
    product_count: int
    variant_count: int
    warehouse_count: int
    total_units: int
    critical_products: list[CriticalProductOut]
    recent_movements: list[MovementOut]
    pending_order_count: int
    pending_order_value: float
