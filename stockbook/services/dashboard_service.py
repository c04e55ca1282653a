from sqlalchemy import func, select
from sqlalchemy.orm import Session

from stockbook.core.config import settings
from stockbook.core.money import ZERO_MONEY, money_out, to_money
from stockbook.models.order import Order
from stockbook.models.product import Product, ProductVariant
from stockbook.models.stock import StockLevel, StockMovement
from stockbook.models.warehouse import Warehouse
from stockbook.services.catalog_service import product_totals_subquery, stock_status_case


def get_critical_products(db: Session, business_id: str) -> list[dict]:
    """Products whose summed stock is at or under their summed safety stock."""
    totals = product_totals_subquery(business_id)
    total_stock = func.coalesce(totals.c.total_stock, 0)
    total_safety = func.coalesce(totals.c.total_safety_stock, 0)
    status = stock_status_case(total_stock, total_safety)

    rows = db.execute(
        select(
            Product.id,
            Product.name,
            Product.sku,
            total_stock.label("total_stock"),
            total_safety.label("total_safety_stock"),
            status.label("status"),
        )
        .outerjoin(totals, totals.c.product_id == Product.id)
        .where(Product.business_id == business_id, status.in_(["out", "low"]))
        .order_by(total_stock.asc(), Product.name.asc())
    ).all()
    return [
        {
            "product_id": row.id,
            "name": row.name,
            "sku": row.sku,
            "total_stock": int(row.total_stock),
            "total_safety_stock": int(row.total_safety_stock),
            "status": row.status,
        }
        for row in rows
    ]


def get_recent_movements(db: Session, business_id: str, limit: int | None = None) -> list[StockMovement]:
    return db.execute(
        select(StockMovement)
        .where(StockMovement.business_id == business_id)
        .order_by(StockMovement.created_at.desc())
        .limit(limit or settings.recent_movements_limit)
    ).scalars().all()


def get_summary(db: Session, business_id: str) -> dict:
    product_count = db.execute(
        select(func.count(Product.id)).where(Product.business_id == business_id)
    ).scalar_one()
    variant_count = db.execute(
        select(func.count(ProductVariant.id)).where(ProductVariant.business_id == business_id)
    ).scalar_one()
    warehouse_count = db.execute(
        select(func.count(Warehouse.id)).where(Warehouse.business_id == business_id)
    ).scalar_one()
    total_units = db.execute(
        select(func.coalesce(func.sum(StockLevel.quantity), 0)).where(StockLevel.business_id == business_id)
    ).scalar_one()

    pending_count, pending_value = db.execute(
        select(func.count(Order.id), func.coalesce(func.sum(Order.total_amount), 0)).where(
            Order.business_id == business_id,
            Order.status == "pending",
        )
    ).one()

    return {
        "product_count": int(product_count),
        "variant_count": int(variant_count),
        "warehouse_count": int(warehouse_count),
        "total_units": int(total_units),
        "critical_products": get_critical_products(db, business_id),
        "recent_movements": get_recent_movements(db, business_id),
        "pending_order_count": int(pending_count),
        "pending_order_value": money_out(to_money(pending_value or ZERO_MONEY)),
    }
