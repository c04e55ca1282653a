import uuid
from collections import defaultdict
from typing import Any

from sqlalchemy import case, delete, func, select
from sqlalchemy.orm import Session

from stockbook.core.money import money_out
from stockbook.core.time_utils import as_utc, utc_now
from stockbook.models.product import Product, ProductVariant
from stockbook.models.stock import StockLevel
from stockbook.models.warehouse import Warehouse
from stockbook.schemas.product import VariantCreate
from stockbook.services.activity_service import publish_change
from stockbook.services.inventory_service import (
    MovementActor,
    get_default_warehouse,
    get_warehouse_in_business,
    load_variant_entries,
    seed_initial_stock,
)
from stockbook.services.stock_statistics import classify_product, classify_stock, compute_statistics


class CatalogError(ValueError):
    pass


class DuplicateSkuError(CatalogError):
    pass


class WarehouseNotFoundError(CatalogError):
    pass


def stock_status_case(quantity, safety_stock):
    """SQL rendition of ``classify_stock`` so listings can filter and page on status."""
    return case(
        (quantity <= 0, "out"),
        (quantity <= safety_stock, "low"),
        else_="in-stock",
    )


def product_totals_subquery(business_id: str):
    return (
        select(
            ProductVariant.product_id.label("product_id"),
            func.count(func.distinct(ProductVariant.id)).label("variant_count"),
            func.coalesce(func.sum(StockLevel.quantity), 0).label("total_stock"),
            func.coalesce(func.sum(StockLevel.safety_stock), 0).label("total_safety_stock"),
        )
        .select_from(ProductVariant)
        .outerjoin(StockLevel, StockLevel.variant_id == ProductVariant.id)
        .where(ProductVariant.business_id == business_id)
        .group_by(ProductVariant.product_id)
        .subquery()
    )


def resolve_warehouse(db: Session, business_id: str, warehouse_id: str | None) -> Warehouse:
    if warehouse_id:
        warehouse = get_warehouse_in_business(db, business_id, warehouse_id)
        if not warehouse:
            raise WarehouseNotFoundError("Warehouse not found")
        return warehouse

    warehouse = get_default_warehouse(db, business_id)
    if not warehouse:
        raise CatalogError("No warehouse configured for this business")
    return warehouse


def sku_taken(db: Session, business_id: str, sku: str, *, exclude_product_id: str | None = None) -> bool:
    stmt = select(Product.id).where(
        Product.business_id == business_id,
        func.lower(Product.sku) == sku.lower(),
    )
    if exclude_product_id:
        stmt = stmt.where(Product.id != exclude_product_id)
    return db.execute(stmt.limit(1)).scalar_one_or_none() is not None


def add_variant(
    db: Session,
    *,
    business_id: str,
    product: Product,
    payload: VariantCreate,
    warehouse: Warehouse,
    actor: MovementActor,
) -> tuple[ProductVariant, StockLevel]:
    variant = ProductVariant(
        id=str(uuid.uuid4()),
        business_id=business_id,
        product_id=product.id,
        variant_name=payload.variant_name,
        price=payload.price,
        barcode=payload.barcode,
        created_at=utc_now(),
    )
    db.add(variant)
    db.flush()
    publish_change(
        db,
        business_id=business_id,
        entity_type="variant",
        entity_id=variant.id,
        action="created",
        payload={"product_id": product.id, "variant_name": variant.variant_name},
    )
    level = seed_initial_stock(
        db,
        business_id=business_id,
        product=product,
        variant=variant,
        warehouse_id=warehouse.id,
        initial_quantity=payload.initial_quantity,
        safety_stock=payload.safety_stock,
        actor=actor,
    )
    return variant, level


def create_product(
    db: Session,
    *,
    business_id: str,
    name: str,
    sku: str | None,
    description: str | None,
    category: str | None,
    images: list[str],
    variants: list[VariantCreate],
    warehouse_id: str | None,
    actor: MovementActor,
) -> tuple[Product, list[ProductVariant]]:
    """Create a product with its variants, stock levels and opening ledger entries.

    Everything is flushed into the caller's transaction; nothing is committed here.
    """
    warehouse = resolve_warehouse(db, business_id, warehouse_id)
    if sku and sku_taken(db, business_id, sku):
        raise DuplicateSkuError("SKU already exists")

    now = utc_now()
    product = Product(
        id=str(uuid.uuid4()),
        business_id=business_id,
        name=name,
        sku=sku,
        description=description,
        category=category,
        images=list(images),
        created_at=now,
        updated_at=now,
    )
    db.add(product)
    db.flush()
    publish_change(
        db,
        business_id=business_id,
        entity_type="product",
        entity_id=product.id,
        action="created",
        payload={"name": product.name, "sku": product.sku},
    )

    created: list[ProductVariant] = []
    for variant_payload in variants:
        variant, _ = add_variant(
            db,
            business_id=business_id,
            product=product,
            payload=variant_payload,
            warehouse=warehouse,
            actor=actor,
        )
        created.append(variant)
    return product, created


def delete_product(db: Session, *, business_id: str, product: Product) -> int:
    """Remove a product, its variants and their stock levels. Ledger entries stay.

    Returns the number of variants removed.
    """
    variant_ids = db.execute(
        select(ProductVariant.id).where(ProductVariant.product_id == product.id)
    ).scalars().all()
    level_ids = []
    if variant_ids:
        level_ids = db.execute(
            select(StockLevel.id).where(StockLevel.variant_id.in_(variant_ids))
        ).scalars().all()
        db.execute(delete(StockLevel).where(StockLevel.variant_id.in_(variant_ids)))
        db.execute(delete(ProductVariant).where(ProductVariant.id.in_(variant_ids)))
    db.delete(product)
    db.flush()

    for level_id in level_ids:
        publish_change(db, business_id=business_id, entity_type="stock_level", entity_id=level_id, action="deleted")
    for variant_id in variant_ids:
        publish_change(db, business_id=business_id, entity_type="variant", entity_id=variant_id, action="deleted")
    publish_change(db, business_id=business_id, entity_type="product", entity_id=product.id, action="deleted")
    return len(variant_ids)


def build_product_detail(db: Session, *, business_id: str, product: Product) -> dict[str, Any]:
    variants = db.execute(
        select(ProductVariant)
        .where(ProductVariant.product_id == product.id, ProductVariant.business_id == business_id)
        .order_by(ProductVariant.created_at.asc(), ProductVariant.id.asc())
    ).scalars().all()
    variant_ids = [variant.id for variant in variants]

    levels_by_variant: dict[str, list[tuple[StockLevel, str]]] = defaultdict(list)
    if variant_ids:
        rows = db.execute(
            select(StockLevel, Warehouse.name)
            .join(Warehouse, Warehouse.id == StockLevel.warehouse_id)
            .where(StockLevel.variant_id.in_(variant_ids))
            .order_by(Warehouse.created_at.asc())
        ).all()
        for level, warehouse_name in rows:
            levels_by_variant[level.variant_id].append((level, warehouse_name))

    entries = load_variant_entries(db, business_id=business_id, variant_ids=variant_ids)

    variant_items = []
    all_levels: list[StockLevel] = []
    for variant in variants:
        levels = levels_by_variant.get(variant.id, [])
        all_levels.extend(level for level, _ in levels)
        stats = compute_statistics(variant.id, entries)
        variant_items.append(
            {
                "id": variant.id,
                "product_id": variant.product_id,
                "variant_name": variant.variant_name,
                "price": money_out(variant.price),
                "barcode": variant.barcode,
                "stock": sum(level.quantity for level, _ in levels),
                "stock_levels": [
                    {
                        "id": level.id,
                        "warehouse_id": level.warehouse_id,
                        "warehouse_name": warehouse_name,
                        "quantity": level.quantity,
                        "safety_stock": level.safety_stock,
                        "initial_quantity": level.initial_quantity,
                        "status": classify_stock(level.quantity, level.safety_stock).value,
                        "last_modified": as_utc(level.last_modified),
                    }
                    for level, warehouse_name in levels
                ],
                "statistics": {
                    "variant_id": variant.id,
                    "total_received": stats.total_received,
                    "total_shipped": stats.total_shipped,
                    "total_damaged": stats.total_damaged,
                    "last_received_date": as_utc(stats.last_received_date) if stats.last_received_date else None,
                },
                "created_at": as_utc(variant.created_at),
            }
        )

    return {
        "id": product.id,
        "name": product.name,
        "sku": product.sku,
        "description": product.description,
        "category": product.category,
        "images": list(product.images or []),
        "variant_count": len(variants),
        "total_stock": sum(level.quantity for level in all_levels),
        "total_safety_stock": sum(level.safety_stock for level in all_levels),
        "status": classify_product(all_levels).value,
        "created_at": as_utc(product.created_at),
        "updated_at": as_utc(product.updated_at),
        "variants": variant_items,
    }
