import logging
from datetime import date
from typing import Literal

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy import func, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from stockbook.core.api_docs import error_responses
from stockbook.core.deps import get_db
from stockbook.core.observability import log_event
from stockbook.core.permissions import require_permission
from stockbook.core.security_current import BusinessAccess
from stockbook.core.time_utils import as_utc, end_of_day, start_of_day
from stockbook.models.product import Product, ProductVariant
from stockbook.models.stock import StockLevel, StockMovement
from stockbook.models.warehouse import Warehouse
from stockbook.schemas.common import PaginationMeta
from stockbook.schemas.inventory import (
    MovementCreate,
    MovementListOut,
    MovementRecordOut,
    StockLevelListOut,
    StockLevelOut,
    StockLevelUpdate,
    movement_out,
)
from stockbook.services.activity_service import log_audit_event, publish_change
from stockbook.services.catalog_service import CatalogError, WarehouseNotFoundError, resolve_warehouse, stock_status_case
from stockbook.services.inventory_service import (
    InvalidMovementError,
    MovementActor,
    NegativeStockError,
    StockLevelNotFoundError,
    record_movement,
    signed_quantity_for,
)
from stockbook.services.stock_statistics import classify_stock

router = APIRouter(prefix="/inventory", tags=["inventory"])
inventory_logger = logging.getLogger("stockbook.inventory")
MAX_PAGE_SIZE = 200

StatusFilter = Literal["out", "low", "in-stock"]


def _stock_level_select(business_id: str):
    return (
        select(StockLevel, ProductVariant, Product, Warehouse)
        .join(ProductVariant, ProductVariant.id == StockLevel.variant_id)
        .join(Product, Product.id == ProductVariant.product_id)
        .join(Warehouse, Warehouse.id == StockLevel.warehouse_id)
        .where(StockLevel.business_id == business_id)
    )


def _stock_level_out(level: StockLevel, variant: ProductVariant, product: Product, warehouse: Warehouse) -> StockLevelOut:
    return StockLevelOut(
        id=level.id,
        variant_id=variant.id,
        product_id=product.id,
        product_name=product.name,
        variant_name=variant.variant_name,
        sku=product.sku,
        warehouse_id=warehouse.id,
        warehouse_name=warehouse.name,
        quantity=level.quantity,
        safety_stock=level.safety_stock,
        initial_quantity=level.initial_quantity,
        status=classify_stock(level.quantity, level.safety_stock).value,
        last_modified=as_utc(level.last_modified),
    )


def _load_stock_level_out(db: Session, business_id: str, level_id: str) -> StockLevelOut:
    row = db.execute(_stock_level_select(business_id).where(StockLevel.id == level_id)).first()
    if not row:
        raise HTTPException(status_code=404, detail="Stock level not found")
    return _stock_level_out(*row)


def _list_stock_levels(
    db: Session,
    *,
    business_id: str,
    filters: list,
    limit: int,
    offset: int,
) -> StockLevelListOut:
    total = int(
        db.execute(
            select(func.count(StockLevel.id)).where(StockLevel.business_id == business_id, *filters)
        ).scalar_one()
    )
    rows = db.execute(
        _stock_level_select(business_id)
        .where(*filters)
        .order_by(StockLevel.quantity.asc(), Product.name.asc(), ProductVariant.variant_name.asc())
        .offset(offset)
        .limit(limit)
    ).all()
    items = [_stock_level_out(*row) for row in rows]
    count = len(items)
    return StockLevelListOut(
        items=items,
        pagination=PaginationMeta(
            total=total,
            limit=limit,
            offset=offset,
            count=count,
            has_next=(offset + count) < total,
        ),
    )


@router.post(
    "/movements",
    response_model=MovementRecordOut,
    summary="Record a stock movement",
    description=(
        "Applies the movement to the stock level and appends the ledger entry in one "
        "transaction. out/sale/damaged remove stock, in/purchase add it, adjustment and "
        "transfer use the signed quantity as given."
    ),
    responses=error_responses(400, 401, 403, 404, 422, 500),
)
def create_movement(
    payload: MovementCreate,
    db: Session = Depends(get_db),
    access: BusinessAccess = Depends(require_permission("inventory.record")),
):
    business_id = access.business.id
    try:
        warehouse = resolve_warehouse(db, business_id, payload.warehouse_id)
    except WarehouseNotFoundError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    except CatalogError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc

    warehouse_id = warehouse.id
    quantity = signed_quantity_for(payload.movement_type, payload.quantity)
    try:
        entry = record_movement(
            db,
            business_id=business_id,
            variant_id=payload.variant_id,
            warehouse_id=warehouse_id,
            quantity=quantity,
            movement_type=payload.movement_type,
            reference=payload.reference,
            actor=MovementActor(user_id=access.user.id, label=access.actor_label),
        )
        db.commit()
    except StockLevelNotFoundError as exc:
        db.rollback()
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    except (InvalidMovementError, NegativeStockError) as exc:
        db.rollback()
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    except SQLAlchemyError as exc:
        db.rollback()
        log_event(
            inventory_logger,
            "stock_movement.failed",
            level=logging.ERROR,
            business_id=business_id,
            variant_id=payload.variant_id,
            warehouse_id=warehouse_id,
            quantity=quantity,
            error=str(exc),
        )
        raise HTTPException(status_code=500, detail="Could not record the stock movement") from exc

    log_event(
        inventory_logger,
        "stock_movement.recorded",
        business_id=business_id,
        movement_id=entry.id,
        variant_id=entry.variant_id,
        warehouse_id=entry.warehouse_id,
        movement_type=entry.movement_type,
        quantity=entry.quantity,
    )
    level = db.execute(
        select(StockLevel.id).where(
            StockLevel.variant_id == entry.variant_id,
            StockLevel.warehouse_id == entry.warehouse_id,
        )
    ).scalar_one()
    return MovementRecordOut(
        movement=movement_out(entry),
        stock_level=_load_stock_level_out(db, business_id, level),
    )


@router.get(
    "/movements",
    response_model=MovementListOut,
    summary="List stock movements (newest first)",
    responses=error_responses(400, 401, 403, 422, 500),
)
def list_movements(
    variant_id: str | None = Query(default=None),
    warehouse_id: str | None = Query(default=None),
    movement_type: str | None = Query(default=None),
    start_date: date | None = Query(default=None),
    end_date: date | None = Query(default=None),
    limit: int = Query(default=50, ge=1, le=MAX_PAGE_SIZE),
    offset: int = Query(default=0, ge=0),
    db: Session = Depends(get_db),
    access: BusinessAccess = Depends(require_permission("inventory.view")),
):
    if start_date and end_date and end_date < start_date:
        raise HTTPException(status_code=400, detail="end_date cannot be before start_date")

    filters = [StockMovement.business_id == access.business.id]
    if variant_id:
        filters.append(StockMovement.variant_id == variant_id)
    if warehouse_id:
        filters.append(StockMovement.warehouse_id == warehouse_id)
    if movement_type:
        filters.append(StockMovement.movement_type == movement_type.strip().lower())
    if start_date:
        filters.append(StockMovement.created_at >= start_of_day(start_date))
    if end_date:
        filters.append(StockMovement.created_at <= end_of_day(end_date))

    total = int(db.execute(select(func.count(StockMovement.id)).where(*filters)).scalar_one())
    rows = db.execute(
        select(StockMovement)
        .where(*filters)
        .order_by(StockMovement.created_at.desc())
        .offset(offset)
        .limit(limit)
    ).scalars().all()

    items = [movement_out(row) for row in rows]
    count = len(items)
    return MovementListOut(
        items=items,
        pagination=PaginationMeta(
            total=total,
            limit=limit,
            offset=offset,
            count=count,
            has_next=(offset + count) < total,
        ),
    )


@router.get(
    "/stock-levels",
    response_model=StockLevelListOut,
    summary="List stock levels",
    responses=error_responses(401, 403, 422, 500),
)
def list_stock_levels(
    warehouse_id: str | None = Query(default=None),
    product_id: str | None = Query(default=None),
    variant_id: str | None = Query(default=None),
    status_filter: StatusFilter | None = Query(default=None, alias="status"),
    limit: int = Query(default=50, ge=1, le=MAX_PAGE_SIZE),
    offset: int = Query(default=0, ge=0),
    db: Session = Depends(get_db),
    access: BusinessAccess = Depends(require_permission("inventory.view")),
):
    filters = []
    if warehouse_id:
        filters.append(StockLevel.warehouse_id == warehouse_id)
    if variant_id:
        filters.append(StockLevel.variant_id == variant_id)
    if product_id:
        filters.append(
            StockLevel.variant_id.in_(select(ProductVariant.id).where(ProductVariant.product_id == product_id))
        )
    if status_filter:
        filters.append(stock_status_case(StockLevel.quantity, StockLevel.safety_stock) == status_filter)

    return _list_stock_levels(db, business_id=access.business.id, filters=filters, limit=limit, offset=offset)


@router.get(
    "/low-stock",
    response_model=StockLevelListOut,
    summary="List stock levels that are low or out of stock",
    responses=error_responses(401, 403, 422, 500),
)
def list_low_stock(
    warehouse_id: str | None = Query(default=None),
    limit: int = Query(default=50, ge=1, le=MAX_PAGE_SIZE),
    offset: int = Query(default=0, ge=0),
    db: Session = Depends(get_db),
    access: BusinessAccess = Depends(require_permission("inventory.view")),
):
    filters = [StockLevel.quantity <= StockLevel.safety_stock]
    if warehouse_id:
        filters.append(StockLevel.warehouse_id == warehouse_id)
    return _list_stock_levels(db, business_id=access.business.id, filters=filters, limit=limit, offset=offset)


@router.patch(
    "/stock-levels/{stock_level_id}",
    response_model=StockLevelOut,
    summary="Update safety stock",
    description="Only the safety stock is editable; quantity changes go through movements.",
    responses=error_responses(401, 403, 404, 422, 500),
)
def update_stock_level(
    stock_level_id: str,
    payload: StockLevelUpdate,
    db: Session = Depends(get_db),
    access: BusinessAccess = Depends(require_permission("inventory.configure")),
):
    level = db.execute(
        select(StockLevel).where(
            StockLevel.id == stock_level_id,
            StockLevel.business_id == access.business.id,
        )
    ).scalar_one_or_none()
    if not level:
        raise HTTPException(status_code=404, detail="Stock level not found")

    previous = level.safety_stock
    level.safety_stock = payload.safety_stock
    log_audit_event(
        db,
        business_id=access.business.id,
        actor_user_id=access.user.id,
        action="inventory.safety_stock.updated",
        target_type="stock_level",
        target_id=level.id,
        metadata_json={"previous": previous, "next": level.safety_stock},
    )
    publish_change(
        db,
        business_id=access.business.id,
        entity_type="stock_level",
        entity_id=level.id,
        action="updated",
        payload={"safety_stock": level.safety_stock},
    )
    db.commit()
    return _load_stock_level_out(db, access.business.id, level.id)
