import logging

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy import func, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from stockbook.core.api_docs import error_responses
from stockbook.core.deps import get_db
from stockbook.core.money import money_out
from stockbook.core.observability import log_event
from stockbook.core.permissions import require_permission
from stockbook.core.security_current import BusinessAccess
from stockbook.core.time_utils import as_utc
from stockbook.models.order import Order, OrderItem
from stockbook.schemas.common import PaginationMeta
from stockbook.schemas.order import (
    OrderCreate,
    OrderItemOut,
    OrderListOut,
    OrderOut,
    OrderStatus,
    OrderStatusUpdateIn,
)
from stockbook.services.activity_service import log_audit_event
from stockbook.services.catalog_service import CatalogError, WarehouseNotFoundError, resolve_warehouse
from stockbook.services.inventory_service import InventoryError, MovementActor, StockLevelNotFoundError
from stockbook.services.order_service import (
    OrderError,
    OrderLine,
    OrderTransitionError,
    OrderVariantNotFoundError,
    create_order as create_pending_order,
    get_order_items,
    order_reference,
    transition_order,
)

router = APIRouter(prefix="/orders", tags=["orders"])
orders_logger = logging.getLogger("stockbook.orders")


def _order_out(order: Order, items: list[OrderItem]) -> OrderOut:
    return OrderOut(
        id=order.id,
        reference=order_reference(order.id),
        customer_id=order.customer_id,
        customer_name=order.customer_name,
        warehouse_id=order.warehouse_id,
        status=order.status,
        total_amount=money_out(order.total_amount),
        note=order.note,
        items=[
            OrderItemOut(
                id=item.id,
                variant_id=item.variant_id,
                product_name=item.product_name_cache,
                variant_name=item.variant_name_cache,
                qty=item.qty,
                unit_price=money_out(item.unit_price),
                line_total=money_out(item.line_total),
            )
            for item in items
        ],
        completed_at=as_utc(order.completed_at) if order.completed_at else None,
        created_at=as_utc(order.created_at),
        updated_at=as_utc(order.updated_at),
    )


def _get_order_or_404(db: Session, business_id: str, order_id: str) -> Order:
    order = db.execute(
        select(Order).where(Order.id == order_id, Order.business_id == business_id)
    ).scalar_one_or_none()
    if not order:
        raise HTTPException(status_code=404, detail="Order not found")
    return order


@router.post(
    "",
    response_model=OrderOut,
    status_code=201,
    summary="Create a pending order",
    description="Each item quantity is capped at the stock currently held in the order warehouse.",
    responses=error_responses(400, 401, 403, 404, 422, 500),
)
def create_order(
    payload: OrderCreate,
    db: Session = Depends(get_db),
    access: BusinessAccess = Depends(require_permission("orders.create")),
):
    business_id = access.business.id
    try:
        warehouse = resolve_warehouse(db, business_id, payload.warehouse_id)
        order, items = create_pending_order(
            db,
            business_id=business_id,
            customer_name=payload.customer_name,
            lines=[
                OrderLine(variant_id=item.variant_id, qty=item.qty, unit_price=item.unit_price)
                for item in payload.items
            ],
            warehouse=warehouse,
            note=payload.note,
            actor=MovementActor(user_id=access.user.id, label=access.actor_label),
        )
    except (WarehouseNotFoundError, OrderVariantNotFoundError) as exc:
        db.rollback()
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    except (CatalogError, OrderError) as exc:
        db.rollback()
        raise HTTPException(status_code=400, detail=str(exc)) from exc

    log_audit_event(
        db,
        business_id=business_id,
        actor_user_id=access.user.id,
        action="order.create",
        target_type="order",
        target_id=order.id,
        metadata_json={
            "customer_name": order.customer_name,
            "total_amount": str(order.total_amount),
            "items": len(items),
        },
    )
    db.commit()
    log_event(orders_logger, "order.created", business_id=business_id, order_id=order.id, items=len(items))
    return _order_out(order, get_order_items(db, order.id))


@router.get(
    "",
    response_model=OrderListOut,
    summary="List orders (newest first)",
    responses=error_responses(401, 403, 422, 500),
)
def list_orders(
    status_filter: OrderStatus | None = Query(default=None, alias="status"),
    customer_id: str | None = Query(default=None),
    limit: int = Query(default=50, ge=1, le=200),
    offset: int = Query(default=0, ge=0),
    db: Session = Depends(get_db),
    access: BusinessAccess = Depends(require_permission("orders.view")),
):
    filters = [Order.business_id == access.business.id]
    if status_filter:
        filters.append(Order.status == status_filter)
    if customer_id:
        filters.append(Order.customer_id == customer_id)

    total = int(db.execute(select(func.count(Order.id)).where(*filters)).scalar_one())
    orders = db.execute(
        select(Order).where(*filters).order_by(Order.created_at.desc()).offset(offset).limit(limit)
    ).scalars().all()

    items_by_order: dict[str, list[OrderItem]] = {order.id: [] for order in orders}
    if orders:
        for item in db.execute(
            select(OrderItem).where(OrderItem.order_id.in_(list(items_by_order))).order_by(OrderItem.id.asc())
        ).scalars():
            items_by_order[item.order_id].append(item)

    out = [_order_out(order, items_by_order[order.id]) for order in orders]
    count = len(out)
    return OrderListOut(
        items=out,
        pagination=PaginationMeta(
            total=total,
            limit=limit,
            offset=offset,
            count=count,
            has_next=(offset + count) < total,
        ),
        status=status_filter,
    )


@router.get(
    "/{order_id}",
    response_model=OrderOut,
    summary="Get order",
    responses=error_responses(401, 403, 404, 500),
)
def get_order(
    order_id: str,
    db: Session = Depends(get_db),
    access: BusinessAccess = Depends(require_permission("orders.view")),
):
    order = _get_order_or_404(db, access.business.id, order_id)
    return _order_out(order, get_order_items(db, order.id))


@router.patch(
    "/{order_id}/status",
    response_model=OrderOut,
    summary="Complete or cancel a pending order",
    description="Completing an order records one sale movement per item in the same transaction.",
    responses=error_responses(400, 401, 403, 404, 409, 422, 500),
)
def update_order_status(
    order_id: str,
    payload: OrderStatusUpdateIn,
    db: Session = Depends(get_db),
    access: BusinessAccess = Depends(require_permission("orders.update")),
):
    business_id = access.business.id
    order = _get_order_or_404(db, business_id, order_id)
    previous_status = order.status
    try:
        transition_order(
            db,
            business_id=business_id,
            order=order,
            new_status=payload.status,
            actor=MovementActor(user_id=access.user.id, label=access.actor_label),
        )
        log_audit_event(
            db,
            business_id=business_id,
            actor_user_id=access.user.id,
            action=f"order.{payload.status}",
            target_type="order",
            target_id=order.id,
            metadata_json={"previous": previous_status, "next": payload.status},
        )
        db.commit()
    except OrderTransitionError as exc:
        db.rollback()
        raise HTTPException(status_code=409, detail=str(exc)) from exc
    except StockLevelNotFoundError as exc:
        db.rollback()
        raise HTTPException(status_code=400, detail="An order item no longer has a stock level") from exc
    except InventoryError as exc:
        db.rollback()
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    except SQLAlchemyError as exc:
        db.rollback()
        log_event(
            orders_logger,
            "order.transition_failed",
            level=logging.ERROR,
            business_id=business_id,
            order_id=order_id,
            target_status=payload.status,
            error=str(exc),
        )
        raise HTTPException(status_code=500, detail="Could not update the order") from exc

    log_event(orders_logger, f"order.{payload.status}", business_id=business_id, order_id=order_id)
    order = _get_order_or_404(db, business_id, order_id)
    return _order_out(order, get_order_items(db, order.id))
