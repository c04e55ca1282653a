import uuid
from dataclasses import dataclass
from decimal import Decimal

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from stockbook.core.id_utils import short_reference
from stockbook.core.money import ZERO_MONEY, to_money
from stockbook.core.time_utils import utc_now
from stockbook.models.customer import Customer
from stockbook.models.order import Order, OrderItem
from stockbook.models.product import Product, ProductVariant
from stockbook.models.stock import StockLevel
from stockbook.models.warehouse import Warehouse
from stockbook.services.activity_service import publish_change
from stockbook.services.inventory_service import MovementActor, record_movement

TERMINAL_STATUSES = frozenset({"completed", "cancelled"})


class OrderError(ValueError):
    pass


class OrderVariantNotFoundError(OrderError):
    pass


class InsufficientStockError(OrderError):
    pass


class OrderTransitionError(OrderError):
    pass


@dataclass(frozen=True)
class OrderLine:
    variant_id: str
    qty: int
    unit_price: Decimal | None = None


def order_reference(order_id: str) -> str:
    return f"Order {short_reference(order_id)}"


def find_or_create_customer(db: Session, *, business_id: str, name: str) -> tuple[Customer, bool]:
    """Case-insensitive name match within the business; creates the customer when absent."""
    customer = db.execute(
        select(Customer)
        .where(Customer.business_id == business_id, func.lower(Customer.name) == name.lower())
        .order_by(Customer.created_at.asc())
        .limit(1)
    ).scalar_one_or_none()
    if customer:
        return customer, False

    customer = Customer(id=str(uuid.uuid4()), business_id=business_id, name=name, created_at=utc_now())
    db.add(customer)
    db.flush()
    publish_change(
        db,
        business_id=business_id,
        entity_type="customer",
        entity_id=customer.id,
        action="created",
        payload={"name": customer.name},
    )
    return customer, True


def create_order(
    db: Session,
    *,
    business_id: str,
    customer_name: str,
    lines: list[OrderLine],
    warehouse: Warehouse,
    note: str | None,
    actor: MovementActor,
) -> tuple[Order, list[OrderItem]]:
    variant_ids = [line.variant_id for line in lines]
    if len(set(variant_ids)) != len(variant_ids):
        raise OrderError("Each variant may appear only once per order")

    rows = db.execute(
        select(ProductVariant, Product.name)
        .join(Product, Product.id == ProductVariant.product_id)
        .where(ProductVariant.business_id == business_id, ProductVariant.id.in_(variant_ids))
    ).all()
    variants = {variant.id: (variant, product_name) for variant, product_name in rows}
    missing = [variant_id for variant_id in variant_ids if variant_id not in variants]
    if missing:
        raise OrderVariantNotFoundError(f"Variant not found: {missing[0]}")

    on_hand = dict(
        db.execute(
            select(StockLevel.variant_id, StockLevel.quantity).where(
                StockLevel.business_id == business_id,
                StockLevel.warehouse_id == warehouse.id,
                StockLevel.variant_id.in_(variant_ids),
            )
        ).all()
    )
    for line in lines:
        available = on_hand.get(line.variant_id, 0)
        if line.qty > available:
            variant, product_name = variants[line.variant_id]
            raise InsufficientStockError(
                f"Only {max(available, 0)} unit(s) of {product_name} ({variant.variant_name}) in stock"
            )

    customer, _ = find_or_create_customer(db, business_id=business_id, name=customer_name)

    order = Order(
        id=str(uuid.uuid4()),
        business_id=business_id,
        customer_id=customer.id,
        customer_name=customer.name,
        warehouse_id=warehouse.id,
        status="pending",
        total_amount=ZERO_MONEY,
        note=note,
        created_by_user_id=actor.user_id,
        created_at=utc_now(),
    )
    db.add(order)
    db.flush()

    total = ZERO_MONEY
    items: list[OrderItem] = []
    for line in lines:
        variant, product_name = variants[line.variant_id]
        unit_price = to_money(line.unit_price if line.unit_price is not None else variant.price)
        line_total = to_money(unit_price * line.qty)
        total += line_total
        item = OrderItem(
            id=str(uuid.uuid4()),
            order_id=order.id,
            variant_id=variant.id,
            product_name_cache=product_name,
            variant_name_cache=variant.variant_name,
            qty=line.qty,
            unit_price=unit_price,
            line_total=line_total,
        )
        db.add(item)
        items.append(item)

    order.total_amount = to_money(total)
    db.flush()
    publish_change(
        db,
        business_id=business_id,
        entity_type="order",
        entity_id=order.id,
        action="created",
        payload={"status": order.status, "total_amount": str(order.total_amount)},
    )
    return order, items


def get_order_items(db: Session, order_id: str) -> list[OrderItem]:
    return db.execute(
        select(OrderItem).where(OrderItem.order_id == order_id).order_by(OrderItem.id.asc())
    ).scalars().all()


def transition_order(
    db: Session,
    *,
    business_id: str,
    order: Order,
    new_status: str,
    actor: MovementActor,
) -> Order:
    """Move a pending order to ``completed`` or ``cancelled``.

    Completing records one ``sale`` movement per item in the same
    transaction; any inventory failure propagates and the caller rolls back.
    """
    if order.status in TERMINAL_STATUSES:
        raise OrderTransitionError(f"Order is already {order.status}")
    if new_status not in TERMINAL_STATUSES:
        raise OrderTransitionError(f"Unsupported order status: {new_status}")

    if new_status == "completed":
        reference = order_reference(order.id)
        for item in get_order_items(db, order.id):
            record_movement(
                db,
                business_id=business_id,
                variant_id=item.variant_id,
                warehouse_id=order.warehouse_id,
                quantity=-item.qty,
                movement_type="sale",
                reference=reference,
                actor=actor,
            )
        order.completed_at = utc_now()

    order.status = new_status
    order.updated_at = utc_now()
    db.flush()
    publish_change(
        db,
        business_id=business_id,
        entity_type="order",
        entity_id=order.id,
        action="updated",
        payload={"status": order.status},
    )
    return order
