import uuid
from collections.abc import Iterable
from dataclasses import dataclass

from sqlalchemy import select, update
from sqlalchemy.orm import Session

from stockbook.core.config import settings
from stockbook.core.time_utils import utc_now
from stockbook.models.product import Product, ProductVariant
from stockbook.models.stock import StockLevel, StockMovement
from stockbook.models.warehouse import Warehouse
from stockbook.services.activity_service import publish_change

MOVEMENT_TYPES = ("in", "out", "adjustment", "damaged", "sale", "purchase", "transfer")
INBOUND_TYPES = frozenset({"in", "purchase"})
OUTBOUND_TYPES = frozenset({"out", "sale", "damaged"})
INITIAL_STOCK_REFERENCE = "Initial stock"


class InventoryError(ValueError):
    pass


class StockLevelNotFoundError(InventoryError):
    pass


class InvalidMovementError(InventoryError):
    pass


class NegativeStockError(InventoryError):
    pass


@dataclass(frozen=True)
class MovementActor:
    user_id: str | None
    label: str | None


def signed_quantity_for(movement_type: str, quantity: int) -> int:
    """Apply the caller sign convention: removals negative, receipts positive.

    ``adjustment`` and ``transfer`` keep the sign they were given.
    """
    if movement_type in OUTBOUND_TYPES:
        return -abs(quantity)
    if movement_type in INBOUND_TYPES:
        return abs(quantity)
    return quantity


def _validate_movement(quantity: int, movement_type: str) -> None:
    if movement_type not in MOVEMENT_TYPES:
        raise InvalidMovementError(f"Unknown movement type: {movement_type}")
    if isinstance(quantity, bool) or not isinstance(quantity, int):
        raise InvalidMovementError("Movement quantity must be an integer")
    if quantity == 0:
        raise InvalidMovementError("Movement quantity must not be zero")


def _append_ledger_entry(
    db: Session,
    *,
    business_id: str,
    variant: ProductVariant,
    product: Product,
    warehouse_id: str,
    quantity: int,
    movement_type: str,
    reference: str | None,
    actor: MovementActor,
) -> StockMovement:
    entry = StockMovement(
        id=str(uuid.uuid4()),
        business_id=business_id,
        variant_id=variant.id,
        warehouse_id=warehouse_id,
        quantity=quantity,
        movement_type=movement_type,
        reference=reference,
        actor_user_id=actor.user_id,
        actor_label=actor.label,
        product_name_cache=product.name,
        variant_name_cache=variant.variant_name,
        sku_cache=product.sku,
        created_at=utc_now(),
    )
    db.add(entry)
    db.flush()
    return entry


def record_movement(
    db: Session,
    *,
    business_id: str,
    variant_id: str,
    warehouse_id: str,
    quantity: int,
    movement_type: str,
    reference: str | None,
    actor: MovementActor,
) -> StockMovement:
    """Apply ``quantity`` to a stock level and append the matching ledger entry.

    Both writes share the caller's transaction; the caller commits once, or
    rolls back so that neither the new quantity nor the entry survives.
    ``quantity`` is stored exactly as given (see ``signed_quantity_for``).
    """
    _validate_movement(quantity, movement_type)

    row = db.execute(
        select(StockLevel, ProductVariant, Product)
        .join(ProductVariant, ProductVariant.id == StockLevel.variant_id)
        .join(Product, Product.id == ProductVariant.product_id)
        .where(
            StockLevel.business_id == business_id,
            StockLevel.variant_id == variant_id,
            StockLevel.warehouse_id == warehouse_id,
        )
    ).first()
    if row is None:
        raise StockLevelNotFoundError("Stock level not found for this variant and warehouse")
    level, variant, product = row

    stmt = (
        update(StockLevel)
        .where(StockLevel.id == level.id)
        .values(quantity=StockLevel.quantity + quantity, last_modified=utc_now())
        .execution_options(synchronize_session=False)
    )
    if quantity < 0 and not settings.inventory_allow_negative_stock:
        stmt = stmt.where(StockLevel.quantity + quantity >= 0)

    result = db.execute(stmt)
    if result.rowcount == 0:
        raise NegativeStockError("Insufficient stock for this movement")

    entry = _append_ledger_entry(
        db,
        business_id=business_id,
        variant=variant,
        product=product,
        warehouse_id=warehouse_id,
        quantity=quantity,
        movement_type=movement_type,
        reference=reference,
        actor=actor,
    )
    db.refresh(level)

    publish_change(
        db,
        business_id=business_id,
        entity_type="stock_level",
        entity_id=level.id,
        action="updated",
        payload={"variant_id": variant_id, "warehouse_id": warehouse_id, "quantity": level.quantity},
    )
    publish_change(
        db,
        business_id=business_id,
        entity_type="stock_movement",
        entity_id=entry.id,
        action="created",
        payload={"variant_id": variant_id, "movement_type": movement_type, "quantity": quantity},
    )
    return entry


def seed_initial_stock(
    db: Session,
    *,
    business_id: str,
    product: Product,
    variant: ProductVariant,
    warehouse_id: str,
    initial_quantity: int,
    safety_stock: int,
    actor: MovementActor,
) -> StockLevel:
    """Create the stock level of a new variant, with an ``in`` entry for any opening stock."""
    level = StockLevel(
        id=str(uuid.uuid4()),
        business_id=business_id,
        variant_id=variant.id,
        warehouse_id=warehouse_id,
        quantity=initial_quantity,
        safety_stock=safety_stock,
        initial_quantity=initial_quantity,
        last_modified=utc_now(),
    )
    db.add(level)
    db.flush()
    publish_change(
        db,
        business_id=business_id,
        entity_type="stock_level",
        entity_id=level.id,
        action="created",
        payload={"variant_id": variant.id, "warehouse_id": warehouse_id, "quantity": initial_quantity},
    )

    if initial_quantity > 0:
        entry = _append_ledger_entry(
            db,
            business_id=business_id,
            variant=variant,
            product=product,
            warehouse_id=warehouse_id,
            quantity=initial_quantity,
            movement_type="in",
            reference=INITIAL_STOCK_REFERENCE,
            actor=actor,
        )
        publish_change(
            db,
            business_id=business_id,
            entity_type="stock_movement",
            entity_id=entry.id,
            action="created",
            payload={"variant_id": variant.id, "movement_type": "in", "quantity": initial_quantity},
        )
    return level


def get_default_warehouse(db: Session, business_id: str) -> Warehouse | None:
    return db.execute(
        select(Warehouse)
        .where(Warehouse.business_id == business_id)
        .order_by(Warehouse.created_at.asc(), Warehouse.id.asc())
        .limit(1)
    ).scalar_one_or_none()


def ensure_default_warehouse(db: Session, business_id: str) -> Warehouse:
    warehouse = get_default_warehouse(db, business_id)
    if warehouse:
        return warehouse
    warehouse = Warehouse(
        id=str(uuid.uuid4()),
        business_id=business_id,
        name=settings.default_warehouse_name,
        created_at=utc_now(),
    )
    db.add(warehouse)
    db.flush()
    return warehouse


def get_warehouse_in_business(db: Session, business_id: str, warehouse_id: str) -> Warehouse | None:
    return db.execute(
        select(Warehouse).where(Warehouse.id == warehouse_id, Warehouse.business_id == business_id)
    ).scalar_one_or_none()


def load_variant_entries(
    db: Session, *, business_id: str, variant_ids: Iterable[str]
) -> list[StockMovement]:
    ids = list(variant_ids)
    if not ids:
        return []
    return db.execute(
        select(StockMovement).where(
            StockMovement.business_id == business_id,
            StockMovement.variant_id.in_(ids),
        )
    ).scalars().all()
