import uuid

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy import func, select
from sqlalchemy.orm import Session

from stockbook.core.api_docs import error_responses
from stockbook.core.deps import get_db
from stockbook.core.permissions import require_permission
from stockbook.core.security_current import BusinessAccess
from stockbook.core.time_utils import as_utc, utc_now
from stockbook.models.warehouse import Warehouse
from stockbook.schemas.warehouse import WarehouseCreate, WarehouseOut, WarehouseUpdate
from stockbook.services.activity_service import log_audit_event, publish_change
from stockbook.services.inventory_service import get_default_warehouse, get_warehouse_in_business

router = APIRouter(prefix="/warehouses", tags=["warehouses"])


def _warehouse_out(warehouse: Warehouse, default_id: str | None) -> WarehouseOut:
    return WarehouseOut(
        id=warehouse.id,
        name=warehouse.name,
        location=warehouse.location,
        is_default=warehouse.id == default_id,
        created_at=as_utc(warehouse.created_at),
    )


def _default_id(db: Session, business_id: str) -> str | None:
    default = get_default_warehouse(db, business_id)
    return default.id if default else None


def _ensure_name_available(db: Session, business_id: str, name: str, exclude_id: str | None = None) -> None:
    stmt = select(Warehouse.id).where(
        Warehouse.business_id == business_id,
        func.lower(Warehouse.name) == name.lower(),
    )
    if exclude_id:
        stmt = stmt.where(Warehouse.id != exclude_id)
    if db.execute(stmt).first():
        raise HTTPException(status_code=409, detail="A warehouse with this name already exists")


@router.get(
    "",
    response_model=list[WarehouseOut],
    summary="List warehouses",
    description="The earliest created warehouse is the default for movements and opening stock.",
    responses=error_responses(401, 403, 500),
)
def list_warehouses(
    db: Session = Depends(get_db),
    access: BusinessAccess = Depends(require_permission("warehouses.view")),
):
    rows = db.execute(
        select(Warehouse)
        .where(Warehouse.business_id == access.business.id)
        .order_by(Warehouse.created_at.asc(), Warehouse.id.asc())
    ).scalars().all()
    default_id = rows[0].id if rows else None
    return [_warehouse_out(row, default_id) for row in rows]


@router.post(
    "",
    response_model=WarehouseOut,
    status_code=201,
    summary="Create warehouse",
    responses=error_responses(401, 403, 409, 422, 500),
)
def create_warehouse(
    payload: WarehouseCreate,
    db: Session = Depends(get_db),
    access: BusinessAccess = Depends(require_permission("warehouses.manage")),
):
    business_id = access.business.id
    _ensure_name_available(db, business_id, payload.name)

    warehouse = Warehouse(
        id=str(uuid.uuid4()),
        business_id=business_id,
        name=payload.name,
        location=payload.location,
        created_at=utc_now(),
    )
    db.add(warehouse)
    publish_change(
        db,
        business_id=business_id,
        entity_type="warehouse",
        entity_id=warehouse.id,
        action="created",
        payload={"name": warehouse.name, "location": warehouse.location},
    )
    log_audit_event(
        db,
        business_id=business_id,
        actor_user_id=access.user.id,
        action="warehouse.create",
        target_type="warehouse",
        target_id=warehouse.id,
        metadata_json={"name": warehouse.name},
    )
    db.commit()
    db.refresh(warehouse)
    return _warehouse_out(warehouse, _default_id(db, business_id))


@router.patch(
    "/{warehouse_id}",
    response_model=WarehouseOut,
    summary="Rename or relocate a warehouse",
    responses=error_responses(401, 403, 404, 409, 422, 500),
)
def update_warehouse(
    warehouse_id: str,
    payload: WarehouseUpdate,
    db: Session = Depends(get_db),
    access: BusinessAccess = Depends(require_permission("warehouses.manage")),
):
    business_id = access.business.id
    warehouse = get_warehouse_in_business(db, business_id, warehouse_id)
    if not warehouse:
        raise HTTPException(status_code=404, detail="Warehouse not found")

    changes = payload.model_dump(exclude_unset=True)
    if changes.get("name") is None:
        changes.pop("name", None)
    if "name" in changes:
        _ensure_name_available(db, business_id, changes["name"], exclude_id=warehouse.id)
    for field, value in changes.items():
        setattr(warehouse, field, value)

    publish_change(
        db,
        business_id=business_id,
        entity_type="warehouse",
        entity_id=warehouse.id,
        action="updated",
        payload=changes,
    )
    log_audit_event(
        db,
        business_id=business_id,
        actor_user_id=access.user.id,
        action="warehouse.update",
        target_type="warehouse",
        target_id=warehouse.id,
        metadata_json=changes,
    )
    db.commit()
    db.refresh(warehouse)
    return _warehouse_out(warehouse, _default_id(db, business_id))
