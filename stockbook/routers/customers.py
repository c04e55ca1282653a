import uuid

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy import func, or_, select
from sqlalchemy.orm import Session

from stockbook.core.api_docs import error_responses
from stockbook.core.deps import get_db
from stockbook.core.permissions import require_permission
from stockbook.core.security_current import BusinessAccess
from stockbook.core.time_utils import as_utc, utc_now
from stockbook.models.customer import Customer
from stockbook.models.order import Order
from stockbook.schemas.common import PaginationMeta
from stockbook.schemas.customer import CustomerCreateIn, CustomerListOut, CustomerOut
from stockbook.services.activity_service import log_audit_event, publish_change

router = APIRouter(prefix="/customers", tags=["customers"])


def _customer_out(customer: Customer, order_count: int = 0) -> CustomerOut:
    return CustomerOut(
        id=customer.id,
        name=customer.name,
        phone=customer.phone,
        email=customer.email,
        note=customer.note,
        order_count=order_count,
        created_at=as_utc(customer.created_at),
    )


@router.post(
    "",
    response_model=CustomerOut,
    status_code=201,
    summary="Create customer",
    responses=error_responses(400, 401, 403, 409, 422, 500),
)
def create_customer(
    payload: CustomerCreateIn,
    db: Session = Depends(get_db),
    access: BusinessAccess = Depends(require_permission("customers.manage")),
):
    business_id = access.business.id
    duplicate = db.execute(
        select(Customer.id).where(
            Customer.business_id == business_id,
            func.lower(Customer.name) == payload.name.lower(),
        )
    ).first()
    if duplicate:
        raise HTTPException(status_code=409, detail="A customer with this name already exists")

    customer = Customer(
        id=str(uuid.uuid4()),
        business_id=business_id,
        name=payload.name,
        phone=payload.phone,
        email=payload.email,
        note=payload.note,
        created_at=utc_now(),
    )
    db.add(customer)
    publish_change(
        db,
        business_id=business_id,
        entity_type="customer",
        entity_id=customer.id,
        action="created",
        payload={"name": customer.name},
    )
    log_audit_event(
        db,
        business_id=business_id,
        actor_user_id=access.user.id,
        action="customer.create",
        target_type="customer",
        target_id=customer.id,
        metadata_json={"name": customer.name},
    )
    db.commit()
    db.refresh(customer)
    return _customer_out(customer)


@router.get(
    "",
    response_model=CustomerListOut,
    summary="List customers",
    responses=error_responses(401, 403, 422, 500),
)
def list_customers(
    q: str | None = Query(default=None, description="Match on name, phone or email"),
    limit: int = Query(default=50, ge=1, le=200),
    offset: int = Query(default=0, ge=0),
    db: Session = Depends(get_db),
    access: BusinessAccess = Depends(require_permission("customers.view")),
):
    filters = [Customer.business_id == access.business.id]
    if q and q.strip():
        pattern = f"%{q.strip().lower()}%"
        filters.append(
            or_(
                func.lower(Customer.name).like(pattern),
                func.lower(Customer.phone).like(pattern),
                func.lower(Customer.email).like(pattern),
            )
        )

    order_counts = (
        select(Order.customer_id.label("customer_id"), func.count(Order.id).label("order_count"))
        .where(Order.business_id == access.business.id)
        .group_by(Order.customer_id)
        .subquery()
    )
    total = int(db.execute(select(func.count(Customer.id)).where(*filters)).scalar_one())
    rows = db.execute(
        select(Customer, func.coalesce(order_counts.c.order_count, 0))
        .outerjoin(order_counts, order_counts.c.customer_id == Customer.id)
        .where(*filters)
        .order_by(Customer.name.asc())
        .offset(offset)
        .limit(limit)
    ).all()

    items = [_customer_out(customer, int(order_count)) for customer, order_count in rows]
    count = len(items)
    return CustomerListOut(
        items=items,
        pagination=PaginationMeta(
            total=total,
            limit=limit,
            offset=offset,
            count=count,
            has_next=(offset + count) < total,
        ),
        q=q,
    )
