from typing import Literal, NoReturn

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy import func, or_, select
from sqlalchemy.orm import Session

from stockbook.core.api_docs import error_responses
from stockbook.core.deps import get_db
from stockbook.core.permissions import require_permission
from stockbook.core.security_current import BusinessAccess
from stockbook.core.time_utils import as_utc, utc_now
from stockbook.models.product import Product, ProductVariant
from stockbook.schemas.common import PaginationMeta
from stockbook.schemas.product import (
    ProductCreate,
    ProductCreateOut,
    ProductDeleteOut,
    ProductDetailOut,
    ProductListOut,
    ProductOut,
    ProductUpdate,
    VariantAddIn,
    VariantCreateOut,
    VariantStatisticsOut,
)
from stockbook.services.activity_service import log_audit_event, publish_change
from stockbook.services.catalog_service import (
    CatalogError,
    DuplicateSkuError,
    WarehouseNotFoundError,
    add_variant,
    build_product_detail,
    create_product as create_catalog_product,
    delete_product as delete_catalog_product,
    product_totals_subquery,
    resolve_warehouse,
    sku_taken,
    stock_status_case,
)
from stockbook.services.inventory_service import MovementActor, load_variant_entries
from stockbook.services.stock_statistics import compute_statistics

router = APIRouter(prefix="/products", tags=["products"])
MAX_PRODUCT_PAGE_SIZE = 200


def _get_product_or_404(db: Session, business_id: str, product_id: str) -> Product:
    product = db.execute(
        select(Product).where(Product.id == product_id, Product.business_id == business_id)
    ).scalar_one_or_none()
    if not product:
        raise HTTPException(status_code=404, detail="Product not found")
    return product


def _actor(access: BusinessAccess) -> MovementActor:
    return MovementActor(user_id=access.user.id, label=access.actor_label)


def _raise_catalog_error(exc: CatalogError) -> NoReturn:
    if isinstance(exc, WarehouseNotFoundError):
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    if isinstance(exc, DuplicateSkuError):
        raise HTTPException(status_code=409, detail=str(exc)) from exc
    raise HTTPException(status_code=400, detail=str(exc)) from exc


@router.post(
    "",
    response_model=ProductCreateOut,
    status_code=201,
    summary="Create product with variants and opening stock",
    responses=error_responses(400, 401, 403, 404, 409, 422, 500),
)
def create_product(
    payload: ProductCreate,
    db: Session = Depends(get_db),
    access: BusinessAccess = Depends(require_permission("catalog.manage")),
):
    business_id = access.business.id
    try:
        product, variants = create_catalog_product(
            db,
            business_id=business_id,
            name=payload.name,
            sku=payload.sku,
            description=payload.description,
            category=payload.category,
            images=payload.images,
            variants=payload.variants,
            warehouse_id=payload.warehouse_id,
            actor=_actor(access),
        )
    except CatalogError as exc:
        db.rollback()
        _raise_catalog_error(exc)

    log_audit_event(
        db,
        business_id=business_id,
        actor_user_id=access.user.id,
        action="product.create",
        target_type="product",
        target_id=product.id,
        metadata_json={
            "name": product.name,
            "sku": product.sku,
            "variants": [variant.variant_name for variant in variants],
        },
    )
    db.commit()
    return ProductCreateOut(id=product.id, variant_ids=[variant.id for variant in variants])


@router.get(
    "",
    response_model=ProductListOut,
    summary="List products with aggregate stock status",
    responses=error_responses(401, 403, 422, 500),
)
def list_products(
    q: str | None = Query(default=None, description="Substring of the name or SKU"),
    category: str | None = Query(default=None),
    status_filter: Literal["out", "low", "in-stock"] | None = Query(default=None, alias="status"),
    limit: int = Query(default=50, ge=1, le=MAX_PRODUCT_PAGE_SIZE, description="Page size"),
    offset: int = Query(default=0, ge=0, description="Pagination offset"),
    db: Session = Depends(get_db),
    access: BusinessAccess = Depends(require_permission("catalog.view")),
):
    business_id = access.business.id
    totals = product_totals_subquery(business_id)
    total_stock = func.coalesce(totals.c.total_stock, 0)
    total_safety = func.coalesce(totals.c.total_safety_stock, 0)
    status_expr = stock_status_case(total_stock, total_safety)

    filters = [Product.business_id == business_id]
    if q and q.strip():
        pattern = f"%{q.strip().lower()}%"
        filters.append(or_(func.lower(Product.name).like(pattern), func.lower(Product.sku).like(pattern)))
    if category and category.strip():
        filters.append(func.lower(Product.category) == category.strip().lower())
    if status_filter:
        filters.append(status_expr == status_filter)

    base = select(Product).outerjoin(totals, totals.c.product_id == Product.id).where(*filters)
    total = int(db.execute(select(func.count()).select_from(base.subquery())).scalar_one())
    rows = db.execute(
        select(
            Product,
            func.coalesce(totals.c.variant_count, 0),
            total_stock,
            total_safety,
            status_expr,
        )
        .outerjoin(totals, totals.c.product_id == Product.id)
        .where(*filters)
        .order_by(Product.created_at.desc())
        .offset(offset)
        .limit(limit)
    ).all()

    items = [
        ProductOut(
            id=product.id,
            name=product.name,
            sku=product.sku,
            category=product.category,
            images=list(product.images or []),
            variant_count=int(variant_count),
            total_stock=int(stock),
            total_safety_stock=int(safety),
            status=status,
            created_at=as_utc(product.created_at),
            updated_at=as_utc(product.updated_at),
        )
        for product, variant_count, stock, safety, status in rows
    ]
    count = len(items)
    return ProductListOut(
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
    "/{product_id}",
    response_model=ProductDetailOut,
    summary="Product detail with variants, stock levels and statistics",
    responses=error_responses(401, 403, 404, 500),
)
def get_product(
    product_id: str,
    db: Session = Depends(get_db),
    access: BusinessAccess = Depends(require_permission("catalog.view")),
):
    product = _get_product_or_404(db, access.business.id, product_id)
    return build_product_detail(db, business_id=access.business.id, product=product)


@router.patch(
    "/{product_id}",
    response_model=ProductDetailOut,
    summary="Edit product and variant fields",
    description="Ledger entries keep the labels that were cached when they were recorded.",
    responses=error_responses(400, 401, 403, 404, 409, 422, 500),
)
def update_product(
    product_id: str,
    payload: ProductUpdate,
    db: Session = Depends(get_db),
    access: BusinessAccess = Depends(require_permission("catalog.manage")),
):
    business_id = access.business.id
    product = _get_product_or_404(db, business_id, product_id)
    changes = payload.model_dump(exclude_unset=True, exclude={"variants"})

    if changes.get("name") is None:
        changes.pop("name", None)
    if changes.get("sku") and sku_taken(db, business_id, changes["sku"], exclude_product_id=product.id):
        raise HTTPException(status_code=409, detail="SKU already exists")
    if "images" in changes:
        changes["images"] = changes["images"] or []

    for field, value in changes.items():
        setattr(product, field, value)

    variant_changes: dict[str, dict] = {}
    for variant_payload in payload.variants or []:
        variant = db.execute(
            select(ProductVariant).where(
                ProductVariant.id == variant_payload.id,
                ProductVariant.product_id == product.id,
            )
        ).scalar_one_or_none()
        if not variant:
            raise HTTPException(status_code=404, detail=f"Variant not found: {variant_payload.id}")

        fields = variant_payload.model_dump(exclude_unset=True, exclude={"id"})
        if fields.get("variant_name") is None:
            fields.pop("variant_name", None)
        if "price" in fields and fields["price"] is None:
            fields.pop("price")
        for field, value in fields.items():
            setattr(variant, field, value)
        variant_changes[variant.id] = {key: str(value) if value is not None else None for key, value in fields.items()}
        publish_change(
            db,
            business_id=business_id,
            entity_type="variant",
            entity_id=variant.id,
            action="updated",
            payload=variant_changes[variant.id],
        )

    product.updated_at = utc_now()
    publish_change(
        db,
        business_id=business_id,
        entity_type="product",
        entity_id=product.id,
        action="updated",
        payload={"fields": sorted(changes)},
    )
    log_audit_event(
        db,
        business_id=business_id,
        actor_user_id=access.user.id,
        action="product.update",
        target_type="product",
        target_id=product.id,
        metadata_json={"fields": sorted(changes), "variants": variant_changes},
    )
    db.commit()
    db.refresh(product)
    return build_product_detail(db, business_id=business_id, product=product)


@router.delete(
    "/{product_id}",
    response_model=ProductDeleteOut,
    summary="Delete product",
    description="Removes the product, its variants and their stock levels. Ledger entries are kept.",
    responses=error_responses(401, 403, 404, 500),
)
def delete_product(
    product_id: str,
    db: Session = Depends(get_db),
    access: BusinessAccess = Depends(require_permission("catalog.manage")),
):
    business_id = access.business.id
    product = _get_product_or_404(db, business_id, product_id)
    snapshot = {"name": product.name, "sku": product.sku}
    removed_variants = delete_catalog_product(db, business_id=business_id, product=product)
    log_audit_event(
        db,
        business_id=business_id,
        actor_user_id=access.user.id,
        action="product.delete",
        target_type="product",
        target_id=product_id,
        metadata_json={**snapshot, "variants_removed": removed_variants},
    )
    db.commit()
    return ProductDeleteOut(id=product_id)


@router.post(
    "/{product_id}/variants",
    response_model=VariantCreateOut,
    status_code=201,
    summary="Add a variant with its opening stock",
    responses=error_responses(400, 401, 403, 404, 422, 500),
)
def create_variant(
    product_id: str,
    payload: VariantAddIn,
    db: Session = Depends(get_db),
    access: BusinessAccess = Depends(require_permission("catalog.manage")),
):
    business_id = access.business.id
    product = _get_product_or_404(db, business_id, product_id)
    try:
        warehouse = resolve_warehouse(db, business_id, payload.warehouse_id)
    except CatalogError as exc:
        _raise_catalog_error(exc)

    variant, level = add_variant(
        db,
        business_id=business_id,
        product=product,
        payload=payload,
        warehouse=warehouse,
        actor=_actor(access),
    )
    product.updated_at = utc_now()
    log_audit_event(
        db,
        business_id=business_id,
        actor_user_id=access.user.id,
        action="product.variant.create",
        target_type="product_variant",
        target_id=variant.id,
        metadata_json={
            "product_id": product.id,
            "variant_name": variant.variant_name,
            "initial_quantity": payload.initial_quantity,
        },
    )
    db.commit()
    return VariantCreateOut(id=variant.id, stock_level_id=level.id)


@router.get(
    "/{product_id}/variants/{variant_id}/statistics",
    response_model=VariantStatisticsOut,
    summary="Received, shipped and damaged totals for a variant",
    responses=error_responses(401, 403, 404, 500),
)
def get_variant_statistics(
    product_id: str,
    variant_id: str,
    db: Session = Depends(get_db),
    access: BusinessAccess = Depends(require_permission("inventory.view")),
):
    business_id = access.business.id
    product = _get_product_or_404(db, business_id, product_id)
    found = db.execute(
        select(ProductVariant.id).where(
            ProductVariant.id == variant_id,
            ProductVariant.product_id == product.id,
        )
    ).scalar_one_or_none()
    if not found:
        raise HTTPException(status_code=404, detail="Variant not found")

    stats = compute_statistics(variant_id, load_variant_entries(db, business_id=business_id, variant_ids=[variant_id]))
    return VariantStatisticsOut(
        variant_id=variant_id,
        total_received=stats.total_received,
        total_shipped=stats.total_shipped,
        total_damaged=stats.total_damaged,
        last_received_date=as_utc(stats.last_received_date) if stats.last_received_date else None,
    )
