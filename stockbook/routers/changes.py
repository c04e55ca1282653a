from typing import Literal

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from stockbook.core.api_docs import error_responses
from stockbook.core.config import settings
from stockbook.core.deps import get_db
from stockbook.core.permissions import require_permission
from stockbook.core.security_current import BusinessAccess
from stockbook.core.time_utils import as_utc
from stockbook.schemas.activity import ChangeEventOut, ChangeFeedOut
from stockbook.services.activity_service import list_changes

router = APIRouter(prefix="/changes", tags=["changes"])

EntityTypeFilter = Literal[
    "product",
    "variant",
    "stock_level",
    "stock_movement",
    "order",
    "warehouse",
    "customer",
]


@router.get(
    "",
    response_model=ChangeFeedOut,
    summary="Poll committed changes after a cursor",
    description=(
        "Clients keep the returned `next_cursor` and pass it back as `after` to receive "
        "only newer changes. Events appear once the write that produced them has committed."
    ),
    responses=error_responses(401, 403, 422, 500),
)
def poll_changes(
    after: int = Query(default=0, ge=0),
    entity_type: EntityTypeFilter | None = Query(default=None),
    limit: int | None = Query(default=None, ge=1, le=1000),
    db: Session = Depends(get_db),
    access: BusinessAccess = Depends(require_permission("changes.view")),
):
    page_size = limit or settings.change_feed_page_size
    # One extra row tells us whether another page is waiting.
    rows = list_changes(
        db,
        business_id=access.business.id,
        after=after,
        entity_type=entity_type,
        limit=page_size + 1,
    )
    has_more = len(rows) > page_size
    rows = rows[:page_size]
    return ChangeFeedOut(
        items=[
            ChangeEventOut(
                id=row.id,
                entity_type=row.entity_type,
                entity_id=row.entity_id,
                action=row.action,
                payload=row.payload_json,
                created_at=as_utc(row.created_at),
            )
            for row in rows
        ],
        next_cursor=rows[-1].id if rows else after,
        has_more=has_more,
    )
