from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict

from stockbook.schemas.common import PaginationMeta


class AuditLogOut(BaseModel):
    id: str
    actor_user_id: str
    action: str
    target_type: str
    target_id: str | None = None
    metadata_json: dict[str, Any] | None = None
    created_at: datetime


class AuditLogListOut(BaseModel):
    items: list[AuditLogOut]
    pagination: PaginationMeta


class ChangeEventOut(BaseModel):
    id: int
    entity_type: str
    entity_id: str
    action: str
    payload: dict[str, Any] | None = None
    created_at: datetime


class ChangeFeedOut(BaseModel):
    items: list[ChangeEventOut]
    next_cursor: int
    has_more: bool

    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "items": [
                    {
                        "id": 41,
                        "entity_type": "stock_level",
                        "entity_id": "stock-level-id",
                        "action": "updated",
                        "payload": {"variant_id": "variant-id", "warehouse_id": "warehouse-id", "quantity": 7},
                        "created_at": "2026-03-01T09:30:00Z",
                    }
                ],
                "next_cursor": 41,
                "has_more": False,
            }
        }
    )
