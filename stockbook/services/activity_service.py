import uuid
from typing import Any

from sqlalchemy import select
from sqlalchemy.orm import Session

from stockbook.models.activity import AuditLog, ChangeEvent

ENTITY_TYPES = (
    "product",
    "variant",
    "stock_level",
    "stock_movement",
    "order",
    "warehouse",
    "customer",
)
CHANGE_ACTIONS = ("created", "updated", "deleted")


def log_audit_event(
    db: Session,
    *,
    business_id: str,
    actor_user_id: str,
    action: str,
    target_type: str,
    target_id: str | None = None,
    metadata_json: dict[str, Any] | None = None,
) -> AuditLog:
    event = AuditLog(
        id=str(uuid.uuid4()),
        business_id=business_id,
        actor_user_id=actor_user_id,
        action=action,
        target_type=target_type,
        target_id=target_id,
        metadata_json=metadata_json,
    )
    db.add(event)
    return event


def publish_change(
    db: Session,
    *,
    business_id: str,
    entity_type: str,
    entity_id: str,
    action: str,
    payload: dict[str, Any] | None = None,
) -> ChangeEvent:
    """Queue a change-feed row in the caller's transaction.

    Rows become visible to ``GET /changes`` only when the surrounding
    write commits, so a rolled-back mutation never leaks an event.
    """
    if entity_type not in ENTITY_TYPES:
        raise ValueError(f"Unknown change entity type: {entity_type}")
    if action not in CHANGE_ACTIONS:
        raise ValueError(f"Unknown change action: {action}")

    event = ChangeEvent(
        business_id=business_id,
        entity_type=entity_type,
        entity_id=entity_id,
        action=action,
        payload_json=payload,
    )
    db.add(event)
    return event


def list_changes(
    db: Session,
    *,
    business_id: str,
    after: int = 0,
    entity_type: str | None = None,
    limit: int = 100,
) -> list[ChangeEvent]:
    stmt = select(ChangeEvent).where(
        ChangeEvent.business_id == business_id,
        ChangeEvent.id > after,
    )
    if entity_type:
        stmt = stmt.where(ChangeEvent.entity_type == entity_type)
    stmt = stmt.order_by(ChangeEvent.id.asc()).limit(limit)
    return db.execute(stmt).scalars().all()
