from datetime import datetime
from typing import Optional

from sqlalchemy import (
    CheckConstraint,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    UniqueConstraint,
    func,
)
from sqlalchemy.orm import Mapped, mapped_column

from stockbook.core.time_utils import utc_now
from stockbook.db.base import Base


class StockLevel(Base):
    """Current quantity of one variant in one warehouse.

    Only ``safety_stock`` is edited directly. ``quantity`` moves through
    ledger writes, and ``initial_quantity`` is the snapshot taken when the
    row was created.
    """

    __tablename__ = "stock_levels"

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    business_id: Mapped[str] = mapped_column(String(36), ForeignKey("businesses.id"), index=True)
    variant_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("product_variants.id", ondelete="CASCADE"), index=True
    )
    warehouse_id: Mapped[str] = mapped_column(String(36), ForeignKey("warehouses.id"), index=True)

    quantity: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default="0")
    safety_stock: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default="0")
    initial_quantity: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default="0")
    last_modified: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utc_now, server_default=func.now()
    )

    __table_args__ = (
        UniqueConstraint("variant_id", "warehouse_id", name="uq_stock_levels_variant_warehouse"),
        CheckConstraint("safety_stock >= 0", name="ck_stock_levels_safety_stock_non_negative"),
        Index("ix_stock_levels_business_warehouse", "business_id", "warehouse_id"),
    )


class StockMovement(Base):
    """
    Append-only ledger. Positive quantity adds stock, negative removes it.

    variant_id and warehouse_id carry no foreign keys: entries outlive the
    product they describe, and the *_cache columns keep the labels that were
    current when the movement was recorded.
    """
    __tablename__ = "stock_movements"

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    business_id: Mapped[str] = mapped_column(String(36), ForeignKey("businesses.id"), index=True)
    variant_id: Mapped[str] = mapped_column(String(36), nullable=False, index=True)
    warehouse_id: Mapped[str] = mapped_column(String(36), nullable=False, index=True)

    quantity: Mapped[int] = mapped_column(Integer, nullable=False)
    movement_type: Mapped[str] = mapped_column(String(20), nullable=False)
    reference: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)

    actor_user_id: Mapped[Optional[str]] = mapped_column(String(36), nullable=True)
    actor_label: Mapped[Optional[str]] = mapped_column(String(120), nullable=True)
    product_name_cache: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    variant_name_cache: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    sku_cache: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utc_now)

    __table_args__ = (
        CheckConstraint("quantity <> 0", name="ck_stock_movements_quantity_nonzero"),
        CheckConstraint(
            "movement_type IN ('in', 'out', 'adjustment', 'damaged', 'sale', 'purchase', 'transfer')",
            name="ck_stock_movements_movement_type",
        ),
        Index("ix_stock_movements_business_created_at", "business_id", "created_at"),
        Index(
            "ix_stock_movements_business_variant_created_at",
            "business_id",
            "variant_id",
            "created_at",
        ),
    )
