"""Pure aggregation over ledger entries and stock levels.

Nothing here touches the database; callers load the rows and pass them in.
"""

from collections.abc import Iterable
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Protocol

RECEIVING_TYPES = frozenset({"in", "purchase"})
SHIPPING_TYPES = frozenset({"out", "sale"})
DAMAGE_TYPES = frozenset({"damaged"})


class StockStatus(str, Enum):
    OUT = "out"
    LOW = "low"
    IN_STOCK = "in-stock"


class LedgerEntryLike(Protocol):
    variant_id: str
    quantity: int
    movement_type: str
    created_at: datetime


class StockLevelLike(Protocol):
    quantity: int
    safety_stock: int


@dataclass(frozen=True)
class VariantStatistics:
    variant_id: str
    total_received: int = 0
    total_shipped: int = 0
    total_damaged: int = 0
    last_received_date: datetime | None = None


def _is_received(entry: LedgerEntryLike) -> bool:
    if entry.quantity <= 0:
        return False
    return entry.movement_type in RECEIVING_TYPES or entry.movement_type == "adjustment"


def compute_statistics(variant_id: str, entries: Iterable[LedgerEntryLike]) -> VariantStatistics:
    received = 0
    shipped = 0
    damaged = 0
    last_received: datetime | None = None

    for entry in entries:
        if entry.variant_id != variant_id:
            continue

        if _is_received(entry):
            received += entry.quantity
        elif entry.movement_type in SHIPPING_TYPES:
            shipped += abs(entry.quantity)
        elif entry.movement_type in DAMAGE_TYPES:
            damaged += abs(entry.quantity)

        # Positive adjustments count as received stock but not as a delivery date.
        if entry.movement_type in RECEIVING_TYPES and entry.quantity > 0:
            if last_received is None or entry.created_at > last_received:
                last_received = entry.created_at

    return VariantStatistics(
        variant_id=variant_id,
        total_received=received,
        total_shipped=shipped,
        total_damaged=damaged,
        last_received_date=last_received,
    )


def classify_stock(quantity: int, safety_stock: int) -> StockStatus:
    if quantity <= 0:
        return StockStatus.OUT
    if quantity <= safety_stock:
        return StockStatus.LOW
    return StockStatus.IN_STOCK


def classify_product(levels: Iterable[StockLevelLike]) -> StockStatus:
    """Status of a product from the summed quantity and safety stock of all its levels."""
    total_quantity = 0
    total_safety = 0
    for level in levels:
        total_quantity += level.quantity
        total_safety += level.safety_stock
    return classify_stock(total_quantity, total_safety)


def is_critical(status: StockStatus) -> bool:
    return status in (StockStatus.OUT, StockStatus.LOW)
