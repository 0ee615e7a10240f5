import logging
import uuid
from dataclasses import replace
from datetime import datetime
from typing import Iterable, Optional, Tuple

from ledger.domain import (
    AdjustmentReason,
    AdjustmentType,
    InventoryAdjustment,
    InventoryItem,
    parse_enum,
)
from ledger.errors import InsufficientQuantity, InvalidAdjustment
from ledger.lifecycle import active, stamp_updated

__all__ = [
    "adjust", "opening_adjustment", "replay_quantity", "verify_quantity",
    "adjustment_history", "low_stock", "inventory_value",
]

logger = logging.getLogger("ledger.inventory")


def adjust(
    item: InventoryItem,
    direction,
    quantity_delta: int,
    reason,
    note: str = "",
    actor: Optional[str] = None,
    at: Optional[datetime] = None,
    adjustment_id: Optional[str] = None,
) -> Tuple[InventoryItem, InventoryAdjustment]:
    """Change an item's stock and return (updated item, adjustment record).

    The adjustment is the only record of why the quantity changed; the caller
    appends it to the log and saves the item.
    """
    direction = parse_enum(AdjustmentType, direction)
    reason = parse_enum(AdjustmentReason, reason)

    if isinstance(quantity_delta, bool) or not isinstance(quantity_delta, int) or quantity_delta <= 0:
        raise InvalidAdjustment(
            f"Adjustment quantity must be a positive whole number, got {quantity_delta!r}",
            quantity=str(quantity_delta),
        )
    if item.is_subscription:
        raise InvalidAdjustment("Cannot adjust quantity for subscription items", item_id=item.id)
    if item.is_deleted:
        raise InvalidAdjustment(f"Item {item.id} is archived; restore it first", item_id=item.id)

    previous = item.quantity
    if direction is AdjustmentType.DECREASE:
        if quantity_delta > previous:
            raise InsufficientQuantity(
                f"Cannot decrease {item.name} by {quantity_delta}, only {previous} in stock",
                item_id=item.id,
                requested=quantity_delta,
                available=previous,
            )
        new_quantity = previous - quantity_delta
    else:
        new_quantity = previous + quantity_delta

    when = at if at is not None else datetime.now()
    adjustment = InventoryAdjustment(
        id=adjustment_id or str(uuid.uuid4()),
        inventory_id=item.id,
        adjustment_type=direction,
        quantity=quantity_delta,
        previous_quantity=previous,
        new_quantity=new_quantity,
        reason=reason,
        adjusted_by=actor,
        adjusted_at=when,
        note=note or "",
    )
    updated = stamp_updated(replace(item, quantity=new_quantity), actor, when)
    logger.info(
        "%s %s by %d (%s): %d -> %d", direction.value, item.id, quantity_delta, reason.value, previous, new_quantity
    )
    if new_quantity <= item.minimum_stock:
        logger.warning("item %s at or below minimum stock: %d <= %d", item.id, new_quantity, item.minimum_stock)
    return updated, adjustment


def opening_adjustment(
    item: InventoryItem,
    actor: Optional[str] = None,
    at: Optional[datetime] = None,
    adjustment_id: Optional[str] = None,
) -> Optional[InventoryAdjustment]:
    """The purchase entry that brings a newly registered item from 0 to its stock."""
    if item.is_subscription or item.quantity == 0:
        return None
    _, adjustment = adjust(
        replace(item, quantity=0),
        AdjustmentType.INCREASE,
        item.quantity,
        AdjustmentReason.PURCHASE,
        note="Opening stock",
        actor=actor,
        at=at,
        adjustment_id=adjustment_id,
    )
    return adjustment


def adjustment_history(adjustments: Iterable[InventoryAdjustment], item_id: str) -> Tuple[InventoryAdjustment, ...]:
    return tuple(sorted(
        (a for a in adjustments if a.inventory_id == item_id),
        key=lambda a: a.adjusted_at,
    ))


def replay_quantity(adjustments: Iterable[InventoryAdjustment]) -> int:
    return sum(a.signed_quantity for a in adjustments)


def verify_quantity(item: InventoryItem, adjustments: Iterable[InventoryAdjustment]) -> bool:
    return replay_quantity(adjustment_history(adjustments, item.id)) == item.quantity


def low_stock(items: Iterable[InventoryItem]) -> Tuple[InventoryItem, ...]:
    return tuple(
        item for item in active(items)
        if not item.is_subscription and item.quantity <= item.minimum_stock
    )


def inventory_value(items: Iterable[InventoryItem]) -> int:
    return sum(item.total_value for item in active(items) if not item.is_subscription)
