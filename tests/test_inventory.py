from datetime import datetime

import pytest

from ledger.domain import (
    AdjustmentReason,
    AdjustmentType,
    AuditTrail,
    InventoryAdjustment,
    InventoryItem,
    InventoryType,
)
from ledger.errors import InsufficientQuantity, InvalidAdjustment
from ledger.inventory import (
    adjust,
    adjustment_history,
    inventory_value,
    low_stock,
    opening_adjustment,
    replay_quantity,
    verify_quantity,
)

AT = datetime(2024, 2, 1, 10, 0)


def make_item(id="inv-1", qty=5, minimum=1, price=1000, type=InventoryType.EQUIPMENT, deleted=False):
    return InventoryItem(
        id=id,
        name=f"Item {id}",
        type=type,
        quantity=qty,
        minimum_stock=minimum,
        unit_price=price,
        audit=AuditTrail(is_deleted=deleted),
    )


def test_increase_adds_stock_and_records_snapshot():
    item, adj = adjust(make_item(qty=5), AdjustmentType.INCREASE, 3, AdjustmentReason.PURCHASE, actor="budi", at=AT)
    assert item.quantity == 8
    assert adj.previous_quantity == 5
    assert adj.new_quantity == 8
    assert adj.quantity == 3
    assert adj.adjusted_by == "budi"
    assert adj.adjusted_at == AT
    assert item.audit.updated_by == "budi"


def test_decrease_to_zero_is_allowed():
    item, adj = adjust(make_item(qty=5), "decrease", 5, "sales", at=AT)
    assert item.quantity == 0
    assert adj.signed_quantity == -5
    assert adj.reason is AdjustmentReason.SALES


def test_decrease_below_zero_is_rejected():
    with pytest.raises(InsufficientQuantity) as exc:
        adjust(make_item(qty=5), AdjustmentType.DECREASE, 7, AdjustmentReason.DAMAGED)
    assert exc.value.details["available"] == 5
    assert exc.value.details["requested"] == 7


@pytest.mark.parametrize("delta", [0, -2, 1.5, True])
def test_non_positive_or_fractional_delta_is_rejected(delta):
    with pytest.raises(InvalidAdjustment):
        adjust(make_item(), AdjustmentType.INCREASE, delta, AdjustmentReason.CORRECTION)


def test_subscription_items_cannot_be_adjusted():
    sub = make_item(qty=0, type=InventoryType.SUBSCRIPTION)
    with pytest.raises(InvalidAdjustment):
        adjust(sub, AdjustmentType.INCREASE, 1, AdjustmentReason.PURCHASE)


def test_archived_items_cannot_be_adjusted():
    with pytest.raises(InvalidAdjustment):
        adjust(make_item(deleted=True), AdjustmentType.INCREASE, 1, AdjustmentReason.PURCHASE)


def test_adjust_leaves_original_untouched():
    original = make_item(qty=5)
    adjust(original, AdjustmentType.DECREASE, 2, AdjustmentReason.RETURNED)
    assert original.quantity == 5


def test_snapshot_must_add_up():
    with pytest.raises(InvalidAdjustment):
        InventoryAdjustment(
            id="a", inventory_id="inv-1", adjustment_type=AdjustmentType.INCREASE, quantity=2,
            previous_quantity=3, new_quantity=4, reason=AdjustmentReason.OTHER,
            adjusted_by=None, adjusted_at=AT,
        )


def test_opening_adjustment_and_replay():
    item = make_item(qty=4)
    opening = opening_adjustment(item, actor="admin", at=AT, adjustment_id="open-1")
    assert opening.previous_quantity == 0 and opening.new_quantity == 4
    assert opening.reason is AdjustmentReason.PURCHASE

    log = [opening]
    current = item
    for i, (direction, qty) in enumerate([("decrease", 3), ("increase", 6), ("decrease", 2)]):
        current, adj = adjust(current, direction, qty, "correction", at=datetime(2024, 2, 2 + i))
        log.append(adj)

    assert current.quantity == 5
    assert replay_quantity(log) == 5
    assert verify_quantity(current, log)
    assert not verify_quantity(make_item(qty=9), log)


def test_opening_adjustment_skips_empty_and_subscriptions():
    assert opening_adjustment(make_item(qty=0)) is None
    assert opening_adjustment(make_item(qty=0, type=InventoryType.SUBSCRIPTION)) is None


def test_history_filters_and_sorts():
    item = make_item(qty=10)
    _, late = adjust(item, "decrease", 1, "sales", at=datetime(2024, 3, 1), adjustment_id="late")
    _, early = adjust(item, "decrease", 2, "sales", at=datetime(2024, 1, 1), adjustment_id="early")
    _, other = adjust(make_item(id="inv-2"), "increase", 1, "purchase", at=AT, adjustment_id="other")
    history = adjustment_history([late, other, early], "inv-1")
    assert [a.id for a in history] == ["early", "late"]


def test_low_stock_and_value():
    items = [
        make_item(id="a", qty=1, minimum=1, price=500),
        make_item(id="b", qty=3, minimum=1, price=200),
        make_item(id="c", qty=0, minimum=2, deleted=True),
        make_item(id="d", qty=0, minimum=1, type=InventoryType.SUBSCRIPTION),
    ]
    assert [i.id for i in low_stock(items)] == ["a"]
    assert inventory_value(items) == 1 * 500 + 3 * 200
