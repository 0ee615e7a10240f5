from datetime import date

import pytest

from ledger.domain import InventoryItem, InventoryType, PaymentStatus, Transaction
from ledger.errors import InvalidDate, InvalidPayment
from ledger.payments import (
    PaymentState,
    apply_state,
    outstanding,
    override_status,
    realized_amount,
    record_down_payment,
    settle,
    state_of,
    submit_payment,
    unpaid,
)


def make_tx(status=PaymentStatus.UNPAID, value=1000, dp=0, remaining=0):
    return Transaction("t1", "Shoot", value, date(2024, 1, 10), status, dp, remaining)


def test_down_payment_then_remainder():
    state = submit_payment(unpaid(1000), 600)
    assert state.status is PaymentStatus.PARTIALLY_PAID
    assert state.remaining == 400

    state = submit_payment(state, 400)
    assert state.status is PaymentStatus.PAID
    assert state.remaining == 0
    assert state.down_payment == 600


def test_full_payment_from_unpaid():
    state = submit_payment(unpaid(1000), 1000)
    assert state.status is PaymentStatus.PAID
    assert realized_amount(state) == 1000


def test_realized_plus_outstanding_equals_total_for_every_status():
    states = [
        unpaid(1000),
        record_down_payment(unpaid(1000), 1),
        record_down_payment(unpaid(1000), 999),
        settle(unpaid(1000), 1000),
        settle(record_down_payment(unpaid(1000), 250), 750),
    ]
    for state in states:
        assert realized_amount(state) + outstanding(state) == state.total


@pytest.mark.parametrize("amount", [0, 1000, 1500])
def test_down_payment_must_be_strictly_inside_total(amount):
    with pytest.raises(InvalidPayment):
        record_down_payment(unpaid(1000), amount)


def test_negative_amounts_rejected():
    with pytest.raises(InvalidPayment):
        submit_payment(unpaid(1000), -1)
    with pytest.raises(InvalidPayment):
        settle(unpaid(1000), -1000)


def test_remainder_must_match_exactly():
    state = record_down_payment(unpaid(1000), 600)
    with pytest.raises(InvalidPayment) as exc:
        settle(state, 300)
    assert exc.value.details["expected"] == 400
    with pytest.raises(InvalidPayment):
        submit_payment(state, 600)


def test_overpayment_from_unpaid_rejected():
    with pytest.raises(InvalidPayment):
        submit_payment(unpaid(1000), 1200)


def test_paid_is_terminal():
    state = settle(unpaid(1000), 1000)
    with pytest.raises(InvalidPayment):
        submit_payment(state, 0)
    with pytest.raises(InvalidPayment):
        record_down_payment(state, 100)


def test_second_down_payment_rejected():
    state = record_down_payment(unpaid(1000), 200)
    with pytest.raises(InvalidPayment):
        record_down_payment(state, 100)


def test_override_resets_state():
    paid = settle(unpaid(1000), 1000)
    assert override_status(paid, PaymentStatus.UNPAID) == unpaid(1000)
    corrected = override_status(paid, PaymentStatus.PARTIALLY_PAID, down_payment=300)
    assert corrected.remaining == 700
    with pytest.raises(InvalidPayment):
        override_status(paid, PaymentStatus.PARTIALLY_PAID, down_payment=1000)


def test_inconsistent_state_cannot_be_built():
    with pytest.raises(InvalidPayment):
        PaymentState(PaymentStatus.PARTIALLY_PAID, 1000, 600, 300)
    with pytest.raises(InvalidPayment):
        PaymentState(PaymentStatus.PAID, 1000, 600, 400)
    with pytest.raises(InvalidPayment):
        make_tx(PaymentStatus.PARTIALLY_PAID, 1000, 600, 500)


def test_state_of_transaction_and_apply():
    t = make_tx()
    new_state = submit_payment(state_of(t), 600)
    updated = apply_state(t, new_state)
    assert updated.payment_status is PaymentStatus.PARTIALLY_PAID
    assert updated.down_payment_amount == 600
    assert updated.remaining_amount == 400
    assert t.payment_status is PaymentStatus.UNPAID


def test_inventory_uses_cost_as_total():
    item = InventoryItem("i1", "Licence", InventoryType.SUBSCRIPTION, cost=750)
    state = state_of(item)
    assert state.total == 750
    assert outstanding(state) == 750
    paid = apply_state(item, submit_payment(state, 750))
    assert paid.payment_status is PaymentStatus.PAID
    assert paid.remaining_amount == 0


def test_transaction_window_must_not_end_before_it_starts():
    with pytest.raises(InvalidDate):
        Transaction("t1", "Shoot", 1000, date(2024, 1, 5), start_date=date(2024, 3, 1), end_date=date(2024, 1, 1))
    same_day = Transaction("t1", "Shoot", 1000, date(2024, 1, 5), start_date=date(2024, 3, 1), end_date=date(2024, 3, 1))
    assert same_day.end_date == same_day.start_date
