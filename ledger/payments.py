from dataclasses import dataclass, replace
from typing import Union

from ledger.domain import InventoryItem, PaymentStatus, Transaction, check_payment_fields
from ledger.errors import InvalidPayment

Obligation = Union[Transaction, InventoryItem]


@dataclass(frozen=True)
class PaymentState:
    status: PaymentStatus
    total: int
    down_payment: int = 0
    remaining: int = 0

    def __post_init__(self):
        check_payment_fields(self.total, self.status, self.down_payment, self.remaining)


def unpaid(total: int) -> PaymentState:
    return PaymentState(PaymentStatus.UNPAID, total, 0, total)


def realized_amount(state: PaymentState) -> int:
    if state.status is PaymentStatus.PAID:
        return state.total
    if state.status is PaymentStatus.PARTIALLY_PAID:
        return state.down_payment
    return 0


def outstanding(state: PaymentState) -> int:
    return state.total - realized_amount(state)


def _check_amount(amount: int) -> None:
    if isinstance(amount, bool) or not isinstance(amount, int):
        raise InvalidPayment(f"Payment amount must be an integer amount, got {amount!r}")
    if amount < 0:
        raise InvalidPayment(f"Payment amount cannot be negative: {amount}", amount=amount)


def record_down_payment(state: PaymentState, amount: int) -> PaymentState:
    _check_amount(amount)
    if state.status is not PaymentStatus.UNPAID:
        raise InvalidPayment(
            f"Down payment only applies to unpaid obligations, status is {state.status.value}",
            status=state.status.value,
        )
    if amount <= 0:
        raise InvalidPayment("Down payment must be greater than zero", amount=amount)
    if amount >= state.total:
        raise InvalidPayment(
            f"Down payment {amount} covers the full total {state.total}; settle it instead",
            amount=amount,
            total=state.total,
        )
    return PaymentState(PaymentStatus.PARTIALLY_PAID, state.total, amount, state.total - amount)


def settle(state: PaymentState, amount: int) -> PaymentState:
    """Pay whatever is still owed, in one go."""
    _check_amount(amount)
    if state.status is PaymentStatus.PAID:
        raise InvalidPayment("Obligation is already paid", status=state.status.value)
    due = outstanding(state)
    if amount != due:
        raise InvalidPayment(
            f"Settling requires exactly {due}, got {amount}",
            amount=amount,
            expected=due,
        )
    return PaymentState(PaymentStatus.PAID, state.total, state.down_payment, 0)


def submit_payment(state: PaymentState, amount: int) -> PaymentState:
    _check_amount(amount)
    if state.status is PaymentStatus.UNPAID and amount < state.total:
        return record_down_payment(state, amount)
    return settle(state, amount)


def override_status(state: PaymentState, status: PaymentStatus, down_payment: int = 0) -> PaymentState:
    """Administrative correction: build the requested state directly, bypassing transition rules."""
    _check_amount(down_payment)
    if status is PaymentStatus.PAID:
        return PaymentState(status, state.total, state.down_payment, 0)
    if status is PaymentStatus.PARTIALLY_PAID:
        return PaymentState(status, state.total, down_payment, state.total - down_payment)
    return unpaid(state.total)


def state_of(record: Obligation) -> PaymentState:
    total = record.project_value if isinstance(record, Transaction) else record.cost
    if record.payment_status is PaymentStatus.UNPAID:
        return unpaid(total)
    if record.payment_status is PaymentStatus.PAID:
        return PaymentState(PaymentStatus.PAID, total, record.down_payment_amount, 0)
    return PaymentState(record.payment_status, total, record.down_payment_amount, record.remaining_amount)


def apply_state(record: Obligation, state: PaymentState) -> Obligation:
    return replace(
        record,
        payment_status=state.status,
        down_payment_amount=state.down_payment,
        remaining_amount=state.remaining,
    )


def transaction_realized(t: Transaction) -> int:
    return realized_amount(state_of(t))


def transaction_outstanding(t: Transaction) -> int:
    return outstanding(state_of(t))
