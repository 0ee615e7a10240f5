"""
Persistence collaborator contract and the in-memory store used by tests and the dashboard.

The engine only talks to storage through these calls; each write is a single
atomic call so no multi-step transaction is ever needed across the boundary.
"""
import logging
from dataclasses import dataclass, replace
from datetime import date, datetime
from threading import Lock
from typing import Dict, Iterable, List, Mapping, Optional, Protocol, Tuple, Union

from ledger.domain import (
    Expense,
    FundType,
    InventoryAdjustment,
    InventoryItem,
    LifecycleAction,
    PaymentStatus,
    Transaction,
    parse_enum,
    parse_fund,
)
from ledger.errors import InvalidAdjustment, RecordNotFound
from ledger.filters import by_date_range
from ledger.lifecycle import apply_action, with_archived

logger = logging.getLogger("ledger.repository")

Record = Union[Transaction, Expense, InventoryItem]


@dataclass(frozen=True)
class RecordFilter:
    include_archived: bool = False
    start: Optional[date] = None
    end: Optional[date] = None


class LedgerRepository(Protocol):
    def list_transactions(self, filter: Optional[RecordFilter] = None) -> Tuple[Transaction, ...]:
        ...

    def list_expenses(self, filter: Optional[RecordFilter] = None) -> Tuple[Expense, ...]:
        ...

    def list_inventory(self, filter: Optional[RecordFilter] = None) -> Tuple[InventoryItem, ...]:
        ...

    def list_adjustments(self, inventory_id: Optional[str] = None) -> Tuple[InventoryAdjustment, ...]:
        ...

    def post_fund_delta(self, fund: FundType, signed_amount: int, reference_id: str) -> None:
        ...

    def append_adjustment(self, record: InventoryAdjustment) -> None:
        ...

    def update_lifecycle(self, entity_id: str, action: LifecycleAction, actor: str) -> Record:
        ...

    def update_payment_status(self, entity_id: str, new_status: PaymentStatus, amounts: Mapping[str, int]) -> Record:
        ...

    def save_expense(self, expense: Expense) -> None:
        ...

    def save_item(self, item: InventoryItem) -> None:
        ...


def _select(records: Iterable, filter: Optional[RecordFilter], dated: bool = True) -> tuple:
    filter = filter or RecordFilter()
    selected = with_archived(records, filter.include_archived)
    if dated and (filter.start is not None or filter.end is not None):
        keep = by_date_range(filter.start, filter.end)
        selected = tuple(r for r in selected if keep(r))
    return selected


class InMemoryRepository:
    """Dict-backed store. Fund deltas are applied under a lock, as one increment each."""

    def __init__(
        self,
        transactions: Iterable[Transaction] = (),
        expenses: Iterable[Expense] = (),
        inventory: Iterable[InventoryItem] = (),
        adjustments: Iterable[InventoryAdjustment] = (),
        opening_balances: Optional[Mapping] = None,
    ):
        self._transactions: Dict[str, Transaction] = {t.id: t for t in transactions}
        self._expenses: Dict[str, Expense] = {e.id: e for e in expenses}
        self._inventory: Dict[str, InventoryItem] = {i.id: i for i in inventory}
        self._adjustments: List[InventoryAdjustment] = list(adjustments)
        self._balances: Dict[FundType, int] = {fund: 0 for fund in FundType}
        for fund, amount in (opening_balances or {}).items():
            self._balances[parse_fund(fund)] = amount
        self._deltas: List[Tuple[FundType, int, str]] = []
        self._lock = Lock()

    # reads

    def list_transactions(self, filter: Optional[RecordFilter] = None) -> Tuple[Transaction, ...]:
        return _select(self._transactions.values(), filter)

    def list_expenses(self, filter: Optional[RecordFilter] = None) -> Tuple[Expense, ...]:
        return _select(self._expenses.values(), filter)

    def list_inventory(self, filter: Optional[RecordFilter] = None) -> Tuple[InventoryItem, ...]:
        return _select(self._inventory.values(), filter, dated=False)

    def list_adjustments(self, inventory_id: Optional[str] = None) -> Tuple[InventoryAdjustment, ...]:
        return tuple(a for a in self._adjustments if inventory_id is None or a.inventory_id == inventory_id)

    def get_transaction(self, transaction_id: str) -> Transaction:
        return self._get(self._transactions, transaction_id)

    def get_expense(self, expense_id: str) -> Expense:
        return self._get(self._expenses, expense_id)

    def get_item(self, item_id: str) -> InventoryItem:
        return self._get(self._inventory, item_id)

    def fund_balance(self, fund) -> int:
        return self._balances[parse_fund(fund)]

    def fund_deltas(self) -> Tuple[Tuple[FundType, int, str], ...]:
        return tuple(self._deltas)

    # writes

    def post_fund_delta(self, fund: FundType, signed_amount: int, reference_id: str) -> None:
        fund = parse_fund(fund)
        with self._lock:
            self._balances[fund] += signed_amount
            self._deltas.append((fund, signed_amount, reference_id))

    def append_adjustment(self, record: InventoryAdjustment) -> None:
        if any(a.id == record.id for a in self._adjustments):
            raise InvalidAdjustment(f"Adjustment {record.id} is already recorded", id=record.id)
        self._adjustments.append(record)

    def update_lifecycle(
        self, entity_id: str, action: LifecycleAction, actor: str, at: Optional[datetime] = None
    ) -> Record:
        action = parse_enum(LifecycleAction, action)
        store = self._store_for(entity_id)
        updated = apply_action(store[entity_id], action, actor, at)
        store[entity_id] = updated
        return updated

    def update_payment_status(self, entity_id: str, new_status: PaymentStatus, amounts: Mapping[str, int]) -> Record:
        """Overwrite the payment fields and bump payment_revision, so the next payment gets a fresh reference."""
        store = self._store_for(entity_id, (self._transactions, self._inventory))
        updated = replace(
            store[entity_id],
            payment_status=parse_enum(PaymentStatus, new_status),
            down_payment_amount=amounts.get("down_payment_amount", 0),
            remaining_amount=amounts.get("remaining_amount", 0),
            payment_revision=store[entity_id].payment_revision + 1,
        )
        store[entity_id] = updated
        logger.info("payment status of %s set to %s", entity_id, updated.payment_status.value)
        return updated

    def save_transaction(self, transaction: Transaction) -> None:
        self._transactions[transaction.id] = transaction

    def save_expense(self, expense: Expense) -> None:
        self._expenses[expense.id] = expense

    def save_item(self, item: InventoryItem) -> None:
        self._inventory[item.id] = item

    def _store_for(self, entity_id: str, stores=None) -> dict:
        for store in stores or (self._transactions, self._expenses, self._inventory):
            if entity_id in store:
                return store
        raise RecordNotFound(f"No record with id {entity_id}", id=entity_id)

    @staticmethod
    def _get(store: dict, record_id: str):
        try:
            return store[record_id]
        except KeyError:
            raise RecordNotFound(f"No record with id {record_id}", id=record_id)
