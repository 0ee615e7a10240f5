import json
from datetime import datetime
from typing import Mapping, NamedTuple, Tuple, TypeVar

from ledger.dates import parse_date, parse_optional_date
from ledger.domain import (
    AdjustmentReason,
    AdjustmentType,
    AuditTrail,
    Expense,
    FundType,
    InventoryAdjustment,
    InventoryItem,
    InventoryType,
    PaymentStatus,
    RecurringType,
    Transaction,
    parse_enum,
    parse_fund,
)
from ledger.errors import ConfigurationError

R = TypeVar("R")


class Seed(NamedTuple):
    transactions: Tuple[Transaction, ...]
    expenses: Tuple[Expense, ...]
    inventory: Tuple[InventoryItem, ...]
    adjustments: Tuple[InventoryAdjustment, ...]
    opening_balances: dict


def _audit(data: Mapping) -> AuditTrail:
    def stamp(key):
        value = data.get(key)
        return datetime.fromisoformat(value) if value else None

    return AuditTrail(
        created_by=data.get("created_by"),
        created_at=stamp("created_at"),
        updated_by=data.get("updated_by"),
        updated_at=stamp("updated_at"),
        is_deleted=bool(data.get("is_deleted", False)),
        deleted_by=data.get("deleted_by"),
        deleted_at=stamp("deleted_at"),
    )


def transaction_from_dict(d: Mapping) -> Transaction:
    return Transaction(
        id=d["id"],
        name=d.get("name", ""),
        project_value=int(d["project_value"]),
        date=parse_date(d["date"]),
        payment_status=parse_enum(PaymentStatus, d.get("payment_status", PaymentStatus.UNPAID)),
        down_payment_amount=int(d.get("down_payment_amount", 0)),
        remaining_amount=int(d.get("remaining_amount", 0)),
        fund_type=parse_fund(d.get("fund_type", FundType.PROFIT_BANK)),
        start_date=parse_optional_date(d.get("start_date")),
        end_date=parse_optional_date(d.get("end_date")),
        client=d.get("client", ""),
        audit=_audit(d.get("audit", {})),
        payment_revision=int(d.get("payment_revision", 0)),
    )


def expense_from_dict(d: Mapping) -> Expense:
    return Expense(
        id=d["id"],
        category=d["category"],
        amount=int(d["amount"]),
        date=parse_date(d["date"]),
        fund_type=parse_fund(d.get("fund_type", FundType.PETTY_CASH)),
        transaction_id=d.get("transaction_id"),
        inventory_id=d.get("inventory_id"),
        description=d.get("description", ""),
        audit=_audit(d.get("audit", {})),
    )


def item_from_dict(d: Mapping, default_reminder_days: int = 7) -> InventoryItem:
    recurring = d.get("recurring_type")
    return InventoryItem(
        id=d["id"],
        name=d["name"],
        type=parse_enum(InventoryType, d["type"]),
        quantity=int(d.get("quantity", 0)),
        minimum_stock=int(d.get("minimum_stock", 0)),
        unit_price=int(d.get("unit_price", 0)),
        cost=int(d.get("cost", 0)),
        payment_status=parse_enum(PaymentStatus, d.get("payment_status", PaymentStatus.UNPAID)),
        down_payment_amount=int(d.get("down_payment_amount", 0)),
        remaining_amount=int(d.get("remaining_amount", 0)),
        fund_type=parse_fund(d.get("fund_type", FundType.PETTY_CASH)),
        is_recurring=bool(d.get("is_recurring", False)),
        recurring_type=parse_enum(RecurringType, recurring) if recurring else None,
        purchase_date=parse_optional_date(d.get("purchase_date")),
        next_billing_date=parse_optional_date(d.get("next_billing_date")),
        reminder_days=int(d.get("reminder_days", default_reminder_days)),
        auto_renew=bool(d.get("auto_renew", False)),
        last_billing_date=parse_optional_date(d.get("last_billing_date")),
        audit=_audit(d.get("audit", {})),
        payment_revision=int(d.get("payment_revision", 0)),
    )


def adjustment_from_dict(d: Mapping) -> InventoryAdjustment:
    return InventoryAdjustment(
        id=d["id"],
        inventory_id=d["inventory_id"],
        adjustment_type=parse_enum(AdjustmentType, d["adjustment_type"]),
        quantity=int(d["quantity"]),
        previous_quantity=int(d["previous_quantity"]),
        new_quantity=int(d["new_quantity"]),
        reason=parse_enum(AdjustmentReason, d.get("reason", AdjustmentReason.OTHER)),
        adjusted_by=d.get("adjusted_by"),
        adjusted_at=datetime.fromisoformat(d["adjusted_at"]),
        note=d.get("note", ""),
    )


def load_seed(path: str, default_reminder_days: int = 7) -> Seed:
    with open(path, "r", encoding="utf-8") as f:
        data = json.load(f)

    try:
        return Seed(
            transactions=tuple(transaction_from_dict(t) for t in data.get("transactions", [])),
            expenses=tuple(expense_from_dict(e) for e in data.get("expenses", [])),
            inventory=tuple(item_from_dict(i, default_reminder_days) for i in data.get("inventory", [])),
            adjustments=tuple(adjustment_from_dict(a) for a in data.get("adjustments", [])),
            opening_balances={parse_fund(k): int(v) for k, v in data.get("opening_balances", {}).items()},
        )
    except KeyError as exc:
        raise ConfigurationError(f"Seed record is missing field {exc}", path=path)


def add_record(records: Tuple[R, ...], r: R) -> Tuple[R, ...]:
    return records + (r,)


def replace_record(records: Tuple[R, ...], r: R) -> Tuple[R, ...]:
    return tuple(r if existing.id == r.id else existing for existing in records)
