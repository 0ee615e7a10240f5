from typing import Iterable

import pandas as pd

from ledger.aggregation import BucketBreakdown, MonthlyBucket, TransactionProfitability
from ledger.billing import BillingReminder
from ledger.domain import FundPosting, InventoryAdjustment, InventoryItem
from ledger.money import MINOR_UNITS

BUCKET_COLUMNS = [
    "period", "year", "month", "expected_value", "paid", "remaining",
    "expenses", "expected_profit", "real_profit",
]


def _major(series: pd.Series) -> pd.Series:
    return series / MINOR_UNITS


def buckets_to_df(buckets: Iterable[MonthlyBucket]) -> pd.DataFrame:
    rows = [{
        "period": pd.Timestamp(year=b.year, month=b.month, day=1),
        "year": b.year,
        "month": b.month,
        "expected_value": b.total_expected_value,
        "paid": b.total_paid,
        "remaining": b.remaining_payments,
        "expenses": b.total_expenses,
        "expected_profit": b.expected_profit,
        "real_profit": b.real_profit,
    } for b in buckets]
    return pd.DataFrame(rows, columns=BUCKET_COLUMNS)


def breakdown_to_frames(breakdown: BucketBreakdown) -> tuple[pd.DataFrame, pd.DataFrame]:
    categories = pd.DataFrame(list(breakdown.expenses_by_category), columns=["category", "total"])
    statuses = pd.DataFrame([{
        "status": s.status.value,
        "count": s.count,
        "total_value": s.total_value,
        "total_paid": s.total_paid,
    } for s in breakdown.transactions_by_status], columns=["status", "count", "total_value", "total_paid"])
    return categories, statuses


def postings_to_df(postings: Iterable[FundPosting]) -> pd.DataFrame:
    return pd.DataFrame([{
        "fund": p.fund_type.value,
        "kind": p.kind.value,
        "amount": p.amount,
        "balance_after": p.balance_after,
        "reference": p.reference_id,
        "description": p.description,
    } for p in postings], columns=["fund", "kind", "amount", "balance_after", "reference", "description"])


def adjustments_to_df(adjustments: Iterable[InventoryAdjustment]) -> pd.DataFrame:
    df = pd.DataFrame([{
        "at": a.adjusted_at,
        "type": a.adjustment_type.value,
        "quantity": a.quantity,
        "previous": a.previous_quantity,
        "new": a.new_quantity,
        "reason": a.reason.value,
        "by": a.adjusted_by,
        "note": a.note,
    } for a in adjustments], columns=["at", "type", "quantity", "previous", "new", "reason", "by", "note"])
    if not df.empty:
        df["at"] = pd.to_datetime(df["at"])
    return df


def inventory_to_df(items: Iterable[InventoryItem]) -> pd.DataFrame:
    return pd.DataFrame([{
        "id": i.id,
        "name": i.name,
        "type": i.type.value,
        "quantity": i.quantity,
        "minimum_stock": i.minimum_stock,
        "unit_price": i.unit_price,
        "total_value": i.total_value,
        "status": i.payment_status.value,
        "archived": i.is_deleted,
    } for i in items], columns=[
        "id", "name", "type", "quantity", "minimum_stock", "unit_price", "total_value", "status", "archived",
    ])


def profitability_to_df(rows: Iterable[TransactionProfitability]) -> pd.DataFrame:
    return pd.DataFrame([{
        "id": r.transaction_id,
        "name": r.name,
        "status": r.status.value,
        "project_value": r.project_value,
        "realized": r.realized,
        "capital_cost": r.capital_cost,
        "profit": r.profit,
        "margin_bp": r.margin_bp,
        "in_progress": r.in_progress,
    } for r in rows], columns=[
        "id", "name", "status", "project_value", "realized", "capital_cost", "profit", "margin_bp", "in_progress",
    ])


def reminders_to_df(reminders: Iterable[BillingReminder]) -> pd.DataFrame:
    return pd.DataFrame([{
        "item_id": r.item_id,
        "name": r.name,
        "due_date": pd.Timestamp(r.due_date),
        "days_left": r.days_left,
        "cost": r.cost,
        "auto_renew": r.auto_renew,
    } for r in reminders], columns=["item_id", "name", "due_date", "days_left", "cost", "auto_renew"])


def to_major_units(df: pd.DataFrame, columns: Iterable[str]) -> pd.DataFrame:
    """Copy of df with the given minor-unit columns converted to rupiah for charting."""
    out = df.copy()
    for col in columns:
        out[col] = _major(out[col])
    return out
