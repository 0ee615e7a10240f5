"""Calendar-month financial summaries.

Records are bucketed by the (year, month) of their accrual date. Every
bucket carries what was contracted (expected value), what was actually
received (paid), what is still owed and what was spent, so that

    expected_profit - real_profit == total_expected_value - total_paid

holds for each bucket and for the portfolio as a whole.
"""
import logging
from collections import defaultdict
from dataclasses import dataclass
from datetime import date
from typing import Dict, Iterable, Optional, Tuple

from ledger.dates import month_bounds, month_label, validate_range
from ledger.domain import Expense, PaymentStatus, Transaction
from ledger.errors import InvalidDate
from ledger.filters import by_date_range, by_period, top_expense_categories
from ledger.functional import Maybe, Nothing, Some
from ledger.lifecycle import active, with_archived
from ledger.money import margin_basis_points
from ledger.payments import transaction_outstanding, transaction_realized

__all__ = [
    "ReportFilter", "MonthlyBucket", "PortfolioTotals", "BucketBreakdown",
    "TransactionProfitability", "monthly_buckets", "portfolio_totals", "bucket_breakdown", "find_bucket",
    "capital_cost", "transaction_profitability",
]

logger = logging.getLogger("ledger.aggregation")


@dataclass(frozen=True)
class ReportFilter:
    """Either an explicit date range or year/month selectors, never both."""

    start: Optional[date] = None
    end: Optional[date] = None
    year: Optional[int] = None
    month: Optional[int] = None

    def __post_init__(self):
        has_range = self.start is not None or self.end is not None
        has_period = self.year is not None or self.month is not None
        if has_range and has_period:
            raise InvalidDate("Use either a date range or a year/month selection, not both")
        if self.month is not None and not 1 <= self.month <= 12:
            raise InvalidDate(f"Month must be between 1 and 12, got {self.month}", month=self.month)
        validate_range(self.start, self.end)

    @classmethod
    def for_month(cls, year: int, month: int) -> "ReportFilter":
        start, end = month_bounds(year, month)
        return cls(start=start, end=end)

    def predicate(self):
        if self.year is not None or self.month is not None:
            return by_period(self.year, self.month)
        return by_date_range(self.start, self.end)


@dataclass(frozen=True)
class MonthlyBucket:
    year: int
    month: int
    transactions: Tuple[Transaction, ...]
    expenses: Tuple[Expense, ...]
    total_expected_value: int
    total_paid: int
    remaining_payments: int
    total_expenses: int

    @property
    def key(self) -> Tuple[int, int]:
        return self.year, self.month

    @property
    def label(self) -> str:
        return month_label(self.year, self.month)

    @property
    def expected_profit(self) -> int:
        return self.total_expected_value - self.total_expenses

    @property
    def real_profit(self) -> int:
        return self.total_paid - self.total_expenses


class _Accumulator:
    def __init__(self):
        self.transactions: list[Transaction] = []
        self.expenses: list[Expense] = []
        self.expected = 0
        self.paid = 0
        self.remaining = 0
        self.spent = 0

    def add_transaction(self, t: Transaction) -> None:
        self.transactions.append(t)
        self.expected += t.project_value
        self.paid += transaction_realized(t)
        self.remaining += transaction_outstanding(t)

    def add_expense(self, e: Expense) -> None:
        self.expenses.append(e)
        self.spent += e.amount

    def freeze(self, year: int, month: int) -> MonthlyBucket:
        return MonthlyBucket(
            year=year,
            month=month,
            transactions=tuple(self.transactions),
            expenses=tuple(self.expenses),
            total_expected_value=self.expected,
            total_paid=self.paid,
            remaining_payments=self.remaining,
            total_expenses=self.spent,
        )


def monthly_buckets(
    transactions: Iterable[Transaction],
    expenses: Iterable[Expense],
    filters: Optional[ReportFilter] = None,
    include_archived: bool = False,
) -> Tuple[MonthlyBucket, ...]:
    keep = (filters or ReportFilter()).predicate()
    txs = [t for t in with_archived(transactions, include_archived) if keep(t)]
    exps = [e for e in with_archived(expenses, include_archived) if keep(e)]

    buckets: Dict[Tuple[int, int], _Accumulator] = defaultdict(_Accumulator)
    for t in txs:
        buckets[(t.date.year, t.date.month)].add_transaction(t)
    # expenses land in their own month whether or not they point at a transaction
    for e in exps:
        buckets[(e.date.year, e.date.month)].add_expense(e)

    logger.debug("bucketed %d transactions and %d expenses into %d months", len(txs), len(exps), len(buckets))
    return tuple(acc.freeze(year, month) for (year, month), acc in sorted(buckets.items()))


@dataclass(frozen=True)
class PortfolioTotals:
    months: int
    total_expected_value: int
    total_paid: int
    remaining_payments: int
    total_expenses: int

    @property
    def expected_profit(self) -> int:
        return self.total_expected_value - self.total_expenses

    @property
    def real_profit(self) -> int:
        return self.total_paid - self.total_expenses

    @property
    def expected_margin_bp(self) -> int:
        return margin_basis_points(self.expected_profit, self.total_expected_value)

    @property
    def real_margin_bp(self) -> int:
        return margin_basis_points(self.real_profit, self.total_paid)


def portfolio_totals(buckets: Iterable[MonthlyBucket]) -> PortfolioTotals:
    buckets = tuple(buckets)
    return PortfolioTotals(
        months=len(buckets),
        total_expected_value=sum(b.total_expected_value for b in buckets),
        total_paid=sum(b.total_paid for b in buckets),
        remaining_payments=sum(b.remaining_payments for b in buckets),
        total_expenses=sum(b.total_expenses for b in buckets),
    )


@dataclass(frozen=True)
class StatusTotal:
    status: PaymentStatus
    count: int
    total_value: int
    total_paid: int


@dataclass(frozen=True)
class BucketBreakdown:
    year: int
    month: int
    expenses_by_category: Tuple[Tuple[str, int], ...]
    transactions_by_status: Tuple[StatusTotal, ...]


def bucket_breakdown(bucket: MonthlyBucket) -> BucketBreakdown:
    by_category = tuple(top_expense_categories(bucket.expenses, len(bucket.expenses)))
    by_status = []
    for status in PaymentStatus:
        matching = [t for t in bucket.transactions if t.payment_status is status]
        by_status.append(StatusTotal(
            status=status,
            count=len(matching),
            total_value=sum(t.project_value for t in matching),
            total_paid=sum(transaction_realized(t) for t in matching),
        ))
    return BucketBreakdown(bucket.year, bucket.month, by_category, tuple(by_status))


def find_bucket(buckets: Iterable[MonthlyBucket], year: int, month: int) -> Maybe[MonthlyBucket]:
    for b in buckets:
        if b.key == (year, month):
            return Some(b)
    return Nothing()


def capital_cost(transaction: Transaction, expenses: Iterable[Expense]) -> int:
    """Sum of the active expenses attributed to the transaction."""
    return sum(e.amount for e in active(expenses) if e.transaction_id == transaction.id)


@dataclass(frozen=True)
class TransactionProfitability:
    transaction_id: str
    name: str
    status: PaymentStatus
    project_value: int
    realized: int
    capital_cost: int
    in_progress: bool

    @property
    def expected_profit(self) -> int:
        return self.project_value - self.capital_cost

    @property
    def profit(self) -> int:
        return self.realized - self.capital_cost

    @property
    def margin_bp(self) -> int:
        return margin_basis_points(self.profit, self.realized)


def transaction_profitability(
    transactions: Iterable[Transaction],
    expenses: Iterable[Expense],
    today: date,
    include_unpaid: bool = False,
) -> Tuple[TransactionProfitability, ...]:
    """Per-project profit from cash received and the expenses attributed to it.

    Only active transactions that have received money are listed unless
    include_unpaid is set. Sorted by profit, highest first.
    """
    costs: Dict[str, int] = defaultdict(int)
    for e in active(expenses):
        if e.transaction_id is not None:
            costs[e.transaction_id] += e.amount

    rows = []
    for t in active(transactions):
        if t.payment_status is PaymentStatus.UNPAID and not include_unpaid:
            continue
        rows.append(TransactionProfitability(
            transaction_id=t.id,
            name=t.name,
            status=t.payment_status,
            project_value=t.project_value,
            realized=transaction_realized(t),
            capital_cost=costs[t.id],
            in_progress=(
                t.payment_status is PaymentStatus.PARTIALLY_PAID
                or (t.end_date is not None and t.end_date > today)
            ),
        ))
    return tuple(sorted(rows, key=lambda r: (-r.profit, r.transaction_id)))
