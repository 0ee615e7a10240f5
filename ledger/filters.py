from collections import defaultdict
from datetime import date
from typing import Callable, Iterable, Iterator, Optional, Tuple, TypeVar

from ledger.domain import Expense, FundType, PaymentStatus

R = TypeVar("R")


def by_date_range(start: Optional[date], end: Optional[date]):
    def _filter(r) -> bool:
        if start is not None and r.date < start:
            return False
        if end is not None and r.date > end:
            return False
        return True

    return _filter


def by_period(year: Optional[int], month: Optional[int]):
    def _filter(r) -> bool:
        if year is not None and r.date.year != year:
            return False
        if month is not None and r.date.month != month:
            return False
        return True

    return _filter


def by_fund(fund: FundType):
    def _filter(r) -> bool:
        return r.fund_type is fund

    return _filter


def by_category(category: str):
    def _filter(e: Expense) -> bool:
        return e.category == category

    return _filter


def by_status(*statuses: PaymentStatus):
    def _filter(r) -> bool:
        return r.payment_status in statuses

    return _filter


def all_of(*preds: Callable[[R], bool]) -> Callable[[R], bool]:
    def _filter(r) -> bool:
        return all(p(r) for p in preds)

    return _filter


def iter_records(records: Iterable[R], pred: Callable[[R], bool]) -> Iterator[R]:
    for r in records:
        if pred(r):
            yield r


def top_expense_categories(expenses: Iterable[Expense], k: int) -> Iterator[Tuple[str, int]]:
    totals_by_category: dict[str, int] = defaultdict(int)

    for e in expenses:
        totals_by_category[e.category] += e.amount

    ordered = sorted(totals_by_category.items(), key=lambda item: (-item[1], item[0]))

    for name, total in ordered[: max(0, k)]:
        yield name, total
