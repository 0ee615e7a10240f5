import logging
from dataclasses import dataclass, replace
from datetime import date, datetime
from typing import Iterable, Optional, Tuple, TypeVar

from ledger.aggregation import (
    BucketBreakdown,
    MonthlyBucket,
    PortfolioTotals,
    ReportFilter,
    TransactionProfitability,
    bucket_breakdown,
    find_bucket,
    monthly_buckets,
    portfolio_totals,
    transaction_profitability,
)
from ledger.billing import BillingReminder, RenewalResult, next_billing_date, process_renewals, upcoming_reminders
from ledger.domain import (
    Expense,
    FundPosting,
    InventoryAdjustment,
    InventoryItem,
    LifecycleAction,
    PaymentStatus,
    Transaction,
    parse_enum,
)
from ledger.errors import InvalidPayment, RecordNotFound
from ledger.events import BILLING_REMINDER, LOW_STOCK_ALERT, PAYMENT_RECORDED, EventBus, event_bus
from ledger.funds import FundLedger, reconstruct_balances
from ledger.filters import by_status, iter_records
from ledger.functional import Maybe, safe_find
from ledger.inventory import adjust, adjustment_history, low_stock, opening_adjustment
from ledger.lifecycle import active, stamp_created
from ledger.payments import outstanding, override_status, state_of, submit_payment
from ledger.repository import LedgerRepository, RecordFilter

logger = logging.getLogger("ledger.services")

INVENTORY_CATEGORY = "Inventory"

R = TypeVar("R")


def _find(records: Iterable[R], record_id: str) -> R:
    found = safe_find(records, record_id).get_or_else(None)
    if found is None:
        raise RecordNotFound(f"No record with id {record_id}", id=record_id)
    return found


def _amounts(state) -> dict:
    return {"down_payment_amount": state.down_payment, "remaining_amount": state.remaining}


def _payment_reference(record, state) -> str:
    return f"{record.id}:{record.payment_revision}:{state.status.name.lower()}"


class PaymentService:
    """Payments and expenses that move money: ledger posting first, then the status write.

    If the posting fails nothing else is written and the error reaches the
    caller, who retries the whole operation. A posting reference is the record
    id, its payment_revision and the target status. The revision only moves
    when a status is written, so a retry after a failed status write reuses the
    reference and does not post twice, while a payment made after a correction
    gets a new one.
    """

    def __init__(self, repository: LedgerRepository, ledger: FundLedger, bus: Optional[EventBus] = None):
        self.repository = repository
        self.ledger = ledger
        self.bus = bus if bus is not None else event_bus

    def pay_transaction(self, transaction_id: str, amount: int, actor: Optional[str] = None) -> Transaction:
        t = _find(self.repository.list_transactions(RecordFilter(include_archived=True)), transaction_id)
        if t.is_deleted:
            raise InvalidPayment(f"Transaction {t.id} is archived", id=t.id)

        new_state = submit_payment(state_of(t), amount)
        reference = _payment_reference(t, new_state)
        self.ledger.post_credit(t.fund_type, amount, reference, description=f"Payment for {t.name}")
        updated = self.repository.update_payment_status(t.id, new_state.status, _amounts(new_state))

        logger.info("transaction %s: %s -> %s by %s", t.id, t.payment_status.value, new_state.status.value, actor)
        self.bus.publish(PAYMENT_RECORDED, {
            "id": t.id,
            "amount": amount,
            "status": new_state.status.value,
            "remaining": new_state.remaining,
            "actor": actor,
        })
        return updated

    def pay_item(
        self,
        item_id: str,
        amount: int,
        actor: Optional[str] = None,
        at: Optional[datetime] = None,
    ) -> Tuple[InventoryItem, Expense]:
        """Pay (part of) an item's purchase cost; the payment is booked as a linked expense."""
        item = _find(self.repository.list_inventory(RecordFilter(include_archived=True)), item_id)
        if item.is_deleted:
            raise InvalidPayment(f"Item {item.id} is archived", id=item.id)

        new_state = submit_payment(state_of(item), amount)
        when = at if at is not None else datetime.now()
        expense = Expense(
            id=_payment_reference(item, new_state),
            category="Subscription" if item.is_subscription else INVENTORY_CATEGORY,
            amount=amount,
            date=when.date(),
            fund_type=item.fund_type,
            inventory_id=item.id,
            description=f"Payment for {item.name}",
            audit=stamp_created(actor, when),
        )
        self.ledger.post_debit(item.fund_type, amount, expense.id, description=expense.description)
        self.repository.save_expense(expense)
        updated = self.repository.update_payment_status(item.id, new_state.status, _amounts(new_state))
        self.bus.publish(PAYMENT_RECORDED, {
            "id": item.id,
            "amount": amount,
            "status": new_state.status.value,
            "remaining": new_state.remaining,
            "actor": actor,
        })
        return updated, expense

    def correct_status(self, entity_id: str, status, down_payment: int = 0, actor: Optional[str] = None):
        """Administrative status correction. Nothing is posted to the funds."""
        scope = RecordFilter(include_archived=True)
        record = safe_find(self.repository.list_transactions(scope), entity_id).get_or_else(None)
        if record is None:
            record = _find(self.repository.list_inventory(scope), entity_id)
        new_state = override_status(state_of(record), parse_enum(PaymentStatus, status), down_payment)
        updated = self.repository.update_payment_status(record.id, new_state.status, _amounts(new_state))
        logger.warning(
            "payment status of %s corrected: %s -> %s by %s",
            record.id, record.payment_status.value, new_state.status.value, actor,
        )
        return updated

    def record_expense(self, expense: Expense) -> FundPosting:
        if expense.is_deleted:
            raise InvalidPayment(f"Expense {expense.id} is archived", id=expense.id)
        posting = self.ledger.post_debit(
            expense.fund_type, expense.amount, expense.id, description=expense.description or expense.category
        )
        self.repository.save_expense(expense)
        return posting

    def transfer(self, from_fund, to_fund, amount: int, reference_id: str, description: str = "") -> Tuple[FundPosting, FundPosting]:
        return self.ledger.transfer(from_fund, to_fund, amount, reference_id, description)


class InventoryService:

    def __init__(self, repository: LedgerRepository, bus: Optional[EventBus] = None):
        self.repository = repository
        self.bus = bus if bus is not None else event_bus

    def register_item(self, item: InventoryItem, actor: Optional[str] = None, at: Optional[datetime] = None) -> InventoryItem:
        """Save a new item; its opening stock goes into the log as a purchase.

        A recurring subscription registered without a next billing date gets
        the first cycle after its purchase date.
        """
        item = replace(item, audit=stamp_created(actor, at))
        if (
            item.is_subscription
            and item.is_recurring
            and item.recurring_type is not None
            and item.purchase_date is not None
            and item.next_billing_date is None
        ):
            item = replace(item, next_billing_date=next_billing_date(item.purchase_date, item.recurring_type))
        opening = opening_adjustment(item, actor, at)
        if opening is not None:
            self.repository.append_adjustment(opening)
        self.repository.save_item(item)
        return item

    def adjust(
        self,
        item_id: str,
        direction,
        quantity: int,
        reason,
        note: str = "",
        actor: Optional[str] = None,
        at: Optional[datetime] = None,
    ) -> InventoryItem:
        item = _find(self.repository.list_inventory(RecordFilter(include_archived=True)), item_id)
        updated, adjustment = adjust(item, direction, quantity, reason, note, actor, at)
        self.repository.append_adjustment(adjustment)
        self.repository.save_item(updated)
        if updated.quantity <= updated.minimum_stock:
            self.bus.publish(LOW_STOCK_ALERT, {
                "item_id": updated.id,
                "name": updated.name,
                "quantity": updated.quantity,
                "minimum_stock": updated.minimum_stock,
            })
        return updated

    def history(self, item_id: str) -> Tuple[InventoryAdjustment, ...]:
        return adjustment_history(self.repository.list_adjustments(item_id), item_id)

    def low_stock(self) -> Tuple[InventoryItem, ...]:
        return low_stock(self.repository.list_inventory())


class LifecycleService:

    def __init__(self, repository: LedgerRepository):
        self.repository = repository

    def archive(self, entity_id: str, actor: str):
        return self.repository.update_lifecycle(entity_id, LifecycleAction.ARCHIVE, actor)

    def restore(self, entity_id: str, actor: str):
        return self.repository.update_lifecycle(entity_id, LifecycleAction.RESTORE, actor)


class SubscriptionService:

    def __init__(self, repository: LedgerRepository, ledger: FundLedger, bus: Optional[EventBus] = None):
        self.repository = repository
        self.ledger = ledger
        self.bus = bus if bus is not None else event_bus

    def reminders(self, today: date) -> Tuple[BillingReminder, ...]:
        found = upcoming_reminders(self.repository.list_inventory(), today)
        for r in found:
            self.bus.publish(BILLING_REMINDER, {
                "item_id": r.item_id,
                "name": r.name,
                "due_date": r.due_date.isoformat(),
                "days_left": r.days_left,
                "cost": r.cost,
            })
        return found

    def run_renewals(self, today: date, actor: Optional[str] = None, at: Optional[datetime] = None) -> RenewalResult:
        result = process_renewals(self.repository.list_inventory(), today, actor, at)
        for expense, item in zip(result.expenses, result.items):
            self.ledger.post_debit(expense.fund_type, expense.amount, expense.id, description=expense.description)
            self.repository.save_expense(expense)
            self.repository.save_item(item)
        logger.info("renewals for %s: %d renewed, %d skipped", today.isoformat(), len(result.renewed), len(result.skipped))
        return result


@dataclass(frozen=True)
class MonthlyReport:
    buckets: Tuple[MonthlyBucket, ...]
    totals: PortfolioTotals
    filters: ReportFilter


@dataclass(frozen=True)
class UnpaidItems:
    transactions: Tuple[Transaction, ...]
    inventory: Tuple[InventoryItem, ...]
    receivable: int         # still owed to us
    payable: int            # still owed by us


class ReportService:

    def __init__(self, repository: LedgerRepository):
        self.repository = repository

    def monthly_report(self, filters: Optional[ReportFilter] = None, include_archived: bool = False) -> MonthlyReport:
        filters = filters or ReportFilter()
        scope = RecordFilter(include_archived=include_archived)
        buckets = monthly_buckets(
            self.repository.list_transactions(scope),
            self.repository.list_expenses(scope),
            filters,
            include_archived=include_archived,
        )
        return MonthlyReport(buckets, portfolio_totals(buckets), filters)

    def breakdown(self, year: int, month: int, include_archived: bool = False) -> Maybe[BucketBreakdown]:
        report = self.monthly_report(ReportFilter.for_month(year, month), include_archived)
        return find_bucket(report.buckets, year, month).map(bucket_breakdown)

    def profitability(self, today: date, include_unpaid: bool = False) -> Tuple[TransactionProfitability, ...]:
        return transaction_profitability(
            self.repository.list_transactions(),
            self.repository.list_expenses(),
            today,
            include_unpaid=include_unpaid,
        )

    def fund_balances(self, opening=None, include_archived: bool = False) -> dict:
        scope = RecordFilter(include_archived=include_archived)
        return reconstruct_balances(
            self.repository.list_transactions(scope),
            self.repository.list_expenses(scope),
            include_archived=include_archived,
            opening=opening,
        )

    def unpaid_items(self) -> UnpaidItems:
        is_open = by_status(PaymentStatus.UNPAID, PaymentStatus.PARTIALLY_PAID)
        txs = tuple(iter_records(active(self.repository.list_transactions()), is_open))
        items = tuple(iter_records(active(self.repository.list_inventory()), is_open))
        return UnpaidItems(
            transactions=txs,
            inventory=items,
            receivable=sum(outstanding(state_of(t)) for t in txs),
            payable=sum(outstanding(state_of(i)) for i in items),
        )
