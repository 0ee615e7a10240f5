import logging
from dataclasses import dataclass, replace
from datetime import date, datetime
from functools import lru_cache
from typing import Iterable, Optional, Tuple

from ledger.dates import add_months
from ledger.domain import Expense, InventoryItem, RecurringType
from ledger.errors import ConfigurationError, InvalidDate
from ledger.lifecycle import stamp_created, stamp_updated

logger = logging.getLogger("ledger.billing")

SUBSCRIPTION_CATEGORY = "Subscription"


def next_billing_date(anchor: date, cadence: RecurringType, cycles: int = 1) -> date:
    """Billing date `cycles` periods after the anchor.

    Always computed from the anchor, so a Jan 31 subscription bills on the
    last day of short months and returns to the 31st afterwards.
    """
    if cycles < 0:
        raise InvalidDate(f"Billing cycle cannot be negative: {cycles}", cycles=cycles)
    return add_months(anchor, cadence.months * cycles)


def next_billing_after(anchor: date, cadence: RecurringType, after: date) -> date:
    """First billing date strictly after `after` (never the anchor itself)."""
    months_between = (after.year - anchor.year) * 12 + (after.month - anchor.month)
    cycle = max(1, months_between // cadence.months)
    candidate = next_billing_date(anchor, cadence, cycle)
    # the estimate lands in or before after's month, so only step forward
    while candidate <= after:
        cycle += 1
        candidate = next_billing_date(anchor, cadence, cycle)
    return candidate


@lru_cache(maxsize=256)
def billing_schedule(anchor: date, cadence: RecurringType, count: int) -> Tuple[date, ...]:
    return tuple(next_billing_date(anchor, cadence, n) for n in range(1, count + 1))


def reminder_due(next_billing: date, reminder_days: int, today: date) -> bool:
    if reminder_days < 0:
        raise ConfigurationError(f"Reminder days cannot be negative: {reminder_days}", reminder_days=reminder_days)
    return 0 <= (next_billing - today).days <= reminder_days


def _billable(item: InventoryItem) -> bool:
    return (
        item.is_subscription
        and item.is_recurring
        and item.recurring_type is not None
        and item.next_billing_date is not None
        and not item.is_deleted
    )


@dataclass(frozen=True)
class BillingReminder:
    item_id: str
    name: str
    due_date: date
    days_left: int
    cost: int
    auto_renew: bool


def upcoming_reminders(items: Iterable[InventoryItem], today: date) -> Tuple[BillingReminder, ...]:
    reminders = [
        BillingReminder(
            item_id=item.id,
            name=item.name,
            due_date=item.next_billing_date,
            days_left=(item.next_billing_date - today).days,
            cost=item.cost,
            auto_renew=item.auto_renew,
        )
        for item in items
        if _billable(item) and reminder_due(item.next_billing_date, item.reminder_days, today)
    ]
    return tuple(sorted(reminders, key=lambda r: (r.due_date, r.item_id)))


@dataclass(frozen=True)
class RenewalResult:
    renewed: Tuple[str, ...]
    skipped: Tuple[str, ...]
    expenses: Tuple[Expense, ...]
    items: Tuple[InventoryItem, ...]


def process_renewals(
    items: Iterable[InventoryItem],
    today: date,
    actor: Optional[str] = None,
    at: Optional[datetime] = None,
) -> RenewalResult:
    """Bill every auto-renewing subscription that has come due.

    Subscriptions without auto_renew are reported as skipped and left as is.
    Returned expenses and items are new records for the caller to persist.
    """
    renewed, skipped, expenses, updated = [], [], [], []
    for item in items:
        if not _billable(item) or item.next_billing_date > today:
            continue
        if not item.auto_renew:
            skipped.append(item.id)
            logger.info("skipped renewal of %s: auto-renew disabled", item.id)
            continue

        anchor = item.purchase_date or item.next_billing_date
        following = next_billing_after(anchor, item.recurring_type, today)
        expenses.append(Expense(
            id=f"{item.id}:renewal:{item.next_billing_date.isoformat()}",
            category=SUBSCRIPTION_CATEGORY,
            amount=item.cost,
            date=today,
            fund_type=item.fund_type,
            inventory_id=item.id,
            description=f"Automatic recurring payment for {item.name}",
            audit=stamp_created(actor, at),
        ))
        updated.append(stamp_updated(
            replace(item, last_billing_date=today, next_billing_date=following), actor, at
        ))
        renewed.append(item.id)
        logger.info("renewed %s, next billing %s", item.id, following.isoformat())

    return RenewalResult(tuple(renewed), tuple(skipped), tuple(expenses), tuple(updated))
