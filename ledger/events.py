import logging
from typing import Callable, Dict, List, NamedTuple
from datetime import datetime

__all__ = [
    'event_bus', 'POSTING_RECORDED', 'OVERDRAFT_WARNING', 'PAYMENT_RECORDED',
    'LOW_STOCK_ALERT', 'BILLING_REMINDER', 'Event', 'EventBus',
]

logger = logging.getLogger("ledger.events")


class Event(NamedTuple):
    name: str
    ts: str
    payload: dict


Handler = Callable[[Event, dict], dict]


class EventBus:
    """Synchronous in-process bus; handlers run in subscription order and their results are returned."""

    def __init__(self):
        self._subscribers: Dict[str, List[Handler]] = {}

    def subscribe(self, name: str, handler: Handler) -> None:
        self._subscribers.setdefault(name, []).append(handler)

    def publish(self, name: str, payload: dict) -> List[dict]:
        handlers = self._subscribers.get(name)
        if not handlers:
            return []
        event = Event(name=name, ts=datetime.now().isoformat(), payload=payload)
        results = [handler(event, payload) for handler in list(handlers)]
        logger.debug("published %s to %d handler(s)", name, len(results))
        return results

    def unsubscribe(self, name: str, handler: Handler) -> None:
        handlers = self._subscribers.get(name, [])
        if handler in handlers:
            handlers.remove(handler)

    def clear(self) -> None:
        self._subscribers.clear()


POSTING_RECORDED = "POSTING_RECORDED"
OVERDRAFT_WARNING = "OVERDRAFT_WARNING"
PAYMENT_RECORDED = "PAYMENT_RECORDED"
LOW_STOCK_ALERT = "LOW_STOCK_ALERT"
BILLING_REMINDER = "BILLING_REMINDER"

event_bus = EventBus()


def overdraft_handler(event: Event, payload: dict) -> dict:
    balance = payload.get("balance", 0)
    fund = payload.get("fund", "")
    if balance < 0:
        return {
            "alert": f"Fund {fund} is overdrawn: balance {balance}",
            "fund": fund,
            "balance": balance,
        }
    return {}


def low_stock_handler(event: Event, payload: dict) -> dict:
    quantity = payload.get("quantity", 0)
    minimum = payload.get("minimum_stock", 0)
    name = payload.get("name", payload.get("item_id", ""))

    if quantity <= minimum:
        return {
            "alert": f"Low stock for {name}: {quantity} left (minimum {minimum})",
            "item_id": payload.get("item_id"),
            "quantity": quantity,
            "minimum_stock": minimum,
        }
    return {}


def billing_reminder_handler(event: Event, payload: dict) -> dict:
    days_left = payload.get("days_left")
    if days_left is None:
        return {}
    when = "today" if days_left == 0 else f"in {days_left} day(s)"
    return {
        "alert": f"Subscription {payload.get('name', '')} is due {when} ({payload.get('due_date')})",
        "item_id": payload.get("item_id"),
        "days_left": days_left,
    }


def register_default_handlers(bus: EventBus = event_bus) -> EventBus:
    bus.subscribe(OVERDRAFT_WARNING, overdraft_handler)
    bus.subscribe(LOW_STOCK_ALERT, low_stock_handler)
    bus.subscribe(BILLING_REMINDER, billing_reminder_handler)
    return bus

register_default_handlers()
