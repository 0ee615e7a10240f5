from datetime import date, datetime

import pytest

from ledger.domain import (
    AuditTrail,
    Expense,
    FundType,
    InventoryItem,
    InventoryType,
    PaymentStatus,
    RecurringType,
    Transaction,
)
from ledger.errors import InsufficientQuantity, InvalidPayment, RecordNotFound
from ledger.events import BILLING_REMINDER, LOW_STOCK_ALERT, PAYMENT_RECORDED, EventBus
from ledger.funds import FundLedger
from ledger.repository import InMemoryRepository, RecordFilter
from ledger.services import InventoryService, LifecycleService, PaymentService, ReportService, SubscriptionService

AT = datetime(2024, 3, 1, 9, 0)


class FailingSink:
    def post_fund_delta(self, fund, signed_amount, reference_id):
        raise ConnectionError("store unavailable")


def make_repo():
    return InMemoryRepository(
        transactions=[
            Transaction("t1", "Video", 1000, date(2024, 1, 5)),
            Transaction("t2", "Photo", 800, date(2024, 2, 9), PaymentStatus.PARTIALLY_PAID, 300, 500),
            Transaction("t3", "Old", 200, date(2024, 2, 10), audit=AuditTrail(is_deleted=True)),
        ],
        expenses=[Expense("e1", "Transport", 150, date(2024, 1, 6), transaction_id="t1")],
        inventory=[
            InventoryItem("i1", "Tripod", InventoryType.EQUIPMENT, quantity=3, minimum_stock=2, unit_price=50, cost=150),
            InventoryItem(
                "s1", "Editing licence", InventoryType.SUBSCRIPTION, cost=75,
                payment_status=PaymentStatus.PAID, is_recurring=True, recurring_type=RecurringType.MONTHLY,
                purchase_date=date(2024, 1, 31), next_billing_date=date(2024, 2, 29),
                reminder_days=5, auto_renew=True,
            ),
        ],
    )


def collect(bus, name):
    seen = []
    bus.subscribe(name, lambda event, payload: seen.append(payload) or {})
    return seen


def test_pay_transaction_down_payment_then_settle():
    repo, bus = make_repo(), EventBus()
    ledger = FundLedger(sink=repo, bus=bus)
    seen = collect(bus, PAYMENT_RECORDED)
    service = PaymentService(repo, ledger, bus)

    t = service.pay_transaction("t1", 600, actor="admin")
    assert t.payment_status is PaymentStatus.PARTIALLY_PAID
    assert (t.down_payment_amount, t.remaining_amount) == (600, 400)

    t = service.pay_transaction("t1", 400, actor="admin")
    assert t.payment_status is PaymentStatus.PAID
    assert t.remaining_amount == 0
    assert ledger.get_balance(FundType.PROFIT_BANK) == 1000
    assert repo.fund_balance(FundType.PROFIT_BANK) == 1000
    assert [ref for _, _, ref in repo.fund_deltas()] == ["t1:0:partially_paid", "t1:1:paid"]
    assert [p["status"] for p in seen] == ["DP", "Lunas"]


def test_settle_with_wrong_amount_changes_nothing():
    repo = make_repo()
    ledger = FundLedger(sink=repo, bus=EventBus())
    service = PaymentService(repo, ledger, EventBus())
    with pytest.raises(InvalidPayment):
        service.pay_transaction("t2", 400)
    assert repo.get_transaction("t2").payment_status is PaymentStatus.PARTIALLY_PAID
    assert repo.fund_deltas() == ()


def test_failed_posting_leaves_status_unchanged():
    repo = make_repo()
    service = PaymentService(repo, FundLedger(sink=FailingSink(), bus=EventBus()), EventBus())
    with pytest.raises(ConnectionError):
        service.pay_transaction("t1", 1000)
    assert repo.get_transaction("t1").payment_status is PaymentStatus.UNPAID


def test_archived_or_missing_transaction_cannot_be_paid():
    repo = make_repo()
    service = PaymentService(repo, FundLedger(bus=EventBus()), EventBus())
    with pytest.raises(InvalidPayment):
        service.pay_transaction("t3", 200)
    with pytest.raises(RecordNotFound):
        service.pay_transaction("nope", 1)


def test_pay_item_books_linked_expense():
    repo = make_repo()
    ledger = FundLedger(sink=repo, bus=EventBus())
    service = PaymentService(repo, ledger, EventBus())
    item, expense = service.pay_item("i1", 150, actor="admin", at=AT)
    assert item.payment_status is PaymentStatus.PAID
    assert expense.id == "i1:0:paid"
    assert expense.inventory_id == "i1"
    assert expense.date == date(2024, 3, 1)
    assert repo.get_expense("i1:0:paid").amount == 150
    assert ledger.get_balance(FundType.PETTY_CASH) == -150


def test_payment_after_status_reset_gets_fresh_reference():
    repo = make_repo()
    ledger = FundLedger(sink=repo, bus=EventBus())
    service = PaymentService(repo, ledger, EventBus())

    service.pay_transaction("t1", 300)
    repo.update_payment_status("t1", PaymentStatus.UNPAID, {})

    t = service.pay_transaction("t1", 400)
    assert t.payment_status is PaymentStatus.PARTIALLY_PAID
    assert (t.down_payment_amount, t.remaining_amount) == (400, 600)
    assert [ref for _, _, ref in repo.fund_deltas()] == ["t1:0:partially_paid", "t1:1:partially_paid"]
    assert ledger.get_balance(FundType.PROFIT_BANK) == 700


def test_same_amount_after_correction_is_posted_again():
    repo = make_repo()
    ledger = FundLedger(sink=repo, bus=EventBus())
    service = PaymentService(repo, ledger, EventBus())

    service.pay_transaction("t1", 300)
    corrected = service.correct_status("t1", "Belum Bayar", actor="admin")
    assert corrected.payment_status is PaymentStatus.UNPAID
    assert corrected.payment_revision == 2
    assert ledger.get_balance(FundType.PROFIT_BANK) == 300

    service.pay_transaction("t1", 300)
    assert ledger.get_balance(FundType.PROFIT_BANK) == 600
    assert repo.fund_balance(FundType.PROFIT_BANK) == 600


def test_retry_after_failed_status_write_posts_once():
    class FlakyRepo(InMemoryRepository):
        failures = 1

        def update_payment_status(self, entity_id, status, amounts):
            if self.failures:
                self.failures -= 1
                raise ConnectionError("write lost")
            return super().update_payment_status(entity_id, status, amounts)

    repo = FlakyRepo(transactions=[Transaction("t1", "Video", 1000, date(2024, 1, 5))])
    ledger = FundLedger(sink=repo, bus=EventBus())
    service = PaymentService(repo, ledger, EventBus())

    with pytest.raises(ConnectionError):
        service.pay_transaction("t1", 1000)
    t = service.pay_transaction("t1", 1000)
    assert t.payment_status is PaymentStatus.PAID
    assert ledger.get_balance(FundType.PROFIT_BANK) == 1000
    assert len(repo.fund_deltas()) == 1


def test_correct_status_on_item():
    repo = make_repo()
    service = PaymentService(repo, FundLedger(sink=repo, bus=EventBus()), EventBus())
    item = service.correct_status("i1", PaymentStatus.PARTIALLY_PAID, down_payment=50)
    assert (item.down_payment_amount, item.remaining_amount) == (50, 100)
    assert repo.fund_deltas() == ()
    with pytest.raises(RecordNotFound):
        service.correct_status("nope", PaymentStatus.PAID)


def test_record_expense_and_transfer():
    repo = make_repo()
    ledger = FundLedger(opening={"petty_cash": 1000, "profit_bank": 5000}, sink=repo, bus=EventBus())
    service = PaymentService(repo, ledger, EventBus())
    service.record_expense(Expense("e9", "Props", 250, date(2024, 3, 2)))
    service.transfer(FundType.PROFIT_BANK, FundType.PETTY_CASH, 2000, "tr-1")
    assert ledger.balances() == {FundType.PETTY_CASH: 2750, FundType.PROFIT_BANK: 3000}
    assert repo.get_expense("e9").category == "Props"


def test_inventory_adjust_logs_and_alerts():
    repo, bus = make_repo(), EventBus()
    alerts = collect(bus, LOW_STOCK_ALERT)
    service = InventoryService(repo, bus)

    item = service.adjust("i1", "decrease", 1, "damaged", actor="budi", at=AT)
    assert item.quantity == 2
    assert repo.get_item("i1").quantity == 2
    assert [a.new_quantity for a in service.history("i1")] == [2]
    assert alerts[0]["item_id"] == "i1"
    assert [i.id for i in service.low_stock()] == ["i1"]

    with pytest.raises(InsufficientQuantity):
        service.adjust("i1", "decrease", 5, "sales")
    assert repo.get_item("i1").quantity == 2


def test_register_item_records_opening_stock():
    repo = InMemoryRepository()
    service = InventoryService(repo, EventBus())
    service.register_item(InventoryItem("i9", "Cable", InventoryType.OTHER, quantity=4), actor="admin", at=AT)
    history = service.history("i9")
    assert len(history) == 1
    assert history[0].new_quantity == 4
    assert repo.get_item("i9").audit.created_by == "admin"


def test_register_subscription_sets_first_billing_date():
    repo, bus = InMemoryRepository(), EventBus()
    InventoryService(repo, bus).register_item(InventoryItem(
        "s9", "Plan", InventoryType.SUBSCRIPTION, cost=75,
        is_recurring=True, recurring_type=RecurringType.MONTHLY,
        purchase_date=date(2024, 1, 31), auto_renew=True,
    ))
    assert repo.get_item("s9").next_billing_date == date(2024, 2, 29)

    reminders = SubscriptionService(repo, FundLedger(bus=bus), bus).reminders(date(2024, 2, 27))
    assert [r.item_id for r in reminders] == ["s9"]


def test_register_keeps_explicit_billing_date():
    repo = InMemoryRepository()
    InventoryService(repo, EventBus()).register_item(InventoryItem(
        "s9", "Plan", InventoryType.SUBSCRIPTION, cost=75,
        is_recurring=True, recurring_type=RecurringType.ANNUALLY,
        purchase_date=date(2024, 1, 31), next_billing_date=date(2024, 6, 1),
    ))
    assert repo.get_item("s9").next_billing_date == date(2024, 6, 1)


def test_lifecycle_service_archive_restore():
    repo = make_repo()
    service = LifecycleService(repo)
    service.archive("e1", "sari")
    assert repo.list_expenses() == ()
    assert len(repo.list_expenses(RecordFilter(include_archived=True))) == 1
    restored = service.restore("e1", "sari")
    assert not restored.is_deleted


def test_subscription_reminders_and_renewals():
    repo, bus = make_repo(), EventBus()
    published = collect(bus, BILLING_REMINDER)
    ledger = FundLedger(sink=repo, bus=bus)
    service = SubscriptionService(repo, ledger, bus)

    reminders = service.reminders(date(2024, 2, 26))
    assert [r.item_id for r in reminders] == ["s1"]
    assert published[0]["days_left"] == 3

    result = service.run_renewals(date(2024, 3, 1), actor="cron", at=AT)
    assert result.renewed == ("s1",)
    assert repo.get_item("s1").next_billing_date == date(2024, 3, 31)
    assert repo.get_expense("s1:renewal:2024-02-29").amount == 75
    assert ledger.get_balance(FundType.PETTY_CASH) == -75

    again = service.run_renewals(date(2024, 3, 1), actor="cron", at=AT)
    assert again.renewed == ()
    assert ledger.get_balance(FundType.PETTY_CASH) == -75


def test_reports():
    repo = make_repo()
    service = ReportService(repo)

    report = service.monthly_report()
    assert [b.key for b in report.buckets] == [(2024, 1), (2024, 2)]
    assert report.totals.total_expected_value == 1800
    assert report.totals.total_paid == 300

    with_archived = service.monthly_report(include_archived=True)
    assert with_archived.totals.total_expected_value == 2000

    breakdown = service.breakdown(2024, 1).get_or_else(None)
    assert breakdown.expenses_by_category == (("Transport", 150),)
    assert service.breakdown(2023, 1).is_none()

    balances = service.fund_balances(opening={"profit_bank": 100})
    assert balances[FundType.PROFIT_BANK] == 400
    assert balances[FundType.PETTY_CASH] == -150


def test_unpaid_items():
    unpaid = ReportService(make_repo()).unpaid_items()
    assert [t.id for t in unpaid.transactions] == ["t1", "t2"]
    assert [i.id for i in unpaid.inventory] == ["i1"]
    assert unpaid.receivable == 1000 + 500
    assert unpaid.payable == 150


def test_profitability_report():
    rows = ReportService(make_repo()).profitability(date(2024, 3, 1))
    assert [r.transaction_id for r in rows] == ["t2"]
    assert rows[0].profit == 300

    with_unpaid = ReportService(make_repo()).profitability(date(2024, 3, 1), include_unpaid=True)
    t1 = next(r for r in with_unpaid if r.transaction_id == "t1")
    assert (t1.realized, t1.capital_cost, t1.profit) == (0, 150, -150)
