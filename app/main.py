import sys
import os
sys.path.append(os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from datetime import date
from uuid import uuid4

import streamlit as st
import pandas as pd
import numpy as np
import plotly.graph_objects as go
import plotly.express as px

from ledger.aggregation import ReportFilter
from ledger.config import configure_logging, load_settings
from ledger.domain import AdjustmentReason, AdjustmentType, Expense, FundType
from ledger.events import LOW_STOCK_ALERT, OVERDRAFT_WARNING, EventBus, low_stock_handler, register_default_handlers
from ledger.filters import all_of, by_category, by_fund, iter_records
from ledger.frames import (
    adjustments_to_df,
    breakdown_to_frames,
    buckets_to_df,
    inventory_to_df,
    postings_to_df,
    profitability_to_df,
    reminders_to_df,
    to_major_units,
)
from ledger.funds import FundLedger
from ledger.functional import attempt
from ledger.lifecycle import stamp_created
from ledger.money import format_basis_points, format_rupiah, to_minor
from ledger.repository import InMemoryRepository, RecordFilter
from ledger.services import (
    InventoryService,
    LifecycleService,
    PaymentService,
    ReportService,
    SubscriptionService,
)
from ledger.transforms import load_seed

settings = load_settings()
configure_logging(settings)

st.set_page_config(page_title="Fund Ledger", layout="wide")


def rp(amount: int) -> str:
    return format_rupiah(amount, symbol=settings.currency_symbol)


def show_result(result, success: str) -> bool:
    if result.is_right():
        st.success(success)
        return True
    err = result.get_error()
    st.error(f"{err['error']}: {err['message']}")
    return False


def collect_alert(event, payload):
    st.session_state.alerts.append(payload)
    return {}


if "repo" not in st.session_state:
    seed = load_seed(settings.seed_path, settings.default_reminder_days)
    repo = InMemoryRepository(
        seed.transactions, seed.expenses, seed.inventory, seed.adjustments, seed.opening_balances
    )
    bus = register_default_handlers(EventBus())
    bus.subscribe(OVERDRAFT_WARNING, collect_alert)
    if settings.low_stock_alerts:
        bus.subscribe(LOW_STOCK_ALERT, collect_alert)
    else:
        bus.unsubscribe(LOW_STOCK_ALERT, low_stock_handler)
    st.session_state.bus = bus
    st.session_state.repo = repo
    st.session_state.ledger = FundLedger(opening=seed.opening_balances, sink=repo, bus=bus)
    st.session_state.alerts = []

bus = st.session_state.bus
repo = st.session_state.repo
ledger = st.session_state.ledger
payments = PaymentService(repo, ledger, bus)
inventory = InventoryService(repo, bus)
lifecycle = LifecycleService(repo)
subscriptions = SubscriptionService(repo, ledger, bus)
reports = ReportService(repo)

st.sidebar.markdown("### 👤 Operator")
actor = st.sidebar.text_input("Name", value=st.session_state.get("actor", "admin"))
st.session_state["actor"] = actor
today = st.sidebar.date_input("Today", value=date.today())

for alert in st.session_state.alerts[-3:]:
    if "fund" in alert:
        st.sidebar.warning(f"Fund {alert['fund']} overdrawn: {rp(alert['balance'])}")
    else:
        st.sidebar.warning(f"Low stock: {alert['name']} ({alert['quantity']} left)")

menu = st.sidebar.radio(
    "Menu",
    ["🏠 Overview", "💰 Funds", "🧾 Payments", "📦 Inventory", "🔁 Subscriptions", "📑 Reports"]
)

if menu == "🏠 Overview":
    report = reports.monthly_report()
    totals = report.totals
    k1, k2, k3, k4 = st.columns(4)
    with k1:
        st.metric("Expected value", rp(totals.total_expected_value))
    with k2:
        st.metric("Received", rp(totals.total_paid), f"{rp(totals.remaining_payments)} outstanding")
    with k3:
        st.metric("Expected profit", rp(totals.expected_profit), format_basis_points(totals.expected_margin_bp))
    with k4:
        st.metric("Real profit", rp(totals.real_profit), format_basis_points(totals.real_margin_bp))

    df = buckets_to_df(report.buckets)
    if not df.empty:
        chart = to_major_units(df, ["expected_profit", "real_profit", "expenses"])
        labels = chart["period"].dt.strftime("%b %y")
        fig = go.Figure()
        fig.add_trace(go.Bar(x=labels, y=chart["expected_profit"], name="Expected profit"))
        fig.add_trace(go.Bar(x=labels, y=chart["real_profit"], name="Real profit"))
        fig.add_trace(go.Scatter(x=labels, y=chart["expenses"], mode="lines+markers", name="Expenses"))
        fig.update_layout(barmode="group", template="plotly_dark", margin=dict(t=30, b=10, l=10, r=10))
        st.plotly_chart(fig, use_container_width=True)

        cumulative = np.cumsum(chart["real_profit"].to_numpy())
        fig_cum = px.area(x=labels, y=cumulative, labels={"x": "Month", "y": "Cumulative real profit"})
        st.plotly_chart(fig_cum, use_container_width=True)
    else:
        st.info("No transactions to display.")

elif menu == "💰 Funds":
    st.title("💰 Funds")
    cols = st.columns(len(FundType))
    for col, fund in zip(cols, FundType):
        with col:
            balance = ledger.get_balance(fund)
            st.metric(fund.value.replace("_", " ").title(), rp(balance),
                      delta="Overdrawn" if balance < 0 else None)

    rebuilt = reports.fund_balances()
    with st.expander("Balances rebuilt from records (no opening balance)"):
        st.table(pd.DataFrame([{"fund": f.value, "balance": rp(v)} for f, v in rebuilt.items()]))

    st.subheader("🔀 Transfer between funds")
    with st.form("transfer_form", clear_on_submit=True):
        c1, c2, c3 = st.columns(3)
        with c1:
            source = st.selectbox("From", [f.value for f in FundType])
        with c2:
            target = st.selectbox("To", [f.value for f in FundType], index=1)
        with c3:
            amount = st.number_input("Amount (Rp)", min_value=0.0, step=10000.0)
        note = st.text_input("Description (optional)")
        if st.form_submit_button("Transfer"):
            result = attempt(lambda: payments.transfer(source, target, to_minor(str(amount)), f"trf-{uuid4()}", note))
            if show_result(result, "Transfer posted"):
                st.rerun()

    st.subheader("📜 Posting history")
    postings = postings_to_df(ledger.postings())
    if postings.empty:
        st.info("No postings in this session yet.")
    else:
        postings["amount"] = postings["amount"].map(rp)
        postings["balance_after"] = postings["balance_after"].map(rp)
        st.dataframe(postings, use_container_width=True)

elif menu == "🧾 Payments":
    st.title("🧾 Payments")
    unpaid = reports.unpaid_items()
    c1, c2 = st.columns(2)
    with c1:
        st.metric("Receivable", rp(unpaid.receivable))
    with c2:
        st.metric("Payable", rp(unpaid.payable))

    st.subheader("Client transactions")
    for t in unpaid.transactions:
        with st.expander(f"{t.name} · {t.payment_status.value} · {rp(t.project_value)}"):
            st.caption(f"{t.client} · {t.date.isoformat()} · {t.fund_type.value}")
            amount = st.number_input("Amount (Rp)", min_value=0.0, step=10000.0, key=f"pay_{t.id}")
            if st.button("Record payment", key=f"btn_pay_{t.id}"):
                result = attempt(payments.pay_transaction, t.id, to_minor(str(amount)), actor)
                if show_result(result, "Payment recorded"):
                    st.rerun()

    st.subheader("Inventory and subscriptions")
    for item in unpaid.inventory:
        with st.expander(f"{item.name} · {item.payment_status.value} · {rp(item.cost)}"):
            amount = st.number_input("Amount (Rp)", min_value=0.0, step=10000.0, key=f"pay_{item.id}")
            if st.button("Record payment", key=f"btn_pay_{item.id}"):
                result = attempt(payments.pay_item, item.id, to_minor(str(amount)), actor)
                if show_result(result, "Payment recorded"):
                    st.rerun()

    st.subheader("➕ New expense")
    with st.form("expense_form", clear_on_submit=True):
        c1, c2 = st.columns(2)
        with c1:
            category = st.text_input("Category", value="Operational")
            amount = st.number_input("Amount (Rp)", min_value=0.0, step=10000.0)
        with c2:
            fund = st.selectbox("Fund", [f.value for f in FundType])
            spent_on = st.date_input("Date", value=today)
        description = st.text_input("Description (optional)")
        if st.form_submit_button("Add expense"):
            result = attempt(lambda: payments.record_expense(Expense(
                id=f"exp-{uuid4()}",
                category=category,
                amount=to_minor(str(amount)),
                date=spent_on,
                fund_type=FundType(fund),
                description=description,
                audit=stamp_created(actor),
            )))
            if show_result(result, "Expense recorded"):
                st.rerun()

elif menu == "📦 Inventory":
    st.title("📦 Inventory")
    show_archived = st.checkbox("Show archived items")
    items = repo.list_inventory(RecordFilter(include_archived=show_archived))
    stock = [i for i in items if not i.is_subscription]
    df_items = inventory_to_df(stock)
    if not df_items.empty:
        df_items["unit_price"] = df_items["unit_price"].map(rp)
        df_items["total_value"] = df_items["total_value"].map(rp)
        st.dataframe(df_items, use_container_width=True)

    low = inventory.low_stock()
    if low:
        st.warning("Low stock: " + ", ".join(f"{i.name} ({i.quantity})" for i in low))

    if stock:
        selected = st.selectbox("Item", [i.id for i in stock],
                                format_func=lambda i: next(s.name for s in stock if s.id == i))
        with st.form("adjust_form", clear_on_submit=True):
            c1, c2, c3 = st.columns(3)
            with c1:
                direction = st.selectbox("Adjustment", [a.value for a in AdjustmentType])
            with c2:
                qty = st.number_input("Quantity", min_value=1, step=1)
            with c3:
                reason = st.selectbox("Reason", [r.value for r in AdjustmentReason])
            note = st.text_input("Note (optional)")
            if st.form_submit_button("Apply"):
                result = attempt(inventory.adjust, selected, direction, int(qty), reason, note, actor)
                if show_result(result, "Quantity updated"):
                    st.rerun()

        c1, c2 = st.columns(2)
        with c1:
            if st.button("🗑 Archive item"):
                show_result(attempt(lifecycle.archive, selected, actor), "Item archived")
        with c2:
            if st.button("♻️ Restore item"):
                show_result(attempt(lifecycle.restore, selected, actor), "Item restored")

        st.subheader("Adjustment history")
        history = adjustments_to_df(inventory.history(selected))
        if history.empty:
            st.info("No adjustments recorded.")
        else:
            st.dataframe(history, use_container_width=True)

elif menu == "🔁 Subscriptions":
    st.title("🔁 Subscriptions")
    reminders = subscriptions.reminders(today)
    df_rem = reminders_to_df(reminders)
    if df_rem.empty:
        st.info("No billing reminders for the selected day.")
    else:
        df_rem["cost"] = df_rem["cost"].map(rp)
        st.table(df_rem)

    if st.button("Run renewals for today"):
        result = attempt(subscriptions.run_renewals, today, actor)
        outcome = result.get_or_else(None)
        if outcome is not None:
            st.success(f"{len(outcome.renewed)} renewed, {len(outcome.skipped)} skipped (auto-renew off)")
        else:
            st.error(result.get_error()["message"])

elif menu == "📑 Reports":
    st.title("📑 Reports")
    mode = st.radio("Filter", ["All", "Date range", "Year / month"], horizontal=True)
    filters = attempt(ReportFilter)
    if mode == "Date range":
        rng = st.date_input("Date range", value=(date(today.year, 1, 1), today))
        if len(rng) == 2:
            filters = attempt(ReportFilter, start=rng[0], end=rng[1])
    elif mode == "Year / month":
        c1, c2 = st.columns(2)
        with c1:
            year = st.number_input("Year", min_value=2000, max_value=2100, value=today.year, step=1)
        with c2:
            month = st.selectbox("Month", [None] + list(range(1, 13)))
        filters = attempt(ReportFilter, year=int(year), month=month)

    if filters.is_left():
        st.error(filters.get_error()["message"])
    else:
        report = reports.monthly_report(filters.get_or_else(None))
        df = buckets_to_df(report.buckets)
        if df.empty:
            st.info("No records in this period.")
        else:
            shown = df.drop(columns=["period"]).copy()
            for col in ["expected_value", "paid", "remaining", "expenses", "expected_profit", "real_profit"]:
                shown[col] = shown[col].map(rp)
            st.dataframe(shown, use_container_width=True)

            labels = [f"{y}-{m:02d}" for y, m in zip(df["year"], df["month"])]
            chosen = st.selectbox("Breakdown for month", labels)
            y, m = (int(p) for p in chosen.split("-"))
            breakdown = reports.breakdown(y, m).get_or_else(None)
            if breakdown is not None:
                categories, statuses = breakdown_to_frames(breakdown)
                c1, c2 = st.columns(2)
                with c1:
                    if not categories.empty:
                        fig = px.pie(to_major_units(categories, ["total"]), values="total", names="category",
                                     title="Expenses by category")
                        fig.update_layout(height=300)
                        st.plotly_chart(fig, use_container_width=True)
                with c2:
                    statuses["total_value"] = statuses["total_value"].map(rp)
                    statuses["total_paid"] = statuses["total_paid"].map(rp)
                    st.table(statuses)

            st.subheader("Project profitability")
            profit_df = profitability_to_df(reports.profitability(today))
            if profit_df.empty:
                st.info("No projects with received payments.")
            else:
                profit_df["margin"] = profit_df.pop("margin_bp").map(format_basis_points)
                for col in ["project_value", "realized", "capital_cost", "profit"]:
                    profit_df[col] = profit_df[col].map(rp)
                st.dataframe(profit_df, use_container_width=True)

            st.subheader("Expenses")
            c1, c2 = st.columns(2)
            with c1:
                fund_choice = st.selectbox("Fund", ["All"] + [f.value for f in FundType], key="exp_fund")
            with c2:
                known_categories = sorted({e.category for b in report.buckets for e in b.expenses})
                category_choice = st.selectbox("Category", ["All"] + known_categories, key="exp_category")
            preds = []
            if fund_choice != "All":
                preds.append(by_fund(FundType(fund_choice)))
            if category_choice != "All":
                preds.append(by_category(category_choice))
            rows = [
                {"date": e.date, "category": e.category, "fund": e.fund_type.value,
                 "amount": rp(e.amount), "description": e.description}
                for b in report.buckets
                for e in iter_records(b.expenses, all_of(*preds))
            ]
            if rows:
                st.dataframe(pd.DataFrame(rows), use_container_width=True)
            else:
                st.info("No expenses match.")
