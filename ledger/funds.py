import logging
from typing import Dict, Iterable, Mapping, Optional, Protocol, Tuple

from ledger.domain import Expense, FundBalance, FundPosting, FundType, PostingKind, Transaction, parse_fund
from ledger.errors import DuplicatePosting, InvalidPayment
from ledger.events import EventBus, OVERDRAFT_WARNING, POSTING_RECORDED, event_bus
from ledger.lifecycle import with_archived
from ledger.payments import transaction_realized

__all__ = ["DeltaSink", "FundLedger", "reconstruct_balances"]

logger = logging.getLogger("ledger.funds")


class DeltaSink(Protocol):
    def post_fund_delta(self, fund: FundType, signed_amount: int, reference_id: str) -> None:
        ...


def _check_amount(amount: int) -> None:
    if isinstance(amount, bool) or not isinstance(amount, int):
        raise InvalidPayment(f"Posting amount must be an integer amount, got {amount!r}")
    if amount < 0:
        raise InvalidPayment(f"Posting amount cannot be negative: {amount}", amount=amount)


class FundLedger:
    """Balances of the two funds, moved only by attributable, de-duplicated deltas.

    Every posting is keyed by (reference_id, fund). Replaying a reference with
    the same amount is absorbed; replaying it with a different amount raises
    DuplicatePosting. When a sink is given, the delta is handed to it first and
    local state only changes if the sink accepted it.
    """

    def __init__(
        self,
        opening: Optional[Mapping] = None,
        sink: Optional[DeltaSink] = None,
        bus: Optional[EventBus] = None,
    ):
        self._balances: Dict[FundType, int] = {fund: 0 for fund in FundType}
        self._postings: Dict[Tuple[str, FundType], FundPosting] = {}
        self._history: list[FundPosting] = []
        self._initialized = False
        self._sink = sink
        self._bus = bus if bus is not None else event_bus
        if opening is not None:
            self.initialize(opening)

    def initialize(self, opening: Optional[Mapping] = None) -> bool:
        """Seed opening balances once. Returns False if the funds were already set up."""
        if self._initialized:
            return False
        for fund, amount in (opening or {}).items():
            if isinstance(amount, bool) or not isinstance(amount, int):
                raise InvalidPayment(f"Opening balance must be an integer amount, got {amount!r}")
            self._balances[parse_fund(fund)] = amount
        self._initialized = True
        logger.info("fund balances initialized: %s", {f.value: b for f, b in self._balances.items()})
        return True

    def post_debit(self, fund, amount: int, reference_id: str, description: str = "") -> FundPosting:
        _check_amount(amount)
        return self._post(parse_fund(fund), -amount, reference_id, PostingKind.EXPENSE, description)

    def post_credit(self, fund, amount: int, reference_id: str, description: str = "") -> FundPosting:
        _check_amount(amount)
        return self._post(parse_fund(fund), amount, reference_id, PostingKind.INCOME, description)

    def transfer(self, from_fund, to_fund, amount: int, reference_id: str, description: str = "") -> Tuple[FundPosting, FundPosting]:
        """Move money between the funds as a transfer_out/transfer_in pair under one reference.

        If the second leg fails the caller retries the whole transfer; the
        first leg is absorbed on replay.
        """
        _check_amount(amount)
        source, target = parse_fund(from_fund), parse_fund(to_fund)
        if source is target:
            raise InvalidPayment("Cannot transfer to the same fund", fund=source.value)
        if amount == 0:
            raise InvalidPayment("Transfer amount must be greater than zero")
        self._check_replay(source, -amount, reference_id)
        self._check_replay(target, amount, reference_id)
        out = self._post(
            source, -amount, reference_id, PostingKind.TRANSFER_OUT, description or f"Transfer to {target.value}"
        )
        incoming = self._post(
            target, amount, reference_id, PostingKind.TRANSFER_IN, description or f"Transfer from {source.value}"
        )
        return out, incoming

    def get_balance(self, fund) -> int:
        return self._balances[parse_fund(fund)]

    def balances(self) -> Dict[FundType, int]:
        return dict(self._balances)

    def snapshot(self) -> Tuple[FundBalance, ...]:
        return tuple(FundBalance(fund, balance) for fund, balance in self._balances.items())

    def total_balance(self) -> int:
        return sum(self._balances.values())

    def postings(self, fund=None) -> Tuple[FundPosting, ...]:
        if fund is None:
            return tuple(self._history)
        wanted = parse_fund(fund)
        return tuple(p for p in self._history if p.fund_type is wanted)

    def has_posting(self, reference_id: str, fund) -> bool:
        return (reference_id, parse_fund(fund)) in self._postings

    def _check_replay(self, fund: FundType, delta: int, reference_id: str) -> Optional[FundPosting]:
        if not reference_id:
            raise InvalidPayment("Every posting needs a reference id")
        existing = self._postings.get((reference_id, fund))
        if existing is not None and existing.amount != delta:
            raise DuplicatePosting(
                f"Reference {reference_id} was already posted to {fund.value} with amount {existing.amount}",
                reference_id=reference_id,
                fund=fund.value,
                posted=existing.amount,
                attempted=delta,
            )
        return existing

    def _post(self, fund: FundType, delta: int, reference_id: str, kind: PostingKind, description: str) -> FundPosting:
        existing = self._check_replay(fund, delta, reference_id)
        if existing is not None:
            logger.debug("replay of %s on %s absorbed", reference_id, fund.value)
            return existing

        if self._sink is not None:
            self._sink.post_fund_delta(fund, delta, reference_id)

        balance = self._balances[fund] + delta
        self._balances[fund] = balance
        posting = FundPosting(
            fund_type=fund,
            amount=delta,
            reference_id=reference_id,
            kind=kind,
            balance_after=balance,
            description=description,
            overdrawn=balance < 0,
        )
        self._postings[(reference_id, fund)] = posting
        self._history.append(posting)
        logger.info("posted %s %d to %s (ref %s), balance %d", kind.value, delta, fund.value, reference_id, balance)
        self._bus.publish(POSTING_RECORDED, {
            "fund": fund.value,
            "amount": delta,
            "kind": kind.value,
            "reference_id": reference_id,
            "balance": balance,
        })

        if posting.overdrawn:
            logger.warning("fund %s overdrawn: balance %d after %s", fund.value, balance, reference_id)
            self._bus.publish(OVERDRAFT_WARNING, {
                "fund": fund.value,
                "balance": balance,
                "reference_id": reference_id,
            })
        return posting


def reconstruct_balances(
    transactions: Iterable[Transaction],
    expenses: Iterable[Expense],
    include_archived: bool = False,
    opening: Optional[Mapping] = None,
) -> Dict[FundType, int]:
    """Rebuild fund balances from records: realized receipts in, expenses out."""
    balances = {fund: 0 for fund in FundType}
    for fund, amount in (opening or {}).items():
        balances[parse_fund(fund)] = amount
    for t in with_archived(transactions, include_archived):
        balances[t.fund_type] += transaction_realized(t)
    for e in with_archived(expenses, include_archived):
        balances[e.fund_type] -= e.amount
    return balances
