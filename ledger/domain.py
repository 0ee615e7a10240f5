from dataclasses import dataclass
from datetime import date, datetime
from enum import Enum
from typing import Optional, Type, TypeVar

from ledger.dates import validate_range
from ledger.errors import ConfigurationError, InvalidAdjustment, InvalidPayment, UnknownFund

E = TypeVar("E", bound=Enum)


class FundType(str, Enum):
    PETTY_CASH = "petty_cash"
    PROFIT_BANK = "profit_bank"


class PaymentStatus(str, Enum):
    UNPAID = "Belum Bayar"
    PARTIALLY_PAID = "DP"
    PAID = "Lunas"


class InventoryType(str, Enum):
    EQUIPMENT = "EQUIPMENT"
    SUBSCRIPTION = "SUBSCRIPTION"
    OTHER = "OTHER"


class RecurringType(str, Enum):
    MONTHLY = "MONTHLY"
    QUARTERLY = "QUARTERLY"
    ANNUALLY = "ANNUALLY"

    @property
    def months(self) -> int:
        return {"MONTHLY": 1, "QUARTERLY": 3, "ANNUALLY": 12}[self.value]


class AdjustmentType(str, Enum):
    INCREASE = "increase"
    DECREASE = "decrease"


class AdjustmentReason(str, Enum):
    PURCHASE = "purchase"
    SALES = "sales"
    DAMAGED = "damaged"
    RETURNED = "returned"
    CORRECTION = "correction"
    OTHER = "other"


class LifecycleAction(str, Enum):
    ARCHIVE = "archive"
    RESTORE = "restore"


class PostingKind(str, Enum):
    INCOME = "income"
    EXPENSE = "expense"
    TRANSFER_IN = "transfer_in"
    TRANSFER_OUT = "transfer_out"


# alternative spellings seen in stored payloads
_ALIASES = {
    FundType: {"pettycash": FundType.PETTY_CASH, "profitbank": FundType.PROFIT_BANK},
    PaymentStatus: {
        "unpaid": PaymentStatus.UNPAID,
        "partiallypaid": PaymentStatus.PARTIALLY_PAID,
        "paid": PaymentStatus.PAID,
    },
}


def parse_enum(enum_cls: Type[E], token) -> E:
    """Resolve a member by value, name or known alias; anything else is a configuration error."""
    if isinstance(token, enum_cls):
        return token
    if isinstance(token, str):
        for member in enum_cls:
            if token == member.value or token.upper() == member.name:
                return member
        alias = _ALIASES.get(enum_cls, {}).get(token.replace("_", "").lower())
        if alias is not None:
            return alias
    raise ConfigurationError(
        f"Unknown {enum_cls.__name__} value {token!r}",
        field=enum_cls.__name__,
        value=str(token),
    )


def parse_fund(token) -> FundType:
    try:
        return parse_enum(FundType, token)
    except ConfigurationError:
        raise UnknownFund(f"Unknown fund {token!r}", fund=str(token))


@dataclass(frozen=True)
class AuditTrail:
    created_by: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_by: Optional[str] = None
    updated_at: Optional[datetime] = None
    is_deleted: bool = False
    deleted_by: Optional[str] = None
    deleted_at: Optional[datetime] = None


class Auditable:
    audit: AuditTrail

    @property
    def is_deleted(self) -> bool:
        return self.audit.is_deleted


def check_payment_fields(total: int, status: PaymentStatus, down_payment: int, remaining: int) -> None:
    if total < 0 or down_payment < 0 or remaining < 0:
        raise InvalidPayment("Payment amounts cannot be negative", total=total)
    if status is PaymentStatus.PARTIALLY_PAID:
        if not 0 < down_payment < total:
            raise InvalidPayment(
                f"Down payment {down_payment} must be between 0 and {total}",
                down_payment=down_payment,
                total=total,
            )
        if down_payment + remaining != total:
            raise InvalidPayment(
                f"Down payment {down_payment} plus remaining {remaining} must equal {total}",
                down_payment=down_payment,
                remaining=remaining,
                total=total,
            )
    elif status is PaymentStatus.PAID and remaining != 0:
        raise InvalidPayment("Paid obligations cannot have a remaining amount", remaining=remaining)


@dataclass(frozen=True)
class Transaction(Auditable):
    id: str
    name: str
    project_value: int                      # expected total, minor units
    date: date                              # accrual date
    payment_status: PaymentStatus = PaymentStatus.UNPAID
    down_payment_amount: int = 0
    remaining_amount: int = 0
    fund_type: FundType = FundType.PROFIT_BANK
    start_date: Optional[date] = None
    end_date: Optional[date] = None
    client: str = ""
    audit: AuditTrail = AuditTrail()
    payment_revision: int = 0               # bumped on every payment status write

    def __post_init__(self):
        check_payment_fields(
            self.project_value, self.payment_status, self.down_payment_amount, self.remaining_amount
        )
        validate_range(self.start_date, self.end_date)


@dataclass(frozen=True)
class Expense(Auditable):
    id: str
    category: str
    amount: int                             # always realized
    date: date
    fund_type: FundType = FundType.PETTY_CASH
    transaction_id: Optional[str] = None    # cost attribution
    inventory_id: Optional[str] = None      # purchase / subscription payment
    description: str = ""
    audit: AuditTrail = AuditTrail()

    def __post_init__(self):
        if self.amount < 0:
            raise InvalidPayment(f"Expense amount cannot be negative: {self.amount}", amount=self.amount)


@dataclass(frozen=True)
class InventoryItem(Auditable):
    id: str
    name: str
    type: InventoryType
    quantity: int = 0
    minimum_stock: int = 0
    unit_price: int = 0
    cost: int = 0                           # payment total
    payment_status: PaymentStatus = PaymentStatus.UNPAID
    down_payment_amount: int = 0
    remaining_amount: int = 0
    fund_type: FundType = FundType.PETTY_CASH
    is_recurring: bool = False
    recurring_type: Optional[RecurringType] = None
    purchase_date: Optional[date] = None    # billing anchor
    next_billing_date: Optional[date] = None
    reminder_days: int = 7
    auto_renew: bool = False
    last_billing_date: Optional[date] = None
    audit: AuditTrail = AuditTrail()
    payment_revision: int = 0

    def __post_init__(self):
        if self.quantity < 0:
            raise InvalidAdjustment(f"Quantity cannot be negative: {self.quantity}", quantity=self.quantity)
        check_payment_fields(self.cost, self.payment_status, self.down_payment_amount, self.remaining_amount)

    @property
    def total_value(self) -> int:
        return self.quantity * self.unit_price

    @property
    def is_subscription(self) -> bool:
        return self.type is InventoryType.SUBSCRIPTION


@dataclass(frozen=True)
class InventoryAdjustment:
    id: str
    inventory_id: str
    adjustment_type: AdjustmentType
    quantity: int
    previous_quantity: int
    new_quantity: int
    reason: AdjustmentReason
    adjusted_by: Optional[str]
    adjusted_at: datetime
    note: str = ""

    def __post_init__(self):
        if self.quantity <= 0:
            raise InvalidAdjustment(f"Adjustment quantity must be positive: {self.quantity}")
        sign = 1 if self.adjustment_type is AdjustmentType.INCREASE else -1
        if self.new_quantity != self.previous_quantity + sign * self.quantity:
            raise InvalidAdjustment(
                "Adjustment snapshot does not add up",
                previous_quantity=self.previous_quantity,
                new_quantity=self.new_quantity,
            )

    @property
    def signed_quantity(self) -> int:
        return self.new_quantity - self.previous_quantity


@dataclass(frozen=True)
class FundBalance:
    fund_type: FundType
    current_balance: int


@dataclass(frozen=True)
class FundPosting:
    fund_type: FundType
    amount: int                             # signed delta
    reference_id: str
    kind: PostingKind
    balance_after: int
    description: str = ""
    overdrawn: bool = False
