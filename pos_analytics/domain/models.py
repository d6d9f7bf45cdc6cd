"""Domain models - immutable dataclasses for sales, credits and aggregates"""

from dataclasses import dataclass, field
from datetime import date, datetime
from enum import Enum
from typing import Dict, Generic, Optional, Tuple, TypeVar

T = TypeVar("T")

# Balances below one cent count as settled
SETTLEMENT_EPSILON = 0.01


def settled_balance(total_amount: float, amount_paid: float) -> float:
    """Remaining balance, floored at zero and snapped to zero below a cent"""
    balance = total_amount - amount_paid
    return balance if balance >= SETTLEMENT_EPSILON else 0.0


class PaymentMethod(str, Enum):
    """Tender used at sale time"""

    CASH = "cash"
    BANK_MPESA = "bank_mpesa"
    CASH_BANK_MPESA = "cash_bank_mpesa"
    CREDIT = "credit"


class CreditStatus(str, Enum):
    """Persisted credit lifecycle state (overdue is a display overlay, never stored)"""

    PENDING = "pending"
    PARTIALLY_PAID = "partially_paid"
    PAID = "paid"


OVERDUE = "overdue"


class RiskLevel(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


class Dimension(str, Enum):
    """Grouping selector for aggregation"""

    CASHIER = "cashier"
    SHOP = "shop"
    PRODUCT = "product"
    DAY = "day"
    NONE = "none"


@dataclass(frozen=True)
class Reference:
    """Resolved foreign key: identifier plus display name"""

    id: str
    name: str


@dataclass(frozen=True)
class LineItem:
    """Single product line on a sale"""

    product: Reference
    quantity: float
    unit_price: float
    unit_cost: float

    @property
    def revenue(self) -> float:
        return self.unit_price * self.quantity

    @property
    def cost(self) -> float:
        return self.unit_cost * self.quantity


@dataclass(frozen=True)
class PaymentSplit:
    """Tender amounts captured for split-payment sales"""

    cash: float = 0.0
    bank_mpesa: float = 0.0


@dataclass(frozen=True)
class TransactionRecord:
    """Normalized sale (or credit payment) record.

    amount_paid / recognized_revenue / outstanding_revenue / credit_status are
    the values supplied by the source system. They may be stale cached mirrors;
    reconciliation recomputes the authoritative figures.
    """

    transaction_id: str
    shop: Reference
    cashier: Reference
    customer_name: str
    total_amount: float
    payment_method: PaymentMethod
    items: Tuple[LineItem, ...]
    cost: float
    sold_at: Optional[datetime]
    is_credit_transaction: bool
    is_credit_payment: bool = False
    amount_paid: Optional[float] = None
    recognized_revenue: Optional[float] = None
    outstanding_revenue: Optional[float] = None
    credit_status: Optional[str] = None
    due_date: Optional[datetime] = None
    payment_split: Optional[PaymentSplit] = None

    @property
    def items_sold(self) -> float:
        return sum(item.quantity for item in self.items)

    @property
    def sale_day(self) -> Optional[date]:
        return self.sold_at.date() if self.sold_at else None


@dataclass(frozen=True)
class PaymentEvent:
    """One recorded payment against a credit (append-only)"""

    amount: float
    paid_at: Optional[datetime]
    method: str
    recorded_by: str


@dataclass(frozen=True)
class CreditRecord:
    """Payable attached to a credit sale"""

    credit_id: str
    transaction_id: str
    shop: Reference
    cashier: Reference
    customer_name: str
    total_amount: float
    amount_paid: float
    status: CreditStatus
    due_date: Optional[datetime]
    created_at: Optional[datetime]
    payments: Tuple[PaymentEvent, ...] = ()

    @property
    def balance_due(self) -> float:
        return settled_balance(self.total_amount, self.amount_paid)


@dataclass(frozen=True)
class ExpenseRecord:
    """Operating expense charged against a shop"""

    expense_id: str
    shop: Reference
    amount: float
    category: str
    description: str
    incurred_at: Optional[datetime]


@dataclass(frozen=True)
class ReconciledTransaction:
    """Transaction with recomputed recognized/outstanding revenue"""

    record: TransactionRecord
    amount_paid: float
    recognized_revenue: float
    outstanding_revenue: float
    collection_rate: float
    credit_status: Optional[CreditStatus] = None
    is_overdue: bool = False

    @property
    def transaction_id(self) -> str:
        return self.record.transaction_id

    @property
    def total_amount(self) -> float:
        return self.record.total_amount

    @property
    def cost(self) -> float:
        return self.record.cost

    @property
    def profit(self) -> float:
        return self.record.total_amount - self.record.cost

    @property
    def display_status(self) -> Optional[str]:
        if self.credit_status is None:
            return None
        return OVERDUE if self.is_overdue else self.credit_status.value


@dataclass(frozen=True)
class DataQualityWarning:
    """Recoverable input problem, reported to the caller instead of raised"""

    kind: str
    record_id: str
    detail: str


@dataclass(frozen=True)
class NormalizedBatch(Generic[T]):
    """Normalized records plus the data-quality warnings raised on the way"""

    records: Tuple[T, ...]
    warnings: Tuple[DataQualityWarning, ...] = ()


@dataclass(frozen=True)
class ClampEvent:
    """Payment that was capped at the outstanding balance"""

    credit_id: str
    requested_amount: float
    applied_amount: float

    @property
    def excess(self) -> float:
        return self.requested_amount - self.applied_amount


@dataclass(frozen=True)
class PaymentApplication:
    """Result of applying one payment to a credit"""

    credit: CreditRecord
    requested_amount: float
    applied_amount: float
    event: Optional[PaymentEvent] = None
    clamp: Optional[ClampEvent] = None


@dataclass(frozen=True)
class DimensionAggregate:
    """Summed metrics for one grouping key over a date window.

    profit_margin and credit_collection_rate are derived from the summed
    components on every access and are never accumulated on their own.
    """

    dimension: Dimension
    key: str
    name: str
    total_revenue: float = 0.0
    total_cost: float = 0.0
    total_profit: float = 0.0
    recognized_revenue: float = 0.0
    transaction_count: int = 0
    items_sold: float = 0.0
    credit_sales_count: int = 0
    outstanding_credit: float = 0.0
    total_credit_given: float = 0.0
    amount_collected: float = 0.0
    overdue_count: int = 0
    overdue_credit: float = 0.0
    credit_sample: Tuple[str, ...] = ()
    performance_score: Optional[int] = None
    risk_level: Optional[RiskLevel] = None

    @property
    def profit_margin(self) -> float:
        if self.total_revenue <= 0:
            return 0.0
        return self.total_profit / self.total_revenue * 100

    @property
    def credit_collection_rate(self) -> float:
        if self.total_credit_given <= 0:
            return 0.0
        return self.amount_collected / self.total_credit_given * 100

    @property
    def average_transaction_value(self) -> float:
        return self.total_revenue / self.transaction_count if self.transaction_count else 0.0


@dataclass(frozen=True)
class CreditSummary:
    """Portfolio-level credit totals"""

    total_credit_given: float
    amount_collected: float
    outstanding_credit: float
    credit_count: int
    active_count: int
    overdue_count: int
    overdue_credit: float
    status_breakdown: Dict[str, int] = field(default_factory=dict)

    @property
    def collection_rate(self) -> float:
        if self.total_credit_given <= 0:
            return 0.0
        return self.amount_collected / self.total_credit_given * 100


@dataclass(frozen=True)
class FinancialSummary:
    """
    Profit and loss over a window.

    gross_profit is revenue less cost of goods sold; net_profit further
    deducts operating expenses. Credit payment revenue is reported on its
    own and is not part of total_revenue.
    """

    total_revenue: float = 0.0
    recognized_revenue: float = 0.0
    cost_of_goods_sold: float = 0.0
    gross_profit: float = 0.0
    total_expenses: float = 0.0
    net_profit: float = 0.0
    credit_sales: float = 0.0
    non_credit_sales: float = 0.0
    credit_payment_revenue: float = 0.0
    outstanding_credit: float = 0.0
    transaction_count: int = 0
    expense_count: int = 0

    @property
    def gross_margin(self) -> float:
        if self.total_revenue <= 0:
            return 0.0
        return self.gross_profit / self.total_revenue * 100

    @property
    def net_margin(self) -> float:
        if self.total_revenue <= 0:
            return 0.0
        return self.net_profit / self.total_revenue * 100

    @property
    def revenue_after_expenses(self) -> float:
        return self.total_revenue - self.total_expenses


@dataclass(frozen=True)
class PaymentBreakdown:
    """Recognized revenue split by tender"""

    cash: float = 0.0
    bank_mpesa: float = 0.0
    credit: float = 0.0

    @property
    def total(self) -> float:
        return self.cash + self.bank_mpesa + self.credit
