"""Aggregation & ranking - group reconciled records by dimension and date window"""

from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Dict, Iterable, List, Optional, Sequence, Set, Tuple, Union

from pos_analytics.domain.credit import dedupe_credits, is_overdue
from pos_analytics.domain.exceptions import InvalidDateWindowError, InvalidGroupingError
from pos_analytics.domain.models import (
    CreditRecord,
    Dimension,
    DimensionAggregate,
    ExpenseRecord,
    FinancialSummary,
    PaymentBreakdown,
    PaymentMethod,
    ReconciledTransaction,
)
from pos_analytics.domain.reconciliation import index_credits
from pos_analytics.utils.date_utils import default_window, generate_date_range, utc_now

ALL_KEY = "all"
# Scope value meaning "no restriction"
ALL_SCOPE = "all"
ALL_NAME = "All"
DEFAULT_PRODUCT_TOP_N = 10
DEFAULT_SAMPLE_SIZE = 5


@dataclass(frozen=True)
class DateWindow:
    """Inclusive calendar-day window"""

    start: date
    end: date

    def __post_init__(self) -> None:
        for bound in (self.start, self.end):
            # datetime is a date subclass; windows are whole days only
            if not isinstance(bound, date) or isinstance(bound, datetime):
                raise InvalidDateWindowError(f"window bounds must be dates, got {bound!r}")
        if self.start > self.end:
            raise InvalidDateWindowError(f"window start {self.start} is after end {self.end}")

    @classmethod
    def trailing(cls, days: int, today: Optional[date] = None) -> "DateWindow":
        start, end = default_window(days, today)
        return cls(start=start, end=end)

    def contains(self, moment: Optional[datetime]) -> bool:
        if moment is None:
            return False
        return self.start <= moment.date() <= self.end

    def days(self) -> List[date]:
        return generate_date_range(self.start, self.end)


def coerce_dimension(selector: Union[Dimension, str, None]) -> Dimension:
    """Accept a Dimension or its string value; anything else is a programmer error"""
    if selector is None:
        return Dimension.NONE
    if isinstance(selector, Dimension):
        return selector
    try:
        return Dimension(selector)
    except ValueError:
        raise InvalidGroupingError(f"unknown grouping selector: {selector!r}") from None


def filter_by_window(
    transactions: Iterable[ReconciledTransaction],
    window: DateWindow,
) -> List[ReconciledTransaction]:
    """Keep records whose sale date (createdAt fallback) falls inside the window"""
    return [txn for txn in transactions if window.contains(txn.record.sold_at)]


@dataclass
class _Bucket:
    """Mutable running sums for one group; frozen into a DimensionAggregate at the end"""

    key: str
    name: str
    total_revenue: float = 0.0
    total_cost: float = 0.0
    total_profit: float = 0.0
    recognized_revenue: float = 0.0
    items_sold: float = 0.0
    transaction_ids: List[str] = field(default_factory=list)
    credit_sales_count: int = 0
    outstanding_credit: float = 0.0
    total_credit_given: float = 0.0
    amount_collected: float = 0.0
    overdue_count: int = 0
    overdue_credit: float = 0.0
    credit_sample: List[str] = field(default_factory=list)
    _seen: Set[str] = field(default_factory=set)

    def add_sale(self, txn_id: str, revenue: float, cost: float, recognized: float, items: float) -> None:
        self.total_revenue += revenue
        self.total_cost += cost
        self.total_profit += revenue - cost
        self.recognized_revenue += recognized
        self.items_sold += items
        if txn_id not in self._seen:
            self._seen.add(txn_id)
            self.transaction_ids.append(txn_id)

    def add_credit(
        self,
        txn_id: str,
        given: float,
        collected: float,
        outstanding: float,
        overdue: bool,
        sample_size: int,
    ) -> None:
        self.credit_sales_count += 1
        self.total_credit_given += given
        self.amount_collected += collected
        self.outstanding_credit += outstanding
        if overdue:
            self.overdue_count += 1
            self.overdue_credit += outstanding
        if len(self.credit_sample) < sample_size:
            self.credit_sample.append(txn_id)

    def freeze(self, dimension: Dimension) -> DimensionAggregate:
        return DimensionAggregate(
            dimension=dimension,
            key=self.key,
            name=self.name,
            total_revenue=self.total_revenue,
            total_cost=self.total_cost,
            total_profit=self.total_profit,
            recognized_revenue=self.recognized_revenue,
            transaction_count=len(self.transaction_ids),
            items_sold=self.items_sold,
            credit_sales_count=self.credit_sales_count,
            outstanding_credit=self.outstanding_credit,
            total_credit_given=self.total_credit_given,
            amount_collected=self.amount_collected,
            overdue_count=self.overdue_count,
            overdue_credit=self.overdue_credit,
            credit_sample=tuple(self.credit_sample),
        )


def _transaction_key(txn: ReconciledTransaction, dimension: Dimension) -> Tuple[str, str]:
    record = txn.record
    if dimension is Dimension.CASHIER:
        return record.cashier.id, record.cashier.name
    if dimension is Dimension.SHOP:
        return record.shop.id, record.shop.name
    if dimension is Dimension.DAY:
        day = record.sale_day.isoformat()
        return day, day
    return ALL_KEY, ALL_NAME


def _credit_key(credit: CreditRecord, dimension: Dimension) -> Tuple[str, str]:
    if dimension is Dimension.CASHIER:
        return credit.cashier.id, credit.cashier.name
    if dimension is Dimension.SHOP:
        return credit.shop.id, credit.shop.name
    if dimension is Dimension.DAY:
        day = credit.created_at.date().isoformat()
        return day, day
    return ALL_KEY, ALL_NAME


def _credit_exposure(credit: CreditRecord, as_of: datetime) -> Tuple[float, float, float, bool]:
    """(given, collected, outstanding, overdue) taken from the credit ledger"""
    balance = credit.balance_due
    return (
        credit.total_amount,
        min(credit.amount_paid, credit.total_amount),
        balance,
        is_overdue(balance, credit.due_date, as_of),
    )


def _bucket(buckets: Dict[str, _Bucket], key: str, name: str) -> _Bucket:
    if key not in buckets:
        buckets[key] = _Bucket(key=key, name=name)
    return buckets[key]


def _aggregate_products(transactions: Sequence[ReconciledTransaction]) -> Dict[str, _Bucket]:
    buckets: Dict[str, _Bucket] = {}
    for txn in transactions:
        # Recognized revenue is spread over the lines in proportion to price
        share = txn.recognized_revenue / txn.total_amount if txn.total_amount > 0 else 0.0
        for item in txn.record.items:
            bucket = _bucket(buckets, item.product.id, item.product.name)
            bucket.add_sale(txn.transaction_id, item.revenue, item.cost, item.revenue * share, item.quantity)
    return buckets


def aggregate(
    transactions: Iterable[ReconciledTransaction],
    credits: Iterable[CreditRecord] = (),
    dimension: Union[Dimension, str, None] = Dimension.NONE,
    window: Optional[DateWindow] = None,
    sample_size: int = DEFAULT_SAMPLE_SIZE,
    as_of: Optional[datetime] = None,
) -> List[DimensionAggregate]:
    """
    Produce one DimensionAggregate per group key present in the window.

    Requirements:
    - Filter to the inclusive window on sale date (createdAt fallback)
    - Sum revenue, cost, profit, recognized revenue and items per group
    - Credit exposure is counted once per transaction id: from its
      de-duplicated credit record when one exists, else from the reconciled sale
    - Groups with no matching records are omitted, not zero-filled
    - Ratios are derived on the frozen aggregate, never summed

    Raises:
        InvalidGroupingError: selector is not a Dimension
    """
    dimension = coerce_dimension(dimension)
    as_of = as_of or utc_now()
    transactions = list(transactions)
    credits = dedupe_credits(credits).records
    by_transaction = index_credits(credits)

    in_window = filter_by_window(transactions, window) if window is not None else transactions
    sales = [txn for txn in in_window if not txn.record.is_credit_payment]
    if dimension is Dimension.DAY:
        # Undated sales have no day to land on
        sales = [txn for txn in sales if txn.record.sold_at is not None]

    if dimension is Dimension.PRODUCT:
        products = _aggregate_products(sales)
        return [products[key].freeze(dimension) for key in sorted(products)]

    buckets: Dict[str, _Bucket] = {}
    for txn in sales:
        key, name = _transaction_key(txn, dimension)
        bucket = _bucket(buckets, key, name)
        bucket.add_sale(
            txn.transaction_id,
            txn.total_amount,
            txn.cost,
            txn.recognized_revenue,
            txn.record.items_sold,
        )
        if txn.record.is_credit_transaction:
            credit = by_transaction.get(txn.transaction_id)
            if credit is not None:
                bucket.add_credit(txn.transaction_id, *_credit_exposure(credit, as_of), sample_size)
            else:
                bucket.add_credit(
                    txn.transaction_id,
                    txn.total_amount,
                    txn.recognized_revenue,
                    txn.outstanding_revenue,
                    txn.is_overdue,
                    sample_size,
                )

    # Credits whose sale is not in the input are dated by their own creation time
    known_ids = {txn.transaction_id for txn in transactions}
    for credit in credits:
        if credit.transaction_id in known_ids:
            continue
        if window is not None and not window.contains(credit.created_at):
            continue
        if dimension is Dimension.DAY and credit.created_at is None:
            continue
        key, name = _credit_key(credit, dimension)
        bucket = _bucket(buckets, key, name)
        bucket.add_credit(credit.transaction_id, *_credit_exposure(credit, as_of), sample_size)

    return [buckets[key].freeze(dimension) for key in sorted(buckets)]


def rank(aggregates: Iterable[DimensionAggregate], top_n: Optional[int] = None) -> List[DimensionAggregate]:
    """
    Order by revenue desc, then transaction count desc, then name asc.

    Truncates to `top_n` when given.
    """
    ranked = sorted(
        aggregates,
        key=lambda agg: (-agg.total_revenue, -agg.transaction_count, agg.name, agg.key),
    )
    if top_n is not None:
        ranked = ranked[: max(0, top_n)]
    return ranked


def top_products(
    transactions: Iterable[ReconciledTransaction],
    window: Optional[DateWindow] = None,
    top_n: int = DEFAULT_PRODUCT_TOP_N,
) -> List[DimensionAggregate]:
    """Best-selling products by line-item revenue"""
    return rank(aggregate(transactions, (), Dimension.PRODUCT, window), top_n)


def daily_series(
    transactions: Iterable[ReconciledTransaction],
    credits: Iterable[CreditRecord] = (),
    window: Optional[DateWindow] = None,
    as_of: Optional[datetime] = None,
) -> List[DimensionAggregate]:
    """One row per calendar day that has activity, oldest first (no gap filling)"""
    return aggregate(transactions, credits, Dimension.DAY, window, as_of=as_of)


def payment_method_totals(transactions: Iterable[ReconciledTransaction]) -> PaymentBreakdown:
    """
    Split recognized revenue by tender.

    Recorded payment splits win; an unsplit cash_bank_mpesa sale is shared
    evenly. Credit sales contribute what has been collected on them.
    """
    cash = bank_mpesa = credit = 0.0

    for txn in transactions:
        record = txn.record
        if record.is_credit_payment:
            continue

        if record.is_credit_transaction or record.payment_method is PaymentMethod.CREDIT:
            credit += txn.recognized_revenue
        elif record.payment_split is not None and (record.payment_split.cash or record.payment_split.bank_mpesa):
            cash += record.payment_split.cash
            bank_mpesa += record.payment_split.bank_mpesa
        elif record.payment_method is PaymentMethod.CASH:
            cash += txn.recognized_revenue
        elif record.payment_method is PaymentMethod.BANK_MPESA:
            bank_mpesa += txn.recognized_revenue
        else:
            half = txn.recognized_revenue / 2
            cash += half
            bank_mpesa += half

    return PaymentBreakdown(cash=cash, bank_mpesa=bank_mpesa, credit=credit)


def _matches(reference_id: str, wanted: Optional[str]) -> bool:
    return wanted is None or wanted == ALL_SCOPE or reference_id == wanted


def scope_transactions(
    transactions: Iterable[ReconciledTransaction],
    shop_id: Optional[str] = None,
    cashier_id: Optional[str] = None,
) -> List[ReconciledTransaction]:
    """Restrict to one shop and/or cashier; None or "all" leaves a side unrestricted"""
    return [
        txn
        for txn in transactions
        if _matches(txn.record.shop.id, shop_id) and _matches(txn.record.cashier.id, cashier_id)
    ]


def scope_credits(
    credits: Iterable[CreditRecord],
    shop_id: Optional[str] = None,
    cashier_id: Optional[str] = None,
) -> List[CreditRecord]:
    return [
        credit
        for credit in credits
        if _matches(credit.shop.id, shop_id) and _matches(credit.cashier.id, cashier_id)
    ]


def scope_expenses(
    expenses: Iterable[ExpenseRecord],
    shop_id: Optional[str] = None,
    cashier_id: Optional[str] = None,
) -> List[ExpenseRecord]:
    """
    Restrict expenses to one shop.

    Expenses belong to shops, not cashiers, so a cashier scope keeps none.
    """
    if cashier_id not in (None, ALL_SCOPE):
        return []
    return [expense for expense in expenses if _matches(expense.shop.id, shop_id)]


def summarize_financials(
    transactions: Iterable[ReconciledTransaction],
    expenses: Iterable[ExpenseRecord] = (),
    window: Optional[DateWindow] = None,
) -> FinancialSummary:
    """
    Profit and loss for the window.

    Requirements:
    - Revenue and cost of goods sold cover sales only; credit payment records
      are reported as credit_payment_revenue and carry no cost
    - gross_profit = revenue - cost of goods sold
    - net_profit = gross_profit - expenses dated inside the window
    - Undated records fall outside any explicit window
    """
    transactions = list(transactions)
    if window is not None:
        transactions = filter_by_window(transactions, window)
        expenses = [expense for expense in expenses if window.contains(expense.incurred_at)]
    expenses = list(expenses)

    revenue = recognized = cogs = credit_sales = non_credit_sales = 0.0
    credit_payment_revenue = outstanding = 0.0
    count = 0
    for txn in transactions:
        if txn.record.is_credit_payment:
            credit_payment_revenue += txn.total_amount
            continue
        count += 1
        revenue += txn.total_amount
        recognized += txn.recognized_revenue
        cogs += txn.cost
        outstanding += txn.outstanding_revenue
        if txn.record.is_credit_transaction:
            credit_sales += txn.total_amount
        else:
            non_credit_sales += txn.total_amount

    total_expenses = sum(expense.amount for expense in expenses)
    gross_profit = revenue - cogs
    return FinancialSummary(
        total_revenue=revenue,
        recognized_revenue=recognized,
        cost_of_goods_sold=cogs,
        gross_profit=gross_profit,
        total_expenses=total_expenses,
        net_profit=gross_profit - total_expenses,
        credit_sales=credit_sales,
        non_credit_sales=non_credit_sales,
        credit_payment_revenue=credit_payment_revenue,
        outstanding_credit=outstanding,
        transaction_count=count,
        expense_count=len(expenses),
    )
