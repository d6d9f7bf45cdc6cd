"""Report service - loads POS data once and serves scored, cached reports"""

import logging
import time
from datetime import datetime
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional, Tuple, Union

from pos_analytics.config import Settings, settings
from pos_analytics.domain.aggregation import (
    DateWindow,
    aggregate,
    coerce_dimension,
    filter_by_window,
    payment_method_totals,
    rank,
    scope_credits,
    scope_expenses,
    scope_transactions,
    summarize_financials,
)
from pos_analytics.domain.credit import apply_payment, dedupe_credits, summarize_credits
from pos_analytics.domain.exceptions import CreditNotFoundError
from pos_analytics.domain.models import (
    CreditRecord,
    CreditSummary,
    DataQualityWarning,
    Dimension,
    DimensionAggregate,
    ExpenseRecord,
    FinancialSummary,
    PaymentApplication,
    PaymentBreakdown,
    ReconciledTransaction,
    TransactionRecord,
)
from pos_analytics.domain.normalizer import build_lookups, normalize_credits, normalize_expenses, normalize_transactions
from pos_analytics.domain.reconciliation import reconcile_transactions
from pos_analytics.domain.scoring import score_aggregates
from pos_analytics.infrastructure.cache import ReportCache
from pos_analytics.infrastructure.observability.logging import log_data_quality, log_payment_clamp, log_report
from pos_analytics.infrastructure.observability.metrics import (
    record_cache_lookup,
    record_data_quality,
    record_payment_applied,
    report_duration_histogram,
)
from pos_analytics.services.schemas import ReportOptions
from pos_analytics.utils.date_utils import utc_now

logger = logging.getLogger(__name__)

RawRecords = Iterable[Mapping[str, Any]]


def fill_daily_gaps(series: Iterable[DimensionAggregate], window: DateWindow) -> List[DimensionAggregate]:
    """
    One row per day of the window, oldest first.

    Days without activity get an all-zero placeholder row; rows outside the
    window are dropped.
    """
    by_day = {row.key: row for row in series}
    filled = []
    for day in window.days():
        key = day.isoformat()
        filled.append(by_day.get(key) or DimensionAggregate(dimension=Dimension.DAY, key=key, name=key))
    return filled


class ReportService:
    """
    Entry point for callers: load raw records, then ask for reports.

    Reports are recomputed from the loaded records on demand and cached for
    `report_cache_ttl_seconds`. Every write (load, record_payment) clears the
    cache. Reports are returned as fresh lists, so callers may mutate them
    without touching the cached copy.

    Usage:
        service = ReportService()
        service.load(transactions, credits, shops, cashiers, products, expenses)
        rows = service.ranked_report("cashier", DateWindow(start, end), shop_id="s1")
    """

    def __init__(
        self,
        config: Settings = settings,
        cache: Optional[ReportCache] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self.config = config
        self.cache = cache if cache is not None else ReportCache(config.report_cache_ttl_seconds)
        self._now = clock or utc_now
        self._transactions: Tuple[TransactionRecord, ...] = ()
        # Keyed by transaction id: de-duplicated credits are unique per sale
        self._credits: Dict[str, CreditRecord] = {}
        self._expenses: Tuple[ExpenseRecord, ...] = ()

    @property
    def credits(self) -> Tuple[CreditRecord, ...]:
        return tuple(self._credits.values())

    @property
    def expenses(self) -> Tuple[ExpenseRecord, ...]:
        return self._expenses

    # Write path

    def load(
        self,
        transactions: RawRecords,
        credits: RawRecords = (),
        shops: RawRecords = (),
        cashiers: RawRecords = (),
        products: RawRecords = (),
        expenses: RawRecords = (),
    ) -> List[DataQualityWarning]:
        """Normalize and de-duplicate a fresh data set, replacing whatever was loaded"""
        lookups = build_lookups(shops, cashiers, products)
        txn_batch = normalize_transactions(transactions, lookups)
        credit_batch = normalize_credits(credits, lookups)
        expense_batch = normalize_expenses(expenses, lookups)
        deduped = dedupe_credits(credit_batch.records)

        warnings = [*txn_batch.warnings, *credit_batch.warnings, *expense_batch.warnings, *deduped.warnings]
        log_data_quality(warnings, source="load")
        record_data_quality(warnings)

        self._transactions = txn_batch.records
        self._credits = {credit.transaction_id: credit for credit in deduped.records}
        self._expenses = expense_batch.records
        self.cache.clear()

        logger.info(
            "Data loaded",
            extra={
                "step": "load",
                "transaction_count": len(self._transactions),
                "credit_count": len(self._credits),
                "expense_count": len(self._expenses),
                "warning_count": len(warnings),
            },
        )
        return warnings

    def _find_credit(self, credit_id: str) -> CreditRecord:
        for credit in self._credits.values():
            if credit.credit_id == credit_id:
                return credit
        credit = self._credits.get(credit_id)
        if credit is None:
            raise CreditNotFoundError(credit_id)
        return credit

    def record_payment(
        self,
        credit_id: str,
        amount: float,
        paid_at: Optional[datetime] = None,
        method: str = "cash",
        recorded_by: Optional[str] = None,
    ) -> PaymentApplication:
        """
        Apply a payment to a loaded credit, found by credit id or by the id
        of the sale it belongs to.

        Over-payments are capped at the balance; the clamp is logged and
        counted, never raised.

        Raises:
            CreditNotFoundError: no loaded credit matches the id
        """
        credit = self._find_credit(credit_id)

        application = apply_payment(
            credit,
            amount,
            paid_at=paid_at or self._now(),
            method=method,
            recorded_by=recorded_by or "Unknown",
        )
        self._credits[credit.transaction_id] = application.credit

        if application.clamp is not None:
            log_payment_clamp(application.clamp)
        record_payment_applied(application.applied_amount, clamped=application.clamp is not None)
        self.cache.clear()

        logger.info(
            "Payment recorded",
            extra={
                "step": "record_payment",
                "credit_id": credit.credit_id,
                "applied_amount": application.applied_amount,
                "balance_due": application.credit.balance_due,
                "status": application.credit.status.value,
            },
        )
        return application

    # Read path

    def resolve_window(self, window: Optional[DateWindow] = None, options: Optional[ReportOptions] = None) -> DateWindow:
        """The given window, or the trailing default ending today"""
        if window is not None:
            return window
        days = options.window_days if options is not None and options.window_days else self.config.default_window_days
        return DateWindow.trailing(days, today=self._now().date())

    def _reconcile(self, as_of: datetime) -> List[ReconciledTransaction]:
        return reconcile_transactions(
            self._transactions,
            self._credits.values(),
            as_of=as_of,
            epsilon=self.config.reconciliation_epsilon,
        )

    def reconciled_transactions(
        self,
        window: Optional[DateWindow] = None,
        shop_id: Optional[str] = None,
        cashier_id: Optional[str] = None,
    ) -> List[ReconciledTransaction]:
        """Every loaded transaction reconciled; filtered to `window` and scope when given"""
        reconciled = scope_transactions(self._reconcile(self._now()), shop_id, cashier_id)
        if window is None:
            return reconciled
        return filter_by_window(reconciled, window)

    def dimension_report(
        self,
        dimension: Union[Dimension, str],
        window: Optional[DateWindow] = None,
        options: Optional[ReportOptions] = None,
        shop_id: Optional[str] = None,
        cashier_id: Optional[str] = None,
    ) -> List[DimensionAggregate]:
        """Scored aggregates for one dimension, sorted by key, optionally scoped to a shop and/or cashier"""
        dimension = coerce_dimension(dimension)
        options = options or ReportOptions()
        window = self.resolve_window(window, options)
        scoring = options.scoring_config(self.config)

        key = ("dimension", dimension, window, options, shop_id, cashier_id)
        cached = self.cache.get(key)
        record_cache_lookup(hit=cached is not None)
        if cached is not None:
            log_report("dimension", dimension.value, len(cached), 0.0, cache_hit=True)
            return list(cached)

        start = time.perf_counter()
        with report_duration_histogram.labels(dimension=dimension.value).time():
            as_of = self._now()
            rows = aggregate(
                scope_transactions(self._reconcile(as_of), shop_id, cashier_id),
                scope_credits(self._credits.values(), shop_id, cashier_id),
                dimension,
                window,
                sample_size=self.config.credit_sample_size,
                as_of=as_of,
            )
            rows = score_aggregates(rows, scoring)
        duration_ms = (time.perf_counter() - start) * 1000

        self.cache.set(key, tuple(rows))
        log_report("dimension", dimension.value, len(rows), duration_ms, cache_hit=False)
        return list(rows)

    def ranked_report(
        self,
        dimension: Union[Dimension, str],
        window: Optional[DateWindow] = None,
        options: Optional[ReportOptions] = None,
        top_n: Optional[int] = None,
        shop_id: Optional[str] = None,
        cashier_id: Optional[str] = None,
    ) -> List[DimensionAggregate]:
        """Scored aggregates ranked by revenue; `top_n` wins over options.top_n"""
        options = options or ReportOptions()
        limit = top_n if top_n is not None else options.top_n
        return rank(self.dimension_report(dimension, window, options, shop_id, cashier_id), limit)

    def top_products(
        self,
        window: Optional[DateWindow] = None,
        options: Optional[ReportOptions] = None,
        shop_id: Optional[str] = None,
        cashier_id: Optional[str] = None,
    ) -> List[DimensionAggregate]:
        options = options or ReportOptions()
        limit = options.top_n or self.config.product_top_n
        return self.ranked_report(Dimension.PRODUCT, window, options, top_n=limit, shop_id=shop_id, cashier_id=cashier_id)

    def daily_series(
        self,
        window: Optional[DateWindow] = None,
        fill_gaps: bool = False,
        shop_id: Optional[str] = None,
        cashier_id: Optional[str] = None,
    ) -> List[DimensionAggregate]:
        """Per-day aggregates, oldest first; `fill_gaps` adds zero rows for idle days"""
        window = self.resolve_window(window)
        series = self.dimension_report(Dimension.DAY, window, shop_id=shop_id, cashier_id=cashier_id)
        if fill_gaps:
            return fill_daily_gaps(series, window)
        return series

    def credit_summary(self, shop_id: Optional[str] = None, cashier_id: Optional[str] = None) -> CreditSummary:
        return summarize_credits(scope_credits(self._credits.values(), shop_id, cashier_id), as_of=self._now())

    def payment_breakdown(
        self,
        window: Optional[DateWindow] = None,
        shop_id: Optional[str] = None,
        cashier_id: Optional[str] = None,
    ) -> PaymentBreakdown:
        window = self.resolve_window(window)
        return payment_method_totals(self.reconciled_transactions(window, shop_id, cashier_id))

    def financial_summary(
        self,
        window: Optional[DateWindow] = None,
        shop_id: Optional[str] = None,
        cashier_id: Optional[str] = None,
    ) -> FinancialSummary:
        """
        Revenue, cost of goods sold, expenses and net profit for the window.

        A cashier scope carries no expenses, since expenses are booked
        against shops.
        """
        window = self.resolve_window(window)
        summary = summarize_financials(
            scope_transactions(self._reconcile(self._now()), shop_id, cashier_id),
            scope_expenses(self._expenses, shop_id, cashier_id),
            window,
        )
        logger.info(
            "Financial summary built",
            extra={
                "step": "financial_summary",
                "window_start": window.start.isoformat(),
                "window_end": window.end.isoformat(),
                "shop_id": shop_id,
                "cashier_id": cashier_id,
                "net_profit": summary.net_profit,
            },
        )
        return summary
