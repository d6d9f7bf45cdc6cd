"""Prometheus metrics for monitoring data quality, credit collections, and report performance"""

from typing import Iterable

from prometheus_client import Counter, Histogram

from pos_analytics.domain.models import DataQualityWarning

# Ingestion metrics
data_quality_warning_counter = Counter(
    "pos_data_quality_warnings_total",
    "Recoverable input problems found during normalization",
    ["kind"],  # unknown_shop | unknown_cashier | duplicate_credit | ...
)

# Credit metrics
payment_applied_counter = Counter(
    "pos_credit_payments_applied_total",
    "Credit payments applied",
)

payment_amount_histogram = Histogram(
    "pos_credit_payment_amount",
    "Applied credit payment amounts",
    buckets=[100, 500, 1_000, 5_000, 10_000, 50_000, 100_000],
)

payment_clamp_counter = Counter(
    "pos_credit_payment_clamps_total",
    "Payments capped at the outstanding balance",
)

# Report metrics
report_cache_counter = Counter(
    "pos_report_cache_lookups_total",
    "Report cache lookups",
    ["result"],  # hit | miss
)

report_duration_histogram = Histogram(
    "pos_report_build_seconds",
    "Report build latency",
    ["dimension"],
    buckets=[0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0],
)


def record_data_quality(warnings: Iterable[DataQualityWarning]) -> None:
    """Count warnings by kind so ingestion problems show up on dashboards"""
    for warning in warnings:
        data_quality_warning_counter.labels(kind=warning.kind).inc()


def record_payment_applied(applied_amount: float, clamped: bool) -> None:
    if applied_amount > 0:
        payment_applied_counter.inc()
        payment_amount_histogram.observe(applied_amount)
    if clamped:
        payment_clamp_counter.inc()


def record_cache_lookup(hit: bool) -> None:
    report_cache_counter.labels(result="hit" if hit else "miss").inc()
