"""Pytest fixtures for testing"""

from datetime import date, datetime, timezone

import pytest

from pos_analytics.domain.aggregation import DateWindow
from pos_analytics.domain.credit import dedupe_credits
from pos_analytics.domain.models import CreditRecord, ReconciledTransaction
from pos_analytics.domain.normalizer import (
    LookupTables,
    build_lookups,
    normalize_credits,
    normalize_transactions,
)
from pos_analytics.domain.reconciliation import reconcile_transactions
from pos_analytics.infrastructure.cache import ReportCache
from pos_analytics.services.report_service import ReportService

AS_OF = datetime(2024, 3, 10, 12, 0, tzinfo=timezone.utc)


class FakeClock:
    """Manually advanced monotonic clock for cache expiry tests"""

    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def as_of() -> datetime:
    return AS_OF


@pytest.fixture
def march() -> DateWindow:
    return DateWindow(date(2024, 3, 1), date(2024, 3, 31))


@pytest.fixture
def raw_shops() -> list[dict]:
    return [
        {"_id": "s1", "name": "Downtown"},
        {"_id": "s2", "name": "Uptown"},
    ]


@pytest.fixture
def raw_cashiers() -> list[dict]:
    return [
        {"_id": "c1", "name": "Alice"},
        {"_id": "c2", "name": "Bob"},
    ]


@pytest.fixture
def raw_products() -> list[dict]:
    return [
        {"_id": "p1", "name": "Sugar", "buyingPrice": 80},
        {"_id": "p2", "name": "Flour", "buyingPrice": 40},
    ]


@pytest.fixture
def raw_transactions() -> list[dict]:
    """Four March sales across two shops and two cashiers, one on credit"""
    return [
        {
            "_id": "t1",
            "shopId": "s1",
            "cashierId": "c1",
            "totalAmount": 500,
            "paymentMethod": "cash",
            "items": [{"productId": "p1", "quantity": 5, "price": 100}],
            "saleDate": "2024-03-01T10:00:00Z",
        },
        {
            "_id": "t2",
            "shopId": "s2",
            "cashierId": "c2",
            "totalAmount": 300,
            "paymentMethod": "bank_mpesa",
            "items": [{"productId": "p2", "quantity": 3, "price": 100}],
            "saleDate": "2024-03-02T09:30:00Z",
        },
        {
            "_id": "t3",
            "shopId": "s1",
            "cashierId": "c1",
            "customerName": "Jane",
            "totalAmount": 1000,
            "paymentMethod": "credit",
            "isCreditTransaction": True,
            "amountPaid": 400,
            "dueDate": "2024-03-20T00:00:00Z",
            "items": [{"productId": "p1", "quantity": 10, "price": 100}],
            "saleDate": "2024-03-02T15:00:00Z",
        },
        {
            "_id": "t4",
            "shopId": {"_id": "s1", "name": "Downtown"},
            "cashierId": {"_id": "c2", "name": "Bob"},
            "totalAmount": 200,
            "paymentMethod": "cash_bank_mpesa",
            "paymentSplit": {"cash": 150, "bank_mpesa": 50},
            "items": [{"productId": "p2", "quantity": 2, "price": 100}],
            "createdAt": "2024-03-04T08:00:00Z",
        },
    ]


@pytest.fixture
def raw_credits() -> list[dict]:
    return [
        {
            "_id": "cr1",
            "transactionId": "t3",
            "shopId": "s1",
            "cashierId": "c1",
            "customerName": "Jane",
            "totalAmount": 1000,
            "amountPaid": 400,
            "payments": [{"amount": 400, "paymentDate": "2024-03-05T10:00:00Z", "paymentMethod": "cash"}],
            "dueDate": "2024-03-20T00:00:00Z",
            "createdAt": "2024-03-02T15:00:00Z",
        },
    ]


@pytest.fixture
def lookups(raw_shops, raw_cashiers, raw_products) -> LookupTables:
    return build_lookups(raw_shops, raw_cashiers, raw_products)


@pytest.fixture
def credits(raw_credits, lookups) -> tuple[CreditRecord, ...]:
    return dedupe_credits(normalize_credits(raw_credits, lookups).records).records


@pytest.fixture
def reconciled(raw_transactions, lookups, credits, as_of) -> list[ReconciledTransaction]:
    records = normalize_transactions(raw_transactions, lookups).records
    return reconcile_transactions(records, credits, as_of=as_of)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def service(raw_transactions, raw_credits, raw_shops, raw_cashiers, raw_products, clock) -> ReportService:
    """Report service loaded with the sample data, "now" pinned to AS_OF"""
    svc = ReportService(cache=ReportCache(ttl_seconds=60, clock=clock), clock=lambda: AS_OF)
    svc.load(raw_transactions, raw_credits, raw_shops, raw_cashiers, raw_products)
    return svc
