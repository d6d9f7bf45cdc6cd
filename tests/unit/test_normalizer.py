"""Unit tests for the ingestion boundary (raw records -> canonical records)"""

import math
from datetime import datetime, timezone

import pytest

from pos_analytics.domain.models import CreditStatus, PaymentMethod
from pos_analytics.domain.normalizer import (
    UNKNOWN_CASHIER,
    UNKNOWN_PRODUCT,
    UNKNOWN_SHOP,
    WALK_IN_CUSTOMER,
    LookupTables,
    normalize_credit,
    normalize_credits,
    normalize_expenses,
    normalize_transaction,
    normalize_transactions,
    resolve_reference,
    safe_number,
)


@pytest.mark.parametrize(
    "value,expected",
    [
        (None, 0.0),
        ("", 0.0),
        ("null", 0.0),
        ("undefined", 0.0),
        ("abc", 0.0),
        (float("nan"), 0.0),
        (float("inf"), 0.0),
        ("12.5", 12.5),
        (" 7 ", 7.0),
        (3, 3.0),
        (True, 1.0),
    ],
)
def test_safe_number_coerces_to_finite_float(value, expected):
    """Test every unusable value falls back instead of propagating NaN"""
    result = safe_number(value)
    assert result == expected
    assert math.isfinite(result)


def test_resolve_reference_prefers_lookup_table():
    """Test table name wins over the embedded and flat names"""
    ref, resolved = resolve_reference({"_id": "s1", "name": "Old Name"}, "Flat", {"s1": "Downtown"}, UNKNOWN_SHOP)

    assert resolved is True
    assert ref.id == "s1"
    assert ref.name == "Downtown"


def test_resolve_reference_bare_id_and_embedded_object_agree():
    """Test both foreign-key shapes collapse to the same reference"""
    table = {"c1": "Alice"}
    from_id, _ = resolve_reference("c1", None, table, UNKNOWN_CASHIER)
    from_object, _ = resolve_reference({"_id": "c1"}, None, table, UNKNOWN_CASHIER)

    assert from_id == from_object


def test_resolve_reference_falls_back_to_sentinel():
    """Test an unresolvable reference gets the sentinel and is flagged"""
    ref, resolved = resolve_reference(None, None, {}, UNKNOWN_SHOP)

    assert resolved is False
    assert ref.name == UNKNOWN_SHOP


def test_normalize_transaction_resolves_references_and_cost(lookups, raw_transactions):
    """Test shop/cashier names resolve and cost comes from the product catalogue"""
    record, warnings = normalize_transaction(raw_transactions[0], lookups)

    assert warnings == []
    assert record.transaction_id == "t1"
    assert record.shop.name == "Downtown"
    assert record.cashier.name == "Alice"
    assert record.customer_name == WALK_IN_CUSTOMER
    assert record.payment_method is PaymentMethod.CASH
    assert record.cost == 400.0  # 5 x buyingPrice 80
    assert record.items_sold == 5
    assert record.sold_at == datetime(2024, 3, 1, 10, 0, tzinfo=timezone.utc)


def test_normalize_transaction_supplied_cost_wins():
    """Test an explicit cost is used before any line item fallback"""
    raw = {"_id": "x", "totalAmount": 100, "cost": 30, "items": [{"price": 100, "quantity": 1, "cost": 90}]}
    record, _ = normalize_transaction(raw, LookupTables())

    assert record.cost == 30.0


def test_normalize_transaction_dates_fall_back_to_created_at(lookups, raw_transactions):
    """Test createdAt is used when saleDate is missing"""
    record, _ = normalize_transaction(raw_transactions[3], lookups)

    assert record.sold_at == datetime(2024, 3, 4, 8, 0, tzinfo=timezone.utc)
    assert record.payment_split.cash == 150.0


def test_normalize_transaction_credit_fields_keep_absence():
    """Test amountPaid missing stays None (not 0) so reconciliation can fall back"""
    raw = {"_id": "x", "totalAmount": 100, "paymentMethod": "credit", "recognizedRevenue": 25}
    record, _ = normalize_transaction(raw, LookupTables())

    assert record.is_credit_transaction is True
    assert record.amount_paid is None
    assert record.recognized_revenue == 25.0


def test_normalize_transaction_garbage_amounts():
    """Test garbage numeric fields never raise and never produce NaN"""
    raw = {
        "_id": "x",
        "totalAmount": "not a number",
        "items": [{"productId": "ghost", "quantity": None, "price": "null"}],
        "saleDate": "yesterday",
    }
    record, warnings = normalize_transaction(raw, LookupTables())

    assert record.total_amount == 0.0
    assert record.items[0].quantity == 1.0
    assert record.items[0].product.name == UNKNOWN_PRODUCT
    assert record.sold_at is None
    kinds = {w.kind for w in warnings}
    assert {"unknown_shop", "unknown_cashier", "unknown_product", "missing_date"} <= kinds


def test_normalize_transaction_unknown_payment_method_warns():
    """Test an unrecognized tender defaults to cash with a warning"""
    raw = {"_id": "x", "totalAmount": 10, "paymentMethod": "barter", "saleDate": "2024-03-01"}
    record, warnings = normalize_transaction(raw, LookupTables())

    assert record.payment_method is PaymentMethod.CASH
    assert "unknown_payment_method" in [w.kind for w in warnings]


def test_normalize_transactions_skips_non_mappings(lookups, raw_transactions):
    """Test malformed entries are reported, good ones still come through"""
    batch = normalize_transactions([raw_transactions[0], "junk", None], lookups)

    assert len(batch.records) == 1
    assert [w.kind for w in batch.warnings] == ["malformed_record", "malformed_record"]


def test_normalize_credit_transaction_reference_shapes(lookups):
    """Test string and embedded-object transaction references resolve to one id"""
    as_string, _ = normalize_credit({"_id": "a", "transactionId": "t3", "totalAmount": 10}, lookups)
    as_object, _ = normalize_credit({"_id": "b", "transactionId": {"_id": "t3"}, "totalAmount": 10}, lookups)

    assert as_string.transaction_id == as_object.transaction_id == "t3"


def test_normalize_credit_paid_amount_comes_from_payment_history(lookups):
    """Test payment history is authoritative and a disagreeing amountPaid is flagged"""
    raw = {
        "_id": "cr",
        "transactionId": "t",
        "totalAmount": 1000,
        "amountPaid": 100,
        "status": "paid",
        "payments": [{"amount": 300}, {"amount": 200}, {"amount": -5}],
    }
    credit, warnings = normalize_credit(raw, lookups)

    assert credit.amount_paid == 500.0
    assert credit.balance_due == 500.0
    # Raw status is never trusted
    assert credit.status is CreditStatus.PARTIALLY_PAID
    assert len(credit.payments) == 2
    kinds = [w.kind for w in warnings]
    assert "paid_mismatch" in kinds
    assert "invalid_payment" in kinds


def test_normalize_credit_without_transaction_reference(lookups):
    """Test a credit with no transaction falls back to its own id"""
    credit, warnings = normalize_credit({"_id": "cr9", "totalAmount": 50}, lookups)

    assert credit.transaction_id == "cr9"
    assert credit.status is CreditStatus.PENDING
    assert "missing_transaction" in [w.kind for w in warnings]


def test_normalize_credits_batch(lookups, raw_credits):
    """Test the sample credit normalizes cleanly"""
    batch = normalize_credits(raw_credits, lookups)

    assert batch.warnings == ()
    credit = batch.records[0]
    assert credit.shop.name == "Downtown"
    assert credit.cashier.name == "Alice"
    assert credit.amount_paid == 400.0


@pytest.mark.parametrize(
    "fields",
    [
        {"paymentMethod": "CREDIT"},
        {"paymentMethod": "Credit"},
        {"paymentMethod": " credit "},
        {"status": "CREDIT"},
    ],
)
def test_credit_detection_ignores_case(fields):
    """Test credit sales are recognized however the source capitalizes the marker"""
    raw = {"_id": "x", "totalAmount": 1000, "amountPaid": 400, **fields}
    record, warnings = normalize_transaction(raw, LookupTables())

    assert record.is_credit_transaction is True
    assert record.payment_method is PaymentMethod.CREDIT
    assert record.amount_paid == 400
    assert "unknown_payment_method" not in [w.kind for w in warnings]


def test_records_without_ids_get_distinct_fallback_ids(lookups):
    """Test id-less records never share an id and each one is flagged"""
    raw = [
        {"transactionId": "t1", "totalAmount": 100, "shopId": "s1", "cashierId": "c1"},
        {"transactionId": "t2", "totalAmount": 200, "shopId": "s1", "cashierId": "c1"},
    ]

    batch = normalize_credits(raw, lookups)

    ids = [credit.credit_id for credit in batch.records]
    assert len(set(ids)) == 2
    assert "unknown" not in ids
    missing = [w for w in batch.warnings if w.kind == "missing_id"]
    assert [w.record_id for w in missing] == ids


def test_transactions_without_ids_get_distinct_fallback_ids(lookups, raw_transactions):
    anonymous = [{k: v for k, v in raw.items() if k != "_id"} for raw in raw_transactions[:2]]

    batch = normalize_transactions(anonymous, lookups)

    assert batch.records[0].transaction_id != batch.records[1].transaction_id
    assert [w.kind for w in batch.warnings] == ["missing_id", "missing_id"]


def test_normalize_expenses(lookups):
    """Test expenses resolve their shop and date, and bad amounts count as zero"""
    batch = normalize_expenses(
        [
            {"_id": "e1", "shop": "s1", "amount": "150.5", "category": "Rent", "date": "2024-03-05"},
            {"_id": "e2", "shop": {"_id": "s2"}, "amount": "oops", "createdAt": "2024-03-06T08:00:00Z"},
            {"amount": 10},
            "junk",
        ],
        lookups,
    )

    rent, broken, anonymous = batch.records
    assert rent.shop.name == "Downtown"
    assert rent.amount == 150.5
    assert rent.category == "Rent"
    assert rent.incurred_at == datetime(2024, 3, 5, tzinfo=timezone.utc)
    assert broken.shop.name == "Uptown"
    assert broken.amount == 0.0
    assert broken.category == "Uncategorized"
    assert anonymous.expense_id == "unidentified-expense-2"
    kinds = [w.kind for w in batch.warnings]
    assert {"missing_id", "unknown_shop", "missing_date", "malformed_record"} <= set(kinds)
