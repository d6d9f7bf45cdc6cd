"""Ingestion boundary - coerce raw POS records into canonical domain records"""

import math
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Mapping, Optional, Tuple

from pos_analytics.domain.credit import classify_status
from pos_analytics.domain.models import (
    CreditRecord,
    DataQualityWarning,
    ExpenseRecord,
    LineItem,
    NormalizedBatch,
    PaymentEvent,
    PaymentMethod,
    PaymentSplit,
    Reference,
    TransactionRecord,
    settled_balance,
)
from pos_analytics.utils.date_utils import parse_timestamp

UNKNOWN_SHOP = "Unknown Shop"
UNKNOWN_CASHIER = "Unknown Cashier"
UNKNOWN_PRODUCT = "Unknown Product"
WALK_IN_CUSTOMER = "Walk-in Customer"

_MISSING_MARKERS = ("", "null", "undefined")

_METHOD_ALIASES = {
    "cash": PaymentMethod.CASH,
    "bank_mpesa": PaymentMethod.BANK_MPESA,
    "mpesa": PaymentMethod.BANK_MPESA,
    "bank": PaymentMethod.BANK_MPESA,
    "card": PaymentMethod.BANK_MPESA,
    "cash_bank_mpesa": PaymentMethod.CASH_BANK_MPESA,
    "credit": PaymentMethod.CREDIT,
}


@dataclass(frozen=True)
class LookupTables:
    """id -> display name tables for the dimension records"""

    shops: Mapping[str, str] = field(default_factory=dict)
    cashiers: Mapping[str, str] = field(default_factory=dict)
    products: Mapping[str, str] = field(default_factory=dict)
    product_costs: Mapping[str, float] = field(default_factory=dict)


def safe_number(value: Any, fallback: float = 0.0) -> float:
    """
    Coerce anything to a finite float.

    None, empty/"null"/"undefined" strings, NaN, infinities and values that
    cannot be parsed all become `fallback`. Booleans count as 1/0.
    """
    if value is None:
        return fallback
    if isinstance(value, bool):
        return 1.0 if value else 0.0
    if isinstance(value, str):
        text = value.strip()
        if text.lower() in _MISSING_MARKERS:
            return fallback
        value = text
    try:
        number = float(value)
    except (TypeError, ValueError):
        return fallback
    return number if math.isfinite(number) else fallback


def _optional_number(value: Any) -> Optional[float]:
    """Like safe_number but keeps "absent" distinguishable from zero"""
    if value is None:
        return None
    if isinstance(value, str) and value.strip().lower() in _MISSING_MARKERS:
        return None
    number = safe_number(value, fallback=math.nan)
    return None if math.isnan(number) else number


_ID_KEYS = ("_id", "id", "transactionNumber")


def _record_id(raw: Mapping[str, Any], keys: Tuple[str, ...] = _ID_KEYS) -> Optional[str]:
    for key in keys:
        if raw.get(key) not in (None, ""):
            return str(raw[key])
    return None


def _identify(
    raw: Mapping[str, Any],
    fallback_id: str,
    warnings: List[DataQualityWarning],
    keys: Tuple[str, ...] = _ID_KEYS,
) -> str:
    """Record id, or `fallback_id` plus a missing_id warning so id-less records never collide"""
    record_id = _record_id(raw, keys)
    if record_id is None:
        warnings.append(DataQualityWarning("missing_id", fallback_id, "record has no identifier"))
        return fallback_id
    return record_id


def _extract_id(value: Any) -> Optional[str]:
    """Pull an identifier out of a bare id or an embedded object"""
    if value is None or value == "":
        return None
    if isinstance(value, Mapping):
        for key in ("_id", "id", "transactionId"):
            if value.get(key) not in (None, ""):
                return str(value[key])
        return None
    return str(value)


def _embedded_name(value: Any) -> Optional[str]:
    if isinstance(value, Mapping) and value.get("name"):
        return str(value["name"])
    return None


def resolve_reference(
    raw_ref: Any,
    flat_name: Any,
    table: Mapping[str, str],
    sentinel: str,
) -> Tuple[Reference, bool]:
    """
    Resolve a foreign key to an id + display name.

    Name priority: lookup table, embedded object name, flat name field,
    sentinel. Returns (reference, resolved) where resolved is False when the
    sentinel had to be used.
    """
    ref_id = _extract_id(raw_ref)
    name = None
    if ref_id is not None and ref_id in table:
        name = table[ref_id]
    if name is None:
        name = _embedded_name(raw_ref)
    if name is None and flat_name:
        name = str(flat_name)

    if name is None:
        return Reference(id=ref_id or "unknown", name=sentinel), False
    return Reference(id=ref_id or name, name=name), True


def build_lookups(
    shops: Iterable[Mapping[str, Any]] = (),
    cashiers: Iterable[Mapping[str, Any]] = (),
    products: Iterable[Mapping[str, Any]] = (),
) -> LookupTables:
    """Build lookup tables from dimension records ({_id|id, name, ...})"""

    def _table(records: Iterable[Mapping[str, Any]]) -> Dict[str, str]:
        table: Dict[str, str] = {}
        for record in records:
            record_id = _extract_id(record)
            if record_id is not None and record.get("name"):
                table[record_id] = str(record["name"])
        return table

    products = list(products)
    product_costs = {}
    for product in products:
        product_id = _extract_id(product)
        if product_id is not None:
            product_costs[product_id] = safe_number(product.get("buyingPrice"))

    return LookupTables(
        shops=_table(shops),
        cashiers=_table(cashiers),
        products=_table(products),
        product_costs=product_costs,
    )


def _lowered(value: Any) -> str:
    return str(value or "").strip().lower()


def _is_credit(raw: Mapping[str, Any]) -> bool:
    return (
        _lowered(raw.get("paymentMethod")) == "credit"
        or raw.get("isCreditTransaction") is True
        or _lowered(raw.get("status")) == "credit"
    )


def _payment_method(raw: Mapping[str, Any], is_credit: bool) -> Tuple[PaymentMethod, bool]:
    if is_credit:
        return PaymentMethod.CREDIT, True
    method = _METHOD_ALIASES.get(_lowered(raw.get("paymentMethod")))
    if method is None:
        return PaymentMethod.CASH, False
    return method, True


def _line_items(
    raw_items: Any,
    lookups: LookupTables,
    record_id: str,
    warnings: List[DataQualityWarning],
) -> Tuple[LineItem, ...]:
    if not isinstance(raw_items, (list, tuple)):
        return ()

    items = []
    for raw_item in raw_items:
        if not isinstance(raw_item, Mapping):
            continue

        product_ref, resolved = resolve_reference(
            raw_item.get("productId") or raw_item.get("product"),
            raw_item.get("productName") or raw_item.get("name"),
            lookups.products,
            UNKNOWN_PRODUCT,
        )
        if not resolved:
            warnings.append(DataQualityWarning("unknown_product", record_id, "line item without product"))

        # Unit cost priority: item cost, buying price, product catalogue
        unit_cost = safe_number(raw_item.get("cost")) or safe_number(raw_item.get("unitCost"))
        if unit_cost <= 0:
            unit_cost = safe_number(raw_item.get("buyingPrice"))
        if unit_cost <= 0:
            unit_cost = lookups.product_costs.get(product_ref.id, 0.0)

        items.append(
            LineItem(
                product=product_ref,
                quantity=safe_number(raw_item.get("quantity"), fallback=1.0),
                unit_price=safe_number(raw_item.get("price")) or safe_number(raw_item.get("unitPrice")),
                unit_cost=unit_cost,
            )
        )
    return tuple(items)


def _payment_split(raw: Any) -> Optional[PaymentSplit]:
    if not isinstance(raw, Mapping):
        return None
    return PaymentSplit(cash=safe_number(raw.get("cash")), bank_mpesa=safe_number(raw.get("bank_mpesa")))


def normalize_transaction(
    raw: Mapping[str, Any],
    lookups: LookupTables,
    fallback_id: str = "unidentified-txn",
) -> Tuple[TransactionRecord, List[DataQualityWarning]]:
    """
    Normalize one raw transaction.

    Requirements:
    - Every numeric field becomes a finite float (0 fallback)
    - shop/cashier/product references resolve to Reference values
    - Cost falls back to the sum of line item costs
    - A record without an id is keyed by `fallback_id`
    - Never raises on bad data; problems come back as warnings
    """
    warnings: List[DataQualityWarning] = []
    record_id = _identify(raw, fallback_id, warnings)

    shop, shop_ok = resolve_reference(
        raw.get("shopId") or raw.get("shop"),
        raw.get("shopName"),
        lookups.shops,
        UNKNOWN_SHOP,
    )
    if not shop_ok:
        warnings.append(DataQualityWarning("unknown_shop", record_id, "shop could not be resolved"))

    cashier, cashier_ok = resolve_reference(
        raw.get("cashierId") or raw.get("cashier"),
        raw.get("cashierName"),
        lookups.cashiers,
        UNKNOWN_CASHIER,
    )
    if not cashier_ok:
        warnings.append(DataQualityWarning("unknown_cashier", record_id, "cashier could not be resolved"))

    total_amount = max(0.0, safe_number(raw.get("totalAmount")))
    is_credit_payment = raw.get("isCreditPayment") is True
    is_credit = _is_credit(raw) and not is_credit_payment

    method, method_ok = _payment_method(raw, is_credit)
    if not method_ok:
        warnings.append(
            DataQualityWarning("unknown_payment_method", record_id, f"payment method {raw.get('paymentMethod')!r}")
        )

    items = _line_items(raw.get("items"), lookups, record_id, warnings)

    # Credit payments carry no cost of goods
    if is_credit_payment:
        cost = 0.0
    else:
        cost = safe_number(raw.get("cost"))
        if cost <= 0:
            cost = safe_number(raw.get("totalCost"))
        if cost <= 0:
            cost = sum(item.cost for item in items)

    sold_at = parse_timestamp(raw.get("saleDate")) or parse_timestamp(raw.get("createdAt"))
    if sold_at is None:
        warnings.append(DataQualityWarning("missing_date", record_id, "no saleDate or createdAt"))

    record = TransactionRecord(
        transaction_id=record_id,
        shop=shop,
        cashier=cashier,
        customer_name=str(raw.get("customerName") or WALK_IN_CUSTOMER),
        total_amount=total_amount,
        payment_method=method,
        items=items,
        cost=cost,
        sold_at=sold_at,
        is_credit_transaction=is_credit,
        is_credit_payment=is_credit_payment,
        amount_paid=_optional_number(raw.get("amountPaid")) if is_credit else None,
        recognized_revenue=_optional_number(raw.get("recognizedRevenue")) if is_credit else None,
        outstanding_revenue=_optional_number(raw.get("outstandingRevenue")) if is_credit else None,
        credit_status=raw.get("creditStatus") if is_credit else None,
        due_date=parse_timestamp(raw.get("dueDate")) if is_credit else None,
        payment_split=_payment_split(raw.get("paymentSplit")),
    )
    return record, warnings


def normalize_transactions(
    raw_records: Iterable[Mapping[str, Any]],
    lookups: Optional[LookupTables] = None,
) -> NormalizedBatch[TransactionRecord]:
    """Normalize a batch of raw transactions, collecting warnings"""
    lookups = lookups or LookupTables()
    records = []
    warnings: List[DataQualityWarning] = []

    for index, raw in enumerate(raw_records or ()):
        fallback_id = f"unidentified-txn-{index}"
        if not isinstance(raw, Mapping):
            warnings.append(DataQualityWarning("malformed_record", fallback_id, f"not a mapping: {type(raw).__name__}"))
            continue
        record, record_warnings = normalize_transaction(raw, lookups, fallback_id)
        records.append(record)
        warnings.extend(record_warnings)

    return NormalizedBatch(records=tuple(records), warnings=tuple(warnings))


def _payment_events(
    raw_payments: Any,
    record_id: str,
    warnings: List[DataQualityWarning],
) -> Tuple[PaymentEvent, ...]:
    if not isinstance(raw_payments, (list, tuple)):
        return ()

    events = []
    for raw in raw_payments:
        if not isinstance(raw, Mapping):
            continue
        amount = safe_number(raw.get("amount"))
        if amount <= 0:
            warnings.append(DataQualityWarning("invalid_payment", record_id, f"payment amount {raw.get('amount')!r}"))
            continue
        events.append(
            PaymentEvent(
                amount=amount,
                paid_at=parse_timestamp(raw.get("paymentDate")) or parse_timestamp(raw.get("createdAt")),
                method=str(raw.get("paymentMethod") or "unknown"),
                recorded_by=str(raw.get("recordedBy") or raw.get("cashierName") or "Unknown"),
            )
        )
    return tuple(events)


def normalize_credit(
    raw: Mapping[str, Any],
    lookups: LookupTables,
    fallback_id: str = "unidentified-credit",
) -> Tuple[CreditRecord, List[DataQualityWarning]]:
    """
    Normalize one raw credit record.

    The transaction reference may arrive as a bare id or an embedded object;
    both collapse to a single id. When a payment history is present its sum
    is the paid amount. The stored status is always recomputed.
    """
    warnings: List[DataQualityWarning] = []
    credit_id = _identify(raw, fallback_id, warnings)

    transaction_id = _extract_id(raw.get("transactionId"))
    if transaction_id is None:
        warnings.append(DataQualityWarning("missing_transaction", credit_id, "credit has no transaction reference"))
        transaction_id = credit_id

    shop, shop_ok = resolve_reference(
        raw.get("shopId") or raw.get("shop") or raw.get("creditShopId"),
        raw.get("shopName") or raw.get("creditShopName"),
        lookups.shops,
        UNKNOWN_SHOP,
    )
    if not shop_ok:
        warnings.append(DataQualityWarning("unknown_shop", credit_id, "shop could not be resolved"))

    cashier, cashier_ok = resolve_reference(
        raw.get("cashierId") or raw.get("cashier"),
        raw.get("cashierName"),
        lookups.cashiers,
        UNKNOWN_CASHIER,
    )
    if not cashier_ok:
        warnings.append(DataQualityWarning("unknown_cashier", credit_id, "cashier could not be resolved"))

    total_amount = max(0.0, safe_number(raw.get("totalAmount")))
    payments = _payment_events(raw.get("payments") or raw.get("paymentHistory"), credit_id, warnings)

    supplied_paid = max(0.0, safe_number(raw.get("amountPaid")))
    if payments:
        amount_paid = sum(event.amount for event in payments)
        if abs(amount_paid - supplied_paid) > 0.01:
            warnings.append(
                DataQualityWarning(
                    "paid_mismatch",
                    credit_id,
                    f"amountPaid {supplied_paid} disagrees with payment history {amount_paid}",
                )
            )
    else:
        amount_paid = supplied_paid

    balance_due = settled_balance(total_amount, amount_paid)
    credit = CreditRecord(
        credit_id=credit_id,
        transaction_id=transaction_id,
        shop=shop,
        cashier=cashier,
        customer_name=str(raw.get("customerName") or WALK_IN_CUSTOMER),
        total_amount=total_amount,
        amount_paid=amount_paid,
        status=classify_status(amount_paid, balance_due),
        due_date=parse_timestamp(raw.get("dueDate")),
        created_at=parse_timestamp(raw.get("createdAt")) or parse_timestamp(raw.get("saleDate")),
        payments=payments,
    )
    return credit, warnings


def normalize_credits(
    raw_records: Iterable[Mapping[str, Any]],
    lookups: Optional[LookupTables] = None,
) -> NormalizedBatch[CreditRecord]:
    """Normalize a batch of raw credit records (no deduplication)"""
    lookups = lookups or LookupTables()
    records = []
    warnings: List[DataQualityWarning] = []

    for index, raw in enumerate(raw_records or ()):
        fallback_id = f"unidentified-credit-{index}"
        if not isinstance(raw, Mapping):
            warnings.append(DataQualityWarning("malformed_record", fallback_id, f"not a mapping: {type(raw).__name__}"))
            continue
        credit, credit_warnings = normalize_credit(raw, lookups, fallback_id)
        records.append(credit)
        warnings.extend(credit_warnings)

    return NormalizedBatch(records=tuple(records), warnings=tuple(warnings))


def normalize_expense(
    raw: Mapping[str, Any],
    lookups: LookupTables,
    fallback_id: str = "unidentified-expense",
) -> Tuple[ExpenseRecord, List[DataQualityWarning]]:
    """Normalize one raw expense; negative or garbage amounts count as zero"""
    warnings: List[DataQualityWarning] = []
    expense_id = _identify(raw, fallback_id, warnings, keys=("_id", "id"))

    shop, shop_ok = resolve_reference(
        raw.get("shopId") or raw.get("shop"),
        raw.get("shopName"),
        lookups.shops,
        UNKNOWN_SHOP,
    )
    if not shop_ok:
        warnings.append(DataQualityWarning("unknown_shop", expense_id, "shop could not be resolved"))

    incurred_at = parse_timestamp(raw.get("date")) or parse_timestamp(raw.get("createdAt"))
    if incurred_at is None:
        warnings.append(DataQualityWarning("missing_date", expense_id, "no date or createdAt"))

    expense = ExpenseRecord(
        expense_id=expense_id,
        shop=shop,
        amount=max(0.0, safe_number(raw.get("amount"))),
        category=str(raw.get("category") or "Uncategorized"),
        description=str(raw.get("description") or ""),
        incurred_at=incurred_at,
    )
    return expense, warnings


def normalize_expenses(
    raw_records: Iterable[Mapping[str, Any]],
    lookups: Optional[LookupTables] = None,
) -> NormalizedBatch[ExpenseRecord]:
    """Normalize a batch of raw expenses, collecting warnings"""
    lookups = lookups or LookupTables()
    records = []
    warnings: List[DataQualityWarning] = []

    for index, raw in enumerate(raw_records or ()):
        fallback_id = f"unidentified-expense-{index}"
        if not isinstance(raw, Mapping):
            warnings.append(DataQualityWarning("malformed_record", fallback_id, f"not a mapping: {type(raw).__name__}"))
            continue
        expense, expense_warnings = normalize_expense(raw, lookups, fallback_id)
        records.append(expense)
        warnings.extend(expense_warnings)

    return NormalizedBatch(records=tuple(records), warnings=tuple(warnings))
