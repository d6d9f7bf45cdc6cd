"""Revenue reconciliation - the single place recognized/outstanding revenue is computed"""

from datetime import datetime
from typing import Dict, Iterable, List, Optional

from pos_analytics.domain.credit import classify_status, is_overdue
from pos_analytics.domain.models import SETTLEMENT_EPSILON, CreditRecord, ReconciledTransaction, TransactionRecord
from pos_analytics.utils.date_utils import utc_now

DEFAULT_EPSILON = SETTLEMENT_EPSILON


def collection_rate(recognized_revenue: float, total_amount: float) -> float:
    """recognized / total as a percentage, clamped to [0, 100]"""
    if total_amount <= 0:
        return 0.0
    return max(0.0, min(100.0, recognized_revenue / total_amount * 100))


def resolve_amount_paid(txn: TransactionRecord, credit: Optional[CreditRecord] = None) -> float:
    """
    Pick the authoritative paid amount for a credit sale.

    Priority: the credit record's payment ledger, the transaction's own
    amountPaid, its cached recognizedRevenue mirror, then 0.
    """
    if credit is not None:
        paid = credit.amount_paid
    elif txn.amount_paid is not None:
        paid = txn.amount_paid
    elif txn.recognized_revenue is not None:
        paid = txn.recognized_revenue
    else:
        paid = 0.0
    return max(0.0, paid)


def reconcile_transaction(
    txn: TransactionRecord,
    credit: Optional[CreditRecord] = None,
    as_of: Optional[datetime] = None,
    epsilon: float = DEFAULT_EPSILON,
) -> ReconciledTransaction:
    """
    Compute recognized vs outstanding revenue for one transaction.

    Requirements:
    - Non-credit sales recognize the full amount immediately
    - Credit sales recognize what has been paid; the rest is outstanding
    - recognized + outstanding == total for every credit sale
    - A balance under `epsilon` counts as fully collected
    """
    total = txn.total_amount

    if not txn.is_credit_transaction:
        return ReconciledTransaction(
            record=txn,
            amount_paid=total,
            recognized_revenue=total,
            outstanding_revenue=0.0,
            collection_rate=collection_rate(total, total),
        )

    amount_paid = resolve_amount_paid(txn, credit)
    outstanding = max(0.0, total - amount_paid)
    if outstanding < epsilon:
        outstanding = 0.0
        recognized = total
    else:
        recognized = amount_paid

    due_date = credit.due_date if credit is not None and credit.due_date else txn.due_date

    return ReconciledTransaction(
        record=txn,
        amount_paid=amount_paid,
        recognized_revenue=recognized,
        outstanding_revenue=outstanding,
        collection_rate=collection_rate(recognized, total),
        credit_status=classify_status(amount_paid, outstanding),
        is_overdue=is_overdue(outstanding, due_date, as_of),
    )


def index_credits(credits: Iterable[CreditRecord]) -> Dict[str, CreditRecord]:
    """Map transaction id -> credit (expects already de-duplicated credits)"""
    return {credit.transaction_id: credit for credit in credits}


def reconcile_transactions(
    transactions: Iterable[TransactionRecord],
    credits: Iterable[CreditRecord] = (),
    as_of: Optional[datetime] = None,
    epsilon: float = DEFAULT_EPSILON,
) -> List[ReconciledTransaction]:
    """Reconcile every transaction against its credit record, if it has one"""
    as_of = as_of or utc_now()
    by_transaction = index_credits(credits)
    return [
        reconcile_transaction(
            txn,
            by_transaction.get(txn.transaction_id) if txn.is_credit_transaction else None,
            as_of=as_of,
            epsilon=epsilon,
        )
        for txn in transactions
    ]
