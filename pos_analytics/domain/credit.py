"""Credit lifecycle - status classification, payment application and dedup"""

from dataclasses import replace
from datetime import datetime
from typing import Dict, Iterable, List, Optional, Tuple

from pos_analytics.domain.models import (
    OVERDUE,
    ClampEvent,
    CreditRecord,
    CreditStatus,
    CreditSummary,
    DataQualityWarning,
    NormalizedBatch,
    PaymentApplication,
    PaymentEvent,
    settled_balance,
)
from pos_analytics.utils.date_utils import utc_now

OPENING_BALANCE_METHOD = "opening_balance"


def classify_status(amount_paid: float, balance_due: float) -> CreditStatus:
    """
    Derive the stored lifecycle state from current amounts.

    pending -> partially_paid -> paid. Recomputed on every evaluation, no
    transition history is kept.
    """
    if balance_due <= 0:
        return CreditStatus.PAID
    if amount_paid > 0:
        return CreditStatus.PARTIALLY_PAID
    return CreditStatus.PENDING


def is_overdue(balance_due: float, due_date: Optional[datetime], as_of: Optional[datetime] = None) -> bool:
    """Time-dependent overlay: unpaid balance past its due date"""
    if balance_due <= 0 or due_date is None:
        return False
    return due_date < (as_of or utc_now())


def display_status(credit: CreditRecord, as_of: Optional[datetime] = None) -> str:
    """Status for display: the stored status, or "overdue" when the overlay applies"""
    if is_overdue(credit.balance_due, credit.due_date, as_of):
        return OVERDUE
    return credit.status.value


def _opening_event(credit: CreditRecord) -> Tuple[PaymentEvent, ...]:
    """Carry an untracked prior amount_paid as the first ledger entry"""
    if credit.payments or credit.amount_paid <= 0:
        return ()
    return (
        PaymentEvent(
            amount=credit.amount_paid,
            paid_at=credit.created_at,
            method=OPENING_BALANCE_METHOD,
            recorded_by="Unknown",
        ),
    )


def apply_payment(
    credit: CreditRecord,
    amount: float,
    paid_at: Optional[datetime] = None,
    method: str = "cash",
    recorded_by: str = "Unknown",
) -> PaymentApplication:
    """
    Apply one payment and return the updated credit.

    Requirements:
    - A payment can never drive balance_due negative: it is capped at the
      current balance and the cap is reported as a ClampEvent
    - The applied amount never exceeds the requested amount
    - Paid is terminal; payments against it apply nothing
    - Non-positive amounts apply nothing
    - The payment events always sum to amount_paid; a paid amount that
      predates the ledger becomes an opening_balance event
    - The input credit is left untouched
    """
    requested = amount if amount > 0 else 0.0
    balance = credit.balance_due
    applied = min(requested, balance)

    clamp = None
    if applied < requested:
        clamp = ClampEvent(credit_id=credit.credit_id, requested_amount=requested, applied_amount=applied)

    if applied <= 0:
        return PaymentApplication(credit=credit, requested_amount=requested, applied_amount=0.0, clamp=clamp)

    amount_paid = credit.amount_paid + applied
    event = PaymentEvent(
        amount=applied,
        paid_at=paid_at or utc_now(),
        method=method,
        recorded_by=recorded_by,
    )

    updated = replace(
        credit,
        amount_paid=amount_paid,
        status=classify_status(amount_paid, settled_balance(credit.total_amount, amount_paid)),
        payments=_opening_event(credit) + credit.payments + (event,),
    )
    return PaymentApplication(
        credit=updated,
        requested_amount=requested,
        applied_amount=applied,
        event=event,
        clamp=clamp,
    )


def _completeness(credit: CreditRecord) -> Tuple[int, float, int]:
    populated = sum(
        1
        for value in (credit.due_date, credit.created_at)
        if value is not None
    )
    return len(credit.payments), credit.amount_paid, populated


def dedupe_credits(credits: Iterable[CreditRecord]) -> NormalizedBatch[CreditRecord]:
    """
    Collapse credit records that point at the same transaction.

    The most complete record wins (more payment events, then more paid, then
    more populated dates); ties go to the record seen last. Amounts are never
    summed across duplicates. Output keeps first-seen order of transaction ids.
    """
    chosen: Dict[str, CreditRecord] = {}
    warnings: List[DataQualityWarning] = []

    for credit in credits:
        current = chosen.get(credit.transaction_id)
        if current is None:
            chosen[credit.transaction_id] = credit
            continue

        warnings.append(
            DataQualityWarning(
                "duplicate_credit",
                credit.transaction_id,
                f"credits {current.credit_id} and {credit.credit_id} reference the same transaction",
            )
        )
        if _completeness(credit) >= _completeness(current):
            chosen[credit.transaction_id] = credit

    return NormalizedBatch(records=tuple(chosen.values()), warnings=tuple(warnings))


def summarize_credits(credits: Iterable[CreditRecord], as_of: Optional[datetime] = None) -> CreditSummary:
    """Portfolio totals and status breakdown (overdue counted as its own bucket)"""
    as_of = as_of or utc_now()
    breakdown = {status.value: 0 for status in CreditStatus}
    breakdown[OVERDUE] = 0

    total_given = collected = outstanding = overdue_amount = 0.0
    count = active = overdue = 0

    for credit in credits:
        count += 1
        total_given += credit.total_amount
        collected += credit.amount_paid
        outstanding += credit.balance_due
        if credit.balance_due > 0:
            active += 1

        status = display_status(credit, as_of)
        breakdown[status] += 1
        if status == OVERDUE:
            overdue += 1
            overdue_amount += credit.balance_due

    return CreditSummary(
        total_credit_given=total_given,
        amount_collected=collected,
        outstanding_credit=outstanding,
        credit_count=count,
        active_count=active,
        overdue_count=overdue,
        overdue_credit=overdue_amount,
        status_breakdown=breakdown,
    )
