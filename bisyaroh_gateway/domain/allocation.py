"""Payment allocation engine - spreads one payment plus carried credit over unpaid periods"""

import logging
import re
from typing import Iterable, List

from bisyaroh_gateway.domain.exceptions import ValidationError
from bisyaroh_gateway.domain.models import (
    LUNAS,
    AllocationResult,
    AllocationSummary,
    CreditPreview,
    OutstandingPeriod,
    PeriodAllocation,
)

_PERIOD_NUMBER = re.compile(r"(\d+)$")


def period_key_for(number: int) -> str:
    """Key of the period with the given number, e.g. 12 -> period_12"""
    return f"period_{number}"


def period_number(period_key: str) -> int:
    """Numeric suffix of a period key, e.g. "period_12" -> 12"""
    match = _PERIOD_NUMBER.search(period_key or "")
    if not match:
        raise ValidationError(f"Period key has no numeric suffix: {period_key!r}")
    return int(match.group(1))


def _unpaid_in_order(periods: Iterable[OutstandingPeriod]) -> List[OutstandingPeriod]:
    return sorted(
        (p for p in periods if p.status != LUNAS),
        key=lambda p: period_number(p.period_key),
    )


def calculate_allocation(
    payment_amount: int,
    outstanding_periods: List[OutstandingPeriod],
    credit_balance: int = 0,
) -> AllocationResult:
    """
    Allocate a payment plus existing credit across outstanding periods.

    Rules:
    - Payment and credit form a single pool
    - Periods are paid in ascending period number, never skipping one
    - A period is either paid in full or left untouched
    - Credit is consumed before new money within each period
    - Whatever is left becomes the new credit balance

    Example:
        periods [P1=40000], payment 20000, credit 25000
        P1: credit_used=25000, new_payment=15000
        final_credit_balance = 45000 - 40000 = 5000

    Returns:
        AllocationResult; success=False with an error message instead of raising
    """
    try:
        if payment_amount < 0:
            raise ValidationError("Payment amount cannot be negative")
        if credit_balance < 0:
            raise ValidationError("Credit balance cannot be negative")

        remaining = payment_amount + credit_balance
        credit_left = credit_balance
        allocations: List[PeriodAllocation] = []

        for period in _unpaid_in_order(outstanding_periods):
            if period.amount < 0:
                raise ValidationError(f"Period {period.period_key} has a negative amount")

            # Stop at the first period the pool cannot cover
            if remaining < period.amount:
                break

            credit_applied = min(credit_left, period.amount)
            allocations.append(
                PeriodAllocation(
                    period_key=period.period_key,
                    period_label=period.label or f"Periode {period_number(period.period_key)}",
                    status=LUNAS,
                    total_amount=period.amount,
                    credit_used=credit_applied,
                    new_payment=period.amount - credit_applied,
                    remaining_after=0,
                )
            )
            remaining -= period.amount
            credit_left -= credit_applied

        summary = AllocationSummary(
            payment_amount=payment_amount,
            credit_used=credit_balance - credit_left,
            payment_used=sum(a.new_payment for a in allocations),
            new_credit_generated=max(0, remaining - credit_balance),
            final_credit_balance=remaining,
            periods_completed=len(allocations),
            affected_periods=[a.period_key for a in allocations],
        )
        return AllocationResult(success=True, allocations=allocations, summary=summary)

    except Exception as e:
        logging.warning(f"Payment allocation failed: {e}", extra={"step": "allocation"})
        return AllocationResult(success=False, error=str(e))


def preview_credit_reduction(
    periods: List[OutstandingPeriod],
    credit_balance: int,
) -> List[CreditPreview]:
    """
    Show how the current credit balance would reduce each unpaid period.

    Unlike calculate_allocation this spreads credit partially: the first
    unpaid periods absorb as much credit as they can, the rest keep their
    full amount. Nothing is committed.
    """
    credit_left = max(0, credit_balance)
    previews = []
    for period in _unpaid_in_order(periods):
        applied = min(credit_left, period.amount)
        credit_left -= applied
        previews.append(
            CreditPreview(
                period_key=period.period_key,
                amount=period.amount,
                credit_applied=applied,
                effective_amount=period.amount - applied,
            )
        )
    return previews
