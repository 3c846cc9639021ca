"""Payment status derivation and per-student roll-ups"""

from datetime import date
from typing import Iterable, List, Optional

from bisyaroh_gateway.domain.models import (
    BELUM_BAYAR,
    LUNAS,
    TERLAMBAT,
    PaymentRecord,
    PaymentSummary,
    Timeline,
)
from bisyaroh_gateway.utils.date_utils import reference_date


def derive_status(stored_status: str, due_date: Optional[date], now: date) -> str:
    """
    Status shown to users, recomputed on every read.

    - lunas is sticky once stored
    - unpaid and past due -> terlambat
    - unpaid otherwise (or no due date) -> belum_bayar
    """
    if stored_status == LUNAS:
        return LUNAS
    if due_date is not None and now > due_date:
        return TERLAMBAT
    return BELUM_BAYAR


def resolve_statuses(
    records: Iterable[PaymentRecord],
    timeline: Timeline,
    today: Optional[date] = None,
) -> List[PaymentRecord]:
    """Apply derive_status to stored records using the timeline's notion of now"""
    now = reference_date(timeline.mode, timeline.simulation_date, today)
    resolved = []
    for record in records:
        period = timeline.periods.get(record.period_key)
        due_date = period.due_date if period else record.due_date
        record.status = derive_status(record.status, due_date, now)
        resolved.append(record)
    return resolved


def summarize_payments(records: Iterable[PaymentRecord]) -> PaymentSummary:
    """Counts and amounts by status; expects statuses already derived"""
    records = list(records)
    total = len(records)
    lunas = sum(1 for r in records if r.status == LUNAS)

    total_amount = sum(r.amount for r in records)
    paid_amount = sum(r.amount for r in records if r.status == LUNAS)

    paid_dates = [r.payment_date for r in records if r.status == LUNAS and r.payment_date]

    return PaymentSummary(
        total=total,
        lunas=lunas,
        belum_bayar=sum(1 for r in records if r.status == BELUM_BAYAR),
        terlambat=sum(1 for r in records if r.status == TERLAMBAT),
        total_amount=total_amount,
        paid_amount=paid_amount,
        unpaid_amount=total_amount - paid_amount,
        # Half-up rounding
        progress_percentage=int(lunas * 100 / total + 0.5) if total else 0,
        last_payment_date=max(paid_dates) if paid_dates else None,
    )


def overall_status_label(summary: PaymentSummary) -> str:
    """Single label for admin listings"""
    if summary.progress_percentage == 100:
        return "Lunas Semua"
    if summary.belum_bayar > 0 and summary.terlambat > 0:
        return "Ada Tunggakan"
    if summary.belum_bayar > 0:
        return "Belum Bayar"
    if summary.terlambat > 0:
        return "Terlambat"
    return "Sebagian Lunas"
