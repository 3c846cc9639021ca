"""Integration tests for payment processing against the test database"""

import pytest
from unittest.mock import patch
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from bisyaroh_gateway.domain.exceptions import (
    ConcurrencyError,
    NotFoundError,
    PersistenceError,
    ValidationError,
)
from bisyaroh_gateway.domain.models import LUNAS, Timeline
from bisyaroh_gateway.infrastructure.cache import TTLCache, payments_key
from bisyaroh_gateway.infrastructure.database.models import StudentPayment, CreditTransactionLog
from bisyaroh_gateway.infrastructure.database.repositories import CreditLedger, PaymentRepository, TimelineRepository
from bisyaroh_gateway.services.payment_processor import PaymentProcessor
from bisyaroh_gateway.services.payment_queries import PaymentQueryService


def _paid_keys(db: Session, student_id: str) -> list[str]:
    rows = (
        db.query(StudentPayment)
        .filter(StudentPayment.student_id == student_id, StudentPayment.status == LUNAS)
        .order_by(StudentPayment.period_key)
        .all()
    )
    return [r.period_key for r in rows]


def test_overpayment_marks_period_and_keeps_credit(db: Session, timeline: Timeline, student_id: str):
    outcome = PaymentProcessor(db).process_payment_with_credit(student_id, timeline.id, 50000)

    assert outcome.summary.affected_periods == ["period_1"]
    assert outcome.summary.final_credit_balance == 10000
    assert CreditLedger(db).get_balance(student_id) == 10000

    record = PaymentRepository(db).get_payment(timeline.id, "period_1", student_id)
    assert record.status == LUNAS
    assert record.actual_payment == 40000
    assert record.credit_used == 0
    assert record.payment_method == "manual"
    assert record.payment_id == outcome.payment_id


def test_carried_credit_pays_next_period(db: Session, timeline: Timeline, student_id: str):
    processor = PaymentProcessor(db)
    processor.process_payment_with_credit(student_id, timeline.id, 50000)
    outcome = processor.process_payment_with_credit(student_id, timeline.id, 30000)

    assert outcome.summary.affected_periods == ["period_2"]
    assert outcome.allocations[0].credit_used == 10000
    assert outcome.allocations[0].new_payment == 30000
    assert CreditLedger(db).get_balance(student_id) == 0
    assert _paid_keys(db, student_id) == ["period_1", "period_2"]


def test_one_ledger_entry_per_payment(db: Session, timeline: Timeline, student_id: str):
    processor = PaymentProcessor(db)
    first = processor.process_payment_with_credit(student_id, timeline.id, 50000)
    second = processor.process_payment_with_credit(student_id, timeline.id, 30000)

    history = CreditLedger(db).get_history(student_id)

    assert len(history) == 2
    latest, earliest = history
    assert (earliest.type, earliest.amount) == ("earned", 10000)
    assert (earliest.balance_before, earliest.balance_after) == (0, 10000)
    assert earliest.related_payment_id == first.payment_id
    assert (latest.type, latest.amount) == ("usage", -10000)
    assert latest.periods_affected == ["period_2"]
    assert latest.related_payment_id == second.payment_id


def test_paid_periods_are_never_paid_twice(db: Session, timeline: Timeline, student_id: str):
    processor = PaymentProcessor(db)
    processor.process_payment_with_credit(student_id, timeline.id, 40000, periods=["period_1"])
    outcome = processor.process_payment_with_credit(student_id, timeline.id, 40000, periods=["period_1"])

    # period_1 is lunas already, so the money waits as credit
    assert outcome.allocations == []
    assert CreditLedger(db).get_balance(student_id) == 40000


def test_payment_with_nothing_to_allocate_is_credited(db: Session, timeline: Timeline, student_id: str):
    outcome = PaymentProcessor(db).process_payment_with_credit(student_id, timeline.id, 30000)

    assert outcome.allocations == []
    assert outcome.summary.final_credit_balance == 30000
    assert CreditLedger(db).get_balance(student_id) == 30000
    assert db.query(CreditTransactionLog).count() == 1


def test_inactive_periods_are_skipped(db: Session, timeline_factory, student_id: str):
    timeline = TimelineRepository(db).create_active_timeline(timeline_factory(inactive=(1,)))
    db.commit()

    outcome = PaymentProcessor(db).process_payment_with_credit(student_id, timeline.id, 40000)

    assert outcome.summary.affected_periods == ["period_2"]


def test_failed_balance_write_leaves_records_untouched(db: Session, timeline: Timeline, student_id: str):
    """Scenario E: no period is marked lunas without the balance update"""
    with patch.object(CreditLedger, "set_balance", side_effect=SQLAlchemyError("write failed")):
        with pytest.raises(PersistenceError):
            PaymentProcessor(db).process_payment_with_credit(student_id, timeline.id, 90000)

    assert _paid_keys(db, student_id) == []
    assert db.query(StudentPayment).count() == 0
    assert db.query(CreditTransactionLog).count() == 0
    assert CreditLedger(db).get_balance(student_id) == 0


def test_failed_ledger_append_rolls_back_balance(db: Session, timeline: Timeline, student_id: str):
    with patch.object(CreditLedger, "append_transaction", side_effect=SQLAlchemyError("log unavailable")):
        with pytest.raises(PersistenceError):
            PaymentProcessor(db).process_payment_with_credit(student_id, timeline.id, 50000)

    assert _paid_keys(db, student_id) == []
    assert CreditLedger(db).get_balance(student_id) == 0


def test_stale_balance_version_is_retried(db: Session, timeline: Timeline, student_id: str):
    real_get_account = CreditLedger.get_account
    calls = []

    def stale_once(self, sid):
        balance, version = real_get_account(self, sid)
        calls.append(version)
        # First read pretends another device already wrote a newer balance
        return (balance, version - 1) if len(calls) == 1 else (balance, version)

    with patch.object(CreditLedger, "get_account", stale_once):
        outcome = PaymentProcessor(db).process_payment_with_credit(student_id, timeline.id, 40000)

    assert len(calls) == 2
    assert outcome.summary.affected_periods == ["period_1"]
    assert _paid_keys(db, student_id) == ["period_1"]


def test_conflict_surfaces_after_retries_exhausted(db: Session, timeline: Timeline, student_id: str):
    real_get_account = CreditLedger.get_account

    def always_stale(self, sid):
        balance, version = real_get_account(self, sid)
        return balance, version + 100

    with patch.object(CreditLedger, "get_account", always_stale):
        with pytest.raises(ConcurrencyError):
            PaymentProcessor(db, max_retries=2).process_payment_with_credit(student_id, timeline.id, 40000)

    assert _paid_keys(db, student_id) == []
    assert CreditLedger(db).get_balance(student_id) == 0


def test_set_balance_clamps_at_zero(db: Session, student_id: str):
    ledger = CreditLedger(db)

    assert ledger.set_balance(student_id, -5000) == 0
    db.commit()
    assert ledger.get_balance(student_id) == 0


@pytest.mark.parametrize("amount", [0, -1000])
def test_non_positive_amount_rejected(db: Session, timeline: Timeline, student_id: str, amount: int):
    with pytest.raises(ValidationError):
        PaymentProcessor(db).process_payment_with_credit(student_id, timeline.id, amount)


def test_unknown_student(db: Session, timeline: Timeline):
    with pytest.raises(NotFoundError):
        PaymentProcessor(db).process_payment_with_credit("santri_missing", timeline.id, 40000)


def test_unknown_timeline(db: Session, student_id: str):
    with pytest.raises(NotFoundError):
        PaymentProcessor(db).process_payment_with_credit(student_id, "tl_missing", 40000)


def test_unknown_period_key(db: Session, timeline: Timeline, student_id: str):
    with pytest.raises(NotFoundError):
        PaymentProcessor(db).process_payment_with_credit(student_id, timeline.id, 40000, periods=["period_99"])


def test_add_to_credit(db: Session, student_id: str):
    before, after = PaymentProcessor(db).add_to_credit(student_id, 25000, related_payment_id="TPQ-ORDER-1")

    assert (before, after) == (0, 25000)
    entry = CreditLedger(db).get_history(student_id)[0]
    assert (entry.type, entry.amount, entry.related_payment_id) == ("earned", 25000, "TPQ-ORDER-1")


def test_payment_invalidates_cached_records(db: Session, timeline: Timeline, student_id: str):
    cache = TTLCache(ttl_seconds=300)
    queries = PaymentQueryService(db, cache)

    _, before = queries.student_payments(student_id)
    assert cache.get(payments_key(timeline.id, student_id)) is not None
    assert before[0].status != LUNAS

    PaymentProcessor(db, cache).process_payment_with_credit(student_id, timeline.id, 40000)

    assert cache.get(payments_key(timeline.id, student_id)) is None
    _, after = queries.student_payments(student_id)
    assert after[0].status == LUNAS


def test_derived_status_does_not_leak_into_cache(db: Session, timeline: Timeline, student_id: str):
    cache = TTLCache(ttl_seconds=300)
    queries = PaymentQueryService(db, cache)

    _, records = queries.student_payments(student_id)

    # Simulated now is 15 Feb: January and February are overdue
    assert [r.status for r in records] == ["terlambat", "terlambat", "belum_bayar", "belum_bayar"]
    assert all(r.status == "belum_bayar" for r in cache.get(payments_key(timeline.id, student_id)))


def test_zero_retries_means_single_attempt(db: Session, timeline: Timeline, student_id: str):
    real_get_account = CreditLedger.get_account
    calls = []

    def always_stale(self, sid):
        balance, version = real_get_account(self, sid)
        calls.append(version)
        return balance, version + 100

    processor = PaymentProcessor(db, max_retries=0)
    assert processor.max_retries == 0

    with patch.object(CreditLedger, "get_account", always_stale):
        with pytest.raises(ConcurrencyError):
            processor.process_payment_with_credit(student_id, timeline.id, 40000)

    assert len(calls) == 1


def test_archived_timeline_rejected(db: Session, timeline: Timeline, timeline_factory, student_id: str):
    TimelineRepository(db).create_active_timeline(timeline_factory(timeline_id="tl_2026"))
    db.commit()

    with pytest.raises(NotFoundError):
        PaymentProcessor(db).process_payment_with_credit(student_id, timeline.id, 40000)

    assert _paid_keys(db, student_id) == []
