"""Data access layer for timelines, payment records, students and the credit ledger"""

from datetime import date, datetime
from typing import List, Optional, Sequence, Tuple
from sqlalchemy.orm import Session
from bisyaroh_gateway.infrastructure.database.models import (
    Student,
    PaymentTimeline,
    TimelinePeriod,
    StudentPayment,
    CreditTransactionLog,
    DigitalPaymentSession,
)
from bisyaroh_gateway.domain.models import BELUM_BAYAR, Period, Timeline, PaymentRecord, CreditTransaction
from bisyaroh_gateway.domain.exceptions import ConcurrencyError, NotFoundError
from bisyaroh_gateway.utils.date_utils import utcnow


def _to_timeline(row: PaymentTimeline) -> Timeline:
    return Timeline(
        id=row.id,
        name=row.name,
        mode=row.mode,
        simulation_date=row.simulation_date,
        periods={
            p.key: Period(
                key=p.key,
                number=p.number,
                label=p.label,
                amount=p.amount,
                due_date=p.due_date,
                active=p.active,
            )
            for p in row.periods
        },
    )


def _to_record(row: StudentPayment, period: Optional[Period] = None) -> PaymentRecord:
    return PaymentRecord(
        timeline_id=row.timeline_id,
        period_key=row.period_key,
        student_id=row.student_id,
        status=row.status,
        amount=row.amount,
        actual_payment=row.actual_payment,
        credit_used=row.credit_used,
        total_amount=row.total_amount,
        payment_date=row.payment_date,
        payment_method=row.payment_method,
        payment_id=row.payment_id,
        period_label=period.label if period else None,
        due_date=period.due_date if period else None,
    )


class TimelineRepository:
    """Repository for the active payment timeline"""

    def __init__(self, db: Session):
        self.db = db

    def create_active_timeline(self, timeline: Timeline) -> Timeline:
        """Archive the current active timeline and persist a new one"""
        (
            self.db.query(PaymentTimeline)
            .filter(PaymentTimeline.status == "active")
            .update({"status": "archived"}, synchronize_session=False)
        )

        db_timeline = PaymentTimeline(
            id=timeline.id,
            name=timeline.name,
            mode=timeline.mode,
            simulation_date=timeline.simulation_date,
            status="active",
        )
        for period in timeline.ordered_periods():
            db_timeline.periods.append(
                TimelinePeriod(
                    key=period.key,
                    number=period.number,
                    label=period.label,
                    amount=period.amount,
                    due_date=period.due_date,
                    active=period.active,
                )
            )
        self.db.add(db_timeline)
        self.db.flush()
        return _to_timeline(db_timeline)

    def get_active_timeline(self) -> Optional[Timeline]:
        row = self._active_row()
        return _to_timeline(row) if row else None

    def get_timeline(self, timeline_id: str, active_only: bool = False) -> Optional[Timeline]:
        """Timeline by id; with active_only an archived timeline reads as missing"""
        row = self.db.get(PaymentTimeline, timeline_id)
        if row is None or (active_only and row.status != "active"):
            return None
        return _to_timeline(row)

    def update_simulation_date(self, simulation_date: Optional[date]) -> Timeline:
        row = self._require_active()
        row.simulation_date = simulation_date
        self.db.flush()
        return _to_timeline(row)

    def delete_active_timeline(self) -> str:
        """Delete the active timeline together with its payment records"""
        row = self._require_active()
        timeline_id = row.id
        self.db.delete(row)
        self.db.flush()
        return timeline_id

    def reset_payments(self, timeline_id: str) -> int:
        """Drop every payment record of a timeline; returns rows removed"""
        removed = (
            self.db.query(StudentPayment)
            .filter(StudentPayment.timeline_id == timeline_id)
            .delete(synchronize_session=False)
        )
        self.db.flush()
        return removed

    def _active_row(self) -> Optional[PaymentTimeline]:
        return (
            self.db.query(PaymentTimeline)
            .filter(PaymentTimeline.status == "active")
            .order_by(PaymentTimeline.created_at.desc())
            .first()
        )

    def _require_active(self) -> PaymentTimeline:
        row = self._active_row()
        if row is None:
            raise NotFoundError("Active timeline not found")
        return row


class PaymentRepository:
    """Repository for per-period payment records"""

    def __init__(self, db: Session):
        self.db = db

    def get_payment(self, timeline_id: str, period_key: str, student_id: str) -> Optional[PaymentRecord]:
        row = self._row(timeline_id, period_key, student_id)
        return _to_record(row) if row else None

    def list_student_payments(self, timeline: Timeline, student_id: str) -> List[PaymentRecord]:
        """
        Records for every active period, in period order.

        Periods without a stored record read as an implied unpaid record;
        nothing is written.
        """
        rows = {
            row.period_key: row
            for row in self.db.query(StudentPayment)
            .filter(
                StudentPayment.timeline_id == timeline.id,
                StudentPayment.student_id == student_id,
            )
            .all()
        }

        records = []
        for period in timeline.active_periods():
            row = rows.get(period.key)
            if row is not None:
                records.append(_to_record(row, period))
            else:
                records.append(
                    PaymentRecord(
                        timeline_id=timeline.id,
                        period_key=period.key,
                        student_id=student_id,
                        status=BELUM_BAYAR,
                        amount=period.amount,
                        period_label=period.label,
                        due_date=period.due_date,
                    )
                )
        return records

    def set_payment_status(
        self,
        timeline_id: str,
        period_key: str,
        student_id: str,
        status: str,
        actual_payment: int = 0,
        credit_used: int = 0,
        total_amount: int = 0,
        payment_date: Optional[datetime] = None,
        payment_method: Optional[str] = None,
        payment_id: Optional[str] = None,
    ) -> StudentPayment:
        """Update a payment record, creating it from the period when absent"""
        row = self._row(timeline_id, period_key, student_id)
        if row is None:
            period = (
                self.db.query(TimelinePeriod)
                .filter(TimelinePeriod.timeline_id == timeline_id, TimelinePeriod.key == period_key)
                .first()
            )
            if period is None:
                raise NotFoundError(f"Period {period_key} not found in timeline {timeline_id}")
            row = StudentPayment(
                timeline_id=timeline_id,
                period_key=period_key,
                student_id=student_id,
                amount=period.amount,
            )
            self.db.add(row)

        row.status = status
        row.actual_payment = actual_payment
        row.credit_used = credit_used
        row.total_amount = total_amount
        row.payment_date = payment_date
        row.payment_method = payment_method
        row.payment_id = payment_id
        self.db.flush()
        return row

    def _row(self, timeline_id: str, period_key: str, student_id: str) -> Optional[StudentPayment]:
        return (
            self.db.query(StudentPayment)
            .filter(
                StudentPayment.timeline_id == timeline_id,
                StudentPayment.period_key == period_key,
                StudentPayment.student_id == student_id,
            )
            .first()
        )


class StudentRepository:
    """Repository for santri accounts"""

    def __init__(self, db: Session):
        self.db = db

    def create_student(self, student_id: str, name: str, guardian_name: Optional[str] = None) -> Student:
        db_student = Student(id=student_id, name=name, guardian_name=guardian_name)
        self.db.add(db_student)
        self.db.flush()
        return db_student

    def get_student(self, student_id: str) -> Optional[Student]:
        return self.db.get(Student, student_id)

    def list_students(self) -> List[Student]:
        return self.db.query(Student).order_by(Student.name).all()


class CreditLedger:
    """
    Per-student credit balance plus its audit log.

    The balance column is the source of truth; the transaction log is never
    read back to compute it.
    """

    def __init__(self, db: Session):
        self.db = db

    def get_balance(self, student_id: str) -> int:
        balance, _ = self.get_account(student_id)
        return balance

    def get_account(self, student_id: str) -> Tuple[int, int]:
        """Current (balance, version) pair for a conditional write"""
        student = self.db.get(Student, student_id)
        if student is None:
            raise NotFoundError(f"Student {student_id} not found")
        # Refresh so the version reflects the latest committed write
        self.db.refresh(student)
        return student.credit_balance or 0, student.credit_version or 0

    def set_balance(self, student_id: str, new_balance: int, expected_version: Optional[int] = None) -> int:
        """
        Store a new balance, clamped at zero.

        With expected_version the write only lands if nobody else changed the
        balance since it was read.

        Raises:
            ConcurrencyError: Version moved on since get_account
            NotFoundError: Unknown student
        """
        query = self.db.query(Student).filter(Student.id == student_id)
        if expected_version is not None:
            query = query.filter(Student.credit_version == expected_version)

        clamped = max(0, new_balance)
        updated = query.update(
            {
                Student.credit_balance: clamped,
                Student.credit_version: Student.credit_version + 1,
                Student.last_credit_update: utcnow(),
            },
            synchronize_session=False,
        )
        if updated == 0:
            if self.db.get(Student, student_id) is None:
                raise NotFoundError(f"Student {student_id} not found")
            raise ConcurrencyError(f"Credit balance of {student_id} changed concurrently")
        return clamped

    def append_transaction(self, entry: CreditTransaction) -> CreditTransactionLog:
        db_entry = CreditTransactionLog(
            student_id=entry.student_id,
            amount=entry.amount,
            type=entry.type,
            description=entry.description,
            related_payment_id=entry.related_payment_id,
            periods_affected=list(entry.periods_affected),
            balance_before=entry.balance_before,
            balance_after=entry.balance_after,
            details=entry.details or None,
        )
        if entry.timestamp is not None:
            db_entry.created_at = entry.timestamp
        self.db.add(db_entry)
        self.db.flush()
        return db_entry

    def get_history(self, student_id: str, limit: int = 20) -> List[CreditTransactionLog]:
        """Most recent credit transactions first"""
        return (
            self.db.query(CreditTransactionLog)
            .filter(CreditTransactionLog.student_id == student_id)
            .order_by(CreditTransactionLog.created_at.desc())
            .limit(limit)
            .all()
        )


class DigitalSessionRepository:
    """Repository for Midtrans payment sessions"""

    def __init__(self, db: Session):
        self.db = db

    def create_session(self, **fields) -> DigitalPaymentSession:
        db_session = DigitalPaymentSession(**fields)
        self.db.add(db_session)
        self.db.flush()
        return db_session

    def get_by_order_id(self, order_id: str) -> Optional[DigitalPaymentSession]:
        return (
            self.db.query(DigitalPaymentSession)
            .filter(DigitalPaymentSession.order_id == order_id)
            .first()
        )

    def transition(self, order_id: str, status: str, final_statuses: Sequence[str], **fields) -> bool:
        """
        Move a session to status unless it already reached a final status.

        The check and the write are one conditional UPDATE, so of two
        deliveries racing on the same order only one gets True.
        """
        updated = (
            self.db.query(DigitalPaymentSession)
            .filter(
                DigitalPaymentSession.order_id == order_id,
                DigitalPaymentSession.status.notin_(list(final_statuses)),
            )
            .update({"status": status, "updated_at": utcnow(), **fields}, synchronize_session=False)
        )
        self.db.flush()
        return updated == 1

    def expire_pending(self, now: datetime) -> int:
        """Mark unpaid sessions past their expiry; returns sessions touched"""
        expired = (
            self.db.query(DigitalPaymentSession)
            .filter(
                DigitalPaymentSession.expires_at < now,
                DigitalPaymentSession.status.in_(["pending_payment", "processing"]),
            )
            .update({"status": "expired", "updated_at": now}, synchronize_session=False)
        )
        self.db.flush()
        return expired
