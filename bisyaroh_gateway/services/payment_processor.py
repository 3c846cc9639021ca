"""Payment orchestration: allocate, then commit records, balance and ledger entry atomically"""

import logging
import uuid
from typing import Callable, List, Optional, Sequence, Tuple, TypeVar

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from bisyaroh_gateway.config import settings
from bisyaroh_gateway.domain.allocation import calculate_allocation
from bisyaroh_gateway.domain.exceptions import (
    ConcurrencyError,
    NotFoundError,
    PersistenceError,
    ValidationError,
)
from bisyaroh_gateway.domain.models import (
    CREDIT_EARNED,
    CREDIT_USAGE,
    LUNAS,
    AllocationSummary,
    CreditTransaction,
    OutstandingPeriod,
    PaymentOutcome,
    Timeline,
)
from bisyaroh_gateway.infrastructure.cache import TTLCache, payments_key
from bisyaroh_gateway.infrastructure.database.repositories import (
    CreditLedger,
    PaymentRepository,
    TimelineRepository,
)
from bisyaroh_gateway.infrastructure.database.session import atomic
from bisyaroh_gateway.infrastructure.observability.metrics import (
    concurrency_conflict_counter,
    payment_counter,
    persistence_failure_counter,
    record_payment,
)
from bisyaroh_gateway.utils.date_utils import utcnow

T = TypeVar("T")

# Called with the payment id inside the transaction, right before commit
BeforeCommit = Callable[[str], None]


def format_rupiah(amount: int) -> str:
    return f"Rp {amount:,}".replace(",", ".")


def build_credit_transaction(
    student_id: str,
    payment_id: str,
    balance_before: int,
    summary: AllocationSummary,
) -> CreditTransaction:
    """Ledger entry for one allocation; amount is the net balance change"""
    delta = summary.final_credit_balance - balance_before
    if delta < 0:
        tx_type = CREDIT_USAGE
        description = f"Credit digunakan untuk {summary.periods_completed} periode"
    else:
        tx_type = CREDIT_EARNED
        description = f"Credit dari pembayaran {format_rupiah(summary.payment_amount)}"

    return CreditTransaction(
        student_id=student_id,
        amount=delta,
        type=tx_type,
        balance_before=balance_before,
        balance_after=summary.final_credit_balance,
        description=description,
        related_payment_id=payment_id,
        periods_affected=list(summary.affected_periods),
        details={
            "payment_amount": summary.payment_amount,
            "credit_used": summary.credit_used,
            "new_credit_generated": summary.new_credit_generated,
            "periods_completed": summary.periods_completed,
        },
    )


class PaymentProcessor:
    """
    Applies payments to a student's timeline.

    Every call is one unit of work: period records, the credit balance and
    the ledger entry are committed together or not at all. The balance write
    is conditional on the version read at the start, so two devices paying
    for the same student cannot both spend the same credit; the loser is
    retried from a fresh read.
    """

    def __init__(self, db: Session, cache: Optional[TTLCache] = None, max_retries: Optional[int] = None):
        self.db = db
        self.cache = cache
        self.max_retries = settings.allocation_max_retries if max_retries is None else max_retries

    def outstanding_periods(
        self,
        timeline: Timeline,
        student_id: str,
        period_keys: Optional[Sequence[str]] = None,
    ) -> List[OutstandingPeriod]:
        """
        Active periods the student has not paid, in period order.

        period_keys narrows the set; amounts always come from the timeline.
        """
        selected = None
        if period_keys is not None:
            selected = set(period_keys)
            unknown = selected - set(timeline.periods)
            if unknown:
                raise NotFoundError(f"Periods not found in timeline {timeline.id}: {sorted(unknown)}")

        records = PaymentRepository(self.db).list_student_payments(timeline, student_id)
        outstanding = []
        for record in records:
            if record.status == LUNAS:
                continue
            if selected is not None and record.period_key not in selected:
                continue
            period = timeline.periods[record.period_key]
            outstanding.append(
                OutstandingPeriod(
                    period_key=period.key,
                    amount=period.amount,
                    label=period.label,
                    status=record.status,
                )
            )
        return outstanding

    def process_payment_with_credit(
        self,
        student_id: str,
        timeline_id: str,
        payment_amount: int,
        periods: Optional[Sequence[str]] = None,
        payment_method: str = "manual",
        before_commit: Optional[BeforeCommit] = None,
    ) -> PaymentOutcome:
        """
        Allocate a payment plus the student's credit and commit the result.

        Args:
            periods: Optional period keys to restrict allocation to
            before_commit: Extra write joined to the same transaction

        Raises:
            ValidationError: Bad amount or ids, or allocation rejected
            NotFoundError: Timeline, period or student missing
            ConcurrencyError: Balance kept changing across all retries
            PersistenceError: Store failure; nothing was written
        """
        if not student_id:
            raise ValidationError("Student ID is required")
        if not timeline_id:
            raise ValidationError("Timeline ID is required")
        if payment_amount is None or payment_amount <= 0:
            raise ValidationError("Payment amount must be greater than zero")

        try:
            outcome = self._with_retries(
                student_id,
                lambda: self._commit_allocation(
                    student_id, timeline_id, payment_amount, periods, payment_method, before_commit
                ),
            )
        except (ConcurrencyError, PersistenceError):
            payment_counter.labels(method=payment_method, outcome="failed").inc()
            raise
        except ValidationError as e:
            payment_counter.labels(method=payment_method, outcome="rejected").inc()
            logging.warning(f"Payment rejected: {e}", extra={"student_id": student_id})
            raise

        self._invalidate(timeline_id, student_id)
        record_payment(
            payment_method,
            outcome.summary.periods_completed,
            outcome.summary.credit_used,
            outcome.summary.new_credit_generated,
        )
        return outcome

    def add_to_credit(
        self,
        student_id: str,
        amount: int,
        description: str = "Pembayaran Digital",
        related_payment_id: Optional[str] = None,
        before_commit: Optional[BeforeCommit] = None,
    ) -> Tuple[int, int]:
        """
        Top up a student's credit without touching any period.

        Returns:
            (balance_before, balance_after)
        """
        if amount is None or amount <= 0:
            raise ValidationError("Credit amount must be greater than zero")

        payment_id = related_payment_id or f"credit_{uuid.uuid4().hex}"

        def commit() -> Tuple[int, int]:
            ledger = CreditLedger(self.db)
            with atomic(self.db):
                balance_before, version = ledger.get_account(student_id)
                balance_after = ledger.set_balance(student_id, balance_before + amount, expected_version=version)
                ledger.append_transaction(
                    CreditTransaction(
                        student_id=student_id,
                        amount=amount,
                        type=CREDIT_EARNED,
                        balance_before=balance_before,
                        balance_after=balance_after,
                        description=description,
                        related_payment_id=payment_id,
                    )
                )
                if before_commit is not None:
                    before_commit(payment_id)
            return balance_before, balance_after

        result = self._with_retries(student_id, lambda: self._guard_persistence(student_id, commit))
        credit_generated_amount = result[1] - result[0]
        record_payment("custom", 0, 0, credit_generated_amount)
        return result

    def _commit_allocation(
        self,
        student_id: str,
        timeline_id: str,
        payment_amount: int,
        periods: Optional[Sequence[str]],
        payment_method: str,
        before_commit: Optional[BeforeCommit],
    ) -> PaymentOutcome:
        def commit() -> PaymentOutcome:
            payments = PaymentRepository(self.db)
            ledger = CreditLedger(self.db)
            with atomic(self.db):
                timeline = TimelineRepository(self.db).get_timeline(timeline_id, active_only=True)
                if timeline is None:
                    raise NotFoundError(f"Timeline {timeline_id} not found")

                balance_before, version = ledger.get_account(student_id)
                outstanding = self.outstanding_periods(timeline, student_id, periods)

                result = calculate_allocation(payment_amount, outstanding, balance_before)
                if not result.success:
                    raise ValidationError(f"Payment could not be allocated: {result.error}")

                summary = result.summary
                payment_id = f"payment_{uuid.uuid4().hex}"
                paid_at = utcnow()

                for allocation in result.allocations:
                    payments.set_payment_status(
                        timeline_id,
                        allocation.period_key,
                        student_id,
                        status=LUNAS,
                        actual_payment=allocation.new_payment,
                        credit_used=allocation.credit_used,
                        total_amount=allocation.total_amount,
                        payment_date=paid_at,
                        payment_method=payment_method,
                        payment_id=payment_id,
                    )

                ledger.set_balance(student_id, summary.final_credit_balance, expected_version=version)
                ledger.append_transaction(
                    build_credit_transaction(student_id, payment_id, balance_before, summary)
                )
                if before_commit is not None:
                    before_commit(payment_id)

            return PaymentOutcome(
                payment_id=payment_id,
                student_id=student_id,
                timeline_id=timeline_id,
                allocations=result.allocations,
                summary=summary,
            )

        return self._guard_persistence(student_id, commit)

    def _guard_persistence(self, student_id: str, commit: Callable[[], T]) -> T:
        """Translate store failures into a single PersistenceError"""
        try:
            return commit()
        except SQLAlchemyError as e:
            persistence_failure_counter.inc()
            logging.error(f"Payment commit rolled back: {e}", extra={"student_id": student_id})
            raise PersistenceError("Payment could not be saved, please retry") from e

    def _with_retries(self, student_id: str, operation: Callable[[], T]) -> T:
        attempt = 0
        while True:
            try:
                return operation()
            except ConcurrencyError:
                attempt += 1
                concurrency_conflict_counter.inc()
                if attempt >= self.max_retries:
                    raise
                logging.warning(
                    "Credit balance changed during commit, retrying",
                    extra={"student_id": student_id, "attempt": attempt},
                )

    def _invalidate(self, timeline_id: str, student_id: str) -> None:
        if self.cache is not None:
            self.cache.invalidate(payments_key(timeline_id, student_id))
