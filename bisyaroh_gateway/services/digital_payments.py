"""Midtrans digital payments: sessions and settlement notifications"""

import logging
import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Optional, Union

from sqlalchemy.orm import Session

from bisyaroh_gateway.config import settings
from bisyaroh_gateway.domain.exceptions import DomainException, NotFoundError, ValidationError
from bisyaroh_gateway.domain.models import LUNAS, PaymentOutcome
from bisyaroh_gateway.infrastructure.cache import TTLCache
from bisyaroh_gateway.infrastructure.database.models import DigitalPaymentSession
from bisyaroh_gateway.infrastructure.database.repositories import (
    DigitalSessionRepository,
    PaymentRepository,
    StudentRepository,
    TimelineRepository,
)
from bisyaroh_gateway.infrastructure.database.session import atomic
from bisyaroh_gateway.infrastructure.observability.metrics import digital_notification_counter
from bisyaroh_gateway.services.payment_processor import PaymentProcessor
from bisyaroh_gateway.utils.date_utils import utcnow

PAYMENT_TYPE_TIMELINE = "timeline"
PAYMENT_TYPE_CUSTOM = "custom"

# Midtrans transaction_status values
SETTLED_STATUSES = {"settlement", "capture"}
FAILED_STATUSES = {"deny", "cancel", "expire", "failure"}

# Sessions in these states are never processed again
FINAL_SESSION_STATUSES = {"completed", "failed"}


class SessionAlreadyProcessed(Exception):
    """Another delivery of the same notification finished the session first"""


@dataclass
class NotificationOutcome:
    """What a Midtrans notification did to its session"""

    order_id: str
    session_status: str
    already_processed: bool = False
    payment: Optional[PaymentOutcome] = None
    credit_added: int = 0


class DigitalPaymentService:
    """
    Digital payment lifecycle.

    A session is created when the guardian starts a payment. The verified
    Midtrans notification then either applies the settled amount through the
    allocation engine (timeline payments) or tops up the credit balance
    (custom payments). The session is marked completed in the same
    transaction as the payment, so a redelivered notification is a no-op.
    """

    def __init__(self, db: Session, cache: Optional[TTLCache] = None):
        self.db = db
        self.sessions = DigitalSessionRepository(db)
        self.processor = PaymentProcessor(db, cache)

    def create_session(
        self,
        student_id: str,
        amount: int,
        payment_type: str = PAYMENT_TYPE_TIMELINE,
        timeline_id: Optional[str] = None,
        period_key: Optional[str] = None,
        description: str = "Pembayaran TPQ",
    ) -> DigitalPaymentSession:
        errors = []
        if not student_id:
            errors.append("Student ID is required")
        if amount is None or amount < settings.digital_min_amount or amount > settings.digital_max_amount:
            errors.append(
                f"Amount must be between {settings.digital_min_amount} and {settings.digital_max_amount}"
            )
        if payment_type not in (PAYMENT_TYPE_TIMELINE, PAYMENT_TYPE_CUSTOM):
            errors.append(f"Unknown payment type: {payment_type}")
        if payment_type == PAYMENT_TYPE_TIMELINE:
            if not timeline_id:
                errors.append("Timeline ID is required for timeline payment")
            if not period_key:
                errors.append("Period key is required for timeline payment")
        if errors:
            raise ValidationError("; ".join(errors))

        with atomic(self.db):
            if StudentRepository(self.db).get_student(student_id) is None:
                raise NotFoundError(f"Student {student_id} not found")

            if payment_type == PAYMENT_TYPE_TIMELINE:
                timeline = TimelineRepository(self.db).get_timeline(timeline_id, active_only=True)
                if timeline is None:
                    raise NotFoundError(f"Timeline {timeline_id} not found")
                if period_key not in timeline.periods:
                    raise NotFoundError(f"Period {period_key} not found in timeline {timeline_id}")
                existing = PaymentRepository(self.db).get_payment(timeline_id, period_key, student_id)
                if existing is not None and existing.status == LUNAS:
                    raise ValidationError("Payment period already completed")

            session = self.sessions.create_session(
                order_id=f"TPQ-{uuid.uuid4().hex[:16].upper()}",
                student_id=student_id,
                timeline_id=timeline_id,
                period_key=period_key,
                amount=amount,
                payment_type=payment_type,
                description=description,
                status="pending_payment",
                expires_at=utcnow() + timedelta(hours=settings.digital_session_ttl_hours),
            )

        logging.info(
            "Digital payment session created",
            extra={"order_id": session.order_id, "student_id": student_id, "amount": amount},
        )
        return session

    def handle_notification(
        self,
        order_id: str,
        transaction_status: str,
        gross_amount: Union[int, Decimal],
        transaction_id: Optional[str] = None,
        fraud_status: Optional[str] = None,
    ) -> NotificationOutcome:
        """
        Apply a verified Midtrans notification.

        - settlement, or capture accepted by fraud screening: apply gross_amount
        - deny / cancel / expire / failure: mark the session failed
        - anything else (pending, challenge): leave the session untouched

        The session leaves its pending state in the same transaction as the
        payment, through a conditional update. A redelivery that read the
        session before the first delivery committed loses that update and
        its whole transaction is rolled back.
        """
        digital_notification_counter.labels(transaction_status=transaction_status).inc()

        session = self.sessions.get_by_order_id(order_id)
        if session is None:
            raise NotFoundError(f"Payment session {order_id} not found")

        if session.status in FINAL_SESSION_STATUSES:
            return self._already_processed(session)

        settled = transaction_status in SETTLED_STATUSES and (
            transaction_status == "settlement" or fraud_status in (None, "accept")
        )

        if transaction_status in FAILED_STATUSES:
            with atomic(self.db):
                claimed = self.sessions.transition(
                    order_id, "failed", FINAL_SESSION_STATUSES, transaction_id=transaction_id
                )
            if not claimed:
                return self._already_processed(session)
            return NotificationOutcome(order_id=order_id, session_status="failed")

        if not settled:
            return NotificationOutcome(order_id=order_id, session_status=session.status)

        if gross_amount != int(gross_amount):
            raise ValidationError(f"Settled amount must be whole Rupiah, got {gross_amount}")
        gross_amount = int(gross_amount)
        if gross_amount <= 0:
            raise ValidationError("Settled amount must be greater than zero")

        def mark_completed(payment_id: str) -> None:
            claimed = self.sessions.transition(
                order_id,
                "completed",
                FINAL_SESSION_STATUSES,
                transaction_id=transaction_id,
                processing_error=None,
            )
            if not claimed:
                raise SessionAlreadyProcessed(order_id)

        try:
            if session.payment_type == PAYMENT_TYPE_TIMELINE:
                # The engine starts at the earliest unpaid period, whichever one was picked
                payment = self.processor.process_payment_with_credit(
                    session.student_id,
                    session.timeline_id,
                    gross_amount,
                    payment_method="digital",
                    before_commit=mark_completed,
                )
                return NotificationOutcome(order_id=order_id, session_status="completed", payment=payment)

            self.processor.add_to_credit(
                session.student_id,
                gross_amount,
                description=session.description or "Pembayaran Digital",
                related_payment_id=order_id,
                before_commit=mark_completed,
            )
            return NotificationOutcome(order_id=order_id, session_status="completed", credit_added=gross_amount)

        except SessionAlreadyProcessed:
            return self._already_processed(session)

        except DomainException as e:
            with atomic(self.db):
                self.sessions.transition(
                    order_id, "processing_failed", FINAL_SESSION_STATUSES, processing_error=str(e)
                )
            logging.error(f"Digital payment processing failed: {e}", extra={"order_id": order_id})
            raise

    def _already_processed(self, session: DigitalPaymentSession) -> NotificationOutcome:
        # Reload; the stored status may have moved since the session was read
        self.db.refresh(session)
        logging.info(
            f"Payment {session.order_id} already processed with status {session.status}",
            extra={"order_id": session.order_id},
        )
        return NotificationOutcome(order_id=session.order_id, session_status=session.status, already_processed=True)

    def expire_sessions(self, now: Optional[datetime] = None) -> int:
        with atomic(self.db):
            expired = self.sessions.expire_pending(now or utcnow())
        if expired:
            logging.info(f"Expired {expired} digital payment sessions")
        return expired
