"""SQLAlchemy ORM models for timelines, payment records and the credit ledger"""

import uuid
from datetime import datetime, timezone
from sqlalchemy import (
    Column,
    String,
    BigInteger,
    Boolean,
    DateTime,
    Date,
    Integer,
    ForeignKey,
    Text,
    JSON,
    UniqueConstraint,
)
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import declarative_base, relationship
from sqlalchemy.sql import func

Base = declarative_base()


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Student(Base):
    """Santri account holding the denormalized credit balance"""

    __tablename__ = "student"

    id = Column(Text, primary_key=True)
    name = Column(Text, nullable=False)
    guardian_name = Column(Text, nullable=True)
    credit_balance = Column(BigInteger, nullable=False, default=0)
    # Bumped on every balance write; guards against concurrent double-spend
    credit_version = Column(Integer, nullable=False, default=0)
    last_credit_update = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())


class PaymentTimeline(Base):
    """Payment schedule; exactly one row has status "active" """

    __tablename__ = "payment_timeline"

    id = Column(Text, primary_key=True)
    name = Column(Text, nullable=False)
    mode = Column(String(16), nullable=False, default="real_time")
    simulation_date = Column(Date, nullable=True)
    status = Column(String(16), nullable=False, default="active", index=True)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())

    periods = relationship(
        "TimelinePeriod",
        back_populates="timeline",
        cascade="all, delete-orphan",
        order_by="TimelinePeriod.number",
    )
    payments = relationship("StudentPayment", back_populates="timeline", cascade="all, delete-orphan")


class TimelinePeriod(Base):
    """Billable interval within a timeline"""

    __tablename__ = "timeline_period"
    __table_args__ = (UniqueConstraint("timeline_id", "key", name="uq_timeline_period_key"),)

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    timeline_id = Column(Text, ForeignKey("payment_timeline.id", ondelete="CASCADE"), nullable=False)
    key = Column(Text, nullable=False)
    number = Column(Integer, nullable=False)
    label = Column(Text, nullable=False)
    amount = Column(BigInteger, nullable=False)
    due_date = Column(Date, nullable=True)
    active = Column(Boolean, nullable=False, default=True)

    timeline = relationship("PaymentTimeline", back_populates="periods")


class StudentPayment(Base):
    """Payment record for one (timeline, period, student)"""

    __tablename__ = "student_payment"
    __table_args__ = (
        UniqueConstraint("timeline_id", "period_key", "student_id", name="uq_student_payment"),
    )

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    timeline_id = Column(Text, ForeignKey("payment_timeline.id", ondelete="CASCADE"), nullable=False)
    period_key = Column(Text, nullable=False)
    student_id = Column(Text, ForeignKey("student.id", ondelete="CASCADE"), nullable=False, index=True)
    status = Column(String(16), nullable=False, default="belum_bayar")
    amount = Column(BigInteger, nullable=False)
    actual_payment = Column(BigInteger, nullable=False, default=0)
    credit_used = Column(BigInteger, nullable=False, default=0)
    total_amount = Column(BigInteger, nullable=False, default=0)
    payment_date = Column(DateTime(timezone=True), nullable=True)
    payment_method = Column(String(16), nullable=True)
    payment_id = Column(Text, nullable=True, index=True)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())
    updated_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow, onupdate=_utcnow)

    timeline = relationship("PaymentTimeline", back_populates="payments")


class CreditTransactionLog(Base):
    """Append-only audit trail of credit balance changes"""

    __tablename__ = "credit_transaction"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    student_id = Column(Text, ForeignKey("student.id", ondelete="CASCADE"), nullable=False, index=True)
    amount = Column(BigInteger, nullable=False)
    type = Column(String(16), nullable=False)
    description = Column(Text, nullable=False, default="")
    related_payment_id = Column(Text, nullable=True)
    periods_affected = Column(JSON, nullable=False, default=list)
    balance_before = Column(BigInteger, nullable=False)
    balance_after = Column(BigInteger, nullable=False)
    details = Column(JSON, nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow)


class DigitalPaymentSession(Base):
    """Pending or settled Midtrans payment"""

    __tablename__ = "digital_payment_session"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    order_id = Column(Text, nullable=False, unique=True)
    student_id = Column(Text, ForeignKey("student.id", ondelete="CASCADE"), nullable=False, index=True)
    timeline_id = Column(Text, nullable=True)
    period_key = Column(Text, nullable=True)
    amount = Column(BigInteger, nullable=False)
    payment_type = Column(String(16), nullable=False)  # "timeline" or "custom"
    description = Column(Text, nullable=False, default="")
    status = Column(String(24), nullable=False, default="pending_payment")
    transaction_id = Column(Text, nullable=True)
    processing_error = Column(Text, nullable=True)
    expires_at = Column(DateTime(timezone=True), nullable=False)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())
    updated_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow, onupdate=_utcnow)
