"""Student payment history, credit balance and admin overview endpoints"""

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from bisyaroh_gateway.api.v1.schemas import (
    StudentCreateRequest,
    StudentResponse,
    StudentPaymentsResponse,
    PaymentRecordSchema,
    PaymentSummarySchema,
    PaymentStatusResponse,
    PaymentStatusItem,
    CreditBalanceResponse,
    CreditHistoryResponse,
    CreditTransactionSchema,
)
from bisyaroh_gateway.api.dependencies import get_query_service
from bisyaroh_gateway.domain.exceptions import ValidationError
from bisyaroh_gateway.domain.models import PaymentSummary
from bisyaroh_gateway.domain.status import summarize_payments
from bisyaroh_gateway.infrastructure.database.session import get_db, atomic
from bisyaroh_gateway.infrastructure.database.repositories import StudentRepository, CreditLedger
from bisyaroh_gateway.services.payment_queries import PaymentQueryService

router = APIRouter()


def _summary_schema(summary: PaymentSummary) -> PaymentSummarySchema:
    return PaymentSummarySchema(
        total=summary.total,
        lunas=summary.lunas,
        belum_bayar=summary.belum_bayar,
        terlambat=summary.terlambat,
        total_amount=summary.total_amount,
        paid_amount=summary.paid_amount,
        unpaid_amount=summary.unpaid_amount,
        progress_percentage=summary.progress_percentage,
        last_payment_date=summary.last_payment_date,
    )


@router.post("/students", response_model=StudentResponse, status_code=201)
def create_student(request_body: StudentCreateRequest, db: Session = Depends(get_db)):
    repo = StudentRepository(db)
    with atomic(db):
        if repo.get_student(request_body.id) is not None:
            raise ValidationError(f"Student {request_body.id} already exists")
        student = repo.create_student(request_body.id, request_body.name, request_body.guardian_name)

    return StudentResponse(
        id=student.id,
        name=student.name,
        guardian_name=student.guardian_name,
        credit_balance=student.credit_balance or 0,
    )


@router.get("/students/{student_id}/payments", response_model=StudentPaymentsResponse)
def get_student_payments(
    student_id: str,
    db: Session = Depends(get_db),
    queries: PaymentQueryService = Depends(get_query_service),
):
    """
    Payment records for every active period of the active timeline.

    Statuses are derived at read time: overdue unpaid periods show as
    terlambat using the timeline's simulation date in manual mode.
    """
    timeline, records = queries.student_payments(student_id)

    payments = [
        PaymentRecordSchema(
            period_key=r.period_key,
            period_label=r.period_label,
            due_date=r.due_date,
            status=r.status,
            amount=r.amount,
            actual_payment=r.actual_payment,
            credit_used=r.credit_used,
            payment_date=r.payment_date,
            payment_method=r.payment_method,
            payment_id=r.payment_id,
        )
        for r in records
    ]

    return StudentPaymentsResponse(
        student_id=student_id,
        timeline_id=timeline.id,
        credit_balance=CreditLedger(db).get_balance(student_id),
        payments=payments,
        summary=_summary_schema(summarize_payments(records)),
    )


@router.get("/students/{student_id}/credit", response_model=CreditBalanceResponse)
def get_credit_balance(student_id: str, db: Session = Depends(get_db)):
    return CreditBalanceResponse(student_id=student_id, balance=CreditLedger(db).get_balance(student_id))


@router.get("/students/{student_id}/credit/history", response_model=CreditHistoryResponse)
def get_credit_history(
    student_id: str,
    limit: int = Query(20, ge=1, le=100),
    db: Session = Depends(get_db),
):
    ledger = CreditLedger(db)
    # Raises NotFoundError for unknown students
    ledger.get_balance(student_id)

    transactions = [
        CreditTransactionSchema(
            amount=t.amount,
            type=t.type,
            description=t.description,
            related_payment_id=t.related_payment_id,
            periods_affected=t.periods_affected or [],
            balance_before=t.balance_before,
            balance_after=t.balance_after,
            created_at=t.created_at,
        )
        for t in ledger.get_history(student_id, limit=limit)
    ]
    return CreditHistoryResponse(student_id=student_id, transactions=transactions)


@router.get("/admin/payment-status", response_model=PaymentStatusResponse)
def get_payment_status(queries: PaymentQueryService = Depends(get_query_service)):
    """Payment summary of every student on the active timeline, sorted by name"""
    timeline = queries.get_active_timeline()
    students = [
        PaymentStatusItem(
            student_id=student.id,
            name=student.name,
            guardian_name=student.guardian_name,
            status_label=label,
            summary=_summary_schema(summary),
        )
        for student, summary, label in queries.all_students_status()
    ]
    return PaymentStatusResponse(timeline_id=timeline.id, students=students)
