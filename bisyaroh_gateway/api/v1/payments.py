"""POST /v1/payments - allocate a payment plus carried credit across unpaid periods"""

import time
from fastapi import APIRouter, Depends, Request
from sqlalchemy.orm import Session

from bisyaroh_gateway.api.v1.schemas import (
    PaymentRequest,
    PaymentResponse,
    AllocationPreviewResponse,
    PeriodAllocationSchema,
    AllocationSummarySchema,
    CreditPreviewSchema,
)
from bisyaroh_gateway.api.dependencies import get_payment_processor, get_query_service, get_request_id
from bisyaroh_gateway.domain.allocation import calculate_allocation, preview_credit_reduction
from bisyaroh_gateway.domain.exceptions import NotFoundError, ValidationError
from bisyaroh_gateway.domain.models import AllocationSummary, PeriodAllocation
from bisyaroh_gateway.infrastructure.database.session import get_db
from bisyaroh_gateway.infrastructure.database.repositories import CreditLedger, TimelineRepository
from bisyaroh_gateway.infrastructure.observability.logging import log_payment
from bisyaroh_gateway.services.payment_processor import PaymentProcessor
from bisyaroh_gateway.services.payment_queries import PaymentQueryService

router = APIRouter()


def _allocation_schemas(allocations: list[PeriodAllocation]) -> list[PeriodAllocationSchema]:
    return [
        PeriodAllocationSchema(
            period_key=a.period_key,
            period_label=a.period_label,
            status=a.status,
            total_amount=a.total_amount,
            credit_used=a.credit_used,
            new_payment=a.new_payment,
            remaining_after=a.remaining_after,
        )
        for a in allocations
    ]


def _summary_schema(summary: AllocationSummary) -> AllocationSummarySchema:
    return AllocationSummarySchema(
        payment_amount=summary.payment_amount,
        credit_used=summary.credit_used,
        payment_used=summary.payment_used,
        new_credit_generated=summary.new_credit_generated,
        final_credit_balance=summary.final_credit_balance,
        periods_completed=summary.periods_completed,
        affected_periods=summary.affected_periods,
    )


def _resolve_timeline_id(request_body: PaymentRequest, queries: PaymentQueryService) -> str:
    return request_body.timeline_id or queries.get_active_timeline().id


@router.post("/payments/preview", response_model=AllocationPreviewResponse)
def preview_payment(
    request_body: PaymentRequest,
    db: Session = Depends(get_db),
    queries: PaymentQueryService = Depends(get_query_service),
    processor: PaymentProcessor = Depends(get_payment_processor),
):
    """Show how a payment would be allocated; nothing is written"""
    timeline_id = _resolve_timeline_id(request_body, queries)
    timeline = TimelineRepository(db).get_timeline(timeline_id, active_only=True)
    if timeline is None:
        raise NotFoundError(f"Timeline {timeline_id} not found")

    balance = CreditLedger(db).get_balance(request_body.student_id)
    outstanding = processor.outstanding_periods(timeline, request_body.student_id, request_body.period_keys)

    result = calculate_allocation(request_body.payment_amount, outstanding, balance)
    if not result.success:
        raise ValidationError(f"Payment could not be allocated: {result.error}")

    return AllocationPreviewResponse(
        student_id=request_body.student_id,
        timeline_id=timeline_id,
        credit_balance=balance,
        allocations=_allocation_schemas(result.allocations),
        summary=_summary_schema(result.summary),
        credit_preview=[
            CreditPreviewSchema(
                period_key=p.period_key,
                amount=p.amount,
                credit_applied=p.credit_applied,
                effective_amount=p.effective_amount,
            )
            for p in preview_credit_reduction(outstanding, balance)
        ],
    )


@router.post("/payments", response_model=PaymentResponse)
def create_payment(
    request_body: PaymentRequest,
    request: Request,
    queries: PaymentQueryService = Depends(get_query_service),
    processor: PaymentProcessor = Depends(get_payment_processor),
):
    """
    Apply a payment to the student's timeline.

    Flow:
    1. Read the student's credit balance and unpaid periods
    2. Allocate payment + credit oldest period first, full periods only
    3. Commit period records, new balance and ledger entry in one transaction
    4. Leftover money stays as credit for future periods
    """
    start_time = time.time()
    request_id = get_request_id(request)

    outcome = processor.process_payment_with_credit(
        request_body.student_id,
        _resolve_timeline_id(request_body, queries),
        request_body.payment_amount,
        periods=request_body.period_keys,
        payment_method=request_body.payment_method,
    )

    duration_ms = (time.time() - start_time) * 1000
    log_payment(
        request_id,
        outcome.student_id,
        outcome.payment_id,
        request_body.payment_method,
        outcome.summary.periods_completed,
        outcome.summary.final_credit_balance,
        duration_ms,
    )

    return PaymentResponse(
        payment_id=outcome.payment_id,
        student_id=outcome.student_id,
        timeline_id=outcome.timeline_id,
        allocations=_allocation_schemas(outcome.allocations),
        summary=_summary_schema(outcome.summary),
    )
