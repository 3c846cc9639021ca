"""Digital (Midtrans) payment session and notification endpoints"""

import time
from fastapi import APIRouter, Depends, Request

from bisyaroh_gateway.api.v1.schemas import (
    DigitalPaymentRequest,
    DigitalPaymentResponse,
    DigitalNotificationRequest,
    DigitalNotificationResponse,
    ExpireSessionsResponse,
)
from bisyaroh_gateway.api.dependencies import get_digital_payment_service, get_request_id
from bisyaroh_gateway.infrastructure.observability.logging import log_payment
from bisyaroh_gateway.services.digital_payments import DigitalPaymentService

router = APIRouter()


@router.post("/digital-payments", response_model=DigitalPaymentResponse, status_code=201)
def create_digital_payment(
    request_body: DigitalPaymentRequest,
    service: DigitalPaymentService = Depends(get_digital_payment_service),
):
    """Open a payment session the guardian completes in Midtrans Snap"""
    session = service.create_session(
        request_body.student_id,
        request_body.amount,
        payment_type=request_body.payment_type,
        timeline_id=request_body.timeline_id,
        period_key=request_body.period_key,
        description=request_body.description,
    )
    return DigitalPaymentResponse(
        order_id=session.order_id,
        student_id=session.student_id,
        amount=session.amount,
        payment_type=session.payment_type,
        status=session.status,
        expires_at=session.expires_at,
    )


@router.post("/digital-payments/notifications", response_model=DigitalNotificationResponse)
def handle_notification(
    request_body: DigitalNotificationRequest,
    request: Request,
    service: DigitalPaymentService = Depends(get_digital_payment_service),
):
    """
    Apply an already verified Midtrans notification.

    Redelivered notifications for completed or failed sessions are
    acknowledged without touching balances again.
    """
    start_time = time.time()

    outcome = service.handle_notification(
        request_body.order_id,
        request_body.transaction_status,
        request_body.gross_amount,
        transaction_id=request_body.transaction_id,
        fraud_status=request_body.fraud_status,
    )

    if outcome.payment is not None:
        log_payment(
            get_request_id(request),
            outcome.payment.student_id,
            outcome.payment.payment_id,
            "digital",
            outcome.payment.summary.periods_completed,
            outcome.payment.summary.final_credit_balance,
            (time.time() - start_time) * 1000,
        )

    return DigitalNotificationResponse(
        order_id=outcome.order_id,
        session_status=outcome.session_status,
        already_processed=outcome.already_processed,
        payment_id=outcome.payment.payment_id if outcome.payment else None,
        periods_completed=outcome.payment.summary.periods_completed if outcome.payment else 0,
        credit_added=outcome.credit_added,
    )


@router.post("/digital-payments/expire", response_model=ExpireSessionsResponse)
def expire_digital_payments(service: DigitalPaymentService = Depends(get_digital_payment_service)):
    """Mark unpaid sessions past their expiry; meant for a periodic job"""
    return ExpireSessionsResponse(expired=service.expire_sessions())
