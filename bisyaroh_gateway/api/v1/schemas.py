"""Pydantic schemas for API request/response validation"""

from pydantic import BaseModel, Field
from datetime import date, datetime
from decimal import Decimal
from typing import List, Literal, Optional


class PeriodSchema(BaseModel):
    """Single billable period of a timeline"""

    key: Optional[str] = Field(None, description="Must be period_<number>; defaults to it")
    number: int = Field(..., ge=1)
    label: str = Field(..., min_length=1)
    amount: int = Field(..., ge=0, description="Amount in Rupiah")
    due_date: Optional[date] = None
    active: bool = True


class TimelineCreateRequest(BaseModel):
    """Request body for POST /v1/timelines"""

    id: str = Field(..., min_length=1)
    name: str = Field(..., min_length=1)
    mode: Literal["real_time", "manual"] = "real_time"
    simulation_date: Optional[date] = None
    periods: List[PeriodSchema] = Field(..., min_length=1)


class TimelineResponse(BaseModel):
    """Active timeline with its periods in order"""

    id: str
    name: str
    mode: str
    simulation_date: Optional[date] = None
    periods: List[PeriodSchema]


class SimulationDateRequest(BaseModel):
    """Request body for PUT /v1/timelines/active/simulation-date"""

    simulation_date: Optional[date] = None


class TimelineMaintenanceResponse(BaseModel):
    """Response for timeline reset/delete"""

    timeline_id: str
    removed_payments: int = 0


class StudentCreateRequest(BaseModel):
    """Request body for POST /v1/students"""

    id: str = Field(..., min_length=1, description="Student identifier")
    name: str = Field(..., min_length=1)
    guardian_name: Optional[str] = None


class StudentResponse(BaseModel):
    id: str
    name: str
    guardian_name: Optional[str] = None
    credit_balance: int


class PaymentRecordSchema(BaseModel):
    """Payment state of one period, status derived at read time"""

    period_key: str
    period_label: Optional[str] = None
    due_date: Optional[date] = None
    status: str
    amount: int
    actual_payment: int
    credit_used: int
    payment_date: Optional[datetime] = None
    payment_method: Optional[str] = None
    payment_id: Optional[str] = None


class PaymentSummarySchema(BaseModel):
    total: int
    lunas: int
    belum_bayar: int
    terlambat: int
    total_amount: int
    paid_amount: int
    unpaid_amount: int
    progress_percentage: int
    last_payment_date: Optional[datetime] = None


class StudentPaymentsResponse(BaseModel):
    """Response for GET /v1/students/{student_id}/payments"""

    student_id: str
    timeline_id: str
    credit_balance: int
    payments: List[PaymentRecordSchema]
    summary: PaymentSummarySchema


class PaymentStatusItem(BaseModel):
    """One row of the admin overview"""

    student_id: str
    name: str
    guardian_name: Optional[str] = None
    status_label: str
    summary: PaymentSummarySchema


class PaymentStatusResponse(BaseModel):
    """Response for GET /v1/admin/payment-status"""

    timeline_id: str
    students: List[PaymentStatusItem]


class CreditBalanceResponse(BaseModel):
    student_id: str
    balance: int


class CreditTransactionSchema(BaseModel):
    amount: int
    type: str
    description: str
    related_payment_id: Optional[str] = None
    periods_affected: List[str]
    balance_before: int
    balance_after: int
    created_at: datetime


class CreditHistoryResponse(BaseModel):
    """Response for GET /v1/students/{student_id}/credit/history"""

    student_id: str
    transactions: List[CreditTransactionSchema]


class PaymentRequest(BaseModel):
    """Request body for POST /v1/payments and /v1/payments/preview"""

    student_id: str = Field(..., min_length=1)
    payment_amount: int = Field(..., gt=0, description="Amount in Rupiah")
    timeline_id: Optional[str] = Field(None, description="Defaults to the active timeline")
    period_keys: Optional[List[str]] = None
    payment_method: Literal["manual", "digital", "hardware"] = "manual"


class PeriodAllocationSchema(BaseModel):
    period_key: str
    period_label: str
    status: str
    total_amount: int
    credit_used: int
    new_payment: int
    remaining_after: int


class AllocationSummarySchema(BaseModel):
    payment_amount: int
    credit_used: int
    payment_used: int
    new_credit_generated: int
    final_credit_balance: int
    periods_completed: int
    affected_periods: List[str]


class CreditPreviewSchema(BaseModel):
    period_key: str
    amount: int
    credit_applied: int
    effective_amount: int


class AllocationPreviewResponse(BaseModel):
    """Response for POST /v1/payments/preview - nothing is committed"""

    student_id: str
    timeline_id: str
    credit_balance: int
    allocations: List[PeriodAllocationSchema]
    summary: AllocationSummarySchema
    credit_preview: List[CreditPreviewSchema]


class PaymentResponse(BaseModel):
    """Response for POST /v1/payments"""

    payment_id: str
    student_id: str
    timeline_id: str
    allocations: List[PeriodAllocationSchema]
    summary: AllocationSummarySchema


class DigitalPaymentRequest(BaseModel):
    """Request body for POST /v1/digital-payments"""

    student_id: str = Field(..., min_length=1)
    amount: int = Field(..., gt=0)
    payment_type: Literal["timeline", "custom"] = "timeline"
    timeline_id: Optional[str] = None
    period_key: Optional[str] = None
    description: str = "Pembayaran TPQ"


class DigitalPaymentResponse(BaseModel):
    order_id: str
    student_id: str
    amount: int
    payment_type: str
    status: str
    expires_at: datetime


class DigitalNotificationRequest(BaseModel):
    """Verified Midtrans notification; gross_amount arrives as "50000.00" """

    order_id: str = Field(..., min_length=1)
    transaction_status: str
    gross_amount: Decimal = Field(..., ge=0)
    transaction_id: Optional[str] = None
    fraud_status: Optional[str] = None


class DigitalNotificationResponse(BaseModel):
    order_id: str
    session_status: str
    already_processed: bool
    payment_id: Optional[str] = None
    periods_completed: int = 0
    credit_added: int = 0


class ExpireSessionsResponse(BaseModel):
    expired: int
