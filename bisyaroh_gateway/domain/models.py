"""Domain models - pure Python dataclasses representing business entities"""

from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Any, Dict, List, Optional

# Payment statuses
LUNAS = "lunas"
BELUM_BAYAR = "belum_bayar"
TERLAMBAT = "terlambat"

# Timeline modes
MODE_REAL_TIME = "real_time"
MODE_MANUAL = "manual"

# Credit transaction types
CREDIT_USAGE = "usage"
CREDIT_EARNED = "earned"


@dataclass(frozen=True)
class Period:
    """One billable interval within a timeline"""

    key: str
    number: int
    label: str
    amount: int
    due_date: Optional[date] = None
    active: bool = True


@dataclass
class Timeline:
    """Payment schedule divided into periods"""

    id: str
    name: str
    periods: Dict[str, Period]
    mode: str = MODE_REAL_TIME  # "real_time" or "manual"
    simulation_date: Optional[date] = None

    def ordered_periods(self) -> List[Period]:
        return sorted(self.periods.values(), key=lambda p: p.number)

    def active_periods(self) -> List[Period]:
        return [p for p in self.ordered_periods() if p.active]


@dataclass
class PaymentRecord:
    """Payment state of one student for one period"""

    timeline_id: str
    period_key: str
    student_id: str
    status: str
    amount: int
    actual_payment: int = 0
    credit_used: int = 0
    total_amount: int = 0
    payment_date: Optional[datetime] = None
    payment_method: Optional[str] = None
    payment_id: Optional[str] = None
    period_label: Optional[str] = None
    due_date: Optional[date] = None


@dataclass
class OutstandingPeriod:
    """Allocation input: a period the student has not paid yet"""

    period_key: str
    amount: int
    label: Optional[str] = None
    status: str = BELUM_BAYAR


@dataclass
class PeriodAllocation:
    """How a single period gets paid off"""

    period_key: str
    period_label: str
    status: str
    total_amount: int
    credit_used: int
    new_payment: int
    remaining_after: int = 0


@dataclass
class AllocationSummary:
    """Totals for one allocation run"""

    payment_amount: int
    credit_used: int
    payment_used: int
    new_credit_generated: int
    final_credit_balance: int
    periods_completed: int
    affected_periods: List[str]


@dataclass
class AllocationResult:
    """Output of the allocation engine; never raised, always returned"""

    success: bool
    allocations: List[PeriodAllocation] = field(default_factory=list)
    summary: Optional[AllocationSummary] = None
    error: Optional[str] = None


@dataclass
class CreditPreview:
    """Effective amount of an unpaid period once credit is applied"""

    period_key: str
    amount: int
    credit_applied: int
    effective_amount: int


@dataclass
class CreditTransaction:
    """Immutable audit entry for a credit balance change"""

    student_id: str
    amount: int
    type: str  # "usage" or "earned"
    balance_before: int
    balance_after: int
    description: str = ""
    related_payment_id: Optional[str] = None
    periods_affected: List[str] = field(default_factory=list)
    details: Dict[str, Any] = field(default_factory=dict)
    timestamp: Optional[datetime] = None


@dataclass
class PaymentOutcome:
    """Result of a committed payment"""

    payment_id: str
    student_id: str
    timeline_id: str
    allocations: List[PeriodAllocation]
    summary: AllocationSummary


@dataclass
class PaymentSummary:
    """Per-student roll-up over a timeline's active periods"""

    total: int
    lunas: int
    belum_bayar: int
    terlambat: int
    total_amount: int
    paid_amount: int
    unpaid_amount: int
    progress_percentage: int
    last_payment_date: Optional[datetime] = None
