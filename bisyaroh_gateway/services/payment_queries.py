"""Read side: timeline and payment records with statuses derived at read time"""

from dataclasses import replace
from datetime import date
from typing import List, Optional, Tuple

from sqlalchemy.orm import Session

from bisyaroh_gateway.domain.exceptions import NotFoundError
from bisyaroh_gateway.domain.models import PaymentRecord, PaymentSummary, Timeline
from bisyaroh_gateway.domain.status import overall_status_label, resolve_statuses, summarize_payments
from bisyaroh_gateway.infrastructure.cache import ACTIVE_TIMELINE_KEY, TTLCache, payments_key
from bisyaroh_gateway.infrastructure.database.models import Student
from bisyaroh_gateway.infrastructure.database.repositories import (
    PaymentRepository,
    StudentRepository,
    TimelineRepository,
)


class PaymentQueryService:
    """Cached reads; stored records are cached, derived statuses never are"""

    def __init__(self, db: Session, cache: Optional[TTLCache] = None):
        self.db = db
        self.cache = cache

    def get_active_timeline(self) -> Timeline:
        if self.cache is not None:
            cached = self.cache.get(ACTIVE_TIMELINE_KEY)
            if cached is not None:
                return cached

        timeline = TimelineRepository(self.db).get_active_timeline()
        if timeline is None:
            raise NotFoundError("Active timeline not found")

        if self.cache is not None:
            self.cache.set(ACTIVE_TIMELINE_KEY, timeline)
        return timeline

    def student_payments(self, student_id: str, today: Optional[date] = None) -> Tuple[Timeline, List[PaymentRecord]]:
        """Active-period records for a student with derived statuses"""
        if StudentRepository(self.db).get_student(student_id) is None:
            raise NotFoundError(f"Student {student_id} not found")

        timeline = self.get_active_timeline()
        stored = self._stored_records(timeline, student_id)
        # Copies so the cached records keep their stored status
        return timeline, resolve_statuses([replace(r) for r in stored], timeline, today)

    def student_summary(self, student_id: str, today: Optional[date] = None) -> PaymentSummary:
        _, records = self.student_payments(student_id, today)
        return summarize_payments(records)

    def all_students_status(self, today: Optional[date] = None) -> List[Tuple[Student, PaymentSummary, str]]:
        """Admin overview: every student with their summary, sorted by name"""
        overview = []
        for student in StudentRepository(self.db).list_students():
            summary = self.student_summary(student.id, today)
            overview.append((student, summary, overall_status_label(summary)))
        return overview

    def _stored_records(self, timeline: Timeline, student_id: str) -> List[PaymentRecord]:
        key = payments_key(timeline.id, student_id)
        if self.cache is not None:
            cached = self.cache.get(key)
            if cached is not None:
                return cached

        records = PaymentRepository(self.db).list_student_payments(timeline, student_id)
        if self.cache is not None:
            self.cache.set(key, records)
        return records
