"""Timeline maintenance with cache invalidation on every write"""

from datetime import date
from typing import Optional

from sqlalchemy.orm import Session

from bisyaroh_gateway.domain.allocation import period_key_for
from bisyaroh_gateway.domain.exceptions import NotFoundError, ValidationError
from bisyaroh_gateway.domain.models import MODE_MANUAL, MODE_REAL_TIME, Timeline
from bisyaroh_gateway.infrastructure.cache import ACTIVE_TIMELINE_KEY, TTLCache, timeline_payments_prefix
from bisyaroh_gateway.infrastructure.database.repositories import TimelineRepository
from bisyaroh_gateway.infrastructure.database.session import atomic


class TimelineService:
    """Create, adjust and tear down the single active timeline"""

    def __init__(self, db: Session, cache: Optional[TTLCache] = None):
        self.db = db
        self.cache = cache
        self.repo = TimelineRepository(db)

    def create_active_timeline(self, timeline: Timeline) -> Timeline:
        """Replace the active timeline; the previous one is archived, not deleted"""
        if timeline.mode not in (MODE_REAL_TIME, MODE_MANUAL):
            raise ValidationError(f"Unknown timeline mode: {timeline.mode}")
        if not timeline.periods:
            raise ValidationError("Timeline needs at least one period")
        if any(p.amount < 0 for p in timeline.periods.values()):
            raise ValidationError("Period amounts cannot be negative")
        numbers = [p.number for p in timeline.periods.values()]
        if len(set(numbers)) != len(numbers):
            raise ValidationError("Period numbers must be unique")
        # Allocation orders by the key suffix, so key and number must agree
        for key, period in timeline.periods.items():
            expected = period_key_for(period.number)
            if key != expected or period.key != expected:
                raise ValidationError(f"Period {period.number} must use key {expected!r}, got {period.key!r}")

        with atomic(self.db):
            if self.repo.get_timeline(timeline.id) is not None:
                raise ValidationError(f"Timeline {timeline.id} already exists")
            created = self.repo.create_active_timeline(timeline)

        self._invalidate_all()
        return created

    def update_simulation_date(self, simulation_date: Optional[date]) -> Timeline:
        """Pin "now" for overdue checks; only manual-mode timelines accept it"""
        with atomic(self.db):
            active = self.repo.get_active_timeline()
            if active is not None and active.mode != MODE_MANUAL:
                raise ValidationError("Simulation date is only available in manual mode")
            updated = self.repo.update_simulation_date(simulation_date)

        self._invalidate_timeline()
        return updated

    def reset_payments(self) -> int:
        with atomic(self.db):
            timeline = self.repo.get_active_timeline()
            if timeline is None:
                raise NotFoundError("Active timeline not found")
            removed = self.repo.reset_payments(timeline.id)

        self._invalidate_payments(timeline.id)
        return removed

    def delete_active_timeline(self) -> str:
        with atomic(self.db):
            timeline_id = self.repo.delete_active_timeline()

        self._invalidate_all()
        return timeline_id

    def _invalidate_timeline(self) -> None:
        if self.cache is not None:
            self.cache.invalidate(ACTIVE_TIMELINE_KEY)

    def _invalidate_payments(self, timeline_id: str) -> None:
        if self.cache is not None:
            self.cache.invalidate_prefix(timeline_payments_prefix(timeline_id))

    def _invalidate_all(self) -> None:
        if self.cache is not None:
            self.cache.clear()
