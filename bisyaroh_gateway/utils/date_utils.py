"""Date manipulation utilities"""

from datetime import date, datetime, timezone
from typing import Optional


def utcnow() -> datetime:
    """Timezone-aware current UTC time"""
    return datetime.now(timezone.utc)


def reference_date(mode: str, simulation_date: Optional[date], today: Optional[date] = None) -> date:
    """
    Date used to decide whether a period is overdue.

    Manual-mode timelines may pin "now" to a simulation date; everything
    else runs on the wall clock.
    """
    if mode == "manual" and simulation_date is not None:
        return simulation_date
    return today or date.today()
