"""
Auto-Approval Frequency Tracker.

Counts how many inspections an inspector has already submitted against a
workflow inside a rolling window, so auto-approval can be capped.

The count is a plain point-in-time read. No slot is reserved, so two
submissions racing inside the same window can both see the same count and
both auto-approve. That is accepted: an extra auto-approval is visible in
the history and reviewable.
"""
import logging
from datetime import datetime, timedelta
from typing import Union
from uuid import UUID

from sqlalchemy import select, func
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.datetime_utils import ensure_utc
from app.models.inspection import Inspection
from app.models.workflow import FrequencyPeriod


logger = logging.getLogger(__name__)


PERIOD_DELTAS = {
    FrequencyPeriod.HOUR: timedelta(hours=1),
    FrequencyPeriod.DAY: timedelta(days=1),
    FrequencyPeriod.WEEK: timedelta(weeks=1),
}


def period_delta(period: Union[FrequencyPeriod, str]) -> timedelta:
    """Length of a rolling frequency window."""
    return PERIOD_DELTAS[FrequencyPeriod(period)]


async def count_recent(
    db: AsyncSession,
    assigned_to: UUID,
    workflow_id: UUID,
    period: Union[FrequencyPeriod, str],
    as_of: datetime,
) -> int:
    """
    Count prior inspections for an inspector/workflow pair.

    Matches on inspection_date (not created_at) in the half-open window
    [as_of - period, as_of). Every status counts.
    """
    window_end = ensure_utc(as_of)
    window_start = window_end - period_delta(period)

    result = await db.execute(
        select(func.count(Inspection.id))
        .where(
            Inspection.assigned_to == assigned_to,
            Inspection.workflow_id == workflow_id,
            Inspection.inspection_date >= window_start,
            Inspection.inspection_date < window_end,
        )
    )
    count = result.scalar() or 0
    logger.debug(
        "Frequency window %s..%s for inspector %s on workflow %s: %d",
        window_start.isoformat(), window_end.isoformat(), assigned_to, workflow_id, count
    )
    return count


class FrequencyTracker:
    """Session-bound wrapper handed to the decision orchestrator."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def count_recent(
        self,
        assigned_to: UUID,
        workflow_id: UUID,
        period: Union[FrequencyPeriod, str],
        as_of: datetime,
    ) -> int:
        return await count_recent(self.db, assigned_to, workflow_id, period, as_of)
