import uuid
from datetime import datetime, timedelta, timezone

import pytest

from app.models.inspection import Inspection
from app.models.workflow import FrequencyPeriod
from app.services.frequency_tracker import FrequencyTracker, count_recent, period_delta

SUBMITTED_AT = datetime(2026, 3, 2, 10, 30, tzinfo=timezone.utc)


async def _add_inspection(db, workflow, assigned_to, inspection_date, status="PENDING"):
    db.add(Inspection(
        workflow_id=workflow.id,
        workflow_name=workflow.name,
        category=workflow.category,
        organization_id=workflow.organization_id,
        filled_steps=[],
        assigned_to=assigned_to,
        status=status,
        consensus_policy=workflow.consensus_policy,
        inspection_date=inspection_date,
    ))
    await db.commit()


def test_period_delta():
    assert period_delta("hour") == timedelta(hours=1)
    assert period_delta(FrequencyPeriod.DAY) == timedelta(days=1)
    assert period_delta("week") == timedelta(days=7)

    with pytest.raises(ValueError):
        period_delta("month")


async def test_counts_only_the_rolling_window(db, make_workflow):
    workflow = await make_workflow()
    inspector = uuid.uuid4()

    await _add_inspection(db, workflow, inspector, SUBMITTED_AT - timedelta(minutes=5))
    await _add_inspection(db, workflow, inspector, SUBMITTED_AT - timedelta(hours=23))
    await _add_inspection(db, workflow, inspector, SUBMITTED_AT - timedelta(hours=25))

    assert await count_recent(db, inspector, workflow.id, "hour", SUBMITTED_AT) == 1
    assert await count_recent(db, inspector, workflow.id, "day", SUBMITTED_AT) == 2
    assert await count_recent(db, inspector, workflow.id, "week", SUBMITTED_AT) == 3


async def test_window_is_half_open(db, make_workflow):
    workflow = await make_workflow()
    inspector = uuid.uuid4()

    await _add_inspection(db, workflow, inspector, SUBMITTED_AT - timedelta(hours=1))
    await _add_inspection(db, workflow, inspector, SUBMITTED_AT)

    # start is included, as_of itself is not
    assert await count_recent(db, inspector, workflow.id, "hour", SUBMITTED_AT) == 1


async def test_counts_every_status(db, make_workflow):
    workflow = await make_workflow()
    inspector = uuid.uuid4()

    for status in ("PENDING", "APPROVED", "REJECTED", "AUTO_APPROVED"):
        await _add_inspection(db, workflow, inspector, SUBMITTED_AT - timedelta(minutes=10), status)

    assert await count_recent(db, inspector, workflow.id, "day", SUBMITTED_AT) == 4


async def test_scoped_to_inspector_and_workflow(db, make_workflow):
    workflow = await make_workflow()
    other_workflow = await make_workflow(name="Boiler check")
    inspector = uuid.uuid4()

    await _add_inspection(db, workflow, inspector, SUBMITTED_AT - timedelta(minutes=10))
    await _add_inspection(db, workflow, uuid.uuid4(), SUBMITTED_AT - timedelta(minutes=10))
    await _add_inspection(db, other_workflow, inspector, SUBMITTED_AT - timedelta(minutes=10))

    tracker = FrequencyTracker(db)
    assert await tracker.count_recent(inspector, workflow.id, FrequencyPeriod.DAY, SUBMITTED_AT) == 1


async def test_naive_as_of_is_treated_as_utc(db, make_workflow):
    workflow = await make_workflow()
    inspector = uuid.uuid4()

    await _add_inspection(db, workflow, inspector, SUBMITTED_AT - timedelta(minutes=10))

    naive = SUBMITTED_AT.replace(tzinfo=None)
    assert await count_recent(db, inspector, workflow.id, "hour", naive) == 1
