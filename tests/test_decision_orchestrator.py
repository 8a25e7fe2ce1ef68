import uuid
from datetime import datetime, timezone

import pytest

from app.models.inspection import ApproverStatus, InspectionStatus
from app.models.workflow import InspectionWorkflow
from app.services.decision_orchestrator import InspectionDraft, decide, snapshot_workflow_rules


SUBMITTED_AT = datetime(2026, 3, 2, 10, 30, tzinfo=timezone.utc)


def _workflow(**rule_overrides):
    rules = {
        "value_field": "meterReading",
        "min_value": 0,
        "max_value": 100,
        "require_photo": True,
    }
    rules.update(rule_overrides)
    return InspectionWorkflow(
        id=uuid.uuid4(),
        organization_id=uuid.uuid4(),
        name="Generator weekly check",
        category="Maintenance",
        steps=[{"id": "reading", "title": "Meter reading", "media_required": False}],
        auto_approval_enabled=True,
        auto_approval_rules=rules,
        consensus_policy="PARALLEL",
    )


def _draft(meter_reading, approvers=2):
    return InspectionDraft(
        assigned_to=uuid.uuid4(),
        filled_steps=[{
            "step_id": "reading",
            "step_title": "Meter reading",
            "response_text": str(meter_reading),
            "media_urls": ["https://files.example.com/p.jpg"],
        }],
        approvers=[(uuid.uuid4(), "APPROVER") for _ in range(approvers)],
        meter_reading=meter_reading,
    )


def _counter(count):
    calls = []

    async def count_recent(assigned_to, workflow_id, period, as_of):
        calls.append((assigned_to, workflow_id, period, as_of))
        return count

    count_recent.calls = calls
    return count_recent


async def test_reading_in_range_is_auto_approved_with_approvers_left_pending():
    decision = await decide(_draft(45), _workflow(), SUBMITTED_AT, _counter(0))

    assert decision.status == InspectionStatus.AUTO_APPROVED.value
    assert decision.auto_approved
    assert decision.reason == "Auto-approved based on predefined rules"
    assert [slot.status for slot in decision.approvers] == [ApproverStatus.PENDING.value] * 2
    assert [slot.position for slot in decision.approvers] == [0, 1]


async def test_reading_out_of_range_goes_to_approvers():
    decision = await decide(_draft(150), _workflow(), SUBMITTED_AT, _counter(0))

    assert decision.status == InspectionStatus.PENDING.value
    assert not decision.auto_approved
    assert "above maximum" in decision.reason
    assert all(slot.is_pending for slot in decision.approvers)


async def test_inapplicable_rule_is_reported_as_such():
    workflow = _workflow(min_value=10, max_value=1)

    decision = await decide(_draft(45), workflow, SUBMITTED_AT, _counter(0))

    assert decision.status == InspectionStatus.PENDING.value
    assert decision.reason.startswith("Rule not applicable: ")


async def test_disabled_gate_never_counts():
    workflow = _workflow(frequency_limit=1)
    workflow.auto_approval_enabled = False
    counter = _counter(0)

    decision = await decide(_draft(45), workflow, SUBMITTED_AT, counter)

    assert decision.status == InspectionStatus.PENDING.value
    assert counter.calls == []


async def test_frequency_not_counted_without_a_limit():
    counter = _counter(99)

    decision = await decide(_draft(45), _workflow(), SUBMITTED_AT, counter)

    assert decision.auto_approved
    assert counter.calls == []
    assert decision.recent_count is None


async def test_frequency_cap_reached_blocks_auto_approval():
    counter = _counter(3)
    workflow = _workflow(frequency_limit=3, frequency_period="week")
    draft = _draft(45)

    decision = await decide(draft, workflow, SUBMITTED_AT, counter)

    assert decision.status == InspectionStatus.PENDING.value
    assert decision.reason.startswith("Frequency limit reached")
    assert decision.recent_count == 3
    assigned_to, workflow_id, period, as_of = counter.calls[0]
    assert (assigned_to, workflow_id, period.value, as_of) == (draft.assigned_to, workflow.id, "week", SUBMITTED_AT)


async def test_frequency_under_cap_auto_approves():
    decision = await decide(_draft(45), _workflow(frequency_limit=3), SUBMITTED_AT, _counter(2))

    assert decision.auto_approved
    assert decision.recent_count == 2


async def test_zero_limit_always_requires_approval():
    decision = await decide(_draft(45), _workflow(frequency_limit=0), SUBMITTED_AT, _counter(0))

    assert decision.status == InspectionStatus.PENDING.value


async def test_rule_rejection_wins_over_frequency():
    counter = _counter(0)

    decision = await decide(_draft(150), _workflow(frequency_limit=5), SUBMITTED_AT, counter)

    assert decision.status == InspectionStatus.PENDING.value
    assert "above maximum" in decision.reason
    assert counter.calls == []


def test_snapshot_falls_back_to_default_timezone():
    workflow = _workflow()

    snapshot = snapshot_workflow_rules(workflow)

    assert snapshot["timezone"] == "UTC"
    assert snapshot["auto_approval_enabled"] is True
    assert snapshot["auto_approval_rules"]["max_value"] == 100
    assert snapshot["consensus_policy"] == "PARALLEL"


@pytest.mark.parametrize("local_timezone,expected", [
    # 10:30 UTC -> 16:00 Kolkata, inside 15:00-17:00
    ("Asia/Kolkata", InspectionStatus.AUTO_APPROVED.value),
    (None, InspectionStatus.PENDING.value),
])
async def test_time_window_uses_workflow_timezone(local_timezone, expected):
    workflow = _workflow(time_range_start="15:00", time_range_end="17:00")
    workflow.local_timezone = local_timezone

    decision = await decide(_draft(45), workflow, SUBMITTED_AT, _counter(0))

    assert decision.status == expected
