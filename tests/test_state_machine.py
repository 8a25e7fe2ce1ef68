import uuid
from datetime import datetime, timezone

import pytest

from app.models.inspection import ApproverDecision, ApproverStatus, InspectionStatus
from app.services.inspection_state_machine import (
    ALREADY_TERMINAL,
    AlreadyDecidedError,
    ApproverSlot,
    NotAnApproverError,
    OutOfTurnError,
    apply_decision,
    next_expected_approver,
    resolve_status,
)


NOW = datetime(2026, 3, 2, 12, 0, tzinfo=timezone.utc)
APPROVE = ApproverDecision.APPROVE
REJECT = ApproverDecision.REJECT
PENDING = InspectionStatus.PENDING.value


def _slots(*roles):
    return tuple(
        ApproverSlot(position=i, approver_id=uuid.uuid4(), role=role)
        for i, role in enumerate(roles)
    )


def _act(policy, status, slots, index, decision, remarks=None):
    return apply_decision(policy, status, slots, slots[index].approver_id, decision, remarks, NOW)


class TestParallel:

    def test_partial_approval_stays_pending(self):
        slots = _slots("APPROVER", "APPROVER")

        result = _act("PARALLEL", PENDING, slots, 1, APPROVE, "looks fine")

        assert result.applied
        assert result.status == PENDING
        assert not result.resolved
        assert result.approvers[1].status == ApproverStatus.APPROVED.value
        assert result.approvers[1].remarks == "looks fine"
        assert result.approvers[1].action_date == NOW
        assert result.approvers[0].is_pending

    def test_all_approvals_resolve_in_any_order(self):
        slots = _slots("APPROVER", "APPROVER")

        first = _act("PARALLEL", PENDING, slots, 1, APPROVE)
        second = _act("PARALLEL", first.status, first.approvers, 0, APPROVE)

        assert second.status == InspectionStatus.APPROVED.value
        assert second.resolved

    def test_one_rejection_rejects_immediately(self):
        slots = _slots("APPROVER", "APPROVER", "APPROVER")

        first = _act("PARALLEL", PENDING, slots, 0, APPROVE)
        second = _act("PARALLEL", first.status, first.approvers, 2, REJECT, "gauge cracked")

        assert second.status == InspectionStatus.REJECTED.value
        assert second.approvers[1].is_pending

    def test_missing_remarks_are_stored_empty(self):
        result = _act("PARALLEL", PENDING, _slots("APPROVER"), 0, APPROVE)

        assert result.approvers[0].remarks == ""


class TestSequential:

    def test_later_approver_cannot_act_first(self):
        slots = _slots("APPROVER", "APPROVER")

        with pytest.raises(OutOfTurnError) as exc_info:
            _act("SEQUENTIAL", PENDING, slots, 1, APPROVE)

        assert exc_info.value.code == "OUT_OF_TURN"
        assert exc_info.value.details["waiting_on"] == str(slots[0].approver_id)

    def test_later_approver_cannot_reject_first_either(self):
        slots = _slots("APPROVER", "APPROVER")

        with pytest.raises(OutOfTurnError):
            _act("SEQUENTIAL", PENDING, slots, 1, REJECT, "no")

    def test_in_order_approvals_resolve(self):
        slots = _slots("APPROVER", "APPROVER")

        first = _act("SEQUENTIAL", PENDING, slots, 0, APPROVE)
        assert first.status == PENDING
        assert next_expected_approver("SEQUENTIAL", first.approvers) == first.approvers[1]

        second = _act("SEQUENTIAL", first.status, first.approvers, 1, APPROVE)
        assert second.status == InspectionStatus.APPROVED.value

    def test_next_expected_only_for_sequential(self):
        assert next_expected_approver("PARALLEL", _slots("APPROVER")) is None


class TestAdminOverride:

    def test_admin_approval_resolves_alone(self):
        slots = _slots("APPROVER", "ADMIN", "APPROVER")

        result = _act("ADMIN_OVERRIDE", PENDING, slots, 1, APPROVE)

        assert result.status == InspectionStatus.APPROVED.value
        assert result.approvers[0].is_pending
        assert result.approvers[2].is_pending

    def test_non_admin_approval_does_not(self):
        slots = _slots("APPROVER", "ADMIN")

        result = _act("ADMIN_OVERRIDE", PENDING, slots, 0, APPROVE)

        assert result.status == PENDING

    def test_rejection_still_rejects(self):
        slots = _slots("ADMIN", "APPROVER")

        result = _act("ADMIN_OVERRIDE", PENDING, slots, 1, REJECT, "no")

        assert result.status == InspectionStatus.REJECTED.value

    def test_admin_role_has_no_override_under_parallel(self):
        slots = _slots("ADMIN", "APPROVER")

        result = _act("PARALLEL", PENDING, slots, 0, APPROVE)

        assert result.status == PENDING


class TestSingle:

    def test_one_approval_resolves(self):
        result = _act("SINGLE", PENDING, _slots("APPROVER"), 0, APPROVE)

        assert result.status == InspectionStatus.APPROVED.value

    def test_one_rejection_resolves(self):
        result = _act("SINGLE", PENDING, _slots("APPROVER"), 0, REJECT, "bad")

        assert result.status == InspectionStatus.REJECTED.value


class TestGuards:

    def test_stranger_is_not_an_approver(self):
        slots = _slots("APPROVER")

        with pytest.raises(NotAnApproverError):
            apply_decision("PARALLEL", PENDING, slots, uuid.uuid4(), APPROVE, None, NOW)

    def test_stranger_is_refused_even_when_terminal(self):
        slots = _slots("APPROVER")

        with pytest.raises(NotAnApproverError):
            apply_decision("PARALLEL", InspectionStatus.APPROVED.value, slots, uuid.uuid4(), APPROVE, None, NOW)

    def test_repeat_action_is_refused(self):
        slots = _slots("APPROVER", "APPROVER")
        first = _act("PARALLEL", PENDING, slots, 0, APPROVE)

        with pytest.raises(AlreadyDecidedError):
            _act("PARALLEL", first.status, first.approvers, 0, REJECT, "changed my mind")

    @pytest.mark.parametrize("status", ["APPROVED", "REJECTED", "AUTO_APPROVED"])
    def test_terminal_inspection_is_left_untouched(self, status):
        slots = _slots("APPROVER", "APPROVER")

        result = _act("PARALLEL", status, slots, 0, REJECT, "late")

        assert not result.applied
        assert not result.resolved
        assert result.reason == ALREADY_TERMINAL
        assert result.status == status
        assert result.approvers == slots


@pytest.mark.parametrize("statuses,policy,expected", [
    (["PENDING", "PENDING"], "PARALLEL", "PENDING"),
    (["APPROVED", "REJECTED"], "PARALLEL", "REJECTED"),
    (["APPROVED", "APPROVED"], "SEQUENTIAL", "APPROVED"),
    (["REJECTED", "PENDING"], "ADMIN_OVERRIDE", "REJECTED"),
])
def test_resolve_status(statuses, policy, expected):
    slots = tuple(
        ApproverSlot(position=i, approver_id=uuid.uuid4(), role="APPROVER", status=s)
        for i, s in enumerate(statuses)
    )

    assert resolve_status(policy, slots) == expected
