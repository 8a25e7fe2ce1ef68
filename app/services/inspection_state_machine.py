"""
Inspection Approval State Machine

This module is the SINGLE SOURCE OF TRUTH for inspection decision
transitions. The overall status is always derived from the approver slots
by resolve_status(); nothing assigns it directly except auto-approval at
creation.

Lifecycle:
    PENDING -> APPROVED | REJECTED    (approver actions)
    AUTO_APPROVED                     (set once, at creation)

Terminal states never change again. Everything here is pure: the service
loads the slots, calls apply_decision(), and persists the result inside one
version-checked transaction.
"""

from dataclasses import dataclass, replace
from datetime import datetime
from typing import Dict, Optional, Sequence, Tuple
from uuid import UUID

from app.core.permissions import role_can_override
from app.models.inspection import (
    ApproverDecision,
    ApproverStatus,
    InspectionStatus,
    TERMINAL_STATUSES,
)
from app.models.workflow import ConsensusPolicy


# =============================================================================
# ERRORS
# =============================================================================

class InspectionDecisionError(Exception):
    """Base class for decision errors reported to the caller."""
    code = "DECISION_ERROR"

    def __init__(self, message: str, details: Dict = None):
        self.message = message
        self.details = details or {}
        super().__init__(self.message)


class NotAnApproverError(InspectionDecisionError):
    """Actor is not one of the inspection's approvers."""
    code = "NOT_AN_APPROVER"


class OutOfTurnError(InspectionDecisionError):
    """Sequential policy: an earlier approver has not approved yet."""
    code = "OUT_OF_TURN"


class AlreadyDecidedError(InspectionDecisionError):
    """This approver has already recorded a decision."""
    code = "ALREADY_DECIDED"


ALREADY_TERMINAL = "ALREADY_TERMINAL"


# =============================================================================
# VALUE TYPES
# =============================================================================

@dataclass(frozen=True)
class ApproverSlot:
    """One approver's position and decision on an inspection."""
    position: int
    approver_id: UUID
    role: str
    status: str = ApproverStatus.PENDING.value
    remarks: Optional[str] = None
    action_date: Optional[datetime] = None

    @property
    def is_pending(self) -> bool:
        return self.status == ApproverStatus.PENDING.value


@dataclass(frozen=True)
class Transition:
    """Outcome of one approver action."""
    status: str
    approvers: Tuple[ApproverSlot, ...]
    slot_index: Optional[int]
    applied: bool
    reason: Optional[str] = None

    @property
    def resolved(self) -> bool:
        return self.applied and is_terminal(self.status)


# =============================================================================
# HELPERS
# =============================================================================

def is_terminal(status: str) -> bool:
    """Is this a terminal (final) state?"""
    return status in TERMINAL_STATUSES


def find_slot(approvers: Sequence[ApproverSlot], approver_id: UUID) -> Optional[int]:
    for index, slot in enumerate(approvers):
        if slot.approver_id == approver_id:
            return index
    return None


def resolve_status(policy: str, approvers: Sequence[ApproverSlot]) -> str:
    """
    Overall status as a function of the approver slots.

    - Any REJECTED slot rejects, under every policy
    - ADMIN_OVERRIDE: an APPROVED slot whose role can override approves
    - Otherwise APPROVED once every slot is APPROVED
    """
    statuses = [slot.status for slot in approvers]

    if ApproverStatus.REJECTED.value in statuses:
        return InspectionStatus.REJECTED.value

    if policy == ConsensusPolicy.ADMIN_OVERRIDE.value and any(
        slot.status == ApproverStatus.APPROVED.value and role_can_override(slot.role)
        for slot in approvers
    ):
        return InspectionStatus.APPROVED.value

    if statuses and all(s == ApproverStatus.APPROVED.value for s in statuses):
        return InspectionStatus.APPROVED.value

    return InspectionStatus.PENDING.value


def next_expected_approver(policy: str, approvers: Sequence[ApproverSlot]) -> Optional[ApproverSlot]:
    """Under SEQUENTIAL, the first slot still pending. None for other policies."""
    if policy != ConsensusPolicy.SEQUENTIAL.value:
        return None
    for slot in approvers:
        if slot.is_pending:
            return slot
    return None


def validate_turn(policy: str, approvers: Sequence[ApproverSlot], index: int) -> None:
    """
    Raise OutOfTurnError unless every earlier slot has approved.

    Only SEQUENTIAL constrains ordering.
    """
    if policy != ConsensusPolicy.SEQUENTIAL.value:
        return

    waiting_on = [
        slot for slot in approvers[:index]
        if slot.status != ApproverStatus.APPROVED.value
    ]
    if waiting_on:
        raise OutOfTurnError(
            f"Approver at position {index} cannot act before position {waiting_on[0].position} has approved",
            details={"waiting_on": str(waiting_on[0].approver_id), "position": index},
        )


# =============================================================================
# TRANSITION
# =============================================================================

def apply_decision(
    policy: str,
    status: str,
    approvers: Sequence[ApproverSlot],
    approver_id: UUID,
    decision: ApproverDecision,
    remarks: Optional[str],
    acted_at: datetime,
) -> Transition:
    """
    Apply one approver action.

    Steps:
    1. The actor must hold a slot
    2. A terminal inspection is returned unchanged (applied=False)
    3. The actor's slot must still be pending
    4. SEQUENTIAL: every earlier slot must have approved
    5. Record the slot decision and recompute the overall status

    Raises:
        NotAnApproverError, AlreadyDecidedError, OutOfTurnError
    """
    approvers = tuple(approvers)
    index = find_slot(approvers, approver_id)
    if index is None:
        raise NotAnApproverError(
            "You are not an approver on this inspection",
            details={"approver_id": str(approver_id)},
        )

    if is_terminal(status):
        return Transition(status, approvers, index, applied=False, reason=ALREADY_TERMINAL)

    slot = approvers[index]
    if not slot.is_pending:
        raise AlreadyDecidedError(
            f"Approver has already recorded '{slot.status}' on this inspection",
            details={"approver_id": str(approver_id), "status": slot.status},
        )

    validate_turn(policy, approvers, index)

    new_slot_status = (
        ApproverStatus.APPROVED.value
        if ApproverDecision(decision) == ApproverDecision.APPROVE
        else ApproverStatus.REJECTED.value
    )
    updated = replace(slot, status=new_slot_status, remarks=remarks or "", action_date=acted_at)
    new_approvers = approvers[:index] + (updated,) + approvers[index + 1:]

    return Transition(
        status=resolve_status(policy, new_approvers),
        approvers=new_approvers,
        slot_index=index,
        applied=True,
    )
