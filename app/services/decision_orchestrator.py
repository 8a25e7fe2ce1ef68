"""
Submission-time decision: auto-approve or hand over to approvers.

Runs exactly once per inspection, synchronously with its creation, against
the workflow settings as they are at that moment. The settings used are
returned as a snapshot and stored on the inspection; the decision is never
re-evaluated.
"""
import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Awaitable, Callable, Dict, List, Optional, Tuple
from uuid import UUID

from app.config import settings
from app.core.datetime_utils import resolve_zone
from app.models.inspection import InspectionStatus
from app.models.workflow import FrequencyPeriod, InspectionWorkflow
from app.services.inspection_state_machine import ApproverSlot
from app.services.rule_evaluator import RuleEvaluation, evaluate


logger = logging.getLogger(__name__)


CountRecent = Callable[[UUID, UUID, FrequencyPeriod, datetime], Awaitable[int]]


@dataclass(frozen=True)
class InspectionDraft:
    """What the inspector submitted, already validated at the boundary."""
    assigned_to: UUID
    filled_steps: List[Dict[str, Any]]
    approvers: List[Tuple[UUID, str]]  # (approver_id, role) in listed order
    meter_reading: Optional[float] = None


@dataclass(frozen=True)
class Decision:
    status: str
    auto_approved: bool
    approvers: Tuple[ApproverSlot, ...]
    reason: str
    evaluation: RuleEvaluation
    recent_count: Optional[int] = None
    rules_snapshot: Dict[str, Any] = field(default_factory=dict)


def snapshot_workflow_rules(workflow: InspectionWorkflow) -> Dict[str, Any]:
    """Settings the decision depends on, frozen onto the inspection."""
    return {
        "auto_approval_enabled": bool(workflow.auto_approval_enabled),
        "auto_approval_rules": dict(workflow.auto_approval_rules or {}),
        "consensus_policy": workflow.consensus_policy,
        "timezone": workflow.local_timezone or settings.DEFAULT_TIMEZONE,
    }


def initial_slots(draft: InspectionDraft) -> Tuple[ApproverSlot, ...]:
    return tuple(
        ApproverSlot(position=position, approver_id=approver_id, role=role)
        for position, (approver_id, role) in enumerate(draft.approvers)
    )


async def decide(
    draft: InspectionDraft,
    workflow: InspectionWorkflow,
    submitted_at: datetime,
    count_recent: CountRecent,
) -> Decision:
    """
    Decide how a new inspection starts.

    - Rule inapplicable or REJECT -> PENDING with every approver pending
    - Rule ACCEPT, frequency cap set and reached -> PENDING
    - Rule ACCEPT otherwise -> AUTO_APPROVED; approver slots stay pending
    """
    snapshot = snapshot_workflow_rules(workflow)
    slots = initial_slots(draft)

    evaluation = evaluate(
        snapshot["auto_approval_rules"],
        draft.filled_steps,
        draft.meter_reading,
        submitted_at,
        enabled=snapshot["auto_approval_enabled"],
        tz=resolve_zone(snapshot["timezone"], settings.DEFAULT_TIMEZONE),
        step_definitions=workflow.steps or [],
    )

    if not evaluation.accepted:
        reason = evaluation.reason if evaluation.applicable else f"Rule not applicable: {evaluation.reason}"
        logger.info("Workflow %s: manual approval (%s)", workflow.id, reason)
        return Decision(
            status=InspectionStatus.PENDING.value,
            auto_approved=False,
            approvers=slots,
            reason=reason,
            evaluation=evaluation,
            rules_snapshot=snapshot,
        )

    rules = evaluation.rules
    recent = None
    if rules.frequency_limit is not None:
        recent = await count_recent(
            draft.assigned_to, workflow.id, rules.frequency_period, submitted_at
        )
        if recent >= rules.frequency_limit:
            reason = (
                f"Frequency limit reached: {recent} inspections in the last "
                f"{rules.frequency_period.value} (limit {rules.frequency_limit})"
            )
            logger.info("Workflow %s: manual approval (%s)", workflow.id, reason)
            return Decision(
                status=InspectionStatus.PENDING.value,
                auto_approved=False,
                approvers=slots,
                reason=reason,
                evaluation=evaluation,
                recent_count=recent,
                rules_snapshot=snapshot,
            )

    logger.info("Workflow %s: auto-approved (%s)", workflow.id, evaluation.reason)
    return Decision(
        status=InspectionStatus.AUTO_APPROVED.value,
        auto_approved=True,
        approvers=slots,
        reason="Auto-approved based on predefined rules",
        evaluation=evaluation,
        recent_count=recent,
        rules_snapshot=snapshot,
    )
