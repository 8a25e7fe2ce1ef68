"""
Inspection Decision Service.

Entry points of the decision engine:
- submit_inspection: validate the draft, decide auto vs manual once,
  persist inspection + approver slots + history in one commit
- record_approver_decision: one approver action as a single
  read-modify-write unit, guarded by the inspection's version column

Concurrency model:
    Every write to an inspection bumps `version`. A writer that read an
    older version gets StaleDataError at flush; the whole cycle (re-read,
    re-apply, re-check termination, commit) is retried a bounded number of
    times. Caller errors (unknown approver, out of turn, already decided)
    are raised immediately and never retried. Actions on different
    inspections never coordinate.
"""
import logging
import uuid
from dataclasses import dataclass
from datetime import date, datetime, time, timedelta, timezone
from typing import Optional, List, Tuple

from sqlalchemy import select, func
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm.attributes import flag_modified
from sqlalchemy.orm.exc import StaleDataError
from tenacity import (
    AsyncRetrying,
    RetryError,
    retry_if_exception_type,
    stop_after_attempt,
    wait_fixed,
)

from app.config import settings
from app.core.datetime_utils import ensure_utc, utc_now
from app.models.inspection import (
    ApproverDecision,
    HistoryAction,
    Inspection,
    InspectionApprover,
    InspectionHistory,
    InspectionStatus,
)
from app.models.workflow import ConsensusPolicy, InspectionWorkflow
from app.schemas.inspection import InspectionSubmit
from app.services.decision_orchestrator import InspectionDraft, decide
from app.services.frequency_tracker import FrequencyTracker
from app.services.inspection_events import (
    InspectionEvent,
    InspectionEventSink,
    InspectionEventType,
    LoggingEventSink,
    publish_all,
)
from app.services.inspection_state_machine import (
    ApproverSlot,
    InspectionDecisionError,
    apply_decision,
)
from app.services.rule_evaluator import parse_numeric
from app.services.workflow_service import WorkflowService


logger = logging.getLogger(__name__)


class InspectionNotFoundError(InspectionDecisionError):
    """Unknown inspection id."""
    code = "INSPECTION_NOT_FOUND"


class InvalidSubmissionError(InspectionDecisionError):
    """Draft does not fit the workflow it was filled against."""
    code = "INVALID_SUBMISSION"


class DecisionConflictError(InspectionDecisionError):
    """Concurrent writes kept winning; the caller may try again."""
    code = "DECISION_CONFLICT"


@dataclass(frozen=True)
class DecisionResult:
    inspection: Inspection
    applied: bool
    reason: Optional[str] = None


def derive_meter_reading(data: InspectionSubmit) -> Optional[float]:
    """Explicit reading if given, else the first step's response when numeric."""
    if data.meter_reading is not None:
        return data.meter_reading
    if data.filled_steps:
        return parse_numeric(data.filled_steps[0].response_text)
    return None


def _start_of_day(day: date) -> datetime:
    return datetime.combine(day, time.min, tzinfo=timezone.utc)


def _slot_from_row(row: InspectionApprover) -> ApproverSlot:
    return ApproverSlot(
        position=row.position,
        approver_id=row.approver_id,
        role=row.role,
        status=row.status,
        remarks=row.remarks,
        action_date=row.action_date,
    )


class InspectionDecisionService:
    """Service for inspection submission and approver decisions."""

    def __init__(self, db: AsyncSession, event_sink: Optional[InspectionEventSink] = None):
        self.db = db
        self.event_sink = event_sink or LoggingEventSink()

    # ========================================================================
    # SUBMISSION
    # ========================================================================

    def _validate_submission(
        self,
        data: InspectionSubmit,
        workflow: InspectionWorkflow,
        assigned_to: uuid.UUID
    ) -> None:
        """Raise InvalidSubmissionError if the draft does not fit the workflow."""
        if workflow.consensus_policy == ConsensusPolicy.SINGLE.value and len(data.approvers) != 1:
            raise InvalidSubmissionError(
                "Workflow uses a single approver; exactly one approver is required",
                details={"approvers": len(data.approvers)},
            )

        # Maker-Checker: the inspector cannot approve their own inspection
        if any(a.approver_id == assigned_to for a in data.approvers):
            raise InvalidSubmissionError(
                "Maker-Checker violation: the inspector cannot be an approver",
                details={"assigned_to": str(assigned_to)},
            )

        known_step_ids = {str(step.get("id")) for step in (workflow.steps or []) if step.get("id")}
        unknown = [
            step.step_id for step in data.filled_steps
            if step.step_id and step.step_id not in known_step_ids
        ]
        if unknown:
            raise InvalidSubmissionError(
                "Filled steps reference steps not in the workflow",
                details={"unknown_step_ids": unknown},
            )

    async def submit_inspection(
        self,
        data: InspectionSubmit,
        assigned_to: uuid.UUID,
        submitted_at: Optional[datetime] = None
    ) -> Inspection:
        """
        Create an inspection and decide how it starts.

        Args:
            data: Validated submission
            assigned_to: Inspector submitting (the caller)
            submitted_at: Submission instant (defaults to now)

        Returns:
            The persisted inspection, AUTO_APPROVED or PENDING

        Raises:
            WorkflowNotFoundError, InvalidSubmissionError
        """
        submitted_at = ensure_utc(submitted_at) or utc_now()
        workflow = await WorkflowService(self.db).require_workflow(data.workflow_id)
        self._validate_submission(data, workflow, assigned_to)

        filled_steps = [step.model_dump(mode="json") for step in data.filled_steps]
        meter_reading = derive_meter_reading(data)
        draft = InspectionDraft(
            assigned_to=assigned_to,
            filled_steps=filled_steps,
            approvers=[(a.approver_id, a.role.value) for a in data.approvers],
            meter_reading=meter_reading,
        )

        decision = await decide(
            draft, workflow, submitted_at, FrequencyTracker(self.db).count_recent
        )

        inspection = Inspection(
            id=uuid.uuid4(),
            workflow_id=workflow.id,
            workflow_name=workflow.name,
            category=workflow.category,
            organization_id=workflow.organization_id,
            filled_steps=filled_steps,
            assigned_to=assigned_to,
            status=decision.status,
            auto_approved=decision.auto_approved,
            decision_reason=decision.reason,
            consensus_policy=workflow.consensus_policy,
            rules_snapshot=decision.rules_snapshot,
            meter_reading=meter_reading,
            reading_date=submitted_at if meter_reading is not None else None,
            inspection_date=ensure_utc(data.inspection_date),
            remarks=data.remarks,
            approved_at=submitted_at if decision.auto_approved else None,
            created_at=submitted_at,
            updated_at=submitted_at,
            approvers=[
                InspectionApprover(
                    position=slot.position,
                    approver_id=slot.approver_id,
                    role=slot.role,
                    status=slot.status,
                )
                for slot in decision.approvers
            ],
        )
        self.db.add(inspection)
        self.db.add(InspectionHistory(
            inspection_id=inspection.id,
            sequence=1,
            action=HistoryAction.SUBMITTED.value,
            from_status=None,
            to_status=InspectionStatus.PENDING.value,
            performed_by=assigned_to,
            comments=data.remarks,
            created_at=submitted_at,
        ))

        events = [InspectionEvent(
            event_type=InspectionEventType.INSPECTION_SUBMITTED,
            inspection_id=inspection.id,
            status=decision.status,
            occurred_at=submitted_at,
            actor_id=assigned_to,
            payload={"workflow_id": str(workflow.id), "reason": decision.reason},
        )]

        if decision.auto_approved:
            self.db.add(InspectionHistory(
                inspection_id=inspection.id,
                sequence=2,
                action=HistoryAction.AUTO_APPROVED.value,
                from_status=InspectionStatus.PENDING.value,
                to_status=InspectionStatus.AUTO_APPROVED.value,
                performed_by=None,
                comments=decision.reason,
                created_at=submitted_at,
            ))
            events.append(InspectionEvent(
                event_type=InspectionEventType.INSPECTION_AUTO_APPROVED,
                inspection_id=inspection.id,
                status=decision.status,
                occurred_at=submitted_at,
                payload={"value": decision.evaluation.value},
            ))

        await self.db.commit()
        logger.info(
            "Inspection %s submitted by %s on workflow %s: %s (%s)",
            inspection.id, assigned_to, workflow.id, decision.status, decision.reason
        )

        await publish_all(self.event_sink, events)
        return inspection

    # ========================================================================
    # APPROVER DECISIONS
    # ========================================================================

    async def _load_inspection(self, inspection_id: uuid.UUID) -> Optional[Inspection]:
        result = await self.db.execute(
            select(Inspection)
            .where(Inspection.id == inspection_id)
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def _next_history_sequence(self, inspection_id: uuid.UUID) -> int:
        result = await self.db.execute(
            select(func.max(InspectionHistory.sequence))
            .where(InspectionHistory.inspection_id == inspection_id)
        )
        return (result.scalar() or 0) + 1

    async def _apply_decision_once(
        self,
        inspection_id: uuid.UUID,
        approver_id: uuid.UUID,
        decision: ApproverDecision,
        remarks: Optional[str],
        acted_at: datetime
    ) -> Tuple[DecisionResult, List[InspectionEvent]]:
        """One read-modify-write cycle. Raises StaleDataError on a version conflict."""
        inspection = await self._load_inspection(inspection_id)
        if inspection is None:
            raise InspectionNotFoundError(
                "Inspection not found", details={"inspection_id": str(inspection_id)}
            )

        transition = apply_decision(
            inspection.consensus_policy,
            inspection.status,
            [_slot_from_row(row) for row in inspection.approvers],
            approver_id,
            decision,
            remarks,
            acted_at,
        )

        if not transition.applied:
            logger.info(
                "Inspection %s already %s; action by %s not applied",
                inspection.id, inspection.status, approver_id
            )
            return DecisionResult(inspection, False, transition.reason), []

        next_sequence = await self._next_history_sequence(inspection.id)
        from_status = inspection.status
        slot = transition.approvers[transition.slot_index]
        row = inspection.approvers[transition.slot_index]
        row.status = slot.status
        row.remarks = slot.remarks
        row.action_date = slot.action_date

        inspection.status = transition.status
        inspection.updated_at = acted_at
        # the parent row must be rewritten so its version is checked and bumped
        flag_modified(inspection, "updated_at")

        self.db.add(InspectionHistory(
            inspection_id=inspection.id,
            sequence=next_sequence,
            action=(
                HistoryAction.APPROVED.value
                if decision == ApproverDecision.APPROVE
                else HistoryAction.REJECTED.value
            ),
            from_status=from_status,
            to_status=transition.status,
            performed_by=approver_id,
            comments=remarks,
            created_at=acted_at,
        ))

        events = [InspectionEvent(
            event_type=InspectionEventType.APPROVER_DECISION_RECORDED,
            inspection_id=inspection.id,
            status=transition.status,
            occurred_at=acted_at,
            actor_id=approver_id,
            payload={"position": slot.position, "decision": slot.status},
        )]

        if transition.resolved:
            if transition.status == InspectionStatus.APPROVED.value:
                inspection.approved_at = acted_at
                inspection.approved_by = approver_id
            else:
                inspection.rejected_at = acted_at
                inspection.rejected_by = approver_id
            inspection.remarks = remarks or inspection.remarks

            self.db.add(InspectionHistory(
                inspection_id=inspection.id,
                sequence=next_sequence + 1,
                action=HistoryAction.RESOLVED.value,
                from_status=from_status,
                to_status=transition.status,
                performed_by=approver_id,
                comments=f"Resolved under {inspection.consensus_policy} policy",
                created_at=acted_at,
            ))
            events.append(InspectionEvent(
                event_type=InspectionEventType.INSPECTION_RESOLVED,
                inspection_id=inspection.id,
                status=transition.status,
                occurred_at=acted_at,
                actor_id=approver_id,
            ))

        try:
            await self.db.commit()
        except StaleDataError:
            await self.db.rollback()
            logger.warning(
                "Version conflict on inspection %s while recording action by %s; retrying",
                inspection_id, approver_id
            )
            raise

        if transition.resolved:
            logger.info("Inspection %s resolved: %s", inspection.id, transition.status)

        return DecisionResult(inspection, True), events

    async def record_approver_decision(
        self,
        inspection_id: uuid.UUID,
        approver_id: uuid.UUID,
        decision: ApproverDecision,
        remarks: Optional[str] = None,
        acted_at: Optional[datetime] = None
    ) -> DecisionResult:
        """
        Record one approver's approve/reject.

        Returns:
            DecisionResult; applied=False with reason ALREADY_TERMINAL when the
            inspection was already resolved (nothing is written)

        Raises:
            InspectionNotFoundError, NotAnApproverError, AlreadyDecidedError,
            OutOfTurnError, DecisionConflictError (retries exhausted)
        """
        acted_at = ensure_utc(acted_at) or utc_now()
        decision = ApproverDecision(decision)

        try:
            async for attempt in AsyncRetrying(
                stop=stop_after_attempt(settings.DECISION_CONFLICT_MAX_RETRIES),
                wait=wait_fixed(settings.DECISION_CONFLICT_RETRY_WAIT_SECONDS),
                retry=retry_if_exception_type(StaleDataError),
            ):
                with attempt:
                    result, events = await self._apply_decision_once(
                        inspection_id, approver_id, decision, remarks, acted_at
                    )
        except RetryError as exc:
            logger.warning(
                "Giving up on inspection %s after %d conflicting attempts",
                inspection_id, settings.DECISION_CONFLICT_MAX_RETRIES
            )
            raise DecisionConflictError(
                "Inspection was modified concurrently; try again",
                details={"inspection_id": str(inspection_id)},
            ) from exc

        await publish_all(self.event_sink, events)
        return result

    # ========================================================================
    # QUERIES
    # ========================================================================

    async def get_inspection(self, inspection_id: uuid.UUID) -> Optional[Inspection]:
        """Get inspection by ID."""
        result = await self.db.execute(
            select(Inspection).where(Inspection.id == inspection_id)
        )
        return result.scalar_one_or_none()

    async def require_inspection(self, inspection_id: uuid.UUID) -> Inspection:
        inspection = await self.get_inspection(inspection_id)
        if inspection is None:
            raise InspectionNotFoundError(
                "Inspection not found", details={"inspection_id": str(inspection_id)}
            )
        return inspection

    async def list_inspections(
        self,
        status: Optional[InspectionStatus] = None,
        workflow_id: Optional[uuid.UUID] = None,
        assigned_to: Optional[uuid.UUID] = None,
        approver_id: Optional[uuid.UUID] = None,
        from_date: Optional[date] = None,
        to_date: Optional[date] = None,
        skip: int = 0,
        limit: int = 50
    ) -> Tuple[List[Inspection], int]:
        """List inspections with filters."""
        query = select(Inspection)

        if status:
            query = query.where(Inspection.status == status.value)
        if workflow_id:
            query = query.where(Inspection.workflow_id == workflow_id)
        if assigned_to:
            query = query.where(Inspection.assigned_to == assigned_to)
        if approver_id:
            query = query.where(Inspection.id.in_(
                select(InspectionApprover.inspection_id)
                .where(InspectionApprover.approver_id == approver_id)
            ))
        if from_date:
            query = query.where(Inspection.inspection_date >= _start_of_day(from_date))
        if to_date:
            query = query.where(Inspection.inspection_date < _start_of_day(to_date) + timedelta(days=1))

        count_query = select(func.count()).select_from(query.subquery())
        total = (await self.db.execute(count_query)).scalar() or 0

        query = query.order_by(Inspection.created_at.desc()).offset(skip).limit(limit)
        result = await self.db.execute(query)
        return list(result.scalars().all()), total

    async def list_history(self, inspection_id: uuid.UUID) -> List[InspectionHistory]:
        """Audit trail for one inspection, oldest first."""
        await self.require_inspection(inspection_id)
        result = await self.db.execute(
            select(InspectionHistory)
            .where(InspectionHistory.inspection_id == inspection_id)
            .order_by(InspectionHistory.sequence)
        )
        return list(result.scalars().all())
