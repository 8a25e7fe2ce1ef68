"""
Inspection API Endpoints.

Provides:
- Submit a filled inspection (auto-approval decided on submission)
- List and fetch inspections, with their audit trail
- Approve/Reject as one of the inspection's approvers
"""
from datetime import date
from typing import List, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, Query

from app.api.deps import DB, Actor, EventSink, require_capability
from app.core.permissions import Capability
from app.models.inspection import ApproverDecision, InspectionStatus
from app.schemas.inspection import (
    ApproverDecisionRequest,
    DecisionResponse,
    InspectionHistoryResponse,
    InspectionListResponse,
    InspectionResponse,
    InspectionSubmit,
    RejectDecisionRequest,
)
from app.services.inspection_service import InspectionDecisionService

router = APIRouter()


def _decision_response(result) -> DecisionResponse:
    return DecisionResponse(
        inspection=InspectionResponse.model_validate(result.inspection),
        applied=result.applied,
        reason=result.reason,
    )


# ============== Submission ==============

@router.post("", response_model=InspectionResponse, status_code=201)
async def submit_inspection(
    data: InspectionSubmit,
    db: DB,
    actor: Actor,
    event_sink: EventSink,
):
    """
    Submit a filled inspection.

    The caller is the inspector. The response carries the submission-time
    decision: AUTO_APPROVED, or PENDING with every approver slot pending.
    """
    actor.require(Capability.CREATE_INSPECTIONS)
    inspection = await InspectionDecisionService(db, event_sink).submit_inspection(
        data, assigned_to=actor.user_id
    )
    return InspectionResponse.model_validate(inspection)


# ============== Queries ==============

@router.get(
    "",
    response_model=InspectionListResponse,
    dependencies=[Depends(require_capability(Capability.VIEW_INSPECTIONS))],
)
async def list_inspections(
    db: DB,
    status: Optional[InspectionStatus] = Query(None),
    workflow_id: Optional[UUID] = Query(None),
    assigned_to: Optional[UUID] = Query(None),
    approver_id: Optional[UUID] = Query(None, description="Inspections this user must decide on"),
    from_date: Optional[date] = Query(None),
    to_date: Optional[date] = Query(None),
    skip: int = Query(0, ge=0),
    limit: int = Query(50, ge=1, le=200),
):
    """List inspections with filters."""
    inspections, total = await InspectionDecisionService(db).list_inspections(
        status=status,
        workflow_id=workflow_id,
        assigned_to=assigned_to,
        approver_id=approver_id,
        from_date=from_date,
        to_date=to_date,
        skip=skip,
        limit=limit,
    )
    return InspectionListResponse(
        items=[InspectionResponse.model_validate(i) for i in inspections],
        total=total,
        skip=skip,
        limit=limit,
    )


@router.get(
    "/{inspection_id}",
    response_model=InspectionResponse,
    dependencies=[Depends(require_capability(Capability.VIEW_INSPECTIONS))],
)
async def get_inspection(inspection_id: UUID, db: DB):
    """Get an inspection by ID."""
    inspection = await InspectionDecisionService(db).require_inspection(inspection_id)
    return InspectionResponse.model_validate(inspection)


@router.get(
    "/{inspection_id}/history",
    response_model=List[InspectionHistoryResponse],
    dependencies=[Depends(require_capability(Capability.VIEW_INSPECTIONS))],
)
async def get_inspection_history(inspection_id: UUID, db: DB):
    """Audit trail for an inspection, oldest first."""
    history = await InspectionDecisionService(db).list_history(inspection_id)
    return [InspectionHistoryResponse.model_validate(h) for h in history]


# ============== Approver Actions ==============

@router.put("/{inspection_id}/approve", response_model=DecisionResponse)
async def approve_inspection(
    inspection_id: UUID,
    db: DB,
    actor: Actor,
    event_sink: EventSink,
    request: Optional[ApproverDecisionRequest] = None,
):
    """
    Approve as one of the inspection's approvers.

    An already resolved inspection is returned unchanged with applied=false.
    """
    actor.require(Capability.APPROVE_INSPECTIONS)
    result = await InspectionDecisionService(db, event_sink).record_approver_decision(
        inspection_id,
        approver_id=actor.user_id,
        decision=ApproverDecision.APPROVE,
        remarks=request.text if request else None,
    )
    return _decision_response(result)


@router.put("/{inspection_id}/reject", response_model=DecisionResponse)
async def reject_inspection(
    inspection_id: UUID,
    request: RejectDecisionRequest,
    db: DB,
    actor: Actor,
    event_sink: EventSink,
):
    """Reject as one of the inspection's approvers. Remarks are required."""
    actor.require(Capability.REJECT_INSPECTIONS)
    result = await InspectionDecisionService(db, event_sink).record_approver_decision(
        inspection_id,
        approver_id=actor.user_id,
        decision=ApproverDecision.REJECT,
        remarks=request.text,
    )
    return _decision_response(result)
