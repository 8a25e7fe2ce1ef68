"""
Inspection Workflow API Endpoints.

Provides:
- Create and list workflow templates
- Update approval settings (auto-approval rules, consensus policy, timezone)
"""
from typing import Optional
from uuid import UUID

from fastapi import APIRouter, Depends, Query, status

from app.api.deps import DB, require_capability
from app.core.permissions import Capability
from app.schemas.workflow import (
    ApprovalSettingsUpdate,
    WorkflowCreate,
    WorkflowListResponse,
    WorkflowResponse,
)
from app.services.workflow_service import WorkflowService

router = APIRouter()


@router.post(
    "",
    response_model=WorkflowResponse,
    status_code=status.HTTP_201_CREATED,
    dependencies=[Depends(require_capability(Capability.MANAGE_WORKFLOWS))],
)
async def create_workflow(data: WorkflowCreate, db: DB):
    """Create a workflow template."""
    workflow = await WorkflowService(db).create_workflow(data)
    return WorkflowResponse.model_validate(workflow)


@router.get(
    "",
    response_model=WorkflowListResponse,
    dependencies=[Depends(require_capability(Capability.VIEW_WORKFLOWS))],
)
async def list_workflows(
    db: DB,
    organization_id: Optional[UUID] = Query(None),
    skip: int = Query(0, ge=0),
    limit: int = Query(50, ge=1, le=200),
):
    """List workflow templates."""
    workflows, total = await WorkflowService(db).list_workflows(
        organization_id=organization_id, skip=skip, limit=limit
    )
    return WorkflowListResponse(
        items=[WorkflowResponse.model_validate(w) for w in workflows],
        total=total,
        skip=skip,
        limit=limit,
    )


@router.get(
    "/{workflow_id}",
    response_model=WorkflowResponse,
    dependencies=[Depends(require_capability(Capability.VIEW_WORKFLOWS))],
)
async def get_workflow(workflow_id: UUID, db: DB):
    """Get a workflow by ID."""
    workflow = await WorkflowService(db).require_workflow(workflow_id)
    return WorkflowResponse.model_validate(workflow)


@router.patch(
    "/{workflow_id}/approval-settings",
    response_model=WorkflowResponse,
    dependencies=[Depends(require_capability(Capability.MANAGE_WORKFLOWS))],
)
async def update_approval_settings(
    workflow_id: UUID,
    data: ApprovalSettingsUpdate,
    db: DB,
):
    """
    Update auto-approval and consensus settings.

    Applies to inspections submitted afterwards only.
    """
    workflow = await WorkflowService(db).update_approval_settings(workflow_id, data)
    return WorkflowResponse.model_validate(workflow)
