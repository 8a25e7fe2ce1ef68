"""
Inspection Workflow Service.

Configuration lookup for the decision engine, plus the small write surface
used to create workflows and change their approval settings. Changing
settings never affects inspections that already exist; each inspection
keeps the snapshot it was decided against.
"""
import logging
import uuid
from datetime import datetime, timezone
from typing import Optional, List, Tuple

from sqlalchemy import select, func
from sqlalchemy.ext.asyncio import AsyncSession

from app.models.workflow import InspectionWorkflow
from app.schemas.workflow import WorkflowCreate, ApprovalSettingsUpdate
from app.services.inspection_state_machine import InspectionDecisionError


logger = logging.getLogger(__name__)


class WorkflowNotFoundError(InspectionDecisionError):
    """Unknown workflow id."""
    code = "WORKFLOW_NOT_FOUND"


class WorkflowService:
    """Service for inspection workflow configuration."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def create_workflow(self, data: WorkflowCreate) -> InspectionWorkflow:
        """Create a workflow template."""
        workflow = InspectionWorkflow(
            id=uuid.uuid4(),
            organization_id=data.organization_id,
            name=data.name,
            category=data.category,
            description=data.description,
            steps=[s.model_dump() for s in data.steps],
            is_routine_inspection=data.is_routine_inspection,
            auto_approval_enabled=data.auto_approval_enabled,
            auto_approval_rules=data.auto_approval_rules.model_dump(mode="json"),
            consensus_policy=data.consensus_policy.value,
            local_timezone=data.timezone,
        )
        self.db.add(workflow)
        await self.db.commit()
        await self.db.refresh(workflow)
        logger.info("Created workflow %s (%s)", workflow.id, workflow.name)
        return workflow

    async def get_workflow(self, workflow_id: uuid.UUID) -> Optional[InspectionWorkflow]:
        """Get workflow by ID."""
        result = await self.db.execute(
            select(InspectionWorkflow).where(InspectionWorkflow.id == workflow_id)
        )
        return result.scalar_one_or_none()

    async def require_workflow(self, workflow_id: uuid.UUID) -> InspectionWorkflow:
        """Get workflow by ID or raise WorkflowNotFoundError."""
        workflow = await self.get_workflow(workflow_id)
        if workflow is None:
            raise WorkflowNotFoundError(
                "Workflow not found", details={"workflow_id": str(workflow_id)}
            )
        return workflow

    async def list_workflows(
        self,
        organization_id: Optional[uuid.UUID] = None,
        skip: int = 0,
        limit: int = 50
    ) -> Tuple[List[InspectionWorkflow], int]:
        """List workflows, optionally for one organization."""
        query = select(InspectionWorkflow)
        if organization_id:
            query = query.where(InspectionWorkflow.organization_id == organization_id)

        count_query = select(func.count()).select_from(query.subquery())
        total = (await self.db.execute(count_query)).scalar() or 0

        query = query.order_by(InspectionWorkflow.name).offset(skip).limit(limit)
        result = await self.db.execute(query)
        return list(result.scalars().all()), total

    async def update_approval_settings(
        self,
        workflow_id: uuid.UUID,
        data: ApprovalSettingsUpdate
    ) -> InspectionWorkflow:
        """Update auto-approval and consensus settings for future inspections."""
        workflow = await self.require_workflow(workflow_id)

        update_data = data.model_dump(exclude_unset=True, mode="json")
        for key, value in update_data.items():
            if key == "timezone":
                workflow.local_timezone = value
            elif key == "auto_approval_rules":
                if value is not None:
                    workflow.auto_approval_rules = value
            elif value is not None:
                setattr(workflow, key, value)

        workflow.updated_at = datetime.now(timezone.utc)
        await self.db.commit()
        await self.db.refresh(workflow)
        logger.info("Updated approval settings for workflow %s", workflow.id)
        return workflow
