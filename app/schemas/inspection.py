"""
Inspection Schemas.

Pydantic schemas for submitting inspections and recording approver
decisions.
"""
from datetime import datetime
from typing import Optional, List
from uuid import UUID

from pydantic import BaseModel, Field, field_validator, model_validator

from app.core.permissions import Role
from app.schemas.base import BaseResponseSchema, BaseCreateSchema


# ============== Request Schemas ==============

class FilledStep(BaseModel):
    """An inspector's response to one workflow step."""
    step_id: Optional[str] = None
    step_title: str = Field(..., min_length=1, max_length=200)
    response_text: str
    media_urls: List[str] = Field(default_factory=list)
    timestamp: Optional[datetime] = None


class ApproverAssignment(BaseModel):
    """One approver in listed order; the first is the primary approver."""
    approver_id: UUID
    role: Role = Role.APPROVER

    @field_validator('role')
    @classmethod
    def validate_role(cls, v: Role) -> Role:
        if v == Role.INSPECTOR:
            raise ValueError("Inspectors cannot be approvers")
        return v


class InspectionSubmit(BaseCreateSchema):
    """Schema for submitting a filled inspection."""
    workflow_id: UUID
    filled_steps: List[FilledStep] = Field(..., min_length=1)
    approvers: List[ApproverAssignment] = Field(..., min_length=1)
    inspection_date: datetime
    meter_reading: Optional[float] = Field(None, ge=0)
    remarks: Optional[str] = None

    @model_validator(mode='after')
    def validate_unique_approvers(self):
        ids = [a.approver_id for a in self.approvers]
        if len(ids) != len(set(ids)):
            raise ValueError("Approvers must be unique")
        return self


class ApproverDecisionRequest(BaseModel):
    """Body for approve/reject. Accepts either 'remarks' or 'comments'."""
    remarks: Optional[str] = None
    comments: Optional[str] = None

    @property
    def text(self) -> Optional[str]:
        return self.remarks or self.comments


class RejectDecisionRequest(ApproverDecisionRequest):
    """Rejections must say why."""

    @model_validator(mode='after')
    def require_reason(self):
        if not (self.text or "").strip():
            raise ValueError("A rejection requires remarks")
        return self


# ============== Response Schemas ==============

class InspectionApproverResponse(BaseResponseSchema):
    position: int
    approver_id: UUID
    role: str
    status: str
    remarks: Optional[str] = None
    action_date: Optional[datetime] = None


class InspectionResponse(BaseResponseSchema):
    """Response schema for an inspection."""
    id: UUID
    workflow_id: UUID
    workflow_name: str
    category: str
    organization_id: UUID
    filled_steps: List[dict]
    assigned_to: UUID
    primary_approver_id: Optional[UUID] = None
    approvers: List[InspectionApproverResponse]
    status: str
    auto_approved: bool
    decision_reason: Optional[str] = None
    consensus_policy: str
    meter_reading: Optional[float] = None
    reading_date: Optional[datetime] = None
    inspection_date: datetime
    remarks: Optional[str] = None
    approved_at: Optional[datetime] = None
    approved_by: Optional[UUID] = None
    rejected_at: Optional[datetime] = None
    rejected_by: Optional[UUID] = None
    version: int
    created_at: datetime
    updated_at: datetime


class DecisionResponse(BaseModel):
    """Result of an approver action."""
    inspection: InspectionResponse
    applied: bool
    reason: Optional[str] = None


class InspectionListResponse(BaseModel):
    items: List[InspectionResponse]
    total: int
    skip: int = 0
    limit: int = 50


class InspectionHistoryResponse(BaseResponseSchema):
    id: UUID
    sequence: int
    action: str
    from_status: Optional[str] = None
    to_status: str
    performed_by: Optional[UUID] = None
    comments: Optional[str] = None
    created_at: datetime
