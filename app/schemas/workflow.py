"""
Inspection Workflow Schemas.

Pydantic schemas for workflow templates and their approval settings.
"""
from datetime import datetime
from typing import Optional, List
from uuid import UUID, uuid4

from pydantic import BaseModel, Field, field_validator, model_validator

from app.core.datetime_utils import parse_hhmm, resolve_zone
from app.models.workflow import ConsensusPolicy, FrequencyPeriod
from app.schemas.base import BaseResponseSchema, BaseCreateSchema, BaseUpdateSchema


def _check_timezone(v: Optional[str]) -> Optional[str]:
    if v is None:
        return v
    if resolve_zone(v, default=None) is None:
        raise ValueError(f"Unknown timezone: {v}")
    return v


# ============== Step & Rule Schemas ==============

class WorkflowStep(BaseModel):
    """One step an inspector fills in."""
    id: str = Field(default_factory=lambda: uuid4().hex)
    title: str = Field(..., min_length=1, max_length=200)
    instructions: str = ""
    media_required: bool = False


class AutoApprovalRulesSchema(BaseModel):
    """Auto-approval rule parameters. Defaults match a new workflow."""
    time_range_start: str = "00:00"
    time_range_end: str = "23:59"
    value_field: str = Field(default="responseText", min_length=1)
    min_value: Optional[float] = None
    max_value: Optional[float] = None
    require_photo: bool = True
    frequency_limit: Optional[int] = Field(default=None, ge=0)
    frequency_period: FrequencyPeriod = FrequencyPeriod.DAY

    @field_validator('time_range_start', 'time_range_end')
    @classmethod
    def validate_hhmm(cls, v: str) -> str:
        if parse_hhmm(v) is None:
            raise ValueError("must be HH:MM in 24-hour format")
        return v.strip()

    @model_validator(mode='after')
    def validate_bounds(self):
        if self.min_value is not None and self.max_value is not None and self.min_value > self.max_value:
            raise ValueError("min_value cannot exceed max_value")
        return self


# ============== Create / Update Schemas ==============

class WorkflowCreate(BaseCreateSchema):
    """Schema for creating a workflow."""
    organization_id: UUID
    name: str = Field(..., max_length=200)
    category: str = Field(..., max_length=100)
    description: Optional[str] = None
    steps: List[WorkflowStep] = Field(..., min_length=1)
    is_routine_inspection: bool = False
    auto_approval_enabled: bool = False
    auto_approval_rules: AutoApprovalRulesSchema = Field(default_factory=AutoApprovalRulesSchema)
    consensus_policy: ConsensusPolicy = ConsensusPolicy.PARALLEL
    timezone: Optional[str] = Field(None, max_length=64)

    @field_validator('timezone')
    @classmethod
    def validate_timezone(cls, v: Optional[str]) -> Optional[str]:
        return _check_timezone(v)


class ApprovalSettingsUpdate(BaseUpdateSchema):
    """Schema for PATCH /workflows/{id}/approval-settings."""
    is_routine_inspection: Optional[bool] = None
    auto_approval_enabled: Optional[bool] = None
    auto_approval_rules: Optional[AutoApprovalRulesSchema] = None
    consensus_policy: Optional[ConsensusPolicy] = None
    timezone: Optional[str] = Field(None, max_length=64)

    @field_validator('timezone')
    @classmethod
    def validate_timezone(cls, v: Optional[str]) -> Optional[str]:
        return _check_timezone(v)


# ============== Response Schemas ==============

class WorkflowResponse(BaseResponseSchema):
    """Response schema for a workflow."""
    id: UUID
    organization_id: UUID
    name: str
    category: str
    description: Optional[str] = None
    steps: List[WorkflowStep]
    is_routine_inspection: bool
    auto_approval_enabled: bool
    auto_approval_rules: dict
    consensus_policy: str
    timezone: Optional[str] = Field(None, validation_alias="local_timezone")
    created_at: datetime
    updated_at: datetime


class WorkflowListResponse(BaseModel):
    items: List[WorkflowResponse]
    total: int
    skip: int = 0
    limit: int = 50
