"""
Inspection Workflow Model.

A workflow is the per-organization template an inspection is filled against:
- Ordered step definitions (title, instructions, media flag)
- Auto-approval gate and rule parameters
- Consensus policy used to combine approver decisions

Workflows are read-only to the decision engine. Every inspection snapshots
the rules and policy it was decided against, so later edits never touch
inspections that already exist.
"""
import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Optional, List

from sqlalchemy import String, Boolean, DateTime, Text, Index
from sqlalchemy.orm import Mapped, mapped_column

from app.database import Base
from app.db_types import JSONType, UUIDType


class ConsensusPolicy(str, Enum):
    """How individual approver decisions combine into one overall status."""
    SINGLE = "SINGLE"                   # Exactly one approver
    SEQUENTIAL = "SEQUENTIAL"           # Approvers act in listed order
    PARALLEL = "PARALLEL"               # Any order, all must agree
    ADMIN_OVERRIDE = "ADMIN_OVERRIDE"   # Parallel, but an admin approval resolves alone


class FrequencyPeriod(str, Enum):
    """Rolling window used to cap auto-approvals."""
    HOUR = "hour"
    DAY = "day"
    WEEK = "week"


DEFAULT_AUTO_APPROVAL_RULES = {
    "time_range_start": "00:00",
    "time_range_end": "23:59",
    "value_field": "responseText",
    "min_value": None,
    "max_value": None,
    "require_photo": True,
    "frequency_limit": None,
    "frequency_period": FrequencyPeriod.DAY.value,
}


class InspectionWorkflow(Base):
    """
    Inspection workflow template.

    Holds the configuration the decision engine reads at submission time.
    """
    __tablename__ = "inspection_workflows"
    __table_args__ = (
        Index("ix_inspection_workflows_org", "organization_id"),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        UUIDType,
        primary_key=True,
        default=uuid.uuid4
    )
    organization_id: Mapped[uuid.UUID] = mapped_column(
        UUIDType,
        nullable=False
    )

    name: Mapped[str] = mapped_column(String(200), nullable=False)
    category: Mapped[str] = mapped_column(String(100), nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    # Ordered step definitions: [{title, instructions, media_required}]
    steps: Mapped[List[dict]] = mapped_column(
        JSONType,
        nullable=False,
        default=list
    )

    is_routine_inspection: Mapped[bool] = mapped_column(Boolean, default=False)

    # Auto-approval
    auto_approval_enabled: Mapped[bool] = mapped_column(Boolean, default=False)
    auto_approval_rules: Mapped[dict] = mapped_column(
        JSONType,
        nullable=False,
        default=lambda: dict(DEFAULT_AUTO_APPROVAL_RULES),
        comment="time_range_start, time_range_end, value_field, min_value, max_value, require_photo, frequency_limit, frequency_period"
    )

    consensus_policy: Mapped[str] = mapped_column(
        String(30),
        nullable=False,
        default=ConsensusPolicy.PARALLEL.value,
        comment="SINGLE, SEQUENTIAL, PARALLEL, ADMIN_OVERRIDE"
    )

    # Zone used for the auto-approval time window; NULL means settings default
    local_timezone: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
        nullable=False
    )

    def __repr__(self) -> str:
        return f"<InspectionWorkflow(name='{self.name}', policy='{self.consensus_policy}')>"
