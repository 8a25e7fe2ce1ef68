"""
Inspection Models.

- Inspection: one submitted inspection and its overall decision state
- InspectionApprover: ordered approver slots, fixed at creation
- InspectionHistory: audit trail of every accepted action

Decision fields (status, auto_approved, approver slot status) are only ever
written by InspectionDecisionService through the state machine. The
`version` column makes every write a compare-and-swap: a concurrent writer
that read an older version fails with StaleDataError at flush time.
"""
import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Optional, List

from sqlalchemy import String, Boolean, DateTime, ForeignKey, Integer, Text, Float, Index
from sqlalchemy import UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.database import Base
from app.db_types import JSONType, UUIDType


class InspectionStatus(str, Enum):
    """Overall status of an inspection."""
    PENDING = "PENDING"
    APPROVED = "APPROVED"
    REJECTED = "REJECTED"
    AUTO_APPROVED = "AUTO_APPROVED"


TERMINAL_STATUSES = frozenset({
    InspectionStatus.APPROVED.value,
    InspectionStatus.REJECTED.value,
    InspectionStatus.AUTO_APPROVED.value,
})


class ApproverStatus(str, Enum):
    """Status of a single approver slot."""
    PENDING = "PENDING"
    APPROVED = "APPROVED"
    REJECTED = "REJECTED"


class ApproverDecision(str, Enum):
    """Action an approver takes."""
    APPROVE = "APPROVE"
    REJECT = "REJECT"


class HistoryAction(str, Enum):
    SUBMITTED = "SUBMITTED"
    AUTO_APPROVED = "AUTO_APPROVED"
    APPROVED = "APPROVED"
    REJECTED = "REJECTED"
    RESOLVED = "RESOLVED"


class Inspection(Base):
    """
    A submitted inspection.

    Tracks:
    - Which workflow it was filled against (immutable)
    - The filled steps and optional meter reading
    - The inspector and the ordered approver slots
    - The overall status and how it was reached
    """
    __tablename__ = "inspections"
    __table_args__ = (
        Index("ix_inspections_frequency", "assigned_to", "workflow_id", "inspection_date"),
        Index("ix_inspections_status", "status"),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        UUIDType,
        primary_key=True,
        default=uuid.uuid4
    )

    workflow_id: Mapped[uuid.UUID] = mapped_column(
        UUIDType,
        ForeignKey("inspection_workflows.id", ondelete="RESTRICT"),
        nullable=False,
        index=True
    )
    workflow_name: Mapped[str] = mapped_column(String(200), nullable=False)
    category: Mapped[str] = mapped_column(String(100), nullable=False)
    organization_id: Mapped[uuid.UUID] = mapped_column(UUIDType, nullable=False)

    # [{step_id, step_title, response_text, media_urls, timestamp}]
    filled_steps: Mapped[List[dict]] = mapped_column(
        JSONType,
        nullable=False,
        default=list
    )

    # Inspector who performed the inspection
    assigned_to: Mapped[uuid.UUID] = mapped_column(UUIDType, nullable=False)

    status: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
        default=InspectionStatus.PENDING.value,
        comment="PENDING, APPROVED, REJECTED, AUTO_APPROVED"
    )
    auto_approved: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    decision_reason: Mapped[Optional[str]] = mapped_column(
        Text,
        nullable=True,
        comment="Why the submission went to auto-approval or manual review"
    )

    # Snapshot of the workflow settings the decision was made against
    consensus_policy: Mapped[str] = mapped_column(String(30), nullable=False)
    rules_snapshot: Mapped[Optional[dict]] = mapped_column(JSONType, nullable=True)

    meter_reading: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    reading_date: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    inspection_date: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    remarks: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    approved_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    approved_by: Mapped[Optional[uuid.UUID]] = mapped_column(UUIDType, nullable=True)
    rejected_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    rejected_by: Mapped[Optional[uuid.UUID]] = mapped_column(UUIDType, nullable=True)

    version: Mapped[int] = mapped_column(Integer, nullable=False)

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

    approvers: Mapped[List["InspectionApprover"]] = relationship(
        "InspectionApprover",
        back_populates="inspection",
        cascade="all, delete-orphan",
        order_by="InspectionApprover.position",
        lazy="selectin"
    )

    __mapper_args__ = {"version_id_col": version}

    @property
    def primary_approver_id(self) -> Optional[uuid.UUID]:
        return self.approvers[0].approver_id if self.approvers else None

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    def __repr__(self) -> str:
        return f"<Inspection(id='{self.id}', workflow='{self.workflow_name}', status='{self.status}')>"


class InspectionApprover(Base):
    """
    One approver slot on an inspection.

    Position 0 is the primary approver. The role is snapshotted at creation
    so the consensus policy never depends on later role changes.
    """
    __tablename__ = "inspection_approvers"
    __table_args__ = (
        UniqueConstraint("inspection_id", "position", name="uq_inspection_approver_position"),
        UniqueConstraint("inspection_id", "approver_id", name="uq_inspection_approver_user"),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        UUIDType,
        primary_key=True,
        default=uuid.uuid4
    )
    inspection_id: Mapped[uuid.UUID] = mapped_column(
        UUIDType,
        ForeignKey("inspections.id", ondelete="CASCADE"),
        nullable=False,
        index=True
    )
    position: Mapped[int] = mapped_column(Integer, nullable=False)
    approver_id: Mapped[uuid.UUID] = mapped_column(UUIDType, nullable=False, index=True)
    role: Mapped[str] = mapped_column(String(20), nullable=False)

    status: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
        default=ApproverStatus.PENDING.value
    )
    remarks: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    action_date: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    inspection: Mapped["Inspection"] = relationship(
        "Inspection",
        back_populates="approvers"
    )

    def __repr__(self) -> str:
        return f"<InspectionApprover(position={self.position}, status='{self.status}')>"


class InspectionHistory(Base):
    """
    Audit trail for inspection decisions.

    Written in the same transaction as the change it records. `sequence`
    numbers the entries of one inspection in the order they were written.
    """
    __tablename__ = "inspection_history"
    __table_args__ = (
        UniqueConstraint("inspection_id", "sequence", name="uq_inspection_history_sequence"),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        UUIDType,
        primary_key=True,
        default=uuid.uuid4
    )
    inspection_id: Mapped[uuid.UUID] = mapped_column(
        UUIDType,
        ForeignKey("inspections.id", ondelete="CASCADE"),
        nullable=False,
        index=True
    )
    sequence: Mapped[int] = mapped_column(Integer, nullable=False)

    action: Mapped[str] = mapped_column(
        String(30),
        nullable=False,
        comment="SUBMITTED, AUTO_APPROVED, APPROVED, REJECTED, RESOLVED"
    )
    from_status: Mapped[Optional[str]] = mapped_column(String(20), nullable=True)
    to_status: Mapped[str] = mapped_column(String(20), nullable=False)

    performed_by: Mapped[Optional[uuid.UUID]] = mapped_column(UUIDType, nullable=True)
    comments: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        nullable=False
    )

    def __repr__(self) -> str:
        return f"<InspectionHistory(action='{self.action}', status='{self.to_status}')>"
