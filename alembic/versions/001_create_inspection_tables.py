"""Create inspection decision tables

Revision ID: 001_inspections
Revises:
Create Date: 2026-10-19
"""
from alembic import op
import sqlalchemy as sa

# revision identifiers
revision = '001_inspections'
down_revision = None
branch_labels = None
depends_on = None


def upgrade():
    """Create workflow, inspection, approver slot and history tables"""

    # ====================
    # INSPECTION WORKFLOWS TABLE
    # ====================
    op.create_table(
        'inspection_workflows',
        sa.Column('id', sa.Uuid(), primary_key=True),
        sa.Column('organization_id', sa.Uuid(), nullable=False),
        sa.Column('name', sa.String(200), nullable=False),
        sa.Column('category', sa.String(100), nullable=False),
        sa.Column('description', sa.Text, nullable=True),
        sa.Column('steps', sa.JSON(), nullable=False),
        sa.Column('is_routine_inspection', sa.Boolean, server_default=sa.false(), nullable=False),
        sa.Column('auto_approval_enabled', sa.Boolean, server_default=sa.false(), nullable=False),
        sa.Column('auto_approval_rules', sa.JSON(), nullable=False),
        sa.Column('consensus_policy', sa.String(30), server_default='PARALLEL', nullable=False),
        sa.Column('local_timezone', sa.String(64), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
    )

    op.create_index('ix_inspection_workflows_organization_id', 'inspection_workflows', ['organization_id'])

    # ====================
    # INSPECTIONS TABLE
    # ====================
    op.create_table(
        'inspections',
        sa.Column('id', sa.Uuid(), primary_key=True),
        sa.Column('workflow_id', sa.Uuid(), sa.ForeignKey('inspection_workflows.id', ondelete='RESTRICT'), nullable=False),
        sa.Column('workflow_name', sa.String(200), nullable=False),
        sa.Column('category', sa.String(100), nullable=False),
        sa.Column('organization_id', sa.Uuid(), nullable=False),
        sa.Column('filled_steps', sa.JSON(), nullable=False),
        sa.Column('assigned_to', sa.Uuid(), nullable=False),
        sa.Column('status', sa.String(20), server_default='PENDING', nullable=False),
        sa.Column('auto_approved', sa.Boolean, server_default=sa.false(), nullable=False),
        sa.Column('decision_reason', sa.Text, nullable=True),
        sa.Column('consensus_policy', sa.String(30), nullable=False),
        sa.Column('rules_snapshot', sa.JSON(), nullable=True),
        sa.Column('meter_reading', sa.Float, nullable=True),
        sa.Column('reading_date', sa.DateTime(timezone=True), nullable=True),
        sa.Column('inspection_date', sa.DateTime(timezone=True), nullable=False),
        sa.Column('remarks', sa.Text, nullable=True),
        sa.Column('approved_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('approved_by', sa.Uuid(), nullable=True),
        sa.Column('rejected_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('rejected_by', sa.Uuid(), nullable=True),
        sa.Column('version', sa.Integer, nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
    )

    op.create_index('ix_inspections_workflow_id', 'inspections', ['workflow_id'])
    op.create_index('ix_inspections_status', 'inspections', ['status'])
    op.create_index('ix_inspections_frequency', 'inspections', ['assigned_to', 'workflow_id', 'inspection_date'])

    # ====================
    # INSPECTION APPROVERS TABLE
    # ====================
    op.create_table(
        'inspection_approvers',
        sa.Column('id', sa.Uuid(), primary_key=True),
        sa.Column('inspection_id', sa.Uuid(), sa.ForeignKey('inspections.id', ondelete='CASCADE'), nullable=False),
        sa.Column('position', sa.Integer, nullable=False),
        sa.Column('approver_id', sa.Uuid(), nullable=False),
        sa.Column('role', sa.String(20), nullable=False),
        sa.Column('status', sa.String(20), server_default='PENDING', nullable=False),
        sa.Column('remarks', sa.Text, nullable=True),
        sa.Column('action_date', sa.DateTime(timezone=True), nullable=True),
        sa.UniqueConstraint('inspection_id', 'position', name='uq_inspection_approver_position'),
        sa.UniqueConstraint('inspection_id', 'approver_id', name='uq_inspection_approver_user'),
    )

    op.create_index('ix_inspection_approvers_inspection_id', 'inspection_approvers', ['inspection_id'])
    op.create_index('ix_inspection_approvers_approver_id', 'inspection_approvers', ['approver_id'])

    # ====================
    # INSPECTION HISTORY TABLE
    # ====================
    op.create_table(
        'inspection_history',
        sa.Column('id', sa.Uuid(), primary_key=True),
        sa.Column('inspection_id', sa.Uuid(), sa.ForeignKey('inspections.id', ondelete='CASCADE'), nullable=False),
        sa.Column('sequence', sa.Integer, nullable=False),
        sa.Column('action', sa.String(30), nullable=False),
        sa.Column('from_status', sa.String(20), nullable=True),
        sa.Column('to_status', sa.String(20), nullable=False),
        sa.Column('performed_by', sa.Uuid(), nullable=True),
        sa.Column('comments', sa.Text, nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.UniqueConstraint('inspection_id', 'sequence', name='uq_inspection_history_sequence'),
    )

    op.create_index('ix_inspection_history_inspection_id', 'inspection_history', ['inspection_id'])


def downgrade():
    """Drop inspection decision tables"""
    op.drop_table('inspection_history')
    op.drop_table('inspection_approvers')
    op.drop_table('inspections')
    op.drop_table('inspection_workflows')
