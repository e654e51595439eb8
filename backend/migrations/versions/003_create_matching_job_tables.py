"""Create matching_job, stage_attempt and cost_log tables

Revision ID: 003
Revises: 002
Create Date: 2026-09-10 14:00:00.000000

"""
from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision = '003'
down_revision = '002'
branch_labels = None
depends_on = None

JSON_PAYLOAD = sa.JSON().with_variant(postgresql.JSONB(astext_type=sa.Text()), 'postgresql')


def upgrade():
    """Create job tracking tables."""

    op.create_table(
        'matching_job',
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('project_id', sa.Uuid(), nullable=False),
        sa.Column('user_id', sa.Text(), nullable=True),

        sa.Column('status', sa.Text(), server_default='queued', nullable=False),
        sa.Column('config', JSON_PAYLOAD, nullable=False),
        sa.Column('priority', sa.Integer(), server_default='0', nullable=False),

        # Progress
        sa.Column('total_items', sa.Integer(), server_default='0', nullable=False),
        sa.Column('processed_items', sa.Integer(), server_default='0', nullable=False),
        sa.Column('matches_found', sa.Integer(), server_default='0', nullable=False),
        sa.Column('progress_percentage', sa.Float(), server_default='0', nullable=False),
        sa.Column('match_rate', sa.Float(), server_default='0', nullable=False),
        sa.Column('estimated_cost_micros', sa.BigInteger(), server_default='0', nullable=False),
        sa.Column('run_cost_micros', sa.BigInteger(), server_default='0', nullable=False),
        sa.Column('estimated_completion', sa.TIMESTAMP(timezone=True), nullable=True),
        sa.Column('chunks_processed', sa.Integer(), server_default='0', nullable=False),

        # Cancellation
        sa.Column('cancellation_requested', sa.Boolean(), server_default=sa.false(), nullable=False),
        sa.Column('cancellation_type', sa.Text(), nullable=True),
        sa.Column('cancelled_by', sa.Text(), nullable=True),

        sa.Column('error_message', sa.Text(), nullable=True),
        sa.Column('status_message', sa.Text(), nullable=True),

        # Exclusive claim
        sa.Column('locked_at', sa.TIMESTAMP(timezone=True), nullable=True),
        sa.Column('lock_token', sa.Text(), nullable=True),

        sa.Column('queued_at', sa.TIMESTAMP(timezone=True), server_default=sa.text('CURRENT_TIMESTAMP'), nullable=False),
        sa.Column('started_at', sa.TIMESTAMP(timezone=True), nullable=True),
        sa.Column('completed_at', sa.TIMESTAMP(timezone=True), nullable=True),
        sa.Column('cancelled_at', sa.TIMESTAMP(timezone=True), nullable=True),
        sa.Column('created_at', sa.TIMESTAMP(timezone=True), server_default=sa.text('CURRENT_TIMESTAMP'), nullable=False),
        sa.Column('updated_at', sa.TIMESTAMP(timezone=True), server_default=sa.text('CURRENT_TIMESTAMP'), nullable=False),

        sa.PrimaryKeyConstraint('id'),
        sa.ForeignKeyConstraint(['project_id'], ['project.id'], ondelete='CASCADE'),
        sa.CheckConstraint(
            "status IN ('queued', 'processing', 'completed', 'failed', 'cancelled')",
            name='ck_matching_job_status'
        ),
    )
    op.create_index('ix_matching_job_status', 'matching_job', ['status'])
    op.create_index('ix_matching_job_project_status', 'matching_job', ['project_id', 'status'])

    # Which items a job has evaluated; remaining work is derived from it
    op.create_table(
        'stage_attempt',
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('job_id', sa.Uuid(), nullable=False),
        sa.Column('project_id', sa.Uuid(), nullable=False),
        sa.Column('source_item_id', sa.Uuid(), nullable=False),
        sa.Column('match_stage', sa.Integer(), nullable=False),
        sa.Column('matched', sa.Boolean(), server_default=sa.false(), nullable=False),
        sa.Column('created_at', sa.TIMESTAMP(timezone=True), server_default=sa.text('CURRENT_TIMESTAMP'), nullable=False),
        sa.PrimaryKeyConstraint('id'),
        sa.ForeignKeyConstraint(['job_id'], ['matching_job.id'], ondelete='CASCADE'),
        sa.ForeignKeyConstraint(['project_id'], ['project.id'], ondelete='CASCADE'),
        sa.ForeignKeyConstraint(['source_item_id'], ['catalog_item.id'], ondelete='CASCADE'),
        sa.UniqueConstraint('job_id', 'source_item_id', name='uq_stage_attempt_job_item'),
    )
    op.create_index('ix_stage_attempt_job', 'stage_attempt', ['job_id'])

    op.create_table(
        'cost_log',
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('project_id', sa.Uuid(), nullable=False),
        sa.Column('job_id', sa.Uuid(), nullable=True),
        sa.Column('operation', sa.Text(), nullable=False),
        sa.Column('cost_micros', sa.BigInteger(), nullable=False),
        sa.Column('items_processed', sa.Integer(), server_default='1', nullable=False),
        sa.Column('created_at', sa.TIMESTAMP(timezone=True), server_default=sa.text('CURRENT_TIMESTAMP'), nullable=False),
        sa.PrimaryKeyConstraint('id'),
        sa.ForeignKeyConstraint(['project_id'], ['project.id'], ondelete='CASCADE'),
    )
    op.create_index('ix_cost_log_project', 'cost_log', ['project_id', 'created_at'])


def downgrade():
    """Drop job tracking tables."""

    op.drop_index('ix_cost_log_project', table_name='cost_log')
    op.drop_table('cost_log')

    op.drop_index('ix_stage_attempt_job', table_name='stage_attempt')
    op.drop_table('stage_attempt')

    op.drop_index('ix_matching_job_project_status', table_name='matching_job')
    op.drop_index('ix_matching_job_status', table_name='matching_job')
    op.drop_table('matching_job')
