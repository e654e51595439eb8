"""Create match_candidate and master_rule tables

Revision ID: 002
Revises: 001
Create Date: 2026-09-08 09:30:00.000000

"""
from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision = '002'
down_revision = '001'
branch_labels = None
depends_on = None

JSON_PAYLOAD = sa.JSON().with_variant(postgresql.JSONB(astext_type=sa.Text()), 'postgresql')


def upgrade():
    """Create candidate and master rule tables with their lookup indexes."""

    op.create_table(
        'match_candidate',
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('project_id', sa.Uuid(), nullable=False),
        sa.Column('source_item_id', sa.Uuid(), nullable=False),

        # Target: catalog_item.id (SUPPLIER) or interchange_row.id (INTERCHANGE_ONLY)
        sa.Column('target_type', sa.Text(), server_default='SUPPLIER', nullable=False),
        sa.Column('target_id', sa.Uuid(), nullable=False),

        sa.Column('method', sa.Text(), nullable=False),
        sa.Column('match_stage', sa.Integer(), nullable=False),
        sa.Column('confidence', sa.Float(), nullable=False),
        sa.Column('status', sa.Text(), server_default='PENDING', nullable=False),
        sa.Column('features', JSON_PAYLOAD, nullable=False),
        sa.Column('job_id', sa.Uuid(), nullable=True),

        sa.Column('created_at', sa.TIMESTAMP(timezone=True), server_default=sa.text('CURRENT_TIMESTAMP'), nullable=False),
        sa.Column('updated_at', sa.TIMESTAMP(timezone=True), server_default=sa.text('CURRENT_TIMESTAMP'), nullable=False),

        sa.PrimaryKeyConstraint('id'),
        sa.ForeignKeyConstraint(['project_id'], ['project.id'], ondelete='CASCADE'),
        sa.ForeignKeyConstraint(['source_item_id'], ['catalog_item.id'], ondelete='CASCADE'),
        # Skip-on-conflict key for every writer
        sa.UniqueConstraint('source_item_id', 'target_id', 'method', name='uq_match_candidate_pair_method'),
        sa.CheckConstraint('match_stage BETWEEN 0 AND 4', name='ck_match_candidate_stage'),
        sa.CheckConstraint('confidence >= 0 AND confidence <= 1', name='ck_match_candidate_confidence'),
    )
    op.create_index('ix_match_candidate_project_stage', 'match_candidate', ['project_id', 'match_stage'])
    op.create_index('ix_match_candidate_source', 'match_candidate', ['source_item_id'])

    op.create_table(
        'master_rule',
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('rule_type', sa.Text(), nullable=False),
        sa.Column('scope', sa.Text(), server_default='GLOBAL', nullable=False),
        sa.Column('project_id', sa.Uuid(), nullable=True),

        sa.Column('store_part_number', sa.Text(), nullable=False),
        sa.Column('store_part_number_norm', sa.Text(), nullable=False),
        sa.Column('supplier_part_number', sa.Text(), nullable=False),
        sa.Column('supplier_part_number_norm', sa.Text(), nullable=False),
        sa.Column('line_code', sa.Text(), nullable=True),

        sa.Column('confidence', sa.Float(), server_default='1.0', nullable=False),
        sa.Column('enabled', sa.Boolean(), server_default=sa.true(), nullable=False),

        # Usage counters
        sa.Column('applied_count', sa.Integer(), server_default='0', nullable=False),
        sa.Column('last_applied_at', sa.TIMESTAMP(timezone=True), nullable=True),

        # Provenance
        sa.Column('created_by', sa.Text(), nullable=True),
        sa.Column('match_candidate_id', sa.Uuid(), nullable=True),

        sa.Column('created_at', sa.TIMESTAMP(timezone=True), server_default=sa.text('CURRENT_TIMESTAMP'), nullable=False),
        sa.Column('updated_at', sa.TIMESTAMP(timezone=True), server_default=sa.text('CURRENT_TIMESTAMP'), nullable=False),

        sa.PrimaryKeyConstraint('id'),
        sa.ForeignKeyConstraint(['project_id'], ['project.id'], ondelete='SET NULL'),
    )
    op.create_index(
        'ix_master_rule_pair',
        'master_rule',
        ['store_part_number_norm', 'supplier_part_number_norm', 'rule_type']
    )
    op.create_index('ix_master_rule_enabled_scope', 'master_rule', ['enabled', 'scope'])


def downgrade():
    """Drop master rule and candidate tables."""

    op.drop_index('ix_master_rule_enabled_scope', table_name='master_rule')
    op.drop_index('ix_master_rule_pair', table_name='master_rule')
    op.drop_table('master_rule')

    op.drop_index('ix_match_candidate_source', table_name='match_candidate')
    op.drop_index('ix_match_candidate_project_stage', table_name='match_candidate')
    op.drop_table('match_candidate')
