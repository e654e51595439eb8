"""Create project, catalog_item and interchange_row tables

Revision ID: 001
Revises:
Create Date: 2026-09-07 10:00:00.000000

"""
from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision = '001'
down_revision = None
branch_labels = None
depends_on = None


def upgrade():
    # Project: stage cursor and spend totals
    op.create_table(
        'project',
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('name', sa.Text(), nullable=False),
        sa.Column('current_stage', sa.Text(), server_default='EXACT', nullable=False),

        # Cost ledger totals (micro-USD), NULL limit = unlimited
        sa.Column('budget_limit_micros', sa.BigInteger(), nullable=True),
        sa.Column('current_spend_micros', sa.BigInteger(), server_default='0', nullable=False),

        sa.Column('created_at', sa.TIMESTAMP(timezone=True), server_default=sa.text('CURRENT_TIMESTAMP'), nullable=False),
        sa.Column('updated_at', sa.TIMESTAMP(timezone=True), server_default=sa.text('CURRENT_TIMESTAMP'), nullable=False),
        sa.PrimaryKeyConstraint('id'),
    )

    # Catalog items: SOURCE (inventory) and SUPPLIER rows, immutable after import
    op.create_table(
        'catalog_item',
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('project_id', sa.Uuid(), nullable=False),
        sa.Column('role', sa.Text(), nullable=False),
        sa.Column('part_number', sa.Text(), nullable=False),
        sa.Column('part_number_norm', sa.Text(), server_default='', nullable=False),
        sa.Column('line_code', sa.Text(), nullable=True),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('cost', sa.Numeric(12, 4), nullable=True),
        sa.Column('created_at', sa.TIMESTAMP(timezone=True), server_default=sa.text('CURRENT_TIMESTAMP'), nullable=False),
        sa.PrimaryKeyConstraint('id'),
        sa.ForeignKeyConstraint(['project_id'], ['project.id'], ondelete='CASCADE'),
    )
    op.create_index('ix_catalog_item_project_role', 'catalog_item', ['project_id', 'role'])
    op.create_index('ix_catalog_item_norm', 'catalog_item', ['project_id', 'role', 'part_number_norm'])

    # Interchange rows: inventory part → vendor part cross-references
    op.create_table(
        'interchange_row',
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('project_id', sa.Uuid(), nullable=False),
        sa.Column('source_part_number', sa.Text(), nullable=False),
        sa.Column('source_part_number_norm', sa.Text(), server_default='', nullable=False),
        sa.Column('vendor_part_number', sa.Text(), nullable=False),
        sa.Column('vendor_part_number_norm', sa.Text(), server_default='', nullable=False),
        sa.Column('vendor', sa.Text(), nullable=True),
        sa.Column('line_code', sa.Text(), nullable=True),
        sa.Column('confidence', sa.Float(), nullable=True),
        sa.Column('created_at', sa.TIMESTAMP(timezone=True), server_default=sa.text('CURRENT_TIMESTAMP'), nullable=False),
        sa.PrimaryKeyConstraint('id'),
        sa.ForeignKeyConstraint(['project_id'], ['project.id'], ondelete='CASCADE'),
    )
    op.create_index('ix_interchange_source_norm', 'interchange_row', ['project_id', 'source_part_number_norm'])
    op.create_index('ix_interchange_vendor_norm', 'interchange_row', ['project_id', 'vendor_part_number_norm'])


def downgrade():
    op.drop_index('ix_interchange_vendor_norm', table_name='interchange_row')
    op.drop_index('ix_interchange_source_norm', table_name='interchange_row')
    op.drop_table('interchange_row')

    op.drop_index('ix_catalog_item_norm', table_name='catalog_item')
    op.drop_index('ix_catalog_item_project_role', table_name='catalog_item')
    op.drop_table('catalog_item')

    op.drop_table('project')
