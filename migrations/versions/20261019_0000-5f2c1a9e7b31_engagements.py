"""engagements

Revision ID: 5f2c1a9e7b31
Revises:
Create Date: 2026-10-19 00:00:00.000000

Creates the engagements table. Checklist, documents, reconciliation and the
activity log live in JSONB columns on the row.
"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision: str = '5f2c1a9e7b31'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.execute("CREATE TYPE engagementstatus AS ENUM ('PENDING', 'INTAKE_DONE', 'COLLECTING', 'READY')")

    op.create_table('engagements',
        sa.Column('id', sa.String(length=36), nullable=False),
        sa.Column('client_name', sa.String(length=255), nullable=False),
        sa.Column('client_email', sa.String(length=255), nullable=False),
        sa.Column('tax_year', sa.Integer(), nullable=False),
        sa.Column('status', postgresql.ENUM('PENDING', 'INTAKE_DONE', 'COLLECTING', 'READY', name='engagementstatus', create_type=False), nullable=False),
        sa.Column('storage_provider', sa.String(length=20), nullable=True),
        sa.Column('storage_folder_id', sa.Text(), nullable=True),
        sa.Column('storage_folder_url', sa.Text(), nullable=True),
        sa.Column('storage_drive_id', sa.Text(), nullable=True),
        sa.Column('storage_page_token', sa.Text(), nullable=True),
        sa.Column('checklist', postgresql.JSONB(astext_type=sa.Text()), nullable=True),
        sa.Column('documents', postgresql.JSONB(astext_type=sa.Text()), nullable=True),
        sa.Column('reconciliation', postgresql.JSONB(astext_type=sa.Text()), nullable=True),
        sa.Column('agent_log', postgresql.JSONB(astext_type=sa.Text()), nullable=True),
        sa.Column('prep_brief', sa.Text(), nullable=True),
        sa.Column('last_activity_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('reminder_count', sa.Integer(), server_default='0', nullable=False),
        sa.Column('version', sa.Integer(), server_default='1', nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index('ix_engagements_status', 'engagements', ['status'])
    op.create_index('ix_engagements_last_activity_at', 'engagements', ['last_activity_at'])
    op.create_index('ix_engagements_created_at', 'engagements', [sa.text('created_at DESC')])


def downgrade() -> None:
    op.drop_index('ix_engagements_created_at', table_name='engagements')
    op.drop_index('ix_engagements_last_activity_at', table_name='engagements')
    op.drop_index('ix_engagements_status', table_name='engagements')
    op.drop_table('engagements')
    op.execute('DROP TYPE engagementstatus')
