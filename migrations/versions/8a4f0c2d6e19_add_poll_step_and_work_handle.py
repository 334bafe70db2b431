"""add_poll_step_and_work_handle

Revision ID: 8a4f0c2d6e19
Revises: 5e1c2a7b9d30
Create Date: 2026-10-19 09:30:00.000000

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = '8a4f0c2d6e19'
down_revision: Union[str, Sequence[str], None] = '5e1c2a7b9d30'
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    """Upgrade schema."""
    op.add_column(
        'enrichment_jobs',
        sa.Column('last_poll_step', sa.Integer(), nullable=True)
    )
    op.add_column(
        'crm_records',
        sa.Column('enrichment_handle', sa.String(), nullable=True)
    )
    op.create_index('ix_crm_records_enrichment_handle', 'crm_records', ['enrichment_handle'])


def downgrade() -> None:
    """Downgrade schema."""
    op.drop_index('ix_crm_records_enrichment_handle', table_name='crm_records')
    op.drop_column('crm_records', 'enrichment_handle')
    op.drop_column('enrichment_jobs', 'last_poll_step')
