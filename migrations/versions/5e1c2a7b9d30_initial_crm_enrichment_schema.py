"""initial_crm_enrichment_schema

Revision ID: 5e1c2a7b9d30
Revises:
Create Date: 2026-09-28 10:00:00.000000

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = '5e1c2a7b9d30'
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


integration_status = sa.Enum('connected', 'disconnected', 'error', name='integrationstatus')
record_type = sa.Enum('company', 'person', name='recordtype')
enrichment_status = sa.Enum('none', 'pending', 'enriched', 'failed', name='enrichmentstatus')
segment_record_type = sa.Enum('company', 'person', 'mixed', name='segmentrecordtype')
enrichment_job_status = sa.Enum('pending', 'running', 'completed', 'failed', name='enrichmentjobstatus')


def upgrade() -> None:
    """Upgrade schema."""
    op.create_table(
        'users',
        sa.Column('id', sa.Uuid(), primary_key=True),
        sa.Column('email', sa.String(), nullable=False),
        sa.Column('name', sa.String(), nullable=True),
        sa.Column('api_key', sa.String(), nullable=False),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('updated_at', sa.DateTime(), nullable=False),
    )
    op.create_index('ix_users_email', 'users', ['email'])
    op.create_index('ix_users_api_key', 'users', ['api_key'], unique=True)

    op.create_table(
        'integrations',
        sa.Column('id', sa.Uuid(), primary_key=True),
        sa.Column('user_id', sa.Uuid(), sa.ForeignKey('users.id'), nullable=False),
        sa.Column('provider', sa.String(), nullable=False),
        sa.Column('display_name', sa.String(), nullable=False),
        sa.Column('api_key', sa.String(), nullable=False),
        sa.Column('status', integration_status, nullable=False),
        sa.Column('last_synced_at', sa.DateTime(), nullable=True),
        sa.Column('last_error', sa.String(), nullable=True),
        sa.Column('metadata', sa.JSON(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('updated_at', sa.DateTime(), nullable=False),
        sa.UniqueConstraint('user_id', 'provider', name='uq_integrations_user_provider'),
    )
    op.create_index('ix_integrations_user_id', 'integrations', ['user_id'])

    op.create_table(
        'crm_records',
        sa.Column('id', sa.Uuid(), primary_key=True),
        sa.Column('user_id', sa.Uuid(), sa.ForeignKey('users.id'), nullable=False),
        sa.Column('integration_id', sa.Uuid(), sa.ForeignKey('integrations.id'), nullable=False),
        sa.Column('external_id', sa.String(), nullable=False),
        sa.Column('record_type', record_type, nullable=False),
        sa.Column('name', sa.String(), nullable=False),
        sa.Column('email', sa.String(), nullable=True),
        sa.Column('raw_data', sa.JSON(), nullable=False),
        sa.Column('enrichment_status', enrichment_status, nullable=False),
        sa.Column('enriched_data', sa.JSON(), nullable=True),
        sa.Column('enriched_at', sa.DateTime(), nullable=True),
        sa.Column('list_memberships', sa.JSON(), nullable=True),
        sa.Column('last_synced_at', sa.DateTime(), nullable=False),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('updated_at', sa.DateTime(), nullable=False),
        sa.UniqueConstraint('integration_id', 'external_id', name='uq_crm_records_external_id'),
    )
    op.create_index('ix_crm_records_user_id', 'crm_records', ['user_id'])
    op.create_index('ix_crm_records_integration_id', 'crm_records', ['integration_id'])
    op.create_index('ix_crm_records_user_type', 'crm_records', ['user_id', 'record_type'])
    op.create_index(
        'ix_crm_records_user_enrichment_status',
        'crm_records',
        ['user_id', 'enrichment_status'],
    )

    op.create_table(
        'segments',
        sa.Column('id', sa.Uuid(), primary_key=True),
        sa.Column('user_id', sa.Uuid(), sa.ForeignKey('users.id'), nullable=False),
        sa.Column('name', sa.String(), nullable=False),
        sa.Column('description', sa.String(), nullable=True),
        sa.Column('record_type', segment_record_type, nullable=False),
        sa.Column('member_count', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('updated_at', sa.DateTime(), nullable=False),
    )
    op.create_index('ix_segments_user_id', 'segments', ['user_id'])

    op.create_table(
        'segment_members',
        sa.Column('id', sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column('segment_id', sa.Uuid(), sa.ForeignKey('segments.id'), nullable=False),
        sa.Column('crm_record_id', sa.Uuid(), sa.ForeignKey('crm_records.id'), nullable=False),
        sa.Column('added_at', sa.DateTime(), nullable=False),
        sa.UniqueConstraint('segment_id', 'crm_record_id', name='uq_segment_members_segment_record'),
    )
    op.create_index('ix_segment_members_segment_id', 'segment_members', ['segment_id'])
    op.create_index('ix_segment_members_crm_record_id', 'segment_members', ['crm_record_id'])

    op.create_table(
        'enrichment_jobs',
        sa.Column('id', sa.Uuid(), primary_key=True),
        sa.Column('user_id', sa.Uuid(), sa.ForeignKey('users.id'), nullable=False),
        sa.Column('crm_record_id', sa.Uuid(), sa.ForeignKey('crm_records.id'), nullable=False),
        sa.Column('status', enrichment_job_status, nullable=False),
        sa.Column('urls', sa.JSON(), nullable=False),
        sa.Column('agent_job_id', sa.String(), nullable=True),
        sa.Column('status_message', sa.String(), nullable=True),
        sa.Column('poll_count', sa.Integer(), nullable=True),
        sa.Column('result', sa.JSON(), nullable=True),
        sa.Column('error', sa.String(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('started_at', sa.DateTime(), nullable=True),
        sa.Column('completed_at', sa.DateTime(), nullable=True),
    )
    op.create_index('ix_enrichment_jobs_user_id', 'enrichment_jobs', ['user_id'])
    op.create_index('ix_enrichment_jobs_crm_record_id', 'enrichment_jobs', ['crm_record_id'])
    op.create_index('ix_enrichment_jobs_status', 'enrichment_jobs', ['status'])


def downgrade() -> None:
    """Downgrade schema."""
    op.drop_table('enrichment_jobs')
    op.drop_table('segment_members')
    op.drop_table('segments')
    op.drop_table('crm_records')
    op.drop_table('integrations')
    op.drop_table('users')

    bind = op.get_bind()
    for enum_type in (
        enrichment_job_status,
        segment_record_type,
        enrichment_status,
        record_type,
        integration_status,
    ):
        enum_type.drop(bind, checkfirst=True)
