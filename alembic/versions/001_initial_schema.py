"""initial schema - create all tables

Revision ID: 001
Revises: 
Create Date: 2026-10-18 09:00:00.000000

"""
from typing import Sequence, Union
from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = '001'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def tenant_scoped_columns() -> list[sa.Column]:
    """Columns every tenant-owned table starts with."""
    return [
        sa.Column('id', sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column('external_id', sa.String(36), nullable=False, unique=True),
        sa.Column('tenant_id', sa.String(255), sa.ForeignKey('tenants.id'), nullable=False, index=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.text('now()')),
        sa.Column('created_by', sa.String(255), nullable=False, server_default='system'),
        sa.Column('modified_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('modified_by', sa.String(255), nullable=True),
        sa.Column('is_deleted', sa.Boolean(), nullable=False, server_default=sa.false()),
    ]


def upgrade() -> None:
    # Create tenants table (not tenant-scoped)
    op.create_table(
        'tenants',
        sa.Column('id', sa.String(255), primary_key=True),
        sa.Column('name', sa.String(255), nullable=False),
        sa.Column('code', sa.String(50), nullable=False, unique=True),
        sa.Column('description', sa.String(1000), nullable=True),
        sa.Column('subscription_plan', sa.String(50), nullable=False, server_default='Free'),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.text('now()')),
    )

    op.create_table(
        'applications',
        *tenant_scoped_columns(),
        sa.Column('name', sa.String(255), nullable=False),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('repository_url', sa.String(500), nullable=True),
    )

    # Create versions table (status as VARCHAR, not enum)
    op.create_table(
        'versions',
        *tenant_scoped_columns(),
        sa.Column('application_id', sa.Integer(), sa.ForeignKey('applications.id'), nullable=False, index=True),
        sa.Column('version_number', sa.String(100), nullable=False),
        sa.Column('status', sa.String(10), nullable=False, server_default='Draft'),
        sa.Column('release_notes', sa.Text(), nullable=True),
        sa.Column('released_at', sa.DateTime(timezone=True), nullable=True),
    )

    op.create_table(
        'environments',
        *tenant_scoped_columns(),
        sa.Column('name', sa.String(100), nullable=False),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('order', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('config', sa.Text(), nullable=True),
    )
    op.create_index(
        'ix_environments_tenant_order',
        'environments',
        ['tenant_id', 'order'],
        unique=True,
        postgresql_where=sa.text('is_deleted = false'),
    )

    # Create deployments table (status as VARCHAR)
    op.create_table(
        'deployments',
        *tenant_scoped_columns(),
        sa.Column('application_id', sa.Integer(), sa.ForeignKey('applications.id'), nullable=False, index=True),
        sa.Column('version_id', sa.Integer(), sa.ForeignKey('versions.id'), nullable=False, index=True),
        sa.Column('environment_id', sa.Integer(), sa.ForeignKey('environments.id'), nullable=False, index=True),
        sa.Column('status', sa.String(10), nullable=False, server_default='Pending'),
        sa.Column('deployed_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('deployed_by', sa.String(255), nullable=True),
        sa.Column('completed_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('duration_ms', sa.BigInteger(), nullable=True),
        sa.Column('notes', sa.Text(), nullable=True),
    )
    op.create_index('ix_deployments_tenant_status', 'deployments', ['tenant_id', 'status'])

    op.create_table(
        'deployment_events',
        *tenant_scoped_columns(),
        sa.Column('deployment_id', sa.Integer(), sa.ForeignKey('deployments.id'), nullable=False, index=True),
        sa.Column('event_type', sa.String(50), nullable=False),
        sa.Column('message', sa.Text(), nullable=True),
        sa.Column('timestamp', sa.DateTime(timezone=True), nullable=False),
        sa.Column('metadata', sa.Text(), nullable=True),
    )

    op.create_table(
        'webhooks',
        *tenant_scoped_columns(),
        sa.Column('application_id', sa.Integer(), sa.ForeignKey('applications.id'), nullable=False, index=True),
        sa.Column('url', sa.String(2048), nullable=False),
        sa.Column('secret', sa.String(255), nullable=False),
        sa.Column('events', sa.String(1000), nullable=False, server_default='deployment.completed'),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('max_retries', sa.Integer(), nullable=False, server_default='5'),
    )
    op.create_index('ix_webhooks_tenant_active', 'webhooks', ['tenant_id', 'is_active', 'is_deleted'])

    # Create webhook_events table (delivery ledger, claimed_at is the delivery lease)
    op.create_table(
        'webhook_events',
        *tenant_scoped_columns(),
        sa.Column('webhook_id', sa.Integer(), sa.ForeignKey('webhooks.id'), nullable=False, index=True),
        sa.Column('event_type', sa.String(100), nullable=False),
        sa.Column('payload', sa.Text(), nullable=False),
        sa.Column('delivery_status', sa.String(20), nullable=False, server_default='Pending'),
        sa.Column('response_status_code', sa.Integer(), nullable=True),
        sa.Column('response_body', sa.Text(), nullable=True),
        sa.Column('retry_count', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('delivered_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('next_retry_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('claimed_at', sa.DateTime(timezone=True), nullable=True),
    )
    op.create_index('ix_webhook_events_sweep', 'webhook_events', ['delivery_status', 'next_retry_at'])


def downgrade() -> None:
    op.drop_table('webhook_events')
    op.drop_table('webhooks')
    op.drop_table('deployment_events')
    op.drop_table('deployments')
    op.drop_table('environments')
    op.drop_table('versions')
    op.drop_table('applications')
    op.drop_table('tenants')
