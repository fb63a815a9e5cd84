"""WhatsApp Bridge Tables

Revision ID: 0001_bridge_tables
Revises:
Create Date: 2026-10-19

Creates tables owned by the WhatsApp bridge:
- bridge_tenant_bindings: Maps tenants to QR sessions or Cloud API numbers
- bridge_webhook_endpoints: Downstream webhook URLs per tenant
- bridge_messages: Inbound/outbound messages from both backends
"""

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects.postgresql import JSONB

revision = '0001_bridge_tables'
down_revision = None
branch_labels = None
depends_on = None

JSONType = sa.JSON().with_variant(JSONB(), 'postgresql')


def upgrade():
    # =========================================================================
    # TENANT BINDINGS
    # =========================================================================

    op.create_table(
        'bridge_tenant_bindings',
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('tenant_id', sa.Integer(), nullable=False),
        sa.Column('tenant_name', sa.String(255), nullable=False),
        sa.Column('backend_kind', sa.String(10), nullable=False),
        sa.Column('phone_number_id', sa.String(100), nullable=True),
        sa.Column('waba_id', sa.String(100), nullable=True),
        sa.Column('access_token_encrypted', sa.Text(), nullable=True),
        sa.Column('instance_name', sa.String(100), nullable=True),
        sa.Column('api_url', sa.String(255), nullable=True),
        sa.Column('api_key_encrypted', sa.Text(), nullable=True),
        sa.Column('display_number', sa.String(20), nullable=True),
        sa.Column('is_active', sa.Boolean(), server_default=sa.true(), nullable=False),
        sa.Column('config', JSONType, nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('phone_number_id', name='uq_bridge_bindings_phone_number_id'),
        sa.UniqueConstraint('instance_name', name='uq_bridge_bindings_instance_name'),
    )
    op.create_index('ix_bridge_tenant_bindings_tenant_id', 'bridge_tenant_bindings', ['tenant_id'])
    op.create_index('idx_bridge_bindings_tenant_active', 'bridge_tenant_bindings', ['tenant_id', 'is_active'])
    op.create_index(
        'uq_bridge_bindings_tenant_backend_active',
        'bridge_tenant_bindings',
        ['tenant_id', 'backend_kind'],
        unique=True,
        postgresql_where=sa.text('is_active'),
        sqlite_where=sa.text('is_active'),
    )

    # =========================================================================
    # WEBHOOK ENDPOINTS
    # =========================================================================

    op.create_table(
        'bridge_webhook_endpoints',
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('tenant_id', sa.Integer(), nullable=False),
        sa.Column('general_url', sa.String(2048), nullable=True),
        sa.Column('cloud_url', sa.String(2048), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('tenant_id', name='uq_bridge_webhook_endpoints_tenant'),
    )
    op.create_index('ix_bridge_webhook_endpoints_tenant_id', 'bridge_webhook_endpoints', ['tenant_id'])

    # =========================================================================
    # MESSAGES
    # =========================================================================

    op.create_table(
        'bridge_messages',
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('tenant_id', sa.Integer(), nullable=False),
        sa.Column('contact_id', sa.String(64), nullable=False),
        sa.Column('backend_kind', sa.String(10), nullable=False),
        sa.Column('provider_message_id', sa.String(128), nullable=False),
        sa.Column('direction', sa.String(10), nullable=False),
        sa.Column('message_type', sa.String(20), nullable=False),
        sa.Column('body', sa.Text(), nullable=False),
        sa.Column('delivery_status', sa.String(20), nullable=False),
        sa.Column('status_updated_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('error_code', sa.String(50), nullable=True),
        sa.Column('error_message', sa.Text(), nullable=True),
        sa.Column('content_json', JSONType, nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint(
            'tenant_id', 'contact_id', 'backend_kind', 'provider_message_id',
            name='uq_bridge_messages_identity',
        ),
    )
    op.create_index('ix_bridge_messages_tenant_id', 'bridge_messages', ['tenant_id'])
    op.create_index(
        'idx_bridge_messages_tenant_contact_created',
        'bridge_messages',
        ['tenant_id', 'contact_id', 'created_at'],
    )
    op.create_index(
        'idx_bridge_messages_provider_id',
        'bridge_messages',
        ['tenant_id', 'backend_kind', 'provider_message_id'],
    )


def downgrade():
    op.drop_table('bridge_messages')
    op.drop_table('bridge_webhook_endpoints')
    op.drop_table('bridge_tenant_bindings')
