"""Messaging Core Tables

Revision ID: 0001_messaging_core
Revises:
Create Date: 2026-10-18

Creates the Relaydesk tables:
- tenants: Tenant accounts and their cached credit balance
- ledger_entries: Append-only credit ledger (UPDATE/DELETE rejected by trigger)
- channel_bindings: WhatsApp numbers / Messenger pages per tenant
- conversations: One thread per (tenant, platform, contact)
- messages: Inbound/outbound messages with delivery status and charge links
- automation_rules: Keyword auto-replies
- payment_orders: Credit pack purchases
"""

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects.postgresql import UUID, JSONB

revision = '0001_messaging_core'
down_revision = None
branch_labels = None
depends_on = None


def _id():
    return sa.Column('id', UUID(as_uuid=True), server_default=sa.text('gen_random_uuid()'), nullable=False)


def _tenant_id():
    return sa.Column('tenant_id', UUID(as_uuid=True), nullable=False)


def _created_at():
    return sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False)


def _updated_at():
    return sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False)


def upgrade():
    # =========================================================================
    # TENANTS
    # =========================================================================

    op.create_table(
        'tenants',
        _id(),
        sa.Column('name', sa.String(255), nullable=False),
        sa.Column('status', sa.String(32), server_default='ACTIVE', nullable=False),
        sa.Column('balance', sa.Numeric(14, 2), server_default='0', nullable=False),
        sa.Column('plan', sa.String(50), nullable=True),
        _created_at(),
        _updated_at(),
        sa.PrimaryKeyConstraint('id'),
        sa.CheckConstraint('balance >= 0', name='ck_tenants_balance_non_negative'),
    )
    op.create_index('idx_tenants_status', 'tenants', ['status'])

    # =========================================================================
    # LEDGER ENTRIES
    # =========================================================================

    op.create_table(
        'ledger_entries',
        _id(),
        _tenant_id(),
        sa.Column('amount', sa.Numeric(14, 2), nullable=False),
        sa.Column('kind', sa.String(32), nullable=False),
        sa.Column('description', sa.Text(), server_default='', nullable=False),
        sa.Column('actor_id', UUID(as_uuid=True), nullable=True),
        sa.Column('message_id', UUID(as_uuid=True), nullable=True),
        _created_at(),
        sa.PrimaryKeyConstraint('id'),
        sa.ForeignKeyConstraint(['tenant_id'], ['tenants.id'], ondelete='RESTRICT'),
    )
    op.create_index('idx_ledger_entries_tenant_id', 'ledger_entries', ['tenant_id'])
    op.create_index('idx_ledger_entries_tenant_created', 'ledger_entries', ['tenant_id', 'created_at'])
    op.create_index('idx_ledger_entries_message', 'ledger_entries', ['message_id'])

    op.execute(
        """
        CREATE OR REPLACE FUNCTION reject_ledger_entry_change() RETURNS trigger AS $$
        BEGIN
            RAISE EXCEPTION 'ledger_entries is append-only (% rejected)', TG_OP;
        END;
        $$ LANGUAGE plpgsql;
        """
    )
    op.execute(
        """
        CREATE TRIGGER ledger_entries_append_only
        BEFORE UPDATE OR DELETE ON ledger_entries
        FOR EACH ROW EXECUTE FUNCTION reject_ledger_entry_change();
        """
    )

    # =========================================================================
    # CHANNEL BINDINGS
    # =========================================================================

    op.create_table(
        'channel_bindings',
        _id(),
        _tenant_id(),
        sa.Column('platform', sa.String(20), server_default='whatsapp', nullable=False),
        sa.Column('provider', sa.String(20), server_default='meta', nullable=False),
        sa.Column('external_id', sa.String(100), nullable=False),
        sa.Column('display_identifier', sa.String(100), server_default='', nullable=False),
        sa.Column('access_token_encrypted', sa.Text(), nullable=True),
        sa.Column('is_active', sa.Boolean(), server_default=sa.text('true'), nullable=False),
        sa.Column('config', JSONB(), server_default='{}', nullable=False),
        _created_at(),
        sa.PrimaryKeyConstraint('id'),
        sa.ForeignKeyConstraint(['tenant_id'], ['tenants.id'], ondelete='CASCADE'),
        sa.UniqueConstraint('platform', 'external_id', name='uq_channel_bindings_platform_external'),
    )
    op.create_index('idx_channel_bindings_tenant_id', 'channel_bindings', ['tenant_id'])
    op.create_index('idx_channel_bindings_tenant_active', 'channel_bindings', ['tenant_id', 'is_active'])

    # =========================================================================
    # CONVERSATIONS
    # =========================================================================

    op.create_table(
        'conversations',
        _id(),
        _tenant_id(),
        sa.Column('platform', sa.String(20), nullable=False),
        sa.Column('contact_id', sa.String(100), nullable=False),
        sa.Column('contact_name', sa.String(255), nullable=True),
        sa.Column('assigned_agent_id', UUID(as_uuid=True), nullable=True),
        sa.Column('last_inbound_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('last_outbound_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('last_message_at', sa.DateTime(timezone=True), nullable=True),
        _created_at(),
        _updated_at(),
        sa.PrimaryKeyConstraint('id'),
        sa.ForeignKeyConstraint(['tenant_id'], ['tenants.id'], ondelete='CASCADE'),
        sa.UniqueConstraint('tenant_id', 'platform', 'contact_id', name='uq_conversations_tenant_contact'),
    )
    op.create_index('idx_conversations_tenant_id', 'conversations', ['tenant_id'])
    op.create_index('idx_conversations_tenant_last_message', 'conversations', ['tenant_id', 'last_message_at'])

    # =========================================================================
    # MESSAGES
    # =========================================================================

    op.create_table(
        'messages',
        _id(),
        _tenant_id(),
        sa.Column('conversation_id', UUID(as_uuid=True), nullable=False),
        sa.Column('direction', sa.String(10), nullable=False),
        sa.Column('kind', sa.String(20), server_default='text', nullable=False),
        sa.Column('body', sa.Text(), nullable=True),
        sa.Column('media_url', sa.Text(), nullable=True),
        sa.Column('template_name', sa.String(100), nullable=True),
        sa.Column('content_json', JSONB(), server_default='{}', nullable=False),
        sa.Column('status', sa.String(20), server_default='QUEUED', nullable=False),
        sa.Column('status_updated_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('provider_message_id', sa.String(255), nullable=True),
        sa.Column('error_code', sa.String(50), nullable=True),
        sa.Column('error_message', sa.Text(), nullable=True),
        sa.Column('cost', sa.Numeric(14, 2), nullable=True),
        sa.Column('charge_entry_id', UUID(as_uuid=True), nullable=True),
        sa.Column('refund_entry_id', UUID(as_uuid=True), nullable=True),
        sa.Column('is_auto_reply', sa.Boolean(), server_default=sa.text('false'), nullable=False),
        sa.Column('dispatch_ambiguous', sa.Boolean(), server_default=sa.text('false'), nullable=False),
        sa.Column('sent_at', sa.DateTime(timezone=True), nullable=True),
        _created_at(),
        sa.PrimaryKeyConstraint('id'),
        sa.ForeignKeyConstraint(['tenant_id'], ['tenants.id'], ondelete='CASCADE'),
        sa.ForeignKeyConstraint(['conversation_id'], ['conversations.id'], ondelete='CASCADE'),
        sa.UniqueConstraint('tenant_id', 'provider_message_id', name='uq_messages_tenant_provider_id'),
    )
    op.create_index('idx_messages_conversation_id', 'messages', ['conversation_id'])
    op.create_index('idx_messages_tenant_id', 'messages', ['tenant_id'])
    op.create_index('idx_messages_tenant_conversation', 'messages', ['tenant_id', 'conversation_id', 'created_at'])
    op.create_index('idx_messages_ambiguous', 'messages', ['dispatch_ambiguous', 'status'])

    # =========================================================================
    # AUTOMATION RULES
    # =========================================================================

    op.create_table(
        'automation_rules',
        _id(),
        _tenant_id(),
        sa.Column('name', sa.String(255), nullable=False),
        sa.Column('trigger_type', sa.String(20), nullable=False),
        sa.Column('keywords', JSONB(), server_default='[]', nullable=False),
        sa.Column('response_text', sa.Text(), nullable=False),
        sa.Column('is_active', sa.Boolean(), server_default=sa.text('true'), nullable=False),
        sa.Column('position', sa.Integer(), server_default='0', nullable=False),
        _created_at(),
        _updated_at(),
        sa.PrimaryKeyConstraint('id'),
        sa.ForeignKeyConstraint(['tenant_id'], ['tenants.id'], ondelete='CASCADE'),
    )
    op.create_index('idx_automation_rules_tenant_id', 'automation_rules', ['tenant_id'])
    op.create_index('idx_automation_rules_tenant_active', 'automation_rules', ['tenant_id', 'is_active', 'position'])

    # =========================================================================
    # PAYMENT ORDERS
    # =========================================================================

    op.create_table(
        'payment_orders',
        _id(),
        _tenant_id(),
        sa.Column('pack_code', sa.String(50), nullable=False),
        sa.Column('credits', sa.Numeric(14, 2), nullable=False),
        sa.Column('amount', sa.Numeric(14, 2), nullable=False),
        sa.Column('currency', sa.String(3), server_default='INR', nullable=False),
        sa.Column('status', sa.String(20), server_default='CREATED', nullable=False),
        sa.Column('gateway_payment_id', sa.String(255), nullable=True),
        sa.Column('ledger_entry_id', UUID(as_uuid=True), nullable=True),
        sa.Column('created_by', UUID(as_uuid=True), nullable=True),
        sa.Column('paid_at', sa.DateTime(timezone=True), nullable=True),
        _created_at(),
        sa.PrimaryKeyConstraint('id'),
        sa.ForeignKeyConstraint(['tenant_id'], ['tenants.id'], ondelete='CASCADE'),
        sa.UniqueConstraint('gateway_payment_id', name='uq_payment_orders_gateway_payment_id'),
    )
    op.create_index('idx_payment_orders_tenant_id', 'payment_orders', ['tenant_id'])


def downgrade():
    op.drop_table('payment_orders')
    op.drop_table('automation_rules')
    op.drop_table('messages')
    op.drop_table('conversations')
    op.drop_table('channel_bindings')
    op.execute('DROP TRIGGER IF EXISTS ledger_entries_append_only ON ledger_entries')
    op.execute('DROP FUNCTION IF EXISTS reject_ledger_entry_change()')
    op.drop_table('ledger_entries')
    op.drop_table('tenants')
