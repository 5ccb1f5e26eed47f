"""Initial schema

Revision ID: 001
Revises:
Create Date: 2024-06-03 09:00:00.000000

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision: str = '001'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

JSON_TYPE = sa.JSON().with_variant(postgresql.JSONB(astext_type=sa.Text()), 'postgresql')


def _timestamps(updated=True):
    columns = [sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False)]
    if updated:
        columns.append(
            sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False)
        )
    return columns


def upgrade() -> None:
    # Syncable entities
    op.create_table('contacts',
    sa.Column('id', sa.String(length=36), nullable=False),
    sa.Column('remote_id', sa.String(length=64), nullable=True),
    sa.Column('name', sa.String(length=255), nullable=False),
    sa.Column('email', sa.String(length=255), nullable=True),
    sa.Column('phone', sa.String(length=50), nullable=True),
    sa.Column('address_line1', sa.String(length=255), nullable=True),
    sa.Column('city', sa.String(length=100), nullable=True),
    sa.Column('region', sa.String(length=100), nullable=True),
    sa.Column('postal_code', sa.String(length=20), nullable=True),
    sa.Column('country', sa.String(length=100), nullable=True),
    sa.Column('tax_number', sa.String(length=50), nullable=True),
    sa.Column('default_currency', sa.String(length=3), nullable=True),
    sa.Column('contact_status', sa.String(length=20), nullable=False),
    sa.Column('is_customer', sa.Boolean(), nullable=False),
    sa.Column('is_supplier', sa.Boolean(), nullable=False),
    sa.Column('notes', sa.Text(), nullable=True),
    sa.Column('customer_type', sa.String(length=50), nullable=True),
    sa.Column('account_manager', sa.String(length=100), nullable=True),
    *_timestamps(),
    sa.PrimaryKeyConstraint('id')
    )
    op.create_index(op.f('ix_contacts_remote_id'), 'contacts', ['remote_id'], unique=True)

    op.create_table('invoices',
    sa.Column('id', sa.String(length=36), nullable=False),
    sa.Column('remote_id', sa.String(length=64), nullable=True),
    sa.Column('invoice_number', sa.String(length=50), nullable=False),
    sa.Column('invoice_type', sa.String(length=10), nullable=False),
    sa.Column('contact_id', sa.String(length=36), nullable=False),
    sa.Column('status', sa.String(length=20), nullable=False),
    sa.Column('currency', sa.String(length=3), nullable=False),
    sa.Column('issue_date', sa.Date(), nullable=True),
    sa.Column('due_date', sa.Date(), nullable=True),
    sa.Column('reference', sa.String(length=255), nullable=True),
    sa.Column('subtotal', sa.Numeric(14, 2), nullable=False),
    sa.Column('tax_amount', sa.Numeric(14, 2), nullable=False),
    sa.Column('total', sa.Numeric(14, 2), nullable=False),
    sa.Column('amount_due', sa.Numeric(14, 2), nullable=False),
    sa.Column('amount_paid', sa.Numeric(14, 2), nullable=False),
    sa.Column('notes', sa.Text(), nullable=True),
    sa.Column('project_ref', sa.String(length=100), nullable=True),
    sa.Column('quotation_ref', sa.String(length=100), nullable=True),
    *_timestamps(),
    sa.ForeignKeyConstraint(['contact_id'], ['contacts.id'], ),
    sa.PrimaryKeyConstraint('id')
    )
    op.create_index(op.f('ix_invoices_remote_id'), 'invoices', ['remote_id'], unique=True)
    op.create_index(op.f('ix_invoices_invoice_number'), 'invoices', ['invoice_number'], unique=False)
    op.create_index('idx_invoices_type_number', 'invoices', ['invoice_type', 'invoice_number'], unique=False)

    op.create_table('invoice_line_items',
    sa.Column('id', sa.Integer(), nullable=False),
    sa.Column('invoice_id', sa.String(length=36), nullable=False),
    sa.Column('position', sa.Integer(), nullable=False),
    sa.Column('description', sa.Text(), nullable=False),
    sa.Column('quantity', sa.Numeric(14, 4), nullable=False),
    sa.Column('unit_price', sa.Numeric(14, 4), nullable=False),
    sa.Column('tax_type', sa.String(length=20), nullable=False),
    sa.Column('account_code', sa.String(length=20), nullable=False),
    sa.Column('tax_amount', sa.Numeric(14, 2), nullable=False),
    sa.Column('line_amount', sa.Numeric(14, 2), nullable=False),
    sa.ForeignKeyConstraint(['invoice_id'], ['invoices.id'], ondelete='CASCADE'),
    sa.PrimaryKeyConstraint('id')
    )
    op.create_index(op.f('ix_invoice_line_items_id'), 'invoice_line_items', ['id'], unique=False)
    op.create_index(op.f('ix_invoice_line_items_invoice_id'), 'invoice_line_items', ['invoice_id'], unique=False)

    op.create_table('payments',
    sa.Column('id', sa.String(length=36), nullable=False),
    sa.Column('remote_id', sa.String(length=64), nullable=True),
    sa.Column('invoice_id', sa.String(length=36), nullable=False),
    sa.Column('amount', sa.Numeric(14, 2), nullable=False),
    sa.Column('payment_date', sa.Date(), nullable=False),
    sa.Column('reference', sa.String(length=255), nullable=True),
    sa.Column('status', sa.String(length=20), nullable=False),
    sa.Column('payment_type', sa.String(length=30), nullable=True),
    sa.Column('account_code', sa.String(length=20), nullable=True),
    sa.Column('currency_rate', sa.Numeric(18, 6), nullable=True),
    sa.Column('notes', sa.Text(), nullable=True),
    sa.Column('receipt_ref', sa.String(length=100), nullable=True),
    *_timestamps(),
    sa.ForeignKeyConstraint(['invoice_id'], ['invoices.id'], ),
    sa.PrimaryKeyConstraint('id')
    )
    op.create_index(op.f('ix_payments_remote_id'), 'payments', ['remote_id'], unique=True)
    op.create_index(op.f('ix_payments_invoice_id'), 'payments', ['invoice_id'], unique=False)

    # Sync bookkeeping
    op.create_table('sync_states',
    sa.Column('id', sa.Integer(), nullable=False),
    sa.Column('entity_type', sa.String(length=20), nullable=False),
    sa.Column('entity_id', sa.String(length=36), nullable=False),
    sa.Column('remote_id', sa.String(length=64), nullable=True),
    sa.Column('last_local_fingerprint', sa.String(length=64), nullable=True),
    sa.Column('last_remote_fingerprint', sa.String(length=64), nullable=True),
    sa.Column('last_synced_at', sa.DateTime(timezone=True), nullable=True),
    sa.Column('last_local_modified_at', sa.DateTime(timezone=True), nullable=True),
    sa.Column('last_remote_modified_at', sa.DateTime(timezone=True), nullable=True),
    sa.Column('sync_origin', sa.String(length=10), nullable=True),
    sa.Column('correlation_id', sa.String(length=36), nullable=True),
    sa.Column('status', sa.String(length=20), nullable=False),
    *_timestamps(),
    sa.PrimaryKeyConstraint('id'),
    sa.UniqueConstraint('entity_type', 'entity_id', name='uq_sync_states_entity')
    )
    op.create_index(op.f('ix_sync_states_id'), 'sync_states', ['id'], unique=False)
    op.create_index('idx_sync_states_remote', 'sync_states', ['entity_type', 'remote_id'], unique=False)
    op.create_index('idx_sync_states_status', 'sync_states', ['status'], unique=False)

    op.create_table('conflict_records',
    sa.Column('id', sa.Integer(), nullable=False),
    sa.Column('sync_state_id', sa.Integer(), nullable=False),
    sa.Column('entity_type', sa.String(length=20), nullable=False),
    sa.Column('entity_id', sa.String(length=36), nullable=False),
    sa.Column('remote_id', sa.String(length=64), nullable=True),
    sa.Column('correlation_id', sa.String(length=36), nullable=True),
    sa.Column('phase', sa.String(length=10), nullable=True),
    sa.Column('local_snapshot', JSON_TYPE, nullable=True),
    sa.Column('remote_snapshot', JSON_TYPE, nullable=True),
    sa.Column('local_fingerprint', sa.String(length=64), nullable=True),
    sa.Column('remote_fingerprint', sa.String(length=64), nullable=True),
    sa.Column('detected_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
    sa.Column('resolution', sa.String(length=20), nullable=True),
    sa.Column('resolved_by', sa.String(length=100), nullable=True),
    sa.Column('resolved_at', sa.DateTime(timezone=True), nullable=True),
    sa.Column('notes', sa.Text(), nullable=True),
    sa.ForeignKeyConstraint(['sync_state_id'], ['sync_states.id'], ),
    sa.PrimaryKeyConstraint('id')
    )
    op.create_index(op.f('ix_conflict_records_id'), 'conflict_records', ['id'], unique=False)
    op.create_index(op.f('ix_conflict_records_sync_state_id'), 'conflict_records', ['sync_state_id'], unique=False)
    op.create_index(op.f('ix_conflict_records_entity_type'), 'conflict_records', ['entity_type'], unique=False)
    op.create_index('idx_conflict_records_entity', 'conflict_records', ['entity_type', 'entity_id'], unique=False)
    op.create_index('idx_conflict_records_resolution', 'conflict_records', ['resolution'], unique=False)

    op.create_table('sync_runs',
    sa.Column('id', sa.Integer(), nullable=False),
    sa.Column('correlation_id', sa.String(length=36), nullable=False),
    sa.Column('trigger_type', sa.String(length=50), nullable=False),
    sa.Column('direction', sa.String(length=10), nullable=False),
    sa.Column('entity_types', JSON_TYPE, nullable=False),
    sa.Column('dry_run', sa.Boolean(), nullable=False),
    sa.Column('triggered_by', sa.String(length=100), nullable=True),
    sa.Column('start_time', sa.DateTime(timezone=True), nullable=False),
    sa.Column('end_time', sa.DateTime(timezone=True), nullable=True),
    sa.Column('status', sa.String(length=20), nullable=False),
    sa.Column('phase', sa.String(length=10), nullable=True),
    sa.Column('cancelled', sa.Boolean(), nullable=False),
    sa.Column('records_processed', sa.Integer(), nullable=False),
    sa.Column('records_created', sa.Integer(), nullable=False),
    sa.Column('records_updated', sa.Integer(), nullable=False),
    sa.Column('records_skipped', sa.Integer(), nullable=False),
    sa.Column('conflicts_detected', sa.Integer(), nullable=False),
    sa.Column('records_failed', sa.Integer(), nullable=False),
    sa.Column('summary', JSON_TYPE, nullable=True),
    sa.Column('error_message', sa.Text(), nullable=True),
    *_timestamps(updated=False),
    sa.PrimaryKeyConstraint('id')
    )
    op.create_index(op.f('ix_sync_runs_id'), 'sync_runs', ['id'], unique=False)
    op.create_index(op.f('ix_sync_runs_correlation_id'), 'sync_runs', ['correlation_id'], unique=True)

    op.create_table('sync_checkpoints',
    sa.Column('id', sa.Integer(), nullable=False),
    sa.Column('correlation_id', sa.String(length=36), nullable=False),
    sa.Column('entity_type', sa.String(length=20), nullable=False),
    sa.Column('last_page', sa.Integer(), nullable=False),
    sa.Column('last_remote_id', sa.String(length=64), nullable=True),
    sa.Column('records_committed', sa.Integer(), nullable=False),
    sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
    sa.PrimaryKeyConstraint('id'),
    sa.UniqueConstraint('correlation_id', 'entity_type', name='uq_checkpoints_run_entity')
    )
    op.create_index(op.f('ix_sync_checkpoints_id'), 'sync_checkpoints', ['id'], unique=False)
    op.create_index(op.f('ix_sync_checkpoints_correlation_id'), 'sync_checkpoints', ['correlation_id'], unique=False)

    op.create_table('audit_entries',
    sa.Column('id', sa.Integer(), nullable=False),
    sa.Column('correlation_id', sa.String(length=36), nullable=True),
    sa.Column('operation', sa.String(length=30), nullable=False),
    sa.Column('origin', sa.String(length=10), nullable=False),
    sa.Column('entity_type', sa.String(length=20), nullable=False),
    sa.Column('entity_id', sa.String(length=36), nullable=True),
    sa.Column('remote_id', sa.String(length=64), nullable=True),
    sa.Column('before_snapshot', JSON_TYPE, nullable=True),
    sa.Column('after_snapshot', JSON_TYPE, nullable=True),
    sa.Column('status', sa.String(length=30), nullable=False),
    sa.Column('error_message', sa.Text(), nullable=True),
    sa.Column('user', sa.String(length=100), nullable=True),
    *_timestamps(updated=False),
    sa.PrimaryKeyConstraint('id')
    )
    op.create_index(op.f('ix_audit_entries_id'), 'audit_entries', ['id'], unique=False)
    op.create_index(op.f('ix_audit_entries_correlation_id'), 'audit_entries', ['correlation_id'], unique=False)
    op.create_index(op.f('ix_audit_entries_created_at'), 'audit_entries', ['created_at'], unique=False)
    op.create_index('idx_audit_entries_entity', 'audit_entries', ['entity_type', 'entity_id'], unique=False)
    op.create_index('idx_audit_entries_operation', 'audit_entries', ['operation'], unique=False)

    # OAuth credentials for the ledger
    op.create_table('ledger_connections',
    sa.Column('id', sa.Integer(), nullable=False),
    sa.Column('tenant_id', sa.String(length=64), nullable=False),
    sa.Column('tenant_name', sa.String(length=255), nullable=True),
    sa.Column('access_token', sa.Text(), nullable=False),
    sa.Column('refresh_token', sa.Text(), nullable=False),
    sa.Column('expires_at', sa.DateTime(timezone=True), nullable=False),
    sa.Column('is_active', sa.Boolean(), nullable=False),
    *_timestamps(),
    sa.PrimaryKeyConstraint('id'),
    sa.UniqueConstraint('tenant_id')
    )
    op.create_index(op.f('ix_ledger_connections_id'), 'ledger_connections', ['id'], unique=False)


def downgrade() -> None:
    op.drop_table('ledger_connections')
    op.drop_table('audit_entries')
    op.drop_table('sync_checkpoints')
    op.drop_table('sync_runs')
    op.drop_table('conflict_records')
    op.drop_table('sync_states')
    op.drop_table('payments')
    op.drop_table('invoice_line_items')
    op.drop_table('invoices')
    op.drop_table('contacts')
