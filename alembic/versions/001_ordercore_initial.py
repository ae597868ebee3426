"""Create order, invoice, ledger and settlement tables

Revision ID: 001_ordercore_initial
Revises:
Create Date: 2026-10-17
"""
from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects.postgresql import UUID, JSONB

# revision identifiers
revision = '001_ordercore_initial'
down_revision = None
branch_labels = None
depends_on = None


def _timestamps():
    return [
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('NOW()'), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.text('NOW()'), nullable=False),
    ]


def upgrade():
    """Create all tables of the order/invoice core"""

    # ====================
    # CATALOG
    # ====================
    op.create_table(
        'products',
        sa.Column('id', UUID(as_uuid=True), primary_key=True, server_default=sa.text('gen_random_uuid()')),
        sa.Column('name', sa.String(255), nullable=False),
        sa.Column('sku', sa.String(50), nullable=False),
        sa.Column('description', sa.Text, nullable=True),
        sa.Column('hsn_code', sa.String(20), nullable=True),
        sa.Column('price', sa.Numeric(12, 2), nullable=False),
        sa.Column('cost_price', sa.Numeric(12, 2), server_default='0', nullable=False),
        sa.Column('gst_rate', sa.Numeric(5, 2), nullable=True),
        sa.Column('stock_quantity', sa.Integer, server_default='0', nullable=False),
        sa.Column('is_active', sa.Boolean, server_default='true', nullable=False),
        *_timestamps(),
    )
    op.create_index('ix_products_sku', 'products', ['sku'], unique=True)

    op.create_table(
        'raw_materials',
        sa.Column('id', UUID(as_uuid=True), primary_key=True, server_default=sa.text('gen_random_uuid()')),
        sa.Column('name', sa.String(200), unique=True, nullable=False),
        sa.Column('unit', sa.String(20), server_default='kg', nullable=False),
        sa.Column('quantity', sa.Numeric(14, 3), server_default='0', nullable=False),
        sa.Column('min_quantity', sa.Numeric(14, 3), server_default='0', nullable=False),
        sa.Column('cost_per_unit', sa.Numeric(12, 2), server_default='0', nullable=False),
        *_timestamps(),
    )

    # ====================
    # DOCUMENT SEQUENCES
    # ====================
    op.create_table(
        'document_sequences',
        sa.Column('id', UUID(as_uuid=True), primary_key=True, server_default=sa.text('gen_random_uuid()')),
        sa.Column('document_type', sa.String(10), nullable=False),
        sa.Column('company_code', sa.String(10), nullable=False),
        sa.Column('financial_year', sa.String(10), nullable=False),
        sa.Column('current_number', sa.Integer, server_default='0', nullable=False),
        sa.Column('padding_length', sa.Integer, server_default='5', nullable=False),
        sa.Column('separator', sa.String(5), server_default='/', nullable=False),
        *_timestamps(),
        sa.UniqueConstraint('document_type', 'financial_year', name='uq_document_type_fy'),
    )
    op.create_index('ix_document_sequences_document_type', 'document_sequences', ['document_type'])

    # ====================
    # ORDERS
    # ====================
    op.create_table(
        'orders',
        sa.Column('id', UUID(as_uuid=True), primary_key=True, server_default=sa.text('gen_random_uuid()')),
        sa.Column('order_number', sa.String(30), nullable=False),
        sa.Column('status', sa.String(30), server_default='pending', nullable=False),
        sa.Column('customer_name', sa.String(200), nullable=False),
        sa.Column('customer_email', sa.String(255), nullable=True),
        sa.Column('customer_phone', sa.String(20), nullable=True),
        sa.Column('customer_gstin', sa.String(15), nullable=True),
        sa.Column('shipping_address', JSONB, nullable=False),
        sa.Column('subtotal', sa.Numeric(12, 2), nullable=False),
        sa.Column('shipping_amount', sa.Numeric(12, 2), server_default='0', nullable=False),
        sa.Column('tax_amount', sa.Numeric(12, 2), server_default='0', nullable=False),
        sa.Column('total_amount', sa.Numeric(12, 2), nullable=False),
        sa.Column('payment_method', sa.String(20), nullable=False),
        sa.Column('payment_status', sa.String(20), server_default='pending', nullable=False),
        sa.Column('payment_id', sa.String(100), nullable=True),
        sa.Column('paid_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('cod_status', sa.String(30), nullable=True),
        sa.Column('cod_courier_name', sa.String(100), nullable=True),
        sa.Column('cod_confirmed_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('cod_confirmed_by', UUID(as_uuid=True), nullable=True),
        sa.Column('cod_collected_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('cod_settled_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('courier_name', sa.String(100), nullable=True),
        sa.Column('tracking_id', sa.String(100), nullable=True),
        sa.Column('tracking_url', sa.String(500), nullable=True),
        sa.Column('expected_delivery_date', sa.Date, nullable=True),
        sa.Column('notes', sa.Text, nullable=True),
        sa.Column('cancellation_reason', sa.Text, nullable=True),
        sa.Column('created_by', UUID(as_uuid=True), nullable=True),
        *_timestamps(),
        sa.Column('confirmed_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('shipped_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('delivered_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('cancelled_at', sa.DateTime(timezone=True), nullable=True),
    )
    op.create_index('ix_orders_order_number', 'orders', ['order_number'], unique=True)
    op.create_index('ix_orders_status', 'orders', ['status'])
    op.create_index('ix_orders_payment_id', 'orders', ['payment_id'])
    op.create_index('ix_orders_created_at', 'orders', ['created_at'])
    op.create_index('ix_order_status_created', 'orders', ['status', 'created_at'])
    op.create_index('ix_order_payment_status', 'orders', ['payment_status', 'created_at'])
    op.create_index('ix_order_cod_status', 'orders', ['cod_status'])

    op.create_table(
        'order_items',
        sa.Column('id', UUID(as_uuid=True), primary_key=True, server_default=sa.text('gen_random_uuid()')),
        sa.Column('order_id', UUID(as_uuid=True), sa.ForeignKey('orders.id', ondelete='RESTRICT'), nullable=False),
        sa.Column('product_id', UUID(as_uuid=True), sa.ForeignKey('products.id', ondelete='RESTRICT'), nullable=False),
        sa.Column('position', sa.Integer, server_default='0', nullable=False),
        sa.Column('product_name', sa.String(255), nullable=False),
        sa.Column('product_sku', sa.String(50), nullable=False),
        sa.Column('quantity', sa.Integer, server_default='1', nullable=False),
        sa.Column('unit_price', sa.Numeric(12, 2), nullable=False),
        sa.Column('line_total', sa.Numeric(12, 2), nullable=False),
        sa.Column('gst_rate', sa.Numeric(5, 2), server_default='18', nullable=False),
        sa.Column('gst_rate_defaulted', sa.Boolean, server_default='false', nullable=False),
        sa.Column('tax_amount', sa.Numeric(12, 2), server_default='0', nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('NOW()'), nullable=False),
    )
    op.create_index('ix_order_items_order_id', 'order_items', ['order_id'])

    op.create_table(
        'order_status_history',
        sa.Column('id', UUID(as_uuid=True), primary_key=True, server_default=sa.text('gen_random_uuid()')),
        sa.Column('order_id', UUID(as_uuid=True), sa.ForeignKey('orders.id', ondelete='RESTRICT'), nullable=False),
        sa.Column('from_status', sa.String(30), nullable=True),
        sa.Column('to_status', sa.String(30), nullable=False),
        sa.Column('changed_by', UUID(as_uuid=True), nullable=True),
        sa.Column('notes', sa.Text, nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('NOW()'), nullable=False),
    )
    op.create_index('ix_order_status_history_order_id', 'order_status_history', ['order_id'])

    # ====================
    # INVOICES
    # ====================
    op.create_table(
        'invoices',
        sa.Column('id', UUID(as_uuid=True), primary_key=True, server_default=sa.text('gen_random_uuid()')),
        sa.Column('invoice_number', sa.String(50), nullable=False),
        sa.Column('invoice_type', sa.String(20), nullable=False),
        sa.Column('is_final', sa.Boolean, server_default='false', nullable=False),
        sa.Column('status', sa.String(20), server_default='issued', nullable=False),
        sa.Column('order_id', UUID(as_uuid=True), sa.ForeignKey('orders.id', ondelete='RESTRICT'), nullable=True),
        sa.Column('final_order_id', UUID(as_uuid=True), nullable=True),
        sa.Column('client_name', sa.String(200), nullable=False),
        sa.Column('client_email', sa.String(255), nullable=True),
        sa.Column('client_phone', sa.String(20), nullable=True),
        sa.Column('client_address', sa.Text, nullable=True),
        sa.Column('client_state', sa.String(100), nullable=False),
        sa.Column('client_gstin', sa.String(15), nullable=True),
        sa.Column('seller_name', sa.String(200), nullable=False),
        sa.Column('seller_address', sa.Text, nullable=True),
        sa.Column('seller_state', sa.String(100), nullable=False),
        sa.Column('seller_gstin', sa.String(15), nullable=True),
        sa.Column('is_igst', sa.Boolean, server_default='false', nullable=False),
        sa.Column('subtotal', sa.Numeric(12, 2), nullable=False),
        sa.Column('cgst_amount', sa.Numeric(12, 2), server_default='0', nullable=False),
        sa.Column('sgst_amount', sa.Numeric(12, 2), server_default='0', nullable=False),
        sa.Column('igst_amount', sa.Numeric(12, 2), server_default='0', nullable=False),
        sa.Column('tax_amount', sa.Numeric(12, 2), server_default='0', nullable=False),
        sa.Column('total_amount', sa.Numeric(12, 2), nullable=False),
        sa.Column('delivery_date', sa.Date, nullable=True),
        sa.Column('notes', sa.Text, nullable=True),
        sa.Column('created_by', UUID(as_uuid=True), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('NOW()'), nullable=False),
        sa.Column('voided_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('voided_by', UUID(as_uuid=True), nullable=True),
        sa.Column('void_reason', sa.Text, nullable=True),
        # One active final invoice per order
        sa.UniqueConstraint('final_order_id', name='uq_invoices_final_order_id'),
        sa.CheckConstraint("(invoice_type = 'final') = is_final", name='ck_invoice_type_matches_is_final'),
        sa.CheckConstraint('final_order_id IS NULL OR is_final', name='ck_invoice_final_slot_only_on_final'),
    )
    op.create_index('ix_invoices_invoice_number', 'invoices', ['invoice_number'], unique=True)
    op.create_index('ix_invoices_order_id', 'invoices', ['order_id'])
    op.create_index('ix_invoices_created_at', 'invoices', ['created_at'])
    op.create_index('ix_invoice_type_created', 'invoices', ['invoice_type', 'created_at'])

    op.create_table(
        'invoice_items',
        sa.Column('id', UUID(as_uuid=True), primary_key=True, server_default=sa.text('gen_random_uuid()')),
        sa.Column('invoice_id', UUID(as_uuid=True), sa.ForeignKey('invoices.id', ondelete='RESTRICT'), nullable=False),
        sa.Column('position', sa.Integer, server_default='0', nullable=False),
        sa.Column('description', sa.String(255), nullable=False),
        sa.Column('product_id', UUID(as_uuid=True), nullable=True),
        sa.Column('hsn_code', sa.String(20), nullable=True),
        sa.Column('quantity', sa.Numeric(12, 3), nullable=False),
        sa.Column('unit_price', sa.Numeric(12, 2), nullable=False),
        sa.Column('gst_rate', sa.Numeric(5, 2), nullable=False),
        sa.Column('taxable_value', sa.Numeric(12, 2), nullable=False),
        sa.Column('cgst_amount', sa.Numeric(12, 2), server_default='0', nullable=False),
        sa.Column('sgst_amount', sa.Numeric(12, 2), server_default='0', nullable=False),
        sa.Column('igst_amount', sa.Numeric(12, 2), server_default='0', nullable=False),
        sa.Column('tax_amount', sa.Numeric(12, 2), server_default='0', nullable=False),
        sa.Column('line_total', sa.Numeric(12, 2), nullable=False),
    )
    op.create_index('ix_invoice_items_invoice_id', 'invoice_items', ['invoice_id'])

    op.create_table(
        'invoice_generation_tasks',
        sa.Column('id', UUID(as_uuid=True), primary_key=True, server_default=sa.text('gen_random_uuid()')),
        sa.Column('order_id', UUID(as_uuid=True), sa.ForeignKey('orders.id', ondelete='RESTRICT'), unique=True, nullable=False),
        sa.Column('status', sa.String(20), server_default='pending', nullable=False),
        sa.Column('retry_count', sa.Integer, server_default='0', nullable=False),
        sa.Column('max_retries', sa.Integer, server_default='5', nullable=False),
        sa.Column('last_error', sa.Text, nullable=True),
        sa.Column('invoice_id', UUID(as_uuid=True), nullable=True),
        *_timestamps(),
        sa.Column('completed_at', sa.DateTime(timezone=True), nullable=True),
    )
    op.create_index('ix_invoice_generation_tasks_status', 'invoice_generation_tasks', ['status'])

    # ====================
    # LEDGER & AUDIT
    # ====================
    op.create_table(
        'ledger_entries',
        sa.Column('id', UUID(as_uuid=True), primary_key=True, server_default=sa.text('gen_random_uuid()')),
        sa.Column('subject_type', sa.String(30), nullable=False),
        sa.Column('subject_id', UUID(as_uuid=True), nullable=False),
        sa.Column('sequence_no', sa.Integer, nullable=False),
        sa.Column('action_type', sa.String(20), nullable=False),
        sa.Column('delta', sa.Numeric(14, 3), nullable=False),
        sa.Column('previous_balance', sa.Numeric(14, 3), nullable=False),
        sa.Column('new_balance', sa.Numeric(14, 3), nullable=False),
        sa.Column('actor_id', UUID(as_uuid=True), nullable=True),
        sa.Column('notes', sa.Text, nullable=True),
        sa.Column('reference_type', sa.String(30), nullable=True),
        sa.Column('reference_id', UUID(as_uuid=True), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('NOW()'), nullable=False),
        sa.UniqueConstraint('subject_type', 'subject_id', 'sequence_no', name='uq_ledger_subject_sequence'),
    )
    op.create_index('ix_ledger_subject', 'ledger_entries', ['subject_type', 'subject_id'])

    op.create_table(
        'audit_logs',
        sa.Column('id', UUID(as_uuid=True), primary_key=True, server_default=sa.text('gen_random_uuid()')),
        sa.Column('user_id', UUID(as_uuid=True), nullable=True),
        sa.Column('action', sa.String(50), nullable=False),
        sa.Column('entity_type', sa.String(50), nullable=False),
        sa.Column('entity_id', UUID(as_uuid=True), nullable=True),
        sa.Column('old_values', JSONB, nullable=True),
        sa.Column('new_values', JSONB, nullable=True),
        sa.Column('description', sa.Text, nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('NOW()'), nullable=False),
    )
    op.create_index('ix_audit_logs_action', 'audit_logs', ['action'])
    op.create_index('ix_audit_logs_created_at', 'audit_logs', ['created_at'])
    op.create_index('ix_audit_entity', 'audit_logs', ['entity_type', 'entity_id'])


def downgrade():
    """Drop all tables"""
    op.drop_table('audit_logs')
    op.drop_table('ledger_entries')
    op.drop_table('invoice_generation_tasks')
    op.drop_table('invoice_items')
    op.drop_table('invoices')
    op.drop_table('order_status_history')
    op.drop_table('order_items')
    op.drop_table('orders')
    op.drop_table('document_sequences')
    op.drop_table('raw_materials')
    op.drop_table('products')
