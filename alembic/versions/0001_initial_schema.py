"""initial schema

Revision ID: 0001
Revises:
Create Date: 2026-10-16 09:00:00.000000

"""
from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = '0001'
down_revision = None
branch_labels = None
depends_on = None

PART_LIFECYCLE = ("ACTIVE", "DISCONTINUED", "DELETED")
JOB_STATUS = ("OPEN", "IN_PROGRESS", "WAITING_FOR_PARTS", "COMPLETED", "CLOSED")
MOVEMENT_TYPE = ("IN", "OUT", "TRANSFER", "ADJUSTMENT", "DAMAGED", "RETURN")
RESERVATION_STATUS = ("ACTIVE", "EXPIRED", "RELEASED", "CONSUMED")
REQUEST_STATUS = ("PENDING", "APPROVED", "REJECTED", "ISSUED", "INSTALLED", "RETURNED", "CANCELLED")
URGENCY = ("NORMAL", "URGENT", "EMERGENCY")
APPROVAL_DECISION = ("PENDING", "APPROVED", "REJECTED")
RETURN_CONDITION = ("GOOD", "DAMAGED", "DEFECTIVE")


def _enum(name, values):
    return sa.Enum(*values, name=name, native_enum=False)


def _index(table, *columns, unique=False, name=None):
    op.create_index(name or f"ix_{table}_{columns[0]}", table, list(columns), unique=unique)


def upgrade() -> None:
    op.create_table(
        'spare_parts',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('name', sa.String(length=255), nullable=False),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('part_number', sa.String(length=100), nullable=False),
        sa.Column('category_id', sa.String(length=64), nullable=True),
        sa.Column('supplier_id', sa.String(length=64), nullable=True),
        sa.Column('cost_price', sa.Float(), nullable=False),
        sa.Column('selling_price', sa.Float(), nullable=False),
        sa.Column('mrp', sa.Float(), nullable=True),
        sa.Column('markup_percent', sa.Float(), nullable=True),
        sa.Column('warranty_months', sa.Integer(), nullable=True),
        sa.Column('lifecycle', _enum('partlifecycle', PART_LIFECYCLE), nullable=False),
        sa.Column('created_at', sa.DateTime(), nullable=True),
        sa.Column('updated_at', sa.DateTime(), nullable=True),
        sa.PrimaryKeyConstraint('id'),
    )
    _index('spare_parts', 'id')
    _index('spare_parts', 'name')
    _index('spare_parts', 'part_number', unique=True)
    _index('spare_parts', 'category_id')
    _index('spare_parts', 'supplier_id')

    op.create_table(
        'spare_part_price_history',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('spare_part_id', sa.Integer(), nullable=False),
        sa.Column('old_cost_price', sa.Float(), nullable=False),
        sa.Column('new_cost_price', sa.Float(), nullable=False),
        sa.Column('old_selling_price', sa.Float(), nullable=False),
        sa.Column('new_selling_price', sa.Float(), nullable=False),
        sa.Column('old_mrp', sa.Float(), nullable=True),
        sa.Column('new_mrp', sa.Float(), nullable=True),
        sa.Column('old_markup_percent', sa.Float(), nullable=True),
        sa.Column('new_markup_percent', sa.Float(), nullable=True),
        sa.Column('reason', sa.Text(), nullable=False),
        sa.Column('changed_by', sa.String(length=64), nullable=False),
        sa.Column('changed_at', sa.DateTime(), nullable=False),
        sa.ForeignKeyConstraint(['spare_part_id'], ['spare_parts.id']),
        sa.PrimaryKeyConstraint('id'),
    )
    _index('spare_part_price_history', 'id')
    _index('spare_part_price_history', 'spare_part_id')

    op.create_table(
        'service_jobs',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('job_number', sa.String(length=50), nullable=False),
        sa.Column('store_id', sa.String(length=64), nullable=False),
        sa.Column('vehicle_number', sa.String(length=50), nullable=True),
        sa.Column('technician_id', sa.String(length=64), nullable=True),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('labor_cost', sa.Float(), nullable=True),
        sa.Column('parts_cost', sa.Float(), nullable=True),
        sa.Column('labor_total', sa.Float(), nullable=True),
        sa.Column('actual_cost', sa.Float(), nullable=True),
        sa.Column('status', _enum('jobstatus', JOB_STATUS), nullable=False),
        sa.Column('created_at', sa.DateTime(), nullable=True),
        sa.Column('updated_at', sa.DateTime(), nullable=True),
        sa.Column('completed_at', sa.DateTime(), nullable=True),
        sa.PrimaryKeyConstraint('id'),
    )
    _index('service_jobs', 'id')
    _index('service_jobs', 'job_number', unique=True)
    _index('service_jobs', 'store_id')
    _index('service_jobs', 'technician_id')

    op.create_table(
        'inventory_levels',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('spare_part_id', sa.Integer(), nullable=False),
        sa.Column('store_id', sa.String(length=64), nullable=False),
        sa.Column('store_name', sa.String(length=255), nullable=True),
        sa.Column('current_stock', sa.Integer(), nullable=False),
        sa.Column('available_stock', sa.Integer(), nullable=False),
        sa.Column('reserved_stock', sa.Integer(), nullable=False),
        sa.Column('damaged_stock', sa.Integer(), nullable=False),
        sa.Column('minimum_stock', sa.Integer(), nullable=False),
        sa.Column('maximum_stock', sa.Integer(), nullable=False),
        sa.Column('reorder_level', sa.Integer(), nullable=False),
        sa.Column('reorder_quantity', sa.Integer(), nullable=False),
        sa.Column('last_count_date', sa.DateTime(), nullable=True),
        sa.Column('last_movement_date', sa.DateTime(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=True),
        sa.Column('updated_at', sa.DateTime(), nullable=True),
        sa.CheckConstraint('current_stock >= 0', name='ck_inventory_current_nonnegative'),
        sa.CheckConstraint('available_stock >= 0', name='ck_inventory_available_nonnegative'),
        sa.CheckConstraint('reserved_stock >= 0', name='ck_inventory_reserved_nonnegative'),
        sa.CheckConstraint('damaged_stock >= 0', name='ck_inventory_damaged_nonnegative'),
        sa.ForeignKeyConstraint(['spare_part_id'], ['spare_parts.id']),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('spare_part_id', 'store_id', name='uq_inventory_level_part_store'),
    )
    _index('inventory_levels', 'id')
    _index('inventory_levels', 'spare_part_id')
    _index('inventory_levels', 'store_id')

    op.create_table(
        'stock_batches',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('inventory_level_id', sa.Integer(), nullable=False),
        sa.Column('batch_number', sa.String(length=64), nullable=False),
        sa.Column('unit_cost', sa.Float(), nullable=False),
        sa.Column('received_quantity', sa.Integer(), nullable=False),
        sa.Column('remaining_quantity', sa.Integer(), nullable=False),
        sa.Column('source_type', _enum('movementtype', MOVEMENT_TYPE), nullable=False),
        sa.Column('received_at', sa.DateTime(), nullable=False),
        sa.CheckConstraint('remaining_quantity >= 0', name='ck_stock_batch_remaining_nonnegative'),
        sa.ForeignKeyConstraint(['inventory_level_id'], ['inventory_levels.id']),
        sa.PrimaryKeyConstraint('id'),
    )
    _index('stock_batches', 'id')
    _index('stock_batches', 'inventory_level_id')
    _index('stock_batches', 'batch_number')
    _index('stock_batches', 'inventory_level_id', 'received_at', name='ix_stock_batches_level_received')

    op.create_table(
        'stock_movements',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('inventory_level_id', sa.Integer(), nullable=False),
        sa.Column('spare_part_id', sa.Integer(), nullable=False),
        sa.Column('store_id', sa.String(length=64), nullable=False),
        sa.Column('batch_id', sa.Integer(), nullable=True),
        sa.Column('movement_type', _enum('movementtype', MOVEMENT_TYPE), nullable=False),
        sa.Column('quantity', sa.Integer(), nullable=False),
        sa.Column('previous_stock', sa.Integer(), nullable=False),
        sa.Column('new_stock', sa.Integer(), nullable=False),
        sa.Column('unit_cost', sa.Float(), nullable=False),
        sa.Column('total_value', sa.Float(), nullable=False),
        sa.Column('reference_type', sa.String(length=50), nullable=True),
        sa.Column('reference_id', sa.String(length=64), nullable=True),
        sa.Column('reason', sa.Text(), nullable=True),
        sa.Column('notes', sa.Text(), nullable=True),
        sa.Column('created_by', sa.String(length=64), nullable=False),
        sa.Column('movement_date', sa.DateTime(), nullable=False),
        sa.ForeignKeyConstraint(['inventory_level_id'], ['inventory_levels.id']),
        sa.ForeignKeyConstraint(['spare_part_id'], ['spare_parts.id']),
        sa.ForeignKeyConstraint(['batch_id'], ['stock_batches.id']),
        sa.PrimaryKeyConstraint('id'),
    )
    _index('stock_movements', 'id')
    _index('stock_movements', 'inventory_level_id')
    _index('stock_movements', 'spare_part_id')
    _index('stock_movements', 'store_id')
    _index('stock_movements', 'movement_type')
    _index('stock_movements', 'inventory_level_id', 'movement_date', name='ix_stock_movements_level_date')
    _index('stock_movements', 'reference_type', 'reference_id', name='ix_stock_movements_reference')

    op.create_table(
        'spare_part_requests',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('service_request_id', sa.Integer(), nullable=False),
        sa.Column('spare_part_id', sa.Integer(), nullable=False),
        sa.Column('store_id', sa.String(length=64), nullable=False),
        sa.Column('requested_by', sa.String(length=64), nullable=False),
        sa.Column('requested_quantity', sa.Integer(), nullable=False),
        sa.Column('urgency', _enum('urgency', URGENCY), nullable=False),
        sa.Column('justification', sa.Text(), nullable=True),
        sa.Column('estimated_cost', sa.Float(), nullable=False),
        sa.Column('approval_level', sa.Integer(), nullable=False),
        sa.Column('status', _enum('requeststatus', REQUEST_STATUS), nullable=False),
        sa.Column('approved_by', sa.String(length=64), nullable=True),
        sa.Column('approved_at', sa.DateTime(), nullable=True),
        sa.Column('rejection_reason', sa.Text(), nullable=True),
        sa.Column('issued_quantity', sa.Integer(), nullable=True),
        sa.Column('issued_at', sa.DateTime(), nullable=True),
        sa.Column('issued_by', sa.String(length=64), nullable=True),
        sa.Column('issued_cost', sa.Float(), nullable=True),
        sa.Column('installed_quantity', sa.Integer(), nullable=False),
        sa.Column('returned_quantity', sa.Integer(), nullable=False),
        sa.Column('returned_at', sa.DateTime(), nullable=True),
        sa.Column('returned_by', sa.String(length=64), nullable=True),
        sa.Column('return_reason', sa.Text(), nullable=True),
        sa.Column('return_condition', _enum('returncondition', RETURN_CONDITION), nullable=True),
        sa.Column('cancelled_at', sa.DateTime(), nullable=True),
        sa.Column('cancelled_by', sa.String(length=64), nullable=True),
        sa.Column('cancellation_reason', sa.Text(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=True),
        sa.Column('updated_at', sa.DateTime(), nullable=True),
        sa.CheckConstraint('requested_quantity > 0', name='ck_part_request_quantity_positive'),
        sa.ForeignKeyConstraint(['service_request_id'], ['service_jobs.id']),
        sa.ForeignKeyConstraint(['spare_part_id'], ['spare_parts.id']),
        sa.PrimaryKeyConstraint('id'),
    )
    _index('spare_part_requests', 'id')
    _index('spare_part_requests', 'service_request_id')
    _index('spare_part_requests', 'spare_part_id')
    _index('spare_part_requests', 'store_id')
    _index('spare_part_requests', 'requested_by')
    _index('spare_part_requests', 'status')
    _index('spare_part_requests', 'created_at')
    _index('spare_part_requests', 'service_request_id', 'spare_part_id', name='ix_part_requests_job_part')

    op.create_table(
        'stock_reservations',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('request_id', sa.Integer(), nullable=False),
        sa.Column('inventory_level_id', sa.Integer(), nullable=False),
        sa.Column('spare_part_id', sa.Integer(), nullable=False),
        sa.Column('store_id', sa.String(length=64), nullable=False),
        sa.Column('reserved_quantity', sa.Integer(), nullable=False),
        sa.Column('reserved_by', sa.String(length=64), nullable=False),
        sa.Column('reserved_for', sa.String(length=64), nullable=True),
        sa.Column('reserved_at', sa.DateTime(), nullable=False),
        sa.Column('expires_at', sa.DateTime(), nullable=False),
        sa.Column('status', _enum('reservationstatus', RESERVATION_STATUS), nullable=False),
        sa.Column('resolved_at', sa.DateTime(), nullable=True),
        sa.CheckConstraint('reserved_quantity > 0', name='ck_stock_reservation_positive'),
        sa.ForeignKeyConstraint(['request_id'], ['spare_part_requests.id']),
        sa.ForeignKeyConstraint(['inventory_level_id'], ['inventory_levels.id']),
        sa.ForeignKeyConstraint(['spare_part_id'], ['spare_parts.id']),
        sa.PrimaryKeyConstraint('id'),
    )
    _index('stock_reservations', 'id')
    _index('stock_reservations', 'request_id')
    _index('stock_reservations', 'inventory_level_id')
    _index('stock_reservations', 'status')
    _index('stock_reservations', 'status', 'expires_at', name='ix_stock_reservations_status_expiry')

    op.create_table(
        'approval_history',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('request_id', sa.Integer(), nullable=False),
        sa.Column('level', sa.Integer(), nullable=False),
        sa.Column('approver_id', sa.String(length=64), nullable=False),
        sa.Column('decision', _enum('approvaldecision', APPROVAL_DECISION), nullable=False),
        sa.Column('comments', sa.Text(), nullable=True),
        sa.Column('conditions', sa.Text(), nullable=True),
        sa.Column('request_value', sa.Float(), nullable=False),
        sa.Column('available_stock', sa.Integer(), nullable=False),
        sa.Column('processed_at', sa.DateTime(), nullable=False),
        sa.ForeignKeyConstraint(['request_id'], ['spare_part_requests.id']),
        sa.PrimaryKeyConstraint('id'),
    )
    _index('approval_history', 'id')
    _index('approval_history', 'request_id')

    op.create_table(
        'issued_batches',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('request_id', sa.Integer(), nullable=False),
        sa.Column('batch_id', sa.Integer(), nullable=False),
        sa.Column('movement_id', sa.Integer(), nullable=False),
        sa.Column('sequence', sa.Integer(), nullable=False),
        sa.Column('batch_number', sa.String(length=64), nullable=False),
        sa.Column('quantity', sa.Integer(), nullable=False),
        sa.Column('unit_cost', sa.Float(), nullable=False),
        sa.ForeignKeyConstraint(['request_id'], ['spare_part_requests.id']),
        sa.ForeignKeyConstraint(['batch_id'], ['stock_batches.id']),
        sa.ForeignKeyConstraint(['movement_id'], ['stock_movements.id']),
        sa.PrimaryKeyConstraint('id'),
    )
    _index('issued_batches', 'id')
    _index('issued_batches', 'request_id')

    op.create_table(
        'installed_parts',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('service_request_id', sa.Integer(), nullable=False),
        sa.Column('spare_part_id', sa.Integer(), nullable=False),
        sa.Column('request_id', sa.Integer(), nullable=True),
        sa.Column('technician_id', sa.String(length=64), nullable=False),
        sa.Column('store_id', sa.String(length=64), nullable=False),
        sa.Column('batch_number', sa.String(length=64), nullable=True),
        sa.Column('serial_number', sa.String(length=100), nullable=True),
        sa.Column('quantity', sa.Integer(), nullable=False),
        sa.Column('unit_cost', sa.Float(), nullable=False),
        sa.Column('total_cost', sa.Float(), nullable=False),
        sa.Column('selling_price', sa.Float(), nullable=False),
        sa.Column('total_revenue', sa.Float(), nullable=False),
        sa.Column('installed_at', sa.DateTime(), nullable=False),
        sa.Column('installation_notes', sa.Text(), nullable=True),
        sa.Column('warranty_months', sa.Integer(), nullable=False),
        sa.Column('warranty_expiry', sa.DateTime(), nullable=True),
        sa.Column('replaced_part_id', sa.Integer(), nullable=True),
        sa.Column('removal_date', sa.DateTime(), nullable=True),
        sa.Column('removal_reason', sa.Text(), nullable=True),
        sa.Column('removed_by', sa.String(length=64), nullable=True),
        sa.ForeignKeyConstraint(['service_request_id'], ['service_jobs.id']),
        sa.ForeignKeyConstraint(['spare_part_id'], ['spare_parts.id']),
        sa.ForeignKeyConstraint(['request_id'], ['spare_part_requests.id']),
        sa.ForeignKeyConstraint(['replaced_part_id'], ['installed_parts.id']),
        sa.PrimaryKeyConstraint('id'),
    )
    _index('installed_parts', 'id')
    _index('installed_parts', 'service_request_id')
    _index('installed_parts', 'spare_part_id')
    _index('installed_parts', 'technician_id')

    op.create_table(
        'technician_limits',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('technician_id', sa.String(length=64), nullable=False),
        sa.Column('spare_part_id', sa.Integer(), nullable=True),
        sa.Column('category_id', sa.String(length=64), nullable=True),
        sa.Column('max_value_per_request', sa.Float(), nullable=True),
        sa.Column('max_quantity_per_request', sa.Integer(), nullable=True),
        sa.Column('requires_approval', sa.Boolean(), nullable=False),
        sa.Column('auto_approve_below', sa.Float(), nullable=True),
        sa.Column('is_active', sa.Boolean(), nullable=False),
        sa.Column('created_at', sa.DateTime(), nullable=True),
        sa.CheckConstraint('(spare_part_id IS NULL) <> (category_id IS NULL)', name='ck_technician_limit_scope'),
        sa.ForeignKeyConstraint(['spare_part_id'], ['spare_parts.id']),
        sa.PrimaryKeyConstraint('id'),
    )
    _index('technician_limits', 'id')
    _index('technician_limits', 'technician_id', 'spare_part_id', 'category_id', name='ix_technician_limits_lookup')

    op.create_table(
        'service_cost_breakdowns',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('service_request_id', sa.Integer(), nullable=False),
        sa.Column('parts_cost', sa.Float(), nullable=False),
        sa.Column('parts_markup', sa.Float(), nullable=False),
        sa.Column('parts_total', sa.Float(), nullable=False),
        sa.Column('labor_cost', sa.Float(), nullable=False),
        sa.Column('labor_markup', sa.Float(), nullable=False),
        sa.Column('labor_total', sa.Float(), nullable=False),
        sa.Column('overhead_cost', sa.Float(), nullable=False),
        sa.Column('subtotal', sa.Float(), nullable=False),
        sa.Column('tax_percent', sa.Float(), nullable=False),
        sa.Column('tax_amount', sa.Float(), nullable=False),
        sa.Column('discount_amount', sa.Float(), nullable=False),
        sa.Column('total_cost', sa.Float(), nullable=False),
        sa.Column('net_margin', sa.Float(), nullable=False),
        sa.Column('margin_percent', sa.Float(), nullable=False),
        sa.Column('calculated_by', sa.String(length=64), nullable=False),
        sa.Column('calculated_at', sa.DateTime(), nullable=False),
        sa.ForeignKeyConstraint(['service_request_id'], ['service_jobs.id']),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('service_request_id'),
    )
    _index('service_cost_breakdowns', 'id')

    op.create_table(
        'service_cost_lines',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('breakdown_id', sa.Integer(), nullable=False),
        sa.Column('installed_part_id', sa.Integer(), nullable=False),
        sa.Column('spare_part_id', sa.Integer(), nullable=False),
        sa.Column('part_name', sa.String(length=255), nullable=False),
        sa.Column('quantity', sa.Integer(), nullable=False),
        sa.Column('unit_cost', sa.Float(), nullable=False),
        sa.Column('total_cost', sa.Float(), nullable=False),
        sa.Column('selling_price', sa.Float(), nullable=False),
        sa.Column('total_revenue', sa.Float(), nullable=False),
        sa.ForeignKeyConstraint(['breakdown_id'], ['service_cost_breakdowns.id']),
        sa.ForeignKeyConstraint(['installed_part_id'], ['installed_parts.id']),
        sa.ForeignKeyConstraint(['spare_part_id'], ['spare_parts.id']),
        sa.PrimaryKeyConstraint('id'),
    )
    _index('service_cost_lines', 'id')
    _index('service_cost_lines', 'breakdown_id')


def downgrade() -> None:
    for table in (
        'service_cost_lines',
        'service_cost_breakdowns',
        'technician_limits',
        'installed_parts',
        'issued_batches',
        'approval_history',
        'stock_reservations',
        'spare_part_requests',
        'stock_movements',
        'stock_batches',
        'inventory_levels',
        'service_jobs',
        'spare_part_price_history',
        'spare_parts',
    ):
        op.drop_table(table)
