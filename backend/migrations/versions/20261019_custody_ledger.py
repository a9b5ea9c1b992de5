"""custody ledger initial schema

Revision ID: c0d1e2f3a4b5
Revises:
Create Date: 2026-10-19 00:00:00.000000

Creates the custody schema from scratch:
- warehouses / people / items: master data with denormalized stock counters
- transfer_records / add_records: custody ledger (warehouse <-> person)
- warehouse_transfer_records / warehouse_add_records: stock moves with no person
- employee_accesses / demob_records / offboarding_tasks: offboarding workflow
- audit_events: append-only audit trail

Every row that the ledger engine mutates concurrently carries version_id
(SQLAlchemy version_id_col) for optimistic locking.
"""
from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = 'c0d1e2f3a4b5'
down_revision = None
branch_labels = None
depends_on = None


def _timestamps():
    return [
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False,
                  server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False,
                  server_default=sa.text('CURRENT_TIMESTAMP')),
    ]


def upgrade():
    # ============================================================================
    # warehouses
    # ============================================================================
    op.create_table(
        'warehouses',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('title', sa.String(length=120), nullable=False),
        sa.Column('location', sa.String(length=255), nullable=True),
        sa.Column('warehouse_type', sa.String(length=32), nullable=True),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('stock_qty', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('version_id', sa.Integer(), nullable=False, server_default='1'),
        *_timestamps(),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('title'),
        sqlite_autoincrement=True
    )

    # ============================================================================
    # people
    # ============================================================================
    op.create_table(
        'people',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('title', sa.String(length=200), nullable=False),
        sa.Column('email', sa.String(length=255), nullable=True),
        sa.Column('department', sa.String(length=120), nullable=True),
        sa.Column('topology', sa.String(length=64), nullable=True),
        sa.Column('aow', sa.String(length=120), nullable=True),
        sa.Column('status', sa.String(length=16), nullable=False, server_default='active'),
        sa.Column('contract_end_date', sa.DateTime(timezone=True), nullable=True),
        sa.Column('stock_qty', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('version_id', sa.Integer(), nullable=False, server_default='1'),
        *_timestamps(),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('email'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_people_status', 'people', ['status'])

    # ============================================================================
    # items
    # ============================================================================
    # current_location_type / assigned_to_person_id are deliberately not
    # constrained together: drifted rows must be loadable so the maintenance
    # operations can repair them.
    op.create_table(
        'items',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('title', sa.String(length=255), nullable=False),
        sa.Column('serial_number', sa.String(length=128), nullable=True),
        sa.Column('asset_tag', sa.String(length=64), nullable=True),
        sa.Column('model', sa.String(length=128), nullable=True),
        sa.Column('notes', sa.Text(), nullable=True),
        sa.Column('quantity', sa.Integer(), nullable=False, server_default='1'),
        sa.Column('current_location_type', sa.String(length=16), nullable=False, server_default='warehouse'),
        sa.Column('assigned_to_person_id', sa.Integer(), nullable=True),
        sa.Column('warehouse_id', sa.Integer(), nullable=True),
        sa.Column('version_id', sa.Integer(), nullable=False, server_default='1'),
        *_timestamps(),
        sa.ForeignKeyConstraint(['assigned_to_person_id'], ['people.id'], ),
        sa.ForeignKeyConstraint(['warehouse_id'], ['warehouses.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('serial_number'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_items_assigned_to_person_id', 'items', ['assigned_to_person_id'])
    op.create_index('ix_items_warehouse_id', 'items', ['warehouse_id'])
    op.create_index('ix_items_location_assignee', 'items', ['current_location_type', 'assigned_to_person_id'])

    # ============================================================================
    # transfer_records: warehouse -> person custody ledger
    # ============================================================================
    op.create_table(
        'transfer_records',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('item_id', sa.Integer(), nullable=False),
        sa.Column('people_id', sa.Integer(), nullable=False),
        sa.Column('giving_warehouse_id', sa.Integer(), nullable=False),
        sa.Column('transfer_stock_qty', sa.Integer(), nullable=False),
        sa.Column('reference_number', sa.String(length=64), nullable=True),
        sa.Column('notes', sa.Text(), nullable=True),
        sa.Column('status', sa.String(length=16), nullable=False, server_default='active'),
        sa.Column('returned_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('version_id', sa.Integer(), nullable=False, server_default='1'),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False,
                  server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.ForeignKeyConstraint(['item_id'], ['items.id'], ),
        sa.ForeignKeyConstraint(['people_id'], ['people.id'], ),
        sa.ForeignKeyConstraint(['giving_warehouse_id'], ['warehouses.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_transfer_records_item_id', 'transfer_records', ['item_id'])
    op.create_index('ix_transfer_records_people_id', 'transfer_records', ['people_id'])
    op.create_index('ix_transfer_records_giving_warehouse_id', 'transfer_records', ['giving_warehouse_id'])
    op.create_index('ix_transfer_records_item_person_status', 'transfer_records', ['item_id', 'people_id', 'status'])
    op.create_index('ix_transfer_records_status_created', 'transfer_records', ['status', 'created_at'])

    # ============================================================================
    # add_records: person -> warehouse returns
    # ============================================================================
    op.create_table(
        'add_records',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('item_id', sa.Integer(), nullable=False),
        sa.Column('people_id', sa.Integer(), nullable=True),
        sa.Column('receiving_warehouse_id', sa.Integer(), nullable=False),
        sa.Column('closed_transfer_id', sa.Integer(), nullable=True),
        sa.Column('add_stock_qty', sa.Integer(), nullable=False),
        sa.Column('reference_number', sa.String(length=64), nullable=True),
        sa.Column('notes', sa.Text(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False,
                  server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.ForeignKeyConstraint(['item_id'], ['items.id'], ),
        sa.ForeignKeyConstraint(['people_id'], ['people.id'], ),
        sa.ForeignKeyConstraint(['receiving_warehouse_id'], ['warehouses.id'], ),
        sa.ForeignKeyConstraint(['closed_transfer_id'], ['transfer_records.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_add_records_item_id', 'add_records', ['item_id'])
    op.create_index('ix_add_records_people_id', 'add_records', ['people_id'])
    op.create_index('ix_add_records_receiving_warehouse_id', 'add_records', ['receiving_warehouse_id'])
    op.create_index('ix_add_records_item_created', 'add_records', ['item_id', 'created_at'])

    # ============================================================================
    # warehouse_transfer_records / warehouse_add_records
    # ============================================================================
    op.create_table(
        'warehouse_transfer_records',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('item_id', sa.Integer(), nullable=False),
        sa.Column('giving_warehouse_id', sa.Integer(), nullable=False),
        sa.Column('receiving_warehouse_id', sa.Integer(), nullable=False),
        sa.Column('transfer_stock_qty', sa.Integer(), nullable=False),
        sa.Column('reference_number', sa.String(length=64), nullable=True),
        sa.Column('notes', sa.Text(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False,
                  server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.ForeignKeyConstraint(['item_id'], ['items.id'], ),
        sa.ForeignKeyConstraint(['giving_warehouse_id'], ['warehouses.id'], ),
        sa.ForeignKeyConstraint(['receiving_warehouse_id'], ['warehouses.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_warehouse_transfer_records_item_id', 'warehouse_transfer_records', ['item_id'])
    op.create_index('ix_warehouse_transfer_records_giving_warehouse_id', 'warehouse_transfer_records', ['giving_warehouse_id'])
    op.create_index('ix_warehouse_transfer_records_receiving_warehouse_id', 'warehouse_transfer_records', ['receiving_warehouse_id'])

    op.create_table(
        'warehouse_add_records',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('item_id', sa.Integer(), nullable=False),
        sa.Column('receiving_warehouse_id', sa.Integer(), nullable=False),
        sa.Column('add_stock_qty', sa.Integer(), nullable=False),
        sa.Column('reference_number', sa.String(length=64), nullable=True),
        sa.Column('notes', sa.Text(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False,
                  server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.ForeignKeyConstraint(['item_id'], ['items.id'], ),
        sa.ForeignKeyConstraint(['receiving_warehouse_id'], ['warehouses.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_warehouse_add_records_item_id', 'warehouse_add_records', ['item_id'])
    op.create_index('ix_warehouse_add_records_receiving_warehouse_id', 'warehouse_add_records', ['receiving_warehouse_id'])

    # ============================================================================
    # employee_accesses
    # ============================================================================
    op.create_table(
        'employee_accesses',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('people_id', sa.Integer(), nullable=False),
        sa.Column('access_name', sa.String(length=200), nullable=False),
        sa.Column('category', sa.String(length=120), nullable=True),
        sa.Column('status', sa.String(length=16), nullable=False, server_default='active'),
        sa.Column('granted_by', sa.String(length=100), nullable=True),
        sa.Column('granted_date', sa.DateTime(timezone=True), nullable=False,
                  server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.Column('revoked_by', sa.String(length=100), nullable=True),
        sa.Column('revoked_date', sa.DateTime(timezone=True), nullable=True),
        sa.Column('notes', sa.Text(), nullable=True),
        sa.ForeignKeyConstraint(['people_id'], ['people.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_employee_accesses_people_id', 'employee_accesses', ['people_id'])
    op.create_index('ix_employee_accesses_person_status', 'employee_accesses', ['people_id', 'status'])

    # ============================================================================
    # demob_records
    # ============================================================================
    op.create_table(
        'demob_records',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('people_id', sa.Integer(), nullable=False),
        sa.Column('items_returned', sa.JSON(), nullable=False),
        sa.Column('accesses_revoked', sa.JSON(), nullable=False),
        sa.Column('outcomes', sa.JSON(), nullable=False),
        sa.Column('demob_performed_by', sa.String(length=100), nullable=False),
        sa.Column('demob_performed_by_email', sa.String(length=100), nullable=True),
        sa.Column('signed_document_url', sa.String(length=512), nullable=True),
        sa.Column('is_completed', sa.Boolean(), nullable=False, server_default='0'),
        *_timestamps(),
        sa.ForeignKeyConstraint(['people_id'], ['people.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_demob_records_people_id', 'demob_records', ['people_id'])

    # ============================================================================
    # offboarding_tasks
    # ============================================================================
    op.create_table(
        'offboarding_tasks',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('task_type', sa.String(length=32), nullable=False),
        sa.Column('title', sa.String(length=200), nullable=False),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('priority', sa.String(length=16), nullable=False, server_default='medium'),
        sa.Column('due_date', sa.DateTime(timezone=True), nullable=True),
        sa.Column('assigned_to', sa.String(length=100), nullable=True),
        sa.Column('people_id', sa.Integer(), nullable=False),
        sa.Column('item_id', sa.Integer(), nullable=True),
        sa.Column('access_id', sa.Integer(), nullable=True),
        sa.Column('status', sa.String(length=32), nullable=False, server_default='pending'),
        sa.Column('notes', sa.Text(), nullable=True),
        sa.Column('completed_date', sa.DateTime(timezone=True), nullable=True),
        sa.Column('version_id', sa.Integer(), nullable=False, server_default='1'),
        *_timestamps(),
        sa.ForeignKeyConstraint(['people_id'], ['people.id'], ),
        sa.ForeignKeyConstraint(['item_id'], ['items.id'], ),
        sa.ForeignKeyConstraint(['access_id'], ['employee_accesses.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_offboarding_tasks_people_id', 'offboarding_tasks', ['people_id'])
    op.create_index('ix_offboarding_tasks_item_id', 'offboarding_tasks', ['item_id'])
    op.create_index('ix_offboarding_tasks_access_id', 'offboarding_tasks', ['access_id'])
    op.create_index('ix_offboarding_tasks_person_status', 'offboarding_tasks', ['people_id', 'status'])

    # ============================================================================
    # audit_events
    # ============================================================================
    op.create_table(
        'audit_events',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('action', sa.String(length=32), nullable=False),
        sa.Column('entity_type', sa.String(length=32), nullable=False),
        sa.Column('entity_id', sa.String(length=64), nullable=True),
        sa.Column('entity_name', sa.String(length=200), nullable=True),
        sa.Column('performed_by', sa.String(length=100), nullable=False),
        sa.Column('performed_by_email', sa.String(length=100), nullable=True),
        sa.Column('details', sa.JSON(), nullable=True),
        sa.Column('ip_address', sa.String(length=45), nullable=True),
        sa.Column('user_agent', sa.String(length=255), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False,
                  server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_audit_events_action', 'audit_events', ['action'])
    op.create_index('ix_audit_events_entity', 'audit_events', ['entity_type', 'entity_id'])
    op.create_index('ix_audit_events_created', 'audit_events', ['created_at'])


def downgrade():
    op.drop_table('audit_events')
    op.drop_table('offboarding_tasks')
    op.drop_table('demob_records')
    op.drop_table('employee_accesses')
    op.drop_table('warehouse_add_records')
    op.drop_table('warehouse_transfer_records')
    op.drop_table('add_records')
    op.drop_table('transfer_records')
    op.drop_table('items')
    op.drop_table('people')
    op.drop_table('warehouses')
