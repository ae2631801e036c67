"""initial purchase request tables

Revision ID: 0001_initial
Revises: 
Create Date: 2026-10-18
"""
from __future__ import annotations
from alembic import op
import sqlalchemy as sa

revision = '0001_initial'
down_revision = None
branch_labels = None
depends_on = None


def upgrade():
    op.create_table('accounts',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('name', sa.String(length=128), nullable=False),
        sa.Column('email', sa.String(length=128), nullable=False),
        sa.Column('department', sa.String(length=128), nullable=False, server_default=''),
        sa.Column('role', sa.String(length=16), nullable=False, server_default='user'),
        sa.Column('password_hash', sa.String(length=255), nullable=False),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default=sa.text('1')),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.text('CURRENT_TIMESTAMP')),
    )
    op.create_index('ix_accounts_email', 'accounts', ['email'], unique=True)
    op.create_index('ix_accounts_role', 'accounts', ['role'])

    op.create_table('purchase_requests',
        sa.Column('id', sa.String(length=32), primary_key=True),
        sa.Column('request_number', sa.String(length=16), nullable=False),
        sa.Column('title', sa.String(length=255), nullable=False),
        sa.Column('description', sa.Text(), nullable=False, server_default=''),
        sa.Column('department', sa.String(length=128), nullable=False, server_default=''),
        sa.Column('requester_name', sa.String(length=128), nullable=False, server_default=''),
        # no foreign key: accounts may change or disappear without touching requests
        sa.Column('created_by', sa.Integer(), nullable=True),
        sa.Column('total_amount', sa.Numeric(14, 2), nullable=False, server_default='0'),
        sa.Column('status', sa.String(length=16), nullable=False, server_default='pending'),
        sa.Column('quotation_name', sa.String(length=255)),
        sa.Column('quotation_url', sa.String(length=1024)),
        sa.Column('signed_quotation_name', sa.String(length=255)),
        sa.Column('signed_quotation_url', sa.String(length=1024)),
        sa.Column('tax_invoice_name', sa.String(length=255)),
        sa.Column('tax_invoice_url', sa.String(length=1024)),
        sa.Column('rejection_reason', sa.Text()),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('approved_at', sa.DateTime(timezone=True)),
        sa.Column('ordered_at', sa.DateTime(timezone=True)),
        sa.Column('completed_at', sa.DateTime(timezone=True)),
        sa.Column('cancelled_at', sa.DateTime(timezone=True)),
        sa.UniqueConstraint('request_number', name='uq_purchase_requests_number'),
    )
    for col in ['request_number', 'department', 'created_by', 'status', 'created_at', 'updated_at']:
        op.create_index(f'ix_purchase_requests_{col}', 'purchase_requests', [col])

    op.create_table('request_items',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('request_id', sa.String(length=32), sa.ForeignKey('purchase_requests.id', ondelete='CASCADE'), nullable=False),
        sa.Column('position', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('name', sa.String(length=255), nullable=False),
        sa.Column('quantity', sa.Integer(), nullable=False),
        sa.Column('unit', sa.String(length=32), nullable=False, server_default=''),
        sa.Column('estimated_price', sa.Numeric(14, 2), nullable=False),
    )
    op.create_index('ix_request_items_request_id', 'request_items', ['request_id'])

    op.create_table('audit_logs',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('actor_account_id', sa.Integer(), nullable=False),
        sa.Column('action', sa.String(length=64), nullable=False),
        sa.Column('entity', sa.String(length=64), nullable=True),
        sa.Column('entity_id', sa.String(length=64), nullable=True),
        sa.Column('perms_snapshot', sa.JSON(), nullable=True),
        sa.Column('meta', sa.JSON(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_index('ix_audit_logs_actor_account_id', 'audit_logs', ['actor_account_id'])
    op.create_index('ix_audit_logs_action', 'audit_logs', ['action'])


def downgrade():
    for tbl in ['audit_logs', 'request_items', 'purchase_requests', 'accounts']:
        op.drop_table(tbl)
