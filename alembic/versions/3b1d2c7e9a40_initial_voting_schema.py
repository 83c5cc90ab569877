"""initial voting schema

Revision ID: 3b1d2c7e9a40
Revises:
Create Date: 2026-10-18 10:02:11.418203

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = '3b1d2c7e9a40'
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

# Enum columns store member names
user_role = sa.Enum('VOTER', 'STUDENT', 'ADMIN', name='userrole')
nominee_status = sa.Enum('PENDING', 'APPROVED', 'REJECTED', name='nomineestatus')
payment_status = sa.Enum('INITIALIZED', 'PENDING', 'SUCCESS', 'FAILED', 'EXPIRED', name='paymentstatus')
reconciliation_kind = sa.Enum(
    'COMMIT_REJECTED', 'DUPLICATE_PAYMENT', 'LATE_PAYMENT', 'AMOUNT_MISMATCH', name='reconciliationkind'
)
reconciliation_status = sa.Enum('OPEN', 'RESOLVED', name='reconciliationstatus')


def upgrade() -> None:
    op.create_table(
        'users',
        sa.Column('id', sa.String(), primary_key=True),
        sa.Column('email', sa.String(), nullable=False),
        sa.Column('username', sa.String(), nullable=False),
        sa.Column('phone', sa.String(), nullable=True),
        sa.Column('role', user_role, nullable=False),
        sa.Column('is_active', sa.Boolean(), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_index('ix_users_email', 'users', ['email'], unique=True)

    op.create_table(
        'categories',
        sa.Column('id', sa.String(), primary_key=True),
        sa.Column('name', sa.String(), nullable=False, unique=True),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('is_active', sa.Boolean(), nullable=False),
        sa.Column('display_order', sa.Integer(), nullable=False),
        sa.Column('voting_active', sa.Boolean(), nullable=False),
        sa.Column('voting_start_date', sa.DateTime(timezone=True), nullable=True),
        sa.Column('voting_end_date', sa.DateTime(timezone=True), nullable=True),
        sa.Column('vote_price', sa.Numeric(12, 2), nullable=False),
        sa.Column('max_nominees', sa.Integer(), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.func.now()),
    )

    op.create_table(
        'nominees',
        sa.Column('id', sa.String(), primary_key=True),
        sa.Column('category_id', sa.String(), sa.ForeignKey('categories.id', ondelete='CASCADE'), nullable=False),
        sa.Column('student_id', sa.String(), sa.ForeignKey('users.id', ondelete='SET NULL'), nullable=True),
        sa.Column('display_name', sa.String(), nullable=True),
        sa.Column('nominated_by', sa.String(), sa.ForeignKey('users.id', ondelete='SET NULL'), nullable=True),
        sa.Column('nomination_reason', sa.Text(), nullable=True),
        sa.Column('achievements', sa.JSON(), nullable=False),
        sa.Column('image_url', sa.String(), nullable=True),
        sa.Column('display_order', sa.Integer(), nullable=False),
        sa.Column('status', nominee_status, nullable=False),
        sa.Column('review_notes', sa.Text(), nullable=True),
        sa.Column('reviewed_by', sa.String(), sa.ForeignKey('users.id', ondelete='SET NULL'), nullable=True),
        sa.Column('reviewed_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.UniqueConstraint('student_id', 'category_id', name='uq_nominees_student_category'),
    )
    op.create_index('ix_nominees_category_id', 'nominees', ['category_id'])

    op.create_table(
        'payment_transactions',
        sa.Column('id', sa.String(), primary_key=True),
        sa.Column('reference', sa.String(), nullable=False, unique=True),
        sa.Column('user_id', sa.String(), sa.ForeignKey('users.id', ondelete='RESTRICT'), nullable=False),
        sa.Column('category_id', sa.String(), sa.ForeignKey('categories.id', ondelete='RESTRICT'), nullable=False),
        sa.Column('nominee_id', sa.String(), sa.ForeignKey('nominees.id', ondelete='RESTRICT'), nullable=False),
        sa.Column('amount', sa.Numeric(12, 2), nullable=False),
        sa.Column('currency', sa.String(3), nullable=False),
        sa.Column('amount_paid', sa.Numeric(12, 2), nullable=True),
        sa.Column('status', payment_status, nullable=False),
        sa.Column('authorization_url', sa.String(), nullable=True),
        sa.Column('access_code', sa.String(), nullable=True),
        sa.Column('channel', sa.String(), nullable=True),
        sa.Column('gateway_response', sa.JSON(), nullable=True),
        sa.Column('failure_reason', sa.Text(), nullable=True),
        sa.Column('paid_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('expires_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_index('ix_payment_transactions_user_id', 'payment_transactions', ['user_id'])
    op.create_index('ix_payment_transactions_status', 'payment_transactions', ['status'])

    op.create_table(
        'payment_events',
        sa.Column('id', sa.String(), primary_key=True),
        sa.Column('transaction_id', sa.String(), sa.ForeignKey('payment_transactions.id', ondelete='CASCADE'), nullable=False),
        sa.Column('from_status', payment_status, nullable=True),
        sa.Column('to_status', payment_status, nullable=False),
        sa.Column('source', sa.String(), nullable=False),
        sa.Column('detail', sa.Text(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_index('ix_payment_events_transaction_id', 'payment_events', ['transaction_id'])

    op.create_table(
        'vote_records',
        sa.Column('id', sa.String(), primary_key=True),
        sa.Column('user_id', sa.String(), sa.ForeignKey('users.id', ondelete='RESTRICT'), nullable=False),
        sa.Column('category_id', sa.String(), sa.ForeignKey('categories.id', ondelete='RESTRICT'), nullable=False),
        sa.Column('nominee_id', sa.String(), sa.ForeignKey('nominees.id', ondelete='RESTRICT'), nullable=False),
        sa.Column('transaction_id', sa.String(), sa.ForeignKey('payment_transactions.id', ondelete='RESTRICT'), nullable=False, unique=True),
        sa.Column('amount', sa.Numeric(12, 2), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.UniqueConstraint('user_id', 'category_id', name='uq_vote_records_user_category'),
    )
    op.create_index('ix_vote_records_nominee_id', 'vote_records', ['nominee_id'])

    op.create_table(
        'reconciliation_cases',
        sa.Column('id', sa.String(), primary_key=True),
        sa.Column('transaction_id', sa.String(), sa.ForeignKey('payment_transactions.id', ondelete='RESTRICT'), nullable=False),
        sa.Column('user_id', sa.String(), sa.ForeignKey('users.id', ondelete='RESTRICT'), nullable=False),
        sa.Column('kind', reconciliation_kind, nullable=False),
        sa.Column('detail', sa.JSON(), nullable=True),
        sa.Column('status', reconciliation_status, nullable=False),
        sa.Column('resolution_note', sa.Text(), nullable=True),
        sa.Column('resolved_by', sa.String(), sa.ForeignKey('users.id', ondelete='SET NULL'), nullable=True),
        sa.Column('resolved_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_index('ix_reconciliation_cases_transaction_id', 'reconciliation_cases', ['transaction_id'])
    op.create_index('ix_reconciliation_cases_status', 'reconciliation_cases', ['status'])


def downgrade() -> None:
    # reverse order
    op.drop_table('reconciliation_cases')
    op.drop_table('vote_records')
    op.drop_table('payment_events')
    op.drop_table('payment_transactions')
    op.drop_table('nominees')
    op.drop_table('categories')
    op.drop_index('ix_users_email', table_name='users')
    op.drop_table('users')
    for enum_type in (reconciliation_status, reconciliation_kind, payment_status, nominee_status, user_role):
        enum_type.drop(op.get_bind(), checkfirst=True)
