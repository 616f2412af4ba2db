"""Create registrations, payments and registration_credentials tables.

Revision ID: add_payment_reconciliation
Revises:
Create Date: 2026-10-19
"""
from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

revision = 'add_payment_reconciliation'
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        'registrations',
        sa.Column('id', postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column('registration_code', sa.String(64), nullable=False, unique=True, index=True),
        sa.Column('first_name', sa.String(120), nullable=True),
        sa.Column('last_name', sa.String(120), nullable=True),
        sa.Column('email', sa.String(255), nullable=False),
        sa.Column('mobile', sa.String(40), nullable=True),
        sa.Column('conference_type', sa.String(60), nullable=True),
        sa.Column('fee_amount', sa.Numeric(10, 2), nullable=False),
        sa.Column('fee_currency', sa.String(3), nullable=False, server_default='USD'),
        sa.Column('payment_status', sa.String(20), nullable=False, server_default='UNPAID'),
        sa.Column('payment_provider', sa.String(20), nullable=True),
        sa.Column('payment_reference', sa.String(255), nullable=True),
        sa.Column('credential_id', postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
    )

    op.create_table(
        'payments',
        sa.Column('id', postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column('registration_id', postgresql.UUID(as_uuid=True),
                  sa.ForeignKey('registrations.id', ondelete='RESTRICT'),
                  nullable=False, index=True),
        sa.Column('provider', sa.String(20), nullable=False, server_default='ONEPAY'),
        sa.Column('reference', sa.String(21), nullable=False, unique=True),
        sa.Column('provider_transaction_id', sa.String(255), nullable=True, unique=True),
        sa.Column('currency', sa.String(3), nullable=False, server_default='USD'),
        sa.Column('amount', sa.Numeric(10, 2), nullable=False),
        sa.Column('status', sa.String(20), nullable=False, server_default='INITIATED', index=True),
        sa.Column('redirect_url', sa.Text(), nullable=True),
        sa.Column('attempts', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('last_error', sa.Text(), nullable=True),
        sa.Column('last_callback', sa.JSON(), nullable=True),
        sa.Column('finalized_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('paid_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('canceled_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
    )
    op.create_index('ix_payments_registration_created', 'payments', ['registration_id', 'created_at'])
    # One INITIATED/PENDING payment per registration
    op.create_index(
        'uq_payments_transient_registration',
        'payments',
        ['registration_id'],
        unique=True,
        postgresql_where=sa.text("status IN ('INITIATED', 'PENDING')"),
    )

    op.create_table(
        'registration_credentials',
        sa.Column('id', postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column('registration_id', postgresql.UUID(as_uuid=True),
                  sa.ForeignKey('registrations.id', ondelete='CASCADE'),
                  nullable=False, index=True),
        sa.Column('registration_code', sa.String(64), nullable=False, index=True),
        sa.Column('jti', sa.String(64), nullable=False, unique=True),
        sa.Column('token_hash', sa.String(64), nullable=False, unique=True),
        sa.Column('status', sa.String(20), nullable=False, server_default='ACTIVE'),
        sa.Column('issued_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('expires_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('check_in_status', sa.String(20), nullable=False, server_default='NOT_CHECKED_IN'),
        sa.Column('checked_in_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('checked_in_by', sa.String(120), nullable=True),
        sa.Column('email_sent_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
    )
    op.create_index(
        'uq_registration_credentials_active',
        'registration_credentials',
        ['registration_id'],
        unique=True,
        postgresql_where=sa.text("status = 'ACTIVE'"),
    )


def downgrade() -> None:
    op.drop_index('uq_registration_credentials_active', table_name='registration_credentials')
    op.drop_table('registration_credentials')
    op.drop_index('uq_payments_transient_registration', table_name='payments')
    op.drop_index('ix_payments_registration_created', table_name='payments')
    op.drop_table('payments')
    op.drop_table('registrations')
