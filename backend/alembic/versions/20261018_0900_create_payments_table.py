"""Create payments table

Revision ID: 20261018_0900
Revises:
Create Date: 2026-10-18 09:00:00.000000

"""
from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql


# revision identifiers, used by Alembic.
revision = '20261018_0900'
down_revision = None
branch_labels = None
depends_on = None


payment_status = sa.Enum('initiated', 'approved', 'captured', 'failed', name='payment_status')


def upgrade() -> None:
    """Create payments table with lookup indexes."""
    op.create_table(
        'payments',
        sa.Column('id', sa.String(length=64), primary_key=True),
        sa.Column('order_id', sa.String(length=64), nullable=False),
        sa.Column('user_id', sa.String(length=64), nullable=False),
        sa.Column('amount', sa.Numeric(), nullable=False),  # unconstrained: keeps the amount as received
        sa.Column('currency', sa.String(length=3), nullable=False, server_default='USD'),
        sa.Column('status', payment_status, nullable=False, server_default='initiated'),
        sa.Column('paypal_order_id', sa.String(length=64), nullable=True),
        sa.Column('paypal_capture_id', sa.String(length=64), nullable=True),
        sa.Column('encrypted_response', sa.Text(), nullable=True),
        sa.Column('payer_email_hash', sa.String(length=64), nullable=True),
        sa.Column('payer_id_hash', sa.String(length=64), nullable=True),
        sa.Column('transaction_metadata', postgresql.JSONB(astext_type=sa.Text()), nullable=True),
        sa.Column('error_code', sa.String(length=64), nullable=True),
        sa.Column('error_message', sa.Text(), nullable=True),
        sa.Column('created_at', sa.BigInteger(), nullable=False),
        sa.Column('updated_at', sa.BigInteger(), nullable=False),
        sa.Column('completed_at', sa.BigInteger(), nullable=True),
        comment='Contains payment data - payer PII stored only as hashes',
    )

    op.create_index('ix_payments_order_id', 'payments', ['order_id'])
    op.create_index('ix_payments_user_id', 'payments', ['user_id'])
    op.create_index('ix_payments_status', 'payments', ['status'])
    op.create_index('ix_payments_created_at', 'payments', ['created_at'])
    op.create_index('ix_payments_paypal_order_id', 'payments', ['paypal_order_id'], unique=True)

    # Most recent payment per order
    op.create_index('ix_payments_order_created', 'payments', ['order_id', 'created_at'])


def downgrade() -> None:
    """Drop payments table."""
    op.drop_index('ix_payments_order_created', table_name='payments')
    op.drop_index('ix_payments_paypal_order_id', table_name='payments')
    op.drop_index('ix_payments_created_at', table_name='payments')
    op.drop_index('ix_payments_status', table_name='payments')
    op.drop_index('ix_payments_user_id', table_name='payments')
    op.drop_index('ix_payments_order_id', table_name='payments')
    op.drop_table('payments')
    payment_status.drop(op.get_bind(), checkfirst=True)
