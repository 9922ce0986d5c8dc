"""earnings ledger, withdrawals and one open cart per client

Revision ID: 0002_earnings_and_withdrawals
Revises: 0001_init
"""
from alembic import op
import sqlalchemy as sa

revision = '0002_earnings_and_withdrawals'
down_revision = '0001_init'
branch_labels = None
depends_on = None

def upgrade():
    op.create_table(
        'provider_earnings',
        sa.Column('id', sa.Integer, primary_key=True),
        sa.Column('provider_id', sa.Integer, sa.ForeignKey('providers.id'), nullable=False, index=True),
        sa.Column('service_request_id', sa.Integer, sa.ForeignKey('service_requests.id'), nullable=True, unique=True),
        sa.Column('order_id', sa.Integer, sa.ForeignKey('orders.id'), nullable=True, unique=True),
        sa.Column('total_amount', sa.Numeric(10, 2), nullable=False),
        sa.Column('commission_rate', sa.Numeric(5, 2), nullable=False),
        sa.Column('commission_amount', sa.Numeric(10, 2), nullable=False),
        sa.Column('provider_amount', sa.Numeric(10, 2), nullable=False),
        sa.Column('is_withdrawn', sa.Boolean, nullable=False, server_default=sa.false(), index=True),
        sa.Column('withdrawn_at', sa.DateTime, nullable=True),
        sa.Column('created_at', sa.DateTime, nullable=False, server_default=sa.func.now()),
        sa.CheckConstraint(
            '(service_request_id IS NULL) <> (order_id IS NULL)',
            name='ck_provider_earnings_single_source'
        )
    )
    op.create_table(
        'withdrawal_requests',
        sa.Column('id', sa.Integer, primary_key=True),
        sa.Column('provider_id', sa.Integer, sa.ForeignKey('providers.id'), nullable=False, index=True),
        sa.Column('amount', sa.Numeric(10, 2), nullable=False),
        sa.Column('payment_method', sa.String(50), nullable=True),
        sa.Column('bank_name', sa.String(255), nullable=True),
        sa.Column('account_number', sa.String(50), nullable=True),
        sa.Column('account_holder_name', sa.String(255), nullable=True),
        sa.Column('cpf_cnpj', sa.String(20), nullable=True),
        sa.Column('pix_key', sa.String(255), nullable=True),
        sa.Column('status', sa.String(20), nullable=False, server_default='pending', index=True),
        sa.Column('request_notes', sa.Text, nullable=True),
        sa.Column('admin_notes', sa.Text, nullable=True),
        sa.Column('processed_by', sa.Integer, sa.ForeignKey('users.id'), nullable=True),
        sa.Column('processed_at', sa.DateTime, nullable=True),
        sa.Column('created_at', sa.DateTime, nullable=False, server_default=sa.func.now()),
        sa.Column('updated_at', sa.DateTime, nullable=False, server_default=sa.func.now())
    )
    # At most one open cart per client
    op.create_index(
        'uq_orders_open_cart',
        'orders',
        ['client_id'],
        unique=True,
        postgresql_where=sa.text("status = 'cart'"),
        sqlite_where=sa.text("status = 'cart'")
    )
    op.execute(
        "INSERT INTO system_settings (key, value, description) "
        "VALUES ('commission_rate', '4', 'Platform commission on completed bookings, in percent')"
    )

def downgrade():
    op.execute("DELETE FROM system_settings WHERE key = 'commission_rate'")
    op.drop_index('uq_orders_open_cart', table_name='orders')
    op.drop_table('withdrawal_requests')
    op.drop_table('provider_earnings')
