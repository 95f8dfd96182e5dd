from alembic import op
import sqlalchemy as sa

revision = '0002_add_delivery_log'
down_revision = '0001_init'
branch_labels = None
depends_on = None

def upgrade():
    op.create_table(
        'delivery_log',
        sa.Column('id', sa.Integer, primary_key=True),
        sa.Column('shipment_id', sa.String(64), nullable=False),
        sa.Column('operation', sa.String(40), nullable=False),
        sa.Column('from_status', sa.String(20), nullable=False),
        sa.Column('to_status', sa.String(20), nullable=False),
        sa.Column('actor', sa.String(100), nullable=False),
        sa.Column('remark', sa.Text, nullable=True),
        sa.Column('occurred_at', sa.DateTime(timezone=True), nullable=False)
    )
    op.create_index('ix_delivery_log_shipment_id', 'delivery_log', ['shipment_id'])

def downgrade():
    op.drop_index('ix_delivery_log_shipment_id', table_name='delivery_log')
    op.drop_table('delivery_log')
