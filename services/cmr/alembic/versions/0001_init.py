from alembic import op
import sqlalchemy as sa

revision = '0001_init'
down_revision = None
branch_labels = None
depends_on = None

MILESTONES = ('pickup', 'transit_arrival', 'actual_arrival', 'unloading_complete', 'confirmed')

def upgrade():
    milestone_columns = []
    for name in MILESTONES:
        milestone_columns.append(sa.Column(f'{name}_at', sa.DateTime(timezone=True), nullable=True))
        milestone_columns.append(sa.Column(f'{name}_note', sa.Text, nullable=True))

    op.create_table(
        'cmr_records',
        sa.Column('id', sa.String(64), primary_key=True),
        sa.Column('bill_number', sa.String(64), nullable=True),
        sa.Column('container_number', sa.String(32), nullable=True),
        sa.Column('delivery_status', sa.String(20), nullable=False),
        sa.Column('current_step', sa.Integer, nullable=False, server_default='0'),
        sa.Column('service_provider', sa.String(200), nullable=True),
        sa.Column('delivery_address', sa.String(500), nullable=True),
        sa.Column('remark', sa.Text, nullable=True),
        *milestone_columns,
        sa.Column('exception_status', sa.String(20), nullable=True),
        sa.Column('exception_note', sa.Text, nullable=True),
        sa.Column('exception_reported_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('completed', sa.Boolean, nullable=False, server_default=sa.false()),
        sa.Column('completed_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('version', sa.Integer, nullable=False, server_default='1'),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.func.now())
    )
    op.create_index('ix_cmr_records_bill_number', 'cmr_records', ['bill_number'])
    op.create_index('ix_cmr_records_container_number', 'cmr_records', ['container_number'])
    op.create_index('ix_cmr_records_delivery_status', 'cmr_records', ['delivery_status'])

    op.create_table(
        'cmr_exception_records',
        sa.Column('id', sa.Integer, primary_key=True),
        sa.Column('shipment_id', sa.String(64), sa.ForeignKey('cmr_records.id'), nullable=False),
        sa.Column('seq', sa.Integer, nullable=False),
        sa.Column('action', sa.String(20), nullable=False),
        sa.Column('note', sa.Text, nullable=True),
        sa.Column('actor', sa.String(100), nullable=False),
        sa.Column('step', sa.Integer, nullable=False, server_default='0'),
        sa.Column('recorded_at', sa.DateTime(timezone=True), nullable=False),
        # audit rows are append-only; one row per trail position
        sa.UniqueConstraint('shipment_id', 'seq', name='uq_cmr_exception_records_seq')
    )
    op.create_index('ix_cmr_exception_records_shipment_id', 'cmr_exception_records', ['shipment_id'])

def downgrade():
    op.drop_index('ix_cmr_exception_records_shipment_id', table_name='cmr_exception_records')
    op.drop_table('cmr_exception_records')
    op.drop_index('ix_cmr_records_delivery_status', table_name='cmr_records')
    op.drop_index('ix_cmr_records_container_number', table_name='cmr_records')
    op.drop_index('ix_cmr_records_bill_number', table_name='cmr_records')
    op.drop_table('cmr_records')
