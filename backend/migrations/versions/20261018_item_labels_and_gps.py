"""Kitchen item labels and delivery GPS tracking

Revision ID: fr002_item_labels_and_gps
Revises: fr001_initial_schema
Create Date: 2026-10-18

- barcode_labels: one printable PF-... label per kitchen sheet item
- gps_logs: driver position fixes per delivery
"""
from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = 'fr002_item_labels_and_gps'
down_revision = 'fr001_initial_schema'
branch_labels = None
depends_on = None


def upgrade():
    op.create_table(
        'barcode_labels',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('kitchen_sheet_item_id', sa.Integer(), sa.ForeignKey('kitchen_sheet_items.id'), nullable=False),
        sa.Column('barcode', sa.String(length=160), nullable=False),
        sa.Column('qr_code', sa.String(length=160), nullable=False),
        sa.Column('label_type', sa.String(length=16), nullable=False, server_default='both'),
        sa.Column('printed', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('printed_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False,
                  server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('kitchen_sheet_item_id', name='uq_barcode_labels_item'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_barcode_labels_barcode', 'barcode_labels', ['barcode'])

    op.create_table(
        'gps_logs',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('delivery_id', sa.Integer(), sa.ForeignKey('deliveries.id'), nullable=False),
        sa.Column('driver_id', sa.String(length=64), nullable=False),
        sa.Column('latitude', sa.Float(), nullable=False),
        sa.Column('longitude', sa.Float(), nullable=False),
        sa.Column('accuracy_m', sa.Float(), nullable=True),
        sa.Column('speed_kmh', sa.Float(), nullable=True),
        sa.Column('heading_deg', sa.Float(), nullable=True),
        sa.Column('recorded_at', sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint('id'),
        sa.CheckConstraint('latitude >= -90 AND latitude <= 90', name='ck_gps_logs_latitude'),
        sa.CheckConstraint('longitude >= -180 AND longitude <= 180', name='ck_gps_logs_longitude'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_gps_logs_delivery_recorded', 'gps_logs', ['delivery_id', 'recorded_at'])


def downgrade():
    op.drop_index('ix_gps_logs_delivery_recorded', table_name='gps_logs')
    op.drop_table('gps_logs')
    op.drop_index('ix_barcode_labels_barcode', table_name='barcode_labels')
    op.drop_table('barcode_labels')
