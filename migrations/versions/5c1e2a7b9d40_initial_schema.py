"""initial schema: usage ledgers, history records and shots

Revision ID: 5c1e2a7b9d40
Revises:
Create Date: 2026-10-17 10:00:00.000000

"""
from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = '5c1e2a7b9d40'
down_revision = None
branch_labels = None
depends_on = None


def upgrade():
    op.create_table(
        'usage_ledgers',
        sa.Column('account_id', sa.String(length=128), nullable=False),
        sa.Column('remaining_credits', sa.Integer(), nullable=False),
        sa.Column('total_generated', sa.Integer(), nullable=False),
        sa.Column('total_shares', sa.Integer(), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=True),
        sa.CheckConstraint('remaining_credits >= 0', name='ck_credits_non_negative'),
        sa.PrimaryKeyConstraint('account_id'),
    )
    op.create_table(
        'history_records',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('account_id', sa.String(length=128), nullable=False),
        sa.Column('request', sa.JSON(), nullable=False),
        sa.Column('prompt', sa.Text(), nullable=True),
        sa.Column('status', sa.String(length=20), nullable=False),
        sa.Column('error_type', sa.String(length=20), nullable=True),
        sa.Column('error_message', sa.Text(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_history_records_account_id', 'history_records', ['account_id'])
    op.create_index('ix_history_records_status', 'history_records', ['status'])
    op.create_index('ix_history_records_created_at', 'history_records', ['created_at'])
    op.create_table(
        'shot_records',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('history_id', sa.Integer(), nullable=False),
        sa.Column('shot_kind', sa.String(length=20), nullable=False),
        sa.Column('label', sa.String(length=100), nullable=False),
        sa.Column('position', sa.Integer(), nullable=False),
        sa.Column('mime_type', sa.String(length=50), nullable=False),
        sa.Column('storage_key', sa.String(length=512), nullable=False),
        sa.Column('image_data', sa.LargeBinary(), nullable=True),
        sa.Column('video_status', sa.String(length=20), nullable=True),
        sa.Column('video_storage_key', sa.String(length=512), nullable=True),
        sa.Column('video_data', sa.LargeBinary(), nullable=True),
        sa.Column('video_error', sa.Text(), nullable=True),
        sa.ForeignKeyConstraint(['history_id'], ['history_records.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('history_id', 'shot_kind', name='uq_shot_kind'),
    )
    op.create_index('ix_shot_records_history_id', 'shot_records', ['history_id'])


def downgrade():
    op.drop_index('ix_shot_records_history_id', table_name='shot_records')
    op.drop_table('shot_records')
    op.drop_index('ix_history_records_created_at', table_name='history_records')
    op.drop_index('ix_history_records_status', table_name='history_records')
    op.drop_index('ix_history_records_account_id', table_name='history_records')
    op.drop_table('history_records')
    op.drop_table('usage_ledgers')
