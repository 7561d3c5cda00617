"""Create performance_samples table

Revision ID: 001
Revises:
Create Date: 2026-10-18 12:00:00.000000

"""

import sqlalchemy as sa
from alembic import op

# revision identifiers
revision = '001'
down_revision = None
branch_labels = None
depends_on = None


def upgrade():
  op.create_table(
    'performance_samples',
    sa.Column('id', sa.Uuid(), nullable=False),
    sa.Column('endpoint', sa.String(length=500), nullable=False),
    sa.Column('method', sa.String(length=20), nullable=False),
    sa.Column('response_time_ms', sa.Float(), nullable=False),
    sa.Column('status_code', sa.Integer(), nullable=False),
    sa.Column('timestamp', sa.DateTime(timezone=True), nullable=False),
    sa.Column('user_id', sa.String(length=255), nullable=True),
    sa.Column('api_key_id', sa.String(length=255), nullable=True),
    sa.Column('memory_usage_bytes', sa.BigInteger(), nullable=False, server_default='0'),
    sa.Column('cpu_usage_seconds', sa.Float(), nullable=False, server_default='0'),
    sa.Column('database_query_count', sa.Integer(), nullable=False, server_default='0'),
    sa.Column('cache_hits', sa.Integer(), nullable=False, server_default='0'),
    sa.Column('cache_misses', sa.Integer(), nullable=False, server_default='0'),
    sa.PrimaryKeyConstraint('id'),
    sa.CheckConstraint('response_time_ms >= 0', name='ck_performance_samples_response_time'),
    sa.CheckConstraint(
      'status_code >= 100 AND status_code <= 599', name='ck_performance_samples_status_code'
    ),
  )

  op.create_index('ix_performance_samples_timestamp', 'performance_samples', ['timestamp'])
  op.create_index('ix_performance_samples_endpoint', 'performance_samples', ['endpoint'])
  op.create_index('ix_performance_samples_user_id', 'performance_samples', ['user_id'])


def downgrade():
  op.drop_index('ix_performance_samples_user_id', table_name='performance_samples')
  op.drop_index('ix_performance_samples_endpoint', table_name='performance_samples')
  op.drop_index('ix_performance_samples_timestamp', table_name='performance_samples')
  op.drop_table('performance_samples')
