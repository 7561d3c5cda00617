"""Add slow_query_count to performance_samples

Revision ID: 002
Revises: 001
Create Date: 2026-10-18 15:00:00.000000

"""

import sqlalchemy as sa
from alembic import op

# revision identifiers
revision = '002'
down_revision = '001'
branch_labels = None
depends_on = None


def upgrade():
  op.add_column(
    'performance_samples',
    sa.Column('slow_query_count', sa.Integer(), nullable=False, server_default='0'),
  )


def downgrade():
  with op.batch_alter_table('performance_samples') as batch_op:
    batch_op.drop_column('slow_query_count')
