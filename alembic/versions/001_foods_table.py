"""Create foods table

Revision ID: 001_foods_table
Revises:
Create Date: 2026-10-18

Food records with their ingredients (JSON), zoning status and the recovery
bookkeeping columns: retry_count, last_retry_at, next_eligible_at and the
denormalized has_unzoned flag the recovery scan filters on.
"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = '001_foods_table'
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.create_table(
        'foods',
        sa.Column('id', sa.String(), primary_key=True),
        sa.Column('identifier', sa.String(), nullable=True),
        sa.Column('name', sa.String(), nullable=True),
        sa.Column('meal_summary', sa.String(), nullable=True),
        sa.Column('ingredients', sa.JSON(), nullable=True),
        sa.Column('status', sa.String(), nullable=False, server_default='analyzing'),
        sa.Column('has_unzoned', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('retry_count', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('last_retry_at', sa.DateTime(), nullable=True),
        sa.Column('next_eligible_at', sa.DateTime(), nullable=True),
        sa.Column('last_error', sa.String(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False, server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.Column('updated_at', sa.DateTime(), nullable=False, server_default=sa.text('CURRENT_TIMESTAMP')),
    )
    op.create_index('ix_foods_identifier', 'foods', ['identifier'])
    op.create_index('ix_foods_status', 'foods', ['status'])
    op.create_index('ix_foods_has_unzoned', 'foods', ['has_unzoned'])
    op.create_index('ix_foods_next_eligible_at', 'foods', ['next_eligible_at'])
    op.create_index('ix_foods_created_at', 'foods', ['created_at'])


def downgrade() -> None:
    op.drop_index('ix_foods_created_at', table_name='foods')
    op.drop_index('ix_foods_next_eligible_at', table_name='foods')
    op.drop_index('ix_foods_has_unzoned', table_name='foods')
    op.drop_index('ix_foods_status', table_name='foods')
    op.drop_index('ix_foods_identifier', table_name='foods')
    op.drop_table('foods')
