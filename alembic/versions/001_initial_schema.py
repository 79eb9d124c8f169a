"""initial schema - create call_records

Revision ID: 001
Revises:
Create Date: 2026-10-19 12:00:00.000000

"""
from typing import Sequence, Union
from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = '001'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    # Create call_records table (status as VARCHAR, not enum)
    op.create_table(
        'call_records',
        sa.Column('call_sid', sa.String(64), primary_key=True),
        sa.Column('phone_number', sa.String(32), nullable=False),
        sa.Column('delivery_id', sa.String(255), nullable=True, index=True),
        sa.Column('order_details', sa.Text(), nullable=True),
        sa.Column('status', sa.String(20), nullable=False, server_default='initiated'),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('response_time', sa.DateTime(timezone=True), nullable=True),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
    )


def downgrade() -> None:
    op.drop_table('call_records')
