"""add_trade_delete_audit

Revision ID: 8c2e5b1f7a93
Revises: 3f9a1c7d2b4e
Create Date: 2026-10-19 15:02:17.904115

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = '8c2e5b1f7a93'
down_revision: Union[str, Sequence[str], None] = '3f9a1c7d2b4e'
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    """Upgrade schema."""
    op.add_column('trades', sa.Column('deleted_by', sa.Integer(), nullable=True, comment='User ID who deleted the trade'))
    op.add_column('trades', sa.Column('deleted_by_admin', sa.Boolean(), nullable=False, server_default=sa.false(), comment='Deleted from the admin panel'))
    op.add_column('trades', sa.Column('deleted_reason', sa.Text(), nullable=True))
    op.create_index('idx_trades_deleted_at', 'trades', ['deleted_at'])


def downgrade() -> None:
    """Downgrade schema."""
    op.drop_index('idx_trades_deleted_at', table_name='trades')
    op.drop_column('trades', 'deleted_reason')
    op.drop_column('trades', 'deleted_by_admin')
    op.drop_column('trades', 'deleted_by')
