"""add_mtm_tables

Revision ID: 3f9a1c7d2b4e
Revises:
Create Date: 2026-10-19 09:12:44.518302

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = '3f9a1c7d2b4e'
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    """Upgrade schema."""
    op.create_table(
        'mtm_models',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('title', sa.String(length=255), nullable=False, comment='Model title'),
        sa.Column('description', sa.Text(), nullable=True, comment='Model description'),
        sa.Column('tier', sa.String(length=20), nullable=False, comment='Tier (basic/intermediate/advanced)'),
        sa.Column('difficulty', sa.String(length=20), nullable=False, comment='Difficulty, used for enforcement tier lookup'),
        sa.Column('is_active', sa.Boolean(), nullable=False, comment='Is model open for enrollment'),
        sa.Column('start_date', sa.Date(), nullable=True, comment='Enrollment approvals allowed from this date'),
        sa.Column('end_date', sa.Date(), nullable=True, comment='Enrollment approvals allowed until this date'),
        sa.Column('created_by', sa.Integer(), nullable=True, comment='Admin user ID who created the model'),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint('id')
    )

    op.create_table(
        'mtm_tasks',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('model_id', sa.Integer(), nullable=False, comment='Owning model ID'),
        sa.Column('tier', sa.String(length=20), nullable=False),
        sa.Column('name', sa.String(length=255), nullable=False, comment='Task name'),
        sa.Column('sort_order', sa.Integer(), nullable=False, comment='Position in the model sequence'),
        sa.Column('is_active', sa.Boolean(), nullable=False),
        sa.Column('min_trades', sa.Integer(), nullable=True),
        sa.Column('time_window_days', sa.Integer(), nullable=True),
        sa.Column('require_sl', sa.Boolean(), nullable=True),
        sa.Column('max_risk_pct', sa.Float(), nullable=True, comment='Max risk per trade, % of entry (NULL = no limit)'),
        sa.Column('max_position_pct', sa.Float(), nullable=True, comment='Max position size, % of capital (NULL = no limit)'),
        sa.Column('min_rr', sa.Float(), nullable=True, comment='Min risk/reward ratio (NULL = no limit)'),
        sa.Column('require_analysis_link', sa.Boolean(), nullable=True),
        sa.Column('weekly_min_trades', sa.Integer(), nullable=True),
        sa.Column('weeks_consistency', sa.Integer(), nullable=True),
        sa.Column('rule_json', sa.Text(), nullable=True, comment='JSON object overriding/adding rules'),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(['model_id'], ['mtm_models.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index(op.f('ix_mtm_tasks_model_id'), 'mtm_tasks', ['model_id'], unique=False)
    op.create_index('idx_mtm_tasks_model_sort', 'mtm_tasks', ['model_id', 'sort_order'], unique=False)

    op.create_table(
        'mtm_enrollments',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('user_id', sa.Integer(), nullable=False, comment='Trader user ID'),
        sa.Column('model_id', sa.Integer(), nullable=False),
        sa.Column('tier', sa.String(length=20), nullable=False),
        sa.Column('status', sa.String(length=20), nullable=False, comment='Enrollment status (EnrollmentStatus enum)'),
        sa.Column('requested_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('approved_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('approved_by', sa.Integer(), nullable=True, comment='Admin user ID (NULL for self-service)'),
        sa.Column('rejected_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('rejection_reason', sa.Text(), nullable=True),
        sa.Column('dropped_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('completed_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('admin_notes', sa.Text(), nullable=True),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(['model_id'], ['mtm_models.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('user_id', 'model_id', name='uq_enrollment_user_model')
    )
    op.create_index(op.f('ix_mtm_enrollments_user_id'), 'mtm_enrollments', ['user_id'], unique=False)
    op.create_index(op.f('ix_mtm_enrollments_model_id'), 'mtm_enrollments', ['model_id'], unique=False)
    op.create_index(op.f('ix_mtm_enrollments_status'), 'mtm_enrollments', ['status'], unique=False)

    op.create_table(
        'mtm_task_progress',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('enrollment_id', sa.Integer(), nullable=False),
        sa.Column('task_id', sa.Integer(), nullable=False),
        sa.Column('status', sa.String(length=20), nullable=False, comment='Progress status (TaskProgressStatus enum)'),
        sa.Column('unlocked_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('passed_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('last_evaluated_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('attempts', sa.Integer(), nullable=False, comment='Trades recorded against this task'),
        sa.ForeignKeyConstraint(['enrollment_id'], ['mtm_enrollments.id'], ondelete='CASCADE'),
        sa.ForeignKeyConstraint(['task_id'], ['mtm_tasks.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('enrollment_id', 'task_id', name='uq_progress_enrollment_task')
    )
    op.create_index(op.f('ix_mtm_task_progress_enrollment_id'), 'mtm_task_progress', ['enrollment_id'], unique=False)
    op.create_index(op.f('ix_mtm_task_progress_task_id'), 'mtm_task_progress', ['task_id'], unique=False)

    op.create_table(
        'trades',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('user_id', sa.Integer(), nullable=False),
        sa.Column('enrollment_id', sa.Integer(), nullable=True),
        sa.Column('task_id', sa.Integer(), nullable=True),
        sa.Column('symbol', sa.String(length=32), nullable=False),
        sa.Column('side', sa.String(length=4), nullable=False, comment='buy/sell'),
        sa.Column('entry_price', sa.Float(), nullable=False),
        sa.Column('stop_loss', sa.Float(), nullable=True),
        sa.Column('target_price', sa.Float(), nullable=True),
        sa.Column('position_percent', sa.Float(), nullable=True, comment='Position size, % of capital'),
        sa.Column('outcome', sa.String(length=32), nullable=False, comment='OPEN or a terminal code'),
        sa.Column('analysis_link', sa.String(length=512), nullable=True),
        sa.Column('notes', sa.Text(), nullable=True),
        sa.Column('marketcap', sa.String(length=20), nullable=True, comment='Market-cap classification (large/mid/small)'),
        sa.Column('compliance_status', sa.String(length=10), nullable=False),
        sa.Column('compliance_notes', sa.Text(), nullable=True, comment='JSON: violations and warnings at last evaluation'),
        sa.Column('override_reason', sa.Text(), nullable=True),
        sa.Column('overridden_by', sa.Integer(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('closed_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('deleted_at', sa.DateTime(timezone=True), nullable=True, comment='Soft delete marker'),
        sa.ForeignKeyConstraint(['enrollment_id'], ['mtm_enrollments.id'], ondelete='SET NULL'),
        sa.ForeignKeyConstraint(['task_id'], ['mtm_tasks.id'], ondelete='SET NULL'),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index(op.f('ix_trades_user_id'), 'trades', ['user_id'], unique=False)
    op.create_index(op.f('ix_trades_enrollment_id'), 'trades', ['enrollment_id'], unique=False)
    op.create_index(op.f('ix_trades_task_id'), 'trades', ['task_id'], unique=False)
    op.create_index(op.f('ix_trades_compliance_status'), 'trades', ['compliance_status'], unique=False)
    op.create_index('idx_trades_enrollment_task', 'trades', ['enrollment_id', 'task_id'], unique=False)
    op.create_index('idx_trades_user_symbol', 'trades', ['user_id', 'symbol'], unique=False)


def downgrade() -> None:
    """Downgrade schema."""
    op.drop_index('idx_trades_user_symbol', table_name='trades')
    op.drop_index('idx_trades_enrollment_task', table_name='trades')
    op.drop_index(op.f('ix_trades_compliance_status'), table_name='trades')
    op.drop_index(op.f('ix_trades_task_id'), table_name='trades')
    op.drop_index(op.f('ix_trades_enrollment_id'), table_name='trades')
    op.drop_index(op.f('ix_trades_user_id'), table_name='trades')
    op.drop_table('trades')

    op.drop_index(op.f('ix_mtm_task_progress_task_id'), table_name='mtm_task_progress')
    op.drop_index(op.f('ix_mtm_task_progress_enrollment_id'), table_name='mtm_task_progress')
    op.drop_table('mtm_task_progress')

    op.drop_index(op.f('ix_mtm_enrollments_status'), table_name='mtm_enrollments')
    op.drop_index(op.f('ix_mtm_enrollments_model_id'), table_name='mtm_enrollments')
    op.drop_index(op.f('ix_mtm_enrollments_user_id'), table_name='mtm_enrollments')
    op.drop_table('mtm_enrollments')

    op.drop_index('idx_mtm_tasks_model_sort', table_name='mtm_tasks')
    op.drop_index(op.f('ix_mtm_tasks_model_id'), table_name='mtm_tasks')
    op.drop_table('mtm_tasks')

    op.drop_table('mtm_models')
