"""add habit reminder tables

Revision ID: 001_add_habit_reminder_tables
Revises:
Create Date: 2025-10-02
"""

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = '001_add_habit_reminder_tables'
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        'habit_schedules',
        sa.Column('id', sa.String(36), primary_key=True),
        sa.Column('owner_id', sa.String(), nullable=False),
        sa.Column('recipient_id', sa.String(), nullable=False),
        sa.Column('title', sa.String(), nullable=False, server_default=''),
        sa.Column('requires_photo', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('requires_text', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('frequency_kind', sa.String(), nullable=False),
        sa.Column('custom_days', sa.JSON(), nullable=True),
        sa.Column('anchor_time', sa.Time(), nullable=False),
        sa.Column('timezone', sa.String(), nullable=True),
        sa.Column('next_fire_time', sa.DateTime(timezone=True), nullable=False),
        sa.Column('status', sa.String(), nullable=False, server_default='active'),
        sa.Column('last_fire_attempt_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.text('now()')),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.text('now()')),
    )
    op.create_index('ix_habit_schedules_owner_id', 'habit_schedules', ['owner_id'])
    op.create_index('ix_habit_schedules_recipient_id', 'habit_schedules', ['recipient_id'])
    op.create_index('ix_habit_schedules_status_next_fire', 'habit_schedules', ['status', 'next_fire_time'])
    op.create_index('ix_habit_schedules_kind_status', 'habit_schedules', ['frequency_kind', 'status'])

    op.create_table(
        'recipient_profiles',
        sa.Column('id', sa.String(36), primary_key=True),
        sa.Column('owner_id', sa.String(), nullable=False),
        sa.Column('name', sa.String(), nullable=False, server_default=''),
        sa.Column('phone_number', sa.String(), nullable=True),
        sa.Column('confirmed', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('sms_opted_out', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.text('now()')),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.text('now()')),
    )
    op.create_index('ix_recipient_profiles_owner_id', 'recipient_profiles', ['owner_id'])

    op.create_table(
        'delivery_attempts',
        sa.Column('id', sa.String(36), primary_key=True),
        sa.Column('schedule_id', sa.String(36), nullable=False),
        sa.Column('scheduled_fire_time', sa.DateTime(timezone=True), nullable=False),
        sa.Column('outcome', sa.String(), nullable=False),
        sa.Column('gateway_message_id', sa.String(), nullable=True),
        sa.Column('latency_seconds', sa.Float(), nullable=False, server_default='0'),
        sa.Column('owner_id', sa.String(), nullable=True),
        sa.Column('to_address', sa.String(), nullable=True),
        sa.Column('error_message', sa.Text(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.text('now()')),
        sa.UniqueConstraint('schedule_id', 'scheduled_fire_time', name='uq_delivery_attempts_schedule_fire_time'),
    )
    op.create_index('ix_delivery_attempts_created_outcome', 'delivery_attempts', ['created_at', 'outcome'])

    op.create_table(
        'scheduler_errors',
        sa.Column('id', sa.String(36), primary_key=True),
        sa.Column('schedule_id', sa.String(36), nullable=True),
        sa.Column('kind', sa.String(), nullable=False),
        sa.Column('detail', sa.Text(), nullable=False, server_default=''),
        sa.Column('retries_exhausted', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.text('now()')),
    )
    op.create_index('ix_scheduler_errors_schedule_id', 'scheduler_errors', ['schedule_id'])
    op.create_index('ix_scheduler_errors_created_at', 'scheduler_errors', ['created_at'])

    op.create_table(
        'health_snapshots',
        sa.Column('id', sa.String(36), primary_key=True),
        sa.Column('timestamp', sa.DateTime(timezone=True), nullable=False),
        sa.Column('stuck_schedule_count', sa.Integer(), nullable=False),
        sa.Column('recent_error_count', sa.Integer(), nullable=False),
        sa.Column('delivery_success_rate_percent', sa.Float(), nullable=False),
        sa.Column('overall_status', sa.String(), nullable=False),
    )
    op.create_index('ix_health_snapshots_timestamp', 'health_snapshots', ['timestamp'])

    op.create_table(
        'owner_usage',
        sa.Column('owner_id', sa.String(), primary_key=True),
        sa.Column('sms_used', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('sms_limit', sa.Integer(), nullable=True),
        sa.Column('period_end', sa.DateTime(timezone=True), nullable=True),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.text('now()')),
    )


def downgrade() -> None:
    op.drop_table('owner_usage')
    op.drop_index('ix_health_snapshots_timestamp', table_name='health_snapshots')
    op.drop_table('health_snapshots')
    op.drop_index('ix_scheduler_errors_created_at', table_name='scheduler_errors')
    op.drop_index('ix_scheduler_errors_schedule_id', table_name='scheduler_errors')
    op.drop_table('scheduler_errors')
    op.drop_index('ix_delivery_attempts_created_outcome', table_name='delivery_attempts')
    op.drop_table('delivery_attempts')
    op.drop_index('ix_recipient_profiles_owner_id', table_name='recipient_profiles')
    op.drop_table('recipient_profiles')
    op.drop_index('ix_habit_schedules_kind_status', table_name='habit_schedules')
    op.drop_index('ix_habit_schedules_status_next_fire', table_name='habit_schedules')
    op.drop_index('ix_habit_schedules_recipient_id', table_name='habit_schedules')
    op.drop_index('ix_habit_schedules_owner_id', table_name='habit_schedules')
    op.drop_table('habit_schedules')
