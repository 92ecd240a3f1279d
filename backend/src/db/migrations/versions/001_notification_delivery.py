"""Create notifications and notification_queue tables

Revision ID: 001_notification_delivery
Revises:
Create Date: 2026-10-18

Creates the notification store and the durable delivery queue.

Notifications are the in-app source of truth; each delivery over a
non in-app channel is tracked by a notification_queue entry with its
retry state (status, attempts, last_error, available_at).
"""
from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql


# revision identifiers, used by Alembic.
revision = '001_notification_delivery'
down_revision = None
branch_labels = None
depends_on = None


def _uuid_column() -> sa.Column:
    return sa.Column(
        'uuid',
        postgresql.UUID(as_uuid=True).with_variant(sa.LargeBinary(16), 'sqlite'),
        nullable=False,
    )


def upgrade() -> None:
    """
    Create notifications and notification_queue tables.

    notifications columns:
    - id: Primary key (internal)
    - uuid: UUIDv7 for external identification (GUID: ntf_xxx)
    - user_id: Owning user (opaque identifier)
    - type, title, body, payload: Notification content
    - read: Read flag
    - channel: inapp / email / push
    - sent_at, delivered_at: Delivery tracking
    - created_at/updated_at: Timestamps

    notification_queue columns:
    - id: Primary key (internal)
    - uuid: UUIDv7 for external identification (GUID: ndq_xxx)
    - notification_id: FK to notifications (cascade delete)
    - channel: Delivery channel
    - status: pending / processing / sent / failed
    - attempts, last_error, available_at: Retry state
    - created_at/updated_at: Timestamps
    """
    op.create_table(
        'notifications',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        _uuid_column(),
        sa.Column('user_id', sa.String(length=64), nullable=False),
        sa.Column('type', sa.String(length=50), nullable=False),
        sa.Column('title', sa.String(length=200), nullable=False),
        sa.Column('body', sa.Text(), nullable=False, server_default=''),
        sa.Column(
            'payload',
            postgresql.JSONB(astext_type=sa.Text()).with_variant(sa.JSON(), 'sqlite'),
            nullable=False,
        ),
        sa.Column('read', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('channel', sa.String(length=20), nullable=False, server_default='inapp'),
        sa.Column('sent_at', sa.DateTime(), nullable=False),
        sa.Column('delivered_at', sa.DateTime(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('updated_at', sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_notifications_uuid', 'notifications', ['uuid'], unique=True)
    op.create_index('ix_notifications_user_id', 'notifications', ['user_id'])
    op.create_index('ix_notifications_user_created', 'notifications', ['user_id', 'created_at'])
    op.create_index('ix_notifications_user_read', 'notifications', ['user_id', 'read'])

    op.create_table(
        'notification_queue',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        _uuid_column(),
        sa.Column('notification_id', sa.Integer(), nullable=False),
        sa.Column('channel', sa.String(length=20), nullable=False),
        sa.Column('status', sa.String(length=20), nullable=False, server_default='pending'),
        sa.Column('attempts', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('last_error', sa.Text(), nullable=True),
        sa.Column('available_at', sa.DateTime(), nullable=False),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('updated_at', sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint('id'),
        sa.ForeignKeyConstraint(
            ['notification_id'],
            ['notifications.id'],
            name='fk_notification_queue_notification_id',
            ondelete='CASCADE',
        ),
    )
    op.create_index('ix_notification_queue_uuid', 'notification_queue', ['uuid'], unique=True)
    op.create_index(
        'ix_notification_queue_notification_id', 'notification_queue', ['notification_id']
    )
    op.create_index(
        'ix_notification_queue_status_available',
        'notification_queue',
        ['status', 'available_at'],
    )


def downgrade() -> None:
    """Drop notification_queue and notifications tables."""
    op.drop_index('ix_notification_queue_status_available', table_name='notification_queue')
    op.drop_index('ix_notification_queue_notification_id', table_name='notification_queue')
    op.drop_index('ix_notification_queue_uuid', table_name='notification_queue')
    op.drop_table('notification_queue')

    op.drop_index('ix_notifications_user_read', table_name='notifications')
    op.drop_index('ix_notifications_user_created', table_name='notifications')
    op.drop_index('ix_notifications_user_id', table_name='notifications')
    op.drop_index('ix_notifications_uuid', table_name='notifications')
    op.drop_table('notifications')
