"""initial_schema_room_booking_db

Revision ID: 4c1e7d2a9b30
Revises:
Create Date: 2026-10-19 09:12:44.318205

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision: str = '4c1e7d2a9b30'
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    """Upgrade schema - Create all tables for room_booking_db."""

    # 1. Create users table (owners and participants)
    op.create_table(
        'users',
        sa.Column('id', postgresql.UUID(as_uuid=True), nullable=False, server_default=sa.text('gen_random_uuid()')),
        sa.Column('email', sa.String(length=320), nullable=True),  # NULL/empty means "no invitation"
        sa.Column('name', sa.String(length=200), nullable=False, server_default=sa.text("''")),
        sa.Column('created_at', sa.TIMESTAMP(timezone=True), nullable=False, server_default=sa.text('NOW()')),
        sa.PrimaryKeyConstraint('id')
    )

    # 2. Create bookings table
    op.create_table(
        'bookings',
        sa.Column('id', postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column('room', sa.String(length=100), nullable=False),
        sa.Column('start_time', sa.TIMESTAMP(timezone=True), nullable=False),
        sa.Column('end_time', sa.TIMESTAMP(timezone=True), nullable=False),
        sa.Column('reason', sa.String(length=500), nullable=False, server_default=sa.text("''")),
        sa.Column('owner_id', postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column('status', sa.String(length=20), nullable=False, server_default=sa.text("'ACTIVE'")),
        sa.Column('created_at', sa.TIMESTAMP(timezone=True), nullable=False, server_default=sa.text('NOW()')),
        sa.Column('cancelled_at', sa.TIMESTAMP(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint('id'),
        sa.ForeignKeyConstraint(['owner_id'], ['users.id'], name='fk_bookings_owner'),
        sa.CheckConstraint("status IN ('ACTIVE', 'CANCELLED')", name='check_booking_status'),
        sa.CheckConstraint('start_time < end_time', name='check_booking_range')
    )

    # Overlap lookups only ever look at active bookings of one room
    op.create_index(
        'idx_bookings_room_active',
        'bookings',
        ['room', 'start_time', 'end_time'],
        postgresql_where=sa.text("status = 'ACTIVE'")
    )
    op.create_index('idx_bookings_owner', 'bookings', ['owner_id'])

    # 3. Create booking_participants table
    op.create_table(
        'booking_participants',
        sa.Column('booking_id', postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column('participant_id', postgresql.UUID(as_uuid=True), nullable=False),
        sa.PrimaryKeyConstraint('booking_id', 'participant_id'),
        sa.ForeignKeyConstraint(['booking_id'], ['bookings.id'], name='fk_participants_booking', ondelete='CASCADE'),
        sa.ForeignKeyConstraint(['participant_id'], ['users.id'], name='fk_participants_user')
    )

    # 4. Create email_outbox table (Transactional Outbox Pattern)
    # Recipient and booking fields are a snapshot taken at enqueue time
    op.create_table(
        'email_outbox',
        sa.Column('id', sa.BigInteger(), sa.Identity(), nullable=False),
        sa.Column('type', sa.String(length=10), nullable=False),
        sa.Column('status', sa.String(length=10), nullable=False, server_default=sa.text("'PENDING'")),
        sa.Column('attempts', sa.Integer(), nullable=False, server_default=sa.text('0')),
        sa.Column('max_attempts', sa.Integer(), nullable=False, server_default=sa.text('5')),
        sa.Column('booking_id', postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column('participant_id', postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column('email', sa.String(length=320), nullable=False),
        sa.Column('name', sa.String(length=200), nullable=False, server_default=sa.text("''")),
        sa.Column('room', sa.String(length=100), nullable=False),
        sa.Column('start_time', sa.TIMESTAMP(timezone=True), nullable=False),
        sa.Column('end_time', sa.TIMESTAMP(timezone=True), nullable=False),
        sa.Column('reason', sa.String(length=500), nullable=False, server_default=sa.text("''")),
        sa.Column('calendar_uid', sa.String(length=255), nullable=False),
        sa.Column('sequence', sa.Integer(), nullable=False, server_default=sa.text('0')),

        # Scheduling and claims
        sa.Column('created_at', sa.TIMESTAMP(timezone=True), nullable=False, server_default=sa.text('NOW()')),
        sa.Column('next_attempt_at', sa.TIMESTAMP(timezone=True), nullable=False, server_default=sa.text('NOW()')),
        sa.Column('claimed_at', sa.TIMESTAMP(timezone=True), nullable=True),
        sa.Column('claimed_by', sa.String(length=255), nullable=True),

        # Outcome
        sa.Column('last_error', sa.Text(), nullable=True),
        sa.Column('sent_at', sa.TIMESTAMP(timezone=True), nullable=True),
        sa.Column('failed_at', sa.TIMESTAMP(timezone=True), nullable=True),
        sa.Column('requeue_count', sa.Integer(), nullable=False, server_default=sa.text('0')),

        sa.PrimaryKeyConstraint('id'),
        sa.ForeignKeyConstraint(['booking_id'], ['bookings.id'], name='fk_outbox_booking'),
        sa.UniqueConstraint('booking_id', 'participant_id', 'type', name='unique_outbox_booking_participant_type'),
        sa.CheckConstraint("type IN ('INVITE', 'CANCEL')", name='check_outbox_type'),
        sa.CheckConstraint("status IN ('PENDING', 'SENT', 'FAILED')", name='check_outbox_status'),
        sa.CheckConstraint('attempts >= 0 AND attempts <= max_attempts', name='check_outbox_attempts'),
        sa.CheckConstraint('max_attempts >= 1', name='check_outbox_max_attempts'),
        sa.CheckConstraint(
            "(type = 'INVITE' AND sequence = 0) OR (type = 'CANCEL' AND sequence >= 1)",
            name='check_outbox_sequence'
        )
    )

    # Partial index for due PENDING jobs (the claim query)
    op.create_index(
        'idx_outbox_pending_due',
        'email_outbox',
        ['next_attempt_at', 'created_at'],
        postgresql_where=sa.text("status = 'PENDING'")
    )
    op.create_index('idx_outbox_calendar_uid', 'email_outbox', ['calendar_uid'])
    op.create_index(
        'idx_outbox_failed',
        'email_outbox',
        [sa.text('failed_at DESC')],
        postgresql_where=sa.text("status = 'FAILED'")
    )


def downgrade() -> None:
    """Downgrade schema - Drop all tables."""
    op.drop_index('idx_outbox_failed', table_name='email_outbox')
    op.drop_index('idx_outbox_calendar_uid', table_name='email_outbox')
    op.drop_index('idx_outbox_pending_due', table_name='email_outbox')
    op.drop_table('email_outbox')

    op.drop_table('booking_participants')

    op.drop_index('idx_bookings_owner', table_name='bookings')
    op.drop_index('idx_bookings_room_active', table_name='bookings')
    op.drop_table('bookings')

    op.drop_table('users')
