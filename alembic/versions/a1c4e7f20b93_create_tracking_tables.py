"""Create domains, tracking_sessions and tracking_events tables

Revision ID: a1c4e7f20b93
Revises:
Create Date: 2026-10-19 00:00:00.000000
"""
from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = 'a1c4e7f20b93'
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    # Mirror of the external domain registry
    op.create_table(
        'domains',
        sa.Column('id', sa.Uuid(as_uuid=True), primary_key=True, nullable=False),
        sa.Column('domain', sa.String(), nullable=False),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('owner_id', sa.String(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=True),
    )
    op.create_index('ix_domains_id', 'domains', ['id'])
    op.create_index('ix_domains_domain', 'domains', ['domain'], unique=True)
    op.create_index('ix_domains_owner_id', 'domains', ['owner_id'])

    op.create_table(
        'tracking_sessions',
        sa.Column('id', sa.Uuid(as_uuid=True), primary_key=True, nullable=False),
        sa.Column('session_id', sa.String(), nullable=False),
        sa.Column('domain_id', sa.Uuid(as_uuid=True), sa.ForeignKey('domains.id'), nullable=False),
        sa.Column('domain', sa.String(), nullable=False),
        sa.Column('user_agent', sa.Text(), nullable=True),
        sa.Column('referrer', sa.Text(), nullable=True),
        sa.Column('start_time', sa.DateTime(timezone=True), nullable=False),
        sa.Column('last_activity', sa.DateTime(timezone=True), nullable=False),
        sa.Column('end_time', sa.DateTime(timezone=True), nullable=True),
        sa.Column('page_count', sa.Integer(), nullable=False, server_default='1'),
        sa.Column('last_page', sa.Text(), nullable=True),
        sa.Column('exit_page', sa.Text(), nullable=True),
        sa.Column('duration', sa.Integer(), nullable=True),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('version', sa.Integer(), nullable=False, server_default='1'),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=True),
    )
    op.create_index('ix_tracking_sessions_id', 'tracking_sessions', ['id'])
    op.create_index('ix_tracking_sessions_session_id', 'tracking_sessions', ['session_id'], unique=True)
    op.create_index('ix_tracking_sessions_domain_id', 'tracking_sessions', ['domain_id'])
    op.create_index('ix_tracking_sessions_domain', 'tracking_sessions', ['domain'])
    op.create_index('ix_tracking_sessions_start_time', 'tracking_sessions', ['start_time'])
    op.create_index('ix_tracking_sessions_exit_page', 'tracking_sessions', ['exit_page'])
    op.create_index('idx_tracking_session_domain_start', 'tracking_sessions', ['domain_id', 'start_time'])

    # Append-only
    op.create_table(
        'tracking_events',
        sa.Column('id', sa.Uuid(as_uuid=True), primary_key=True, nullable=False),
        sa.Column('session_pk', sa.Uuid(as_uuid=True), sa.ForeignKey('tracking_sessions.id'), nullable=False),
        sa.Column('event_type', sa.String(), nullable=False),
        sa.Column('page', sa.Text(), nullable=False),
        sa.Column('element', sa.Text(), nullable=True),
        sa.Column('data', sa.JSON(), nullable=True),
        sa.Column('timestamp', sa.DateTime(timezone=True), nullable=False),
        sa.Column('received_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=True),
    )
    op.create_index('ix_tracking_events_id', 'tracking_events', ['id'])
    op.create_index('ix_tracking_events_session_pk', 'tracking_events', ['session_pk'])
    op.create_index('ix_tracking_events_event_type', 'tracking_events', ['event_type'])
    op.create_index('ix_tracking_events_timestamp', 'tracking_events', ['timestamp'])
    op.create_index('idx_tracking_event_session_type', 'tracking_events', ['session_pk', 'event_type'])


def downgrade() -> None:
    op.drop_table('tracking_events')
    op.drop_table('tracking_sessions')
    op.drop_table('domains')
