"""Create partner rewards tables.

Revision ID: create_partner_rewards
Revises:
Create Date: 2026-10-19

Tables:
- partners: tier, rating, achievement points, signal and annual counters
- partner_achievements: achievement ledger (grants and revocations)
- rating_events: append-only rating event log
- tier_history: append-only tier transitions
- audit_logs: manual overrides and system decisions
- recompute_tasks: recompute outbox
- rewards_config_versions: versioned rewards config
"""

from typing import Sequence, Union
from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects.postgresql import UUID, JSONB


# revision identifiers, used by Alembic.
revision: str = 'create_partner_rewards'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


COUNTER_COLUMNS = [
    'achievement_points',
    'deals_total',
    'deals_reviewed',
    'deals_won',
    'deals_lost',
    'deals_partner_generated',
    'won_population_total',
    'active_certifications',
    'required_documents',
    'signed_required_documents',
    'annual_certified_employees',
    'annual_opportunities',
    'annual_deals_won',
]


def upgrade() -> None:
    """Create partner rewards tables."""

    # Check if tables already exist
    conn = op.get_bind()
    inspector = sa.inspect(conn)
    existing = set(inspector.get_table_names())

    # ====================
    # PARTNERS
    # ====================
    if 'partners' not in existing:
        op.create_table(
            'partners',
            sa.Column('id', UUID(as_uuid=True), primary_key=True, server_default=sa.text('gen_random_uuid()')),
            sa.Column('name', sa.String(200), nullable=False),
            sa.Column('tier', sa.String(20), nullable=False, server_default='bronze'),
            sa.Column('manual_tier_set_at', sa.DateTime(timezone=True), nullable=True),
            sa.Column('rating', sa.Float, nullable=False, server_default='0'),
            sa.Column('total_score', sa.Integer, nullable=False, server_default='0'),
            sa.Column('rating_factors', JSONB, nullable=True),
            sa.Column('rating_calculated_at', sa.DateTime(timezone=True), nullable=True),
            *[sa.Column(name, sa.Integer, nullable=False, server_default='0') for name in COUNTER_COLUMNS],
            sa.Column('renewal_due_at', sa.DateTime(timezone=True), nullable=False),
            sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.text('NOW()')),
            sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.text('NOW()')),
        )
        op.create_index('ix_partners_renewal_due_at', 'partners', ['renewal_due_at'])
        op.create_index('ix_partners_tier', 'partners', ['tier'])
        print("Created partners table")

    # ====================
    # ACHIEVEMENT LEDGER
    # ====================
    if 'partner_achievements' not in existing:
        op.create_table(
            'partner_achievements',
            sa.Column('id', UUID(as_uuid=True), primary_key=True, server_default=sa.text('gen_random_uuid()')),
            sa.Column('partner_id', UUID(as_uuid=True), sa.ForeignKey('partners.id', ondelete='CASCADE'), nullable=False),
            sa.Column('achievement_id', sa.String(100), nullable=False),
            sa.Column('points', sa.Integer, nullable=False, server_default='0'),
            sa.Column('dedupe_key', sa.String(100), nullable=True),
            sa.Column('source', sa.String(20), nullable=False, server_default='system'),
            sa.Column('awarded_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.text('NOW()')),
            sa.Column('awarded_by', sa.String(100), nullable=True),
            sa.Column('reason', sa.Text, nullable=True),
            sa.Column('revoked_at', sa.DateTime(timezone=True), nullable=True),
            sa.Column('revoked_by', sa.String(100), nullable=True),
            sa.Column('revoke_reason', sa.Text, nullable=True),
            sa.UniqueConstraint('partner_id', 'dedupe_key', name='uq_partner_achievement_dedupe'),
        )
        op.create_index('ix_partner_achievements_partner_id', 'partner_achievements', ['partner_id'])
        op.create_index('ix_partner_achievements_achievement_id', 'partner_achievements', ['achievement_id'])
        op.create_index('ix_partner_achievements_partner_active', 'partner_achievements', ['partner_id', 'revoked_at'])
        print("Created partner_achievements table")

    # ====================
    # RATING EVENTS
    # ====================
    if 'rating_events' not in existing:
        op.create_table(
            'rating_events',
            sa.Column('id', sa.BigInteger, primary_key=True, autoincrement=True),
            sa.Column('partner_id', UUID(as_uuid=True), nullable=False),
            sa.Column('actor_id', sa.String(100), nullable=True),
            sa.Column('event_type', sa.String(60), nullable=False),
            sa.Column('points', sa.Integer, nullable=False, server_default='0'),
            sa.Column('payload', JSONB, nullable=True),
            sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.text('NOW()')),
        )
        op.create_index('ix_rating_events_event_type', 'rating_events', ['event_type'])
        op.create_index('ix_rating_events_partner_created', 'rating_events', ['partner_id', 'created_at'])
        print("Created rating_events table")

    # ====================
    # TIER HISTORY
    # ====================
    if 'tier_history' not in existing:
        op.create_table(
            'tier_history',
            sa.Column('id', sa.BigInteger, primary_key=True, autoincrement=True),
            sa.Column('partner_id', UUID(as_uuid=True), sa.ForeignKey('partners.id', ondelete='CASCADE'), nullable=False),
            sa.Column('tier', sa.String(20), nullable=False),
            sa.Column('previous_tier', sa.String(20), nullable=True),
            sa.Column('reason', sa.String(30), nullable=False),
            sa.Column('actor_id', sa.String(100), nullable=True),
            sa.Column('note', sa.Text, nullable=True),
            sa.Column('changed_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.text('NOW()')),
        )
        op.create_index('ix_tier_history_partner_changed', 'tier_history', ['partner_id', 'changed_at'])
        print("Created tier_history table")

    # ====================
    # AUDIT LOGS
    # ====================
    if 'audit_logs' not in existing:
        op.create_table(
            'audit_logs',
            sa.Column('id', UUID(as_uuid=True), primary_key=True, server_default=sa.text('gen_random_uuid()')),
            sa.Column('actor_id', sa.String(100), nullable=True),
            sa.Column('action', sa.String(50), nullable=False),
            sa.Column('entity_type', sa.String(50), nullable=False),
            sa.Column('entity_id', sa.String(100), nullable=True),
            sa.Column('old_values', JSONB, nullable=True),
            sa.Column('new_values', JSONB, nullable=True),
            sa.Column('description', sa.Text, nullable=True),
            sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.text('NOW()')),
        )
        op.create_index('ix_audit_logs_actor_id', 'audit_logs', ['actor_id'])
        op.create_index('ix_audit_logs_action', 'audit_logs', ['action'])
        op.create_index('ix_audit_logs_entity_type', 'audit_logs', ['entity_type'])
        op.create_index('ix_audit_logs_created_at', 'audit_logs', ['created_at'])
        print("Created audit_logs table")

    # ====================
    # RECOMPUTE OUTBOX
    # ====================
    if 'recompute_tasks' not in existing:
        op.create_table(
            'recompute_tasks',
            sa.Column('id', sa.BigInteger, primary_key=True, autoincrement=True),
            sa.Column('partner_id', UUID(as_uuid=True), nullable=False),
            sa.Column('actor_id', sa.String(100), nullable=True),
            sa.Column('kind', sa.String(20), nullable=False),
            sa.Column('status', sa.String(20), nullable=False, server_default='pending'),
            sa.Column('attempts', sa.Integer, nullable=False, server_default='0'),
            sa.Column('last_error', sa.Text, nullable=True),
            sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.text('NOW()')),
            sa.Column('processed_at', sa.DateTime(timezone=True), nullable=True),
        )
        op.create_index('ix_recompute_tasks_partner_id', 'recompute_tasks', ['partner_id'])
        op.create_index('ix_recompute_tasks_status_created', 'recompute_tasks', ['status', 'id'])
        print("Created recompute_tasks table")

    # ====================
    # REWARDS CONFIG
    # ====================
    if 'rewards_config_versions' not in existing:
        op.create_table(
            'rewards_config_versions',
            sa.Column('version', sa.Integer, primary_key=True, autoincrement=False),
            sa.Column('payload', JSONB, nullable=False),
            sa.Column('updated_by', sa.String(100), nullable=True),
            sa.Column('note', sa.Text, nullable=True),
            sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.text('NOW()')),
        )
        print("Created rewards_config_versions table")


def downgrade() -> None:
    """Drop partner rewards tables."""
    op.drop_table('rewards_config_versions')
    op.drop_table('recompute_tasks')
    op.drop_table('audit_logs')
    op.drop_table('tier_history')
    op.drop_table('rating_events')
    op.drop_table('partner_achievements')
    op.drop_table('partners')
