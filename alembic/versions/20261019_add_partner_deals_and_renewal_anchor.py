"""Add per-deal status records and the renewal anchor.

Revision ID: add_partner_deals
Revises: create_partner_rewards
Create Date: 2026-10-19

- partner_deals: last known status per (partner_id, deal_id)
- partners.renewal_anchor_at: original renewal anniversary
"""

from typing import Sequence, Union
from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects.postgresql import UUID


# revision identifiers, used by Alembic.
revision: str = 'add_partner_deals'
down_revision: Union[str, None] = 'create_partner_rewards'
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    conn = op.get_bind()
    inspector = sa.inspect(conn)
    existing = set(inspector.get_table_names())

    partner_columns = {c['name'] for c in inspector.get_columns('partners')}
    if 'renewal_anchor_at' not in partner_columns:
        op.add_column('partners', sa.Column('renewal_anchor_at', sa.DateTime(timezone=True), nullable=True))
        # Existing partners anchor on their current due date
        op.execute("UPDATE partners SET renewal_anchor_at = renewal_due_at WHERE renewal_anchor_at IS NULL")
        print("Added partners.renewal_anchor_at")

    if 'partner_deals' not in existing:
        op.create_table(
            'partner_deals',
            sa.Column('id', sa.BigInteger, primary_key=True, autoincrement=True),
            sa.Column('partner_id', UUID(as_uuid=True), sa.ForeignKey('partners.id', ondelete='CASCADE'), nullable=False),
            sa.Column('deal_id', sa.String(100), nullable=False),
            sa.Column('status', sa.String(30), nullable=False),
            sa.Column('partner_generated', sa.Boolean, nullable=False, server_default=sa.false()),
            sa.Column('population', sa.Integer, nullable=False, server_default='0'),
            sa.Column('registered_at', sa.DateTime(timezone=True), nullable=True),
            sa.Column('reviewed_at', sa.DateTime(timezone=True), nullable=True),
            sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.text('NOW()')),
            sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.text('NOW()')),
            sa.UniqueConstraint('partner_id', 'deal_id', name='uq_partner_deals_partner_deal'),
        )
        print("Created partner_deals table")


def downgrade() -> None:
    op.drop_table('partner_deals')
    op.drop_column('partners', 'renewal_anchor_at')
