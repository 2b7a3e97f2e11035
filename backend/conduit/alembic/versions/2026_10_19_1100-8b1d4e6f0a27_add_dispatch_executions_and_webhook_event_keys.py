"""add dispatch executions and webhook event keys

Revision ID: 8b1d4e6f0a27
Revises: 3f9c2a71d8e4
Create Date: 2026-10-19 11:00:00.000000

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision: str = '8b1d4e6f0a27'
down_revision: Union[str, None] = '3f9c2a71d8e4'
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def _json() -> sa.types.TypeEngine:
    return sa.JSON().with_variant(postgresql.JSONB(), 'postgresql')


def upgrade() -> None:
    # batch mode so SQLite can add the constraint
    with op.batch_alter_table('webhook_events') as batch_op:
        batch_op.add_column(sa.Column('event_key', sa.String(length=255), nullable=True))
        batch_op.create_unique_constraint(
            'uc_webhook_events_subscription_event_key', ['subscription_id', 'event_key']
        )

    op.create_table(
        'dispatch_executions',
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('envelope_id', sa.Uuid(), nullable=False),
        sa.Column('attempt', sa.Integer(), nullable=False),
        sa.Column('action_type', sa.String(length=50), nullable=False),
        sa.Column('subscription_id', sa.Uuid(), nullable=True),
        sa.Column('status', sa.String(length=50), nullable=False),
        sa.Column('duration_ms', sa.Integer(), nullable=False),
        sa.Column('error', sa.Text(), nullable=True),
        sa.Column('payload', _json(), nullable=False),
        sa.Column('executed_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('envelope_id', 'attempt', name='uc_dispatch_executions_envelope_attempt')
    )
    op.create_index('ix_dispatch_executions_envelope_id', 'dispatch_executions', ['envelope_id'], unique=False)
    op.create_index('ix_dispatch_executions_subscription_id', 'dispatch_executions', ['subscription_id'], unique=False)


def downgrade() -> None:
    op.drop_index('ix_dispatch_executions_subscription_id', table_name='dispatch_executions')
    op.drop_index('ix_dispatch_executions_envelope_id', table_name='dispatch_executions')
    op.drop_table('dispatch_executions')

    with op.batch_alter_table('webhook_events') as batch_op:
        batch_op.drop_constraint('uc_webhook_events_subscription_event_key', type_='unique')
        batch_op.drop_column('event_key')
