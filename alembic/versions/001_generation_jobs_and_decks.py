"""Create generation_jobs, decks and deck_slides tables.

Revision ID: 001
Revises:
Create Date: 2026-10-18

"""
from __future__ import annotations

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision: str = '001'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

generation_status = postgresql.ENUM(
    'queued', 'running', 'completed', 'failed',
    name='generation_status',
    create_type=False,
)


def upgrade() -> None:
    """Create the job and deck tables."""
    generation_status.create(op.get_bind(), checkfirst=True)

    op.create_table(
        'decks',
        sa.Column('id', postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column('workspace_id', sa.String(64), nullable=False),
        sa.Column('title', sa.String(200), nullable=False),
        sa.Column('language', sa.String(10), nullable=False, server_default='no'),
        sa.Column('theme_id', sa.String(50), nullable=False),
        sa.Column('brand_kit', postgresql.JSONB, nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
    )
    op.create_index('ix_decks_workspace_id', 'decks', ['workspace_id'])

    op.create_table(
        'deck_slides',
        sa.Column('id', postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column('deck_id', postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column('position', sa.Integer, nullable=False),
        sa.Column('content', postgresql.JSONB, nullable=False, comment='Slide as camelCase wire JSON'),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),

        sa.ForeignKeyConstraint(['deck_id'], ['decks.id'], ondelete='CASCADE'),
        sa.UniqueConstraint('deck_id', 'position', name='uq_deck_slides_deck_position'),
    )

    op.create_table(
        'generation_jobs',
        sa.Column('id', postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column('workspace_id', sa.String(64), nullable=False),
        sa.Column('idempotency_key', sa.String(255), nullable=True),
        sa.Column('status', generation_status, nullable=False, server_default='queued'),
        sa.Column('progress', sa.Integer, nullable=False, server_default='0'),
        sa.Column('request', postgresql.JSONB, nullable=False,
                  comment='GenerationRequest as submitted (camelCase wire JSON)'),
        sa.Column('outline', postgresql.JSONB, nullable=True,
                  comment='Final outline after composition and enforcement'),
        sa.Column('deck_id', postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column('error_code', sa.String(64), nullable=True),
        sa.Column('error_message', sa.Text, nullable=True),
        sa.Column('cancel_requested', sa.Boolean, nullable=False, server_default='false'),
        sa.Column('attempts', sa.Integer, nullable=False, server_default='0'),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column('started_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('completed_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),

        sa.ForeignKeyConstraint(['deck_id'], ['decks.id'], ondelete='SET NULL'),
        # An insert race on the same key resolves to the row that won.
        sa.UniqueConstraint('workspace_id', 'idempotency_key',
                            name='uq_generation_jobs_workspace_idempotency'),
    )
    op.create_index(
        'ix_generation_jobs_workspace_created',
        'generation_jobs',
        ['workspace_id', 'created_at'],
    )
    op.create_index('ix_generation_jobs_status', 'generation_jobs', ['status'])


def downgrade() -> None:
    """Drop the job and deck tables."""
    op.drop_index('ix_generation_jobs_status', table_name='generation_jobs')
    op.drop_index('ix_generation_jobs_workspace_created', table_name='generation_jobs')
    op.drop_table('generation_jobs')
    op.drop_table('deck_slides')
    op.drop_index('ix_decks_workspace_id', table_name='decks')
    op.drop_table('decks')
    generation_status.drop(op.get_bind(), checkfirst=True)
