"""cache and crosswalk tables

Revision ID: a1c4e7d2b9f0
Revises:
Create Date: 2026-10-19 09:00:00.000000

Creates api_cache (normalized upstream payloads with expiry) and
zip_to_cbsa (weighted ZIP to metro crosswalk). New databases may also be
created by create_all() in the app lifespan and then stamped with:

    alembic stamp head
"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision: str = 'a1c4e7d2b9f0'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.create_table(
        'api_cache',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('source', sa.String(length=20), nullable=False),
        sa.Column('location_key', sa.String(length=255), nullable=False),
        sa.Column('data', sa.JSON(), nullable=False),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('expires_at', sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('source', 'location_key', name='uq_api_cache_source_key'),
    )
    op.create_index('ix_api_cache_expires_at', 'api_cache', ['expires_at'])

    op.create_table(
        'zip_to_cbsa',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('zip_code', sa.String(length=5), nullable=False),
        sa.Column('cbsa_code', sa.String(length=10), nullable=False),
        sa.Column('cbsa_name', sa.String(length=255), nullable=False),
        sa.Column('residential_ratio', sa.Float(), nullable=False),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('zip_code', 'cbsa_code', name='uq_zip_to_cbsa'),
    )
    op.create_index('ix_zip_to_cbsa_zip', 'zip_to_cbsa', ['zip_code'])


def downgrade() -> None:
    op.drop_index('ix_zip_to_cbsa_zip', table_name='zip_to_cbsa')
    op.drop_table('zip_to_cbsa')
    op.drop_index('ix_api_cache_expires_at', table_name='api_cache')
    op.drop_table('api_cache')
