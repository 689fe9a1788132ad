"""create properties, points_of_interest and distance_calculations

Revision ID: 3b9d41c7e2a0
Revises:
Create Date: 2026-03-02

"""
from typing import Sequence, Union

import sqlalchemy as sa
from alembic import op


# revision identifiers, used by Alembic.
revision: str = '3b9d41c7e2a0'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.create_table(
        'properties',
        sa.Column('id',           sa.Integer(),     primary_key=True),
        sa.Column('folio_number', sa.String(32),    nullable=True),
        sa.Column('address',      sa.String(500),   nullable=True),
        sa.Column('latitude',     sa.Float(),       nullable=True),
        sa.Column('longitude',    sa.Float(),       nullable=True),
        sa.Column('created_at',   sa.DateTime(timezone=True), nullable=False,
                  server_default=sa.text('now()')),
        sa.UniqueConstraint('folio_number', name='uq_properties_folio_number'),
    )

    op.create_table(
        'points_of_interest',
        sa.Column('id',         sa.Integer(),   primary_key=True),
        sa.Column('name',       sa.String(255), nullable=False),
        sa.Column('category',   sa.String(100), nullable=True),
        sa.Column('latitude',   sa.Float(),     nullable=True),
        sa.Column('longitude',  sa.Float(),     nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False,
                  server_default=sa.text('now()')),
    )
    op.create_index('ix_points_of_interest_category', 'points_of_interest', ['category'])

    # one row per (property, poi); either travel mode may still be NULL
    op.create_table(
        'distance_calculations',
        sa.Column('id',                      sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column('property_id',             sa.Integer(),
                  sa.ForeignKey('properties.id', ondelete='CASCADE'), nullable=False),
        sa.Column('poi_id',                  sa.Integer(),
                  sa.ForeignKey('points_of_interest.id', ondelete='CASCADE'), nullable=False),
        sa.Column('walking_distance_meters', sa.Integer(), nullable=True),
        sa.Column('walking_time_seconds',    sa.Integer(), nullable=True),
        sa.Column('driving_distance_meters', sa.Integer(), nullable=True),
        sa.Column('driving_time_seconds',    sa.Integer(), nullable=True),
        sa.Column('calculated_at',           sa.DateTime(timezone=True), nullable=False,
                  server_default=sa.text('now()')),
        sa.UniqueConstraint('property_id', 'poi_id', name='uq_distance_calculations_pair'),
    )
    op.create_index('ix_distance_calculations_property_id', 'distance_calculations', ['property_id'])
    op.create_index('ix_distance_calculations_poi_id',      'distance_calculations', ['poi_id'])


def downgrade() -> None:
    op.drop_index('ix_distance_calculations_poi_id',      table_name='distance_calculations')
    op.drop_index('ix_distance_calculations_property_id', table_name='distance_calculations')
    op.drop_table('distance_calculations')
    op.drop_index('ix_points_of_interest_category', table_name='points_of_interest')
    op.drop_table('points_of_interest')
    op.drop_table('properties')
