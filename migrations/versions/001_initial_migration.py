# migrations/versions/001_initial_migration.py

"""Initial migration: rooms and media contents

Revision ID: 001
Revises:
Create Date: 2026-10-19 00:00:00.000000

"""
from alembic import op
import sqlalchemy as sa

# revision identifiers
revision = '001'
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    # Rooms: агрегат комнаты хранится JSON-документом в state
    op.create_table('rooms_rooms',
                    sa.Column('id', sa.String(), nullable=False),
                    sa.Column('owner_id', sa.String(), nullable=False),
                    sa.Column('title', sa.String(length=100), nullable=False),
                    sa.Column('description', sa.Text(), nullable=True),
                    sa.Column('category', sa.String(length=32), server_default='general', nullable=False),
                    sa.Column('is_private', sa.Boolean(), server_default='false', nullable=False),
                    sa.Column('status', sa.String(length=16), server_default='active', nullable=False),
                    sa.Column('total_mics', sa.Integer(), server_default='6', nullable=False),
                    sa.Column('state', sa.JSON(), server_default='{}', nullable=False),
                    sa.Column('last_active_at', sa.DateTime(timezone=True), nullable=False),
                    sa.Column('version', sa.Integer(), server_default='0', nullable=False),
                    sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('now()'),
                              nullable=False),
                    sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.text('now()'),
                              nullable=True),
                    sa.PrimaryKeyConstraint('id')
                    )
    op.create_index(op.f('ix_rooms_rooms_owner_id'), 'rooms_rooms', ['owner_id'])
    op.create_index(op.f('ix_rooms_rooms_category'), 'rooms_rooms', ['category'])
    op.create_index(op.f('ix_rooms_rooms_status'), 'rooms_rooms', ['status'])
    op.create_index(op.f('ix_rooms_rooms_last_active_at'), 'rooms_rooms', ['last_active_at'])

    # Media contents
    op.create_table('media_contents',
                    sa.Column('id', sa.String(), nullable=False),
                    sa.Column('room_id', sa.String(), nullable=False),
                    sa.Column('type', sa.String(length=16), nullable=False),
                    sa.Column('title', sa.String(length=200), nullable=False),
                    sa.Column('status', sa.String(length=16), server_default='stopped', nullable=False),
                    sa.Column('details', sa.JSON(), server_default='{}', nullable=False),
                    sa.Column('playback', sa.JSON(), server_default='{}', nullable=False),
                    sa.Column('controls', sa.JSON(), server_default='{}', nullable=False),
                    sa.Column('stats', sa.JSON(), server_default='{}', nullable=False),
                    sa.Column('error_info', sa.JSON(), nullable=True),
                    sa.Column('added_by', sa.String(), nullable=False),
                    sa.Column('added_at', sa.DateTime(timezone=True), nullable=False),
                    sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('now()'),
                              nullable=False),
                    sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.text('now()'),
                              nullable=True),
                    sa.PrimaryKeyConstraint('id')
                    )
    op.create_index(op.f('ix_media_contents_room_id'), 'media_contents', ['room_id'])
    op.create_index(op.f('ix_media_contents_status'), 'media_contents', ['status'])
    op.create_index(op.f('ix_media_contents_added_by'), 'media_contents', ['added_by'])


def downgrade() -> None:
    op.drop_table('media_contents')
    op.drop_table('rooms_rooms')
