"""create_incident_tables

Revision ID: 3a7c1e9b2d40
Revises:
Create Date: 2026-10-19 09:12:41.508213

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision: str = '3a7c1e9b2d40'
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    """Upgrade schema."""
    op.create_table('counters',
    sa.Column('id', sa.String(length=64), nullable=False),
    sa.Column('current_number', sa.Integer(), nullable=False),
    sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
    sa.PrimaryKeyConstraint('id'),
    schema='lycaon'
    )
    op.create_table('incidents',
    sa.Column('id', sa.Integer(), autoincrement=False, nullable=False),
    sa.Column('title', sa.Text(), nullable=False),
    sa.Column('description', sa.Text(), nullable=False),
    sa.Column('category_id', sa.String(length=128), nullable=False),
    sa.Column('severity_id', sa.String(length=128), nullable=False),
    sa.Column('asset_ids', postgresql.ARRAY(sa.Text()), nullable=False),
    sa.Column('channel_id', sa.String(length=32), nullable=False),
    sa.Column('channel_name', sa.String(length=80), nullable=False),
    sa.Column('origin_channel_id', sa.String(length=32), nullable=False),
    sa.Column('origin_channel_name', sa.String(length=256), nullable=False),
    sa.Column('team_id', sa.String(length=32), nullable=False),
    sa.Column('created_by', sa.String(length=32), nullable=False),
    sa.Column('lead', sa.String(length=32), nullable=False),
    sa.Column('status', sa.String(length=16), nullable=False),
    sa.Column('initial_triage', sa.Boolean(), nullable=False),
    sa.Column('private', sa.Boolean(), nullable=False),
    sa.Column('joined_members', postgresql.ARRAY(sa.Text()), nullable=False),
    sa.Column('welcome_message_ts', sa.String(length=32), nullable=False),
    sa.Column('declared_message_ts', sa.String(length=32), nullable=False),
    sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
    sa.PrimaryKeyConstraint('id'),
    schema='lycaon'
    )
    op.create_index('idx_incidents_channel_id', 'incidents', ['channel_id'], unique=False, schema='lycaon')
    op.create_index('idx_incidents_created_at', 'incidents', ['created_at'], unique=False, schema='lycaon')
    op.create_table('status_histories',
    sa.Column('pk', sa.Integer(), autoincrement=True, nullable=False),
    sa.Column('id', sa.String(length=36), nullable=False),
    sa.Column('incident_id', sa.Integer(), nullable=False),
    sa.Column('status', sa.String(length=16), nullable=False),
    sa.Column('changed_by', sa.String(length=32), nullable=False),
    sa.Column('changed_at', sa.DateTime(timezone=True), nullable=False),
    sa.Column('note', sa.Text(), nullable=False),
    sa.ForeignKeyConstraint(['incident_id'], ['lycaon.incidents.id'], ),
    sa.PrimaryKeyConstraint('pk'),
    sa.UniqueConstraint('id'),
    schema='lycaon'
    )
    op.create_index('idx_status_histories_incident', 'status_histories', ['incident_id', 'changed_at'], unique=False, schema='lycaon')
    op.create_table('incident_requests',
    sa.Column('id', sa.String(length=36), nullable=False),
    sa.Column('channel_id', sa.String(length=32), nullable=False),
    sa.Column('message_ts', sa.String(length=32), nullable=False),
    sa.Column('bot_message_ts', sa.String(length=32), nullable=False),
    sa.Column('title', sa.Text(), nullable=False),
    sa.Column('description', sa.Text(), nullable=False),
    sa.Column('category_id', sa.String(length=128), nullable=False),
    sa.Column('severity_id', sa.String(length=128), nullable=False),
    sa.Column('asset_ids', postgresql.ARRAY(sa.Text()), nullable=False),
    sa.Column('requested_by', sa.String(length=32), nullable=False),
    sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
    sa.Column('expires_at', sa.DateTime(timezone=True), nullable=True),
    sa.PrimaryKeyConstraint('id'),
    schema='lycaon'
    )
    op.create_table('users',
    sa.Column('slack_user_id', sa.String(length=32), nullable=False),
    sa.Column('name', sa.String(length=256), nullable=False),
    sa.Column('email', sa.String(length=256), nullable=False),
    sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
    sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
    sa.PrimaryKeyConstraint('slack_user_id'),
    schema='lycaon'
    )
    op.execute(
        "INSERT INTO lycaon.counters (id, current_number) VALUES ('incident', 0) "
        "ON CONFLICT (id) DO NOTHING"
    )


def downgrade() -> None:
    """Downgrade schema."""
    op.drop_table('users', schema='lycaon')
    op.drop_table('incident_requests', schema='lycaon')
    op.drop_index('idx_status_histories_incident', table_name='status_histories', schema='lycaon')
    op.drop_table('status_histories', schema='lycaon')
    op.drop_index('idx_incidents_created_at', table_name='incidents', schema='lycaon')
    op.drop_index('idx_incidents_channel_id', table_name='incidents', schema='lycaon')
    op.drop_table('incidents', schema='lycaon')
    op.drop_table('counters', schema='lycaon')
