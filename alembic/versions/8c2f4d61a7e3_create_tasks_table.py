"""create_tasks_table

Revision ID: 8c2f4d61a7e3
Revises: 3a7c1e9b2d40
Create Date: 2026-10-19 14:03:27.114592

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision: str = '8c2f4d61a7e3'
down_revision: Union[str, Sequence[str], None] = '3a7c1e9b2d40'
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    """Upgrade schema."""
    op.create_table('tasks',
    sa.Column('id', sa.String(length=36), nullable=False),
    sa.Column('incident_id', sa.Integer(), nullable=False),
    sa.Column('title', sa.Text(), nullable=False),
    sa.Column('description', sa.Text(), nullable=False),
    sa.Column('status', sa.String(length=16), nullable=False),
    sa.Column('assignee_id', sa.String(length=32), nullable=False),
    sa.Column('created_by', sa.String(length=32), nullable=False),
    sa.Column('channel_id', sa.String(length=32), nullable=False),
    sa.Column('message_ts', sa.String(length=32), nullable=False),
    sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
    sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False),
    sa.Column('completed_at', sa.DateTime(timezone=True), nullable=True),
    sa.ForeignKeyConstraint(['incident_id'], ['lycaon.incidents.id'], ),
    sa.PrimaryKeyConstraint('id'),
    schema='lycaon'
    )
    op.create_index('idx_tasks_incident', 'tasks', ['incident_id', 'created_at'], unique=False, schema='lycaon')


def downgrade() -> None:
    """Downgrade schema."""
    op.drop_index('idx_tasks_incident', table_name='tasks', schema='lycaon')
    op.drop_table('tasks', schema='lycaon')
