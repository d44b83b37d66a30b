"""create_templates_and_workflows

Revision ID: 3b7d2a91c4e0
Revises:
Create Date: 2026-10-12 09:00:00

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = '3b7d2a91c4e0'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

visibility = sa.Enum('public', 'restricted', 'team', name='visibility')
priority = sa.Enum('low', 'medium', 'high', 'urgent', name='priority')
status_kind = sa.Enum('default', 'custom', name='statuskind')
default_status = sa.Enum('in_progress', 'paused', 'completed', 'canceled', 'archived', name='defaultstatus')


def upgrade() -> None:
    op.create_table('workflow_templates',
    sa.Column('id', sa.String(), nullable=False),
    sa.Column('name', sa.String(), nullable=False),
    sa.Column('description', sa.Text(), nullable=True),
    sa.Column('visibility', visibility, nullable=False),
    sa.Column('created_by_id', sa.String(), nullable=True),
    sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
    sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False),
    sa.PrimaryKeyConstraint('id')
    )
    op.create_index(op.f('ix_workflow_templates_id'), 'workflow_templates', ['id'], unique=False)

    op.create_table('workflow_template_steps',
    sa.Column('id', sa.String(), nullable=False),
    sa.Column('template_id', sa.String(), nullable=False),
    sa.Column('name', sa.String(), nullable=False),
    sa.Column('description', sa.Text(), nullable=True),
    sa.Column('step_order', sa.Integer(), nullable=False),
    sa.ForeignKeyConstraint(['template_id'], ['workflow_templates.id'], ),
    sa.PrimaryKeyConstraint('id')
    )
    op.create_index(op.f('ix_workflow_template_steps_id'), 'workflow_template_steps', ['id'], unique=False)
    op.create_index(op.f('ix_workflow_template_steps_template_id'), 'workflow_template_steps', ['template_id'], unique=False)

    op.create_table('status_templates',
    sa.Column('id', sa.String(), nullable=False),
    sa.Column('name', sa.String(), nullable=False),
    sa.Column('description', sa.Text(), nullable=True),
    sa.Column('is_default', sa.Boolean(), nullable=False),
    sa.Column('created_by_id', sa.String(), nullable=True),
    sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
    sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False),
    sa.PrimaryKeyConstraint('id')
    )
    op.create_index(op.f('ix_status_templates_id'), 'status_templates', ['id'], unique=False)

    op.create_table('status_items',
    sa.Column('id', sa.String(), nullable=False),
    sa.Column('template_id', sa.String(), nullable=False),
    sa.Column('name', sa.String(), nullable=False),
    sa.Column('description', sa.Text(), nullable=True),
    sa.Column('color', sa.String(), nullable=False),
    sa.Column('order_index', sa.Integer(), nullable=False),
    sa.Column('is_initial', sa.Boolean(), nullable=False),
    sa.Column('is_final', sa.Boolean(), nullable=False),
    sa.ForeignKeyConstraint(['template_id'], ['status_templates.id'], ),
    sa.PrimaryKeyConstraint('id')
    )
    op.create_index(op.f('ix_status_items_id'), 'status_items', ['id'], unique=False)
    op.create_index(op.f('ix_status_items_template_id'), 'status_items', ['template_id'], unique=False)

    op.create_table('workflows',
    sa.Column('id', sa.String(), nullable=False),
    sa.Column('template_id', sa.String(), nullable=False),
    sa.Column('title', sa.String(), nullable=False),
    sa.Column('description', sa.Text(), nullable=True),
    sa.Column('priority', priority, nullable=False),
    sa.Column('visibility', visibility, nullable=False),
    sa.Column('deadline', sa.DateTime(timezone=True), nullable=True),
    sa.Column('team_id', sa.String(), nullable=True),
    sa.Column('assignee_id', sa.String(), nullable=True),
    sa.Column('created_by_id', sa.String(), nullable=False),
    sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
    sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False),
    sa.Column('current_step', sa.Integer(), nullable=False),
    sa.Column('total_steps', sa.Integer(), nullable=False),
    sa.Column('status_template_id', sa.String(), nullable=True),
    sa.Column('status_kind', status_kind, nullable=False),
    sa.Column('default_status', default_status, nullable=True),
    sa.Column('custom_status_id', sa.String(), nullable=True),
    sa.Column('custom_status_name', sa.String(), nullable=True),
    sa.Column('custom_status_color', sa.String(), nullable=True),
    sa.Column('custom_status_order_index', sa.Integer(), nullable=True),
    sa.Column('custom_status_is_final', sa.Boolean(), nullable=True),
    sa.Column('version', sa.Integer(), nullable=False, server_default='1'),
    sa.ForeignKeyConstraint(['template_id'], ['workflow_templates.id'], ),
    sa.ForeignKeyConstraint(['status_template_id'], ['status_templates.id'], ),
    sa.ForeignKeyConstraint(['custom_status_id'], ['status_items.id'], ),
    sa.PrimaryKeyConstraint('id')
    )
    op.create_index(op.f('ix_workflows_id'), 'workflows', ['id'], unique=False)
    op.create_index(op.f('ix_workflows_template_id'), 'workflows', ['template_id'], unique=False)
    op.create_index(op.f('ix_workflows_team_id'), 'workflows', ['team_id'], unique=False)
    op.create_index(op.f('ix_workflows_assignee_id'), 'workflows', ['assignee_id'], unique=False)
    op.create_index(op.f('ix_workflows_created_by_id'), 'workflows', ['created_by_id'], unique=False)
    op.create_index(op.f('ix_workflows_status_template_id'), 'workflows', ['status_template_id'], unique=False)
    op.create_index(op.f('ix_workflows_custom_status_id'), 'workflows', ['custom_status_id'], unique=False)


def downgrade() -> None:
    op.drop_index(op.f('ix_workflows_custom_status_id'), table_name='workflows')
    op.drop_index(op.f('ix_workflows_status_template_id'), table_name='workflows')
    op.drop_index(op.f('ix_workflows_created_by_id'), table_name='workflows')
    op.drop_index(op.f('ix_workflows_assignee_id'), table_name='workflows')
    op.drop_index(op.f('ix_workflows_team_id'), table_name='workflows')
    op.drop_index(op.f('ix_workflows_template_id'), table_name='workflows')
    op.drop_index(op.f('ix_workflows_id'), table_name='workflows')
    op.drop_table('workflows')
    op.drop_index(op.f('ix_status_items_template_id'), table_name='status_items')
    op.drop_index(op.f('ix_status_items_id'), table_name='status_items')
    op.drop_table('status_items')
    op.drop_index(op.f('ix_status_templates_id'), table_name='status_templates')
    op.drop_table('status_templates')
    op.drop_index(op.f('ix_workflow_template_steps_template_id'), table_name='workflow_template_steps')
    op.drop_index(op.f('ix_workflow_template_steps_id'), table_name='workflow_template_steps')
    op.drop_table('workflow_template_steps')
    op.drop_index(op.f('ix_workflow_templates_id'), table_name='workflow_templates')
    op.drop_table('workflow_templates')
    default_status.drop(op.get_bind(), checkfirst=True)
    status_kind.drop(op.get_bind(), checkfirst=True)
    priority.drop(op.get_bind(), checkfirst=True)
    visibility.drop(op.get_bind(), checkfirst=True)
