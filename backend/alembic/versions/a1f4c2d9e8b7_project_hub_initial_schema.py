"""Project hub initial schema (projects, membership, tasks, content, runs, audit)

Revision ID: a1f4c2d9e8b7
Revises:
Create Date: 2026-10-18T09:12:44.318207
"""
from typing import Sequence, Union
from alembic import op
import sqlalchemy as sa

# revision identifiers
revision: str = 'a1f4c2d9e8b7'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def _project_fk():
    return sa.ForeignKey('projects.id', ondelete='CASCADE')


def upgrade() -> None:
    # --- projects ---
    op.create_table(
        'projects',
        sa.Column('id', sa.String(), nullable=False),
        sa.Column('name', sa.String(), nullable=False),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_projects_updated_at', 'projects', ['updated_at'])

    # --- project_members ---
    op.create_table(
        'project_members',
        sa.Column('id', sa.String(), nullable=False),
        sa.Column('project_id', sa.String(), _project_fk(), nullable=False),
        sa.Column('user_id', sa.Integer(), nullable=False),
        sa.Column('role', sa.String(32), nullable=False, server_default='member'),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('project_id', 'user_id', name='uq_project_member'),
    )
    op.create_index('ix_project_members_project_id', 'project_members', ['project_id'])
    op.create_index('ix_project_members_user_id', 'project_members', ['user_id'])

    # --- project_join_requests ---
    op.create_table(
        'project_join_requests',
        sa.Column('id', sa.String(), nullable=False),
        sa.Column('project_id', sa.String(), _project_fk(), nullable=False),
        sa.Column('user_id', sa.Integer(), nullable=False),
        sa.Column('username', sa.String(), nullable=False),
        sa.Column('status', sa.String(32), nullable=False, server_default='pending'),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_project_join_requests_project_id', 'project_join_requests', ['project_id'])
    op.create_index('idx_join_request_project_status', 'project_join_requests', ['project_id', 'status'])
    op.create_index(
        'uq_join_request_pending', 'project_join_requests', ['project_id', 'user_id'],
        unique=True,
        postgresql_where=sa.text("status = 'pending'"),
        sqlite_where=sa.text("status = 'pending'"),
    )

    # --- user_cache ---
    op.create_table(
        'user_cache',
        sa.Column('user_id', sa.Integer(), autoincrement=False, nullable=False),
        sa.Column('username', sa.String(), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint('user_id'),
    )
    op.create_index('ix_user_cache_username', 'user_cache', ['username'])

    # --- tasks ---
    op.create_table(
        'tasks',
        sa.Column('id', sa.String(), nullable=False),
        sa.Column('project_id', sa.String(), _project_fk(), nullable=False),
        sa.Column('title', sa.String(), nullable=False),
        sa.Column('status', sa.String(32), nullable=False, server_default='todo'),
        sa.Column('priority', sa.String(32), nullable=False, server_default='medium'),
        sa.Column('due_date', sa.Date(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_tasks_project_id', 'tasks', ['project_id'])
    op.create_index('ix_tasks_created_at', 'tasks', ['created_at'])

    # --- task_history ---
    op.create_table(
        'task_history',
        sa.Column('id', sa.String(), nullable=False),
        sa.Column('task_id', sa.String(), sa.ForeignKey('tasks.id', ondelete='CASCADE'), nullable=False),
        sa.Column('user_id', sa.Integer(), nullable=True),
        sa.Column('from_status', sa.String(), nullable=True),
        sa.Column('to_status', sa.String(), nullable=False),
        sa.Column('request_id', sa.String(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_task_history_task_id', 'task_history', ['task_id'])
    op.create_index('idx_history_task_time', 'task_history', ['task_id', 'created_at'])

    # --- milestones / documents / notes ---
    op.create_table(
        'milestones',
        sa.Column('id', sa.String(), nullable=False),
        sa.Column('project_id', sa.String(), _project_fk(), nullable=False),
        sa.Column('title', sa.String(), nullable=False),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('due_date', sa.Date(), nullable=True),
        sa.Column('completed_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_milestones_project_id', 'milestones', ['project_id'])

    op.create_table(
        'documents',
        sa.Column('id', sa.String(), nullable=False),
        sa.Column('project_id', sa.String(), _project_fk(), nullable=False),
        sa.Column('title', sa.String(), nullable=False),
        sa.Column('content', sa.Text(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_documents_project_id', 'documents', ['project_id'])

    op.create_table(
        'notes',
        sa.Column('id', sa.String(), nullable=False),
        sa.Column('project_id', sa.String(), _project_fk(), nullable=False),
        sa.Column('title', sa.String(), nullable=True),
        sa.Column('body', sa.Text(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_notes_project_id', 'notes', ['project_id'])

    # --- project_files / project_chat_messages ---
    op.create_table(
        'project_files',
        sa.Column('id', sa.String(), nullable=False),
        sa.Column('project_id', sa.String(), _project_fk(), nullable=False),
        sa.Column('original_name', sa.String(), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_project_files_project_id', 'project_files', ['project_id'])

    op.create_table(
        'project_chat_messages',
        sa.Column('id', sa.String(), nullable=False),
        sa.Column('project_id', sa.String(), _project_fk(), nullable=False),
        sa.Column('user_id', sa.Integer(), nullable=False),
        sa.Column('username', sa.String(), nullable=False),
        sa.Column('body', sa.Text(), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_project_chat_messages_project_id', 'project_chat_messages', ['project_id'])

    # --- runs / run_fsm_trace ---
    op.create_table(
        'runs',
        sa.Column('id', sa.String(), nullable=False),
        sa.Column('project_id', sa.String(), _project_fk(), nullable=False),
        sa.Column('status', sa.String(32), nullable=False, server_default='draft'),
        sa.Column('features_core', sa.JSON(), nullable=False),
        sa.Column('features_extended', sa.JSON(), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_runs_project_id', 'runs', ['project_id'])
    op.create_index('ix_runs_created_at', 'runs', ['created_at'])

    op.create_table(
        'run_fsm_trace',
        sa.Column('id', sa.String(), nullable=False),
        sa.Column('run_id', sa.String(), sa.ForeignKey('runs.id', ondelete='CASCADE'), nullable=False),
        sa.Column('from_state', sa.String(), nullable=True),
        sa.Column('to_state', sa.String(), nullable=False),
        sa.Column('rule_id', sa.String(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_run_fsm_trace_run_id', 'run_fsm_trace', ['run_id'])

    # --- audit_log (append-only, no FK so entries outlive their project) ---
    op.create_table(
        'audit_log',
        sa.Column('id', sa.String(), nullable=False),
        sa.Column('project_id', sa.String(), nullable=True),
        sa.Column('user_id', sa.Integer(), nullable=True),
        sa.Column('username', sa.String(), nullable=True),
        sa.Column('action', sa.String(), nullable=False),
        sa.Column('entity_type', sa.String(), nullable=False),
        sa.Column('entity_id', sa.String(), nullable=True),
        sa.Column('details', sa.JSON(), nullable=True),
        sa.Column('request_id', sa.String(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_audit_log_project_id', 'audit_log', ['project_id'])
    op.create_index('ix_audit_log_user_id', 'audit_log', ['user_id'])
    op.create_index('ix_audit_log_request_id', 'audit_log', ['request_id'])
    op.create_index('idx_audit_project_time', 'audit_log', ['project_id', 'created_at'])


def downgrade() -> None:
    for table in (
        'audit_log', 'run_fsm_trace', 'runs', 'project_chat_messages', 'project_files',
        'notes', 'documents', 'milestones', 'task_history', 'tasks', 'user_cache',
        'project_join_requests', 'project_members', 'projects',
    ):
        op.drop_table(table)
