"""Initial migration - create all tables

Revision ID: 001_initial
Revises: None
Create Date: 2026-10-19

Creates all database tables for the Online Exam Engine:
- students: Roster entries (phone identity, cohort memberships)
- online_tests: Authored tests with their deployment window
- test_attempts: One attempt per (test, student) with its question snapshot

Also creates indexes for common query patterns.
"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

# revision identifiers
revision: str = '001_initial'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    # ── Students Table ────────────────────────────────────────
    op.create_table(
        'students',
        sa.Column('id', sa.String(36), primary_key=True),
        sa.Column('phone', sa.Text(), nullable=False, unique=True),
        sa.Column('name', sa.Text(), nullable=False),
        sa.Column('email', sa.Text(), nullable=True),
        sa.Column('cohorts', sa.Text(), nullable=False, server_default='[]'),
        sa.Column('created_at', sa.DateTime(),
                  server_default=sa.func.now(), nullable=True),
    )

    # ── Online Tests Table ────────────────────────────────────
    op.create_table(
        'online_tests',
        sa.Column('id', sa.String(36), primary_key=True),
        sa.Column('title', sa.Text(), nullable=False),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('questions', sa.Text(), nullable=False, server_default='[]'),
        sa.Column('config', sa.Text(), nullable=False, server_default='{}'),
        sa.Column('total_marks', sa.Float(), nullable=False, server_default='0'),
        sa.Column('status', sa.Text(), nullable=False, server_default='draft'),
        sa.Column('created_by', sa.Text(), nullable=False),
        sa.Column('deployment_batches', sa.Text(), nullable=False, server_default='[]'),
        sa.Column('deployment_students', sa.Text(), nullable=False, server_default='[]'),
        sa.Column('start_time', sa.DateTime(), nullable=True),
        sa.Column('end_time', sa.DateTime(), nullable=True),
        sa.Column('duration_minutes', sa.Integer(), nullable=True),
        sa.Column('created_at', sa.DateTime(),
                  server_default=sa.func.now(), nullable=True),
        sa.Column('updated_at', sa.DateTime(),
                  server_default=sa.func.now(), nullable=True),
    )

    op.create_index('ix_online_tests_status', 'online_tests', ['status'])
    op.create_index('ix_online_tests_created_by', 'online_tests', ['created_by'])

    # ── Test Attempts Table ───────────────────────────────────
    op.create_table(
        'test_attempts',
        sa.Column('id', sa.String(36), primary_key=True),
        sa.Column('test_id', sa.String(36),
                  sa.ForeignKey('online_tests.id'), nullable=False),
        sa.Column('student_phone', sa.Text(), nullable=False),
        sa.Column('student_name', sa.Text(), nullable=False, server_default='Unknown'),
        sa.Column('batch_name', sa.Text(), nullable=False, server_default=''),
        sa.Column('status', sa.Text(), nullable=False, server_default='in_progress'),
        sa.Column('started_at', sa.DateTime(), nullable=False),
        sa.Column('submitted_at', sa.DateTime(), nullable=True),
        sa.Column('questions', sa.Text(), nullable=False, server_default='[]'),
        sa.Column('answers', sa.Text(), nullable=False, server_default='[]'),
        sa.Column('score', sa.Float(), nullable=False, server_default='0'),
        sa.Column('percentage', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('time_spent', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('resume_count', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('warning_count', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('termination_reason', sa.Text(), nullable=True),
        sa.Column('version', sa.Integer(), nullable=False, server_default='1'),
        sa.Column('created_at', sa.DateTime(),
                  server_default=sa.func.now(), nullable=True),
        sa.UniqueConstraint('test_id', 'student_phone', name='uq_test_attempts_test_student'),
    )

    # Indexes for common query patterns on attempts
    op.create_index('ix_test_attempts_test_status', 'test_attempts', ['test_id', 'status'])
    op.create_index('ix_test_attempts_student_phone', 'test_attempts', ['student_phone'])


def downgrade() -> None:
    """Drop all tables in reverse dependency order."""
    op.drop_index('ix_test_attempts_student_phone', table_name='test_attempts')
    op.drop_index('ix_test_attempts_test_status', table_name='test_attempts')
    op.drop_table('test_attempts')
    op.drop_index('ix_online_tests_created_by', table_name='online_tests')
    op.drop_index('ix_online_tests_status', table_name='online_tests')
    op.drop_table('online_tests')
    op.drop_table('students')
