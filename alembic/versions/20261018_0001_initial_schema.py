"""Initial schema - adaptive assessment engine

Revision ID: 0001
Revises:
Create Date: 2026-10-18

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision: str = '0001'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    # Generated batches (referenced by items)
    op.create_table(
        'generated_assessments',
        sa.Column('id', sa.Uuid(), primary_key=True),
        sa.Column('topic', sa.String(255), nullable=False),
        sa.Column('topic_key', sa.String(255), nullable=False),
        sa.Column('title', sa.String(500), nullable=False),
        sa.Column('items', sa.JSON(), nullable=False),
        sa.Column('raw_response', sa.Text(), nullable=True),
        sa.Column('validated', sa.Boolean(), nullable=False, default=False),
        sa.Column('status', sa.String(20), nullable=False, default='draft'),
        sa.Column('created_by', sa.Uuid(), nullable=True),
        sa.Column('published_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('published_by', sa.Uuid(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
    )
    op.create_index('ix_generated_assessments_topic_status', 'generated_assessments', ['topic_key', 'status'])
    op.create_index('ix_generated_assessments_created', 'generated_assessments', ['created_at'])

    # Item bank
    op.create_table(
        'items',
        sa.Column('id', sa.Uuid(), primary_key=True),
        sa.Column('item_type', sa.String(20), nullable=False, index=True),
        sa.Column('question', sa.Text(), nullable=False),
        sa.Column('choices', sa.JSON(), nullable=False),
        sa.Column('answer', sa.JSON(), nullable=False),
        sa.Column('grading_method', sa.String(30), nullable=False),
        sa.Column('difficulty', sa.Integer(), nullable=False, default=3, index=True),
        sa.Column('bloom', sa.String(20), nullable=True),
        sa.Column('topics', sa.JSON(), nullable=False),
        sa.Column('skills', sa.JSON(), nullable=False),
        sa.Column('hints', sa.JSON(), nullable=False),
        sa.Column('explanation', sa.Text(), nullable=False, default=''),
        sa.Column('ai_generated', sa.Boolean(), nullable=False, default=False),
        sa.Column('seed_id', sa.String(255), nullable=True),
        sa.Column('batch_id', sa.Uuid(), sa.ForeignKey('generated_assessments.id', ondelete='SET NULL'), nullable=True, index=True),
        sa.Column('created_by', sa.Uuid(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
    )

    op.create_table(
        'item_topics',
        sa.Column('id', sa.Uuid(), primary_key=True),
        sa.Column('item_id', sa.Uuid(), sa.ForeignKey('items.id', ondelete='CASCADE'), nullable=False),
        sa.Column('topic_key', sa.String(255), nullable=False),
        sa.UniqueConstraint('item_id', 'topic_key', name='uq_item_topics_item_topic'),
    )
    op.create_index('ix_item_topics_topic_key', 'item_topics', ['topic_key'])

    # Sessions
    op.create_table(
        'assessment_sessions',
        sa.Column('id', sa.Uuid(), primary_key=True),
        sa.Column('user_id', sa.Uuid(), nullable=False, index=True),
        sa.Column('mode', sa.String(20), nullable=False),
        sa.Column('item_ids', sa.JSON(), nullable=False),
        sa.Column('current_index', sa.Integer(), nullable=False, default=0),
        sa.Column('status', sa.String(20), nullable=False, default='active'),
        sa.Column('score', sa.Integer(), nullable=True),
        sa.Column('proctored', sa.Boolean(), nullable=False, default=False),
        sa.Column('proctor_config', sa.JSON(), nullable=True),
        sa.Column('tab_switch_allowance', sa.Integer(), nullable=False, default=2),
        sa.Column('minor_violations', sa.Integer(), nullable=False, default=0),
        sa.Column('major_violations', sa.Integer(), nullable=False, default=0),
        sa.Column('total_violations', sa.Integer(), nullable=False, default=0),
        sa.Column('tab_switch_count', sa.Integer(), nullable=False, default=0),
        sa.Column('risk_score', sa.Integer(), nullable=False, default=0),
        sa.Column('invalidated', sa.Boolean(), nullable=False, default=False),
        sa.Column('invalidated_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('completed_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('metadata', sa.JSON(), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
    )
    op.create_index('ix_assessment_sessions_user_created', 'assessment_sessions', ['user_id', 'created_at'])

    # Attempts (one per session/item)
    op.create_table(
        'attempts',
        sa.Column('id', sa.Uuid(), primary_key=True),
        sa.Column('session_id', sa.Uuid(), sa.ForeignKey('assessment_sessions.id', ondelete='CASCADE'), nullable=False, index=True),
        sa.Column('item_id', sa.Uuid(), sa.ForeignKey('items.id'), nullable=False, index=True),
        sa.Column('user_id', sa.Uuid(), nullable=False, index=True),
        sa.Column('is_correct', sa.Boolean(), nullable=False),
        sa.Column('user_answer', sa.JSON(), nullable=True),
        sa.Column('score', sa.Float(), nullable=False, default=0.0),
        sa.Column('grading_details', sa.JSON(), nullable=False),
        sa.Column('explanation', sa.Text(), nullable=False, default=''),
        sa.Column('needs_manual_grading', sa.Boolean(), nullable=False, default=False),
        sa.Column('time_taken_ms', sa.Integer(), nullable=False, default=0),
        sa.Column('proctor_log_ids', sa.JSON(), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.UniqueConstraint('session_id', 'item_id', name='uq_attempts_session_item'),
    )

    # Proctoring log (append-only)
    op.create_table(
        'proctor_logs',
        sa.Column('id', sa.Uuid(), primary_key=True),
        sa.Column('session_id', sa.Uuid(), sa.ForeignKey('assessment_sessions.id', ondelete='CASCADE'), nullable=False),
        sa.Column('user_id', sa.Uuid(), nullable=False, index=True),
        sa.Column('violation_type', sa.String(40), nullable=False),
        sa.Column('severity', sa.String(10), nullable=False),
        sa.Column('details', sa.JSON(), nullable=False),
        sa.Column('timestamp', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
    )
    op.create_index('ix_proctor_logs_session_time', 'proctor_logs', ['session_id', 'timestamp'])

    # Mastery
    op.create_table(
        'topic_mastery',
        sa.Column('id', sa.Uuid(), primary_key=True),
        sa.Column('user_id', sa.Uuid(), nullable=False, index=True),
        sa.Column('topic', sa.String(255), nullable=False),
        sa.Column('mastery', sa.Float(), nullable=False, default=0.0),
        sa.Column('attempts', sa.Integer(), nullable=False, default=0),
        sa.Column('streak', sa.Integer(), nullable=False, default=0),
        sa.Column('time_on_task_ms', sa.BigInteger(), nullable=False, default=0),
        sa.Column('last_active_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.UniqueConstraint('user_id', 'topic', name='uq_topic_mastery_user_topic'),
    )

    # Generation dedup leases
    op.create_table(
        'generation_leases',
        sa.Column('key', sa.String(512), primary_key=True),
        sa.Column('holder', sa.String(64), nullable=False),
        sa.Column('acquired_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('expires_at', sa.DateTime(timezone=True), nullable=False, index=True),
    )

    # Event log (append-only audit)
    op.create_table(
        'event_logs',
        sa.Column('id', sa.Uuid(), primary_key=True),
        sa.Column('event_type', sa.String(100), nullable=False, index=True),
        sa.Column('entity_type', sa.String(50), nullable=False),
        sa.Column('entity_id', sa.Uuid(), nullable=False, index=True),
        sa.Column('user_id', sa.Uuid(), nullable=True, index=True),
        sa.Column('payload', sa.JSON(), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False, index=True),
    )
    op.create_index('ix_event_logs_entity', 'event_logs', ['entity_type', 'entity_id'])
    op.create_index('ix_event_logs_type_time', 'event_logs', ['event_type', 'created_at'])


def downgrade() -> None:
    op.drop_table('event_logs')
    op.drop_table('generation_leases')
    op.drop_table('topic_mastery')
    op.drop_table('proctor_logs')
    op.drop_table('attempts')
    op.drop_table('assessment_sessions')
    op.drop_table('item_topics')
    op.drop_table('items')
    op.drop_table('generated_assessments')
