"""Initial schema - analyses, questions, answers, summaries, jobs.

Revision ID: 00001
Revises:
Create Date: 2026-10-17

"""
from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = '00001'
down_revision = None
branch_labels = None
depends_on = None

ACTIVE_JOB_FILTER = sa.text("status IN ('pending', 'running')")


def upgrade() -> None:
    # analyses
    op.create_table(
        'analyses',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('project_id', sa.String(100), nullable=True),
        sa.Column('created_by', sa.String(255), nullable=True),
        sa.Column('source_text', sa.Text(), nullable=False),
        sa.Column('model_version', sa.String(100), nullable=True),
        sa.Column('project_overview', sa.JSON(), nullable=True),
        sa.Column('functional_requirements', sa.JSON(), nullable=True),
        sa.Column('non_functional_requirements', sa.JSON(), nullable=True),
        sa.Column('technical_specifications', sa.JSON(), nullable=True),
        sa.Column('business_requirements', sa.JSON(), nullable=True),
        sa.Column('keywords', sa.JSON(), nullable=True),
        sa.Column('risk_factors', sa.JSON(), nullable=True),
        sa.Column('questions_for_client', sa.JSON(), nullable=True),
        sa.Column('extra_fields', sa.JSON(), nullable=True),
        sa.Column('confidence_score', sa.Float(), nullable=True),
        sa.Column('processing_status', sa.String(20), nullable=False, server_default='pending'),
        sa.Column('degraded', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('warning', sa.Text(), nullable=True),
        sa.Column('error_message', sa.Text(), nullable=True),
        sa.Column('input_truncated', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('raw_response', sa.Text(), nullable=True),
        sa.Column('secondary_analysis', sa.JSON(), nullable=True),
        sa.Column('secondary_analysis_at', sa.DateTime(), nullable=True),
        sa.Column('completed_at', sa.DateTime(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('updated_at', sa.DateTime(), nullable=True),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('idx_analyses_project', 'analyses', ['project_id'])
    op.create_index('idx_analyses_status', 'analyses', ['processing_status'])

    # questions
    op.create_table(
        'questions',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('analysis_id', sa.Integer(), nullable=False),
        sa.Column('question_text', sa.Text(), nullable=False),
        sa.Column('question_type', sa.String(30), nullable=False, server_default='text_long'),
        sa.Column('category', sa.String(100), nullable=False, server_default='general'),
        sa.Column('priority', sa.String(10), nullable=False, server_default='medium'),
        sa.Column('context', sa.Text(), nullable=True),
        sa.Column('order_index', sa.Integer(), nullable=False),
        sa.Column('options', sa.JSON(), nullable=True),
        sa.Column('next_step_impact', sa.Text(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint('id'),
        sa.ForeignKeyConstraint(['analysis_id'], ['analyses.id'], ondelete='CASCADE'),
        sa.UniqueConstraint('analysis_id', 'order_index', name='uq_questions_analysis_order'),
    )
    op.create_index('idx_questions_analysis', 'questions', ['analysis_id'])

    # ai_answers
    op.create_table(
        'ai_answers',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('question_id', sa.Integer(), nullable=False),
        sa.Column('answer_text', sa.Text(), nullable=False),
        sa.Column('model_used', sa.String(100), nullable=True),
        sa.Column('confidence_score', sa.Float(), nullable=False, server_default='0.7'),
        sa.Column('generation_metadata', sa.JSON(), nullable=True),
        sa.Column('generated_at', sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint('id'),
        sa.ForeignKeyConstraint(['question_id'], ['questions.id'], ondelete='CASCADE'),
    )
    op.create_index('idx_ai_answers_question', 'ai_answers', ['question_id'])

    # user_responses
    op.create_table(
        'user_responses',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('question_id', sa.Integer(), nullable=False),
        sa.Column('user_id', sa.String(255), nullable=False),
        sa.Column('response_type', sa.String(20), nullable=False),
        sa.Column('final_answer', sa.Text(), nullable=False),
        sa.Column('ai_answer_id', sa.Integer(), nullable=True),
        sa.Column('user_input_text', sa.Text(), nullable=True),
        sa.Column('confidence_level', sa.Float(), nullable=True),
        sa.Column('notes', sa.Text(), nullable=True),
        sa.Column('is_final', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('answered_at', sa.DateTime(), nullable=False),
        sa.Column('updated_at', sa.DateTime(), nullable=True),
        sa.PrimaryKeyConstraint('id'),
        sa.ForeignKeyConstraint(['question_id'], ['questions.id'], ondelete='CASCADE'),
        sa.ForeignKeyConstraint(['ai_answer_id'], ['ai_answers.id'], ondelete='SET NULL'),
        sa.UniqueConstraint('question_id', 'user_id', name='uq_user_responses_question_user'),
    )
    op.create_index('idx_user_responses_user', 'user_responses', ['user_id'])

    # analysis_summaries
    op.create_table(
        'analysis_summaries',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('analysis_id', sa.Integer(), nullable=False),
        sa.Column('total_questions', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('answered_questions', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('ai_answers_used', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('user_answers_used', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('completion_percentage', sa.Float(), nullable=False, server_default='0'),
        sa.Column('consolidated_insights', sa.JSON(), nullable=True),
        sa.Column('degraded', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('model_used', sa.String(100), nullable=True),
        sa.Column('generated_by', sa.String(255), nullable=True),
        sa.Column('ready_for_market_research', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('ready_for_persona_analysis', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('ready_for_proposal_writing', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('summary_generated_at', sa.DateTime(), nullable=True),
        sa.Column('last_updated_at', sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint('id'),
        sa.ForeignKeyConstraint(['analysis_id'], ['analyses.id'], ondelete='CASCADE'),
        sa.UniqueConstraint('analysis_id'),
    )

    # jobs
    op.create_table(
        'jobs',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('analysis_id', sa.Integer(), nullable=True),
        sa.Column('job_type', sa.String(50), nullable=False),
        sa.Column('status', sa.String(20), nullable=False, server_default='pending'),
        sa.Column('priority', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('attempts', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('max_attempts', sa.Integer(), nullable=False, server_default='3'),
        sa.Column('payload', sa.JSON(), nullable=True),
        sa.Column('last_error', sa.Text(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('started_at', sa.DateTime(), nullable=True),
        sa.Column('completed_at', sa.DateTime(), nullable=True),
        sa.Column('scheduled_for', sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint('id'),
        sa.ForeignKeyConstraint(['analysis_id'], ['analyses.id'], ondelete='CASCADE'),
    )
    op.create_index('idx_jobs_pending', 'jobs', ['status', 'scheduled_for', 'priority'])
    op.create_index('idx_jobs_analysis', 'jobs', ['analysis_id'])
    op.create_index(
        'idx_jobs_idempotency',
        'jobs',
        ['analysis_id', 'job_type'],
        unique=True,
        sqlite_where=ACTIVE_JOB_FILTER,
        postgresql_where=ACTIVE_JOB_FILTER,
    )


def downgrade() -> None:
    op.drop_table('jobs')
    op.drop_table('analysis_summaries')
    op.drop_table('user_responses')
    op.drop_table('ai_answers')
    op.drop_table('questions')
    op.drop_table('analyses')
