"""Create matching queue, analytics, weight, experiment and audit tables

Revision ID: 001
Revises:
Create Date: 2026-10-18 09:00:00.000000

"""
from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision = '001'
down_revision = None
branch_labels = None
depends_on = None


def upgrade():
    # User directory (profiles are written by the profile service)
    op.create_table(
        'user_profile',
        sa.Column('user_id', postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column('display_name', sa.Text(), nullable=True),
        sa.Column('interests', postgresql.JSONB(astext_type=sa.Text()), server_default='[]', nullable=False),
        sa.Column('languages', postgresql.JSONB(astext_type=sa.Text()), server_default='[]', nullable=False),
        sa.Column('experience_level', sa.Text(), nullable=True),
        sa.Column('industry', sa.Text(), nullable=True),
        sa.Column('company', sa.Text(), nullable=True),
        sa.Column('role', sa.Text(), nullable=True),
        sa.Column('timezone', sa.Text(), nullable=True),
        sa.Column('org_id', postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column('segments', postgresql.JSONB(astext_type=sa.Text()), server_default='{}', nullable=False),
        sa.Column('updated_at', sa.BigInteger(), nullable=True),
        sa.PrimaryKeyConstraint('user_id'),
    )

    op.create_table(
        'user_embedding',
        sa.Column('user_id', postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column('model', sa.Text(), nullable=False),
        sa.Column('dim', sa.Integer(), nullable=False),
        sa.Column('vector', sa.LargeBinary(), nullable=False),
        sa.Column('updated_at', sa.BigInteger(), nullable=True),
        sa.PrimaryKeyConstraint('user_id'),
        sa.ForeignKeyConstraint(['user_id'], ['user_profile.user_id'], ondelete='CASCADE'),
    )

    # Matching queue
    op.create_table(
        'queue_entry',
        sa.Column('id', postgresql.UUID(as_uuid=True), server_default=sa.text('gen_random_uuid()'), nullable=False),
        sa.Column('user_id', postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column('available_from', sa.BigInteger(), nullable=False),
        sa.Column('available_to', sa.BigInteger(), nullable=False),
        sa.Column('constraints', postgresql.JSONB(astext_type=sa.Text()), server_default='{}', nullable=False),
        sa.Column('status', sa.Text(), server_default='waiting', nullable=False),
        sa.Column('matched_with', postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column('match_id', sa.Text(), nullable=True),
        sa.Column('created_at', sa.BigInteger(), nullable=False),
        sa.Column('updated_at', sa.BigInteger(), nullable=False),
        sa.PrimaryKeyConstraint('id'),
        sa.CheckConstraint("status IN ('waiting', 'matched', 'expired', 'cancelled')", name='ck_queue_entry_status'),
        sa.CheckConstraint('available_to > available_from', name='ck_queue_entry_window'),
    )

    # At most one waiting entry per user
    op.create_index(
        'uq_queue_entry_user_waiting',
        'queue_entry',
        ['user_id'],
        unique=True,
        postgresql_where=sa.text("status = 'waiting'"),
    )
    op.create_index('ix_queue_entry_status_created_at', 'queue_entry', ['status', 'created_at'])
    op.create_index('ix_queue_entry_status_available_to', 'queue_entry', ['status', 'available_to'])

    # Match outcomes, one row per participant
    op.create_table(
        'matching_analytics',
        sa.Column('id', postgresql.UUID(as_uuid=True), server_default=sa.text('gen_random_uuid()'), nullable=False),
        sa.Column('match_id', sa.Text(), nullable=False),
        sa.Column('user_id', postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column('partner_id', postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column('outcome', sa.Text(), nullable=False),
        sa.Column('score', sa.Float(), nullable=True),
        sa.Column('features', postgresql.JSONB(astext_type=sa.Text()), server_default='{}', nullable=False),
        sa.Column('weights', postgresql.JSONB(astext_type=sa.Text()), server_default='{}', nullable=False),
        sa.Column('weights_version', sa.Integer(), nullable=True),
        sa.Column('experiment_key', sa.Text(), nullable=True),
        sa.Column('variant_id', sa.Text(), nullable=True),
        sa.Column('wait_ms', sa.BigInteger(), nullable=True),
        sa.Column('feedback_rating', sa.Integer(), nullable=True),
        sa.Column('feedback_comment', sa.Text(), nullable=True),
        sa.Column('created_at', sa.BigInteger(), nullable=False),
        sa.Column('updated_at', sa.BigInteger(), nullable=False),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('match_id', 'user_id', name='uq_matching_analytics_match_user'),
        sa.CheckConstraint("outcome IN ('accepted', 'declined', 'completed')", name='ck_matching_analytics_outcome'),
        sa.CheckConstraint('feedback_rating IS NULL OR feedback_rating BETWEEN 1 AND 5', name='ck_matching_analytics_rating'),
    )
    op.create_index('ix_matching_analytics_user_id_created_at', 'matching_analytics', ['user_id', 'created_at'])
    op.create_index('ix_matching_analytics_outcome_created_at', 'matching_analytics', ['outcome', 'created_at'])
    op.create_index('ix_matching_analytics_experiment', 'matching_analytics', ['experiment_key', 'variant_id'])

    # Scoring weight versions
    op.create_table(
        'weight_version',
        sa.Column('id', postgresql.UUID(as_uuid=True), server_default=sa.text('gen_random_uuid()'), nullable=False),
        sa.Column('version', sa.Integer(), nullable=False),
        sa.Column('weights', postgresql.JSONB(astext_type=sa.Text()), nullable=False),
        sa.Column('status', sa.Text(), server_default='proposed', nullable=False),
        sa.Column('sample_size', sa.Integer(), nullable=True),
        sa.Column('improvement', sa.Float(), nullable=True),
        sa.Column('correlations', postgresql.JSONB(astext_type=sa.Text()), nullable=True),
        sa.Column('created_by', sa.Text(), nullable=True),
        sa.Column('promoted_by', sa.Text(), nullable=True),
        sa.Column('created_at', sa.BigInteger(), nullable=False),
        sa.Column('promoted_at', sa.BigInteger(), nullable=True),
        sa.PrimaryKeyConstraint('id'),
        sa.CheckConstraint("status IN ('proposed', 'active', 'retired', 'rejected')", name='ck_weight_version_status'),
    )
    op.create_index('uq_weight_version_version', 'weight_version', ['version'], unique=True)
    op.create_index(
        'uq_weight_version_single_active',
        'weight_version',
        ['status'],
        unique=True,
        postgresql_where=sa.text("status = 'active'"),
    )

    # Weight experiments
    op.create_table(
        'matching_experiment',
        sa.Column('id', postgresql.UUID(as_uuid=True), server_default=sa.text('gen_random_uuid()'), nullable=False),
        sa.Column('key', sa.Text(), nullable=False),
        sa.Column('name', sa.Text(), nullable=False),
        sa.Column('status', sa.Text(), server_default='draft', nullable=False),
        sa.Column('variants', postgresql.JSONB(astext_type=sa.Text()), nullable=False),
        sa.Column('significance_level', sa.Float(), server_default='0.05', nullable=False),
        sa.Column('min_participants', sa.Integer(), server_default='100', nullable=False),
        sa.Column('created_by', sa.Text(), nullable=True),
        sa.Column('created_at', sa.BigInteger(), nullable=False),
        sa.Column('started_at', sa.BigInteger(), nullable=True),
        sa.Column('ended_at', sa.BigInteger(), nullable=True),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('key', name='uq_matching_experiment_key'),
        sa.CheckConstraint("status IN ('draft', 'running', 'paused', 'completed')", name='ck_matching_experiment_status'),
    )

    op.create_table(
        'experiment_assignment',
        sa.Column('id', postgresql.UUID(as_uuid=True), server_default=sa.text('gen_random_uuid()'), nullable=False),
        sa.Column('experiment_id', postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column('user_id', postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column('variant_id', sa.Text(), nullable=False),
        sa.Column('assigned_at', sa.BigInteger(), nullable=False),
        sa.PrimaryKeyConstraint('id'),
        sa.ForeignKeyConstraint(['experiment_id'], ['matching_experiment.id'], ondelete='CASCADE'),
        sa.UniqueConstraint('experiment_id', 'user_id', name='uq_experiment_assignment_user'),
    )

    # Audit trail
    op.create_table(
        'audit_log',
        sa.Column('id', postgresql.UUID(as_uuid=True), server_default=sa.text('gen_random_uuid()'), nullable=False),
        sa.Column('actor_id', sa.Text(), nullable=True),
        sa.Column('action', sa.Text(), nullable=False),
        sa.Column('entity_type', sa.Text(), nullable=True),
        sa.Column('entity_id', sa.Text(), nullable=True),
        sa.Column('metadata_json', postgresql.JSONB(astext_type=sa.Text()), nullable=True),
        sa.Column('created_at', sa.BigInteger(), nullable=False),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_audit_log_entity', 'audit_log', ['entity_type', 'entity_id'])
    op.create_index('ix_audit_log_created_at', 'audit_log', ['created_at'])


def downgrade():
    op.drop_index('ix_audit_log_created_at', table_name='audit_log')
    op.drop_index('ix_audit_log_entity', table_name='audit_log')
    op.drop_table('audit_log')

    op.drop_table('experiment_assignment')
    op.drop_table('matching_experiment')

    op.drop_index('uq_weight_version_single_active', table_name='weight_version')
    op.drop_index('uq_weight_version_version', table_name='weight_version')
    op.drop_table('weight_version')

    op.drop_index('ix_matching_analytics_experiment', table_name='matching_analytics')
    op.drop_index('ix_matching_analytics_outcome_created_at', table_name='matching_analytics')
    op.drop_index('ix_matching_analytics_user_id_created_at', table_name='matching_analytics')
    op.drop_table('matching_analytics')

    op.drop_index('ix_queue_entry_status_available_to', table_name='queue_entry')
    op.drop_index('ix_queue_entry_status_created_at', table_name='queue_entry')
    op.drop_index('uq_queue_entry_user_waiting', table_name='queue_entry')
    op.drop_table('queue_entry')

    op.drop_table('user_embedding')
    op.drop_table('user_profile')
