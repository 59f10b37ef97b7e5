"""Add behaviour clustering tables

Revision ID: 3c1f8e2a9b70
Revises:
Create Date: 2026-10-19 10:12:41.508113

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = '3c1f8e2a9b70'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

CONFIGURATION_KEY = ['course_id', 'owner_id', 'configuration_id']
RUN_KEY = ['course_id', 'owner_id', 'configuration_id', 'run_id', 'iteration']


def upgrade() -> None:
    """Upgrade schema."""
    # Courses and raw logs
    op.create_table('behaviour_courses',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('name', sa.String(length=500), nullable=True),
        sa.Column('last_sync', sa.Integer(), nullable=False),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_table('access_logs',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('course_id', sa.Integer(), nullable=False),
        sa.Column('student_id', sa.String(length=100), nullable=False),
        sa.Column('module_id', sa.Integer(), nullable=False),
        sa.Column('time', sa.Integer(), nullable=False),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index(op.f('ix_access_logs_course_id'), 'access_logs', ['course_id'], unique=False)
    op.create_index('ix_access_logs_course_student_time', 'access_logs', ['course_id', 'student_id', 'time'], unique=False)

    # Graph configurations
    op.create_table('node_coordinates',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('course_id', sa.Integer(), nullable=False),
        sa.Column('owner_id', sa.String(length=100), nullable=False),
        sa.Column('configuration_id', sa.Integer(), nullable=False),
        sa.Column('module_id', sa.Integer(), nullable=False),
        sa.Column('x', sa.Float(), nullable=False),
        sa.Column('y', sa.Float(), nullable=False),
        sa.Column('visible', sa.Boolean(), nullable=False),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index('ix_node_coordinates_configuration', 'node_coordinates', CONFIGURATION_KEY, unique=False)
    op.create_table('configuration_scales',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('course_id', sa.Integer(), nullable=False),
        sa.Column('owner_id', sa.String(length=100), nullable=False),
        sa.Column('configuration_id', sa.Integer(), nullable=False),
        sa.Column('scale', sa.Float(), nullable=False),
        sa.Column('center_x', sa.Float(), nullable=False),
        sa.Column('center_y', sa.Float(), nullable=False),
        sa.Column('farthest_module_id', sa.Integer(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index('ix_configuration_scales_configuration', 'configuration_scales', CONFIGURATION_KEY, unique=True)

    # Student centroids
    op.create_table('student_centroids',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('course_id', sa.Integer(), nullable=False),
        sa.Column('owner_id', sa.String(length=100), nullable=False),
        sa.Column('configuration_id', sa.Integer(), nullable=False),
        sa.Column('student_id', sa.String(length=100), nullable=False),
        sa.Column('x', sa.Float(), nullable=False),
        sa.Column('y', sa.Float(), nullable=False),
        sa.Column('count', sa.Integer(), nullable=False),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index('ix_student_centroids_student', 'student_centroids', CONFIGURATION_KEY + ['student_id'], unique=True)
    op.create_table('student_centres',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('course_id', sa.Integer(), nullable=False),
        sa.Column('owner_id', sa.String(length=100), nullable=False),
        sa.Column('configuration_id', sa.Integer(), nullable=False),
        sa.Column('student_id', sa.String(length=100), nullable=False),
        sa.Column('x', sa.Float(), nullable=False),
        sa.Column('y', sa.Float(), nullable=False),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index('ix_student_centres_student', 'student_centres', CONFIGURATION_KEY + ['student_id'], unique=True)

    # Clustering runs
    op.create_table('cluster_records',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('course_id', sa.Integer(), nullable=False),
        sa.Column('owner_id', sa.String(length=100), nullable=False),
        sa.Column('configuration_id', sa.Integer(), nullable=False),
        sa.Column('run_id', sa.Integer(), nullable=False),
        sa.Column('iteration', sa.Integer(), nullable=False),
        sa.Column('cluster_number', sa.Integer(), nullable=False),
        sa.Column('x', sa.Float(), nullable=False),
        sa.Column('y', sa.Float(), nullable=False),
        sa.Column('uses_geometric_centroid', sa.Boolean(), nullable=False),
        sa.Column('colour', sa.String(length=50), nullable=True),
        sa.Column('converged', sa.Boolean(), nullable=False),
        sa.Column('regenerated', sa.Boolean(), nullable=False),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index('ix_cluster_records_run', 'cluster_records', RUN_KEY, unique=False)
    op.create_table('cluster_members',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('course_id', sa.Integer(), nullable=False),
        sa.Column('owner_id', sa.String(length=100), nullable=False),
        sa.Column('configuration_id', sa.Integer(), nullable=False),
        sa.Column('run_id', sa.Integer(), nullable=False),
        sa.Column('iteration', sa.Integer(), nullable=False),
        sa.Column('cluster_number', sa.Integer(), nullable=False),
        sa.Column('student_id', sa.String(length=100), nullable=False),
        sa.Column('x', sa.Float(), nullable=False),
        sa.Column('y', sa.Float(), nullable=False),
        sa.Column('pinned', sa.Boolean(), nullable=False),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index('ix_cluster_members_run', 'cluster_members', RUN_KEY, unique=False)
    op.create_table('manual_clusters',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('course_id', sa.Integer(), nullable=False),
        sa.Column('owner_id', sa.String(length=100), nullable=False),
        sa.Column('configuration_id', sa.Integer(), nullable=False),
        sa.Column('run_id', sa.Integer(), nullable=False),
        sa.Column('iteration', sa.Integer(), nullable=False),
        sa.Column('cluster_number', sa.Integer(), nullable=False),
        sa.Column('x', sa.Float(), nullable=False),
        sa.Column('y', sa.Float(), nullable=False),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index('ix_manual_clusters_run', 'manual_clusters', RUN_KEY, unique=False)
    op.create_table('manual_members',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('course_id', sa.Integer(), nullable=False),
        sa.Column('owner_id', sa.String(length=100), nullable=False),
        sa.Column('configuration_id', sa.Integer(), nullable=False),
        sa.Column('run_id', sa.Integer(), nullable=False),
        sa.Column('iteration', sa.Integer(), nullable=False),
        sa.Column('cluster_number', sa.Integer(), nullable=False),
        sa.Column('student_id', sa.String(length=100), nullable=False),
        sa.Column('x', sa.Float(), nullable=False),
        sa.Column('y', sa.Float(), nullable=False),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index('ix_manual_members_run', 'manual_members', RUN_KEY, unique=False)

    # Monitoring
    op.create_table('clustering_quality_metrics',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('course_id', sa.Integer(), nullable=False),
        sa.Column('owner_id', sa.String(length=100), nullable=False),
        sa.Column('configuration_id', sa.Integer(), nullable=False),
        sa.Column('run_id', sa.Integer(), nullable=False),
        sa.Column('trigger', sa.String(), nullable=False),
        sa.Column('variant', sa.String(), nullable=False),
        sa.Column('n_clusters', sa.Integer(), nullable=False),
        sa.Column('total_students', sa.Integer(), nullable=False),
        sa.Column('passes', sa.Integer(), nullable=False),
        sa.Column('iterations_recorded', sa.Integer(), nullable=False),
        sa.Column('regenerated_clusters', sa.Integer(), nullable=False),
        sa.Column('converged', sa.Boolean(), nullable=False),
        sa.Column('silhouette_score', sa.Float(), nullable=True),
        sa.Column('processing_time_seconds', sa.Float(), nullable=False),
        sa.Column('memory_usage_mb', sa.Float(), nullable=False),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index(op.f('ix_clustering_quality_metrics_course_id'), 'clustering_quality_metrics', ['course_id'], unique=False)
    op.create_index('ix_clustering_quality_metrics_course_created', 'clustering_quality_metrics', ['course_id', 'created_at'], unique=False)

    op.create_table('clustering_alerts',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('course_id', sa.Integer(), nullable=False),
        sa.Column('owner_id', sa.String(length=100), nullable=False),
        sa.Column('configuration_id', sa.Integer(), nullable=False),
        sa.Column('run_id', sa.Integer(), nullable=False),
        sa.Column('alert_type', sa.String(), nullable=False),
        sa.Column('alert_level', sa.String(), nullable=False),
        sa.Column('message', sa.String(), nullable=False),
        sa.Column('details', sa.String(), nullable=False),
        sa.Column('silhouette_score', sa.Float(), nullable=True),
        sa.Column('threshold', sa.Float(), nullable=True),
        sa.Column('resolved', sa.Boolean(), nullable=False),
        sa.Column('resolved_at', sa.DateTime(), nullable=True),
        sa.Column('resolution_notes', sa.String(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index(op.f('ix_clustering_alerts_course_id'), 'clustering_alerts', ['course_id'], unique=False)
    op.create_index('ix_clustering_alerts_type_resolved', 'clustering_alerts', ['alert_type', 'resolved'], unique=False)
    op.create_index('ix_clustering_alerts_level_resolved', 'clustering_alerts', ['alert_level', 'resolved'], unique=False)


def downgrade() -> None:
    """Downgrade schema."""
    for table in (
        'clustering_alerts',
        'clustering_quality_metrics',
        'manual_members',
        'manual_clusters',
        'cluster_members',
        'cluster_records',
        'student_centres',
        'student_centroids',
        'configuration_scales',
        'node_coordinates',
        'access_logs',
        'behaviour_courses',
    ):
        op.drop_table(table)
