"""Initial schema

Revision ID: 001
Revises:
Create Date: 2026-10-18

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision: str = "001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

ACTIVE_JOB = sa.text("status IN ('PENDING', 'RUNNING')")


def _timestamps() -> list[sa.Column]:
    return [
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            server_default=sa.text("now()"),
            nullable=False,
        ),
        sa.Column(
            "updated_at",
            sa.DateTime(timezone=True),
            server_default=sa.text("now()"),
            nullable=False,
        ),
    ]


def _job_columns() -> list[sa.Column]:
    return [
        sa.Column("id", postgresql.UUID(as_uuid=False), nullable=False),
        sa.Column("status", sa.String(32), nullable=False, server_default="PENDING"),
        sa.Column("branch", sa.String(255), nullable=False, server_default="main"),
        sa.Column("triggered_by", sa.String(32), nullable=False, server_default="MANUAL"),
        sa.Column("progress", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("commit_hash", sa.String(64), nullable=True),
        sa.Column("error_message", sa.Text(), nullable=True),
        sa.Column("started_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            server_default=sa.text("now()"),
            nullable=False,
        ),
    ]


def upgrade() -> None:
    # Statuses are VARCHAR to avoid enum migrations
    op.create_table(
        "projects",
        sa.Column("id", postgresql.UUID(as_uuid=False), nullable=False),
        sa.Column("name", sa.String(256), nullable=False),
        sa.Column("git_repo", sa.String(1024), nullable=False),
        sa.Column("index_status", sa.String(32), nullable=False, server_default="IDLE"),
        sa.Column("index_progress", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("last_indexed_commit", sa.String(64), nullable=True),
        sa.Column("last_indexed_branch", sa.String(255), nullable=True),
        sa.Column("last_indexed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("file_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("vector_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("last_error", sa.Text(), nullable=True),
        sa.Column("webhook_enabled", sa.Boolean(), nullable=False, server_default="true"),
        sa.Column("webhook_secret", sa.String(256), nullable=True),
        sa.Column("last_webhook_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("last_webhook_commit", sa.String(64), nullable=True),
        sa.Column("last_webhook_branch", sa.String(255), nullable=True),
        sa.Column("last_webhook_author", sa.String(256), nullable=True),
        sa.Column(
            "scheduled_indexing_enabled", sa.Boolean(), nullable=False, server_default="false"
        ),
        sa.Column(
            "scheduled_indexing_interval", sa.Integer(), nullable=False, server_default="1"
        ),
        sa.Column(
            "scheduled_indexing_branch", sa.String(255), nullable=False, server_default="main"
        ),
        sa.Column("scheduled_indexing_last_run", sa.DateTime(timezone=True), nullable=True),
        sa.Column("scheduled_indexing_next_run", sa.DateTime(timezone=True), nullable=True),
        *_timestamps(),
        sa.PrimaryKeyConstraint("id", name=op.f("pk_projects")),
        sa.UniqueConstraint("name", name=op.f("uq_projects_name")),
    )
    op.create_index(op.f("ix_projects_index_status"), "projects", ["index_status"])
    op.create_index(
        op.f("ix_projects_scheduled_indexing_enabled"),
        "projects",
        ["scheduled_indexing_enabled"],
    )
    op.create_index(
        op.f("ix_projects_scheduled_indexing_next_run"),
        "projects",
        ["scheduled_indexing_next_run"],
    )

    op.create_table(
        "documentation_repositories",
        sa.Column("id", postgresql.UUID(as_uuid=False), nullable=False),
        sa.Column("name", sa.String(256), nullable=False),
        sa.Column("url", sa.String(1024), nullable=False),
        sa.Column("branch", sa.String(255), nullable=False, server_default="main"),
        sa.Column("source_type", sa.String(32), nullable=False, server_default="git"),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default="true"),
        sa.Column("last_indexed_commit", sa.String(64), nullable=True),
        sa.Column("last_indexed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("total_documents", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("last_indexing_status", sa.String(32), nullable=True),
        sa.Column("last_indexing_error", sa.Text(), nullable=True),
        sa.Column("last_indexing_duration", sa.Float(), nullable=True),
        sa.Column("auto_reindex_enabled", sa.Boolean(), nullable=False, server_default="true"),
        sa.Column("reindex_interval", sa.Integer(), nullable=False, server_default="14"),
        sa.Column("next_reindex_at", sa.DateTime(timezone=True), nullable=True),
        *_timestamps(),
        sa.PrimaryKeyConstraint("id", name=op.f("pk_documentation_repositories")),
    )
    op.create_index(
        op.f("ix_documentation_repositories_next_reindex_at"),
        "documentation_repositories",
        ["next_reindex_at"],
    )

    op.create_table(
        "indexing_jobs",
        *_job_columns(),
        sa.Column("project_id", postgresql.UUID(as_uuid=False), nullable=False),
        sa.Column("full_reindex", sa.Boolean(), nullable=False, server_default="false"),
        sa.Column("current_file", sa.String(1024), nullable=True),
        sa.Column("total_files", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("processed_files", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("error_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("vectors_added", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("vectors_updated", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("vectors_deleted", sa.Integer(), nullable=False, server_default="0"),
        sa.PrimaryKeyConstraint("id", name=op.f("pk_indexing_jobs")),
        sa.ForeignKeyConstraint(
            ["project_id"],
            ["projects.id"],
            name=op.f("fk_indexing_jobs_project_id_projects"),
            ondelete="CASCADE",
        ),
    )
    op.create_index(op.f("ix_indexing_jobs_project_id"), "indexing_jobs", ["project_id"])
    op.create_index(op.f("ix_indexing_jobs_status"), "indexing_jobs", ["status"])
    op.create_index(
        "uq_indexing_jobs_active_project",
        "indexing_jobs",
        ["project_id"],
        unique=True,
        postgresql_where=ACTIVE_JOB,
    )

    op.create_table(
        "documentation_indexing_jobs",
        *_job_columns(),
        sa.Column("repository_id", postgresql.UUID(as_uuid=False), nullable=False),
        sa.Column("source_type", sa.String(32), nullable=False, server_default="git"),
        sa.Column("force_reindex", sa.Boolean(), nullable=False, server_default="false"),
        sa.Column("total_documents", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("processed_documents", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("documents_added", sa.Integer(), nullable=False, server_default="0"),
        sa.PrimaryKeyConstraint("id", name=op.f("pk_documentation_indexing_jobs")),
        sa.ForeignKeyConstraint(
            ["repository_id"],
            ["documentation_repositories.id"],
            name=op.f("fk_documentation_indexing_jobs_repository_id_documentation_repositories"),
            ondelete="CASCADE",
        ),
    )
    op.create_index(
        op.f("ix_documentation_indexing_jobs_repository_id"),
        "documentation_indexing_jobs",
        ["repository_id"],
    )
    op.create_index(
        op.f("ix_documentation_indexing_jobs_status"),
        "documentation_indexing_jobs",
        ["status"],
    )
    op.create_index(
        "uq_documentation_indexing_jobs_active_repository",
        "documentation_indexing_jobs",
        ["repository_id"],
        unique=True,
        postgresql_where=ACTIVE_JOB,
    )

    op.create_table(
        "queue_entries",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("target_type", sa.String(32), nullable=False, server_default="project"),
        sa.Column("target_id", postgresql.UUID(as_uuid=False), nullable=False),
        sa.Column("job_id", postgresql.UUID(as_uuid=False), nullable=False),
        sa.Column("branch", sa.String(255), nullable=False, server_default="main"),
        sa.Column("full_reindex", sa.Boolean(), nullable=False, server_default="false"),
        sa.Column("triggered_by", sa.String(32), nullable=False),
        sa.Column("priority", sa.Integer(), nullable=False, server_default="5"),
        sa.Column("status", sa.String(32), nullable=False, server_default="WAITING"),
        sa.Column("attempts", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("last_error", sa.Text(), nullable=True),
        sa.Column("worker_id", sa.String(255), nullable=True),
        sa.Column(
            "enqueued_at",
            sa.DateTime(timezone=True),
            server_default=sa.text("now()"),
            nullable=False,
        ),
        sa.Column("available_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("started_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("finished_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("lease_expires_at", sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint("id", name=op.f("pk_queue_entries")),
    )
    op.create_index(op.f("ix_queue_entries_target_id"), "queue_entries", ["target_id"])
    op.create_index(op.f("ix_queue_entries_job_id"), "queue_entries", ["job_id"])
    op.create_index(
        "ix_queue_entries_dequeue_order",
        "queue_entries",
        ["status", "priority", "id"],
    )


def downgrade() -> None:
    op.drop_table("queue_entries")
    op.drop_table("documentation_indexing_jobs")
    op.drop_table("indexing_jobs")
    op.drop_table("documentation_repositories")
    op.drop_table("projects")
