"""Services package - Business logic layer."""

from orchestrator.services.documentation import (
    create_documentation_repository,
    get_documentation_repository,
    list_repositories_due_for_reindexing,
)
from orchestrator.services.jobs import (
    cancel_job,
    complete_job,
    create_documentation_job,
    create_project_job,
    fail_job,
    get_active_documentation_job,
    get_active_job,
    get_job,
    get_jobs_for_project,
    start_job,
    update_progress,
)
from orchestrator.services.projects import (
    create_project,
    get_project,
    list_projects_due_for_indexing,
    record_webhook,
    reset_to_idle,
)

__all__ = [
    # Projects
    "create_project",
    "get_project",
    "list_projects_due_for_indexing",
    "record_webhook",
    "reset_to_idle",
    # Documentation
    "create_documentation_repository",
    "get_documentation_repository",
    "list_repositories_due_for_reindexing",
    # Jobs
    "create_project_job",
    "create_documentation_job",
    "get_job",
    "get_active_job",
    "get_active_documentation_job",
    "get_jobs_for_project",
    "start_job",
    "update_progress",
    "complete_job",
    "fail_job",
    "cancel_job",
]
