"""GitLab service."""

from mr_reviewer.services.gitlab.client import GitLabClient, get_gitlab_client
from mr_reviewer.services.gitlab.service import (
    get_changed_files,
    get_file_versions,
    place_comments,
    run_review,
)

__all__ = [
    "GitLabClient",
    "get_gitlab_client",
    "get_changed_files",
    "get_file_versions",
    "place_comments",
    "run_review",
]
