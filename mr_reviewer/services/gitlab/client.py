"""GitLab REST API client - data layer."""

from typing import Any, Optional
from urllib.parse import quote_plus

import httpx

from mr_reviewer.config import settings
from mr_reviewer.core.exceptions import ExternalServiceError, FileNotFoundInRepoError
from mr_reviewer.core.logging import get_logger

logger = get_logger("gitlab.client")

# API pagination
DEFAULT_PER_PAGE = 100
MAX_PER_PAGE = 100

CLIENT_TIMEOUT_SECONDS = 30.0

_gitlab_client: Optional["GitLabClient"] = None


def _project(project_id: str | int) -> str | int:
    if isinstance(project_id, str):
        return quote_plus(project_id)
    return project_id


class GitLabClient:
    """Async client for the GitLab REST API v4."""

    def __init__(
        self,
        access_token: str,
        host: str = "https://gitlab.com",
        per_page: int = DEFAULT_PER_PAGE,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.api_url = f"{host.rstrip('/')}/api/v4"
        self.per_page = min(per_page, MAX_PER_PAGE)
        self._client = httpx.AsyncClient(
            headers={
                "Authorization": f"Bearer {access_token}",
                "Accept": "application/json",
            },
            timeout=CLIENT_TIMEOUT_SECONDS,
            transport=transport,
        )

    async def aclose(self) -> None:
        """Close the HTTP client."""
        await self._client.aclose()

    async def __aenter__(self) -> "GitLabClient":
        return self

    async def __aexit__(self, *args: Any) -> None:
        await self.aclose()

    async def _request(
        self,
        method: str,
        endpoint: str,
        params: dict[str, Any] | None = None,
        json: dict[str, Any] | None = None,
    ) -> httpx.Response:
        """Send a request and turn transport and HTTP failures into ExternalServiceError."""
        url = f"{self.api_url}{endpoint}"
        try:
            response = await self._client.request(method, url, params=params, json=json)
        except httpx.HTTPError as e:
            logger.error(f"GitLab {method} {endpoint} failed: {e}")
            raise ExternalServiceError("GitLab", str(e)) from e

        if response.is_error:
            logger.warning(f"GitLab {method} {endpoint} returned {response.status_code}")
            raise ExternalServiceError(
                "GitLab",
                f"{method} {endpoint} returned {response.status_code}",
                status_code=response.status_code,
            )
        return response

    async def _get_paginated(
        self, endpoint: str, params: dict[str, Any] | None = None
    ) -> list[dict[str, Any]]:
        """Make paginated GET requests and return all results."""
        results: list[dict[str, Any]] = []
        params = dict(params or {})
        params["per_page"] = self.per_page
        page = 1

        while True:
            params["page"] = page
            response = await self._request("GET", endpoint, params=params)
            data = response.json()

            if not data:
                break

            results.extend(data)

            total_pages = response.headers.get("x-total-pages")
            if total_pages and page >= int(total_pages):
                break

            if len(data) < self.per_page:
                break

            page += 1

        return results

    # ========== Users ==========

    async def get_current_user(self) -> dict[str, Any]:
        """Get the user the access token belongs to."""
        response = await self._request("GET", "/user")
        return response.json()

    # ========== Merge Requests ==========

    async def get_merge_request(self, project_id: str | int, mr_iid: int) -> dict[str, Any]:
        response = await self._request(
            "GET", f"/projects/{_project(project_id)}/merge_requests/{mr_iid}"
        )
        return response.json()

    async def get_merge_request_diffs(
        self, project_id: str | int, mr_iid: int
    ) -> list[dict[str, Any]]:
        """Get the file diffs of a merge request."""
        return await self._get_paginated(
            f"/projects/{_project(project_id)}/merge_requests/{mr_iid}/diffs"
        )

    # ========== Repository ==========

    async def get_file_raw(self, project_id: str | int, file_path: str, ref: str) -> str:
        """Get a file's text at ``ref``.

        Raises:
            FileNotFoundInRepoError: If the file does not exist at ``ref``
        """
        endpoint = (
            f"/projects/{_project(project_id)}/repository/files/{quote_plus(file_path)}/raw"
        )
        try:
            response = await self._request("GET", endpoint, params={"ref": ref})
        except ExternalServiceError as e:
            if e.upstream_status == 404:
                raise FileNotFoundInRepoError(file_path, ref) from e
            raise
        return response.text

    async def get_branch(self, project_id: str | int, branch: str) -> dict[str, Any]:
        response = await self._request(
            "GET", f"/projects/{_project(project_id)}/repository/branches/{quote_plus(branch)}"
        )
        return response.json()

    # ========== Discussions & Notes ==========

    async def get_merge_request_discussions(
        self, project_id: str | int, mr_iid: int
    ) -> list[dict[str, Any]]:
        return await self._get_paginated(
            f"/projects/{_project(project_id)}/merge_requests/{mr_iid}/discussions"
        )

    async def create_merge_request_discussion(
        self,
        project_id: str | int,
        mr_iid: int,
        body: str,
        position: dict[str, Any] | None = None,
    ) -> dict[str, Any]:
        """Start a discussion, anchored to a diff line when ``position`` is given."""
        payload: dict[str, Any] = {"body": body}
        if position:
            payload["position"] = position
        response = await self._request(
            "POST",
            f"/projects/{_project(project_id)}/merge_requests/{mr_iid}/discussions",
            json=payload,
        )
        return response.json()

    async def add_discussion_note(
        self, project_id: str | int, mr_iid: int, discussion_id: str, body: str
    ) -> dict[str, Any]:
        response = await self._request(
            "POST",
            f"/projects/{_project(project_id)}/merge_requests/{mr_iid}"
            f"/discussions/{discussion_id}/notes",
            json={"body": body},
        )
        return response.json()

    async def resolve_discussion(
        self, project_id: str | int, mr_iid: int, discussion_id: str, resolved: bool = True
    ) -> dict[str, Any]:
        response = await self._request(
            "PUT",
            f"/projects/{_project(project_id)}/merge_requests/{mr_iid}/discussions/{discussion_id}",
            params={"resolved": str(resolved).lower()},
        )
        return response.json()

    async def create_merge_request_note(
        self, project_id: str | int, mr_iid: int, body: str
    ) -> dict[str, Any]:
        response = await self._request(
            "POST",
            f"/projects/{_project(project_id)}/merge_requests/{mr_iid}/notes",
            json={"body": body},
        )
        return response.json()

    async def edit_merge_request_note(
        self, project_id: str | int, mr_iid: int, note_id: int, body: str
    ) -> dict[str, Any]:
        response = await self._request(
            "PUT",
            f"/projects/{_project(project_id)}/merge_requests/{mr_iid}/notes/{note_id}",
            json={"body": body},
        )
        return response.json()

    async def delete_merge_request_note(
        self, project_id: str | int, mr_iid: int, note_id: int
    ) -> None:
        await self._request(
            "DELETE",
            f"/projects/{_project(project_id)}/merge_requests/{mr_iid}/notes/{note_id}",
        )


def get_gitlab_client() -> GitLabClient:
    """Get the shared GitLab client built from settings."""
    global _gitlab_client

    if _gitlab_client:
        return _gitlab_client

    if not settings.gitlab_access_token:
        raise ValueError("GITLAB_ACCESS_TOKEN not configured")

    _gitlab_client = GitLabClient(
        access_token=settings.gitlab_access_token,
        host=settings.gitlab_host,
    )
    logger.info(f"GitLab client initialized for {settings.gitlab_host}")
    return _gitlab_client
