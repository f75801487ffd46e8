"""
Jira Infrastructure
===================

Async Jira Cloud REST v3 client.

Wraps httpx with basic auth and a circuit breaker. Implements the
IIssueTracker port used by the status timer, plus the write operations
the slash commands need.
"""

from typing import Any, Dict, List, Optional, Sequence

import httpx

from config import settings
from core import IssueNotFoundException, JiraException
from shared.infrastructure.logging import get_logger
from shared.infrastructure.resilience import CircuitBreaker
from status_timer.application.services import IIssueTracker

logger = get_logger(__name__)

SEARCH_PAGE_SIZE = 100
CHANGELOG_PAGE_SIZE = 100


class JiraClient(IIssueTracker):
    """
    Jira REST client with circuit breaker.

    404 on an issue URL raises IssueNotFoundException; every other failure
    raises JiraException. While the breaker is open calls fail fast.
    """

    def __init__(
        self,
        base_url: Optional[str] = None,
        email: Optional[str] = None,
        api_token: Optional[str] = None,
        timeout_seconds: Optional[float] = None,
        http_client: Optional[httpx.AsyncClient] = None,
        circuit_breaker: Optional[CircuitBreaker] = None
    ):
        self._base_url = (base_url or settings.jira_base_url).rstrip("/")
        self._auth = (
            email if email is not None else settings.jira_email,
            api_token if api_token is not None else settings.jira_api_token,
        )
        self._timeout = timeout_seconds or settings.jira_timeout_seconds
        self._http_client = http_client
        self._circuit_breaker = circuit_breaker or CircuitBreaker("jira", failure_threshold=5, recovery_timeout=60)

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create HTTP client."""
        if self._http_client is None:
            self._http_client = httpx.AsyncClient(
                base_url=self._base_url,
                auth=self._auth,
                timeout=self._timeout,
                headers={"Accept": "application/json"}
            )
        return self._http_client

    async def _request(
        self,
        method: str,
        path: str,
        issue_key: Optional[str] = None,
        **kwargs: Any
    ) -> Any:
        if not self._circuit_breaker.allow_request():
            raise JiraException("circuit breaker open, request rejected")

        client = await self._get_client()
        try:
            response = await client.request(method, path, **kwargs)
        except httpx.HTTPError as e:
            self._circuit_breaker.record_failure()
            logger.error("Jira request failed", extra={"method": method, "path": path, "error": str(e)})
            raise JiraException(f"{method} {path} failed: {e}") from e
        except BaseException:
            # any other exit must still settle a half-open probe
            self._circuit_breaker.record_failure()
            raise

        if response.status_code >= 500:
            self._circuit_breaker.record_failure()
        else:
            self._circuit_breaker.record_success()

        if response.status_code == 404 and issue_key is not None:
            raise IssueNotFoundException(issue_key)

        if response.status_code >= 400:
            raise JiraException(
                f"{method} {path} returned {response.status_code}",
                status_code=response.status_code,
                details=self._error_details(response)
            )

        if response.status_code == 204 or not response.content:
            return None
        return response.json()

    @staticmethod
    def _error_details(response: httpx.Response) -> Dict[str, Any]:
        try:
            body = response.json()
        except ValueError:
            return {"body": response.text[:500]}
        if isinstance(body, dict):
            return {
                "errorMessages": body.get("errorMessages", []),
                "errors": body.get("errors", {}),
            }
        return {"body": body}

    # ========== IIssueTracker ==========

    async def issue_exists(self, issue_key: str) -> bool:
        try:
            await self._request("GET", f"/rest/api/3/issue/{issue_key}", issue_key=issue_key, params={"fields": "key"})
            return True
        except IssueNotFoundException:
            return False

    async def get_issue(self, issue_key: str, fields: Optional[Sequence[str]] = None) -> dict:
        params = {"fields": ",".join(fields)} if fields else None
        return await self._request("GET", f"/rest/api/3/issue/{issue_key}", issue_key=issue_key, params=params)

    async def get_changelog(self, issue_key: str) -> List[dict]:
        histories: List[dict] = []
        start_at = 0
        while True:
            page = await self._request(
                "GET",
                f"/rest/api/3/issue/{issue_key}/changelog",
                issue_key=issue_key,
                params={"startAt": start_at, "maxResults": CHANGELOG_PAGE_SIZE}
            )
            values = page.get("values", [])
            histories.extend(values)
            start_at += len(values)
            if page.get("isLast", True) or not values or start_at >= page.get("total", start_at):
                break
        return histories

    async def search_issues(
        self,
        jql: str,
        fields: Sequence[str],
        max_results: Optional[int] = None
    ) -> List[dict]:
        issues: List[dict] = []
        next_page_token: Optional[str] = None
        while True:
            body: Dict[str, Any] = {
                "jql": jql,
                "fields": list(fields),
                "maxResults": min(SEARCH_PAGE_SIZE, max_results) if max_results else SEARCH_PAGE_SIZE,
            }
            if next_page_token:
                body["nextPageToken"] = next_page_token

            page = await self._request("POST", "/rest/api/3/search/jql", json=body)
            issues.extend(page.get("issues", []))
            next_page_token = page.get("nextPageToken")

            if max_results and len(issues) >= max_results:
                return issues[:max_results]
            if page.get("isLast", True) or not next_page_token:
                break

        logger.debug("Jira search finished", extra={"jql": jql, "count": len(issues)})
        return issues

    # ========== Write operations ==========

    async def update_fields(self, issue_key: str, fields: Dict[str, Any]) -> None:
        await self._request("PUT", f"/rest/api/3/issue/{issue_key}", issue_key=issue_key, json={"fields": fields})

    async def get_transitions(self, issue_key: str) -> List[dict]:
        data = await self._request("GET", f"/rest/api/3/issue/{issue_key}/transitions", issue_key=issue_key)
        return data.get("transitions", [])

    async def transition_issue(self, issue_key: str, transition_id: str) -> None:
        await self._request(
            "POST",
            f"/rest/api/3/issue/{issue_key}/transitions",
            issue_key=issue_key,
            json={"transition": {"id": transition_id}}
        )

    async def get_project_statuses(self, project_key: str) -> List[dict]:
        """Distinct workflow statuses used by a project's issue types."""
        data = await self._request("GET", f"/rest/api/3/project/{project_key}/statuses")
        seen: Dict[str, dict] = {}
        for issue_type in data or []:
            for status in issue_type.get("statuses", []):
                seen.setdefault(status["id"], status)
        return list(seen.values())

    async def get_field_options(self, field_id: str) -> List[dict]:
        """Options of a select custom field, from its first context."""
        contexts = await self._request("GET", f"/rest/api/3/field/{field_id}/context")
        values = contexts.get("values", [])
        if not values:
            raise JiraException(f"field {field_id} has no context")
        context_id = values[0]["id"]
        options = await self._request("GET", f"/rest/api/3/field/{field_id}/context/{context_id}/option")
        return options.get("values", [])

    async def close(self) -> None:
        """Close HTTP client."""
        if self._http_client:
            await self._http_client.aclose()
            self._http_client = None
