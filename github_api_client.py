import logging
from typing import Any, Dict, Iterator, List

import requests

from errors import NotFoundError, UpstreamAccessError, UpstreamError

logger = logging.getLogger(__name__)

GITHUB_ACCEPT_HEADER = "application/vnd.github.v3+json"


class GitHubApiClient:
    """Thin wrapper over the GitHub REST API using one user's delegated token.

    Requests are made once: no retries and no rate-limit waiting. Failures are
    raised as typed errors carrying GitHub's status code.
    """

    def __init__(self, token: str, base_url: str = "https://api.github.com",
                 user_agent: str = "OmniLens-Dashboard", timeout: float = 20.0):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.headers = {
            "Authorization": f"Bearer {token}",
            "Accept": GITHUB_ACCEPT_HEADER,
            "User-Agent": user_agent,
        }

    @classmethod
    def from_config(cls, token: str, config) -> "GitHubApiClient":
        return cls(token, base_url=config.github_api_base,
                   user_agent=config.user_agent, timeout=config.request_timeout_seconds)

    def _raise_for_status(self, response, not_found: str, forbidden: str):
        status = response.status_code
        if status < 400:
            return

        if status == 403 and response.headers.get("X-RateLimit-Remaining") == "0":
            raise UpstreamError("GitHub API rate limit exceeded", upstream_status=403)
        if status == 404:
            raise NotFoundError(not_found)
        if status == 403:
            raise UpstreamAccessError(forbidden)

        try:
            github_message = response.json().get("message")
        except (ValueError, AttributeError):
            github_message = None
        reason = github_message or getattr(response, "reason", "") or "error"
        raise UpstreamError(f"GitHub API error: {status} {reason}", upstream_status=status)

    def _make_request(self, url, params=None, not_found="Resource not found on GitHub",
                      forbidden="Access denied by GitHub"):
        if not url.startswith("http"):
            url = f"{self.base_url}{url}"
        try:
            response = requests.get(url, headers=self.headers, params=params, timeout=self.timeout)
        except requests.exceptions.RequestException as e:
            logger.warning("GitHub request to %s failed: %s", url, e)
            raise UpstreamError("Unable to reach GitHub") from e

        if response.status_code >= 400:
            logger.warning("GitHub API call failed: GET %s -> %s", url, response.status_code)
        self._raise_for_status(response, not_found, forbidden)
        return response

    @staticmethod
    def _json(response) -> Dict[str, Any]:
        try:
            data = response.json()
        except ValueError as e:
            raise UpstreamError("GitHub returned a response that is not valid JSON") from e
        if not isinstance(data, dict):
            raise UpstreamError("GitHub returned an unexpected response shape")
        return data

    def _paginate(self, url, params, key, not_found, forbidden) -> Iterator[List[Dict[str, Any]]]:
        """Yield each page's list under `key`, following the Link header."""
        while url:
            response = self._make_request(url, params=params, not_found=not_found, forbidden=forbidden)
            data = self._json(response)
            items = data.get(key)
            if not isinstance(items, list):
                raise UpstreamError(f"GitHub response is missing '{key}'")
            yield items
            # Check for next page
            if "next" in response.links:
                url = response.links["next"]["url"]
                params = None  # params are already in the next url
            else:
                url = None

    def get_repository(self, owner: str, repo: str) -> Dict[str, Any]:
        response = self._make_request(
            f"/repos/{owner}/{repo}",
            not_found="Repository not found on GitHub",
            forbidden="Repository access denied. Check your GitHub permissions.",
        )
        return self._json(response)

    def list_workflows(self, owner: str, repo: str) -> List[Dict[str, Any]]:
        """All workflow definitions, every state. The `state` query filter is never sent."""
        workflows: List[Dict[str, Any]] = []
        for page in self._paginate(
            f"/repos/{owner}/{repo}/actions/workflows",
            {"per_page": 100},
            "workflows",
            not_found="Repository not found on GitHub",
            forbidden="Access denied to repository workflows",
        ):
            workflows.extend(page)
        return workflows

    def iter_workflow_run_pages(self, owner: str, repo: str, created_after: str,
                                created_before: str) -> Iterator[List[Dict[str, Any]]]:
        """Pages of repository-wide runs (all branches) created inside the range, newest first."""
        params = {"per_page": 100, "created": f"{created_after}..{created_before}"}
        return self._paginate(
            f"/repos/{owner}/{repo}/actions/runs",
            params,
            "workflow_runs",
            not_found="Repository not found on GitHub",
            forbidden="Access denied to repository workflow runs",
        )

    def get_authenticated_user(self) -> Dict[str, Any]:
        response = self._make_request(
            "/user",
            not_found="GitHub user not found",
            forbidden="GitHub token lacks required permissions",
        )
        return self._json(response)


def fetch_actions_status(status_url: str, user_agent: str = "OmniLens-Dashboard",
                         timeout: float = 10.0) -> Dict[str, Any]:
    """Fetch the public GitHub status page components (no token needed)."""
    try:
        response = requests.get(
            status_url,
            headers={"Accept": "application/json", "User-Agent": user_agent},
            timeout=timeout,
        )
    except requests.exceptions.RequestException as e:
        raise UpstreamError("Unable to reach the GitHub status page") from e
    if response.status_code >= 400:
        raise UpstreamError(
            f"GitHub Status API responded with {response.status_code}",
            upstream_status=response.status_code,
        )
    try:
        return response.json()
    except ValueError as e:
        raise UpstreamError("GitHub Status API returned invalid JSON") from e
