import logging
from collections import defaultdict
from datetime import date, datetime, timezone
from typing import Callable, Dict, List, Optional

from config_manager import AppConfig
from data_models import Workflow, WorkflowRun
from github_api_client import GitHubApiClient
from utils import day_window, split_repo_path

logger = logging.getLogger(__name__)


class WorkflowFetcher:
    """
    Retrieves workflow definitions and one day's workflow runs from GitHub.

    The fetcher holds no token itself: every call asks ``token_provider`` for
    the delegated token of the user on whose behalf it is working.
    """

    def __init__(self, config: AppConfig, token_provider: Callable[[str], str]):
        self.config = config
        self.token_provider = token_provider

    def _client_for(self, user_id: str) -> GitHubApiClient:
        return GitHubApiClient.from_config(self.token_provider(user_id), self.config)

    def _normalize_utc(self, dt: datetime) -> datetime:
        if dt.tzinfo is None:
            return dt.replace(tzinfo=timezone.utc)
        return dt.astimezone(timezone.utc)

    def _to_github_iso(self, dt: Optional[datetime]) -> Optional[str]:
        """Convert datetime to GitHub API ISO format."""
        if not dt:
            return None
        return self._normalize_utc(dt).strftime("%Y-%m-%dT%H:%M:%SZ")

    def get_repository(self, user_id: str, repo_path: str) -> dict:
        owner, repo = split_repo_path(repo_path)
        return self._client_for(user_id).get_repository(owner, repo)

    def list_all_workflows(self, user_id: str, repo_path: str) -> List[Workflow]:
        owner, repo = split_repo_path(repo_path)
        raw_workflows = self._client_for(user_id).list_workflows(owner, repo)
        return [Workflow.from_api(raw) for raw in raw_workflows]

    def list_active_workflows(self, user_id: str, repo_path: str) -> List[Workflow]:
        """
        Returns only the workflows GitHub reports as active.

        :param user_id: Owner of the delegated token
        :param repo_path: 'owner/repo'
        :return: Active workflows in GitHub's order
        """
        workflows = self.list_all_workflows(user_id, repo_path)
        active = [wf for wf in workflows if wf.is_active]
        logger.debug("%s: %d of %d workflows active", repo_path, len(active), len(workflows))
        return active

    def list_runs_for_date(self, user_id: str, repo_path: str, day: date,
                           default_branch: Optional[str] = None) -> List[WorkflowRun]:
        """
        Fetches every run that started on ``day`` (UTC), across all branches.

        Pages are followed until GitHub has no next page, until a page reaches
        runs that started before the day, or until ``max_run_pages`` pages have
        been read. The result is then filtered to the day window by start time.

        :param user_id: Owner of the delegated token
        :param repo_path: 'owner/repo'
        :param day: Calendar day in UTC
        :param default_branch: Accepted for callers that know it; runs from every branch are returned
        :return: Runs in GitHub's order (newest first)
        """
        owner, repo = split_repo_path(repo_path)
        start, end = day_window(day)
        client = self._client_for(user_id)

        collected: List[WorkflowRun] = []
        pages_read = 0
        for page in client.iter_workflow_run_pages(
            owner, repo, self._to_github_iso(start), self._to_github_iso(end)
        ):
            pages_read += 1
            runs = [WorkflowRun.from_api(raw) for raw in page]
            collected.extend(runs)

            if not runs:
                break
            oldest = min(run.started_at for run in runs)
            if oldest < start:
                break
            if pages_read >= self.config.max_run_pages:
                logger.warning(
                    "%s: stopped after %d pages of runs for %s; later pages were not fetched",
                    repo_path, pages_read, day.isoformat(),
                )
                break

        in_window = [run for run in collected if start <= run.started_at <= end]
        logger.info("%s: %d runs on %s (%d pages)", repo_path, len(in_window), day.isoformat(), pages_read)
        return in_window

    def list_runs_for_date_grouped(self, user_id: str, repo_path: str, day: date,
                                   default_branch: Optional[str] = None) -> Dict[int, List[WorkflowRun]]:
        """Same runs as ``list_runs_for_date`` keyed by workflow id, each list newest first."""
        runs = self.list_runs_for_date(user_id, repo_path, day, default_branch)
        return group_runs_by_workflow(runs)


def group_runs_by_workflow(runs: List[WorkflowRun]) -> Dict[int, List[WorkflowRun]]:
    grouped: Dict[int, List[WorkflowRun]] = defaultdict(list)
    for run in runs:
        grouped[run.workflow_id].append(run)
    for workflow_id in grouped:
        grouped[workflow_id].sort(key=lambda r: r.started_at, reverse=True)
    return dict(grouped)
