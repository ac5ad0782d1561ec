from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import List, Optional, Dict, Any

from errors import UpstreamError

IN_PROGRESS_STATUSES = ("in_progress", "queued")


def parse_timestamp(value: Any) -> Optional[datetime]:
    """Parse a GitHub ISO 8601 timestamp into an aware UTC datetime."""
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        dt = value
    else:
        dt = datetime.fromisoformat(str(value).replace("Z", "+00:00"))
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def format_timestamp(dt: Optional[datetime]) -> Optional[str]:
    """Format a datetime the way GitHub does (second precision, 'Z' suffix)."""
    if dt is None:
        return None
    return dt.astimezone(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")


def _require(payload: Dict[str, Any], keys, kind: str) -> None:
    missing = [k for k in keys if k not in payload]
    if missing:
        raise UpstreamError(f"Malformed {kind} payload from GitHub: missing {', '.join(missing)}")


@dataclass
class Workflow:
    id: int
    name: str
    path: str
    state: str
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    deleted_at: Optional[datetime] = None

    def __post_init__(self):
        self.created_at = parse_timestamp(self.created_at)
        self.updated_at = parse_timestamp(self.updated_at)
        self.deleted_at = parse_timestamp(self.deleted_at)

    @property
    def is_active(self) -> bool:
        return self.state == "active"

    @classmethod
    def from_api(cls, payload: Dict[str, Any]) -> "Workflow":
        """Validate one entry of the GitHub "list workflows" response."""
        if not isinstance(payload, dict):
            raise UpstreamError("Malformed workflow payload from GitHub")
        _require(payload, ("id", "name", "path", "state"), "workflow")
        try:
            return cls(
                id=int(payload["id"]),
                name=str(payload["name"]),
                path=str(payload["path"]),
                state=str(payload["state"]),
                created_at=payload.get("created_at"),
                updated_at=payload.get("updated_at"),
                deleted_at=payload.get("deleted_at"),
            )
        except (TypeError, ValueError) as e:
            raise UpstreamError(f"Malformed workflow payload from GitHub: {e}")

    def to_dict(self) -> Dict[str, Any]:
        data = {
            "id": self.id,
            "name": self.name,
            "path": self.path,
            "state": self.state,
            "createdAt": format_timestamp(self.created_at),
            "updatedAt": format_timestamp(self.updated_at),
        }
        if self.deleted_at:
            data["deletedAt"] = format_timestamp(self.deleted_at)
        return data


@dataclass
class WorkflowRun:
    id: int
    workflow_id: int
    status: str
    conclusion: Optional[str]
    run_started_at: Optional[datetime]
    updated_at: Optional[datetime]
    html_url: str = ""
    name: Optional[str] = None
    created_at: Optional[datetime] = None
    head_branch: Optional[str] = None
    event: Optional[str] = None
    run_number: Optional[int] = None

    def __post_init__(self):
        self.run_started_at = parse_timestamp(self.run_started_at)
        self.updated_at = parse_timestamp(self.updated_at)
        self.created_at = parse_timestamp(self.created_at)

    @property
    def started_at(self) -> Optional[datetime]:
        """Start of the run, falling back to creation time."""
        return self.run_started_at or self.created_at

    @property
    def is_in_progress(self) -> bool:
        return self.status in IN_PROGRESS_STATUSES

    @classmethod
    def from_api(cls, payload: Dict[str, Any]) -> "WorkflowRun":
        """Validate one entry of the GitHub "list workflow runs" response."""
        if not isinstance(payload, dict):
            raise UpstreamError("Malformed workflow run payload from GitHub")
        _require(payload, ("id", "workflow_id", "status"), "workflow run")
        if not payload.get("run_started_at") and not payload.get("created_at"):
            raise UpstreamError(
                f"Malformed workflow run payload from GitHub: run {payload.get('id')} has no start time"
            )
        try:
            return cls(
                id=int(payload["id"]),
                workflow_id=int(payload["workflow_id"]),
                status=str(payload["status"]),
                conclusion=payload.get("conclusion"),
                run_started_at=payload.get("run_started_at"),
                updated_at=payload.get("updated_at"),
                html_url=payload.get("html_url") or "",
                name=payload.get("name"),
                created_at=payload.get("created_at"),
                head_branch=payload.get("head_branch"),
                event=payload.get("event"),
                run_number=payload.get("run_number"),
            )
        except (TypeError, ValueError) as e:
            raise UpstreamError(f"Malformed workflow run payload from GitHub: {e}")

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "workflow_id": self.workflow_id,
            "status": self.status,
            "conclusion": self.conclusion,
            "html_url": self.html_url,
            "run_started_at": format_timestamp(self.run_started_at),
            "created_at": format_timestamp(self.created_at),
            "updated_at": format_timestamp(self.updated_at),
            "head_branch": self.head_branch,
            "event": self.event,
            "run_number": self.run_number,
        }


@dataclass
class Repository:
    slug: str
    repo_path: str
    display_name: str
    html_url: str
    default_branch: str
    user_id: str
    avatar_url: Optional[str] = None
    visibility: str = "public"
    added_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    def __post_init__(self):
        self.added_at = parse_timestamp(self.added_at)
        self.updated_at = parse_timestamp(self.updated_at)

    @property
    def owner_and_name(self):
        owner, _, name = self.repo_path.partition("/")
        return owner, name

    def to_dict(self) -> Dict[str, Any]:
        return {
            "slug": self.slug,
            "repoPath": self.repo_path,
            "displayName": self.display_name,
            "htmlUrl": self.html_url,
            "defaultBranch": self.default_branch,
            "avatarUrl": self.avatar_url,
            "visibility": self.visibility,
            "addedAt": format_timestamp(self.added_at),
            "updatedAt": format_timestamp(self.updated_at),
        }

    def summary_dict(self) -> Dict[str, Any]:
        return {
            "slug": self.slug,
            "displayName": self.display_name,
            "repoPath": self.repo_path,
        }


@dataclass
class HourlyBucket:
    hour: int
    passed: int = 0
    failed: int = 0

    @property
    def total(self) -> int:
        return self.passed + self.failed

    def to_dict(self) -> Dict[str, int]:
        return {"hour": self.hour, "passed": self.passed, "failed": self.failed, "total": self.total}


@dataclass
class DailyOverview:
    completed_runs: int = 0
    in_progress_runs: int = 0
    passed_runs: int = 0
    failed_runs: int = 0
    total_runtime: int = 0  # seconds
    total_workflows: int = 0
    missing_workflows: List[str] = field(default_factory=list)
    didnt_run_count: int = 0
    runs_by_hour: List[int] = field(default_factory=lambda: [0] * 24)
    avg_runs_per_hour: float = 0
    min_runs_per_hour: int = 0
    max_runs_per_hour: int = 0
    total_runs: int = 0
    success_rate: int = 0
    pass_rate: int = 0
    hourly_breakdown: List[HourlyBucket] = field(
        default_factory=lambda: [HourlyBucket(hour=h) for h in range(24)]
    )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "completedRuns": self.completed_runs,
            "inProgressRuns": self.in_progress_runs,
            "passedRuns": self.passed_runs,
            "failedRuns": self.failed_runs,
            "totalRuntime": self.total_runtime,
            "totalWorkflows": self.total_workflows,
            "missingWorkflows": list(self.missing_workflows),
            "didntRunCount": self.didnt_run_count,
            "runsByHour": list(self.runs_by_hour),
            "avgRunsPerHour": self.avg_runs_per_hour,
            "minRunsPerHour": self.min_runs_per_hour,
            "maxRunsPerHour": self.max_runs_per_hour,
            "totalRuns": self.total_runs,
            "successRate": self.success_rate,
            "passRate": self.pass_rate,
            "hourlyBreakdown": [bucket.to_dict() for bucket in self.hourly_breakdown],
        }
