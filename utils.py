from datetime import date, datetime, time, timedelta, timezone
from typing import Optional, Union, Tuple
from urllib.parse import urlparse
import re

from errors import ValidationError

DATE_PATTERN = re.compile(r"^\d{4}-\d{2}-\d{2}$")
SLUG_PATTERN = re.compile(r"^[A-Za-z0-9_.-]+$")


def format_duration_hms(duration_ms: Optional[Union[int, float]]) -> str:
    """Format a duration in milliseconds into a human-readable H:M:S string.

    Examples:
    - 65000 -> "1m 5s"
    - 3661000 -> "1h 1m 1s"
    - None -> "-"
    """
    if duration_ms is None:
        return "-"
    try:
        total_seconds = int(float(duration_ms) // 1000)
    except (TypeError, ValueError):
        return "-"

    hours = total_seconds // 3600
    minutes = (total_seconds % 3600) // 60
    seconds = total_seconds % 60

    if hours:
        return f"{hours}h {minutes}m {seconds}s"
    if minutes:
        return f"{minutes}m {seconds}s"
    return f"{seconds}s"


def duration_between(start: Optional[datetime], end: Optional[datetime]) -> str:
    """Human-readable distance between two timestamps.

    Reversed pairs (clock skew) are shown by magnitude, so
    10:00 -> 12:00 and 12:00 -> 10:00 both read "2h 0m 0s".
    """
    if start is None or end is None:
        return "-"
    diff_ms = abs((end - start).total_seconds()) * 1000
    return format_duration_hms(diff_ms)


def parse_day(date_str: Optional[str]) -> date:
    """
    Validates a YYYY-MM-DD query value and returns the calendar day.

    :param date_str: Raw query parameter
    :return: datetime.date
    :raises ValidationError: If the value is not a real date in YYYY-MM-DD format
    """
    message = "Invalid date format. Use YYYY-MM-DD format."
    if not date_str or not DATE_PATTERN.match(date_str):
        raise ValidationError(message, details=["date: Date must be in YYYY-MM-DD format"])
    try:
        return datetime.strptime(date_str, "%Y-%m-%d").date()
    except ValueError:
        raise ValidationError(message, details=[f"date: {date_str} is not a valid calendar date"])


def day_window(day: date) -> Tuple[datetime, datetime]:
    """UTC window covering one calendar day: [00:00:00Z, 23:59:59Z]."""
    start = datetime.combine(day, time(0, 0, 0), tzinfo=timezone.utc)
    end = datetime.combine(day, time(23, 59, 59), tzinfo=timezone.utc)
    return start, end


def utc_today() -> date:
    return datetime.now(timezone.utc).date()


def previous_day(day: date) -> date:
    return day - timedelta(days=1)


def validate_slug(slug: Optional[str]) -> str:
    """
    Validates a repository slug taken from the URL.

    :raises ValidationError: If the slug is empty or contains unexpected characters
    """
    if not slug or not slug.strip():
        raise ValidationError("Invalid repository slug", details=["slug: Repository slug is required"])
    slug = slug.strip()
    if not SLUG_PATTERN.match(slug):
        raise ValidationError("Invalid repository slug",
                              details=["slug: Only letters, digits, '.', '_' and '-' are allowed"])
    return slug


def slug_from_repo_path(repo_path: str) -> str:
    """
    Derives the dashboard slug for a repository.

    >>> slug_from_repo_path("octocat/hello-world")
    'octocat-hello-world'
    """
    return repo_path.replace("/", "-", 1)


def split_repo_path(repo_path: str) -> Tuple[str, str]:
    """Split 'owner/repo' and reject anything else."""
    parts = (repo_path or "").split("/")
    if len(parts) != 2 or not parts[0] or not parts[1]:
        raise ValidationError("Invalid repository path format")
    return parts[0], parts[1]


def normalize_repo_input(value: Optional[str]) -> Optional[str]:
    """
    Turns user input into an 'owner/repo' path.

    Accepts 'owner/repo' or a github.com URL; anything else yields None.

    >>> normalize_repo_input("https://github.com/octocat/hello-world/tree/main")
    'octocat/hello-world'
    >>> normalize_repo_input("octocat/hello-world")
    'octocat/hello-world'
    >>> normalize_repo_input("https://gitlab.com/octocat/hello-world") is None
    True
    """
    if not value:
        return None
    trimmed = value.strip()

    if trimmed.startswith("http://") or trimmed.startswith("https://"):
        parsed = urlparse(trimmed)
        if parsed.hostname != "github.com":
            return None
        parts = [p for p in parsed.path.split("/") if p]
        if len(parts) < 2:
            return None
        return f"{parts[0]}/{parts[1]}"

    parts = [p for p in trimmed.split("/") if p]
    if len(parts) == 2:
        return f"{parts[0]}/{parts[1]}"
    return None


def generate_github_run_url(repo_path: str, run_id: int) -> str:
    """
    Generates a GitHub URL for a workflow run.

    >>> generate_github_run_url("owner/repo", 67890)
    'https://github.com/owner/repo/actions/runs/67890'
    """
    if not repo_path or not run_id:
        return ""
    return f"https://github.com/{repo_path}/actions/runs/{run_id}"
