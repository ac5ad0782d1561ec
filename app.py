import logging
import os
import time
from concurrent.futures import ThreadPoolExecutor
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional, Tuple

from flask import Blueprint, Flask, Response, current_app, g, jsonify, request
from werkzeug.exceptions import HTTPException

import extensions
from auth import auth_bp, get_delegated_token, login_required
from config_manager import AppConfig
from data_models import Repository, Workflow, WorkflowRun, format_timestamp
from database import OmniLensDatabase
from errors import (
    NotFoundError,
    OmniLensError,
    PersistenceError,
    UpstreamAccessError,
    UpstreamError,
    ValidationError,
)
from extensions import get_app_config, get_cipher, get_db
from github_api_client import fetch_actions_status
from health_classifier import summarize_workflow_health
from metrics_aggregator import MetricsAggregator, calculate_success_rate, summarize_grouped_runs
from report_exporter import ReportExporter
from utils import (
    normalize_repo_input,
    parse_day,
    previous_day,
    slug_from_repo_path,
    split_repo_path,
    utc_today,
    validate_slug,
)
from visualization import render_hourly_chart
from workflow_fetcher import WorkflowFetcher

APP_VERSION = "1.0.0"
START_TIME = time.monotonic()

NO_STORE_HEADERS = {
    "Cache-Control": "no-cache, no-store, must-revalidate",
    "Pragma": "no-cache",
    "Expires": "0",
}

api_bp = Blueprint("api", __name__, url_prefix="/api")
aggregator = MetricsAggregator()


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


def _get_fetcher() -> WorkflowFetcher:
    """Fetcher that looks the user's token up in this request's database."""
    return WorkflowFetcher(
        get_app_config(),
        lambda user_id: get_delegated_token(get_db(), get_cipher(), user_id),
    )


def _require_repo(slug: str) -> Repository:
    slug = validate_slug(slug)
    repo = get_db().get_user_repo(slug, g.user_id)
    if repo is None:
        raise NotFoundError("Repository not found in dashboard")
    return repo


def _json_body() -> Dict[str, Any]:
    payload = request.get_json(silent=True)
    if not isinstance(payload, dict):
        raise ValidationError("Request body must be a JSON object")
    return payload


def _runs_for_active_workflows(fetcher: WorkflowFetcher, user_id: str, repo: Repository,
                               day) -> Tuple[List[Workflow], List[WorkflowRun]]:
    """
    Active workflows of a repository and the day's runs belonging to them.

    Workflows are fetched first so an access error surfaces before any run
    listing is requested. With no active workflows, runs are not fetched.
    """
    active_workflows = fetcher.list_active_workflows(user_id, repo.repo_path)
    if not active_workflows:
        return [], []

    active_ids = {wf.id for wf in active_workflows}
    runs = fetcher.list_runs_for_date(user_id, repo.repo_path, day, repo.default_branch)
    return active_workflows, [run for run in runs if run.workflow_id in active_ids]


def _today_metrics(active_workflows: List[Workflow], runs: List[WorkflowRun]) -> Dict[str, Any]:
    overview = aggregator.calculate_daily_overview(active_workflows, runs)
    return {
        "totalWorkflows": overview.total_workflows,
        "passedRuns": overview.passed_runs,
        "failedRuns": overview.failed_runs,
        "inProgressRuns": overview.in_progress_runs,
        "successRate": calculate_success_rate(overview.passed_runs, overview.completed_runs),
        "hasActivity": overview.completed_runs > 0 or overview.in_progress_runs > 0,
    }


# --- workflows ----------------------------------------------------------------


@api_bp.route("/workflow/<slug>", methods=["GET"])
@login_required
def get_workflow(slug):
    """
    API endpoint for a repository's workflows or one day's runs.

    Query Parameters:
    - date (str, optional): YYYY-MM-DD. Without it the active workflow list is
      returned, from the cache when it is fresh.
    - grouped (str, optional): 'true' to group the day's runs by workflow.
    """
    repo = _require_repo(slug)
    date_param = request.args.get("date")

    if date_param:
        day = parse_day(date_param)
        grouped = request.args.get("grouped") == "true"

        active_workflows, runs = _runs_for_active_workflows(_get_fetcher(), g.user_id, repo, day)
        overview = aggregator.calculate_daily_overview(active_workflows, runs)

        body: Dict[str, Any] = {
            "workflowRuns": summarize_grouped_runs(runs) if grouped else [run.to_dict() for run in runs],
            "overviewData": overview.to_dict(),
        }
        if not active_workflows:
            body["message"] = "No active workflows found for this repository"
        current_app.logger.info("%s: %d runs on %s", repo.slug, len(runs), day.isoformat())
        return jsonify(body)

    config = get_app_config()
    db = get_db()
    cached_at = db.get_workflows_cached_at(repo.slug, g.user_id)
    fresh_after = _utc_now() - timedelta(seconds=config.workflow_cache_ttl_seconds)

    if cached_at is not None and cached_at > fresh_after:
        workflows = db.get_workflows(repo.slug, g.user_id)
        cache_status = "HIT"
    else:
        workflows = _get_fetcher().list_active_workflows(g.user_id, repo.repo_path)
        result = db.refresh_workflow_cache(repo.slug, workflows, g.user_id)
        if not result.ok:
            current_app.logger.error("Error saving workflows to database: %s", result.error)
        cache_status = "MISS"

    response = jsonify({
        "repository": repo.summary_dict(),
        "workflows": [wf.to_dict() for wf in workflows],
        "totalCount": len(workflows),
    })
    response.headers["Cache-Control"] = f"public, max-age={config.workflow_cache_ttl_seconds}"
    response.headers["X-Cache"] = cache_status
    return response


def _parse_workflow_list(payload: Dict[str, Any]) -> List[Workflow]:
    raw_workflows = payload.get("workflows")
    if not isinstance(raw_workflows, list):
        raise ValidationError("Workflows must be an array")

    details = []
    seen_ids = set()
    expected = (("id", int), ("name", str), ("path", str), ("state", str))
    for index, raw in enumerate(raw_workflows):
        if not isinstance(raw, dict):
            details.append(f"workflows.{index}: Expected object")
            continue
        for key, kind in expected:
            value = raw.get(key)
            if not isinstance(value, kind) or isinstance(value, bool):
                details.append(f"workflows.{index}.{key}: Expected {'number' if kind is int else 'string'}")
        workflow_id = raw.get("id")
        if isinstance(workflow_id, int) and not isinstance(workflow_id, bool):
            if workflow_id in seen_ids:
                details.append(f"workflows.{index}.id: Duplicate id")
            seen_ids.add(workflow_id)
    if details:
        raise ValidationError("Invalid workflow data", details=details)

    return [Workflow(id=raw["id"], name=raw["name"], path=raw["path"], state=raw["state"])
            for raw in raw_workflows]


@api_bp.route("/workflow/<slug>", methods=["PUT"])
@login_required
def save_workflow_list(slug):
    repo = _require_repo(slug)
    workflows = _parse_workflow_list(_json_body())
    get_db().save_workflows(repo.slug, workflows, g.user_id)
    return jsonify({
        "success": True,
        "message": f"Successfully saved {len(workflows)} workflows for {repo.slug}",
        "workflows": [{"id": wf.id, "name": wf.name, "path": wf.path, "state": wf.state} for wf in workflows],
    })


@api_bp.route("/workflow/<slug>", methods=["DELETE"])
@login_required
def delete_workflow_list(slug):
    repo = _require_repo(slug)
    get_db().delete_workflows(repo.slug, g.user_id)
    return jsonify({"success": True, "message": f"Successfully deleted workflows for {repo.slug}"})


@api_bp.route("/workflow/<slug>/exists", methods=["GET"])
@login_required
def workflows_exist(slug):
    """Whether workflows are cached for the repository. Never calls GitHub."""
    slug = validate_slug(slug)
    count = len(get_db().get_workflows(slug, g.user_id))
    return jsonify({
        "hasWorkflows": count > 0,
        "workflowCount": count,
        "message": (f"Found {count} saved workflows for {slug}" if count
                    else f"No saved workflows found for {slug}"),
    })


def _day_param():
    """The ?date= query value, defaulting to today (UTC)."""
    date_param = request.args.get("date")
    if not date_param:
        return utc_today()
    return parse_day(date_param)


@api_bp.route("/workflow/<slug>/overview", methods=["GET"])
@login_required
def get_workflow_overview(slug):
    repo = _require_repo(slug)
    day = _day_param()
    active_workflows, runs = _runs_for_active_workflows(_get_fetcher(), g.user_id, repo, day)
    overview = aggregator.calculate_daily_overview(active_workflows, runs)
    return jsonify({
        "repository": repo.summary_dict(),
        "overview": overview.to_dict(),
        "date": day.isoformat(),
        "generatedAt": format_timestamp(_utc_now()),
    })


@api_bp.route("/workflow/<slug>/health", methods=["GET"])
@login_required
def get_workflow_health(slug):
    repo = _require_repo(slug)
    day = _day_param()
    fetcher = _get_fetcher()

    active_workflows, today_runs = _runs_for_active_workflows(fetcher, g.user_id, repo, day)
    yesterday_runs: List[WorkflowRun] = []
    if active_workflows:
        yesterday_runs = fetcher.list_runs_for_date(g.user_id, repo.repo_path, previous_day(day))

    summary = summarize_workflow_health(active_workflows, today_runs, yesterday_runs)
    return jsonify({
        "repository": repo.summary_dict(),
        "date": day.isoformat(),
        "previousDate": previous_day(day).isoformat(),
        "workflows": summary["workflows"],
        "counts": summary["counts"],
    })


@api_bp.route("/workflow/<slug>/runs.csv", methods=["GET"])
@login_required
def export_workflow_runs_csv(slug):
    repo = _require_repo(slug)
    day = _day_param()
    _, runs = _runs_for_active_workflows(_get_fetcher(), g.user_id, repo, day)

    csv_content = ReportExporter().runs_to_csv(runs, repo.repo_path, day)
    return Response(
        csv_content,
        mimetype="text/csv",
        headers={"Content-Disposition": f"attachment; filename={repo.slug}_{day.isoformat()}_runs.csv"},
    )


@api_bp.route("/workflow/<slug>/overview.png", methods=["GET"])
@login_required
def get_workflow_overview_chart(slug):
    repo = _require_repo(slug)
    day = _day_param()
    active_workflows, runs = _runs_for_active_workflows(_get_fetcher(), g.user_id, repo, day)
    overview = aggregator.calculate_daily_overview(active_workflows, runs)

    png = render_hourly_chart(overview, title=f"{repo.display_name} runs on {day.isoformat()} (UTC)")
    return Response(png, mimetype="image/png")


# --- repositories -------------------------------------------------------------


@api_bp.route("/repo", methods=["GET"])
@login_required
def list_repositories():
    repos = get_db().load_user_repos(g.user_id)
    body = {
        "repositories": [
            {"slug": r.slug, "displayName": r.display_name, "avatarUrl": r.avatar_url, "htmlUrl": r.html_url}
            for r in repos
        ]
    }
    return jsonify(body), 200, NO_STORE_HEADERS


@api_bp.route("/repo/validate", methods=["POST"])
@login_required
def validate_repository():
    payload = _json_body()
    repo_url = payload.get("repoUrl")
    if not isinstance(repo_url, str) or not repo_url.strip():
        raise ValidationError("Repository URL is required")

    repo_path = normalize_repo_input(repo_url)
    if not repo_path:
        raise ValidationError("Invalid GitHub repository URL or format. Use owner/repo or a full GitHub URL.")

    fetcher = _get_fetcher()
    repo_data = fetcher.get_repository(g.user_id, repo_path)
    try:
        active_workflows = fetcher.list_active_workflows(g.user_id, repo_path)
    except UpstreamAccessError:
        raise UpstreamAccessError(
            "Access denied to repository workflows. Check token permissions for organization repositories."
        )
    except NotFoundError:
        raise NotFoundError("Cannot access repository workflows. Repository may not support GitHub Actions.")

    owner = repo_data.get("owner") or {}
    return jsonify({
        "valid": True,
        "repoPath": repo_data.get("full_name", repo_path),
        "htmlUrl": repo_data.get("html_url"),
        "defaultBranch": repo_data.get("default_branch"),
        "displayName": repo_data.get("name"),
        "owner": owner.get("login"),
        "avatarUrl": owner.get("avatar_url"),
        "visibility": "private" if repo_data.get("private") else "public",
        "workflowsAccessible": True,
        "workflowCount": len(active_workflows),
    })


ADD_REPO_FIELDS = ("repoPath", "displayName", "htmlUrl", "defaultBranch")


@api_bp.route("/repo/add", methods=["POST"])
@login_required
def add_repository():
    """
    Adds a repository to the dashboard after checking it on GitHub.

    The response includes today's workflow metrics when they can be fetched;
    a failure there does not undo the add.
    """
    payload = _json_body()
    details = [f"{name}: {name} is required" for name in ADD_REPO_FIELDS
               if not isinstance(payload.get(name), str) or not payload.get(name).strip()]
    if details:
        raise ValidationError("Invalid request data", details=details)

    repo_path = payload["repoPath"].strip()
    split_repo_path(repo_path)

    config = get_app_config()
    fetcher = _get_fetcher()
    try:
        repo_data = fetcher.get_repository(g.user_id, repo_path)
    except NotFoundError:
        raise NotFoundError("Repository not found or does not exist")

    owner = repo_data.get("owner") or {}
    repo = get_db().add_user_repo(
        Repository(
            slug=slug_from_repo_path(repo_path),
            repo_path=repo_path,
            display_name=payload["displayName"].strip(),
            html_url=payload["htmlUrl"].strip(),
            default_branch=payload["defaultBranch"].strip(),
            user_id=g.user_id,
            avatar_url=payload.get("avatarUrl") or owner.get("avatar_url"),
            visibility="private" if repo_data.get("private") else "public",
        ),
        max_repositories=config.max_repositories,
    )

    workflow_data: Optional[Dict[str, Any]] = None
    try:
        active_workflows, runs = _runs_for_active_workflows(fetcher, g.user_id, repo, utc_today())
        if active_workflows:
            get_db().refresh_workflow_cache(repo.slug, active_workflows, g.user_id)
        workflow_data = {
            "workflows": [wf.to_dict() for wf in active_workflows],
            "todayMetrics": _today_metrics(active_workflows, runs),
        }
    except OmniLensError as e:
        current_app.logger.warning("Workflow data fetch failed for new repo %s: %s", repo_path, e.message)

    current_app.logger.info("User %s added %s", g.user_id, repo_path)
    return jsonify({
        "success": True,
        "repo": repo.to_dict(),
        "workflowData": workflow_data,
        "message": ("Repository added to dashboard successfully with workflow data" if workflow_data
                    else "Repository added to dashboard successfully"),
    })


def _dashboard_metrics(fetcher: WorkflowFetcher, user_id: str, repo: Repository, day) -> Dict[str, Any]:
    active_workflows, runs = _runs_for_active_workflows(fetcher, user_id, repo, day)
    return _today_metrics(active_workflows, runs)


@api_bp.route("/repo/dashboard", methods=["GET"])
@login_required
def get_dashboard():
    """
    Today's metrics for every repository of the user.

    Repositories are fetched concurrently; one failing repository is reported
    with hasError and does not fail the batch.
    """
    config = get_app_config()
    db = get_db()
    repos = db.load_user_repos(g.user_id)
    if not repos:
        return jsonify({"repositories": [], "totalCount": 0})

    # Workers never touch the database: the token is resolved here
    token = get_delegated_token(db, get_cipher(), g.user_id)
    fetcher = WorkflowFetcher(config, lambda _user_id: token)
    has_workflows = {repo.slug: bool(db.get_workflows(repo.slug, g.user_id)) for repo in repos}
    today = utc_today()
    empty_metrics = {"totalWorkflows": 0, "passedRuns": 0, "failedRuns": 0,
                     "inProgressRuns": 0, "successRate": 0, "hasActivity": False}

    with ThreadPoolExecutor(max_workers=max(1, min(config.dashboard_workers, len(repos)))) as executor:
        futures = {
            repo.slug: executor.submit(_dashboard_metrics, fetcher, g.user_id, repo, today)
            for repo in repos if has_workflows[repo.slug]
        }

        repositories = []
        for repo in repos:
            entry = {
                "slug": repo.slug,
                "repoPath": repo.repo_path,
                "displayName": repo.display_name,
                "avatarUrl": repo.avatar_url,
                "htmlUrl": repo.html_url,
                "visibility": repo.visibility or "public",
                "hasWorkflows": has_workflows[repo.slug],
                "metrics": dict(empty_metrics),
                "hasError": False,
                "errorMessage": None,
            }
            future = futures.get(repo.slug)
            if future is not None:
                try:
                    entry["metrics"] = future.result()
                except OmniLensError as e:
                    current_app.logger.error("Error fetching metrics for %s: %s", repo.slug, e.message)
                    entry["hasError"] = True
                    entry["errorMessage"] = "Failed to load repository data"
                except Exception:
                    current_app.logger.exception("Unexpected error fetching metrics for %s", repo.slug)
                    entry["hasError"] = True
                    entry["errorMessage"] = "Failed to load repository data"
            repositories.append(entry)

    return jsonify({
        "repositories": repositories,
        "totalCount": len(repositories),
        "loadedAt": format_timestamp(_utc_now()),
    }), 200, NO_STORE_HEADERS


@api_bp.route("/repo/<slug>", methods=["GET"])
@login_required
def get_repository(slug):
    repo = _require_repo(slug)
    return jsonify({"success": True, "repo": repo.to_dict()})


@api_bp.route("/repo/<slug>", methods=["DELETE"])
@login_required
def delete_repository(slug):
    slug = validate_slug(slug)
    db = get_db()
    deleted = db.remove_user_repo(slug, g.user_id)
    if deleted is None:
        raise NotFoundError("Repository not found")
    current_app.logger.info("User %s removed %s", g.user_id, deleted.repo_path)
    return jsonify({
        "success": True,
        "message": "Repository removed from dashboard successfully",
        "deletedRepo": deleted.to_dict(),
    })


# --- service status -----------------------------------------------------------


@api_bp.route("/health", methods=["GET"])
def health_check():
    return jsonify({
        "status": "healthy",
        "timestamp": format_timestamp(_utc_now()),
        "uptime": round(time.monotonic() - START_TIME, 3),
        "version": APP_VERSION,
    }), 200, NO_STORE_HEADERS


STATUS_SEVERITY = {"major_outage": 4, "partial_outage": 3, "degraded_performance": 2, "operational": 1}


@api_bp.route("/github-status", methods=["GET"])
def github_status():
    """GitHub Actions status from githubstatus.com; assumes operational when it is unreachable."""
    config = get_app_config()
    try:
        data = fetch_actions_status(config.github_status_url, config.user_agent, config.request_timeout_seconds)
    except UpstreamError as e:
        current_app.logger.warning("Error fetching GitHub status: %s", e.message)
        return jsonify({
            "hasIssues": False,
            "status": "operational",
            "message": "GitHub Actions status unavailable - assuming operational",
            "components": [],
            "lastUpdated": format_timestamp(_utc_now()),
            "source": "fallback",
            "error": e.message,
        }), 200, {"Cache-Control": "public, s-maxage=30, stale-while-revalidate=60"}

    components = [
        c for c in data.get("components") or []
        if "actions" in c.get("name", "").lower() or "workflows" in c.get("name", "").lower()
    ]
    has_issues = any(c.get("status") in ("partial_outage", "major_outage") for c in components)
    most_severe = max(components, key=lambda c: STATUS_SEVERITY.get(c.get("status"), 0), default=None)
    status = most_severe["status"] if has_issues and most_severe else "operational"

    return jsonify({
        "hasIssues": has_issues,
        "status": status,
        "message": (f"GitHub Actions is experiencing {status.replace('_', ' ')}" if has_issues
                    else "GitHub Actions is operational"),
        "components": [
            {"name": c.get("name"), "status": c.get("status"), "description": c.get("description")}
            for c in components
        ],
        "lastUpdated": format_timestamp(_utc_now()),
        "source": "GitHub Status API",
    }), 200, {"Cache-Control": "public, s-maxage=60, stale-while-revalidate=300"}


# --- application factory ------------------------------------------------------


def _register_error_handlers(app: Flask):
    @app.errorhandler(PersistenceError)
    def handle_persistence_error(error):
        app.logger.error("%s %s failed: %s", request.method, request.path, error.message)
        return jsonify({"error": "Internal server error"}), 500

    @app.errorhandler(OmniLensError)
    def handle_omnilens_error(error):
        if error.status_code >= 500:
            app.logger.error("%s %s failed: %s", request.method, request.path, error.message)
        return jsonify(error.to_dict()), error.status_code

    @app.errorhandler(HTTPException)
    def handle_http_error(error):
        return jsonify({"error": error.description}), error.code

    @app.errorhandler(Exception)
    def handle_unexpected_error(error):
        app.logger.exception("Unhandled error while serving %s %s", request.method, request.path)
        return jsonify({"error": "Internal server error"}), 500


def create_app(config: Optional[AppConfig] = None) -> Flask:
    """Create and configure the Flask application instance."""
    config = config or AppConfig.from_env()

    app = Flask(__name__)
    app.secret_key = config.secret_key
    app.config["APP_CONFIG"] = config
    app.config["TESTING"] = config.environment == "test"
    app.config["SESSION_COOKIE_SECURE"] = config.base_url.startswith("https://")
    app.config["SESSION_COOKIE_SAMESITE"] = "Lax"

    extensions.init_app(app)
    app.register_blueprint(api_bp)
    app.register_blueprint(auth_bp)
    _register_error_handlers(app)

    db_dir = os.path.dirname(config.database_path)
    if db_dir:
        os.makedirs(db_dir, exist_ok=True)
    with OmniLensDatabase(config.database_path) as db:
        db.initialize_schema()

    return app


if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(name)s: %(message)s")
    create_app().run(debug=True, port=5002)
