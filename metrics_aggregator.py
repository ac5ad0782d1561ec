import math
from typing import Any, Dict, List

import numpy as np

from data_models import DailyOverview, HourlyBucket, Workflow, WorkflowRun


def round_half_up(value: float, digits: int = 0) -> float:
    """Round halves away from zero for positive values (12.5 -> 13, not 12)."""
    factor = 10 ** digits
    return math.floor(value * factor + 0.5) / factor


def calculate_hourly_breakdown(runs: List[WorkflowRun]) -> List[HourlyBucket]:
    """
    Buckets runs by UTC start hour into passed/failed counts.

    Runs that are neither successful nor failed (in progress, cancelled, ...)
    are counted as neither.
    """
    buckets = [HourlyBucket(hour=h) for h in range(24)]
    for run in runs:
        started = run.started_at
        if started is None:
            continue
        bucket = buckets[started.hour]
        if run.conclusion == "success":
            bucket.passed += 1
        elif run.conclusion == "failure":
            bucket.failed += 1
    return buckets


def calculate_hourly_statistics(runs: List[WorkflowRun]) -> Dict[str, Any]:
    """
    Run counts per UTC hour and their summary statistics.

    Args:
        runs: Runs of one day

    Returns:
        Dict with runsByHour (24 ints), avgRunsPerHour, minRunsPerHour,
        maxRunsPerHour and totalRuns
    """
    hours = [run.started_at.hour for run in runs if run.started_at is not None]
    runs_by_hour = np.bincount(np.array(hours, dtype=int), minlength=24)

    total_runs = len(runs)
    avg = round_half_up(total_runs / 24, 1) if total_runs > 0 else 0

    return {
        "runsByHour": [int(count) for count in runs_by_hour],
        "avgRunsPerHour": avg,
        "minRunsPerHour": int(runs_by_hour.min()),
        "maxRunsPerHour": int(runs_by_hour.max()),
        "totalRuns": total_runs,
    }


def calculate_missing_workflows(active_workflows: List[Workflow], runs: List[WorkflowRun]) -> List[str]:
    """Names of active workflows with no run, in the order the workflows were given."""
    ran = {run.workflow_id for run in runs}
    return [wf.name for wf in active_workflows if wf.id not in ran]


def calculate_total_runtime(runs: List[WorkflowRun]) -> int:
    """Summed wall-clock seconds of completed runs; clock-skewed runs add zero."""
    total = 0
    for run in runs:
        if run.status != "completed" or not run.run_started_at or not run.updated_at:
            continue
        seconds = math.floor((run.updated_at - run.run_started_at).total_seconds())
        total += max(seconds, 0)
    return total


def calculate_success_rate(passed_runs: int, completed_runs: int) -> int:
    if completed_runs <= 0:
        return 0
    return int(round_half_up(passed_runs / completed_runs * 100))


def summarize_grouped_runs(runs: List[WorkflowRun]) -> List[Dict[str, Any]]:
    """
    Latest run of each workflow, annotated with how often the workflow ran.

    Each entry is the latest run's dict plus ``run_count`` and ``all_runs``
    (every run of that workflow, newest first).
    """
    grouped: Dict[int, List[WorkflowRun]] = {}
    for run in runs:
        grouped.setdefault(run.workflow_id, []).append(run)

    summaries = []
    for workflow_runs in grouped.values():
        workflow_runs.sort(key=lambda r: r.started_at, reverse=True)
        entry = workflow_runs[0].to_dict()
        entry["run_count"] = len(workflow_runs)
        entry["all_runs"] = [r.to_dict() for r in workflow_runs]
        summaries.append(entry)
    return summaries


class MetricsAggregator:
    def calculate_daily_overview(self, active_workflows: List[Workflow],
                                 runs: List[WorkflowRun]) -> DailyOverview:
        """
        Reduces one day's runs into the overview numbers.

        :param active_workflows: Workflows whose absence from ``runs`` counts as missing
        :param runs: Runs of the day, already restricted to the active workflows
        :return: DailyOverview
        """
        overview = DailyOverview()

        for run in runs:
            if run.status == "completed":
                overview.completed_runs += 1
            elif run.is_in_progress:
                overview.in_progress_runs += 1

            if run.conclusion == "success":
                overview.passed_runs += 1
            elif run.conclusion == "failure":
                overview.failed_runs += 1

        overview.total_runtime = calculate_total_runtime(runs)
        overview.total_workflows = len(active_workflows)
        overview.missing_workflows = calculate_missing_workflows(active_workflows, runs)
        overview.didnt_run_count = len(overview.missing_workflows)

        hourly = calculate_hourly_statistics(runs)
        overview.runs_by_hour = hourly["runsByHour"]
        overview.avg_runs_per_hour = hourly["avgRunsPerHour"]
        overview.min_runs_per_hour = hourly["minRunsPerHour"]
        overview.max_runs_per_hour = hourly["maxRunsPerHour"]
        overview.total_runs = hourly["totalRuns"]
        overview.hourly_breakdown = calculate_hourly_breakdown(runs)

        overview.success_rate = calculate_success_rate(overview.passed_runs, overview.completed_runs)
        overview.pass_rate = overview.success_rate

        return overview
