"""
Day-over-day health of individual workflows.

Compares a workflow's runs on one day against the most recent outcome of the
previous day. The mixed-results branch is a majority-vote heuristic and gives
no stronger guarantee than the rules below.
"""

from typing import Dict, List, Optional

from data_models import Workflow, WorkflowRun

CONSISTENT = "consistent"
IMPROVED = "improved"
REGRESSED = "regressed"
STILL_FAILING = "still_failing"
NO_RUNS_TODAY = "no_runs_today"

HEALTH_STATUSES = (CONSISTENT, IMPROVED, REGRESSED, STILL_FAILING, NO_RUNS_TODAY)


def last_run_outcome(workflow_id: int, runs: List[WorkflowRun]) -> Optional[str]:
    """
    Outcome of the newest run of a workflow: 'success', 'failure' or None.

    Any conclusion other than success (cancelled, timed_out, still running)
    counts as a failure.
    """
    workflow_runs = [run for run in runs if run.workflow_id == workflow_id]
    if not workflow_runs:
        return None
    latest = max(workflow_runs, key=lambda r: r.started_at)
    return "success" if latest.conclusion == "success" else "failure"


def classify_workflow_health(workflow_id: int, today_runs: List[WorkflowRun],
                             yesterday_runs: List[WorkflowRun]) -> str:
    """
    Classifies one workflow as consistent, improved, regressed, still_failing
    or no_runs_today.

    :param workflow_id: GitHub workflow id
    :param today_runs: Runs of the selected day (any workflow)
    :param yesterday_runs: Runs of the previous day (any workflow)
    :return: One of HEALTH_STATUSES
    """
    runs = [run for run in today_runs if run.workflow_id == workflow_id]

    # Live runs suppress historical comparison
    if any(run.is_in_progress for run in runs):
        return CONSISTENT
    if not runs:
        return NO_RUNS_TODAY

    yesterday_last = last_run_outcome(workflow_id, yesterday_runs)

    if all(run.conclusion == "success" for run in runs):
        return IMPROVED if yesterday_last == "failure" else CONSISTENT
    if all(run.conclusion == "failure" for run in runs):
        return REGRESSED if yesterday_last == "success" else STILL_FAILING

    successes = sum(1 for run in runs if run.conclusion == "success")
    failures = sum(1 for run in runs if run.conclusion == "failure")

    if yesterday_last is None:
        return IMPROVED if successes > failures else REGRESSED

    today_last = last_run_outcome(workflow_id, runs)
    if yesterday_last == "failure" and today_last == "success":
        return IMPROVED
    if yesterday_last == "success" and today_last == "failure":
        return REGRESSED

    if yesterday_last == "success":
        return CONSISTENT if successes > failures else REGRESSED
    return IMPROVED if successes > failures else STILL_FAILING


def summarize_workflow_health(workflows: List[Workflow], today_runs: List[WorkflowRun],
                              yesterday_runs: List[WorkflowRun]) -> Dict[str, object]:
    """Per-workflow health plus a count for every status."""
    counts = {status: 0 for status in HEALTH_STATUSES}
    entries = []
    for workflow in workflows:
        status = classify_workflow_health(workflow.id, today_runs, yesterday_runs)
        counts[status] += 1
        entries.append({"workflowId": workflow.id, "name": workflow.name, "status": status})

    return {
        "workflows": entries,
        "counts": {
            "consistent": counts[CONSISTENT],
            "improved": counts[IMPROVED],
            "regressed": counts[REGRESSED],
            "stillFailing": counts[STILL_FAILING],
            "noRunsToday": counts[NO_RUNS_TODAY],
        },
    }
