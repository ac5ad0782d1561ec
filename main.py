import argparse
import logging
import os
import sys

from dotenv import load_dotenv

from config_manager import AppConfig
from errors import OmniLensError
from health_classifier import summarize_workflow_health
from metrics_aggregator import MetricsAggregator
from report_exporter import ReportExporter
from utils import format_duration_hms, normalize_repo_input, parse_day, previous_day, utc_today
from visualization import render_hourly_chart
from workflow_fetcher import WorkflowFetcher

CLI_USER = "cli"


def print_overview(repo_path: str, day, overview):
    print(f"\nWorkflow overview for {repo_path} on {day.isoformat()} (UTC)")
    print("=" * 60)
    print(f"Active workflows:   {overview.total_workflows}")
    print(f"Total runs:         {overview.total_runs}")
    print(f"Completed:          {overview.completed_runs}")
    print(f"In progress:        {overview.in_progress_runs}")
    print(f"Passed / failed:    {overview.passed_runs} / {overview.failed_runs}")
    print(f"Success rate:       {overview.success_rate}%")
    print(f"Total runtime:      {format_duration_hms(overview.total_runtime * 1000)}")
    print(f"Runs per hour:      avg {overview.avg_runs_per_hour}, "
          f"min {overview.min_runs_per_hour}, max {overview.max_runs_per_hour}")
    if overview.missing_workflows:
        print(f"Didn't run ({overview.didnt_run_count}):")
        for name in overview.missing_workflows:
            print(f"  - {name}")
    print("=" * 60)


def main(argv=None):
    load_dotenv()  # Load environment variables from .env file

    parser = argparse.ArgumentParser(description="Daily GitHub Actions overview for one repository.")
    parser.add_argument("--token", type=str, default=os.getenv("GITHUB_TOKEN"),
                        help="GitHub Personal Access Token. Can also be set via GITHUB_TOKEN environment variable.")
    parser.add_argument("--repo", type=str, required=True, help="Repository as owner/repo or a github.com URL.")
    parser.add_argument("--date", type=str, default=None, help="Day to report, YYYY-MM-DD (default: today, UTC).")
    parser.add_argument("--health", action="store_true",
                        help="Also classify each workflow against the previous day.")
    parser.add_argument("--output_dir", type=str, default="./reports", help="Directory to save the reports.")
    parser.add_argument("--json", action="store_true", help="Save the overview as JSON.")
    parser.add_argument("--csv", action="store_true", help="Save the day's runs as CSV.")
    parser.add_argument("--chart", action="store_true", help="Save the hourly chart as PNG.")
    parser.add_argument("--verbose", action="store_true", help="Log GitHub requests.")
    args = parser.parse_args(argv)

    logging.basicConfig(level=logging.INFO if args.verbose else logging.WARNING,
                        format="%(levelname)s %(name)s: %(message)s")

    if not args.token:
        print("Error: GitHub Personal Access Token not provided. "
              "Please set GITHUB_TOKEN environment variable or use --token argument.")
        return 1

    repo_path = normalize_repo_input(args.repo)
    if not repo_path:
        print(f"Error: '{args.repo}' is not an owner/repo path or a github.com URL.")
        return 1

    token = args.token
    fetcher = WorkflowFetcher(AppConfig.github_client_from_env(), lambda _user_id: token)
    aggregator = MetricsAggregator()
    exporter = ReportExporter()

    try:
        day = parse_day(args.date) if args.date else utc_today()
        active_workflows = fetcher.list_active_workflows(CLI_USER, repo_path)
        active_ids = {wf.id for wf in active_workflows}
        runs = [run for run in fetcher.list_runs_for_date(CLI_USER, repo_path, day)
                if run.workflow_id in active_ids]
        yesterday_runs = []
        if args.health and active_workflows:
            yesterday_runs = fetcher.list_runs_for_date(CLI_USER, repo_path, previous_day(day))
    except OmniLensError as e:
        print(f"Error: {e.message}")
        return 1

    overview = aggregator.calculate_daily_overview(active_workflows, runs)
    if not active_workflows:
        print(f"No active workflows found for {repo_path}.")
    print_overview(repo_path, day, overview)

    if args.health:
        summary = summarize_workflow_health(active_workflows, runs, yesterday_runs)
        print(f"\nHealth compared to {previous_day(day).isoformat()}:")
        for entry in summary["workflows"]:
            print(f"  {entry['status']:<14} {entry['name']}")

    if args.json or args.csv or args.chart:
        os.makedirs(args.output_dir, exist_ok=True)
        prefix = os.path.join(args.output_dir, f"{repo_path.replace('/', '-')}_{day.isoformat()}")
        if args.json:
            exporter.export_to_json({
                "repository": repo_path,
                "date": day.isoformat(),
                "overview": overview.to_dict(),
                "workflowRuns": [run.to_dict() for run in runs],
            }, f"{prefix}_overview.json")
        if args.csv:
            exporter.export_runs_to_csv(runs, repo_path, day, f"{prefix}_runs.csv")
        if args.chart:
            render_hourly_chart(overview, title=f"{repo_path} runs on {day.isoformat()} (UTC)",
                                out_file=f"{prefix}_hourly.png")
        print("Reports saved to", args.output_dir)

    return 0


if __name__ == "__main__":
    sys.exit(main())
