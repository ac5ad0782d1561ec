import json
import csv
import io
import logging
from datetime import date, datetime, timezone
from typing import Dict, Any, List, Optional, TextIO

from data_models import WorkflowRun, format_timestamp
from utils import duration_between, generate_github_run_url

logger = logging.getLogger(__name__)

RUN_CSV_FIELDS = [
    "run_id", "workflow_id", "name", "status", "conclusion", "head_branch", "event",
    "run_number", "run_started_at", "updated_at", "duration", "github_url",
]


class ReportExporter:
    def export_to_json(self, data: Dict[str, Any], filename: str):
        """Exports data to a JSON file."""
        with open(filename, 'w') as f:
            json.dump(data, f, indent=4)
        logger.info("Data successfully exported to %s", filename)

    def runs_to_rows(self, runs: List[WorkflowRun], repo_path: str) -> List[Dict[str, Any]]:
        """Flattens runs into CSV rows, one per run."""
        rows = []
        for run in runs:
            rows.append({
                "run_id": run.id,
                "workflow_id": run.workflow_id,
                "name": run.name or "",
                "status": run.status,
                "conclusion": run.conclusion or "",
                "head_branch": run.head_branch or "",
                "event": run.event or "",
                "run_number": run.run_number if run.run_number is not None else "",
                "run_started_at": format_timestamp(run.started_at) or "",
                "updated_at": format_timestamp(run.updated_at) or "",
                "duration": duration_between(run.run_started_at, run.updated_at) if run.status == "completed" else "-",
                "github_url": run.html_url or generate_github_run_url(repo_path, run.id),
            })
        return rows

    def runs_to_csv(self, runs: List[WorkflowRun], repo_path: str, day: date,
                    include_metadata: bool = True) -> str:
        """Exports one day's runs to a CSV formatted string.

        The header row is always written, so a day without runs still yields a valid file.

        :param runs: Runs to export
        :param repo_path: 'owner/repo', used for the metadata and for run URLs
        :param day: The day the runs belong to
        :param include_metadata: Write '#' comment lines describing the export first
        :return: CSV formatted string
        """
        output = io.StringIO()
        self._write_runs(output, runs, repo_path, day, include_metadata)
        return output.getvalue()

    def export_runs_to_csv(self, runs: List[WorkflowRun], repo_path: str, day: date, filename: str):
        """Writes the same CSV as ``runs_to_csv`` to a file."""
        with open(filename, 'w', newline='') as f:
            self._write_runs(f, runs, repo_path, day, include_metadata=True)
        logger.info("%d runs exported to %s", len(runs), filename)

    def _write_runs(self, file_obj: TextIO, runs: List[WorkflowRun], repo_path: str, day: date,
                    include_metadata: bool):
        if include_metadata:
            self._write_metadata_comments(file_obj, {
                "repository": repo_path,
                "date": day.isoformat(),
                "run_count": len(runs),
            })
        writer = csv.DictWriter(file_obj, fieldnames=RUN_CSV_FIELDS)
        writer.writeheader()
        writer.writerows(self.runs_to_rows(runs, repo_path))

    def _write_metadata_comments(self, file_obj: TextIO, metadata: Optional[Dict[str, Any]]):
        """Writes export metadata as CSV comment lines (lines starting with #).

        :param file_obj: File object or StringIO to write to
        :param metadata: Dictionary containing repository, date and run_count
        """
        file_obj.write("# OmniLens Workflow Runs Report\n")
        file_obj.write(f"# Generated: {datetime.now(timezone.utc).strftime('%Y-%m-%d %H:%M:%S')} UTC\n")
        file_obj.write("#\n")

        if metadata:
            if 'repository' in metadata:
                file_obj.write(f"# Repository: {metadata['repository']}\n")
            if 'date' in metadata:
                file_obj.write(f"# Date (UTC): {metadata['date']}\n")
            if 'run_count' in metadata:
                file_obj.write(f"# Runs: {metadata['run_count']}\n")

        file_obj.write("#\n")
