import csv
import io
import json
import os
import tempfile
import unittest
from concurrent.futures import ThreadPoolExecutor
from datetime import date
from unittest.mock import patch

from data_models import DailyOverview, WorkflowRun
from report_exporter import RUN_CSV_FIELDS, ReportExporter
from visualization import render_hourly_chart


def make_run(run_id, status="completed", conclusion="success", html_url=""):
    return WorkflowRun(
        id=run_id,
        workflow_id=1,
        status=status,
        conclusion=conclusion,
        run_started_at="2024-01-15T10:00:00Z",
        updated_at="2024-01-15T10:05:00Z",
        html_url=html_url,
        name="Build",
        head_branch="main",
        event="push",
        run_number=run_id,
    )


def data_lines(content):
    return [line for line in content.splitlines() if not line.startswith("#")]


class TestReportExporter(unittest.TestCase):
    def setUp(self):
        self.exporter = ReportExporter()
        self.day = date(2024, 1, 15)

    def test_csv_has_metadata_and_rows(self):
        content = self.exporter.runs_to_csv([make_run(1), make_run(2, "in_progress", None)],
                                            "octocat/hello-world", self.day)

        self.assertTrue(content.startswith("# OmniLens Workflow Runs Report"))
        self.assertIn("# Date (UTC): 2024-01-15", content)
        self.assertIn("# Runs: 2", content)

        rows = list(csv.DictReader(io.StringIO("\n".join(data_lines(content)))))
        self.assertEqual(len(rows), 2)
        self.assertEqual(rows[0]["duration"], "5m 0s")
        self.assertEqual(rows[0]["github_url"], "https://github.com/octocat/hello-world/actions/runs/1")
        self.assertEqual(rows[1]["duration"], "-")
        self.assertEqual(rows[1]["conclusion"], "")

    def test_csv_without_runs_still_has_header(self):
        content = self.exporter.runs_to_csv([], "octocat/hello-world", self.day, include_metadata=False)
        self.assertEqual(content.strip(), ",".join(RUN_CSV_FIELDS))

    def test_html_url_from_github_is_preferred(self):
        rows = self.exporter.runs_to_rows([make_run(3, html_url="https://ghe.example/runs/3")], "a/b")
        self.assertEqual(rows[0]["github_url"], "https://ghe.example/runs/3")

    def test_file_exports(self):
        with tempfile.TemporaryDirectory() as tmp:
            csv_path = os.path.join(tmp, "runs.csv")
            json_path = os.path.join(tmp, "overview.json")

            self.exporter.export_runs_to_csv([make_run(1)], "octocat/hello-world", self.day, csv_path)
            self.exporter.export_to_json({"totalRuns": 1}, json_path)

            with open(csv_path) as f:
                self.assertEqual(len(data_lines(f.read())), 2)
            with open(json_path) as f:
                self.assertEqual(json.load(f), {"totalRuns": 1})


class TestHourlyChart(unittest.TestCase):
    def test_renders_png_and_writes_file(self):
        overview = DailyOverview(total_runs=1, avg_runs_per_hour=0.0)
        overview.runs_by_hour[10] = 1
        overview.hourly_breakdown[10].passed = 1

        with tempfile.TemporaryDirectory() as tmp:
            out_file = os.path.join(tmp, "chart.png")
            png = render_hourly_chart(overview, out_file=out_file)
            self.assertTrue(png.startswith(b"\x89PNG"))
            self.assertTrue(os.path.exists(out_file))

    def test_concurrent_renders_do_not_use_pyplot_state(self):
        overview = DailyOverview(total_runs=2, avg_runs_per_hour=0.1)
        overview.runs_by_hour[3] = 2
        overview.hourly_breakdown[3].failed = 2

        with patch("matplotlib.pyplot.subplots", side_effect=AssertionError("pyplot used")), \
                patch("matplotlib.pyplot.tight_layout", side_effect=AssertionError("pyplot used")), \
                ThreadPoolExecutor(max_workers=4) as executor:
            charts = list(executor.map(lambda i: render_hourly_chart(overview, title=f"chart {i}"), range(4)))

        self.assertEqual(len(charts), 4)
        for png in charts:
            self.assertTrue(png.startswith(b"\x89PNG"))


if __name__ == '__main__':
    unittest.main()
