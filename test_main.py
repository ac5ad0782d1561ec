import io
import os
import tempfile
import unittest
from contextlib import redirect_stdout
from unittest.mock import MagicMock, patch

import main


def fake_response(payload):
    response = MagicMock()
    response.status_code = 200
    response.json.return_value = payload
    response.links = {}
    response.headers = {}
    return response


def github_router(url, headers=None, params=None, timeout=None):
    if url.endswith("/actions/workflows"):
        return fake_response({"workflows": [
            {"id": 1, "name": "Build", "path": "build.yml", "state": "active"},
            {"id": 2, "name": "Nightly", "path": "nightly.yml", "state": "active"},
        ]})
    return fake_response({"workflow_runs": [
        {"id": 10, "workflow_id": 1, "status": "completed", "conclusion": "success",
         "run_started_at": "2024-01-15T10:00:00Z", "updated_at": "2024-01-15T10:02:00Z"},
    ]})


class TestMain(unittest.TestCase):
    @patch.dict(os.environ, {}, clear=True)
    def test_missing_token(self):
        with patch("main.load_dotenv"), redirect_stdout(io.StringIO()) as out:
            self.assertEqual(main.main(["--repo", "octocat/hello-world"]), 1)
        self.assertIn("Token not provided", out.getvalue())

    @patch.dict(os.environ, {"OMNILENS_ENV": "production"}, clear=True)
    @patch("github_api_client.requests.get", side_effect=github_router)
    def test_runs_without_web_settings(self, mock_get):
        with patch("config_manager.load_dotenv"), redirect_stdout(io.StringIO()) as out:
            code = main.main(["--token", "t", "--repo", "octocat/hello-world", "--date", "2024-01-15"])
        self.assertEqual(code, 0)
        self.assertIn("Total runs:         1", out.getvalue())

    def test_bad_repository(self):
        with redirect_stdout(io.StringIO()) as out:
            self.assertEqual(main.main(["--token", "t", "--repo", "nonsense"]), 1)
        self.assertIn("not an owner/repo path", out.getvalue())

    def test_bad_date(self):
        with redirect_stdout(io.StringIO()) as out:
            code = main.main(["--token", "t", "--repo", "octocat/hello-world", "--date", "2024-13-40"])
        self.assertEqual(code, 1)
        self.assertIn("YYYY-MM-DD", out.getvalue())

    @patch("github_api_client.requests.get", side_effect=github_router)
    def test_overview_with_reports(self, mock_get):
        with tempfile.TemporaryDirectory() as tmp, redirect_stdout(io.StringIO()) as out:
            code = main.main(["--token", "t", "--repo", "https://github.com/octocat/hello-world",
                              "--date", "2024-01-15", "--health", "--json", "--csv", "--output_dir", tmp])
            files = sorted(os.listdir(tmp))

        self.assertEqual(code, 0)
        text = out.getvalue()
        self.assertIn("Success rate:       100%", text)
        self.assertIn("  - Nightly", text)
        self.assertIn("no_runs_today", text)
        self.assertEqual(files, ["octocat-hello-world_2024-01-15_overview.json",
                                 "octocat-hello-world_2024-01-15_runs.csv"])


if __name__ == '__main__':
    unittest.main()
