import unittest
from unittest.mock import MagicMock, patch

import requests

from errors import NotFoundError, UpstreamAccessError, UpstreamError
from github_api_client import GitHubApiClient, fetch_actions_status


def fake_response(status_code=200, payload=None, next_url=None, headers=None):
    response = MagicMock()
    response.status_code = status_code
    response.json.return_value = payload if payload is not None else {}
    response.links = {"next": {"url": next_url}} if next_url else {}
    response.headers = headers or {}
    response.reason = "Error"
    return response


class TestGitHubApiClient(unittest.TestCase):
    def setUp(self):
        self.client = GitHubApiClient("token-123", user_agent="OmniLens-Test", timeout=5)

    @patch("github_api_client.requests.get")
    def test_sends_auth_accept_and_user_agent_headers(self, mock_get):
        mock_get.return_value = fake_response(payload={"full_name": "octocat/hello-world"})

        self.client.get_repository("octocat", "hello-world")

        args, kwargs = mock_get.call_args
        self.assertEqual(args[0], "https://api.github.com/repos/octocat/hello-world")
        self.assertEqual(kwargs["headers"]["Authorization"], "Bearer token-123")
        self.assertEqual(kwargs["headers"]["Accept"], "application/vnd.github.v3+json")
        self.assertEqual(kwargs["headers"]["User-Agent"], "OmniLens-Test")
        self.assertEqual(kwargs["timeout"], 5)

    @patch("github_api_client.requests.get")
    def test_list_workflows_follows_next_links_without_state_filter(self, mock_get):
        mock_get.side_effect = [
            fake_response(payload={"workflows": [{"id": 1}]}, next_url="https://api.github.com/next?page=2"),
            fake_response(payload={"workflows": [{"id": 2}]}),
        ]

        workflows = self.client.list_workflows("octocat", "hello-world")

        self.assertEqual([w["id"] for w in workflows], [1, 2])
        first_params = mock_get.call_args_list[0].kwargs["params"]
        self.assertNotIn("state", first_params)
        self.assertEqual(mock_get.call_args_list[1].args[0], "https://api.github.com/next?page=2")
        self.assertIsNone(mock_get.call_args_list[1].kwargs["params"])

    @patch("github_api_client.requests.get")
    def test_run_pages_request_created_range(self, mock_get):
        mock_get.return_value = fake_response(payload={"workflow_runs": []})

        pages = list(self.client.iter_workflow_run_pages(
            "octocat", "hello-world", "2024-01-01T00:00:00Z", "2024-01-01T23:59:59Z"))

        self.assertEqual(pages, [[]])
        params = mock_get.call_args.kwargs["params"]
        self.assertEqual(params["created"], "2024-01-01T00:00:00Z..2024-01-01T23:59:59Z")
        self.assertEqual(params["per_page"], 100)

    @patch("github_api_client.requests.get")
    def test_status_codes_map_to_typed_errors(self, mock_get):
        mock_get.return_value = fake_response(status_code=404)
        with self.assertRaises(NotFoundError) as ctx:
            self.client.list_workflows("octocat", "missing")
        self.assertEqual(ctx.exception.message, "Repository not found on GitHub")

        mock_get.return_value = fake_response(status_code=403)
        with self.assertRaises(UpstreamAccessError) as ctx:
            self.client.list_workflows("octocat", "private")
        self.assertEqual(ctx.exception.message, "Access denied to repository workflows")

        mock_get.return_value = fake_response(status_code=502, payload={"message": "Bad Gateway"})
        with self.assertRaises(UpstreamError) as ctx:
            self.client.list_workflows("octocat", "hello-world")
        self.assertEqual(ctx.exception.upstream_status, 502)
        self.assertIn("Bad Gateway", ctx.exception.message)

    @patch("github_api_client.requests.get")
    def test_rate_limit_is_a_generic_upstream_error(self, mock_get):
        mock_get.return_value = fake_response(status_code=403, headers={"X-RateLimit-Remaining": "0"})
        with self.assertRaises(UpstreamError) as ctx:
            self.client.get_repository("octocat", "hello-world")
        self.assertNotIsInstance(ctx.exception, UpstreamAccessError)
        self.assertEqual(ctx.exception.upstream_status, 403)

    @patch("github_api_client.requests.get")
    def test_failed_second_page_fails_the_listing(self, mock_get):
        mock_get.side_effect = [
            fake_response(payload={"workflows": [{"id": 1}]}, next_url="https://api.github.com/next?page=2"),
            fake_response(status_code=500),
        ]
        with self.assertRaises(UpstreamError):
            self.client.list_workflows("octocat", "hello-world")

    @patch("github_api_client.requests.get")
    def test_transport_errors_become_upstream_errors(self, mock_get):
        mock_get.side_effect = requests.exceptions.ConnectionError("boom")
        with self.assertRaises(UpstreamError):
            self.client.get_authenticated_user()
        self.assertEqual(mock_get.call_count, 1)

    @patch("github_api_client.requests.get")
    def test_missing_list_key_is_rejected(self, mock_get):
        mock_get.return_value = fake_response(payload={"message": "unexpected"})
        with self.assertRaises(UpstreamError):
            self.client.list_workflows("octocat", "hello-world")


class TestFetchActionsStatus(unittest.TestCase):
    @patch("github_api_client.requests.get")
    def test_returns_components(self, mock_get):
        mock_get.return_value = fake_response(payload={"components": [{"name": "Actions"}]})
        data = fetch_actions_status("https://status.example/components.json")
        self.assertEqual(data["components"][0]["name"], "Actions")

    @patch("github_api_client.requests.get")
    def test_error_status_raises(self, mock_get):
        mock_get.return_value = fake_response(status_code=503)
        with self.assertRaises(UpstreamError):
            fetch_actions_status("https://status.example/components.json")


if __name__ == '__main__':
    unittest.main()
