import unittest
from datetime import date, datetime, timezone

from errors import ValidationError
from utils import (
    day_window,
    duration_between,
    format_duration_hms,
    generate_github_run_url,
    normalize_repo_input,
    parse_day,
    previous_day,
    slug_from_repo_path,
    split_repo_path,
    validate_slug,
)


class TestParseDay(unittest.TestCase):
    def test_valid_date(self):
        self.assertEqual(parse_day("2024-02-29"), date(2024, 2, 29))

    def test_impossible_calendar_date_is_rejected(self):
        with self.assertRaises(ValidationError) as ctx:
            parse_day("2024-13-40")
        self.assertEqual(ctx.exception.status_code, 400)
        self.assertIn("YYYY-MM-DD", ctx.exception.message)

    def test_wrong_shape_is_rejected(self):
        for value in ("2024-1-5", "20240105", "2024-01-05T00:00:00Z", "", None):
            with self.subTest(value=value):
                with self.assertRaises(ValidationError):
                    parse_day(value)


class TestDayHelpers(unittest.TestCase):
    def test_day_window_covers_whole_utc_day(self):
        start, end = day_window(date(2024, 1, 1))
        self.assertEqual(start, datetime(2024, 1, 1, 0, 0, 0, tzinfo=timezone.utc))
        self.assertEqual(end, datetime(2024, 1, 1, 23, 59, 59, tzinfo=timezone.utc))

    def test_previous_day_crosses_month(self):
        self.assertEqual(previous_day(date(2024, 3, 1)), date(2024, 2, 29))


class TestDurations(unittest.TestCase):
    def test_format_duration_hms(self):
        self.assertEqual(format_duration_hms(3661000), "1h 1m 1s")
        self.assertEqual(format_duration_hms(65000), "1m 5s")
        self.assertEqual(format_duration_hms(30000), "30s")
        self.assertEqual(format_duration_hms(None), "-")

    def test_duration_between_uses_magnitude(self):
        start = datetime(2024, 1, 1, 10, 0, tzinfo=timezone.utc)
        end = datetime(2024, 1, 1, 12, 0, tzinfo=timezone.utc)
        self.assertEqual(duration_between(start, end), "2h 0m 0s")
        self.assertEqual(duration_between(end, start), "2h 0m 0s")
        self.assertEqual(duration_between(None, end), "-")


class TestRepositoryNames(unittest.TestCase):
    def test_slug_from_repo_path(self):
        self.assertEqual(slug_from_repo_path("octocat/hello-world"), "octocat-hello-world")

    def test_split_repo_path(self):
        self.assertEqual(split_repo_path("octocat/hello-world"), ("octocat", "hello-world"))
        for bad in ("octocat", "octocat/", "/hello", "a/b/c"):
            with self.subTest(bad=bad):
                with self.assertRaises(ValidationError):
                    split_repo_path(bad)

    def test_validate_slug(self):
        self.assertEqual(validate_slug(" octocat-hello-world "), "octocat-hello-world")
        for bad in ("", "   ", "a/b", "bad slug"):
            with self.subTest(bad=bad):
                with self.assertRaises(ValidationError):
                    validate_slug(bad)

    def test_normalize_repo_input(self):
        self.assertEqual(normalize_repo_input("octocat/hello-world"), "octocat/hello-world")
        self.assertEqual(normalize_repo_input("https://github.com/octocat/hello-world/tree/main"),
                         "octocat/hello-world")
        self.assertIsNone(normalize_repo_input("https://gitlab.com/octocat/hello-world"))
        self.assertIsNone(normalize_repo_input("https://github.com/octocat"))
        self.assertIsNone(normalize_repo_input("just-a-name"))

    def test_generate_github_run_url(self):
        self.assertEqual(generate_github_run_url("owner/repo", 67890),
                         "https://github.com/owner/repo/actions/runs/67890")
        self.assertEqual(generate_github_run_url("", 1), "")


if __name__ == '__main__':
    unittest.main()
