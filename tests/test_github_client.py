import unittest
from datetime import datetime, timedelta, timezone
from types import SimpleNamespace
from unittest.mock import Mock, patch

from githubkit.exception import GraphQLFailed, RateLimitExceeded, RequestFailed
from sync_fixtures import issue_node

from app.services import github_client as github_client_module
from app.services.exceptions import (
    AuthenticationError,
    ConfigurationError,
    RemoteRateLimited,
    RemoteRepositoryNotFound,
    TransportError,
)
from app.services.github_client import ISSUES_CURSOR_QUERY, ISSUES_QUERY, GitHubGraphQLClient


def _request_failed(status, headers=None, cls=RequestFailed):
    exc = cls.__new__(cls)
    exc.request = SimpleNamespace(method="POST", url="https://api.github.com/graphql")
    exc.response = SimpleNamespace(status_code=status, headers=headers or {})
    return exc


def _graphql_failed(*errors):
    exc = GraphQLFailed.__new__(GraphQLFailed)
    exc.response = SimpleNamespace(
        errors=[SimpleNamespace(type=t, message=m) for t, m in errors]
    )
    return exc


def _classify(exc):
    return GitHubGraphQLClient._classify(exc, owner="acme", name="widgets")


class GitHubGraphQLClientTests(unittest.TestCase):
    def setUp(self):
        self.client = GitHubGraphQLClient("test-token")
        self.client.github = Mock()
        self.request = self.client.github.graphql.request

    def test_fetch_issues_page_parses_nodes_cursor_and_rate_limit(self):
        self.request.return_value = {
            "rateLimit": {"remaining": 0, "resetAt": "2025-01-01T12:00:20Z"},
            "repository": {
                "issues": {
                    "pageInfo": {"hasNextPage": True, "endCursor": "Y3Vyc29yOjI="},
                    "nodes": [issue_node(1), None, issue_node(2)],
                }
            },
        }

        page = self.client.fetch_issues_page("acme", "widgets", first=2)

        self.assertEqual([n["databaseId"] for n in page.nodes], [1, 2])
        self.assertEqual(page.end_cursor, "Y3Vyc29yOjI=")
        self.assertTrue(page.has_next_page)
        self.assertEqual(page.rate_limit.remaining, 0)
        self.assertEqual(page.rate_limit.reset_at, datetime(2025, 1, 1, 12, 0, 20, tzinfo=timezone.utc))

    def test_query_variables_carry_filters(self):
        self.request.return_value = {
            "repository": {"issues": {"pageInfo": {"hasNextPage": False, "endCursor": None}, "nodes": []}}
        }

        page = self.client.fetch_issues_page(
            "acme",
            "widgets",
            first=25,
            after="abc",
            states=["OPEN", "CLOSED"],
            since=datetime(2025, 3, 1, 8, 30),
        )

        query, variables = self.request.call_args[0]
        self.assertEqual(query, ISSUES_QUERY)
        self.assertEqual(
            variables,
            {
                "owner": "acme",
                "name": "widgets",
                "first": 25,
                "after": "abc",
                "states": ["OPEN", "CLOSED"],
                "since": "2025-03-01T08:30:00+00:00",
            },
        )
        self.assertIsNone(page.rate_limit)
        self.assertFalse(page.has_next_page)

    def test_unfiltered_query_sends_nulls(self):
        self.request.return_value = {"repository": {"issues": {}}}

        self.client.fetch_issues_page("acme", "widgets", first=10)

        variables = self.request.call_args[0][1]
        self.assertIsNone(variables["states"])
        self.assertIsNone(variables["since"])
        self.assertIsNone(variables["after"])

    def test_null_repository_is_not_found(self):
        self.request.return_value = {"repository": None}

        with self.assertRaises(RemoteRepositoryNotFound):
            self.client.fetch_issues_page("acme", "widgets", first=10)

    def test_fetch_issues_cursor_returns_page_info_only(self):
        self.request.return_value = {
            "repository": {"issues": {"pageInfo": {"hasNextPage": True, "endCursor": "next"}}}
        }

        result = self.client.fetch_issues_cursor("acme", "widgets", first=10, after="prev")

        self.assertEqual(result, ("next", True))
        self.assertEqual(self.request.call_args[0][0], ISSUES_CURSOR_QUERY)

    def test_request_failures_are_classified_and_chained(self):
        original = _request_failed(401)
        self.request.side_effect = original

        with self.assertRaises(AuthenticationError) as ctx:
            self.client.fetch_issues_page("acme", "widgets", first=10)
        self.assertIs(ctx.exception.__cause__, original)

    def test_from_settings_requires_token(self):
        with patch.object(github_client_module.settings, "github_token", None):
            with self.assertRaises(ConfigurationError):
                GitHubGraphQLClient.from_settings()

    def test_from_settings_applies_request_timeout(self):
        with patch.object(github_client_module.settings, "github_token", "t0ken"):
            self.assertEqual(GitHubGraphQLClient.from_settings(timeout=5).timeout, 5)
            self.assertEqual(
                GitHubGraphQLClient.from_settings().timeout,
                github_client_module.settings.github_request_timeout_seconds,
            )


class ClassifyTests(unittest.TestCase):
    def test_http_status_codes(self):
        self.assertIsInstance(_classify(_request_failed(401)), AuthenticationError)
        self.assertIsInstance(_classify(_request_failed(403)), AuthenticationError)
        self.assertIsInstance(_classify(_request_failed(404)), RemoteRepositoryNotFound)
        self.assertIsInstance(_classify(_request_failed(429)), RemoteRateLimited)

        server_error = _classify(_request_failed(502))
        self.assertIsInstance(server_error, TransportError)
        self.assertEqual(server_error.status_code, 502)

    def test_forbidden_with_rate_limit_headers_is_a_rate_limit(self):
        limited = _classify(_request_failed(403, {"retry-after": "30"}))
        self.assertIsInstance(limited, RemoteRateLimited)
        self.assertEqual(limited.retry_after, 30.0)

        exhausted = _classify(_request_failed(403, {"x-ratelimit-remaining": "0"}))
        self.assertIsInstance(exhausted, RemoteRateLimited)
        self.assertIsNone(exhausted.retry_after)

    def test_githubkit_rate_limit_carries_retry_after(self):
        exc = _request_failed(403, cls=RateLimitExceeded)
        exc.retry_after = timedelta(seconds=45)

        classified = _classify(exc)

        self.assertIsInstance(classified, RemoteRateLimited)
        self.assertEqual(classified.retry_after, 45.0)

    def test_graphql_error_types(self):
        self.assertIsInstance(
            _classify(_graphql_failed(("RATE_LIMITED", "API rate limit exceeded"))), RemoteRateLimited
        )
        self.assertIsInstance(
            _classify(_graphql_failed(("NOT_FOUND", "Could not resolve to a Repository"))),
            RemoteRepositoryNotFound,
        )
        self.assertIsInstance(
            _classify(_graphql_failed(("FORBIDDEN", "Resource not accessible"))), AuthenticationError
        )

        other = _classify(_graphql_failed((None, "Something went wrong"), (None, "again")))
        self.assertIsInstance(other, TransportError)
        self.assertEqual(str(other), "Something went wrong; again")


if __name__ == "__main__":
    unittest.main()
