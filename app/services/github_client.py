"""GitHub GraphQL client wrapper"""
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Sequence, Tuple

from githubkit import GitHub
from githubkit.auth import TokenAuthStrategy
from githubkit.exception import (
    GraphQLFailed,
    RateLimitExceeded,
    RequestError,
    RequestFailed,
    RequestTimeout,
)

from app.config import settings
from app.services.exceptions import (
    AuthenticationError,
    ConfigurationError,
    RemoteRateLimited,
    RemoteRepositoryNotFound,
    TransportError,
)

logger = logging.getLogger(__name__)

ISSUES_QUERY = """
query RepositoryIssues(
  $owner: String!, $name: String!, $first: Int!, $after: String,
  $states: [IssueState!], $since: DateTime
) {
  rateLimit { remaining resetAt }
  repository(owner: $owner, name: $name) {
    issues(
      first: $first, after: $after, states: $states,
      filterBy: {since: $since}, orderBy: {field: CREATED_AT, direction: ASC}
    ) {
      pageInfo { hasNextPage endCursor }
      nodes {
        databaseId
        number
        title
        body
        state
        createdAt
        updatedAt
        closedAt
        assignees(first: 1) { nodes { login } }
        closedByPullRequestsReferences(first: 1, includeClosedPrs: true) {
          nodes { databaseId number state }
        }
      }
    }
  }
}
"""

# Same connection and arguments, pageInfo only: used to step over a page whose
# full payload can't be fetched.
ISSUES_CURSOR_QUERY = """
query RepositoryIssuesCursor(
  $owner: String!, $name: String!, $first: Int!, $after: String,
  $states: [IssueState!], $since: DateTime
) {
  repository(owner: $owner, name: $name) {
    issues(
      first: $first, after: $after, states: $states,
      filterBy: {since: $since}, orderBy: {field: CREATED_AT, direction: ASC}
    ) {
      pageInfo { hasNextPage endCursor }
    }
  }
}
"""


@dataclass(frozen=True)
class RateLimitHint:
    remaining: int
    reset_at: Optional[datetime] = None


@dataclass
class IssuePage:
    """One page of raw issue nodes as returned by the remote"""

    nodes: List[Dict[str, Any]] = field(default_factory=list)
    end_cursor: Optional[str] = None
    has_next_page: bool = False
    rate_limit: Optional[RateLimitHint] = None


def _parse_datetime(value: Optional[str]) -> Optional[datetime]:
    if not value:
        return None
    try:
        return datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return None


class GitHubGraphQLClient:
    """Executes the paginated issue queries and classifies remote failures.

    Every failure leaves this class as one of: ``RemoteRateLimited`` (absorbed by
    the pager), ``AuthenticationError``, ``RemoteRepositoryNotFound`` or
    ``TransportError``.
    """

    def __init__(self, token: str, base_url: str = "https://api.github.com", timeout: Optional[float] = None):
        """Initialize GitHub client"""
        self.base_url = base_url
        self.timeout = timeout
        # Retries and rate-limit waits are owned by the pager/sync loop.
        self.github = GitHub(
            TokenAuthStrategy(token),
            base_url=base_url,
            timeout=timeout,
            http_cache=False,
            auto_retry=False,
        )

    @classmethod
    def from_settings(cls, timeout: Optional[float] = None) -> "GitHubGraphQLClient":
        """Client for the configured token; ``timeout`` caps each HTTP request."""
        if not settings.github_token:
            raise ConfigurationError("GITHUB_TOKEN is not configured")
        if timeout is None:
            timeout = settings.github_request_timeout_seconds
        return cls(settings.github_token, settings.github_api_url, timeout=timeout)

    @staticmethod
    def _variables(
        owner: str,
        name: str,
        *,
        first: int,
        after: Optional[str],
        states: Optional[Sequence[str]],
        since: Optional[datetime],
    ) -> Dict[str, Any]:
        if since is not None and since.tzinfo is None:
            since = since.replace(tzinfo=timezone.utc)
        return {
            "owner": owner,
            "name": name,
            "first": int(first),
            "after": after,
            "states": list(states) if states else None,
            "since": since.isoformat() if since else None,
        }

    @staticmethod
    def _classify(exc: Exception, *, owner: str, name: str) -> Exception:
        """Map a githubkit failure onto the sync error taxonomy."""
        if isinstance(exc, RateLimitExceeded):
            retry_after = exc.retry_after.total_seconds() if exc.retry_after else None
            return RemoteRateLimited(retry_after, message="GitHub rate limit exceeded")

        if isinstance(exc, GraphQLFailed):
            errors = list(getattr(exc.response, "errors", None) or [])
            types = {str(getattr(e, "type", "") or "").upper() for e in errors}
            message = "; ".join(str(getattr(e, "message", e)) for e in errors) or "GraphQL request failed"
            if "RATE_LIMITED" in types:
                return RemoteRateLimited(None, message=message)
            if "NOT_FOUND" in types:
                return RemoteRepositoryNotFound(f"Repository {owner}/{name} not found: {message}")
            if "FORBIDDEN" in types or "UNAUTHORIZED" in types:
                return AuthenticationError(f"Access to {owner}/{name} denied: {message}")
            return TransportError(message)

        if isinstance(exc, RequestFailed):
            response = exc.response
            status = response.status_code
            if status == 401:
                return AuthenticationError("GitHub rejected the credentials (HTTP 401)")
            if status == 403:
                headers = getattr(response, "headers", None) or {}
                retry_after = headers.get("retry-after")
                if retry_after is not None or headers.get("x-ratelimit-remaining") == "0":
                    try:
                        wait = float(retry_after) if retry_after is not None else None
                    except ValueError:
                        wait = None
                    return RemoteRateLimited(wait, message="GitHub secondary rate limit (HTTP 403)")
                return AuthenticationError(f"GitHub denied access to {owner}/{name} (HTTP 403)")
            if status == 404:
                return RemoteRepositoryNotFound(f"Repository {owner}/{name} not found (HTTP 404)")
            if status == 429:
                return RemoteRateLimited(None, message="GitHub rate limit (HTTP 429)")
            return TransportError("GitHub request failed", status_code=status)

        if isinstance(exc, (RequestError, RequestTimeout)):
            return TransportError(str(exc))

        return exc

    def _execute(self, query: str, variables: Dict[str, Any]) -> Dict[str, Any]:
        try:
            return self.github.graphql.request(query, variables)
        except (RequestFailed, GraphQLFailed, RequestError, RequestTimeout) as e:
            classified = self._classify(e, owner=variables["owner"], name=variables["name"])
            logger.debug(f"GraphQL request failed ({type(classified).__name__}): {classified}")
            raise classified from e

    @staticmethod
    def _issues_connection(data: Dict[str, Any], owner: str, name: str) -> Dict[str, Any]:
        repository = (data or {}).get("repository")
        if repository is None:
            raise RemoteRepositoryNotFound(f"Repository {owner}/{name} not found")
        return repository.get("issues") or {}

    def fetch_issues_page(
        self,
        owner: str,
        name: str,
        *,
        first: int,
        after: Optional[str] = None,
        states: Optional[Sequence[str]] = None,
        since: Optional[datetime] = None,
    ) -> IssuePage:
        """Fetch one page of issues after ``after``."""
        variables = self._variables(owner, name, first=first, after=after, states=states, since=since)
        data = self._execute(ISSUES_QUERY, variables)
        issues = self._issues_connection(data, owner, name)
        page_info = issues.get("pageInfo") or {}

        hint = None
        rate_limit = (data or {}).get("rateLimit")
        if rate_limit and rate_limit.get("remaining") is not None:
            hint = RateLimitHint(
                remaining=int(rate_limit["remaining"]),
                reset_at=_parse_datetime(rate_limit.get("resetAt")),
            )

        return IssuePage(
            nodes=[n for n in (issues.get("nodes") or []) if n is not None],
            end_cursor=page_info.get("endCursor"),
            has_next_page=bool(page_info.get("hasNextPage")),
            rate_limit=hint,
        )

    def fetch_issues_cursor(
        self,
        owner: str,
        name: str,
        *,
        first: int,
        after: Optional[str] = None,
        states: Optional[Sequence[str]] = None,
        since: Optional[datetime] = None,
    ) -> Tuple[Optional[str], bool]:
        """Return (endCursor, hasNextPage) of the page after ``after`` without its nodes."""
        variables = self._variables(owner, name, first=first, after=after, states=states, since=since)
        data = self._execute(ISSUES_CURSOR_QUERY, variables)
        page_info = self._issues_connection(data, owner, name).get("pageInfo") or {}
        return page_info.get("endCursor"), bool(page_info.get("hasNextPage"))
