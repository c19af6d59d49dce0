"""Cursor pagination over a repository's remote issues"""
import logging
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Iterator, List, Optional

from app.config import settings
from app.schemas.sync import SyncOptions
from app.services.exceptions import RateLimitExceeded, RemoteRateLimited, SyncTimeout
from app.services.github_client import GitHubGraphQLClient, RateLimitHint

logger = logging.getLogger(__name__)


@dataclass
class RemotePage:
    """A bounded batch of raw remote issue records"""

    number: int
    records: List[Dict[str, Any]] = field(default_factory=list)
    next_cursor: Optional[str] = None  # None at end of sequence


class RemotePager:
    """Lazy, finite, non-restartable sequence of issue pages.

    ``fetch_next()`` only advances the cursor after a page was fetched, so a
    caller may call it again after a transient error to retry the same page.
    Remote rate-limit signals are absorbed here by sleeping; once the cumulative
    wait would exceed ``max_wait_seconds`` the pager raises ``RateLimitExceeded``.
    A wait that would run past ``deadline`` (a ``clock()`` value) raises
    ``SyncTimeout`` instead.
    """

    def __init__(
        self,
        client: GitHubGraphQLClient,
        owner: str,
        name: str,
        options: SyncOptions,
        *,
        deadline: Optional[float] = None,
        timeout_seconds: float = 0.0,
        max_wait_seconds: Optional[float] = None,
        default_wait_seconds: Optional[float] = None,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], float] = time.monotonic,
        utcnow: Callable[[], datetime] = lambda: datetime.now(timezone.utc),
    ):
        self.client = client
        self.owner = owner
        self.name = name
        self.options = options
        self.deadline = deadline
        self.timeout_seconds = timeout_seconds
        self.max_wait_seconds = (
            settings.sync_rate_limit_max_wait_seconds if max_wait_seconds is None else max_wait_seconds
        )
        self.default_wait_seconds = (
            settings.sync_rate_limit_default_wait_seconds
            if default_wait_seconds is None
            else default_wait_seconds
        )
        self._sleep = sleep
        self._clock = clock
        self._utcnow = utcnow

        self._cursor: Optional[str] = None
        self._page_number = 0
        self._pending_hint: Optional[RateLimitHint] = None
        self.exhausted = False
        self.waited_seconds = 0.0

    @property
    def page_number(self) -> int:
        """Number of the page the next fetch will return (1-based)."""
        return self._page_number + 1

    def _query_kwargs(self) -> Dict[str, Any]:
        return {
            "first": self.options.batch_size,
            "after": self._cursor,
            "states": self.options.states,
            "since": self.options.since,
        }

    def _suspend(self, seconds: float, reason: str):
        seconds = max(0.0, float(seconds))
        if self.waited_seconds + seconds > self.max_wait_seconds:
            raise RateLimitExceeded(self.waited_seconds + seconds, self.max_wait_seconds)
        if self.deadline is not None and self._clock() + seconds > self.deadline:
            raise SyncTimeout(self.timeout_seconds)
        logger.warning(
            f"Rate limited on {self.owner}/{self.name} page {self.page_number}, "
            f"waiting {seconds:.1f}s ({reason})"
        )
        self._sleep(seconds)
        self.waited_seconds += seconds

    def _wait_for_quota_reset(self):
        hint, self._pending_hint = self._pending_hint, None
        if hint is None or hint.remaining > 0 or hint.reset_at is None:
            return
        reset_at = hint.reset_at
        if reset_at.tzinfo is None:
            reset_at = reset_at.replace(tzinfo=timezone.utc)
        wait = (reset_at - self._utcnow()).total_seconds()
        if wait > 0:
            # One extra second so the request lands after the reset.
            self._suspend(wait + 1, "remote quota exhausted")

    def _call(self, fn, **kwargs):
        """Invoke a client call, sleeping through remote rate-limit signals."""
        while True:
            try:
                return fn(self.owner, self.name, **kwargs)
            except RemoteRateLimited as e:
                wait = e.retry_after if e.retry_after is not None else self.default_wait_seconds
                self._suspend(wait, str(e))

    def fetch_next(self) -> Optional[RemotePage]:
        """Fetch the next page, or return None once the sequence is exhausted."""
        if self.exhausted:
            return None

        self._wait_for_quota_reset()
        result = self._call(self.client.fetch_issues_page, **self._query_kwargs())

        self._page_number += 1
        self._cursor = result.end_cursor
        self._pending_hint = result.rate_limit
        self.exhausted = not (result.has_next_page and result.end_cursor)

        return RemotePage(
            number=self._page_number,
            records=list(result.nodes),
            next_cursor=None if self.exhausted else self._cursor,
        )

    def skip_page(self):
        """Step over the next page without fetching its records."""
        if self.exhausted:
            return
        end_cursor, has_next = self._call(self.client.fetch_issues_cursor, **self._query_kwargs())
        logger.warning(f"Skipped page {self.page_number} of {self.owner}/{self.name}")
        self._page_number += 1
        self._cursor = end_cursor
        self.exhausted = not (has_next and end_cursor)

    def __iter__(self) -> Iterator[RemotePage]:
        while True:
            page = self.fetch_next()
            if page is None:
                return
            yield page
