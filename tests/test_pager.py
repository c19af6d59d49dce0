import logging
import unittest
from datetime import datetime, timedelta, timezone

from sync_fixtures import FakeClock, FakeIssuesClient, issue_node

from app.schemas.sync import SyncOptions
from app.services.exceptions import (
    AuthenticationError,
    RateLimitExceeded,
    RemoteRateLimited,
    SyncTimeout,
    TransportError,
)
from app.services.github_client import RateLimitHint
from app.services.pager import RemotePager

logging.disable(logging.CRITICAL)


def _pager(client, clock, **kwargs):
    options = kwargs.pop("options", SyncOptions(batchSize=2))
    kwargs.setdefault("max_wait_seconds", 300)
    kwargs.setdefault("default_wait_seconds", 60)
    return RemotePager(client, "acme", "widgets", options, sleep=clock.sleep, clock=clock, **kwargs)


class RemotePagerTests(unittest.TestCase):
    def test_iterates_all_pages_in_cursor_order(self):
        client = FakeIssuesClient([[issue_node(1), issue_node(2)], [issue_node(3)]])
        clock = FakeClock()

        pages = list(_pager(client, clock))

        self.assertEqual([p.number for p in pages], [1, 2])
        self.assertEqual([r["databaseId"] for r in pages[0].records], [1, 2])
        self.assertEqual(pages[0].next_cursor, "cursor:1")
        self.assertIsNone(pages[1].next_cursor)
        self.assertEqual([c["index"] for c in client.calls], [0, 1])

    def test_passes_filters_and_batch_size(self):
        client = FakeIssuesClient([[issue_node(1)]])
        since = datetime(2025, 3, 1, tzinfo=timezone.utc)
        options = SyncOptions(states=["OPEN"], since=since, batchSize=25)

        list(_pager(client, FakeClock(), options=options))

        call = client.calls[0]
        self.assertEqual((call["owner"], call["name"]), ("acme", "widgets"))
        self.assertEqual(call["first"], 25)
        self.assertEqual(call["states"], ["OPEN"])
        self.assertEqual(call["since"], since)

    def test_exhausted_pager_returns_none(self):
        pager = _pager(FakeIssuesClient([[issue_node(1)]]), FakeClock())
        self.assertIsNotNone(pager.fetch_next())
        self.assertTrue(pager.exhausted)
        self.assertIsNone(pager.fetch_next())

    def test_rate_limit_signal_is_absorbed_with_advertised_delay(self):
        client = FakeIssuesClient(
            [[issue_node(1)]],
            failures={0: [RemoteRateLimited(12), RemoteRateLimited(None)]},
        )
        clock = FakeClock()
        pager = _pager(client, clock)

        page = pager.fetch_next()

        self.assertEqual(len(page.records), 1)
        # Advertised delay first, then the default when none is advertised.
        self.assertEqual(clock.sleeps, [12, 60])
        self.assertEqual(pager.waited_seconds, 72)

    def test_rate_limit_beyond_cumulative_budget_raises(self):
        client = FakeIssuesClient(
            [[issue_node(1)]],
            failures={0: [RemoteRateLimited(200), RemoteRateLimited(200)]},
        )
        clock = FakeClock()
        pager = _pager(client, clock)

        with self.assertRaises(RateLimitExceeded):
            pager.fetch_next()
        self.assertEqual(clock.sleeps, [200])
        # Nothing was consumed; the same page is requested on retry.
        self.assertEqual(pager.page_number, 1)
        self.assertFalse(pager.exhausted)

    def test_rate_limit_wait_past_deadline_is_a_timeout(self):
        client = FakeIssuesClient([[issue_node(1)]], failures={0: [RemoteRateLimited(30)]})
        clock = FakeClock(start=0)
        pager = _pager(client, clock, deadline=10, timeout_seconds=10)

        with self.assertRaises(SyncTimeout):
            pager.fetch_next()
        self.assertEqual(clock.sleeps, [])

    def test_exhausted_quota_hint_waits_until_reset_before_next_page(self):
        now = datetime(2025, 1, 1, 12, 0, 0, tzinfo=timezone.utc)
        client = FakeIssuesClient(
            [[issue_node(1)], [issue_node(2)]],
            rate_limits={0: RateLimitHint(remaining=0, reset_at=now + timedelta(seconds=20))},
        )
        clock = FakeClock()
        pager = _pager(client, clock, utcnow=lambda: now)

        pager.fetch_next()
        self.assertEqual(clock.sleeps, [])
        pager.fetch_next()
        self.assertEqual(clock.sleeps, [21])

    def test_transport_errors_surface_without_advancing(self):
        client = FakeIssuesClient(
            [[issue_node(1)], [issue_node(2)]],
            failures={1: [TransportError("bad gateway", status_code=502)]},
        )
        pager = _pager(client, FakeClock())
        pager.fetch_next()

        with self.assertRaises(TransportError) as ctx:
            pager.fetch_next()
        self.assertEqual(ctx.exception.status_code, 502)

        page = pager.fetch_next()
        self.assertEqual(page.number, 2)
        self.assertEqual(page.records[0]["databaseId"], 2)

    def test_fatal_errors_are_not_absorbed(self):
        client = FakeIssuesClient([[issue_node(1)]], failures={0: [AuthenticationError("401")]})
        with self.assertRaises(AuthenticationError):
            _pager(client, FakeClock()).fetch_next()

    def test_skip_page_moves_past_a_page_without_fetching_records(self):
        client = FakeIssuesClient([[issue_node(1)], [issue_node(2)], [issue_node(3)]])
        pager = _pager(client, FakeClock())
        pager.fetch_next()

        pager.skip_page()
        page = pager.fetch_next()

        self.assertEqual(page.number, 3)
        self.assertEqual(page.records[0]["databaseId"], 3)
        self.assertEqual([c["kind"] for c in client.calls], ["page", "cursor", "page"])
        self.assertTrue(pager.exhausted)

    def test_skipping_the_last_page_exhausts_the_pager(self):
        pager = _pager(FakeIssuesClient([[issue_node(1)], [issue_node(2)]]), FakeClock())
        pager.fetch_next()
        pager.skip_page()
        self.assertTrue(pager.exhausted)
        self.assertIsNone(pager.fetch_next())


if __name__ == "__main__":
    unittest.main()
