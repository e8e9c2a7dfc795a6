import unittest


from app.core.errors import DiscoveryError
from app.models.crawl_session import CrawlStatus
from app.services.cache import TTLCache
from app.services.discovery import ChannelCrawler
from app.services.enrichment import EnrichmentOrchestrator
from app.services.filters import FilterConfig
from fakes import (
    FakePage,
    about_payload,
    channel_renderer,
    continuation_data,
    initial_data,
    search_html,
)


def _search_page(**continuations):
    first = initial_data(
        [
            channel_renderer("UC1", "Cooking With Jane", "janecooks", description="home cooking"),
            channel_renderer("UC2", "Bread Club", "breadclub"),
        ],
        token="T1",
    )
    pages = {
        "T1": continuation_data(
            [
                # Same channel as UC1 under a tab url; must be deduplicated
                channel_renderer("UC1", "Cooking With Jane", "janecooks"),
                channel_renderer("UC3", "Soup Lab", "souplab"),
            ],
            token="T2",
        ),
        "T2": continuation_data([channel_renderer("UC4", "Cooking", "cooking")]),
    }
    pages.update(continuations)
    return FakePage(search_html=search_html(first), continuations=pages)


def _crawler(**overrides):
    orchestrator = EnrichmentOrchestrator(settle_ms=0, delay_range=(0.0, 0.0))
    opts = dict(max_continuations=20, filter_multiplier=5, batch_size=10, filter_retries=0, search_timeout_ms=1000)
    opts.update(overrides)
    return ChannelCrawler(orchestrator, **opts)


class _Recorder:
    def __init__(self):
        self.events = []

    async def __call__(self, progress):
        self.events.append(progress)


class TestChannelCrawler(unittest.IsolatedAsyncioTestCase):
    async def test_stops_at_limit(self):
        recorder = _Recorder()
        result = await _crawler().crawl(_search_page(), "cooking", 3, on_progress=recorder)

        self.assertEqual(result.stop_reason, "limit")
        self.assertEqual(result.pages_fetched, 1)
        self.assertEqual(sorted(c.channel_id for c in result.channels), ["UC1", "UC2", "UC3"])
        self.assertEqual(result.message, "found 3 channels")
        statuses = [e.status for e in recorder.events]
        self.assertEqual(statuses[0], CrawlStatus.COLLECTING)
        self.assertIn(CrawlStatus.COLLECTING_MORE, statuses)
        self.assertEqual(statuses[-1], CrawlStatus.STREAMING)
        counts = [len(e.channels) for e in recorder.events]
        self.assertEqual(counts, sorted(counts))

    async def test_cursor_keeps_unjudged_candidates(self):
        result = await _crawler().crawl(_search_page(), "cooking", 1)
        self.assertEqual([c.channel_id for c in result.channels], ["UC1"])
        cursor = result.cursor
        self.assertEqual(cursor.api_key, "AIzaTestKey")
        self.assertEqual(cursor.context["client"]["clientName"], "WEB")
        self.assertEqual(cursor.token, "T1")
        self.assertEqual([c["channel_id"] for c in cursor.backlog], ["UC2"])
        self.assertFalse(cursor.exhausted)

    async def test_resume_from_cursor(self):
        first = await _crawler().crawl(_search_page(), "cooking", 1)
        page = _search_page()
        recorder = _Recorder()
        more = await _crawler().crawl(
            page,
            "cooking",
            10,
            cursor=first.cursor,
            exclude_urls=[c.url for c in first.channels],
            on_progress=recorder,
        )
        self.assertEqual(page.visits, [])
        self.assertEqual(recorder.events[0].status, CrawlStatus.COLLECTING_MORE)
        self.assertEqual(sorted(c.channel_id for c in more.channels), ["UC2", "UC3", "UC4"])
        self.assertEqual(more.pages_fetched, 2)
        self.assertEqual(more.stop_reason, "exhausted")
        self.assertTrue(more.cursor.exhausted)

    async def test_resume_stops_at_limit_with_token_left(self):
        first = await _crawler().crawl(_search_page(), "cooking", 1)
        more = await _crawler().crawl(_search_page(), "cooking", 1, cursor=first.cursor, exclude_urls=[c.url for c in first.channels])
        self.assertEqual([c.channel_id for c in more.channels], ["UC2"])
        self.assertEqual(more.stop_reason, "limit")
        self.assertEqual(more.cursor.token, "T1")
        self.assertEqual(more.cursor.backlog, [])

    async def test_sorted_by_relevance(self):
        result = await _crawler().crawl(_search_page(), "cooking", 10)
        self.assertEqual(result.stop_reason, "exhausted")
        self.assertEqual(result.pages_fetched, 2)
        self.assertEqual(result.collected, 4)
        self.assertEqual([c.channel_id for c in result.channels][:2], ["UC4", "UC1"])
        scores = [c.relevance_score for c in result.channels]
        self.assertEqual(scores, sorted(scores, reverse=True))

    async def test_max_pages(self):
        result = await _crawler(max_continuations=1).crawl(_search_page(), "cooking", 10)
        self.assertEqual(result.stop_reason, "max_pages")
        self.assertEqual(result.pages_fetched, 1)
        self.assertEqual(len(result.channels), 3)
        self.assertIn("max pages", result.message)

    async def test_fetch_failure_keeps_partial_results(self):
        page = _search_page(T1=RuntimeError("continuation request failed with HTTP 429"))
        result = await _crawler().crawl(page, "cooking", 10)
        self.assertEqual(result.stop_reason, "fetch_failed")
        self.assertEqual(sorted(c.channel_id for c in result.channels), ["UC1", "UC2"])

    async def test_no_results(self):
        page = FakePage(search_html=search_html(initial_data([])))
        with self.assertRaises(DiscoveryError):
            await _crawler().crawl(page, "zzzz", 5)

    async def test_cancel(self):
        async def stop():
            return False

        result = await _crawler().crawl(_search_page(), "cooking", 10, should_continue=stop)
        self.assertEqual(result.stop_reason, "cancelled")
        self.assertEqual(result.pages_fetched, 0)
        self.assertEqual(len(result.channels), 2)

    async def test_inline_filtering_profiles_in_batches(self):
        first = initial_data(
            [
                channel_renderer("UC9", "Mystery Kitchen", "mystery"),
                channel_renderer("UC1", "Small Kitchen", "small"),
                channel_renderer("UC2", "Big Kitchen", "big"),
                channel_renderer("UC3", "Late Kitchen", "late"),
            ]
        )
        search = FakePage(search_html=search_html(first))
        profile = FakePage(
            {
                "https://www.youtube.com/@mystery/about": about_payload("No stats shown"),
                "https://www.youtube.com/@small/about": about_payload("50K subscribers\n10 videos"),
                "https://www.youtube.com/@big/about": about_payload("250K subscribers\n40 videos\nCanada\nJoined May 1, 2019"),
                "https://www.youtube.com/@late/about": about_payload("900K subscribers"),
            }
        )
        cache = TTLCache(ttl_s=60)
        crawler = _crawler(batch_size=4, filter_retries=1, profile_cache=cache)
        result = await crawler.crawl(
            search,
            "kitchen",
            1,
            FilterConfig(min_subscribers=100_000),
            profile_page=profile,
        )

        self.assertEqual([c.channel_id for c in result.channels], ["UC2"])
        big = result.channels[0]
        self.assertEqual(big.subscriber_count, 250_000)
        self.assertEqual(big.country, "Canada")
        self.assertEqual(result.skipped_unknown, 1)
        self.assertEqual(result.stop_reason, "limit")
        # Unknown count retried once; the accepted channel stops the batch early
        self.assertEqual(profile.visits.count("https://www.youtube.com/@mystery/about"), 2)
        self.assertNotIn("https://www.youtube.com/@late/about", profile.visits)
        self.assertEqual(len(cache), 2)

    async def test_profile_cache_hit(self):
        first = initial_data([channel_renderer("UC2", "Big Kitchen", "big")])
        profile = FakePage({"https://www.youtube.com/@big/about": about_payload("250K subscribers")})
        cache = TTLCache(ttl_s=60)
        crawler = _crawler(profile_cache=cache)
        for _ in range(2):
            result = await crawler.crawl(
                FakePage(search_html=search_html(first)),
                "kitchen",
                1,
                FilterConfig(min_subscribers=1),
                profile_page=profile,
            )
            self.assertEqual(len(result.channels), 1)
        self.assertEqual(len(profile.visits), 1)
        self.assertEqual(cache.hits, 1)


class TestTTLCache(unittest.TestCase):
    def test_lru_eviction(self):
        cache = TTLCache(max_items=2, ttl_s=60)
        cache.set("a", 1)
        cache.set("b", 2)
        self.assertEqual(cache.get("a"), 1)
        cache.set("c", 3)
        self.assertIsNone(cache.get("b"))
        self.assertEqual(cache.get("a"), 1)
        self.assertEqual(cache.get("c"), 3)
        self.assertEqual(cache.misses, 1)


if __name__ == "__main__":
    unittest.main()
