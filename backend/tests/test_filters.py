import unittest


from app.services.filters import (
    ChannelFilter,
    FilterConfig,
    is_brand_channel,
    is_music_channel,
    relevance_score,
)
from app.services.innertube import ChannelCandidate


def _cand(name="Chef Jane", description="", subscribers=None, country=None, videos=None):
    return ChannelCandidate(
        channel_id="UC1",
        name=name,
        url="https://www.youtube.com/@chefjane",
        description=description,
        subscriber_count=subscribers,
        video_count=videos,
        country=country,
    )


class TestFilterConfig(unittest.TestCase):
    def test_from_dict_coerces(self):
        cfg = FilterConfig.from_dict({"min_subscribers": "1000", "max_subscribers": "", "country": "  ", "exclude_music": 1})
        self.assertEqual(cfg.min_subscribers, 1000)
        self.assertIsNone(cfg.max_subscribers)
        self.assertIsNone(cfg.country)
        self.assertTrue(cfg.exclude_music)
        self.assertTrue(cfg.needs_enrichment)

    def test_empty_config(self):
        cfg = FilterConfig.from_dict(None)
        self.assertFalse(cfg.needs_enrichment)
        self.assertFalse(cfg.is_active)

    def test_country_alone_needs_enrichment(self):
        self.assertTrue(FilterConfig(country="Canada").needs_enrichment)
        self.assertFalse(FilterConfig(exclude_brands=True).needs_enrichment)


class TestChannelFilter(unittest.TestCase):
    def test_unknown_count_fails_only_with_bounds(self):
        self.assertFalse(ChannelFilter(FilterConfig(min_subscribers=10)).in_subscriber_range(None))
        self.assertTrue(ChannelFilter(FilterConfig()).in_subscriber_range(None))

    def test_range_is_inclusive(self):
        f = ChannelFilter(FilterConfig(min_subscribers=1000, max_subscribers=5000))
        self.assertTrue(f.passes(_cand(subscribers=1000)))
        self.assertTrue(f.passes(_cand(subscribers=5000)))
        self.assertFalse(f.passes(_cand(subscribers=999)))
        self.assertFalse(f.passes(_cand(subscribers=5001)))

    def test_country_case_insensitive(self):
        f = ChannelFilter(FilterConfig(country="united kingdom"))
        self.assertTrue(f.passes(_cand(country="United Kingdom")))
        self.assertFalse(f.passes(_cand(country="Canada")))
        self.assertFalse(f.passes(_cand(country=None)))

    def test_exclusions(self):
        f = ChannelFilter(FilterConfig(exclude_music=True, exclude_brands=True))
        self.assertFalse(f.passes(_cand(name="Lofi Records")))
        self.assertFalse(f.passes(_cand(name="Acme Corp")))
        self.assertTrue(f.passes(_cand(name="Chef Jane")))

    def test_inactive_config_accepts_everything(self):
        f = ChannelFilter(FilterConfig(exclude_music=False, exclude_brands=False))
        self.assertFalse(f.config.is_active)
        self.assertTrue(f.passes(_cand(name="Lofi Records", subscribers=None)))
        self.assertTrue(f.passes(_cand(name="Acme Corp", subscribers=9_000_000)))


class TestHeuristics(unittest.TestCase):
    def test_music(self):
        self.assertTrue(is_music_channel("Lofi Records", ""))
        self.assertTrue(is_music_channel("Chef Jane", "Official music video premieres"))
        self.assertFalse(is_music_channel("Music Theory Lessons", "Learn chords"))

    def test_brand_indicator(self):
        self.assertTrue(is_brand_channel("Acme Corp", "", 100))
        self.assertFalse(is_brand_channel("Acme Corp", "I'm a content creator", 100))

    def test_brand_by_size(self):
        self.assertTrue(is_brand_channel("The Daily Kitchen Network Show", "", 10_000_000))
        self.assertFalse(is_brand_channel("Chef Jane", "", 10_000_000))


class TestRelevance(unittest.TestCase):
    def test_exact_name_match(self):
        score = relevance_score(_cand(name="Cooking", subscribers=1_000_000, videos=100), "cooking")
        self.assertEqual(score, 95.0)

    def test_capped(self):
        score = relevance_score(_cand(name="Cooking", description="cooking every day", subscribers=10**9, videos=10**6), "Cooking")
        self.assertEqual(score, 100.0)

    def test_no_match(self):
        self.assertEqual(relevance_score(_cand(name="Gardening"), "cooking"), 0.0)


if __name__ == "__main__":
    unittest.main()
