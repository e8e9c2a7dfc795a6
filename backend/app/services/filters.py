from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Any

from app.services.innertube import ChannelCandidate

MUSIC_KEYWORDS = (
    "music",
    "vevo",
    "records",
    "entertainment",
    "audio",
    "songs",
    "official music",
    "topic",
    "hits",
    "soundtrack",
    "official artist channel",
)
# "music theory", "music production" and the like are teaching channels, not labels
MUSIC_OVERRIDES = ("tutorial", "lesson", "education", "production", "theory")
MUSIC_DESCRIPTION_PHRASES = ("official music video", "vevo")

BRAND_INDICATORS = (
    "official",
    "verified",
    "corp",
    "inc.",
    "llc",
    "ltd",
    "company",
    "corporation",
    "enterprises",
    "global",
    "worldwide",
    "international",
)
CREATOR_SIGNALS = ("creator", "youtuber", "content creator", "influencer")
BRAND_SUBSCRIBER_THRESHOLD = 5_000_000


@dataclass
class FilterConfig:
    min_subscribers: int | None = None
    max_subscribers: int | None = None
    country: str | None = None
    exclude_music: bool = False
    exclude_brands: bool = False

    @classmethod
    def from_dict(cls, raw: dict[str, Any] | None) -> "FilterConfig":
        data = raw or {}

        def _int(key: str) -> int | None:
            v = data.get(key)
            if v is None or v == "":
                return None
            try:
                return int(v)
            except (TypeError, ValueError):
                return None

        country = str(data.get("country") or "").strip() or None
        return cls(
            min_subscribers=_int("min_subscribers"),
            max_subscribers=_int("max_subscribers"),
            country=country,
            exclude_music=bool(data.get("exclude_music")),
            exclude_brands=bool(data.get("exclude_brands")),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "min_subscribers": self.min_subscribers,
            "max_subscribers": self.max_subscribers,
            "country": self.country,
            "exclude_music": self.exclude_music,
            "exclude_brands": self.exclude_brands,
        }

    @property
    def has_subscriber_bounds(self) -> bool:
        return self.min_subscribers is not None or self.max_subscribers is not None

    @property
    def needs_enrichment(self) -> bool:
        """Subscriber and country filters can only be judged from the about page."""
        return self.has_subscriber_bounds or bool(self.country)

    @property
    def is_active(self) -> bool:
        return self.needs_enrichment or self.exclude_music or self.exclude_brands


class ChannelFilter:
    def __init__(self, config: FilterConfig) -> None:
        self.config = config

    def passes(self, channel: ChannelCandidate) -> bool:
        cfg = self.config
        if not cfg.is_active:
            return True
        if not self.in_subscriber_range(channel.subscriber_count):
            return False
        if cfg.country:
            if not channel.country or channel.country.strip().lower() != cfg.country.strip().lower():
                return False
        if cfg.exclude_music and is_music_channel(channel.name, channel.description):
            return False
        if cfg.exclude_brands and is_brand_channel(channel.name, channel.description, channel.subscriber_count):
            return False
        return True

    def in_subscriber_range(self, subscriber_count: int | None) -> bool:
        cfg = self.config
        if subscriber_count is None:
            return not cfg.has_subscriber_bounds
        if cfg.min_subscribers is not None and subscriber_count < cfg.min_subscribers:
            return False
        if cfg.max_subscribers is not None and subscriber_count > cfg.max_subscribers:
            return False
        return True


def is_music_channel(name: str, description: str | None) -> bool:
    lower_name = (name or "").lower()
    lower_desc = (description or "").lower()
    if any(k in lower_name for k in MUSIC_KEYWORDS):
        if not any(o in lower_name for o in MUSIC_OVERRIDES):
            return True
    return any(p in lower_desc for p in MUSIC_DESCRIPTION_PHRASES)


def is_brand_channel(name: str, description: str | None, subscriber_count: int | None) -> bool:
    lower_name = (name or "").lower()
    lower_desc = (description or "").lower()
    creator_voice = any(s in lower_desc for s in CREATOR_SIGNALS)
    for indicator in BRAND_INDICATORS:
        if indicator in lower_name or indicator in lower_desc:
            if creator_voice:
                continue
            return True

    if subscriber_count and subscriber_count > BRAND_SUBSCRIBER_THRESHOLD:
        individual = "creator" in lower_desc or "personal" in lower_desc or len(lower_name.split()) <= 3
        return not individual
    return False


def relevance_score(channel: ChannelCandidate, keyword: str) -> float:
    score = 0.0
    kw = (keyword or "").strip().lower()
    name = (channel.name or "").lower()
    if kw and kw in name:
        score += 50
        if name == kw:
            score += 30
    if kw and kw in (channel.description or "").lower():
        score += 20
    if channel.subscriber_count and channel.subscriber_count > 0:
        score += min(math.log10(channel.subscriber_count) * 2, 20)
    if channel.video_count and channel.video_count > 0:
        score += min(math.log10(channel.video_count) * 1.5, 10)
    return round(min(score, 100.0), 2)
