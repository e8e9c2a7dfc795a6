from __future__ import annotations

import asyncio
import logging
import random
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Iterable
from urllib.parse import urljoin, urlparse

from app.core.settings import settings
from app.services.extraction import (
    PageSnapshot,
    extract_counts,
    extract_country,
    extract_emails,
    extract_outbound_links,
    looks_blocked,
)
from app.services.innertube import canonical_channel_url
from app.services.page_snapshot import load_snapshot

logger = logging.getLogger(__name__)

SOURCE_SELF_ABOUT = "self_about"
SOURCE_SELF_ITEMS = "self_items"
SOURCE_INSTAGRAM = "instagram"
SOURCE_LINKEDIN = "linkedin"
SOURCE_WEBSITE = "website"

CONTACT_PATH_KEYWORDS = ("contact", "about", "team", "reach", "email")


class EmailSourceMap:
    """Insertion-ordered email -> source map where the first source wins."""

    def __init__(self, seed: dict[str, str] | None = None) -> None:
        self._sources: dict[str, str] = {}
        for email, source in (seed or {}).items():
            self.insert_if_absent(email, source)

    def insert_if_absent(self, email: str, source: str) -> bool:
        key = (email or "").strip().lower()
        if not key or key in self._sources:
            return False
        self._sources[key] = source
        return True

    def extend(self, emails: Iterable[str], source: str) -> int:
        return sum(1 for e in emails if self.insert_if_absent(e, source))

    @property
    def emails(self) -> list[str]:
        return list(self._sources)

    def as_dict(self) -> dict[str, str]:
        return dict(self._sources)

    def __contains__(self, email: object) -> bool:
        return isinstance(email, str) and email.strip().lower() in self._sources

    def __len__(self) -> int:
        return len(self._sources)


@dataclass
class EnrichmentFacts:
    subscriber_count: int | None = None
    video_count: int | None = None
    view_count: int | None = None
    country: str | None = None
    description: str | None = None
    email_sources: dict[str, str] = field(default_factory=dict)
    social_links: dict[str, str] = field(default_factory=dict)
    # Steps that raised; logged only, a clean miss looks the same downstream
    sources_failed: list[str] = field(default_factory=list)

    @property
    def emails(self) -> list[str]:
        return list(self.email_sources)

    def to_dict(self) -> dict[str, Any]:
        return {
            "subscriber_count": self.subscriber_count,
            "video_count": self.video_count,
            "view_count": self.view_count,
            "country": self.country,
            "description": self.description,
            "emails": self.emails,
            "email_sources": dict(self.email_sources),
            "social_links": dict(self.social_links),
        }


def _host(url: str) -> str:
    host = (urlparse(url).hostname or "").lower()
    return host[4:] if host.startswith("www.") else host


def contact_page_links(base_url: str, links: Iterable[str], limit: int = 3) -> list[str]:
    base_host = _host(base_url)
    base_norm = base_url.rstrip("/")
    out: list[str] = []
    for href in links:
        url = urljoin(base_url, str(href or "")).split("#", 1)[0]
        if not url.startswith("http") or _host(url) != base_host:
            continue
        if url.rstrip("/") == base_norm or url in out:
            continue
        lower = urlparse(url).path.lower()
        if any(k in lower for k in CONTACT_PATH_KEYWORDS):
            out.append(url)
        if len(out) >= limit:
            break
    return out


def _mailto_text(links: Iterable[str]) -> str:
    parts = []
    for href in links:
        if str(href).lower().startswith("mailto:"):
            parts.append(str(href)[7:].split("?", 1)[0])
    return "\n".join(parts)


class EnrichmentOrchestrator:
    """Gathers contact facts for one channel from its own pages and linked profiles.

    Steps run in a fixed order and each one is best-effort: a failing step is
    logged and the next one still runs. Emails are attributed to the first
    step that finds them.
    """

    def __init__(
        self,
        *,
        nav_timeout_ms: int | None = None,
        contact_timeout_ms: int | None = None,
        settle_ms: int | None = None,
        max_items: int | None = None,
        max_contact_pages: int | None = None,
        delay_range: tuple[float, float] | None = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
        rng: random.Random | None = None,
    ) -> None:
        self.nav_timeout_ms = int(nav_timeout_ms or settings.nav_timeout_page_ms)
        self.contact_timeout_ms = int(contact_timeout_ms or settings.nav_timeout_contact_ms)
        self.settle_ms = int(settings.page_settle_ms if settle_ms is None else settle_ms)
        self.max_items = int(settings.enrich_max_items if max_items is None else max_items)
        self.max_contact_pages = int(settings.enrich_max_contact_pages if max_contact_pages is None else max_contact_pages)
        self.delay_range = delay_range if delay_range is not None else settings.delay_range()
        self._sleep = sleep
        self._rng = rng or random.Random()

    async def _pause(self) -> None:
        lo, hi = self.delay_range
        if hi <= 0:
            return
        await self._sleep(self._rng.uniform(lo, hi))

    async def _visit(self, page, url: str, *, timeout_ms: int | None = None, expand: bool = False) -> PageSnapshot | None:
        snap = await load_snapshot(
            page,
            url,
            timeout_ms=timeout_ms or self.nav_timeout_ms,
            settle_ms=self.settle_ms,
            expand=expand,
        )
        if snap is not None and looks_blocked(snap):
            logger.info("enrichment.visit.blocked url=%s", url)
            return None
        return snap

    async def profile(self, page, channel_url: str) -> EnrichmentFacts:
        """About-page step only; enough to run subscriber and country filters."""
        facts = EnrichmentFacts()
        sources = EmailSourceMap()
        await self._run_step("about", facts, self._step_about(page, channel_url, facts, sources, {}))
        facts.email_sources = sources.as_dict()
        return facts

    async def enrich(
        self,
        page,
        channel_url: str,
        social_links: dict[str, str] | None = None,
        known_sources: dict[str, str] | None = None,
    ) -> EnrichmentFacts:
        facts = EnrichmentFacts()
        sources = EmailSourceMap(known_sources)
        supplied = dict(social_links or {})

        await self._run_step("about", facts, self._step_about(page, channel_url, facts, sources, supplied))
        if not facts.social_links:
            facts.social_links = supplied
        await self._run_step("items", facts, self._step_items(page, channel_url, sources))

        links = facts.social_links
        if links.get("instagram"):
            await self._run_step("instagram", facts, self._step_profile_text(page, links["instagram"], sources, SOURCE_INSTAGRAM))
        if links.get("linkedin"):
            await self._run_step("linkedin", facts, self._step_profile_text(page, links["linkedin"], sources, SOURCE_LINKEDIN))
        if links.get("website"):
            await self._run_step("website", facts, self._step_website(page, links["website"], sources))

        facts.email_sources = sources.as_dict()
        logger.info(
            "enrichment.done url=%s emails=%s links=%s failed=%s",
            channel_url,
            len(facts.email_sources),
            len(facts.social_links),
            ",".join(facts.sources_failed) or "-",
        )
        return facts

    async def _run_step(self, name: str, facts: EnrichmentFacts, step: Awaitable[Any]) -> None:
        try:
            await step
        except Exception:
            logger.exception("enrichment.step.failed step=%s", name)
            facts.sources_failed.append(name)

    async def _step_about(
        self,
        page,
        channel_url: str,
        facts: EnrichmentFacts,
        sources: EmailSourceMap,
        supplied_links: dict[str, str],
    ) -> None:
        about_url = canonical_channel_url(channel_url) + "/about"
        snap = await self._visit(page, about_url)
        if snap is None:
            return
        counts = extract_counts(snap)
        facts.subscriber_count = counts.get("subscriber_count")
        facts.video_count = counts.get("video_count")
        facts.view_count = counts.get("view_count")
        facts.country = extract_country(snap)
        facts.description = (snap.description or (snap.meta[0] if snap.meta else "")).strip() or None

        sources.extend(extract_emails(f"{snap.text}\n{snap.description}\n{_mailto_text(snap.links)}"), SOURCE_SELF_ABOUT)

        merged = dict(supplied_links)
        for platform, url in extract_outbound_links(snap.text, snap.html, snap.links).items():
            merged.setdefault(platform, url)
        facts.social_links = merged

    async def _step_items(self, page, channel_url: str, sources: EmailSourceMap) -> None:
        if self.max_items <= 0:
            return
        listing = await self._visit(page, canonical_channel_url(channel_url) + "/videos")
        if listing is None:
            return
        item_urls: list[str] = []
        for href in listing.links:
            clean = href.split("&", 1)[0]
            if "/watch?v=" in clean and clean not in item_urls:
                item_urls.append(clean)
            if len(item_urls) >= self.max_items:
                break

        for idx, url in enumerate(item_urls):
            if idx > 0:
                await self._pause()
            snap = await self._visit(page, url, expand=True)
            if snap is None:
                continue
            found = extract_emails(snap.description or snap.text)
            sources.extend(found, SOURCE_SELF_ITEMS)
            logger.debug("enrichment.items.visit idx=%s emails=%s", idx, len(found))

    async def _step_profile_text(self, page, url: str, sources: EmailSourceMap, source: str) -> None:
        snap = await self._visit(page, url)
        if snap is None:
            return
        blob = "\n".join([snap.description, *snap.meta, snap.text])
        sources.extend(extract_emails(blob), source)

    async def _step_website(self, page, url: str, sources: EmailSourceMap) -> None:
        root = await self._visit(page, url)
        if root is None:
            return
        sources.extend(extract_emails(f"{root.text}\n{_mailto_text(root.links)}"), SOURCE_WEBSITE)

        if self.max_contact_pages <= 0:
            return
        for contact_url in contact_page_links(root.url or url, root.links, self.max_contact_pages):
            await self._pause()
            snap = await self._visit(page, contact_url, timeout_ms=self.contact_timeout_ms)
            if snap is None:
                continue
            sources.extend(extract_emails(f"{snap.text}\n{_mailto_text(snap.links)}"), SOURCE_WEBSITE)
