from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Iterable

from app.core.errors import DiscoveryError
from app.core.settings import settings
from app.models.crawl_session import CrawlStatus
from app.services.cache import TTLCache
from app.services.enrichment import EnrichmentFacts, EnrichmentOrchestrator
from app.services.filters import ChannelFilter, FilterConfig, relevance_score
from app.services.innertube import (
    ChannelCandidate,
    SearchPayload,
    collect_channels,
    dedupe_key,
    fetch_next_page,
    get_continuation_token,
    load_search_payload,
)

logger = logging.getLogger(__name__)


@dataclass
class CrawlProgress:
    status: CrawlStatus
    progress: int
    channels: list[dict[str, Any]]
    message: str
    continuation: str | None = None
    pages_fetched: int = 0


@dataclass
class CrawlCursor:
    """Resume point of a crawl.

    ``backlog`` holds candidates pulled from the feed but not yet judged.
    """

    api_key: str
    context: dict[str, Any]
    token: str | None = None
    backlog: list[dict[str, Any]] = field(default_factory=list)

    @property
    def exhausted(self) -> bool:
        return not self.token and not self.backlog


@dataclass
class CrawlResult:
    channels: list[ChannelCandidate]
    collected: int
    pages_fetched: int
    stop_reason: str
    skipped_unknown: int = 0
    cursor: CrawlCursor | None = None

    @property
    def message(self) -> str:
        base = f"found {len(self.channels)} channels"
        if self.stop_reason in ("limit", "target", "exhausted"):
            return base
        return f"{base} ({self.stop_reason.replace('_', ' ')})"


ProgressCallback = Callable[[CrawlProgress], Awaitable[None]]
ContinueCheck = Callable[[], Awaitable[bool]]


@dataclass
class _CrawlState:
    keyword: str
    limit: int
    target: int
    filters: FilterConfig
    seen: set[str] = field(default_factory=set)
    collected: int = 0
    pending: list[ChannelCandidate] = field(default_factory=list)
    accepted: list[ChannelCandidate] = field(default_factory=list)
    skipped_unknown: int = 0
    pages_fetched: int = 0
    token: str | None = None
    cancelled: bool = False

    @property
    def full(self) -> bool:
        return len(self.accepted) >= self.limit


async def _always_continue() -> bool:
    return True


async def _ignore_progress(_p: CrawlProgress) -> None:
    return None


class ChannelCrawler:
    """Walks the channel search feed for a keyword and filters results inline.

    Pagination follows continuation tokens strictly in order on the search page.
    When subscriber or country filters are set, candidates are profiled in
    fixed-size batches on a second page as they arrive, and crawling stops as
    soon as enough candidates have passed.
    """

    def __init__(
        self,
        orchestrator: EnrichmentOrchestrator,
        *,
        max_continuations: int | None = None,
        filter_multiplier: int | None = None,
        batch_size: int | None = None,
        filter_retries: int | None = None,
        search_timeout_ms: int | None = None,
        profile_cache: TTLCache[EnrichmentFacts] | None = None,
    ) -> None:
        self.orchestrator = orchestrator
        self.max_continuations = int(settings.crawl_max_continuations if max_continuations is None else max_continuations)
        self.filter_multiplier = max(1, int(filter_multiplier or settings.crawl_filter_multiplier))
        self.batch_size = max(1, int(batch_size or settings.crawl_batch_size))
        self.filter_retries = max(0, int(settings.crawl_filter_retries if filter_retries is None else filter_retries))
        self.search_timeout_ms = int(search_timeout_ms or settings.nav_timeout_search_ms)
        self.profile_cache = profile_cache

    async def crawl(
        self,
        page,
        keyword: str,
        limit: int,
        filters: FilterConfig | None = None,
        *,
        profile_page=None,
        on_progress: ProgressCallback | None = None,
        should_continue: ContinueCheck | None = None,
        cursor: CrawlCursor | None = None,
        exclude_urls: Iterable[str] = (),
    ) -> CrawlResult:
        """Crawl the feed for ``keyword`` until ``limit`` channels are accepted.

        With ``cursor`` the search page is not reloaded: the crawl picks up the
        backlog and token of an earlier run. ``exclude_urls`` lists channels
        the caller already has, which are never returned again.
        """
        cfg = filters or FilterConfig()
        limit = max(1, int(limit))
        emit = on_progress or _ignore_progress
        still_active = should_continue or _always_continue
        target = limit * self.filter_multiplier if cfg.needs_enrichment else limit
        state = _CrawlState(keyword=keyword, limit=limit, target=target, filters=cfg)
        for url in exclude_urls:
            key = dedupe_key(url)
            if key:
                state.seen.add(key)
        chan_filter = ChannelFilter(cfg)
        profile_page = profile_page or page

        if cursor is None:
            logger.info(
                "crawler.start keyword=%r limit=%s target=%s filters=%s inline_filter=%s",
                keyword,
                limit,
                target,
                cfg.is_active,
                cfg.needs_enrichment,
            )
            await emit(self._progress(state, CrawlStatus.COLLECTING, "searching"))
            payload = await load_search_payload(page, keyword, timeout_ms=self.search_timeout_ms)
            first = collect_channels(payload.initial_data)
            if not first:
                raise DiscoveryError(f"no channel results for {keyword!r}")
            self._absorb(state, first)
            state.token = get_continuation_token(payload.initial_data)
        else:
            logger.info(
                "crawler.resume keyword=%r limit=%s target=%s backlog=%s has_token=%s",
                keyword,
                limit,
                target,
                len(cursor.backlog),
                bool(cursor.token),
            )
            await emit(self._progress(state, CrawlStatus.COLLECTING_MORE, "loading more"))
            payload = SearchPayload(api_key=cursor.api_key, context=dict(cursor.context or {}), initial_data={})
            self._absorb(state, [ChannelCandidate.from_dict(d) for d in cursor.backlog])
            state.token = cursor.token
        await self._drain_pending(state, chan_filter, profile_page, emit, still_active, final=False)

        stop_reason = "exhausted"
        while True:
            if state.cancelled:
                stop_reason = "cancelled"
                break
            if state.full:
                stop_reason = "limit"
                break
            if state.collected >= state.target:
                stop_reason = "target"
                break
            if not state.token:
                stop_reason = "exhausted"
                break
            if state.pages_fetched >= self.max_continuations:
                stop_reason = "max_pages"
                break
            if not await still_active():
                state.cancelled = True
                continue

            await emit(self._progress(state, CrawlStatus.COLLECTING_MORE, f"loading page {state.pages_fetched + 2}"))
            try:
                data = await fetch_next_page(page, payload, state.token)
            except Exception as exc:
                # Keep what we have; a broken page means the rest of the feed is unreachable
                logger.warning("crawler.continuation.failed keyword=%r page=%s err=%s", keyword, state.pages_fetched + 1, exc)
                stop_reason = "fetch_failed"
                break
            state.pages_fetched += 1
            self._absorb(state, collect_channels(data))
            state.token = get_continuation_token(data)
            await self._drain_pending(state, chan_filter, profile_page, emit, still_active, final=False)

        if not state.cancelled and not state.full:
            await self._drain_pending(state, chan_filter, profile_page, emit, still_active, final=True)
        if state.cancelled:
            stop_reason = "cancelled"

        ranked = sorted(state.accepted, key=lambda c: c.relevance_score, reverse=True)
        logger.info(
            "crawler.done keyword=%r accepted=%s collected=%s pages=%s reason=%s skipped_unknown=%s",
            keyword,
            len(ranked),
            state.collected,
            state.pages_fetched,
            stop_reason,
            state.skipped_unknown,
        )
        return CrawlResult(
            channels=ranked,
            collected=state.collected,
            pages_fetched=state.pages_fetched,
            stop_reason=stop_reason,
            skipped_unknown=state.skipped_unknown,
            cursor=CrawlCursor(
                api_key=payload.api_key,
                context=payload.context,
                token=state.token,
                backlog=[c.to_dict() for c in state.pending],
            ),
        )

    def _absorb(self, state: _CrawlState, candidates: list[ChannelCandidate]) -> None:
        for cand in candidates:
            key = dedupe_key(cand.url)
            if not key or key in state.seen:
                continue
            state.seen.add(key)
            state.collected += 1
            state.pending.append(cand)

    def _progress(self, state: _CrawlState, status: CrawlStatus, message: str) -> CrawlProgress:
        if state.filters.needs_enrichment:
            pct = int(100 * len(state.accepted) / state.limit)
        else:
            pct = int(100 * min(state.collected, state.target) / state.target)
        return CrawlProgress(
            status=status,
            progress=max(0, min(pct, 99)),
            channels=[c.to_dict() for c in state.accepted],
            message=message,
            continuation=state.token,
            pages_fetched=state.pages_fetched,
        )

    def _accept(self, state: _CrawlState, cand: ChannelCandidate) -> None:
        cand.relevance_score = relevance_score(cand, state.keyword)
        state.accepted.append(cand)

    async def _drain_pending(
        self,
        state: _CrawlState,
        chan_filter: ChannelFilter,
        profile_page,
        emit: ProgressCallback,
        still_active: ContinueCheck,
        *,
        final: bool,
    ) -> None:
        if not state.filters.needs_enrichment:
            while state.pending and not state.full:
                cand = state.pending.pop(0)
                if chan_filter.passes(cand):
                    self._accept(state, cand)
            await emit(self._progress(state, CrawlStatus.STREAMING, f"{len(state.accepted)} channels"))
            return

        while state.pending and not state.full and (final or len(state.pending) >= self.batch_size):
            batch = state.pending[: self.batch_size]
            del state.pending[: self.batch_size]
            for cand in batch:
                if not await still_active():
                    state.cancelled = True
                    return
                facts = await self._profile(profile_page, cand)
                if facts.subscriber_count is None:
                    state.skipped_unknown += 1
                    continue
                _apply_profile(cand, facts)
                if chan_filter.passes(cand):
                    self._accept(state, cand)
                    if state.full:
                        break
            await emit(self._progress(state, CrawlStatus.STREAMING, f"{len(state.accepted)} of {state.limit} channels matched"))

    async def _profile(self, page, cand: ChannelCandidate) -> EnrichmentFacts:
        key = dedupe_key(cand.url)
        if self.profile_cache is not None:
            cached = self.profile_cache.get(key)
            if cached is not None:
                return cached
        facts = EnrichmentFacts()
        for attempt in range(self.filter_retries + 1):
            facts = await self.orchestrator.profile(page, cand.url)
            if facts.subscriber_count is not None:
                if self.profile_cache is not None:
                    self.profile_cache.set(key, facts)
                return facts
            logger.debug("crawler.profile.no_count url=%s attempt=%s", cand.url, attempt + 1)
        return facts


def _apply_profile(cand: ChannelCandidate, facts: EnrichmentFacts) -> None:
    cand.subscriber_count = facts.subscriber_count
    if facts.video_count is not None:
        cand.video_count = facts.video_count
    if facts.view_count is not None:
        cand.view_count = facts.view_count
    if facts.country:
        cand.country = facts.country
    if facts.description and not cand.description:
        cand.description = facts.description
    for platform, url in facts.social_links.items():
        cand.social_links.setdefault(platform, url)
