from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass

from sqlalchemy.orm import sessionmaker

from app.core.settings import settings
from app.services.browser_pool import BrowserPool
from app.services.cache import TTLCache
from app.services.crawl_sessions import CrawlSessionRunner
from app.services.discovery import ChannelCrawler
from app.services.enrichment import EnrichmentOrchestrator
from app.services.enrichment_queue import EnrichmentQueue

logger = logging.getLogger(__name__)


@dataclass
class Services:
    pool: BrowserPool
    orchestrator: EnrichmentOrchestrator
    crawler: ChannelCrawler
    queue: EnrichmentQueue
    runner: CrawlSessionRunner


def build_services(session_factory: sessionmaker, *, pool: BrowserPool | None = None) -> Services:
    pool = pool or BrowserPool()
    orchestrator = EnrichmentOrchestrator()
    crawler = ChannelCrawler(
        orchestrator,
        profile_cache=TTLCache(ttl_s=settings.crawl_profile_cache_ttl_s),
    )
    queue = EnrichmentQueue(session_factory, pool, orchestrator)
    runner = CrawlSessionRunner(session_factory, pool, crawler, queue)
    return Services(pool=pool, orchestrator=orchestrator, crawler=crawler, queue=queue, runner=runner)


def recover_interrupted_work(services: Services) -> None:
    """Settle work a crashed process left half done before serving requests."""
    services.queue.recover_interrupted()
    services.runner.recover_orphaned()


async def run_enrichment_worker(queue: EnrichmentQueue, stop: asyncio.Event, *, interval_s: float | None = None) -> None:
    """Drain the queue in batches until ``stop`` is set."""
    interval_s = float(settings.enrichment_worker_interval_s if interval_s is None else interval_s)
    logger.info("enrichment_worker.start interval_s=%s", interval_s)
    while not stop.is_set():
        try:
            await queue.drain()
        except Exception:
            logger.exception("enrichment_worker.drain.failed")
        try:
            await asyncio.wait_for(stop.wait(), timeout=interval_s)
        except asyncio.TimeoutError:
            pass
    logger.info("enrichment_worker.stop")
