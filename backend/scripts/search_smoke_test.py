from dotenv import load_dotenv
import sys
from pathlib import Path

sys.path.insert(0, str(Path(__file__).resolve().parents[1]))

load_dotenv(".env")

import asyncio
import logging

from app.services.browser_pool import BrowserPool
from app.services.discovery import ChannelCrawler, CrawlProgress
from app.services.enrichment import EnrichmentOrchestrator
from app.services.extraction import obscure_email
from app.services.filters import FilterConfig


async def _print_progress(p: CrawlProgress) -> None:
    print(f"[{p.status.value}] {p.progress}% {p.message} ({len(p.channels)} channels)")


async def main() -> None:
    logging.basicConfig(level=logging.INFO)
    keyword = sys.argv[1] if len(sys.argv) > 1 else "home cooking"
    limit = int(sys.argv[2]) if len(sys.argv) > 2 else 10

    pool = BrowserPool(max_sessions=1)
    orchestrator = EnrichmentOrchestrator()
    crawler = ChannelCrawler(orchestrator)
    try:
        async with pool.session("smoke") as session:
            page = await session.new_page()
            result = await crawler.crawl(page, keyword, limit, FilterConfig(), on_progress=_print_progress)
            print(result.message, f"pages={result.pages_fetched} stop={result.stop_reason}")
            for cand in result.channels:
                print(f"  {cand.relevance_score:6.1f}  {cand.channel_id}  {cand.name}  {cand.url}")

            if result.channels:
                first = result.channels[0]
                facts = await orchestrator.enrich(page, first.url, first.social_links)
                print(f"enriched {first.channel_id}: subscribers={facts.subscriber_count} country={facts.country}")
                for email, source in facts.email_sources.items():
                    print(f"  {obscure_email(email)} ({source})")
            await page.close()
    finally:
        await pool.close_all()


asyncio.run(main())
