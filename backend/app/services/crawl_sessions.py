from __future__ import annotations

import asyncio
import logging
import time
from typing import Any

from sqlalchemy.orm import Session, sessionmaker

from app.core.errors import CrawlNotResumable, DiscoveryError, PoolExhausted
from app.core.settings import settings
from app.models.crawl_session import TERMINAL_CRAWL_STATUSES, CrawlSession, CrawlStatus
from app.services import store
from app.services.browser_pool import BrowserPool
from app.services.discovery import ChannelCrawler, CrawlCursor, CrawlProgress
from app.services.enrichment_queue import EnrichmentQueue
from app.services.filters import FilterConfig

logger = logging.getLogger(__name__)


class CrawlSessionRunner:
    """Owns crawl sessions: starts them, records their progress, answers long-polls.

    Each session runs as its own asyncio task holding one pool session for its
    whole life. Every progress write first re-checks that the session has not
    been cancelled or superseded, and drops the update if it has.
    """

    def __init__(
        self,
        session_factory: sessionmaker,
        pool: BrowserPool,
        crawler: ChannelCrawler,
        queue: EnrichmentQueue | None = None,
        *,
        max_wait_s: float | None = None,
        auto_enqueue: bool = True,
    ) -> None:
        self._session_factory = session_factory
        self.pool = pool
        self.crawler = crawler
        self.queue = queue
        self.max_wait_s = float(settings.long_poll_max_wait_s if max_wait_s is None else max_wait_s)
        self.auto_enqueue = auto_enqueue
        self._tasks: dict[str, asyncio.Task] = {}
        self._changed: dict[str, asyncio.Event] = {}

    def _db(self) -> Session:
        return self._session_factory()

    def _notify(self, session_id: str) -> None:
        ev = self._changed.pop(session_id, None)
        if ev is not None:
            ev.set()

    def _update(self, session_id: str, **fields: Any) -> None:
        db = self._db()
        try:
            store.update_crawl_session(db, session_id, updated_at=store.utcnow(), **fields)
        finally:
            db.close()
        self._notify(session_id)

    def _is_cancelled(self, session_id: str) -> bool:
        db = self._db()
        try:
            row = store.get_crawl_session(db, session_id)
            return row is None or bool(row.cancel_requested)
        finally:
            db.close()

    def snapshot(self, session_id: str) -> CrawlSession | None:
        db = self._db()
        try:
            row = store.get_crawl_session(db, session_id)
            if row is not None:
                db.expunge(row)
            return row
        finally:
            db.close()

    def start(self, keyword: str, limit: int, filters: FilterConfig, session_key: str | None = None) -> CrawlSession:
        db = self._db()
        try:
            row = store.create_crawl_session(
                db,
                keyword=keyword,
                target_limit=limit,
                filters=filters.to_dict(),
                session_key=session_key,
            )
            if session_key:
                # A new search from the same client supersedes whatever it was running
                for old in store.running_sessions_for_key(db, session_key, exclude_id=row.id):
                    old.cancel_requested = True
                    logger.info("crawl_session.superseded old=%s new=%s key=%s", old.id, row.id, session_key)
                db.commit()
                db.refresh(row)
            db.expunge(row)
        finally:
            db.close()

        task = asyncio.create_task(self._run(row.id, keyword, limit, filters, session_key))
        self._tasks[row.id] = task
        task.add_done_callback(lambda _t, sid=row.id: self._tasks.pop(sid, None))
        logger.info("crawl_session.start id=%s keyword=%r limit=%s key=%s", row.id, keyword, limit, session_key)
        return row

    def cancel(self, session_id: str) -> CrawlSession | None:
        db = self._db()
        try:
            row = store.get_crawl_session(db, session_id)
            if row is None:
                return None
            if row.status not in TERMINAL_CRAWL_STATUSES:
                row.cancel_requested = True
                db.commit()
                db.refresh(row)
                logger.info("crawl_session.cancel id=%s", session_id)
            db.expunge(row)
        finally:
            db.close()
        self._notify(session_id)
        return row

    def continue_session(self, session_id: str, additional: int) -> CrawlSession | None:
        """Fetch up to ``additional`` more channels for a finished session.

        The crawl resumes from the stored cursor and appends to the session's
        channel list; channels already listed are never returned twice.
        """
        db = self._db()
        try:
            row = store.get_crawl_session(db, session_id)
            if row is None:
                return None
            if row.status not in TERMINAL_CRAWL_STATUSES:
                raise CrawlNotResumable("search is still running")
            cursor = _cursor_from_row(row)
            if cursor is None or cursor.exhausted:
                raise CrawlNotResumable("no more results for this search")
            if row.session_key:
                for old in store.running_sessions_for_key(db, row.session_key, exclude_id=row.id):
                    old.cancel_requested = True
                    logger.info("crawl_session.superseded old=%s new=%s key=%s", old.id, row.id, row.session_key)
            row.status = CrawlStatus.COLLECTING_MORE
            row.progress = 0
            row.message = "loading more"
            row.error = None
            row.cancel_requested = False
            row.completed_at = None
            row.target_limit = int(row.target_limit or 0) + int(additional)
            row.updated_at = store.utcnow()
            db.commit()
            db.refresh(row)
            db.expunge(row)
        finally:
            db.close()

        existing = list(row.channels or [])
        task = asyncio.create_task(
            self._run(
                row.id,
                row.keyword,
                additional,
                FilterConfig.from_dict(row.filters),
                row.session_key,
                cursor=cursor,
                existing=existing,
                base_pages=int(row.pages_fetched or 0),
            )
        )
        self._tasks[row.id] = task
        task.add_done_callback(lambda _t, sid=row.id: self._tasks.pop(sid, None))
        self._notify(row.id)
        logger.info("crawl_session.continue id=%s additional=%s have=%s", row.id, additional, len(existing))
        return row

    async def _run(
        self,
        session_id: str,
        keyword: str,
        limit: int,
        filters: FilterConfig,
        session_key: str | None,
        *,
        cursor: CrawlCursor | None = None,
        existing: list[dict[str, Any]] | None = None,
        base_pages: int = 0,
    ) -> None:
        existing = list(existing or [])

        async def on_progress(p: CrawlProgress) -> None:
            if self._is_cancelled(session_id):
                return
            self._update(
                session_id,
                status=p.status,
                progress=p.progress,
                channels=existing + p.channels,
                message=p.message,
                continuation=p.continuation,
                pages_fetched=base_pages + p.pages_fetched,
            )

        async def should_continue() -> bool:
            return not self._is_cancelled(session_id)

        try:
            async with self.pool.session(session_key or session_id) as browser_session:
                page = await browser_session.new_page()
                profile_page = await browser_session.new_page() if filters.needs_enrichment else None
                try:
                    result = await self.crawler.crawl(
                        page,
                        keyword,
                        limit,
                        filters,
                        profile_page=profile_page,
                        on_progress=on_progress,
                        should_continue=should_continue,
                        cursor=cursor,
                        exclude_urls=[c.get("url") or "" for c in existing],
                    )
                finally:
                    for p in (page, profile_page):
                        if p is not None:
                            await _close_quietly(p)
        except asyncio.CancelledError:
            self._update(session_id, status=CrawlStatus.FAILED, error="interrupted", message="search interrupted", completed_at=store.utcnow())
            raise
        except (DiscoveryError, PoolExhausted) as exc:
            logger.warning("crawl_session.failed id=%s err=%s", session_id, exc)
            self._update(session_id, status=CrawlStatus.FAILED, error=str(exc), message="search failed", completed_at=store.utcnow())
            return
        except Exception as exc:
            logger.exception("crawl_session.crashed id=%s", session_id)
            self._update(session_id, status=CrawlStatus.FAILED, error=f"{type(exc).__name__}: {exc}", message="search failed", completed_at=store.utcnow())
            return

        found = [c.to_dict() for c in result.channels]
        self._persist_channels(keyword, found)
        channels = existing + found
        message = "cancelled" if result.stop_reason == "cancelled" else result.message
        done = result.cursor
        self._update(
            session_id,
            status=CrawlStatus.COMPLETED,
            progress=100,
            channels=channels,
            message=message,
            continuation=done.token if done is not None else None,
            resume_state=_resume_state(done),
            pages_fetched=base_pages + result.pages_fetched,
            completed_at=store.utcnow(),
        )
        logger.info(
            "crawl_session.completed id=%s channels=%s new=%s reason=%s more=%s",
            session_id,
            len(channels),
            len(found),
            result.stop_reason,
            done is not None and not done.exhausted,
        )

    def _persist_channels(self, keyword: str, channels: list[dict[str, Any]]) -> None:
        if not channels:
            return
        db = self._db()
        try:
            for data in channels:
                store.upsert_channel(db, data, keyword=keyword)
        finally:
            db.close()
        if self.queue is not None and self.auto_enqueue:
            queued = self.queue.enqueue_many(c["channel_id"] for c in channels)
            logger.info("crawl_session.enqueued keyword=%r queued=%s", keyword, queued)

    async def wait_for_change(
        self,
        session_id: str,
        *,
        wait_s: float = 0.0,
        since: int | None = None,
        last_status: str | None = None,
    ) -> CrawlSession | None:
        """Return the session once it moves past what the caller has seen.

        With ``wait_s == 0`` this is a plain read. Otherwise the call returns
        early when the status differs from ``last_status``, more than ``since``
        channels are available, or the session reaches a terminal status.
        """
        wait_s = max(0.0, min(float(wait_s or 0.0), self.max_wait_s))
        deadline = time.monotonic() + wait_s
        while True:
            row = self.snapshot(session_id)
            if row is None or wait_s <= 0 or row.status in TERMINAL_CRAWL_STATUSES:
                return row
            if since is not None and len(row.channels or []) > since:
                return row
            if last_status is not None and row.status.value != last_status:
                return row
            remaining = deadline - time.monotonic()
            if remaining <= 0:
                return row
            ev = self._changed.setdefault(session_id, asyncio.Event())
            try:
                # Bounded so progress written by another worker process is still seen
                await asyncio.wait_for(ev.wait(), timeout=min(remaining, 1.0))
            except asyncio.TimeoutError:
                pass

    def recover_orphaned(self) -> list[str]:
        """Fail sessions left running by a previous process so their pollers stop."""
        db = self._db()
        try:
            orphaned = store.fail_orphaned_crawl_sessions(db, live_ids=list(self._tasks))
        finally:
            db.close()
        for session_id in orphaned:
            self._notify(session_id)
        if orphaned:
            logger.warning("crawl_session.recovered orphaned=%s", len(orphaned))
        return orphaned

    async def shutdown(self) -> None:
        tasks = list(self._tasks.values())
        for t in tasks:
            t.cancel()
        for t in tasks:
            try:
                await t
            except asyncio.CancelledError:
                pass
        self._tasks.clear()


async def _close_quietly(page) -> None:
    try:
        await page.close()
    except Exception as exc:
        logger.debug("crawl_session.page_close.failed err=%s", exc)


def _resume_state(cursor: CrawlCursor | None) -> dict[str, Any] | None:
    if cursor is None:
        return None
    return {"api_key": cursor.api_key, "context": cursor.context, "backlog": cursor.backlog}


def _cursor_from_row(row: CrawlSession) -> CrawlCursor | None:
    state = row.resume_state or {}
    if not state.get("api_key"):
        return None
    return CrawlCursor(
        api_key=state["api_key"],
        context=dict(state.get("context") or {}),
        token=row.continuation,
        backlog=list(state.get("backlog") or []),
    )


def has_more_results(row: CrawlSession) -> bool:
    if row.status not in TERMINAL_CRAWL_STATUSES:
        return False
    cursor = _cursor_from_row(row)
    return cursor is not None and not cursor.exhausted
