from __future__ import annotations

import asyncio
import logging
from typing import Any, Iterable

from sqlalchemy.orm import Session, sessionmaker

from app.core.errors import ChannelNotFound
from app.core.settings import settings
from app.models.channel import EnrichmentStatus
from app.models.enrichment_job import EnrichmentJob, JobStatus
from app.services import store
from app.services.browser_pool import BrowserPool
from app.services.enrichment import EnrichmentFacts, EnrichmentOrchestrator

logger = logging.getLogger(__name__)

ENRICHMENT_AFFINITY = "enrichment"


class EnrichmentQueue:
    """Persisted queue of per-channel enrichment jobs.

    A job moves pending -> processing -> completed, back to pending for a
    retry, or to failed once its attempts are used up. Database sessions are
    opened per step and never held across a page visit.
    """

    def __init__(
        self,
        session_factory: sessionmaker,
        pool: BrowserPool,
        orchestrator: EnrichmentOrchestrator,
        *,
        max_attempts: int | None = None,
    ) -> None:
        self._session_factory = session_factory
        self.pool = pool
        self.orchestrator = orchestrator
        self.max_attempts = int(max_attempts or settings.queue_max_attempts)
        self._drain_lock = asyncio.Lock()

    def _db(self) -> Session:
        return self._session_factory()

    def enqueue(self, channel_id: str, priority: int = 0) -> bool:
        db = self._db()
        try:
            _job, created = store.insert_job_if_absent(db, channel_id, priority=priority, max_attempts=self.max_attempts)
        finally:
            db.close()
        if created:
            logger.info("enrichment_queue.enqueue channel=%s priority=%s", channel_id, priority)
        return created

    def enqueue_many(self, channel_ids: Iterable[str], priority: int = 0) -> int:
        return sum(1 for cid in channel_ids if cid and self.enqueue(cid, priority))

    def claim_next(self) -> EnrichmentJob | None:
        db = self._db()
        try:
            job = store.claim_next_pending_job(db)
            if job is not None:
                db.expunge(job)
            return job
        finally:
            db.close()

    def recover_interrupted(self) -> tuple[int, int]:
        """Requeue jobs a previous process claimed but never finished.

        Only safe while no other worker drains the same database.
        """
        db = self._db()
        try:
            requeued, failed = store.requeue_interrupted_jobs(db, default_max_attempts=self.max_attempts)
        finally:
            db.close()
        if requeued or failed:
            logger.warning("enrichment_queue.recovered requeued=%s failed=%s", requeued, failed)
        return requeued, failed

    def _mark_enriching(self, channel_id: str) -> tuple[str, dict[str, str], dict[str, str]]:
        db = self._db()
        try:
            channel = store.get_channel(db, channel_id)
            if channel is None:
                raise ChannelNotFound(channel_id)
            target = (channel.url, dict(channel.social_links or {}), dict(channel.email_sources or {}))
            channel.enrichment_status = EnrichmentStatus.ENRICHING
            db.commit()
            return target
        finally:
            db.close()

    def _persist(self, job: EnrichmentJob, facts: EnrichmentFacts) -> None:
        db = self._db()
        try:
            channel = store.get_channel(db, job.channel_id)
            if channel is None:
                raise ChannelNotFound(job.channel_id)
            store.apply_enrichment(db, channel, facts.to_dict())
            row = db.get(EnrichmentJob, job.id)
            store.update_job(db, row, status=JobStatus.COMPLETED, completed_at=store.utcnow(), error_message=None)
        finally:
            db.close()

    async def process_job(self, job: EnrichmentJob) -> JobStatus:
        try:
            channel_url, social_links, known_sources = self._mark_enriching(job.channel_id)
            async with self.pool.session(ENRICHMENT_AFFINITY) as session:
                page = await session.new_page()
                try:
                    facts = await self.orchestrator.enrich(
                        page,
                        channel_url,
                        social_links=social_links,
                        known_sources=known_sources,
                    )
                finally:
                    await _close_quietly(page)
            self._persist(job, facts)
        except Exception as exc:
            return self._record_failure(job, exc)
        logger.info("enrichment_queue.completed job=%s channel=%s emails=%s", job.id, job.channel_id, len(facts.email_sources))
        return JobStatus.COMPLETED

    def _record_failure(self, job: EnrichmentJob, exc: Exception) -> JobStatus:
        message = f"{type(exc).__name__}: {exc}"[:1000]
        db = self._db()
        try:
            row = db.get(EnrichmentJob, job.id)
            if row is None:
                return JobStatus.FAILED
            attempts = int(row.attempts or 0)
            limit = int(row.max_attempts or self.max_attempts)
            if attempts <= limit:
                store.update_job(db, row, status=JobStatus.PENDING, error_message=message)
                status = JobStatus.PENDING
                channel_status = EnrichmentStatus.PENDING
            else:
                store.update_job(db, row, status=JobStatus.FAILED, error_message=message, completed_at=store.utcnow())
                status = JobStatus.FAILED
                channel_status = EnrichmentStatus.FAILED
            store.update_channel(db, row.channel_id, enrichment_status=channel_status)
        finally:
            db.close()
        logger.warning(
            "enrichment_queue.failure job=%s channel=%s attempts=%s next=%s err=%s",
            job.id,
            job.channel_id,
            attempts,
            status.value,
            message,
        )
        return status

    async def drain(self, max_jobs: int | None = None, pause_s: float | None = None) -> int:
        """Claim and run up to ``max_jobs`` jobs one after another."""
        max_jobs = int(max_jobs or settings.queue_drain_batch)
        pause_s = settings.queue_drain_pause_s if pause_s is None else pause_s
        processed = 0
        async with self._drain_lock:
            while processed < max_jobs:
                job = self.claim_next()
                if job is None:
                    break
                await self.process_job(job)
                processed += 1
                if processed < max_jobs and pause_s > 0:
                    await asyncio.sleep(pause_s)
        if processed:
            logger.info("enrichment_queue.drain processed=%s", processed)
        return processed

    def stats(self) -> dict[str, int]:
        db = self._db()
        try:
            return store.job_status_counts(db)
        finally:
            db.close()

    def enrichment_status(self, channel_ids: Iterable[str]) -> dict[str, dict[str, Any]]:
        ids = [c for c in channel_ids if c]
        db = self._db()
        try:
            jobs = store.latest_jobs_for(db, ids)
            out: dict[str, dict[str, Any]] = {}
            for cid in ids:
                channel = store.get_channel(db, cid)
                job = jobs.get(cid)
                if channel is None:
                    out[cid] = {"status": "unknown"}
                    continue
                status = channel.enrichment_status
                out[cid] = {
                    "status": status.value if isinstance(status, EnrichmentStatus) else (status or "pending"),
                    "job_status": job.status.value if job is not None and job.status is not None else None,
                    "attempts": job.attempts if job is not None else 0,
                    "error": job.error_message if job is not None else None,
                    "emails": list(channel.emails or []),
                    "email_sources": dict(channel.email_sources or {}),
                    "social_links": dict(channel.social_links or {}),
                    "subscriber_count": channel.subscriber_count,
                    "video_count": channel.video_count,
                    "view_count": channel.view_count,
                    "country": channel.country,
                    "enriched_at": channel.enriched_at.isoformat() if channel.enriched_at else None,
                }
            return out
        finally:
            db.close()


async def _close_quietly(page) -> None:
    try:
        await page.close()
    except Exception as exc:
        logger.debug("enrichment_queue.page_close.failed err=%s", exc)
