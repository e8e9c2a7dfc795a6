from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Iterable

from sqlalchemy import func
from sqlalchemy.orm import Session

from app.models.channel import Channel, EnrichmentStatus
from app.models.crawl_session import CrawlSession, CrawlStatus
from app.models.enrichment_job import ACTIVE_JOB_STATUSES, EnrichmentJob, JobStatus


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


_CHANNEL_FIELDS = (
    "name",
    "url",
    "description",
    "thumbnail_url",
    "subscriber_count",
    "video_count",
    "view_count",
    "country",
)


def get_channel(db: Session, channel_id: str) -> Channel | None:
    return db.query(Channel).filter(Channel.channel_id == channel_id).first()


def upsert_channel(db: Session, data: dict[str, Any], *, keyword: str | None = None) -> Channel:
    """Insert or refresh a channel by its platform id.

    Discovery fields only overwrite when a value is present, so a later search
    with less information never erases what an earlier one found.
    """
    channel_id = str(data.get("channel_id") or "").strip()
    if not channel_id:
        raise ValueError("channel_id is required")
    channel = get_channel(db, channel_id)
    if channel is None:
        channel = Channel(
            channel_id=channel_id,
            emails=[],
            email_sources={},
            social_links={},
            enrichment_status=EnrichmentStatus.PENDING,
        )
        db.add(channel)
    for name in _CHANNEL_FIELDS:
        value = data.get(name)
        if value not in (None, ""):
            setattr(channel, name, value)
    links = data.get("social_links")
    if isinstance(links, dict) and links:
        merged = dict(channel.social_links or {})
        for platform, url in links.items():
            merged.setdefault(platform, url)
        channel.social_links = merged
    if keyword:
        channel.search_keyword = keyword
    if data.get("relevance_score") is not None:
        channel.relevance_score = float(data["relevance_score"])
    db.commit()
    db.refresh(channel)
    return channel


def update_channel(db: Session, channel_id: str, **fields: Any) -> Channel | None:
    channel = get_channel(db, channel_id)
    if channel is None:
        return None
    for name, value in fields.items():
        setattr(channel, name, value)
    db.commit()
    db.refresh(channel)
    return channel


def apply_enrichment(db: Session, channel: Channel, facts: dict[str, Any]) -> Channel:
    """Merge enrichment facts additively; existing email attributions are kept."""
    sources = dict(channel.email_sources or {})
    for email, source in (facts.get("email_sources") or {}).items():
        sources.setdefault(email, source)
    links = dict(channel.social_links or {})
    for platform, url in (facts.get("social_links") or {}).items():
        links.setdefault(platform, url)

    channel.email_sources = sources
    channel.emails = list(sources)
    channel.social_links = links
    for name in ("subscriber_count", "video_count", "view_count", "country", "description"):
        value = facts.get(name)
        if value not in (None, ""):
            setattr(channel, name, value)
    channel.enrichment_status = EnrichmentStatus.ENRICHED
    channel.enriched_at = utcnow()
    db.commit()
    db.refresh(channel)
    return channel


def list_channels(
    db: Session,
    *,
    keyword: str | None = None,
    enrichment_status: str | None = None,
    limit: int = 50,
    offset: int = 0,
) -> tuple[list[Channel], int]:
    q = db.query(Channel)
    if keyword:
        q = q.filter(func.lower(Channel.search_keyword) == keyword.strip().lower())
    if enrichment_status:
        q = q.filter(Channel.enrichment_status == EnrichmentStatus(enrichment_status))
    total = q.count()
    items = (
        q.order_by(Channel.relevance_score.desc(), Channel.id.asc())
        .offset(offset)
        .limit(limit)
        .all()
    )
    return items, total


def get_active_job(db: Session, channel_id: str) -> EnrichmentJob | None:
    return (
        db.query(EnrichmentJob)
        .filter(EnrichmentJob.channel_id == channel_id, EnrichmentJob.status.in_(ACTIVE_JOB_STATUSES))
        .first()
    )


def insert_job_if_absent(db: Session, channel_id: str, *, priority: int = 0, max_attempts: int = 3) -> tuple[EnrichmentJob, bool]:
    existing = get_active_job(db, channel_id)
    if existing is not None:
        return existing, False
    job = EnrichmentJob(
        channel_id=channel_id,
        status=JobStatus.PENDING,
        priority=int(priority),
        attempts=0,
        max_attempts=int(max_attempts),
        created_at=utcnow(),
    )
    db.add(job)
    db.commit()
    db.refresh(job)
    return job, True


def claim_next_pending_job(db: Session, *, max_races: int = 5) -> EnrichmentJob | None:
    """Claim the best pending job with a conditional single-row update.

    The UPDATE only matches while the row is still pending, so two workers
    racing for one job see exactly one rowcount of 1.
    """
    for _ in range(max_races):
        row = (
            db.query(EnrichmentJob.id)
            .filter(EnrichmentJob.status == JobStatus.PENDING)
            .order_by(EnrichmentJob.priority.desc(), EnrichmentJob.created_at.asc(), EnrichmentJob.id.asc())
            .first()
        )
        if row is None:
            return None
        job_id = row[0]
        claimed = (
            db.query(EnrichmentJob)
            .filter(EnrichmentJob.id == job_id, EnrichmentJob.status == JobStatus.PENDING)
            .update(
                {
                    EnrichmentJob.status: JobStatus.PROCESSING,
                    EnrichmentJob.started_at: utcnow(),
                    EnrichmentJob.attempts: func.coalesce(EnrichmentJob.attempts, 0) + 1,
                },
                synchronize_session=False,
            )
        )
        db.commit()
        if claimed == 1:
            return db.get(EnrichmentJob, job_id)
    return None


def update_job(db: Session, job: EnrichmentJob, **fields: Any) -> EnrichmentJob:
    for name, value in fields.items():
        setattr(job, name, value)
    db.commit()
    db.refresh(job)
    return job


def job_status_counts(db: Session) -> dict[str, int]:
    counts = {s.value: 0 for s in JobStatus}
    for status, n in db.query(EnrichmentJob.status, func.count(EnrichmentJob.id)).group_by(EnrichmentJob.status).all():
        key = status.value if isinstance(status, JobStatus) else str(status)
        counts[key] = int(n)
    return counts


def latest_jobs_for(db: Session, channel_ids: Iterable[str]) -> dict[str, EnrichmentJob]:
    ids = [c for c in channel_ids if c]
    if not ids:
        return {}
    out: dict[str, EnrichmentJob] = {}
    rows = (
        db.query(EnrichmentJob)
        .filter(EnrichmentJob.channel_id.in_(ids))
        .order_by(EnrichmentJob.id.asc())
        .all()
    )
    for job in rows:
        out[job.channel_id] = job
    return out


def create_crawl_session(
    db: Session,
    *,
    keyword: str,
    target_limit: int,
    filters: dict[str, Any] | None,
    session_key: str | None,
) -> CrawlSession:
    row = CrawlSession(
        keyword=keyword,
        target_limit=int(target_limit),
        filters=filters or {},
        session_key=session_key,
        status=CrawlStatus.COLLECTING,
        progress=0,
        channels=[],
        pages_fetched=0,
        cancel_requested=False,
        created_at=utcnow(),
    )
    db.add(row)
    db.commit()
    db.refresh(row)
    return row


def get_crawl_session(db: Session, session_id: str) -> CrawlSession | None:
    return db.get(CrawlSession, session_id)


def update_crawl_session(db: Session, session_id: str, **fields: Any) -> CrawlSession | None:
    row = db.get(CrawlSession, session_id)
    if row is None:
        return None
    incoming = fields.get("channels")
    if incoming is not None and len(incoming) < len(row.channels or []):
        # The accumulated list never shrinks once a client has seen it
        fields.pop("channels")
    for name, value in fields.items():
        setattr(row, name, value)
    db.commit()
    db.refresh(row)
    return row


def running_sessions_for_key(db: Session, session_key: str, *, exclude_id: str | None = None) -> list[CrawlSession]:
    q = db.query(CrawlSession).filter(
        CrawlSession.session_key == session_key,
        CrawlSession.status.notin_([CrawlStatus.COMPLETED, CrawlStatus.FAILED]),
    )
    if exclude_id:
        q = q.filter(CrawlSession.id != exclude_id)
    return q.all()


def list_crawl_sessions(
    db: Session,
    *,
    session_key: str | None = None,
    limit: int = 20,
    offset: int = 0,
) -> tuple[list[CrawlSession], int]:
    q = db.query(CrawlSession)
    if session_key:
        q = q.filter(CrawlSession.session_key == session_key)
    total = q.count()
    items = q.order_by(CrawlSession.created_at.desc(), CrawlSession.id.asc()).offset(offset).limit(limit).all()
    return items, total


def requeue_interrupted_jobs(db: Session, *, default_max_attempts: int = 3, reason: str = "interrupted") -> tuple[int, int]:
    """Return jobs left ``processing`` by a dead worker to the queue.

    A job whose attempts are already past its limit is failed instead, the
    same way a failed execution would be. Returns ``(requeued, failed)``.
    """
    requeued = failed = 0
    for job in db.query(EnrichmentJob).filter(EnrichmentJob.status == JobStatus.PROCESSING).all():
        limit = int(job.max_attempts or default_max_attempts)
        channel = get_channel(db, job.channel_id)
        if int(job.attempts or 0) > limit:
            job.status = JobStatus.FAILED
            job.completed_at = utcnow()
            channel_status = EnrichmentStatus.FAILED
            failed += 1
        else:
            job.status = JobStatus.PENDING
            channel_status = EnrichmentStatus.PENDING
            requeued += 1
        job.error_message = reason
        if channel is not None:
            channel.enrichment_status = channel_status
    db.commit()
    return requeued, failed


def fail_orphaned_crawl_sessions(db: Session, *, live_ids: Iterable[str] = (), reason: str = "interrupted") -> list[str]:
    live = set(live_ids)
    orphaned: list[str] = []
    rows = db.query(CrawlSession).filter(CrawlSession.status.notin_([CrawlStatus.COMPLETED, CrawlStatus.FAILED])).all()
    for row in rows:
        if row.id in live:
            continue
        row.status = CrawlStatus.FAILED
        row.error = reason
        row.message = reason
        row.completed_at = utcnow()
        row.updated_at = utcnow()
        orphaned.append(row.id)
    db.commit()
    return orphaned
