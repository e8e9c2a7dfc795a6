from sqlalchemy import Boolean, Column, DateTime, Enum, Integer, JSON, String, Text
from sqlalchemy.sql import func
from app.core.database import Base
import enum
from uuid import uuid4


class CrawlStatus(str, enum.Enum):
    COLLECTING = "collecting"
    COLLECTING_MORE = "collecting_more"
    STREAMING = "streaming"
    COMPLETED = "completed"
    FAILED = "failed"


TERMINAL_CRAWL_STATUSES = (CrawlStatus.COMPLETED, CrawlStatus.FAILED)


class CrawlSession(Base):
    __tablename__ = "crawl_sessions"

    id = Column(String, primary_key=True, index=True, default=lambda: uuid4().hex)
    session_key = Column(String, index=True)
    keyword = Column(String, index=True)
    target_limit = Column(Integer, default=50)
    filters = Column(JSON)

    status = Column(
        Enum(
            CrawlStatus,
            name="crawlstatus",
            native_enum=False,
            values_callable=lambda e: [m.value for m in e],
        ),
        default=CrawlStatus.COLLECTING,
    )
    progress = Column(Integer, default=0)
    # Accumulated results; only ever appended to while the session runs
    channels = Column(JSON)
    continuation = Column(Text)
    # Search API key, client context and unjudged candidates for "load more"
    resume_state = Column(JSON)
    pages_fetched = Column(Integer, default=0)
    message = Column(String)
    error = Column(Text)
    cancel_requested = Column(Boolean, default=False)

    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())
    completed_at = Column(DateTime(timezone=True))
