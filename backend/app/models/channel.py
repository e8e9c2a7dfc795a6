from sqlalchemy import BigInteger, Column, DateTime, Enum, Float, Integer, JSON, String, Text
from sqlalchemy.sql import func
from app.core.database import Base
import enum


class EnrichmentStatus(str, enum.Enum):
    PENDING = "pending"
    ENRICHING = "enriching"
    ENRICHED = "enriched"
    FAILED = "failed"


class Channel(Base):
    __tablename__ = "channels"

    id = Column(Integer, primary_key=True, index=True)
    channel_id = Column(String, unique=True, index=True, nullable=False)
    name = Column(String)
    url = Column(String)
    description = Column(Text)
    thumbnail_url = Column(String)

    subscriber_count = Column(BigInteger)
    video_count = Column(Integer)
    view_count = Column(BigInteger)
    country = Column(String)

    # emails mirrors the keys of email_sources, in first-seen order
    emails = Column(JSON)
    email_sources = Column(JSON)
    social_links = Column(JSON)

    search_keyword = Column(String, index=True)
    relevance_score = Column(Float, default=0.0)

    enrichment_status = Column(
        Enum(
            EnrichmentStatus,
            name="enrichmentstatus",
            native_enum=False,
            values_callable=lambda e: [m.value for m in e],
        ),
        default=EnrichmentStatus.PENDING,
        index=True,
    )
    enriched_at = Column(DateTime(timezone=True))

    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())
