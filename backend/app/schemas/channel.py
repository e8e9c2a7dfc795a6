from pydantic import BaseModel
from typing import Dict, List, Optional
from datetime import datetime
from app.models.channel import EnrichmentStatus


class ChannelResponse(BaseModel):
    id: int
    channel_id: str
    name: Optional[str] = None
    url: Optional[str] = None
    description: Optional[str] = None
    thumbnail_url: Optional[str] = None
    subscriber_count: Optional[int] = None
    video_count: Optional[int] = None
    view_count: Optional[int] = None
    country: Optional[str] = None
    emails: Optional[List[str]] = None
    email_sources: Optional[Dict[str, str]] = None
    social_links: Optional[Dict[str, str]] = None
    search_keyword: Optional[str] = None
    relevance_score: Optional[float] = None
    enrichment_status: Optional[EnrichmentStatus] = None
    enriched_at: Optional[datetime] = None
    created_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class ChannelListResponse(BaseModel):
    items: List[ChannelResponse]
    total: int
    limit: int
    offset: int
    has_more: bool
