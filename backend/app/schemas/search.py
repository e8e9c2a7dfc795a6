from pydantic import BaseModel, Field
from typing import Any, Dict, List, Optional
from datetime import datetime
from app.models.crawl_session import CrawlStatus


class SearchFilters(BaseModel):
    min_subscribers: Optional[int] = Field(default=None, ge=0)
    max_subscribers: Optional[int] = Field(default=None, ge=0)
    country: Optional[str] = None
    exclude_music: bool = False
    exclude_brands: bool = False


class SearchCreate(BaseModel):
    keyword: str
    limit: int = 50
    filters: SearchFilters = SearchFilters()
    session_key: Optional[str] = None


class SearchStatusResponse(BaseModel):
    sessionId: str
    status: CrawlStatus
    progress: int
    channels: List[Dict[str, Any]]
    message: Optional[str] = None
    error: Optional[str] = None
    keyword: Optional[str] = None
    pages_fetched: int = 0
    cancel_requested: bool = False
    has_more: bool = False


class SearchContinue(BaseModel):
    additional: int = 50


class SearchHistoryItem(BaseModel):
    id: str
    keyword: Optional[str] = None
    status: CrawlStatus
    target_limit: Optional[int] = None
    filters: Optional[Dict[str, Any]] = None
    message: Optional[str] = None
    error: Optional[str] = None
    pages_fetched: Optional[int] = None
    created_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class SearchHistoryResponse(BaseModel):
    items: List[SearchHistoryItem]
    total: int
    limit: int
    offset: int
