from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session
from app.core.database import get_db
from app.models.channel import EnrichmentStatus
from app.schemas.channel import ChannelListResponse, ChannelResponse
from app.services import store

router = APIRouter()


@router.get("/channels", response_model=ChannelListResponse)
async def list_channels(
    keyword: str | None = None,
    enrichment_status: str | None = None,
    limit: int = 50,
    offset: int = 0,
    db: Session = Depends(get_db),
):
    if enrichment_status and enrichment_status not in {s.value for s in EnrichmentStatus}:
        raise HTTPException(status_code=400, detail="Unknown enrichment_status")
    limit = max(1, min(int(limit or 50), 200))
    offset = max(0, int(offset or 0))
    items, total = store.list_channels(
        db,
        keyword=(keyword or "").strip() or None,
        enrichment_status=enrichment_status or None,
        limit=limit,
        offset=offset,
    )
    return {
        "items": items,
        "total": total,
        "limit": limit,
        "offset": offset,
        "has_more": offset + len(items) < total,
    }


@router.get("/channels/{channel_id}", response_model=ChannelResponse)
async def get_channel(channel_id: str, db: Session = Depends(get_db)):
    channel = store.get_channel(db, channel_id)
    if not channel:
        raise HTTPException(status_code=404, detail="Channel not found")
    return channel
