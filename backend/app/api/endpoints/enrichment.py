from fastapi import APIRouter, HTTPException, Request
from app.schemas.enrichment import (
    EnqueueRequest,
    EnqueueResponse,
    PoolStatusResponse,
    ProcessRequest,
    ProcessResponse,
    StatusRequest,
    StatusResponse,
)
from app.services.enrichment_queue import EnrichmentQueue

router = APIRouter()

MAX_BULK_IDS = 500


def _queue(request: Request) -> EnrichmentQueue:
    return request.app.state.enrichment_queue


def _clean_ids(raw: list[str]) -> list[str]:
    ids: list[str] = []
    for cid in raw:
        cid = (cid or "").strip()
        if cid and cid not in ids:
            ids.append(cid)
    if not ids:
        raise HTTPException(status_code=400, detail="channel_ids must not be empty")
    if len(ids) > MAX_BULK_IDS:
        raise HTTPException(status_code=400, detail=f"at most {MAX_BULK_IDS} channel_ids per request")
    return ids


@router.post("/enrichment/queue", response_model=EnqueueResponse)
async def enqueue_channels(body: EnqueueRequest, request: Request):
    ids = _clean_ids(body.channel_ids)
    queued = _queue(request).enqueue_many(ids, priority=body.priority)
    return {"queued": queued, "skipped": len(ids) - queued}


@router.post("/enrichment/process", response_model=ProcessResponse)
async def process_queue(body: ProcessRequest, request: Request):
    queue = _queue(request)
    max_jobs = max(1, min(int(body.max_jobs or 5), 50))
    processed = await queue.drain(max_jobs)
    return {"processed": processed, "stats": queue.stats()}


@router.post("/enrichment/status", response_model=StatusResponse)
async def enrichment_status(body: StatusRequest, request: Request):
    ids = _clean_ids(body.channel_ids)
    return {"channels": _queue(request).enrichment_status(ids)}


@router.get("/enrichment/stats")
async def enrichment_stats(request: Request):
    return _queue(request).stats()


@router.get("/pool", response_model=PoolStatusResponse)
async def pool_status(request: Request):
    return request.app.state.browser_pool.status()
