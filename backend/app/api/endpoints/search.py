from fastapi import APIRouter, Depends, HTTPException, Request
from sqlalchemy.orm import Session
from app.core.database import get_db
from app.core.errors import CrawlNotResumable
from app.models.crawl_session import CrawlSession
from app.schemas.search import SearchContinue, SearchCreate, SearchHistoryResponse, SearchStatusResponse
from app.services import store
from app.services.crawl_sessions import CrawlSessionRunner, has_more_results
from app.services.filters import FilterConfig

router = APIRouter()

MAX_LIMIT = 500


def _runner(request: Request) -> CrawlSessionRunner:
    return request.app.state.crawl_runner


def _status_payload(row: CrawlSession) -> SearchStatusResponse:
    return SearchStatusResponse(
        sessionId=row.id,
        status=row.status,
        progress=int(row.progress or 0),
        channels=list(row.channels or []),
        message=row.message,
        error=row.error,
        keyword=row.keyword,
        pages_fetched=int(row.pages_fetched or 0),
        cancel_requested=bool(row.cancel_requested),
        has_more=has_more_results(row),
    )


@router.post("/search", response_model=SearchStatusResponse)
async def start_search(search_in: SearchCreate, request: Request):
    keyword = (search_in.keyword or "").strip()
    if not keyword:
        raise HTTPException(status_code=400, detail="keyword is required")
    if search_in.limit < 1 or search_in.limit > MAX_LIMIT:
        raise HTTPException(status_code=400, detail=f"limit must be between 1 and {MAX_LIMIT}")
    f = search_in.filters
    if f.min_subscribers is not None and f.max_subscribers is not None and f.min_subscribers > f.max_subscribers:
        raise HTTPException(status_code=400, detail="min_subscribers must not exceed max_subscribers")

    filters = FilterConfig.from_dict(f.model_dump())
    session_key = (search_in.session_key or "").strip() or None
    row = _runner(request).start(keyword, search_in.limit, filters, session_key)
    return _status_payload(row)


@router.get("/search/history", response_model=SearchHistoryResponse)
async def search_history(session_key: str | None = None, limit: int = 20, offset: int = 0, db: Session = Depends(get_db)):
    limit = max(1, min(int(limit or 20), 100))
    offset = max(0, int(offset or 0))
    items, total = store.list_crawl_sessions(db, session_key=session_key, limit=limit, offset=offset)
    return {"items": items, "total": total, "limit": limit, "offset": offset}


@router.get("/search/{session_id}", response_model=SearchStatusResponse)
async def get_search(
    session_id: str,
    request: Request,
    wait: float = 0.0,
    since: int | None = None,
    status: str | None = None,
):
    row = await _runner(request).wait_for_change(session_id, wait_s=wait, since=since, last_status=status)
    if row is None:
        raise HTTPException(status_code=404, detail="Search session not found")
    return _status_payload(row)


@router.post("/search/{session_id}/cancel", response_model=SearchStatusResponse)
async def cancel_search(session_id: str, request: Request):
    row = _runner(request).cancel(session_id)
    if row is None:
        raise HTTPException(status_code=404, detail="Search session not found")
    return _status_payload(row)


@router.post("/search/{session_id}/continue", response_model=SearchStatusResponse)
async def continue_search(session_id: str, body: SearchContinue, request: Request):
    if body.additional < 1 or body.additional > MAX_LIMIT:
        raise HTTPException(status_code=400, detail=f"additional must be between 1 and {MAX_LIMIT}")
    try:
        row = _runner(request).continue_session(session_id, body.additional)
    except CrawlNotResumable as exc:
        raise HTTPException(status_code=409, detail=str(exc))
    if row is None:
        raise HTTPException(status_code=404, detail="Search session not found")
    return _status_payload(row)
