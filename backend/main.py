from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from app.api.endpoints import channels, enrichment, search
from app.core.database import engine, Base, SessionLocal
from app.core.settings import settings
from app.models import channel, crawl_session, enrichment_job  # noqa: F401
from app.services.runtime import build_services, recover_interrupted_work, run_enrichment_worker
import logging
import sys
import asyncio

if sys.platform.startswith("win"):
    try:
        # Playwright needs subprocess support from the event loop
        asyncio.set_event_loop_policy(asyncio.WindowsProactorEventLoopPolicy())
    except Exception:
        pass

logging.basicConfig(
    level=getattr(logging, settings.log_level, logging.INFO),
    format="%(asctime)s %(levelname)s %(name)s %(message)s",
)
logger = logging.getLogger("channel_discovery")

app = FastAPI(title="Channel Discovery Engine API")

# Configure CORS
origins = settings.resolved_cors_origins()
if origins:
    app.add_middleware(
        CORSMiddleware,
        allow_origins=origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )


@app.on_event("startup")
async def startup() -> None:
    if settings.db_auto_create:
        Base.metadata.create_all(bind=engine)

    services = build_services(SessionLocal)
    recover_interrupted_work(services)
    app.state.browser_pool = services.pool
    app.state.enrichment_queue = services.queue
    app.state.crawl_runner = services.runner
    app.state.crawler = services.crawler
    await services.pool.start()

    app.state.worker_stop = asyncio.Event()
    app.state.worker_task = None
    if settings.enrichment_worker_enabled:
        app.state.worker_task = asyncio.create_task(run_enrichment_worker(services.queue, app.state.worker_stop))
    logger.info("app.startup pool_max=%s worker=%s", services.pool.max_sessions, settings.enrichment_worker_enabled)


@app.on_event("shutdown")
async def shutdown() -> None:
    app.state.worker_stop.set()
    if app.state.worker_task is not None:
        await app.state.worker_task
    await app.state.crawl_runner.shutdown()
    await app.state.browser_pool.close_all()
    logger.info("app.shutdown")


# API Routes
app.include_router(search.router, prefix="/api", tags=["search"])
app.include_router(channels.router, prefix="/api", tags=["channels"])
app.include_router(enrichment.router, prefix="/api", tags=["enrichment"])


@app.get("/health")
async def health_check():
    return {"status": "healthy", "pool": app.state.browser_pool.status()}


@app.get("/")
async def read_root():
    return {"message": "Channel Discovery Engine API"}
