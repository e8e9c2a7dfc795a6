import os


def _getenv(name: str, default: str | None = None) -> str | None:
    value = os.getenv(name)
    if value is None:
        return default
    value = value.strip()
    return value if value else default


def _getenv_bool(name: str, default: bool = False) -> bool:
    raw = _getenv(name)
    if raw is None:
        return default
    return raw.lower() in {"1", "true", "yes", "y", "on"}


def _getenv_int(name: str, default: int) -> int:
    raw = _getenv(name)
    if raw is None:
        return default
    try:
        return int(raw)
    except ValueError:
        return default


def _getenv_float(name: str, default: float) -> float:
    raw = _getenv(name)
    if raw is None:
        return default
    try:
        return float(raw)
    except ValueError:
        return default


DEFAULT_USER_AGENT = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/124.0.0.0 Safari/537.36"
)


class Settings:
    def __init__(self) -> None:
        self.environment = (_getenv("ENVIRONMENT", "development") or "development").lower()
        self.database_url = _getenv("DATABASE_URL", "sqlite:///./sql_app.db") or "sqlite:///./sql_app.db"
        self.db_auto_create = _getenv_bool("DB_AUTO_CREATE", default=True)
        self.cors_allow_origins = _getenv("CORS_ALLOW_ORIGINS")
        self.log_level = (_getenv("LOG_LEVEL", "INFO") or "INFO").upper()

        self.browser_pool_max = max(1, _getenv_int("BROWSER_POOL_MAX", 3))
        self.browser_pool_idle_timeout_s = _getenv_float("BROWSER_POOL_IDLE_TIMEOUT_S", 300.0)
        self.browser_pool_sweep_interval_s = _getenv_float("BROWSER_POOL_SWEEP_INTERVAL_S", 60.0)
        self.browser_pool_acquire_timeout_s = _getenv_float("BROWSER_POOL_ACQUIRE_TIMEOUT_S", 30.0)
        self.browser_pool_poll_interval_s = _getenv_float("BROWSER_POOL_POLL_INTERVAL_S", 0.5)
        self.browser_headless = _getenv_bool("BROWSER_HEADLESS", default=True)
        self.browser_proxy_url = _getenv("BROWSER_PROXY_URL")
        self.browser_user_agent = _getenv("BROWSER_USER_AGENT", DEFAULT_USER_AGENT) or DEFAULT_USER_AGENT

        self.nav_timeout_search_ms = _getenv_int("NAV_TIMEOUT_SEARCH_MS", 20000)
        self.nav_timeout_page_ms = _getenv_int("NAV_TIMEOUT_PAGE_MS", 15000)
        self.nav_timeout_contact_ms = _getenv_int("NAV_TIMEOUT_CONTACT_MS", 10000)
        self.page_settle_ms = _getenv_int("PAGE_SETTLE_MS", 1500)

        self.crawl_max_continuations = _getenv_int("CRAWL_MAX_CONTINUATIONS", 20)
        self.crawl_filter_multiplier = max(1, _getenv_int("CRAWL_FILTER_MULTIPLIER", 5))
        self.crawl_batch_size = max(1, _getenv_int("CRAWL_BATCH_SIZE", 10))
        self.crawl_filter_retries = max(0, _getenv_int("CRAWL_FILTER_RETRIES", 2))
        self.crawl_profile_cache_ttl_s = _getenv_int("CRAWL_PROFILE_CACHE_TTL_S", 3600)

        self.enrich_max_items = max(0, _getenv_int("ENRICH_MAX_ITEMS", 3))
        self.enrich_max_contact_pages = max(0, _getenv_int("ENRICH_MAX_CONTACT_PAGES", 3))
        self.enrich_delay_min_s = _getenv_float("ENRICH_DELAY_MIN_S", 1.0)
        self.enrich_delay_max_s = _getenv_float("ENRICH_DELAY_MAX_S", 3.0)

        self.queue_max_attempts = max(1, _getenv_int("QUEUE_MAX_ATTEMPTS", 3))
        self.queue_drain_batch = max(1, _getenv_int("QUEUE_DRAIN_BATCH", 5))
        self.queue_drain_pause_s = _getenv_float("QUEUE_DRAIN_PAUSE_S", 1.0)
        self.enrichment_worker_enabled = _getenv_bool("ENRICHMENT_WORKER_ENABLED", default=False)
        self.enrichment_worker_interval_s = _getenv_float("ENRICHMENT_WORKER_INTERVAL_S", 30.0)

        self.long_poll_max_wait_s = _getenv_float("LONG_POLL_MAX_WAIT_S", 25.0)

    @property
    def is_production(self) -> bool:
        return self.environment == "production"

    def delay_range(self) -> tuple[float, float]:
        lo = max(0.0, self.enrich_delay_min_s)
        hi = max(lo, self.enrich_delay_max_s)
        return (lo, hi)

    def resolved_cors_origins(self) -> list[str]:
        raw = self.cors_allow_origins
        if raw is None:
            return ["http://localhost:5173", "http://localhost:8000"]
        if raw.strip() == "*":
            return ["*"]
        origins = [o.strip() for o in raw.split(",") if o.strip()]
        return origins


settings = Settings()
