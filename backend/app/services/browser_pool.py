from __future__ import annotations

import asyncio
import logging
import time
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import Any, AsyncIterator, Awaitable, Callable

from playwright.async_api import async_playwright

from app.core.errors import PoolExhausted
from app.core.settings import settings

logger = logging.getLogger(__name__)

Launcher = Callable[[], Awaitable[Any]]

_CHROMIUM_ARGS = [
    "--disable-blink-features=AutomationControlled",
    "--disable-dev-shm-usage",
    "--no-sandbox",
]


@dataclass
class BrowserSession:
    index: int
    browser: Any
    in_use: bool = False
    last_used_at: float = 0.0
    affinity_key: str | None = None
    user_agent: str | None = None
    context: Any = None

    async def new_page(self):
        if self.context is None:
            self.context = await self.browser.new_context(
                viewport={"width": 1280, "height": 900},
                user_agent=self.user_agent,
                locale="en-US",
                extra_http_headers={"Accept-Language": "en-US,en;q=0.9"},
            )
        return await self.context.new_page()


class BrowserPool:
    """Bounded set of browser sessions shared by crawl sessions and enrichment jobs.

    Sessions are launched lazily up to ``max_sessions``. ``acquire`` prefers an
    idle session that last served the same affinity key, then any idle one,
    then a fresh launch; when the pool is full it re-polls until one frees or
    the acquire timeout elapses. Slot bookkeeping happens under one lock; a
    new slot is reserved under it and its browser launched outside it.
    """

    def __init__(
        self,
        *,
        max_sessions: int | None = None,
        idle_timeout_s: float | None = None,
        sweep_interval_s: float | None = None,
        acquire_timeout_s: float | None = None,
        poll_interval_s: float | None = None,
        headless: bool | None = None,
        proxy_url: str | None = None,
        user_agent: str | None = None,
        launcher: Launcher | None = None,
    ) -> None:
        self.max_sessions = max(1, int(max_sessions or settings.browser_pool_max))
        self.idle_timeout_s = float(settings.browser_pool_idle_timeout_s if idle_timeout_s is None else idle_timeout_s)
        self.sweep_interval_s = float(settings.browser_pool_sweep_interval_s if sweep_interval_s is None else sweep_interval_s)
        self.acquire_timeout_s = float(settings.browser_pool_acquire_timeout_s if acquire_timeout_s is None else acquire_timeout_s)
        self.poll_interval_s = float(settings.browser_pool_poll_interval_s if poll_interval_s is None else poll_interval_s)
        self._headless = settings.browser_headless if headless is None else headless
        self._proxy_url = proxy_url if proxy_url is not None else settings.browser_proxy_url
        self._user_agent = user_agent or settings.browser_user_agent
        self._launcher = launcher or self._launch_chromium

        self._lock = asyncio.Lock()
        self._sessions: list[BrowserSession] = []
        self._playwright = None
        self._sweep_task: asyncio.Task | None = None
        self._closed = False

    async def start(self) -> None:
        if self._sweep_task is None and not self._closed:
            self._sweep_task = asyncio.create_task(self._sweep_loop())
        logger.info("browser_pool.start max_sessions=%s idle_timeout_s=%s", self.max_sessions, self.idle_timeout_s)

    async def _launch_chromium(self):
        if self._playwright is None:
            self._playwright = await async_playwright().start()
        kwargs: dict[str, Any] = {"headless": self._headless, "args": list(_CHROMIUM_ARGS)}
        if self._proxy_url:
            kwargs["proxy"] = {"server": self._proxy_url}
        return await self._playwright.chromium.launch(**kwargs)

    def _free_index(self) -> int:
        taken = {s.index for s in self._sessions}
        idx = 0
        while idx in taken:
            idx += 1
        return idx

    def _pick_idle(self, affinity_key: str | None) -> BrowserSession | None:
        idle = [s for s in self._sessions if not s.in_use]
        if not idle:
            return None
        if affinity_key:
            for s in idle:
                if s.affinity_key == affinity_key:
                    return s
        return idle[0]

    async def _claim_slot(self, affinity_key: str | None, deadline: float) -> tuple[BrowserSession | None, bool]:
        remaining = max(0.0, deadline - time.monotonic())
        try:
            await asyncio.wait_for(self._lock.acquire(), timeout=remaining)
        except asyncio.TimeoutError:
            return None, False
        try:
            if self._closed:
                raise PoolExhausted("browser pool is closed")
            launch = False
            session = self._pick_idle(affinity_key)
            if session is None and len(self._sessions) < self.max_sessions:
                # Slot is reserved now, the browser is attached after the launch
                session = BrowserSession(index=self._free_index(), browser=None, user_agent=self._user_agent)
                self._sessions.append(session)
                launch = True
            if session is not None:
                session.in_use = True
                session.last_used_at = time.monotonic()
                if affinity_key:
                    session.affinity_key = affinity_key
            return session, launch
        finally:
            self._lock.release()

    async def _launch_into(self, session: BrowserSession) -> None:
        logger.info("browser_pool.launch slot=%s key=%s", session.index, session.affinity_key)
        try:
            session.browser = await self._launcher()
        except BaseException:
            if session in self._sessions:
                self._sessions.remove(session)
            raise
        if self._closed:
            await self._close_session(session)
            raise PoolExhausted("browser pool is closed")

    async def acquire(self, affinity_key: str | None = None) -> BrowserSession:
        deadline = time.monotonic() + self.acquire_timeout_s
        waited = False
        while True:
            session, launch = await self._claim_slot(affinity_key, deadline)
            if session is not None:
                if launch:
                    await self._launch_into(session)
                logger.debug("browser_pool.acquire slot=%s key=%s waited=%s", session.index, affinity_key, waited)
                return session

            remaining = deadline - time.monotonic()
            if remaining <= 0:
                logger.warning("browser_pool.acquire.timeout key=%s timeout_s=%s", affinity_key, self.acquire_timeout_s)
                raise PoolExhausted(f"no browser session free within {self.acquire_timeout_s:g}s")
            waited = True
            await asyncio.sleep(min(self.poll_interval_s, remaining))

    def release(self, session: BrowserSession) -> None:
        # Affinity survives release so the same caller gets this slot back next time
        session.in_use = False
        session.last_used_at = time.monotonic()
        logger.debug("browser_pool.release slot=%s key=%s", session.index, session.affinity_key)

    @asynccontextmanager
    async def session(self, affinity_key: str | None = None) -> AsyncIterator[BrowserSession]:
        s = await self.acquire(affinity_key)
        try:
            yield s
        finally:
            self.release(s)

    async def sweep_idle(self) -> int:
        now = time.monotonic()
        victims: list[BrowserSession] = []
        async with self._lock:
            remaining = len(self._sessions)
            for s in sorted(self._sessions, key=lambda x: x.index, reverse=True):
                if remaining <= 1:
                    break
                if not s.in_use and (now - s.last_used_at) >= self.idle_timeout_s:
                    victims.append(s)
                    remaining -= 1
            for s in victims:
                self._sessions.remove(s)
        for s in victims:
            logger.info("browser_pool.evict slot=%s idle_s=%.0f", s.index, now - s.last_used_at)
            await self._close_session(s)
        return len(victims)

    async def _sweep_loop(self) -> None:
        while True:
            await asyncio.sleep(self.sweep_interval_s)
            try:
                await self.sweep_idle()
            except Exception:
                logger.exception("browser_pool.sweep.failed")

    async def _close_session(self, session: BrowserSession) -> None:
        if session.context is not None:
            try:
                await session.context.close()
            except Exception as exc:
                logger.warning("browser_pool.close_context.failed slot=%s err=%s", session.index, exc)
            session.context = None
        if session.browser is None:
            return
        try:
            await session.browser.close()
        except Exception as exc:
            logger.warning("browser_pool.close_browser.failed slot=%s err=%s", session.index, exc)

    async def close_all(self) -> None:
        self._closed = True
        task, self._sweep_task = self._sweep_task, None
        if task is not None:
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass

        async with self._lock:
            sessions, self._sessions = self._sessions, []
        for s in sessions:
            await self._close_session(s)

        if self._playwright is not None:
            try:
                await self._playwright.stop()
            except Exception as exc:
                logger.warning("browser_pool.playwright_stop.failed err=%s", exc)
            self._playwright = None
        if sessions:
            logger.info("browser_pool.closed sessions=%s", len(sessions))

    def status(self) -> dict[str, int]:
        in_use = sum(1 for s in self._sessions if s.in_use)
        return {
            "total": len(self._sessions),
            "in_use": in_use,
            "idle": len(self._sessions) - in_use,
            "max_sessions": self.max_sessions,
        }
