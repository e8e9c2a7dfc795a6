from __future__ import annotations

import asyncio
import logging
from typing import Any, Awaitable, Callable

import httpx

from app.core.errors import CrawlFailed

logger = logging.getLogger(__name__)

TERMINAL_STATUSES = frozenset({"completed", "failed"})

UpdateCallback = Callable[[dict[str, Any]], Awaitable[None] | None]
ActiveCheck = Callable[[], bool]


async def fetch_status(
    client: httpx.AsyncClient,
    base_url: str,
    session_id: str,
    *,
    wait_s: float = 0.0,
    since: int | None = None,
) -> dict[str, Any]:
    params: dict[str, Any] = {}
    if wait_s > 0:
        params["wait"] = wait_s
    if since is not None:
        params["since"] = since
    resp = await client.get(f"{base_url.rstrip('/')}/api/search/{session_id}", params=params)
    resp.raise_for_status()
    data = resp.json()
    if not isinstance(data, dict):
        raise ValueError("unexpected status payload")
    return data


async def poll_with_restart(
    client: httpx.AsyncClient,
    base_url: str,
    session_id: str,
    on_update: UpdateCallback,
    is_active: ActiveCheck,
    *,
    max_polls_per_cycle: int = 300,
    initial_interval_s: float = 1.5,
    max_interval_s: float = 5.0,
    max_cycles: int = 5,
    cycle_pause_s: float = 2.0,
    wait_s: float = 0.0,
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
) -> dict[str, Any] | None:
    """Poll a crawl session until it finishes, restarting the poll budget per cycle.

    ``is_active`` is checked right before every ``on_update`` call so a caller
    that has moved on to a newer search never receives stale results. Returns
    the last status payload seen, or None if nothing was ever received.
    Raises ``CrawlFailed`` when the session reports ``failed``.
    """
    last: dict[str, Any] | None = None
    seen_channels = 0

    for cycle in range(max_cycles):
        interval = initial_interval_s
        unchanged = 0
        cycle_gain = 0

        for _ in range(max_polls_per_cycle):
            if not is_active():
                logger.info("poll_client.inactive session=%s", session_id)
                return last
            try:
                data = await fetch_status(client, base_url, session_id, wait_s=wait_s, since=seen_channels)
            except (httpx.HTTPError, ValueError) as exc:
                # Transient network trouble: keep polling the same id
                logger.warning("poll_client.fetch.failed session=%s err=%s", session_id, exc)
                await sleep(interval)
                continue

            status = str(data.get("status") or "")
            channels = data.get("channels") or []
            changed = last is None or status != last.get("status") or len(channels) != seen_channels
            if changed:
                cycle_gain += max(0, len(channels) - seen_channels)
                unchanged = 0
                interval = initial_interval_s
            else:
                unchanged += 1
                if unchanged > 10:
                    interval = min(interval * 1.2, max_interval_s)
            seen_channels = max(seen_channels, len(channels))
            last = data

            if not is_active():
                logger.info("poll_client.inactive session=%s", session_id)
                return last
            result = on_update(data)
            if asyncio.iscoroutine(result):
                await result

            if status == "failed":
                raise CrawlFailed(str(data.get("error") or data.get("message") or "search failed"))
            if status in TERMINAL_STATUSES:
                return last
            if unchanged > 20 and cycle_gain == 0 and seen_channels > 0:
                logger.info("poll_client.assume_done session=%s channels=%s", session_id, seen_channels)
                return last
            await sleep(interval)

        logger.info("poll_client.cycle_restart session=%s cycle=%s channels=%s", session_id, cycle + 1, seen_channels)
        if cycle + 1 < max_cycles:
            await sleep(cycle_pause_s)

    logger.warning("poll_client.gave_up session=%s cycles=%s", session_id, max_cycles)
    return last
