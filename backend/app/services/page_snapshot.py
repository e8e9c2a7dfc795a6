from __future__ import annotations

import logging
from typing import Any

from app.services.extraction import PageSnapshot

logger = logging.getLogger(__name__)

# Collected in one round-trip so a page is only walked once per visit.
_SNAPSHOT_JS = """
() => {
  const text = (document.body && document.body.innerText) || "";
  const meta = [];
  for (const el of document.querySelectorAll("meta[name='description'], meta[property='og:description'], meta[itemprop='description'], meta[name='twitter:description']")) {
    const c = el.getAttribute("content");
    if (c) meta.push(c);
  }
  const stats = [];
  for (const el of document.querySelectorAll("#subscriber-count, #videos-count, yt-formatted-string, yt-content-metadata-view-model span, td.style-scope.ytd-about-channel-renderer")) {
    const t = (el.innerText || el.textContent || "").trim();
    if (t && t.length < 80 && /\\d/.test(t)) stats.push(t);
  }
  const links = [];
  for (const a of document.querySelectorAll("a[href]")) {
    if (a.href && (a.href.startsWith("http") || a.href.startsWith("mailto:"))) links.push(a.href);
  }
  const descEl = document.querySelector("#description-container, #description, .header-description, meta[name='description']");
  let description = "";
  if (descEl) {
    description = descEl.tagName === "META" ? (descEl.getAttribute("content") || "") : (descEl.innerText || "");
  }
  return {
    url: location.href,
    title: document.title || "",
    text: text,
    html: document.documentElement ? document.documentElement.outerHTML : "",
    meta: meta,
    stats: stats.slice(0, 200),
    links: links.slice(0, 500),
    description: description.trim(),
  };
}
"""


def snapshot_from_payload(url: str, payload: Any) -> PageSnapshot:
    data = payload if isinstance(payload, dict) else {}

    def _str_list(key: str) -> list[str]:
        raw = data.get(key)
        if not isinstance(raw, list):
            return []
        return [str(x) for x in raw if x]

    return PageSnapshot(
        url=str(data.get("url") or url),
        text=str(data.get("text") or ""),
        html=str(data.get("html") or ""),
        title=str(data.get("title") or ""),
        description=str(data.get("description") or ""),
        meta=_str_list("meta"),
        stats=_str_list("stats"),
        links=_str_list("links"),
    )


async def load_snapshot(
    page,
    url: str,
    *,
    timeout_ms: int,
    settle_ms: int = 0,
    expand: bool = False,
) -> PageSnapshot | None:
    """Navigate and snapshot; a failed or timed-out visit yields ``None``."""
    try:
        await page.goto(url, timeout=timeout_ms, wait_until="domcontentloaded")
        if settle_ms > 0:
            await page.wait_for_timeout(settle_ms)
        if expand:
            await expand_description(page)
        payload = await page.evaluate(_SNAPSHOT_JS)
    except Exception as exc:
        logger.warning("page_snapshot.load.failed url=%s err=%s", url, type(exc).__name__)
        return None
    return snapshot_from_payload(url, payload)


async def expand_description(page, *, settle_ms: int = 500) -> bool:
    """Click the 'more' toggle of a truncated video description, if present."""
    for selector in ("tp-yt-paper-button#expand", "#expand", "#description-inline-expander #expand"):
        try:
            el = await page.query_selector(selector)
            if el is None:
                continue
            await el.click(timeout=2000)
            if settle_ms > 0:
                await page.wait_for_timeout(settle_ms)
            return True
        except Exception:
            logger.debug("page_snapshot.expand.miss selector=%s", selector)
            continue
    return False
