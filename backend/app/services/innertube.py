from __future__ import annotations

import json
import logging
import re
from dataclasses import asdict, dataclass, field, fields
from typing import Any, Iterator
from urllib.parse import quote_plus, urlparse

from app.core.errors import DiscoveryError
from app.services.extraction import unit_count

logger = logging.getLogger(__name__)

YOUTUBE_ORIGIN = "https://www.youtube.com"
# sp=EgIQAg%3D%3D restricts results to channels
CHANNEL_SEARCH_FILTER = "EgIQAg%253D%253D"
SEARCH_API_URL = YOUTUBE_ORIGIN + "/youtubei/v1/search"

_API_KEY_RE = re.compile(r'"INNERTUBE_API_KEY"\s*:\s*"([^"]+)"')
_CLIENT_VERSION_RE = re.compile(r'"INNERTUBE_CLIENT_VERSION"\s*:\s*"([^"]+)"')
_CONTEXT_MARKER = '"INNERTUBE_CONTEXT":'
_INITIAL_DATA_MARKERS = (
    "var ytInitialData = ",
    'window["ytInitialData"] = ',
    "ytInitialData = ",
)
_CHANNEL_SUFFIXES = ("/featured", "/videos", "/about", "/shorts", "/streams", "/playlists", "/community")

_decoder = json.JSONDecoder()


@dataclass
class ChannelCandidate:
    channel_id: str
    name: str
    url: str
    description: str = ""
    thumbnail_url: str = ""
    subscriber_count: int | None = None
    video_count: int | None = None
    view_count: int | None = None
    country: str | None = None
    social_links: dict[str, str] = field(default_factory=dict)
    relevance_score: float = 0.0

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "ChannelCandidate":
        known = {f.name for f in fields(cls)}
        return cls(**{k: v for k, v in data.items() if k in known})


@dataclass
class SearchPayload:
    api_key: str
    context: dict[str, Any]
    initial_data: dict[str, Any]

    @property
    def client_version(self) -> str:
        client = self.context.get("client") if isinstance(self.context, dict) else None
        if isinstance(client, dict) and client.get("clientVersion"):
            return str(client["clientVersion"])
        return "2.20240101.00.00"


def search_url(keyword: str) -> str:
    return f"{YOUTUBE_ORIGIN}/results?search_query={quote_plus(keyword)}&sp={CHANNEL_SEARCH_FILTER}"


def canonical_channel_url(url: str) -> str:
    raw = (url or "").strip()
    if not raw:
        return ""
    if raw.startswith("/"):
        raw = YOUTUBE_ORIGIN + raw
    parsed = urlparse(raw)
    path = parsed.path.rstrip("/")
    for suffix in _CHANNEL_SUFFIXES:
        if path.endswith(suffix):
            path = path[: -len(suffix)]
            break
    return YOUTUBE_ORIGIN + path


def dedupe_key(url: str) -> str:
    return canonical_channel_url(url).lower()


def _decode_object_at(html: str, marker: str) -> dict[str, Any] | None:
    idx = html.find(marker)
    if idx == -1:
        return None
    start = html.find("{", idx + len(marker))
    if start == -1:
        return None
    try:
        obj, _end = _decoder.raw_decode(html, start)
    except json.JSONDecodeError:
        return None
    return obj if isinstance(obj, dict) else None


def parse_search_payload(html: str) -> SearchPayload:
    """Pull the API key, request context and initial results out of a search page."""
    html = html or ""
    m = _API_KEY_RE.search(html)
    if not m:
        raise DiscoveryError("INNERTUBE_API_KEY not found in search page")
    context = _decode_object_at(html, _CONTEXT_MARKER)
    if context is None:
        raise DiscoveryError("INNERTUBE_CONTEXT not found in search page")
    if not (isinstance(context.get("client"), dict) and context["client"].get("clientVersion")):
        vm = _CLIENT_VERSION_RE.search(html)
        if vm:
            context.setdefault("client", {})["clientVersion"] = vm.group(1)
    initial_data = None
    for marker in _INITIAL_DATA_MARKERS:
        initial_data = _decode_object_at(html, marker)
        if initial_data is not None:
            break
    if initial_data is None:
        raise DiscoveryError("ytInitialData not found in search page")
    return SearchPayload(api_key=m.group(1), context=context, initial_data=initial_data)


def _walk(obj: Any) -> Iterator[dict[str, Any]]:
    if isinstance(obj, dict):
        yield obj
        for v in obj.values():
            yield from _walk(v)
    elif isinstance(obj, list):
        for v in obj:
            yield from _walk(v)


def _text_of(node: Any) -> str:
    if not isinstance(node, dict):
        return ""
    if node.get("simpleText"):
        return str(node["simpleText"])
    runs = node.get("runs")
    if isinstance(runs, list):
        return "".join(str(r.get("text") or "") for r in runs if isinstance(r, dict))
    return ""


def _dig(obj: Any, *keys: str) -> Any:
    cur = obj
    for k in keys:
        if not isinstance(cur, dict):
            return None
        cur = cur.get(k)
    return cur


def _candidate_from_renderer(r: dict[str, Any]) -> ChannelCandidate | None:
    name = _text_of(r.get("title")).strip()
    nav = r.get("navigationEndpoint") or {}
    path = _dig(nav, "commandMetadata", "webCommandMetadata", "url") or ""
    channel_id = r.get("channelId") or _dig(nav, "browseEndpoint", "browseId") or ""
    if not channel_id and "/@" in path:
        channel_id = path.split("/@", 1)[1].split("/")[0]
    if not channel_id:
        return None
    url = canonical_channel_url(path or f"/channel/{channel_id}")
    if not name or not url:
        return None

    thumbs = _dig(r, "thumbnail", "thumbnails")
    thumbnail_url = ""
    if isinstance(thumbs, list) and thumbs and isinstance(thumbs[0], dict):
        thumbnail_url = str(thumbs[0].get("url") or "")
        if thumbnail_url.startswith("//"):
            thumbnail_url = "https:" + thumbnail_url

    # The subscriber figure moves between these two fields depending on the layout
    subscriber_count = None
    for key in ("subscriberCountText", "videoCountText"):
        subscriber_count = unit_count(_text_of(r.get(key)), "subscriber_count")
        if subscriber_count is not None:
            break

    return ChannelCandidate(
        channel_id=str(channel_id),
        name=name,
        url=url,
        description=_text_of(r.get("descriptionSnippet")).strip(),
        thumbnail_url=thumbnail_url,
        subscriber_count=subscriber_count,
    )


def collect_channels(data: Any) -> list[ChannelCandidate]:
    out: list[ChannelCandidate] = []
    for node in _walk(data):
        renderer = node.get("channelRenderer")
        if not isinstance(renderer, dict):
            continue
        cand = _candidate_from_renderer(renderer)
        if cand is not None:
            out.append(cand)
    return out


def get_continuation_token(data: Any) -> str | None:
    for node in _walk(data):
        token = _dig(node, "continuationCommand", "token")
        if token:
            return str(token)
    return None


_FETCH_NEXT_JS = """
async ({ url, apiKey, context, continuation, clientVersion }) => {
  const res = await fetch(`${url}?key=${apiKey}&prettyPrint=false`, {
    method: "POST",
    credentials: "include",
    headers: {
      "content-type": "application/json",
      "X-YouTube-Client-Name": "1",
      "X-YouTube-Client-Version": clientVersion,
    },
    body: JSON.stringify({ context, continuation }),
  });
  if (!res.ok) {
    throw new Error(`continuation request failed with HTTP ${res.status}`);
  }
  return await res.json();
}
"""


async def load_search_payload(page, keyword: str, *, timeout_ms: int) -> SearchPayload:
    url = search_url(keyword)
    try:
        await page.goto(url, timeout=timeout_ms, wait_until="domcontentloaded")
        html = await page.content()
    except Exception as exc:
        raise DiscoveryError(f"search page failed to load: {exc}") from exc
    return parse_search_payload(html)


async def fetch_next_page(page, payload: SearchPayload, token: str) -> dict[str, Any]:
    # Runs inside the page so the request carries the session's own cookies
    data = await page.evaluate(
        _FETCH_NEXT_JS,
        {
            "url": SEARCH_API_URL,
            "apiKey": payload.api_key,
            "context": payload.context,
            "continuation": token,
            "clientVersion": payload.client_version,
        },
    )
    if not isinstance(data, dict):
        raise DiscoveryError("continuation response was not a JSON object")
    return data
