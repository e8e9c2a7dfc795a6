from __future__ import annotations

import html as html_lib
import re
from dataclasses import dataclass, field
from typing import Callable, Iterable
from urllib.parse import parse_qs, unquote, urlparse


@dataclass
class PageSnapshot:
    """Everything extraction needs from one rendered page.

    Built once per navigation by ``page_snapshot.load_snapshot`` so that every
    extractor below stays a pure function over plain strings.
    """

    url: str
    text: str = ""
    html: str = ""
    title: str = ""
    description: str = ""
    meta: list[str] = field(default_factory=list)
    stats: list[str] = field(default_factory=list)
    links: list[str] = field(default_factory=list)


_MULTIPLIERS = {"K": 1_000, "M": 1_000_000, "B": 1_000_000_000}
_COUNT_TOKEN_RE = re.compile(r"(\d[\d,]*(?:\.\d+)?)\s*([KMB])?(?![A-Za-z])", re.IGNORECASE)


def parse_count(raw: str | None) -> int | None:
    text = str(raw or "").strip()
    if not text:
        return None
    m = _COUNT_TOKEN_RE.search(text)
    if not m:
        return None
    number = m.group(1).replace(",", "")
    try:
        value = float(number)
    except ValueError:
        return None
    suffix = (m.group(2) or "").upper()
    value *= _MULTIPLIERS.get(suffix, 1)
    return int(round(value))


_COUNT_BOUNDS: dict[str, tuple[int, int]] = {
    "subscriber_count": (1, 10**10),
    "video_count": (1, 10**7),
    "view_count": (1, 10**13),
}

_UNIT_RES: dict[str, re.Pattern[str]] = {
    "subscriber_count": re.compile(r"(\d[\d,]*(?:\.\d+)?\s*[KMB]?)\s*subscribers?\b", re.IGNORECASE),
    "video_count": re.compile(r"(\d[\d,]*(?:\.\d+)?\s*[KMB]?)\s*videos?\b(?!\s+views?)", re.IGNORECASE),
    "view_count": re.compile(r"(\d[\d,]*(?:\.\d+)?\s*[KMB]?)\s*views?\b", re.IGNORECASE),
}

_STANDALONE_VIEWS_RE = re.compile(r"^\d[\d,]*(?:\.\d+)?\s*[KMB]?\s*views?$", re.IGNORECASE)


def _in_bounds(field_name: str, value: int | None) -> bool:
    if value is None:
        return False
    lo, hi = _COUNT_BOUNDS[field_name]
    return lo <= value <= hi


def unit_count(text: str, field_name: str) -> int | None:
    for m in _UNIT_RES[field_name].finditer(text or ""):
        value = parse_count(m.group(1))
        if _in_bounds(field_name, value):
            return value
    return None


def _lines(text: str) -> list[str]:
    return [ln.strip() for ln in (text or "").splitlines() if ln.strip()]


def _counts_from_structured(snapshot: PageSnapshot) -> dict[str, int]:
    out: dict[str, int] = {}
    for raw in snapshot.stats:
        for field_name in _COUNT_BOUNDS:
            if field_name in out:
                continue
            value = unit_count(raw, field_name)
            if value is not None:
                out[field_name] = value
    return out


def _counts_from_page_lines(snapshot: PageSnapshot) -> dict[str, int]:
    out: dict[str, int] = {}
    lines = _lines(snapshot.text)
    videos_line_idx: int | None = None
    for idx, line in enumerate(lines):
        if "subscriber_count" not in out:
            value = unit_count(line, "subscriber_count")
            if value is not None:
                out["subscriber_count"] = value
        if "video_count" not in out:
            value = unit_count(line, "video_count")
            if value is not None:
                out["video_count"] = value
                videos_line_idx = idx

    # About panels list the total view count on its own line after the videos line
    if videos_line_idx is not None:
        for line in lines[videos_line_idx + 1:]:
            if _STANDALONE_VIEWS_RE.match(line):
                value = parse_count(line)
                if _in_bounds("view_count", value):
                    out["view_count"] = value
                    break
    if "view_count" not in out:
        for line in lines:
            if _STANDALONE_VIEWS_RE.match(line):
                value = parse_count(line)
                if _in_bounds("view_count", value):
                    out["view_count"] = value
                    break
    return out


def _counts_from_meta(snapshot: PageSnapshot) -> dict[str, int]:
    out: dict[str, int] = {}
    blob = "\n".join(snapshot.meta)
    for field_name in _COUNT_BOUNDS:
        value = unit_count(blob, field_name)
        if value is not None:
            out[field_name] = value
    return out


COUNT_STRATEGIES: list[tuple[str, Callable[[PageSnapshot], dict[str, int]]]] = [
    ("structured", _counts_from_structured),
    ("page_lines", _counts_from_page_lines),
    ("meta", _counts_from_meta),
]


def extract_counts(snapshot: PageSnapshot) -> dict[str, int]:
    out: dict[str, int] = {}
    for _name, strategy in COUNT_STRATEGIES:
        for field_name, value in strategy(snapshot).items():
            if field_name not in out and _in_bounds(field_name, value):
                out[field_name] = value
    return out


_JOINED_RE = re.compile(r"^Joined\b", re.IGNORECASE)
_COUNTRY_LINE_RE = re.compile(r"^[A-Z][A-Za-z .'()\-]{1,59}$")


def extract_country(snapshot: PageSnapshot) -> str | None:
    lines = _lines(snapshot.text)
    for idx, line in enumerate(lines):
        if not _JOINED_RE.match(line) or idx == 0:
            continue
        prev = lines[idx - 1]
        if _COUNTRY_LINE_RE.match(prev) and not re.search(r"\d", prev):
            return prev
    return None


_STANDARD_EMAIL_RE = re.compile(r"[a-zA-Z0-9._%+\-]+@[a-zA-Z0-9.\-]+\.[a-zA-Z]{2,}")
# Needs whitespace beside "@"; unspaced addresses belong to the standard pattern
_SPACED_EMAIL_RE = re.compile(
    r"([\w.+\-]+)(?:\s+@\s*|\s*@\s+)([\w\-]+(?:\s*\.\s*[\w\-]+)*)\s*\.\s*([a-zA-Z]{2,})\b"
)
_TEXTUAL_EMAIL_RE = re.compile(
    r"([\w.+\-]+)\s*(?:\s+at\s+|\[at\]|\(at\))\s*([\w\-]+(?:\s*(?:\.|\s+dot\s+|\[dot\]|\(dot\))\s*[\w\-]+)*?)"
    r"\s*(?:\s+dot\s+|\[dot\]|\(dot\))\s*([a-zA-Z]{2,})\b",
    re.IGNORECASE,
)
_VALID_EMAIL_RE = re.compile(r"^[a-z0-9._%+\-]+@[a-z0-9\-]+(?:\.[a-z0-9\-]+)*\.[a-z]{2,}$")
_DOT_WORD_RE = re.compile(r"\s*(?:\s+dot\s+|\[dot\]|\(dot\)|\.)\s*", re.IGNORECASE)

_PLACEHOLDER_DOMAINS = {
    "example.com",
    "test.com",
    "domain.com",
    "email.com",
    "yourdomain.com",
    "youremail.com",
    "youtube.com",
    "google.com",
    "robot.zapier.com",
}

_BLOCKLIST_DOMAIN_SUBSTR = (
    "wixpress.com",
    "sentry.io",
    "sentry-next.",
)

_PLACEHOLDER_LOCALS = {"yourname", "name", "email", "youremail", "user", "username"}

_BAD_SUFFIXES = (".png", ".jpg", ".jpeg", ".gif", ".webp", ".svg", ".css", ".js")


def _is_junk_email(email: str) -> bool:
    if not _VALID_EMAIL_RE.match(email):
        return True
    if any(email.endswith(suf) for suf in _BAD_SUFFIXES):
        return True
    local, domain = email.split("@", 1)
    if local in _PLACEHOLDER_LOCALS:
        return True
    if domain in _PLACEHOLDER_DOMAINS:
        return True
    return any(bad in domain for bad in _BLOCKLIST_DOMAIN_SUBSTR)


def _email_candidates(text: str) -> Iterable[str]:
    for m in _STANDARD_EMAIL_RE.finditer(text):
        yield m.group(0)
    for m in _SPACED_EMAIL_RE.finditer(text):
        domain = re.sub(r"\s+", "", m.group(2))
        yield f"{m.group(1)}@{domain}.{m.group(3)}"
    for m in _TEXTUAL_EMAIL_RE.finditer(text):
        domain = _DOT_WORD_RE.sub(".", m.group(2)).strip(".")
        yield f"{m.group(1)}@{domain}.{m.group(3)}"


def extract_emails(text: str | None) -> list[str]:
    """Return deduplicated, lowercased emails in first-seen order.

    Three patterns run over the same text (standard, spaced ``a @ b . c`` and
    textual ``a at b dot c``); their matches are unioned before filtering.
    """
    raw = html_lib.unescape(str(text or ""))
    if not raw.strip():
        return []
    seen: set[str] = set()
    out: list[str] = []
    for cand in _email_candidates(raw):
        email = cand.strip(" \t\r\n\"'<>[](){}.,;:").lower()
        if email in seen or _is_junk_email(email):
            continue
        seen.add(email)
        out.append(email)
    return out


def obscure_email(email: str) -> str:
    local, sep, domain = (email or "").partition("@")
    if not sep:
        return email
    if len(local) <= 2:
        return f"{local[:1]}*@{domain}"
    return f"{local[0]}{'*' * (len(local) - 2)}{local[-1]}@{domain}"


SOCIAL_PLATFORMS = ("instagram", "twitter", "facebook", "tiktok", "discord", "twitch", "linkedin")

_SOCIAL_PATTERNS: list[tuple[str, re.Pattern[str]]] = [
    ("instagram", re.compile(r"https?://(?:www\.)?instagram\.com/[A-Za-z0-9_.]+/?", re.IGNORECASE)),
    ("twitter", re.compile(r"https?://(?:www\.|mobile\.)?(?:twitter|x)\.com/[A-Za-z0-9_]+/?", re.IGNORECASE)),
    ("facebook", re.compile(r"https?://(?:www\.|m\.)?(?:facebook|fb)\.com/[A-Za-z0-9_.\-/]+", re.IGNORECASE)),
    ("tiktok", re.compile(r"https?://(?:www\.)?tiktok\.com/@[A-Za-z0-9_.]+", re.IGNORECASE)),
    ("discord", re.compile(r"https?://(?:www\.)?(?:discord\.gg|discord\.com/invite)/[A-Za-z0-9\-]+", re.IGNORECASE)),
    ("twitch", re.compile(r"https?://(?:www\.)?twitch\.tv/[A-Za-z0-9_]+", re.IGNORECASE)),
    ("linkedin", re.compile(r"https?://(?:[a-z]{2,3}\.)?linkedin\.com/(?:in|company)/[A-Za-z0-9_\-%]+/?", re.IGNORECASE)),
]

# Hosts that never count as a channel's own website
_NON_WEBSITE_HOSTS = (
    "youtube.com",
    "youtu.be",
    "google.com",
    "googleusercontent.com",
    "gstatic.com",
    "ytimg.com",
    "ggpht.com",
    "instagram.com",
    "twitter.com",
    "x.com",
    "facebook.com",
    "fb.com",
    "tiktok.com",
    "discord.gg",
    "discord.com",
    "twitch.tv",
    "linkedin.com",
)

_URL_IN_TEXT_RE = re.compile(r"https?://[^\s\"'<>)\]}]+", re.IGNORECASE)


def _host(url: str) -> str:
    try:
        host = (urlparse(url).hostname or "").lower()
    except ValueError:
        return ""
    return host[4:] if host.startswith("www.") else host


def decode_redirect(url: str) -> str:
    """Unwrap platform redirect links (``/redirect?q=<target>``) to their target."""
    raw = (url or "").strip()
    try:
        parsed = urlparse(raw)
    except ValueError:
        return raw
    if _host(raw).endswith("youtube.com") and parsed.path == "/redirect":
        target = parse_qs(parsed.query).get("q")
        if target and target[0]:
            return unquote(target[0])
    return raw


def _is_website_candidate(url: str) -> bool:
    host = _host(url)
    if not host or "." not in host:
        return False
    return not any(host == h or host.endswith("." + h) for h in _NON_WEBSITE_HOSTS)


def extract_outbound_links(text: str | None, html: str = "", links: Iterable[str] = ()) -> dict[str, str]:
    """Map platform name to the first matching outbound URL.

    Candidates are scanned in order: explicit hrefs, then URLs in the visible
    text, then URLs in the raw markup. Raw markup only feeds the known
    platforms; the generic ``website`` entry comes from hrefs and text.
    """
    out: dict[str, str] = {}
    candidates: list[tuple[str, bool]] = []
    for href in links:
        candidates.append((decode_redirect(str(href or "")), True))
    for m in _URL_IN_TEXT_RE.finditer(str(text or "")):
        candidates.append((decode_redirect(m.group(0)).rstrip(".,;:!?"), True))
    for m in _URL_IN_TEXT_RE.finditer(str(html or "")):
        candidates.append((decode_redirect(html_lib.unescape(m.group(0))).rstrip(".,;:!?"), False))

    for url, website_ok in candidates:
        if not url:
            continue
        matched = False
        for platform, rx in _SOCIAL_PATTERNS:
            m = rx.match(url)
            if m:
                matched = True
                out.setdefault(platform, m.group(0))
                break
        if not matched and website_ok and "website" not in out and _is_website_candidate(url):
            out["website"] = url
    return out


_BLOCKED_TEXT_HINTS = (
    "verify you are human",
    "confirm you are human",
    "prove you're not a robot",
    "prove you are not a robot",
    "unusual traffic from your computer network",
    "complete the security check",
    "checking your browser before accessing",
    "sign in to confirm you're not a bot",
    "log in to see photos and videos",
    "sign in to view",
    "join linkedin",
)

_BLOCKED_URL_HINTS = (
    "/captcha",
    "/checkpoint/challenge",
    "/cdn-cgi/challenge-platform",
    "/accounts/login",
    "/uas/login",
    "/authwall",
    "/login",
)


def looks_blocked(snapshot: PageSnapshot) -> bool:
    url = (snapshot.url or "").lower()
    path = urlparse(url).path if url else ""
    if any(path.startswith(hint) for hint in _BLOCKED_URL_HINTS):
        return True
    signal = f"{snapshot.title}\n{snapshot.text[:4000]}".lower()
    return any(hint in signal for hint in _BLOCKED_TEXT_HINTS)
