from __future__ import annotations

import re
from datetime import date, datetime, timedelta
from typing import Optional
from urllib.parse import parse_qs, urlparse
from zoneinfo import ZoneInfo

from worthit_config import LOCAL_TZ
from worthit_engine.errors import ValidationError

VIDEO_ID_RE = re.compile(r"^[A-Za-z0-9_-]{6,20}$")
YOUTUBE_URL_RE = re.compile(r"https?://(?:www\.|m\.)?(?:youtube\.com|youtu\.be)/[^\s<>()]+", re.IGNORECASE)
_YOUTUBE_HOSTS = ("youtube.com", "www.youtube.com", "m.youtube.com", "music.youtube.com", "youtu.be")


def now_local(tz: Optional[ZoneInfo] = None) -> datetime:
    return datetime.now(tz or LOCAL_TZ)


def date_key(moment: Optional[datetime] = None, tz: Optional[ZoneInfo] = None) -> str:
    return (moment or now_local(tz)).astimezone(tz or LOCAL_TZ).strftime("%Y-%m-%d")


def parse_date_key(key: str) -> Optional[date]:
    try:
        return datetime.strptime(str(key or "").strip(), "%Y-%m-%d").date()
    except ValueError:
        return None


def next_local_midnight(moment: Optional[datetime] = None, tz: Optional[ZoneInfo] = None) -> datetime:
    zone = tz or LOCAL_TZ
    current = (moment or now_local(zone)).astimezone(zone)
    tomorrow = current.date() + timedelta(days=1)
    return datetime(tomorrow.year, tomorrow.month, tomorrow.day, tzinfo=zone)


def norm_text_for_match(text: str) -> str:
    return re.sub(r"\s+", " ", (text or "").strip().lower())


def extract_first_youtube_url(text: str) -> Optional[str]:
    m = YOUTUBE_URL_RE.search(text or "")
    if not m:
        return None
    return m.group(0).rstrip(".,;:!?)]}>'\"")


def extract_youtube_id(url: str) -> Optional[str]:
    u = (url or "").strip()
    if not u:
        return None
    if "://" not in u and u.split("/", 1)[0].lower() in _YOUTUBE_HOSTS:
        u = "https://" + u

    parsed = urlparse(u)
    host = (parsed.netloc or "").lower().split(":", 1)[0]
    if host not in _YOUTUBE_HOSTS:
        return None

    if host == "youtu.be":
        candidate = parsed.path.strip("/").split("/", 1)[0]
        return candidate or None

    v = parse_qs(parsed.query).get("v")
    if v:
        return v[0]

    m = re.match(r"^/(?:live|shorts|embed|v)/([^/?#]+)", parsed.path)
    if m:
        return m.group(1)
    return None


def resolve_content_id(reference: str) -> str:
    """Turn whatever the user shared into a canonical video id.

    Accepts a bare id, a YouTube URL or free text containing one (share sheets
    tend to prepend the title). Raises ValidationError before any I/O when
    nothing usable is found.
    """
    raw = str(reference or "").strip()
    if not raw:
        raise ValidationError("Empty content reference.")

    if VIDEO_ID_RE.match(raw):
        return raw

    url = extract_first_youtube_url(raw) or raw
    candidate = extract_youtube_id(url)
    if candidate and VIDEO_ID_RE.match(candidate):
        return candidate
    raise ValidationError(f"Not a recognizable video reference: {raw[:120]!r}")
