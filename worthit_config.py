from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Optional, Tuple
from zoneinfo import ZoneInfo

BASE_DIR = Path(__file__).resolve().parent


def _env_str(name: str, default: str = "") -> str:
    return (os.environ.get(name) or default).strip()


def _env_int(name: str, default: int) -> int:
    raw = (os.environ.get(name) or "").strip()
    try:
        return int(raw)
    except Exception:
        return int(default)


def _env_float(name: str, default: float) -> float:
    raw = (os.environ.get(name) or "").strip()
    try:
        return float(raw)
    except Exception:
        return float(default)


def _env_bool(name: str, default: str = "0") -> bool:
    raw = (os.environ.get(name) or default).strip().lower()
    return raw in ("1", "true", "yes", "on")


def _parse_lang_list(raw: str) -> Tuple[str, ...]:
    out = []
    for p in (raw or "").split(","):
        p = p.strip().lower()
        if p and p not in out:
            out.append(p)
    return tuple(out) or ("en",)


DATA_DIR = Path(_env_str("WORTHIT_DATA_DIR", str(BASE_DIR / "data"))).expanduser()
STATE_DB_DSN = _env_str("WORTHIT_STATE_DB_DSN")

BACKEND_URL = _env_str("WORTHIT_BACKEND_URL", "http://127.0.0.1:8787").rstrip("/")
BACKEND_API_KEY = _env_str("WORTHIT_BACKEND_API_KEY")
HTTP_TIMEOUT_SEC = max(1.0, _env_float("WORTHIT_HTTP_TIMEOUT_SEC", 30.0))
AI_TIMEOUT_SEC = max(5.0, _env_float("WORTHIT_AI_TIMEOUT_SEC", 90.0))
HTTP_RETRIES = max(1, min(6, _env_int("WORTHIT_HTTP_RETRIES", 3)))
HTTP_BACKOFF_SEC = max(0.0, _env_float("WORTHIT_HTTP_BACKOFF_SEC", 0.5))

DAILY_LIMIT = max(0, _env_int("WORTHIT_DAILY_LIMIT", 5))
LOCAL_TZ_NAME = _env_str("WORTHIT_LOCAL_TZ", "America/New_York")
LOCAL_TZ = ZoneInfo(LOCAL_TZ_NAME)
USAGE_RETENTION_DAYS = max(1, _env_int("WORTHIT_USAGE_RETENTION_DAYS", 30))

TRANSCRIPT_LANGS = _parse_lang_list(_env_str("WORTHIT_TRANSCRIPT_LANGS", "en"))
COMMENT_LIMIT = max(1, min(100, _env_int("WORTHIT_COMMENT_LIMIT", 50)))

# 0 keeps cached artifacts forever.
CACHE_TTL_HOURS = max(0.0, _env_float("WORTHIT_CACHE_TTL_HOURS", 0.0))
REFRESH_ON_CACHE_HIT = _env_bool("WORTHIT_REFRESH_ON_CACHE_HIT", "1")
REFRESH_MIN_AGE_SEC = max(0, _env_int("WORTHIT_REFRESH_MIN_AGE_SEC", 0))
RECENT_INDEX_LIMIT = max(1, _env_int("WORTHIT_RECENT_INDEX_LIMIT", 50))

LOCK_STALE_SEC = max(5, _env_int("WORTHIT_LOCK_STALE_SEC", 300))
LOCK_TIMEOUT_SEC = max(0.0, _env_float("WORTHIT_LOCK_TIMEOUT_SEC", 2.0))

SCORE_HIGH_THRESHOLD = _env_float("WORTHIT_SCORE_HIGH_THRESHOLD", 0.8)
SCORE_HIGH_BONUS = _env_float("WORTHIT_SCORE_HIGH_BONUS", 3.0)
SCORE_LOW_DEPTH_THRESHOLD = _env_float("WORTHIT_SCORE_LOW_DEPTH_THRESHOLD", 0.35)
SCORE_LOW_DEPTH_PENALTY = _env_float("WORTHIT_SCORE_LOW_DEPTH_PENALTY", 8.0)
THEME_MATCH_RATIO = max(0.5, min(1.0, _env_float("WORTHIT_THEME_MATCH_RATIO", 0.9)))

QA_RETRIES = max(1, min(5, _env_int("WORTHIT_QA_RETRIES", 3)))
LOG_LEVEL = _env_str("WORTHIT_LOG_LEVEL", "INFO").upper()


@dataclass
class EngineSettings:
    """Everything one process needs to build its runtime.

    Both host processes must point ``data_dir`` (or ``state_db_dsn``) at the
    same location; that is the only thing they share.
    """

    data_dir: Path = DATA_DIR
    state_db_dsn: str = STATE_DB_DSN
    backend_url: str = BACKEND_URL
    backend_api_key: str = BACKEND_API_KEY
    http_timeout_sec: float = HTTP_TIMEOUT_SEC
    ai_timeout_sec: float = AI_TIMEOUT_SEC
    http_retries: int = HTTP_RETRIES
    http_backoff_sec: float = HTTP_BACKOFF_SEC
    daily_limit: int = DAILY_LIMIT
    local_tz: ZoneInfo = LOCAL_TZ
    transcript_langs: Tuple[str, ...] = TRANSCRIPT_LANGS
    comment_limit: int = COMMENT_LIMIT
    cache_ttl_sec: float = CACHE_TTL_HOURS * 3600.0
    refresh_on_cache_hit: bool = REFRESH_ON_CACHE_HIT
    refresh_min_age_sec: int = REFRESH_MIN_AGE_SEC
    recent_index_limit: int = RECENT_INDEX_LIMIT
    lock_stale_sec: int = LOCK_STALE_SEC
    lock_timeout_sec: float = LOCK_TIMEOUT_SEC
    theme_match_ratio: float = THEME_MATCH_RATIO
    qa_retries: int = QA_RETRIES
    score_high_threshold: float = SCORE_HIGH_THRESHOLD
    score_high_bonus: float = SCORE_HIGH_BONUS
    score_low_depth_threshold: float = SCORE_LOW_DEPTH_THRESHOLD
    score_low_depth_penalty: float = SCORE_LOW_DEPTH_PENALTY

    @classmethod
    def from_env(cls, data_dir: Optional[Path] = None) -> "EngineSettings":
        settings = cls()
        if data_dir is not None:
            settings.data_dir = Path(data_dir)
        return settings


def ensure_runtime_dirs(data_dir: Optional[Path] = None) -> None:
    (data_dir or DATA_DIR).mkdir(parents=True, exist_ok=True)
