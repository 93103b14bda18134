from __future__ import annotations

import asyncio
import json
import logging
import socket
from dataclasses import dataclass
from typing import Awaitable, Callable, List, Optional, Sequence, Type, TypeVar
from urllib.error import HTTPError, URLError
from urllib.parse import urlencode
from urllib.request import Request, urlopen

from .errors import BackendDecodingError, NotFoundError, TransientNetworkError, WorthItError
from .schemas import (
    CommentClassification,
    CommentInsights,
    CommentsPayload,
    Essentials,
    QAReply,
    TranscriptPayload,
    TranscriptSummary,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")

AI_RESPONSES_PATH = "/ai/responses"
AI_TRANSCRIPT_MAX_CHARS = 60_000
AI_COMMENT_MAX_CHARS = 500
_TRANSIENT_HTTP_CODES = {408, 425, 429, 500, 502, 503, 504}


async def with_retries(
    call: Callable[[], Awaitable[T]],
    *,
    attempts: int,
    backoff_sec: float,
    label: str = "",
    retry_on=(TransientNetworkError,),
) -> T:
    tries = max(1, int(attempts))
    for attempt in range(tries):
        try:
            return await call()
        except retry_on as exc:
            if attempt + 1 >= tries:
                raise
            delay = backoff_sec * (2 ** attempt)
            logger.info("%s failed (%s); retry %s/%s in %.2fs", label or "call", exc, attempt + 1, tries - 1, delay)
            if delay > 0:
                await asyncio.sleep(delay)
    raise AssertionError("unreachable")


class BackendClient:
    """JSON-over-HTTP client for the transcript/comments/AI backend."""

    def __init__(
        self,
        base_url: str,
        *,
        api_key: str = "",
        timeout_sec: float = 30.0,
        ai_timeout_sec: float = 90.0,
        retries: int = 3,
        backoff_sec: float = 0.5,
    ) -> None:
        self.base_url = (base_url or "").rstrip("/")
        self.api_key = (api_key or "").strip()
        self.timeout_sec = float(timeout_sec)
        self.ai_timeout_sec = float(ai_timeout_sec)
        self.retries = max(1, int(retries))
        self.backoff_sec = max(0.0, float(backoff_sec))

    def _headers(self) -> dict:
        headers = {"Accept": "application/json", "Content-Type": "application/json"}
        if self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"
        return headers

    def _request_json(self, method: str, path: str, *, params: Optional[dict], payload: Optional[dict], timeout_sec: float) -> dict:
        url = f"{self.base_url}{path}"
        if params:
            url = f"{url}?{urlencode(params)}"
        data = json.dumps(payload).encode("utf-8") if payload is not None else None
        req = Request(url, data=data, headers=self._headers(), method=method)
        try:
            with urlopen(req, timeout=timeout_sec) as resp:
                raw = resp.read().decode("utf-8", errors="ignore")
        except HTTPError as exc:
            detail = ""
            try:
                body = json.loads(exc.read().decode("utf-8", errors="ignore") or "{}")
                detail = str((body.get("error") if isinstance(body, dict) else "") or "").strip()
            except Exception:
                detail = ""
            suffix = f": {detail}" if detail else ""
            if exc.code == 404:
                raise NotFoundError(f"backend_http_404 {path}{suffix}") from exc
            if exc.code in _TRANSIENT_HTTP_CODES:
                raise TransientNetworkError(f"backend_http_{exc.code} {path}{suffix}") from exc
            raise WorthItError(f"backend_http_{exc.code} {path}{suffix}") from exc
        except (URLError, socket.timeout, TimeoutError, ConnectionError) as exc:
            raise TransientNetworkError(f"backend_unreachable {path}: {exc}") from exc

        try:
            obj = json.loads(raw or "")
        except ValueError as exc:
            raise BackendDecodingError(f"backend returned non-JSON body for {path}") from exc
        if not isinstance(obj, dict):
            raise BackendDecodingError(f"backend returned {type(obj).__name__} for {path}, expected object")
        return obj

    async def _call(self, method: str, path: str, *, params=None, payload=None, timeout_sec: float) -> dict:
        try:
            return await asyncio.wait_for(
                asyncio.to_thread(
                    self._request_json,
                    method,
                    path,
                    params=params,
                    payload=payload,
                    timeout_sec=timeout_sec,
                ),
                timeout=timeout_sec + 1.0,
            )
        except asyncio.TimeoutError as exc:
            raise TransientNetworkError(f"backend_timeout {path} after {timeout_sec:.0f}s") from exc

    async def get_json(self, path: str, params: Optional[dict] = None, *, retries: Optional[int] = None) -> dict:
        return await with_retries(
            lambda: self._call("GET", path, params=params, timeout_sec=self.timeout_sec),
            attempts=retries or self.retries,
            backoff_sec=self.backoff_sec,
            label=f"GET {path}",
        )

    async def post_json(self, path: str, payload: dict, *, retries: Optional[int] = None) -> dict:
        return await with_retries(
            lambda: self._call("POST", path, payload=payload, timeout_sec=self.ai_timeout_sec),
            attempts=retries or self.retries,
            backoff_sec=self.backoff_sec,
            label=f"POST {path}",
        )


@dataclass(frozen=True)
class Transcript:
    content_id: str
    text: str
    language: str

    def to_dict(self) -> dict:
        return {"content_id": self.content_id, "text": self.text, "language": self.language}

    @classmethod
    def from_dict(cls, raw: dict) -> "Transcript":
        return cls(
            content_id=str(raw.get("content_id") or ""),
            text=str(raw.get("text") or ""),
            language=str(raw.get("language") or ""),
        )


class TranscriptService:
    def __init__(self, client: BackendClient) -> None:
        self.client = client

    async def fetch(self, content_id: str, languages: Sequence[str]) -> Transcript:
        langs: List[str] = [str(x).strip().lower() for x in languages if str(x).strip()] or ["en"]
        for i, lang in enumerate(langs):
            try:
                obj = await self.client.get_json(
                    "/transcript",
                    {"id": content_id, "languages": ",".join(langs[i:])},
                )
            except NotFoundError:
                logger.info("No %s transcript for %s, trying next fallback", lang, content_id)
                continue
            body = TranscriptPayload.from_payload(obj)
            if not body.text:
                logger.info("Empty %s transcript for %s, trying next fallback", lang, content_id)
                continue
            return Transcript(content_id=content_id, text=body.text, language=body.language or lang)
        raise NotFoundError(f"No transcript for {content_id} in languages {','.join(langs)}")


class CommentService:
    def __init__(self, client: BackendClient, *, limit: int = 50) -> None:
        self.client = client
        self.limit = max(1, int(limit))

    async def fetch(self, content_id: str) -> List[str]:
        obj = await self.client.get_json("/comments", {"id": content_id, "limit": self.limit})
        return CommentsPayload.from_payload(obj).comments[: self.limit]


class SummarizationService:
    def __init__(self, client: BackendClient) -> None:
        self.client = client

    async def _respond(self, schema: Type[T], task_input: dict, *, continuation_token: Optional[str] = None) -> T:
        payload = {"task": schema.TASK, "input": task_input}
        if continuation_token:
            payload["continuationToken"] = continuation_token
        # One extra attempt for malformed AI output before giving up.
        for attempt in range(2):
            try:
                body = await self.client.post_json(AI_RESPONSES_PATH, payload)
                return schema.from_payload(body)
            except BackendDecodingError as exc:
                if attempt:
                    raise
                logger.warning("Malformed %s response, retrying once: %s", schema.TASK, exc)
        raise AssertionError("unreachable")

    async def summarize_transcript(self, transcript: str) -> TranscriptSummary:
        return await self._respond(TranscriptSummary, {"transcript": transcript[:AI_TRANSCRIPT_MAX_CHARS]})

    async def classify_comments(self, comments: Sequence[str]) -> CommentClassification:
        return await self._respond(
            CommentClassification,
            {"comments": [c[:AI_COMMENT_MAX_CHARS] for c in comments]},
        )

    async def score_insights(self, transcript: str, comments: Sequence[str]) -> CommentInsights:
        return await self._respond(
            CommentInsights,
            {
                "transcript": transcript[:AI_TRANSCRIPT_MAX_CHARS],
                "comments": [c[:AI_COMMENT_MAX_CHARS] for c in comments],
            },
        )

    async def essentials(self, transcript: str) -> Essentials:
        return await self._respond(Essentials, {"transcript": transcript[:AI_TRANSCRIPT_MAX_CHARS]})


class QAService:
    def __init__(self, client: BackendClient) -> None:
        self.client = client

    async def ask(
        self,
        question: str,
        *,
        transcript: str = "",
        summary: str = "",
        continuation_token: Optional[str] = None,
    ) -> QAReply:
        task_input = {"question": question}
        if not continuation_token:
            # First turn carries the context; later turns ride on the token.
            task_input["transcript"] = transcript[:AI_TRANSCRIPT_MAX_CHARS]
            task_input["summary"] = summary
        payload = {"task": QAReply.TASK, "input": task_input}
        if continuation_token:
            payload["continuationToken"] = continuation_token
        # Retry policy for Q&A belongs to QASession.
        body = await self.client.post_json(AI_RESPONSES_PATH, payload, retries=1)
        return QAReply.from_payload(body)
