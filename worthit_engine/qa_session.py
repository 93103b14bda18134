from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass
from typing import List, Optional

from .analysis import ContentAnalysis
from .backend import QAService, with_retries
from .errors import BackendDecodingError, MissingAnalysisError, TransientNetworkError
from .state_store.cache import KIND_CONTENT_ANALYSIS, KIND_QA_HISTORY, KIND_TRANSCRIPT, ArtifactCache

logger = logging.getLogger(__name__)

QA_HISTORY_LIMIT = 50


@dataclass(frozen=True)
class QAExchange:
    question: str
    answer: str
    continuation_token: Optional[str] = None
    asked_at: float = 0.0

    def to_dict(self) -> dict:
        return {
            "question": self.question,
            "answer": self.answer,
            "continuation_token": self.continuation_token,
            "asked_at": self.asked_at,
        }

    @classmethod
    def from_dict(cls, raw: dict) -> "QAExchange":
        return cls(
            question=str(raw.get("question") or ""),
            answer=str(raw.get("answer") or ""),
            continuation_token=raw.get("continuation_token") or None,
            asked_at=float(raw.get("asked_at") or 0.0),
        )


class QASession:
    """Follow-up questions about one analyzed video.

    The session binds to whichever content id was asked about last; asking
    about a different id starts a fresh conversation.
    """

    def __init__(
        self,
        cache: ArtifactCache,
        qa_service: QAService,
        *,
        retries: int = 3,
        backoff_sec: float = 0.5,
    ) -> None:
        self.cache = cache
        self.qa_service = qa_service
        self.retries = max(1, int(retries))
        self.backoff_sec = max(0.0, float(backoff_sec))
        self.content_id: Optional[str] = None
        self._exchanges: List[QAExchange] = []
        self._opened = False
        self._lock = asyncio.Lock()

    def history(self) -> List[QAExchange]:
        return list(self._exchanges)

    async def reset(self) -> None:
        """Forget the conversation, including its persisted copy."""
        async with self._lock:
            content_id = self.content_id
            self.content_id = None
            self._exchanges = []
            self._opened = True
            if content_id is None:
                return
            try:
                await self.cache.delete(content_id, KIND_QA_HISTORY)
            except Exception:
                logger.warning("Failed to delete Q&A history for %s", content_id, exc_info=True)

    async def _open(self, content_id: str) -> None:
        # Only the first conversation of a session picks up where another process left off.
        restore = not self._opened
        self._opened = True
        self.content_id = content_id
        self._exchanges = []
        if not restore:
            return
        entry = await self.cache.get(content_id, KIND_QA_HISTORY)
        if entry is None or not isinstance(entry.payload, list):
            return
        self._exchanges = [QAExchange.from_dict(row) for row in entry.payload if isinstance(row, dict)]
        logger.debug("Restored %s Q&A exchange(s) for %s", len(self._exchanges), content_id)

    async def _context(self, content_id: str):
        analysis_entry = await self.cache.get(content_id, KIND_CONTENT_ANALYSIS)
        transcript_entry = await self.cache.get(content_id, KIND_TRANSCRIPT)
        if analysis_entry is None or transcript_entry is None:
            raise MissingAnalysisError(f"No analysis cached for {content_id}; analyze it first.")
        try:
            analysis = ContentAnalysis.from_dict(analysis_entry.payload)
        except ValueError as exc:
            raise MissingAnalysisError(f"Cached analysis for {content_id} is unreadable.") from exc
        transcript = transcript_entry.payload.get("text") if isinstance(transcript_entry.payload, dict) else ""
        summary = analysis.summary.long_summary if analysis.summary else ""
        return str(transcript or ""), summary

    async def ask(self, content_id: str, question: str) -> QAExchange:
        text = str(question or "").strip()
        if not text:
            raise ValueError("question is empty")
        async with self._lock:
            if content_id != self.content_id:
                await self._open(content_id)
            transcript, summary = await self._context(content_id)
            token = self._exchanges[-1].continuation_token if self._exchanges else None

            reply = await with_retries(
                lambda: self.qa_service.ask(
                    text,
                    transcript=transcript,
                    summary=summary,
                    continuation_token=token,
                ),
                attempts=self.retries,
                backoff_sec=self.backoff_sec,
                label=f"qa {content_id}",
                retry_on=(TransientNetworkError, BackendDecodingError),
            )
            exchange = QAExchange(
                question=text,
                answer=reply.answer,
                continuation_token=reply.continuation_token,
                asked_at=time.time(),
            )
            self._exchanges.append(exchange)
            await self._persist(content_id)
            return exchange

    async def _persist(self, content_id: str) -> None:
        rows = [x.to_dict() for x in self._exchanges[-QA_HISTORY_LIMIT:]]
        try:
            await self.cache.put(content_id, KIND_QA_HISTORY, rows)
        except Exception:
            logger.warning("Failed to persist Q&A history for %s", content_id, exc_info=True)
