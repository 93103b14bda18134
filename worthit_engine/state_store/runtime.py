from __future__ import annotations

import logging
from typing import Optional

from worthit_config import EngineSettings, ensure_runtime_dirs

from ..backend import BackendClient, CommentService, QAService, SummarizationService, TranscriptService
from ..orchestrator import Orchestrator
from ..qa_session import QASession
from ..scoring import ScoreConfig
from .cache import ArtifactCache
from .core import open_state_store
from .locks import InvocationLock
from .quota import QuotaGuard

logger = logging.getLogger(__name__)


class EngineRuntime:
    """One per host process. Two runtimes built on the same data dir share state."""

    def __init__(
        self,
        settings: Optional[EngineSettings] = None,
        *,
        store=None,
        client: Optional[BackendClient] = None,
        transcripts: Optional[TranscriptService] = None,
        comments: Optional[CommentService] = None,
        summarizer: Optional[SummarizationService] = None,
        qa_service: Optional[QAService] = None,
        clock=None,
    ) -> None:
        self.settings = settings or EngineSettings.from_env()
        s = self.settings
        if store is None:
            if not s.state_db_dsn:
                ensure_runtime_dirs(s.data_dir)
            store = open_state_store(s.data_dir, s.state_db_dsn)
        self.store = store
        self.client = client or BackendClient(
            s.backend_url,
            api_key=s.backend_api_key,
            timeout_sec=s.http_timeout_sec,
            ai_timeout_sec=s.ai_timeout_sec,
            retries=s.http_retries,
            backoff_sec=s.http_backoff_sec,
        )
        self.transcripts = transcripts or TranscriptService(self.client)
        self.comments = comments or CommentService(self.client, limit=s.comment_limit)
        self.summarizer = summarizer or SummarizationService(self.client)
        self.qa_service = qa_service or QAService(self.client)

        self.cache = ArtifactCache(store, ttl_sec=s.cache_ttl_sec, recent_limit=s.recent_index_limit)
        self.quota = QuotaGuard(store, daily_limit=s.daily_limit, tz=s.local_tz, clock=clock)
        self.locks = InvocationLock(store, stale_after_sec=s.lock_stale_sec)
        self.orchestrator = Orchestrator(
            cache=self.cache,
            quota=self.quota,
            transcripts=self.transcripts,
            comments=self.comments,
            summarizer=self.summarizer,
            score_config=ScoreConfig.from_settings(s),
            default_languages=s.transcript_langs,
            theme_match_ratio=s.theme_match_ratio,
            refresh_on_cache_hit=s.refresh_on_cache_hit,
            refresh_min_age_sec=s.refresh_min_age_sec,
        )
        logger.debug("Engine runtime ready (store=%s)", getattr(store, "backend_name", type(store).__name__))

    def new_qa_session(self) -> QASession:
        return QASession(
            self.cache,
            self.qa_service,
            retries=self.settings.qa_retries,
            backoff_sec=self.settings.http_backoff_sec,
        )

    async def close(self, timeout: Optional[float] = 10.0) -> None:
        await self.orchestrator.drain(timeout=timeout)
