from __future__ import annotations

import asyncio
import inspect
import logging
import time
from dataclasses import dataclass
from enum import Enum
from typing import Awaitable, Callable, List, Optional, Sequence, Set, Union

from worthit_utils import resolve_content_id

from .analysis import (
    STAGE_ESSENTIALS,
    STAGE_FULL,
    ContentAnalysis,
    build_comment_block,
    essentials_analysis,
    merge_analysis,
)
from .backend import CommentService, SummarizationService, Transcript, TranscriptService
from .errors import PartialFetchFailure, QuotaExceeded, ValidationError, WorthItError
from .schemas import CommentClassification, CommentInsights, Essentials, TranscriptSummary
from .scoring import ScoreConfig, compute_score
from .state_store.cache import (
    KIND_COMMENT_INSIGHTS,
    KIND_CONTENT_ANALYSIS,
    KIND_RAW_COMMENTS,
    KIND_TRANSCRIPT,
    ArtifactCache,
    CacheEntry,
)
from .state_store.quota import QuotaDecision, QuotaGuard

logger = logging.getLogger(__name__)


class PipelineState(str, Enum):
    VALIDATING = "validating"
    QUOTA_CHECK = "quota_check"
    CACHE_LOOKUP = "cache_lookup"
    CACHE_HIT = "cache_hit"
    FETCHING = "fetching"
    SUMMARIZING = "summarizing"
    MERGING = "merging"
    SCORING = "scoring"
    PERSISTING = "persisting"
    READY = "ready"
    PARTIAL_FAILURE = "partial_failure"
    DENIED = "denied"
    INVALID = "invalid"
    SUPERSEDED = "superseded"


@dataclass(frozen=True)
class PipelineUpdate:
    state: PipelineState
    content_id: Optional[str] = None
    stage: str = ""
    analysis: Optional[ContentAnalysis] = None
    cached: bool = False
    error: str = ""


@dataclass(frozen=True)
class PipelineResult:
    state: PipelineState
    content_id: str
    analysis: Optional[ContentAnalysis] = None
    cached: bool = False
    quota: Optional[QuotaDecision] = None


UpdateCallback = Callable[[PipelineUpdate], Union[None, Awaitable[None]]]


def _consume_task_result(task: asyncio.Task) -> None:
    if task.cancelled():
        return
    exc = task.exception()
    if exc is not None:
        logger.debug("Ignored background task failure: %s", exc)


class Orchestrator:
    """Runs validate -> quota -> cache -> fetch -> summarize -> merge -> score -> persist.

    One instance per process. The newest call to ``analyze`` owns the user's
    intent: an older pipeline still in flight finishes its network work but
    neither persists nor publishes.
    """

    def __init__(
        self,
        *,
        cache: ArtifactCache,
        quota: QuotaGuard,
        transcripts: TranscriptService,
        comments: CommentService,
        summarizer: SummarizationService,
        score_config: Optional[ScoreConfig] = None,
        default_languages: Sequence[str] = ("en",),
        theme_match_ratio: float = 0.9,
        refresh_on_cache_hit: bool = True,
        refresh_min_age_sec: float = 0.0,
    ) -> None:
        self.cache = cache
        self.quota = quota
        self.transcripts = transcripts
        self.comments = comments
        self.summarizer = summarizer
        self.score_config = score_config or ScoreConfig()
        self.default_languages = tuple(default_languages) or ("en",)
        self.theme_match_ratio = float(theme_match_ratio)
        self.refresh_on_cache_hit = bool(refresh_on_cache_hit)
        self.refresh_min_age_sec = max(0.0, float(refresh_min_age_sec))
        self._intent = 0
        self._last_stamp = 0
        self._background: Set[asyncio.Task] = set()
        self._refreshing: Set[str] = set()

    def _next_stamp(self) -> int:
        stamp = max(time.time_ns(), self._last_stamp + 1)
        self._last_stamp = stamp
        return stamp

    def _is_current(self, generation: int) -> bool:
        return generation == self._intent

    async def _emit(self, on_update: Optional[UpdateCallback], update: PipelineUpdate) -> None:
        if on_update is None:
            return
        try:
            result = on_update(update)
            if inspect.isawaitable(result):
                await result
        except Exception:
            logger.exception("Update callback failed for %s (%s)", update.content_id, update.state.value)

    async def analyze(
        self,
        reference: str,
        owner_scope: str,
        *,
        is_subscribed: bool = False,
        is_complimentary: bool = False,
        languages: Optional[Sequence[str]] = None,
        force: bool = False,
        on_update: Optional[UpdateCallback] = None,
    ) -> PipelineResult:
        self._intent += 1
        generation = self._intent
        langs = tuple(languages or self.default_languages)

        async def emit(state: PipelineState, cid: Optional[str], **kw) -> None:
            if self._is_current(generation):
                await self._emit(on_update, PipelineUpdate(state=state, content_id=cid, **kw))

        await emit(PipelineState.VALIDATING, None)
        try:
            content_id = resolve_content_id(reference)
        except ValidationError as exc:
            await emit(PipelineState.INVALID, None, error=str(exc))
            raise

        await emit(PipelineState.QUOTA_CHECK, content_id)
        decision = await self.quota.check(owner_scope, is_subscribed, is_complimentary)
        entry: Optional[CacheEntry] = None
        if not decision.allowed:
            # Content the user already analyzed stays viewable after the allowance runs out.
            entry = None if force else await self._lookup(content_id)
            if entry is None:
                await emit(PipelineState.DENIED, content_id)
                raise QuotaExceeded(decision.paywall)

        if not force:
            await emit(PipelineState.CACHE_LOOKUP, content_id)
            if entry is None:
                entry = await self._lookup(content_id)
            if entry is not None:
                analysis = ContentAnalysis.from_dict(entry.payload)
                await emit(PipelineState.CACHE_HIT, content_id, analysis=analysis, cached=True)
                await emit(PipelineState.READY, content_id, stage="cached", analysis=analysis, cached=True)
                await self._record_time_saved(owner_scope, analysis)
                self._schedule_refresh(content_id, langs, entry, generation, on_update)
                return PipelineResult(PipelineState.READY, content_id, analysis, cached=True, quota=decision)

        consumed = await self.quota.check_and_consume(owner_scope, is_subscribed, is_complimentary)
        if not consumed.allowed:
            await emit(PipelineState.DENIED, content_id)
            raise QuotaExceeded(consumed.paywall)

        stamp = self._next_stamp()
        analysis = await self._run_fresh(
            content_id,
            langs,
            stamp,
            publish_ok=lambda: self._is_current(generation),
            persist_ok=lambda: self._is_current(generation),
            on_update=on_update,
        )
        if analysis is None:
            logger.info("Pipeline for %s superseded by a newer request", content_id)
            return PipelineResult(PipelineState.SUPERSEDED, content_id, quota=consumed)
        await self._record_time_saved(owner_scope, analysis)
        return PipelineResult(PipelineState.READY, content_id, analysis, cached=False, quota=consumed)

    async def _lookup(self, content_id: str) -> Optional[CacheEntry]:
        entry = await self.cache.get(content_id, KIND_CONTENT_ANALYSIS)
        if entry is None:
            return None
        try:
            ContentAnalysis.from_dict(entry.payload)
        except (ValueError, TypeError, KeyError) as exc:
            logger.warning("Ignoring unreadable cached analysis for %s: %s", content_id, exc)
            return None
        return entry

    async def _run_fresh(
        self,
        content_id: str,
        languages: Sequence[str],
        stamp: int,
        *,
        publish_ok: Callable[[], bool],
        persist_ok: Callable[[], bool],
        on_update: Optional[UpdateCallback],
        stage_label: str = "",
    ) -> Optional[ContentAnalysis]:
        async def emit(state: PipelineState, **kw) -> None:
            if publish_ok():
                await self._emit(on_update, PipelineUpdate(state=state, content_id=content_id, **kw))

        await emit(PipelineState.FETCHING)
        transcript_task = asyncio.create_task(self.transcripts.fetch(content_id, languages))
        comments_task = asyncio.create_task(self.comments.fetch(content_id))
        try:
            transcript: Transcript = await transcript_task
        except WorthItError as exc:
            comments_task.add_done_callback(_consume_task_result)
            await emit(PipelineState.PARTIAL_FAILURE, error=str(exc))
            raise PartialFetchFailure(f"Transcript unavailable for {content_id}: {exc}", cause=exc) from exc

        essentials_task = asyncio.create_task(self.summarizer.essentials(transcript.text))
        full_published = asyncio.Event()

        async def publish_essentials() -> Optional[Essentials]:
            try:
                ess = await essentials_task
            except WorthItError as exc:
                logger.warning("Essentials pass failed for %s: %s", content_id, exc)
                return None
            if not full_published.is_set():
                preview = essentials_analysis(
                    content_id,
                    score=compute_score(ess.content_depth_score, None, self.score_config),
                    transcript=transcript.text,
                    essentials=ess,
                    version=stamp,
                    language=transcript.language,
                )
                await emit(PipelineState.READY, stage=STAGE_ESSENTIALS, analysis=preview)
            return ess

        essentials_publisher = asyncio.create_task(publish_essentials())

        comments: Optional[List[str]]
        try:
            comments = await comments_task
        except WorthItError as exc:
            logger.warning("Comments unavailable for %s, continuing without them: %s", content_id, exc)
            comments = None

        await emit(PipelineState.SUMMARIZING)
        summary_res, classification_res, insights_res = await asyncio.gather(
            self.summarizer.summarize_transcript(transcript.text),
            self.summarizer.classify_comments(comments) if comments else _none(),
            self.summarizer.score_insights(transcript.text, comments or []),
            return_exceptions=True,
        )
        for res in (summary_res, classification_res, insights_res):
            if isinstance(res, BaseException) and not isinstance(res, WorthItError):
                essentials_publisher.cancel()
                essentials_task.cancel()
                raise res

        degraded = False
        summary: Optional[TranscriptSummary] = None
        if isinstance(summary_res, WorthItError):
            logger.warning("Transcript summary failed for %s: %s", content_id, summary_res)
            degraded = True
        else:
            summary = summary_res

        classification: Optional[CommentClassification] = None
        if isinstance(classification_res, WorthItError):
            logger.warning("Comment classification failed for %s: %s", content_id, classification_res)
            degraded = True
        else:
            classification = classification_res

        insights: Optional[CommentInsights] = None
        if isinstance(insights_res, WorthItError):
            logger.warning("Insight scoring failed for %s: %s", content_id, insights_res)
            degraded = True
        else:
            insights = insights_res

        essentials: Optional[Essentials] = None
        if insights is None:
            # The essentials pass is the only remaining source of a depth score.
            essentials = await essentials_publisher
            if essentials is None:
                await emit(PipelineState.PARTIAL_FAILURE, error=str(insights_res))
                raise insights_res
        else:
            full_published.set()
            if essentials_publisher.done():
                essentials = essentials_publisher.result()
            else:
                essentials_publisher.cancel()

        await emit(PipelineState.MERGING)
        comment_block = build_comment_block(classification, comments, self.theme_match_ratio)
        if comment_block is not None and comment_block.dropped_themes:
            logger.info("Dropped %s unsupported theme(s) for %s", comment_block.dropped_themes, content_id)

        await emit(PipelineState.SCORING)
        depth = (insights or essentials).content_depth_score
        sentiment = insights.sentiment_score if (insights is not None and comments) else None
        score = compute_score(depth, sentiment, self.score_config)

        analysis = merge_analysis(
            content_id,
            score=score,
            transcript=transcript.text,
            summary=summary,
            comment_block=comment_block,
            insights=insights,
            essentials=essentials,
            version=stamp,
            language=transcript.language,
            degraded=degraded,
        )
        full_published.set()

        if not persist_ok():
            return None
        await emit(PipelineState.PERSISTING)
        accepted = await self._persist(content_id, stamp, transcript, comments, insights, analysis)
        if not accepted and stage_label:
            logger.info("Refresh of %s lost to a newer analysis; not publishing", content_id)
            return None
        if not publish_ok() and not stage_label:
            return None
        await emit(PipelineState.READY, stage=stage_label or STAGE_FULL, analysis=analysis)
        return analysis

    async def _persist(
        self,
        content_id: str,
        stamp: int,
        transcript: Transcript,
        comments: Optional[List[str]],
        insights: Optional[CommentInsights],
        analysis: ContentAnalysis,
    ) -> bool:
        accepted = True
        try:
            accepted = await self.cache.put(content_id, KIND_CONTENT_ANALYSIS, analysis.to_dict(), stamp=stamp)
        except Exception:
            logger.warning("Failed to persist analysis for %s", content_id, exc_info=True)
            return True
        if not accepted:
            return False

        side_writes = [(KIND_TRANSCRIPT, transcript.to_dict())]
        if comments is not None:
            side_writes.append((KIND_RAW_COMMENTS, list(comments)))
        if insights is not None:
            side_writes.append((KIND_COMMENT_INSIGHTS, insights.to_dict()))
        for kind, payload in side_writes:
            try:
                await self.cache.put(content_id, kind, payload, stamp=stamp)
            except Exception:
                logger.warning("Failed to persist %s for %s", kind, content_id, exc_info=True)
        try:
            await self.cache.touch_recent(content_id)
        except Exception:
            logger.warning("Failed to update recent index for %s", content_id, exc_info=True)
        return True

    async def _record_time_saved(self, owner_scope: str, analysis: ContentAnalysis) -> None:
        try:
            await self.quota.record_time_saved(owner_scope, analysis.content_id, analysis.minutes_saved)
        except Exception:
            logger.warning("Failed to record time saved for %s", analysis.content_id, exc_info=True)

    def _schedule_refresh(
        self,
        content_id: str,
        languages: Sequence[str],
        entry: CacheEntry,
        generation: int,
        on_update: Optional[UpdateCallback],
    ) -> None:
        if not self.refresh_on_cache_hit:
            return
        if entry.age_sec() < self.refresh_min_age_sec:
            return
        if content_id in self._refreshing:
            return
        self._refreshing.add(content_id)
        stamp = self._next_stamp()
        task = asyncio.create_task(self._refresh(content_id, languages, stamp, generation, on_update))
        self._background.add(task)
        task.add_done_callback(self._background.discard)

    async def _refresh(
        self,
        content_id: str,
        languages: Sequence[str],
        stamp: int,
        generation: int,
        on_update: Optional[UpdateCallback],
    ) -> None:
        try:
            await self._run_fresh(
                content_id,
                languages,
                stamp,
                publish_ok=lambda: self._is_current(generation),
                persist_ok=lambda: self._is_current(generation),
                on_update=on_update,
                stage_label="refresh",
            )
        except WorthItError as exc:
            logger.info("Background refresh of %s failed: %s", content_id, exc)
        except Exception:
            logger.exception("Background refresh of %s crashed", content_id)
        finally:
            self._refreshing.discard(content_id)

    async def drain(self, timeout: Optional[float] = None) -> None:
        """Wait for background refreshes, e.g. before a short-lived process exits."""
        pending = list(self._background)
        if not pending:
            return
        done, not_done = await asyncio.wait(pending, timeout=timeout)
        for task in not_done:
            task.cancel()
        if not_done:
            await asyncio.gather(*not_done, return_exceptions=True)


async def _none() -> None:
    return None
