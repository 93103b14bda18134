from __future__ import annotations

import difflib
import re
from dataclasses import dataclass, field
from typing import List, Optional, Sequence, Tuple

from worthit_utils import norm_text_for_match

from .schemas import CommentClassification, CommentInsights, Essentials, Theme, TranscriptSummary
from .scoring import ScoreBreakdown

STAGE_ESSENTIALS = "essentials"
STAGE_FULL = "full"

SPEAKING_WPM = 150.0
READING_WPM = 238.0


@dataclass
class CommentInsightBlock:
    sentiment_summary: str = ""
    themes: List[Theme] = field(default_factory=list)
    per_comment_category: List[str] = field(default_factory=list)
    comment_count: int = 0
    dropped_themes: int = 0

    def to_dict(self) -> dict:
        return {
            "sentiment_summary": self.sentiment_summary,
            "themes": [t.to_dict() for t in self.themes],
            "per_comment_category": list(self.per_comment_category),
            "comment_count": self.comment_count,
            "dropped_themes": self.dropped_themes,
        }

    @classmethod
    def from_dict(cls, raw: dict) -> "CommentInsightBlock":
        return cls(
            sentiment_summary=str(raw.get("sentiment_summary") or ""),
            themes=[
                Theme(label=str(t.get("label") or ""), example_comment=str(t.get("example_comment") or ""))
                for t in raw.get("themes") or []
                if isinstance(t, dict)
            ],
            per_comment_category=[str(x) for x in raw.get("per_comment_category") or []],
            comment_count=int(raw.get("comment_count") or 0),
            dropped_themes=int(raw.get("dropped_themes") or 0),
        )


@dataclass
class ContentAnalysis:
    content_id: str
    score: ScoreBreakdown
    summary: Optional[TranscriptSummary] = None
    comment_insights: Optional[CommentInsightBlock] = None
    suggested_questions: List[str] = field(default_factory=list)
    version: int = 0
    minutes_saved: float = 0.0
    language: str = ""
    stage: str = STAGE_FULL
    degraded: bool = False

    def to_dict(self) -> dict:
        return {
            "content_id": self.content_id,
            "score": self.score.to_dict(),
            "summary": self.summary.to_dict() if self.summary else None,
            "comment_insights": self.comment_insights.to_dict() if self.comment_insights else None,
            "suggested_questions": list(self.suggested_questions),
            "version": int(self.version),
            "minutes_saved": float(self.minutes_saved),
            "language": self.language,
            "stage": self.stage,
            "degraded": bool(self.degraded),
        }

    @classmethod
    def from_dict(cls, raw: dict) -> "ContentAnalysis":
        if not isinstance(raw, dict) or not raw.get("content_id") or not isinstance(raw.get("score"), dict):
            raise ValueError("not a stored content analysis")
        summary = raw.get("summary")
        insights = raw.get("comment_insights")
        return cls(
            content_id=str(raw["content_id"]),
            score=ScoreBreakdown.from_dict(raw["score"]),
            summary=TranscriptSummary.from_dict(summary) if isinstance(summary, dict) else None,
            comment_insights=CommentInsightBlock.from_dict(insights) if isinstance(insights, dict) else None,
            suggested_questions=[str(q) for q in raw.get("suggested_questions") or []],
            version=int(raw.get("version") or 0),
            minutes_saved=float(raw.get("minutes_saved") or 0.0),
            language=str(raw.get("language") or ""),
            stage=str(raw.get("stage") or STAGE_FULL),
            degraded=bool(raw.get("degraded")),
        )


def _word_count(text: str) -> int:
    return len(re.findall(r"\w+", text or ""))


def estimate_minutes_saved(transcript: str, summary: Optional[TranscriptSummary] = None) -> float:
    watch_minutes = _word_count(transcript) / SPEAKING_WPM
    read_words = 0
    if summary is not None:
        read_words = _word_count(summary.long_summary) + sum(
            _word_count(x) for x in [*summary.takeaways, *summary.gems_of_wisdom]
        )
    return round(max(0.0, watch_minutes - read_words / READING_WPM), 1)


def comment_supported(example: str, comments: Sequence[str], min_ratio: float) -> bool:
    target = norm_text_for_match(example)
    if len(target) < 3:
        return False
    for comment in comments:
        candidate = norm_text_for_match(comment)
        if not candidate:
            continue
        if target == candidate:
            return True
        # Quoting a long comment by a trimmed excerpt still counts as verbatim.
        if len(target) >= 20 and target in candidate:
            return True
        if difflib.SequenceMatcher(None, target, candidate).ratio() >= min_ratio:
            return True
    return False


def validate_themes(themes: Sequence[Theme], comments: Sequence[str], min_ratio: float) -> Tuple[List[Theme], int]:
    """Keep only themes whose example comment really appears among the fetched comments."""
    kept = [t for t in themes if comment_supported(t.example_comment, comments, min_ratio)]
    return kept, len(themes) - len(kept)


def _dedupe(questions: Sequence[str], limit: int = 5) -> List[str]:
    out: List[str] = []
    seen = set()
    for q in questions:
        key = norm_text_for_match(q)
        if not key or key in seen:
            continue
        seen.add(key)
        out.append(q.strip())
        if len(out) >= limit:
            break
    return out


def build_comment_block(
    classification: Optional[CommentClassification],
    comments: Optional[Sequence[str]],
    min_ratio: float,
) -> Optional[CommentInsightBlock]:
    if comments is None:
        return None
    if classification is None:
        return CommentInsightBlock(comment_count=len(comments))
    kept, dropped = validate_themes(classification.themes, comments, min_ratio)
    return CommentInsightBlock(
        sentiment_summary=classification.sentiment_summary,
        themes=kept,
        per_comment_category=list(classification.per_comment_category),
        comment_count=len(comments),
        dropped_themes=dropped,
    )


def merge_analysis(
    content_id: str,
    *,
    score: ScoreBreakdown,
    transcript: str,
    summary: Optional[TranscriptSummary],
    comment_block: Optional[CommentInsightBlock],
    insights: Optional[CommentInsights],
    essentials: Optional[Essentials],
    version: int,
    language: str = "",
    degraded: bool = False,
) -> ContentAnalysis:
    questions: List[str] = []
    if insights is not None:
        questions.extend(insights.suggested_questions)
    if essentials is not None:
        questions.extend(essentials.suggested_questions)
    return ContentAnalysis(
        content_id=content_id,
        score=score,
        summary=summary,
        comment_insights=comment_block,
        suggested_questions=_dedupe(questions),
        version=version,
        minutes_saved=estimate_minutes_saved(transcript, summary),
        language=language,
        stage=STAGE_FULL,
        degraded=degraded,
    )


def essentials_analysis(
    content_id: str,
    *,
    score: ScoreBreakdown,
    transcript: str,
    essentials: Essentials,
    version: int,
    language: str = "",
) -> ContentAnalysis:
    return ContentAnalysis(
        content_id=content_id,
        score=score,
        suggested_questions=_dedupe(essentials.suggested_questions),
        version=version,
        minutes_saved=estimate_minutes_saved(transcript),
        language=language,
        stage=STAGE_ESSENTIALS,
    )
