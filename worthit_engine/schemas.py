"""Strict decoding of backend response bodies.

Every response body is checked against a fixed field list: unknown fields,
missing fields and wrong types are rejected with BackendDecodingError instead
of being guessed at. Bodies may carry ``schemaVersion`` (only version 1 is
understood) and an opaque ``continuationToken``.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Iterable, List, Optional

from .errors import BackendDecodingError

SCHEMA_VERSION = 1
_ENVELOPE_FIELDS = frozenset({"schemaVersion", "continuationToken"})


def _check_fields(task: str, obj: Any, required: Iterable[str], optional: Iterable[str] = ()) -> dict:
    if not isinstance(obj, dict):
        raise BackendDecodingError(f"{task}: expected a JSON object, got {type(obj).__name__}")
    version = obj.get("schemaVersion", SCHEMA_VERSION)
    if version != SCHEMA_VERSION:
        raise BackendDecodingError(f"{task}: unsupported schemaVersion {version!r}")
    required = list(required)
    allowed = set(required) | set(optional) | _ENVELOPE_FIELDS
    unknown = sorted(set(obj) - allowed)
    if unknown:
        raise BackendDecodingError(f"{task}: unrecognized field(s) {', '.join(unknown)}")
    missing = [name for name in required if name not in obj]
    if missing:
        raise BackendDecodingError(f"{task}: missing field(s) {', '.join(missing)}")
    token = obj.get("continuationToken")
    if token is not None and not isinstance(token, str):
        raise BackendDecodingError(f"{task}: continuationToken must be a string")
    return obj


def _text(task: str, obj: dict, name: str, *, allow_empty: bool = False) -> str:
    value = obj.get(name)
    if not isinstance(value, str):
        raise BackendDecodingError(f"{task}: {name} must be a string")
    value = value.strip()
    if not value and not allow_empty:
        raise BackendDecodingError(f"{task}: {name} is empty")
    return value


def _text_list(task: str, obj: dict, name: str) -> List[str]:
    value = obj.get(name)
    if not isinstance(value, list) or not all(isinstance(v, str) for v in value):
        raise BackendDecodingError(f"{task}: {name} must be a list of strings")
    return [v.strip() for v in value if v.strip()]


def _score(task: str, obj: dict, name: str, *, nullable: bool = False) -> Optional[float]:
    value = obj.get(name)
    if value is None and nullable:
        return None
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise BackendDecodingError(f"{task}: {name} must be a number")
    value = float(value)
    if not 0.0 <= value <= 100.0:
        raise BackendDecodingError(f"{task}: {name} out of range: {value}")
    return value


@dataclass(frozen=True)
class TranscriptSummary:
    long_summary: str
    takeaways: List[str] = field(default_factory=list)
    gems_of_wisdom: List[str] = field(default_factory=list)

    TASK = "transcript_summary"

    @classmethod
    def from_payload(cls, obj: Any) -> "TranscriptSummary":
        obj = _check_fields(cls.TASK, obj, ("longSummary", "takeaways", "gemsOfWisdom"))
        return cls(
            long_summary=_text(cls.TASK, obj, "longSummary"),
            takeaways=_text_list(cls.TASK, obj, "takeaways"),
            gems_of_wisdom=_text_list(cls.TASK, obj, "gemsOfWisdom"),
        )

    def to_dict(self) -> dict:
        return {
            "long_summary": self.long_summary,
            "takeaways": list(self.takeaways),
            "gems_of_wisdom": list(self.gems_of_wisdom),
        }

    @classmethod
    def from_dict(cls, raw: dict) -> "TranscriptSummary":
        return cls(
            long_summary=str(raw.get("long_summary") or ""),
            takeaways=[str(x) for x in raw.get("takeaways") or []],
            gems_of_wisdom=[str(x) for x in raw.get("gems_of_wisdom") or []],
        )


@dataclass(frozen=True)
class Theme:
    label: str
    example_comment: str

    def to_dict(self) -> dict:
        return {"label": self.label, "example_comment": self.example_comment}


@dataclass(frozen=True)
class CommentClassification:
    sentiment_summary: str
    themes: List[Theme] = field(default_factory=list)
    per_comment_category: List[str] = field(default_factory=list)

    TASK = "comment_classification"

    @classmethod
    def from_payload(cls, obj: Any) -> "CommentClassification":
        obj = _check_fields(cls.TASK, obj, ("sentimentSummary", "themes", "perCommentCategory"))
        raw_themes = obj.get("themes")
        if not isinstance(raw_themes, list):
            raise BackendDecodingError(f"{cls.TASK}: themes must be a list")
        themes: List[Theme] = []
        for raw in raw_themes:
            theme = _check_fields(f"{cls.TASK}.themes", raw, ("label", "exampleComment"))
            themes.append(
                Theme(
                    label=_text(cls.TASK, theme, "label"),
                    example_comment=_text(cls.TASK, theme, "exampleComment"),
                )
            )
        return cls(
            sentiment_summary=_text(cls.TASK, obj, "sentimentSummary", allow_empty=True),
            themes=themes,
            per_comment_category=_text_list(cls.TASK, obj, "perCommentCategory"),
        )


@dataclass(frozen=True)
class CommentInsights:
    content_depth_score: float
    sentiment_score: Optional[float]
    suggested_questions: List[str] = field(default_factory=list)

    TASK = "comment_insights"

    @classmethod
    def from_payload(cls, obj: Any) -> "CommentInsights":
        obj = _check_fields(cls.TASK, obj, ("contentDepthScore", "sentimentScore", "suggestedQuestions"))
        return cls(
            content_depth_score=_score(cls.TASK, obj, "contentDepthScore"),
            sentiment_score=_score(cls.TASK, obj, "sentimentScore", nullable=True),
            suggested_questions=_text_list(cls.TASK, obj, "suggestedQuestions"),
        )

    def to_dict(self) -> dict:
        return {
            "content_depth_score": self.content_depth_score,
            "sentiment_score": self.sentiment_score,
            "suggested_questions": list(self.suggested_questions),
        }


@dataclass(frozen=True)
class Essentials:
    content_depth_score: float
    suggested_questions: List[str] = field(default_factory=list)

    TASK = "essentials"

    @classmethod
    def from_payload(cls, obj: Any) -> "Essentials":
        obj = _check_fields(cls.TASK, obj, ("contentDepthScore", "suggestedQuestions"))
        return cls(
            content_depth_score=_score(cls.TASK, obj, "contentDepthScore"),
            suggested_questions=_text_list(cls.TASK, obj, "suggestedQuestions"),
        )


@dataclass(frozen=True)
class QAReply:
    answer: str
    continuation_token: Optional[str] = None

    TASK = "qa"

    @classmethod
    def from_payload(cls, obj: Any) -> "QAReply":
        obj = _check_fields(cls.TASK, obj, ("answer",))
        token = obj.get("continuationToken")
        return cls(answer=_text(cls.TASK, obj, "answer"), continuation_token=token or None)


@dataclass(frozen=True)
class TranscriptPayload:
    """Body of ``GET /transcript``. Empty text means the language has no usable captions."""

    text: str
    language: Optional[str] = None

    TASK = "transcript"

    @classmethod
    def from_payload(cls, obj: Any) -> "TranscriptPayload":
        obj = _check_fields(cls.TASK, obj, ("text",), ("language",))
        language = obj.get("language")
        if language is not None and not isinstance(language, str):
            raise BackendDecodingError(f"{cls.TASK}: language must be a string")
        return cls(text=_text(cls.TASK, obj, "text", allow_empty=True), language=(language or "").strip() or None)


@dataclass(frozen=True)
class CommentsPayload:
    comments: List[str] = field(default_factory=list)

    TASK = "comments"

    @classmethod
    def from_payload(cls, obj: Any) -> "CommentsPayload":
        obj = _check_fields(cls.TASK, obj, ("comments",))
        return cls(comments=_text_list(cls.TASK, obj, "comments"))
