from __future__ import annotations

import math
from dataclasses import dataclass
from typing import List, Optional, Tuple

from worthit_config import (
    SCORE_HIGH_BONUS,
    SCORE_HIGH_THRESHOLD,
    SCORE_LOW_DEPTH_PENALTY,
    SCORE_LOW_DEPTH_THRESHOLD,
)

DEPTH_WEIGHT = 0.60
SENTIMENT_WEIGHT = 0.40


@dataclass(frozen=True)
class ScoreConfig:
    """Edge-case nudges applied on top of the weighted blend (in score points)."""

    high_signal_threshold: float = SCORE_HIGH_THRESHOLD
    high_signal_bonus: float = SCORE_HIGH_BONUS
    low_depth_threshold: float = SCORE_LOW_DEPTH_THRESHOLD
    low_depth_penalty: float = SCORE_LOW_DEPTH_PENALTY

    @classmethod
    def from_settings(cls, settings) -> "ScoreConfig":
        return cls(
            high_signal_threshold=settings.score_high_threshold,
            high_signal_bonus=settings.score_high_bonus,
            low_depth_threshold=settings.score_low_depth_threshold,
            low_depth_penalty=settings.score_low_depth_penalty,
        )


NO_ADJUSTMENTS = ScoreConfig(high_signal_bonus=0.0, low_depth_penalty=0.0)


@dataclass(frozen=True)
class ScoreBreakdown:
    depth_score: float
    sentiment_score: Optional[float]
    final_score: int
    missing_comment_data: bool
    adjustments: Tuple[Tuple[str, float], ...] = ()

    def to_dict(self) -> dict:
        return {
            "depth_score": self.depth_score,
            "sentiment_score": self.sentiment_score,
            "final_score": self.final_score,
            "missing_comment_data": self.missing_comment_data,
            "adjustments": [[name, points] for name, points in self.adjustments],
        }

    @classmethod
    def from_dict(cls, raw: dict) -> "ScoreBreakdown":
        sentiment = raw.get("sentiment_score")
        return cls(
            depth_score=float(raw.get("depth_score") or 0.0),
            sentiment_score=float(sentiment) if sentiment is not None else None,
            final_score=int(raw.get("final_score") or 0),
            missing_comment_data=bool(raw.get("missing_comment_data")),
            adjustments=tuple((str(a[0]), float(a[1])) for a in raw.get("adjustments") or []),
        )


def clip01(value: float) -> float:
    return max(0.0, min(1.0, float(value)))


def normalize_signal(value) -> Optional[float]:
    """Bring a backend score onto [0, 1]; values above 1 are read as percentages."""
    if value is None:
        return None
    v = float(value)
    if math.isnan(v):
        return None
    if v > 1.0:
        v = v / 100.0
    return clip01(v)


def round_half_up(value: float) -> int:
    # Nudge by a hair so 87.99999999 style float error lands on the intended integer.
    return int(math.floor(value + 0.5 + 1e-9))


def compute_score(depth, sentiment=None, config: ScoreConfig = ScoreConfig()) -> ScoreBreakdown:
    d = normalize_signal(depth)
    if d is None:
        raise ValueError("depth score is required")
    s = normalize_signal(sentiment)

    if s is None:
        final = round_half_up(100.0 * d)
        return ScoreBreakdown(
            depth_score=d,
            sentiment_score=None,
            final_score=max(0, min(100, final)),
            missing_comment_data=True,
        )

    raw = 100.0 * (DEPTH_WEIGHT * d + SENTIMENT_WEIGHT * s)
    adjustments: List[Tuple[str, float]] = []
    if config.high_signal_bonus and d >= config.high_signal_threshold and s >= config.high_signal_threshold:
        adjustments.append(("high_signal_bonus", float(config.high_signal_bonus)))
    if config.low_depth_penalty and d < config.low_depth_threshold:
        adjustments.append(("low_depth_penalty", -float(config.low_depth_penalty)))
    raw += sum(points for _, points in adjustments)

    return ScoreBreakdown(
        depth_score=d,
        sentiment_score=s,
        final_score=max(0, min(100, round_half_up(raw))),
        missing_comment_data=False,
        adjustments=tuple(adjustments),
    )
