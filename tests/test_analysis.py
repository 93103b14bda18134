from __future__ import annotations

import unittest

from worthit_engine.analysis import (
    ContentAnalysis,
    build_comment_block,
    comment_supported,
    estimate_minutes_saved,
    merge_analysis,
)
from worthit_engine.schemas import CommentClassification, CommentInsights, Essentials, Theme, TranscriptSummary
from worthit_engine.scoring import NO_ADJUSTMENTS, compute_score

COMMENTS = ["Loved the part about   gradient descent!", "meh"]


class ThemeValidationTests(unittest.TestCase):
    def test_whitespace_and_case_do_not_matter(self) -> None:
        self.assertTrue(comment_supported("loved the part about gradient descent!", COMMENTS, 0.9))

    def test_near_identical_is_accepted(self) -> None:
        self.assertTrue(comment_supported("Loved the part about gradient descent", COMMENTS, 0.9))

    def test_paraphrase_is_rejected(self) -> None:
        self.assertFalse(comment_supported("People enjoyed the optimization section", COMMENTS, 0.9))
        self.assertFalse(comment_supported("", COMMENTS, 0.9))

    def test_block_keeps_only_supported_themes(self) -> None:
        classification = CommentClassification(
            sentiment_summary="positive",
            themes=[
                Theme("optimization", "Loved the part about gradient descent!"),
                Theme("made up", "Best cooking channel on the internet"),
            ],
            per_comment_category=["praise", "neutral"],
        )
        block = build_comment_block(classification, COMMENTS, 0.9)
        self.assertEqual([t.label for t in block.themes], ["optimization"])
        self.assertEqual(block.dropped_themes, 1)
        self.assertEqual(block.comment_count, 2)
        self.assertIsNone(build_comment_block(classification, None, 0.9))


class MergeTests(unittest.TestCase):
    def test_merge_dedupes_questions_and_round_trips(self) -> None:
        analysis = merge_analysis(
            "dQw4w9WgXcQ",
            score=compute_score(0.9, 0.85, NO_ADJUSTMENTS),
            transcript="word " * 300,
            summary=TranscriptSummary("Short.", ["a"], ["b"]),
            comment_block=None,
            insights=CommentInsights(90.0, 85.0, ["Why now?", "How?"]),
            essentials=Essentials(90.0, ["why now?", "For whom?"]),
            version=7,
        )
        self.assertEqual(analysis.suggested_questions, ["Why now?", "How?", "For whom?"])
        self.assertEqual(ContentAnalysis.from_dict(analysis.to_dict()), analysis)

    def test_minutes_saved(self) -> None:
        self.assertEqual(estimate_minutes_saved("word " * 1500), 10.0)
        self.assertEqual(estimate_minutes_saved(""), 0.0)

    def test_from_dict_rejects_garbage(self) -> None:
        with self.assertRaises(ValueError):
            ContentAnalysis.from_dict({"score": {}})


if __name__ == "__main__":
    unittest.main()
