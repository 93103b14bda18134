from __future__ import annotations

import unittest

from worthit_engine.scoring import NO_ADJUSTMENTS, ScoreBreakdown, ScoreConfig, compute_score, normalize_signal, round_half_up


class ScoreEngineTests(unittest.TestCase):
    def test_weighted_blend_without_nudges(self) -> None:
        score = compute_score(0.90, 0.85, NO_ADJUSTMENTS)
        self.assertEqual(score.final_score, 88)
        self.assertFalse(score.missing_comment_data)
        self.assertEqual(score.adjustments, ())

    def test_high_signal_bonus_applies_when_both_signals_are_strong(self) -> None:
        score = compute_score(0.90, 0.85, ScoreConfig(high_signal_threshold=0.8, high_signal_bonus=3.0))
        self.assertEqual(score.final_score, 91)
        self.assertEqual(score.adjustments, (("high_signal_bonus", 3.0),))

    def test_low_depth_penalty(self) -> None:
        cfg = ScoreConfig(high_signal_bonus=0.0, low_depth_threshold=0.35, low_depth_penalty=8.0)
        score = compute_score(0.20, 0.90, cfg)
        # 100 * (0.6*0.2 + 0.4*0.9) = 48, minus 8
        self.assertEqual(score.final_score, 40)

    def test_missing_sentiment_uses_depth_only(self) -> None:
        score = compute_score(0.70, None)
        self.assertEqual(score.final_score, 70)
        self.assertTrue(score.missing_comment_data)
        self.assertIsNone(score.sentiment_score)

    def test_missing_sentiment_ignores_nudges(self) -> None:
        cfg = ScoreConfig(high_signal_threshold=0.5, high_signal_bonus=10.0, low_depth_threshold=0.9, low_depth_penalty=10.0)
        for depth in (0.0, 0.2, 0.55, 0.95, 1.0):
            self.assertEqual(compute_score(depth, None, cfg).final_score, round_half_up(100 * depth))

    def test_final_score_stays_in_range(self) -> None:
        cfg = ScoreConfig(high_signal_threshold=0.0, high_signal_bonus=50.0, low_depth_threshold=1.0, low_depth_penalty=50.0)
        for depth in (0.0, 0.1, 0.5, 0.99, 1.0):
            for sentiment in (None, 0.0, 0.3, 1.0):
                final = compute_score(depth, sentiment, cfg).final_score
                self.assertGreaterEqual(final, 0)
                self.assertLessEqual(final, 100)

    def test_percent_inputs_are_normalized(self) -> None:
        self.assertAlmostEqual(normalize_signal(90), 0.9)
        self.assertEqual(normalize_signal(250), 1.0)
        self.assertEqual(normalize_signal(-3), 0.0)
        self.assertIsNone(normalize_signal(None))
        self.assertEqual(compute_score(90.0, 85.0, NO_ADJUSTMENTS).final_score, 88)

    def test_depth_is_required(self) -> None:
        with self.assertRaises(ValueError):
            compute_score(None, 0.5)

    def test_round_half_up(self) -> None:
        self.assertEqual(round_half_up(86.5), 87)
        self.assertEqual(round_half_up(87.4999), 87)
        self.assertEqual(round_half_up(0.5), 1)

    def test_breakdown_dict_round_trip(self) -> None:
        score = compute_score(0.9, 0.85, ScoreConfig())
        self.assertEqual(ScoreBreakdown.from_dict(score.to_dict()), score)


if __name__ == "__main__":
    unittest.main()
