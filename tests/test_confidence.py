import os
import sys
import unittest
from datetime import datetime, timezone
from pathlib import Path

PROJECT_ROOT = Path(__file__).resolve().parents[1]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

os.environ.setdefault("ANALYTICS_ENABLED", "0")

from app.core.config.synthesis import get_synthesis_config, get_synthesis_value
from app.semantic.confidence import (
    EvidenceWeightInput,
    calculate_claim_confidence,
    recency_decay,
    reinforce_confidence,
)

NOW = datetime(2026, 1, 1, tzinfo=timezone.utc)


class SynthesisConfigTests(unittest.TestCase):
    def test_loader_and_value_lookup(self):
        config = get_synthesis_config()
        self.assertIsInstance(config, dict)
        self.assertEqual(get_synthesis_value("confidence.max_confidence"), 0.95)
        self.assertIsNone(get_synthesis_value("confidence.half_life_years.education"))
        self.assertEqual(get_synthesis_value("confidence.missing.key", "fallback"), "fallback")


class ConfidenceTests(unittest.TestCase):
    def test_base_confidence_grows_with_evidence_count(self):
        one = [EvidenceWeightInput(strength="medium", claim_type="skill")]
        two = one * 2
        four = one * 4

        self.assertEqual(calculate_claim_confidence(one, NOW), 0.5)
        self.assertEqual(calculate_claim_confidence(two, NOW), 0.7)
        self.assertEqual(calculate_claim_confidence(four, NOW), 0.9)

    def test_strength_and_source_weights(self):
        strong = [EvidenceWeightInput(strength="strong", claim_type="skill")]
        weak_story = [EvidenceWeightInput(strength="weak", claim_type="skill", source_type="story")]

        self.assertEqual(calculate_claim_confidence(strong, NOW), 0.6)
        self.assertEqual(calculate_claim_confidence(weak_story, NOW), 0.28)

    def test_capped_at_max_confidence(self):
        items = [
            EvidenceWeightInput(strength="strong", claim_type="certification", source_type="certification")
        ] * 5

        self.assertEqual(calculate_claim_confidence(items, NOW), 0.95)

    def test_recency_decay_uses_half_life_per_claim_type(self):
        four_years_ago = datetime(2022, 1, 1, 6, tzinfo=timezone.utc)

        self.assertAlmostEqual(recency_decay(four_years_ago, "skill", NOW), 0.5, places=2)
        self.assertEqual(recency_decay(four_years_ago, "education", NOW), 1.0)
        self.assertEqual(recency_decay(None, "skill", NOW), 1.0)
        self.assertGreater(recency_decay(four_years_ago, "trait", NOW), 0.8)

    def test_no_evidence_scores_zero(self):
        self.assertEqual(calculate_claim_confidence([], NOW), 0.0)

    def test_reinforcement_never_lowers_confidence(self):
        self.assertEqual(reinforce_confidence(0.6, 0.35), 0.6)
        self.assertEqual(reinforce_confidence(0.6, 0.84), 0.84)
        self.assertEqual(reinforce_confidence(0.0, 2.0), 0.95)
        previous = 0.0
        for candidate in (0.5, 0.3, 0.7, 0.1, 0.95, 0.2):
            current = reinforce_confidence(previous, candidate)
            self.assertGreaterEqual(current, previous)
            self.assertLessEqual(current, 0.95)
            previous = current


if __name__ == "__main__":
    unittest.main()
