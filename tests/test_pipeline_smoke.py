import os
import sys
import unittest
from pathlib import Path

PROJECT_ROOT = Path(__file__).resolve().parents[1]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

os.environ.setdefault("ANALYTICS_ENABLED", "0")

import app.main  # noqa: F401
from app.core.config.synthesis import get_synthesis_value
from app.services.synthesis_service import split_batches, synthesize  # noqa: F401


class PipelineSmokeTests(unittest.TestCase):
    def test_safe_imports_and_synthesis_config_lookup(self):
        self.assertEqual(get_synthesis_value("confidence.base_by_evidence_count.single"), 0.5)

    def test_routes_are_mounted(self):
        paths = {route.path for route in app.main.app.routes}
        self.assertTrue(
            {"/v1/health", "/v1/identity/synthesize", "/v1/identity/claims", "/v1/analytics/summary"} <= paths
        )

    def test_batches_keep_order_and_size(self):
        self.assertEqual([len(batch) for batch in split_batches(list(range(25)), 10)], [10, 10, 5])
        with self.assertRaises(ValueError):
            split_batches([1], 0)


if __name__ == "__main__":
    unittest.main()
