import os
import sys
import unittest
from pathlib import Path

PROJECT_ROOT = Path(__file__).resolve().parents[1]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

os.environ.setdefault("ANALYTICS_ENABLED", "0")

from app.rag.retriever import ClaimRetriever
from app.schemas.identity import EvidenceItem


def _row(claim_id: str, similarity: float, **extra) -> dict:
    row = {
        "id": claim_id,
        "type": "skill",
        "label": f"Label {claim_id}",
        "description": None,
        "confidence": 0.5,
        "similarity": similarity,
    }
    row.update(extra)
    return row


class RecordingSearch:
    def __init__(self, rows=None, error=None):
        self.rows = rows or []
        self.error = error
        self.calls = []

    def match_claims(self, user_id, query_embedding, similarity_threshold, max_claims):
        self.calls.append((user_id, list(query_embedding), similarity_threshold, max_claims))
        if self.error is not None:
            raise self.error
        return self.rows


class ClaimRetrieverTests(unittest.IsolatedAsyncioTestCase):
    async def test_passes_bounds_and_filters_rows(self):
        search = RecordingSearch(
            rows=[
                _row("c1", 0.91),
                _row("c2", 0.5),
                _row("c3", 0.73, type="attribute"),
                {"id": "broken"},
            ]
        )
        retriever = ClaimRetriever(search, similarity_threshold=0.5, max_claims=25)

        claims = await retriever.retrieve("user-1", [0.1, 0.2])

        self.assertEqual(search.calls, [("user-1", [0.1, 0.2], 0.5, 25)])
        self.assertEqual([claim.id for claim in claims], ["c1", "c3"])
        self.assertEqual(claims[1].type, "trait")

    async def test_caps_result_count(self):
        search = RecordingSearch(rows=[_row(f"c{i}", 0.9) for i in range(5)])
        retriever = ClaimRetriever(search, max_claims=3)

        claims = await retriever.retrieve("user-1", [1.0])

        self.assertEqual(len(claims), 3)

    async def test_backend_failure_degrades_to_empty(self):
        retriever = ClaimRetriever(RecordingSearch(error=TimeoutError("rpc timeout")))

        with self.assertLogs("app.rag.retriever", level="WARNING") as logs:
            claims = await retriever.retrieve("user-1", [1.0])

        self.assertEqual(claims, [])
        self.assertIn("claim_retrieval_failed", logs.output[0])

    async def test_retrieve_many_keeps_order_and_reports_errors(self):
        class PerItemSearch:
            def match_claims(self, user_id, query_embedding, similarity_threshold, max_claims):
                if query_embedding[0] < 0:
                    raise ConnectionError("reset by peer")
                return [_row(f"c{int(query_embedding[0])}", 0.8)]

        items = [
            EvidenceItem(id="e1", text="a", type="skill_listed", embedding=[1.0]),
            EvidenceItem(id="e2", text="b", type="skill_listed", embedding=[-1.0]),
            EvidenceItem(id="e3", text="c", type="skill_listed", embedding=[3.0]),
        ]

        outcomes = await ClaimRetriever(PerItemSearch()).retrieve_many("user-1", items)

        self.assertEqual([o.evidence_id for o in outcomes], ["e1", "e2", "e3"])
        self.assertEqual([c.id for c in outcomes[0].claims], ["c1"])
        self.assertEqual(outcomes[1].claims, [])
        self.assertIn("reset by peer", outcomes[1].error)
        self.assertIsNone(outcomes[2].error)

    async def test_retrieve_many_with_no_items(self):
        self.assertEqual(await ClaimRetriever(RecordingSearch()).retrieve_many("user-1", []), [])


if __name__ == "__main__":
    unittest.main()
