import os
import sys
import tempfile
import unittest
from pathlib import Path

PROJECT_ROOT = Path(__file__).resolve().parents[1]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

os.environ.setdefault("ANALYTICS_ENABLED", "0")

from app.core.identity_store import IdentityStore, IdentityStoreError
from app.schemas.identity import EvidenceItem


def _evidence(evidence_id: str, text: str = "Built APIs in Python") -> EvidenceItem:
    return EvidenceItem(id=evidence_id, text=text, type="skill_listed", embedding=[1.0, 0.0, 0.0])


class IdentityStoreTests(unittest.TestCase):
    def setUp(self):
        self.store = IdentityStore(":memory:")
        self.addCleanup(self.store.close)

    def _create(self, user_id="user-1", label="Python", embedding=(1.0, 0.0, 0.0), evidence_id="e1"):
        return self.store.create_claim_with_evidence(
            user_id=user_id,
            claim_type="skill",
            label=label,
            description=f"{label} experience",
            embedding=list(embedding),
            evidence=_evidence(evidence_id),
            strength="strong",
        )

    def test_create_claim_stores_link_and_confidence(self):
        claim = self._create()

        self.assertEqual(claim.label, "Python")
        self.assertEqual(claim.evidence_count, 1)
        self.assertEqual(claim.confidence, 0.6)
        links = self.store.get_links(claim.id)
        self.assertEqual([(link.evidence_id, link.strength) for link in links], [("e1", "strong")])

    def test_link_upsert_is_idempotent_per_evidence_and_claim(self):
        claim = self._create()

        self.store.link_evidence(user_id="user-1", claim_id=claim.id, evidence=_evidence("e1"), strength="medium")
        self.store.link_evidence(user_id="user-1", claim_id=claim.id, evidence=_evidence("e1"), strength="weak")

        links = self.store.get_links(claim.id)
        self.assertEqual(len(links), 1)
        self.assertEqual(links[0].strength, "weak")
        self.assertEqual(self.store.get_claim(claim.id).confidence, 0.6)

    def test_new_evidence_raises_confidence_and_updated_at(self):
        claim = self._create()

        updated = self.store.link_evidence(
            user_id="user-1", claim_id=claim.id, evidence=_evidence("e2"), strength="strong"
        )

        self.assertEqual(updated.evidence_count, 2)
        self.assertEqual(updated.confidence, 0.84)
        self.assertGreaterEqual(updated.updated_at, claim.updated_at)

    def test_link_to_other_users_claim_is_rejected(self):
        claim = self._create(user_id="owner")

        with self.assertRaises(IdentityStoreError):
            self.store.link_evidence(
                user_id="intruder", claim_id=claim.id, evidence=_evidence("e9"), strength="weak"
            )
        self.assertEqual(len(self.store.get_links(claim.id)), 1)

    def test_match_claims_is_user_scoped_thresholded_and_ranked(self):
        self._create(label="Python", embedding=(1.0, 0.0, 0.0), evidence_id="e1")
        self._create(label="Data Engineering", embedding=(0.8, 0.6, 0.0), evidence_id="e2")
        self._create(label="Public Speaking", embedding=(0.0, 0.0, 1.0), evidence_id="e3")
        self._create(user_id="someone-else", label="Python", embedding=(1.0, 0.0, 0.0), evidence_id="e4")

        rows = self.store.match_claims("user-1", [2.0, 0.0, 0.0], 0.5, 25)

        self.assertEqual([row["label"] for row in rows], ["Python", "Data Engineering"])
        self.assertAlmostEqual(rows[0]["similarity"], 1.0, places=3)
        self.assertAlmostEqual(rows[1]["similarity"], 0.8, places=3)
        self.assertEqual(self.store.match_claims("user-1", [2.0, 0.0, 0.0], 0.5, 1)[0]["label"], "Python")
        self.assertEqual(self.store.match_claims("nobody", [1.0, 0.0, 0.0], 0.5, 25), [])

    def test_index_refreshes_after_new_claim(self):
        self.assertEqual(self.store.match_claims("user-1", [0.0, 1.0, 0.0], 0.5, 25), [])
        self._create(label="SQL", embedding=(0.0, 1.0, 0.0))

        rows = self.store.match_claims("user-1", [0.0, 1.0, 0.0], 0.5, 25)

        self.assertEqual([row["label"] for row in rows], ["SQL"])

    def test_list_claims_orders_by_confidence(self):
        low = self._create(label="Go", evidence_id="e1")
        high = self._create(label="Python", evidence_id="e2")
        self.store.link_evidence(user_id="user-1", claim_id=high.id, evidence=_evidence("e3"), strength="strong")

        claims = self.store.list_claims("user-1")

        self.assertEqual([claim.id for claim in claims], [high.id, low.id])

    def test_find_claim_by_label_ignores_case_and_spacing(self):
        claim = self._create(label="Machine Learning")
        self._create(user_id="someone-else", label="Go", evidence_id="e2")

        self.assertEqual(self.store.find_claim_by_label("user-1", "  machine   learning ").id, claim.id)
        self.assertIsNone(self.store.find_claim_by_label("user-1", "Go"))
        self.assertIsNone(self.store.find_claim_by_label("user-1", "   "))

    def test_create_with_existing_label_links_to_that_claim(self):
        first = self._create(label="React", evidence_id="e1")

        again = self._create(label="react", embedding=(0.0, 0.0, 1.0), evidence_id="e2")

        self.assertEqual(again.id, first.id)
        self.assertEqual(again.evidence_count, 2)
        self.assertEqual(len(self.store.list_claims("user-1")), 1)

    def test_index_cache_is_bounded(self):
        store = IdentityStore(":memory:", max_cached_indexes=2)
        self.addCleanup(store.close)
        for user_id in ("a", "b", "c"):
            store.create_claim_with_evidence(
                user_id=user_id,
                claim_type="skill",
                label="Python",
                description=None,
                embedding=[1.0, 0.0, 0.0],
                evidence=_evidence(f"e-{user_id}"),
                strength="strong",
            )
            self.assertEqual(len(store.match_claims(user_id, [1.0, 0.0, 0.0], 0.5, 5)), 1)

        self.assertEqual(list(store._index_cache), ["b", "c"])
        self.assertEqual(len(store.match_claims("a", [1.0, 0.0, 0.0], 0.5, 5)), 1)
        self.assertEqual(list(store._index_cache), ["c", "a"])

    def test_file_backed_store_persists_between_instances(self):
        with tempfile.TemporaryDirectory() as tmp:
            path = str(Path(tmp) / "nested" / "identity.db")
            first = IdentityStore(path)
            try:
                claim = first.create_claim_with_evidence(
                    user_id="user-1",
                    claim_type="trait",
                    label="Curiosity",
                    description=None,
                    embedding=[0.0, 1.0],
                    evidence=_evidence("e1"),
                    strength="medium",
                )
            finally:
                first.close()

            second = IdentityStore(path)
            try:
                self.assertEqual(second.get_claim(claim.id).label, "Curiosity")
                self.assertEqual(len(second.match_claims("user-1", [0.0, 1.0], 0.5, 5)), 1)
            finally:
                second.close()


if __name__ == "__main__":
    unittest.main()
