from __future__ import annotations

import logging
import os
import sqlite3
import threading
import uuid
from collections import OrderedDict
from contextlib import contextmanager
from datetime import datetime, timezone
from functools import lru_cache
from typing import Any, Iterator, Protocol, Sequence

import faiss
import numpy as np

from app.core.config import settings
from app.rag.context import normalize_label
from app.schemas.identity import ClaimEvidence, EvidenceItem, IdentityClaim
from app.semantic.confidence import (
    EvidenceWeightInput,
    calculate_claim_confidence,
    reinforce_confidence,
)

logger = logging.getLogger(__name__)


class IdentityStoreError(RuntimeError):
    pass


class ClaimSearch(Protocol):
    def match_claims(
        self,
        user_id: str,
        query_embedding: Sequence[float],
        similarity_threshold: float,
        max_claims: int,
    ) -> list[dict[str, Any]]:
        """Return the user's claims ranked by cosine similarity to the query."""


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


def _to_blob(embedding: Sequence[float] | None) -> bytes | None:
    if not embedding:
        return None
    return np.asarray(embedding, dtype="float32").tobytes()


def _from_blob(blob: bytes | None) -> np.ndarray | None:
    if not blob:
        return None
    return np.frombuffer(blob, dtype="float32")


def _parse_dt(value: str | None) -> datetime | None:
    if not value:
        return None
    return datetime.fromisoformat(value)


_SCHEMA = (
    """
    CREATE TABLE IF NOT EXISTS evidence (
        id TEXT PRIMARY KEY,
        user_id TEXT NOT NULL,
        document_id TEXT,
        evidence_type TEXT NOT NULL,
        text TEXT NOT NULL,
        source_type TEXT NOT NULL DEFAULT 'resume',
        evidence_date TEXT,
        created_at TEXT NOT NULL
    );
    """,
    """
    CREATE TABLE IF NOT EXISTS identity_claims (
        id TEXT PRIMARY KEY,
        user_id TEXT NOT NULL,
        type TEXT NOT NULL,
        label TEXT NOT NULL,
        description TEXT,
        confidence REAL NOT NULL DEFAULT 0.5,
        embedding BLOB,
        created_at TEXT NOT NULL,
        updated_at TEXT NOT NULL
    );
    """,
    """
    CREATE TABLE IF NOT EXISTS claim_evidence (
        claim_id TEXT NOT NULL REFERENCES identity_claims(id) ON DELETE CASCADE,
        evidence_id TEXT NOT NULL REFERENCES evidence(id) ON DELETE CASCADE,
        strength TEXT NOT NULL CHECK (strength IN ('weak', 'medium', 'strong')),
        created_at TEXT NOT NULL,
        updated_at TEXT NOT NULL,
        PRIMARY KEY (claim_id, evidence_id)
    );
    """,
    "CREATE INDEX IF NOT EXISTS idx_identity_claims_user ON identity_claims (user_id);",
    "CREATE INDEX IF NOT EXISTS idx_evidence_user ON evidence (user_id);",
    "CREATE INDEX IF NOT EXISTS idx_claim_evidence_evidence ON claim_evidence (evidence_id);",
)


class IdentityStore:
    """Sqlite-backed claims, evidence and claim/evidence links for all users.

    Claim embeddings are kept as float32 blobs. Similarity search builds a
    per-user faiss inner-product index over L2-normalized vectors and caches
    it until that user's claim set changes.
    """

    def __init__(self, db_path: str, *, max_cached_indexes: int = 256):
        self.db_path = db_path
        self._lock = threading.RLock()
        self._max_cached_indexes = max(1, max_cached_indexes)
        self._index_cache: OrderedDict[str, tuple[list[str], faiss.Index]] = OrderedDict()

        directory = os.path.dirname(db_path)
        if directory and db_path != ":memory:":
            os.makedirs(directory, exist_ok=True)

        self._conn = sqlite3.connect(
            db_path,
            check_same_thread=False,
            timeout=5,
            isolation_level=None,
        )
        if db_path != ":memory:":
            self._conn.execute("PRAGMA journal_mode=WAL;")
            self._conn.execute("PRAGMA synchronous=NORMAL;")
        self._conn.execute("PRAGMA busy_timeout=5000;")
        self._conn.execute("PRAGMA foreign_keys=ON;")
        for statement in _SCHEMA:
            self._conn.execute(statement)

    def close(self) -> None:
        with self._lock:
            self._conn.close()
            self._index_cache.clear()

    @contextmanager
    def _transaction(self) -> Iterator[sqlite3.Connection]:
        with self._lock:
            try:
                self._conn.execute("BEGIN IMMEDIATE;")
            except sqlite3.Error as exc:
                raise IdentityStoreError(f"Could not open transaction: {exc}") from exc
            try:
                yield self._conn
            except sqlite3.Error as exc:
                self._conn.execute("ROLLBACK;")
                raise IdentityStoreError(str(exc)) from exc
            except BaseException:
                self._conn.execute("ROLLBACK;")
                raise
            else:
                self._conn.execute("COMMIT;")

    # -- similarity search -------------------------------------------------

    def _user_index(self, user_id: str, dim: int) -> tuple[list[str], faiss.Index] | None:
        cached = self._index_cache.get(user_id)
        if cached is not None and cached[1].d == dim:
            self._index_cache.move_to_end(user_id)
            return cached

        cur = self._conn.execute(
            "SELECT id, embedding FROM identity_claims WHERE user_id = ? AND embedding IS NOT NULL",
            (user_id,),
        )
        ids: list[str] = []
        vectors: list[np.ndarray] = []
        for claim_id, blob in cur.fetchall():
            vector = _from_blob(blob)
            if vector is None or vector.shape[0] != dim:
                continue
            ids.append(claim_id)
            vectors.append(vector)

        if not ids:
            return None

        matrix = np.ascontiguousarray(np.vstack(vectors), dtype="float32")
        faiss.normalize_L2(matrix)
        index = faiss.IndexFlatIP(dim)
        index.add(matrix)
        self._index_cache[user_id] = (ids, index)
        self._index_cache.move_to_end(user_id)
        while len(self._index_cache) > self._max_cached_indexes:
            self._index_cache.popitem(last=False)
        return ids, index

    def match_claims(
        self,
        user_id: str,
        query_embedding: Sequence[float],
        similarity_threshold: float,
        max_claims: int,
    ) -> list[dict[str, Any]]:
        if max_claims <= 0 or not query_embedding:
            return []

        query = np.ascontiguousarray(
            np.array(query_embedding, dtype="float32").reshape(1, -1)
        )
        faiss.normalize_L2(query)

        with self._lock:
            entry = self._user_index(user_id, query.shape[1])
            if entry is None:
                return []
            ids, index = entry
            k = min(max_claims, len(ids))
            scores, idxs = index.search(query, k)

            ranked: list[tuple[str, float]] = []
            for score, idx in zip(scores[0].tolist(), idxs[0].tolist()):
                if idx < 0 or idx >= len(ids):
                    continue
                if score <= similarity_threshold:
                    continue
                ranked.append((ids[idx], float(score)))

            if not ranked:
                return []

            placeholders = ",".join("?" for _ in ranked)
            cur = self._conn.execute(
                f"""
                SELECT id, type, label, description, confidence
                FROM identity_claims
                WHERE user_id = ? AND id IN ({placeholders})
                """,
                (user_id, *[claim_id for claim_id, _ in ranked]),
            )
            rows = {row[0]: row for row in cur.fetchall()}

        results: list[dict[str, Any]] = []
        for claim_id, similarity in ranked:
            row = rows.get(claim_id)
            if row is None:
                continue
            results.append(
                {
                    "id": row[0],
                    "type": row[1],
                    "label": row[2],
                    "description": row[3],
                    "confidence": float(row[4]),
                    "similarity": round(similarity, 4),
                }
            )
        return results

    # -- reads -------------------------------------------------------------

    def _row_to_claim(self, row: tuple) -> IdentityClaim:
        return IdentityClaim(
            id=row[0],
            user_id=row[1],
            type=row[2],
            label=row[3],
            description=row[4],
            confidence=float(row[5]),
            created_at=datetime.fromisoformat(row[6]),
            updated_at=datetime.fromisoformat(row[7]),
            evidence_count=int(row[8] or 0),
        )

    def get_claim(self, claim_id: str) -> IdentityClaim | None:
        with self._lock:
            cur = self._conn.execute(
                """
                SELECT c.id, c.user_id, c.type, c.label, c.description, c.confidence,
                       c.created_at, c.updated_at,
                       (SELECT COUNT(*) FROM claim_evidence ce WHERE ce.claim_id = c.id)
                FROM identity_claims c
                WHERE c.id = ?
                """,
                (claim_id,),
            )
            row = cur.fetchone()
        return self._row_to_claim(row) if row else None

    def _claim_id_for_label(self, conn: sqlite3.Connection, user_id: str, label: str) -> str | None:
        key = normalize_label(label)
        if not key:
            return None
        cur = conn.execute(
            "SELECT id, label FROM identity_claims WHERE user_id = ? ORDER BY created_at, id",
            (user_id,),
        )
        for claim_id, stored_label in cur.fetchall():
            if normalize_label(stored_label) == key:
                return claim_id
        return None

    def find_claim_by_label(self, user_id: str, label: str) -> IdentityClaim | None:
        """Oldest claim of the user whose label matches ignoring case and spacing."""
        with self._lock:
            claim_id = self._claim_id_for_label(self._conn, user_id, label)
            return self.get_claim(claim_id) if claim_id else None

    def list_claims(self, user_id: str, limit: int = 200) -> list[IdentityClaim]:
        with self._lock:
            cur = self._conn.execute(
                """
                SELECT c.id, c.user_id, c.type, c.label, c.description, c.confidence,
                       c.created_at, c.updated_at,
                       (SELECT COUNT(*) FROM claim_evidence ce WHERE ce.claim_id = c.id)
                FROM identity_claims c
                WHERE c.user_id = ?
                ORDER BY c.confidence DESC, c.updated_at DESC
                LIMIT ?
                """,
                (user_id, limit),
            )
            rows = cur.fetchall()
        return [self._row_to_claim(row) for row in rows]

    def get_links(self, claim_id: str) -> list[ClaimEvidence]:
        with self._lock:
            cur = self._conn.execute(
                """
                SELECT claim_id, evidence_id, strength, created_at
                FROM claim_evidence
                WHERE claim_id = ?
                ORDER BY created_at
                """,
                (claim_id,),
            )
            rows = cur.fetchall()
        return [
            ClaimEvidence(
                claim_id=row[0],
                evidence_id=row[1],
                strength=row[2],
                created_at=datetime.fromisoformat(row[3]),
            )
            for row in rows
        ]

    # -- writes ------------------------------------------------------------

    def _save_evidence(self, conn: sqlite3.Connection, user_id: str, evidence: EvidenceItem, now: str) -> None:
        conn.execute(
            """
            INSERT INTO evidence (
                id, user_id, document_id, evidence_type, text, source_type, evidence_date, created_at
            ) VALUES (?, ?, ?, ?, ?, ?, ?, ?)
            ON CONFLICT(id) DO NOTHING
            """,
            (
                evidence.id,
                user_id,
                evidence.document_id,
                evidence.type,
                evidence.text,
                evidence.source_type,
                evidence.evidence_date.isoformat() if evidence.evidence_date else None,
                now,
            ),
        )

    def _upsert_link(
        self, conn: sqlite3.Connection, claim_id: str, evidence_id: str, strength: str, now: str
    ) -> None:
        conn.execute(
            """
            INSERT INTO claim_evidence (claim_id, evidence_id, strength, created_at, updated_at)
            VALUES (?, ?, ?, ?, ?)
            ON CONFLICT(claim_id, evidence_id)
            DO UPDATE SET strength = excluded.strength, updated_at = excluded.updated_at
            """,
            (claim_id, evidence_id, strength, now, now),
        )

    def _recalculate_confidence(self, conn: sqlite3.Connection, claim_id: str, now: str) -> None:
        row = conn.execute(
            "SELECT type, confidence FROM identity_claims WHERE id = ?",
            (claim_id,),
        ).fetchone()
        if row is None:
            raise IdentityStoreError(f"Claim '{claim_id}' does not exist.")
        claim_type, previous = row[0], float(row[1])

        cur = conn.execute(
            """
            SELECT ce.strength, e.source_type, e.evidence_date
            FROM claim_evidence ce
            JOIN evidence e ON e.id = ce.evidence_id
            WHERE ce.claim_id = ?
            """,
            (claim_id,),
        )
        items = [
            EvidenceWeightInput(
                strength=strength,
                claim_type=claim_type,
                source_type=source_type or "resume",
                evidence_date=_parse_dt(evidence_date),
            )
            for strength, source_type, evidence_date in cur.fetchall()
        ]
        confidence = reinforce_confidence(previous, calculate_claim_confidence(items))
        conn.execute(
            "UPDATE identity_claims SET confidence = ?, updated_at = ? WHERE id = ?",
            (confidence, now, claim_id),
        )

    def create_claim_with_evidence(
        self,
        *,
        user_id: str,
        claim_type: str,
        label: str,
        description: str | None,
        embedding: Sequence[float] | None,
        evidence: EvidenceItem,
        strength: str,
    ) -> IdentityClaim:
        """Insert a claim with its first evidence link.

        A claim of the same user with an equal label is reused instead, so the
        evidence is linked to it and no second claim is written.
        """
        now = _utc_now().isoformat()
        with self._transaction() as conn:
            existing_id = self._claim_id_for_label(conn, user_id, label)
            if existing_id is not None:
                self._save_evidence(conn, user_id, evidence, now)
                self._upsert_link(conn, existing_id, evidence.id, strength, now)
                self._recalculate_confidence(conn, existing_id, now)
                claim_id = existing_id
            else:
                claim_id = self._insert_claim(
                    conn, user_id, claim_type, label, description, embedding, evidence, strength, now
                )

        claim = self.get_claim(claim_id)
        if claim is None:
            raise IdentityStoreError(f"Claim '{claim_id}' vanished after insert.")
        return claim

    def _insert_claim(
        self,
        conn: sqlite3.Connection,
        user_id: str,
        claim_type: str,
        label: str,
        description: str | None,
        embedding: Sequence[float] | None,
        evidence: EvidenceItem,
        strength: str,
        now: str,
    ) -> str:
        claim_id = str(uuid.uuid4())
        conn.execute(
            """
            INSERT INTO identity_claims (
                id, user_id, type, label, description, confidence, embedding, created_at, updated_at
            ) VALUES (?, ?, ?, ?, ?, 0.0, ?, ?, ?)
            """,
            (claim_id, user_id, claim_type, label, description, _to_blob(embedding), now, now),
        )
        self._save_evidence(conn, user_id, evidence, now)
        self._upsert_link(conn, claim_id, evidence.id, strength, now)
        self._recalculate_confidence(conn, claim_id, now)
        self._index_cache.pop(user_id, None)
        return claim_id

    def link_evidence(
        self,
        *,
        user_id: str,
        claim_id: str,
        evidence: EvidenceItem,
        strength: str,
    ) -> IdentityClaim:
        now = _utc_now().isoformat()
        with self._transaction() as conn:
            owner = conn.execute(
                "SELECT user_id FROM identity_claims WHERE id = ?",
                (claim_id,),
            ).fetchone()
            if owner is None or owner[0] != user_id:
                raise IdentityStoreError(f"Claim '{claim_id}' not found for user.")
            self._save_evidence(conn, user_id, evidence, now)
            self._upsert_link(conn, claim_id, evidence.id, strength, now)
            self._recalculate_confidence(conn, claim_id, now)

        claim = self.get_claim(claim_id)
        if claim is None:
            raise IdentityStoreError(f"Claim '{claim_id}' vanished after update.")
        return claim


@lru_cache(maxsize=1)
def get_identity_store() -> IdentityStore:
    return IdentityStore(settings.identity_db_path)
