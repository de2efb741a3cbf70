from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Sequence

from pydantic import ValidationError

from app.core.identity_store import ClaimSearch
from app.schemas.identity import EvidenceItem, RelevantClaim

logger = logging.getLogger(__name__)

DEFAULT_SIMILARITY_THRESHOLD = 0.5
DEFAULT_MAX_CLAIMS = 25


@dataclass(frozen=True)
class RetrievalOutcome:
    evidence_id: str
    claims: list[RelevantClaim] = field(default_factory=list)
    error: str | None = None


class ClaimRetriever:
    """Similarity-bounded lookup of a user's existing claims, one evidence embedding at a time."""

    def __init__(
        self,
        search: ClaimSearch,
        *,
        similarity_threshold: float = DEFAULT_SIMILARITY_THRESHOLD,
        max_claims: int = DEFAULT_MAX_CLAIMS,
    ):
        self._search = search
        self.similarity_threshold = similarity_threshold
        self.max_claims = max_claims

    async def _search_claims(self, user_id: str, embedding: Sequence[float]) -> list[RelevantClaim]:
        rows = await asyncio.to_thread(
            self._search.match_claims,
            user_id,
            embedding,
            self.similarity_threshold,
            self.max_claims,
        )
        claims: list[RelevantClaim] = []
        for row in rows or []:
            try:
                claim = RelevantClaim.model_validate(row)
            except ValidationError:
                logger.warning("claim_retrieval_row_invalid user_id=%s row_id=%s", user_id, row.get("id"))
                continue
            if claim.similarity <= self.similarity_threshold:
                continue
            claims.append(claim)
            if len(claims) >= self.max_claims:
                break
        return claims

    async def retrieve(self, user_id: str, embedding: Sequence[float]) -> list[RelevantClaim]:
        """Relevant claims for one embedding; a backend failure reads as "nothing relevant"."""
        try:
            return await self._search_claims(user_id, embedding)
        except Exception as exc:  # noqa: BLE001 - retrieval outages degrade to an empty result
            logger.warning("claim_retrieval_failed user_id=%s: %s", user_id, exc)
            return []

    async def _retrieve_outcome(self, user_id: str, item: EvidenceItem) -> RetrievalOutcome:
        try:
            claims = await self._search_claims(user_id, item.embedding)
        except Exception as exc:  # noqa: BLE001 - retrieval outages degrade to an empty result
            logger.warning(
                "claim_retrieval_failed user_id=%s evidence_id=%s: %s", user_id, item.id, exc
            )
            return RetrievalOutcome(evidence_id=item.id, error=str(exc) or exc.__class__.__name__)
        return RetrievalOutcome(evidence_id=item.id, claims=claims)

    async def retrieve_many(self, user_id: str, items: Sequence[EvidenceItem]) -> list[RetrievalOutcome]:
        """One retrieval per evidence item, issued concurrently, results in input order."""
        if not items:
            return []
        return list(
            await asyncio.gather(*(self._retrieve_outcome(user_id, item) for item in items))
        )
