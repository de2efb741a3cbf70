from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Awaitable, Callable, Literal, Sequence

from app.core.identity_store import IdentityStore
from app.rag.context import BatchContext, CandidateSet, normalize_label
from app.schemas.identity import (
    EVIDENCE_TO_CLAIM_TYPE,
    EvidenceItem,
    IdentityClaim,
    NewClaimProposal,
    RelevantClaim,
)
from app.semantic.embeddings import EmbeddingProvider
from app.services.decision_service import BatchDecisions

logger = logging.getLogger(__name__)

OutcomeAction = Literal["created", "updated", "unresolved"]


@dataclass(frozen=True)
class WriteOutcome:
    evidence_id: str
    action: OutcomeAction
    label: str | None = None
    claim_id: str | None = None
    reason: str | None = None


OutcomeCallback = Callable[[WriteOutcome], Awaitable[None]]


def _as_relevant(claim: IdentityClaim) -> RelevantClaim:
    return RelevantClaim(
        id=claim.id,
        type=claim.type,
        label=claim.label,
        description=claim.description,
        confidence=claim.confidence,
        similarity=0.0,
    )


class ClaimWriter:
    """Applies one batch of decisions for a user, one store transaction per evidence item.

    Claims created here are registered in the run's ``CandidateSet`` so later
    items and later batches resolve them by label instead of creating them again.
    """

    def __init__(
        self,
        store: IdentityStore,
        embedder: EmbeddingProvider,
        *,
        user_id: str,
        candidates: CandidateSet,
    ):
        self._store = store
        self._embedder = embedder
        self._user_id = user_id
        self._candidates = candidates

    async def _link(
        self, evidence: EvidenceItem, claim: RelevantClaim, strength: str
    ) -> WriteOutcome:
        try:
            updated = await asyncio.to_thread(
                self._store.link_evidence,
                user_id=self._user_id,
                claim_id=claim.id,
                evidence=evidence,
                strength=strength,
            )
        except Exception as exc:  # noqa: BLE001 - one failed item must not stop the batch
            logger.warning(
                "claim_link_failed evidence_id=%s claim_id=%s: %s", evidence.id, claim.id, exc
            )
            return WriteOutcome(evidence_id=evidence.id, action="unresolved", reason=f"write failed: {exc}")
        return WriteOutcome(
            evidence_id=evidence.id,
            action="updated",
            label=updated.label,
            claim_id=updated.id,
        )

    async def _create(
        self,
        evidence: EvidenceItem,
        proposal: NewClaimProposal,
        strength: str,
        embedding: list[float] | None,
    ) -> WriteOutcome:
        claim_type = EVIDENCE_TO_CLAIM_TYPE[evidence.type]
        if proposal.type != claim_type:
            logger.debug(
                "claim_type_overridden evidence_id=%s proposed=%s derived=%s",
                evidence.id,
                proposal.type,
                claim_type,
            )
        try:
            created = await asyncio.to_thread(
                self._store.create_claim_with_evidence,
                user_id=self._user_id,
                claim_type=claim_type,
                label=proposal.label,
                description=proposal.description,
                embedding=embedding,
                evidence=evidence,
                strength=strength,
            )
        except Exception as exc:  # noqa: BLE001 - one failed item must not stop the batch
            logger.warning("claim_create_failed evidence_id=%s label=%s: %s", evidence.id, proposal.label, exc)
            return WriteOutcome(evidence_id=evidence.id, action="unresolved", reason=f"write failed: {exc}")

        self._candidates.register(_as_relevant(created))
        return WriteOutcome(
            evidence_id=evidence.id,
            action="created",
            label=created.label,
            claim_id=created.id,
        )

    async def _stored_claim(self, label: str) -> RelevantClaim | None:
        stored = await asyncio.to_thread(self._store.find_claim_by_label, self._user_id, label)
        if stored is None:
            return None
        claim = _as_relevant(stored)
        self._candidates.register(claim)
        return claim

    async def _embed_labels(self, labels: list[str]) -> dict[str, list[float]]:
        vectors = await asyncio.to_thread(self._embedder.embed, labels)
        if len(vectors) != len(labels):
            raise RuntimeError(f"expected {len(labels)} embeddings, got {len(vectors)}")
        return {normalize_label(label): list(vector) for label, vector in zip(labels, vectors)}

    async def apply(
        self,
        batch: Sequence[EvidenceItem],
        decisions: BatchDecisions,
        context: BatchContext,
        on_outcome: OutcomeCallback | None = None,
    ) -> list[WriteOutcome]:
        by_id = {item.id: item for item in batch}
        outcomes: list[WriteOutcome] = []

        async def record(outcome: WriteOutcome) -> None:
            outcomes.append(outcome)
            if on_outcome is not None:
                await on_outcome(outcome)

        for evidence_id in decisions.missing_ids:
            await record(
                WriteOutcome(evidence_id=evidence_id, action="unresolved", reason="no decision returned")
            )

        pending: list[tuple[EvidenceItem, NewClaimProposal, str]] = []
        for decision in decisions.decisions:
            evidence = by_id[decision.evidence_id]
            proposal = decision.new_claim

            if decision.is_ambiguous:
                await record(
                    WriteOutcome(
                        evidence_id=evidence.id,
                        action="unresolved",
                        reason="decision has neither or both of match and new_claim",
                    )
                )
                continue

            if proposal is None:
                claim = context.resolve(decision.match)
                if claim is None:
                    await record(
                        WriteOutcome(
                            evidence_id=evidence.id,
                            action="unresolved",
                            reason=f"matched label '{decision.match}' is not in the claim context",
                        )
                    )
                    continue
                await record(await self._link(evidence, claim, decision.strength))
                continue

            existing = context.resolve(proposal.label)
            if existing is None:
                try:
                    existing = await self._stored_claim(proposal.label)
                except Exception as exc:  # noqa: BLE001 - one failed item must not stop the batch
                    logger.warning(
                        "claim_label_lookup_failed evidence_id=%s label=%s: %s", evidence.id, proposal.label, exc
                    )
                    await record(
                        WriteOutcome(evidence_id=evidence.id, action="unresolved", reason=f"lookup failed: {exc}")
                    )
                    continue
            if existing is not None:
                await record(await self._link(evidence, existing, decision.strength))
                continue
            pending.append((evidence, proposal, decision.strength))

        if not pending:
            return outcomes

        labels: list[str] = []
        for _, proposal, _ in pending:
            if normalize_label(proposal.label) not in {normalize_label(seen) for seen in labels}:
                labels.append(proposal.label)

        try:
            embeddings = await self._embed_labels(labels)
        except Exception as exc:  # noqa: BLE001 - new claims stay unresolved, retried on a later run
            logger.warning("claim_label_embedding_failed count=%s: %s", len(labels), exc)
            for evidence, _, _ in pending:
                await record(
                    WriteOutcome(
                        evidence_id=evidence.id,
                        action="unresolved",
                        reason=f"claim embedding failed: {exc}",
                    )
                )
            return outcomes

        for evidence, proposal, strength in pending:
            # An earlier item in this batch may already have created the same label.
            existing = context.resolve(proposal.label)
            if existing is not None:
                await record(await self._link(evidence, existing, strength))
                continue
            embedding = embeddings.get(normalize_label(proposal.label))
            await record(await self._create(evidence, proposal, strength, embedding))

        return outcomes
