from __future__ import annotations

import inspect
import json
import logging
import time
import uuid
from functools import lru_cache
from typing import Any, Callable, Sequence

from app.ai.config import load_ai_config
from app.ai.factory import get_ai_client
from app.analytics.db import log_synthesis_run
from app.core.config import settings
from app.core.identity_store import IdentityStore, get_identity_store
from app.core.user_locks import user_lock
from app.rag.context import CandidateSet
from app.rag.retriever import ClaimRetriever
from app.schemas.identity import (
    ClaimUpdate,
    EvidenceItem,
    SynthesisProgress,
    SynthesisResult,
    SynthesisWarning,
)
from app.semantic.embeddings import EmbeddingProvider, get_embedding_provider
from app.services.claim_writer import ClaimWriter, WriteOutcome
from app.services.decision_service import BatchDecisionMaker, DecisionParseError

logger = logging.getLogger("app.synthesis")

ProgressCallback = Callable[[SynthesisProgress], Any]
ClaimUpdateCallback = Callable[[ClaimUpdate], Any]
WarningCallback = Callable[[SynthesisWarning], Any]


class SynthesisPreconditionError(ValueError):
    """Raised before any work starts when the run has nothing valid to process."""


async def _emit(callback: Callable[[Any], Any] | None, payload: Any) -> None:
    if callback is None:
        return
    try:
        result = callback(payload)
        if inspect.isawaitable(result):
            await result
    except Exception:  # noqa: BLE001 - a caller callback must not abort the run
        logger.exception(
            json.dumps({"event": "synthesis_callback_error", "payload": type(payload).__name__})
        )


def validate_evidence(user_id: str, evidence_items: Sequence[EvidenceItem]) -> None:
    if not (user_id or "").strip():
        raise SynthesisPreconditionError("user_id is required.")
    if not evidence_items:
        raise SynthesisPreconditionError("No evidence items to synthesize.")

    missing = [item.id for item in evidence_items if not item.embedding]
    if missing:
        raise SynthesisPreconditionError(
            f"Evidence is missing embeddings ({len(missing)} items, first: {missing[0]})."
        )

    dimensions = {len(item.embedding) for item in evidence_items}
    if len(dimensions) > 1:
        raise SynthesisPreconditionError(
            f"Evidence embeddings have inconsistent dimensions: {sorted(dimensions)}."
        )

    seen: set[str] = set()
    for item in evidence_items:
        if item.id in seen:
            raise SynthesisPreconditionError(f"Duplicate evidence id '{item.id}'.")
        seen.add(item.id)


def split_batches(items: Sequence[EvidenceItem], batch_size: int) -> list[list[EvidenceItem]]:
    if batch_size <= 0:
        raise ValueError("batch_size must be positive")
    return [list(items[i : i + batch_size]) for i in range(0, len(items), batch_size)]


class SynthesisEngine:
    """Merges new evidence into a user's claim set, one sequential batch at a time.

    Each batch retrieves relevant claims per evidence item, merges them with
    the claims created earlier in the run, asks the model for one decision per
    item, and applies those decisions. Batch failures become warnings; only
    precondition violations are raised.
    """

    def __init__(
        self,
        retriever: ClaimRetriever,
        decision_maker: BatchDecisionMaker,
        store: IdentityStore,
        embedder: EmbeddingProvider,
        *,
        batch_size: int = 10,
    ):
        if batch_size <= 0:
            raise ValueError("batch_size must be positive")
        self.retriever = retriever
        self.decision_maker = decision_maker
        self.store = store
        self.embedder = embedder
        self.batch_size = batch_size

    async def run(
        self,
        user_id: str,
        evidence_items: Sequence[EvidenceItem],
        on_progress: ProgressCallback | None = None,
        on_claim_update: ClaimUpdateCallback | None = None,
        *,
        on_warning: WarningCallback | None = None,
    ) -> SynthesisResult:
        validate_evidence(user_id, evidence_items)
        async with user_lock(user_id):
            return await self._run(
                user_id,
                list(evidence_items),
                on_progress=on_progress,
                on_claim_update=on_claim_update,
                on_warning=on_warning,
            )

    async def _run(
        self,
        user_id: str,
        evidence_items: list[EvidenceItem],
        *,
        on_progress: ProgressCallback | None,
        on_claim_update: ClaimUpdateCallback | None,
        on_warning: WarningCallback | None,
    ) -> SynthesisResult:
        run_id = uuid.uuid4().hex[:12]
        started_at = time.perf_counter()
        batches = split_batches(evidence_items, self.batch_size)
        result = SynthesisResult(batches_total=len(batches))
        candidates = CandidateSet()
        writer = ClaimWriter(self.store, self.embedder, user_id=user_id, candidates=candidates)

        logger.info(
            json.dumps(
                {
                    "event": "synthesis_start",
                    "run_id": run_id,
                    "evidence_count": len(evidence_items),
                    "batches": len(batches),
                    "batch_size": self.batch_size,
                }
            )
        )

        async def warn(warning: SynthesisWarning) -> None:
            result.warnings.append(warning)
            await _emit(on_warning, warning)

        for index, batch in enumerate(batches, start=1):
            batch_started = time.perf_counter()
            resolved: set[str] = set()
            stage = "retrieving"

            async def on_outcome(outcome: WriteOutcome, batch_index: int = index) -> None:
                resolved.add(outcome.evidence_id)
                if outcome.action == "unresolved":
                    result.items_unresolved += 1
                    await warn(
                        SynthesisWarning(
                            stage="write",
                            message=outcome.reason or "evidence left unresolved",
                            batch=batch_index,
                            evidence_id=outcome.evidence_id,
                        )
                    )
                    return
                if outcome.action == "created":
                    result.claims_created += 1
                else:
                    result.claims_updated += 1
                await _emit(on_claim_update, ClaimUpdate(label=outcome.label or "", action=outcome.action))

            try:
                retrievals = await self.retriever.retrieve_many(user_id, batch)
                for retrieval in retrievals:
                    if retrieval.error is not None:
                        await warn(
                            SynthesisWarning(
                                stage="retrieval",
                                message=f"Claim retrieval failed, continuing without prior claims: {retrieval.error}",
                                batch=index,
                                evidence_id=retrieval.evidence_id,
                            )
                        )
                context = candidates.context_for([retrieval.claims for retrieval in retrievals])

                stage = "deciding"
                decisions = await self.decision_maker.decide(
                    batch, context.claims, run_id=run_id, batch_index=index
                )

                stage = "writing"
                await writer.apply(batch, decisions, context, on_outcome)
                status = "success"
            except DecisionParseError as exc:
                status = "failed"
                result.batches_failed += 1
                await warn(
                    SynthesisWarning(
                        stage="decision",
                        message=f"Batch decisions discarded ({exc.code}): {exc}",
                        batch=index,
                    )
                )
            except Exception as exc:  # noqa: BLE001 - one batch must not abort the run
                status = "failed"
                result.batches_failed += 1
                logger.exception(
                    json.dumps(
                        {
                            "event": "synthesis_batch_error",
                            "run_id": run_id,
                            "batch": index,
                            "stage": stage,
                            "error": str(exc),
                        }
                    )
                )
                await warn(
                    SynthesisWarning(
                        stage="batch",
                        message=f"Batch failed while {stage}: {exc}",
                        batch=index,
                    )
                )

            if status == "failed":
                result.items_unresolved += sum(1 for item in batch if item.id not in resolved)

            logger.info(
                json.dumps(
                    {
                        "event": "synthesis_batch",
                        "run_id": run_id,
                        "batch": index,
                        "batches": len(batches),
                        "evidence_count": len(batch),
                        "status": status,
                        "claims_created": result.claims_created,
                        "claims_updated": result.claims_updated,
                        "duration_ms": int((time.perf_counter() - batch_started) * 1000),
                    }
                )
            )
            await _emit(on_progress, SynthesisProgress(current=index, total=len(batches)))

        latency_ms = int((time.perf_counter() - started_at) * 1000)
        logger.info(
            json.dumps(
                {
                    "event": "synthesis_complete",
                    "run_id": run_id,
                    "claims_created": result.claims_created,
                    "claims_updated": result.claims_updated,
                    "batches_failed": result.batches_failed,
                    "items_unresolved": result.items_unresolved,
                    "warnings": len(result.warnings),
                    "duration_ms": latency_ms,
                }
            )
        )
        try:
            log_synthesis_run(
                run_id=run_id,
                user_id=user_id,
                evidence_count=len(evidence_items),
                batches_total=result.batches_total,
                batches_failed=result.batches_failed,
                claims_created=result.claims_created,
                claims_updated=result.claims_updated,
                items_unresolved=result.items_unresolved,
                warning_count=len(result.warnings),
                status="partial" if result.warnings else "success",
                latency_ms=latency_ms,
            )
        except Exception:  # pragma: no cover - analytics must not break synthesis
            logger.debug("synthesis_run_logging_failed", exc_info=True)
        return result


@lru_cache(maxsize=1)
def get_synthesis_engine() -> SynthesisEngine:
    store = get_identity_store()
    retriever = ClaimRetriever(
        store,
        similarity_threshold=settings.retrieval_similarity_threshold,
        max_claims=settings.retrieval_max_claims,
    )
    decision_maker = BatchDecisionMaker(
        get_ai_client(),
        max_output_tokens=load_ai_config().max_output_tokens,
    )
    return SynthesisEngine(
        retriever,
        decision_maker,
        store,
        get_embedding_provider(),
        batch_size=settings.synthesis_batch_size,
    )


async def synthesize(
    user_id: str,
    evidence_items: Sequence[EvidenceItem],
    on_progress: ProgressCallback | None = None,
    on_claim_update: ClaimUpdateCallback | None = None,
    *,
    on_warning: WarningCallback | None = None,
) -> SynthesisResult:
    """Entry point for upload pipelines; see ``SynthesisEngine.run``."""
    return await get_synthesis_engine().run(
        user_id,
        evidence_items,
        on_progress,
        on_claim_update,
        on_warning=on_warning,
    )
