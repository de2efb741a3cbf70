from __future__ import annotations

import json
import logging
import re
import time
from dataclasses import dataclass, field
from typing import Any, Sequence

from pydantic import ValidationError

from app.ai.types import AIClient
from app.analytics.db import log_ai_analysis_run
from app.rag.prompt import build_batch_messages
from app.schemas.identity import BatchDecision, EvidenceItem, RelevantClaim

logger = logging.getLogger(__name__)

_FENCE_RE = re.compile(r"```(?:json)?\s*", re.IGNORECASE)


class DecisionParseError(RuntimeError):
    def __init__(self, message: str, *, code: str = "invalid_response"):
        super().__init__(message)
        self.code = code


@dataclass
class BatchDecisions:
    decisions: list[BatchDecision] = field(default_factory=list)
    missing_ids: list[str] = field(default_factory=list)


def _strip_fences(content: str) -> str:
    return _FENCE_RE.sub("", content).replace("```", "").strip()


def _extract_items(parsed: Any) -> list[Any]:
    if isinstance(parsed, list):
        return parsed
    if isinstance(parsed, dict):
        for key in ("decisions", "results", "items"):
            value = parsed.get(key)
            if isinstance(value, list):
                return value
        if "evidence_id" in parsed:
            return [parsed]
    raise DecisionParseError("Decision response is not a list of decisions.", code="invalid_schema")


def parse_decisions(content: str | None, batch: Sequence[EvidenceItem]) -> BatchDecisions:
    """Validate a raw model response against the evidence ids of one batch.

    Any structural problem rejects the whole response. Evidence the model
    skipped is reported in ``missing_ids`` rather than failing the batch.
    """
    if not content or not content.strip():
        raise DecisionParseError("Decision response was empty.", code="empty_response")

    try:
        parsed = json.loads(_strip_fences(content))
    except json.JSONDecodeError as exc:
        raise DecisionParseError(f"Decision response is not valid JSON: {exc}", code="invalid_json") from exc

    items = _extract_items(parsed)
    expected_ids = [item.id for item in batch]
    expected = set(expected_ids)
    seen: set[str] = set()
    decisions: list[BatchDecision] = []

    for index, raw in enumerate(items):
        if not isinstance(raw, dict):
            raise DecisionParseError(f"Decision #{index + 1} is not an object.", code="invalid_schema")
        try:
            decision = BatchDecision.model_validate(raw)
        except ValidationError as exc:
            raise DecisionParseError(
                f"Decision #{index + 1} failed validation: {exc.errors()[0].get('msg', 'invalid')}",
                code="invalid_schema",
            ) from exc
        if decision.evidence_id not in expected:
            raise DecisionParseError(
                f"Decision references unknown evidence id '{decision.evidence_id}'.",
                code="unknown_evidence",
            )
        if decision.evidence_id in seen:
            raise DecisionParseError(
                f"Decision repeats evidence id '{decision.evidence_id}'.",
                code="duplicate_evidence",
            )
        seen.add(decision.evidence_id)
        decisions.append(decision)

    missing = [evidence_id for evidence_id in expected_ids if evidence_id not in seen]
    return BatchDecisions(decisions=decisions, missing_ids=missing)


class BatchDecisionMaker:
    def __init__(self, client: AIClient, *, max_output_tokens: int = 2000):
        self._client = client
        self._max_output_tokens = max_output_tokens

    @property
    def model(self) -> str:
        return getattr(self._client, "model", "unknown")

    def _log_call(
        self,
        *,
        run_id: str,
        batch_index: int,
        evidence_count: int,
        context_size: int,
        schema_valid: bool,
        status: str,
        latency_ms: int,
        error_code: str | None = None,
    ) -> None:
        try:
            log_ai_analysis_run(
                run_id=run_id,
                batch_index=batch_index,
                model=self.model,
                evidence_count=evidence_count,
                context_size=context_size,
                schema_valid=schema_valid,
                status=status,
                error_code=error_code,
                latency_ms=latency_ms,
            )
        except Exception:  # pragma: no cover - analytics must not break synthesis
            logger.debug("ai_run_logging_failed", exc_info=True)

    async def decide(
        self,
        batch: Sequence[EvidenceItem],
        context: Sequence[RelevantClaim],
        *,
        run_id: str = "",
        batch_index: int = 0,
    ) -> BatchDecisions:
        """One model call for the whole batch."""
        messages = build_batch_messages(batch, context)
        started = time.perf_counter()
        log_kwargs = {
            "run_id": run_id,
            "batch_index": batch_index,
            "evidence_count": len(batch),
            "context_size": len(context),
        }

        try:
            content = await self._client.complete(messages, max_output_tokens=self._max_output_tokens)
        except Exception as exc:
            self._log_call(
                **log_kwargs,
                schema_valid=False,
                status="error",
                error_code="llm_exception",
                latency_ms=int((time.perf_counter() - started) * 1000),
            )
            raise DecisionParseError(f"Decision call failed: {exc}", code="llm_exception") from exc

        try:
            result = parse_decisions(content, batch)
        except DecisionParseError as exc:
            logger.warning(
                "claim_decision_invalid model=%s batch=%s code=%s content_len=%s",
                self.model,
                batch_index,
                exc.code,
                len(content or ""),
            )
            self._log_call(
                **log_kwargs,
                schema_valid=False,
                status="invalid_schema",
                error_code=exc.code,
                latency_ms=int((time.perf_counter() - started) * 1000),
            )
            raise

        self._log_call(
            **log_kwargs,
            schema_valid=True,
            status="success",
            latency_ms=int((time.perf_counter() - started) * 1000),
        )
        return result
