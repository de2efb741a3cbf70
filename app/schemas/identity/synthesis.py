from __future__ import annotations

from typing import Literal

from pydantic import BaseModel, Field

ClaimAction = Literal["created", "updated"]
WarningStage = Literal["retrieval", "decision", "write", "batch"]


class SynthesisProgress(BaseModel):
    current: int
    total: int


class ClaimUpdate(BaseModel):
    label: str
    action: ClaimAction


class SynthesisWarning(BaseModel):
    stage: WarningStage
    message: str
    batch: int | None = None
    evidence_id: str | None = None


class SynthesisResult(BaseModel):
    claims_created: int = 0
    claims_updated: int = 0
    batches_total: int = 0
    batches_failed: int = 0
    items_unresolved: int = 0
    warnings: list[SynthesisWarning] = Field(default_factory=list)
