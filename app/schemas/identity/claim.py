from __future__ import annotations

from datetime import datetime
from typing import Literal

from pydantic import BaseModel, Field, field_validator

ClaimType = Literal["skill", "achievement", "trait", "education", "certification"]
Strength = Literal["weak", "medium", "strong"]

EVIDENCE_TO_CLAIM_TYPE: dict[str, ClaimType] = {
    "skill_listed": "skill",
    "accomplishment": "achievement",
    "trait_indicator": "trait",
    "education": "education",
    "certification": "certification",
}


def normalize_claim_type(value: str) -> str:
    normalized = (value or "").strip().lower()
    # Older prompts and stored rows call traits "attribute".
    if normalized == "attribute":
        return "trait"
    return normalized


class IdentityClaim(BaseModel):
    id: str
    user_id: str
    type: ClaimType
    label: str
    description: str | None = None
    confidence: float = Field(default=0.0, ge=0.0, le=1.0)
    evidence_count: int = 0
    created_at: datetime
    updated_at: datetime

    @field_validator("type", mode="before")
    @classmethod
    def _normalize_type(cls, value: str) -> str:
        return normalize_claim_type(value)


class RelevantClaim(BaseModel):
    id: str
    type: ClaimType
    label: str
    description: str | None = None
    confidence: float = 0.0
    similarity: float = 0.0

    @field_validator("type", mode="before")
    @classmethod
    def _normalize_type(cls, value: str) -> str:
        return normalize_claim_type(value)


class ClaimEvidence(BaseModel):
    claim_id: str
    evidence_id: str
    strength: Strength
    created_at: datetime
