from __future__ import annotations

from pydantic import BaseModel, Field, field_validator

from .claim import ClaimType, Strength, normalize_claim_type


class NewClaimProposal(BaseModel):
    type: ClaimType
    label: str = Field(min_length=1, max_length=120)
    description: str | None = None

    @field_validator("type", mode="before")
    @classmethod
    def _normalize_type(cls, value: str) -> str:
        return normalize_claim_type(value)

    @field_validator("label")
    @classmethod
    def _strip_label(cls, value: str) -> str:
        normalized = " ".join(value.split())
        if not normalized:
            raise ValueError("label must not be blank")
        return normalized


class BatchDecision(BaseModel):
    evidence_id: str
    match: str | None = None
    strength: Strength = "medium"
    new_claim: NewClaimProposal | None = None

    @field_validator("match", mode="before")
    @classmethod
    def _blank_match_is_none(cls, value: str | None) -> str | None:
        if value is None:
            return None
        normalized = " ".join(str(value).split())
        return normalized or None

    @field_validator("strength", mode="before")
    @classmethod
    def _normalize_strength(cls, value: str | None) -> str:
        if value is None:
            return "medium"
        return str(value).strip().lower()

    @property
    def is_ambiguous(self) -> bool:
        return (self.match is None) == (self.new_claim is None)
