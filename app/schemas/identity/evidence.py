from __future__ import annotations

from datetime import datetime
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator

EvidenceType = Literal[
    "accomplishment",
    "skill_listed",
    "trait_indicator",
    "education",
    "certification",
]
SourceType = Literal["resume", "story", "certification", "inferred"]


class EvidenceItem(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str = Field(min_length=1)
    text: str
    type: EvidenceType
    embedding: list[float] = Field(default_factory=list)
    document_id: str | None = None
    source_type: SourceType = "resume"
    evidence_date: datetime | None = None

    @field_validator("text")
    @classmethod
    def _validate_text(cls, value: str) -> str:
        normalized = value.strip()
        if not normalized:
            raise ValueError("evidence text must not be empty")
        return normalized
