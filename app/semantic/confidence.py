from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone

from app.core.config.synthesis import get_synthesis_value

_SECONDS_PER_YEAR = 365.25 * 24 * 60 * 60

_DEFAULT_BASE = {"single": 0.5, "double": 0.7, "triple": 0.8, "multiple": 0.9}
_DEFAULT_STRENGTH = {"strong": 1.2, "medium": 1.0, "weak": 0.7}
_DEFAULT_SOURCE = {"certification": 1.5, "resume": 1.0, "story": 0.8, "inferred": 0.6}
_DEFAULT_HALF_LIFE: dict[str, float | None] = {
    "skill": 4.0,
    "achievement": 7.0,
    "trait": 15.0,
    "education": None,
    "certification": None,
}


@dataclass(frozen=True)
class EvidenceWeightInput:
    strength: str
    claim_type: str
    source_type: str = "resume"
    evidence_date: datetime | None = None


def max_confidence() -> float:
    return float(get_synthesis_value("confidence.max_confidence", 0.95))


def strength_multiplier(strength: str) -> float:
    table = get_synthesis_value("confidence.strength_multipliers", _DEFAULT_STRENGTH) or _DEFAULT_STRENGTH
    return float(table.get(strength, table.get("medium", 1.0)))


def source_weight(source_type: str) -> float:
    table = get_synthesis_value("confidence.source_weights", _DEFAULT_SOURCE) or _DEFAULT_SOURCE
    return float(table.get(source_type, 1.0))


def base_confidence(evidence_count: int) -> float:
    table = get_synthesis_value("confidence.base_by_evidence_count", _DEFAULT_BASE) or _DEFAULT_BASE
    if evidence_count <= 0:
        return 0.0
    if evidence_count == 1:
        return float(table.get("single", _DEFAULT_BASE["single"]))
    if evidence_count == 2:
        return float(table.get("double", _DEFAULT_BASE["double"]))
    if evidence_count == 3:
        return float(table.get("triple", _DEFAULT_BASE["triple"]))
    return float(table.get("multiple", _DEFAULT_BASE["multiple"]))


def recency_decay(
    evidence_date: datetime | None,
    claim_type: str,
    reference_date: datetime | None = None,
) -> float:
    """0.5 ** (age / half_life). Undated evidence and non-decaying types score 1.0."""
    if evidence_date is None:
        return 1.0

    half_lives = get_synthesis_value("confidence.half_life_years", _DEFAULT_HALF_LIFE) or _DEFAULT_HALF_LIFE
    half_life = half_lives.get(claim_type)
    if half_life is None or float(half_life) <= 0:
        return 1.0

    reference = reference_date or datetime.now(timezone.utc)
    if evidence_date.tzinfo is None:
        evidence_date = evidence_date.replace(tzinfo=timezone.utc)
    if reference.tzinfo is None:
        reference = reference.replace(tzinfo=timezone.utc)

    age_years = (reference - evidence_date).total_seconds() / _SECONDS_PER_YEAR
    if age_years <= 0:
        return 1.0
    return 0.5 ** (age_years / float(half_life))


def evidence_weight(item: EvidenceWeightInput, reference_date: datetime | None = None) -> float:
    return (
        strength_multiplier(item.strength)
        * source_weight(item.source_type)
        * recency_decay(item.evidence_date, item.claim_type, reference_date)
    )


def calculate_claim_confidence(
    items: list[EvidenceWeightInput],
    reference_date: datetime | None = None,
) -> float:
    if not items:
        return 0.0
    total = sum(evidence_weight(item, reference_date) for item in items)
    candidate = base_confidence(len(items)) * (total / len(items))
    return round(min(max(candidate, 0.0), max_confidence()), 4)


def reinforce_confidence(previous: float, candidate: float) -> float:
    """Stored confidence only moves up, and never past the configured cap."""
    ceiling = max_confidence()
    return round(min(max(previous, candidate), max(ceiling, previous)), 4)
