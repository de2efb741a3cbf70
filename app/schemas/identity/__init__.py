from .claim import (
    EVIDENCE_TO_CLAIM_TYPE,
    ClaimEvidence,
    ClaimType,
    IdentityClaim,
    RelevantClaim,
    Strength,
)
from .decision import BatchDecision, NewClaimProposal
from .evidence import EvidenceItem, EvidenceType, SourceType
from .synthesis import ClaimUpdate, SynthesisProgress, SynthesisResult, SynthesisWarning

__all__ = [
    "EVIDENCE_TO_CLAIM_TYPE",
    "ClaimType",
    "Strength",
    "EvidenceType",
    "SourceType",
    "EvidenceItem",
    "IdentityClaim",
    "RelevantClaim",
    "ClaimEvidence",
    "NewClaimProposal",
    "BatchDecision",
    "SynthesisProgress",
    "ClaimUpdate",
    "SynthesisWarning",
    "SynthesisResult",
]
