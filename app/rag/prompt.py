from typing import Sequence

from app.ai.types import ChatMessage
from app.schemas.identity import EVIDENCE_TO_CLAIM_TYPE, EvidenceItem, RelevantClaim

SYSTEM_PROMPT = (
    "You are an identity synthesizer. Given evidence items from a person's resume or stories "
    "and their existing identity claims, decide for each evidence item whether it supports an "
    "existing claim or requires a new one. "
    "Return ONLY a JSON object of the form {\"decisions\": [...]} with one decision per evidence item."
)


def build_claims_block(claims: Sequence[RelevantClaim], max_chars_per_claim: int = 240) -> str:
    if not claims:
        return "No existing claims yet."
    lines = []
    for i, c in enumerate(claims, start=1):
        description = (c.description or "No description").strip()
        if len(description) > max_chars_per_claim:
            description = description[:max_chars_per_claim] + "..."
        lines.append(f'{i}. "{c.label}" ({c.type}) - {description}')
    return "\n".join(lines)


def build_evidence_block(evidence: Sequence[EvidenceItem], max_chars_per_item: int = 600) -> str:
    lines = []
    for i, e in enumerate(evidence, start=1):
        text = e.text
        if len(text) > max_chars_per_item:
            text = text[:max_chars_per_item] + "..."
        lines.append(
            f'{i}. [ID: {e.id}] "{text}" (type: {e.type} -> {EVIDENCE_TO_CLAIM_TYPE[e.type]})'
        )
    return "\n".join(lines)


def build_batch_messages(
    evidence: Sequence[EvidenceItem],
    claims: Sequence[RelevantClaim],
) -> list[ChatMessage]:
    user = (
        "For each evidence item, determine if it matches an existing claim or needs a new one.\n\n"
        f"EXISTING CLAIMS:\n{build_claims_block(claims)}\n\n"
        f"EVIDENCE ITEMS:\n{build_evidence_block(evidence)}\n\n"
        "Rules:\n"
        "1. If evidence clearly supports an existing claim, set \"match\" to the claim's exact label "
        "and \"new_claim\" to null.\n"
        "2. If evidence shows a new capability, achievement, trait, degree or certification, set "
        "\"match\" to null and describe the new claim.\n"
        "3. New claim labels: concise (2-4 words), semantic, reusable.\n"
        "4. Strength: \"strong\" = direct evidence, \"medium\" = related, \"weak\" = tangential.\n"
        "5. Respect the evidence type -> claim type mapping shown in parentheses.\n\n"
        f"Return EXACTLY {len(evidence)} decisions, one per evidence item, using the IDs above:\n"
        "{\"decisions\": [\n"
        "  {\n"
        "    \"evidence_id\": \"id-from-above\",\n"
        "    \"match\": \"Exact label\" or null,\n"
        "    \"strength\": \"weak\" | \"medium\" | \"strong\",\n"
        "    \"new_claim\": null or {\"type\": \"skill|achievement|trait|education|certification\", "
        "\"label\": \"...\", \"description\": \"...\"}\n"
        "  }\n"
        "]}"
    )
    return [
        ChatMessage(role="system", content=SYSTEM_PROMPT),
        ChatMessage(role="user", content=user),
    ]
