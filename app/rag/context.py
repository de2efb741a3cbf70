from __future__ import annotations

from typing import Iterable, Sequence

from app.schemas.identity import RelevantClaim


def normalize_label(label: str | None) -> str:
    return " ".join((label or "").split()).casefold()


def build_context(
    retrieval_results: Sequence[Sequence[RelevantClaim]],
    locally_created: Iterable[RelevantClaim] = (),
) -> list[RelevantClaim]:
    """Merge per-evidence retrievals and run-local claims into one list with unique claim ids.

    A claim retrieved by several evidence items keeps its first position and its
    best similarity. Run-local claims are appended unless their id or label is
    already present.
    """
    by_id: dict[str, RelevantClaim] = {}
    for claims in retrieval_results:
        for claim in claims:
            existing = by_id.get(claim.id)
            if existing is None or claim.similarity > existing.similarity:
                by_id[claim.id] = claim

    labels = {normalize_label(claim.label) for claim in by_id.values()}
    for claim in locally_created:
        key = normalize_label(claim.label)
        if claim.id in by_id or key in labels:
            continue
        by_id[claim.id] = claim
        labels.add(key)

    return list(by_id.values())


class CandidateSet:
    """Claims created during one synthesis run, addressable by label."""

    def __init__(self) -> None:
        self._by_label: dict[str, RelevantClaim] = {}

    def __len__(self) -> int:
        return len(self._by_label)

    @property
    def created(self) -> list[RelevantClaim]:
        return list(self._by_label.values())

    def register(self, claim: RelevantClaim) -> None:
        self._by_label.setdefault(normalize_label(claim.label), claim)

    def get(self, label: str | None) -> RelevantClaim | None:
        return self._by_label.get(normalize_label(label))

    def context_for(self, retrieval_results: Sequence[Sequence[RelevantClaim]]) -> BatchContext:
        return BatchContext(build_context(retrieval_results, self.created), self)


class BatchContext:
    def __init__(self, claims: list[RelevantClaim], candidates: CandidateSet):
        self.claims = claims
        self._candidates = candidates
        self._by_label: dict[str, RelevantClaim] = {}
        for claim in claims:
            self._by_label.setdefault(normalize_label(claim.label), claim)

    def __len__(self) -> int:
        return len(self.claims)

    def resolve(self, label: str | None) -> RelevantClaim | None:
        """Find a claim by label among this batch's context and everything created so far this run."""
        key = normalize_label(label)
        if not key:
            return None
        return self._by_label.get(key) or self._candidates.get(key)
