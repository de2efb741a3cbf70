from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sys
from pathlib import Path

PROJECT_ROOT = Path(__file__).resolve().parents[1]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from app.core.config import settings  # noqa: E402
from app.schemas.identity import (  # noqa: E402
    ClaimUpdate,
    EvidenceItem,
    SynthesisProgress,
    SynthesisWarning,
)
from app.semantic.embeddings import get_embedding_provider  # noqa: E402
from app.services.synthesis_service import SynthesisPreconditionError, synthesize  # noqa: E402


def _load_evidence(path: Path) -> list[EvidenceItem]:
    raw = json.loads(path.read_text(encoding="utf-8"))
    if isinstance(raw, dict):
        raw = raw.get("evidence", [])
    if not isinstance(raw, list):
        raise SystemExit(f"{path}: expected a list of evidence objects or {{\"evidence\": [...]}}")
    return [EvidenceItem.model_validate(item) for item in raw]


def _embed_missing(items: list[EvidenceItem]) -> list[EvidenceItem]:
    pending = [index for index, item in enumerate(items) if not item.embedding]
    if not pending:
        return items
    vectors = get_embedding_provider().embed([items[index].text for index in pending])
    embedded = list(items)
    for index, vector in zip(pending, vectors):
        embedded[index] = items[index].model_copy(update={"embedding": list(vector)})
    return embedded


def _print_progress(progress: SynthesisProgress) -> None:
    print(f"batch {progress.current}/{progress.total}")


def _print_claim(update: ClaimUpdate) -> None:
    print(f"  {update.action}: {update.label}")


def _print_warning(warning: SynthesisWarning) -> None:
    target = f" [{warning.evidence_id}]" if warning.evidence_id else ""
    print(f"  warning ({warning.stage}){target}: {warning.message}", file=sys.stderr)


def main() -> None:
    parser = argparse.ArgumentParser(description="Synthesize identity claims from an evidence JSON file.")
    parser.add_argument("path", help="JSON file with evidence items")
    parser.add_argument("--user-id", required=True, help="Owner of the claim set")
    parser.add_argument(
        "--embed",
        action="store_true",
        help=f"Embed items without an embedding using the '{settings.embedding_provider}' provider.",
    )
    parser.add_argument("--json", action="store_true", help="Print the final result as JSON.")
    args = parser.parse_args()

    logging.basicConfig(level=settings.log_level, format="%(message)s")

    items = _load_evidence(Path(args.path))
    if args.embed:
        items = _embed_missing(items)

    try:
        result = asyncio.run(
            synthesize(
                args.user_id,
                items,
                _print_progress,
                _print_claim,
                on_warning=_print_warning,
            )
        )
    except SynthesisPreconditionError as exc:
        raise SystemExit(f"Cannot synthesize: {exc}") from exc

    if args.json:
        print(json.dumps(result.model_dump(mode="json"), indent=2))
        return
    print(
        f"Created {result.claims_created} claims, updated {result.claims_updated}. "
        f"{result.batches_failed}/{result.batches_total} batches failed, "
        f"{result.items_unresolved} items unresolved."
    )


if __name__ == "__main__":
    main()
