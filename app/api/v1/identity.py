import asyncio
import json
from typing import Any

from fastapi import APIRouter, Header, HTTPException, Query, Request, status
from fastapi.responses import StreamingResponse
from pydantic import BaseModel, Field

from app.core.config import settings
from app.core.identity_store import get_identity_store
from app.core.rate_limit import rate_limit
from app.core.security import check_api_key
from app.schemas.identity import (
    ClaimUpdate,
    EvidenceItem,
    IdentityClaim,
    SynthesisProgress,
    SynthesisWarning,
)
from app.services.synthesis_service import (
    SynthesisPreconditionError,
    synthesize,
    validate_evidence,
)

router = APIRouter()


class SynthesizeRequest(BaseModel):
    user_id: str = Field(min_length=1)
    evidence: list[EvidenceItem] = Field(default_factory=list)


class ClaimsResponse(BaseModel):
    user_id: str
    claims: list[IdentityClaim]


def _sse_event(event: str, payload: dict[str, Any]) -> str:
    data = json.dumps(payload, ensure_ascii=False)
    return f"event: {event}\ndata: {data}\n\n"


@router.post("/identity/synthesize")
@rate_limit(settings.synthesis_rate_limit)
async def identity_synthesize(
    request: Request,
    payload: SynthesizeRequest,
    x_api_key: str | None = Header(default=None, alias="X-API-Key"),
):
    check_api_key(x_api_key)
    try:
        validate_evidence(payload.user_id, payload.evidence)
    except SynthesisPreconditionError as exc:
        raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=str(exc)) from exc

    async def event_stream():
        queue: asyncio.Queue[dict[str, Any]] = asyncio.Queue()

        async def push_progress(progress: SynthesisProgress) -> None:
            await queue.put({"kind": "progress", "payload": progress.model_dump()})

        async def push_claim(update: ClaimUpdate) -> None:
            await queue.put({"kind": "claim", "payload": update.model_dump()})

        async def push_warning(warning: SynthesisWarning) -> None:
            await queue.put({"kind": "warning", "payload": warning.model_dump()})

        async def worker() -> None:
            try:
                result = await synthesize(
                    payload.user_id,
                    payload.evidence,
                    push_progress,
                    push_claim,
                    on_warning=push_warning,
                )
                await queue.put({"kind": "result", "payload": result.model_dump(mode="json")})
            except SynthesisPreconditionError as exc:
                await queue.put(
                    {
                        "kind": "error",
                        "payload": {"message": str(exc), "status": status.HTTP_422_UNPROCESSABLE_ENTITY},
                    }
                )
            except Exception as exc:  # pragma: no cover - guard rail
                await queue.put(
                    {
                        "kind": "error",
                        "payload": {"message": str(exc), "status": status.HTTP_500_INTERNAL_SERVER_ERROR},
                    }
                )
            finally:
                await queue.put({"kind": "done", "payload": {}})

        task = asyncio.create_task(worker())

        try:
            yield _sse_event("connected", {"ok": True})
            while True:
                if await request.is_disconnected():
                    break
                event = await queue.get()
                kind = event.get("kind")
                if kind == "done":
                    yield _sse_event("done", {})
                    break
                yield _sse_event(kind, event.get("payload", {}))
        finally:
            if not task.done():
                task.cancel()

    return StreamingResponse(
        event_stream(),
        media_type="text/event-stream",
        headers={
            "Cache-Control": "no-cache",
            "Connection": "keep-alive",
            "X-Accel-Buffering": "no",
        },
    )


@router.get("/identity/claims", response_model=ClaimsResponse)
@rate_limit()
async def identity_claims(
    request: Request,
    user_id: str = Query(min_length=1),
    limit: int = Query(default=200, ge=1, le=1000),
    x_api_key: str | None = Header(default=None, alias="X-API-Key"),
):
    _ = request
    check_api_key(x_api_key)
    claims = await asyncio.to_thread(get_identity_store().list_claims, user_id, limit)
    return ClaimsResponse(user_id=user_id, claims=claims)
