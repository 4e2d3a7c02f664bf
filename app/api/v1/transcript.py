"""
Transcript endpoints

- POST /transcript: resolve a transcript (cache, captions, AI)
- GET /transcript: service liveness
- GET /transcript/diamonds: the caller's AI credit balance
"""

from datetime import datetime, timezone

from fastapi import APIRouter
from fastapi.responses import JSONResponse

from app.core.deps import CallerDep, ResolverDep
from app.schemas.transcript import CreditStatus, TranscriptRequest

router = APIRouter()


@router.post("")
async def resolve_transcript(body: TranscriptRequest, resolver: ResolverDep, caller: CallerDep):
    """
    Resolve a transcript for one video and language.

    Failures come back as `{success: false, errorCode, ...}` with the
    diamond balance and known languages, so clients can offer the AI path.
    """
    outcome = await resolver.resolve(body, caller)
    return JSONResponse(
        status_code=outcome.status_code,
        content=outcome.body.to_payload(),
        headers=outcome.headers,
    )


@router.get("")
async def transcript_status():
    """Liveness of the transcript service"""
    return {
        "status": "ok",
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "service": "transcript",
    }


@router.get("/diamonds")
async def get_diamonds(resolver: ResolverDep, caller: CallerDep):
    balance = await resolver.credit_status(caller)
    status = CreditStatus(
        diamonds=balance.balance,
        max_diamonds=balance.max_balance,
        next_regen_at=balance.next_regen_at,
    )
    return status.model_dump(by_alias=True)
