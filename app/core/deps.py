"""
Dependency Injection

FastAPI dependencies for routes.
"""

from typing import Annotated, Optional

from fastapi import Depends, Header, Request
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.errors import AuthenticationError, InfrastructureError
from app.core.security import verify_authorization
from app.infra.db import get_db
from app.services.transcripts.resolver import Caller, TranscriptResolver

# Type aliases for common dependencies
SessionDep = Annotated[AsyncSession, Depends(get_db)]


def client_address(request: Request) -> str:
    """First X-Forwarded-For hop, else the socket peer"""
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        first = forwarded.split(",")[0].strip()
        if first:
            return first
    if request.client and request.client.host:
        return request.client.host
    return "unknown"


async def get_caller(
    request: Request,
    authorization: Annotated[Optional[str], Header()] = None,
) -> Caller:
    """
    Authenticated callers are identified by user id and carry their tier.
    Without a token the caller is anonymous and identified by address; a
    token that fails verification is rejected.
    """
    auth = verify_authorization(authorization)
    if auth.error:
        raise AuthenticationError(auth.error)
    if auth.valid:
        return Caller(identity=auth.user_id, tier=auth.tier, authenticated=True)
    return Caller(identity=client_address(request))


CallerDep = Annotated[Caller, Depends(get_caller)]


def get_resolver(request: Request) -> TranscriptResolver:
    resolver = getattr(request.app.state, "resolver", None)
    if resolver is None:
        raise InfrastructureError("Transcript service is not ready")
    return resolver


ResolverDep = Annotated[TranscriptResolver, Depends(get_resolver)]
