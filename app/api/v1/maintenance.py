from typing import Annotated, Optional

from fastapi import APIRouter, Header

from app.core.config import settings
from app.core.deps import ResolverDep
from app.core.errors import AuthenticationError
from app.core.logging import get_logger

logger = get_logger(__name__)

router = APIRouter()


@router.post("/cleanup")
async def run_cleanup(
    resolver: ResolverDep,
    x_maintenance_token: Annotated[Optional[str], Header()] = None,
):
    """Drop abandoned AI jobs and expired negative cache rows"""
    if settings.maintenance_token and x_maintenance_token != settings.maintenance_token:
        raise AuthenticationError("Invalid maintenance token")

    stale_jobs = await resolver.metadata.cleanup_stale_jobs()
    expired_negatives = await resolver.metadata.sweep_negative_cache()
    logger.info(f"Cleanup removed {stale_jobs} stale jobs and {expired_negatives} negative entries")
    return {
        "success": True,
        "staleJobsRemoved": stale_jobs,
        "negativeEntriesRemoved": expired_negatives,
    }
