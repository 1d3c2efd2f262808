"""
History API endpoints backed by the revalidating cache.

Forced refreshes are rate limited per client on top of the cache's own
per-scope throttle.
"""

from typing import List, Optional

from fastapi import APIRouter, Depends, Request
from pydantic import BaseModel

from fleetsync.api.deps import get_engine, require_identity
from fleetsync.core.config import settings
from fleetsync.core.limiter import limiter
from fleetsync.schemas.identity import Identity
from fleetsync.schemas.records import HistoryStats, InspectionModule, InspectionRecord, ValidationLists
from fleetsync.services.engine import SyncEngine

router = APIRouter(prefix="/api/history", tags=["History"])


class HistoryResponse(BaseModel):
    """Response model for one module's history."""

    module: InspectionModule
    scope_key: str
    fetched_at: Optional[float] = None
    records: List[InspectionRecord]
    stats: HistoryStats


@router.get("/validation-lists", response_model=ValidationLists)
async def get_validation_lists(
    engine: SyncEngine = Depends(get_engine),
    identity: Identity = Depends(require_identity),
):
    """Return the cached validation lists; empty lists until the first fetch."""
    return engine.cache.validation_lists or ValidationLists()


@router.get("/{module}", response_model=HistoryResponse)
@limiter.limit(settings.rate_limit_refresh_endpoints)
async def get_history(
    request: Request,
    module: InspectionModule,
    force: bool = False,
    engine: SyncEngine = Depends(get_engine),
    identity: Identity = Depends(require_identity),
):
    """
    Return history for an inspection module, newest first.

    Args:
        request: FastAPI request object (required for rate limiting)
        module: Inspection module
        force: Manual refresh; throttled per module
    """
    engine.select_module(module)
    entry = await engine.cache.read(module, force=force)
    records = entry.payload if entry else []
    return HistoryResponse(
        module=module,
        scope_key=engine.cache.scope_key(module),
        fetched_at=entry.fetched_at if entry else None,
        records=records,
        stats=engine.cache.stats(module),
    )
