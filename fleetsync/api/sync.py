"""
Sync API endpoints: submissions, the offline queue and host connectivity.
"""

from typing import Any, List, Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field

from fleetsync.api.deps import get_engine, require_identity
from fleetsync.core.advisories import Advisory
from fleetsync.core.result import ErrorKind
from fleetsync.schemas.identity import Identity
from fleetsync.services.engine import SyncEngine
from fleetsync.services.mutation_queue import SubmissionStatus

router = APIRouter(prefix="/api/sync", tags=["Sync"])


class MutationRequest(BaseModel):
    """A write destined for the record service."""

    payload: Any = Field(..., description="Opaque JSON mutation")


class SubmissionResponse(BaseModel):
    status: SubmissionStatus
    pending: int


class QueueStatus(BaseModel):
    """Response model for the offline queue."""

    pending: List[Any]
    count: int
    is_syncing: bool
    is_poor_connection: bool
    last_error: Optional[ErrorKind] = None


class DrainResponse(BaseModel):
    delivered: int
    remaining: int


class ConnectivityRequest(BaseModel):
    online: bool


class ConnectivityResponse(BaseModel):
    online: bool
    is_poor_connection: bool


@router.post("/mutations", response_model=SubmissionResponse)
async def submit_mutation(
    body: MutationRequest,
    engine: SyncEngine = Depends(get_engine),
    identity: Identity = Depends(require_identity),
):
    """
    Submit a mutation.

    Written straight through when online; saved to the offline queue when
    offline or when the connection fails mid-send.
    """
    status = await engine.submit(body.payload)
    return SubmissionResponse(status=status, pending=len(engine.queue))


@router.get("/queue", response_model=QueueStatus)
async def get_queue(engine: SyncEngine = Depends(get_engine)):
    queue = engine.queue
    pending = queue.load()
    return QueueStatus(
        pending=pending,
        count=len(pending),
        is_syncing=queue.is_syncing,
        is_poor_connection=queue.is_poor_connection,
        last_error=queue.last_error,
    )


@router.post("/drain", response_model=DrainResponse)
async def drain_queue(engine: SyncEngine = Depends(get_engine)):
    """Attempt delivery of queued mutations now."""
    delivered = await engine.queue.drain()
    return DrainResponse(delivered=delivered, remaining=len(engine.queue.load()))


@router.post("/connectivity", response_model=ConnectivityResponse)
async def set_connectivity(body: ConnectivityRequest, engine: SyncEngine = Depends(get_engine)):
    """Report an online/offline transition from the host."""
    await engine.set_online(body.online)
    return ConnectivityResponse(
        online=engine.connectivity.is_online,
        is_poor_connection=engine.queue.is_poor_connection,
    )


@router.get("/advisories", response_model=List[Advisory])
async def list_advisories(source: Optional[str] = None, engine: SyncEngine = Depends(get_engine)):
    return engine.advisories.recent(source)
