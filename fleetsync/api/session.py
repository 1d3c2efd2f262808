"""
Session API endpoints.

Login is rate limited. Activity signals are cheap to send; the session manager
coalesces them before touching the device store.
"""

from typing import Optional

from fastapi import APIRouter, Depends, Request
from pydantic import BaseModel

from fleetsync.api.deps import get_engine
from fleetsync.core.config import settings
from fleetsync.core.limiter import limiter
from fleetsync.schemas.identity import ExpiryReason, Identity
from fleetsync.services.engine import SyncEngine

router = APIRouter(prefix="/api/session", tags=["Session"])


class SessionStatus(BaseModel):
    """Response model for session state."""

    authenticated: bool
    identity: Optional[Identity] = None
    session_started_at: Optional[float] = None
    last_activity_at: Optional[float] = None
    needs_setup: bool = False
    expired_reason: Optional[ExpiryReason] = None


class ActivityResponse(BaseModel):
    recorded: bool


def _status(engine: SyncEngine) -> SessionStatus:
    state = engine.session.state()
    if state is None:
        return SessionStatus(authenticated=False, expired_reason=engine.session.expired_reason)
    return SessionStatus(
        authenticated=True,
        identity=state.identity,
        session_started_at=state.session_started_at,
        last_activity_at=state.last_activity_at,
        needs_setup=state.identity.needs_setup,
        expired_reason=engine.session.expired_reason,
    )


@router.get("", response_model=SessionStatus)
async def get_session(engine: SyncEngine = Depends(get_engine)):
    """Return the current session, or the reason the last one expired."""
    return _status(engine)


@router.post("/login", response_model=SessionStatus)
@limiter.limit(settings.rate_limit_session_endpoints)
async def login(request: Request, identity: Identity, engine: SyncEngine = Depends(get_engine)):
    """
    Start a session for an identity the record service already authenticated.

    Rate limit: 10 requests per minute per IP address.

    Args:
        request: FastAPI request object (required for rate limiting)
        identity: Identity returned by the record service
    """
    engine.login(identity)
    return _status(engine)


@router.post("/logout", response_model=SessionStatus)
async def logout(engine: SyncEngine = Depends(get_engine)):
    """End the session. Queued offline mutations are kept."""
    engine.logout()
    return _status(engine)


@router.post("/activity", response_model=ActivityResponse)
async def record_activity(engine: SyncEngine = Depends(get_engine)):
    return ActivityResponse(recorded=engine.session.record_activity())
