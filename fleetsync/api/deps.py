"""Shared FastAPI dependencies for the control API"""

from fastapi import Depends, HTTPException, Request

from fleetsync.schemas.identity import Identity
from fleetsync.services.engine import SyncEngine


def get_engine(request: Request) -> SyncEngine:
    """Return the engine created by the application lifespan."""
    engine = getattr(request.app.state, "engine", None)
    if engine is None:
        raise HTTPException(status_code=503, detail="Sync engine not started")
    return engine


def require_identity(engine: SyncEngine = Depends(get_engine)) -> Identity:
    """Reject the request unless a session is active."""
    identity = engine.session.identity
    if identity is None:
        raise HTTPException(status_code=401, detail="No active session")
    return identity
