"""
Notification API endpoints.
"""

from typing import List, Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel

from fleetsync.api.deps import get_engine, require_identity
from fleetsync.schemas.identity import Identity
from fleetsync.schemas.notification import Notification
from fleetsync.services.engine import SyncEngine

router = APIRouter(prefix="/api/notifications", tags=["Notifications"])


class NotificationFeed(BaseModel):
    """Response model for the merged notification feed."""

    notifications: List[Notification]
    unread_count: int


class MarkReadResponse(BaseModel):
    id: str
    action_ref: Optional[str] = None


class AcknowledgeResponse(BaseModel):
    id: str
    delivered: bool


class ClearResponse(BaseModel):
    cleared: int


class VisibilityRequest(BaseModel):
    visible: bool


class VisibilityResponse(BaseModel):
    visible: bool
    polling: bool


def _feed(engine: SyncEngine) -> NotificationFeed:
    aggregator = engine.notifications
    return NotificationFeed(
        notifications=aggregator.notifications,
        unread_count=aggregator.unread_count,
    )


@router.get("", response_model=NotificationFeed)
async def get_notifications(
    engine: SyncEngine = Depends(get_engine),
    identity: Identity = Depends(require_identity),
):
    return _feed(engine)


@router.post("/poll", response_model=NotificationFeed)
async def poll_notifications(
    engine: SyncEngine = Depends(get_engine),
    identity: Identity = Depends(require_identity),
):
    """Poll the record service now instead of waiting for the timer."""
    await engine.notifications.poll()
    return _feed(engine)


@router.post("/clear", response_model=ClearResponse)
async def clear_notifications(
    engine: SyncEngine = Depends(get_engine),
    identity: Identity = Depends(require_identity),
):
    return ClearResponse(cleared=engine.notifications.clear_all())


@router.post("/visibility", response_model=VisibilityResponse)
async def set_visibility(body: VisibilityRequest, engine: SyncEngine = Depends(get_engine)):
    """Report whether the client is visible; polling pauses while hidden."""
    await engine.set_visible(body.visible)
    return VisibilityResponse(
        visible=engine.visible,
        polling=engine.notifications.polling_active,
    )


@router.post("/{notification_id}/read", response_model=MarkReadResponse)
async def mark_read(
    notification_id: str,
    engine: SyncEngine = Depends(get_engine),
    identity: Identity = Depends(require_identity),
):
    action_ref = await engine.notifications.mark_read(notification_id)
    return MarkReadResponse(id=notification_id, action_ref=action_ref)


@router.post("/{notification_id}/dismiss", response_model=NotificationFeed)
async def dismiss(
    notification_id: str,
    engine: SyncEngine = Depends(get_engine),
    identity: Identity = Depends(require_identity),
):
    engine.notifications.dismiss(notification_id)
    return _feed(engine)


@router.post("/{notification_id}/acknowledge", response_model=AcknowledgeResponse)
async def acknowledge(
    notification_id: str,
    engine: SyncEngine = Depends(get_engine),
    identity: Identity = Depends(require_identity),
):
    """Dismiss for this user and record the acknowledgement for everyone."""
    delivered = await engine.notifications.acknowledge_globally(notification_id)
    return AcknowledgeResponse(id=notification_id, delivered=delivered)
