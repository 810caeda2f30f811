"""Server-sent change stream for one project.

Authorization happens once, in a short-lived session, before the stream
opens; the stream itself holds no database connection. The stream ends
after delivering the deletion of the project or of the subscriber's own
membership.
"""

import asyncio
import json
import logging
import uuid
from typing import Any

from fastapi import APIRouter, Depends, Request
from fastapi.responses import StreamingResponse

from planshare.core.config import settings
from planshare.core.dependencies import get_current_user_claims, resolve_user
from planshare.db.session import async_session_factory
from planshare.schemas.common import ErrorResponse
from planshare.services.access_policy import Operation, authorize
from planshare.services.change_bus import (
    MEMBERS_TABLE,
    PROJECTS_TABLE,
    ChangeEvent,
    Subscription,
    change_bus,
)

logger = logging.getLogger(__name__)

router = APIRouter()


def sse_event(event: str, data: Any) -> str:
    """Format a single SSE event."""
    return f"event: {event}\ndata: {json.dumps(data)}\n\n"


async def _authorized_subscriber(project_id: uuid.UUID, claims: dict) -> uuid.UUID:
    async with async_session_factory() as session:
        user = await resolve_user(claims, session)
        await authorize(session, user.id, project_id, Operation.READ_PROJECT)
        await session.commit()
        return user.id


def _ends_access(change: ChangeEvent, user_id: uuid.UUID) -> bool:
    """The project is gone, or the subscriber's own membership was removed."""
    if change.kind != "delete":
        return False
    if change.table == PROJECTS_TABLE:
        return True
    return change.table == MEMBERS_TABLE and change.record.get("user_id") == str(user_id)


async def _stream(request: Request, subscription: Subscription, user_id: uuid.UUID):
    try:
        yield sse_event("ready", {"project_id": str(subscription.project_id)})
        while True:
            if await request.is_disconnected():
                break
            try:
                change = await asyncio.wait_for(
                    subscription.get(), timeout=settings.SSE_KEEPALIVE_SECONDS
                )
            except asyncio.TimeoutError:
                yield ": keepalive\n\n"
                continue
            if change is None:
                break
            kind = "project" if change.table == PROJECTS_TABLE else "member"
            yield sse_event(kind, change.as_message())
            if _ends_access(change, user_id):
                break
    finally:
        subscription.close()
        logger.info(
            "Change stream for project %s closed (user %s)", subscription.project_id, user_id
        )


@router.get(
    "/{project_id}/events",
    responses={401: {"model": ErrorResponse}, 404: {"model": ErrorResponse}},
)
async def stream_project_events(
    project_id: uuid.UUID,
    request: Request,
    claims: dict = Depends(get_current_user_claims),
):
    """Stream committed project and membership changes as server-sent events."""
    user_id = await _authorized_subscriber(project_id, claims)
    subscription = change_bus.subscribe(project_id)
    logger.info("Change stream for project %s opened (user %s)", project_id, user_id)

    return StreamingResponse(
        _stream(request, subscription, user_id),
        media_type="text/event-stream; charset=utf-8",
        headers={
            "Cache-Control": "no-cache, no-transform",
            "Connection": "keep-alive",
            "X-Accel-Buffering": "no",
        },
    )
