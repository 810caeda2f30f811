"""Server-sent change stream tests."""

import json
import uuid

import pytest
from httpx import AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession

from planshare.api.v1.events import _stream
from planshare.db.session import async_session_factory
from planshare.models.user import User
from planshare.services import membership as membership_service
from planshare.services import projects as project_service
from planshare.services.change_bus import (
    MEMBERS_TABLE,
    PROJECTS_TABLE,
    ChangeBus,
    ChangeEvent,
    change_bus,
)
from tests.collab_helpers import create_project_via_api, seed_project, user_headers


class _ConnectedRequest:
    def __init__(self, disconnect_after: int = 100):
        self.polls = 0
        self.disconnect_after = disconnect_after

    async def is_disconnected(self) -> bool:
        self.polls += 1
        return self.polls > self.disconnect_after


def _parse(frame: str) -> tuple[str, dict]:
    event_line, data_line = frame.strip().split("\n")
    return event_line.removeprefix("event: "), json.loads(data_line.removeprefix("data: "))


@pytest.mark.asyncio
async def test_events_require_authentication(client: AsyncClient):
    resp = await client.get(f"/api/v1/projects/{uuid.uuid4()}/events")
    assert resp.status_code == 401


@pytest.mark.asyncio
async def test_events_hidden_from_non_members(client: AsyncClient):
    owner, _ = user_headers("owner")
    stranger, _ = user_headers("stranger")
    project = await create_project_via_api(client, owner)

    resp = await client.get(f"/api/v1/projects/{project['id']}/events", headers=stranger)
    assert resp.status_code == 404
    assert resp.json()["kind"] == "not_found"


@pytest.mark.asyncio
async def test_stream_frames_changes_in_order():
    bus = ChangeBus()
    project_id = uuid.uuid4()
    subscription = bus.subscribe(project_id)
    stream = _stream(_ConnectedRequest(), subscription, uuid.uuid4())

    ready = await anext(stream)
    assert _parse(ready) == ("ready", {"project_id": str(project_id)})

    bus.publish(ChangeEvent(PROJECTS_TABLE, "update", project_id, {"version": 2}))
    bus.publish(ChangeEvent(MEMBERS_TABLE, "insert", project_id, {"role": "editor"}))

    kind, message = _parse(await anext(stream))
    assert kind == "project"
    assert message["kind"] == "update"
    assert message["record"] == {"version": 2}

    kind, message = _parse(await anext(stream))
    assert kind == "member"
    assert message["table"] == MEMBERS_TABLE

    subscription.close()
    with pytest.raises(StopAsyncIteration):
        await anext(stream)
    assert bus.subscriber_count(project_id) == 0


@pytest.mark.asyncio
async def test_stream_releases_subscription_on_disconnect():
    bus = ChangeBus()
    project_id = uuid.uuid4()
    subscription = bus.subscribe(project_id)
    stream = _stream(_ConnectedRequest(disconnect_after=0), subscription, uuid.uuid4())

    await anext(stream)
    with pytest.raises(StopAsyncIteration):
        await anext(stream)
    assert subscription.closed
    assert bus.subscriber_count(project_id) == 0


@pytest.mark.asyncio
async def test_stream_ends_when_subscriber_is_removed(
    db: AsyncSession, owner: User, editor: User, viewer: User
):
    project = await seed_project(db, owner, editors=(editor,), viewers=(viewer,))
    subscription = change_bus.subscribe(project.id)
    stream = _stream(_ConnectedRequest(), subscription, viewer.id)
    await anext(stream)

    # Someone else leaving does not end the stream
    async with async_session_factory() as session:
        await membership_service.leave_project(session, editor.id, project.id)
        await session.commit()
    async with async_session_factory() as session:
        await membership_service.remove_member(session, owner.id, project.id, viewer.id)
        await session.commit()
    async with async_session_factory() as session:
        await project_service.update_project(session, owner.id, project.id, {"goal": "secret"})
        await session.commit()

    kind, message = _parse(await anext(stream))
    assert (kind, message["kind"]) == ("member", "delete")
    assert message["record"]["user_id"] == str(editor.id)

    kind, message = _parse(await anext(stream))
    assert (kind, message["kind"]) == ("member", "delete")
    assert message["record"]["user_id"] == str(viewer.id)

    with pytest.raises(StopAsyncIteration):
        await anext(stream)
    assert subscription.closed
    assert change_bus.subscriber_count(project.id) == 0


@pytest.mark.asyncio
async def test_stream_ends_when_project_is_deleted():
    bus = ChangeBus()
    project_id = uuid.uuid4()
    subscription = bus.subscribe(project_id)
    stream = _stream(_ConnectedRequest(), subscription, uuid.uuid4())
    await anext(stream)

    bus.publish(ChangeEvent(PROJECTS_TABLE, "delete", project_id, {"id": str(project_id)}))
    bus.publish(ChangeEvent(PROJECTS_TABLE, "insert", project_id, {"title": "after"}))

    kind, message = _parse(await anext(stream))
    assert (kind, message["kind"]) == ("project", "delete")
    with pytest.raises(StopAsyncIteration):
        await anext(stream)
    assert bus.subscriber_count(project_id) == 0
