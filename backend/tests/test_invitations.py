"""Invitation issue, listing, revocation and redemption tests."""

import uuid
from datetime import timedelta

import httpx
import pytest
from httpx import AsyncClient
from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from planshare.core import dependencies
from planshare.core.config import settings
from planshare.core.exceptions import AlreadyInvited, AlreadyMember, Forbidden, InvalidRole
from planshare.db.base import utcnow
from planshare.models.project_invitation import ProjectInvitation
from planshare.models.project_member import ProjectMember
from planshare.models.user import User
from planshare.services import invitations as invitation_service
from tests.collab_helpers import (
    create_project_via_api,
    invite_via_api,
    redeem_via_api,
    seed_project,
    user_headers,
)
from tests.conftest import auth_headers


async def _expire(db: AsyncSession, token: str) -> None:
    await db.execute(
        update(ProjectInvitation)
        .where(ProjectInvitation.token == token)
        .values(expires_at=utcnow() - timedelta(minutes=1))
    )
    await db.commit()


def test_build_invite_url():
    token = invitation_service.generate_token()
    assert len(token) == 64
    assert invitation_service.build_invite_url(token) == (
        f"{settings.APP_ORIGIN.rstrip('/')}/invite/{token}"
    )


def test_tokens_are_unique():
    assert len({invitation_service.generate_token() for _ in range(100)}) == 100


@pytest.mark.asyncio
async def test_invite_sets_expiry_and_normalizes_email(db: AsyncSession, owner: User):
    project = await seed_project(db, owner)
    before = utcnow()
    invitation = await invitation_service.invite(
        db, owner.id, project.id, "  New.Person@Example.com ", "editor"
    )
    await db.commit()

    assert invitation.email == "new.person@example.com"
    assert invitation.role == "editor"
    assert invitation.invited_by == owner.id
    assert invitation.used_at is None
    ttl = invitation.expires_at - before
    assert timedelta(days=settings.INVITATION_TTL_DAYS) <= ttl < timedelta(
        days=settings.INVITATION_TTL_DAYS, minutes=1
    )


@pytest.mark.asyncio
async def test_invite_rejects_owner_role(db: AsyncSession, owner: User):
    project = await seed_project(db, owner)
    with pytest.raises(InvalidRole):
        await invitation_service.invite(db, owner.id, project.id, "x@example.com", "owner")


@pytest.mark.asyncio
async def test_viewer_cannot_invite(db: AsyncSession, owner: User, viewer: User):
    project = await seed_project(db, owner, viewers=(viewer,))
    with pytest.raises(Forbidden):
        await invitation_service.invite(db, viewer.id, project.id, "x@example.com", "viewer")


@pytest.mark.asyncio
async def test_editor_can_invite(db: AsyncSession, owner: User, editor: User):
    project = await seed_project(db, owner, editors=(editor,))
    invitation = await invitation_service.invite(
        db, editor.id, project.id, "friend@example.com", "viewer"
    )
    assert invitation.invited_by == editor.id


@pytest.mark.asyncio
async def test_invite_existing_member_rejected(db: AsyncSession, owner: User, editor: User):
    project = await seed_project(db, owner, editors=(editor,))
    with pytest.raises(AlreadyMember):
        await invitation_service.invite(db, owner.id, project.id, editor.email.upper(), "viewer")


@pytest.mark.asyncio
async def test_duplicate_live_invitation_rejected(db: AsyncSession, owner: User):
    project = await seed_project(db, owner)
    owner_id, project_id = owner.id, project.id
    first = await invitation_service.invite(db, owner_id, project_id, "dup@example.com", "viewer")
    first_token = first.token
    await db.commit()

    with pytest.raises(AlreadyInvited):
        await invitation_service.invite(db, owner_id, project_id, "DUP@example.com", "editor")
    # rollback expires every loaded instance, so only plain values are used below
    await db.rollback()

    # Once the first one is no longer live, the email can be invited again
    await _expire(db, first_token)
    again = await invitation_service.invite(db, owner_id, project_id, "dup@example.com", "editor")
    assert again.token != first_token


@pytest.mark.asyncio
async def test_list_pending_newest_first_and_live_only(db: AsyncSession, owner: User):
    project = await seed_project(db, owner)
    older = await invitation_service.invite(db, owner.id, project.id, "a@example.com", "viewer")
    await db.commit()
    await db.execute(
        update(ProjectInvitation)
        .where(ProjectInvitation.id == older.id)
        .values(created_at=utcnow() - timedelta(hours=1))
    )
    await db.commit()
    newer = await invitation_service.invite(db, owner.id, project.id, "b@example.com", "viewer")
    expired = await invitation_service.invite(db, owner.id, project.id, "c@example.com", "viewer")
    await db.commit()
    await _expire(db, expired.token)

    pending = await invitation_service.list_pending(db, owner.id, project.id)
    assert [i.id for i in pending] == [newer.id, older.id]


@pytest.mark.asyncio
async def test_revoke(db: AsyncSession, owner: User):
    project = await seed_project(db, owner)
    invitation = await invitation_service.invite(
        db, owner.id, project.id, "gone@example.com", "viewer"
    )
    await db.commit()

    await invitation_service.revoke(db, owner.id, project.id, invitation.id)
    await db.commit()
    assert await invitation_service.list_pending(db, owner.id, project.id) == []


@pytest.mark.asyncio
async def test_invitation_routes(client: AsyncClient):
    owner, _ = user_headers("owner")
    viewer, viewer_email = user_headers("viewer")
    project = await create_project_via_api(client, owner)
    base = f"/api/v1/projects/{project['id']}/invitations"

    created = await invite_via_api(client, owner, project["id"], viewer_email, "viewer")
    assert created["invite_url"] == f"{settings.APP_ORIGIN.rstrip('/')}/invite/{created['token']}"

    duplicate = await client.post(
        f"{base}/", json={"email": viewer_email, "role": "viewer"}, headers=owner
    )
    assert duplicate.status_code == 409
    assert duplicate.json()["kind"] == "already_invited"

    owner_role = await client.post(
        f"{base}/", json={"email": "boss@example.com", "role": "owner"}, headers=owner
    )
    assert owner_role.status_code == 422
    assert owner_role.json()["kind"] == "invalid_role"

    bad_email = await client.post(
        f"{base}/", json={"email": "not-an-email", "role": "viewer"}, headers=owner
    )
    assert bad_email.status_code == 422

    await redeem_via_api(client, viewer, created["token"])
    viewer_list = await client.get(f"{base}/", headers=viewer)
    assert viewer_list.status_code == 403

    second = await invite_via_api(client, owner, project["id"], "later@example.com")
    revoke = await client.delete(f"{base}/{second['id']}", headers=owner)
    assert revoke.status_code == 204
    revoke_again = await client.delete(f"{base}/{second['id']}", headers=owner)
    assert revoke_again.status_code == 404

    listing = await client.get(f"{base}/", headers=owner)
    assert listing.json() == []


@pytest.mark.asyncio
async def test_redeem_requires_authentication(client: AsyncClient):
    owner, _ = user_headers("owner")
    project = await create_project_via_api(client, owner)
    invitation = await invite_via_api(client, owner, project["id"], "anon@example.com")

    result = await redeem_via_api(client, None, invitation["token"])
    assert result["success"] is False
    assert result["error"] == "unauthenticated"

    garbage = {"Authorization": "Bearer not-a-jwt"}
    result = await redeem_via_api(client, garbage, invitation["token"])
    assert result["error"] == "unauthenticated"


@pytest.mark.asyncio
async def test_redeem_by_deactivated_user_is_a_result(client: AsyncClient, db: AsyncSession):
    owner, _ = user_headers("owner")
    project = await create_project_via_api(client, owner)
    invitation = await invite_via_api(client, owner, project["id"], "dormant@example.com")

    dormant = User(
        subject="dormant-sub",
        email="dormant@example.com",
        full_name="Dormant",
        is_active=False,
    )
    db.add(dormant)
    await db.commit()

    headers = auth_headers(sub="dormant-sub", email="dormant@example.com")
    result = await redeem_via_api(client, headers, invitation["token"])
    assert result["success"] is False
    assert result["error"] == "unauthenticated"

    pending = await client.get(f"/api/v1/projects/{project['id']}/invitations/", headers=owner)
    assert [i["token"] for i in pending.json()] == [invitation["token"]]


@pytest.mark.asyncio
async def test_redeem_without_signing_keys_is_a_result(client: AsyncClient, monkeypatch):
    owner, _ = user_headers("owner")
    project = await create_project_via_api(client, owner)
    invitation = await invite_via_api(client, owner, project["id"], "keys@example.com")

    async def _keys_unreachable(token: str) -> dict:
        raise httpx.ConnectError("jwks endpoint unreachable")

    monkeypatch.setattr(dependencies, "decode_access_token", _keys_unreachable)
    headers, _ = user_headers("keys")
    result = await redeem_via_api(client, headers, invitation["token"])
    assert result["error"] == "unauthenticated"

    resp = await client.get("/api/v1/projects/", headers=headers)
    assert resp.status_code == 401
    assert resp.json()["kind"] == "unauthenticated"


@pytest.mark.asyncio
@pytest.mark.parametrize("token", ["nope", "0" * 64, "a" * 500])
async def test_redeem_unknown_token_is_a_result(client: AsyncClient, token: str):
    headers, _ = user_headers("visitor")
    result = await redeem_via_api(client, headers, token)
    assert result == {
        "success": False,
        "project": None,
        "error": "invalid_or_expired_token",
        "message": "This invitation is invalid or has expired",
    }


@pytest.mark.asyncio
async def test_redeem_expired_token_fails(client: AsyncClient, db: AsyncSession):
    owner, _ = user_headers("owner")
    joiner, joiner_email = user_headers("late")
    project = await create_project_via_api(client, owner)
    invitation = await invite_via_api(client, owner, project["id"], joiner_email)
    await _expire(db, invitation["token"])

    result = await redeem_via_api(client, joiner, invitation["token"])
    assert result["success"] is False
    assert result["error"] == "invalid_or_expired_token"

    row = (
        await db.execute(
            select(ProjectInvitation).where(ProjectInvitation.token == invitation["token"])
        )
    ).scalar_one()
    assert row.used_at is None


@pytest.mark.asyncio
async def test_redeem_twice_fails_second_time(client: AsyncClient, db: AsyncSession):
    owner, _ = user_headers("owner")
    joiner, joiner_email = user_headers("joiner")
    other, _ = user_headers("other")
    project = await create_project_via_api(client, owner)
    invitation = await invite_via_api(client, owner, project["id"], joiner_email, "viewer")

    first = await redeem_via_api(client, joiner, invitation["token"])
    assert first["success"] is True

    second = await redeem_via_api(client, other, invitation["token"])
    assert second["success"] is False
    assert second["error"] == "invalid_or_expired_token"

    members = await db.execute(
        select(ProjectMember).where(ProjectMember.project_id == uuid.UUID(project["id"]))
    )
    assert sorted(m.role for m in members.scalars().all()) == ["owner", "viewer"]


@pytest.mark.asyncio
async def test_already_member_does_not_consume_token(client: AsyncClient, db: AsyncSession):
    owner, _ = user_headers("owner")
    project = await create_project_via_api(client, owner)
    invitation = await invite_via_api(client, owner, project["id"], "someone@example.com")

    result = await redeem_via_api(client, owner, invitation["token"])
    assert result["success"] is False
    assert result["error"] == "already_member"

    row = (
        await db.execute(
            select(ProjectInvitation).where(ProjectInvitation.id == uuid.UUID(invitation["id"]))
        )
    ).scalar_one()
    assert row.used_at is None
    assert row.used_by is None
