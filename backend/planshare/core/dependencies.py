"""FastAPI dependency chain: JWT -> User, plus the transactional DB session."""

from collections.abc import AsyncGenerator

import httpx
from fastapi import Depends
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import JWTError
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from planshare.core.exceptions import Forbidden, Unauthenticated
from planshare.core.security import decode_access_token
from planshare.db.session import async_session_factory
from planshare.models.user import User

bearer_scheme = HTTPBearer(auto_error=False)


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """Yield an async DB session. Commits on success, rolls back on error."""
    async with async_session_factory() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise


async def get_current_user_claims(
    credentials: HTTPAuthorizationCredentials | None = Depends(bearer_scheme),
) -> dict:
    """Extract and verify the Bearer token, returning JWT claims."""
    if credentials is None:
        raise Unauthenticated("Missing authorization header")

    try:
        claims = await decode_access_token(credentials.credentials)
    except JWTError as e:
        raise Unauthenticated(f"Invalid token: {e}") from e
    except httpx.HTTPError as e:
        raise Unauthenticated("Signing keys unavailable") from e

    return claims


async def resolve_user(claims: dict, db: AsyncSession) -> User:
    """Resolve the JWT subject to a User row.

    Auto-provisions the user the first time a verified identity shows up.
    """
    subject = claims.get("sub")
    if not subject:
        raise Unauthenticated("Token missing sub claim")

    result = await db.execute(select(User).where(User.subject == subject))
    user = result.scalar_one_or_none()

    if user is None:
        email = claims.get("email", f"{subject}@placeholder.local").strip().lower()
        full_name = claims.get("name", claims.get("email", "Unknown"))
        user = User(
            subject=subject,
            email=email,
            full_name=full_name,
        )
        db.add(user)
        await db.flush()

    if not user.is_active:
        raise Forbidden("User account is deactivated")

    return user


async def get_current_user(
    claims: dict = Depends(get_current_user_claims),
    db: AsyncSession = Depends(get_db),
) -> User:
    return await resolve_user(claims, db)


async def get_optional_user(
    credentials: HTTPAuthorizationCredentials | None = Depends(bearer_scheme),
    db: AsyncSession = Depends(get_db),
) -> User | None:
    """Like get_current_user, but any identity that cannot act yields None instead of raising."""
    if credentials is None:
        return None
    try:
        claims = await decode_access_token(credentials.credentials)
    except (JWTError, httpx.HTTPError):
        return None
    if not claims.get("sub"):
        return None
    try:
        return await resolve_user(claims, db)
    except Forbidden:
        return None
