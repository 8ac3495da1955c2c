"""Tests for accounts and sessions."""

from __future__ import annotations

from datetime import datetime, timezone, timedelta

from sqlalchemy import update

from servicehub.models import UserSession
from servicehub.services.auth import (
    authenticate, context_for, create_session, end_session, hash_password, session_user, verify_password,
)


def test_password_hashing():
    hashed = hash_password("correct-horse")
    assert hashed != "correct-horse"
    assert verify_password("correct-horse", hashed)
    assert not verify_password("wrong", hashed)
    assert not verify_password("anything", "")


async def test_authenticate_stamps_login(db, factory):
    user = await factory.user(email="ada@example.com", password_hash=hash_password("pw"))
    assert user.last_login_at is None

    found = await authenticate(db, "ADA@example.com", "pw")
    assert found.id == user.id
    assert found.last_login_at is not None

    assert await authenticate(db, "ada@example.com", "nope") is None
    assert await authenticate(db, "nobody@example.com", "pw") is None


async def test_inactive_user_cannot_log_in(db, factory):
    user = await factory.user(password_hash=hash_password("pw"))
    user.is_active = False
    await db.commit()
    assert await authenticate(db, user.email, "pw") is None


async def test_session_lifecycle(db, factory):
    user = await factory.user("provider")
    token = await create_session(user, db, ip_address="10.0.0.1")

    found = await session_user(token, db)
    assert found.id == user.id
    ctx = context_for(found)
    assert ctx.is_provider and not ctx.is_admin

    assert await session_user("not-a-token", db) is None

    await end_session(token, db)
    assert await session_user(token, db) is None


async def test_expired_session_is_ignored(db, factory):
    user = await factory.user()
    token = await create_session(user, db)
    await db.execute(
        update(UserSession)
        .where(UserSession.user_id == user.id)
        .values(expires_at=datetime.now(timezone.utc) - timedelta(minutes=1))
    )
    await db.commit()
    assert await session_user(token, db) is None
