"""Accounts and sessions for customers, providers and admins.

Passwords are bcrypt hashes. Sessions live in ``user_sessions`` keyed by the
SHA-256 of the cookie value, so a leaked table does not yield usable tokens.
"""

from __future__ import annotations

import hashlib
import secrets
from dataclasses import dataclass
from datetime import datetime, timezone, timedelta

import bcrypt
from fastapi import Request, HTTPException
from sqlalchemy import select, delete
from sqlalchemy.ext.asyncio import AsyncSession

from servicehub.db import crud
from servicehub.models import User, UserSession

SESSION_COOKIE_NAME = "session_token"
SESSION_MAX_AGE_DAYS = 7

CUSTOMER = "customer"
PROVIDER = "provider"
ADMIN = "admin"
ROLES = (CUSTOMER, PROVIDER, ADMIN)


@dataclass
class AuthContext:
    user_id: str
    role: str
    email: str
    display_name: str

    @property
    def is_admin(self) -> bool:
        return self.role == ADMIN

    @property
    def is_provider(self) -> bool:
        return self.role in (PROVIDER, ADMIN)


def context_for(user: User) -> AuthContext:
    return AuthContext(user_id=user.id, role=user.role, email=user.email, display_name=user.display_name)


def hash_password(plain: str) -> str:
    return bcrypt.hashpw(plain.encode("utf-8"), bcrypt.gensalt()).decode("utf-8")


def verify_password(plain: str, hashed: str) -> bool:
    # Accounts created without a password cannot log in
    if not hashed:
        return False
    return bcrypt.checkpw(plain.encode("utf-8"), hashed.encode("utf-8"))


async def authenticate(db: AsyncSession, email: str, password: str) -> User | None:
    """Return the active user for these credentials and stamp the login time."""
    user = await crud.get_user_by_email(db, email)
    if user is None or not user.is_active or not verify_password(password, user.password_hash):
        return None
    user.last_login_at = datetime.now(timezone.utc)
    await db.commit()
    return user


def _token_digest(token: str) -> str:
    return hashlib.sha256(token.encode("utf-8")).hexdigest()


async def create_session(user: User, db: AsyncSession, ip_address: str = "") -> str:
    """Open a session for the user and return the raw cookie value."""
    token = secrets.token_urlsafe(48)
    db.add(UserSession(
        user_id=user.id,
        token_hash=_token_digest(token),
        expires_at=datetime.now(timezone.utc) + timedelta(days=SESSION_MAX_AGE_DAYS),
        ip_address=ip_address,
    ))
    await db.commit()
    return token


async def session_user(token: str, db: AsyncSession) -> User | None:
    """The active user behind an unexpired session token."""
    result = await db.execute(
        select(User)
        .join(UserSession, UserSession.user_id == User.id)
        .where(
            UserSession.token_hash == _token_digest(token),
            UserSession.expires_at > datetime.now(timezone.utc),
            User.is_active == True,
        )
    )
    return result.scalars().first()


async def end_session(token: str, db: AsyncSession) -> None:
    await db.execute(delete(UserSession).where(UserSession.token_hash == _token_digest(token)))
    await db.commit()


async def get_current_user(request: Request, db: AsyncSession) -> AuthContext:
    """Resolve the session cookie to an ``AuthContext`` or raise 401."""
    token = request.cookies.get(SESSION_COOKIE_NAME)
    if not token:
        raise HTTPException(status_code=401, detail="Not authenticated")
    user = await session_user(token, db)
    if user is None:
        raise HTTPException(status_code=401, detail="Session expired")
    return context_for(user)
