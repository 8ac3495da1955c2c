"""FastAPI dependency providers for auth, settings, the payment gateway and role enforcement."""

from __future__ import annotations

from functools import lru_cache

from fastapi import Depends, HTTPException, Request
from sqlalchemy.ext.asyncio import AsyncSession

from servicehub.config import Settings, get_settings
from servicehub.db import crud
from servicehub.db.engine import get_db
from servicehub.models import User
from servicehub.services.auth import ADMIN, PROVIDER, AuthContext, get_current_user
from servicehub.services.payments import StripeGateway


@lru_cache
def get_settings_dep() -> Settings:
    return get_settings()


def get_gateway(settings: Settings = Depends(get_settings_dep)) -> StripeGateway:
    return StripeGateway(settings.payments)


async def require_auth(
    request: Request,
    db: AsyncSession = Depends(get_db),
) -> AuthContext:
    """Require a valid authenticated session. Returns AuthContext."""
    return await get_current_user(request, db)


def require_role(*allowed_roles: str):
    """Factory: returns a dependency that enforces role membership."""
    async def _check(auth: AuthContext = Depends(require_auth)) -> AuthContext:
        if auth.role not in allowed_roles:
            raise HTTPException(403, "Insufficient permissions")
        return auth
    return _check


async def current_user(
    auth: AuthContext = Depends(require_auth),
    db: AsyncSession = Depends(get_db),
) -> User:
    user = await crud.get_user(db, auth.user_id)
    if not user:
        raise HTTPException(401, "Not authenticated")
    return user


async def current_provider(
    auth: AuthContext = Depends(require_role(PROVIDER, ADMIN)),
    db: AsyncSession = Depends(get_db),
) -> User:
    user = await crud.get_user(db, auth.user_id)
    if not user:
        raise HTTPException(401, "Not authenticated")
    return user
