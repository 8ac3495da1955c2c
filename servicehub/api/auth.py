"""Auth API: login, logout and the current account."""

from __future__ import annotations

from pydantic import BaseModel
from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse
from sqlalchemy.ext.asyncio import AsyncSession

from servicehub.db import crud
from servicehub.db.engine import get_db
from servicehub.dependencies import require_auth
from servicehub.services.auth import (
    AuthContext, SESSION_COOKIE_NAME, SESSION_MAX_AGE_DAYS, authenticate, create_session, end_session,
)

router = APIRouter(prefix="/api/auth", tags=["auth"])


class LoginRequest(BaseModel):
    email: str
    password: str


@router.post("/login")
async def login(
    body: LoginRequest,
    request: Request,
    db: AsyncSession = Depends(get_db),
):
    user = await authenticate(db, body.email, body.password)
    if user is None:
        return JSONResponse(status_code=401, content={"success": False, "error": "Invalid credentials"})

    token = await create_session(user, db, ip_address=request.client.host if request.client else "")
    response = JSONResponse(content={"success": True, "user_id": user.id, "role": user.role})
    response.set_cookie(
        SESSION_COOKIE_NAME, token,
        httponly=True, samesite="lax",
        max_age=86400 * SESSION_MAX_AGE_DAYS,
    )
    return response


@router.post("/logout")
async def logout(
    request: Request,
    auth: AuthContext = Depends(require_auth),
    db: AsyncSession = Depends(get_db),
):
    await end_session(request.cookies.get(SESSION_COOKIE_NAME, ""), db)
    response = JSONResponse(content={"success": True})
    response.delete_cookie(SESSION_COOKIE_NAME)
    return response


@router.get("/me")
async def get_me(
    auth: AuthContext = Depends(require_auth),
    db: AsyncSession = Depends(get_db),
):
    profile = await crud.get_provider_profile_by_user(db, auth.user_id) if auth.is_provider else None
    return {
        "success": True,
        "user_id": auth.user_id,
        "email": auth.email,
        "display_name": auth.display_name,
        "role": auth.role,
        "provider_profile_id": profile.id if profile else None,
    }
