"""Scheduled task triggers for an external cron."""

from __future__ import annotations

import secrets

from fastapi import APIRouter, Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession

from servicehub.config import Settings
from servicehub.db.engine import get_db
from servicehub.dependencies import get_settings_dep
from servicehub.errors import ForbiddenError
from servicehub.services.assignment import run_fallback_assignment
from servicehub.services.auth import get_current_user
from servicehub.services.payouts import process_pending_payouts

router = APIRouter(prefix="/api/scheduled-tasks", tags=["scheduled-tasks"])


async def require_task_caller(
    request: Request,
    db: AsyncSession = Depends(get_db),
    settings: Settings = Depends(get_settings_dep),
) -> None:
    """Accept the configured X-API-Key header or an admin session."""
    key = request.headers.get("x-api-key", "")
    if key and settings.scheduled_tasks_api_key and secrets.compare_digest(key, settings.scheduled_tasks_api_key):
        return
    auth = await get_current_user(request, db)
    if not auth.is_admin:
        raise ForbiddenError("Admin access required")


@router.post("/assign-fallback-leads", dependencies=[Depends(require_task_caller)])
async def assign_fallback_leads(db: AsyncSession = Depends(get_db)):
    result = await run_fallback_assignment(db)
    return {
        "success": True,
        "message": f"Processed {result['processed']} leads, assigned {result['assigned']} fallback leads",
        **result,
    }


@router.post("/process-pending-payouts", dependencies=[Depends(require_task_caller)])
async def process_payouts(db: AsyncSession = Depends(get_db)):
    return {"success": True, **await process_pending_payouts(db)}
