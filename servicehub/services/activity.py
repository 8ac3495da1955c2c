"""Best-effort activity history for users."""

from __future__ import annotations

import logging

from sqlalchemy.ext.asyncio import AsyncSession

from servicehub.db import crud

logger = logging.getLogger(__name__)


async def log_activity(
    db: AsyncSession, type: str, description: str, user_id: str | None = None, **meta,
) -> None:
    """Write an ActivityLog row. Failures are logged and swallowed.

    The row is written through its own session on the same engine, so a failed
    write never rolls back or expires anything the caller has loaded.
    """
    try:
        async with AsyncSession(db.bind, expire_on_commit=False) as session:
            await crud.create_activity(session, type=type, description=description, user_id=user_id, meta=meta)
    except Exception:
        logger.exception("Failed to write activity log %s", type)
