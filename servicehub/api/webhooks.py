"""Payment gateway webhooks."""

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession

from servicehub.db.engine import get_db
from servicehub.dependencies import get_gateway
from servicehub.services import webhooks

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/webhooks", tags=["webhooks"])


@router.post("/stripe")
async def stripe_webhook(
    request: Request,
    db: AsyncSession = Depends(get_db),
    gateway=Depends(get_gateway),
):
    payload = await request.body()
    event = gateway.construct_event(payload, request.headers.get("stripe-signature", ""))
    logger.info("Webhook received: %s", event.type)
    return await webhooks.handle_event(db, event)
