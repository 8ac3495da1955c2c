"""Provider API: leads, work orders and payouts."""

from __future__ import annotations

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from servicehub.db.engine import get_db
from servicehub.dependencies import current_provider, get_gateway
from servicehub.models import User
from servicehub.schemas import LeadAccept, LeadReject, WorkOrderRead
from servicehub.services import leads, lifecycle

router = APIRouter(prefix="/api/provider", tags=["provider"])


# ── Leads ────────────────────────────────────────────────

@router.get("/leads")
async def list_leads(
    provider: User = Depends(current_provider),
    db: AsyncSession = Depends(get_db),
):
    items = await leads.list_provider_leads(db, provider)
    return {"success": True, "count": len(items), "data": items}


@router.patch("/leads/{lead_id}/accept")
async def accept_lead(
    lead_id: str,
    body: LeadAccept,
    provider: User = Depends(current_provider),
    db: AsyncSession = Depends(get_db),
    gateway=Depends(get_gateway),
):
    result = await leads.accept_lead(db, gateway, lead_id, provider, body.description, body.price)
    return {"success": True, **result}


@router.patch("/leads/{lead_id}/reject")
async def reject_lead(
    lead_id: str,
    body: LeadReject | None = None,
    provider: User = Depends(current_provider),
    db: AsyncSession = Depends(get_db),
):
    lead = await leads.reject_lead(db, lead_id, provider, body.reason if body else None)
    return {
        "success": True,
        "message": "Lead rejected successfully. Customer has been notified.",
        "lead": {"id": lead.id, "status": lead.status},
    }


# ── Work orders ──────────────────────────────────────────

@router.get("/work-orders")
async def list_work_orders(
    provider: User = Depends(current_provider),
    db: AsyncSession = Depends(get_db),
):
    return {"success": True, "data": await lifecycle.list_provider_work_orders(db, provider)}


@router.patch("/work-orders/{work_order_id}/complete")
async def complete_work_order(
    work_order_id: str,
    provider: User = Depends(current_provider),
    db: AsyncSession = Depends(get_db),
):
    wo = await lifecycle.complete_work_order(db, work_order_id, provider)
    return {
        "success": True,
        "message": "Work order marked as completed",
        "data": WorkOrderRead.model_validate(wo).model_dump(mode="json"),
    }


# ── Payouts ──────────────────────────────────────────────

@router.get("/payouts")
async def list_payouts(
    provider: User = Depends(current_provider),
    db: AsyncSession = Depends(get_db),
):
    return {"success": True, **await lifecycle.list_provider_payouts(db, provider)}
