"""Request lifecycle after acceptance: work completion, approval and cancellation."""

from __future__ import annotations

import logging
from datetime import datetime, timezone

from sqlalchemy.ext.asyncio import AsyncSession

from servicehub.db import crud
from servicehub.errors import NotFoundError, ValidationError
from servicehub.models import ServiceRequest, User, WorkOrder
from servicehub.models import lead as lead_status
from servicehub.models import proposal as proposal_status
from servicehub.models import service_request as request_status
from servicehub.models import work_order as work_order_status
from servicehub.services import email
from servicehub.services.activity import log_activity
from servicehub.services.assignment import leads_for_request
from servicehub.services.events import emit
from servicehub.services.fees import calculate_payouts
from servicehub.services.payouts import trigger_payout_for_request
from servicehub.services.proposals import payout_fields

logger = logging.getLogger(__name__)


async def cancel_request(
    db: AsyncSession, request_id: str, customer_id: str,
    reason: str | None = None, other: str | None = None,
) -> ServiceRequest:
    if reason and reason not in proposal_status.REJECTION_REASONS:
        raise ValidationError(
            f"Rejection reason must be one of: {', '.join(proposal_status.REJECTION_REASONS)}"
        )
    sr = await crud.get_customer_request(db, request_id, customer_id)
    if not sr:
        raise NotFoundError("Service request not found")

    try:
        sr = await crud.lock_service_request(db, sr.id)
        if sr.status not in request_status.CANCELLABLE_STATUSES:
            raise ValidationError(
                f"Cannot cancel request with status: {sr.status}. Only requests with status "
                f"REQUEST_CREATED or LEAD_ASSIGNED can be cancelled."
            )
        sr.status = request_status.CLOSED
        sr.rejection_reason = reason or None
        sr.rejection_reason_other = ((other or "").strip() or None) if reason == "OTHER" else None
        for lead in await leads_for_request(db, sr):
            if lead.status in lead_status.OPEN_STATUSES:
                lead.status = lead_status.CANCELLED
        await db.commit()
    except Exception:
        await db.rollback()
        raise

    emit("service_request.cancelled", service_request_id=sr.id, reason=reason)
    await trigger_payout_for_request(db, sr)
    await log_activity(
        db, "service_request_cancelled", f'Service request "{sr.project_title}" cancelled by customer',
        user_id=customer_id, serviceRequestId=sr.id,
    )
    return sr


async def approve_request(db: AsyncSession, request_id: str, customer_id: str) -> ServiceRequest:
    sr = await crud.get_customer_request(db, request_id, customer_id)
    if not sr:
        raise NotFoundError("Service request not found")

    try:
        sr = await crud.lock_service_request(db, sr.id)
        if sr.status != request_status.COMPLETED:
            raise ValidationError(
                f"Cannot approve work. Service request status must be 'COMPLETED'. Current status: {sr.status}"
            )
        wo = await crud.get_work_order_for_request(db, sr.id)
        if wo is None or wo.status != work_order_status.COMPLETED:
            raise ValidationError(
                "Work order is not completed yet. Please wait for the provider to mark the work as completed."
            )
        sr.status = request_status.APPROVED
        await db.commit()
    except Exception:
        await db.rollback()
        raise

    emit("service_request.approved", service_request_id=sr.id, work_order_id=wo.id)
    profile = await crud.get_provider_profile(db, wo.provider_id)
    provider = await crud.get_user(db, profile.user_id) if profile else None
    if provider:
        email.dispatch(email.send_work_approved_email, provider.email, sr.project_title)
    await trigger_payout_for_request(db, sr)
    await log_activity(
        db, "work_approved", f'Work approved for service request "{sr.project_title}"',
        user_id=customer_id, serviceRequestId=sr.id, workOrderId=wo.id,
    )
    return sr


# ── Provider side ────────────────────────────────────────

async def _provider_profile(db: AsyncSession, provider: User):
    profile = await crud.get_provider_profile_by_user(db, provider.id)
    if not profile:
        raise NotFoundError("Provider profile not found")
    return profile


async def complete_work_order(db: AsyncSession, work_order_id: str, provider: User) -> WorkOrder:
    profile = await _provider_profile(db, provider)
    wo = await crud.get_work_order(db, work_order_id)
    if wo is None or wo.provider_id != profile.id:
        raise NotFoundError("Work order not found")
    if wo.status == work_order_status.COMPLETED:
        raise ValidationError("Work order is already completed")

    try:
        sr = await crud.lock_service_request(db, wo.service_request_id)
        if sr is None or sr.status != request_status.IN_PROGRESS:
            raise ValidationError(
                f"Cannot complete work order. Service request status must be 'IN_PROGRESS'. "
                f"Current status: {sr.status if sr else 'missing'}"
            )
        wo.status = work_order_status.COMPLETED
        wo.completed_at = datetime.now(timezone.utc)
        sr.status = request_status.COMPLETED
        await db.commit()
    except Exception:
        await db.rollback()
        raise

    emit("work_order.completed", work_order_id=wo.id, service_request_id=sr.id)
    customer = await crud.get_user(db, sr.customer_id)
    if customer:
        email.dispatch(email.send_work_completed_email, customer.email, sr.project_title, sr.id)
    await log_activity(
        db, "work_completed", f'Work completed for "{sr.project_title}"',
        user_id=provider.id, workOrderId=wo.id, serviceRequestId=sr.id,
    )
    return wo


async def list_provider_work_orders(db: AsyncSession, provider: User) -> list[dict]:
    profile = await _provider_profile(db, provider)
    items = []
    for wo in await crud.list_work_orders_for_provider(db, profile.id):
        sr = await crud.get_service_request(db, wo.service_request_id)
        items.append({
            "id": wo.id,
            "service_request_id": wo.service_request_id,
            "proposal_id": wo.proposal_id,
            "status": wo.status,
            "completed_at": wo.completed_at.isoformat() if wo.completed_at else None,
            "created_at": wo.created_at.isoformat() if wo.created_at else None,
            "project_title": sr.project_title if sr else "",
            "request_status": sr.status if sr else None,
        })
    return items


async def list_provider_payouts(db: AsyncSession, provider: User) -> dict:
    """Paid proposals with their payout split, persisted where available."""
    profile = await _provider_profile(db, provider)
    items = []
    total_paid = 0.0
    for p in await crud.list_paid_proposals_for_provider(db, profile.id):
        fields = payout_fields(p)
        if fields.get("provider_payout_amount") is None or fields.get("platform_fee_amount") is None:
            split = calculate_payouts(p.price)
            fields["provider_payout_amount"] = split.provider_amount
            fields["platform_fee_amount"] = split.platform_fee
        fields.setdefault("payout_status", None)
        if fields["payout_status"] == proposal_status.PAYOUT_COMPLETED:
            total_paid += fields["provider_payout_amount"]
        sr = await crud.get_service_request(db, p.service_request_id)
        items.append({
            "proposal_id": p.id,
            "service_request_id": p.service_request_id,
            "project_title": sr.project_title if sr else "",
            "price": p.price,
            "paid_at": p.paid_at.isoformat() if p.paid_at else None,
            **fields,
        })
    return {"payouts": items, "total_paid": round(total_paid, 2)}
