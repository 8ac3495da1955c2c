"""Service request API: creation, proposals, payment, acceptance and closure."""

from __future__ import annotations

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from servicehub.db import crud
from servicehub.db.engine import get_db
from servicehub.dependencies import current_provider, current_user, get_gateway, require_auth
from servicehub.errors import NotFoundError
from servicehub.models import ServiceRequest, User
from servicehub.models import service_request as request_status
from servicehub.schemas import (
    CancelRequest, CategoryRead, ProposalAccept, ProposalCreate, ProposalReject, ReviewCreate, ReviewRead,
    ServiceRequestCreate, ServiceRequestRead,
)
from servicehub.services import acceptance, assignment, lifecycle, proposals, reviews
from servicehub.services.auth import AuthContext

router = APIRouter(prefix="/api/service-requests", tags=["service-requests"])


def _request_data(sr: ServiceRequest) -> dict:
    return ServiceRequestRead.model_validate(sr).model_dump(mode="json")


async def _customer_request(db: AsyncSession, request_id: str, auth: AuthContext) -> ServiceRequest:
    sr = await crud.get_customer_request(db, request_id, auth.user_id)
    if not sr:
        raise NotFoundError("Service request not found")
    return sr


@router.get("/categories")
async def list_categories(db: AsyncSession = Depends(get_db)):
    categories = await crud.list_categories(db)
    return {
        "success": True,
        "data": [CategoryRead.model_validate(c).model_dump() for c in categories],
    }


@router.post("", status_code=201)
async def create_service_request(
    body: ServiceRequestCreate,
    user: User = Depends(current_user),
    db: AsyncSession = Depends(get_db),
):
    sr = await assignment.create_service_request(db, user, body)
    return {"success": True, "data": _request_data(sr)}


@router.get("")
async def list_my_requests(
    auth: AuthContext = Depends(require_auth),
    db: AsyncSession = Depends(get_db),
):
    requests = await crud.list_customer_requests(db, auth.user_id)
    return {"success": True, "data": [_request_data(sr) for sr in requests]}


@router.get("/{request_id}")
async def get_service_request(
    request_id: str,
    auth: AuthContext = Depends(require_auth),
    db: AsyncSession = Depends(get_db),
):
    sr = await crud.get_service_request(db, request_id)
    if not sr or not await proposals.can_view_request(db, sr, auth.user_id, auth.role):
        raise NotFoundError("Service request not found")
    data = _request_data(sr)
    data["proposals"] = await proposals.list_request_proposals(db, sr)
    wo = await crud.get_work_order_for_request(db, sr.id)
    data["work_order"] = {
        "id": wo.id,
        "status": wo.status,
        "completed_at": wo.completed_at.isoformat() if wo.completed_at else None,
    } if wo else None
    return {"success": True, "data": data}


# ── Proposals ────────────────────────────────────────────

@router.get("/{request_id}/proposals")
async def list_proposals(
    request_id: str,
    auth: AuthContext = Depends(require_auth),
    db: AsyncSession = Depends(get_db),
):
    sr = await crud.get_service_request(db, request_id)
    if not sr or not await proposals.can_view_request(db, sr, auth.user_id, auth.role):
        raise NotFoundError("Service request not found")
    return {"success": True, "data": await proposals.list_request_proposals(db, sr)}


@router.post("/{request_id}/proposals", status_code=201)
async def submit_proposal(
    request_id: str,
    body: ProposalCreate,
    provider: User = Depends(current_provider),
    db: AsyncSession = Depends(get_db),
):
    proposal = await proposals.submit_proposal(db, request_id, provider, body.details, body.price)
    return {"success": True, "data": {"id": proposal.id, "status": proposal.status, "price": proposal.price}}


@router.post("/{request_id}/proposals/{ref}/payment-intent")
async def create_payment_intent(
    request_id: str,
    ref: str,
    auth: AuthContext = Depends(require_auth),
    db: AsyncSession = Depends(get_db),
    gateway=Depends(get_gateway),
):
    sr = await _customer_request(db, request_id, auth)
    return {"success": True, **await proposals.create_payment_intent(db, gateway, sr, ref)}


@router.get("/{request_id}/proposals/{ref}/payment-status")
async def payment_status(
    request_id: str,
    ref: str,
    auth: AuthContext = Depends(require_auth),
    db: AsyncSession = Depends(get_db),
    gateway=Depends(get_gateway),
):
    sr = await _customer_request(db, request_id, auth)
    return {"success": True, **await proposals.get_payment_status(db, gateway, sr, ref)}


@router.post("/{request_id}/proposals/{ref}/accept")
async def accept_proposal(
    request_id: str,
    ref: str,
    body: ProposalAccept,
    auth: AuthContext = Depends(require_auth),
    db: AsyncSession = Depends(get_db),
    gateway=Depends(get_gateway),
):
    result = await acceptance.accept_proposal(db, gateway, request_id, ref, body.payment_intent_id, auth)
    return {
        "success": True,
        "message": "Proposal accepted and payment confirmed",
        "data": {
            "proposal_id": result.proposal_id,
            "work_order_id": result.work_order_id,
            "service_request_id": result.service_request_id,
            "status": result.status,
        },
    }


@router.post("/{request_id}/proposals/{ref}/reject")
async def reject_proposal(
    request_id: str,
    ref: str,
    body: ProposalReject,
    auth: AuthContext = Depends(require_auth),
    db: AsyncSession = Depends(get_db),
):
    sr = await _customer_request(db, request_id, auth)
    result = await proposals.reject_proposal(db, sr, ref, body.rejection_reason, body.rejection_reason_other)
    return {"success": True, "data": result}


# ── Lifecycle ────────────────────────────────────────────

@router.patch("/{request_id}/cancel")
async def cancel_request(
    request_id: str,
    body: CancelRequest | None = None,
    auth: AuthContext = Depends(require_auth),
    db: AsyncSession = Depends(get_db),
):
    body = body or CancelRequest()
    sr = await lifecycle.cancel_request(
        db, request_id, auth.user_id, body.rejection_reason, body.rejection_reason_other,
    )
    return {
        "success": True,
        "message": "Service request cancelled successfully",
        "data": {"id": sr.id, "status": sr.status},
    }


@router.patch("/{request_id}/approve")
async def approve_request(
    request_id: str,
    auth: AuthContext = Depends(require_auth),
    db: AsyncSession = Depends(get_db),
):
    sr = await lifecycle.approve_request(db, request_id, auth.user_id)
    return {
        "success": True,
        "message": "Work approved successfully. You can now leave a review.",
        "data": {"id": sr.id, "status": sr.status},
    }


@router.post("/{request_id}/review", status_code=201)
async def submit_review(
    request_id: str,
    body: ReviewCreate,
    auth: AuthContext = Depends(require_auth),
    db: AsyncSession = Depends(get_db),
):
    review = await reviews.submit_review(db, request_id, auth.user_id, body.rating, body.title, body.comment)
    return {
        "success": True,
        "data": {**ReviewRead.model_validate(review).model_dump(mode="json"), "service_request_status": request_status.CLOSED},
    }


@router.get("/{request_id}/review")
async def get_review(
    request_id: str,
    auth: AuthContext = Depends(require_auth),
    db: AsyncSession = Depends(get_db),
):
    review = await reviews.get_review(db, request_id, auth.user_id)
    return {"success": True, "data": ReviewRead.model_validate(review).model_dump(mode="json")}
