"""Proposals and their pending-lead counterparts.

A provider's offer exists either as a Proposal row or, before promotion, as
``pendingProposal`` inside a lead's metadata envelope. References from clients
are either a proposal id or a ``pending-{leadId}`` token; ``resolve_target``
turns both into one ``ProposalTarget``.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

from sqlalchemy.ext.asyncio import AsyncSession

from servicehub.config import get_settings
from servicehub.db import crud
from servicehub.db.capabilities import get_capabilities
from servicehub.errors import (
    ConflictError, ForbiddenError, NotFoundError, PaymentGatewayUnconfigured, PaymentNotFound, ValidationError,
)
from servicehub.models import Lead, Proposal, ServiceRequest, User
from servicehub.models import lead as lead_status
from servicehub.models import proposal as proposal_status
from servicehub.models import service_request as request_status
from servicehub.services import email
from servicehub.services.activity import log_activity
from servicehub.services.assignment import leads_for_request
from servicehub.services.events import emit
from servicehub.services.fees import to_cents
from servicehub.services.lead_metadata import (
    parse_pending_token, pending_token, read_envelope, set_pending_status,
)
from servicehub.services.payments import REUSABLE_STATUSES, SUCCEEDED, TERMINAL_STATUSES

logger = logging.getLogger(__name__)

LISTED_LEAD_STATUSES = (lead_status.SUBMITTED, lead_status.ROUTED, lead_status.REJECTED, lead_status.ACCEPTED)
OPEN_REQUEST_STATUSES = (request_status.REQUEST_CREATED, request_status.LEAD_ASSIGNED)


@dataclass
class ProposalTarget:
    """A resolved proposal reference."""

    ref: str
    proposal: Proposal | None = None
    lead: Lead | None = None
    price: float | None = None
    details: str = ""
    provider_user_id: str | None = None
    provider_profile_id: str | None = None

    @property
    def is_pending(self) -> bool:
        return self.lead is not None

    @property
    def status(self) -> str:
        if self.proposal is not None:
            return self.proposal.status
        pending = read_envelope(self.lead).pending_proposal if self.lead else None
        return pending.status if pending else proposal_status.SENT


async def resolve_target(db: AsyncSession, sr: ServiceRequest, ref: str) -> ProposalTarget:
    lead_id = parse_pending_token(ref)
    if lead_id is None:
        proposal = await crud.get_request_proposal(db, ref, sr.id)
        if not proposal:
            raise NotFoundError("Proposal not found")
        profile = await crud.get_provider_profile(db, proposal.provider_id)
        return ProposalTarget(
            ref=ref, proposal=proposal, price=proposal.price, details=proposal.details,
            provider_user_id=profile.user_id if profile else None,
            provider_profile_id=proposal.provider_id,
        )

    lead = await crud.get_lead(db, lead_id)
    if not lead:
        raise NotFoundError("Lead not found")
    envelope = read_envelope(lead)
    if envelope.service_request_id != sr.id or envelope.pending_proposal is None:
        raise NotFoundError("Pending proposal not found in lead metadata")

    profile = await crud.get_provider_profile_by_user(db, lead.provider_id)
    target = ProposalTarget(
        ref=ref, lead=lead,
        price=envelope.pending_proposal.price,
        details=envelope.pending_proposal.description,
        provider_user_id=lead.provider_id,
        provider_profile_id=profile.id if profile else None,
    )
    if profile:
        target.proposal = await crud.find_active_proposal(db, sr.id, profile.id)
    return target


async def promote_pending(
    db: AsyncSession, sr: ServiceRequest, lead: Lead, payment_intent_id: str | None = None,
) -> Proposal:
    """Find or create the Proposal row for a pending lead offer.

    Matches an existing row by payment intent, then by provider and request
    among SENT/ACCEPTED rows. An intent-matched row held by another provider
    is refused. The lead row is locked first so concurrent promotions of
    the same offer serialize. Flushes only; the caller commits.
    """
    await crud.lock_lead(db, lead.id)
    envelope = read_envelope(lead)
    if envelope.pending_proposal is None:
        raise NotFoundError("Lead has no pending proposal")
    profile = await crud.get_provider_profile_by_user(db, lead.provider_id)
    if not profile:
        raise ValidationError("Provider profile not found. Cannot create proposal.")

    if payment_intent_id:
        existing = await crud.find_proposal_by_intent(db, payment_intent_id, request_id=sr.id, lock=True)
        if existing:
            if existing.provider_id != profile.id:
                raise ValidationError("Payment does not belong to this proposal")
            return existing
    existing = await crud.find_active_proposal(db, sr.id, profile.id, lock=True)
    if existing:
        return existing

    price = envelope.pending_proposal.price
    if not price or price <= 0:
        raise ValidationError(f"Invalid proposal price: ${price or 0}")
    proposal = await crud.add_proposal(
        db,
        service_request_id=sr.id,
        provider_id=profile.id,
        details=envelope.pending_proposal.description or "",
        price=float(price),
        status=proposal_status.SENT,
        payment_intent_id=payment_intent_id,
        payment_status=proposal_status.PAYMENT_PENDING,
    )
    emit("proposal.promoted", proposal_id=proposal.id, lead_id=lead.id, service_request_id=sr.id)
    return proposal


# ── Listing ──────────────────────────────────────────────

def _lead_effective_status(lead: Lead) -> str:
    pending = read_envelope(lead).pending_proposal
    if pending and pending.status:
        return pending.status.upper()
    if lead.status == lead_status.REJECTED:
        return proposal_status.REJECTED
    return proposal_status.SENT


async def _provider_view(db: AsyncSession, user_id: str | None, reveal: bool) -> dict:
    user = await crud.get_user(db, user_id) if user_id else None
    return {
        "provider_user_id": user_id,
        "provider_name": user.display_name if user else "",
        "provider_email": user.email if user and reveal else None,
        "provider_phone": user.phone if user and reveal else None,
    }


def _proposal_dict(p: Proposal) -> dict:
    return {
        "id": p.id,
        "service_request_id": p.service_request_id,
        "provider_id": p.provider_id,
        "details": p.details,
        "price": p.price,
        "status": p.status,
        "payment_status": p.payment_status,
        "paid_at": p.paid_at.isoformat() if p.paid_at else None,
        "rejection_reason": p.rejection_reason,
        "is_pending": False,
        "lead_id": None,
        "created_at": p.created_at.isoformat() if p.created_at else None,
    }


async def list_request_proposals(db: AsyncSession, sr: ServiceRequest) -> list[dict]:
    """Proposal rows merged with pending lead offers that have no row yet."""
    items = []
    provider_users_with_rows: set[str] = set()
    for p in await crud.list_proposals_for_request(db, sr.id):
        profile = await crud.get_provider_profile(db, p.provider_id)
        user_id = profile.user_id if profile else None
        if user_id:
            provider_users_with_rows.add(user_id)
        item = _proposal_dict(p)
        item.update(await _provider_view(db, user_id, p.status == proposal_status.ACCEPTED))
        items.append(item)

    for lead in await leads_for_request(db, sr):
        envelope = read_envelope(lead)
        if envelope.pending_proposal is None or lead.status not in LISTED_LEAD_STATUSES:
            continue
        if lead.provider_id in provider_users_with_rows:
            continue
        status = _lead_effective_status(lead)
        item = {
            "id": pending_token(lead.id),
            "service_request_id": sr.id,
            "provider_id": None,
            "details": envelope.pending_proposal.description,
            "price": envelope.pending_proposal.price,
            "status": status,
            "payment_status": proposal_status.PAYMENT_PENDING,
            "paid_at": None,
            "rejection_reason": None,
            "is_pending": True,
            "lead_id": lead.id,
            "created_at": lead.created_at.isoformat() if lead.created_at else None,
        }
        item.update(await _provider_view(db, lead.provider_id, status == proposal_status.ACCEPTED))
        items.append(item)
    return items


async def provider_has_lead(db: AsyncSession, sr: ServiceRequest, provider_user_id: str) -> bool:
    return any(lead.provider_id == provider_user_id for lead in await leads_for_request(db, sr))


async def can_view_request(db: AsyncSession, sr: ServiceRequest, user_id: str, role: str) -> bool:
    if role == "admin" or sr.customer_id == user_id:
        return True
    if await provider_has_lead(db, sr, user_id):
        return True
    profile = await crud.get_provider_profile_by_user(db, user_id)
    if profile is None:
        return False
    if sr.primary_provider_id == profile.id:
        return True
    return await crud.find_active_proposal(db, sr.id, profile.id) is not None


# ── Submission ───────────────────────────────────────────

async def submit_proposal(
    db: AsyncSession, request_id: str, provider: User, details: str, price: float,
) -> Proposal:
    """Direct proposal by a provider who holds a lead for the request."""
    details = (details or "").strip()
    if not details:
        raise ValidationError("Proposal details are required")
    if not price or price <= 0:
        raise ValidationError("Valid price (greater than 0) is required")

    sr = await crud.get_service_request(db, request_id)
    if not sr:
        raise NotFoundError("Service request not found")
    if sr.status not in OPEN_REQUEST_STATUSES:
        raise ValidationError(f"Service request is not accepting proposals (status: {sr.status})")
    if not await provider_has_lead(db, sr, provider.id):
        raise ForbiddenError("You can only send proposals for requests routed to you")

    profile = await crud.get_or_create_provider_profile(db, provider.id)
    if await crud.find_active_proposal(db, sr.id, profile.id):
        raise ValidationError("You have already submitted a proposal for this service request")

    proposal = await crud.create_proposal(
        db,
        service_request_id=sr.id,
        provider_id=profile.id,
        details=details,
        price=float(price),
        status=proposal_status.SENT,
    )
    emit("proposal.submitted", proposal_id=proposal.id, service_request_id=sr.id, provider_id=profile.id)
    await log_activity(
        db, "proposal_created", f'Proposal sent for "{sr.project_title}"',
        user_id=provider.id, proposalId=proposal.id, serviceRequestId=sr.id,
    )
    customer = await crud.get_user(db, sr.customer_id)
    if customer:
        email.dispatch(email.send_proposal_received_email, customer.email, sr.project_title, proposal.price)
    return proposal


# ── Rejection ────────────────────────────────────────────

def validate_rejection(reason: str, other: str | None) -> str | None:
    if reason not in proposal_status.REJECTION_REASONS:
        raise ValidationError(
            f"Rejection reason must be one of: {', '.join(proposal_status.REJECTION_REASONS)}"
        )
    other = (other or "").strip()
    if reason == "OTHER" and not other:
        raise ValidationError("Please describe the reason for rejecting this proposal")
    return other or None


async def _originating_lead(db: AsyncSession, sr: ServiceRequest, proposal: Proposal) -> Lead | None:
    """Best-effort lookup of the lead a promoted proposal came from."""
    profile = await crud.get_provider_profile(db, proposal.provider_id)
    if not profile:
        return None
    candidates = [l for l in await leads_for_request(db, sr) if l.provider_id == profile.user_id]
    for lead in candidates:
        if read_envelope(lead).pending_proposal is not None:
            return lead
    if proposal.payment_intent_id:
        for lead in candidates:
            if lead.payment_intent_id == proposal.payment_intent_id:
                return lead
    return candidates[0] if candidates else None


async def reject_proposal(
    db: AsyncSession, sr: ServiceRequest, ref: str, reason: str, other: str | None = None,
) -> dict:
    other = validate_rejection(reason, other)
    target = await resolve_target(db, sr, ref)

    try:
        await crud.lock_service_request(db, sr.id)
        proposal = None
        lead = target.lead
        if target.proposal is not None:
            proposal = await crud.lock_proposal(db, target.proposal.id)
        if proposal is not None:
            if proposal.status != proposal_status.SENT:
                raise ValidationError("Proposal has already been processed")
            proposal.status = proposal_status.REJECTED
            proposal.rejection_reason = reason
            proposal.rejection_reason_other = other
        elif target.status.upper() != proposal_status.SENT:
            raise ValidationError("Proposal has already been processed")

        if lead is None and proposal is not None:
            try:
                lead = await _originating_lead(db, sr, proposal)
            except Exception:
                logger.exception("Could not locate lead for rejected proposal %s", proposal.id)
                lead = None
        if lead is not None:
            lead.status = lead_status.REJECTED
            if read_envelope(lead).pending_proposal is not None:
                set_pending_status(lead, proposal_status.REJECTED)
        await db.commit()
    except Exception:
        await db.rollback()
        raise

    emit("proposal.rejected", service_request_id=sr.id, ref=ref,
         proposal_id=proposal.id if proposal else None, lead_id=lead.id if lead else None, reason=reason)
    if lead is not None:
        emit("lead.rejected", lead_id=lead.id, service_request_id=sr.id)
    if target.provider_user_id:
        provider = await crud.get_user(db, target.provider_user_id)
        if provider:
            email.dispatch(email.send_proposal_rejected_email, provider.email, sr.project_title)
    return {"id": proposal.id if proposal else ref, "status": proposal_status.REJECTED}


# ── Payment intents ──────────────────────────────────────

def _intent_response(intent, price: float, proposal: Proposal) -> dict:
    return {
        "client_secret": intent.client_secret,
        "amount": price,
        "payment_status": intent.status,
        "payment_intent_id": intent.id,
        "proposal_id": proposal.id,
    }


async def create_payment_intent(db: AsyncSession, gateway, sr: ServiceRequest, ref: str) -> dict:
    """Create or reuse the customer's payment intent for a proposal.

    A stored intent is reused when its amount still matches the price. A
    mismatched intent is cancelled and replaced, up to
    ``payments.max_stale_intents`` times per proposal.
    """
    settings = get_settings()
    target = await resolve_target(db, sr, ref)
    if target.status.upper() != proposal_status.SENT:
        raise NotFoundError("Proposal not found or already processed")
    price = target.price
    if not price or price <= 0:
        raise ValidationError(f"Invalid proposal price: ${price or 0}. Please contact support.")
    if not gateway.configured:
        raise PaymentGatewayUnconfigured()

    expected = to_cents(price)
    try:
        proposal = target.proposal
        if proposal is None:
            proposal = await promote_pending(db, sr, target.lead)

        if proposal.payment_intent_id:
            try:
                existing = await gateway.retrieve_intent(proposal.payment_intent_id)
            except PaymentNotFound:
                existing = None
            if existing is not None and existing.amount == expected:
                if existing.status == SUCCEEDED or existing.status in REUSABLE_STATUSES:
                    await db.commit()
                    return _intent_response(existing, price, proposal)
            if existing is not None and existing.amount != expected:
                if (proposal.stale_intent_count or 0) >= settings.payments.max_stale_intents:
                    raise ConflictError("Too many payment attempts for this proposal. Please contact support.")
                if existing.status not in TERMINAL_STATUSES:
                    try:
                        await gateway.cancel_intent(existing.id)
                    except Exception:
                        logger.exception("Failed to cancel stale payment intent %s", existing.id)
                proposal.stale_intent_count = (proposal.stale_intent_count or 0) + 1
                emit("payment_intent.cancelled", payment_intent_id=existing.id, proposal_id=proposal.id,
                     expected_cents=expected, actual_cents=existing.amount)
            proposal.payment_intent_id = None
            proposal.payment_status = proposal_status.PAYMENT_PENDING

        intent = await gateway.create_intent(
            expected,
            {
                "serviceRequestId": sr.id,
                "proposalId": proposal.id,
                "customerId": sr.customer_id,
                "providerId": target.provider_user_id or "",
                "leadId": target.lead.id if target.lead else "",
            },
            description=f"Payment for: {sr.project_title}",
        )
        proposal.payment_intent_id = intent.id
        proposal.payment_status = proposal_status.PAYMENT_PENDING
        await db.commit()
    except Exception:
        await db.rollback()
        raise

    emit("payment_intent.created", payment_intent_id=intent.id, proposal_id=proposal.id,
         service_request_id=sr.id, amount_cents=expected)
    return _intent_response(intent, price, proposal)


async def get_payment_status(db: AsyncSession, gateway, sr: ServiceRequest, ref: str) -> dict:
    target = await resolve_target(db, sr, ref)
    proposal = target.proposal
    if proposal is None or not proposal.payment_intent_id:
        return {
            "payment_status": proposal.payment_status if proposal else proposal_status.PAYMENT_PENDING,
            "payment_intent_id": None,
        }
    intent = await gateway.retrieve_intent(proposal.payment_intent_id)
    return {
        "payment_status": intent.status,
        "payment_intent_id": intent.id,
        "amount": intent.amount / 100,
        "proposal_payment_status": proposal.payment_status,
    }


def payout_fields(p: Proposal) -> dict:
    """Payout columns of a proposal, empty when the schema lacks them."""
    if not get_capabilities().payout_columns:
        return {}
    return {
        "provider_payout_amount": p.provider_payout_amount,
        "platform_fee_amount": p.platform_fee_amount,
        "payout_status": p.payout_status,
        "payout_processed_at": p.payout_processed_at.isoformat() if p.payout_processed_at else None,
    }
