"""Payment gateway webhook handling.

Two kinds of intent flow through here. Lead-fee intents are paid by a
provider to accept a lead and carry ``type=lead_acceptance``; proposal
intents are paid by a customer and carry the real ``proposalId``. Handlers
are idempotent because the gateway redelivers events.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone

from sqlalchemy.ext.asyncio import AsyncSession

from servicehub.db import crud
from servicehub.db.capabilities import get_capabilities
from servicehub.models import Lead, Proposal
from servicehub.models import lead as lead_status
from servicehub.models import proposal as proposal_status
from servicehub.models import service_request as request_status
from servicehub.services import email
from servicehub.services.activity import log_activity
from servicehub.services.assignment import assign_next_alternative
from servicehub.services.events import emit
from servicehub.services.fees import calculate_payouts
from servicehub.services.lead_metadata import PENDING_PREFIX, parse_pending_token, read_envelope
from servicehub.services.leads import LEAD_FEE_TYPE
from servicehub.services.payments import GatewayEvent, PaymentIntent
from servicehub.services.proposals import promote_pending

logger = logging.getLogger(__name__)

SUCCEEDED_EVENT = "payment_intent.succeeded"
FAILED_EVENT = "payment_intent.payment_failed"
CANCELED_EVENT = "payment_intent.canceled"


def is_lead_fee(intent: PaymentIntent) -> bool:
    md = intent.metadata
    return md.get("type") == LEAD_FEE_TYPE or md.get("proposalId", "").startswith(PENDING_PREFIX)


async def handle_event(db: AsyncSession, event: GatewayEvent) -> dict:
    intent = event.intent
    if intent is None or event.type not in (SUCCEEDED_EVENT, FAILED_EVENT, CANCELED_EVENT):
        logger.info("Unhandled webhook event type %s", event.type)
        return {"received": True, "handled": False}

    lead_fee = is_lead_fee(intent)
    if event.type == SUCCEEDED_EVENT:
        if lead_fee:
            await confirm_lead_payment(db, intent)
        else:
            await confirm_proposal_payment(db, intent)
    elif event.type == FAILED_EVENT:
        if lead_fee:
            await lead_payment_failed(db, intent)
        else:
            await proposal_payment_failed(db, intent)
    elif not lead_fee:
        await proposal_payment_failed(db, intent)
    return {"received": True, "handled": True}


# ── Lead fees ────────────────────────────────────────────

async def _lead_for_intent(db: AsyncSession, intent: PaymentIntent) -> Lead | None:
    lead_id = intent.metadata.get("leadId") or parse_pending_token(intent.metadata.get("proposalId", ""))
    lead = await crud.get_lead(db, lead_id) if lead_id else None
    if lead is None:
        lead = await crud.find_lead_by_intent(db, intent.id)
    return lead


async def confirm_lead_payment(db: AsyncSession, intent: PaymentIntent) -> Lead | None:
    """Accept the lead, reveal the customer's contact and materialize the offer."""
    lead = await _lead_for_intent(db, intent)
    if lead is None:
        logger.warning("Lead-fee intent %s matches no lead", intent.id)
        return None

    try:
        lead = await crud.lock_lead(db, lead.id)
        if lead.status == lead_status.ACCEPTED:
            await db.commit()
            return lead
        envelope = read_envelope(lead)
        sr = await crud.get_service_request(db, envelope.service_request_id) if envelope.service_request_id else None
        customer = await crud.get_user(db, lead.customer_id)

        lead.status = lead_status.ACCEPTED
        lead.payment_intent_id = intent.id
        if customer:
            lead.customer_name = customer.display_name
            lead.customer_email = customer.email
            lead.customer_phone = customer.phone

        proposal = None
        profile = await crud.get_provider_profile_by_user(db, lead.provider_id)
        if sr is not None and profile is not None:
            if envelope.pending_proposal is not None and (envelope.pending_proposal.price or 0) > 0:
                proposal = await promote_pending(db, sr, lead)
            if sr.status in (request_status.REQUEST_CREATED, request_status.LEAD_ASSIGNED):
                sr.primary_provider_id = profile.id
                sr.status = request_status.LEAD_ASSIGNED
        await db.commit()
    except Exception:
        await db.rollback()
        raise

    emit("lead.accepted", lead_id=lead.id, service_request_id=sr.id if sr else None,
         payment_intent_id=intent.id, proposal_id=proposal.id if proposal else None)
    await log_activity(
        db, "lead_accepted", f'Lead accepted for "{lead.service_type}"',
        user_id=lead.provider_id, leadId=lead.id, paymentIntentId=intent.id,
    )
    if customer and proposal is not None and sr is not None:
        email.dispatch(email.send_proposal_received_email, customer.email, sr.project_title, proposal.price)
    return lead


async def lead_payment_failed(db: AsyncSession, intent: PaymentIntent) -> Lead | None:
    """Tell the provider and offer the request to the next alternate.

    The failed lead keeps its open status so the provider can retry.
    """
    lead = await _lead_for_intent(db, intent)
    if lead is None:
        logger.warning("Failed lead-fee intent %s matches no lead", intent.id)
        return None
    lead_id = lead.id
    envelope = read_envelope(lead)

    provider = await crud.get_user(db, lead.provider_id)
    if provider:
        email.dispatch(email.send_lead_payment_failed_email, provider.email,
                       envelope.project_title or lead.service_type)

    request_id = intent.metadata.get("serviceRequestId") or envelope.service_request_id
    if request_id:
        try:
            await assign_next_alternative(db, request_id, lead)
        except Exception:
            logger.exception("Reassignment after failed lead fee %s failed", intent.id)
            await db.rollback()
            lead = await crud.get_lead(db, lead_id)
    await log_activity(
        db, "lead_payment_failed", f'Lead payment failed for "{lead.service_type}"',
        user_id=lead.provider_id, leadId=lead.id, paymentIntentId=intent.id, serviceRequestId=request_id,
    )
    return lead


# ── Proposal payments ────────────────────────────────────

async def _proposal_for_intent(db: AsyncSession, intent: PaymentIntent) -> Proposal | None:
    proposal = await crud.find_proposal_by_intent(db, intent.id, lock=True)
    if proposal is not None:
        return proposal
    proposal_id = intent.metadata.get("proposalId")
    if not proposal_id:
        return None
    proposal = await crud.lock_proposal(db, proposal_id)
    if proposal is not None and proposal.payment_intent_id not in (None, intent.id):
        logger.warning("Intent %s names proposal %s which holds intent %s",
                       intent.id, proposal_id, proposal.payment_intent_id)
        return None
    return proposal


async def confirm_proposal_payment(db: AsyncSession, intent: PaymentIntent) -> Proposal | None:
    try:
        proposal = await _proposal_for_intent(db, intent)
        if proposal is None:
            logger.warning("Proposal intent %s matches no proposal", intent.id)
            await db.commit()
            return None
        if proposal.payment_status == proposal_status.PAYMENT_SUCCEEDED:
            await db.commit()
            return proposal

        proposal.payment_intent_id = intent.id
        proposal.payment_status = proposal_status.PAYMENT_SUCCEEDED
        proposal.paid_at = proposal.paid_at or datetime.now(timezone.utc)
        if get_capabilities().payout_columns:
            if proposal.provider_payout_amount is None or proposal.platform_fee_amount is None:
                split = calculate_payouts(proposal.price)
                proposal.provider_payout_amount = split.provider_amount
                proposal.platform_fee_amount = split.platform_fee
            if proposal.payout_status is None:
                proposal.payout_status = proposal_status.PAYOUT_PENDING
        await db.commit()
    except Exception:
        await db.rollback()
        raise

    emit("payment_intent.succeeded", payment_intent_id=intent.id, proposal_id=proposal.id,
         service_request_id=proposal.service_request_id, amount_cents=intent.amount)
    return proposal


async def proposal_payment_failed(db: AsyncSession, intent: PaymentIntent) -> Proposal | None:
    try:
        proposal = await _proposal_for_intent(db, intent)
        if proposal is None or proposal.payment_status == proposal_status.PAYMENT_SUCCEEDED:
            await db.commit()
            return proposal
        proposal.payment_status = proposal_status.PAYMENT_FAILED
        await db.commit()
    except Exception:
        await db.rollback()
        raise

    emit("payment_intent.failed", payment_intent_id=intent.id, proposal_id=proposal.id,
         service_request_id=proposal.service_request_id)
    return proposal
