"""Customer acceptance of a paid proposal.

The payment is verified against the gateway before anything is written. The
state change itself runs in one transaction holding row locks on the service
request and the proposal, so competing accepts for one request serialize and
the loser sees the request already in progress.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timezone

from sqlalchemy import update
from sqlalchemy.exc import DBAPIError, IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from servicehub.db import crud
from servicehub.db.capabilities import get_capabilities
from servicehub.errors import (
    ConflictError, NotFoundError, PaymentAmountMismatch, PaymentIncomplete, ValidationError, is_lock_conflict,
)
from servicehub.models import Proposal, ServiceRequest
from servicehub.models import lead as lead_status
from servicehub.models import proposal as proposal_status
from servicehub.models import service_request as request_status
from servicehub.services import email
from servicehub.services.activity import log_activity
from servicehub.services.assignment import leads_for_request
from servicehub.services.auth import AuthContext
from servicehub.services.events import emit
from servicehub.services.fees import calculate_payouts, to_cents
from servicehub.services.lead_metadata import read_envelope, set_pending_status
from servicehub.services.leads import LEAD_FEE_TYPE
from servicehub.services.payments import SUCCEEDED, PaymentIntent
from servicehub.services.proposals import promote_pending, resolve_target

logger = logging.getLogger(__name__)


@dataclass
class AcceptanceResult:
    proposal_id: str
    work_order_id: str
    service_request_id: str
    status: str = request_status.IN_PROGRESS


async def _verify_payment(gateway, payment_intent_id: str, expected_price: float | None) -> PaymentIntent:
    intent = await gateway.retrieve_intent(payment_intent_id)
    if intent.metadata.get("type") == LEAD_FEE_TYPE:
        raise ValidationError("This payment is a lead fee and cannot pay for a proposal")
    if intent.status != SUCCEEDED:
        raise PaymentIncomplete(intent.status)
    if expected_price:
        expected = to_cents(expected_price)
        if intent.amount != expected:
            raise PaymentAmountMismatch(expected, intent.amount)
    return intent


async def _reject_siblings(db: AsyncSession, sr: ServiceRequest, winner: Proposal, winning_lead_id: str | None) -> None:
    await db.execute(
        update(Proposal)
        .where(
            Proposal.service_request_id == sr.id,
            Proposal.status == proposal_status.SENT,
            Proposal.id != winner.id,
        )
        .values(status=proposal_status.REJECTED)
        .execution_options(synchronize_session=False)
    )
    profile = await crud.get_provider_profile(db, winner.provider_id)
    winner_user_id = profile.user_id if profile else None
    for lead in await leads_for_request(db, sr):
        if lead.id == winning_lead_id or lead.provider_id == winner_user_id:
            continue
        pending = read_envelope(lead).pending_proposal
        if pending is not None and pending.status.upper() == proposal_status.SENT:
            lead.status = lead_status.REJECTED
            set_pending_status(lead, proposal_status.REJECTED)


async def accept_proposal(
    db: AsyncSession,
    gateway,
    request_id: str,
    proposal_ref: str,
    payment_intent_id: str,
    actor: AuthContext,
) -> AcceptanceResult:
    """Accept a proposal (or pending token) once its payment has succeeded."""
    if not payment_intent_id:
        raise ValidationError("Payment intent ID is required")
    sr = await crud.get_customer_request(db, request_id, actor.user_id)
    if not sr:
        raise NotFoundError("Service request not found")

    target = await resolve_target(db, sr, proposal_ref)
    intent = await _verify_payment(gateway, payment_intent_id, target.price)
    now = datetime.now(timezone.utc)

    try:
        sr = await crud.lock_service_request(db, sr.id)
        if sr.status in (request_status.IN_PROGRESS, request_status.COMPLETED):
            raise ValidationError("Service request is already in progress")
        if sr.status not in (request_status.REQUEST_CREATED, request_status.LEAD_ASSIGNED):
            raise ValidationError(f"Service request cannot accept proposals (status: {sr.status})")

        lead = target.lead
        if target.is_pending:
            proposal = await promote_pending(db, sr, lead, payment_intent_id=intent.id)
            if proposal.payment_intent_id and proposal.payment_intent_id != intent.id:
                raise ValidationError("Payment does not belong to this proposal")
            proposal.payment_intent_id = intent.id
        else:
            proposal = await crud.lock_proposal(db, target.proposal.id)
            if proposal.payment_intent_id != intent.id:
                raise ValidationError("Payment does not belong to this proposal")

        if proposal.status == proposal_status.ACCEPTED:
            raise ValidationError("Proposal has already been accepted")
        if proposal.status == proposal_status.REJECTED:
            raise ValidationError("Proposal has been rejected")

        proposal.status = proposal_status.ACCEPTED
        proposal.payment_status = proposal_status.PAYMENT_SUCCEEDED
        proposal.paid_at = now
        if get_capabilities().payout_columns and proposal.provider_payout_amount is None:
            split = calculate_payouts(proposal.price)
            proposal.provider_payout_amount = split.provider_amount
            proposal.platform_fee_amount = split.platform_fee
            proposal.payout_status = proposal_status.PAYOUT_PENDING

        if lead is not None:
            lead.status = lead_status.ACCEPTED
            set_pending_status(lead, proposal_status.ACCEPTED)

        await _reject_siblings(db, sr, proposal, lead.id if lead else None)

        sr.status = request_status.IN_PROGRESS
        sr.primary_provider_id = proposal.provider_id
        work_order = await crud.add_work_order(db, sr.id, proposal.provider_id, proposal.id)
        await db.commit()
    except IntegrityError:
        await db.rollback()
        raise ConflictError("Service request was accepted concurrently. Please refresh and retry.")
    except DBAPIError as e:
        await db.rollback()
        if is_lock_conflict(e):
            logger.warning("Lock conflict accepting proposal %s on request %s", proposal_ref, request_id)
            raise ConflictError("Another update to this request is in progress. Please retry.")
        raise
    except Exception:
        await db.rollback()
        raise

    emit("proposal.accepted", proposal_id=proposal.id, service_request_id=sr.id,
         payment_intent_id=intent.id, amount_cents=intent.amount)
    emit("work_order.created", work_order_id=work_order.id, service_request_id=sr.id,
         provider_id=proposal.provider_id)
    await _notify_acceptance(db, sr, proposal, actor)
    return AcceptanceResult(proposal_id=proposal.id, work_order_id=work_order.id, service_request_id=sr.id)


async def _notify_acceptance(db: AsyncSession, sr: ServiceRequest, proposal: Proposal, actor: AuthContext) -> None:
    try:
        profile = await crud.get_provider_profile(db, proposal.provider_id)
        provider = await crud.get_user(db, profile.user_id) if profile else None
        if provider:
            email.dispatch(email.send_proposal_accepted_email, provider.email, sr.project_title, proposal.price)
        email.dispatch(email.send_payment_confirmed_email, actor.email, sr.project_title, proposal.price)
    except Exception:
        logger.exception("Acceptance notifications failed for proposal %s", proposal.id)
    await log_activity(
        db, "proposal_accepted", f'Proposal accepted for "{sr.project_title}"',
        user_id=actor.user_id, proposalId=proposal.id, serviceRequestId=sr.id,
    )
