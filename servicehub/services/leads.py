"""Provider-side lead handling: listing, accepting with a lead fee, rejecting."""

from __future__ import annotations

import logging

from sqlalchemy.ext.asyncio import AsyncSession

from servicehub.db import crud
from servicehub.errors import NotFoundError, PaymentGatewayUnconfigured, PaymentNotFound, ValidationError
from servicehub.models import Lead, User
from servicehub.models import lead as lead_status
from servicehub.models import proposal as proposal_status
from servicehub.services import email
from servicehub.services.activity import log_activity
from servicehub.services.events import emit
from servicehub.services.lead_metadata import PendingProposal, read_envelope, write_envelope
from servicehub.services.lead_pricing import get_lead_cost, get_lead_cost_with_discount
from servicehub.services.payments import SUCCEEDED
from servicehub.services.subscriptions import get_subscription_benefits

logger = logging.getLogger(__name__)

LEAD_FEE_TYPE = "lead_acceptance"


def _lead_dict(lead: Lead, lead_cost_cents: int, base_cost_cents: int) -> dict:
    envelope = read_envelope(lead)
    revealed = lead.status == lead_status.ACCEPTED
    pending = envelope.pending_proposal
    return {
        "id": lead.id,
        "status": lead.status,
        "service_type": lead.service_type,
        "description": lead.description,
        "location_city": lead.location_city,
        "location_state": lead.location_state,
        "location_postal_code": lead.location_postal_code,
        "service_request_id": envelope.service_request_id,
        "project_title": envelope.project_title,
        "preferred_date": envelope.preferred_date,
        "preferred_time": envelope.preferred_time,
        "is_fallback_lead": envelope.is_fallback_lead,
        "pending_proposal": pending.model_dump() if pending else None,
        "lead_cost": round(lead_cost_cents / 100, 2),
        "base_lead_cost": round(base_cost_cents / 100, 2),
        "customer_name": lead.customer_name if revealed else None,
        "customer_email": lead.customer_email if revealed else None,
        "customer_phone": lead.customer_phone if revealed else None,
        "created_at": lead.created_at.isoformat() if lead.created_at else None,
    }


async def list_provider_leads(db: AsyncSession, provider: User) -> list[dict]:
    benefits = await get_subscription_benefits(db, provider.id)
    items = []
    for lead in await crud.list_leads_for_provider(db, provider.id):
        cost = lead.lead_cost_cents or get_lead_cost_with_discount(lead.category_id, benefits)
        items.append(_lead_dict(lead, cost, get_lead_cost(lead.category_id)))
    return items


async def _open_lead(db: AsyncSession, lead_id: str, provider: User, action: str) -> Lead:
    if not await crud.get_provider_profile_by_user(db, provider.id):
        raise NotFoundError("Provider profile not found")
    lead = await crud.get_provider_lead(db, lead_id, provider.id)
    if not lead:
        raise NotFoundError("Lead not found")
    if lead.status not in lead_status.OPEN_STATUSES:
        raise ValidationError(f"Cannot {action} lead. Current status: {lead.status}")
    return lead


async def accept_lead(
    db: AsyncSession, gateway, lead_id: str, provider: User, description: str, price,
) -> dict:
    """Start the lead-fee payment and record the provider's offer on the lead.

    The lead only becomes ``accepted`` when the gateway reports the fee paid
    (see ``servicehub.services.webhooks``).
    """
    if not gateway.configured:
        raise PaymentGatewayUnconfigured()
    lead = await _open_lead(db, lead_id, provider, "accept")

    if lead.payment_intent_id:
        try:
            existing = await gateway.retrieve_intent(lead.payment_intent_id)
        except PaymentNotFound:
            logger.warning("Stored lead-fee intent %s for lead %s is gone; creating a new one",
                           lead.payment_intent_id, lead.id)
            existing = None
        if existing is not None:
            if existing.status == SUCCEEDED:
                raise ValidationError("Lead has already been paid and accepted")
            return {
                "client_secret": existing.client_secret,
                "payment_intent_id": existing.id,
                "lead_cost": round((lead.lead_cost_cents or existing.amount) / 100, 2),
                "message": "Payment intent already created. Complete payment to finalize.",
            }

    description = (description or "").strip()
    if not description:
        raise ValidationError("Proposal description is required")
    try:
        price = float(price)
    except (TypeError, ValueError):
        price = 0.0
    if price <= 0:
        raise ValidationError("Valid price (greater than 0) is required")

    envelope = read_envelope(lead)
    benefits = await get_subscription_benefits(db, provider.id)
    cost_cents = get_lead_cost_with_discount(lead.category_id, benefits)
    intent = await gateway.create_intent(
        cost_cents,
        {
            "leadId": lead.id,
            "serviceRequestId": envelope.service_request_id or "",
            "providerId": provider.id,
            "type": LEAD_FEE_TYPE,
            "proposalDescription": description[:200],
            "proposalPrice": f"{price:.2f}",
        },
        description=f"Lead acceptance fee - {lead.service_type or 'Service Request'}",
    )

    envelope.pending_proposal = PendingProposal(description=description, price=price, status=proposal_status.SENT)
    write_envelope(lead, envelope)
    await crud.update_lead(db, lead, payment_intent_id=intent.id, lead_cost_cents=cost_cents)

    emit("payment_intent.created", payment_intent_id=intent.id, lead_id=lead.id,
         service_request_id=envelope.service_request_id, amount_cents=cost_cents, kind=LEAD_FEE_TYPE)
    await log_activity(
        db, "lead_payment_intent_created", f'Payment intent created for lead "{lead.service_type}"',
        user_id=provider.id, leadId=lead.id, paymentIntentId=intent.id, leadCost=cost_cents,
        serviceRequestId=envelope.service_request_id,
    )
    customer = await crud.get_user(db, lead.customer_id)
    if customer:
        email.dispatch(email.send_lead_accepted_email, customer.email,
                       envelope.project_title or lead.service_type, provider.display_name or "A provider")
    return {
        "client_secret": intent.client_secret,
        "payment_intent_id": intent.id,
        "lead_cost": round(cost_cents / 100, 2),
        "message": "Payment intent created. Please complete payment to accept the lead.",
    }


async def reject_lead(db: AsyncSession, lead_id: str, provider: User, reason: str | None = None) -> Lead:
    lead = await _open_lead(db, lead_id, provider, "reject")
    lead = await crud.update_lead(db, lead, status=lead_status.REJECTED)
    envelope = read_envelope(lead)

    emit("lead.rejected", lead_id=lead.id, service_request_id=envelope.service_request_id, reason=reason)
    customer = await crud.get_user(db, lead.customer_id)
    if customer:
        email.dispatch(email.send_lead_rejected_email, customer.email, envelope.project_title or lead.service_type)
    await log_activity(
        db, "lead_rejected", f'Provider rejected lead "{lead.service_type}"',
        user_id=provider.id, leadId=lead.id, serviceRequestId=envelope.service_request_id, reason=reason,
    )
    return lead
