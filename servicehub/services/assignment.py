"""Service request creation and lead routing.

Creates requests, routes the primary lead, records alternates, reassigns a
lead when the provider's lead fee fails, and hands expired priority leads to
fallback businesses.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone, timedelta

from sqlalchemy.ext.asyncio import AsyncSession

from servicehub.config import get_settings
from servicehub.db import crud
from servicehub.errors import ValidationError
from servicehub.models import Business, Lead, ServiceRequest, User
from servicehub.models import lead as lead_status
from servicehub.models import service_request as request_status
from servicehub.schemas import ServiceRequestCreate
from servicehub.services import email
from servicehub.services.activity import log_activity
from servicehub.services.events import emit
from servicehub.services.lead_metadata import LeadEnvelope, read_envelope, write_envelope
from servicehub.services.ranking import assign_providers

logger = logging.getLogger(__name__)


async def _service_type(db: AsyncSession, sr: ServiceRequest) -> str:
    category = await crud.get_category(db, sr.category_id)
    name = category.name if category else "Service Request"
    if sr.subcategory_id:
        sub = await crud.get_subcategory(db, sr.subcategory_id)
        if sub:
            return f"{name} - {sub.name}"
    return name


def _base_envelope(sr: ServiceRequest) -> LeadEnvelope:
    return LeadEnvelope(
        service_request_id=sr.id,
        project_title=sr.project_title,
        preferred_date=sr.preferred_date.isoformat() if sr.preferred_date else None,
        preferred_time=sr.preferred_time,
        attachments=list(sr.attachments or []),
    )


async def _add_lead(
    db: AsyncSession, sr: ServiceRequest, provider_user_id: str, business: Business | None,
    envelope: LeadEnvelope, status: str = lead_status.SUBMITTED,
) -> Lead:
    """Route a lead without revealing customer contact details."""
    lead = await crud.add_lead(
        db,
        customer_id=sr.customer_id,
        business_id=business.id if business else None,
        provider_id=provider_user_id,
        service_type=await _service_type(db, sr),
        category_id=sr.category_id,
        location_city=business.city if business and business.city else None,
        location_state=business.state if business and business.state else None,
        location_postal_code=sr.zip_code,
        description=sr.project_description,
        status=status,
        routed_at=datetime.now(timezone.utc),
    )
    write_envelope(lead, envelope)
    return lead


async def _notify_new_lead(db: AsyncSession, provider_user_id: str, sr: ServiceRequest, lead: Lead) -> None:
    provider = await crud.get_user(db, provider_user_id)
    if provider and provider.email:
        email.dispatch(email.send_new_lead_email, provider.email, sr.project_title, lead.id)


async def leads_for_request(db: AsyncSession, sr: ServiceRequest) -> list[Lead]:
    """Leads whose envelope points at this request."""
    leads = await crud.list_leads_for_customer(db, sr.customer_id)
    return [lead for lead in leads if read_envelope(lead).service_request_id == sr.id]


# ── Creation ─────────────────────────────────────────────

async def validate_request_input(db: AsyncSession, data: ServiceRequestCreate) -> list[str]:
    """Validate catalog references. Returns the shortlist filtered to known businesses."""
    if not (data.category_id and data.project_title and data.project_description and data.zip_code):
        raise ValidationError("Category, project title, description, and zip code are required")
    category = await crud.get_category(db, data.category_id)
    if not category:
        raise ValidationError("Invalid category")
    if data.subcategory_id:
        sub = await crud.get_subcategory(db, data.subcategory_id)
        if not sub:
            raise ValidationError("Subcategory not found")
        if sub.category_id != category.id:
            raise ValidationError("Subcategory does not match the selected category")
    known = await crud.list_businesses_by_ids(db, list(dict.fromkeys(data.selected_business_ids)))
    known_ids = {b.id for b in known}
    return [bid for bid in dict.fromkeys(data.selected_business_ids) if bid in known_ids]


async def create_service_request(db: AsyncSession, customer: User, data: ServiceRequestCreate) -> ServiceRequest:
    shortlist = await validate_request_input(db, data)
    sr = await crud.create_service_request(
        db,
        customer_id=customer.id,
        category_id=data.category_id,
        subcategory_id=data.subcategory_id or None,
        zip_code=data.zip_code,
        project_title=data.project_title,
        project_description=data.project_description,
        attachments=list(data.attachments),
        preferred_date=data.preferred_date,
        preferred_time=data.preferred_time,
        selected_business_ids=shortlist,
        status=request_status.REQUEST_CREATED,
    )
    emit("service_request.created", service_request_id=sr.id, customer_id=customer.id)
    await log_activity(
        db, "service_request_created", f'Service request "{sr.project_title}" created',
        user_id=customer.id, serviceRequestId=sr.id, categoryId=sr.category_id,
    )

    try:
        await route_request(db, sr)
    except Exception:
        logger.exception("Provider assignment failed for request %s", sr.id)
        await db.rollback()
        sr = await crud.get_service_request(db, sr.id)
    return sr


async def route_request(db: AsyncSession, sr: ServiceRequest) -> Lead | None:
    """Rank providers, route the primary lead and record alternates."""
    settings = get_settings()
    assignment = await assign_providers(db, sr)
    if not assignment.primary:
        return None

    primary = assignment.primary
    envelope = _base_envelope(sr)
    envelope.priority_expires_at = datetime.now(timezone.utc) + timedelta(hours=settings.leads.priority_window_hours)
    envelope.fallback_business_ids = [alt.business.id for alt in assignment.alternates]
    lead = await _add_lead(db, sr, primary.owner_id, primary.business, envelope)

    for position, alt in enumerate(assignment.alternates, start=1):
        await crud.add_alternative(
            db, sr.id, alt.provider_profile_id, position, business_id=alt.business.id,
        )

    sr.primary_provider_id = primary.provider_profile_id
    sr.status = request_status.LEAD_ASSIGNED
    await db.commit()

    emit("lead.assigned", lead_id=lead.id, service_request_id=sr.id,
         provider_user_id=primary.owner_id, business_id=primary.business.id)
    await _notify_new_lead(db, primary.owner_id, sr, lead)
    return lead


# ── Reassignment ─────────────────────────────────────────

async def assign_next_alternative(db: AsyncSession, request_id: str, failed_lead: Lead) -> Lead | None:
    """Route a new lead to the first alternate that holds no lead for the request."""
    sr = await crud.get_service_request(db, request_id)
    if not sr:
        logger.warning("Cannot reassign lead %s: request %s not found", failed_lead.id, request_id)
        return None

    existing = await leads_for_request(db, sr)
    holders = {lead.provider_id for lead in existing if lead.status != lead_status.REJECTED}
    holders.add(failed_lead.provider_id)

    for alt in await crud.list_alternatives(db, request_id):
        profile = await crud.get_provider_profile(db, alt.provider_id)
        if not profile or profile.user_id in holders:
            continue
        business = None
        if alt.business_id:
            business = await crud.get_business(db, alt.business_id)
        if business is None:
            business = await crud.find_business(db, owner_id=profile.user_id)

        envelope = _base_envelope(sr)
        envelope.assigned_from = failed_lead.id
        envelope.position = alt.position
        lead = await _add_lead(db, sr, profile.user_id, business, envelope, status=lead_status.ROUTED)
        await db.commit()

        emit("lead.assigned", lead_id=lead.id, service_request_id=sr.id,
             provider_user_id=profile.user_id, assigned_from=failed_lead.id, position=alt.position)
        await _notify_new_lead(db, profile.user_id, sr, lead)
        return lead

    logger.info("No alternate available for request %s after lead %s failed", request_id, failed_lead.id)
    return None


# ── Fallback leads ───────────────────────────────────────

async def assign_fallback_leads(db: AsyncSession, request_id: str, business_ids: list[str]) -> list[Lead]:
    """Offer the request to fallback businesses that do not yet hold a lead for it."""
    if not business_ids:
        return []
    sr = await crud.get_service_request(db, request_id)
    if not sr:
        logger.warning("Fallback assignment skipped: request %s not found", request_id)
        return []

    existing = await leads_for_request(db, sr)
    if any(l.status == lead_status.ACCEPTED and l.business_id in business_ids for l in existing):
        return []
    taken = {(l.business_id, l.provider_id) for l in existing}

    created = []
    businesses = await crud.list_businesses_by_ids(db, business_ids, owned_only=True, active_only=True)
    for business in businesses:
        if business.owner_id == sr.customer_id or (business.id, business.owner_id) in taken:
            continue
        envelope = _base_envelope(sr)
        envelope.is_fallback_lead = True
        lead = await _add_lead(db, sr, business.owner_id, business, envelope)
        created.append(lead)

    if created:
        await db.commit()
        for lead in created:
            emit("lead.assigned", lead_id=lead.id, service_request_id=sr.id,
                 provider_user_id=lead.provider_id, fallback=True)
            await _notify_new_lead(db, lead.provider_id, sr, lead)
    return created


async def run_fallback_assignment(db: AsyncSession, now: datetime | None = None) -> dict:
    """Process every open lead whose priority window has expired."""
    processed = 0
    assigned = 0
    due = []
    for lead in await crud.list_open_leads(db):
        envelope = read_envelope(lead)
        if envelope.service_request_id and envelope.fallback_business_ids and envelope.priority_expired(now):
            due.append((lead.id, envelope))

    # A failed pass rolls back and expires every loaded lead
    for lead_id, envelope in due:
        try:
            created = await assign_fallback_leads(db, envelope.service_request_id, envelope.fallback_business_ids)
        except Exception:
            logger.exception("Fallback assignment failed for lead %s", lead_id)
            await db.rollback()
            continue
        assigned += len(created)
        processed += 1
    logger.info("Fallback assignment: %d leads processed, %d leads assigned", processed, assigned)
    return {"processed": processed, "assigned": assigned}
