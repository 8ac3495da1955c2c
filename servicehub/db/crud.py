"""CRUD operations for marketplace models.

Helpers named ``create_*``/``update_*`` commit. Helpers named ``add_*`` and the
``lock_*`` readers only flush or read, so they can run inside a larger
transaction owned by the caller.
"""

from __future__ import annotations

from sqlalchemy import select, func, insert, or_
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import load_only
from ulid import ULID

from servicehub.db.capabilities import get_capabilities
from servicehub.models import (
    User, Category, SubCategory, Business, ProviderProfile,
    UserSubscription, ServiceRequest, AlternativeProviderSelection,
    Lead, Proposal, WorkOrder, Review, ActivityLog,
)
from servicehub.models import lead as lead_status
from servicehub.models import proposal as proposal_status
from servicehub.models import service_request as request_status
from servicehub.models.proposal import PAYOUT_COLUMNS


# ── User ─────────────────────────────────────────────────

async def get_user(db: AsyncSession, user_id: str) -> User | None:
    return await db.get(User, user_id)


async def get_user_by_email(db: AsyncSession, email: str) -> User | None:
    result = await db.execute(select(User).where(User.email == email.lower()))
    return result.scalars().first()


async def create_user(
    db: AsyncSession, email: str, password_hash: str = "", role: str = "customer",
    display_name: str = "", phone: str = "",
) -> User:
    user = User(
        email=email.lower(), password_hash=password_hash, role=role,
        display_name=display_name, phone=phone,
    )
    db.add(user)
    await db.commit()
    await db.refresh(user)
    return user


# ── Catalog ──────────────────────────────────────────────

async def get_category(db: AsyncSession, category_id: str) -> Category | None:
    return await db.get(Category, category_id)


async def get_subcategory(db: AsyncSession, subcategory_id: str) -> SubCategory | None:
    return await db.get(SubCategory, subcategory_id)


async def list_categories(db: AsyncSession) -> list[Category]:
    result = await db.execute(select(Category).order_by(Category.name))
    return list(result.scalars().all())


async def create_category(db: AsyncSession, name: str, description: str = "") -> Category:
    category = Category(name=name, description=description)
    db.add(category)
    await db.commit()
    await db.refresh(category)
    return category


async def create_subcategory(db: AsyncSession, category_id: str, name: str) -> SubCategory:
    sub = SubCategory(category_id=category_id, name=name)
    db.add(sub)
    await db.commit()
    await db.refresh(sub)
    return sub


# ── Business ─────────────────────────────────────────────

async def get_business(db: AsyncSession, business_id: str) -> Business | None:
    return await db.get(Business, business_id)


async def create_business(db: AsyncSession, name: str, **kwargs) -> Business:
    business = Business(name=name, **kwargs)
    db.add(business)
    await db.commit()
    await db.refresh(business)
    return business


async def list_matching_businesses(db: AsyncSession, category_id: str, zip_code: str) -> list[Business]:
    """Active, owned businesses in a category and zip code."""
    result = await db.execute(
        select(Business).where(
            Business.category_id == category_id,
            Business.zip_code == zip_code,
            Business.is_active == True,
            Business.owner_id.is_not(None),
        ).order_by(Business.id)
    )
    return list(result.scalars().all())


async def list_businesses_by_ids(
    db: AsyncSession, business_ids: list[str], owned_only: bool = False, active_only: bool = False,
) -> list[Business]:
    if not business_ids:
        return []
    stmt = select(Business).where(Business.id.in_(business_ids))
    if owned_only:
        stmt = stmt.where(Business.owner_id.is_not(None))
    if active_only:
        stmt = stmt.where(Business.is_active == True)
    result = await db.execute(stmt.order_by(Business.id))
    return list(result.scalars().all())


async def find_business(
    db: AsyncSession, owner_id: str | None = None, category_id: str | None = None,
) -> Business | None:
    """First business matching the given owner and/or category, oldest first."""
    stmt = select(Business)
    if owner_id is not None:
        stmt = stmt.where(Business.owner_id == owner_id)
    if category_id is not None:
        stmt = stmt.where(Business.category_id == category_id)
    result = await db.execute(stmt.order_by(Business.created_at, Business.id).limit(1))
    return result.scalars().first()


async def list_businesses_for_owner(db: AsyncSession, owner_id: str) -> list[Business]:
    result = await db.execute(select(Business).where(Business.owner_id == owner_id))
    return list(result.scalars().all())


# ── ProviderProfile ──────────────────────────────────────

async def get_provider_profile(db: AsyncSession, profile_id: str) -> ProviderProfile | None:
    return await db.get(ProviderProfile, profile_id)


async def get_provider_profile_by_user(db: AsyncSession, user_id: str) -> ProviderProfile | None:
    result = await db.execute(select(ProviderProfile).where(ProviderProfile.user_id == user_id))
    return result.scalars().first()


async def get_or_create_provider_profile(db: AsyncSession, user_id: str) -> ProviderProfile:
    """Return the user's provider profile, creating it if needed.

    A concurrent creator wins the unique constraint on ``user_id``; the loser
    rolls back and reads the winner's row.
    """
    profile = await get_provider_profile_by_user(db, user_id)
    if profile:
        return profile
    profile = ProviderProfile(user_id=user_id)
    db.add(profile)
    try:
        await db.commit()
        return profile
    except IntegrityError:
        await db.rollback()
        profile = await get_provider_profile_by_user(db, user_id)
        if profile is None:
            raise
        return profile


# ── Subscription ─────────────────────────────────────────

async def get_active_subscription(db: AsyncSession, user_id: str) -> UserSubscription | None:
    result = await db.execute(
        select(UserSubscription)
        .where(UserSubscription.user_id == user_id, UserSubscription.status == "ACTIVE")
        .order_by(UserSubscription.created_at.desc())
    )
    return result.scalars().first()


# ── ServiceRequest ───────────────────────────────────────

async def create_service_request(db: AsyncSession, **kwargs) -> ServiceRequest:
    sr = ServiceRequest(**kwargs)
    db.add(sr)
    await db.commit()
    await db.refresh(sr)
    return sr


async def get_service_request(db: AsyncSession, request_id: str) -> ServiceRequest | None:
    return await db.get(ServiceRequest, request_id)


async def get_customer_request(db: AsyncSession, request_id: str, customer_id: str) -> ServiceRequest | None:
    result = await db.execute(
        select(ServiceRequest).where(
            ServiceRequest.id == request_id, ServiceRequest.customer_id == customer_id
        )
    )
    return result.scalars().first()


async def lock_service_request(db: AsyncSession, request_id: str) -> ServiceRequest | None:
    """Load a request under an update lock for the current transaction."""
    result = await db.execute(
        select(ServiceRequest)
        .where(ServiceRequest.id == request_id)
        .with_for_update()
        .execution_options(populate_existing=True)
    )
    return result.scalars().first()


async def update_service_request(db: AsyncSession, sr: ServiceRequest, **kwargs) -> ServiceRequest:
    for k, v in kwargs.items():
        setattr(sr, k, v)
    await db.commit()
    await db.refresh(sr)
    return sr


async def list_customer_requests(db: AsyncSession, customer_id: str) -> list[ServiceRequest]:
    result = await db.execute(
        select(ServiceRequest)
        .where(ServiceRequest.customer_id == customer_id)
        .order_by(ServiceRequest.created_at.desc())
    )
    return list(result.scalars().all())


# ── AlternativeProviderSelection ─────────────────────────

async def add_alternative(
    db: AsyncSession, service_request_id: str, provider_id: str, position: int,
    business_id: str | None = None,
) -> AlternativeProviderSelection:
    alt = AlternativeProviderSelection(
        service_request_id=service_request_id, provider_id=provider_id,
        business_id=business_id, position=position,
    )
    db.add(alt)
    await db.flush()
    return alt


async def list_alternatives(db: AsyncSession, service_request_id: str) -> list[AlternativeProviderSelection]:
    result = await db.execute(
        select(AlternativeProviderSelection)
        .where(AlternativeProviderSelection.service_request_id == service_request_id)
        .order_by(AlternativeProviderSelection.position)
    )
    return list(result.scalars().all())


# ── Lead ─────────────────────────────────────────────────

async def add_lead(db: AsyncSession, **kwargs) -> Lead:
    lead = Lead(**kwargs)
    db.add(lead)
    await db.flush()
    return lead


async def get_lead(db: AsyncSession, lead_id: str) -> Lead | None:
    return await db.get(Lead, lead_id)


async def get_provider_lead(db: AsyncSession, lead_id: str, provider_user_id: str) -> Lead | None:
    result = await db.execute(
        select(Lead).where(Lead.id == lead_id, Lead.provider_id == provider_user_id)
    )
    return result.scalars().first()


async def lock_lead(db: AsyncSession, lead_id: str) -> Lead | None:
    result = await db.execute(
        select(Lead)
        .where(Lead.id == lead_id)
        .with_for_update()
        .execution_options(populate_existing=True)
    )
    return result.scalars().first()


async def update_lead(db: AsyncSession, lead: Lead, **kwargs) -> Lead:
    for k, v in kwargs.items():
        setattr(lead, k, v)
    await db.commit()
    await db.refresh(lead)
    return lead


async def list_leads_for_customer(db: AsyncSession, customer_id: str) -> list[Lead]:
    result = await db.execute(
        select(Lead).where(Lead.customer_id == customer_id).order_by(Lead.created_at, Lead.id)
    )
    return list(result.scalars().all())


async def list_leads_for_provider(db: AsyncSession, provider_user_id: str) -> list[Lead]:
    result = await db.execute(
        select(Lead).where(Lead.provider_id == provider_user_id).order_by(Lead.created_at.desc())
    )
    return list(result.scalars().all())


async def list_open_leads(db: AsyncSession) -> list[Lead]:
    result = await db.execute(
        select(Lead).where(Lead.status.in_(lead_status.OPEN_STATUSES)).order_by(Lead.created_at)
    )
    return list(result.scalars().all())


async def find_lead_by_intent(db: AsyncSession, payment_intent_id: str) -> Lead | None:
    result = await db.execute(select(Lead).where(Lead.payment_intent_id == payment_intent_id))
    return result.scalars().first()


# ── Proposal ─────────────────────────────────────────────

def _proposal_options() -> list:
    """Restrict proposal loads to base columns when payout columns are absent."""
    if get_capabilities().payout_columns:
        return []
    base = [c for c in Proposal.__table__.columns if c.name not in PAYOUT_COLUMNS]
    return [load_only(*[getattr(Proposal, c.key) for c in base])]


def select_proposals():
    return select(Proposal).options(*_proposal_options())


async def _insert_named(db: AsyncSession, model, options: list, **kwargs):
    """INSERT naming only the given columns, then load the row back.

    The ORM unit of work writes NULL for every unset nullable column, which
    fails against tables that predate a migration.
    """
    kwargs.setdefault("id", str(ULID()))
    mapper = model.__mapper__
    values = {mapper.get_property(k).columns[0].name: v for k, v in kwargs.items()}
    await db.execute(insert(model.__table__).values(**values))
    result = await db.execute(select(model).options(*options).where(model.id == kwargs["id"]))
    return result.scalars().one()


async def add_proposal(db: AsyncSession, **kwargs) -> Proposal:
    if not get_capabilities().payout_columns:
        return await _insert_named(db, Proposal, _proposal_options(), **kwargs)
    proposal = Proposal(**kwargs)
    db.add(proposal)
    await db.flush()
    return proposal


async def create_proposal(db: AsyncSession, **kwargs) -> Proposal:
    proposal = await add_proposal(db, **kwargs)
    await db.commit()
    return proposal


async def reload_proposal(db: AsyncSession, proposal_id: str) -> Proposal | None:
    """Fresh read that overwrites any in-memory state for the row."""
    result = await db.execute(
        select_proposals()
        .where(Proposal.id == proposal_id)
        .execution_options(populate_existing=True)
    )
    return result.scalars().first()


async def get_request_proposal(db: AsyncSession, proposal_id: str, request_id: str) -> Proposal | None:
    result = await db.execute(
        select_proposals().where(Proposal.id == proposal_id, Proposal.service_request_id == request_id)
    )
    return result.scalars().first()


async def lock_proposal(db: AsyncSession, proposal_id: str) -> Proposal | None:
    result = await db.execute(
        select_proposals()
        .where(Proposal.id == proposal_id)
        .with_for_update()
        .execution_options(populate_existing=True)
    )
    return result.scalars().first()


async def find_proposal_by_intent(
    db: AsyncSession, payment_intent_id: str, request_id: str | None = None, lock: bool = False,
) -> Proposal | None:
    stmt = select_proposals().where(Proposal.payment_intent_id == payment_intent_id)
    if request_id is not None:
        stmt = stmt.where(Proposal.service_request_id == request_id)
    if lock:
        stmt = stmt.with_for_update().execution_options(populate_existing=True)
    result = await db.execute(stmt)
    return result.scalars().first()


async def find_active_proposal(
    db: AsyncSession, request_id: str, provider_id: str, lock: bool = False,
) -> Proposal | None:
    """The provider's SENT or ACCEPTED proposal for a request, if any."""
    stmt = select_proposals().where(
        Proposal.service_request_id == request_id,
        Proposal.provider_id == provider_id,
        Proposal.status.in_(proposal_status.ACTIVE_STATUSES),
    ).order_by(Proposal.created_at)
    if lock:
        stmt = stmt.with_for_update().execution_options(populate_existing=True)
    result = await db.execute(stmt)
    return result.scalars().first()


async def list_proposals_for_request(db: AsyncSession, request_id: str) -> list[Proposal]:
    result = await db.execute(
        select_proposals()
        .where(Proposal.service_request_id == request_id)
        .order_by(Proposal.created_at.desc())
    )
    return list(result.scalars().all())


async def get_accepted_paid_proposal(db: AsyncSession, request_id: str) -> Proposal | None:
    result = await db.execute(
        select_proposals().where(
            Proposal.service_request_id == request_id,
            Proposal.status == proposal_status.ACCEPTED,
            Proposal.payment_status == proposal_status.PAYMENT_SUCCEEDED,
        )
    )
    return result.scalars().first()


async def list_paid_proposals_for_provider(db: AsyncSession, provider_id: str) -> list[Proposal]:
    result = await db.execute(
        select_proposals()
        .where(
            Proposal.provider_id == provider_id,
            Proposal.payment_status == proposal_status.PAYMENT_SUCCEEDED,
        )
        .order_by(Proposal.paid_at.desc())
        .execution_options(populate_existing=True)
    )
    return list(result.scalars().all())


async def list_payable_proposals(db: AsyncSession) -> list[Proposal]:
    """Accepted, paid proposals on approved or closed requests with payout not yet done."""
    result = await db.execute(
        select_proposals()
        .join(ServiceRequest, ServiceRequest.id == Proposal.service_request_id)
        .where(
            Proposal.status == proposal_status.ACCEPTED,
            Proposal.payment_status == proposal_status.PAYMENT_SUCCEEDED,
            or_(Proposal.payout_status.is_(None), Proposal.payout_status == proposal_status.PAYOUT_PENDING),
            ServiceRequest.status.in_((request_status.APPROVED, request_status.CLOSED)),
        )
        .order_by(Proposal.created_at)
    )
    return list(result.scalars().all())


async def update_proposal(db: AsyncSession, proposal: Proposal, **kwargs) -> Proposal:
    for k, v in kwargs.items():
        setattr(proposal, k, v)
    await db.commit()
    return proposal


# ── WorkOrder ────────────────────────────────────────────

async def add_work_order(db: AsyncSession, service_request_id: str, provider_id: str, proposal_id: str) -> WorkOrder:
    wo = WorkOrder(service_request_id=service_request_id, provider_id=provider_id, proposal_id=proposal_id)
    db.add(wo)
    await db.flush()
    return wo


async def get_work_order(db: AsyncSession, wo_id: str) -> WorkOrder | None:
    return await db.get(WorkOrder, wo_id)


async def get_work_order_for_request(db: AsyncSession, request_id: str) -> WorkOrder | None:
    result = await db.execute(select(WorkOrder).where(WorkOrder.service_request_id == request_id))
    return result.scalars().first()


async def list_work_orders_for_provider(db: AsyncSession, provider_id: str) -> list[WorkOrder]:
    result = await db.execute(
        select(WorkOrder).where(WorkOrder.provider_id == provider_id).order_by(WorkOrder.created_at.desc())
    )
    return list(result.scalars().all())


# ── Review ───────────────────────────────────────────────

async def find_review_by_request(db: AsyncSession, user_id: str, request_id: str) -> Review | None:
    """Direct-column lookup; only valid when reviews.service_request_id exists."""
    result = await db.execute(
        select(Review).where(Review.user_id == user_id, Review.service_request_id == request_id)
    )
    return result.scalars().first()


def _review_options() -> list:
    if get_capabilities().review_request_column:
        return []
    return [load_only(Review.id, Review.business_id, Review.user_id, Review.rating,
                      Review.title, Review.comment, Review.meta, Review.created_at)]


async def add_review(db: AsyncSession, **kwargs) -> Review:
    if not get_capabilities().review_request_column:
        kwargs.pop("service_request_id", None)
        return await _insert_named(db, Review, _review_options(), **kwargs)
    review = Review(**kwargs)
    db.add(review)
    await db.flush()
    return review


async def list_reviews_by_user(db: AsyncSession, user_id: str) -> list[Review]:
    result = await db.execute(
        select(Review).options(*_review_options()).where(Review.user_id == user_id)
    )
    return list(result.scalars().all())


async def rating_for_businesses(db: AsyncSession, business_ids: list[str]) -> tuple[float, int]:
    """Average rating and review count across the given businesses."""
    if not business_ids:
        return 0.0, 0
    result = await db.execute(
        select(func.avg(Review.rating), func.count(Review.id)).where(Review.business_id.in_(business_ids))
    )
    avg, count = result.one()
    return round(float(avg or 0.0), 2), int(count or 0)


# ── ActivityLog ──────────────────────────────────────────

async def create_activity(
    db: AsyncSession, type: str, description: str, user_id: str | None = None, meta: dict | None = None,
) -> ActivityLog:
    entry = ActivityLog(type=type, description=description, user_id=user_id, meta=meta or {})
    db.add(entry)
    await db.commit()
    return entry
