"""Provider ranking for service requests.

Scoring and ordering are pure functions over already-loaded rows so they can
be tested without a database. ``assign_providers`` gathers the candidates,
provisions provider profiles and feeds them through the pure core.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field

from sqlalchemy.ext.asyncio import AsyncSession

from servicehub.config import get_settings
from servicehub.db import crud
from servicehub.models import Business, ServiceRequest
from servicehub.services.subscriptions import SubscriptionBenefits, get_subscription_benefits

logger = logging.getLogger(__name__)

RATING_WEIGHT = 10
RATING_CAP = 50
REVIEWS_PER_POINT = 10
REVIEW_CAP = 20
CATEGORY_BONUS = 10
SUBCATEGORY_BONUS = 10
ZIP_BONUS = 5
SHORTLIST_BONUS = 20


@dataclass(frozen=True)
class RankingCriteria:
    customer_id: str
    category_id: str
    subcategory_id: str | None
    zip_code: str
    shortlist: tuple[str, ...] = ()

    @classmethod
    def for_request(cls, sr: ServiceRequest) -> "RankingCriteria":
        return cls(
            customer_id=sr.customer_id,
            category_id=sr.category_id,
            subcategory_id=sr.subcategory_id,
            zip_code=sr.zip_code,
            shortlist=tuple(sr.selected_business_ids or ()),
        )


@dataclass
class Candidate:
    business: Business
    owner_id: str
    provider_profile_id: str
    score: float
    is_priority: bool = False


@dataclass
class Assignment:
    primary: Candidate | None = None
    alternates: list[Candidate] = field(default_factory=list)


def score_candidate(business: Business, criteria: RankingCriteria, benefits: SubscriptionBenefits) -> float:
    score = min(float(business.rating_average or 0) * RATING_WEIGHT, RATING_CAP)
    score += min(int(business.rating_count or 0) / REVIEWS_PER_POINT, REVIEW_CAP)
    if business.category_id == criteria.category_id:
        score += CATEGORY_BONUS
    if criteria.subcategory_id and business.subcategory_id == criteria.subcategory_id:
        score += SUBCATEGORY_BONUS
    if business.zip_code == criteria.zip_code:
        score += ZIP_BONUS
    if business.id in criteria.shortlist:
        score += SHORTLIST_BONUS
    if benefits.has_active_subscription:
        score += benefits.priority_boost_points
    return score


def rank_candidates(candidates: list[Candidate]) -> list[Candidate]:
    """Priority candidates first, then by descending score. Ties keep input order."""
    return sorted(candidates, key=lambda c: (not c.is_priority, -c.score))


def split_ranking(ranked: list[Candidate], max_alternates: int = 3) -> Assignment:
    if not ranked:
        return Assignment()
    return Assignment(primary=ranked[0], alternates=ranked[1:1 + max_alternates])


def eligible_businesses(businesses: list[Business], customer_id: str) -> list[Business]:
    """Deduplicate by id, dropping ownerless businesses and the customer's own."""
    seen: set[str] = set()
    out = []
    for business in businesses:
        if business.id in seen:
            continue
        seen.add(business.id)
        if not business.owner_id or business.owner_id == customer_id:
            continue
        out.append(business)
    return out


async def _benefits_for(db: AsyncSession, user_id: str) -> SubscriptionBenefits:
    try:
        return await get_subscription_benefits(db, user_id)
    except Exception:
        logger.exception("Subscription lookup failed for %s; ranking without boost", user_id)
        return SubscriptionBenefits()


async def assign_providers(
    db: AsyncSession, sr: ServiceRequest, max_alternates: int | None = None,
) -> Assignment:
    """Rank candidate businesses for a request and pick a primary and alternates.

    No candidates is a valid outcome and yields an empty ``Assignment``.
    """
    if max_alternates is None:
        max_alternates = get_settings().leads.max_alternates
    criteria = RankingCriteria.for_request(sr)

    matching = await crud.list_matching_businesses(db, criteria.category_id, criteria.zip_code)
    shortlisted = await crud.list_businesses_by_ids(db, list(criteria.shortlist), owned_only=True)
    businesses = eligible_businesses(matching + shortlisted, criteria.customer_id)

    candidates = []
    for business in businesses:
        profile = await crud.get_or_create_provider_profile(db, business.owner_id)
        benefits = await _benefits_for(db, business.owner_id)
        candidates.append(Candidate(
            business=business,
            owner_id=business.owner_id,
            provider_profile_id=profile.id,
            score=score_candidate(business, criteria, benefits),
            is_priority=benefits.has_active_subscription and benefits.is_priority,
        ))

    assignment = split_ranking(rank_candidates(candidates), max_alternates)
    if assignment.primary:
        logger.info(
            "Request %s: primary business %s (score %.1f, priority %s), %d alternates",
            sr.id, assignment.primary.business.id, assignment.primary.score,
            assignment.primary.is_priority, len(assignment.alternates),
        )
    else:
        logger.info("Request %s: no matching providers", sr.id)
    return assignment
