"""Customer reviews and request closure."""

from __future__ import annotations

import logging

from sqlalchemy.exc import DBAPIError, IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from servicehub.db import crud
from servicehub.db.capabilities import get_capabilities
from servicehub.errors import ConflictError, NotFoundError, ValidationError, is_lock_conflict
from servicehub.models import Business, Review, ServiceRequest
from servicehub.models import service_request as request_status
from servicehub.services.activity import log_activity
from servicehub.services.events import emit
from servicehub.services.payouts import trigger_payout_for_request

logger = logging.getLogger(__name__)


async def find_existing_review(db: AsyncSession, customer_id: str, request_id: str) -> Review | None:
    """The customer's review of a request, by column when present, else by metadata."""
    if get_capabilities().review_request_column:
        return await crud.find_review_by_request(db, customer_id, request_id)
    for review in await crud.list_reviews_by_user(db, customer_id):
        if (review.meta or {}).get("serviceRequestId") == request_id:
            return review
    return None


async def _provider_user_id(db: AsyncSession, sr: ServiceRequest) -> str | None:
    if not sr.primary_provider_id:
        return None
    profile = await crud.get_provider_profile(db, sr.primary_provider_id)
    return profile.user_id if profile else None


async def resolve_review_business(db: AsyncSession, sr: ServiceRequest) -> Business:
    """Pick the business a review is attributed to.

    Tries the provider's business in the request's category, then any of the
    provider's businesses, then any business in the category, then any
    business at all.
    """
    owner_id = await _provider_user_id(db, sr)
    if owner_id:
        business = await crud.find_business(db, owner_id=owner_id, category_id=sr.category_id)
        if business:
            return business
        business = await crud.find_business(db, owner_id=owner_id)
        if business:
            return business
    business = await crud.find_business(db, category_id=sr.category_id)
    if business:
        return business
    business = await crud.find_business(db)
    if business is None:
        raise NotFoundError("No business available to attach the review to")
    return business


async def recompute_ratings(db: AsyncSession, sr: ServiceRequest, business: Business) -> None:
    """Refresh the reviewed business's and the provider's aggregate ratings."""
    business.rating_average, business.rating_count = await crud.rating_for_businesses(db, [business.id])
    if sr.primary_provider_id:
        profile = await crud.get_provider_profile(db, sr.primary_provider_id)
        if profile:
            owned = await crud.list_businesses_for_owner(db, profile.user_id)
            profile.rating_average, profile.rating_count = await crud.rating_for_businesses(
                db, [b.id for b in owned]
            )
    await db.commit()


async def submit_review(
    db: AsyncSession, request_id: str, customer_id: str, rating, title: str = "", comment: str = "",
) -> Review:
    try:
        rating = int(rating)
    except (TypeError, ValueError):
        raise ValidationError("Rating must be between 1 and 5")
    if rating < 1 or rating > 5:
        raise ValidationError("Rating must be between 1 and 5")

    sr = await crud.get_customer_request(db, request_id, customer_id)
    if not sr:
        raise NotFoundError("Service request not found")
    if sr.status not in request_status.REVIEWABLE_STATUSES:
        raise ValidationError("You can only review completed and approved service requests")
    if await find_existing_review(db, customer_id, sr.id):
        raise ValidationError("You have already reviewed this service request")

    try:
        sr = await crud.lock_service_request(db, sr.id)
        if sr.status not in request_status.REVIEWABLE_STATUSES:
            raise ValidationError("You can only review completed and approved service requests")
        if await find_existing_review(db, customer_id, sr.id):
            raise ValidationError("You have already reviewed this service request")
        business = await resolve_review_business(db, sr)
        review = await crud.add_review(
            db,
            business_id=business.id,
            user_id=customer_id,
            service_request_id=sr.id,
            rating=rating,
            title=(title or "").strip(),
            comment=(comment or "").strip(),
            meta={"serviceRequestId": sr.id, "providerId": sr.primary_provider_id},
        )
        sr.status = request_status.CLOSED
        await db.commit()
    except IntegrityError:
        await db.rollback()
        raise ValidationError("You have already reviewed this service request")
    except DBAPIError as e:
        await db.rollback()
        if is_lock_conflict(e):
            logger.warning("Lock conflict reviewing request %s", request_id)
            raise ConflictError("Another update to this request is in progress. Please retry.")
        raise
    except Exception:
        await db.rollback()
        raise

    review_id = review.id
    emit("review.submitted", review_id=review.id, service_request_id=sr.id, business_id=business.id, rating=rating)
    emit("service_request.closed", service_request_id=sr.id)

    try:
        await recompute_ratings(db, sr, business)
    except Exception:
        logger.exception("Rating recompute failed after review %s", review_id)
        await db.rollback()
        sr = await crud.get_service_request(db, request_id)
        review = await find_existing_review(db, customer_id, request_id)
    await trigger_payout_for_request(db, sr)
    await log_activity(
        db, "review_submitted", f'Review submitted for "{sr.project_title}"',
        user_id=customer_id, reviewId=review.id, serviceRequestId=sr.id, rating=rating,
    )
    return review


async def get_review(db: AsyncSession, request_id: str, customer_id: str) -> Review:
    sr = await crud.get_customer_request(db, request_id, customer_id)
    if not sr:
        raise NotFoundError("Service request not found")
    review = await find_existing_review(db, customer_id, sr.id)
    if review is None:
        raise NotFoundError("Review not found")
    return review
