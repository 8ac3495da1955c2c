"""Subscription benefits consumed by ranking and lead pricing."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timezone

from sqlalchemy.ext.asyncio import AsyncSession

from servicehub.db import crud

logger = logging.getLogger(__name__)

PRIORITY_TIERS = ("PRO",)


@dataclass(frozen=True)
class SubscriptionBenefits:
    has_active_subscription: bool = False
    tier: str = "BASIC"
    lead_discount_percent: float = 0.0
    priority_boost_points: int = 0
    is_featured: bool = False
    plan_name: str | None = None

    @property
    def is_priority(self) -> bool:
        return self.is_featured or self.tier in PRIORITY_TIERS


BASIC = SubscriptionBenefits()


def _as_aware(value: datetime) -> datetime:
    return value if value.tzinfo else value.replace(tzinfo=timezone.utc)


async def get_subscription_benefits(db: AsyncSession, user_id: str) -> SubscriptionBenefits:
    """Benefits of the user's active subscription, or BASIC defaults.

    Lookup errors degrade to the defaults so callers never fail on them.
    """
    try:
        sub = await crud.get_active_subscription(db, user_id)
    except Exception:
        logger.exception("Failed to load subscription for user %s", user_id)
        return BASIC

    if not sub or not sub.plan:
        return BASIC
    if sub.current_period_end and _as_aware(sub.current_period_end) < datetime.now(timezone.utc):
        return BASIC

    plan = sub.plan
    return SubscriptionBenefits(
        has_active_subscription=True,
        tier=plan.tier or "BASIC",
        lead_discount_percent=float(plan.lead_discount_percent or 0),
        priority_boost_points=int(plan.priority_boost_points or 0),
        is_featured=bool(plan.is_featured),
        plan_name=plan.name,
    )
