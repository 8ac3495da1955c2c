"""Lead fee charged to a provider for accepting a lead."""

from __future__ import annotations

from decimal import Decimal, ROUND_HALF_UP

from servicehub.config import LeadsConfig, get_settings
from servicehub.services.subscriptions import SubscriptionBenefits


def get_lead_cost(category_id: str | None = None, leads: LeadsConfig | None = None) -> int:
    """Base lead cost in cents for a category."""
    leads = leads or get_settings().leads
    if category_id and leads.category_pricing.get(category_id):
        return leads.category_pricing[category_id]
    return leads.default_lead_cost_cents


def get_lead_cost_with_discount(
    category_id: str | None,
    benefits: SubscriptionBenefits | None,
    leads: LeadsConfig | None = None,
) -> int:
    base = get_lead_cost(category_id, leads)
    if not benefits or not benefits.has_active_subscription:
        return base
    pct = benefits.lead_discount_percent or 0
    if pct <= 0:
        return base
    discounted = Decimal(base) - Decimal(base) * Decimal(str(pct)) / 100
    return max(1, int(discounted.quantize(Decimal("1"), rounding=ROUND_HALF_UP)))
