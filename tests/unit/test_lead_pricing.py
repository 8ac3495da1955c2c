from servicehub.config import LeadsConfig
from servicehub.services.lead_pricing import get_lead_cost, get_lead_cost_with_discount
from servicehub.services.subscriptions import SubscriptionBenefits

LEADS = LeadsConfig(default_lead_cost_cents=2000, category_pricing={"cat-roof": 5000})


def test_category_price_overrides_default():
    assert get_lead_cost("cat-roof", LEADS) == 5000
    assert get_lead_cost("cat-other", LEADS) == 2000
    assert get_lead_cost(None, LEADS) == 2000


def test_discount_needs_active_subscription():
    inactive = SubscriptionBenefits(has_active_subscription=False, lead_discount_percent=50)
    assert get_lead_cost_with_discount(None, inactive, LEADS) == 2000
    assert get_lead_cost_with_discount(None, None, LEADS) == 2000


def test_discount_is_applied_and_rounded():
    benefits = SubscriptionBenefits(has_active_subscription=True, lead_discount_percent=25)
    assert get_lead_cost_with_discount(None, benefits, LEADS) == 1500
    benefits = SubscriptionBenefits(has_active_subscription=True, lead_discount_percent=33.3)
    # 2000 - 666 = 1334
    assert get_lead_cost_with_discount(None, benefits, LEADS) == 1334


def test_discounted_cost_never_drops_below_one_cent():
    benefits = SubscriptionBenefits(has_active_subscription=True, lead_discount_percent=100)
    assert get_lead_cost_with_discount(None, benefits, LEADS) == 1
