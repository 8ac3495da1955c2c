"""Subscription plans and the user subscriptions that grant ranking and pricing benefits."""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import String, Boolean, Float, Integer, ForeignKey, DateTime
from sqlalchemy.orm import Mapped, mapped_column, relationship

from servicehub.models.base import Base, ULIDMixin


class SubscriptionPlan(Base, ULIDMixin):
    __tablename__ = "subscription_plans"

    name: Mapped[str] = mapped_column(String(120))
    tier: Mapped[str] = mapped_column(String(20), default="BASIC")  # BASIC | PRO | PREMIUM
    lead_discount_percent: Mapped[float] = mapped_column(Float, default=0.0)
    priority_boost_points: Mapped[int] = mapped_column(Integer, default=0)
    is_featured: Mapped[bool] = mapped_column(Boolean, default=False)


class UserSubscription(Base, ULIDMixin):
    __tablename__ = "user_subscriptions"

    user_id: Mapped[str] = mapped_column(String(26), ForeignKey("users.id"), index=True)
    plan_id: Mapped[str] = mapped_column(String(26), ForeignKey("subscription_plans.id"))
    status: Mapped[str] = mapped_column(String(20), default="ACTIVE")  # ACTIVE | CANCELED | PAST_DUE
    current_period_end: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    plan = relationship("SubscriptionPlan", lazy="selectin")
