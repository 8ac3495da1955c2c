"""Lead model: one provider's candidacy for a service request.

A lead has no foreign key to its service request. The link lives in the
``metadata`` envelope (see ``servicehub.services.lead_metadata``).
"""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import String, Text, Integer, ForeignKey, JSON, DateTime
from sqlalchemy.orm import Mapped, mapped_column

from servicehub.models.base import Base, ULIDMixin, UpdatedAtMixin

SUBMITTED = "submitted"
ROUTED = "routed"
ACCEPTED = "accepted"
REJECTED = "rejected"
CANCELLED = "cancelled"

OPEN_STATUSES = (SUBMITTED, ROUTED)


class Lead(Base, ULIDMixin, UpdatedAtMixin):
    __tablename__ = "leads"

    customer_id: Mapped[str] = mapped_column(String(26), ForeignKey("users.id"), index=True)
    business_id: Mapped[str | None] = mapped_column(String(26), ForeignKey("businesses.id"), nullable=True)
    provider_id: Mapped[str] = mapped_column(String(26), ForeignKey("users.id"), index=True)  # provider's user id
    service_type: Mapped[str] = mapped_column(String(255), default="")
    category_id: Mapped[str | None] = mapped_column(String(26), ForeignKey("categories.id"), nullable=True)
    location_city: Mapped[str | None] = mapped_column(String(120), nullable=True)
    location_state: Mapped[str | None] = mapped_column(String(60), nullable=True)
    location_postal_code: Mapped[str | None] = mapped_column(String(10), nullable=True)
    description: Mapped[str] = mapped_column(Text, default="")
    customer_name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    customer_email: Mapped[str | None] = mapped_column(String(255), nullable=True)
    customer_phone: Mapped[str | None] = mapped_column(String(50), nullable=True)
    status: Mapped[str] = mapped_column(String(20), default=SUBMITTED)
    # Lead-fee intent paid by the provider, never the customer's proposal payment
    payment_intent_id: Mapped[str | None] = mapped_column(String(255), nullable=True)
    lead_cost_cents: Mapped[int | None] = mapped_column(Integer, nullable=True)
    routed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    meta: Mapped[dict] = mapped_column("metadata", JSON, default=dict)
