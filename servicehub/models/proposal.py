"""Proposal model: a provider's priced offer for a service request."""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import String, Text, Float, Integer, ForeignKey, DateTime
from sqlalchemy.orm import Mapped, mapped_column

from servicehub.models.base import Base, ULIDMixin, UpdatedAtMixin

SENT = "SENT"
ACCEPTED = "ACCEPTED"
REJECTED = "REJECTED"
ACTIVE_STATUSES = (SENT, ACCEPTED)

PAYMENT_PENDING = "pending"
PAYMENT_SUCCEEDED = "succeeded"
PAYMENT_FAILED = "failed"

PAYOUT_PENDING = "pending"
PAYOUT_PROCESSING = "processing"
PAYOUT_COMPLETED = "completed"
PAYOUT_FAILED = "failed"

REJECTION_REASONS = ("TOO_FAR", "TOO_EXPENSIVE", "NOT_RELEVANT", "OTHER")

# Added by a later migration; older databases may lack them
PAYOUT_COLUMNS = (
    "provider_payout_amount",
    "platform_fee_amount",
    "payout_status",
    "payout_processed_at",
)


class Proposal(Base, ULIDMixin, UpdatedAtMixin):
    __tablename__ = "proposals"

    service_request_id: Mapped[str] = mapped_column(String(26), ForeignKey("service_requests.id"), index=True)
    provider_id: Mapped[str] = mapped_column(String(26), ForeignKey("provider_profiles.id"), index=True)
    details: Mapped[str] = mapped_column(Text, default="")
    price: Mapped[float] = mapped_column(Float)
    status: Mapped[str] = mapped_column(String(20), default=SENT)
    payment_intent_id: Mapped[str | None] = mapped_column(String(255), nullable=True, index=True)
    payment_status: Mapped[str] = mapped_column(String(20), default=PAYMENT_PENDING)
    paid_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    stale_intent_count: Mapped[int] = mapped_column(Integer, default=0)
    rejection_reason: Mapped[str | None] = mapped_column(String(30), nullable=True)
    rejection_reason_other: Mapped[str | None] = mapped_column(Text, nullable=True)

    provider_payout_amount: Mapped[float | None] = mapped_column(Float, nullable=True)
    platform_fee_amount: Mapped[float | None] = mapped_column(Float, nullable=True)
    payout_status: Mapped[str | None] = mapped_column(String(20), nullable=True)  # pending | processing | completed | failed
    payout_processed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
