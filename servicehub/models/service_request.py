"""Service request model and the alternate providers recorded at assignment time."""

from __future__ import annotations

from datetime import date

from sqlalchemy import String, Text, Integer, ForeignKey, JSON, Date, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from servicehub.models.base import Base, ULIDMixin, UpdatedAtMixin

REQUEST_CREATED = "REQUEST_CREATED"
LEAD_ASSIGNED = "LEAD_ASSIGNED"
IN_PROGRESS = "IN_PROGRESS"
COMPLETED = "COMPLETED"
APPROVED = "APPROVED"
CLOSED = "CLOSED"

CANCELLABLE_STATUSES = (REQUEST_CREATED, LEAD_ASSIGNED)
REVIEWABLE_STATUSES = (APPROVED, CLOSED)


class ServiceRequest(Base, ULIDMixin, UpdatedAtMixin):
    __tablename__ = "service_requests"

    customer_id: Mapped[str] = mapped_column(String(26), ForeignKey("users.id"), index=True)
    category_id: Mapped[str] = mapped_column(String(26), ForeignKey("categories.id"))
    subcategory_id: Mapped[str | None] = mapped_column(String(26), ForeignKey("subcategories.id"), nullable=True)
    zip_code: Mapped[str] = mapped_column(String(10))
    project_title: Mapped[str] = mapped_column(String(255))
    project_description: Mapped[str] = mapped_column(Text)
    attachments: Mapped[list] = mapped_column(JSON, default=list)
    preferred_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    preferred_time: Mapped[str | None] = mapped_column(String(30), nullable=True)
    status: Mapped[str] = mapped_column(String(30), default=REQUEST_CREATED)
    primary_provider_id: Mapped[str | None] = mapped_column(
        String(26), ForeignKey("provider_profiles.id"), nullable=True
    )
    selected_business_ids: Mapped[list] = mapped_column(JSON, default=list)
    rejection_reason: Mapped[str | None] = mapped_column(String(30), nullable=True)  # TOO_FAR | TOO_EXPENSIVE | NOT_RELEVANT | OTHER
    rejection_reason_other: Mapped[str | None] = mapped_column(Text, nullable=True)


class AlternativeProviderSelection(Base, ULIDMixin):
    __tablename__ = "alternative_provider_selections"
    __table_args__ = (UniqueConstraint("service_request_id", "position"),)

    service_request_id: Mapped[str] = mapped_column(String(26), ForeignKey("service_requests.id"), index=True)
    provider_id: Mapped[str] = mapped_column(String(26), ForeignKey("provider_profiles.id"))
    business_id: Mapped[str | None] = mapped_column(String(26), ForeignKey("businesses.id"), nullable=True)
    position: Mapped[int] = mapped_column(Integer)  # 1..3
