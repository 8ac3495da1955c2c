"""Review model: one per customer and service request, attached to a business."""

from __future__ import annotations

from sqlalchemy import String, Text, Integer, ForeignKey, JSON, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from servicehub.models.base import Base, ULIDMixin, UpdatedAtMixin


class Review(Base, ULIDMixin, UpdatedAtMixin):
    __tablename__ = "reviews"
    __table_args__ = (UniqueConstraint("user_id", "service_request_id"),)

    business_id: Mapped[str] = mapped_column(String(26), ForeignKey("businesses.id"), index=True)
    user_id: Mapped[str] = mapped_column(String(26), ForeignKey("users.id"), index=True)
    # Added by a later migration; the metadata copy covers older rows
    service_request_id: Mapped[str | None] = mapped_column(
        String(26), ForeignKey("service_requests.id"), nullable=True, index=True
    )
    rating: Mapped[int] = mapped_column(Integer)
    title: Mapped[str] = mapped_column(String(255), default="")
    comment: Mapped[str] = mapped_column(Text, default="")
    meta: Mapped[dict] = mapped_column("metadata", JSON, default=dict)
