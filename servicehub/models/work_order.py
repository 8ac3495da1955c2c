"""Work order model: created once a proposal is accepted and paid."""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import String, ForeignKey, DateTime
from sqlalchemy.orm import Mapped, mapped_column

from servicehub.models.base import Base, ULIDMixin

IN_PROGRESS = "IN_PROGRESS"
COMPLETED = "COMPLETED"


class WorkOrder(Base, ULIDMixin):
    __tablename__ = "work_orders"

    service_request_id: Mapped[str] = mapped_column(String(26), ForeignKey("service_requests.id"), unique=True)
    provider_id: Mapped[str] = mapped_column(String(26), ForeignKey("provider_profiles.id"), index=True)
    proposal_id: Mapped[str | None] = mapped_column(String(26), ForeignKey("proposals.id"), nullable=True)
    status: Mapped[str] = mapped_column(String(20), default=IN_PROGRESS)  # IN_PROGRESS | COMPLETED
    completed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True, default=None)
