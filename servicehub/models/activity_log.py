"""Activity log entries shown in user-facing history."""

from __future__ import annotations

from sqlalchemy import String, Text, ForeignKey, JSON
from sqlalchemy.orm import Mapped, mapped_column

from servicehub.models.base import Base, ULIDMixin


class ActivityLog(Base, ULIDMixin):
    __tablename__ = "activity_logs"

    type: Mapped[str] = mapped_column(String(60), index=True)
    description: Mapped[str] = mapped_column(Text, default="")
    user_id: Mapped[str | None] = mapped_column(String(26), ForeignKey("users.id"), nullable=True)
    meta: Mapped[dict] = mapped_column("metadata", JSON, default=dict)
