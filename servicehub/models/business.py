"""Businesses listed on the marketplace and the provider profiles of their owners."""

from __future__ import annotations

from sqlalchemy import String, Boolean, Float, Integer, ForeignKey
from sqlalchemy.orm import Mapped, mapped_column

from servicehub.models.base import Base, ULIDMixin


class Business(Base, ULIDMixin):
    __tablename__ = "businesses"

    name: Mapped[str] = mapped_column(String(255))
    owner_id: Mapped[str | None] = mapped_column(String(26), ForeignKey("users.id"), nullable=True, index=True)
    category_id: Mapped[str | None] = mapped_column(String(26), ForeignKey("categories.id"), nullable=True, index=True)
    subcategory_id: Mapped[str | None] = mapped_column(String(26), ForeignKey("subcategories.id"), nullable=True)
    zip_code: Mapped[str] = mapped_column(String(10), default="", index=True)
    city: Mapped[str] = mapped_column(String(120), default="")
    state: Mapped[str] = mapped_column(String(60), default="")
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)
    rating_average: Mapped[float] = mapped_column(Float, default=0.0)
    rating_count: Mapped[int] = mapped_column(Integer, default=0)


class ProviderProfile(Base, ULIDMixin):
    __tablename__ = "provider_profiles"

    user_id: Mapped[str] = mapped_column(String(26), ForeignKey("users.id"), unique=True)
    rating_average: Mapped[float] = mapped_column(Float, default=0.0)
    rating_count: Mapped[int] = mapped_column(Integer, default=0)
