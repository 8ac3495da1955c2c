"""Service catalog: categories and their subcategories."""

from __future__ import annotations

from sqlalchemy import String, Text, ForeignKey
from sqlalchemy.orm import Mapped, mapped_column, relationship

from servicehub.models.base import Base, ULIDMixin


class Category(Base, ULIDMixin):
    __tablename__ = "categories"

    name: Mapped[str] = mapped_column(String(120), unique=True)
    description: Mapped[str] = mapped_column(Text, default="")

    subcategories = relationship(
        "SubCategory", back_populates="category", lazy="selectin", order_by="SubCategory.name"
    )


class SubCategory(Base, ULIDMixin):
    __tablename__ = "subcategories"

    category_id: Mapped[str] = mapped_column(String(26), ForeignKey("categories.id"), index=True)
    name: Mapped[str] = mapped_column(String(120))

    category = relationship("Category", back_populates="subcategories")
