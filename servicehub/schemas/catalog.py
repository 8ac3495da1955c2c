from __future__ import annotations
from pydantic import BaseModel


class SubCategoryRead(BaseModel):
    id: str
    name: str

    model_config = {"from_attributes": True}


class CategoryRead(BaseModel):
    id: str
    name: str
    description: str = ""
    subcategories: list[SubCategoryRead] = []

    model_config = {"from_attributes": True}
