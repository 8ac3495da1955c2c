from __future__ import annotations
from datetime import datetime
from pydantic import BaseModel


class ReviewCreate(BaseModel):
    rating: int
    title: str = ""
    comment: str = ""


class ReviewRead(BaseModel):
    id: str
    business_id: str
    user_id: str
    rating: int
    title: str
    comment: str
    created_at: datetime

    model_config = {"from_attributes": True}
