from __future__ import annotations
from datetime import date, datetime
from pydantic import BaseModel


class ServiceRequestCreate(BaseModel):
    category_id: str = ""
    subcategory_id: str | None = None
    zip_code: str = ""
    project_title: str = ""
    project_description: str = ""
    attachments: list[str] = []
    preferred_date: date | None = None
    preferred_time: str | None = None
    selected_business_ids: list[str] = []


class ServiceRequestRead(BaseModel):
    id: str
    customer_id: str
    category_id: str
    subcategory_id: str | None = None
    zip_code: str
    project_title: str
    project_description: str
    attachments: list = []
    preferred_date: date | None = None
    preferred_time: str | None = None
    status: str
    primary_provider_id: str | None = None
    selected_business_ids: list = []
    rejection_reason: str | None = None
    rejection_reason_other: str | None = None
    created_at: datetime

    model_config = {"from_attributes": True}


class CancelRequest(BaseModel):
    rejection_reason: str | None = None
    rejection_reason_other: str | None = None
