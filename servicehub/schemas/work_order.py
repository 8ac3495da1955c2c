from __future__ import annotations
from datetime import datetime
from pydantic import BaseModel


class WorkOrderRead(BaseModel):
    id: str
    service_request_id: str
    provider_id: str
    proposal_id: str | None = None
    status: str
    completed_at: datetime | None = None
    created_at: datetime

    model_config = {"from_attributes": True}
