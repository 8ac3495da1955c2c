from __future__ import annotations
from pydantic import BaseModel


class ProposalCreate(BaseModel):
    details: str = ""
    price: float = 0


class ProposalAccept(BaseModel):
    payment_intent_id: str = ""


class ProposalReject(BaseModel):
    rejection_reason: str = ""
    rejection_reason_other: str | None = None


class LeadAccept(BaseModel):
    description: str = ""
    price: float = 0


class LeadReject(BaseModel):
    reason: str | None = None
