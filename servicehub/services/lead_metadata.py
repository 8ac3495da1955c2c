"""Typed view of the ``Lead.metadata`` JSON envelope.

A lead has no foreign key to its service request; ``serviceRequestId`` in the
envelope is the only link. Before a Proposal row exists, a provider's priced
offer lives here as ``pendingProposal``. The envelope is parsed into
``LeadEnvelope``; anything that fails validation reads as an empty envelope.
"""

from __future__ import annotations

import json
import logging
from datetime import datetime, timezone

from pydantic import BaseModel, ConfigDict, Field, ValidationError as PydanticValidationError

from servicehub.models import Lead

logger = logging.getLogger(__name__)

PENDING_PREFIX = "pending-"
ENVELOPE_VERSION = 1


class PendingProposal(BaseModel):
    model_config = ConfigDict(extra="allow")

    description: str = ""
    price: float | None = None
    status: str = "SENT"


class LeadEnvelope(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="allow")

    version: int = Field(default=ENVELOPE_VERSION, alias="v")
    service_request_id: str | None = Field(default=None, alias="serviceRequestId")
    project_title: str | None = Field(default=None, alias="projectTitle")
    preferred_date: str | None = Field(default=None, alias="preferredDate")
    preferred_time: str | None = Field(default=None, alias="preferredTime")
    attachments: list = Field(default_factory=list)
    pending_proposal: PendingProposal | None = Field(default=None, alias="pendingProposal")
    priority_expires_at: datetime | None = Field(default=None, alias="priorityExpiresAt")
    fallback_business_ids: list[str] = Field(default_factory=list, alias="fallbackBusinessIds")
    is_fallback_lead: bool = Field(default=False, alias="isFallbackLead")
    assigned_from: str | None = Field(default=None, alias="assignedFrom")
    position: int | None = None

    def dump(self) -> dict:
        return self.model_dump(by_alias=True, exclude_none=True, mode="json")

    def priority_expired(self, now: datetime | None = None) -> bool:
        if self.priority_expires_at is None:
            return False
        expires = self.priority_expires_at
        if expires.tzinfo is None:
            expires = expires.replace(tzinfo=timezone.utc)
        return expires < (now or datetime.now(timezone.utc))


def parse_envelope(raw) -> LeadEnvelope:
    """Parse a stored metadata value. Unparseable input or an unknown version reads as empty."""
    if not raw:
        return LeadEnvelope()
    try:
        if isinstance(raw, (str, bytes)):
            raw = json.loads(raw)
        envelope = LeadEnvelope.model_validate(raw)
    except (ValueError, TypeError, PydanticValidationError):
        logger.warning("Ignoring unparseable lead metadata: %.200r", raw)
        return LeadEnvelope()
    if envelope.version != ENVELOPE_VERSION:
        logger.warning("Ignoring lead metadata with unknown version %s", envelope.version)
        return LeadEnvelope()
    return envelope


def read_envelope(lead: Lead) -> LeadEnvelope:
    return parse_envelope(lead.meta)


def write_envelope(lead: Lead, envelope: LeadEnvelope) -> None:
    """Store the envelope on the lead. Always assigns a new dict so the change is flushed."""
    lead.meta = envelope.dump()


def set_pending_status(lead: Lead, status: str) -> None:
    envelope = read_envelope(lead)
    if envelope.pending_proposal is None:
        envelope.pending_proposal = PendingProposal(status=status)
    else:
        envelope.pending_proposal = envelope.pending_proposal.model_copy(update={"status": status})
    write_envelope(lead, envelope)


def pending_token(lead_id: str) -> str:
    return f"{PENDING_PREFIX}{lead_id}"


def parse_pending_token(ref: str) -> str | None:
    """Lead id encoded in a ``pending-{leadId}`` reference, else None."""
    if ref and ref.startswith(PENDING_PREFIX):
        lead_id = ref[len(PENDING_PREFIX):]
        return lead_id or None
    return None
