from datetime import datetime, timedelta, timezone

from servicehub.models import Lead
from servicehub.services.lead_metadata import (
    ENVELOPE_VERSION, LeadEnvelope, PendingProposal, parse_envelope, parse_pending_token, pending_token,
    read_envelope, set_pending_status, write_envelope,
)


def test_parse_reads_camel_case_keys():
    env = parse_envelope({
        "serviceRequestId": "sr1",
        "projectTitle": "Deck",
        "pendingProposal": {"description": "Stain it", "price": 300, "status": "SENT"},
        "fallbackBusinessIds": ["b1", "b2"],
        "somethingElse": 1,
    })
    assert env.service_request_id == "sr1"
    assert env.pending_proposal.price == 300
    assert env.fallback_business_ids == ["b1", "b2"]
    assert env.dump()["somethingElse"] == 1


def test_parse_accepts_json_text():
    env = parse_envelope('{"serviceRequestId": "sr2"}')
    assert env.service_request_id == "sr2"


def test_unparseable_metadata_reads_as_empty():
    assert parse_envelope("{not json").service_request_id is None
    assert parse_envelope(["a", "b"]).pending_proposal is None
    assert parse_envelope(None).attachments == []


def test_write_then_read_uses_wire_names():
    lead = Lead(meta={})
    write_envelope(lead, LeadEnvelope(service_request_id="sr3", is_fallback_lead=True))
    assert lead.meta["serviceRequestId"] == "sr3"
    assert lead.meta["isFallbackLead"] is True
    assert read_envelope(lead).is_fallback_lead


def test_set_pending_status_keeps_offer():
    lead = Lead(meta={"pendingProposal": {"description": "Fix", "price": 99.5, "status": "SENT"}})
    set_pending_status(lead, "REJECTED")
    pending = read_envelope(lead).pending_proposal
    assert pending.status == "REJECTED"
    assert pending.price == 99.5
    assert pending.description == "Fix"


def test_pending_tokens():
    assert pending_token("01ABC") == "pending-01ABC"
    assert parse_pending_token("pending-01ABC") == "01ABC"
    assert parse_pending_token("pending-") is None
    assert parse_pending_token("01ABC") is None


def test_priority_window():
    now = datetime.now(timezone.utc)
    assert LeadEnvelope(priority_expires_at=now - timedelta(minutes=1)).priority_expired(now)
    assert not LeadEnvelope(priority_expires_at=now + timedelta(hours=1)).priority_expired(now)
    assert not LeadEnvelope().priority_expired(now)
    assert PendingProposal().status == "SENT"


def test_envelope_carries_version():
    lead = Lead(meta={})
    write_envelope(lead, LeadEnvelope(service_request_id="sr4"))
    assert lead.meta["v"] == ENVELOPE_VERSION

    # Envelopes written before versioning read as the current version
    assert parse_envelope({"serviceRequestId": "sr5"}).service_request_id == "sr5"


def test_unknown_version_reads_as_empty():
    env = parse_envelope({
        "v": ENVELOPE_VERSION + 1,
        "serviceRequestId": "sr6",
        "pendingProposal": {"description": "Fix", "price": 10, "status": "SENT"},
    })
    assert env.service_request_id is None
    assert env.pending_proposal is None
