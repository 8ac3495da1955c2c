import pytest

from servicehub.db import crud
from servicehub.errors import ConflictError, ForbiddenError, NotFoundError, ValidationError
from servicehub.services import proposals
from servicehub.services.lead_metadata import pending_token, read_envelope


async def _request_with_lead(factory, pending=None, lead_status="submitted"):
    customer = await factory.user()
    category = await factory.category()
    provider, profile = await factory.provider()
    sr = await factory.service_request(customer, category, status="LEAD_ASSIGNED")
    lead = await factory.lead(sr, provider, status=lead_status, pending=pending)
    return customer, provider, profile, sr, lead


async def test_submit_proposal_requires_a_lead(db, factory, sent_emails):
    customer, provider, profile, sr, _ = await _request_with_lead(factory)
    outsider, _ = await factory.provider()

    with pytest.raises(ForbiddenError):
        await proposals.submit_proposal(db, sr.id, outsider, "I can do it", 100)

    proposal = await proposals.submit_proposal(db, sr.id, provider, "  New trap  ", 120)
    assert proposal.details == "New trap"
    assert proposal.provider_id == profile.id
    assert ("send_proposal_received_email", (customer.email, sr.project_title, 120.0)) in sent_emails

    with pytest.raises(ValidationError, match="already submitted"):
        await proposals.submit_proposal(db, sr.id, provider, "Again", 90)


@pytest.mark.parametrize("details,price", [("", 100), ("ok", 0), ("ok", -5)])
async def test_submit_proposal_validates_input(db, factory, details, price):
    _, provider, _, sr, _ = await _request_with_lead(factory)
    with pytest.raises(ValidationError):
        await proposals.submit_proposal(db, sr.id, provider, details, price)


async def test_resolve_pending_token(db, factory):
    _, provider, profile, sr, lead = await _request_with_lead(
        factory, pending={"description": "Paint", "price": 450, "status": "SENT"},
    )
    target = await proposals.resolve_target(db, sr, pending_token(lead.id))
    assert target.is_pending
    assert target.price == 450
    assert target.provider_user_id == provider.id
    assert target.provider_profile_id == profile.id
    assert target.status == "SENT"

    with pytest.raises(NotFoundError):
        await proposals.resolve_target(db, sr, "pending-nope")
    with pytest.raises(NotFoundError):
        await proposals.resolve_target(db, sr, "no-such-proposal")


async def test_promote_pending_is_idempotent(db, factory):
    _, _, profile, sr, lead = await _request_with_lead(
        factory, pending={"description": "Paint", "price": 450},
    )
    first = await proposals.promote_pending(db, sr, lead, payment_intent_id="pi_1")
    await db.commit()
    again = await proposals.promote_pending(db, sr, lead, payment_intent_id="pi_1")
    other_intent = await proposals.promote_pending(db, sr, lead)
    await db.commit()

    assert first.id == again.id == other_intent.id
    assert first.price == 450
    assert first.provider_id == profile.id
    assert len(await crud.list_proposals_for_request(db, sr.id)) == 1


async def test_promote_pending_rejects_bad_price(db, factory):
    _, _, _, sr, lead = await _request_with_lead(factory, pending={"description": "Paint", "price": 0})
    with pytest.raises(ValidationError, match="Invalid proposal price"):
        await proposals.promote_pending(db, sr, lead)


async def test_listing_merges_rows_and_pending_offers(db, factory):
    customer, provider, profile, sr, lead = await _request_with_lead(factory)
    await factory.proposal(sr, profile, price=100)
    other, _ = await factory.provider()
    pending_lead = await factory.lead(sr, other, pending={"description": "Cheaper", "price": 90})
    # A lead without an offer is not listed
    third, _ = await factory.provider()
    await factory.lead(sr, third)

    items = await proposals.list_request_proposals(db, sr)

    by_id = {item["id"]: item for item in items}
    assert len(items) == 2
    pending = by_id[pending_token(pending_lead.id)]
    assert pending["is_pending"] is True
    assert pending["price"] == 90
    assert pending["status"] == "SENT"
    assert pending["provider_email"] is None
    row = next(item for item in items if not item["is_pending"])
    assert row["provider_user_id"] == provider.id


async def test_listing_hides_pending_offer_once_promoted(db, factory):
    _, _, _, sr, lead = await _request_with_lead(factory, pending={"description": "Paint", "price": 450})
    await proposals.promote_pending(db, sr, lead)
    await db.commit()
    items = await proposals.list_request_proposals(db, sr)
    assert [item["is_pending"] for item in items] == [False]


def test_rejection_reason_validation():
    with pytest.raises(ValidationError):
        proposals.validate_rejection("BAD", None)
    with pytest.raises(ValidationError):
        proposals.validate_rejection("OTHER", "   ")
    assert proposals.validate_rejection("OTHER", " Found someone ") == "Found someone"
    assert proposals.validate_rejection("TOO_FAR", None) is None


async def test_reject_proposal_row(db, factory, sent_emails, events):
    _, provider, profile, sr, lead = await _request_with_lead(factory)
    proposal = await factory.proposal(sr, profile)

    result = await proposals.reject_proposal(db, sr, proposal.id, "TOO_EXPENSIVE")

    assert result == {"id": proposal.id, "status": "REJECTED"}
    proposal = await crud.reload_proposal(db, proposal.id)
    assert proposal.rejection_reason == "TOO_EXPENSIVE"
    assert (await crud.get_lead(db, lead.id)).status == "rejected"
    assert "proposal.rejected" in events()
    assert sent_emails[-1] == ("send_proposal_rejected_email", (provider.email, sr.project_title))

    with pytest.raises(ValidationError, match="already been processed"):
        await proposals.reject_proposal(db, sr, proposal.id, "TOO_FAR")


async def test_reject_pending_offer(db, factory):
    _, _, _, sr, lead = await _request_with_lead(factory, pending={"description": "Paint", "price": 450})
    ref = pending_token(lead.id)

    result = await proposals.reject_proposal(db, sr, ref, "OTHER", "Changed plans")

    assert result["id"] == ref
    lead = await crud.get_lead(db, lead.id)
    assert lead.status == "rejected"
    assert read_envelope(lead).pending_proposal.status == "REJECTED"
    with pytest.raises(ValidationError):
        await proposals.reject_proposal(db, sr, ref, "TOO_FAR")


# ── Payment intents ──────────────────────────────────────

async def test_payment_intent_is_created_then_reused(db, factory, gateway):
    customer, _, profile, sr, _ = await _request_with_lead(factory)
    proposal = await factory.proposal(sr, profile, price=150)

    first = await proposals.create_payment_intent(db, gateway, sr, proposal.id)
    second = await proposals.create_payment_intent(db, gateway, sr, proposal.id)

    assert first["payment_intent_id"] == second["payment_intent_id"]
    assert first["amount"] == 150
    intent = gateway.intents[first["payment_intent_id"]]
    assert intent.amount == 15000
    assert intent.metadata["proposalId"] == proposal.id
    assert intent.metadata["customerId"] == customer.id
    assert "type" not in intent.metadata


async def test_stale_intent_is_cancelled_and_replaced(db, factory, gateway, events):
    _, _, profile, sr, _ = await _request_with_lead(factory)
    proposal = await factory.proposal(sr, profile, price=150)
    first = await proposals.create_payment_intent(db, gateway, sr, proposal.id)

    await crud.update_proposal(db, proposal, price=175)
    second = await proposals.create_payment_intent(db, gateway, sr, proposal.id)

    assert second["payment_intent_id"] != first["payment_intent_id"]
    assert gateway.cancelled == [first["payment_intent_id"]]
    assert gateway.intents[second["payment_intent_id"]].amount == 17500
    proposal = await crud.reload_proposal(db, proposal.id)
    assert proposal.stale_intent_count == 1
    assert proposal.payment_intent_id == second["payment_intent_id"]
    assert "payment_intent.cancelled" in events()


async def test_stale_intents_are_bounded(db, factory, gateway):
    _, _, profile, sr, _ = await _request_with_lead(factory)
    stale = gateway.add(999, status="requires_payment_method")
    proposal = await factory.proposal(sr, profile, price=150, payment_intent_id=stale.id, stale_intent_count=5)

    with pytest.raises(ConflictError):
        await proposals.create_payment_intent(db, gateway, sr, proposal.id)
    assert gateway.cancelled == []


async def test_missing_stored_intent_is_replaced(db, factory, gateway):
    _, _, profile, sr, _ = await _request_with_lead(factory)
    proposal = await factory.proposal(sr, profile, price=150, payment_intent_id="pi_gone")
    result = await proposals.create_payment_intent(db, gateway, sr, proposal.id)
    assert result["payment_intent_id"] != "pi_gone"


async def test_payment_intent_for_pending_offer_promotes_it(db, factory, gateway):
    _, _, profile, sr, lead = await _request_with_lead(
        factory, pending={"description": "Paint", "price": 450}, lead_status="accepted",
    )
    result = await proposals.create_payment_intent(db, gateway, sr, pending_token(lead.id))

    rows = await crud.list_proposals_for_request(db, sr.id)
    assert len(rows) == 1
    assert result["proposal_id"] == rows[0].id
    assert rows[0].payment_intent_id == result["payment_intent_id"]
    assert gateway.intents[result["payment_intent_id"]].metadata["proposalId"] == rows[0].id


async def test_payment_intent_refused_for_processed_proposal(db, factory, gateway):
    _, _, profile, sr, _ = await _request_with_lead(factory)
    proposal = await factory.proposal(sr, profile, status="REJECTED")
    with pytest.raises(NotFoundError):
        await proposals.create_payment_intent(db, gateway, sr, proposal.id)


async def test_payment_status_reads_gateway(db, factory, gateway):
    _, _, profile, sr, _ = await _request_with_lead(factory)
    intent = gateway.add(15000, status="processing")
    proposal = await factory.proposal(sr, profile, payment_intent_id=intent.id)

    status = await proposals.get_payment_status(db, gateway, sr, proposal.id)

    assert status["payment_status"] == "processing"
    assert status["amount"] == 150
    assert status["proposal_payment_status"] == "pending"
