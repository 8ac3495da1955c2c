from datetime import datetime, timezone

import pytest

from servicehub.db import crud
from servicehub.errors import NotFoundError, ValidationError
from servicehub.services import lifecycle


async def _in_progress(factory, price=120.0):
    customer = await factory.user()
    category = await factory.category()
    provider, profile = await factory.provider()
    sr = await factory.service_request(customer, category, status="IN_PROGRESS", primary_provider_id=profile.id)
    proposal = await factory.proposal(
        sr, profile, price=price, status="ACCEPTED", payment_status="succeeded",
        paid_at=datetime.now(timezone.utc), payout_status="pending",
    )
    wo = await crud.add_work_order(factory.db, sr.id, profile.id, proposal.id)
    await factory.db.commit()
    return customer, provider, sr, proposal, wo


# ── Cancellation ─────────────────────────────────────────

async def test_cancel_closes_request_and_open_leads(db, factory, events):
    customer = await factory.user()
    category = await factory.category()
    provider, _ = await factory.provider()
    other, _ = await factory.provider()
    sr = await factory.service_request(customer, category, status="LEAD_ASSIGNED")
    open_lead = await factory.lead(sr, provider)
    rejected_lead = await factory.lead(sr, other, status="rejected")

    sr = await lifecycle.cancel_request(db, sr.id, customer.id, "OTHER", "  Moved house ")

    assert sr.status == "CLOSED"
    assert sr.rejection_reason == "OTHER"
    assert sr.rejection_reason_other == "Moved house"
    assert (await crud.get_lead(db, open_lead.id)).status == "cancelled"
    assert (await crud.get_lead(db, rejected_lead.id)).status == "rejected"
    assert "service_request.cancelled" in events()


async def test_cancel_ignores_other_text_without_other_reason(db, factory):
    customer = await factory.user()
    category = await factory.category()
    sr = await factory.service_request(customer, category)
    sr = await lifecycle.cancel_request(db, sr.id, customer.id, "TOO_FAR", "ignored")
    assert sr.rejection_reason == "TOO_FAR"
    assert sr.rejection_reason_other is None


async def test_cancel_refused_after_acceptance(db, factory):
    customer, _, sr, _, _ = await _in_progress(factory)
    with pytest.raises(ValidationError, match="Only requests with status"):
        await lifecycle.cancel_request(db, sr.id, customer.id)


async def test_cancel_validates_reason_and_owner(db, factory):
    customer = await factory.user()
    category = await factory.category()
    sr = await factory.service_request(customer, category)
    with pytest.raises(ValidationError):
        await lifecycle.cancel_request(db, sr.id, customer.id, "BORED")
    stranger = await factory.user()
    with pytest.raises(NotFoundError):
        await lifecycle.cancel_request(db, sr.id, stranger.id)


# ── Completion and approval ──────────────────────────────

async def test_complete_then_approve_pays_out(db, factory, events, sent_emails):
    customer, provider, sr, proposal, wo = await _in_progress(factory, price=120)

    wo = await lifecycle.complete_work_order(db, wo.id, provider)
    assert wo.status == "COMPLETED"
    assert wo.completed_at is not None
    assert (await crud.get_service_request(db, sr.id)).status == "COMPLETED"
    assert ("send_work_completed_email", (customer.email, sr.project_title, sr.id)) in sent_emails

    sr = await lifecycle.approve_request(db, sr.id, customer.id)
    assert sr.status == "APPROVED"
    proposal = await crud.reload_proposal(db, proposal.id)
    assert proposal.payout_status == "completed"
    assert proposal.provider_payout_amount == 108.0
    assert {"work_order.completed", "service_request.approved", "payout.completed"} <= set(events())
    assert "send_work_approved_email" in [name for name, _ in sent_emails]


async def test_complete_guards(db, factory):
    _, provider, sr, _, wo = await _in_progress(factory)
    other, _ = await factory.provider()
    with pytest.raises(NotFoundError, match="Work order not found"):
        await lifecycle.complete_work_order(db, wo.id, other)
    no_profile = await factory.user("provider")
    with pytest.raises(NotFoundError, match="Provider profile not found"):
        await lifecycle.complete_work_order(db, wo.id, no_profile)

    await lifecycle.complete_work_order(db, wo.id, provider)
    with pytest.raises(ValidationError, match="already completed"):
        await lifecycle.complete_work_order(db, wo.id, provider)


async def test_approve_requires_completed_work(db, factory):
    customer, _, sr, _, _ = await _in_progress(factory)
    request_id, customer_id = sr.id, customer.id
    with pytest.raises(ValidationError, match="must be 'COMPLETED'"):
        await lifecycle.approve_request(db, request_id, customer_id)

    sr = await crud.get_service_request(db, request_id)
    await crud.update_service_request(db, sr, status="COMPLETED")
    with pytest.raises(ValidationError, match="Work order is not completed"):
        await lifecycle.approve_request(db, request_id, customer_id)


# ── Provider listings ────────────────────────────────────

async def test_provider_work_orders_and_payouts(db, factory):
    customer, provider, sr, proposal, wo = await _in_progress(factory, price=120)

    orders = await lifecycle.list_provider_work_orders(db, provider)
    assert [o["id"] for o in orders] == [wo.id]
    assert orders[0]["project_title"] == sr.project_title

    payouts = await lifecycle.list_provider_payouts(db, provider)
    assert payouts["total_paid"] == 0
    assert payouts["payouts"][0]["provider_payout_amount"] == 108.0
    assert payouts["payouts"][0]["payout_status"] == "pending"

    await lifecycle.complete_work_order(db, wo.id, provider)
    await lifecycle.approve_request(db, sr.id, customer.id)

    payouts = await lifecycle.list_provider_payouts(db, provider)
    assert payouts["total_paid"] == 108.0
    assert payouts["payouts"][0]["payout_status"] == "completed"
