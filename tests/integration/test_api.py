"""Integration tests for API endpoints."""

from __future__ import annotations

from conftest import webhook_payload

from servicehub.config import Settings
from servicehub.db import crud
from servicehub.dependencies import get_settings_dep
from servicehub.main import app
from servicehub.services.auth import SESSION_COOKIE_NAME, hash_password


async def _marketplace(factory):
    customer = await factory.user()
    provider, profile = await factory.provider()
    category = await factory.category("Plumbing")
    business = await factory.business(provider, category, rating_average=4.5)
    return customer, provider, profile, category, business


# ── Auth ─────────────────────────────────────────────────

async def test_login_sets_cookie_and_me(api, factory):
    user = await factory.user(email="ada@example.com", password_hash=hash_password("correct-horse"))
    client = await api()

    resp = await client.post("/api/auth/login", json={"email": "ada@example.com", "password": "correct-horse"})
    assert resp.status_code == 200
    assert resp.json()["user_id"] == user.id
    assert SESSION_COOKIE_NAME in resp.cookies

    resp = await client.get("/api/auth/me")
    assert resp.status_code == 200
    assert resp.json()["email"] == "ada@example.com"


async def test_login_rejects_bad_password(api, factory):
    await factory.user(email="ada@example.com", password_hash=hash_password("correct-horse"))
    client = await api()
    resp = await client.post("/api/auth/login", json={"email": "ada@example.com", "password": "wrong"})
    assert resp.status_code == 401
    assert resp.json() == {"success": False, "error": "Invalid credentials"}


async def test_requires_session(api):
    client = await api()
    resp = await client.get("/api/service-requests")
    assert resp.status_code == 401
    assert resp.json() == {"success": False, "error": "Not authenticated"}


async def test_customer_cannot_use_provider_routes(api, factory):
    customer = await factory.user()
    client = await api(customer)
    resp = await client.get("/api/provider/leads")
    assert resp.status_code == 403
    assert resp.json()["success"] is False


# ── Errors ───────────────────────────────────────────────

async def test_validation_errors_use_envelope(api, factory):
    customer = await factory.user()
    client = await api(customer)

    resp = await client.post("/api/service-requests", json={"zip_code": "94107"})
    assert resp.status_code == 400
    assert resp.json() == {
        "success": False,
        "error": "Category, project title, description, and zip code are required",
    }

    resp = await client.get("/api/service-requests/does-not-exist")
    assert resp.status_code == 404
    assert resp.json() == {"success": False, "error": "Service request not found"}


# ── Full lifecycle ───────────────────────────────────────

async def test_request_to_review_lifecycle(api, factory, gateway, session_factory):
    customer, provider, profile, category, business = await _marketplace(factory)
    as_customer = await api(customer)
    as_provider = await api(provider)

    # Customer posts a request; the provider's business is the only match
    resp = await as_customer.post("/api/service-requests", json={
        "category_id": category.id,
        "zip_code": "94107",
        "project_title": "Replace water heater",
        "project_description": "40 gallon gas unit, leaking at the base",
    })
    assert resp.status_code == 201
    sr = resp.json()["data"]
    assert sr["status"] == "LEAD_ASSIGNED"
    assert sr["primary_provider_id"] == profile.id

    # Provider sees the lead without customer contact details and pays the fee
    resp = await as_provider.get("/api/provider/leads")
    assert resp.status_code == 200
    assert resp.json()["count"] == 1
    lead = resp.json()["data"][0]
    assert lead["service_request_id"] == sr["id"]

    resp = await as_provider.patch(f"/api/provider/leads/{lead['id']}/accept", json={
        "description": "Swap in a new 40 gallon unit, haul away the old one",
        "price": 200,
    })
    assert resp.status_code == 200
    body = resp.json()
    assert body["client_secret"].startswith(body["payment_intent_id"])
    assert body["lead_cost"] == 20.0

    fee_intent = gateway.succeed(body["payment_intent_id"])
    resp = await as_provider.post(
        "/api/webhooks/stripe", content=webhook_payload("payment_intent.succeeded", fee_intent),
    )
    assert resp.json() == {"received": True, "handled": True}

    # The offer is now a proposal row the customer can pay for
    resp = await as_customer.get(f"/api/service-requests/{sr['id']}/proposals")
    proposals = resp.json()["data"]
    assert len(proposals) == 1
    proposal = proposals[0]
    assert proposal["status"] == "SENT"
    assert proposal["price"] == 200.0
    assert proposal["provider_email"] is None

    resp = await as_customer.post(f"/api/service-requests/{sr['id']}/proposals/{proposal['id']}/payment-intent")
    assert resp.status_code == 200
    payment_intent_id = resp.json()["payment_intent_id"]
    assert gateway.intents[payment_intent_id].amount == 20000

    # Accepting before the charge settles is refused
    resp = await as_customer.post(
        f"/api/service-requests/{sr['id']}/proposals/{proposal['id']}/accept",
        json={"payment_intent_id": payment_intent_id},
    )
    assert resp.status_code == 400
    assert resp.json()["success"] is False

    gateway.succeed(payment_intent_id)
    resp = await as_customer.post(
        f"/api/service-requests/{sr['id']}/proposals/{proposal['id']}/accept",
        json={"payment_intent_id": payment_intent_id},
    )
    assert resp.status_code == 200
    accepted = resp.json()["data"]
    assert accepted["status"] == "IN_PROGRESS"
    assert accepted["proposal_id"] == proposal["id"]

    # Contact details are revealed once accepted
    resp = await as_customer.get(f"/api/service-requests/{sr['id']}")
    detail = resp.json()["data"]
    assert detail["proposals"][0]["provider_email"] == provider.email
    assert detail["work_order"]["status"] == "IN_PROGRESS"

    # Provider completes the work and the customer approves it
    resp = await as_provider.get("/api/provider/work-orders")
    work_order_id = resp.json()["data"][0]["id"]
    assert work_order_id == accepted["work_order_id"]

    resp = await as_provider.patch(f"/api/provider/work-orders/{work_order_id}/complete")
    assert resp.status_code == 200
    assert resp.json()["data"]["status"] == "COMPLETED"

    resp = await as_customer.patch(f"/api/service-requests/{sr['id']}/approve")
    assert resp.status_code == 200
    assert resp.json()["data"]["status"] == "APPROVED"

    # Review closes the request
    resp = await as_customer.post(f"/api/service-requests/{sr['id']}/review", json={
        "rating": 5, "title": "Great job", "comment": "Fast and tidy",
    })
    assert resp.status_code == 201
    review = resp.json()["data"]
    assert review["business_id"] == business.id
    assert review["service_request_status"] == "CLOSED"

    resp = await as_customer.get(f"/api/service-requests/{sr['id']}/review")
    assert resp.json()["data"]["id"] == review["id"]

    # The payout was released on approval
    resp = await as_provider.get("/api/provider/payouts")
    payouts = resp.json()
    assert payouts["total_paid"] == 180.0
    assert payouts["payouts"][0]["payout_status"] == "completed"
    assert payouts["payouts"][0]["platform_fee_amount"] == 20.0

    async with session_factory() as db:
        stored = await crud.get_service_request(db, sr["id"])
        assert stored.status == "CLOSED"


async def test_customer_cancels_open_request(api, factory):
    customer, provider, _, category, _ = await _marketplace(factory)
    client = await api(customer)

    resp = await client.post("/api/service-requests", json={
        "category_id": category.id,
        "zip_code": "94107",
        "project_title": "Unclog drain",
        "project_description": "Kitchen drain backs up",
    })
    request_id = resp.json()["data"]["id"]

    resp = await client.patch(f"/api/service-requests/{request_id}/cancel", json={"rejection_reason": "OTHER"})
    assert resp.status_code == 200
    assert resp.json()["data"]["status"] == "CLOSED"

    resp = await client.patch(f"/api/service-requests/{request_id}/cancel")
    assert resp.status_code == 400


# ── Scheduled tasks ──────────────────────────────────────

async def test_scheduled_tasks_accept_api_key(api):
    app.dependency_overrides[get_settings_dep] = lambda: Settings(scheduled_tasks_api_key="cron-secret")
    client = await api()

    resp = await client.post("/api/scheduled-tasks/process-pending-payouts", headers={"X-API-Key": "cron-secret"})
    assert resp.status_code == 200
    assert resp.json() == {"success": True, "completed": 0, "skipped": 0, "failed": 0}

    resp = await client.post("/api/scheduled-tasks/assign-fallback-leads", headers={"X-API-Key": "cron-secret"})
    assert resp.status_code == 200
    assert resp.json()["assigned"] == 0

    resp = await client.post("/api/scheduled-tasks/process-pending-payouts", headers={"X-API-Key": "wrong"})
    assert resp.status_code == 401


async def test_scheduled_tasks_require_admin_session(api, factory):
    app.dependency_overrides[get_settings_dep] = lambda: Settings(scheduled_tasks_api_key="cron-secret")
    customer = await factory.user()
    admin = await factory.user("admin")

    resp = await (await api(customer)).post("/api/scheduled-tasks/process-pending-payouts")
    assert resp.status_code == 403
    assert resp.json() == {"success": False, "error": "Admin access required"}

    resp = await (await api(admin)).post("/api/scheduled-tasks/process-pending-payouts")
    assert resp.status_code == 200
