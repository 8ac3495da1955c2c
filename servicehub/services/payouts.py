"""Provider payout processing.

A payout is claimed and completed with one conditional UPDATE guarded on
``payout_status``; whether that statement touched a row decides the outcome.
Calling ``process_payout`` repeatedly for the same proposal is safe and only
the first call that finds the payout open completes it.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone

from sqlalchemy import or_, update
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm.attributes import set_committed_value

from servicehub.db import crud
from servicehub.db.capabilities import get_capabilities, require_payout_columns
from servicehub.errors import SchemaDriftError, is_lock_conflict
from servicehub.models import Proposal, ServiceRequest
from servicehub.models import proposal as proposal_status
from servicehub.services import email
from servicehub.services.activity import log_activity
from servicehub.services.events import emit
from servicehub.services.fees import calculate_payouts

logger = logging.getLogger(__name__)

COMPLETED = "completed"
SKIPPED = "skipped"
FAILED = "failed"

OPEN_PAYOUT_STATUSES = (proposal_status.PAYOUT_PENDING, proposal_status.PAYOUT_PROCESSING)


def _open_payout():
    return or_(Proposal.payout_status.is_(None), Proposal.payout_status.in_(OPEN_PAYOUT_STATUSES))


async def _mark_failed(db: AsyncSession, proposal_id: str) -> None:
    """Flag an open payout as failed. A completed payout is never overwritten."""
    try:
        await db.execute(
            update(Proposal)
            .where(Proposal.id == proposal_id, _open_payout())
            .values(payout_status=proposal_status.PAYOUT_FAILED)
            .execution_options(synchronize_session=False)
        )
        await db.commit()
    except Exception:
        logger.exception("Could not mark payout failed for proposal %s", proposal_id)
        await db.rollback()


async def _notify_payout(db: AsyncSession, proposal: Proposal, sr: ServiceRequest | None, amount: float) -> None:
    profile = await crud.get_provider_profile(db, proposal.provider_id)
    provider = await crud.get_user(db, profile.user_id) if profile else None
    title = sr.project_title if sr else "your project"
    if provider:
        email.dispatch(email.send_payout_email, provider.email, title, amount)
    await log_activity(
        db, "payout_completed", f'Payout of ${amount:.2f} processed for "{title}"',
        user_id=provider.id if provider else None,
        proposalId=proposal.id, amount=amount,
    )


async def process_payout(db: AsyncSession, proposal_id: str, sr: ServiceRequest | None = None) -> str:
    """Complete the provider payout for a proposal.

    Returns ``"completed"`` when this call moved the payout to completed,
    ``"skipped"`` when there was nothing to do (already handled, not paid,
    the schema lacks payout columns, or another writer holds the row) and
    ``"failed"`` when a store error left the payout flagged for review. Never raises for payout problems.
    """
    try:
        require_payout_columns()
    except SchemaDriftError as e:
        logger.warning("Payout for proposal %s deferred until migration runs: %s", proposal_id, e)
        emit("payout.skipped", proposal_id=proposal_id, reason="schema")
        return SKIPPED

    proposal = await crud.reload_proposal(db, proposal_id)
    if proposal is None:
        return SKIPPED
    if proposal.payout_status not in (None, proposal_status.PAYOUT_PENDING):
        emit("payout.skipped", proposal_id=proposal_id, reason=proposal.payout_status)
        return SKIPPED
    if proposal.payment_status != proposal_status.PAYMENT_SUCCEEDED:
        emit("payout.skipped", proposal_id=proposal_id, reason="unpaid")
        return SKIPPED

    values = {
        "payout_status": proposal_status.PAYOUT_COMPLETED,
        "payout_processed_at": datetime.now(timezone.utc),
    }
    provider_amount = proposal.provider_payout_amount
    if provider_amount is None or proposal.platform_fee_amount is None:
        try:
            split = calculate_payouts(proposal.price)
        except Exception:
            logger.exception("Cannot compute payout for proposal %s", proposal_id)
            await _mark_failed(db, proposal_id)
            emit("payout.failed", proposal_id=proposal_id, reason="amount")
            return FAILED
        provider_amount = split.provider_amount
        values["provider_payout_amount"] = split.provider_amount
        values["platform_fee_amount"] = split.platform_fee

    try:
        result = await db.execute(
            update(Proposal)
            .where(
                Proposal.id == proposal_id,
                Proposal.payment_status == proposal_status.PAYMENT_SUCCEEDED,
                _open_payout(),
            )
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        await db.commit()
    except Exception as e:
        await db.rollback()
        if sr is not None:
            await db.refresh(sr)
        if is_lock_conflict(e):
            logger.warning("Payout for proposal %s is locked by another writer; leaving it open", proposal_id)
            emit("payout.skipped", proposal_id=proposal_id, reason="busy")
            return SKIPPED
        logger.exception("Payout update failed for proposal %s", proposal_id)
        await _mark_failed(db, proposal_id)
        emit("payout.failed", proposal_id=proposal_id, reason="store")
        return FAILED

    if result.rowcount == 0:
        emit("payout.skipped", proposal_id=proposal_id, reason="claimed")
        return SKIPPED

    # The UPDATE bypassed the identity map
    for key, value in values.items():
        set_committed_value(proposal, key, value)

    emit("payout.completed", proposal_id=proposal_id, provider_amount=provider_amount,
         service_request_id=proposal.service_request_id)
    try:
        await _notify_payout(db, proposal, sr, provider_amount)
    except Exception:
        logger.exception("Payout notification failed for proposal %s", proposal_id)
    return COMPLETED


async def trigger_payout_for_request(db: AsyncSession, sr: ServiceRequest) -> str | None:
    """Run the payout processor for the request's accepted, paid proposal, if any."""
    request_id = sr.id
    if not get_capabilities().payout_columns:
        logger.warning("Skipping payout for request %s: payout columns are missing", sr.id)
        return None
    try:
        proposal = await crud.get_accepted_paid_proposal(db, sr.id)
        if proposal is None:
            return None
        return await process_payout(db, proposal.id, sr)
    except Exception:
        logger.exception("Payout trigger failed for request %s", request_id)
        await db.rollback()
        await db.refresh(sr)
        return None


async def process_pending_payouts(db: AsyncSession) -> dict:
    """Sweep every payable proposal on approved or closed requests."""
    counts = {COMPLETED: 0, SKIPPED: 0, FAILED: 0}
    if not get_capabilities().payout_columns:
        logger.warning("Payout sweep skipped: payout columns are missing")
        return counts
    due = [(p.id, p.service_request_id) for p in await crud.list_payable_proposals(db)]
    for proposal_id, request_id in due:
        sr = await crud.get_service_request(db, request_id)
        counts[await process_payout(db, proposal_id, sr)] += 1
    return counts
