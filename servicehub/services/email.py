"""Email service using Resend API."""

from __future__ import annotations

import asyncio
import logging

from servicehub.config import get_settings

logger = logging.getLogger(__name__)

_settings = get_settings()
_background: set[asyncio.Task] = set()


def _send(to: str, subject: str, html: str) -> bool:
    """Send an email via Resend. Returns True on success."""
    if not to:
        return False
    if not _settings.email.resend_api_key:
        logger.warning("RESEND_API_KEY not set, email to %s not sent: %s", to, subject)
        return False

    import resend
    resend.api_key = _settings.email.resend_api_key

    try:
        resend.Emails.send({
            "from": _settings.email.from_address,
            "to": [to],
            "subject": subject,
            "html": html,
        })
        return True
    except Exception:
        logger.exception("Failed to send email to %s", to)
        return False


def dispatch(sender, *args) -> asyncio.Task:
    """Run a blocking sender in a worker thread without holding up the caller."""
    async def _run():
        try:
            await asyncio.to_thread(sender, *args)
        except Exception:
            logger.exception("Notification %s failed", getattr(sender, "__name__", sender))

    task = asyncio.create_task(_run())
    _background.add(task)
    task.add_done_callback(_background.discard)
    return task


def _button(url: str, label: str) -> str:
    return (
        f'<p><a href="{url}" style="display:inline-block;padding:12px 24px;background:#1f6feb;'
        f'color:#ffffff;text-decoration:none;border-radius:6px;font-weight:600;">{label}</a></p>'
    )


def send_new_lead_email(email: str, project_title: str, lead_id: str) -> bool:
    url = f"{_settings.email.app_url}/provider/leads/{lead_id}"
    html = f"""
    <h2>New lead: {project_title}</h2>
    <p>A customer near you is looking for help. Review the lead and send your price.</p>
    {_button(url, "View Lead")}
    """
    return _send(email, f"New lead: {project_title}", html)


def send_lead_accepted_email(email: str, project_title: str, provider_name: str) -> bool:
    html = f"""
    <h2>{provider_name} responded to your request</h2>
    <p>You have a new proposal for <strong>{project_title}</strong>.</p>
    """
    return _send(email, f"New proposal for {project_title}", html)


def send_lead_rejected_email(email: str, project_title: str) -> bool:
    html = f"""
    <h2>A provider declined your request</h2>
    <p>We are looking for another provider for <strong>{project_title}</strong>.</p>
    """
    return _send(email, f"Update on {project_title}", html)


def send_lead_payment_failed_email(email: str, project_title: str) -> bool:
    html = f"""
    <h2>Lead payment failed</h2>
    <p>Your payment for the lead <strong>{project_title}</strong> did not go through.
    The lead has been offered to another provider.</p>
    """
    return _send(email, "Lead payment failed", html)


def send_proposal_received_email(email: str, project_title: str, price: float) -> bool:
    html = f"""
    <h2>You received a proposal</h2>
    <p>A provider quoted <strong>${price:,.2f}</strong> for <strong>{project_title}</strong>.</p>
    """
    return _send(email, f"Proposal for {project_title}", html)


def send_proposal_accepted_email(email: str, project_title: str, price: float) -> bool:
    html = f"""
    <h2>Your proposal was accepted</h2>
    <p>The customer accepted and paid <strong>${price:,.2f}</strong> for <strong>{project_title}</strong>.
    A work order has been created.</p>
    """
    return _send(email, f"Proposal accepted: {project_title}", html)


def send_payment_confirmed_email(email: str, project_title: str, price: float) -> bool:
    html = f"""
    <h2>Payment confirmed</h2>
    <p>We received your payment of <strong>${price:,.2f}</strong> for <strong>{project_title}</strong>.
    Your provider has been notified.</p>
    """
    return _send(email, f"Payment confirmed: {project_title}", html)


def send_proposal_rejected_email(email: str, project_title: str) -> bool:
    html = f"""
    <h2>Proposal not selected</h2>
    <p>The customer chose not to move forward with your proposal for <strong>{project_title}</strong>.</p>
    """
    return _send(email, f"Proposal update: {project_title}", html)


def send_payout_email(email: str, project_title: str, amount: float) -> bool:
    html = f"""
    <h2>Payout processed</h2>
    <p>Your payout of <strong>${amount:,.2f}</strong> for <strong>{project_title}</strong> has been processed.</p>
    """
    return _send(email, f"Payout processed: ${amount:,.2f}", html)


def send_work_completed_email(email: str, project_title: str, request_id: str) -> bool:
    url = f"{_settings.email.app_url}/service-requests/{request_id}"
    html = f"""
    <h2>Work completed</h2>
    <p>Your provider marked <strong>{project_title}</strong> as completed. Please review the work and approve it.</p>
    {_button(url, "Review Work")}
    """
    return _send(email, f"Work completed: {project_title}", html)


def send_work_approved_email(email: str, project_title: str) -> bool:
    html = f"""
    <h2>Work approved</h2>
    <p>The customer approved your completed work for <strong>{project_title}</strong>.
    Your payout is on its way.</p>
    """
    return _send(email, f"Work approved: {project_title}", html)
