"""Payment gateway backed by Stripe PaymentIntents.

The stripe SDK is synchronous, so every call runs in a worker thread. Intents
come back as plain ``PaymentIntent`` values; nothing outside this module
touches stripe objects.
"""

from __future__ import annotations

import asyncio
import json
import logging
from dataclasses import dataclass, field

import stripe

from servicehub.config import PaymentsConfig
from servicehub.errors import ExternalServiceError, PaymentGatewayUnconfigured, PaymentNotFound

logger = logging.getLogger(__name__)

SUCCEEDED = "succeeded"
CANCELED = "canceled"
TERMINAL_STATUSES = (SUCCEEDED, CANCELED)
REUSABLE_STATUSES = ("requires_payment_method", "requires_confirmation", "requires_action", "processing")


@dataclass
class PaymentIntent:
    id: str
    amount: int
    status: str
    client_secret: str | None = None
    metadata: dict = field(default_factory=dict)

    @classmethod
    def from_stripe(cls, obj) -> "PaymentIntent":
        return cls(
            id=obj.get("id") or "",
            amount=int(obj.get("amount") or 0),
            status=obj.get("status") or "",
            client_secret=obj.get("client_secret"),
            metadata=_plain(obj.get("metadata")),
        )


@dataclass
class GatewayEvent:
    type: str
    intent: PaymentIntent | None = None


def _plain(metadata) -> dict:
    if not metadata:
        return {}
    if hasattr(metadata, "to_dict"):
        metadata = metadata.to_dict()
    return {str(k): str(v) for k, v in dict(metadata).items()}


class StripeGateway:
    def __init__(self, config: PaymentsConfig):
        self.config = config

    @property
    def configured(self) -> bool:
        return bool(self.config.stripe_secret_key)

    def _require_configured(self) -> None:
        if not self.configured:
            raise PaymentGatewayUnconfigured()

    async def create_intent(self, amount_cents: int, metadata: dict, description: str = "") -> PaymentIntent:
        self._require_configured()
        try:
            obj = await asyncio.to_thread(
                stripe.PaymentIntent.create,
                amount=amount_cents,
                currency=self.config.currency,
                metadata={k: str(v) for k, v in metadata.items() if v is not None},
                description=description or None,
                automatic_payment_methods={"enabled": True},
                api_key=self.config.stripe_secret_key,
            )
        except stripe.StripeError as e:
            logger.error("Stripe intent creation failed: %s", e)
            raise ExternalServiceError(f"Payment provider error: {e.user_message or e}", caller_fixable=False)
        intent = PaymentIntent.from_stripe(obj)
        logger.info("Created payment intent %s for %d cents", intent.id, amount_cents)
        return intent

    async def retrieve_intent(self, payment_intent_id: str) -> PaymentIntent:
        self._require_configured()
        try:
            obj = await asyncio.to_thread(
                stripe.PaymentIntent.retrieve, payment_intent_id, api_key=self.config.stripe_secret_key,
            )
        except stripe.StripeError as e:
            logger.warning("Could not retrieve payment intent %s: %s", payment_intent_id, e)
            raise PaymentNotFound(payment_intent_id)
        return PaymentIntent.from_stripe(obj)

    async def cancel_intent(self, payment_intent_id: str) -> PaymentIntent:
        self._require_configured()
        try:
            obj = await asyncio.to_thread(
                stripe.PaymentIntent.cancel, payment_intent_id, api_key=self.config.stripe_secret_key,
            )
        except stripe.StripeError as e:
            logger.error("Could not cancel payment intent %s: %s", payment_intent_id, e)
            raise ExternalServiceError(f"Payment provider error: {e.user_message or e}", caller_fixable=False)
        return PaymentIntent.from_stripe(obj)

    def construct_event(self, payload: bytes, signature: str | None) -> GatewayEvent:
        """Verify and parse a webhook payload.

        Without a configured webhook secret the payload is parsed unverified.
        """
        if self.config.stripe_webhook_secret:
            try:
                stripe.Webhook.construct_event(payload, signature or "", self.config.stripe_webhook_secret)
            except (stripe.SignatureVerificationError, ValueError) as e:
                raise ExternalServiceError(f"Webhook Error: {e}")
        else:
            logger.warning("Stripe webhook secret not configured; skipping signature verification")
        try:
            body = json.loads(payload)
        except ValueError as e:
            raise ExternalServiceError(f"Webhook Error: {e}")

        event_type = body.get("type", "")
        obj = (body.get("data") or {}).get("object") or {}
        intent = None
        if obj.get("object") == "payment_intent" or event_type.startswith("payment_intent."):
            intent = PaymentIntent.from_stripe(obj)
        return GatewayEvent(type=event_type, intent=intent)
