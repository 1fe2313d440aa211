from __future__ import annotations

import json
import logging
import os
from typing import Any

import stripe

from src.domain.errors import BillingError

logger = logging.getLogger(__name__)


def _plain(obj: Any) -> dict[str, Any]:
    """StripeObject -> plain nested dict."""
    return json.loads(str(obj))


class StripeGateway:
    """Thin adapter over the Stripe SDK returning plain dicts.

    Every call fails with RuntimeError when STRIPE_SECRET_KEY is not set.
    """

    def __init__(self) -> None:
        self.api_key = os.getenv("STRIPE_SECRET_KEY")
        self.webhook_secret = os.getenv("STRIPE_WEBHOOK_SECRET")

    @property
    def configured(self) -> bool:
        return bool(self.api_key)

    def _require_key(self) -> str:
        if not self.api_key:
            raise RuntimeError("Stripe is not configured")
        return self.api_key

    def create_customer(self, email: str | None, name: str | None, user_id: str) -> str:
        try:
            customer = stripe.Customer.create(
                email=email,
                name=name or "MealAppeal User",
                metadata={"userId": user_id},
                api_key=self._require_key(),
            )
        except stripe.StripeError as exc:
            raise RuntimeError(f"Stripe customer creation failed: {exc}") from exc
        return customer.id

    def create_checkout_session(
        self,
        customer_id: str,
        price_id: str,
        user_id: str,
        plan_type: str,
        success_url: str,
        cancel_url: str,
    ) -> dict[str, Any]:
        metadata = {"userId": user_id, "planType": plan_type}
        try:
            session = stripe.checkout.Session.create(
                customer=customer_id,
                payment_method_types=["card"],
                line_items=[{"price": price_id, "quantity": 1}],
                mode="subscription",
                success_url=success_url,
                cancel_url=cancel_url,
                metadata=metadata,
                subscription_data={"metadata": metadata},
                api_key=self._require_key(),
            )
        except stripe.StripeError as exc:
            raise RuntimeError(f"Stripe checkout session failed: {exc}") from exc
        return {"id": session.id, "url": session.url}

    def create_portal_session(self, customer_id: str, return_url: str) -> str:
        try:
            portal = stripe.billing_portal.Session.create(
                customer=customer_id, return_url=return_url, api_key=self._require_key()
            )
        except stripe.StripeError as exc:
            raise RuntimeError(f"Stripe billing portal session failed: {exc}") from exc
        return portal.url

    def retrieve_checkout_session(self, session_id: str) -> dict[str, Any]:
        try:
            session = stripe.checkout.Session.retrieve(
                session_id, expand=["subscription", "customer"], api_key=self._require_key()
            )
        except stripe.InvalidRequestError as exc:
            raise BillingError(f"Session not found: {exc}") from exc
        except stripe.StripeError as exc:
            raise RuntimeError(f"Stripe session retrieval failed: {exc}") from exc
        return _plain(session)

    def retrieve_subscription(self, subscription_id: str) -> dict[str, Any]:
        try:
            sub = stripe.Subscription.retrieve(subscription_id, api_key=self._require_key())
        except stripe.StripeError as exc:
            raise RuntimeError(f"Stripe subscription retrieval failed: {exc}") from exc
        return _plain(sub)

    def construct_event(self, payload: bytes, signature: str | None) -> dict[str, Any]:
        """Verify the Stripe-Signature header and decode the event body."""
        if not signature:
            raise BillingError("No signature")
        if not self.webhook_secret:
            raise RuntimeError("STRIPE_WEBHOOK_SECRET is not configured")
        try:
            stripe.WebhookSignature.verify_header(
                payload.decode("utf-8"), signature, self.webhook_secret, tolerance=300
            )
        except stripe.SignatureVerificationError as exc:
            logger.warning("Rejected webhook with invalid signature: %s", exc)
            raise BillingError("Invalid signature") from exc
        return json.loads(payload)
