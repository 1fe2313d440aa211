from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any

from src.domain.errors import AccessDeniedError, BillingError
from src.domain.services import tier_policy
from src.infrastructure.billing.stripe_gateway import StripeGateway
from src.infrastructure.database.repositories.profile_repository import ProfileRepository

logger = logging.getLogger(__name__)


def _object_id(value: Any) -> str | None:
    """Expanded Stripe fields arrive as objects, collapsed ones as ids."""
    if isinstance(value, dict):
        return value.get("id")
    return value


@dataclass
class VerifyCheckoutSessionUseCase:
    profiles: ProfileRepository
    gateway: StripeGateway

    def execute(self, session_id: str, caller_id: str) -> dict[str, Any]:
        if not session_id:
            raise BillingError("Session ID is required")
        session = self.gateway.retrieve_checkout_session(session_id)
        if session.get("payment_status") != "paid":
            raise BillingError("Payment not completed")

        metadata = session.get("metadata") or {}
        user_id = metadata.get("userId")
        if not user_id:
            raise BillingError("User ID not found in session")
        if user_id != caller_id:
            logger.warning("User %s tried to verify checkout %s of %s", caller_id, session_id, user_id)
            raise AccessDeniedError("Session belongs to another user")

        subscription = session.get("subscription")
        if isinstance(subscription, dict):
            tier = tier_policy.tier_for_plan(metadata.get("planType"))
            self.profiles.update(
                user_id,
                subscription_tier=tier,
                billing_cycle=tier_policy.billing_cycle_for_tier(tier),
                stripe_customer_id=_object_id(session.get("customer")),
                stripe_subscription_id=subscription.get("id"),
                subscription_status=subscription.get("status"),
            )
            logger.info("Checkout %s verified, user %s is now %s", session_id, user_id, tier)

        return {
            "success": True,
            "session": {
                "id": session.get("id"),
                "payment_status": session.get("payment_status"),
                "customer_email": (session.get("customer_details") or {}).get("email"),
                "subscription_id": _object_id(subscription),
            },
        }
