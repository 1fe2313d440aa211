from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import Any, Callable

from src.domain.errors import NotFoundError
from src.domain.services import tier_policy
from src.infrastructure.billing.stripe_gateway import StripeGateway
from src.infrastructure.database.repositories.profile_repository import ProfileRepository

logger = logging.getLogger(__name__)

ACTIVE_STATUSES = ("active", "trialing")


@dataclass
class HandleStripeWebhookUseCase:
    """Reconciles profile tier fields with Stripe subscription events.

    The user is taken from `metadata.userId` and, when absent, looked up by
    Stripe customer id. Events for unknown users are logged and acknowledged.
    """

    profiles: ProfileRepository
    gateway: StripeGateway

    def execute(self, payload: bytes, signature: str | None) -> dict[str, Any]:
        event = self.gateway.construct_event(payload, signature)
        return self.handle_event(event)

    def handle_event(self, event: dict[str, Any]) -> dict[str, Any]:
        handlers: dict[str, Callable[[dict[str, Any]], bool]] = {
            "checkout.session.completed": self._checkout_completed,
            "customer.subscription.created": self._subscription_changed,
            "customer.subscription.updated": self._subscription_changed,
            "customer.subscription.deleted": self._subscription_deleted,
            "invoice.payment_succeeded": self._payment_succeeded,
            "invoice.payment_failed": self._payment_failed,
        }
        event_type = event.get("type", "")
        obj = (event.get("data") or {}).get("object") or {}
        handler = handlers.get(event_type)
        if handler is None:
            logger.info("Unhandled Stripe event type: %s", event_type)
            return {"received": True, "handled": False}
        return {"received": True, "handled": handler(obj)}

    def _user_id_for(self, obj: dict[str, Any]) -> str | None:
        user_id = (obj.get("metadata") or {}).get("userId")
        if user_id:
            return user_id
        customer = obj.get("customer")
        if isinstance(customer, dict):
            customer = customer.get("id")
        if customer:
            profile = self.profiles.get_by_customer_id(customer)
            if profile is not None:
                return profile.id
        logger.error("No user for Stripe object %s", obj.get("id"))
        return None

    def _update(self, user_id: str, **changes: Any) -> bool:
        try:
            self.profiles.update(user_id, **changes)
        except NotFoundError:
            logger.warning("Stripe event for missing profile %s ignored", user_id)
            return False
        return True

    def _checkout_completed(self, session: dict[str, Any]) -> bool:
        user_id = self._user_id_for(session)
        if user_id is None:
            return False
        tier = tier_policy.tier_for_plan((session.get("metadata") or {}).get("planType"))
        if not self._update(
            user_id,
            subscription_tier=tier,
            subscription_status="active",
            billing_cycle=tier_policy.billing_cycle_for_tier(tier),
            stripe_customer_id=session.get("customer"),
            stripe_subscription_id=session.get("subscription"),
        ):
            return False
        logger.info("Checkout completed for user %s (%s)", user_id, tier)
        return True

    def _subscription_changed(self, subscription: dict[str, Any]) -> bool:
        user_id = self._user_id_for(subscription)
        if user_id is None:
            return False
        status = subscription.get("status")
        if status in ACTIVE_STATUSES:
            tier = tier_policy.tier_for_plan((subscription.get("metadata") or {}).get("planType"))
        else:
            tier = tier_policy.FREE
        changes: dict[str, Any] = {
            "subscription_tier": tier,
            "subscription_status": status,
            "billing_cycle": tier_policy.billing_cycle_for_tier(tier),
            "stripe_subscription_id": subscription.get("id"),
        }
        period_end = subscription.get("current_period_end")
        if period_end:
            changes["subscription_expires_at"] = datetime.fromtimestamp(period_end, UTC)
        if not self._update(user_id, **changes):
            return False
        logger.info("Updated user %s to %s tier (%s)", user_id, tier, status)
        return True

    def _subscription_deleted(self, subscription: dict[str, Any]) -> bool:
        user_id = self._user_id_for(subscription)
        if user_id is None:
            return False
        if not self._update(
            user_id,
            subscription_tier=tier_policy.FREE,
            subscription_status="canceled",
            billing_cycle="free",
        ):
            return False
        logger.info("Subscription canceled for user %s", user_id)
        return True

    def _payment_succeeded(self, invoice: dict[str, Any]) -> bool:
        subscription_id = invoice.get("subscription")
        if isinstance(subscription_id, dict):
            subscription_id = subscription_id.get("id")
        if not subscription_id:
            return False
        return self._subscription_changed(self.gateway.retrieve_subscription(subscription_id))

    def _payment_failed(self, invoice: dict[str, Any]) -> bool:
        user_id = self._user_id_for(invoice)
        if user_id is None:
            return False
        if not self._update(user_id, subscription_status="past_due"):
            return False
        logger.warning("Payment failed for user %s", user_id)
        return True
