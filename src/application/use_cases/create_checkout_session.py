from __future__ import annotations

import logging
import os
from dataclasses import dataclass

from src.domain.entities.profile import ProfileEntity
from src.domain.errors import BillingError
from src.infrastructure.billing.stripe_gateway import StripeGateway
from src.infrastructure.database.repositories.profile_repository import ProfileRepository

logger = logging.getLogger(__name__)

PRICE_ENV = {
    "monthly": "STRIPE_PREMIUM_MONTHLY_PRICE_ID",
    "yearly": "STRIPE_PREMIUM_YEARLY_PRICE_ID",
}


def app_url() -> str:
    return os.getenv("APP_URL", "http://localhost:3000").rstrip("/")


@dataclass
class CreateCheckoutSessionUseCase:
    profiles: ProfileRepository
    gateway: StripeGateway

    def execute(self, profile: ProfileEntity, plan_type: str = "monthly") -> dict[str, str]:
        """
        Start a subscription checkout for the calling user.

        A Stripe customer is created and saved on the profile the first time.
        Returns `{"session_id", "url"}`.
        """
        env_name = PRICE_ENV.get(plan_type)
        price_id = os.getenv(env_name) if env_name else None
        if not price_id:
            raise BillingError("Invalid plan type")

        customer_id = profile.stripe_customer_id
        if not customer_id:
            customer_id = self.gateway.create_customer(profile.email, profile.full_name, profile.id)
            self.profiles.update(profile.id, stripe_customer_id=customer_id)
            logger.info("Created Stripe customer %s for user %s", customer_id, profile.id)

        base = app_url()
        session = self.gateway.create_checkout_session(
            customer_id=customer_id,
            price_id=price_id,
            user_id=profile.id,
            plan_type=plan_type,
            success_url=f"{base}/upgrade/success?session_id={{CHECKOUT_SESSION_ID}}",
            cancel_url=f"{base}/meals",
        )
        return {"session_id": session["id"], "url": session["url"]}
