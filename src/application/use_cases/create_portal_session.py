from __future__ import annotations

from dataclasses import dataclass

from src.application.use_cases.create_checkout_session import app_url
from src.domain.entities.profile import ProfileEntity
from src.domain.errors import BillingError
from src.domain.services import tier_policy
from src.infrastructure.billing.stripe_gateway import StripeGateway


@dataclass
class CreatePortalSessionUseCase:
    gateway: StripeGateway

    def execute(self, profile: ProfileEntity) -> str:
        if not tier_policy.is_premium(profile.subscription_tier) or not profile.stripe_customer_id:
            raise BillingError("No active premium subscription found")
        return self.gateway.create_portal_session(
            profile.stripe_customer_id, return_url=f"{app_url()}/account/billing"
        )
