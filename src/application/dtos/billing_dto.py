from __future__ import annotations

from datetime import datetime
from typing import Literal

from pydantic import BaseModel, Field


class CheckoutRequest(BaseModel):
    """The user is taken from the bearer token; only the plan is chosen here."""
    plan_type: Literal["monthly", "yearly"] = Field("monthly", description="Billing period", example="monthly")


class CheckoutResponse(BaseModel):
    session_id: str = Field(..., description="Stripe checkout session id", example="cs_test_a1b2c3")
    url: str = Field(..., description="Hosted checkout page to redirect to")


class PortalResponse(BaseModel):
    url: str = Field(..., description="Stripe billing portal URL")


class VerifySessionRequest(BaseModel):
    session_id: str = Field(..., min_length=1, description="Checkout session id from the success redirect")


class VerifiedSession(BaseModel):
    id: str | None = None
    payment_status: str | None = Field(None, example="paid")
    customer_email: str | None = None
    subscription_id: str | None = None


class VerifySessionResponse(BaseModel):
    success: bool = True
    session: VerifiedSession


class SubscriptionResponse(BaseModel):
    """Subscription state as stored on the profile."""
    subscription_tier: str = Field(..., example="premium_monthly")
    subscription_status: str | None = Field(None, example="active")
    billing_cycle: str = Field(..., example="monthly")
    subscription_expires_at: datetime | None = None
    is_premium: bool
    has_billing_account: bool = Field(..., description="True once a Stripe customer exists")
    features: list[str] = Field(default_factory=list)


class WebhookResponse(BaseModel):
    received: bool = True
    handled: bool = Field(..., description="False for event types that are acknowledged but ignored")
