import hashlib
import hmac
import json
import time
from datetime import UTC, datetime
from unittest.mock import MagicMock

import pytest

from src.application.use_cases.create_checkout_session import CreateCheckoutSessionUseCase
from src.application.use_cases.create_portal_session import CreatePortalSessionUseCase
from src.application.use_cases.handle_stripe_webhook import HandleStripeWebhookUseCase
from src.application.use_cases.verify_checkout_session import VerifyCheckoutSessionUseCase
from src.domain.errors import AccessDeniedError, BillingError
from src.infrastructure.billing.stripe_gateway import StripeGateway
from src.infrastructure.database.repositories.profile_repository import ProfileRepository

WEBHOOK_SECRET = "whsec_test_secret"


def sign(payload: bytes, secret: str = WEBHOOK_SECRET, timestamp: int | None = None) -> str:
    timestamp = timestamp or int(time.time())
    mac = hmac.new(secret.encode(), f"{timestamp}.{payload.decode()}".encode(), hashlib.sha256)
    return f"t={timestamp},v1={mac.hexdigest()}"


@pytest.fixture()
def profiles() -> ProfileRepository:
    repo = ProfileRepository(None)
    repo.ensure("u1", "u1@example.com")
    return repo


@pytest.fixture()
def gateway() -> MagicMock:
    return MagicMock(spec=StripeGateway)


def test_checkout_creates_customer_once(profiles, gateway, monkeypatch):
    monkeypatch.setenv("STRIPE_PREMIUM_YEARLY_PRICE_ID", "price_year")
    monkeypatch.setenv("APP_URL", "https://mealappeal.app/")
    gateway.create_customer.return_value = "cus_1"
    gateway.create_checkout_session.return_value = {"id": "cs_1", "url": "https://checkout"}
    uc = CreateCheckoutSessionUseCase(profiles, gateway)

    out = uc.execute(profiles.get("u1"), "yearly")

    assert out == {"session_id": "cs_1", "url": "https://checkout"}
    assert profiles.get("u1").stripe_customer_id == "cus_1"
    kwargs = gateway.create_checkout_session.call_args.kwargs
    assert kwargs["price_id"] == "price_year"
    assert kwargs["success_url"] == "https://mealappeal.app/upgrade/success?session_id={CHECKOUT_SESSION_ID}"
    assert kwargs["cancel_url"] == "https://mealappeal.app/meals"

    uc.execute(profiles.get("u1"), "yearly")
    gateway.create_customer.assert_called_once()


def test_checkout_rejects_unknown_plan(profiles, gateway, monkeypatch):
    monkeypatch.delenv("STRIPE_PREMIUM_MONTHLY_PRICE_ID", raising=False)
    uc = CreateCheckoutSessionUseCase(profiles, gateway)
    with pytest.raises(BillingError):
        uc.execute(profiles.get("u1"), "weekly")
    with pytest.raises(BillingError):
        uc.execute(profiles.get("u1"), "monthly")


def test_portal_requires_premium_customer(profiles, gateway):
    uc = CreatePortalSessionUseCase(gateway)
    with pytest.raises(BillingError):
        uc.execute(profiles.get("u1"))

    profile = profiles.update("u1", subscription_tier="premium_monthly", stripe_customer_id="cus_1")
    gateway.create_portal_session.return_value = "https://portal"
    assert uc.execute(profile) == "https://portal"
    assert gateway.create_portal_session.call_args.kwargs["return_url"].endswith("/account/billing")


def paid_session(user_id="u1", plan="yearly") -> dict:
    return {
        "id": "cs_1",
        "payment_status": "paid",
        "metadata": {"userId": user_id, "planType": plan},
        "customer": {"id": "cus_9"},
        "customer_details": {"email": "u1@example.com"},
        "subscription": {"id": "sub_9", "status": "active"},
    }


def test_verify_session_upgrades_caller(profiles, gateway):
    gateway.retrieve_checkout_session.return_value = paid_session()
    out = VerifyCheckoutSessionUseCase(profiles, gateway).execute("cs_1", "u1")

    assert out["session"]["subscription_id"] == "sub_9"
    profile = profiles.get("u1")
    assert profile.subscription_tier == "premium_yearly"
    assert profile.billing_cycle == "yearly"
    assert profile.stripe_customer_id == "cus_9"


def test_verify_session_rejects_unpaid_and_foreign_sessions(profiles, gateway):
    uc = VerifyCheckoutSessionUseCase(profiles, gateway)
    gateway.retrieve_checkout_session.return_value = {**paid_session(), "payment_status": "unpaid"}
    with pytest.raises(BillingError):
        uc.execute("cs_1", "u1")

    gateway.retrieve_checkout_session.return_value = paid_session(user_id="u2")
    with pytest.raises(AccessDeniedError):
        uc.execute("cs_1", "u1")
    assert profiles.get("u1").subscription_tier == "free"


def event(event_type: str, obj: dict) -> dict:
    return {"id": "evt_1", "type": event_type, "data": {"object": obj}}


def test_checkout_completed_event(profiles, gateway):
    uc = HandleStripeWebhookUseCase(profiles, gateway)
    out = uc.handle_event(
        event(
            "checkout.session.completed",
            {"metadata": {"userId": "u1", "planType": "monthly"}, "customer": "cus_1", "subscription": "sub_1"},
        )
    )
    assert out == {"received": True, "handled": True}
    profile = profiles.get("u1")
    assert profile.subscription_tier == "premium_monthly"
    assert profile.subscription_status == "active"
    assert profile.stripe_subscription_id == "sub_1"


def test_subscription_update_finds_user_by_customer(profiles, gateway):
    profiles.update("u1", stripe_customer_id="cus_1")
    uc = HandleStripeWebhookUseCase(profiles, gateway)

    uc.handle_event(
        event(
            "customer.subscription.updated",
            {
                "id": "sub_1",
                "customer": "cus_1",
                "status": "active",
                "metadata": {"planType": "yearly"},
                "current_period_end": 1_735_689_600,
            },
        )
    )
    profile = profiles.get("u1")
    assert profile.subscription_tier == "premium_yearly"
    assert profile.subscription_expires_at == datetime(2025, 1, 1, tzinfo=UTC)

    uc.handle_event(event("customer.subscription.updated", {"id": "sub_1", "customer": "cus_1", "status": "unpaid"}))
    assert profiles.get("u1").subscription_tier == "free"


def test_subscription_deleted_downgrades(profiles, gateway):
    profiles.update("u1", subscription_tier="premium_yearly", billing_cycle="yearly")
    uc = HandleStripeWebhookUseCase(profiles, gateway)

    uc.handle_event(event("customer.subscription.deleted", {"id": "sub_1", "metadata": {"userId": "u1"}}))

    profile = profiles.get("u1")
    assert profile.subscription_tier == "free"
    assert profile.subscription_status == "canceled"
    assert profile.billing_cycle == "free"


def test_invoice_events(profiles, gateway):
    profiles.update("u1", stripe_customer_id="cus_1")
    gateway.retrieve_subscription.return_value = {
        "id": "sub_1",
        "status": "active",
        "metadata": {"userId": "u1", "planType": "monthly"},
    }
    uc = HandleStripeWebhookUseCase(profiles, gateway)

    uc.handle_event(event("invoice.payment_succeeded", {"subscription": "sub_1", "customer": "cus_1"}))
    gateway.retrieve_subscription.assert_called_once_with("sub_1")
    assert profiles.get("u1").subscription_tier == "premium_monthly"

    uc.handle_event(event("invoice.payment_failed", {"customer": "cus_1"}))
    assert profiles.get("u1").subscription_status == "past_due"


def test_unknown_events_and_users_are_acknowledged(profiles, gateway):
    uc = HandleStripeWebhookUseCase(profiles, gateway)
    assert uc.handle_event(event("charge.refunded", {})) == {"received": True, "handled": False}
    assert uc.handle_event(event("invoice.payment_failed", {"customer": "cus_unknown"}))["handled"] is False


@pytest.mark.parametrize(
    "event_type, obj",
    [
        ("checkout.session.completed", {"metadata": {"userId": "deleted-user", "planType": "monthly"}}),
        ("customer.subscription.updated", {"id": "sub_9", "status": "active", "metadata": {"userId": "deleted-user"}}),
        ("customer.subscription.deleted", {"id": "sub_9", "metadata": {"userId": "deleted-user"}}),
        ("invoice.payment_failed", {"metadata": {"userId": "deleted-user"}}),
    ],
)
def test_events_for_missing_profiles_are_acknowledged(profiles, gateway, event_type, obj):
    uc = HandleStripeWebhookUseCase(profiles, gateway)
    assert uc.handle_event(event(event_type, obj)) == {"received": True, "handled": False}
    assert profiles.get("deleted-user") is None


def test_construct_event_verifies_signature(monkeypatch):
    monkeypatch.setenv("STRIPE_WEBHOOK_SECRET", WEBHOOK_SECRET)
    gateway = StripeGateway()
    payload = json.dumps(event("charge.refunded", {})).encode()

    assert gateway.construct_event(payload, sign(payload))["type"] == "charge.refunded"
    with pytest.raises(BillingError):
        gateway.construct_event(payload, None)
    with pytest.raises(BillingError):
        gateway.construct_event(payload, sign(payload, secret="whsec_other"))


def test_gateway_without_key_fails_loudly(monkeypatch):
    monkeypatch.delenv("STRIPE_SECRET_KEY", raising=False)
    with pytest.raises(RuntimeError):
        StripeGateway().create_portal_session("cus_1", "https://x")
