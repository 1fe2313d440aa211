from __future__ import annotations

from fastapi import APIRouter, Depends, Header, Request
from starlette.concurrency import run_in_threadpool

from src.application.dtos.billing_dto import (
    CheckoutRequest,
    CheckoutResponse,
    PortalResponse,
    SubscriptionResponse,
    VerifySessionRequest,
    VerifySessionResponse,
    WebhookResponse,
)
from src.application.use_cases.create_checkout_session import CreateCheckoutSessionUseCase
from src.application.use_cases.create_portal_session import CreatePortalSessionUseCase
from src.application.use_cases.handle_stripe_webhook import HandleStripeWebhookUseCase
from src.application.use_cases.verify_checkout_session import VerifyCheckoutSessionUseCase
from src.domain.services import tier_policy
from src.infrastructure.api.dependencies import (
    RequestContext,
    get_profile_repo,
    get_request_context,
    get_stripe_gateway,
)
from src.infrastructure.billing.stripe_gateway import StripeGateway
from src.infrastructure.database.repositories.profile_repository import ProfileRepository

router = APIRouter(
    prefix="/billing",
    tags=["Billing"],
    responses={
        400: {"description": "Bad Request - Billing precondition not met"},
        401: {"description": "Unauthorized - Invalid or missing authentication token"},
    },
)


@router.get(
    "/subscription",
    response_model=SubscriptionResponse,
    summary="Get Subscription",
    description="Subscription state stored on the caller's profile, as last reconciled by the webhook.",
)
def get_subscription(ctx: RequestContext = Depends(get_request_context)):
    prof = ctx.profile
    tier = tier_policy.normalize_tier(prof.subscription_tier)
    return SubscriptionResponse(
        subscription_tier=tier,
        subscription_status=prof.subscription_status,
        billing_cycle=prof.billing_cycle,
        subscription_expires_at=prof.subscription_expires_at,
        is_premium=tier_policy.is_premium(tier),
        has_billing_account=bool(prof.stripe_customer_id),
        features=tier_policy.features_for(tier),
    )


@router.post(
    "/checkout",
    response_model=CheckoutResponse,
    summary="Create Checkout Session",
    description="""
    Start a Stripe subscription checkout for the authenticated user.

    The user is always the bearer of the token; a Stripe customer is created
    on first checkout. Redirect the browser to the returned `url`.
    """,
)
def create_checkout(
    body: CheckoutRequest,
    ctx: RequestContext = Depends(get_request_context),
    profiles: ProfileRepository = Depends(get_profile_repo),
    gateway: StripeGateway = Depends(get_stripe_gateway),
):
    uc = CreateCheckoutSessionUseCase(profiles=profiles, gateway=gateway)
    return uc.execute(ctx.profile, plan_type=body.plan_type)


@router.post(
    "/portal",
    response_model=PortalResponse,
    summary="Create Billing Portal Session",
    description="Open the Stripe billing portal. Requires a premium tier and an existing Stripe customer.",
)
def create_portal(
    ctx: RequestContext = Depends(get_request_context),
    gateway: StripeGateway = Depends(get_stripe_gateway),
):
    url = CreatePortalSessionUseCase(gateway=gateway).execute(ctx.profile)
    return PortalResponse(url=url)


@router.post(
    "/verify-session",
    response_model=VerifySessionResponse,
    summary="Verify Checkout Session",
    description="""
    Confirm a completed checkout after the success redirect and apply the
    purchased tier immediately, without waiting for the webhook.
    """,
    responses={403: {"description": "Forbidden - Session belongs to another user"}},
)
def verify_session(
    body: VerifySessionRequest,
    ctx: RequestContext = Depends(get_request_context),
    profiles: ProfileRepository = Depends(get_profile_repo),
    gateway: StripeGateway = Depends(get_stripe_gateway),
):
    uc = VerifyCheckoutSessionUseCase(profiles=profiles, gateway=gateway)
    return uc.execute(body.session_id, caller_id=ctx.profile.id)


@router.post(
    "/webhook",
    response_model=WebhookResponse,
    summary="Stripe Webhook",
    description="""
    Receiver for Stripe events. The raw body is verified against the
    `Stripe-Signature` header; no bearer token is used.

    Handled events: `checkout.session.completed`,
    `customer.subscription.created/updated/deleted`,
    `invoice.payment_succeeded/failed`. Other events are acknowledged.
    """,
)
async def stripe_webhook(
    request: Request,
    stripe_signature: str | None = Header(None, alias="Stripe-Signature"),
    profiles: ProfileRepository = Depends(get_profile_repo),
    gateway: StripeGateway = Depends(get_stripe_gateway),
):
    payload = await request.body()
    uc = HandleStripeWebhookUseCase(profiles=profiles, gateway=gateway)
    return await run_in_threadpool(uc.execute, payload, stripe_signature)
