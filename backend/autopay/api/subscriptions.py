"""Subscriptions API routes"""
import logging
from typing import Optional
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query, Request
from fastapi.concurrency import run_in_threadpool
from sqlalchemy.orm import Session

from autopay.core.errors import AutopayError
from autopay.db.session import get_db
from autopay.schemas.subscriptions import (
    AuthenticationStatusResponse, CheckoutRequest, CheckoutResponse, PaginatedSubscriptionsResponse,
    SubscriptionResponse, VerifyPaymentRequest, VerifyPaymentResponse
)
from autopay.services.gateway_client import GatewayClientCache, get_gateway_cache
from autopay.services.subscription_service import (
    cancel_subscription, check_authentication_status, create_checkout, get_latest_subscription,
    get_subscription, get_subscription_by_gateway_id, list_subscriptions, subscription_to_response,
    verify_payment
)
from autopay.services.webhook_service import process_razorpay_webhook

router = APIRouter(prefix="/subscriptions", tags=["subscriptions"])
logger = logging.getLogger(__name__)


@router.post("/checkout", response_model=CheckoutResponse)
def checkout(
    request: CheckoutRequest,
    cache: GatewayClientCache = Depends(get_gateway_cache),
    db: Session = Depends(get_db)
):
    """Create a Razorpay subscription and return its hosted checkout link"""
    try:
        return create_checkout(request, cache, db)
    except AutopayError as e:
        raise HTTPException(e.status_code, e.message)


@router.post("/verify", response_model=VerifyPaymentResponse)
def verify(
    request: VerifyPaymentRequest,
    cache: GatewayClientCache = Depends(get_gateway_cache),
    db: Session = Depends(get_db)
):
    """Verify the signature returned by Razorpay checkout"""
    try:
        subscription = verify_payment(request, cache, db)
    except AutopayError as e:
        raise HTTPException(e.status_code, e.message)
    return {
        "subscription": subscription_to_response(subscription),
        "message": "payment verified successfully"
    }


@router.post("/webhook")
async def razorpay_webhook(request: Request, db: Session = Depends(get_db)):
    """Handle Razorpay subscription webhook events

    The body is read as raw bytes; the signature covers them exactly as sent.
    """
    payload = await request.body()
    signature = request.headers.get("X-Razorpay-Signature")
    event_id = request.headers.get("X-Razorpay-Event-Id")

    if not signature:
        raise HTTPException(400, "Missing X-Razorpay-Signature header")

    try:
        return await run_in_threadpool(process_razorpay_webhook, payload, signature, db, event_id)
    except AutopayError as e:
        raise HTTPException(e.status_code, e.message)


@router.get("", response_model=PaginatedSubscriptionsResponse)
def list_all(
    app_name: Optional[str] = None,
    page: int = 1,
    page_size: int = 10,
    db: Session = Depends(get_db)
):
    """List subscriptions, newest first"""
    return list_subscriptions(page, page_size, db, app_name=app_name)


@router.get("/latest", response_model=SubscriptionResponse)
def latest(
    phone: str = Query(...),
    app_name: str = Query(...),
    db: Session = Depends(get_db)
):
    """Most recent subscription for a phone number within an app"""
    try:
        return subscription_to_response(get_latest_subscription(phone, app_name, db))
    except AutopayError as e:
        raise HTTPException(e.status_code, e.message)


@router.get("/auth-status", response_model=AuthenticationStatusResponse)
def auth_status(
    phone: str = Query(...),
    app_name: str = Query(...),
    db: Session = Depends(get_db)
):
    """Whether a phone number ever completed mandate authentication in an app"""
    try:
        return check_authentication_status(phone, app_name, db)
    except AutopayError as e:
        raise HTTPException(e.status_code, e.message)


@router.get("/razorpay/{razorpay_subscription_id}", response_model=SubscriptionResponse)
def get_by_razorpay_id(razorpay_subscription_id: str, db: Session = Depends(get_db)):
    try:
        return subscription_to_response(get_subscription_by_gateway_id(razorpay_subscription_id, db))
    except AutopayError as e:
        raise HTTPException(e.status_code, e.message)


@router.get("/{subscription_id}", response_model=SubscriptionResponse)
def get_by_id(subscription_id: UUID, db: Session = Depends(get_db)):
    try:
        return subscription_to_response(get_subscription(subscription_id, db))
    except AutopayError as e:
        raise HTTPException(e.status_code, e.message)


@router.post("/{subscription_id}/cancel")
def cancel(
    subscription_id: UUID,
    cache: GatewayClientCache = Depends(get_gateway_cache),
    db: Session = Depends(get_db)
):
    """Cancel a subscription immediately"""
    try:
        cancel_subscription(subscription_id, cache, db)
    except AutopayError as e:
        raise HTTPException(e.status_code, e.message)
    return {"message": "subscription cancelled successfully"}
