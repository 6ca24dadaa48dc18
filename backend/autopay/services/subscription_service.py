"""Subscription service - checkout, payment verification and lifecycle operations"""
import logging
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional
from uuid import UUID

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from autopay.core.config import settings
from autopay.core.errors import (
    ConfigInactive, ConfigNotFound, GatewayError, OrphanedGatewaySubscription,
    RequestValidationFailed, SignatureMismatch, SubscriptionNotFound
)
from autopay.core.logging import security_logger
from autopay.core.metrics import checkouts_counter, payment_verifications_counter
from autopay.core.security import payment_signature_message, verify_signature
from autopay.models.subscription import Subscription, SubscriptionStatus
from autopay.schemas.subscriptions import CheckoutRequest, SubscriptionResponse, VerifyPaymentRequest
from autopay.services import config_service, subscription_store
from autopay.services.config_service import GatewayCredentials
from autopay.services.gateway_client import GatewayClientCache
from autopay.services.pagination import normalize_page, page_envelope, paginate

logger = logging.getLogger(__name__)

# Plan billing period to days between charges
PERIOD_DAYS = {
    "daily": 1,
    "weekly": 7,
    "monthly": 30,
    "yearly": 365,
}
DEFAULT_PERIOD_DAYS = 30

# Razorpay reports some states we fold into our own
GATEWAY_STATUS_ALIASES = {
    "pending": SubscriptionStatus.CREATED,
    "halted": SubscriptionStatus.EXPIRED,
}

# Forward ordering used to keep reported states from moving a record backwards
STATUS_RANK = {
    SubscriptionStatus.CREATED: 0,
    SubscriptionStatus.AUTHENTICATED: 1,
    SubscriptionStatus.ACTIVE: 2,
    SubscriptionStatus.PAUSED: 2,
    SubscriptionStatus.CANCELLED: 3,
    SubscriptionStatus.COMPLETED: 3,
    SubscriptionStatus.EXPIRED: 3,
}


def status_from_gateway(value: Optional[str]) -> Optional[SubscriptionStatus]:
    """Map a Razorpay status string to ours. Unknown or missing values map to None."""
    if not value:
        return None
    value = value.strip().lower()
    if value in GATEWAY_STATUS_ALIASES:
        return GATEWAY_STATUS_ALIASES[value]
    try:
        return SubscriptionStatus(value)
    except ValueError:
        logger.warning(f"Unknown Razorpay subscription status '{value}'")
        return None


def from_unix(ts: Optional[int]) -> Optional[datetime]:
    if not ts:
        return None
    return datetime.fromtimestamp(ts, tz=timezone.utc)


def mark_authenticated(subscription: Subscription) -> bool:
    """Set the authenticated marker once. Returns False if it was already set."""
    metadata = dict(subscription.metadata_ or {})
    if metadata.get("authenticated") is True:
        return False
    metadata["authenticated"] = True
    if "authenticated_at" not in metadata:
        metadata["authenticated_at"] = datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")
    # Reassign so SQLAlchemy sees the JSON column change
    subscription.metadata_ = metadata
    return True


def subscription_to_response(subscription: Subscription) -> SubscriptionResponse:
    return SubscriptionResponse(
        id=subscription.id,
        user_id=subscription.user_id,
        app_name=subscription.app_name,
        phone=subscription.phone,
        email=subscription.email,
        razorpay_subscription_id=subscription.razorpay_subscription_id,
        razorpay_customer_id=subscription.razorpay_customer_id,
        razorpay_plan_id=subscription.razorpay_plan_id,
        status=subscription.status,
        amount=subscription.amount,
        currency=subscription.currency,
        max_amount=subscription.max_amount,
        frequency=subscription.frequency,
        total_count=subscription.total_count,
        start_at=subscription.start_at,
        end_at=subscription.end_at,
        next_charge_at=subscription.next_charge_at,
        short_url=subscription.short_url,
        metadata=dict(subscription.metadata_ or {}),
        created_at=subscription.created_at,
        updated_at=subscription.updated_at,
    )


def _resolve_checkout_config(request: CheckoutRequest, db: Session) -> GatewayCredentials:
    if request.config_id:
        credentials = config_service.get_config(request.config_id, db)
    else:
        credentials = config_service.find_by_app_env(
            request.app_name, settings.gateway_environment, db, active_only=False
        )
        if credentials is None:
            raise ConfigNotFound(
                f"razorpay config not found for app '{request.app_name}' "
                f"in '{settings.gateway_environment}'"
            )
    if not credentials.is_active:
        raise ConfigInactive()
    return credentials


def _plan_amount(plan: Dict[str, Any]) -> int:
    return int((plan.get("item") or {}).get("amount") or 0)


def _plan_currency(plan: Dict[str, Any]) -> str:
    return (plan.get("item") or {}).get("currency") or settings.DEFAULT_CURRENCY


def create_checkout(request: CheckoutRequest, cache: GatewayClientCache, db: Session) -> Dict[str, Any]:
    """Create a Razorpay subscription and persist the local record

    Returns:
        Dict with subscription_id, gateway_subscription_id, short_url and status

    Raises:
        ConfigNotFound / ConfigInactive: No usable config for the request
        RequestValidationFailed: plan_id is blank
        GatewayError: Razorpay rejected or failed a call
        OrphanedGatewaySubscription: Gateway subscription exists but could not be saved locally
    """
    credentials = _resolve_checkout_config(request, db)

    plan_id = (request.plan_id or "").strip()
    if not plan_id:
        raise RequestValidationFailed("plan_id is required", field="plan_id")

    client = cache.resolve(credentials)

    # Upfront charge in paise
    if request.initial_charge_amount is not None:
        initial_charge = 0 if request.initial_charge_amount <= 0 else request.initial_charge_amount * 100
    else:
        initial_charge = settings.DEFAULT_INITIAL_CHARGE_AMOUNT * 100

    if request.first_charge_delay_days is not None and request.first_charge_delay_days >= 0:
        delay_days = request.first_charge_delay_days
    else:
        delay_days = settings.DEFAULT_FIRST_CHARGE_DELAY_DAYS

    plan = None
    if request.initial_charge_amount == 0 and request.first_charge_delay_days == 0:
        # Charge the plan amount now and start recurring after one billing period
        try:
            plan = client.fetch_plan(plan_id)
        except GatewayError as e:
            checkouts_counter.labels(status="gateway_error").inc()
            raise GatewayError(f"failed to fetch razorpay plan '{plan_id}': {e.message}") from e
        initial_charge = _plan_amount(plan)
        delay_days = PERIOD_DAYS.get(plan.get("period"), DEFAULT_PERIOD_DAYS)
        logger.info(
            f"Immediate charge requested for plan {plan_id}: "
            f"charging {initial_charge} paise now, recurring after {delay_days} days"
        )

    now = datetime.now(timezone.utc)
    if delay_days > 0:
        start_at = int((now + timedelta(days=delay_days)).timestamp())
    else:
        start_at = int((now + timedelta(hours=1)).timestamp())
    if request.start_at:
        start_at = request.start_at

    quantity = request.quantity if request.quantity and request.quantity > 0 else 1
    total_count = settings.DEFAULT_TOTAL_COUNT
    if request.total_count and request.total_count > 0:
        total_count = request.total_count

    payload: Dict[str, Any] = {
        "plan_id": plan_id,
        "quantity": quantity,
        "customer_notify": False,
        "total_count": total_count,
        "expire_by": int((now + timedelta(days=settings.CHECKOUT_LINK_EXPIRY_DAYS)).timestamp()),
        "start_at": start_at,
    }
    if initial_charge > 0:
        payload["addons"] = [{
            "item": {
                "name": "Initial Charge",
                "amount": initial_charge,
                "currency": settings.DEFAULT_CURRENCY,
            }
        }]
    if request.notes:
        payload["notes"] = request.notes

    try:
        created = client.create_subscription(payload)
    except GatewayError as e:
        checkouts_counter.labels(status="gateway_error").inc()
        raise GatewayError(
            f"failed to create razorpay subscription with plan_id '{plan_id}': {e.message}"
        ) from e

    gateway_subscription_id = created.get("id")
    if not gateway_subscription_id:
        checkouts_counter.labels(status="gateway_error").inc()
        raise GatewayError(f"razorpay returned no subscription id for plan_id '{plan_id}'")

    plan_ref = created.get("plan_id") or plan_id
    if plan is None or plan.get("id", plan_ref) != plan_ref:
        try:
            plan = client.fetch_plan(plan_ref)
        except GatewayError as e:
            logger.error(
                f"ORPHANED_GATEWAY_SUBSCRIPTION gateway_subscription_id={gateway_subscription_id} "
                f"app={request.app_name} reason=plan fetch failed: {e.message}"
            )
            checkouts_counter.labels(status="orphaned").inc()
            raise GatewayError(f"failed to fetch razorpay plan '{plan_ref}': {e.message}") from e

    subscription = Subscription(
        razorpay_config_id=credentials.id,
        user_id=request.user_id,
        app_name=request.app_name,
        phone=request.phone,
        email=request.email,
        razorpay_subscription_id=gateway_subscription_id,
        razorpay_customer_id=created.get("customer_id"),
        razorpay_plan_id=plan_ref,
        status=status_from_gateway(created.get("status")) or SubscriptionStatus.CREATED,
        amount=_plan_amount(plan),
        currency=_plan_currency(plan),
        max_amount=request.max_amount,
        frequency=plan.get("period"),
        total_count=total_count,
        start_at=from_unix(start_at),
        short_url=created.get("short_url"),
        metadata_=dict(request.notes or {}),
    )

    try:
        subscription = subscription_store.insert(subscription, db)
    except SQLAlchemyError as e:
        db.rollback()
        logger.error(
            f"ORPHANED_GATEWAY_SUBSCRIPTION gateway_subscription_id={gateway_subscription_id} "
            f"app={request.app_name} reason={type(e).__name__}: {e}"
        )
        checkouts_counter.labels(status="orphaned").inc()
        raise OrphanedGatewaySubscription(
            f"razorpay subscription {gateway_subscription_id} was created but could not be saved",
            gateway_subscription_id=gateway_subscription_id,
        ) from e

    checkouts_counter.labels(status="success").inc()
    logger.info(
        f"Created subscription {subscription.id} ({gateway_subscription_id}) "
        f"for {request.app_name} plan {plan_ref}"
    )
    return {
        "subscription_id": subscription.id,
        "gateway_subscription_id": gateway_subscription_id,
        "short_url": subscription.short_url or "",
        "status": subscription.status,
    }


def verify_payment(request: VerifyPaymentRequest, cache: GatewayClientCache, db: Session) -> Subscription:
    """Verify the checkout signature and mark the subscription authenticated

    Raises:
        SubscriptionNotFound: Unknown razorpay_subscription_id
        SignatureMismatch: Signature does not match the tenant's key secret
        GatewayError: Re-fetching the subscription from Razorpay failed
    """
    subscription = subscription_store.get_by_gateway_id(request.razorpay_subscription_id, db)
    if not subscription:
        payment_verifications_counter.labels(status="not_found").inc()
        raise SubscriptionNotFound()
    if not subscription.razorpay_config_id:
        raise ConfigNotFound()

    credentials = config_service.get_config(subscription.razorpay_config_id, db)

    message = payment_signature_message(request.razorpay_payment_id, request.razorpay_subscription_id)
    if not verify_signature(message, request.razorpay_signature, credentials.key_secret):
        payment_verifications_counter.labels(status="signature_mismatch").inc()
        security_logger.warning(
            f"Payment signature mismatch for subscription {request.razorpay_subscription_id} "
            f"(app={credentials.app_name}, env={credentials.environment})"
        )
        raise SignatureMismatch("invalid payment signature")

    client = cache.resolve(credentials)
    gateway_subscription = client.fetch_subscription(request.razorpay_subscription_id)

    if gateway_subscription.get("customer_id"):
        subscription.razorpay_customer_id = gateway_subscription["customer_id"]
    if subscription.status == SubscriptionStatus.CREATED:
        subscription.status = SubscriptionStatus.AUTHENTICATED
    mark_authenticated(subscription)

    subscription = subscription_store.update(subscription, db)
    payment_verifications_counter.labels(status="success").inc()
    logger.info(f"Payment verified for subscription {subscription.id} ({request.razorpay_subscription_id})")
    return subscription


def get_subscription(subscription_id: UUID, db: Session) -> Subscription:
    subscription = subscription_store.get_by_id(subscription_id, db)
    if not subscription:
        raise SubscriptionNotFound()
    return subscription


def get_subscription_by_gateway_id(razorpay_subscription_id: str, db: Session) -> Subscription:
    subscription = subscription_store.get_by_gateway_id(razorpay_subscription_id, db)
    if not subscription:
        raise SubscriptionNotFound()
    return subscription


def get_latest_subscription(phone: str, app_name: str, db: Session) -> Subscription:
    """Most recently created subscription for a phone number within an app"""
    if not phone or not app_name:
        raise RequestValidationFailed("phone and app_name are required")
    subscription = subscription_store.get_latest_by_phone_and_app(phone, app_name, db)
    if not subscription:
        raise SubscriptionNotFound()
    return subscription


def check_authentication_status(phone: str, app_name: str, db: Session) -> Dict[str, Any]:
    if not phone or not app_name:
        raise RequestValidationFailed("phone and app_name are required")
    return {
        "has_authenticated": subscription_store.has_authenticated(phone, app_name, db),
        "phone": phone,
    }


def list_subscriptions(page: int, page_size: int, db: Session, app_name: Optional[str] = None) -> Dict[str, Any]:
    page, page_size = normalize_page(page, page_size)
    rows, total = paginate(subscription_store.list_query(db, app_name), page, page_size)
    return page_envelope([subscription_to_response(row) for row in rows], page, page_size, total)


def cancel_subscription(subscription_id: UUID, cache: GatewayClientCache, db: Session) -> Subscription:
    """Cancel immediately at Razorpay, then mark the local record cancelled"""
    subscription = get_subscription(subscription_id, db)
    if not subscription.razorpay_subscription_id:
        raise RequestValidationFailed("subscription has no razorpay subscription id")
    if not subscription.razorpay_config_id:
        raise ConfigNotFound()

    credentials = config_service.get_config(subscription.razorpay_config_id, db)
    client = cache.resolve(credentials)
    client.cancel_subscription(subscription.razorpay_subscription_id, {"cancel_at_cycle_end": 0})

    subscription.status = SubscriptionStatus.CANCELLED
    subscription = subscription_store.update(subscription, db)
    logger.info(f"Cancelled subscription {subscription.id} ({subscription.razorpay_subscription_id})")
    return subscription
