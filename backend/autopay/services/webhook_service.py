"""Webhook service - Razorpay subscription event verification and state updates"""
import logging
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Optional

from pydantic import ValidationError
from sqlalchemy.orm import Session

from autopay.core.errors import ConfigNotFound, RequestValidationFailed, SignatureMismatch, SubscriptionNotFound
from autopay.core.logging import security_logger
from autopay.core.metrics import webhook_events_counter
from autopay.core.security import verify_signature
from autopay.models.subscription import Subscription, SubscriptionStatus
from autopay.models.webhook_event import WebhookEvent
from autopay.schemas.webhooks import SubscriptionEntity, SubscriptionWebhook, WebhookEnvelope
from autopay.services import config_service, subscription_store
from autopay.services.subscription_service import STATUS_RANK, from_unix, mark_authenticated, status_from_gateway

logger = logging.getLogger(__name__)


# ============================================================================
# EVENT LOG
# ============================================================================

def log_webhook_event(
    event_id: Optional[str],
    event_type: str,
    razorpay_subscription_id: str,
    db: Session
) -> WebhookEvent:
    """Return the log row for event_id, creating it if this is the first delivery"""
    webhook_event = None
    if event_id:
        webhook_event = db.query(WebhookEvent).filter(WebhookEvent.event_id == event_id).first()
    if not webhook_event:
        webhook_event = WebhookEvent(
            event_id=event_id,
            event_type=event_type,
            razorpay_subscription_id=razorpay_subscription_id,
            processed=False
        )
        db.add(webhook_event)
        db.commit()
        db.refresh(webhook_event)
    return webhook_event


def mark_webhook_event_processed(webhook_event: WebhookEvent, db: Session, error_message: str = None):
    """Record the outcome. Failed deliveries stay unprocessed so a retry runs again."""
    webhook_event.processed = error_message is None
    webhook_event.processed_at = datetime.now(timezone.utc) if error_message is None else None
    webhook_event.error_message = error_message
    db.commit()


# ============================================================================
# EVENT HANDLERS
# ============================================================================

def handle_subscription_authenticated(subscription: Subscription, entity: SubscriptionEntity, db: Session):
    if subscription.status == SubscriptionStatus.CANCELLED:
        logger.info(f"Ignoring authenticated event for cancelled subscription {subscription.id}")
        return

    if entity.customer_id:
        subscription.razorpay_customer_id = entity.customer_id
    if entity.start_at:
        subscription.start_at = from_unix(entity.start_at)
    if entity.charge_at:
        subscription.next_charge_at = from_unix(entity.charge_at)
    mark_authenticated(subscription)

    reported = status_from_gateway(entity.status)
    # A late delivery must not move the record behind a state it already reached
    if reported and STATUS_RANK[reported] >= STATUS_RANK[subscription.status]:
        subscription.status = reported

    subscription_store.update(subscription, db)


def handle_subscription_activated(subscription: Subscription, entity: SubscriptionEntity, db: Session):
    if entity.start_at:
        subscription.start_at = from_unix(entity.start_at)
    subscription_store.update(subscription, db)


def handle_subscription_charged(subscription: Subscription, entity: SubscriptionEntity, db: Session):
    if entity.charge_at:
        subscription.next_charge_at = from_unix(entity.charge_at)
    if subscription.status in (SubscriptionStatus.CREATED, SubscriptionStatus.AUTHENTICATED):
        subscription.status = SubscriptionStatus.ACTIVE
    subscription_store.update(subscription, db)


def handle_subscription_pending(subscription: Subscription, entity: SubscriptionEntity, db: Session):
    subscription_store.update_status(subscription.id, SubscriptionStatus.CREATED, db)


def handle_subscription_halted(subscription: Subscription, entity: SubscriptionEntity, db: Session):
    subscription.status = SubscriptionStatus.EXPIRED
    subscription_store.update(subscription, db)


def handle_subscription_cancelled(subscription: Subscription, entity: SubscriptionEntity, db: Session):
    subscription.status = SubscriptionStatus.CANCELLED
    if entity.end_at:
        subscription.end_at = from_unix(entity.end_at)
    subscription_store.update(subscription, db)


def handle_subscription_completed(subscription: Subscription, entity: SubscriptionEntity, db: Session):
    subscription.status = SubscriptionStatus.COMPLETED
    if entity.ended_at:
        subscription.end_at = from_unix(entity.ended_at)
    subscription_store.update(subscription, db)


def handle_subscription_paused(subscription: Subscription, entity: SubscriptionEntity, db: Session):
    subscription.status = SubscriptionStatus.PAUSED
    subscription_store.update(subscription, db)


def handle_subscription_resumed(subscription: Subscription, entity: SubscriptionEntity, db: Session):
    subscription.status = SubscriptionStatus.ACTIVE
    subscription_store.update(subscription, db)


EVENT_HANDLERS: Dict[str, Callable[[Subscription, SubscriptionEntity, Session], None]] = {
    "subscription.authenticated": handle_subscription_authenticated,
    "subscription.activated": handle_subscription_activated,
    "subscription.charged": handle_subscription_charged,
    "subscription.pending": handle_subscription_pending,
    "subscription.halted": handle_subscription_halted,
    "subscription.cancelled": handle_subscription_cancelled,
    "subscription.completed": handle_subscription_completed,
    "subscription.paused": handle_subscription_paused,
    "subscription.resumed": handle_subscription_resumed,
}


# ============================================================================
# ENTRY POINT
# ============================================================================

def process_razorpay_webhook(
    payload: bytes,
    signature: Optional[str],
    db: Session,
    event_id: Optional[str] = None
) -> Dict[str, Any]:
    """Verify and apply a Razorpay subscription webhook

    The signature is checked with the webhook secret of the tenant that owns
    the subscription, so the body is read in two passes: first only the
    subscription id, then the full event once the signature holds.

    Args:
        payload: Raw request body, exactly as received
        signature: X-Razorpay-Signature header
        db: Database session
        event_id: X-Razorpay-Event-Id header, used to skip redeliveries

    Returns:
        Dict with status information

    Raises:
        RequestValidationFailed: Missing signature or malformed body
        SubscriptionNotFound: Subscription id is not known locally
        SignatureMismatch: Signature does not match the tenant's webhook secret
    """
    if not signature:
        raise RequestValidationFailed("missing X-Razorpay-Signature header")

    try:
        envelope = WebhookEnvelope.model_validate_json(payload)
    except ValidationError:
        webhook_events_counter.labels(event="unknown", status="invalid_payload").inc()
        raise RequestValidationFailed("subscription ID not found in webhook payload")

    razorpay_subscription_id = envelope.subscription_id
    subscription = subscription_store.get_by_gateway_id(razorpay_subscription_id, db)
    if not subscription:
        webhook_events_counter.labels(event="unknown", status="not_found").inc()
        raise SubscriptionNotFound(f"subscription {razorpay_subscription_id} not found")
    if not subscription.razorpay_config_id:
        raise ConfigNotFound()

    credentials = config_service.get_config(subscription.razorpay_config_id, db)
    if not verify_signature(payload, signature, credentials.webhook_secret):
        webhook_events_counter.labels(event="unknown", status="signature_mismatch").inc()
        security_logger.warning(
            f"Webhook signature mismatch for subscription {razorpay_subscription_id} "
            f"(app={credentials.app_name}, env={credentials.environment})"
        )
        raise SignatureMismatch("invalid webhook signature")

    try:
        event = SubscriptionWebhook.model_validate_json(payload)
    except ValidationError as e:
        webhook_events_counter.labels(event="unknown", status="invalid_payload").inc()
        raise RequestValidationFailed(f"invalid webhook payload: {e.error_count()} validation errors")

    if event.payment:
        logger.info(
            f"Webhook {event.event} for {razorpay_subscription_id} carries payment "
            f"{event.payment.id} status={event.payment.status}"
        )

    webhook_event = log_webhook_event(event_id, event.event, razorpay_subscription_id, db)
    if webhook_event.processed:
        logger.info(f"Webhook event {event_id} already processed")
        webhook_events_counter.labels(event=event.event, status="duplicate").inc()
        return {"status": "already_processed"}

    handler = EVENT_HANDLERS.get(event.event)
    if handler is None:
        logger.info(f"Ignoring unhandled webhook event {event.event} for {razorpay_subscription_id}")
        mark_webhook_event_processed(webhook_event, db)
        webhook_events_counter.labels(event=event.event, status="ignored").inc()
        return {"status": "ignored"}

    try:
        handler(subscription, event.subscription, db)
    except Exception as e:
        db.rollback()
        logger.error(f"Error processing webhook {event.event} for {razorpay_subscription_id}: {e}", exc_info=True)
        mark_webhook_event_processed(webhook_event, db, error_message=str(e))
        webhook_events_counter.labels(event=event.event, status="error").inc()
        raise

    mark_webhook_event_processed(webhook_event, db)
    webhook_events_counter.labels(event=event.event, status="success").inc()
    logger.info(f"Processed webhook {event.event} for subscription {razorpay_subscription_id}")
    return {"status": "success"}
