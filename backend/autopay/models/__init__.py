"""SQLAlchemy models package - imports all models so they register with Base.metadata"""
from autopay.models.base import Base
from autopay.models.gateway_config import GatewayConfig
from autopay.models.subscription import Subscription, SubscriptionStatus
from autopay.models.webhook_event import WebhookEvent

# Export all for convenience
__all__ = [
    "Base", "GatewayConfig", "Subscription", "SubscriptionStatus", "WebhookEvent"
]
