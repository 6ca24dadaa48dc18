"""WebhookEvent model"""
from sqlalchemy import Column, Integer, String, Boolean, Text, DateTime
from datetime import datetime, timezone
from autopay.models.base import Base


class WebhookEvent(Base):
    """Razorpay webhook delivery log for replay detection"""
    __tablename__ = "webhook_events"

    id = Column(Integer, primary_key=True, index=True)
    event_id = Column(String(255), unique=True, nullable=True, index=True)  # X-Razorpay-Event-Id
    event_type = Column(String(100), nullable=False, index=True)
    razorpay_subscription_id = Column(String(100), nullable=False, index=True)
    processed = Column(Boolean, default=False, nullable=False)
    error_message = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc), nullable=False)
    processed_at = Column(DateTime(timezone=True), nullable=True)
