"""Subscription model"""
import enum
import uuid
from sqlalchemy import Column, Integer, BigInteger, String, DateTime, JSON, Uuid, ForeignKey, Enum
from sqlalchemy.orm import relationship
from datetime import datetime, timezone
from autopay.models.base import Base


class SubscriptionStatus(str, enum.Enum):
    """Mirror of Razorpay's subscription states"""
    CREATED = "created"
    AUTHENTICATED = "authenticated"
    ACTIVE = "active"
    PAUSED = "paused"
    CANCELLED = "cancelled"
    COMPLETED = "completed"
    EXPIRED = "expired"


class Subscription(Base):
    """UPI Autopay subscription"""
    __tablename__ = "subscriptions"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    razorpay_config_id = Column(Uuid, ForeignKey("razorpay_configs.id"), nullable=True, index=True)
    user_id = Column(Uuid, nullable=False)
    app_name = Column(String(100), nullable=False)
    phone = Column(String(15), nullable=False)
    email = Column(String(255), nullable=False)
    razorpay_subscription_id = Column(String(100), unique=True, nullable=True)
    razorpay_customer_id = Column(String(100), nullable=True)
    razorpay_plan_id = Column(String(100), nullable=True)
    status = Column(
        Enum(
            SubscriptionStatus,
            name="subscription_status",
            native_enum=False,
            length=50,
            values_callable=lambda statuses: [s.value for s in statuses],
        ),
        default=SubscriptionStatus.CREATED,
        nullable=False
    )
    amount = Column(BigInteger, nullable=False)  # paise
    currency = Column(String(10), default="INR", nullable=False)
    max_amount = Column(BigInteger, nullable=True)  # paise, per debit
    frequency = Column(String(50), nullable=True)  # daily, weekly, monthly, yearly
    total_count = Column(Integer, nullable=True)
    start_at = Column(DateTime(timezone=True), nullable=True)
    end_at = Column(DateTime(timezone=True), nullable=True)
    next_charge_at = Column(DateTime(timezone=True), nullable=True)
    short_url = Column(String(500), nullable=True)
    metadata_ = Column("metadata", JSON, default=dict, nullable=False)
    created_at = Column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc), nullable=False)
    updated_at = Column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc), onupdate=lambda: datetime.now(timezone.utc), nullable=False)
    deleted_at = Column(DateTime(timezone=True), nullable=True)

    # Relationship
    config = relationship("GatewayConfig")
