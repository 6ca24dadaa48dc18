"""GatewayConfig model"""
import uuid
from sqlalchemy import Column, String, DateTime, Boolean, JSON, Text, Uuid, UniqueConstraint, Index
from datetime import datetime, timezone
from autopay.models.base import Base


class GatewayConfig(Base):
    """Razorpay credentials for one (app, environment) tenant.

    key_id, key_secret and webhook_secret hold ciphertext. Use
    config_service to read them; it returns decrypted credentials.
    """
    __tablename__ = "razorpay_configs"
    __table_args__ = (
        UniqueConstraint("app_name", "environment", name="uq_razorpay_configs_app_env"),
        Index("idx_razorpay_configs_is_active", "is_active"),
    )

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    app_name = Column(String(100), nullable=False)
    environment = Column(String(20), nullable=False, default="test")  # 'test' or 'live'
    key_id = Column("razorpay_key_id", Text, nullable=False)
    key_secret = Column("razorpay_key_secret", Text, nullable=False)
    webhook_secret = Column("razorpay_webhook_secret", Text, nullable=False)
    is_active = Column(Boolean, default=True, nullable=False)
    metadata_ = Column("metadata", JSON, default=dict, nullable=False)
    created_at = Column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc), nullable=False)
    updated_at = Column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc), onupdate=lambda: datetime.now(timezone.utc), nullable=False)
    deleted_at = Column(DateTime(timezone=True), nullable=True, index=True)
