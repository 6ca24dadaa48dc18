"""Pydantic schemas for subscriptions"""
from datetime import datetime
from typing import Any, Dict, List, Optional
from uuid import UUID

from pydantic import BaseModel, EmailStr, Field

from autopay.models.subscription import SubscriptionStatus


class CheckoutRequest(BaseModel):
    user_id: UUID
    app_name: str = Field(..., min_length=1, max_length=100)
    phone: str = Field(..., min_length=10, max_length=15)
    email: EmailStr
    plan_id: str
    config_id: Optional[UUID] = None  # overrides app_name based config lookup
    total_count: Optional[int] = None
    start_at: Optional[int] = None  # Unix timestamp
    quantity: Optional[int] = None
    max_amount: Optional[int] = Field(None, ge=0)  # paise
    notes: Optional[Dict[str, Any]] = None
    initial_charge_amount: Optional[int] = None  # whole rupees
    first_charge_delay_days: Optional[int] = None


class CheckoutResponse(BaseModel):
    subscription_id: UUID
    gateway_subscription_id: str
    short_url: str
    status: SubscriptionStatus


class VerifyPaymentRequest(BaseModel):
    razorpay_subscription_id: str = Field(..., min_length=1)
    razorpay_payment_id: str = Field(..., min_length=1)
    razorpay_signature: str = Field(..., min_length=1)


class SubscriptionResponse(BaseModel):
    id: UUID
    user_id: UUID
    app_name: str
    phone: str
    email: str
    razorpay_subscription_id: Optional[str] = None
    razorpay_customer_id: Optional[str] = None
    razorpay_plan_id: Optional[str] = None
    status: SubscriptionStatus
    amount: int
    currency: str
    max_amount: Optional[int] = None
    frequency: Optional[str] = None
    total_count: Optional[int] = None
    start_at: Optional[datetime] = None
    end_at: Optional[datetime] = None
    next_charge_at: Optional[datetime] = None
    short_url: Optional[str] = None
    metadata: Dict[str, Any]
    created_at: datetime
    updated_at: datetime


class VerifyPaymentResponse(BaseModel):
    subscription: SubscriptionResponse
    message: str


class AuthenticationStatusResponse(BaseModel):
    has_authenticated: bool
    phone: str


class PaginatedSubscriptionsResponse(BaseModel):
    data: List[SubscriptionResponse]
    page: int
    page_size: int
    total: int
    total_pages: int
    next_page: Optional[int] = None
    prev_page: Optional[int] = None
