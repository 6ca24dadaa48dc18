"""Pydantic models for Razorpay subscription webhooks

Parsing happens in two steps. WebhookEnvelope reads only the subscription id,
which is needed to find the tenant whose webhook secret verifies the body.
SubscriptionWebhook is the full decode, used only after verification.
"""
from typing import Optional

from pydantic import BaseModel, ConfigDict


class _EntityRef(BaseModel):
    model_config = ConfigDict(extra="ignore")

    id: str


class _EntityRefWrapper(BaseModel):
    model_config = ConfigDict(extra="ignore")

    entity: _EntityRef


class _EnvelopePayload(BaseModel):
    model_config = ConfigDict(extra="ignore")

    subscription: _EntityRefWrapper


class WebhookEnvelope(BaseModel):
    model_config = ConfigDict(extra="ignore")

    payload: _EnvelopePayload

    @property
    def subscription_id(self) -> str:
        return self.payload.subscription.entity.id


class SubscriptionEntity(BaseModel):
    model_config = ConfigDict(extra="ignore")

    id: str
    status: Optional[str] = None
    plan_id: Optional[str] = None
    customer_id: Optional[str] = None
    start_at: Optional[int] = None
    charge_at: Optional[int] = None
    end_at: Optional[int] = None
    ended_at: Optional[int] = None


class PaymentEntity(BaseModel):
    model_config = ConfigDict(extra="ignore")

    id: str
    amount: Optional[int] = None
    currency: Optional[str] = None
    status: Optional[str] = None


class _SubscriptionWrapper(BaseModel):
    entity: SubscriptionEntity


class _PaymentWrapper(BaseModel):
    entity: PaymentEntity


class _WebhookPayload(BaseModel):
    model_config = ConfigDict(extra="ignore")

    subscription: _SubscriptionWrapper
    payment: Optional[_PaymentWrapper] = None


class SubscriptionWebhook(BaseModel):
    model_config = ConfigDict(extra="ignore")

    event: str
    payload: _WebhookPayload
    created_at: Optional[int] = None

    @property
    def subscription(self) -> SubscriptionEntity:
        return self.payload.subscription.entity

    @property
    def payment(self) -> Optional[PaymentEntity]:
        wrapper = self.payload.payment
        return wrapper.entity if wrapper else None
