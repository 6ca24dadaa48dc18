"""Domain exceptions raised by services and translated to HTTP errors by the routers"""
from typing import Optional


class AutopayError(Exception):
    """Base class for all service-level errors"""
    status_code = 500

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class RequestValidationFailed(AutopayError):
    """Client supplied a missing or malformed field"""
    status_code = 400

    def __init__(self, message: str, field: Optional[str] = None):
        super().__init__(message)
        self.field = field


class NotFoundError(AutopayError):
    status_code = 404


class SubscriptionNotFound(NotFoundError):
    def __init__(self, message: str = "subscription not found"):
        super().__init__(message)


class ConfigNotFound(NotFoundError):
    def __init__(self, message: str = "razorpay config not found"):
        super().__init__(message)


class ConfigInactive(AutopayError):
    status_code = 400

    def __init__(self, message: str = "razorpay config is not active"):
        super().__init__(message)


class ConflictError(AutopayError):
    status_code = 409


class SignatureMismatch(AutopayError):
    """HMAC signature did not match. Never retried."""
    status_code = 401


class GatewayError(AutopayError):
    """Razorpay API call failed. Safe to retry from the caller's side."""
    status_code = 502


class OrphanedGatewaySubscription(AutopayError):
    """Gateway subscription was created but the local record could not be saved"""
    status_code = 500

    def __init__(self, message: str, gateway_subscription_id: str):
        super().__init__(message)
        self.gateway_subscription_id = gateway_subscription_id


class EncryptionKeyError(AutopayError):
    """Encryption key is missing or has an unsupported length"""


class CorruptCiphertext(AutopayError):
    """Stored ciphertext is malformed, truncated, or fails authentication"""
