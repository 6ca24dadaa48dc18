"""HMAC signature helpers for Razorpay payment and webhook verification"""
import hashlib
import hmac
from typing import Union


def compute_signature(message: Union[str, bytes], secret: str) -> str:
    """Hex-encoded HMAC-SHA256 of message keyed by secret"""
    if isinstance(message, str):
        message = message.encode()
    return hmac.new(secret.encode(), message, hashlib.sha256).hexdigest()


def verify_signature(message: Union[str, bytes], signature: str, secret: str) -> bool:
    """Constant-time check that signature is the HMAC-SHA256 of message under secret"""
    if not signature or not secret:
        return False
    expected = compute_signature(message, secret)
    return hmac.compare_digest(expected.encode(), signature.encode())


def payment_signature_message(payment_id: str, subscription_id: str) -> str:
    """Message Razorpay signs after a subscription checkout completes"""
    return f"{payment_id}|{subscription_id}"
