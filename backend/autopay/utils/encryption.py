"""Encryption utilities for Razorpay credentials stored in the database"""
import base64
import binascii
import logging
import os
from functools import lru_cache

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM

from autopay.core.config import settings
from autopay.core.errors import CorruptCiphertext, EncryptionKeyError

logger = logging.getLogger(__name__)

NONCE_SIZE = 12
VALID_KEY_SIZES = (16, 24, 32)


class SecretCodec:
    """AES-GCM codec producing base64(nonce || ciphertext || tag)"""

    def __init__(self, key: bytes):
        if len(key) not in VALID_KEY_SIZES:
            raise EncryptionKeyError("RAZORPAY_ENCRYPTION_KEY must be 16, 24, or 32 bytes long")
        self._cipher = AESGCM(key)

    def encrypt(self, plaintext: str) -> str:
        """Encrypt a string"""
        if not plaintext:
            return ""
        nonce = os.urandom(NONCE_SIZE)
        sealed = self._cipher.encrypt(nonce, plaintext.encode(), None)
        return base64.b64encode(nonce + sealed).decode()

    def decrypt(self, ciphertext: str) -> str:
        """Decrypt a string

        Raises:
            CorruptCiphertext: If the input is not valid base64, is too short,
                or fails authentication (wrong key or tampered data)
        """
        if not ciphertext:
            return ""
        try:
            data = base64.b64decode(ciphertext.encode(), validate=True)
        except (binascii.Error, ValueError) as e:
            raise CorruptCiphertext(f"ciphertext is not valid base64: {e}")
        if len(data) <= NONCE_SIZE:
            raise CorruptCiphertext("ciphertext too short")
        nonce, sealed = data[:NONCE_SIZE], data[NONCE_SIZE:]
        try:
            return self._cipher.decrypt(nonce, sealed, None).decode()
        except InvalidTag:
            logger.error("Decryption failed: authentication tag mismatch")
            raise CorruptCiphertext("ciphertext failed authentication")


@lru_cache(maxsize=1)
def get_codec() -> SecretCodec:
    """Process-wide codec built from RAZORPAY_ENCRYPTION_KEY on first use"""
    key = settings.RAZORPAY_ENCRYPTION_KEY
    if not key:
        raise EncryptionKeyError("RAZORPAY_ENCRYPTION_KEY is not set")
    return SecretCodec(key.encode())


def encrypt(plaintext: str) -> str:
    if not plaintext:
        return ""
    return get_codec().encrypt(plaintext)


def decrypt(ciphertext: str) -> str:
    if not ciphertext:
        return ""
    return get_codec().decrypt(ciphertext)
