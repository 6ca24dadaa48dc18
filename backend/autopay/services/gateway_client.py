"""Razorpay API client wrapper and the per-tenant client cache"""
import logging
import threading
from contextlib import contextmanager
from typing import Any, Callable, Dict, Tuple

import razorpay
import requests
from razorpay.errors import BadRequestError, ServerError
from razorpay.errors import GatewayError as RazorpayGatewayError
from fastapi import Request

from autopay.core.config import settings
from autopay.core.errors import GatewayError
from autopay.core.metrics import gateway_clients_created_counter
from autopay.services.config_service import GatewayCredentials

logger = logging.getLogger(__name__)

TenantKey = Tuple[str, str]

_SDK_ERRORS = (BadRequestError, ServerError, RazorpayGatewayError, requests.RequestException)


class RazorpayGateway:
    """Thin wrapper over razorpay.Client

    Every call carries the configured timeout and SDK failures surface as
    GatewayError so callers deal with a single exception type.
    """

    def __init__(self, key_id: str, key_secret: str, timeout: float = None):
        self._client = razorpay.Client(auth=(key_id, key_secret))
        self._timeout = timeout if timeout is not None else settings.RAZORPAY_API_TIMEOUT

    def _call(self, operation: str, fn, *args) -> Dict[str, Any]:
        try:
            return fn(*args, timeout=self._timeout)
        except _SDK_ERRORS as e:
            logger.warning(f"Razorpay {operation} failed: {type(e).__name__}: {e}")
            raise GatewayError(f"razorpay {operation} failed: {e}") from e

    def create_subscription(self, payload: Dict[str, Any]) -> Dict[str, Any]:
        return self._call("create subscription", self._client.subscription.create, payload)

    def fetch_subscription(self, subscription_id: str) -> Dict[str, Any]:
        return self._call("fetch subscription", self._client.subscription.fetch, subscription_id)

    def cancel_subscription(self, subscription_id: str, options: Dict[str, Any]) -> Dict[str, Any]:
        return self._call("cancel subscription", self._client.subscription.cancel, subscription_id, options)

    def fetch_plan(self, plan_id: str) -> Dict[str, Any]:
        return self._call("fetch plan", self._client.plan.fetch, plan_id)


def default_client_factory(credentials: GatewayCredentials) -> RazorpayGateway:
    return RazorpayGateway(credentials.key_id, credentials.key_secret)


class ReadWriteLock:
    """Many concurrent readers or one writer"""

    def __init__(self):
        self._cond = threading.Condition(threading.Lock())
        self._readers = 0
        self._writer = False

    @contextmanager
    def read_lock(self):
        with self._cond:
            while self._writer:
                self._cond.wait()
            self._readers += 1
        try:
            yield
        finally:
            with self._cond:
                self._readers -= 1
                if self._readers == 0:
                    self._cond.notify_all()

    @contextmanager
    def write_lock(self):
        with self._cond:
            while self._writer or self._readers:
                self._cond.wait()
            self._writer = True
        try:
            yield
        finally:
            with self._cond:
                self._writer = False
                self._cond.notify_all()


class GatewayClientCache:
    """Process-wide map of (app_name, environment) to a constructed gateway client

    Lookups take the shared lock; a miss upgrades to the exclusive lock and
    re-checks before building, so at most one client exists per tenant.
    Entries are never evicted: rotated credentials take effect on restart.
    """

    def __init__(self, factory: Callable[[GatewayCredentials], Any] = default_client_factory):
        self._factory = factory
        self._clients: Dict[TenantKey, Any] = {}
        self._lock = ReadWriteLock()

    def resolve(self, credentials: GatewayCredentials):
        """Return the cached client for the credentials' tenant, building it on first use"""
        key = credentials.tenant_key
        with self._lock.read_lock():
            client = self._clients.get(key)
        if client is not None:
            return client

        with self._lock.write_lock():
            client = self._clients.get(key)
            if client is None:
                client = self._factory(credentials)
                self._clients[key] = client
                gateway_clients_created_counter.inc()
                logger.info(f"Created Razorpay client for {key[0]}/{key[1]}")
        return client

    def __len__(self) -> int:
        with self._lock.read_lock():
            return len(self._clients)

    def __contains__(self, key: TenantKey) -> bool:
        with self._lock.read_lock():
            return key in self._clients


def get_gateway_cache(request: Request) -> GatewayClientCache:
    """Dependency returning the application's client cache"""
    return request.app.state.gateway_cache
