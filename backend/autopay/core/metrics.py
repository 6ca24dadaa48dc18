"""Prometheus metrics for the application"""
from prometheus_client import Counter, REGISTRY


def _counter(name: str, documentation: str, labelnames=()):
    # Re-imports during tests must reuse the already registered collector
    try:
        return Counter(name, documentation, labelnames)
    except ValueError:
        return REGISTRY._names_to_collectors.get(name)


checkouts_counter = _counter(
    'autopay_checkouts_total',
    'Total number of checkout attempts',
    ['status']
)

payment_verifications_counter = _counter(
    'autopay_payment_verifications_total',
    'Total number of payment signature verifications',
    ['status']
)

webhook_events_counter = _counter(
    'autopay_webhook_events_total',
    'Total number of Razorpay webhook deliveries',
    ['event', 'status']
)

gateway_clients_created_counter = _counter(
    'autopay_gateway_clients_created_total',
    'Total number of Razorpay clients constructed'
)
