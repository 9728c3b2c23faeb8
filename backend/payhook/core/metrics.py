"""Prometheus metrics for the application"""
from prometheus_client import Counter, REGISTRY


def _counter(name: str, documentation: str, labelnames=()):
    # Module may be imported twice (tests, reloads); reuse the registered collector
    try:
        return Counter(name, documentation, labelnames)
    except ValueError:
        return REGISTRY._names_to_collectors.get(name)


# Webhook intake, labelled by outcome: processed, deduped, ignored, rejected, failed
webhook_events_counter = _counter(
    'payhook_webhook_events_total',
    'Total number of inbound provider events by outcome',
    ['provider', 'outcome']
)

entitlements_granted_counter = _counter(
    'payhook_entitlements_granted_total',
    'Total number of entitlement rows upserted',
    ['kind']
)

receipt_enqueue_failures_counter = _counter(
    'payhook_receipt_enqueue_failures_total',
    'Total number of receipt jobs that could not be enqueued'
)

receipts_sent_counter = _counter(
    'payhook_receipts_sent_total',
    'Total number of receipt emails handled by the worker',
    ['status']
)
