"""Prometheus metrics for the application"""
from prometheus_client import Counter, REGISTRY

# Webhook metrics
try:
    webhook_events_counter = Counter(
        'entitlements_webhook_events_total',
        'Total number of subscription webhook events received',
        ['event_type', 'outcome']
    )
except ValueError:
    webhook_events_counter = REGISTRY._names_to_collectors.get('entitlements_webhook_events_total')

# Tier mapping metrics
try:
    tier_fallback_counter = Counter(
        'entitlements_tier_fallback_total',
        'Products mapped to a tier without an explicit catalog entry',
        ['reason']
    )
except ValueError:
    tier_fallback_counter = REGISTRY._names_to_collectors.get('entitlements_tier_fallback_total')
