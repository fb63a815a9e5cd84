"""
Redis Stream Configuration

Stream names and limits.
"""

# Webhook deliveries that failed (non-2xx, network error, timeout).
# Kept for manual replay; never retried automatically.
FAILED_DELIVERIES_STREAM = "bridge:webhooks:failed"

FAILED_DELIVERIES_MAX_LEN = 10000
