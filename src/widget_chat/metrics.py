"""Prometheus metrics on an isolated registry."""

from prometheus_client import CollectorRegistry, Counter, Gauge

CUSTOM_REGISTRY = CollectorRegistry()

REQUESTS = Counter(
    "requests_total", "Total HTTP requests", ["path"], registry=CUSTOM_REGISTRY
)
ERRORS = Counter(
    "errors_total", "Total error responses by code", ["error_code"], registry=CUSTOM_REGISTRY
)
TOKENS_ISSUED = Counter(
    "channel_tokens_issued_total", "Channel tokens issued", ["kind"], registry=CUSTOM_REGISTRY
)
MESSAGES = Counter(
    "chat_messages_total", "Chat messages stored", ["role"], registry=CUSTOM_REGISTRY
)
BROADCASTS = Counter(
    "broadcasts_total", "Broadcast deliveries", ["outcome"], registry=CUSTOM_REGISTRY
)
SUBSCRIPTIONS = Counter(
    "channel_subscriptions_total", "Subscription attempts", ["outcome"], registry=CUSTOM_REGISTRY
)
OPEN_CONNECTIONS = Gauge(
    "socket_connections_open", "Open transport connections", registry=CUSTOM_REGISTRY
)
