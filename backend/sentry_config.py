"""
Sentry Error Monitoring Configuration
Error tracking for the Auctionhouse enrichment backend
"""
import os
import logging
import sentry_sdk
from sentry_sdk.integrations.fastapi import FastApiIntegration
from sentry_sdk.integrations.starlette import StarletteIntegration
from sentry_sdk.integrations.logging import LoggingIntegration

logger = logging.getLogger("Sentry")

SENSITIVE_KEYS = ['api_key', 'x-api-key', 'apikey', 'authorization', 'secret', 'password']


def filter_sensitive_data(event, hint):
    """Remove upstream credentials from Sentry events."""
    request = event.get('request') or {}

    for section in ('data', 'headers'):
        data = request.get(section)
        if isinstance(data, dict):
            for key in list(data):
                if key.lower() in SENSITIVE_KEYS:
                    data[key] = '[FILTERED]'

    # Upstream URLs may carry ?apikey=...
    query = request.get('query_string')
    if isinstance(query, str) and 'apikey' in query.lower():
        request['query_string'] = '[FILTERED]'

    if 'exception' in event and 'values' in event['exception']:
        for exc in event['exception']['values']:
            value = exc.get('value')
            if isinstance(value, str) and any(key in value.lower() for key in SENSITIVE_KEYS):
                exc['value'] = '[FILTERED - sensitive data]'

    return event


def init_sentry():
    """Initialize Sentry with appropriate configuration."""
    dsn = os.getenv("SENTRY_DSN")

    if not dsn:
        logger.info("[Sentry] No SENTRY_DSN found - error tracking disabled")
        return False

    environment = os.getenv("AUCTIONHOUSE_ENV", "development")
    release = os.getenv("COMMIT_SHA", "local")

    sentry_sdk.init(
        dsn=dsn,
        environment=environment,
        traces_sample_rate=0.2,
        integrations=[
            FastApiIntegration(transaction_style="endpoint"),
            StarletteIntegration(),
            LoggingIntegration(
                level=logging.INFO,
                event_level=logging.ERROR
            ),
        ],
        before_send=filter_sensitive_data,
        send_default_pii=False,
        release=f"auctionhouse-backend@{release}",
        # Upstream timeouts are expected and already degrade to empty fields
        ignore_errors=[
            ConnectionRefusedError,
            TimeoutError,
        ],
    )

    logger.info(f"[Sentry] Initialized for {environment} (release: {release[:8]})")
    return True


def capture_upstream_breadcrumb(service: str, action: str, details: dict = None):
    """Add breadcrumb for a degraded upstream call (subgraph, RPC, Neynar...)."""
    sentry_sdk.add_breadcrumb(
        category="upstream",
        message=f"{service}: {action}",
        level="warning",
        data={"service": service, **(details or {})}
    )


def set_listing_context(listing_id: str, seller: str = None):
    """Tag the current scope with the listing being resolved."""
    sentry_sdk.set_tag("listing_id", listing_id)
    if seller:
        sentry_sdk.set_context("listing", {
            "listing_id": listing_id,
            "seller": seller[:10] + "...",
        })
