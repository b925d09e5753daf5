"""Static per-service routes for path-addressed delivery.

``POST /webhook/{service}`` forwards to exactly one of these destinations,
independent of the endpoint registry.
"""

from __future__ import annotations

from webhook_relay.models import StaticRoute

_STAGING_BASE = "https://staging.webhook.api.mavapay.co/webhook"

STATIC_ROUTES: dict[str, StaticRoute] = {
    key: StaticRoute(key=key, url=f"{_STAGING_BASE}/{key}")
    for key in ("fincra", "splice", "useorange", "galoy")
}


def resolve_static_route(service: str) -> StaticRoute | None:
    """Return the route for *service*, or ``None`` for an unknown key."""
    return STATIC_ROUTES.get(service)
