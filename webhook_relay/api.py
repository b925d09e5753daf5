"""HTTP surface — FastAPI app factory, ingress and management routes.

Ingress handlers:
1. Capture the raw body (must be JSON) and the inbound headers
2. Take a snapshot of the targets (active registry entries, or one static route)
3. Hand a self-contained DeliveryJob to the dispatcher
4. Return 200 with an acknowledgement immediately

The acknowledgement never reflects delivery outcomes.
"""

from __future__ import annotations

import asyncio
import json
import logging
from contextlib import asynccontextmanager
from pathlib import Path

import httpx
from fastapi import APIRouter, Depends, FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.staticfiles import StaticFiles

from webhook_relay import __version__
from webhook_relay.config import Settings, get_settings
from webhook_relay.dispatcher import DeliveryJob, Dispatcher, DispatchStatus
from webhook_relay.errors import EndpointNotFoundError, EndpointValidationError
from webhook_relay.models import (
    CreateEndpointRequest,
    Endpoint,
    EndpointStatusUpdate,
    InboundEvent,
)
from webhook_relay.registry import EndpointRegistry
from webhook_relay.routes import resolve_static_route
from webhook_relay.storage import EndpointStore

logger = logging.getLogger(__name__)

_ACCEPTED = {
    "status": DispatchStatus.ACCEPTED.value,
    "message": "Webhook received and processing started",
}
_NO_ACTIVE = {
    "status": DispatchStatus.NO_ACTIVE_TARGETS.value,
    "message": "No active endpoints configured",
}

webhook_router = APIRouter(tags=["webhooks"])
endpoints_router = APIRouter(prefix="/endpoints", tags=["endpoints"])


class InvalidPayloadError(Exception):
    """Inbound webhook body is not valid JSON."""


def get_registry(request: Request) -> EndpointRegistry:
    return request.app.state.registry


def get_dispatcher(request: Request) -> Dispatcher:
    return request.app.state.dispatcher


async def _capture_event(request: Request) -> InboundEvent:
    body = await request.body()
    try:
        json.loads(body)
    except (json.JSONDecodeError, UnicodeDecodeError) as e:
        raise InvalidPayloadError(str(e)) from e

    return InboundEvent(body=body, headers=capture_headers(request.headers.raw))


def capture_headers(raw: list[tuple[bytes, bytes]]) -> dict[str, str]:
    """Decode inbound headers for forwarding.

    Values that are not visible ASCII (tab and space allowed) are skipped:
    they cannot be re-sent as-is. Repeated names collapse to the last value.
    """
    headers: dict[str, str] = {}
    for name, value in raw:
        if any(b != 0x09 and not 0x20 <= b < 0x7F for b in value):
            logger.debug("Skipping non-ASCII header %s", name.decode("latin-1"))
            continue
        headers[name.decode("latin-1")] = value.decode("ascii")
    return headers


# ── Ingress ───────────────────────────────────────────────────────────────


@webhook_router.post("/webhook")
async def receive_webhook(
    request: Request,
    registry: EndpointRegistry = Depends(get_registry),
    dispatcher: Dispatcher = Depends(get_dispatcher),
):
    """Fan the event out to every active endpoint (fire-and-forget)."""
    event = await _capture_event(request)
    # The registry lock is a threading lock; wait for it off the event loop.
    targets = await asyncio.to_thread(registry.active_endpoints)
    job = DeliveryJob.build(event, targets)

    if dispatcher.submit(job) is DispatchStatus.NO_ACTIVE_TARGETS:
        logger.info("Webhook received with no active endpoints")
        return _NO_ACTIVE
    return _ACCEPTED


@webhook_router.post("/webhook/{service}")
async def receive_service_webhook(
    service: str,
    request: Request,
    dispatcher: Dispatcher = Depends(get_dispatcher),
):
    """Forward the event to the one static destination named by *service*."""
    route = resolve_static_route(service)
    if route is None:
        return JSONResponse({"error": f"Unknown service: {service}"}, status_code=404)

    event = await _capture_event(request)
    dispatcher.submit(DeliveryJob.build(event, [route.as_endpoint()]))
    return _ACCEPTED


# ── Endpoint management ───────────────────────────────────────────────────
# Sync handlers: FastAPI runs them in its threadpool, which keeps the lock
# waits and file writes off the event loop.


@endpoints_router.post("", response_model=list[Endpoint])
def register_endpoint(
    body: CreateEndpointRequest,
    registry: EndpointRegistry = Depends(get_registry),
):
    """Register a new endpoint; returns the full updated list."""
    return registry.register(body.url, body.name, body.active)


@endpoints_router.get("", response_model=list[Endpoint])
def list_endpoints(registry: EndpointRegistry = Depends(get_registry)):
    return registry.list_endpoints()


@endpoints_router.put("/{endpoint_id}/status", response_model=Endpoint)
def update_endpoint_status(
    endpoint_id: str,
    body: EndpointStatusUpdate,
    registry: EndpointRegistry = Depends(get_registry),
):
    """Activate or deactivate an endpoint."""
    return registry.set_active(endpoint_id, body.active)


@endpoints_router.delete("/{endpoint_id}", response_model=list[Endpoint])
def delete_endpoint(
    endpoint_id: str,
    registry: EndpointRegistry = Depends(get_registry),
):
    """Delete an endpoint; returns the remaining list."""
    return registry.delete(endpoint_id)


@webhook_router.get("/health")
async def health(
    registry: EndpointRegistry = Depends(get_registry),
    dispatcher: Dispatcher = Depends(get_dispatcher),
):
    endpoints = await asyncio.to_thread(registry.list_endpoints)
    return {
        "status": "ok",
        "version": __version__,
        "endpoints": len(endpoints),
        "active": sum(1 for e in endpoints if e.active),
        "in_flight": dispatcher.in_flight,
    }


# ── Error mapping ─────────────────────────────────────────────────────────


def _install_error_handlers(app: FastAPI) -> None:
    @app.exception_handler(EndpointValidationError)
    async def _validation_error(request: Request, exc: EndpointValidationError):
        return JSONResponse(exc.to_dict(), status_code=400)

    @app.exception_handler(EndpointNotFoundError)
    async def _not_found(request: Request, exc: EndpointNotFoundError):
        return JSONResponse({"error": str(exc)}, status_code=404)

    @app.exception_handler(InvalidPayloadError)
    async def _invalid_payload(request: Request, exc: InvalidPayloadError):
        return JSONResponse(
            {"error": "Invalid JSON payload", "details": str(exc)}, status_code=400
        )

    @app.exception_handler(RequestValidationError)
    async def _bad_request_body(request: Request, exc: RequestValidationError):
        details = "; ".join(
            f"{'.'.join(str(p) for p in err.get('loc', ()))}: {err.get('msg', '')}"
            for err in exc.errors()
        )
        return JSONResponse(
            {"error": "Invalid request body", "details": details}, status_code=400
        )


def create_app(
    settings: Settings | None = None,
    *,
    transport: httpx.AsyncBaseTransport | None = None,
) -> FastAPI:
    """Build the relay application.

    Args:
        settings: Explicit settings; defaults to the environment.
        transport: Optional httpx transport for outbound deliveries.
    """
    settings = settings or get_settings()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        app.state.registry = EndpointRegistry.load(EndpointStore(settings.endpoints_file))
        app.state.dispatcher = Dispatcher(
            timeout=settings.delivery_timeout,
            verify_tls=settings.verify_tls,
            transport=transport,
        )
        logger.info(
            "Webhook relay ready with %d endpoints (%d active)",
            len(app.state.registry),
            len(app.state.registry.active_endpoints()),
        )
        try:
            yield
        finally:
            await app.state.dispatcher.aclose()

    app = FastAPI(title="Webhook Relay", version=__version__, lifespan=lifespan)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    _install_error_handlers(app)
    app.include_router(webhook_router)
    app.include_router(endpoints_router)

    static_dir = Path(settings.static_dir)
    if static_dir.is_dir():
        app.mount("/", StaticFiles(directory=str(static_dir), html=True), name="static")

    return app
