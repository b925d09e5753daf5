"""Fan-out dispatcher — forwards one inbound event to many receivers.

Each ingress request builds a self-contained :class:`DeliveryJob` (the
captured event plus a snapshot of its targets) and hands it to
:meth:`Dispatcher.submit`, which schedules the job as a background task and
returns at once. The HTTP response to the original sender never waits for
a delivery.

Per target, a delivery:
1. Derives a ``Host`` header from the *target's* authority
2. Copies the captured inbound headers, minus the inbound ``Host`` and the
   framing headers the client recomputes for the new hop, and labels the
   body ``application/json`` unless it already carries a JSON media type
3. POSTs the raw payload to the target URL
4. Classifies the outcome: 2xx is success, anything else is a failure

All deliveries of a job run concurrently. Outcomes are only ever logged.
"""

from __future__ import annotations

import asyncio
import enum
import logging
from dataclasses import dataclass, field
from typing import Iterable, Mapping

import httpx

from webhook_relay.errors import DeliveryError
from webhook_relay.models import Endpoint, InboundEvent

logger = logging.getLogger(__name__)

# Headers never copied from the inbound request. Host is replaced per
# target; the rest describe the inbound connection, not the payload.
_STRIPPED_HEADERS = frozenset(
    {
        "host",
        "content-length",
        "transfer-encoding",
        "connection",
        "keep-alive",
        "proxy-connection",
        "te",
        "trailer",
        "upgrade",
    }
)

_UNREADABLE_BODY = "Unable to read error response"

# Ingress only accepts JSON bodies, so that is what every target is told it gets.
_JSON_CONTENT_TYPE = "application/json"


class DispatchStatus(str, enum.Enum):
    NO_ACTIVE_TARGETS = "no_active_endpoints"
    ACCEPTED = "accepted"
    COMPLETED = "completed"


class DeliveryStatus(str, enum.Enum):
    SUCCESS = "success"
    FAILURE = "failure"


@dataclass(frozen=True)
class DeliveryJob:
    """Everything one background fan-out needs, detached from the request."""

    event: InboundEvent
    targets: tuple[Endpoint, ...]

    @classmethod
    def build(cls, event: InboundEvent, targets: Iterable[Endpoint]) -> DeliveryJob:
        return cls(event=event.clone(), targets=tuple(t.model_copy() for t in targets))


@dataclass
class DeliveryResult:
    """Outcome of forwarding to one target."""

    target: str
    url: str
    status: DeliveryStatus
    status_code: int | None = None
    detail: str = ""

    @property
    def ok(self) -> bool:
        return self.status is DeliveryStatus.SUCCESS


@dataclass
class DispatchOutcome:
    """Aggregate of one dispatch call."""

    status: DispatchStatus
    results: list[DeliveryResult] = field(default_factory=list)

    @property
    def succeeded(self) -> list[DeliveryResult]:
        return [r for r in self.results if r.ok]

    @property
    def failed(self) -> list[DeliveryResult]:
        return [r for r in self.results if not r.ok]


# ── Header rewriting ──────────────────────────────────────────────────────


def build_host_header(url: str) -> str:
    """Return the ``Host`` value for *url*: its host, plus the port if non-default.

    Raises:
        DeliveryError: The URL does not parse or has no host.
    """
    try:
        parsed = httpx.URL(url)
    except httpx.InvalidURL as e:
        raise DeliveryError(url, f"Failed to parse URL: {e}") from e

    host = parsed.host
    if not host:
        raise DeliveryError(url, "URL has no host")
    if ":" in host:
        host = f"[{host}]"  # IPv6 literal
    # httpx reports port=None when it is the scheme default
    if parsed.port is not None:
        return f"{host}:{parsed.port}"
    return host


def is_json_media_type(value: str) -> bool:
    media_type = value.split(";", 1)[0].strip().lower()
    return media_type == _JSON_CONTENT_TYPE or media_type.endswith("+json")


def forwarded_headers(inbound: Mapping[str, str], host_header: str) -> dict[str, str]:
    """Build the outbound header set for one target.

    A missing or non-JSON ``Content-Type`` is replaced with
    ``application/json``.
    """
    headers = {"Host": host_header}
    has_content_type = False
    for name, value in inbound.items():
        lowered = name.lower()
        if lowered in _STRIPPED_HEADERS:
            continue
        if lowered == "content-type":
            if not is_json_media_type(value):
                continue
            has_content_type = True
        headers[name] = value
    if not has_content_type:
        headers["Content-Type"] = _JSON_CONTENT_TYPE
    return headers


# ── Dispatcher ────────────────────────────────────────────────────────────


class Dispatcher:
    """Concurrent best-effort delivery to a snapshot of targets.

    Owns one shared ``httpx.AsyncClient``. Background jobs are kept in a set
    until they finish so the event loop does not drop them mid-flight; they
    are never cancelled.
    """

    def __init__(
        self,
        client: httpx.AsyncClient | None = None,
        *,
        timeout: float | None = 30.0,
        verify_tls: bool = True,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(
            timeout=timeout,
            verify=verify_tls,
            transport=transport,
        )
        self._jobs: set[asyncio.Task] = set()

    @property
    def in_flight(self) -> int:
        return len(self._jobs)

    def submit(self, job: DeliveryJob) -> DispatchStatus:
        """Schedule *job* in the background and return without waiting.

        Must be called from inside the running event loop.
        """
        if not job.targets:
            return DispatchStatus.NO_ACTIVE_TARGETS

        task = asyncio.get_running_loop().create_task(self._run_job(job))
        self._jobs.add(task)
        task.add_done_callback(self._jobs.discard)
        return DispatchStatus.ACCEPTED

    async def dispatch(
        self, event: InboundEvent, targets: Iterable[Endpoint]
    ) -> DispatchOutcome:
        """Deliver *event* to every target concurrently and aggregate the outcomes.

        Never raises for a delivery failure; each failure is recorded in the
        returned outcome and logged.
        """
        targets = list(targets)
        if not targets:
            return DispatchOutcome(status=DispatchStatus.NO_ACTIVE_TARGETS)

        logger.info("Dispatching event (%d bytes) to %d targets", len(event.body), len(targets))
        results = await asyncio.gather(
            *(self.deliver(event.clone(), target) for target in targets)
        )
        outcome = DispatchOutcome(status=DispatchStatus.COMPLETED, results=list(results))

        for result in outcome.failed:
            logger.warning("  %s: %s", result.target, result.detail)
        logger.info(
            "Dispatch complete: %d succeeded, %d failed",
            len(outcome.succeeded),
            len(outcome.failed),
        )
        return outcome

    async def deliver(self, event: InboundEvent, target: Endpoint) -> DeliveryResult:
        """Forward *event* to a single target. Failures are returned, not raised."""
        try:
            status_code = await self._send(event, target)
        except DeliveryError as e:
            logger.warning("Error forwarding to %s: %s", target.name, e.detail)
            return DeliveryResult(
                target=target.name,
                url=target.url,
                status=DeliveryStatus.FAILURE,
                status_code=e.status_code,
                detail=e.detail,
            )
        except Exception as e:
            # Anything else still fails only this target, never the batch
            logger.warning("Error forwarding to %s", target.name, exc_info=True)
            return DeliveryResult(
                target=target.name,
                url=target.url,
                status=DeliveryStatus.FAILURE,
                detail=f"Failed to send request: {type(e).__name__}: {e}",
            )

        logger.info("Successfully forwarded to %s: status %d", target.name, status_code)
        return DeliveryResult(
            target=target.name,
            url=target.url,
            status=DeliveryStatus.SUCCESS,
            status_code=status_code,
        )

    async def drain(self) -> None:
        """Wait for every in-flight background job to finish."""
        while self._jobs:
            await asyncio.gather(*list(self._jobs), return_exceptions=True)

    async def aclose(self) -> None:
        await self.drain()
        if self._owns_client:
            await self._client.aclose()

    async def _send(self, event: InboundEvent, target: Endpoint) -> int:
        host_header = build_host_header(target.url)
        headers = forwarded_headers(event.headers, host_header)

        try:
            response = await self._client.post(target.url, content=event.body, headers=headers)
        except (httpx.HTTPError, httpx.InvalidURL) as e:
            reason = str(e) or type(e).__name__
            raise DeliveryError(target.name, f"Failed to send request: {reason}") from e

        if response.is_success:
            return response.status_code

        try:
            body = response.text
        except (httpx.HTTPError, UnicodeDecodeError, LookupError):
            body = _UNREADABLE_BODY
        raise DeliveryError(
            target.name,
            f"Endpoint returned error status {response.status_code}: {body}",
            status_code=response.status_code,
        )

    async def _run_job(self, job: DeliveryJob) -> None:
        try:
            await self.dispatch(job.event, job.targets)
        except Exception:
            logger.exception("Background dispatch to %d targets crashed", len(job.targets))
