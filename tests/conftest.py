"""Shared fixtures for the webhook relay test suite."""

from __future__ import annotations

import asyncio
import time
from pathlib import Path
from typing import Callable

import httpx
import pytest

from webhook_relay.config import Settings
from webhook_relay.registry import EndpointRegistry
from webhook_relay.storage import EndpointStore


class RecordingReceiver:
    """Stand-in for every downstream server, keyed by URL host.

    Used as an ``httpx.MockTransport`` handler. Per host it can answer with a
    chosen status, sleep first, wait on a gate, or raise a transport error.
    """

    def __init__(self) -> None:
        self.requests: list[httpx.Request] = []
        self.status: dict[str, int] = {}
        self.bodies: dict[str, str] = {}
        self.delays: dict[str, float] = {}
        self.gates: dict[str, Callable[[], object]] = {}
        self.errors: dict[str, str] = {}
        self.crashes: dict[str, Exception] = {}

    async def __call__(self, request: httpx.Request) -> httpx.Response:
        host = request.url.host
        if host in self.delays:
            await asyncio.sleep(self.delays[host])
        if host in self.gates:
            await self.gates[host]()
        if host in self.crashes:
            raise self.crashes[host]
        if host in self.errors:
            raise httpx.ConnectError(self.errors[host], request=request)
        self.requests.append(request)
        return httpx.Response(
            self.status.get(host, 200),
            text=self.bodies.get(host, "ok"),
            request=request,
        )

    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self)

    def hosts(self) -> list[str]:
        return [r.url.host for r in self.requests]


def wait_for(predicate: Callable[[], bool], timeout: float = 5.0) -> bool:
    """Poll *predicate* from the test thread until it holds or time runs out."""
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(0.01)
    return predicate()


@pytest.fixture()
def endpoints_file(tmp_path: Path) -> Path:
    """Path for the persisted endpoint collection (not created)."""
    return tmp_path / "endpoints.json"


@pytest.fixture()
def store(endpoints_file: Path) -> EndpointStore:
    return EndpointStore(endpoints_file)


@pytest.fixture()
def registry(store: EndpointStore) -> EndpointRegistry:
    """Empty registry writing to a temporary file."""
    return EndpointRegistry(store)


@pytest.fixture()
def receiver() -> RecordingReceiver:
    return RecordingReceiver()


@pytest.fixture()
def settings(tmp_path: Path, endpoints_file: Path) -> Settings:
    return Settings(
        _env_file=None,
        endpoints_file=str(endpoints_file),
        static_dir=str(tmp_path / "no-static"),
        delivery_timeout=5.0,
    )


@pytest.fixture(name="wait_for")
def wait_for_fixture() -> Callable[..., bool]:
    return wait_for
