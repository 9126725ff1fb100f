from __future__ import annotations

import json
import sys
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional

import httpx
import pytest


ROOT = Path(__file__).resolve().parents[2]

# Ensure `backend/` is importable as top-level `app` / `launch` for tests.
BACKEND_DIR = ROOT / "backend"
if str(BACKEND_DIR) not in sys.path:
    sys.path.insert(0, str(BACKEND_DIR))

from app.core.settings import LaunchSettings  # noqa: E402
from app.core.storage import InMemoryStore  # noqa: E402
from launch.adapters.headless import HeadlessAttributionSdk, HeadlessPushPlatform  # noqa: E402
from launch.core.bootstrap import build_orchestrator  # noqa: E402
from launch.core.mode_store import ModeStore  # noqa: E402
from launch.core.orchestrator import LaunchOrchestrator  # noqa: E402
from launch.core.reachability import ReachabilityMonitor  # noqa: E402
from launch.core.state import (  # noqa: E402
    STORED_CONFIG_KEY,
    AuthorizationStatus,
    LaunchState,
    Mode,
)


UTC = timezone.utc
CONFIG_ENDPOINT = "https://config.test/decide"


def fast_settings(**overrides: Any) -> LaunchSettings:
    values: Dict[str, Any] = dict(
        config_endpoint=CONFIG_ENDPOINT,
        appsflyer_dev_key="devkey-123",
        apple_app_id="6757846912",
        firebase_project_id="launchgate-test",
        bundle_id="com.launchgate.test",
        locale="en_US",
        conversion_timeout_seconds=0.2,
        conversion_poll_interval_seconds=0.01,
        config_request_timeout_seconds=2.0,
        organic_retry_delay_seconds=0.0,
        observation_interval_seconds=0.01,
        retry_connection_timeout_seconds=0.05,
        storage_backend="memory",
    )
    values.update(overrides)
    return LaunchSettings(**values)


@pytest.fixture()
def settings() -> LaunchSettings:
    return fast_settings()


class FakeEndpoints:
    """
    httpx.MockTransport handler for the decision endpoint and the
    install-data endpoint. Behaviour is switched per test.
    """

    def __init__(self) -> None:
        self.config_requests: List[Dict[str, Any]] = []
        self.install_requests: List[httpx.Request] = []
        self.config_responder: Callable[[httpx.Request], httpx.Response] = self._reject
        self.install_responder: Callable[[httpx.Request], httpx.Response] = lambda r: httpx.Response(404)

    def __call__(self, request: httpx.Request) -> httpx.Response:
        if request.url.host == "gcdsdk.appsflyer.com":
            self.install_requests.append(request)
            return self.install_responder(request)
        self.config_requests.append(json.loads(request.content or b"{}"))
        return self.config_responder(request)

    def approve(self, url: str, expires: Optional[float] = None) -> None:
        if expires is None:
            expires = datetime.now(tz=UTC).timestamp() + 3600
        self.config_responder = lambda r: httpx.Response(200, json={"ok": True, "url": url, "expires": expires})

    def reject(self, message: str = "native") -> None:
        self.config_responder = lambda r: httpx.Response(200, json={"ok": False, "message": message})

    def go_down(self) -> None:
        def _down(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("connection refused", request=request)

        self.config_responder = _down

    @staticmethod
    def _reject(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json={"ok": False, "message": "not configured"})


@pytest.fixture()
def endpoints() -> FakeEndpoints:
    return FakeEndpoints()


@dataclass
class Harness:
    orchestrator: LaunchOrchestrator
    store: InMemoryStore
    sdk: HeadlessAttributionSdk
    platform: HeadlessPushPlatform
    reachability: ReachabilityMonitor
    endpoints: FakeEndpoints
    client: httpx.AsyncClient
    states: List[LaunchState] = field(default_factory=list)

    async def close(self) -> None:
        await self.orchestrator.close()
        await self.client.aclose()


def build_harness(
    endpoints: FakeEndpoints,
    *,
    settings: Optional[LaunchSettings] = None,
    store: Optional[InMemoryStore] = None,
    conversion: Optional[Dict[str, Any]] = None,
    conversion_delay: float = 0.0,
    connected: bool = True,
    push_status: AuthorizationStatus = AuthorizationStatus.AUTHORIZED,
    mode: Optional[Mode] = None,
    stored_config: Optional[Dict[str, Any]] = None,
    sdk: Optional[HeadlessAttributionSdk] = None,
) -> Harness:
    settings = settings or fast_settings()
    store = store if store is not None else InMemoryStore()
    if mode is not None:
        ModeStore(store).commit(mode)
    if stored_config is not None:
        store.set(STORED_CONFIG_KEY, stored_config)

    sdk = sdk or HeadlessAttributionSdk(conversion=conversion, delay=conversion_delay, uid="af-uid-1")
    platform = HeadlessPushPlatform(status=push_status)
    reachability = ReachabilityMonitor(connected=connected, poll_interval=0.01)
    client = httpx.AsyncClient(transport=httpx.MockTransport(endpoints))

    orchestrator = build_orchestrator(
        settings,
        store,
        sdk=sdk,
        push_platform=platform,
        reachability=reachability,
        http_client=client,
    )
    harness = Harness(
        orchestrator=orchestrator,
        store=store,
        sdk=sdk,
        platform=platform,
        reachability=reachability,
        endpoints=endpoints,
        client=client,
    )
    orchestrator.subscribe(harness.states.append)
    return harness


@pytest.fixture()
def harness_factory(endpoints: FakeEndpoints) -> Callable[..., Harness]:
    def _factory(**kwargs: Any) -> Harness:
        return build_harness(endpoints, **kwargs)

    return _factory
