from __future__ import annotations

import asyncio
from datetime import datetime, timezone
from decimal import Decimal

import httpx

from app.core.storage import InMemoryStore
from launch.adapters.headless import HeadlessAttributionSdk
from launch.core.attribution import AttributionCollector
from launch.core.state import CONVERSION_CACHE_KEY, AuthorizationStatus

from conftest import fast_settings


def _collector(endpoints, *, sdk=None, store=None, **settings):
    sdk = sdk or HeadlessAttributionSdk(uid="af-uid-1")
    store = store if store is not None else InMemoryStore()
    client = httpx.AsyncClient(transport=httpx.MockTransport(endpoints))
    collector = AttributionCollector(sdk, store, fast_settings(**settings), http_client=client)
    return collector, sdk, store, client


def test_tracking_prompt_skipped_when_already_determined(endpoints):
    sdk = HeadlessAttributionSdk(initial_tracking_status=AuthorizationStatus.DENIED)
    collector, sdk, _, client = _collector(endpoints, sdk=sdk)

    async def scenario():
        try:
            return await collector.request_tracking_authorization()
        finally:
            await collector.close()
            await client.aclose()

    assert asyncio.run(scenario()) == AuthorizationStatus.DENIED
    assert sdk.calls == []


def test_configure_is_idempotent_and_passes_identity(endpoints):
    collector, sdk, _, _ = _collector(endpoints)

    collector.configure()
    collector.configure()

    assert sdk.calls.count("configure") == 1
    assert collector.is_configured
    assert sdk.configured_with == {
        "dev_key": "devkey-123",
        "app_id": "6757846912",
        "wait_for_att_seconds": 60.0,
    }


def test_non_organic_conversion_notifies_immediately(endpoints):
    collector, _, store, _ = _collector(endpoints)
    seen = []
    collector.subscribe_conversion(seen.append)

    collector.on_conversion_data_success({"af_status": "Non-organic", "campaign": "spring", 7: "x"})

    assert collector.is_conversion_data_received
    assert [c.campaign for c in seen] == ["spring"]
    assert store.get(CONVERSION_CACHE_KEY)["raw"]["7"] == "x"
    assert collector.reverification_attempts == 0


def test_organic_conversion_is_reverified_exactly_once(endpoints):
    endpoints.install_responder = lambda r: httpx.Response(200, json={"af_status": "Non-organic", "media_source": "ads"})
    collector, _, _, client = _collector(endpoints)
    seen = []
    collector.subscribe_conversion(seen.append)

    async def scenario():
        try:
            collector.on_conversion_data_success({"af_status": "Organic"})
            assert collector.is_conversion_data_received
            assert seen == []
            await asyncio.sleep(0.05)
            # A second organic report must not trigger another query.
            collector.on_conversion_data_success({"af_status": "Organic"})
            await asyncio.sleep(0.05)
        finally:
            await collector.close()
            await client.aclose()

    asyncio.run(scenario())

    assert collector.reverification_attempts == 1
    assert len(endpoints.install_requests) == 1
    request = endpoints.install_requests[0]
    assert request.url.path == "/install_data/v4.0/com.launchgate.test"
    assert request.url.params["devkey"] == "devkey-123"
    assert request.url.params["device_id"] == "af-uid-1"
    assert [c.media_source for c in seen] == ["ads"]


def test_reverification_failure_keeps_organic_result(endpoints):
    endpoints.install_responder = lambda r: httpx.Response(500)
    collector, _, _, client = _collector(endpoints)

    async def scenario():
        try:
            collector.on_conversion_data_success({"af_status": "Organic"})
            return await asyncio.wait_for(collector._reverification_task, timeout=1.0)
        finally:
            await collector.close()
            await client.aclose()

    assert asyncio.run(scenario()) is None
    assert collector.conversion_data.is_organic


def test_conversion_failure_ends_the_wait(endpoints):
    collector, _, _, _ = _collector(endpoints)
    failures = []
    unsubscribe = collector.subscribe_failure(failures.append)

    collector.on_conversion_data_fail(RuntimeError("boom"))
    unsubscribe()
    collector.on_conversion_data_fail(RuntimeError("again"))

    assert collector.is_conversion_data_received
    assert collector.conversion_data is None
    assert [str(e) for e in failures] == ["boom"]


def test_cached_conversion_is_context_not_signal(endpoints):
    store = InMemoryStore({CONVERSION_CACHE_KEY: {"raw": {"af_status": "Non-organic"}, "af_status": "Non-organic"}})
    collector, _, _, _ = _collector(endpoints, store=store)

    assert collector.conversion_data is not None
    assert collector.conversion_data.is_non_organic
    assert not collector.is_conversion_data_received


def test_deep_link_resolution(endpoints):
    collector, _, _, _ = _collector(endpoints)
    links = []
    collector.subscribe_deep_link(links.append)

    collector.on_deep_link_resolved(None)
    collector.on_deep_link_resolved({"deep_link_value": "promo", "is_deferred": True})

    assert len(links) == 1
    assert collector.deep_link_data.deep_link_value == "promo"
    assert collector.deep_link_data.is_deferred


def test_conversion_with_non_json_values_is_cached(endpoints):
    collector, _, store, _ = _collector(endpoints)
    clicked = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)

    collector.on_conversion_data_success({"af_status": "Non-organic", "click_time": clicked, "cost": Decimal("0.25")})

    assert collector.is_conversion_data_received
    cached = store.get(CONVERSION_CACHE_KEY)["raw"]
    assert cached["click_time"] == str(clicked)
    assert cached["cost"] == "0.25"
