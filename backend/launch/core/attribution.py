"""
Attribution Collector.

Wraps the attribution SDK behind a small lifecycle:

1. request_tracking_authorization()  (must resolve before 2)
2. configure()                        (idempotent)
3. start()
4. SDK delegate callbacks land in on_conversion_data_success / _fail and
   on_deep_link_resolved; listeners are notified.

Organic results are provisionally unreliable (re-engagement of an existing
install can be reported as organic), so an organic callback schedules one
delayed re-verification against the install-data endpoint. The cap is a hard
constant: at most one re-verification per collector lifetime.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Callable, Dict, List, Optional, Protocol

import httpx

from app.core.log import log_event, redact_url
from app.core.settings import LaunchSettings
from app.core.storage import KeyValueStore, load_model, save_model
from launch.core.state import (
    CONVERSION_CACHE_KEY,
    AuthorizationStatus,
    ConversionResult,
    DeepLinkContext,
)

logger = logging.getLogger("launchgate.attribution")

MAX_REVERIFICATIONS = 1
INSTALL_DATA_URL = "https://gcdsdk.appsflyer.com/install_data/v4.0/{bundle_id}"

ConversionListener = Callable[[ConversionResult], None]
DeepLinkListener = Callable[[DeepLinkContext], None]
FailureListener = Callable[[Exception], None]


class AttributionSdk(Protocol):
    """What the collector needs from the vendor SDK."""

    @property
    def uid(self) -> str: ...

    def current_tracking_status(self) -> AuthorizationStatus: ...

    async def request_tracking_authorization(self) -> AuthorizationStatus: ...

    def configure(self, *, dev_key: str, app_id: str, wait_for_att_seconds: float, delegate: "AttributionCollector") -> None: ...

    def start(self) -> None: ...


class AttributionCollector:
    def __init__(
        self,
        sdk: AttributionSdk,
        store: KeyValueStore,
        settings: LaunchSettings,
        http_client: Optional[httpx.AsyncClient] = None,
    ):
        self._sdk = sdk
        self._store = store
        self._settings = settings
        self._http = http_client or httpx.AsyncClient(timeout=settings.config_request_timeout_seconds)
        self._owns_http = http_client is None

        self.tracking_status: AuthorizationStatus = AuthorizationStatus.NOT_DETERMINED
        self.deep_link_data: Optional[DeepLinkContext] = None
        self.is_conversion_data_received = False
        self._configured = False
        self._reverification_count = 0
        self._reverification_task: Optional[asyncio.Task] = None

        self._conversion_listeners: List[ConversionListener] = []
        self._deep_link_listeners: List[DeepLinkListener] = []
        self._failure_listeners: List[FailureListener] = []

        # Last known result from a previous process; context only, never the gating signal.
        self.conversion_data: Optional[ConversionResult] = load_model(store, CONVERSION_CACHE_KEY, ConversionResult)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------
    @property
    def is_configured(self) -> bool:
        return self._configured

    @property
    def uid(self) -> str:
        return self._sdk.uid

    async def request_tracking_authorization(self) -> AuthorizationStatus:
        current = self._sdk.current_tracking_status()
        if current != AuthorizationStatus.NOT_DETERMINED:
            self.tracking_status = current
            return current

        self.tracking_status = await self._sdk.request_tracking_authorization()
        log_event(logger, "tracking_authorization", status=self.tracking_status.value)
        return self.tracking_status

    def configure(self) -> None:
        if self._configured:
            return
        self._sdk.configure(
            dev_key=self._settings.appsflyer_dev_key,
            app_id=self._settings.apple_app_id,
            wait_for_att_seconds=self._settings.attribution_wait_for_att_seconds,
            delegate=self,
        )
        self._configured = True
        log_event(logger, "attribution_configured")

    def start(self) -> None:
        self._sdk.start()

    # ------------------------------------------------------------------
    # Listeners
    # ------------------------------------------------------------------
    def subscribe_conversion(self, listener: ConversionListener) -> Callable[[], None]:
        self._conversion_listeners.append(listener)
        return lambda: self._discard(self._conversion_listeners, listener)

    def subscribe_deep_link(self, listener: DeepLinkListener) -> Callable[[], None]:
        self._deep_link_listeners.append(listener)
        return lambda: self._discard(self._deep_link_listeners, listener)

    def subscribe_failure(self, listener: FailureListener) -> Callable[[], None]:
        self._failure_listeners.append(listener)
        return lambda: self._discard(self._failure_listeners, listener)

    @staticmethod
    def _discard(listeners: list, listener: Any) -> None:
        if listener in listeners:
            listeners.remove(listener)

    def _notify(self, listeners: list, value: Any) -> None:
        for listener in list(listeners):
            try:
                listener(value)
            except Exception:
                logger.exception("Attribution listener failed")

    # ------------------------------------------------------------------
    # SDK delegate callbacks (delivered on the event loop)
    # ------------------------------------------------------------------
    def on_conversion_data_success(self, install_data: Dict[Any, Any]) -> None:
        conversion = ConversionResult.from_payload(install_data)
        self._accept(conversion)
        log_event(
            logger,
            "conversion_received",
            af_status=conversion.af_status,
            media_source=conversion.media_source,
        )

        if conversion.is_organic:
            self._schedule_reverification()
        else:
            self._notify(self._conversion_listeners, conversion)

    def on_conversion_data_fail(self, error: Exception) -> None:
        # The wait ends; there is simply nothing to personalize with.
        self.is_conversion_data_received = True
        log_event(logger, "conversion_failed", level=logging.WARNING, error=str(error))
        self._notify(self._failure_listeners, error)

    def on_deep_link_resolved(self, click_event: Optional[Dict[Any, Any]]) -> None:
        if not click_event:
            return
        self.deep_link_data = DeepLinkContext.from_payload(click_event)
        log_event(logger, "deep_link_resolved", is_deferred=self.deep_link_data.is_deferred)
        self._notify(self._deep_link_listeners, self.deep_link_data)

    def _accept(self, conversion: ConversionResult) -> None:
        self.conversion_data = conversion
        self.is_conversion_data_received = True
        save_model(self._store, CONVERSION_CACHE_KEY, conversion)

    # ------------------------------------------------------------------
    # Organic re-verification
    # ------------------------------------------------------------------
    def _schedule_reverification(self) -> None:
        if self._reverification_count >= MAX_REVERIFICATIONS:
            return
        loop = asyncio.get_running_loop()
        self._reverification_task = loop.create_task(self.retry_conversion_data_via_api())

    async def retry_conversion_data_via_api(self) -> Optional[ConversionResult]:
        """Re-query install data once, after the configured delay."""
        if self._reverification_count >= MAX_REVERIFICATIONS:
            return None
        self._reverification_count += 1

        await asyncio.sleep(self._settings.organic_retry_delay_seconds)

        url = INSTALL_DATA_URL.format(bundle_id=self._settings.bundle_id)
        params = {"devkey": self._settings.appsflyer_dev_key, "device_id": self.uid}
        try:
            response = await self._http.get(url, params=params)
        except httpx.HTTPError as e:
            log_event(logger, "reverification_failed", level=logging.WARNING, url=redact_url(url), error=str(e))
            return None

        if response.status_code != 200:
            log_event(logger, "reverification_failed", level=logging.WARNING, status_code=response.status_code)
            return None

        try:
            payload = response.json()
        except ValueError:
            log_event(logger, "reverification_failed", level=logging.WARNING, error="invalid json")
            return None
        if not isinstance(payload, dict):
            return None

        conversion = ConversionResult.from_payload(payload)
        self._accept(conversion)
        log_event(logger, "conversion_reverified", af_status=conversion.af_status)
        self._notify(self._conversion_listeners, conversion)
        return conversion

    @property
    def reverification_attempts(self) -> int:
        return self._reverification_count

    async def close(self) -> None:
        if self._reverification_task is not None and not self._reverification_task.done():
            self._reverification_task.cancel()
            try:
                await self._reverification_task
            except asyncio.CancelledError:
                pass
        if self._owns_http:
            await self._http.aclose()
