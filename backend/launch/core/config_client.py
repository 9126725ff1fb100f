"""
Remote Config Client.

Issues the Config Decision Request and owns the StoredRemoteConfig record.

Request body layering (first writer wins for attribution data):
1. every ConversionResult field as received
2. DeepLinkContext fields that are not already present
3. fixed client identifiers (always set)

Success requires HTTP 200 and `ok=true`; the url/expires pair is persisted
only when both are present. Everything else raises a ConfigError subclass.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Optional
from urllib.parse import urlsplit

import httpx
from pydantic import ValidationError

from app.core.log import log_event, redact_url
from app.core.settings import LaunchSettings
from app.core.storage import KeyValueStore, load_model, save_model
from launch.core.errors import (
    ConfigError,
    InvalidEndpoint,
    InvalidRequestBody,
    MalformedResponse,
    ServerRejected,
    TransportFailure,
)
from launch.core.state import (
    STORED_CONFIG_KEY,
    ConfigResponse,
    ConversionResult,
    DeepLinkContext,
    StoredRemoteConfig,
)

logger = logging.getLogger("launchgate.config")


@dataclass(frozen=True)
class RequestContext:
    """Attribution and push context available at request time (all optional)."""
    conversion: Optional[ConversionResult] = None
    deep_link: Optional[DeepLinkContext] = None
    push_token: Optional[str] = None
    af_id: str = ""


class RemoteConfigClient:
    def __init__(
        self,
        settings: LaunchSettings,
        store: KeyValueStore,
        http_client: Optional[httpx.AsyncClient] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self._settings = settings
        self._store = store
        self._client = http_client or httpx.AsyncClient(timeout=settings.config_request_timeout_seconds)
        self._owns_client = http_client is None
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self.current_url: Optional[str] = None

    # ------------------------------------------------------------------
    # Stored config
    # ------------------------------------------------------------------
    @property
    def stored_config(self) -> Optional[StoredRemoteConfig]:
        return load_model(self._store, STORED_CONFIG_KEY, StoredRemoteConfig)

    def _save(self, config: Optional[StoredRemoteConfig]) -> None:
        save_model(self._store, STORED_CONFIG_KEY, config)

    def reset(self) -> None:
        self._save(None)
        self.current_url = None

    # ------------------------------------------------------------------
    # Request
    # ------------------------------------------------------------------
    def _endpoint(self) -> str:
        endpoint = self._settings.config_endpoint
        parts = urlsplit(endpoint)
        if parts.scheme not in ("http", "https") or not parts.netloc:
            raise InvalidEndpoint(f"Invalid configuration URL: {endpoint!r}")
        return endpoint

    def build_request_body(self, context: RequestContext) -> Dict[str, Any]:
        body: Dict[str, Any] = {}

        if context.conversion is not None:
            body.update(context.conversion.to_dict())

        if context.deep_link is not None:
            for key, value in context.deep_link.to_dict().items():
                if key not in body:
                    body[key] = value

        body["af_id"] = context.af_id
        body["bundle_id"] = self._settings.bundle_id
        body["os"] = self._settings.platform
        body["store_id"] = self._settings.store_id
        body["locale"] = self._settings.locale
        body["firebase_project_id"] = self._settings.firebase_project_id

        if context.push_token:
            body["push_token"] = context.push_token

        return body

    async def request_config(self, context: RequestContext) -> ConfigResponse:
        """
        Execute one Config Decision Request.

        Raises:
            InvalidEndpoint: endpoint not configured (no I/O attempted).
            InvalidRequestBody: context could not be encoded as JSON (no I/O attempted).
            TransportFailure: network error or timeout.
            MalformedResponse: 200 with a body that is not a decision object.
            ServerRejected: non-200, or ok=false.
        """
        endpoint = self._endpoint()
        body = self.build_request_body(context)
        log_event(
            logger,
            "config_request",
            endpoint=redact_url(endpoint),
            keys=sorted(body.keys()),
            has_push_token="push_token" in body,
        )

        try:
            payload = json.dumps(body, ensure_ascii=False, allow_nan=False)
        except (TypeError, ValueError) as e:
            log_event(logger, "config_body_unencodable", level=logging.WARNING, error=str(e))
            raise InvalidRequestBody(f"Request body is not valid JSON: {e}") from e

        try:
            response = await self._client.post(
                endpoint,
                content=payload.encode("utf-8"),
                headers={"Content-Type": "application/json"},
                timeout=self._settings.config_request_timeout_seconds,
            )
        except httpx.HTTPError as e:
            log_event(logger, "config_transport_failure", level=logging.WARNING, error=repr(e))
            raise TransportFailure(str(e) or e.__class__.__name__) from e

        log_event(logger, "config_response", status_code=response.status_code)
        decision = self._parse(response)

        if response.status_code != 200 or decision is None or not decision.ok:
            message = decision.message if decision is not None and decision.message else "Unknown error"
            if response.status_code == 200 and decision is None:
                raise MalformedResponse("Invalid server response")
            raise ServerRejected(message, status_code=response.status_code)

        if decision.url and decision.expires is not None:
            self._save(StoredRemoteConfig(url=decision.url, expires=decision.expires, saved_at=self._clock()))
            self.current_url = decision.url

        return decision

    @staticmethod
    def _parse(response: httpx.Response) -> Optional[ConfigResponse]:
        try:
            return ConfigResponse.model_validate(response.json())
        except (ValueError, ValidationError):
            return None

    async def get_url_for_web(self, context: RequestContext) -> Optional[str]:
        """Fresh URL if the endpoint approves, else the stored URL (even expired)."""
        try:
            response = await self.request_config(context)
            if response.url:
                return response.url
        except ConfigError as e:
            log_event(logger, "config_fallback", level=logging.WARNING, kind=e.kind, error=str(e))

        stored = self.stored_config
        if stored is not None:
            self.current_url = stored.url
            return stored.url
        return None

    async def close(self) -> None:
        if self._owns_client:
            await self._client.aclose()
