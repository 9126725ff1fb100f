"""Headless stand-ins for the attribution SDK and the push platform.

Used by the command-line job and by tests. They behave like the vendor SDKs
from the orchestrator's point of view: callbacks are delivered on the event
loop after a delay, and nothing is delivered before `start()`.
"""

from __future__ import annotations

import asyncio
import uuid
from typing import Any, Dict, List, Optional

from launch.core.state import AuthorizationStatus


class HeadlessAttributionSdk:
    def __init__(
        self,
        *,
        conversion: Optional[Dict[str, Any]] = None,
        conversion_error: Optional[Exception] = None,
        deep_link: Optional[Dict[str, Any]] = None,
        delay: float = 0.0,
        tracking_status: AuthorizationStatus = AuthorizationStatus.AUTHORIZED,
        initial_tracking_status: AuthorizationStatus = AuthorizationStatus.NOT_DETERMINED,
        uid: Optional[str] = None,
    ):
        self._conversion = conversion
        self._conversion_error = conversion_error
        self._deep_link = deep_link
        self._delay = delay
        self._tracking_status = tracking_status
        self._current_status = initial_tracking_status
        self._uid = uid or f"{uuid.uuid4().int % 10**13}-{uuid.uuid4().int % 10**19}"
        self._delegate: Any = None
        self._delivery: Optional[asyncio.Task] = None
        self.calls: List[str] = []
        self.configured_with: Dict[str, Any] = {}

    @property
    def uid(self) -> str:
        return self._uid

    def current_tracking_status(self) -> AuthorizationStatus:
        return self._current_status

    async def request_tracking_authorization(self) -> AuthorizationStatus:
        self.calls.append("request_tracking_authorization")
        await asyncio.sleep(0)
        self._current_status = self._tracking_status
        self.calls.append("tracking_authorization_resolved")
        return self._tracking_status

    def configure(self, *, dev_key: str, app_id: str, wait_for_att_seconds: float, delegate: Any) -> None:
        self.calls.append("configure")
        self._delegate = delegate
        self.configured_with = {
            "dev_key": dev_key,
            "app_id": app_id,
            "wait_for_att_seconds": wait_for_att_seconds,
        }

    def start(self) -> None:
        self.calls.append("start")
        if self._delivery is None and self._delegate is not None:
            self._delivery = asyncio.get_running_loop().create_task(self._deliver())

    async def _deliver(self) -> None:
        await asyncio.sleep(self._delay)
        if self._deep_link is not None:
            self._delegate.on_deep_link_resolved(self._deep_link)
        if self._conversion_error is not None:
            self._delegate.on_conversion_data_fail(self._conversion_error)
        elif self._conversion is not None:
            self._delegate.on_conversion_data_success(self._conversion)


class HeadlessPushPlatform:
    def __init__(
        self,
        *,
        status: AuthorizationStatus = AuthorizationStatus.NOT_DETERMINED,
        grant: bool = True,
    ):
        self._status = status
        self._grant = grant
        self.calls: List[str] = []
        self.registered = False

    async def authorization_status(self) -> AuthorizationStatus:
        return self._status

    async def request_authorization(self) -> bool:
        self.calls.append("request_authorization")
        self._status = AuthorizationStatus.AUTHORIZED if self._grant else AuthorizationStatus.DENIED
        return self._grant

    def register_for_remote_notifications(self) -> None:
        self.calls.append("register_for_remote_notifications")
        self.registered = True
