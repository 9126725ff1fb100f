"""
Permission Gatekeeper.

Owns the push-permission re-ask policy:
- system status authorized or denied: never prompt again (latched)
- never asked and never skipped: prompt
- skipped: prompt again once the cooldown has elapsed
- asked through the system prompt: never prompt again

Also holds the push token and the pending notification URL slot.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional, Protocol

from app.core.log import log_event, mask_token, redact_url
from app.core.settings import LaunchSettings
from app.core.storage import KeyValueStore
from launch.core.state import (
    PUSH_REQUESTED_KEY,
    PUSH_SKIPPED_KEY,
    PUSH_TOKEN_KEY,
    AuthorizationStatus,
    PushGateState,
)

logger = logging.getLogger("launchgate.permission")

_FINAL_STATUSES = (AuthorizationStatus.AUTHORIZED, AuthorizationStatus.DENIED)

NotificationListener = Callable[[str], None]
TokenListener = Callable[[str], None]


class PushPlatform(Protocol):
    async def authorization_status(self) -> AuthorizationStatus: ...

    async def request_authorization(self) -> bool: ...

    def register_for_remote_notifications(self) -> None: ...


def _discard(listeners: list, listener: Any) -> None:
    if listener in listeners:
        listeners.remove(listener)


def extract_notification_url(payload: Dict[str, Any]) -> Optional[str]:
    """URL from `data.url`, else top-level `url`; empty strings are ignored."""
    data = payload.get("data")
    if isinstance(data, dict):
        url = data.get("url")
        if isinstance(url, str) and url:
            return url
    url = payload.get("url")
    if isinstance(url, str) and url:
        return url
    return None


class PermissionGatekeeper:
    def __init__(
        self,
        platform: PushPlatform,
        store: KeyValueStore,
        settings: LaunchSettings,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self._platform = platform
        self._store = store
        self._retry_interval = settings.push_retry_interval_seconds
        self._clock = clock or (lambda: datetime.now(timezone.utc))

        self.authorization_status = AuthorizationStatus.NOT_DETERMINED
        self._system_decided = False
        self.pending_notification_url: Optional[str] = None
        self._notification_listeners: List[NotificationListener] = []
        self._token_listeners: List[TokenListener] = []

        token = store.get(PUSH_TOKEN_KEY)
        self.push_token: Optional[str] = token if isinstance(token, str) else None

    # ------------------------------------------------------------------
    # Persisted gate state
    # ------------------------------------------------------------------
    @property
    def has_requested_permission(self) -> bool:
        return bool(self._store.get(PUSH_REQUESTED_KEY))

    @property
    def last_skipped_at(self) -> Optional[datetime]:
        raw = self._store.get(PUSH_SKIPPED_KEY)
        if not raw:
            return None
        try:
            skipped = datetime.fromisoformat(raw)
        except (TypeError, ValueError):
            return None
        if skipped.tzinfo is None:
            skipped = skipped.replace(tzinfo=timezone.utc)
        return skipped

    @property
    def gate_state(self) -> PushGateState:
        return PushGateState(
            has_requested_permission=self.has_requested_permission,
            last_skipped_at=self.last_skipped_at,
        )

    # ------------------------------------------------------------------
    # Policy
    # ------------------------------------------------------------------
    def _observe(self, status: AuthorizationStatus) -> None:
        self.authorization_status = status
        if status in _FINAL_STATUSES:
            self._system_decided = True

    async def refresh_authorization_status(self) -> AuthorizationStatus:
        self._observe(await self._platform.authorization_status())
        return self.authorization_status

    @property
    def should_show_permission_screen(self) -> bool:
        if self._system_decided or self.authorization_status in _FINAL_STATUSES:
            return False

        # The system prompt was shown once; its answer is final.
        if self.has_requested_permission:
            return False

        skipped = self.last_skipped_at
        if skipped is None:
            return True

        elapsed = (self._clock() - skipped).total_seconds()
        return elapsed >= self._retry_interval

    # ------------------------------------------------------------------
    # Actions
    # ------------------------------------------------------------------
    async def request_permission(self) -> bool:
        self._store.set(PUSH_REQUESTED_KEY, True)
        try:
            granted = await self._platform.request_authorization()
        except Exception as e:
            log_event(logger, "push_permission_error", level=logging.WARNING, error=str(e))
            return False

        await self.refresh_authorization_status()
        if granted:
            self._platform.register_for_remote_notifications()
        log_event(logger, "push_permission_result", granted=granted, status=self.authorization_status.value)
        return granted

    def skip_permission(self) -> None:
        now = self._clock()
        self._store.set(PUSH_SKIPPED_KEY, now.isoformat())
        log_event(logger, "push_permission_skipped", at=now.isoformat())

    # ------------------------------------------------------------------
    # Notifications & token
    # ------------------------------------------------------------------
    def subscribe_notifications(self, listener: NotificationListener) -> Callable[[], None]:
        self._notification_listeners.append(listener)
        return lambda: _discard(self._notification_listeners, listener)

    def subscribe_token(self, listener: TokenListener) -> Callable[[], None]:
        self._token_listeners.append(listener)
        return lambda: _discard(self._token_listeners, listener)

    def handle_notification(self, payload: Dict[str, Any]) -> Optional[str]:
        url = extract_notification_url(payload)
        if url is None:
            return None
        self.pending_notification_url = url
        log_event(logger, "notification_url_received", url=redact_url(url))
        for listener in list(self._notification_listeners):
            try:
                listener(url)
            except Exception:
                logger.exception("Notification listener failed")
        return url

    def clear_pending_url(self) -> None:
        self.pending_notification_url = None

    def handle_registration_token(self, token: Optional[str]) -> None:
        if not token:
            return
        self.push_token = token
        self._store.set(PUSH_TOKEN_KEY, token)
        log_event(logger, "push_token_updated", token=mask_token(token))
        for listener in list(self._token_listeners):
            try:
                listener(token)
            except Exception:
                logger.exception("Token listener failed")
