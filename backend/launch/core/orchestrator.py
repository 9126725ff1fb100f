"""
Launch Orchestrator.

Decides, on every launch, between the web experience and the native one and
emits a single current LaunchState.

State graph:

    LOADING ─┬─> NO_CONNECTIVITY ──(retry / reachability restored)──> LOADING ...
             ├─> AWAITING_PUSH_PERMISSION ──(accept / skip)──> WEB_EXPERIENCE
             ├─> WEB_EXPERIENCE     (stable for the session)
             └─> NATIVE_EXPERIENCE  (stable for the session)

First launch fails closed: no confirmed remote experience means native.
Resume never blocks on the network longer than one config request and falls
back to the stored URL.

Runs on a single event loop. All transitions happen on that loop, so there
is no concurrent mutation of the state or the mode.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import replace
from typing import Callable, Coroutine, List, Optional, Set

from app.core.log import log_event, redact_url
from app.core.settings import LaunchSettings
from launch.core.attribution import AttributionCollector
from launch.core.config_client import RemoteConfigClient, RequestContext
from launch.core.errors import ConfigError, NoConnectivity
from launch.core.mode_store import ModeStore
from launch.core.permission import PermissionGatekeeper
from launch.core.reachability import Reachability
from launch.core.state import LaunchState, LaunchStateKind, Mode

logger = logging.getLogger("launchgate.orchestrator")

StateListener = Callable[[LaunchState], None]

PROGRESS_CHECKING = "Checking connection..."
PROGRESS_LOADING = "Loading user's data..."
PROGRESS_RETRYING = "Retrying..."

# Leaving NO_CONNECTIVITY through any of these ends background observation.
_SETTLED_KINDS = (
    LaunchStateKind.AWAITING_PUSH_PERMISSION,
    LaunchStateKind.WEB_EXPERIENCE,
    LaunchStateKind.NATIVE_EXPERIENCE,
)


class LaunchOrchestrator:
    def __init__(
        self,
        *,
        settings: LaunchSettings,
        mode_store: ModeStore,
        reachability: Reachability,
        attribution: AttributionCollector,
        gatekeeper: PermissionGatekeeper,
        config_client: RemoteConfigClient,
    ):
        self._settings = settings
        self._modes = mode_store
        self._reachability = reachability
        self._attribution = attribution
        self._gatekeeper = gatekeeper
        self._config = config_client

        self._state = LaunchState.loading()
        self._listeners: List[StateListener] = []
        self.is_initialized = False

        self._observation_task: Optional[asyncio.Task] = None
        self._tasks: Set[asyncio.Task] = set()
        self.cached_url_for_reconnect: Optional[str] = None

        self._unsubscribe = [
            gatekeeper.subscribe_notifications(self._on_notification),
            gatekeeper.subscribe_token(self._on_push_token),
        ]

    # ------------------------------------------------------------------
    # State emission
    # ------------------------------------------------------------------
    @property
    def state(self) -> LaunchState:
        return self._state

    @property
    def mode(self) -> Mode:
        return self._modes.mode

    @property
    def attribution(self) -> AttributionCollector:
        return self._attribution

    @property
    def gatekeeper(self) -> PermissionGatekeeper:
        return self._gatekeeper

    def subscribe(self, listener: StateListener) -> Callable[[], None]:
        self._listeners.append(listener)

        def _unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return _unsubscribe

    def _emit(self, state: LaunchState) -> None:
        if state.kind in _SETTLED_KINDS:
            self.stop_observation()
        previous = self._state
        self._state = state
        if previous != state:
            log_event(
                logger,
                "state",
                previous=previous.kind.value,
                state=state.kind.value,
                progress=state.progress_message,
                url=redact_url(state.url),
            )
        for listener in list(self._listeners):
            try:
                listener(state)
            except Exception:
                logger.exception("State listener failed")

    def _go_offline(self, reason: NoConnectivity) -> None:
        log_event(logger, "offline", level=logging.WARNING, kind=reason.kind, reason=str(reason))
        self._emit(LaunchState.no_connectivity())

    def _commit(self, mode: Mode) -> None:
        self._modes.commit(mode)

    def _request_context(self) -> RequestContext:
        return RequestContext(
            conversion=self._attribution.conversion_data,
            deep_link=self._attribution.deep_link_data,
            push_token=self._gatekeeper.push_token,
            af_id=self._attribution.uid,
        )

    # ------------------------------------------------------------------
    # Entry
    # ------------------------------------------------------------------
    async def initialize(self) -> LaunchState:
        self._emit(LaunchState.loading(PROGRESS_CHECKING))
        await self._gatekeeper.refresh_authorization_status()

        if self._modes.mode != Mode.UNDETERMINED:
            await self._resume()
        else:
            await self._first_launch()
        return self._state

    # ------------------------------------------------------------------
    # First launch
    # ------------------------------------------------------------------
    async def _first_launch(self) -> None:
        if not self._reachability.is_connected:
            self._go_offline(NoConnectivity("no network on first launch"))
            return

        self._emit(LaunchState.loading(PROGRESS_LOADING))

        # Consent must resolve before the SDK is configured.
        await self._attribution.request_tracking_authorization()
        self._attribution.configure()
        self._attribution.start()

        received = await self.wait_for_conversion_data(self._settings.conversion_timeout_seconds)
        if not received:
            log_event(logger, "conversion_timeout", timeout=self._settings.conversion_timeout_seconds)
            self._commit(Mode.NATIVE)
            self._emit(LaunchState.native())
            self.is_initialized = True
            return

        try:
            response = await self._config.request_config(self._request_context())
        except ConfigError as e:
            log_event(logger, "first_launch_config_failed", level=logging.WARNING, kind=e.kind, error=str(e))
            response = None

        if response is not None and response.ok and response.url:
            self._commit(Mode.WEB)
            if self._gatekeeper.should_show_permission_screen:
                self._emit(LaunchState.awaiting_push_permission())
            else:
                self._emit(LaunchState.web(response.url))
        else:
            self._commit(Mode.NATIVE)
            self._emit(LaunchState.native())

        self.is_initialized = True

    async def wait_for_conversion_data(self, timeout: float) -> bool:
        """Poll the received flag until it is set or `timeout` elapses."""
        interval = self._settings.conversion_poll_interval_seconds
        loop = asyncio.get_running_loop()
        deadline = loop.time() + timeout

        while loop.time() < deadline:
            if self._attribution.is_conversion_data_received:
                return True
            await asyncio.sleep(interval)

        return self._attribution.is_conversion_data_received

    # ------------------------------------------------------------------
    # Resume
    # ------------------------------------------------------------------
    async def _resume(self) -> None:
        mode = self._modes.mode
        if mode == Mode.WEB:
            await self._web_mode_resume()
        elif mode == Mode.NATIVE:
            self._emit(LaunchState.native())
        else:
            await self._first_launch()
            return

        self.is_initialized = True

    async def _web_mode_resume(self) -> None:
        if not self._reachability.is_connected:
            stored = self._config.stored_config
            self.cached_url_for_reconnect = stored.url if stored else None
            self._go_offline(NoConnectivity("no network on web resume"))
            self.start_observation()
            return

        self.stop_observation()

        if not self._attribution.is_configured:
            await self._attribution.request_tracking_authorization()
            self._attribution.configure()
        self._attribution.start()

        if self._notification_took_over():
            return

        if self._gatekeeper.should_show_permission_screen:
            self._emit(LaunchState.awaiting_push_permission())
            return

        url = await self._config.get_url_for_web(self._request_context())
        if self._notification_took_over():
            return
        if url:
            self._emit(LaunchState.web(url))
        else:
            self._go_offline(NoConnectivity("no web URL available"))
            self.start_observation()

    # ------------------------------------------------------------------
    # Background reachability observation
    # ------------------------------------------------------------------
    @property
    def observation_active(self) -> bool:
        return self._observation_task is not None and not self._observation_task.done()

    def start_observation(self) -> asyncio.Task:
        self.stop_observation()
        loop = asyncio.get_running_loop()
        self._observation_task = loop.create_task(self._observe_network())
        return self._observation_task

    def stop_observation(self) -> None:
        task = self._observation_task
        self._observation_task = None
        if task is not None and not task.done() and task is not asyncio.current_task():
            task.cancel()

    async def _observe_network(self) -> None:
        interval = self._settings.observation_interval_seconds
        while True:
            await asyncio.sleep(interval)
            if self._reachability.is_connected:
                break

        if self._observation_task is asyncio.current_task():
            self._observation_task = None
        log_event(logger, "network_restored")
        self._spawn(self._on_network_restored())

    async def _on_network_restored(self) -> None:
        # A manual retry or a notification may already have settled the state.
        if self._modes.mode != Mode.WEB:
            return
        if self._state.kind != LaunchStateKind.NO_CONNECTIVITY:
            return
        await self._web_mode_resume()

    def _spawn(self, coro: Coroutine) -> asyncio.Task:
        task = asyncio.get_running_loop().create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._task_done)
        return task

    def _task_done(self, task: asyncio.Task) -> None:
        self._tasks.discard(task)
        if not task.cancelled() and task.exception() is not None:
            logger.error("Background launch task failed", exc_info=task.exception())

    # ------------------------------------------------------------------
    # User actions
    # ------------------------------------------------------------------
    async def on_permission_accepted(self) -> LaunchState:
        if self._state.kind != LaunchStateKind.AWAITING_PUSH_PERMISSION:
            log_event(logger, "permission_action_ignored", level=logging.WARNING, action="accept", state=self._state.kind.value)
            return self._state
        await self._gatekeeper.request_permission()
        await self._proceed_to_web()
        return self._state

    async def on_permission_skipped(self) -> LaunchState:
        if self._state.kind != LaunchStateKind.AWAITING_PUSH_PERMISSION:
            log_event(logger, "permission_action_ignored", level=logging.WARNING, action="skip", state=self._state.kind.value)
            return self._state
        self._gatekeeper.skip_permission()
        await self._proceed_to_web()
        return self._state

    async def _proceed_to_web(self) -> None:
        url = await self._config.get_url_for_web(self._request_context())
        if self._notification_took_over():
            return
        if url:
            self._emit(LaunchState.web(url))
        else:
            self._go_offline(NoConnectivity("no web URL available"))
            self.start_observation()

    async def retry_connection(self) -> LaunchState:
        self._emit(LaunchState.loading(PROGRESS_RETRYING))

        connected = await self._reachability.wait_for_connection(
            timeout=self._settings.retry_connection_timeout_seconds
        )
        if connected:
            if self._modes.mode == Mode.UNDETERMINED:
                await self._first_launch()
            else:
                await self._resume()
        else:
            self._go_offline(NoConnectivity("still offline after retry"))
            if self._modes.mode == Mode.WEB and not self.observation_active:
                self.start_observation()
        return self._state

    # ------------------------------------------------------------------
    # Out-of-band events
    # ------------------------------------------------------------------
    def handle_notification_url(self, url: str) -> bool:
        """Show a notification URL immediately when in web mode."""
        if self._modes.mode != Mode.WEB:
            return False
        self._emit(LaunchState.web(url))
        return True

    def _on_notification(self, url: str) -> None:
        if not self.handle_notification_url(url):
            return
        # While a launch path is still running the URL also stays pending, so
        # that path re-shows it instead of overwriting it.
        if self.is_initialized:
            self._gatekeeper.clear_pending_url()

    def _show_pending_notification(self) -> bool:
        pending = self._gatekeeper.pending_notification_url
        if not pending:
            return False
        self._gatekeeper.clear_pending_url()
        self._emit(LaunchState.web(pending))
        return True

    def _notification_took_over(self) -> bool:
        """True when a notification settled the state during a config fetch."""
        if self._show_pending_notification():
            return True
        return self._state.kind == LaunchStateKind.WEB_EXPERIENCE

    def _on_push_token(self, token: str) -> None:
        if not self._modes.is_web_mode:
            return
        self._spawn(self.update_push_token(token))

    async def update_push_token(self, token: str) -> bool:
        """Re-post the decision request so the server learns the new token."""
        if not self._modes.is_web_mode:
            return False
        context = replace(self._request_context(), push_token=token)
        try:
            await self._config.request_config(context)
        except ConfigError as e:
            log_event(logger, "push_token_update_failed", level=logging.WARNING, kind=e.kind, error=str(e))
            return False
        log_event(logger, "push_token_update_sent")
        return True

    def on_app_became_active(self) -> None:
        if self._attribution.is_configured:
            self._attribution.start()

    # ------------------------------------------------------------------
    # Maintenance
    # ------------------------------------------------------------------
    def reset(self) -> None:
        self.stop_observation()
        self._modes.reset()
        self._config.reset()
        self.cached_url_for_reconnect = None
        self.is_initialized = False
        self._emit(LaunchState.loading())

    async def close(self) -> None:
        self.stop_observation()
        for unsubscribe in self._unsubscribe:
            unsubscribe()
        pending = [t for t in self._tasks if not t.done()]
        for task in pending:
            task.cancel()
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)
        await self._attribution.close()
        await self._config.close()
