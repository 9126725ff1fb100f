"""Wiring for the launch flow.

Collaborators are passed in explicitly; nothing here reaches for globals.
"""

from __future__ import annotations

from typing import Optional

import httpx

from app.core.settings import LaunchSettings
from app.core.storage import KeyValueStore
from launch.core.attribution import AttributionCollector, AttributionSdk
from launch.core.config_client import RemoteConfigClient
from launch.core.mode_store import ModeStore
from launch.core.orchestrator import LaunchOrchestrator
from launch.core.permission import PermissionGatekeeper, PushPlatform
from launch.core.reachability import Reachability


def build_orchestrator(
    settings: LaunchSettings,
    store: KeyValueStore,
    *,
    sdk: AttributionSdk,
    push_platform: PushPlatform,
    reachability: Reachability,
    http_client: Optional[httpx.AsyncClient] = None,
) -> LaunchOrchestrator:
    """Assemble an orchestrator over one store and (optionally) one shared HTTP client."""
    return LaunchOrchestrator(
        settings=settings,
        mode_store=ModeStore(store),
        reachability=reachability,
        attribution=AttributionCollector(sdk, store, settings, http_client=http_client),
        gatekeeper=PermissionGatekeeper(push_platform, store, settings),
        config_client=RemoteConfigClient(settings, store, http_client=http_client),
    )
