"""Launch decision core.

Decides once per device between the remote web experience and the native
one, persists that decision, and resumes it on every later launch:
- First launch: reachability, tracking consent, attribution, bounded wait,
  config decision, mode commit.
- Later launches: native is a no-op; web re-checks reachability and the
  permission gate, then prefers a fresh URL over the stored one.
"""

from launch.core.attribution import AttributionCollector, AttributionSdk
from launch.core.bootstrap import build_orchestrator
from launch.core.config_client import RemoteConfigClient, RequestContext
from launch.core.errors import (
    ConfigError,
    InvalidEndpoint,
    InvalidRequestBody,
    LaunchError,
    MalformedResponse,
    NoConnectivity,
    ServerRejected,
    TransportFailure,
)
from launch.core.mode_store import ModeStore
from launch.core.orchestrator import LaunchOrchestrator
from launch.core.permission import PermissionGatekeeper, PushPlatform
from launch.core.reachability import HttpProbeMonitor, Reachability, ReachabilityMonitor
from launch.core.state import (
    AuthorizationStatus,
    ConfigResponse,
    ConversionResult,
    DeepLinkContext,
    LaunchState,
    LaunchStateKind,
    Mode,
    PushGateState,
    StoredRemoteConfig,
)

__all__ = [
    "AttributionCollector",
    "AttributionSdk",
    "build_orchestrator",
    "RemoteConfigClient",
    "RequestContext",
    "ConfigError",
    "InvalidEndpoint",
    "InvalidRequestBody",
    "LaunchError",
    "MalformedResponse",
    "NoConnectivity",
    "ServerRejected",
    "TransportFailure",
    "ModeStore",
    "LaunchOrchestrator",
    "PermissionGatekeeper",
    "PushPlatform",
    "HttpProbeMonitor",
    "Reachability",
    "ReachabilityMonitor",
    "AuthorizationStatus",
    "ConfigResponse",
    "ConversionResult",
    "DeepLinkContext",
    "LaunchState",
    "LaunchStateKind",
    "Mode",
    "PushGateState",
    "StoredRemoteConfig",
]
