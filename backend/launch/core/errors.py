from __future__ import annotations

"""Controlled errors for the launch flow.

Intent:
- Nothing in the launch flow is fatal; every error maps to a next state.
- These errors are signals for the orchestrator and for logs. They are caught
  at the orchestrator boundary and never reach state subscribers.
"""


class LaunchError(RuntimeError):
    """Base error for the launch flow; should be caught and mapped to a state."""

    kind = "launch_error"


class ConfigError(LaunchError):
    """Raised when a Config Decision Request does not yield a decision."""

    kind = "config_error"


class InvalidEndpoint(ConfigError):
    """Raised when the configured decision endpoint is unusable (no I/O attempted)."""

    kind = "invalid_endpoint"


class InvalidRequestBody(ConfigError):
    """Raised when the request context cannot be encoded as JSON (no I/O attempted)."""

    kind = "invalid_request_body"


class TransportFailure(ConfigError):
    """Raised on network errors and timeouts."""

    kind = "transport_failure"


class ServerRejected(ConfigError):
    """Raised when the server answers but does not approve (non-200 or ok=false)."""

    kind = "server_rejected"

    def __init__(self, message: str = "Unknown error", status_code: int | None = None):
        super().__init__(message)
        self.message = message
        self.status_code = status_code


class MalformedResponse(ConfigError):
    """Raised when the response body is not the expected JSON object."""

    kind = "malformed_response"


class NoConnectivity(LaunchError):
    """Why the flow went offline; carried into the offline log event, never raised to subscribers."""

    kind = "no_connectivity"
