"""Runtime configuration for launchgate.

Sources, highest priority first:
- explicit overrides passed to `load_settings`
- `LAUNCH_*` environment variables (`.env` files are loaded first, never
  overriding the real process environment)
- an optional YAML file named by `LAUNCH_CONFIG_FILE`
- model defaults

Timing values are seconds. Defaults mirror what the shipping client uses.
"""

from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Any, Final, Literal, Optional

import yaml
from pydantic import BaseModel, ConfigDict, Field

from app.core.env import load_env_if_present
from app.core.log import log_event

logger = logging.getLogger("launchgate.settings")

ENV_PREFIX: Final[str] = "LAUNCH_"
CONFIG_FILE_ENV: Final[str] = "LAUNCH_CONFIG_FILE"

_PLACEHOLDERS = {
    "appsflyer_dev_key": "YOUR_APPSFLYER_DEV_KEY",
    "apple_app_id": "YOUR_APPLE_APP_ID",
    "config_endpoint": "YOUR_CONFIG_ENDPOINT_URL",
    "firebase_project_id": "YOUR_FIREBASE_PROJECT_ID",
}

_LABELS = {
    "appsflyer_dev_key": "AppsFlyer Dev Key not configured",
    "apple_app_id": "Apple App ID not configured",
    "config_endpoint": "Config Endpoint not configured",
    "firebase_project_id": "Firebase Project ID not configured",
}


class LaunchSettings(BaseModel):
    """Immutable settings snapshot for one process."""

    # Identity
    config_endpoint: str = _PLACEHOLDERS["config_endpoint"]
    appsflyer_dev_key: str = _PLACEHOLDERS["appsflyer_dev_key"]
    apple_app_id: str = _PLACEHOLDERS["apple_app_id"]
    firebase_project_id: str = _PLACEHOLDERS["firebase_project_id"]
    bundle_id: str = "com.launchgate.app"
    locale: str = "en_US"
    platform: str = "iOS"

    # Timeouts
    conversion_timeout_seconds: float = Field(default=15.0, gt=0)
    conversion_poll_interval_seconds: float = Field(default=0.5, gt=0)
    config_request_timeout_seconds: float = Field(default=30.0, gt=0)
    organic_retry_delay_seconds: float = Field(default=5.0, ge=0)
    push_retry_interval_seconds: float = Field(default=259200.0, ge=0)  # 3 days
    observation_interval_seconds: float = Field(default=1.0, gt=0)
    retry_connection_timeout_seconds: float = Field(default=5.0, ge=0)
    attribution_wait_for_att_seconds: float = Field(default=60.0, ge=0)

    # Persistence
    storage_backend: Literal["memory", "file", "redis"] = "file"
    storage_path: str = "launchgate_state.json"
    redis_url: str = "redis://127.0.0.1:6379/0"
    redis_key_prefix: str = "launchgate:"

    model_config = ConfigDict(frozen=True)

    @property
    def store_id(self) -> str:
        return f"id{self.apple_app_id}"

    def validate_config(self) -> list[str]:
        """Return configuration problems (empty if all values are set)."""
        errors: list[str] = []
        for field, placeholder in _PLACEHOLDERS.items():
            value = getattr(self, field)
            if not value or value == placeholder:
                errors.append(_LABELS[field])
        return errors

    def log_status(self) -> list[str]:
        errors = self.validate_config()
        log_event(
            logger,
            "config_status",
            bundle_id=self.bundle_id,
            apple_app_id=self.apple_app_id,
            dev_key_prefix=self.appsflyer_dev_key[:10],
            endpoint_prefix=self.config_endpoint[:30],
            storage_backend=self.storage_backend,
            errors=errors,
            level=logging.WARNING if errors else logging.INFO,
        )
        return errors


def _read_yaml(path: Path) -> dict[str, Any]:
    raw = yaml.safe_load(path.read_text(encoding="utf-8"))
    if raw is None:
        return {}
    if not isinstance(raw, dict):
        raise ValueError(f"Invalid settings file {path}: expected a top-level mapping.")
    # Allow either a flat mapping or one nested under `launch:`.
    section = raw.get("launch", raw)
    if not isinstance(section, dict):
        raise ValueError(f"Invalid settings file {path}: 'launch' must be a mapping.")
    return {str(k): v for k, v in section.items()}


def _from_environ() -> dict[str, Any]:
    values: dict[str, Any] = {}
    for name in LaunchSettings.model_fields:
        env_key = ENV_PREFIX + name.upper()
        if env_key in os.environ:
            values[name] = os.environ[env_key]
    return values


def load_settings(config_file: Optional[Path] = None, **overrides: Any) -> LaunchSettings:
    """Build settings from YAML, environment and explicit overrides."""
    load_env_if_present()

    values: dict[str, Any] = {}
    path = config_file
    if path is None and os.environ.get(CONFIG_FILE_ENV):
        path = Path(os.environ[CONFIG_FILE_ENV])
    if path is not None:
        values.update(_read_yaml(path))

    values.update(_from_environ())
    values.update({k: v for k, v in overrides.items() if v is not None})
    return LaunchSettings.model_validate(values)
