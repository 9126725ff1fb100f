"""
Core state models for the launch flow.

Separated from the services so the orchestrator, the collaborators and the
persistence layer can share them without import cycles.
"""
from __future__ import annotations

import json
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


def _json_safe(payload: Dict[str, Any]) -> Dict[str, Any]:
    # SDK payloads may carry dates, decimals or NSNull-like objects; they are
    # cached and posted as JSON, so anything non-native is stringified once here.
    return json.loads(json.dumps(payload, default=str))


# Persisted record keys
MODE_KEY = "determined_app_mode"
MODE_DETERMINED_KEY = "app_mode_determined"
WEBVIEW_MODE_KEY = "is_webview_mode"
STORED_CONFIG_KEY = "stored_config_data"
CONVERSION_CACHE_KEY = "cached_conversion_data"
PUSH_REQUESTED_KEY = "push_permission_requested"
PUSH_SKIPPED_KEY = "push_permission_skipped_date"
PUSH_TOKEN_KEY = "fcm_push_token"


class Mode(str, Enum):
    """Durable, once-determined choice of experience for a device."""
    UNDETERMINED = "undetermined"
    WEB = "webView"
    NATIVE = "native"


class LaunchStateKind(str, Enum):
    LOADING = "loading"
    NO_CONNECTIVITY = "no_connectivity"
    AWAITING_PUSH_PERMISSION = "awaiting_push_permission"
    WEB_EXPERIENCE = "web_experience"
    NATIVE_EXPERIENCE = "native_experience"


class LaunchState(BaseModel):
    """
    UI-facing launch state.

    Tagged value: only LOADING carries `progress_message` and only
    WEB_EXPERIENCE carries `url`. Instances are immutable; a transition always
    replaces the whole value.
    """
    kind: LaunchStateKind
    progress_message: Optional[str] = None
    url: Optional[str] = None

    model_config = ConfigDict(frozen=True)

    @classmethod
    def loading(cls, message: str = "Initializing...") -> "LaunchState":
        return cls(kind=LaunchStateKind.LOADING, progress_message=message)

    @classmethod
    def no_connectivity(cls) -> "LaunchState":
        return cls(kind=LaunchStateKind.NO_CONNECTIVITY)

    @classmethod
    def awaiting_push_permission(cls) -> "LaunchState":
        return cls(kind=LaunchStateKind.AWAITING_PUSH_PERMISSION)

    @classmethod
    def web(cls, url: str) -> "LaunchState":
        return cls(kind=LaunchStateKind.WEB_EXPERIENCE, url=url)

    @classmethod
    def native(cls) -> "LaunchState":
        return cls(kind=LaunchStateKind.NATIVE_EXPERIENCE)

    @property
    def is_terminal(self) -> bool:
        return self.kind in (LaunchStateKind.WEB_EXPERIENCE, LaunchStateKind.NATIVE_EXPERIENCE)

    def describe(self) -> Dict[str, Any]:
        return self.model_dump(mode="json", exclude_none=True)


class ConversionResult(BaseModel):
    """Attribution outcome as delivered by the SDK (raw payload kept, JSON-normalised)."""
    raw: Dict[str, Any] = Field(default_factory=dict)
    af_status: Optional[str] = None
    media_source: Optional[str] = None
    campaign: Optional[str] = None
    af_id: Optional[str] = None

    @field_validator("raw")
    @classmethod
    def raw_as_json(cls, value: Dict[str, Any]) -> Dict[str, Any]:
        return _json_safe(value)

    @classmethod
    def from_payload(cls, payload: Dict[str, Any]) -> "ConversionResult":
        data = {str(k): v for k, v in payload.items()}

        def _str(key: str) -> Optional[str]:
            value = data.get(key)
            return value if isinstance(value, str) else None

        return cls(
            raw=data,
            af_status=_str("af_status"),
            media_source=_str("media_source"),
            campaign=_str("campaign"),
        )

    @property
    def is_organic(self) -> bool:
        return (self.af_status or "").lower() == "organic"

    @property
    def is_non_organic(self) -> bool:
        return (self.af_status or "").lower() == "non-organic"

    def to_dict(self) -> Dict[str, Any]:
        return dict(self.raw)


class DeepLinkContext(BaseModel):
    """Deferred or direct deep link resolved by the attribution SDK."""
    raw: Dict[str, Any] = Field(default_factory=dict)
    deep_link_value: Optional[str] = None
    deep_link_sub1: Optional[str] = None
    is_deferred: bool = False

    @field_validator("raw")
    @classmethod
    def raw_as_json(cls, value: Dict[str, Any]) -> Dict[str, Any]:
        return _json_safe(value)

    @classmethod
    def from_payload(cls, payload: Dict[str, Any]) -> "DeepLinkContext":
        data = {str(k): v for k, v in payload.items()}
        value = data.get("deep_link_value")
        sub1 = data.get("deep_link_sub1")
        deferred = data.get("is_deferred")
        return cls(
            raw=data,
            deep_link_value=value if isinstance(value, str) else None,
            deep_link_sub1=sub1 if isinstance(sub1, str) else None,
            is_deferred=deferred if isinstance(deferred, bool) else False,
        )

    def to_dict(self) -> Dict[str, Any]:
        return dict(self.raw)


class StoredRemoteConfig(BaseModel):
    """
    Last successful decision.

    Expiry only affects preference ordering: an expired record is still a
    valid last-resort fallback.
    """
    url: str
    expires: float  # epoch seconds
    saved_at: datetime

    model_config = ConfigDict(frozen=True)

    def is_expired(self, now: Optional[datetime] = None) -> bool:
        now = now or datetime.now(timezone.utc)
        return now.timestamp() > self.expires


class ConfigResponse(BaseModel):
    """Decision endpoint response body.

    Strict: `"ok": "yes"` or a quoted `expires` is a malformed reply, not a
    decision. Integer `expires` is still accepted.
    """
    ok: bool
    url: Optional[str] = None
    expires: Optional[float] = None
    message: Optional[str] = None

    model_config = ConfigDict(strict=True)


class PushGateState(BaseModel):
    has_requested_permission: bool = False
    last_skipped_at: Optional[datetime] = None


class AuthorizationStatus(str, Enum):
    """System-level permission status (tracking consent and push share it)."""
    NOT_DETERMINED = "not_determined"
    RESTRICTED = "restricted"
    DENIED = "denied"
    AUTHORIZED = "authorized"
    PROVISIONAL = "provisional"
