from __future__ import annotations

import json
import logging
import os

import pytest
from pydantic import ValidationError

from app.core.env import _parse_env_line, load_env_if_present
from app.core.log import log_event, mask_token, redact_url
from app.core.settings import LaunchSettings, load_settings
from app.core.storage import InMemoryStore, JsonFileStore, RedisStore, build_store, load_model, save_model
from launch.core.mode_store import ModeStore
from launch.core.state import (
    MODE_DETERMINED_KEY,
    MODE_KEY,
    STORED_CONFIG_KEY,
    WEBVIEW_MODE_KEY,
    Mode,
    StoredRemoteConfig,
)


@pytest.fixture()
def clean_env(monkeypatch):
    for name in LaunchSettings.model_fields:
        monkeypatch.delenv("LAUNCH_" + name.upper(), raising=False)
    monkeypatch.delenv("LAUNCH_CONFIG_FILE", raising=False)
    monkeypatch.delenv("LAUNCH_ENV_FILE", raising=False)
    return monkeypatch


# ---------------------------------------------------------------------------
# .env parsing
# ---------------------------------------------------------------------------

@pytest.mark.parametrize(
    "line, expected",
    [
        ("KEY=value", ("KEY", "value")),
        ("export KEY='quoted value'", ("KEY", "quoted value")),
        ('KEY="a=b"', ("KEY", "a=b")),
        ("# comment", None),
        ("", None),
        ("KEY=value  # note", ("KEY", "value")),
        ("KEY=\"keep # this\"", ("KEY", "keep # this")),
        ("NOEQUALS", None),
        ("=orphan", None),
    ],
)
def test_parse_env_line(line, expected):
    assert _parse_env_line(line) == expected


def test_env_file_does_not_override_process_env(tmp_path, clean_env):
    env_file = tmp_path / ".env"
    env_file.write_text("LAUNCH_LOCALE=de_DE\nLAUNCH_BUNDLE_ID=com.from.file\n", encoding="utf-8")
    clean_env.setenv("LAUNCH_LOCALE", "fr_FR")
    # Registered so the value written by the loader is removed afterwards.
    clean_env.setenv("LAUNCH_BUNDLE_ID", "unset")
    clean_env.delenv("LAUNCH_BUNDLE_ID")

    loaded = load_env_if_present(paths=[env_file, tmp_path / "missing.env"])

    assert loaded == [env_file]
    assert os.environ["LAUNCH_LOCALE"] == "fr_FR"
    assert os.environ["LAUNCH_BUNDLE_ID"] == "com.from.file"


# ---------------------------------------------------------------------------
# Settings
# ---------------------------------------------------------------------------

def test_defaults_and_validation_errors(clean_env):
    settings = load_settings()

    assert settings.conversion_timeout_seconds == 15.0
    assert settings.push_retry_interval_seconds == 259200.0
    assert settings.config_request_timeout_seconds == 30.0
    assert settings.validate_config() == [
        "AppsFlyer Dev Key not configured",
        "Apple App ID not configured",
        "Config Endpoint not configured",
        "Firebase Project ID not configured",
    ]


def test_yaml_then_env_then_overrides(tmp_path, clean_env):
    config = tmp_path / "launch.yaml"
    config.write_text(
        "launch:\n"
        "  apple_app_id: '111'\n"
        "  locale: de_DE\n"
        "  conversion_timeout_seconds: 3\n",
        encoding="utf-8",
    )
    clean_env.setenv("LAUNCH_CONFIG_FILE", str(config))
    clean_env.setenv("LAUNCH_LOCALE", "fr_FR")

    settings = load_settings(bundle_id="com.override")

    assert settings.apple_app_id == "111"
    assert settings.store_id == "id111"
    assert settings.locale == "fr_FR"
    assert settings.conversion_timeout_seconds == 3.0
    assert settings.bundle_id == "com.override"


def test_flat_yaml_is_accepted(tmp_path, clean_env):
    config = tmp_path / "flat.yaml"
    config.write_text("storage_backend: memory\n", encoding="utf-8")
    assert load_settings(config).storage_backend == "memory"


def test_invalid_values_are_rejected(clean_env):
    clean_env.setenv("LAUNCH_CONVERSION_TIMEOUT_SECONDS", "0")
    with pytest.raises(ValidationError):
        load_settings()


def test_settings_are_frozen():
    settings = LaunchSettings()
    with pytest.raises(ValidationError):
        settings.locale = "xx"


# ---------------------------------------------------------------------------
# Logging helpers
# ---------------------------------------------------------------------------

def test_log_event_emits_one_json_line(caplog):
    logger = logging.getLogger("launchgate.test")
    with caplog.at_level(logging.INFO, logger="launchgate"):
        log_event(logger, "sample", url=redact_url("https://a.test/p?key=secret#x"), token=mask_token("abcdefghij"))

    payload = json.loads(caplog.records[-1].getMessage())
    assert payload == {"event": "sample", "url": "https://a.test/p", "token": "abcdef***"}


# ---------------------------------------------------------------------------
# Stores
# ---------------------------------------------------------------------------

class _FakeRedis:
    def __init__(self):
        self.data = {}

    def get(self, key):
        return self.data.get(key)

    def set(self, key, value):
        self.data[key] = value

    def delete(self, key):
        self.data.pop(key, None)


def test_json_file_store_survives_reload(tmp_path):
    path = tmp_path / "state" / "launch.json"
    store = JsonFileStore(path)
    ModeStore(store).commit(Mode.WEB)
    store.set("scratch", 1)
    store.remove("scratch")

    reloaded = JsonFileStore(path)
    assert reloaded.get(MODE_KEY) == "webView"
    assert reloaded.get(MODE_DETERMINED_KEY) is True
    assert reloaded.get(WEBVIEW_MODE_KEY) is True
    assert reloaded.get("scratch") is None


def test_json_file_store_ignores_corrupt_file(tmp_path):
    path = tmp_path / "launch.json"
    path.write_text("{not json", encoding="utf-8")
    assert JsonFileStore(path).get(MODE_KEY) is None


def test_redis_store_prefixes_and_encodes():
    client = _FakeRedis()
    store = RedisStore(client, prefix="lg:")

    store.set(MODE_KEY, "native")
    assert client.data == {"lg:determined_app_mode": '"native"'}
    assert ModeStore(store).mode == Mode.NATIVE

    client.data["lg:broken"] = "{"
    assert store.get("broken") is None

    store.remove(MODE_KEY)
    assert ModeStore(store).mode == Mode.UNDETERMINED


def test_typed_records_round_trip_and_invalid_reads_as_absent():
    store = InMemoryStore()
    save_model(store, STORED_CONFIG_KEY, StoredRemoteConfig(url="https://x", expires=10.0, saved_at="2026-01-01T00:00:00+00:00"))
    assert load_model(store, STORED_CONFIG_KEY, StoredRemoteConfig).url == "https://x"

    save_model(store, STORED_CONFIG_KEY, None)
    assert store.get(STORED_CONFIG_KEY) is None

    store.set(STORED_CONFIG_KEY, {"expires": "soon"})
    assert load_model(store, STORED_CONFIG_KEY, StoredRemoteConfig) is None


def test_mode_store_reset_clears_legacy_flags():
    store = InMemoryStore({MODE_KEY: "garbage"})
    modes = ModeStore(store)
    assert modes.mode == Mode.UNDETERMINED

    modes.commit(Mode.NATIVE)
    assert modes.is_mode_determined and not modes.is_web_mode

    modes.reset()
    assert modes.mode == Mode.UNDETERMINED
    assert not modes.is_mode_determined


def test_build_store_selects_backend(tmp_path):
    assert isinstance(build_store(LaunchSettings(storage_backend="memory")), InMemoryStore)
    store = build_store(LaunchSettings(storage_backend="file", storage_path=str(tmp_path / "s.json")))
    assert isinstance(store, JsonFileStore)
