"""Key-value persistence port for launch state.

The launch flow only ever needs whole-value reads and overwrites of a handful
of named records, so the port is deliberately tiny: get / set / remove of
JSON-compatible values. Records are typed at the call site through pydantic
models (`load_model` / `save_model`).

Backends:
- InMemoryStore: dict, for tests and throwaway runs.
- JsonFileStore: single JSON document on disk, rewritten atomically.
- RedisStore: one Redis string per key, JSON-encoded.
"""

from __future__ import annotations

import json
import logging
import os
import tempfile
from pathlib import Path
from typing import Any, Dict, Optional, Protocol, Type, TypeVar

from pydantic import BaseModel, ValidationError

from app.core.log import log_event
from app.core.settings import LaunchSettings

logger = logging.getLogger("launchgate.storage")

M = TypeVar("M", bound=BaseModel)


class KeyValueStore(Protocol):
    def get(self, key: str) -> Any: ...

    def set(self, key: str, value: Any) -> None: ...

    def remove(self, key: str) -> None: ...


class InMemoryStore:
    def __init__(self, initial: Optional[Dict[str, Any]] = None):
        self._data: Dict[str, Any] = dict(initial or {})

    def get(self, key: str) -> Any:
        return self._data.get(key)

    def set(self, key: str, value: Any) -> None:
        # Round-trip through JSON so in-memory behaves like the durable stores.
        self._data[key] = json.loads(json.dumps(value))

    def remove(self, key: str) -> None:
        self._data.pop(key, None)

    def snapshot(self) -> Dict[str, Any]:
        return dict(self._data)


class JsonFileStore:
    """
    Whole-document JSON store.

    Every write rewrites the full file through a temp file + os.replace so a
    crash mid-write leaves the previous document intact.
    """

    def __init__(self, path: Path):
        self._path = Path(path)
        self._data: Dict[str, Any] = self._read()

    def _read(self) -> Dict[str, Any]:
        if not self._path.exists():
            return {}
        try:
            raw = json.loads(self._path.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as e:
            log_event(logger, "store_unreadable", level=logging.WARNING, path=str(self._path), error=str(e))
            return {}
        if not isinstance(raw, dict):
            log_event(logger, "store_unreadable", level=logging.WARNING, path=str(self._path), error="not a mapping")
            return {}
        return raw

    def _flush(self) -> None:
        self._path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp = tempfile.mkstemp(prefix=self._path.name, dir=str(self._path.parent))
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as fh:
                json.dump(self._data, fh, ensure_ascii=False, indent=2, sort_keys=True)
            os.replace(tmp, self._path)
        except BaseException:
            if os.path.exists(tmp):
                os.unlink(tmp)
            raise

    def get(self, key: str) -> Any:
        return self._data.get(key)

    def set(self, key: str, value: Any) -> None:
        self._data[key] = json.loads(json.dumps(value))
        self._flush()

    def remove(self, key: str) -> None:
        if key in self._data:
            del self._data[key]
            self._flush()


class RedisStore:
    def __init__(self, client: Any, prefix: str = "launchgate:"):
        self._client = client
        self._prefix = prefix

    def _key(self, key: str) -> str:
        return f"{self._prefix}{key}"

    def get(self, key: str) -> Any:
        raw = self._client.get(self._key(key))
        if raw is None:
            return None
        if isinstance(raw, bytes):
            raw = raw.decode("utf-8")
        try:
            return json.loads(raw)
        except json.JSONDecodeError:
            log_event(logger, "store_value_unreadable", level=logging.WARNING, key=key)
            return None

    def set(self, key: str, value: Any) -> None:
        self._client.set(self._key(key), json.dumps(value, ensure_ascii=False))

    def remove(self, key: str) -> None:
        self._client.delete(self._key(key))


def load_model(store: KeyValueStore, key: str, model: Type[M]) -> Optional[M]:
    """Read a typed record; unreadable records count as absent."""
    raw = store.get(key)
    if raw is None:
        return None
    try:
        return model.model_validate(raw)
    except ValidationError as e:
        log_event(logger, "record_invalid", level=logging.WARNING, key=key, errors=e.error_count())
        return None


def save_model(store: KeyValueStore, key: str, value: Optional[BaseModel]) -> None:
    if value is None:
        store.remove(key)
    else:
        store.set(key, value.model_dump(mode="json"))


def build_store(settings: LaunchSettings) -> KeyValueStore:
    if settings.storage_backend == "memory":
        return InMemoryStore()
    if settings.storage_backend == "redis":
        from app.services.redis_client import get_redis

        return RedisStore(get_redis(settings.redis_url), prefix=settings.redis_key_prefix)
    return JsonFileStore(Path(settings.storage_path))
