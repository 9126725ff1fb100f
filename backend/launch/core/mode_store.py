"""Mode persistence.

Single writer (the orchestrator's commit step), many readers. The two legacy
booleans are kept beside the enum because older builds read them.
"""

from __future__ import annotations

import logging

from app.core.log import log_event
from app.core.storage import KeyValueStore
from launch.core.state import MODE_DETERMINED_KEY, MODE_KEY, WEBVIEW_MODE_KEY, Mode

logger = logging.getLogger("launchgate.mode")


class ModeStore:
    def __init__(self, store: KeyValueStore):
        self._store = store

    @property
    def mode(self) -> Mode:
        raw = self._store.get(MODE_KEY)
        try:
            return Mode(raw)
        except ValueError:
            return Mode.UNDETERMINED

    def commit(self, mode: Mode) -> None:
        previous = self.mode
        self._store.set(MODE_KEY, mode.value)
        if mode == Mode.UNDETERMINED:
            self._store.set(MODE_DETERMINED_KEY, False)
            self._store.set(WEBVIEW_MODE_KEY, False)
        else:
            self._store.set(MODE_DETERMINED_KEY, True)
            self._store.set(WEBVIEW_MODE_KEY, mode == Mode.WEB)
        if previous != mode:
            log_event(logger, "mode_committed", previous=previous.value, mode=mode.value)

    @property
    def is_mode_determined(self) -> bool:
        return bool(self._store.get(MODE_DETERMINED_KEY))

    @property
    def is_web_mode(self) -> bool:
        return bool(self._store.get(WEBVIEW_MODE_KEY))

    def reset(self) -> None:
        self.commit(Mode.UNDETERMINED)
