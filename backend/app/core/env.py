"""`.env` support for local runs.

Only fills gaps: a variable that is already set in the process environment
always wins over the file.
"""

from __future__ import annotations

import os
from pathlib import Path

ENV_FILE_VAR = "LAUNCH_ENV_FILE"


def _parse_env_line(line: str) -> tuple[str, str] | None:
    line = line.strip()
    if not line or line.startswith("#"):
        return None
    if line.startswith("export "):
        line = line[len("export "):].lstrip()
    key, sep, value = line.partition("=")
    key = key.strip()
    if not sep or not key:
        return None

    value = value.strip()
    if len(value) >= 2 and value[0] == value[-1] and value[0] in ("'", '"'):
        return key, value[1:-1]
    # Unquoted values may carry a trailing comment: KEY=value  # note
    hash_at = value.find(" #")
    if hash_at != -1:
        value = value[:hash_at].rstrip()
    return key, value


def read_env_file(path: Path) -> dict[str, str]:
    values: dict[str, str] = {}
    for raw in path.read_text(encoding="utf-8").splitlines():
        parsed = _parse_env_line(raw)
        if parsed:
            values[parsed[0]] = parsed[1]
    return values


def env_candidates() -> list[Path]:
    """`$LAUNCH_ENV_FILE` if set, else repo root `.env` then `backend/.env`."""
    explicit = os.environ.get(ENV_FILE_VAR)
    if explicit:
        return [Path(explicit)]
    # backend/app/core/env.py -> repo root
    repo_root = Path(__file__).resolve().parents[3]
    return [repo_root / ".env", repo_root / "backend" / ".env"]


def load_env_if_present(*, override: bool = False, paths: list[Path] | None = None) -> list[Path]:
    """Load .env files into the process environment; returns the files read."""
    loaded: list[Path] = []
    for p in paths if paths is not None else env_candidates():
        if not p.is_file():
            continue
        try:
            values = read_env_file(p)
        except OSError:
            continue
        loaded.append(p)
        for k, v in values.items():
            if override or k not in os.environ:
                os.environ[k] = v
    return loaded
