from __future__ import annotations

import os
import tempfile
from typing import Iterable

from .errors import MaterializationError, MissingRequiredSecret
from .eventlog import log_event
from .runtime import EnvironmentSet, SecretEntry


def build_environment(entries: Iterable[SecretEntry], required: Iterable[str] = ()) -> EnvironmentSet:
    env = EnvironmentSet.from_entries(list(entries))
    for key in required:
        if not env.get(key):
            raise MissingRequiredSecret(f"Required variable {key} never resolved", resource=key)
    for key, value in env.items():
        if "\n" in value or "\r" in value:
            raise MaterializationError(f"Value of {key} spans multiple lines", resource=key)
    return env


def write_env_file(entries: Iterable[SecretEntry], path: str, required: Iterable[str] = ()) -> EnvironmentSet:
    """Replace `path` with one KEY=VALUE line per entry.

    The content goes to a temp file in the same directory which is renamed over
    the target, so readers see either the old file or the complete new one.
    """
    env = build_environment(entries, required)

    parent = os.path.dirname(path) or "."
    os.makedirs(parent, exist_ok=True)
    fd, tmp_path = tempfile.mkstemp(dir=parent, prefix=".env.", suffix=".tmp")
    try:
        with os.fdopen(fd, "w", encoding="utf-8", newline="\n") as f:
            f.write(env.render())
            f.flush()
            os.fsync(f.fileno())
        os.replace(tmp_path, path)
    except OSError as e:
        if os.path.exists(tmp_path):
            os.unlink(tmp_path)
        raise MaterializationError(f"Could not write environment file: {e}", resource=path) from e

    log_event("INFO", f"Wrote {len(env)} vars to {path}")
    return env


def read_env_file(path: str) -> dict[str, str]:
    """Parse KEY=VALUE lines the way `docker run --env-file` does (no unquoting)."""
    env: dict[str, str] = {}
    with open(path, encoding="utf-8") as f:
        for raw in f:
            line = raw.rstrip("\n")
            if not line.strip() or line.lstrip().startswith("#") or "=" not in line:
                continue
            key, value = line.split("=", 1)
            env[key.strip()] = value
    return env
