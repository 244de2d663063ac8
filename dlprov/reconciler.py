from __future__ import annotations

from typing import Iterable

import docker
from docker.errors import APIError, DockerException, ImageNotFound

from .docker_ops import _client, find_containers, remove_container
from .envfile import read_env_file
from .errors import ServiceStartError
from .eventlog import log_event
from .runtime import ContainerRef, ServiceSpec


def _environment(spec: ServiceSpec) -> dict[str, str]:
    """Env file contents overlaid with the service's inline values.

    The file is read on every call; nothing is cached between services.
    """
    env: dict[str, str] = {}
    if spec.env_file:
        try:
            env.update(read_env_file(spec.env_file))
        except OSError as e:
            raise ServiceStartError(f"Cannot read env file {spec.env_file}: {e}", resource=spec.name) from e
    env.update(spec.environment)
    missing = [k for k in spec.required_env if not env.get(k)]
    if missing:
        raise ServiceStartError(f"Environment is missing {', '.join(missing)}", resource=spec.name)
    return env


def _run_kwargs(spec: ServiceSpec) -> dict:
    kwargs: dict = {
        "detach": True,
        "name": spec.name,
        "network": spec.network,
        "environment": _environment(spec),
        "ports": {f"{p.container}/{p.protocol}": p.host for p in spec.ports},
        "volumes": {v.source: {"bind": v.target, "mode": v.mode} for v in spec.volumes},
        # Health is polled by the runtime; we do not restart containers ourselves.
        "restart_policy": {"Name": "no"},
    }
    if spec.healthcheck is not None:
        kwargs["healthcheck"] = spec.healthcheck.to_docker()
    return kwargs


def reconcile(spec: ServiceSpec, client: docker.DockerClient | None = None) -> ContainerRef:
    """Replace whatever container holds `spec.name` with a fresh one built from `spec`.

    Existing instances are always removed (running or stopped); configuration
    drift is never patched in place. Returns once the new container has been
    created and started, without waiting for it to become healthy.
    """
    c = client or _client()

    for old in find_containers(spec.name, c):
        try:
            remove_container(old.id, c, force=True)
        except DockerException as e:
            raise ServiceStartError(f"Could not remove stale container {old.id[:12]}: {e}", resource=spec.name) from e
        log_event("INFO", f"Removed stale container {old.id[:12]}", resource=spec.name)

    kwargs = _run_kwargs(spec)
    try:
        container = c.containers.run(spec.image, **kwargs)
    except ImageNotFound as e:
        raise ServiceStartError(f"Image not found: {spec.image}", resource=spec.name) from e
    except APIError as e:
        # Port conflicts and mount failures surface here.
        raise ServiceStartError(f"Start failed: {e.explanation or e}", resource=spec.name) from e
    except DockerException as e:
        raise ServiceStartError(f"Start failed: {type(e).__name__}: {e}", resource=spec.name) from e

    log_event("INFO", f"Started container from image {spec.image}", resource=spec.name)
    return ContainerRef(id=container.id, name=spec.name)


def ordered(specs: Iterable[ServiceSpec]) -> list[ServiceSpec]:
    """Strictly by rank; equal ranks keep their declared order."""
    return sorted(specs, key=lambda s: s.rank)

