from __future__ import annotations

from typing import Iterable

import docker
from docker.errors import DockerException

from .docker_ops import container_status
from .errors import RuntimeUnavailable
from .runtime import ServiceSpec


def check_health(spec: ServiceSpec, client: docker.DockerClient | None = None) -> tuple[bool, str]:
    """Report what the runtime currently thinks of a service.

    Returns (is_ok, message). A container without a healthcheck counts as ok
    while running. "starting" is not ok yet but it is not a failure either;
    callers only log this.
    """
    try:
        status, health = container_status(spec.name, client)
    except (DockerException, RuntimeUnavailable) as e:
        return False, f"Error: {type(e).__name__}: {e}"
    if status == "missing":
        return False, "Not created"
    if status != "running":
        return False, f"Container {status}"
    if health is None:
        return True, "Running (no healthcheck)"
    if health == "healthy":
        return True, "Healthy"
    return False, f"Health: {health}"


def health_report(specs: Iterable[ServiceSpec], client: docker.DockerClient | None = None) -> dict[str, dict]:
    report: dict[str, dict] = {}
    for spec in specs:
        ok, msg = check_health(spec, client)
        report[spec.name] = {"ok": ok, "message": msg}
    return report
