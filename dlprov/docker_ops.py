from __future__ import annotations

import docker
from docker.errors import APIError, DockerException, NotFound

from .errors import HostPreparationError, NetworkProvisionError, RuntimeUnavailable
from .eventlog import log_event
from .runtime import ContainerRef, HostState


def _client() -> docker.DockerClient:
    try:
        return docker.from_env()
    except DockerException as e:
        raise RuntimeUnavailable(f"Docker is not available: {e}") from e


def require_runtime(client: docker.DockerClient | None = None) -> docker.DockerClient:
    """Return a client that has answered a ping, or raise RuntimeUnavailable."""
    c = client or _client()
    try:
        c.ping()
    except DockerException as e:
        raise RuntimeUnavailable(f"Docker daemon did not answer: {e}") from e
    return c


def host_state(client: docker.DockerClient | None = None) -> HostState:
    """Snapshot networks, containers and image tags as the runtime sees them now."""
    c = require_runtime(client)
    try:
        networks = frozenset(n.name for n in c.networks.list())
        containers = {x.name: x.status for x in c.containers.list(all=True)}
        images = frozenset(tag for img in c.images.list() for tag in (img.tags or []))
    except DockerException as e:
        raise RuntimeUnavailable(f"Could not query runtime state: {e}") from e
    return HostState(networks=networks, containers=containers, images=images)


def ensure_network(name: str, client: docker.DockerClient | None = None) -> bool:
    """Create the bridge network `name` unless it already exists.

    Returns True when a network was created.
    """
    c = require_runtime(client)
    try:
        existing = c.networks.list(names=[name])
    except DockerException as e:
        raise RuntimeUnavailable(f"Could not list networks: {e}") from e

    # The name filter is a substring match on the daemon side.
    if any(n.name == name for n in existing):
        log_event("INFO", f"Docker network '{name}' already present")
        return False

    try:
        c.networks.create(name, driver="bridge")
    except APIError as e:
        raise NetworkProvisionError(f"Could not create network: {e.explanation or e}", resource=name) from e
    log_event("INFO", f"Created docker network '{name}'")
    return True


def find_containers(name: str, client: docker.DockerClient | None = None) -> list[ContainerRef]:
    """Running or stopped containers whose name is exactly `name`."""
    c = client or _client()
    try:
        found = c.containers.list(all=True, filters={"name": f"^{name}$"})
    except DockerException as e:
        raise RuntimeUnavailable(f"Could not list containers: {e}") from e
    return [ContainerRef(id=x.id, name=x.name) for x in found if x.name == name]


def remove_container(container_id: str, client: docker.DockerClient | None = None, force: bool = True) -> None:
    c = client or _client()
    try:
        cont = c.containers.get(container_id)
        cont.remove(force=force)
    except NotFound:
        return


def container_status(name: str, client: docker.DockerClient | None = None) -> tuple[str, str | None]:
    """(status, health) of a container; health is None without a healthcheck."""
    c = client or _client()
    try:
        cont = c.containers.get(name)
        cont.reload()
    except NotFound:
        return "missing", None
    health = (cont.attrs.get("State") or {}).get("Health") or {}
    return cont.status, health.get("Status")


def registry_login(registry: str, username: str, password: str, client: docker.DockerClient | None = None) -> None:
    c = require_runtime(client)
    try:
        c.login(username=username, password=password, registry=registry)
    except APIError as e:
        raise HostPreparationError(f"Registry login failed: {e.explanation or e}", resource=registry) from e
    log_event("INFO", f"Logged in to registry {registry} as {username}")
