import itertools
import os
import re
import sys

# Ensure project root is importable (so `import cli` works without installing)
_project_root = os.path.dirname(os.path.dirname(__file__))
if _project_root not in sys.path:
    sys.path.insert(0, _project_root)

import pytest
import requests
from docker.errors import APIError, DockerException, ImageNotFound, NotFound

from dlprov.runtime import CommandResult
from dlprov.settings import Settings

_ids = itertools.count(1)


class FakeContainer:
    def __init__(self, owner, name, image, status="running", health=None, **kwargs):
        self._owner = owner
        self.id = f"{next(_ids):064x}"
        self.name = name
        self.image = image
        self.status = status
        self.kwargs = kwargs
        self.attrs = {"State": {"Health": {"Status": health}} if health else {}}

    def reload(self):
        pass

    def remove(self, force=False):
        if self.status == "running" and not force:
            raise APIError("container is running")
        self._owner.items.remove(self)


class FakeContainers:
    def __init__(self):
        self.items: list[FakeContainer] = []
        self.runs: list[tuple[str, dict]] = []
        self.missing_images: set[str] = set()
        self.busy_ports: set[int] = set()

    def list(self, all=False, filters=None):
        out = [c for c in self.items if all or c.status == "running"]
        pattern = (filters or {}).get("name")
        if pattern:
            out = [c for c in out if re.search(pattern, c.name)]
        return out

    def get(self, key):
        for c in self.items:
            if key in (c.id, c.name):
                return c
        raise NotFound(f"No such container: {key}")

    def run(self, image, **kwargs):
        name = kwargs.get("name")
        if any(c.name == name for c in self.items):
            raise APIError(f'Conflict. The container name "/{name}" is already in use')
        if image in self.missing_images:
            raise ImageNotFound(f"No such image: {image}")
        for host_port in (kwargs.get("ports") or {}).values():
            if host_port in self.busy_ports:
                raise APIError(f"Bind for 0.0.0.0:{host_port} failed: port is already allocated")
        self.runs.append((image, kwargs))
        health = "starting" if kwargs.get("healthcheck") else None
        c = FakeContainer(self, name, image, health=health, **{k: v for k, v in kwargs.items() if k != "name"})
        self.items.append(c)
        return c

    def add(self, name, image="old:latest", status="running"):
        c = FakeContainer(self, name, image, status=status)
        self.items.append(c)
        return c

    def named(self, name):
        return [c for c in self.items if c.name == name]


class FakeNetwork:
    def __init__(self, name):
        self.name = name


class FakeNetworks:
    def __init__(self):
        self.items: list[FakeNetwork] = []
        self.create_calls = 0
        self.fail_create = False

    def list(self, names=None):
        if names:
            return [n for n in self.items if any(x in n.name for x in names)]
        return list(self.items)

    def create(self, name, driver=None):
        self.create_calls += 1
        if self.fail_create:
            raise APIError("network create failed")
        n = FakeNetwork(name)
        self.items.append(n)
        return n


class FakeImage:
    def __init__(self, tags):
        self.tags = tags


class FakeImages:
    """`load` reads the archive body as the image tag it contains."""

    def __init__(self):
        self.items: list[FakeImage] = []
        self.loaded: list[str] = []

    def load(self, data):
        tag = data.read().decode().strip()
        if not tag:
            return []
        self.loaded.append(tag)
        img = FakeImage([tag])
        self.items.append(img)
        return [img]

    def list(self):
        return list(self.items)


class FakeDockerClient:
    def __init__(self):
        self.containers = FakeContainers()
        self.networks = FakeNetworks()
        self.images = FakeImages()
        self.logins: list[tuple[str, str]] = []
        self.calls = 0
        self.alive = True

    def ping(self):
        self.calls += 1
        if not self.alive:
            raise DockerException("Cannot connect to the Docker daemon")
        return True

    def login(self, username, password, registry=None):
        self.logins.append((registry, username))
        return {"Status": "Login Succeeded"}


class FakeResponse:
    def __init__(self, body: bytes, status_code: int = 200, fail_midway: bool = False):
        self._body = body
        self.status_code = status_code
        self._fail_midway = fail_midway

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        return False

    @property
    def content(self):
        return self._body

    def raise_for_status(self):
        if self.status_code >= 400:
            raise requests.HTTPError(f"{self.status_code} Error")

    def iter_content(self, chunk_size=1):
        yield self._body[: len(self._body) // 2]
        if self._fail_midway:
            raise requests.ConnectionError("connection reset")
        yield self._body[len(self._body) // 2:]


class FakeSession:
    """Serves `<image>.tar` archives whose body is the registry tag."""

    def __init__(self, registry="datalens.azurecr.io"):
        self.registry = registry
        self.requested: list[str] = []
        self.fail_midway: set[str] = set()
        self.not_found: set[str] = set()

    def get(self, url, stream=False, timeout=None):
        self.requested.append(url)
        image = url.split("?")[0].rsplit("/", 1)[-1].removesuffix(".tar")
        if image in self.not_found:
            return FakeResponse(b"", status_code=404)
        body = f"{self.registry}/{image}:latest".encode()
        return FakeResponse(body, fail_midway=image in self.fail_midway)


class FakeRunner:
    def __init__(self):
        self.calls: list[tuple[str, ...]] = []
        self.failures: dict[tuple[str, ...], CommandResult] = {}

    def fail(self, *prefix, returncode=1, stderr="boom"):
        self.failures[prefix] = CommandResult(args=prefix, returncode=returncode, stderr=stderr)

    def __call__(self, *args, input_bytes=None, timeout=None):
        self.calls.append(args)
        for prefix, result in self.failures.items():
            if args[: len(prefix)] == prefix:
                return result
        return CommandResult(args=args, returncode=0)

    def called(self, *prefix):
        return any(c[: len(prefix)] == prefix for c in self.calls)


class FakeVault:
    def __init__(self, secrets: dict[str, str], vault_name="datalensvm-kv"):
        self.secrets = secrets
        self.vault_name = vault_name
        self.reads: list[str] = []

    def list_names(self):
        return list(self.secrets)

    def get(self, name):
        self.reads.append(name)
        return self.secrets[name]


@pytest.fixture
def docker_client():
    return FakeDockerClient()


@pytest.fixture
def session():
    return FakeSession()


@pytest.fixture
def runner():
    return FakeRunner()


@pytest.fixture
def settings(tmp_path):
    return Settings(root=str(tmp_path / "datalens"), log_to_stderr=False)

