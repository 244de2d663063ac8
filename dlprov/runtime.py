from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum


class SecretSource(str, Enum):
    GENERATED = "generated"
    VAULT = "vault"


@dataclass(frozen=True)
class SecretEntry:
    name: str
    value: str
    source: SecretSource
    is_placeholder: bool = False


class EnvironmentSet(dict):
    """Ordered VARIABLE -> value mapping built once per run."""

    @classmethod
    def from_entries(cls, entries: list[SecretEntry]) -> "EnvironmentSet":
        env = cls()
        for e in entries:
            env[e.name] = e.value
        return env

    def render(self) -> str:
        return "".join(f"{k}={v}\n" for k, v in self.items())


@dataclass(frozen=True)
class HealthCheck:
    command: str
    interval_s: int = 10
    timeout_s: int = 5
    retries: int = 5

    def to_docker(self) -> dict:
        # Docker expects durations in nanoseconds.
        return {
            "test": ["CMD-SHELL", self.command],
            "interval": self.interval_s * 1_000_000_000,
            "timeout": self.timeout_s * 1_000_000_000,
            "retries": self.retries,
        }


@dataclass(frozen=True)
class PortBinding:
    host: int
    container: int
    protocol: str = "tcp"


@dataclass(frozen=True)
class VolumeMount:
    source: str  # host path (absolute) or named volume
    target: str
    mode: str = "rw"


@dataclass(frozen=True)
class ServiceSpec:
    name: str
    image: str
    network: str
    rank: int
    ports: tuple[PortBinding, ...] = ()
    volumes: tuple[VolumeMount, ...] = ()
    env_file: str | None = None
    environment: dict[str, str] = field(default_factory=dict)
    healthcheck: HealthCheck | None = None
    required_env: tuple[str, ...] = ()


@dataclass(frozen=True)
class NetworkDescriptor:
    name: str


@dataclass(frozen=True)
class ArtifactRef:
    image_name: str
    source_url: str
    local_path: str


@dataclass(frozen=True)
class ContainerRef:
    id: str
    name: str


@dataclass(frozen=True)
class HostState:
    """Point-in-time view of the container runtime. Never reuse across steps."""

    networks: frozenset[str]
    containers: dict[str, str]  # name -> status
    images: frozenset[str]

    def has_network(self, name: str) -> bool:
        return name in self.networks

    def has_container(self, name: str) -> bool:
        return name in self.containers


@dataclass(frozen=True)
class CommandResult:
    args: tuple[str, ...]
    returncode: int
    stdout: str = ""
    stderr: str = ""

    @property
    def ok(self) -> bool:
        return self.returncode == 0

    def diagnostic(self) -> str:
        detail = (self.stderr or self.stdout).strip()
        return f"`{' '.join(self.args)}` exited {self.returncode}: {detail or 'no output'}"
