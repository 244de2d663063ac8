"""The DataLens service catalog.

Ranks: data stores (10s), application services (20s), proxy (last).
"""
from __future__ import annotations

import os

from .runtime import HealthCheck, NetworkDescriptor, PortBinding, ServiceSpec, VolumeMount
from .settings import Settings

# Archives published to the blob store, one `<name>.tar` each.
APP_IMAGES = (
    "backend-datalens-api",
    "backend-datalens-ui",
    "frontend-react-app-dev",
    "nginx-reverse-proxy",
)

PROXY_RANK = 100


def image_ref(settings: Settings, name: str, tag: str = "latest") -> str:
    return f"{settings.registry}/{name}:{tag}"


def network(settings: Settings) -> NetworkDescriptor:
    return NetworkDescriptor(name=settings.docker_network)


def data_stores(settings: Settings) -> list[ServiceSpec]:
    net = settings.docker_network
    return [
        ServiceSpec(
            name="postgres",
            image="postgres:latest",
            network=net,
            rank=10,
            ports=(PortBinding(5431, 5432),),
            volumes=(VolumeMount("postgres_data", "/var/lib/postgresql/data"),),
            env_file=settings.env_path,
            healthcheck=HealthCheck('pg_isready -U "$POSTGRES_USER"'),
            required_env=("POSTGRES_USER", "POSTGRES_PASSWORD"),
        ),
        ServiceSpec(
            name="rabbitmq",
            image="rabbitmq:management",
            network=net,
            rank=11,
            ports=(PortBinding(5672, 5672), PortBinding(15672, 15672)),
            env_file=settings.env_path,
            healthcheck=HealthCheck("rabbitmqctl status"),
        ),
        ServiceSpec(
            name="elasticsearch",
            image="docker.elastic.co/elasticsearch/elasticsearch-oss:7.10.2",
            network=net,
            rank=12,
            ports=(PortBinding(9200, 9200), PortBinding(9300, 9300)),
            volumes=(VolumeMount("elasticsearch_data", "/usr/share/elasticsearch/data"),),
            env_file=settings.env_path,
            environment={"discovery.type": "single-node", "ES_JAVA_OPTS": "-Xms512m -Xmx512m"},
            healthcheck=HealthCheck("curl -f http://localhost:9200"),
        ),
    ]


def applications(settings: Settings) -> list[ServiceSpec]:
    net = settings.docker_network
    data = settings.data_dir
    return [
        ServiceSpec(
            name="datalens-api",
            image=image_ref(settings, "backend-datalens-api"),
            network=net,
            rank=20,
            ports=(PortBinding(8000, 8000),),
            volumes=(VolumeMount(data, "/app/data"),),
            env_file=settings.env_path,
        ),
        ServiceSpec(
            name="datalens-ui",
            image=image_ref(settings, "backend-datalens-ui"),
            network=net,
            rank=21,
            ports=(PortBinding(8501, 8501),),
            volumes=tuple(
                VolumeMount(os.path.join(data, sub), f"/app/data/{sub}")
                for sub in ("pdf", "txt", "csv", "vectorstore")
            ),
            env_file=settings.env_path,
        ),
        ServiceSpec(
            name="react-app-dev",
            image=image_ref(settings, "frontend-react-app-dev"),
            network=net,
            rank=22,
            ports=(PortBinding(3000, 3000),),
            volumes=(VolumeMount("react-app-dev-node_modules", "/frontend/node_modules"),),
            env_file=settings.env_path,
            environment={"NODE_ENV": "development", "CHOKIDAR_USEPOLLING": "true"},
        ),
    ]


def proxy(settings: Settings) -> ServiceSpec:
    return ServiceSpec(
        name="reverse-proxy",
        image=image_ref(settings, "nginx-reverse-proxy"),
        network=settings.docker_network,
        rank=PROXY_RANK,
        ports=(PortBinding(80, 80), PortBinding(443, 443)),
        volumes=(VolumeMount(settings.cert_dir, "/etc/nginx/certs", "ro"),),
    )


def backing_services(settings: Settings) -> list[ServiceSpec]:
    """Everything the proxy routes to, in start order."""
    return data_stores(settings) + applications(settings)


def required_env(settings: Settings) -> set[str]:
    keys: set[str] = set()
    for spec in backing_services(settings) + [proxy(settings)]:
        keys.update(spec.required_env)
    return keys
