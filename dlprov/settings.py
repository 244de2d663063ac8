from __future__ import annotations

import os
from dataclasses import dataclass


def _env_bool(name: str, default: bool = False) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in {"1", "true", "yes", "y", "on"}


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None:
        return default
    try:
        return int(raw)
    except ValueError:
        return default


@dataclass(frozen=True)
class Settings:
    # Host layout
    root: str = os.getenv("DLP_ROOT", "/opt/datalens")
    docker_network: str = os.getenv("DLP_DOCKER_NETWORK", "datalens-network")

    # Registry that the loaded image archives are tagged for
    registry: str = os.getenv("DLP_REGISTRY", "datalens.azurecr.io")
    registry_name: str = os.getenv("DLP_REGISTRY_NAME", "datalens")

    # Secret resolution
    metadata_url: str = os.getenv(
        "DLP_METADATA_URL",
        "http://169.254.169.254/metadata/instance/network/interface?api-version=2021-02-01&format=json",
    )
    placeholder: str = os.getenv("DLP_PLACEHOLDER", "change.me")

    # Timeouts (seconds)
    http_timeout_s: int = _env_int("DLP_HTTP_TIMEOUT_S", 10)
    download_timeout_s: int = _env_int("DLP_DOWNLOAD_TIMEOUT_S", 300)
    command_timeout_s: int = _env_int("DLP_COMMAND_TIMEOUT_S", 900)

    # TLS
    cert_days: int = _env_int("DLP_CERT_DAYS", 365)

    # Echo the install log to stderr as well as the file.
    log_to_stderr: bool = _env_bool("DLP_LOG_TO_STDERR", True)

    @property
    def log_path(self) -> str:
        return os.path.join(self.root, "logs", "install.log")

    @property
    def env_path(self) -> str:
        return os.path.join(self.root, ".env")

    @property
    def generated_secrets_path(self) -> str:
        return os.path.join(self.root, ".generated-secrets")

    @property
    def lock_path(self) -> str:
        return os.path.join(self.root, ".provision.lock")

    @property
    def data_dir(self) -> str:
        return os.path.join(self.root, "data")

    @property
    def frontend_images_dir(self) -> str:
        return os.path.join(self.root, "frontend_images")

    @property
    def artifacts_dir(self) -> str:
        return os.path.join(self.root, "artifacts")

    @property
    def nginx_dir(self) -> str:
        return os.path.join(self.root, "nginx")

    @property
    def nginx_conf_path(self) -> str:
        return os.path.join(self.nginx_dir, "nginx.conf")

    @property
    def cert_dir(self) -> str:
        return os.path.join(self.nginx_dir, "certs")

    def layout_dirs(self) -> list[str]:
        """Directories that must exist before services are started."""
        data_subdirs = [os.path.join(self.data_dir, d) for d in ("pdf", "txt", "csv", "vectorstore")]
        return [
            os.path.dirname(self.log_path),
            *data_subdirs,
            self.frontend_images_dir,
            self.artifacts_dir,
            self.nginx_dir,
            self.cert_dir,
        ]


settings = Settings()
