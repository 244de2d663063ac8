"""Host preparation: packages, Docker Engine, Azure CLI, identities.

Each step checks what is already present first so reruns are cheap.
"""
from __future__ import annotations

import requests

from . import docker_ops
from .commands import Runner, have, run_command
from .errors import HostPreparationError
from .eventlog import log_event
from .settings import Settings

PREREQUISITES = ("ca-certificates", "curl", "apt-transport-https", "lsb-release", "gnupg", "jq")
DOCKER_PACKAGES = (
    "docker-ce",
    "docker-ce-cli",
    "containerd.io",
    "docker-buildx-plugin",
    "docker-compose-plugin",
)

MICROSOFT_KEY_URL = "https://packages.microsoft.com/keys/microsoft.asc"
DOCKER_KEY_URL = "https://download.docker.com/linux/ubuntu/gpg"
MICROSOFT_KEYRING = "/etc/apt/trusted.gpg.d/microsoft.gpg"
DOCKER_KEYRING = "/etc/apt/keyrings/docker.gpg"
AZURE_CLI_LIST = "/etc/apt/sources.list.d/azure-cli.list"
DOCKER_LIST = "/etc/apt/sources.list.d/docker.list"

# Log label for host steps whose failure the run tolerates.
RECOVERABLE = "RecoverableWarning"


class HostPreparer:
    def __init__(self, settings: Settings, runner: Runner = run_command, session: requests.Session | None = None):
        self.settings = settings
        self._run = runner
        self._http = session or requests.Session()

    def _check(self, *args: str, resource: str | None = None) -> str:
        r = self._run(*args)
        if not r.ok:
            raise HostPreparationError(r.diagnostic(), resource=resource or args[0])
        return r.stdout.strip()

    def _apt_install(self, *packages: str) -> None:
        self._check("apt-get", "update", "-qq", resource="apt")
        self._check("apt-get", "install", "-y", "--no-install-recommends", *packages, resource="apt")

    def _install_keyring(self, url: str, keyring: str) -> None:
        try:
            resp = self._http.get(url, timeout=self.settings.http_timeout_s)
            resp.raise_for_status()
        except requests.RequestException as e:
            raise HostPreparationError(f"Could not fetch signing key: {e}", resource=url) from e
        r = self._run("gpg", "--batch", "--yes", "--dearmor", "-o", keyring, input_bytes=resp.content)
        if not r.ok:
            raise HostPreparationError(r.diagnostic(), resource=keyring)

    def _write_source(self, path: str, line: str) -> None:
        try:
            with open(path, "w", encoding="utf-8") as f:
                f.write(line + "\n")
        except OSError as e:
            raise HostPreparationError(f"Could not write apt source: {e}", resource=path) from e

    def install_prerequisites(self) -> None:
        self._apt_install(*PREREQUISITES)

    def install_azure_cli(self) -> None:
        if have("az"):
            log_event("INFO", "Azure CLI already installed")
            return
        self._install_keyring(MICROSOFT_KEY_URL, MICROSOFT_KEYRING)
        codename = self._check("lsb_release", "-cs")
        self._write_source(
            AZURE_CLI_LIST,
            f"deb [arch=amd64] https://packages.microsoft.com/repos/azure-cli/ {codename} main",
        )
        self._apt_install("azure-cli")
        log_event("INFO", "Installed Azure CLI")

    def install_docker(self) -> None:
        if have("docker"):
            log_event("INFO", "Docker already installed")
            return
        self._check("mkdir", "-p", "/etc/apt/keyrings")
        self._install_keyring(DOCKER_KEY_URL, DOCKER_KEYRING)
        arch = self._check("dpkg", "--print-architecture")
        codename = self._check("lsb_release", "-cs")
        self._write_source(
            DOCKER_LIST,
            f"deb [arch={arch} signed-by={DOCKER_KEYRING}] https://download.docker.com/linux/ubuntu {codename} stable",
        )
        self._apt_install(*DOCKER_PACKAGES)
        log_event("INFO", "Installed Docker Engine")

    def add_docker_group(self, username: str | None) -> bool:
        """Best effort: a failure here is logged and the run continues."""
        if not username:
            return False
        r = self._run("usermod", "-aG", "docker", username)
        if not r.ok:
            log_event(
                "WARN",
                f"{RECOVERABLE}: could not add user to docker group: {r.diagnostic()}",
                resource=username,
            )
            return False
        log_event("INFO", "Added user to docker group", resource=username)
        return True

    def azure_login(self) -> None:
        self._check("az", "login", "--identity", "--output", "none", resource="az login")
        log_event("INFO", "Logged in to Azure with the managed identity")

    def registry_login(self, username: str | None, password: str | None, client=None) -> None:
        if username and password:
            docker_ops.registry_login(self.settings.registry, username, password, client)
            return
        self._check("az", "acr", "login", "--name", self.settings.registry_name, resource=self.settings.registry)
        log_event("INFO", f"Logged in to registry {self.settings.registry} via managed identity")

    def clean_apt_cache(self) -> None:
        r = self._run("apt-get", "clean")
        if not r.ok:
            log_event("WARN", f"apt-get clean failed: {r.diagnostic()}")

    def prepare(
        self,
        admin_username: str | None,
        registry_username: str | None,
        registry_password: str | None,
        install_packages: bool = True,
        client=None,
    ) -> None:
        if install_packages:
            self.install_prerequisites()
            self.install_azure_cli()
            self.install_docker()
            self.clean_apt_cache()
        else:
            log_event("INFO", "Package installation skipped")
        self.add_docker_group(admin_username)
        self.azure_login()
        self.registry_login(registry_username, registry_password, client)
