from __future__ import annotations

import os
import traceback
from contextlib import ExitStack, contextmanager
from enum import Enum
from functools import partial
from typing import Callable, Iterator, Union

import docker
import requests

from . import stack
from .artifacts import fetch_images
from .certs import generate_self_signed, write_nginx_conf
from .commands import Runner, run_command
from .docker_ops import ensure_network, require_runtime
from .envfile import write_env_file
from .errors import ProvisionError
from .eventlog import SUCCESS_MARKER, configure, log_event
from .health import health_report
from .install import HostPreparer
from .lock import run_lock
from .models import GenerationConfig, VaultConfig
from .reconciler import ordered, reconcile
from .runtime import SecretEntry
from .secret_resolver import fetch_vault_secrets, generate_secrets
from .settings import Settings, settings as default_settings
from .vault import AzureKeyVault, fetch_public_ip

RunConfig = Union[GenerationConfig, VaultConfig]


class Step(str, Enum):
    INIT = "Init"
    HOST_PREPARED = "HostPrepared"
    NETWORK_READY = "NetworkReady"
    SECRETS_RESOLVED = "SecretsResolved"
    ENV_MATERIALIZED = "EnvMaterialized"
    IMAGES_FETCHED = "ImagesFetched"
    SERVICES_RECONCILED = "ServicesReconciled"
    CERTS_PROVISIONED = "CertsProvisioned"
    PROXY_RECONCILED = "ProxyReconciled"
    DONE = "Done"
    FAILED = "Failed"


def _location(exc: BaseException) -> str:
    frames = traceback.extract_tb(exc.__traceback__)
    if not frames:
        return "unknown"
    last = frames[-1]
    return f"{os.path.basename(last.filename)}:{last.lineno}"


class Driver:
    """Runs the provisioning pipeline once, front to back.

    The sequence is linear. The first failing step ends the run with exit code
    1; nothing is rolled back, a rerun converges instead.
    """

    def __init__(
        self,
        config: RunConfig,
        settings: Settings = default_settings,
        client: docker.DockerClient | None = None,
        vault: AzureKeyVault | None = None,
        public_ip_lookup: Callable[[], str] | None = None,
        runner: Runner = run_command,
        session: requests.Session | None = None,
        install_packages: bool = True,
    ):
        self.config = config
        self.settings = settings
        self.client = client
        self.vault = vault
        self.public_ip_lookup = public_ip_lookup
        self.runner = runner
        self.session = session
        self.install_packages = install_packages

        self.state = Step.INIT
        self.history: list[Step] = []

    @contextmanager
    def _step(self, step: Step, resource: str | None = None) -> Iterator[None]:
        self.state = step
        log_event("INFO", "started", step=step.value, resource=resource)
        try:
            yield
        except ProvisionError as e:
            e.step = e.step or step.value
            e.resource = e.resource or resource
            raise
        self.history.append(step)
        log_event("INFO", "ok", step=step.value, resource=resource)

    def run(self) -> int:
        configure(self.settings.log_path, self.settings.log_to_stderr)
        log_event("INFO", f"Provisioning run started (mode={self.config.mode}, root={self.settings.root})")
        try:
            with ExitStack() as held:
                with self._step(Step.INIT):
                    self.config.require()
                    held.enter_context(run_lock(self.settings.lock_path))
                    self._prepare_layout()
                self._pipeline()
        except ProvisionError as e:
            return self._fail(e, e.step or self.state.value, e.resource)
        except Exception as e:
            return self._fail(e, self.state.value, None)

        self.state = Step.DONE
        log_event("INFO", SUCCESS_MARKER)
        return 0

    def _fail(self, exc: BaseException, step: str, resource: str | None) -> int:
        self.state = Step.FAILED
        log_event(
            "ERROR",
            f"FAILED: {type(exc).__name__}: {exc} (at {_location(exc)})",
            step=step,
            resource=resource,
        )
        return 1

    def _prepare_layout(self) -> None:
        for d in self.settings.layout_dirs():
            os.makedirs(d, exist_ok=True)

    def _pipeline(self) -> None:
        cfg = self.config
        s = self.settings

        with self._step(Step.HOST_PREPARED):
            HostPreparer(s, self.runner, self.session).prepare(
                admin_username=cfg.admin_username,
                registry_username=cfg.registry_username,
                registry_password=cfg.registry_password,
                install_packages=self.install_packages,
                client=self.client,
            )

        net = stack.network(s)
        with self._step(Step.NETWORK_READY, net.name):
            client = require_runtime(self.client)
            ensure_network(net.name, client)

        with self._step(Step.SECRETS_RESOLVED):
            entries = self._resolve_secrets()

        with self._step(Step.ENV_MATERIALIZED, s.env_path):
            write_env_file(entries, s.env_path, required=sorted(stack.required_env(s)))

        with self._step(Step.IMAGES_FETCHED):
            fetch_images(stack.APP_IMAGES, cfg.blob_base_url, s.artifacts_dir, client, self.session)

        with self._step(Step.SERVICES_RECONCILED):
            backing = ordered(stack.backing_services(s))
            for spec in backing:
                reconcile(spec, client)
            for name, st in health_report(backing, client).items():
                log_event("INFO" if st["ok"] else "WARN", f"health so far: {st['message']}", resource=name)

        with self._step(Step.CERTS_PROVISIONED, s.cert_dir):
            generate_self_signed(s.cert_dir, days=s.cert_days)
            write_nginx_conf(s.nginx_conf_path)

        proxy = stack.proxy(s)
        with self._step(Step.PROXY_RECONCILED, proxy.name):
            reconcile(proxy, client)

    def _resolve_secrets(self) -> list[SecretEntry]:
        if isinstance(self.config, GenerationConfig):
            return generate_secrets(self.config, self.settings.generated_secrets_path)
        vault = self.vault or AzureKeyVault(self.config.vault_name, self.runner)
        lookup = self.public_ip_lookup or partial(fetch_public_ip, self.settings.metadata_url, self.settings.http_timeout_s)
        return fetch_vault_secrets(vault, lookup, self.settings.placeholder)
