from __future__ import annotations

import argparse
import dataclasses
import json
import os
import sys

from pydantic import ValidationError

from dlprov import stack
from dlprov.docker_ops import host_state
from dlprov.driver import Driver
from dlprov.errors import ProvisionError
from dlprov.health import health_report
from dlprov.models import GenerationConfig, VaultConfig
from dlprov.settings import Settings, settings as default_settings

GENERATE_ARGS = (
    "vm_name",
    "admin_username",
    "oauth_client_id",
    "onedrive_client_id",
    "onedrive_authority",
    "onedrive_redirect_uri",
    "model_api_key",
    "model_name",
    "signing_secret",
    "blob_base_url",
    "registry_username",
    "registry_password",
)
VAULT_ARGS = ("vault_name", "blob_base_url", "registry_username", "registry_password")


def _print(obj) -> None:
    print(json.dumps(obj, indent=2, ensure_ascii=False))


def build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(description="DataLens host provisioner")
    p.add_argument("--root", help="Install root (default: $DLP_ROOT or /opt/datalens)")
    p.add_argument("--network", help="Docker network name (default: $DLP_DOCKER_NETWORK or datalens-network)")
    sub = p.add_subparsers(dest="cmd", required=True)

    s_gen = sub.add_parser("generate", help="Provision with locally generated secrets")
    # Every positional is optional at parse time; pass "" to skip one.
    # Missing required values are reported as MissingRequiredSecret.
    for name in GENERATE_ARGS:
        s_gen.add_argument(name, nargs="?", default=None)
    s_gen.add_argument("--skip-install", action="store_true", help="Do not install packages")

    s_vault = sub.add_parser("vault", help="Provision with secrets from Azure Key Vault")
    for name in VAULT_ARGS:
        s_vault.add_argument(name, nargs="?", default=None)
    s_vault.add_argument("--admin-username", default=None, help="User to add to the docker group")
    s_vault.add_argument("--skip-install", action="store_true", help="Do not install packages")

    sub.add_parser("status", help="Show runtime state and health of the stack")
    return p


def _settings(args: argparse.Namespace) -> Settings:
    overrides = {}
    if args.root:
        overrides["root"] = os.path.abspath(args.root)
    if args.network:
        overrides["docker_network"] = args.network
    return dataclasses.replace(default_settings, **overrides) if overrides else default_settings


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    settings = _settings(args)

    if args.cmd == "status":
        try:
            state = host_state()
        except ProvisionError as e:
            _print({"available": False, "error": str(e)})
            return 1
        specs = stack.backing_services(settings) + [stack.proxy(settings)]
        _print(
            {
                "available": True,
                "network": state.has_network(settings.docker_network),
                "containers": {s.name: state.containers.get(s.name, "missing") for s in specs},
                "health": health_report(specs),
            }
        )
        return 0

    try:
        if args.cmd == "generate":
            config = GenerationConfig(**{name: getattr(args, name) for name in GENERATE_ARGS})
        else:
            config = VaultConfig(
                admin_username=args.admin_username,
                **{name: getattr(args, name) for name in VAULT_ARGS},
            )
    except ValidationError as e:
        print(f"error: {e}", file=sys.stderr)
        return 2

    return Driver(config, settings, install_packages=not args.skip_install).run()


if __name__ == "__main__":
    raise SystemExit(main(sys.argv[1:]))
