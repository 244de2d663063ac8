"""Produce the canonical secret set for a run.

Two modes:
  - generated: random internal credentials + caller-supplied external secrets
  - vault: every secret in an Azure Key Vault, with the `change.me`
    placeholder rewritten to the host's public IP
"""
from __future__ import annotations

import os
import secrets
from typing import Callable

from .envfile import read_env_file, write_env_file
from .eventlog import log_event
from .errors import MissingRequiredSecret
from .models import GenerationConfig
from .runtime import SecretEntry, SecretSource
from .settings import settings
from .vault import AzureKeyVault

# 24 random bytes -> 192 bits, hex encoded.
TOKEN_BYTES = 24

INTERNAL_DEFAULTS: dict[str, str] = {
    "POSTGRES_HOST": "postgres",
    "POSTGRES_PORT": "5432",
    "POSTGRES_USER": "datalens",
    "POSTGRES_DB": "datalens",
    "RABBITMQ_HOST": "rabbitmq",
    "RABBITMQ_PORT": "5672",
    "RABBITMQ_DEFAULT_USER": "datalens",
    "ELASTICSEARCH_HOST": "elasticsearch",
    "ELASTICSEARCH_PORT": "9200",
    "API_BASE_URL": "http://datalens-api:8000",
}

GENERATED_CREDENTIALS = ("POSTGRES_PASSWORD", "RABBITMQ_DEFAULT_PASS", "APP_SECRET_KEY")

# config attribute -> variable name
EXTERNAL_REQUIRED = {
    "model_api_key": "MODEL_API_KEY",
    "signing_secret": "SIGNING_SECRET",
    "oauth_client_id": "OAUTH_CLIENT_ID",
}
EXTERNAL_PLAIN = {
    "vm_name": "VM_NAME",
    "admin_username": "ADMIN_USERNAME",
    "model_name": "MODEL_NAME",
}
EXTERNAL_OPTIONAL = {
    "onedrive_client_id": "ONEDRIVE_CLIENT_ID",
    "onedrive_authority": "ONEDRIVE_AUTHORITY",
    "onedrive_redirect_uri": "ONEDRIVE_REDIRECT_URI",
}


def normalize_name(name: str) -> str:
    """Key Vault names are lowercase-with-hyphens; env vars are UPPER_SNAKE."""
    return name.replace("-", "_").upper()


def substitute_placeholder(value: str, public_ip: str, placeholder: str | None = None) -> str:
    return value.replace(placeholder or settings.placeholder, public_ip)


def _stored_credentials(store_path: str | None) -> dict[str, str]:
    if not store_path or not os.path.exists(store_path):
        return {}
    return read_env_file(store_path)


def generate_secrets(
    config: GenerationConfig,
    store_path: str | None = None,
    token: Callable[[int], str] = secrets.token_hex,
) -> list[SecretEntry]:
    """Build the secret set for generation mode.

    Random credentials are minted once and kept in `store_path` so that a rerun
    hands the data stores the same passwords their volumes were initialised with.
    """
    for attr in EXTERNAL_REQUIRED:
        if not getattr(config, attr):
            raise MissingRequiredSecret(f"Required secret '{attr}' was not supplied", resource=attr)

    entries: list[SecretEntry] = []

    def add(name: str, value: str) -> None:
        entries.append(SecretEntry(name=name, value=value, source=SecretSource.GENERATED))

    for name, value in INTERNAL_DEFAULTS.items():
        add(name, value)
    stored = _stored_credentials(store_path)
    minted = []
    for name in GENERATED_CREDENTIALS:
        value = stored.get(name)
        if not value:
            value = token(TOKEN_BYTES)
            minted.append(name)
        add(name, value)
    if store_path and minted:
        write_env_file([e for e in entries if e.name in GENERATED_CREDENTIALS], store_path)

    for attr, name in {**EXTERNAL_REQUIRED, **EXTERNAL_PLAIN}.items():
        value = getattr(config, attr)
        if value:
            add(name, value)
    for attr, name in EXTERNAL_OPTIONAL.items():
        value = getattr(config, attr)
        if value:
            add(name, value)

    log_event("INFO", f"Generated {len(entries)} secret entries ({len(minted)} new random credentials)")
    return entries


def fetch_vault_secrets(
    vault: AzureKeyVault,
    public_ip_lookup: Callable[[], str],
    placeholder: str | None = None,
) -> list[SecretEntry]:
    """Read every secret from the vault and rewrite placeholders.

    The metadata service is queried once, before the first secret is read.
    """
    placeholder = placeholder or settings.placeholder
    public_ip = public_ip_lookup()
    log_event("INFO", f"Public IP is {public_ip}")

    entries: dict[str, SecretEntry] = {}
    for raw_name in vault.list_names():
        value = vault.get(raw_name)
        if not value:
            log_event("WARN", f"Vault secret '{raw_name}' is empty", resource=raw_name)

        is_placeholder = placeholder in value
        if is_placeholder:
            log_event("INFO", f"Replacing placeholder in {raw_name}")
            value = substitute_placeholder(value, public_ip, placeholder)

        name = normalize_name(raw_name)
        if name in entries:
            log_event("WARN", f"Vault secret '{raw_name}' overrides an earlier secret mapped to {name}")
            del entries[name]
        entries[name] = SecretEntry(
            name=name, value=value, source=SecretSource.VAULT, is_placeholder=is_placeholder
        )

    log_event("INFO", f"Fetched {len(entries)} secrets from vault '{vault.vault_name}'")
    return list(entries.values())
