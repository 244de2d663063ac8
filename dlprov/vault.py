from __future__ import annotations

import httpx

from .commands import Runner, run_command
from .errors import PublicIPUnavailable, VaultError
from .settings import settings


class AzureKeyVault:
    """Read-only Key Vault access through the `az` CLI.

    The CLI must already be logged in (managed identity, see install.py).
    """

    def __init__(self, vault_name: str, runner: Runner = run_command):
        self.vault_name = vault_name
        self._run = runner

    def list_names(self) -> list[str]:
        r = self._run(
            "az", "keyvault", "secret", "list",
            "--vault-name", self.vault_name,
            "--query", "[].name",
            "-o", "tsv",
        )
        if not r.ok:
            raise VaultError(f"Could not list secrets: {r.diagnostic()}", resource=self.vault_name)
        return [line.strip() for line in r.stdout.splitlines() if line.strip()]

    def get(self, name: str) -> str:
        r = self._run(
            "az", "keyvault", "secret", "show",
            f"--vault-name={self.vault_name}",
            f"--name={name}",
            "--query", "value",
            "-o", "tsv",
        )
        if not r.ok:
            raise VaultError(f"Could not read secret: {r.diagnostic()}", resource=name)
        # tsv output ends with a single newline; the value itself is kept verbatim.
        return r.stdout[:-1] if r.stdout.endswith("\n") else r.stdout


def fetch_public_ip(url: str | None = None, timeout_s: float | None = None) -> str:
    """Ask the instance metadata service for the primary public IPv4 address."""
    url = url or settings.metadata_url
    try:
        with httpx.Client(timeout=timeout_s or settings.http_timeout_s, follow_redirects=False) as client:
            resp = client.get(url, headers={"Metadata": "true"})
        resp.raise_for_status()
        data = resp.json()
    except (httpx.HTTPError, ValueError) as e:
        raise PublicIPUnavailable(f"Metadata service query failed: {type(e).__name__}: {e}", resource=url) from e

    try:
        ip = data[0]["ipv4"]["ipAddress"][0]["publicIpAddress"]
    except (IndexError, KeyError, TypeError):
        ip = None
    if not ip or ip == "null":
        raise PublicIPUnavailable("Metadata service returned no public IP address", resource=url)
    return str(ip).strip()
