from __future__ import annotations

from typing import ClassVar, Optional

from pydantic import BaseModel, Field, field_validator

from .errors import MissingRequiredSecret


def _strip_or_none(v: Optional[str]) -> Optional[str]:
    if v is None:
        return None
    v = v.strip()
    return v or None


class _RunConfig(BaseModel):
    blob_base_url: Optional[str] = Field(None, description="Base URL of the image archive container (SAS query allowed)")
    registry_username: Optional[str] = Field(None, description="Container registry user")
    registry_password: Optional[str] = Field(None, description="Container registry password; managed identity when absent")

    REQUIRED: ClassVar[tuple[str, ...]] = ()

    @field_validator("*", mode="before")
    @classmethod
    def _blank_is_missing(cls, v):
        # Positional CLI arguments can be passed as "" to skip them.
        return _strip_or_none(v) if isinstance(v, str) or v is None else v

    @field_validator("blob_base_url")
    @classmethod
    def _http_url(cls, v: Optional[str]) -> Optional[str]:
        if v is not None and not v.startswith(("http://", "https://")):
            raise ValueError("blob_base_url must be an http(s) URL")
        return v

    def missing(self) -> list[str]:
        return [name for name in self.REQUIRED if not getattr(self, name)]

    def require(self) -> None:
        """Fail fast on the first absent required value."""
        missing = self.missing()
        if missing:
            raise MissingRequiredSecret(
                f"Required argument '{missing[0]}' is missing or empty", resource=missing[0]
            )


class GenerationConfig(_RunConfig):
    mode: str = "generate"

    vm_name: Optional[str] = None
    admin_username: Optional[str] = None
    oauth_client_id: Optional[str] = None
    onedrive_client_id: Optional[str] = None
    onedrive_authority: Optional[str] = None
    onedrive_redirect_uri: Optional[str] = None
    model_api_key: Optional[str] = None
    model_name: Optional[str] = None
    signing_secret: Optional[str] = None

    REQUIRED = (
        "vm_name",
        "admin_username",
        "oauth_client_id",
        "model_api_key",
        "model_name",
        "signing_secret",
        "blob_base_url",
        "registry_username",
    )


class VaultConfig(_RunConfig):
    mode: str = "vault"

    vault_name: Optional[str] = None
    admin_username: Optional[str] = None

    REQUIRED = ("vault_name", "blob_base_url", "registry_username", "registry_password")
