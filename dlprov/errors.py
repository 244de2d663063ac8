from __future__ import annotations


class ProvisionError(Exception):
    """Base class for every failure that aborts a provisioning run.

    `step` and `resource` are filled in by whoever knows them (the component
    raising, or the driver on the way out) so the log line is enough to
    diagnose the failure without re-running.
    """

    def __init__(self, message: str, step: str | None = None, resource: str | None = None):
        super().__init__(message)
        self.message = message
        self.step = step
        self.resource = resource

    def __str__(self) -> str:
        return self.message


class MissingRequiredSecret(ProvisionError):
    pass


class PublicIPUnavailable(ProvisionError):
    pass


class VaultError(ProvisionError):
    pass


class MaterializationError(ProvisionError):
    pass


class RuntimeUnavailable(ProvisionError):
    pass


class NetworkProvisionError(ProvisionError):
    pass


class DownloadError(ProvisionError):
    pass


class LoadError(ProvisionError):
    pass


class ServiceStartError(ProvisionError):
    pass


class CertificateGenerationError(ProvisionError):
    pass


class HostPreparationError(ProvisionError):
    pass


class RunLockError(ProvisionError):
    pass
