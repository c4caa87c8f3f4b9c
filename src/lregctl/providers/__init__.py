"""Provider interfaces for lregctl."""
from __future__ import annotations

from .cosign import (
    CosignInstaller,
    CosignInstallError,
    CosignInstallResult,
    UnsupportedArchitectureError,
)
from .docker import DockerError, DockerProvider, TrustInstallResult, TrustStep
from .systemd import SystemdError, SystemdProvider

__all__ = [
    "CosignInstallError",
    "CosignInstallResult",
    "CosignInstaller",
    "DockerError",
    "DockerProvider",
    "SystemdError",
    "SystemdProvider",
    "TrustInstallResult",
    "TrustStep",
    "UnsupportedArchitectureError",
]
