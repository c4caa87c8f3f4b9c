"""Docker provider: compose bring-up and per-registry CA trust installation."""
from __future__ import annotations

import subprocess
from collections.abc import Sequence
from dataclasses import dataclass, field
from pathlib import Path

from ..privileged import PrivilegedFiles, PrivilegeError
from ..targets import RegistryTarget
from .systemd import SystemdError, SystemdProvider


class DockerError(RuntimeError):
    """Raised when the container runtime cannot bring the services up."""


@dataclass(frozen=True, slots=True)
class TrustStep:
    """One best-effort action performed while installing trust."""

    name: str
    status: str
    detail: str


@dataclass(slots=True)
class TrustInstallResult:
    """Summary of a trust installation attempt."""

    skipped: bool = False
    installed: list[Path] = field(default_factory=list)
    steps: list[TrustStep] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)
    daemon_restarted: bool = False


@dataclass(slots=True)
class DockerProvider:
    """Drive ``docker compose`` and the runtime's certificate trust directories."""

    files: PrivilegedFiles
    systemd: SystemdProvider
    docker_bin: str = "docker"
    config_dir: Path = Path("/etc/docker")
    trust_root: Path = Path("/etc/docker/certs.d")
    service: str = "docker"

    def compose_up(
        self,
        manifest: Path,
        *,
        cwd: Path | None = None,
    ) -> subprocess.CompletedProcess[str]:
        """Run ``docker compose -f MANIFEST up -d``."""
        args = [self.docker_bin, "compose", "-f", str(manifest), "up", "-d"]
        return self._run_command(args, cwd=cwd or manifest.parent)

    def trust_paths(self, target: RegistryTarget) -> tuple[Path, Path]:
        """Return the ``host:port`` and ``ip:port`` trust file locations."""
        return (
            self.trust_root / target.host_endpoint / "ca.crt",
            self.trust_root / target.ip_endpoint / "ca.crt",
        )

    def install_trust(
        self,
        ca_certificate: Path,
        target: RegistryTarget,
        *,
        restart: bool = True,
    ) -> TrustInstallResult:
        """Copy the CA into both trust paths and restart the daemon, best-effort."""
        result = TrustInstallResult()
        if not self.config_dir.is_dir():
            result.skipped = True
            hint = (
                f"{self.config_dir} not found. For Docker Desktop, import {ca_certificate} "
                "into the system trust store and copy it to "
                f"~/.docker/certs.d/{target.host_endpoint}/ca.crt"
            )
            result.steps.append(TrustStep("trust.install", "skipped", hint))
            result.warnings.append(hint)
            return result

        for destination in self.trust_paths(target):
            step_name = f"trust.copy.{destination.parent.name}"
            try:
                method = self.files.copy_file(ca_certificate, destination)
            except (PrivilegeError, OSError) as exc:
                message = f"Could not install CA at {destination}: {exc}"
                result.steps.append(TrustStep(step_name, "warning", message))
                result.warnings.append(message)
                continue
            result.installed.append(destination)
            result.steps.append(TrustStep(step_name, "success", f"{destination} ({method})"))

        if not restart:
            return result
        if not self.systemd.available():
            result.steps.append(
                TrustStep("daemon.restart", "skipped", f"{self.systemd.systemctl_bin} not found")
            )
            return result
        try:
            self.systemd.restart(self.service)
        except SystemdError as exc:
            message = f"Docker daemon restart failed: {exc}"
            result.steps.append(TrustStep("daemon.restart", "warning", message))
            result.warnings.append(message)
        else:
            result.daemon_restarted = True
            result.steps.append(TrustStep("daemon.restart", "success", self.service))
        return result

    def _run_command(
        self,
        args: Sequence[str],
        *,
        cwd: Path | None,
    ) -> subprocess.CompletedProcess[str]:
        try:
            result = subprocess.run(  # noqa: S603
                list(args),
                cwd=str(cwd) if cwd else None,
                capture_output=True,
                text=True,
                check=False,
            )
        except FileNotFoundError as exc:
            raise DockerError(f"{args[0]} not found: {exc}") from exc
        if result.returncode != 0:
            stdout = getattr(result, "stdout", "") or ""
            stderr = getattr(result, "stderr", "") or ""
            message = stderr.strip() or stdout.strip() or "no output"
            joined = " ".join(args[1:])
            raise DockerError(
                f"{args[0]} {joined} failed (exit {result.returncode}): {message}"
            )
        return result


__all__ = [
    "DockerError",
    "DockerProvider",
    "TrustInstallResult",
    "TrustStep",
]
