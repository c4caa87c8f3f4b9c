"""Systemd provider for restarting the container runtime daemon."""
from __future__ import annotations

import shutil
import subprocess
from collections.abc import Sequence
from dataclasses import dataclass


class SystemdError(RuntimeError):
    """Raised when systemd operations fail."""


@dataclass(slots=True)
class SystemdProvider:
    """Thin wrapper around ``systemctl`` for the runtime's service unit."""

    systemctl_bin: str = "systemctl"
    sudo_bin: str | None = None

    def available(self) -> bool:
        """Return True when a service manager binary is on PATH."""
        return shutil.which(self.systemctl_bin) is not None

    def restart(self, service: str, *, dry_run: bool = False) -> subprocess.CompletedProcess[str]:
        """Restart *service*."""
        return self._systemctl("restart", service, dry_run=dry_run)

    def is_active(self, service: str) -> bool:
        """Return True when *service* reports ``active``."""
        result = self._systemctl("is-active", service, check=False)
        return result.returncode == 0 and (result.stdout or "").strip() == "active"

    # ------------------------------------------------------------------
    def _systemctl(
        self,
        command: str,
        unit: str | None = None,
        *,
        check: bool = True,
        dry_run: bool = False,
    ) -> subprocess.CompletedProcess[str]:
        args: list[str] = [self.systemctl_bin, command]
        if unit is not None:
            args.append(unit)
        if self.sudo_bin and command != "is-active":
            args = [self.sudo_bin, *args]
        return self._run_command(
            args,
            check=check,
            error_prefix=f"{self.systemctl_bin} {command}",
            dry_run=dry_run,
        )

    def _run_command(
        self,
        args: Sequence[str],
        *,
        check: bool,
        error_prefix: str,
        dry_run: bool,
    ) -> subprocess.CompletedProcess[str]:
        if dry_run:
            return subprocess.CompletedProcess(
                list(args),
                returncode=0,
                stdout="",
                stderr="",
            )
        try:
            result = subprocess.run(  # noqa: S603, S607
                list(args),
                capture_output=True,
                text=True,
                check=False,
            )
        except FileNotFoundError as exc:
            raise SystemdError(f"{args[0]} not found: {exc}") from exc
        if check and result.returncode != 0:
            stdout = getattr(result, "stdout", "") or ""
            stderr = getattr(result, "stderr", "") or ""
            message = stderr.strip() or stdout.strip() or "no output"
            raise SystemdError(f"{error_prefix} failed (exit {result.returncode}): {message}")
        return result


__all__ = ["SystemdError", "SystemdProvider"]
