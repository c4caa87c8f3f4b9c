"""File operations that fall back to ``sudo`` when the caller lacks permission."""
from __future__ import annotations

import os
import shutil
import subprocess
from collections.abc import Sequence
from dataclasses import dataclass
from pathlib import Path


class PrivilegeError(RuntimeError):
    """Raised when an operation fails both directly and through sudo."""


@dataclass(slots=True)
class PrivilegedFiles:
    """Try each operation as the current user, then retry it via ``sudo``."""

    sudo_bin: str = "sudo"

    def ensure_dir(self, path: Path) -> str:
        """Create *path* (and parents); return ``direct`` or ``sudo``."""
        try:
            path.mkdir(parents=True, exist_ok=True)
            return "direct"
        except PermissionError as exc:
            self._sudo(["mkdir", "-p", str(path)], exc)
            return "sudo"

    def copy_file(self, source: Path, destination: Path) -> str:
        """Copy *source* to *destination*, creating the parent directory."""
        self.ensure_dir(destination.parent)
        try:
            shutil.copyfile(source, destination)
            destination.chmod(0o644)
            return "direct"
        except PermissionError as exc:
            self._sudo(["cp", str(source), str(destination)], exc)
            return "sudo"

    def move_file(self, source: Path, destination: Path) -> str:
        """Move *source* to *destination*."""
        try:
            shutil.move(str(source), str(destination))
            return "direct"
        except PermissionError as exc:
            self._sudo(["mv", str(source), str(destination)], exc)
            return "sudo"

    def append_line(self, path: Path, line: str) -> str:
        """Append *line* (newline-terminated) to *path*."""
        text = line if line.endswith("\n") else f"{line}\n"
        try:
            with path.open("a", encoding="utf-8") as handle:
                handle.write(text)
            return "direct"
        except PermissionError as exc:
            self._sudo(["tee", "-a", str(path)], exc, stdin=text)
            return "sudo"

    def sudo_available(self) -> bool:
        """Return True when escalation through sudo is possible."""
        if hasattr(os, "geteuid") and os.geteuid() == 0:
            return False
        return shutil.which(self.sudo_bin) is not None

    def _sudo(
        self,
        args: Sequence[str],
        cause: BaseException,
        *,
        stdin: str | None = None,
    ) -> None:
        if not self.sudo_available():
            raise PrivilegeError(f"{cause}; sudo is not available to retry.") from cause
        command = [self.sudo_bin, *args]
        try:
            result = subprocess.run(  # noqa: S603
                command,
                input=stdin,
                capture_output=True,
                text=True,
                check=False,
            )
        except OSError as exc:
            raise PrivilegeError(f"{' '.join(command)} could not start: {exc}") from exc
        if result.returncode != 0:
            message = (result.stderr or "").strip() or (result.stdout or "").strip() or "no output"
            raise PrivilegeError(
                f"{' '.join(command)} failed (exit {result.returncode}): {message}"
            )


__all__ = ["PrivilegeError", "PrivilegedFiles"]
