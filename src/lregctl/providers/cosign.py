"""Installer for the cosign signing tool's pre-built release binaries."""
from __future__ import annotations

import platform
import shutil
import subprocess
import tempfile
import urllib.error
import urllib.request
from collections.abc import Sequence
from dataclasses import dataclass
from pathlib import Path

from packaging.version import InvalidVersion, Version

from ..privileged import PrivilegedFiles, PrivilegeError

DEFAULT_RELEASE_URL = (
    "https://github.com/sigstore/cosign/releases/download/{version}/cosign-{os}-{arch}"
)
ARCH_ALIASES = {
    "x86_64": "amd64",
    "amd64": "amd64",
    "aarch64": "arm64",
    "arm64": "arm64",
}
DOWNLOAD_TIMEOUT = 120.0


class CosignInstallError(RuntimeError):
    """Raised when cosign cannot be downloaded or installed."""


class UnsupportedArchitectureError(CosignInstallError):
    """Raised when no release asset exists for the host CPU."""


@dataclass(frozen=True, slots=True)
class CosignInstallResult:
    """Outcome of :meth:`CosignInstaller.install`."""

    status: str
    path: Path | None
    url: str | None = None
    client: str | None = None
    on_path: bool = True

    def to_dict(self) -> dict[str, object]:
        """Return a serialisable representation."""
        return {
            "status": self.status,
            "path": str(self.path) if self.path is not None else None,
            "url": self.url,
            "client": self.client,
            "on_path": self.on_path,
        }


class CosignInstaller:
    """Download a cosign release matching the host OS and architecture."""

    binary_name = "cosign"

    def __init__(
        self,
        *,
        version: str,
        install_dir: Path,
        files: PrivilegedFiles,
        download_clients: Sequence[str] = ("curl", "wget", "urllib"),
        release_url: str = DEFAULT_RELEASE_URL,
    ) -> None:
        """Capture release coordinates and where the binary should land."""
        self.version = version.strip()
        self.install_dir = install_dir
        self.files = files
        self.download_clients = tuple(download_clients)
        self.release_url = release_url

    def locate(self) -> Path | None:
        """Return the cosign binary already on PATH, if any."""
        found = shutil.which(self.binary_name)
        return Path(found) if found else None

    @staticmethod
    def resolve_platform(system: str, machine: str) -> tuple[str, str]:
        """Map ``uname``-style values to release asset ``(os, arch)`` names."""
        arch = ARCH_ALIASES.get(machine.strip().lower())
        if arch is None:
            raise UnsupportedArchitectureError(
                f"Unsupported arch: {machine}. Install cosign manually."
            )
        return system.strip().lower(), arch

    def detect_platform(self) -> tuple[str, str]:
        """Resolve the asset platform for the running host."""
        return self.resolve_platform(platform.system(), platform.machine())

    def download_url(self, os_name: str, arch: str) -> str:
        """Return the release asset URL for *os_name*/*arch*."""
        try:
            Version(self.version)
        except InvalidVersion as exc:
            raise CosignInstallError(f"Invalid cosign version '{self.version}'.") from exc
        return self.release_url.format(version=self.version, os=os_name, arch=arch)

    def select_client(self) -> str:
        """Return the first usable download client."""
        for client in self.download_clients:
            if client == "urllib" or shutil.which(client):
                return client
        raise CosignInstallError(
            f"None of {', '.join(self.download_clients)} is available. "
            "Install cosign manually."
        )

    def install(self) -> CosignInstallResult:
        """Install cosign unless it is already present on PATH."""
        existing = self.locate()
        if existing is not None:
            return CosignInstallResult(status="present", path=existing)

        os_name, arch = self.detect_platform()
        url = self.download_url(os_name, arch)
        client = self.select_client()
        destination = self.install_dir / self.binary_name

        staging = Path(tempfile.mkdtemp(prefix="lregctl-cosign-"))
        try:
            downloaded = staging / self.binary_name
            self.download(url, downloaded, client=client)
            downloaded.chmod(0o755)
            try:
                self.files.ensure_dir(self.install_dir)
                self.files.move_file(downloaded, destination)
            except (PrivilegeError, OSError) as exc:
                raise CosignInstallError(
                    f"Failed to install cosign into {self.install_dir}: {exc}"
                ) from exc
        finally:
            shutil.rmtree(staging, ignore_errors=True)

        return CosignInstallResult(
            status="installed",
            path=destination,
            url=url,
            client=client,
            on_path=self.locate() is not None,
        )

    def download(self, url: str, destination: Path, *, client: str) -> None:
        """Fetch *url* into *destination* with *client*."""
        if client == "urllib":
            self._download_urllib(url, destination)
            return
        if client == "curl":
            args = ["curl", "-fsSL", "-o", str(destination), url]
        elif client == "wget":
            args = ["wget", "-q", "-O", str(destination), url]
        else:
            raise CosignInstallError(f"Unknown download client '{client}'.")
        try:
            result = subprocess.run(  # noqa: S603
                args,
                capture_output=True,
                text=True,
                check=False,
            )
        except FileNotFoundError as exc:
            raise CosignInstallError(f"{client} not found: {exc}") from exc
        if result.returncode != 0:
            message = (result.stderr or "").strip() or (result.stdout or "").strip() or "no output"
            raise CosignInstallError(
                f"{client} download of {url} failed (exit {result.returncode}): {message}"
            )

    def _download_urllib(self, url: str, destination: Path) -> None:
        try:
            with urllib.request.urlopen(url, timeout=DOWNLOAD_TIMEOUT) as response:  # noqa: S310
                with destination.open("wb") as handle:
                    shutil.copyfileobj(response, handle)
        except (urllib.error.URLError, OSError) as exc:
            raise CosignInstallError(f"Download of {url} failed: {exc}") from exc


__all__ = [
    "CosignInstallError",
    "CosignInstallResult",
    "CosignInstaller",
    "UnsupportedArchitectureError",
]
