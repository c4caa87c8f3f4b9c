"""Tests for the systemd provider."""
from __future__ import annotations

from collections.abc import Sequence

import pytest

from lregctl.providers.systemd import SystemdError, SystemdProvider


class DummyResult:
    """Simple stand-in for ``subprocess.CompletedProcess``."""

    def __init__(self, returncode: int = 0, stdout: str = "", stderr: str = "") -> None:
        """Initialise the dummy result."""
        self.returncode = returncode
        self.stdout = stdout
        self.stderr = stderr


def test_restart_invokes_systemctl(monkeypatch: pytest.MonkeyPatch) -> None:
    """Restart runs systemctl restart for the unit."""
    provider = SystemdProvider(systemctl_bin="systemctl")
    calls: list[list[str]] = []

    def fake_run(args: Sequence[str], **kwargs: object) -> DummyResult:
        calls.append(list(args))
        return DummyResult()

    monkeypatch.setattr("lregctl.providers.systemd.subprocess.run", fake_run)

    provider.restart("docker")

    assert calls == [["systemctl", "restart", "docker"]]


def test_restart_uses_sudo_when_configured(monkeypatch: pytest.MonkeyPatch) -> None:
    """Mutating commands are prefixed with sudo; status queries are not."""
    provider = SystemdProvider(systemctl_bin="systemctl", sudo_bin="sudo")
    calls: list[list[str]] = []

    def fake_run(args: Sequence[str], **kwargs: object) -> DummyResult:
        calls.append(list(args))
        return DummyResult(stdout="active\n")

    monkeypatch.setattr("lregctl.providers.systemd.subprocess.run", fake_run)

    provider.restart("docker")
    assert provider.is_active("docker") is True

    assert calls == [
        ["sudo", "systemctl", "restart", "docker"],
        ["systemctl", "is-active", "docker"],
    ]


def test_restart_failure_raises(monkeypatch: pytest.MonkeyPatch) -> None:
    """Non-zero exit codes raise SystemdError with stderr."""
    provider = SystemdProvider()

    def fake_run(args: Sequence[str], **kwargs: object) -> DummyResult:
        return DummyResult(returncode=1, stderr="Unit docker.service not found.")

    monkeypatch.setattr("lregctl.providers.systemd.subprocess.run", fake_run)

    with pytest.raises(SystemdError, match="not found"):
        provider.restart("docker")


def test_missing_binary_raises(monkeypatch: pytest.MonkeyPatch) -> None:
    """A missing systemctl binary is reported as SystemdError."""
    provider = SystemdProvider(systemctl_bin="/nonexistent/systemctl")

    def fake_run(args: Sequence[str], **kwargs: object) -> DummyResult:
        raise FileNotFoundError(args[0])

    monkeypatch.setattr("lregctl.providers.systemd.subprocess.run", fake_run)

    with pytest.raises(SystemdError, match="not found"):
        provider.restart("docker")
    assert provider.available() is False


def test_dry_run_skips_execution(monkeypatch: pytest.MonkeyPatch) -> None:
    """Dry runs never call subprocess."""
    provider = SystemdProvider()

    def fail_run(*args: object, **kwargs: object) -> DummyResult:
        raise AssertionError("subprocess.run should not be called")

    monkeypatch.setattr("lregctl.providers.systemd.subprocess.run", fail_run)

    result = provider.restart("docker", dry_run=True)

    assert result.returncode == 0
