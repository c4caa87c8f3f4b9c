"""Tests for the docker provider."""
from __future__ import annotations

import subprocess
from collections.abc import Sequence
from pathlib import Path

import pytest

from lregctl.privileged import PrivilegedFiles, PrivilegeError
from lregctl.providers.docker import DockerError, DockerProvider
from lregctl.providers.systemd import SystemdError, SystemdProvider
from lregctl.targets import RegistryTarget


class DummyResult:
    """Simple stand-in for ``subprocess.CompletedProcess``."""

    def __init__(self, returncode: int = 0, stdout: str = "", stderr: str = "") -> None:
        """Initialise the dummy result."""
        self.returncode = returncode
        self.stdout = stdout
        self.stderr = stderr


TARGET = RegistryTarget(host="registry.local", ip="10.0.0.5", port=5000)


def _make_provider(tmp_path: Path, *, config_dir: Path | None = None) -> DockerProvider:
    docker_dir = config_dir if config_dir is not None else tmp_path / "docker"
    return DockerProvider(
        files=PrivilegedFiles(),
        systemd=SystemdProvider(systemctl_bin="systemctl"),  # Not invoked; monkeypatched.
        docker_bin="docker",
        config_dir=docker_dir,
        trust_root=docker_dir / "certs.d",
    )


def _ca(tmp_path: Path) -> Path:
    ca = tmp_path / "certs" / "ca.crt"
    ca.parent.mkdir(parents=True, exist_ok=True)
    ca.write_text("-----BEGIN CERTIFICATE-----\n", encoding="utf-8")
    return ca


def test_compose_up_runs_manifest(
    tmp_path: Path,
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    """compose_up passes the manifest path and detaches."""
    provider = _make_provider(tmp_path)
    manifest = tmp_path / "docker-compose.yaml"
    calls: list[tuple[list[str], object]] = []

    def fake_run(args: Sequence[str], **kwargs: object) -> DummyResult:
        calls.append((list(args), kwargs.get("cwd")))
        return DummyResult()

    monkeypatch.setattr(subprocess, "run", fake_run)

    provider.compose_up(manifest)

    assert calls == [
        (["docker", "compose", "-f", str(manifest), "up", "-d"], str(tmp_path)),
    ]


def test_compose_up_failure_raises(
    tmp_path: Path,
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    """Non-zero exits from docker compose are fatal."""
    provider = _make_provider(tmp_path)

    def fake_run(args: Sequence[str], **kwargs: object) -> DummyResult:
        return DummyResult(returncode=1, stderr="Cannot connect to the Docker daemon")

    monkeypatch.setattr(subprocess, "run", fake_run)

    with pytest.raises(DockerError, match="Cannot connect"):
        provider.compose_up(tmp_path / "docker-compose.yaml")


def test_compose_up_missing_binary(
    tmp_path: Path,
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    """A missing docker binary raises DockerError."""
    provider = _make_provider(tmp_path)

    def fake_run(args: Sequence[str], **kwargs: object) -> DummyResult:
        raise FileNotFoundError(args[0])

    monkeypatch.setattr(subprocess, "run", fake_run)

    with pytest.raises(DockerError, match="not found"):
        provider.compose_up(tmp_path / "docker-compose.yaml")


def test_trust_paths_cover_host_and_ip(tmp_path: Path) -> None:
    """Trust files are placed under host:port and ip:port."""
    provider = _make_provider(tmp_path)

    host_path, ip_path = provider.trust_paths(TARGET)

    assert host_path == tmp_path / "docker" / "certs.d" / "registry.local:5000" / "ca.crt"
    assert ip_path == tmp_path / "docker" / "certs.d" / "10.0.0.5:5000" / "ca.crt"


def test_install_trust_copies_ca_and_restarts(
    tmp_path: Path,
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    """Both trust paths receive the CA and the daemon is restarted."""
    (tmp_path / "docker").mkdir()
    provider = _make_provider(tmp_path)
    ca = _ca(tmp_path)
    restarted: list[str] = []

    monkeypatch.setattr(SystemdProvider, "available", lambda self: True)

    def fake_systemctl(self: SystemdProvider, command: str, unit: str | None = None, **_: object):
        restarted.append(f"{command} {unit}")
        return DummyResult()

    monkeypatch.setattr(SystemdProvider, "_systemctl", fake_systemctl)

    result = provider.install_trust(ca, TARGET)

    assert result.skipped is False
    assert result.installed == list(provider.trust_paths(TARGET))
    for path in result.installed:
        assert path.read_bytes() == ca.read_bytes()
    assert result.daemon_restarted is True
    assert restarted == ["restart docker"]
    assert result.warnings == []
    assert [step.name for step in result.steps] == [
        "trust.copy.registry.local:5000",
        "trust.copy.10.0.0.5:5000",
        "daemon.restart",
    ]


def test_install_trust_skips_without_docker_config_dir(tmp_path: Path) -> None:
    """Hosts without /etc/docker get the Docker Desktop hint and no copies."""
    provider = _make_provider(tmp_path)
    ca = _ca(tmp_path)

    result = provider.install_trust(ca, TARGET)

    assert result.skipped is True
    assert result.installed == []
    assert "~/.docker/certs.d/registry.local:5000/ca.crt" in result.warnings[0]
    assert not (tmp_path / "docker").exists()


def test_install_trust_copy_failures_are_best_effort(
    tmp_path: Path,
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    """A failed copy becomes a warning and the remaining path is still attempted."""
    (tmp_path / "docker").mkdir()
    provider = _make_provider(tmp_path)
    ca = _ca(tmp_path)
    original_copy = PrivilegedFiles.copy_file

    def flaky_copy(self: PrivilegedFiles, source: Path, destination: Path) -> str:
        if destination.parent.name.startswith("registry.local"):
            raise PrivilegeError("permission denied")
        return original_copy(self, source, destination)

    monkeypatch.setattr(PrivilegedFiles, "copy_file", flaky_copy)
    monkeypatch.setattr(SystemdProvider, "available", lambda self: False)

    result = provider.install_trust(ca, TARGET)

    assert result.installed == [provider.trust_paths(TARGET)[1]]
    assert len(result.warnings) == 1
    assert "permission denied" in result.warnings[0]
    assert result.steps[-1].name == "daemon.restart"
    assert result.steps[-1].status == "skipped"


def test_install_trust_restart_failure_is_warning(
    tmp_path: Path,
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    """A failed daemon restart does not raise."""
    (tmp_path / "docker").mkdir()
    provider = _make_provider(tmp_path)
    ca = _ca(tmp_path)

    def failing_restart(self: SystemdProvider, service: str, **_: object) -> None:
        raise SystemdError("systemctl restart failed (exit 1): access denied")

    monkeypatch.setattr(SystemdProvider, "available", lambda self: True)
    monkeypatch.setattr(SystemdProvider, "restart", failing_restart)

    result = provider.install_trust(ca, TARGET)

    assert len(result.installed) == 2
    assert result.daemon_restarted is False
    assert "access denied" in result.warnings[0]
