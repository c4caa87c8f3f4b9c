"""Tests for the sudo-fallback file helper."""
from __future__ import annotations

import subprocess
from pathlib import Path

import pytest

from lregctl import privileged
from lregctl.privileged import PrivilegedFiles, PrivilegeError


class DummyResult:
    """Simple stand-in for ``subprocess.CompletedProcess``."""

    def __init__(self, returncode: int = 0, stdout: str = "", stderr: str = "") -> None:
        """Initialise the dummy result."""
        self.returncode = returncode
        self.stdout = stdout
        self.stderr = stderr


def test_copy_file_direct(tmp_path: Path) -> None:
    """Writable destinations are handled without sudo."""
    source = tmp_path / "ca.crt"
    source.write_text("PEM", encoding="utf-8")
    destination = tmp_path / "certs.d" / "registry.local:5000" / "ca.crt"

    method = PrivilegedFiles().copy_file(source, destination)

    assert method == "direct"
    assert destination.read_text(encoding="utf-8") == "PEM"
    assert destination.stat().st_mode & 0o777 == 0o644


def test_append_line_falls_back_to_sudo(
    tmp_path: Path,
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    """Permission errors retry the operation through sudo tee."""
    target = tmp_path / "hosts"
    calls: list[tuple[list[str], str | None]] = []

    original_open = Path.open

    def deny_open(self: Path, *args: object, **kwargs: object) -> object:
        if self == target:
            raise PermissionError("read-only")
        return original_open(self, *args, **kwargs)

    def fake_run(args: list[str], **kwargs: object) -> DummyResult:
        calls.append((list(args), kwargs.get("input")))  # type: ignore[arg-type]
        return DummyResult()

    monkeypatch.setattr(Path, "open", deny_open)
    monkeypatch.setattr(PrivilegedFiles, "sudo_available", lambda self: True)
    monkeypatch.setattr(privileged.subprocess, "run", fake_run)

    method = PrivilegedFiles(sudo_bin="sudo").append_line(target, "10.0.0.5 registry.local")

    assert method == "sudo"
    assert calls == [(["sudo", "tee", "-a", str(target)], "10.0.0.5 registry.local\n")]


def test_sudo_unavailable_raises(
    tmp_path: Path,
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    """Without sudo the original permission error is wrapped."""
    def deny_mkdir(self: Path, *args: object, **kwargs: object) -> None:
        raise PermissionError("denied")

    monkeypatch.setattr(Path, "mkdir", deny_mkdir)
    monkeypatch.setattr(PrivilegedFiles, "sudo_available", lambda self: False)

    with pytest.raises(PrivilegeError, match="sudo is not available"):
        PrivilegedFiles().ensure_dir(tmp_path / "certs.d")


def test_sudo_failure_raises(
    tmp_path: Path,
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    """A failing sudo command reports its stderr."""
    def deny_mkdir(self: Path, *args: object, **kwargs: object) -> None:
        raise PermissionError("denied")

    def fake_run(args: list[str], **kwargs: object) -> DummyResult:
        return DummyResult(returncode=1, stderr="sudo: a password is required")

    monkeypatch.setattr(Path, "mkdir", deny_mkdir)
    monkeypatch.setattr(PrivilegedFiles, "sudo_available", lambda self: True)
    monkeypatch.setattr(subprocess, "run", fake_run)

    with pytest.raises(PrivilegeError, match="password is required"):
        PrivilegedFiles().ensure_dir(tmp_path / "certs.d")


def test_sudo_available_false_for_root(monkeypatch: pytest.MonkeyPatch) -> None:
    """Root never needs sudo."""
    monkeypatch.setattr(privileged.os, "geteuid", lambda: 0)

    assert PrivilegedFiles().sudo_available() is False
