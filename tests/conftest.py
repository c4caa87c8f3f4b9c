"""Pytest configuration helpers for the test suite."""

from __future__ import annotations

from pathlib import Path

import pytest

from lregctl.config import AppConfig, CertificateConfig, load_config
from lregctl.templates import TemplateEngine


@pytest.fixture
def cert_settings() -> CertificateConfig:
    """Certificate policy with a small key so issuance stays fast."""
    return CertificateConfig(key_size=2048)


@pytest.fixture
def templates() -> TemplateEngine:
    """Template engine backed by the built-in templates only."""
    return TemplateEngine.with_overrides(None)


@pytest.fixture
def workspace_env(tmp_path: Path) -> dict[str, str]:
    """Environment pointing every lregctl path at *tmp_path*."""
    docker_dir = tmp_path / "etc-docker"
    docker_dir.mkdir()
    hosts_file = tmp_path / "hosts"
    hosts_file.write_text("127.0.0.1 localhost\n", encoding="utf-8")
    return {
        "LREGCTL_CONFIG_FILE": str(tmp_path / "missing-config.yml"),
        "LREGCTL_ROOT_DIR": str(tmp_path / "workspace"),
        "LREGCTL_HOSTS_FILE": str(hosts_file),
        "LREGCTL_DOCKER__CONFIG_DIR": str(docker_dir),
        "LREGCTL_CERTIFICATES__KEY_SIZE": "2048",
        "LREGCTL_COSIGN__INSTALL_DIR": str(tmp_path / "bin"),
        "LREGCTL_LOCK_TIMEOUT": "2",
    }


@pytest.fixture
def app_config(workspace_env: dict[str, str]) -> AppConfig:
    """Resolved configuration for the temporary workspace."""
    return load_config(env=workspace_env)
