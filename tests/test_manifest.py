"""Tests for the compose manifest renderer."""
from __future__ import annotations

from dataclasses import replace
from pathlib import Path

import pytest
import yaml

from lregctl.config import AppConfig
from lregctl.manifest import ManifestError, ManifestRenderer
from lregctl.templates import TemplateEngine


@pytest.fixture
def renderer(app_config: AppConfig, templates: TemplateEngine) -> ManifestRenderer:
    """Return a renderer for the temporary workspace."""
    return ManifestRenderer(app_config, templates)


def test_render_default_port_publishes_same_port(renderer: ManifestRenderer) -> None:
    """Port 5000 is published as 5000:5000 and used by the registry listener."""
    manifest = yaml.safe_load(renderer.render(5000))

    registry = manifest["services"]["registry"]
    assert registry["image"] == "registry:2.8.3"
    assert registry["container_name"] == "local-registry"
    assert registry["ports"] == ["5000:5000"]
    assert registry["environment"]["REGISTRY_HTTP_ADDR"] == "0.0.0.0:5000"
    assert registry["environment"]["REGISTRY_HTTP_TLS_CERTIFICATE"] == "/certs/domain.crt"
    assert registry["environment"]["REGISTRY_HTTP_TLS_KEY"] == "/certs/domain.key"
    assert registry["environment"]["REGISTRY_STORAGE_DELETE_ENABLED"] == "true"
    assert registry["restart"] == "unless-stopped"
    assert "https://localhost:5000/v2/" in registry["healthcheck"]["test"]
    assert registry["healthcheck"]["retries"] == 3


def test_render_custom_port(renderer: ManifestRenderer) -> None:
    """A custom port flows into the binding, listener and health check."""
    manifest = yaml.safe_load(renderer.render(5443))

    registry = manifest["services"]["registry"]
    assert registry["ports"] == ["5443:5443"]
    assert registry["environment"]["REGISTRY_HTTP_ADDR"] == "0.0.0.0:5443"
    assert "https://localhost:5443/v2/" in registry["healthcheck"]["test"]


def test_render_includes_ui_service_and_network(renderer: ManifestRenderer) -> None:
    """The management UI and the named default network are present."""
    manifest = yaml.safe_load(renderer.render(5000))

    assert set(manifest["services"]) == {"registry", "portainer"}
    ui = manifest["services"]["portainer"]
    assert ui["image"] == "portainer/portainer-ce:latest"
    assert ui["ports"] == ["9000:9000", "8000:8000"]
    assert "/var/run/docker.sock:/var/run/docker.sock" in ui["volumes"]
    assert "./portainer-data:/data" in ui["volumes"]
    assert manifest["networks"]["default"]["name"] == "local-registry-network"


def test_render_uses_relative_volume_sources(renderer: ManifestRenderer) -> None:
    """Workspace directories are mounted relative to the manifest."""
    manifest = yaml.safe_load(renderer.render(5000))

    volumes = manifest["services"]["registry"]["volumes"]
    assert volumes == [
        "./registry-data:/var/lib/registry",
        "./certs:/certs:ro",
        "./config/config.yml:/etc/docker/registry/config.yml:ro",
    ]


def test_render_keeps_absolute_paths_outside_workspace(
    app_config: AppConfig,
    templates: TemplateEngine,
    tmp_path: Path,
) -> None:
    """Directories outside the manifest directory are mounted by absolute path."""
    layout = replace(app_config.layout, data_dir=tmp_path / "elsewhere")
    renderer = ManifestRenderer(replace(app_config, layout=layout), templates)

    manifest = yaml.safe_load(renderer.render(5000))

    volumes = manifest["services"]["registry"]["volumes"]
    assert f"{tmp_path / 'elsewhere'}:/var/lib/registry" in volumes


def test_write_overwrites_manifest(renderer: ManifestRenderer, app_config: AppConfig) -> None:
    """The manifest is replaced wholesale on each write."""
    path = app_config.layout.manifest
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text("services: {}\n# operator edit\n", encoding="utf-8")

    result = renderer.write(5001)

    assert result.path == path
    assert result.changed is True
    text = path.read_text(encoding="utf-8")
    assert "operator edit" not in text
    assert '"5001:5001"' in text
    assert renderer.write(5001).changed is False


def test_write_registry_config_only_when_absent(
    renderer: ManifestRenderer,
) -> None:
    """The static registry config is created once and then left alone."""
    first = renderer.write_registry_config(5000)

    assert first.changed is True
    config = yaml.safe_load(first.path.read_text(encoding="utf-8"))
    assert config["http"]["addr"] == ":5000"
    assert config["storage"]["filesystem"]["rootdirectory"] == "/var/lib/registry"

    first.path.write_text("version: 0.1\n# custom\n", encoding="utf-8")
    second = renderer.write_registry_config(6000)

    assert second.changed is False
    assert "# custom" in first.path.read_text(encoding="utf-8")


def test_write_failure_raises_manifest_error(
    app_config: AppConfig,
    templates: TemplateEngine,
    tmp_path: Path,
) -> None:
    """Write failures surface as ManifestError."""
    blocker = tmp_path / "blocker"
    blocker.write_text("not a directory", encoding="utf-8")
    layout = replace(app_config.layout, manifest=blocker / "docker-compose.yaml")
    renderer = ManifestRenderer(replace(app_config, layout=layout), templates)

    with pytest.raises(ManifestError):
        renderer.write(5000)
