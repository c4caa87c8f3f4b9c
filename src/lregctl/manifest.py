"""Render the compose manifest and the static registry configuration."""
from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path

from jinja2 import TemplateError

from .config import AppConfig
from .templates import TemplateEngine

MANIFEST_TEMPLATE = "compose/docker-compose.yaml.j2"
REGISTRY_CONFIG_TEMPLATE = "registry/config.yml.j2"
REGISTRY_CONFIG_NAME = "config.yml"

HEALTHCHECK = {
    "interval": "30s",
    "timeout": "10s",
    "retries": 3,
    "start_period": "10s",
}


class ManifestError(RuntimeError):
    """Raised when the manifest or registry config cannot be rendered or written."""


@dataclass(frozen=True, slots=True)
class ManifestWriteResult:
    """Where a file was written and whether its content changed."""

    path: Path
    changed: bool


class ManifestRenderer:
    """Produce the two-service compose manifest for a registry port."""

    def __init__(self, config: AppConfig, templates: TemplateEngine) -> None:
        """Bind the renderer to resolved configuration and templates."""
        self._config = config
        self._templates = templates

    @property
    def registry_config_path(self) -> Path:
        """Return the static registry config location."""
        return self._config.layout.config_dir / REGISTRY_CONFIG_NAME

    def context(self, port: int) -> dict[str, object]:
        """Return the template context for *port*."""
        config = self._config
        base = config.layout.manifest.parent
        return {
            "port": port,
            "registry": config.registry.to_dict(),
            "ui": config.ui.to_dict(),
            "healthcheck": dict(HEALTHCHECK),
            "volumes": {
                "data": _volume_source(config.layout.data_dir, base),
                "certs": _volume_source(config.layout.certs_dir, base),
                "config": _volume_source(self.registry_config_path, base),
                "ui_data": _volume_source(config.layout.ui_data_dir, base),
            },
        }

    def render(self, port: int) -> str:
        """Return the manifest text for *port*."""
        try:
            return self._templates.render_to_string(MANIFEST_TEMPLATE, self.context(port))
        except TemplateError as exc:
            raise ManifestError(f"Failed to render {MANIFEST_TEMPLATE}: {exc}") from exc

    def write(self, port: int) -> ManifestWriteResult:
        """Render and replace the manifest file (no merging with existing content)."""
        path = self._config.layout.manifest
        try:
            changed = self._templates.render_to_path(
                MANIFEST_TEMPLATE, path, self.context(port), mode=0o644
            )
        except TemplateError as exc:
            raise ManifestError(f"Failed to render {MANIFEST_TEMPLATE}: {exc}") from exc
        except OSError as exc:
            raise ManifestError(f"Failed to write {path}: {exc}") from exc
        return ManifestWriteResult(path=path, changed=changed)

    def write_registry_config(self, port: int) -> ManifestWriteResult:
        """Write ``config.yml`` unless an operator-managed copy already exists."""
        path = self.registry_config_path
        if path.exists():
            return ManifestWriteResult(path=path, changed=False)
        try:
            self._templates.render_to_path(
                REGISTRY_CONFIG_TEMPLATE, path, {"port": port}, mode=0o644
            )
        except TemplateError as exc:
            raise ManifestError(f"Failed to render {REGISTRY_CONFIG_TEMPLATE}: {exc}") from exc
        except OSError as exc:
            raise ManifestError(f"Failed to write {path}: {exc}") from exc
        return ManifestWriteResult(path=path, changed=True)


def _volume_source(path: Path, base: Path) -> str:
    # Compose resolves relative sources against the manifest's directory.
    try:
        relative = path.relative_to(base)
    except ValueError:
        return str(path)
    return "./" + relative.as_posix() if str(relative) != "." else "."


__all__ = ["ManifestError", "ManifestRenderer", "ManifestWriteResult"]
