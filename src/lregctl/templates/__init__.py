"""Jinja2 template engine with built-in templates and operator overrides."""
from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass
from pathlib import Path

from jinja2 import ChoiceLoader, Environment, FileSystemLoader, StrictUndefined

from ..files import atomic_write_text

BUILTIN_TEMPLATES_DIR = Path(__file__).resolve().parent


@dataclass(slots=True)
class TemplateEngine:
    """Render templates from an optional override directory, then built-ins."""

    environment: Environment

    @classmethod
    def with_overrides(cls, override_dir: Path | None) -> TemplateEngine:
        """Return an engine where files under *override_dir* shadow built-ins."""
        loaders = []
        if override_dir is not None and override_dir.is_dir():
            loaders.append(FileSystemLoader(str(override_dir)))
        loaders.append(FileSystemLoader(str(BUILTIN_TEMPLATES_DIR)))
        environment = Environment(
            loader=ChoiceLoader(loaders),
            undefined=StrictUndefined,
            keep_trailing_newline=True,
            autoescape=False,
        )
        return cls(environment=environment)

    def render_to_string(self, name: str, context: Mapping[str, object]) -> str:
        """Render template *name* with *context*."""
        template = self.environment.get_template(name)
        return template.render(**dict(context))

    def render_to_path(
        self,
        name: str,
        destination: Path,
        context: Mapping[str, object],
        *,
        mode: int = 0o644,
    ) -> bool:
        """Render *name* into *destination*; return False when content is unchanged."""
        rendered = self.render_to_string(name, context)
        if destination.exists():
            try:
                current = destination.read_text(encoding="utf-8")
            except OSError:
                current = None
            if current == rendered:
                destination.chmod(mode)
                return False
        atomic_write_text(destination, rendered, mode=mode)
        return True


__all__ = ["BUILTIN_TEMPLATES_DIR", "TemplateEngine"]
