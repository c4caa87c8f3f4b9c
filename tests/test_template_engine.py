"""Tests for the template rendering engine."""
from __future__ import annotations

from pathlib import Path

import pytest
from jinja2 import UndefinedError

from lregctl.templates import TemplateEngine


def test_render_to_string_uses_builtin_templates() -> None:
    """Built-in templates render with strict variables."""
    engine = TemplateEngine.with_overrides(None)

    output = engine.render_to_string(
        "tls/san.cnf.j2",
        {"host": "registry.local", "ip": "10.0.0.5"},
    )

    assert "DNS.1 = registry.local" in output
    assert "10.0.0.5" in output


def test_missing_variables_raise() -> None:
    """StrictUndefined surfaces missing context keys."""
    engine = TemplateEngine.with_overrides(None)

    with pytest.raises(UndefinedError):
        engine.render_to_string("tls/san.cnf.j2", {"host": "registry.local"})


def test_render_to_path_writes_with_mode(tmp_path: Path) -> None:
    """Rendering to a file writes content and respects the requested mode."""
    engine = TemplateEngine.with_overrides(None)
    destination = tmp_path / "config" / "config.yml"

    changed = engine.render_to_path(
        "registry/config.yml.j2",
        destination,
        {"port": 5000},
        mode=0o640,
    )

    assert changed is True
    assert "addr: :5000" in destination.read_text(encoding="utf-8")
    assert destination.stat().st_mode & 0o777 == 0o640


def test_render_to_path_reports_unchanged(tmp_path: Path) -> None:
    """Rendering identical content reports no change."""
    engine = TemplateEngine.with_overrides(None)
    destination = tmp_path / "config.yml"

    assert engine.render_to_path("registry/config.yml.j2", destination, {"port": 5000})
    assert not engine.render_to_path("registry/config.yml.j2", destination, {"port": 5000})
    assert engine.render_to_path("registry/config.yml.j2", destination, {"port": 5001})


def test_override_directory_shadows_builtin(tmp_path: Path) -> None:
    """Templates in the override directory take precedence."""
    override_dir = tmp_path / "templates"
    (override_dir / "tls").mkdir(parents=True)
    (override_dir / "tls" / "san.cnf.j2").write_text("custom {{ host }}\n", encoding="utf-8")

    engine = TemplateEngine.with_overrides(override_dir)

    output = engine.render_to_string("tls/san.cnf.j2", {"host": "alpha", "ip": "10.0.0.1"})
    assert output == "custom alpha\n"
