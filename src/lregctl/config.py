"""Configuration loader for lregctl.

Values are read from several layers, later layers winning:

1. Built-in defaults.
2. ``/etc/lregctl/config.yml`` (or an override path).
3. Environment variables prefixed with ``LREGCTL_``.
4. The bare ``COSIGN_VERSION`` variable, kept for compatibility with the
   shell tooling this CLI replaces.
5. Explicit overrides supplied programmatically (reserved for CLI flags).

Environment keys use double underscores to express nesting, e.g.::

    export LREGCTL_REGISTRY__PORT=5443
    export LREGCTL_COSIGN__INSTALL_DIR=$HOME/.local/bin

Values are coerced via PyYAML's ``safe_load`` so that booleans and numbers are
parsed naturally. Relative layout paths are anchored at ``root_dir`` (the
current working directory unless configured otherwise).
"""
from __future__ import annotations

import os
from collections.abc import Mapping, MutableMapping, Sequence
from dataclasses import dataclass
from pathlib import Path
from typing import cast

try:  # PyYAML is a runtime dependency (declared in pyproject.toml).
    import yaml
except Exception as exc:  # pragma: no cover - import failure covered in tests
    raise RuntimeError(
        "PyYAML is required to load lregctl configuration. Install with "
        "`pip install lregctl` or ensure PyYAML>=6.0 is available."
    ) from exc


ENV_PREFIX = "LREGCTL_"
CONFIG_ENV_VAR = f"{ENV_PREFIX}CONFIG_FILE"
COSIGN_VERSION_ENV_VAR = "COSIGN_VERSION"
RESERVED_ENV_KEYS = {CONFIG_ENV_VAR}


class ConfigError(RuntimeError):
    """Raised when configuration parsing fails."""


@dataclass(frozen=True)
class LayoutConfig:
    """Workspace directories and files produced by a setup run."""

    certs_dir: Path
    config_dir: Path
    data_dir: Path
    ui_data_dir: Path
    manifest: Path

    def to_dict(self) -> dict[str, object]:
        """Return a serialisable representation."""
        return {
            "certs_dir": str(self.certs_dir),
            "config_dir": str(self.config_dir),
            "data_dir": str(self.data_dir),
            "ui_data_dir": str(self.ui_data_dir),
            "manifest": str(self.manifest),
        }


@dataclass(frozen=True)
class RegistryConfig:
    """Registry address defaults and container settings."""

    host: str = "registry.local"
    ip: str = "127.0.0.1"
    port: int = 5000
    image: str = "registry:2.8.3"
    container_name: str = "local-registry"
    network: str = "local-registry-network"

    def to_dict(self) -> dict[str, object]:
        """Return a serialisable representation."""
        return {
            "host": self.host,
            "ip": self.ip,
            "port": self.port,
            "image": self.image,
            "container_name": self.container_name,
            "network": self.network,
        }


@dataclass(frozen=True)
class UIConfig:
    """Management UI container settings."""

    image: str = "portainer/portainer-ce:latest"
    container_name: str = "portainer"
    ports: tuple[int, ...] = (9000, 8000)
    docker_socket: str = "/var/run/docker.sock"

    def to_dict(self) -> dict[str, object]:
        """Return a serialisable representation."""
        return {
            "image": self.image,
            "container_name": self.container_name,
            "ports": list(self.ports),
            "docker_socket": self.docker_socket,
        }


@dataclass(frozen=True)
class CertificateConfig:
    """Key sizes and validity periods for issued certificates."""

    ca_common_name: str = "Local Registry CA"
    key_size: int = 4096
    ca_days: int = 3650
    server_days: int = 1095
    warn_expiry_days: int = 30

    def to_dict(self) -> dict[str, object]:
        """Return a serialisable representation."""
        return {
            "ca_common_name": self.ca_common_name,
            "key_size": self.key_size,
            "ca_days": self.ca_days,
            "server_days": self.server_days,
            "warn_expiry_days": self.warn_expiry_days,
        }


@dataclass(frozen=True)
class DockerConfig:
    """Container runtime integration values."""

    docker_bin: str = "docker"
    config_dir: Path = Path("/etc/docker")
    trust_root: Path = Path("/etc/docker/certs.d")
    service: str = "docker"
    systemctl_bin: str = "systemctl"

    def to_dict(self) -> dict[str, object]:
        """Return a serialisable representation."""
        return {
            "docker_bin": self.docker_bin,
            "config_dir": str(self.config_dir),
            "trust_root": str(self.trust_root),
            "service": self.service,
            "systemctl_bin": self.systemctl_bin,
        }


@dataclass(frozen=True)
class CosignConfig:
    """Signing tool installation settings."""

    version: str = "v2.2.4"
    install_dir: Path = Path("/usr/local/bin")
    download_clients: tuple[str, ...] = ("curl", "wget", "urllib")
    release_url: str = (
        "https://github.com/sigstore/cosign/releases/download/{version}/cosign-{os}-{arch}"
    )

    def to_dict(self) -> dict[str, object]:
        """Return a serialisable representation."""
        return {
            "version": self.version,
            "install_dir": str(self.install_dir),
            "download_clients": list(self.download_clients),
            "release_url": self.release_url,
        }


@dataclass(frozen=True)
class AppConfig:
    """Resolved configuration values for lregctl."""

    config_file: Path
    root_dir: Path
    logs_dir: Path
    runtime_dir: Path
    templates_dir: Path | None
    lock_timeout: float
    hosts_file: Path
    sudo_bin: str
    layout: LayoutConfig
    registry: RegistryConfig
    ui: UIConfig
    certificates: CertificateConfig
    docker: DockerConfig
    cosign: CosignConfig

    def to_dict(self) -> dict[str, object]:
        """Return a JSON-serialisable representation of the config."""
        return {
            "config_file": str(self.config_file),
            "root_dir": str(self.root_dir),
            "logs_dir": str(self.logs_dir),
            "runtime_dir": str(self.runtime_dir),
            "templates_dir": str(self.templates_dir) if self.templates_dir else None,
            "lock_timeout": self.lock_timeout,
            "hosts_file": str(self.hosts_file),
            "sudo_bin": self.sudo_bin,
            "layout": self.layout.to_dict(),
            "registry": self.registry.to_dict(),
            "ui": self.ui.to_dict(),
            "certificates": self.certificates.to_dict(),
            "docker": self.docker.to_dict(),
            "cosign": self.cosign.to_dict(),
        }


DEFAULTS: dict[str, object] = {
    "config_file": "/etc/lregctl/config.yml",
    "root_dir": None,  # current working directory when absent
    "logs_dir": None,  # derived from runtime_dir when absent
    "runtime_dir": None,  # derived from root_dir when absent
    "templates_dir": None,
    "lock_timeout": 30.0,
    "hosts_file": "/etc/hosts",
    "sudo_bin": "sudo",
    "layout": {
        "certs_dir": "certs",
        "config_dir": "config",
        "data_dir": "registry-data",
        "ui_data_dir": "portainer-data",
        "manifest": "docker-compose.yaml",
    },
    "registry": {
        "host": "registry.local",
        "ip": "127.0.0.1",
        "port": 5000,
        "image": "registry:2.8.3",
        "container_name": "local-registry",
        "network": "local-registry-network",
    },
    "ui": {
        "image": "portainer/portainer-ce:latest",
        "container_name": "portainer",
        "ports": [9000, 8000],
        "docker_socket": "/var/run/docker.sock",
    },
    "certificates": {
        "ca_common_name": "Local Registry CA",
        "key_size": 4096,
        "ca_days": 3650,
        "server_days": 1095,
        "warn_expiry_days": 30,
    },
    "docker": {
        "docker_bin": "docker",
        "config_dir": "/etc/docker",
        "trust_root": None,  # <config_dir>/certs.d when absent
        "service": "docker",
        "systemctl_bin": "systemctl",
    },
    "cosign": {
        "version": "v2.2.4",
        "install_dir": "/usr/local/bin",
        "download_clients": ["curl", "wget", "urllib"],
        "release_url": CosignConfig.release_url,
    },
}

ALLOWED_TOP_LEVEL_KEYS = set(DEFAULTS.keys())
SECTION_KEYS: dict[str, set[str]] = {
    section: set(_value.keys())
    for section, _value in DEFAULTS.items()
    if isinstance(_value, Mapping)
}
ALLOWED_DOWNLOAD_CLIENTS = {"curl", "wget", "urllib"}
ALLOWED_KEY_SIZES = {2048, 3072, 4096}


def load_config(
    config_file: str | os.PathLike[str] | None = None,
    *,
    env: Mapping[str, str] | None = None,
    overrides: Mapping[str, object] | None = None,
) -> AppConfig:
    """Load and merge configuration sources into an :class:`AppConfig`."""
    merged: dict[str, object] = _deep_copy(DEFAULTS)
    resolved_env = dict(os.environ if env is None else env)

    config_default = _expect_str(merged["config_file"], "config_file")
    config_path = _determine_config_path(config_default, config_file, resolved_env)

    file_values = _load_yaml_file(config_path)
    if file_values:
        _deep_merge(merged, file_values)

    env_values = _build_env_overrides(resolved_env)
    if env_values:
        _deep_merge(merged, env_values)

    cosign_version = resolved_env.get(COSIGN_VERSION_ENV_VAR, "").strip()
    if cosign_version:
        _deep_merge(merged, {"cosign": {"version": cosign_version}})

    if overrides:
        _deep_merge(merged, dict(overrides))

    merged["config_file"] = str(config_path)

    _validate_structure(merged)

    return _build_app_config(merged)


def _determine_config_path(
    default_path: str,
    cli_override: str | os.PathLike[str] | None,
    env: Mapping[str, str],
) -> Path:
    if cli_override:
        return Path(cli_override)
    if CONFIG_ENV_VAR in env:
        return Path(env[CONFIG_ENV_VAR])
    return Path(default_path)


def _load_yaml_file(path: Path) -> dict[str, object]:
    if not path.exists():
        return {}
    try:
        data = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
    except yaml.YAMLError as exc:  # pragma: no cover - PyYAML owns detailed error
        raise ConfigError(f"Failed to parse config file {path}: {exc}") from exc
    if not isinstance(data, Mapping):
        raise ConfigError(f"Config file {path} must contain a mapping at the top level.")
    return _as_dict(data, f"file:{path}")


def _validate_structure(raw: Mapping[str, object]) -> None:
    unknown_keys = set(raw.keys()) - ALLOWED_TOP_LEVEL_KEYS
    if unknown_keys:
        joined = ", ".join(sorted(unknown_keys))
        raise ConfigError(f"Unknown configuration keys: {joined}.")

    for section, allowed in SECTION_KEYS.items():
        mapping = _as_dict(raw.get(section), section)
        unknown = set(mapping.keys()) - allowed
        if unknown:
            joined = ", ".join(sorted(unknown))
            raise ConfigError(f"Unknown {section} configuration keys: {joined}.")

    lock_timeout = raw.get("lock_timeout")
    if lock_timeout is not None:
        _expect_positive_float(lock_timeout, "lock_timeout", default=30.0)

    cosign_map = _as_dict(raw.get("cosign"), "cosign")
    clients = cosign_map.get("download_clients")
    if clients is not None:
        for client in _as_sequence(clients, "cosign.download_clients"):
            if str(client) not in ALLOWED_DOWNLOAD_CLIENTS:
                allowed = ", ".join(sorted(ALLOWED_DOWNLOAD_CLIENTS))
                raise ConfigError(
                    f"Unsupported download client '{client}'. Allowed: {allowed}."
                )


def _build_app_config(raw: Mapping[str, object]) -> AppConfig:
    config_file = _to_path(raw.get("config_file"))
    root_value = raw.get("root_dir")
    root_dir = _anchor(_to_path(root_value), Path.cwd()) if root_value else Path.cwd()

    runtime_value = raw.get("runtime_dir")
    runtime_dir = (
        _anchor(_to_path(runtime_value), root_dir) if runtime_value else root_dir / ".lregctl"
    )
    logs_value = raw.get("logs_dir")
    logs_dir = _anchor(_to_path(logs_value), root_dir) if logs_value else runtime_dir / "logs"

    templates_value = raw.get("templates_dir")
    templates_dir = _to_path(templates_value) if templates_value else None

    lock_timeout = _expect_positive_float(raw.get("lock_timeout"), "lock_timeout", default=30.0)

    layout_mapping = _as_dict(raw.get("layout"), "layout")
    layout = LayoutConfig(
        certs_dir=_anchor(_to_path(layout_mapping.get("certs_dir", "certs")), root_dir),
        config_dir=_anchor(_to_path(layout_mapping.get("config_dir", "config")), root_dir),
        data_dir=_anchor(_to_path(layout_mapping.get("data_dir", "registry-data")), root_dir),
        ui_data_dir=_anchor(
            _to_path(layout_mapping.get("ui_data_dir", "portainer-data")), root_dir
        ),
        manifest=_anchor(
            _to_path(layout_mapping.get("manifest", "docker-compose.yaml")), root_dir
        ),
    )

    registry_mapping = _as_dict(raw.get("registry"), "registry")
    registry_port = _expect_int(registry_mapping.get("port"), "registry.port", default=5000)
    _expect_port(registry_port, "registry.port")
    registry = RegistryConfig(
        host=str(registry_mapping.get("host", "registry.local")),
        ip=str(registry_mapping.get("ip", "127.0.0.1")),
        port=registry_port,
        image=str(registry_mapping.get("image", "registry:2.8.3")),
        container_name=str(registry_mapping.get("container_name", "local-registry")),
        network=str(registry_mapping.get("network", "local-registry-network")),
    )

    ui_mapping = _as_dict(raw.get("ui"), "ui")
    ui_ports_raw = ui_mapping.get("ports")
    ui_ports: tuple[int, ...] = UIConfig.ports
    if ui_ports_raw is not None:
        parsed_ports: list[int] = []
        for index, value in enumerate(_as_sequence(ui_ports_raw, "ui.ports")):
            port = _expect_int(value, f"ui.ports[{index}]", default=0)
            _expect_port(port, f"ui.ports[{index}]")
            parsed_ports.append(port)
        ui_ports = tuple(parsed_ports)
    ui = UIConfig(
        image=str(ui_mapping.get("image", UIConfig.image)),
        container_name=str(ui_mapping.get("container_name", UIConfig.container_name)),
        ports=ui_ports,
        docker_socket=str(ui_mapping.get("docker_socket", UIConfig.docker_socket)),
    )

    certs_mapping = _as_dict(raw.get("certificates"), "certificates")
    key_size = _expect_int(certs_mapping.get("key_size"), "certificates.key_size", default=4096)
    if key_size not in ALLOWED_KEY_SIZES:
        allowed = ", ".join(str(size) for size in sorted(ALLOWED_KEY_SIZES))
        raise ConfigError(f"Unsupported certificates.key_size {key_size}. Allowed: {allowed}.")
    ca_days = _expect_int(certs_mapping.get("ca_days"), "certificates.ca_days", default=3650)
    server_days = _expect_int(
        certs_mapping.get("server_days"), "certificates.server_days", default=1095
    )
    if ca_days <= 0 or server_days <= 0:
        raise ConfigError("Certificate validity periods must be greater than zero.")
    warn_days = _expect_int(
        certs_mapping.get("warn_expiry_days"), "certificates.warn_expiry_days", default=30
    )
    if warn_days < 0:
        raise ConfigError("certificates.warn_expiry_days must be non-negative.")
    certificates = CertificateConfig(
        ca_common_name=str(certs_mapping.get("ca_common_name", "Local Registry CA")),
        key_size=key_size,
        ca_days=ca_days,
        server_days=server_days,
        warn_expiry_days=warn_days,
    )

    docker_mapping = _as_dict(raw.get("docker"), "docker")
    docker_config_dir = _to_path(docker_mapping.get("config_dir", "/etc/docker"))
    trust_value = docker_mapping.get("trust_root")
    docker = DockerConfig(
        docker_bin=str(docker_mapping.get("docker_bin", "docker")),
        config_dir=docker_config_dir,
        trust_root=_to_path(trust_value) if trust_value else docker_config_dir / "certs.d",
        service=str(docker_mapping.get("service", "docker")),
        systemctl_bin=str(docker_mapping.get("systemctl_bin", "systemctl")),
    )

    cosign_mapping = _as_dict(raw.get("cosign"), "cosign")
    clients_raw = cosign_mapping.get("download_clients")
    clients = (
        tuple(str(item) for item in _as_sequence(clients_raw, "cosign.download_clients"))
        if clients_raw is not None
        else CosignConfig.download_clients
    )
    cosign = CosignConfig(
        version=str(cosign_mapping.get("version", CosignConfig.version)).strip(),
        install_dir=_to_path(cosign_mapping.get("install_dir", "/usr/local/bin")),
        download_clients=clients,
        release_url=str(cosign_mapping.get("release_url", CosignConfig.release_url)),
    )

    return AppConfig(
        config_file=config_file,
        root_dir=root_dir,
        logs_dir=logs_dir,
        runtime_dir=runtime_dir,
        templates_dir=templates_dir,
        lock_timeout=lock_timeout,
        hosts_file=_to_path(raw.get("hosts_file", "/etc/hosts")),
        sudo_bin=str(raw.get("sudo_bin", "sudo")),
        layout=layout,
        registry=registry,
        ui=ui,
        certificates=certificates,
        docker=docker,
        cosign=cosign,
    )


def _build_env_overrides(env: Mapping[str, str]) -> dict[str, object]:
    overrides: dict[str, object] = {}
    for key, value in env.items():
        if key in RESERVED_ENV_KEYS:
            continue
        if not key.startswith(ENV_PREFIX):
            continue
        suffix = key[len(ENV_PREFIX) :]
        path_segments = [segment.lower() for segment in suffix.split("__") if segment]
        if not path_segments:
            continue
        _assign_nested(overrides, path_segments, _coerce_value(value))
    return overrides


def _assign_nested(tree: MutableMapping[str, object], path: list[str], value: object) -> None:
    current: MutableMapping[str, object] = tree
    for segment in path[:-1]:
        existing = current.get(segment)
        if existing is None:
            new_child: MutableMapping[str, object] = {}
            current[segment] = new_child
            current = new_child
            continue
        if isinstance(existing, MutableMapping):
            current = cast(MutableMapping[str, object], existing)
            continue
        raise ConfigError(
            "Environment overrides conflict with existing scalar value at "
            f"{'.'.join(path)}"
        )
    current[path[-1]] = value


def _deep_merge(target: MutableMapping[str, object], overrides: Mapping[str, object]) -> None:
    for key, value in overrides.items():
        existing = target.get(key)
        if isinstance(existing, MutableMapping) and isinstance(value, Mapping):
            _deep_merge(existing, _as_dict(value, f"merge.{key}"))
            continue
        target[key] = value


def _deep_copy(source: Mapping[str, object]) -> dict[str, object]:
    result: dict[str, object] = {}
    for key, value in source.items():
        if isinstance(value, Mapping):
            result[key] = _deep_copy(_as_dict(value, f"copy.{key}"))
        elif isinstance(value, list):
            result[key] = list(value)
        else:
            result[key] = value
    return result


def _as_sequence(value: object, label: str) -> Sequence[object]:
    if isinstance(value, (str, bytes)) or not isinstance(value, Sequence):
        raise ConfigError(f"Expected {label} to be a sequence. Got {type(value).__name__}.")
    return value


def _coerce_value(raw: str) -> object:
    raw = raw.strip()
    try:
        parsed = yaml.safe_load(raw)
    except yaml.YAMLError:  # pragma: no cover - treat as string if parsing fails
        return raw
    return parsed


def _anchor(path: Path, base: Path) -> Path:
    return path if path.is_absolute() else base / path


def _to_path(value: object) -> Path:
    if value is None:
        raise ConfigError("Expected a filesystem path, received None.")
    if isinstance(value, Path):
        return value.expanduser()
    if isinstance(value, str):
        return Path(value).expanduser()
    raise ConfigError(f"Cannot convert value {value!r} to Path.")


def _expect_port(value: int, label: str) -> None:
    if not 1 <= value <= 65535:
        raise ConfigError(f"{label} must be between 1 and 65535. Got {value}.")


def _expect_int(value: object | None, label: str, *, default: int) -> int:
    if value is None:
        return default
    if isinstance(value, bool):
        raise ConfigError(f"Expected {label} to be an integer. Got boolean {value!r}.")
    if isinstance(value, int):
        return value
    if isinstance(value, str):
        try:
            return int(value, 0)
        except ValueError as exc:
            raise ConfigError(f"Invalid integer for {label}: {value!r}.") from exc
    raise ConfigError(f"Expected {label} to be an integer. Got {type(value).__name__}.")


def _expect_str(value: object, key: str) -> str:
    if isinstance(value, str):
        return value
    raise ConfigError(f"Expected {key} to resolve to a string. Got {value!r}.")


def _expect_positive_float(
    value: object | None,
    label: str,
    *,
    default: float,
) -> float:
    if value is None:
        return float(default)
    if isinstance(value, bool):
        raise ConfigError(f"Expected {label} to be a number. Got boolean {value!r}.")
    if isinstance(value, (int, float)):
        numeric = float(value)
    elif isinstance(value, str):
        try:
            numeric = float(value)
        except ValueError as exc:
            raise ConfigError(f"Invalid number for {label}: {value!r}.") from exc
    else:
        raise ConfigError(
            f"Expected {label} to be numeric. Got {type(value).__name__}."
        )
    if numeric <= 0:
        raise ConfigError(f"{label} must be greater than zero. Got {numeric}.")
    return numeric


def _as_dict(value: object | None, label: str) -> dict[str, object]:
    if value is None:
        return {}
    if not isinstance(value, Mapping):
        raise ConfigError(f"Expected {label} to be a mapping. Got {type(value).__name__}.")
    result: dict[str, object] = {}
    for key, item in value.items():
        if not isinstance(key, str):
            raise ConfigError(f"Mapping {label} must use string keys. Got {key!r}.")
        result[key] = item
    return result


__all__ = [
    "AppConfig",
    "CertificateConfig",
    "ConfigError",
    "CosignConfig",
    "DockerConfig",
    "LayoutConfig",
    "RegistryConfig",
    "UIConfig",
    "load_config",
]
