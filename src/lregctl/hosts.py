"""Ensure the registry hostname resolves locally through ``/etc/hosts``."""
from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path

from .privileged import PrivilegedFiles, PrivilegeError


class HostsFileError(RuntimeError):
    """Raised when the hosts file cannot be read or updated."""


@dataclass(frozen=True, slots=True)
class HostsUpdateResult:
    """Outcome of :func:`ensure_hosts_entry`."""

    entry: str
    added: bool
    method: str | None = None


def hosts_entry_present(text: str, ip: str, host: str) -> bool:
    """Return True when a non-comment line maps *ip* to *host* (case-insensitive)."""
    for raw_line in text.splitlines():
        line = raw_line.split("#", 1)[0].strip()
        if not line:
            continue
        fields = line.split()
        if fields[0] == ip and host.lower() in (name.lower() for name in fields[1:]):
            return True
    return False


def ensure_hosts_entry(
    hosts_file: Path,
    ip: str,
    host: str,
    *,
    files: PrivilegedFiles,
) -> HostsUpdateResult:
    """Append ``ip host`` to *hosts_file* unless an equivalent mapping exists."""
    entry = f"{ip} {host}"
    try:
        text = hosts_file.read_text(encoding="utf-8") if hosts_file.exists() else ""
    except OSError as exc:
        raise HostsFileError(f"Unable to read {hosts_file}: {exc}") from exc
    if hosts_entry_present(text, ip, host):
        return HostsUpdateResult(entry=entry, added=False)

    line = entry if not text or text.endswith("\n") else f"\n{entry}"
    try:
        method = files.append_line(hosts_file, line)
    except (PrivilegeError, OSError) as exc:
        raise HostsFileError(
            f"Could not write to {hosts_file} ({exc}). Add this entry manually: {entry}"
        ) from exc
    return HostsUpdateResult(entry=entry, added=True, method=method)


__all__ = ["HostsFileError", "HostsUpdateResult", "ensure_hosts_entry", "hosts_entry_present"]
