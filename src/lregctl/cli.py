"""Typer-powered command line for ``lregctl``.

``lregctl setup`` provisions a TLS-enabled local container registry in the
current directory: a local CA and server certificate, the static registry
config, a compose manifest for the registry and its management UI, the
running services, Docker client trust, and the cosign signing tool. The
individual steps are also exposed as subcommands.
"""
from __future__ import annotations

import textwrap
from collections.abc import Mapping
from dataclasses import dataclass
from pathlib import Path
from typing import NoReturn

import typer
from rich.console import Console
from rich.table import Table

from . import __version__
from .config import AppConfig, ConfigError, load_config
from .exit_codes import ExitCode
from .hosts import HostsFileError, ensure_hosts_entry
from .locking import LockManager, LockTimeoutError
from .logging import OperationScope, StructuredLogger
from .manifest import ManifestError, ManifestRenderer
from .privileged import PrivilegedFiles
from .providers import (
    CosignInstaller,
    CosignInstallError,
    DockerError,
    DockerProvider,
    SystemdProvider,
    TrustInstallResult,
    UnsupportedArchitectureError,
)
from .targets import RegistryTarget, TargetValidationError, resolve_target
from .templates import TemplateEngine
from .tls import (
    CertificateAuthority,
    CertificateError,
    TLSValidationReport,
    TLSValidationSeverity,
    TLSValidator,
    describe_ca,
)

console = Console()

CONFIG_FILE_OPTION = typer.Option(
    None,
    "--config-file",
    dir_okay=False,
    help="Override the path to lregctl's YAML config file.",
)
ROOT_DIR_OPTION = typer.Option(
    None,
    "--root-dir",
    file_okay=False,
    help="Workspace directory for certs, config, data and the manifest (default: cwd).",
)
HOST_ARGUMENT = typer.Argument(
    None,
    help="Registry hostname placed in the certificate SAN (default: registry.local).",
    show_default=False,
)
IP_ARGUMENT = typer.Argument(
    None,
    help="Registry IP address placed in the certificate SAN (default: 127.0.0.1).",
    show_default=False,
)
PORT_ARGUMENT = typer.Argument(
    None,
    help="Registry port published on both sides of the binding (default: 5000).",
    show_default=False,
)
JSON_OPTION = typer.Option(
    False,
    "--json",
    help="Emit machine-readable JSON.",
)
NO_START_OPTION = typer.Option(
    False,
    "--no-start",
    help="Write certificates and the manifest without running docker compose.",
)
SKIP_TRUST_OPTION = typer.Option(
    False,
    "--skip-trust",
    help="Do not install the CA into Docker's certs.d trust directories.",
)
SKIP_HOSTS_OPTION = typer.Option(
    False,
    "--skip-hosts",
    help="Do not add the registry hostname to the hosts file.",
)
SKIP_COSIGN_OPTION = typer.Option(
    False,
    "--skip-cosign",
    help="Do not install the cosign signing tool.",
)
COSIGN_VERSION_OPTION = typer.Option(
    None,
    "--version",
    help="Cosign release to install (default: COSIGN_VERSION or config).",
)

_TLS_STATUS_STYLE = {
    TLSValidationSeverity.OK: "[green]OK[/green]",
    TLSValidationSeverity.WARNING: "[yellow]WARN[/yellow]",
    TLSValidationSeverity.ERROR: "[red]FAIL[/red]",
}

app = typer.Typer(
    add_completion=False,
    help=textwrap.dedent(
        """
        Local container registry provisioning CLI.

        Issues a local CA and registry certificate, renders the compose
        manifest, starts the registry and its management UI, and installs
        client trust plus the cosign signing tool.
        """
    ).strip(),
)


@dataclass
class RuntimeContext:
    """Aggregated runtime objects shared by commands."""

    config: AppConfig
    locks: LockManager
    logger: StructuredLogger
    templates: TemplateEngine
    files: PrivilegedFiles
    authority: CertificateAuthority
    validator: TLSValidator
    manifest: ManifestRenderer
    systemd: SystemdProvider
    docker: DockerProvider


def _ensure_runtime(
    ctx: typer.Context,
    config_file: Path | None,
    root_dir: Path | None = None,
    lock_timeout_override: float | None = None,
) -> RuntimeContext:
    runtime = ctx.obj
    if isinstance(runtime, RuntimeContext):
        return runtime

    overrides: dict[str, object] = {}
    if root_dir is not None:
        overrides["root_dir"] = str(root_dir)
    if lock_timeout_override is not None:
        overrides["lock_timeout"] = lock_timeout_override

    try:
        config = load_config(config_file=config_file, overrides=overrides)
    except ConfigError as exc:
        console.print(f"[red]Configuration error:[/red] {exc}")
        raise typer.Exit(code=ExitCode.VALIDATION) from exc

    templates = TemplateEngine.with_overrides(config.templates_dir)
    files = PrivilegedFiles(sudo_bin=config.sudo_bin)
    systemd = SystemdProvider(
        systemctl_bin=config.docker.systemctl_bin,
        sudo_bin=config.sudo_bin if files.sudo_available() else None,
    )
    runtime = RuntimeContext(
        config=config,
        locks=LockManager(config.runtime_dir, config.lock_timeout),
        logger=StructuredLogger(config.logs_dir),
        templates=templates,
        files=files,
        authority=CertificateAuthority(
            config.layout.certs_dir,
            config.certificates,
            templates,
        ),
        validator=TLSValidator(config.certificates),
        manifest=ManifestRenderer(config, templates),
        systemd=systemd,
        docker=DockerProvider(
            files=files,
            systemd=systemd,
            docker_bin=config.docker.docker_bin,
            config_dir=config.docker.config_dir,
            trust_root=config.docker.trust_root,
            service=config.docker.service,
        ),
    )
    ctx.obj = runtime
    return runtime


def _get_runtime(ctx: typer.Context) -> RuntimeContext:
    runtime = ctx.obj
    if isinstance(runtime, RuntimeContext):
        return runtime
    return _ensure_runtime(ctx, None)


@app.callback(invoke_without_command=True)
def _root(  # noqa: D401 - Typer displays help for us, docstring optional.
    ctx: typer.Context,
    version: bool = typer.Option(
        False,
        "--version",
        "-V",
        help="Show the lregctl version and exit.",
    ),
    config_file: Path | None = CONFIG_FILE_OPTION,
    root_dir: Path | None = ROOT_DIR_OPTION,
    lock_timeout: float | None = typer.Option(
        None,
        "--lock-timeout",
        help="Override workspace lock acquisition timeout in seconds.",
    ),
) -> None:
    """Entry point callback invoked for every CLI execution."""
    if version:
        console.print(f"lregctl {__version__}")
        raise typer.Exit(code=ExitCode.OK)

    _ensure_runtime(ctx, config_file, root_dir, lock_timeout)

    if ctx.invoked_subcommand is None:
        console.print(ctx.get_help())
        raise typer.Exit(code=ExitCode.OK)


certs_app = typer.Typer(help="Issue and verify the registry's TLS certificates.")
manifest_app = typer.Typer(help="Render the compose manifest.")
trust_app = typer.Typer(help="Install the local CA into Docker's trust directories.")
cosign_app = typer.Typer(help="Install the cosign signing tool.")
config_app = typer.Typer(help="Inspect resolved configuration.")

app.add_typer(certs_app, name="certs")
app.add_typer(manifest_app, name="manifest")
app.add_typer(trust_app, name="trust")
app.add_typer(cosign_app, name="cosign")
app.add_typer(config_app, name="config")


# ----------------------------------------------------------------------
# Shared step helpers


def _command_error(
    op: OperationScope,
    message: str,
    *,
    rc: int,
    errors: list[str] | None = None,
) -> NoReturn:
    console.print(f"[red]{message}[/red]")
    op.error(message, errors=list(errors or [message]), rc=int(rc))
    raise typer.Exit(code=int(rc))


def _best_effort(op: OperationScope, warnings: list[str], step: str, message: str) -> None:
    console.print(f"[yellow]!![/yellow] {message}")
    op.add_step(step, status="warning", detail=message)
    warnings.append(message)


def _resolve(
    runtime: RuntimeContext,
    op: OperationScope,
    host: str | None = None,
    ip: str | None = None,
    port: int | None = None,
) -> RegistryTarget:
    try:
        target = resolve_target(runtime.config, host, ip, port)
    except TargetValidationError as exc:
        _command_error(op, str(exc), rc=ExitCode.VALIDATION)
    op.target.update(target.to_dict())
    return target


def _prepare_directories(runtime: RuntimeContext, op: OperationScope) -> None:
    layout = runtime.config.layout
    directories = (layout.certs_dir, layout.config_dir, layout.data_dir, layout.ui_data_dir)
    for directory in directories:
        try:
            directory.mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            _command_error(
                op,
                f"Failed to create {directory}: {exc}",
                rc=ExitCode.ENVIRONMENT,
            )
    op.add_step("directories.ensure", detail=[str(item) for item in directories])


def _ensure_hosts(
    runtime: RuntimeContext,
    target: RegistryTarget,
    op: OperationScope,
    warnings: list[str],
) -> None:
    hosts_file = runtime.config.hosts_file
    try:
        result = ensure_hosts_entry(hosts_file, target.ip, target.host, files=runtime.files)
    except HostsFileError as exc:
        _best_effort(op, warnings, "hosts.ensure", str(exc))
        return
    if result.added:
        console.print(f"==> Added '{result.entry}' to {hosts_file} ({result.method})")
        op.add_step("hosts.ensure", detail=f"added {result.entry}")
    else:
        console.print(f"==> {hosts_file} already maps {target.host} to {target.ip}")
        op.add_step("hosts.ensure", status="skipped", detail="present")


def _issue_certificates(
    runtime: RuntimeContext,
    target: RegistryTarget,
    op: OperationScope,
) -> None:
    authority = runtime.authority
    try:
        ca = authority.ensure_ca()
        if ca.created:
            console.print(f"==> Generated local CA ({ca.material.certificate})")
        else:
            console.print(
                f"==> Found existing CA at {ca.material.certificate} (skipping CA generation)"
            )
        op.add_step(
            "certs.ca",
            status="success" if ca.created else "skipped",
            detail=describe_ca(ca),
        )

        issued = authority.issue_server(target.host, target.ip)
    except CertificateError as exc:
        _command_error(op, f"Certificate generation failed: {exc}", rc=ExitCode.PROVIDER)
    console.print(
        f"==> Issued server certificate {issued.material.certificate} "
        f"(SAN {', '.join(sorted(issued.subject_alt_names))})"
    )
    op.add_step("certs.server", detail=issued.to_dict())


def _render_manifest(runtime: RuntimeContext, port: int, op: OperationScope) -> None:
    renderer = runtime.manifest
    try:
        registry_config = renderer.write_registry_config(port)
        manifest = renderer.write(port)
    except ManifestError as exc:
        _command_error(op, str(exc), rc=ExitCode.PROVIDER)
    if registry_config.changed:
        console.print(f"==> Wrote minimal registry config to {registry_config.path}")
    op.add_step(
        "registry.config",
        status="success" if registry_config.changed else "skipped",
        detail=str(registry_config.path),
    )
    console.print(f"==> Wrote {manifest.path}")
    op.add_step("manifest.write", detail={"path": manifest.path, "changed": manifest.changed})


def _compose_up(runtime: RuntimeContext, op: OperationScope) -> None:
    manifest = runtime.config.layout.manifest
    console.print("==> Starting registry with docker compose")
    try:
        runtime.docker.compose_up(manifest, cwd=runtime.config.root_dir)
    except DockerError as exc:
        _command_error(op, f"Registry bring-up failed: {exc}", rc=ExitCode.PROVIDER)
    op.add_step("compose.up", detail=str(manifest))


def _install_trust(
    runtime: RuntimeContext,
    target: RegistryTarget,
    op: OperationScope,
    warnings: list[str],
) -> TrustInstallResult:
    ca_certificate = runtime.authority.ca_material.certificate
    result = runtime.docker.install_trust(ca_certificate, target)
    for step in result.steps:
        if step.status == "warning":
            _best_effort(op, warnings, step.name, step.detail)
            continue
        if step.status == "skipped" and step.name == "trust.install":
            console.print(f"==> {step.detail}")
        op.add_step(step.name, status=step.status, detail=step.detail)
    for path in result.installed:
        console.print(f"==> Installed CA to Docker trust at {path}")
    if result.daemon_restarted:
        console.print("==> Restarted Docker daemon")
    return result


def _cosign_installer(runtime: RuntimeContext, version: str | None = None) -> CosignInstaller:
    settings = runtime.config.cosign
    return CosignInstaller(
        version=version or settings.version,
        install_dir=settings.install_dir,
        files=runtime.files,
        download_clients=settings.download_clients,
        release_url=settings.release_url,
    )


def _install_cosign(
    runtime: RuntimeContext,
    op: OperationScope,
    warnings: list[str],
    *,
    version: str | None = None,
) -> bool:
    installer = _cosign_installer(runtime, version)
    try:
        result = installer.install()
    except CosignInstallError as exc:
        _best_effort(op, warnings, "cosign.install", str(exc))
        return False
    if result.status == "present":
        console.print(f"==> cosign already installed: {result.path}")
        op.add_step("cosign.install", status="skipped", detail=result.to_dict())
        return True
    console.print(f"==> cosign installed: {result.path}")
    op.add_step("cosign.install", detail=result.to_dict())
    if not result.on_path:
        _best_effort(
            op,
            warnings,
            "cosign.path",
            f"cosign was installed to {result.path} but that directory is not on PATH.",
        )
    return True


def _print_next_steps(
    runtime: RuntimeContext,
    target: RegistryTarget,
    *,
    started: bool,
    trusted: bool,
) -> None:
    endpoint = target.host_endpoint
    ca_file = runtime.authority.ca_material.certificate
    manifest = runtime.config.layout.manifest
    if started:
        headline = f"Registry is up at: https://{endpoint}/v2/"
    else:
        headline = (
            f"Registry not started. Run: docker compose -f {manifest} up -d\n"
            f"It will serve https://{endpoint}/v2/"
        )
    if trusted:
        trust_line = f"CA for Docker (Linux path): {runtime.docker.trust_paths(target)[0]}"
    else:
        trust_line = (
            "CA not installed for Docker. Install it with: "
            f"lregctl trust install {target.host} {target.ip} {target.port}"
        )
    body = textwrap.dedent(
        f"""
        Quick test:
          curl --cacert {ca_file} https://{endpoint}/v2/_catalog
          docker tag <image> {endpoint}/<image>:latest
          docker push {endpoint}/<image>:latest
          docker pull {endpoint}/<image>:latest

        Cosign (works offline; signatures stored in the registry):
          export COSIGN_PASSWORD='changeme'
          cosign generate-key-pair --output-key cosign.key --output-pub cosign.pub
          cosign sign --key cosign.key --tlog-upload=false {endpoint}/<image>:latest
          cosign verify --key cosign.pub {endpoint}/<image>:latest

        If you see x509 SAN errors, push/pull using the same name:
          {endpoint}  or  {target.ip_endpoint}
        and place the CA at {runtime.config.docker.trust_root}/<host:port>/ca.crt accordingly.
        ======================================="""
    )
    console.print(
        f"\n=======================================\n{headline}\n{trust_line}\n{body}\n",
        highlight=False,
        markup=False,
        emoji=False,
        soft_wrap=True,
    )


def _finish(
    op: OperationScope,
    warnings: list[str],
    message: str,
    *,
    context: Mapping[str, object] | None = None,
) -> None:
    if warnings:
        console.print(f"[yellow]{message} (with {len(warnings)} warning(s)).[/yellow]")
        op.warning(f"{message} with warnings.", warnings=warnings, context=context)
        return
    console.print(f"[green]{message}.[/green]")
    op.success(f"{message}.", context=context)


# ----------------------------------------------------------------------
# Commands


@app.command()
def setup(
    ctx: typer.Context,
    host: str | None = HOST_ARGUMENT,
    ip: str | None = IP_ARGUMENT,
    port: int | None = PORT_ARGUMENT,
    no_start: bool = NO_START_OPTION,
    skip_trust: bool = SKIP_TRUST_OPTION,
    skip_hosts: bool = SKIP_HOSTS_OPTION,
    skip_cosign: bool = SKIP_COSIGN_OPTION,
) -> None:
    """Provision certificates, manifest, registry services, trust and cosign."""
    runtime = _get_runtime(ctx)
    config = runtime.config
    args = {
        "host": host,
        "ip": ip,
        "port": port,
        "no_start": no_start,
        "skip_trust": skip_trust,
        "skip_hosts": skip_hosts,
        "skip_cosign": skip_cosign,
    }
    with runtime.logger.operation("setup", args=args, target={"kind": "registry"}) as op:
        target = _resolve(runtime, op, host, ip, port)
        console.print("==> Using:")
        console.print(f"    REG_HOST={target.host}", highlight=False)
        console.print(f"    REG_IP={target.ip}", highlight=False)
        console.print(f"    REG_PORT={target.port}", highlight=False)
        console.print(f"    COSIGN_VERSION={config.cosign.version}", highlight=False)
        console.print(f"    ROOT_DIR={config.root_dir}", highlight=False)

        warnings: list[str] = []
        try:
            with runtime.locks.workspace_lock() as lock:
                op.add_step("lock.acquire", detail={"path": lock.path, "wait_ms": lock.wait_ms})
                _prepare_directories(runtime, op)
                if skip_hosts:
                    op.add_step("hosts.ensure", status="skipped", detail="--skip-hosts")
                else:
                    _ensure_hosts(runtime, target, op, warnings)
                _issue_certificates(runtime, target, op)
                _render_manifest(runtime, target.port, op)
                if no_start:
                    op.add_step("compose.up", status="skipped", detail="--no-start")
                else:
                    _compose_up(runtime, op)
                trust_installed = False
                if skip_trust:
                    op.add_step("trust.install", status="skipped", detail="--skip-trust")
                else:
                    trust_installed = bool(_install_trust(runtime, target, op, warnings).installed)
                if skip_cosign:
                    op.add_step("cosign.install", status="skipped", detail="--skip-cosign")
                else:
                    _install_cosign(runtime, op, warnings)
        except LockTimeoutError as exc:
            _command_error(op, str(exc), rc=ExitCode.ENVIRONMENT)

        _print_next_steps(runtime, target, started=not no_start, trusted=trust_installed)
        _finish(op, warnings, "Setup complete", context={"target": target.to_dict()})


@certs_app.command("issue")
def certs_issue(
    ctx: typer.Context,
    host: str | None = HOST_ARGUMENT,
    ip: str | None = IP_ARGUMENT,
) -> None:
    """Create the CA if missing and issue a fresh server certificate."""
    runtime = _get_runtime(ctx)
    with runtime.logger.operation(
        "certs issue",
        args={"host": host, "ip": ip},
        target={"kind": "certificates"},
    ) as op:
        target = _resolve(runtime, op, host, ip)
        try:
            with runtime.locks.workspace_lock():
                _prepare_directories(runtime, op)
                _issue_certificates(runtime, target, op)
        except LockTimeoutError as exc:
            _command_error(op, str(exc), rc=ExitCode.ENVIRONMENT)
        _finish(op, [], "Certificates issued", context={"target": target.to_dict()})


def _render_tls_report(report: TLSValidationReport, *, json_output: bool) -> None:
    if json_output:
        console.print_json(data=report.to_dict())
        return
    console.print(f"[bold]TLS status:[/bold] {_TLS_STATUS_STYLE[report.status]}")
    table = Table(show_header=True, header_style="bold")
    table.add_column("Scope")
    table.add_column("Check")
    table.add_column("Status")
    table.add_column("Message")
    for finding in report.findings:
        table.add_row(
            finding.scope,
            finding.check,
            _TLS_STATUS_STYLE[finding.severity],
            finding.message,
        )
    console.print(table)
    if report.not_valid_after is not None:
        console.print(f"Not valid after: {report.not_valid_after.isoformat()}")


@certs_app.command("verify")
def certs_verify(
    ctx: typer.Context,
    host: str | None = HOST_ARGUMENT,
    ip: str | None = IP_ARGUMENT,
    json_output: bool = JSON_OPTION,
) -> None:
    """Check the server certificate's SANs, key, issuer and expiry."""
    runtime = _get_runtime(ctx)
    with runtime.logger.operation(
        "certs verify",
        args={"host": host, "ip": ip, "json": json_output},
        target={"kind": "certificates"},
    ) as op:
        target = _resolve(runtime, op, host, ip)
        report = runtime.validator.validate(
            runtime.authority.server_material,
            runtime.authority.ca_material,
            host=target.host,
            ip=target.ip,
        )
        _render_tls_report(report, json_output=json_output)
        context = {"report": report.to_dict()}
        errors = [
            f"{finding.scope}:{finding.check} {finding.message}"
            for finding in report.findings
            if finding.severity is TLSValidationSeverity.ERROR
        ]
        warnings = [
            f"{finding.scope}:{finding.check} {finding.message}"
            for finding in report.findings
            if finding.severity is TLSValidationSeverity.WARNING
        ]
        if errors:
            op.error(
                "TLS validation failed.",
                errors=errors,
                warnings=warnings,
                rc=ExitCode.VALIDATION,
                context=context,
            )
            raise typer.Exit(code=ExitCode.VALIDATION)
        if warnings:
            op.warning(
                "TLS validation completed with warnings.",
                warnings=warnings,
                context=context,
            )
            return
        op.success("TLS validation successful.", context=context)


@manifest_app.command("render")
def manifest_render(
    ctx: typer.Context,
    port: int | None = PORT_ARGUMENT,
    stdout: bool = typer.Option(
        False,
        "--stdout",
        help="Print the manifest instead of writing it.",
    ),
) -> None:
    """Write config/config.yml (if absent) and the compose manifest."""
    runtime = _get_runtime(ctx)
    with runtime.logger.operation(
        "manifest render",
        args={"port": port, "stdout": stdout},
        target={"kind": "manifest"},
    ) as op:
        target = _resolve(runtime, op, port=port)
        if stdout:
            try:
                text = runtime.manifest.render(target.port)
            except ManifestError as exc:
                _command_error(op, str(exc), rc=ExitCode.PROVIDER)
            console.print(
                text, markup=False, highlight=False, emoji=False, soft_wrap=True, end=""
            )
            op.success("Rendered manifest to stdout.", changed=0)
            return
        try:
            with runtime.locks.workspace_lock():
                _render_manifest(runtime, target.port, op)
        except LockTimeoutError as exc:
            _command_error(op, str(exc), rc=ExitCode.ENVIRONMENT)
        _finish(op, [], "Manifest written", context={"port": target.port})


@trust_app.command("install")
def trust_install(
    ctx: typer.Context,
    host: str | None = HOST_ARGUMENT,
    ip: str | None = IP_ARGUMENT,
    port: int | None = PORT_ARGUMENT,
) -> None:
    """Copy the CA to certs.d/<host:port> and certs.d/<ip:port>, then restart Docker."""
    runtime = _get_runtime(ctx)
    with runtime.logger.operation(
        "trust install",
        args={"host": host, "ip": ip, "port": port},
        target={"kind": "trust"},
    ) as op:
        target = _resolve(runtime, op, host, ip, port)
        ca_certificate = runtime.authority.ca_material.certificate
        if not ca_certificate.exists():
            _command_error(
                op,
                f"{ca_certificate} not found; run 'lregctl certs issue' first.",
                rc=ExitCode.ENVIRONMENT,
            )
        warnings: list[str] = []
        result = _install_trust(runtime, target, op, warnings)
        if not (result.skipped or result.installed):
            _command_error(
                op,
                "CA trust could not be installed for any registry address.",
                rc=ExitCode.PROVIDER,
                errors=warnings,
            )
        _finish(op, warnings, "Trust installation complete", context={"target": target.to_dict()})


@cosign_app.command("install")
def cosign_install(
    ctx: typer.Context,
    version: str | None = COSIGN_VERSION_OPTION,
) -> None:
    """Download the cosign release for this host unless cosign is on PATH."""
    runtime = _get_runtime(ctx)
    with runtime.logger.operation(
        "cosign install",
        args={"version": version},
        target={"kind": "cosign"},
    ) as op:
        installer = _cosign_installer(runtime, version)
        try:
            result = installer.install()
        except UnsupportedArchitectureError as exc:
            _command_error(op, str(exc), rc=ExitCode.ENVIRONMENT)
        except CosignInstallError as exc:
            _command_error(op, str(exc), rc=ExitCode.PROVIDER)
        if result.status == "present":
            console.print(f"cosign already installed: {result.path}")
            op.success("cosign already present.", changed=0, context=result.to_dict())
            return
        warnings: list[str] = []
        if not result.on_path:
            warnings.append(f"{result.path} is not on PATH.")
        console.print(f"cosign installed: {result.path}")
        if warnings:
            op.warning("cosign installed off PATH.", warnings=warnings, context=result.to_dict())
            return
        op.success("cosign installed.", changed=1, context=result.to_dict())


def _flatten(prefix: str, value: object, rows: list[tuple[str, str]]) -> None:
    if isinstance(value, Mapping):
        for key, item in value.items():
            _flatten(f"{prefix}.{key}" if prefix else str(key), item, rows)
        return
    if isinstance(value, list):
        rows.append((prefix, ", ".join(str(item) for item in value)))
        return
    rows.append((prefix, "" if value is None else str(value)))


@config_app.command("show")
def config_show(
    ctx: typer.Context,
    json_output: bool = JSON_OPTION,
) -> None:
    """Show the resolved configuration."""
    runtime = _get_runtime(ctx)
    with runtime.logger.operation("config show", args={"json": json_output}) as op:
        payload = runtime.config.to_dict()
        if json_output:
            console.print_json(data=payload)
            op.success("Reported configuration as JSON.", changed=0)
            return
        rows: list[tuple[str, str]] = []
        _flatten("", payload, rows)
        table = Table(show_header=True, header_style="bold")
        table.add_column("Key")
        table.add_column("Value")
        for key, value in rows:
            table.add_row(key, value)
        console.print(table)
        op.success("Reported configuration.", changed=0)


__all__ = ["app"]
