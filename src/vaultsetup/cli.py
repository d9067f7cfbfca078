"""Typer-powered command line for ``vaultsetup``.

``install`` provisions a single Vault server on the local host, ``render``
prints the configuration it would write, ``config show`` reports the merged
configuration and ``tls generate`` creates a standalone self-signed pair.
"""
from __future__ import annotations

import json
import textwrap
from collections.abc import Sequence
from dataclasses import dataclass
from pathlib import Path
from typing import NoReturn

import typer
from rich.console import Console
from rich.table import Table

from . import __version__
from .bootstrap.discovery import HostFacts, detect_host_facts
from .bootstrap.filesystem import write_owned_file
from .config import ProvisionConfig, load_config
from .errors import ConfigError, ProvisionError
from .exit_codes import ExitCode
from .hcl import build_document
from .logging import OperationScope, StructuredLogger
from .providers.base import Runner, default_runner
from .provisioner import Provisioner, ProvisionReport, StepResult, StepStatus
from .tls import CERT_MODE, KEY_MODE, generate_self_signed, inspect_certificate

console = Console(soft_wrap=True)
err_console = Console(stderr=True, soft_wrap=True)

CONFIG_FILE_OPTION = typer.Option(
    None,
    "--config-file",
    dir_okay=False,
    help="Override the path to vaultsetup's YAML config file.",
)
PORT_OPTION = typer.Option(None, "--port", help="Listener port (default 8200).")
BIND_ADDRESS_OPTION = typer.Option(
    None,
    "--bind-address",
    help="Address the listener binds to (default 0.0.0.0).",
)
TLS_OPTION = typer.Option(None, "--tls/--no-tls", help="Serve the listener over TLS.")
STORAGE_OPTION = typer.Option(None, "--storage", help="Storage backend: file or raft.")
UI_OPTION = typer.Option(None, "--ui/--no-ui", help="Enable the web UI.")
FIREWALL_OPTION = typer.Option(
    None,
    "--open-firewall/--no-open-firewall",
    help="Open the listener port in firewalld when it is active.",
)
CN_OPTION = typer.Option(None, "--cn", help="Common name for a self-signed certificate.")
DAYS_OPTION = typer.Option(None, "--days", help="Validity of a self-signed certificate.")
JSON_OPTION = typer.Option(False, "--json", help="Emit the result as JSON.")

app = typer.Typer(
    add_completion=False,
    help=textwrap.dedent(
        """
        Install and configure a single-node HashiCorp Vault server on RHEL 9.

        Re-running install converges the host to the same end state; the
        previous configuration file is kept as a timestamped backup.
        """
    ).strip(),
)
config_app = typer.Typer(help="Inspect the effective configuration.")
tls_app = typer.Typer(help="Manage TLS material for the Vault listener.")
app.add_typer(config_app, name="config")
app.add_typer(tls_app, name="tls")


@dataclass
class RuntimeContext:
    """Objects shared by commands; the runner is replaceable for tests."""

    config_file: Path | None = None
    runner: Runner = default_runner
    host: HostFacts | None = None


def _get_runtime(ctx: typer.Context) -> RuntimeContext:
    runtime = ctx.obj
    if isinstance(runtime, RuntimeContext):
        return runtime
    runtime = RuntimeContext()
    ctx.obj = runtime
    return runtime


@app.callback(invoke_without_command=True)
def _root(  # noqa: D401 - Typer displays help for us, docstring optional.
    ctx: typer.Context,
    version: bool = typer.Option(
        False,
        "--version",
        "-V",
        help="Show the vaultsetup version and exit.",
    ),
    config_file: Path | None = CONFIG_FILE_OPTION,
) -> None:
    """Entry point callback invoked for every CLI execution."""
    if version:
        console.print(f"vaultsetup {__version__}")
        raise typer.Exit(code=0)

    runtime = _get_runtime(ctx)
    if config_file is not None:
        runtime.config_file = config_file

    if ctx.invoked_subcommand is None:
        console.print(ctx.get_help())
        raise typer.Exit(code=0)


def _build_overrides(
    *,
    port: int | None = None,
    bind_address: str | None = None,
    tls: bool | None = None,
    storage: str | None = None,
    ui: bool | None = None,
    open_firewall: bool | None = None,
    cn: str | None = None,
    days: int | None = None,
) -> dict[str, object]:
    overrides: dict[str, object] = {}
    if port is not None:
        overrides["port"] = port
    if bind_address is not None:
        overrides["bind_address"] = bind_address
    if ui is not None:
        overrides["ui"] = ui
    if storage is not None:
        overrides["storage"] = {"backend": storage}
    if open_firewall is not None:
        overrides["firewall"] = {"open": open_firewall}
    tls_overrides: dict[str, object] = {}
    if tls is not None:
        tls_overrides["enabled"] = tls
    self_signed: dict[str, object] = {}
    if cn is not None:
        self_signed["common_name"] = cn
    if days is not None:
        self_signed["days"] = days
    if self_signed:
        tls_overrides["self_signed"] = self_signed
    if tls_overrides:
        overrides["tls"] = tls_overrides
    return overrides


def _resolve(
    runtime: RuntimeContext,
    config_file: Path | None,
    overrides: dict[str, object],
    *,
    json_output: bool = False,
) -> tuple[ProvisionConfig, HostFacts]:
    """Return the merged configuration and host facts, exiting on bad config."""
    if runtime.host is None:
        runtime.host = detect_host_facts(runner=runtime.runner)
    try:
        config = load_config(
            config_file=config_file or runtime.config_file,
            overrides=overrides,
            host=runtime.host,
        )
    except ConfigError as exc:
        (err_console if json_output else console).print(f"[red]{exc}[/red]")
        raise typer.Exit(code=int(exc.exit_code)) from exc
    return config, runtime.host


def _command_error(
    op: OperationScope,
    message: str,
    *,
    rc: int = int(ExitCode.VALIDATION),
    errors: Sequence[str] | None = None,
    json_output: bool = False,
) -> NoReturn:
    """Emit a structured error and terminate the command.

    Under ``--json`` the message goes to stderr so stdout stays parseable.
    """
    (err_console if json_output else console).print(f"[red]{message}[/red]")
    op.error(message, errors=list(errors or [message]), rc=rc)
    raise typer.Exit(code=rc)


def _print_step(result: StepResult) -> None:
    if result.status is StepStatus.WARNING:
        console.print(f"[yellow][!][/yellow] {result.message}")
    elif result.status is StepStatus.SKIPPED:
        console.print(f"[dim][-][/dim] {result.message}")
    else:
        console.print(f"[green][+][/green] {result.message}")


def _print_summary(report: ProvisionReport) -> None:
    config = report.config
    service = report.step("service")
    output = service.details.get("output") if service else None
    if output:
        console.print(str(output), markup=False, highlight=False)
    console.print()
    console.print("[bold]==== Vault installed & configured ====[/bold]")
    table = Table(show_header=False, box=None)
    table.add_column("Key", style="bold")
    table.add_column("Value")
    table.add_row("Config", str(config.paths.vault_config))
    table.add_row("Data", str(config.paths.data_dir))
    table.add_row("Listen", f"{config.listen_address} ({config.scheme.upper()})")
    table.add_row("API", config.api_addr)
    table.add_row("Cluster", config.cluster_addr)
    table.add_row("UI", "enabled" if config.ui else "disabled")
    table.add_row("TLS", report.tls_outcome.value)
    table.add_row("Firewall", report.firewall_outcome.value)
    if report.backup_path is not None:
        table.add_row("Backup", str(report.backup_path))
    console.print(table)
    if report.warnings:
        console.print()
        for warning in report.warnings:
            console.print(f"[yellow]Warning:[/yellow] {warning}")
    console.print()
    console.print("[bold]Next steps:[/bold]")
    for line in report.next_steps:
        console.print(f"  {line}", markup=False, highlight=False)


@app.command()
def install(
    ctx: typer.Context,
    config_file: Path | None = CONFIG_FILE_OPTION,
    dry_run: bool = typer.Option(
        False,
        "--dry-run",
        help="Report planned changes without modifying the host.",
    ),
    json_output: bool = JSON_OPTION,
    skip_packages: bool = typer.Option(
        False,
        "--skip-packages",
        help="Assume the Vault package is already installed.",
    ),
    port: int | None = PORT_OPTION,
    bind_address: str | None = BIND_ADDRESS_OPTION,
    tls: bool | None = TLS_OPTION,
    storage: str | None = STORAGE_OPTION,
    ui: bool | None = UI_OPTION,
    open_firewall: bool | None = FIREWALL_OPTION,
    cn: str | None = CN_OPTION,
    days: int | None = DAYS_OPTION,
) -> None:
    """Install, configure and start Vault on this host."""
    runtime = _get_runtime(ctx)
    overrides = _build_overrides(
        port=port,
        bind_address=bind_address,
        tls=tls,
        storage=storage,
        ui=ui,
        open_firewall=open_firewall,
        cn=cn,
        days=days,
    )
    config, host = _resolve(runtime, config_file, overrides, json_output=json_output)
    logger = StructuredLogger(config.logs_dir)

    with logger.operation(
        "install",
        args={"dry_run": dry_run, "skip_packages": skip_packages, "overrides": overrides},
        target={"kind": "host", "hostname": host.short_hostname},
    ) as op:

        def on_step(result: StepResult) -> None:
            op.step(result.name, result.status.value, result.message, result.details)
            if not json_output:
                _print_step(result)

        provisioner = Provisioner(
            config=config,
            host=host,
            runner=runtime.runner,
            skip_packages=skip_packages,
            on_step=on_step,
        )
        try:
            report = provisioner.provision(dry_run=dry_run)
        except ProvisionError as exc:
            _command_error(op, str(exc), rc=int(exc.exit_code), json_output=json_output)

        if json_output:
            console.print_json(data=report.to_dict())
        elif dry_run:
            console.print("[yellow]Dry run complete; no changes were made.[/yellow]")
        else:
            _print_summary(report)

        context = {"backup": report.backup_path, "tls": report.tls_outcome.value}
        if report.warnings:
            op.warning(
                "Provisioning completed with warnings.",
                warnings=report.warnings,
                changed=report.changed,
                backups=[str(report.backup_path)] if report.backup_path else [],
                context=context,
            )
        else:
            op.success("Provisioning completed.", changed=report.changed, context=context)


@app.command()
def render(
    ctx: typer.Context,
    config_file: Path | None = CONFIG_FILE_OPTION,
    output: Path | None = typer.Option(
        None,
        "--output",
        "-o",
        dir_okay=False,
        help="Write the document to this path instead of stdout.",
    ),
    port: int | None = PORT_OPTION,
    bind_address: str | None = BIND_ADDRESS_OPTION,
    tls: bool | None = TLS_OPTION,
    storage: str | None = STORAGE_OPTION,
    ui: bool | None = UI_OPTION,
) -> None:
    """Print the Vault configuration file install would write."""
    runtime = _get_runtime(ctx)
    overrides = _build_overrides(
        port=port, bind_address=bind_address, tls=tls, storage=storage, ui=ui
    )
    config, host = _resolve(runtime, config_file, overrides)
    logger = StructuredLogger(config.logs_dir)

    with logger.operation(
        "render",
        args={"output": output, "overrides": overrides},
        target={"kind": "config", "path": config.paths.vault_config},
    ) as op:
        document = build_document(config, host)
        for warning in config.warnings:
            err_console.print(f"[yellow]Warning:[/yellow] {warning}")
        if output is None:
            typer.echo(document.render(), nl=False)
            op.success("Rendered configuration to stdout.", warnings=config.warnings)
            return
        try:
            output.parent.mkdir(parents=True, exist_ok=True)
            output.write_bytes(document.to_bytes())
        except OSError as exc:
            _command_error(op, f"Failed to write {output}: {exc}", rc=int(ExitCode.ENVIRONMENT))
        console.print(f"Wrote {output}")
        op.success(f"Rendered configuration to {output}.", changed=1, warnings=config.warnings)


@config_app.command("show")
def config_show(
    ctx: typer.Context,
    json_output: bool = typer.Option(
        False,
        "--json",
        help="Emit configuration as JSON instead of a table.",
    ),
) -> None:
    """Display the effective configuration after merges."""
    runtime = _get_runtime(ctx)
    config, _ = _resolve(runtime, None, {}, json_output=json_output)
    data = config.to_dict()
    logger = StructuredLogger(config.logs_dir)

    with logger.operation(
        "config show",
        args={"json": json_output},
        target={"kind": "config"},
    ) as op:
        if json_output:
            console.print_json(data=data)
            op.success("Rendered configuration as JSON.", changed=0)
            return

        table = Table(show_header=True, header_style="bold magenta")
        table.add_column("Key", style="bold")
        table.add_column("Value")

        for key, value in data.items():
            if isinstance(value, (dict, list)):
                rendered = json.dumps(value, indent=2, sort_keys=True)
            else:
                rendered = str(value)
            table.add_row(key, rendered)

        console.print(table)
        op.success("Rendered configuration table.", changed=0)


@tls_app.command("generate")
def tls_generate(
    ctx: typer.Context,
    cert: Path = typer.Option(..., "--cert", dir_okay=False, help="Certificate output path."),
    key: Path = typer.Option(..., "--key", dir_okay=False, help="Private key output path."),
    cn: str | None = CN_OPTION,
    days: int | None = DAYS_OPTION,
    force: bool = typer.Option(False, "--force", help="Overwrite existing files."),
) -> None:
    """Generate a self-signed certificate/key pair."""
    runtime = _get_runtime(ctx)
    config, _ = _resolve(runtime, None, _build_overrides(cn=cn, days=days))
    self_signed = config.tls.self_signed
    logger = StructuredLogger(config.logs_dir)

    with logger.operation(
        "tls generate",
        args={"cn": self_signed.common_name, "days": self_signed.days, "force": force},
        target={"kind": "tls", "cert": cert, "key": key},
    ) as op:
        existing = [str(path) for path in (cert, key) if path.exists()]
        if existing and not force:
            _command_error(
                op,
                f"Refusing to overwrite existing files: {', '.join(existing)} (use --force).",
            )
        try:
            key_pem, cert_pem = generate_self_signed(
                self_signed.common_name,
                days=self_signed.days,
                key_size=self_signed.key_size,
            )
            write_owned_file(key, key_pem, mode=KEY_MODE, owner=None)
            write_owned_file(cert, cert_pem, mode=CERT_MODE, owner=None)
        except (OSError, ValueError, ProvisionError) as exc:
            _command_error(
                op,
                f"Failed generating self-signed certificate: {exc}",
                rc=int(ExitCode.PROVIDER),
            )
        info = inspect_certificate(cert)
        console.print(
            f"[green][+][/green] Generated CN={info.common_name} "
            f"({info.key_size}-bit RSA, {info.validity_days} days)"
        )
        console.print(f"    cert: {cert}")
        console.print(f"    key:  {key}")
        op.success("Generated self-signed certificate.", changed=2)


def main() -> None:
    """Console script entry point."""
    app()


__all__ = ["app", "main"]
