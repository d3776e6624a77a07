"""Typer-powered command line for ``postinstallctl``.

``run`` provisions the machine: the core steps always, plus the optional tool
groups selected with flags. ``plan`` prints the same ordered step list
without touching anything.
"""
from __future__ import annotations

import json
import logging
import os
import shutil
import sys
import textwrap
from collections.abc import Mapping, Sequence
from pathlib import Path
from typing import NoReturn

import typer
from rich.console import Console
from rich.table import Table

from . import __version__
from .catalog import build_registry
from .config import CONFIG_ENV_VAR, ENV_PREFIX, TARGET_USER_ENV_VAR, AppConfig, load_config
from .errors import ConfigurationError, IdentityError
from .exit_codes import ExitCode
from .identity import Identity, discover_session_env, resolve_identity
from .logging import OperationScope, StructuredLogger, configure_console_logging
from .runtime import build_execution_context
from .tasks import (
    OPTIONAL_GROUPS,
    ExecutionEngine,
    TaskRegistry,
    render_summary,
    serialize_report,
)

console = Console()

CONFIG_FILE_OPTION = typer.Option(
    None,
    "--config-file",
    dir_okay=False,
    help="Override the path to postinstallctl's YAML config file.",
)

TARGET_USER_OPTION = typer.Option(
    None,
    "--user",
    "-u",
    help=f"Provision this user instead of the invoking one (or set {TARGET_USER_ENV_VAR}).",
)

MOBILE_OPTION = typer.Option(False, "--mobile", "-m", help="Install mobile tooling.")
INTERNAL_OPTION = typer.Option(False, "--internal", "-i", help="Install internal tooling.")
WEB_OPTION = typer.Option(False, "--web", "-w", help="Install web tooling.")
WIFI_OPTION = typer.Option(False, "--wifi", "-W", help="Install wireless tooling.")
ALL_OPTION = typer.Option(False, "--all", "-a", help="Install every optional tool group.")

app = typer.Typer(
    add_completion=False,
    help=textwrap.dedent(
        """
        Idempotent post-install provisioning for a Kali desktop VM.

        Every step checks whether its work is already done before acting, so
        an interrupted or partially failed run is resumed by running it again.
        """
    ).strip(),
)

config_app = typer.Typer(help="Inspect the effective configuration.")
app.add_typer(config_app, name="config")


def _selected_groups(
    *,
    mobile: bool,
    internal: bool,
    web: bool,
    wifi: bool,
    all_groups: bool,
) -> list[str]:
    """Return the optional groups chosen on the command line, in execution order."""
    if all_groups:
        return list(OPTIONAL_GROUPS)
    chosen = {"mobile": mobile, "internal": internal, "web": web, "wifi": wifi}
    return [group for group in OPTIONAL_GROUPS if chosen[group]]


def _preserved_env_names(environ: Mapping[str, str]) -> list[str]:
    """Return the variables sudo must keep: every ``POSTINSTALLCTL_*`` setting."""
    names = {TARGET_USER_ENV_VAR, CONFIG_ENV_VAR}
    names.update(key for key in environ if key.startswith(ENV_PREFIX))
    return sorted(names)


def _ensure_elevated() -> None:
    """Re-execute the current command under ``sudo`` unless already root."""
    if os.geteuid() == 0:
        return
    sudo = shutil.which("sudo")
    if sudo is None:
        console.print("[red]postinstallctl run needs root and sudo is not available.[/red]")
        raise typer.Exit(code=ExitCode.ENVIRONMENT)
    preserve = ",".join(_preserved_env_names(os.environ))
    argv = [
        sudo,
        f"--preserve-env={preserve}",
        sys.executable,
        "-m",
        "postinstallctl",
        *sys.argv[1:],
    ]
    console.print("[yellow]Not running as root; re-executing under sudo.[/yellow]")
    os.execv(sudo, argv)


def _load_config_or_exit(config_file: Path | None) -> AppConfig:
    try:
        return load_config(config_file=config_file)
    except ConfigurationError as exc:
        console.print(f"[red]Configuration error:[/red] {exc}")
        raise typer.Exit(code=ExitCode.VALIDATION) from exc


def _command_error(op: OperationScope, message: str, *, rc: int) -> NoReturn:
    """Emit a structured error and terminate the command."""
    console.print(f"[red]{message}[/red]")
    op.error(message, rc=rc)
    raise typer.Exit(code=rc)


def _render_plan(registry: TaskRegistry) -> None:
    table = Table(show_header=True, header_style="bold magenta")
    table.add_column("#", justify="right")
    table.add_column("Step", style="bold")
    table.add_column("Group")
    table.add_column("Policy")
    table.add_column("Check")
    table.add_column("Description")
    for index, step in enumerate(registry, start=1):
        table.add_row(
            str(index),
            step.name,
            step.group,
            step.criticality.value,
            "yes" if step.check is not None else "no",
            step.description,
        )
    console.print(table)


def _describe_target(identity: Identity) -> str:
    if not identity.has_target:
        return "none (system steps only)"
    return f"[bold]{identity.target_user}[/bold] ({identity.target_home})"


def _describe_groups(groups: Sequence[str]) -> str:
    return ", ".join(groups) if groups else "none (core only)"


@app.callback(invoke_without_command=True)
def _root(  # noqa: D401 - Typer displays help for us, docstring optional.
    ctx: typer.Context,
    version: bool = typer.Option(
        False,
        "--version",
        "-V",
        help="Show the postinstallctl version and exit.",
    ),
) -> None:
    """Entry point callback invoked for every CLI execution."""
    if version:
        console.print(f"postinstallctl {__version__}")
        raise typer.Exit(code=ExitCode.OK)

    if ctx.invoked_subcommand is None:
        console.print(ctx.get_help())
        raise typer.Exit(code=ExitCode.OK)


@app.command()
def run(
    mobile: bool = MOBILE_OPTION,
    internal: bool = INTERNAL_OPTION,
    web: bool = WEB_OPTION,
    wifi: bool = WIFI_OPTION,
    all_groups: bool = ALL_OPTION,
    user: str | None = TARGET_USER_OPTION,
    config_file: Path | None = CONFIG_FILE_OPTION,
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Show command-level detail."),
    json_output: bool = typer.Option(
        False,
        "--json",
        help="Print the run report as JSON instead of a summary table.",
    ),
) -> None:
    """Provision the machine: core steps plus the selected tool groups."""
    groups = _selected_groups(
        mobile=mobile, internal=internal, web=web, wifi=wifi, all_groups=all_groups
    )
    _ensure_elevated()
    log_console = Console(stderr=True) if json_output else console
    configure_console_logging(log_console, level=logging.DEBUG if verbose else logging.INFO)

    config = _load_config_or_exit(config_file)
    logger = StructuredLogger(config.logs_dir)
    args = {"groups": groups, "user": user, "config_file": config_file}

    try:
        registry = build_registry(groups)
    except ConfigurationError as exc:
        with logger.operation("run", args=args, target={"kind": "registry"}) as op:
            _command_error(op, str(exc), rc=ExitCode.VALIDATION)

    try:
        identity = resolve_identity(
            override=user or config.target_user,
            require_target=registry.requires_target(),
        )
    except IdentityError as exc:
        with logger.operation("run", args=args, target={"kind": "identity"}) as op:
            _command_error(op, f"Identity error: {exc}", rc=ExitCode.ENVIRONMENT)

    if not json_output:
        console.print(f"Target user: {_describe_target(identity)}")
        console.print(f"Optional groups: {_describe_groups(groups)}")

    context = build_execution_context(config, identity, session_env=discover_session_env(identity))
    engine = ExecutionEngine(logger)
    report = engine.run(
        registry,
        context,
        metadata={"groups": groups, "target_user": identity.target_user},
    )
    if json_output:
        console.print_json(data=serialize_report(report))
    else:
        render_summary(report, console)
    if report.aborted:
        raise typer.Exit(code=ExitCode.PROVIDER)


@app.command()
def plan(
    mobile: bool = MOBILE_OPTION,
    internal: bool = INTERNAL_OPTION,
    web: bool = WEB_OPTION,
    wifi: bool = WIFI_OPTION,
    all_groups: bool = ALL_OPTION,
    json_output: bool = typer.Option(
        False,
        "--json",
        help="Emit the step list as JSON instead of a table.",
    ),
) -> None:
    """List the steps ``run`` would execute, in order, without side effects."""
    groups = _selected_groups(
        mobile=mobile, internal=internal, web=web, wifi=wifi, all_groups=all_groups
    )
    registry = build_registry(groups)
    if json_output:
        console.print_json(
            data=[
                {
                    "name": step.name,
                    "group": step.group,
                    "criticality": step.criticality.value,
                    "check": step.check is not None,
                    "description": step.description,
                }
                for step in registry
            ]
        )
        return
    console.print(f"Optional groups: {_describe_groups(groups)}")
    _render_plan(registry)


@config_app.command("show")
def config_show(
    config_file: Path | None = CONFIG_FILE_OPTION,
    json_output: bool = typer.Option(
        False,
        "--json",
        help="Emit configuration as JSON instead of a table.",
    ),
) -> None:
    """Display the effective configuration after merges."""
    data = _load_config_or_exit(config_file).to_dict()
    if json_output:
        console.print_json(data=data)
        return

    table = Table(show_header=True, header_style="bold magenta")
    table.add_column("Key", style="bold")
    table.add_column("Value")
    for key, value in data.items():
        if isinstance(value, dict):
            rendered = json.dumps(value, indent=2, sort_keys=True)
        else:
            rendered = str(value)
        table.add_row(key, rendered)
    console.print(table)


def main() -> None:
    """Console script entry point."""
    app()


__all__ = ["app", "main"]
