"""Typer-powered command line entry point for ``sar-cli``.

The root callback assembles one :class:`RuntimeContext` per invocation (log
sink, configuration store and admin gate) and stores it on the Typer context.
Each subcommand hands its handler to :meth:`AdminGate.create_admin_command`
and converts the returned :class:`ExitCode` into ``typer.Exit``. This module
is the only place where a gate outcome becomes a process exit status.
"""
from __future__ import annotations

import json
import textwrap
from collections.abc import Mapping
from dataclasses import dataclass
from functools import partial
from pathlib import Path
from typing import Any

import typer
import yaml
from rich.console import Console
from rich.markup import escape
from rich.table import Table

from . import get_version
from .admin import (
    AdminCommandOptions,
    AdminGate,
    AuthorizationContext,
    AutoConfirmation,
    ConfirmationPort,
    TerminalConfirmation,
    inspect_admin_env,
    resolve_editor,
)
from .config import (
    ConfigError,
    ConfigIssue,
    ConfigStore,
    coerce_value,
    flatten,
    resolve_home,
)
from .exit_codes import ExitCode
from .logging import LogLevel, LogSink

console = Console()
# Log records and diagnostics go to stderr; stdout carries command output only.
err_console = Console(stderr=True)

EXPORT_FORMATS = ("json", "yaml")

HOME_OPTION = typer.Option(
    None,
    "--home",
    file_okay=False,
    help="Override the sar-cli home directory (defaults to $SAR_CLI_HOME or ~/.sar-cli).",
)
JSON_OPTION = typer.Option(
    False,
    "--json",
    help="Emit JSON instead of a table.",
)

app = typer.Typer(
    add_completion=False,
    help=textwrap.dedent(
        """
        SAR command-line agent.

        Privileged subcommands require admin mode (export SARU_ADMIN=true).
        Every invocation is audited to the sar-cli log directory.
        """
    ).strip(),
)
config_app = typer.Typer(help="Inspect and manage sar-cli configuration.")
logs_app = typer.Typer(help="Inspect and manage sar-cli log files.")
admin_app = typer.Typer(help="Inspect admin mode.")

app.add_typer(config_app, name="config")
app.add_typer(logs_app, name="logs")
app.add_typer(admin_app, name="admin")


@dataclass
class RuntimeContext:
    """Aggregated runtime objects shared by commands."""

    home: Path
    logger: LogSink
    config: ConfigStore
    gate: AdminGate


def build_runtime(
    home: Path | None = None,
    *,
    log_level: str = "info",
    verbose: bool = False,
    quiet: bool = False,
    file_logging: bool = True,
    assume_yes: bool = False,
    env: Mapping[str, str] | None = None,
    confirmation: ConfirmationPort | None = None,
) -> RuntimeContext:
    """Construct the log sink, config store and admin gate for one invocation."""
    home_dir = (home or resolve_home(env)).expanduser()
    logger = LogSink(
        home_dir / "logs",
        level=LogLevel.DEBUG if verbose else log_level,
        silent=quiet,
        file_logging=file_logging,
        console=err_console,
    )
    store = ConfigStore(home_dir, logger=logger)
    if confirmation is None:
        confirmation = AutoConfirmation() if assume_yes else TerminalConfirmation()
    gate = AdminGate(
        AuthorizationContext.from_env(env),
        logger,
        confirmation,
        console=console,
        err_console=err_console,
        verbose=verbose,
    )
    return RuntimeContext(home=home_dir, logger=logger, config=store, gate=gate)


def _get_runtime(ctx: typer.Context) -> RuntimeContext:
    runtime = ctx.obj
    if isinstance(runtime, RuntimeContext):
        return runtime
    runtime = build_runtime()
    ctx.obj = runtime
    return runtime


def _finish(code: ExitCode) -> None:
    """Translate a gate outcome into the process exit status."""
    if code is not ExitCode.OK:
        raise typer.Exit(code=int(code))


def _format_value(value: object) -> str:
    if isinstance(value, (Mapping, list)):
        return json.dumps(value, sort_keys=True)
    if value is None:
        return "null"
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


def _render_tree(tree: Mapping[str, Any], title: str | None = None) -> None:
    table = Table(show_header=True, header_style="bold magenta", title=title)
    table.add_column("Key", style="bold")
    table.add_column("Value")
    for key, value in flatten(tree):
        table.add_row(escape(key), escape(_format_value(value)))
    console.print(table)


@app.callback(invoke_without_command=True)
def _root(  # noqa: D401 - Typer displays help for us, docstring optional.
    ctx: typer.Context,
    version: bool = typer.Option(
        False,
        "--version",
        "-V",
        help="Show the sar-cli version and exit.",
    ),
    home: Path | None = HOME_OPTION,
    log_level: str = typer.Option(
        "info",
        "--log-level",
        help="Most verbose level to log (error, warn, info, debug, trace).",
    ),
    verbose: bool = typer.Option(
        False,
        "--verbose",
        "-v",
        help="Log debug output and include tracebacks for failures.",
    ),
    quiet: bool = typer.Option(
        False,
        "--quiet",
        "-q",
        help="Suppress log output on the console (files are still written).",
    ),
    no_file_log: bool = typer.Option(
        False,
        "--no-file-log",
        help="Disable writing log files for this invocation.",
    ),
    yes: bool = typer.Option(
        False,
        "--yes",
        "-y",
        help="Auto-confirm prompts (non-interactive mode).",
    ),
) -> None:
    """Entry point callback invoked for every CLI execution."""
    if version:
        console.print(f"sar-cli {get_version()}")
        raise typer.Exit(code=0)

    ctx.obj = build_runtime(
        home,
        log_level=log_level,
        verbose=verbose,
        quiet=quiet,
        file_logging=not no_file_log,
        assume_yes=yes,
    )

    if ctx.invoked_subcommand is None:
        console.print(ctx.get_help())
        raise typer.Exit(code=0)


# ----------------------------------------------------------------------
# config
# ----------------------------------------------------------------------
def _config_get(
    runtime: RuntimeContext,
    key: str | None,
    *,
    show_all: bool = False,
    json_output: bool = False,
) -> None:
    store = runtime.config
    store.load()

    if show_all or key is None:
        data = store.get_all()
        if json_output:
            console.print_json(data=data)
        else:
            _render_tree(data, title="Configuration Values")
        runtime.logger.success("Configuration retrieved", {"key": key, "all": True})
        return

    if not store.has(key):
        console.print(f"[yellow]Configuration key '{escape(key)}' not found[/yellow]")
        runtime.logger.warn("Configuration key not found:", key)
        return

    value = store.get(key)
    if json_output:
        console.print_json(data={key: value})
    else:
        console.print(f"[cyan]{escape(key)}[/cyan]: {escape(_format_value(value))}")
    runtime.logger.success("Configuration retrieved", {"key": key, "all": False})


def _config_set(
    runtime: RuntimeContext,
    key: str,
    value: str,
    *,
    value_type: str = "string",
) -> None:
    parsed = coerce_value(value, value_type)
    store = runtime.config
    store.load()
    store.set(key, parsed)
    store.save()
    console.print(
        f"[green]Configuration set:[/green] [cyan]{escape(key)}[/cyan] = "
        f"{escape(_format_value(parsed))}"
    )
    runtime.logger.success(
        "Configuration updated", {"key": key, "value": parsed, "type": value_type}
    )


def _config_unset(runtime: RuntimeContext, key: str) -> None:
    store = runtime.config
    store.load()
    if not store.unset(key):
        console.print(f"[yellow]Configuration key '{escape(key)}' not found[/yellow]")
        runtime.logger.warn("Configuration key not found:", key)
        return
    store.save()
    console.print(f"[green]Configuration removed:[/green] [cyan]{escape(key)}[/cyan]")
    runtime.logger.success("Configuration removed", {"key": key})


def _config_list(runtime: RuntimeContext, *, json_output: bool = False) -> None:
    store = runtime.config
    store.load()
    data = store.get_all()
    if json_output:
        console.print_json(data=data)
    else:
        _render_tree(data)


def _config_paths(runtime: RuntimeContext) -> None:
    logger = runtime.logger
    table = Table(show_header=True, header_style="bold magenta")
    table.add_column("Item", style="bold")
    table.add_column("Path")
    table.add_row("Home", str(runtime.home))
    table.add_row("Config directory", str(runtime.config.config_dir))
    table.add_row("Config file", str(runtime.config.config_file))
    table.add_row("Log directory", str(logger.log_dir))
    table.add_row("Log file", str(logger.log_file))
    table.add_row("Error log file", str(logger.error_log_file))
    console.print(table)


def _config_reset(runtime: RuntimeContext) -> None:
    store = runtime.config
    store.load()
    store.reset()
    store.save()
    console.print("[green]Configuration reset to defaults.[/green]")
    runtime.logger.success("Configuration reset", {"path": str(store.config_file)})


def _config_export(
    runtime: RuntimeContext,
    *,
    output: Path | None = None,
    fmt: str = "json",
) -> None:
    if fmt not in EXPORT_FORMATS:
        raise ConfigError(
            f"Unsupported export format '{fmt}' (expected one of: {', '.join(EXPORT_FORMATS)})."
        )
    store = runtime.config
    store.load()
    data = store.get_all()
    if fmt == "json":
        rendered = json.dumps(data, indent=2) + "\n"
    else:
        rendered = yaml.safe_dump(data, sort_keys=False, default_flow_style=False)

    if output is None:
        console.print(rendered, markup=False, highlight=False, soft_wrap=True, end="")
        return
    output.parent.mkdir(parents=True, exist_ok=True)
    output.write_text(rendered, encoding="utf-8")
    console.print(f"[green]Configuration exported to[/green] {escape(str(output))}")
    runtime.logger.success("Configuration exported", {"output": str(output), "format": fmt})


def _render_issues(issues: list[ConfigIssue]) -> None:
    if not issues:
        console.print("[green]Configuration is valid.[/green]")
        return
    console.print(f"[yellow]Found {len(issues)} validation issue(s):[/yellow]")
    for issue in issues:
        color = "red" if issue.is_error else "yellow"
        console.print(
            f"  [{color}]{issue.severity}[/{color}] [cyan]{escape(issue.key)}[/cyan]: "
            f"{escape(issue.message)}"
        )


def _config_init(runtime: RuntimeContext, *, force: bool = False) -> None:
    store = runtime.config
    path = store.config_file
    if path.exists() and not force:
        console.print(f"[yellow]Configuration already exists at {escape(str(path))}[/yellow]")
        console.print("[dim]Use --force to overwrite.[/dim]")
        runtime.logger.warn("Configuration already exists:", str(path))
        return
    store.load()
    store.reset()
    store.save()
    console.print(f"[green]Configuration initialized at[/green] {escape(str(path))}")
    _render_tree(store.get_all())
    runtime.logger.success("Configuration initialized", {"path": str(path), "force": force})


def _config_validate(runtime: RuntimeContext) -> None:
    store = runtime.config
    store.load()
    issues = store.validate()
    _render_issues(issues)
    runtime.logger.info("Configuration validated", {"issues": len(issues)})
    errors = [issue for issue in issues if issue.is_error]
    if errors:
        raise ConfigError(f"Configuration has {len(errors)} error(s).")


def _config_edit(runtime: RuntimeContext, *, editor: str | None = None) -> None:
    store = runtime.config
    store.load()
    command = resolve_editor(editor)
    path = store.config_file
    console.print(f"[blue]Opening[/blue] {escape(str(path))} [blue]with[/blue] {escape(command)}")
    runtime.logger.info("Configuration edit requested", {"path": str(path), "editor": command})
    typer.edit(filename=str(path), editor=command)

    store.load()
    issues = store.validate()
    if issues:
        console.print(
            f"[yellow]{len(issues)} validation issue(s) after editing; "
            "run 'sar-cli config validate' for details.[/yellow]"
        )
    runtime.logger.success("Configuration edited", {"path": str(path), "issues": len(issues)})


@config_app.command("get")
def config_get(
    ctx: typer.Context,
    key: str | None = typer.Argument(None, help="Dot-path of the value to show."),
    show_all: bool = typer.Option(False, "--all", "-a", help="Show all configuration values."),
    json_output: bool = JSON_OPTION,
) -> None:
    """Show one configuration value (or all of them)."""
    runtime = _get_runtime(ctx)
    command = runtime.gate.create_admin_command("config get", partial(_config_get, runtime))
    _finish(command(key, show_all=show_all, json_output=json_output))


@config_app.command("set")
def config_set(
    ctx: typer.Context,
    key: str = typer.Argument(..., help="Dot-path of the value to set."),
    value: str = typer.Argument(..., help="Value to store."),
    value_type: str = typer.Option(
        "string",
        "--type",
        help="Value type (string, number, boolean, json).",
    ),
) -> None:
    """Set a configuration value and persist it."""
    runtime = _get_runtime(ctx)
    command = runtime.gate.create_admin_command("config set", partial(_config_set, runtime))
    _finish(command(key, value, value_type=value_type))


@config_app.command("unset")
def config_unset(
    ctx: typer.Context,
    key: str = typer.Argument(..., help="Dot-path of the value to remove."),
) -> None:
    """Remove a configuration value and persist the change."""
    runtime = _get_runtime(ctx)
    command = runtime.gate.create_admin_command("config unset", partial(_config_unset, runtime))
    _finish(command(key))


@config_app.command("list")
def config_list(ctx: typer.Context, json_output: bool = JSON_OPTION) -> None:
    """List every configuration value."""
    runtime = _get_runtime(ctx)
    command = runtime.gate.create_admin_command("config list", partial(_config_list, runtime))
    _finish(command(json_output=json_output))


@config_app.command("paths")
def config_paths(ctx: typer.Context) -> None:
    """Show configuration and log file locations."""
    runtime = _get_runtime(ctx)
    command = runtime.gate.create_admin_command("config paths", partial(_config_paths, runtime))
    _finish(command())


@config_app.command("reset")
def config_reset(ctx: typer.Context) -> None:
    """Reset configuration to the built-in defaults."""
    runtime = _get_runtime(ctx)
    command = runtime.gate.create_admin_command(
        "config reset",
        partial(_config_reset, runtime),
        AdminCommandOptions(
            require_confirmation=True,
            action="reset configuration",
            warning="This will reset configuration to default values.",
        ),
    )
    _finish(command())


@config_app.command("init")
def config_init(
    ctx: typer.Context,
    force: bool = typer.Option(
        False,
        "--force",
        "-f",
        help="Overwrite an existing configuration file.",
    ),
) -> None:
    """Write a fresh configuration file from the built-in defaults."""
    runtime = _get_runtime(ctx)
    command = runtime.gate.create_admin_command("config init", partial(_config_init, runtime))
    _finish(command(force=force))


@config_app.command("validate")
def config_validate(ctx: typer.Context) -> None:
    """Check required keys and value types; exit 1 when errors are found."""
    runtime = _get_runtime(ctx)
    command = runtime.gate.create_admin_command(
        "config validate", partial(_config_validate, runtime)
    )
    _finish(command())


@config_app.command("edit")
def config_edit(
    ctx: typer.Context,
    editor: str | None = typer.Option(
        None,
        "--editor",
        help="Editor command (defaults to $VISUAL, then $EDITOR, then nano).",
    ),
) -> None:
    """Open the configuration file in an editor."""
    runtime = _get_runtime(ctx)
    command = runtime.gate.create_admin_command("config edit", partial(_config_edit, runtime))
    _finish(command(editor=editor))


@config_app.command("export")
def config_export(
    ctx: typer.Context,
    output: Path | None = typer.Option(
        None,
        "--output",
        "-o",
        dir_okay=False,
        help="Write the export to this file instead of stdout.",
    ),
    fmt: str = typer.Option("json", "--format", help="Export format (json, yaml)."),
) -> None:
    """Export the configuration as JSON or YAML."""
    runtime = _get_runtime(ctx)
    command = runtime.gate.create_admin_command("config export", partial(_config_export, runtime))
    _finish(command(output=output, fmt=fmt))


# ----------------------------------------------------------------------
# logs
# ----------------------------------------------------------------------
def _logs_paths(runtime: RuntimeContext) -> None:
    logger = runtime.logger
    table = Table(show_header=True, header_style="bold magenta")
    table.add_column("Log", style="bold")
    table.add_column("Path")
    table.add_column("Archives", justify="right")
    for label, path in (("general", logger.log_file), ("error", logger.error_log_file)):
        archives = logger.archives(path) if path is not None else []
        table.add_row(label, str(path), str(len(archives)))
    console.print(table)


def _logs_clear(runtime: RuntimeContext) -> None:
    removed = runtime.logger.clear_logs()
    if not removed:
        console.print("[yellow]No active log files to clear.[/yellow]")
        return
    for path in removed:
        console.print(f"[green]Removed[/green] {escape(str(path))}")
    runtime.logger.info("Log files cleared")


@logs_app.command("paths")
def logs_paths(ctx: typer.Context) -> None:
    """Show active log files and their archive counts."""
    runtime = _get_runtime(ctx)
    command = runtime.gate.create_admin_command("logs paths", partial(_logs_paths, runtime))
    _finish(command())


@logs_app.command("clear")
def logs_clear(ctx: typer.Context) -> None:
    """Delete the active log files (archives are kept)."""
    runtime = _get_runtime(ctx)
    command = runtime.gate.create_admin_command(
        "logs clear",
        partial(_logs_clear, runtime),
        AdminCommandOptions(
            require_confirmation=True,
            action="clear log files",
            warning="This permanently deletes the active log files.",
        ),
    )
    _finish(command())


# ----------------------------------------------------------------------
# admin
# ----------------------------------------------------------------------
@admin_app.command("status")
def admin_status(ctx: typer.Context, json_output: bool = JSON_OPTION) -> None:
    """Report whether admin mode is enabled for this shell."""
    runtime = _get_runtime(ctx)
    report = inspect_admin_env()
    runtime.logger.debug("Admin environment inspected:", report.to_dict())

    if json_output:
        console.print_json(data=report.to_dict())
        return

    table = Table(show_header=True, header_style="bold magenta")
    table.add_column("Setting", style="bold")
    table.add_column("Value")
    for name, value in report.flags.items():
        table.add_row(name, escape(value))
    table.add_row("Admin mode", "[green]enabled[/green]" if report.is_admin else "[red]disabled[/red]")
    table.add_row("User", escape(report.user))
    table.add_row("Editor", escape(report.editor or "-"))
    console.print(table)
    for issue in report.issues:
        console.print(f"[yellow]- {escape(issue)}[/yellow]")


def main() -> None:
    """Console script entry point."""
    app()
