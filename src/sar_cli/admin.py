"""Authorization, confirmation and auditing for privileged commands.

Every sar-cli command handler is invoked through
:meth:`AdminGate.create_admin_command`. The wrapper enforces the same sequence
for each invocation::

    check access --denied--> Denied (exit 1)
         |
      granted --confirmation required?-- no --> execute
                                        yes --> prompt --decline--> Cancelled (exit 0)
                                                       --confirm--> execute
    execute --success--> audit record, exit 0
            --error----> logged, exit 1

The gate never terminates the process itself. It returns :class:`ExitCode`
values (and tagged :data:`AccessDecision` results for the individual steps);
the CLI entry point is the only place that turns them into a process exit.
"""
from __future__ import annotations

import os
import sys
import traceback
from collections.abc import Callable, Mapping, Sequence
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any, Protocol, runtime_checkable

import typer
from rich.console import Console
from rich.markup import escape

from .exit_codes import ExitCode
from .logging import LogSink

ADMIN_ENV_VARS = ("SARU_ADMIN", "SAR_ADMIN")
USER_ENV_VARS = ("USER", "USERNAME")
EDITOR_ENV_VARS = ("VISUAL", "EDITOR")
DEFAULT_EDITOR = "nano"
PROGRAM_NAME = "sar-cli"

DEFAULT_WARNING = (
    "This action requires admin privileges and may affect system configuration."
)
CONFIRMATION_QUESTION = "Are you sure you want to continue?"


def is_admin(env: Mapping[str, str] | None = None) -> bool:
    """Return ``True`` when any admin flag is set to the literal ``"true"``.

    Reads the environment on every call.
    """
    source = os.environ if env is None else env
    return any(source.get(name) == "true" for name in ADMIN_ENV_VARS)


def current_user(env: Mapping[str, str] | None = None) -> str:
    """Return the invoking user's name for audit records."""
    source = os.environ if env is None else env
    for name in USER_ENV_VARS:
        value = source.get(name)
        if value:
            return value
    return "unknown"


def _env_editor(source: Mapping[str, str]) -> str | None:
    return next((source[name] for name in EDITOR_ENV_VARS if source.get(name)), None)


def resolve_editor(explicit: str | None = None, env: Mapping[str, str] | None = None) -> str:
    """Return *explicit*, else ``$VISUAL``, else ``$EDITOR``, else ``nano``."""
    if explicit:
        return explicit
    return _env_editor(os.environ if env is None else env) or DEFAULT_EDITOR


@dataclass(slots=True, frozen=True)
class AuthorizationContext:
    """Capabilities of the current invocation, resolved once at start-up."""

    is_admin: bool
    user: str = "unknown"
    source: str = "environment"

    @classmethod
    def from_env(cls, env: Mapping[str, str] | None = None) -> AuthorizationContext:
        """Snapshot the admin flag and user name from *env* (or ``os.environ``)."""
        return cls(is_admin=is_admin(env), user=current_user(env), source="environment")


@dataclass(slots=True, frozen=True)
class AdminEnvironment:
    """Diagnostic view of the environment consulted by the gate."""

    flags: dict[str, str]
    is_admin: bool
    user: str
    editor: str | None
    issues: list[str] = field(default_factory=list)

    @property
    def is_valid(self) -> bool:
        """Return ``True`` when no issues were detected."""
        return not self.issues

    def to_dict(self) -> dict[str, object]:
        """Return a serialisable representation."""
        return {
            "flags": dict(self.flags),
            "is_admin": self.is_admin,
            "user": self.user,
            "editor": self.editor,
            "issues": list(self.issues),
            "valid": self.is_valid,
        }


def inspect_admin_env(env: Mapping[str, str] | None = None) -> AdminEnvironment:
    """Report the admin flags, user and editor visible to the gate."""
    source = os.environ if env is None else env
    flags = {name: source.get(name, "false") for name in ADMIN_ENV_VARS}
    editor = _env_editor(source)
    user = current_user(source)
    issues: list[str] = []
    if not is_admin(source):
        issues.append("Admin privileges not enabled")
    if user == "unknown":
        issues.append("Unable to determine the current user for audit records")
    return AdminEnvironment(
        flags=flags,
        is_admin=is_admin(source),
        user=user,
        editor=editor,
        issues=issues,
    )


# ----------------------------------------------------------------------
# Confirmation ports
# ----------------------------------------------------------------------
@runtime_checkable
class ConfirmationPort(Protocol):
    """Source of yes/no answers for privileged actions."""

    def ask(self, question: str) -> bool:
        """Return the user's answer to *question*."""


class TerminalConfirmation:
    """Interactive confirmation on the controlling terminal."""

    def ask(self, question: str) -> bool:
        return typer.confirm(question, default=False)


@dataclass(slots=True, frozen=True)
class AutoConfirmation:
    """Non-interactive confirmation that always returns *answer*."""

    answer: bool = True

    def ask(self, question: str) -> bool:
        return self.answer


# ----------------------------------------------------------------------
# Decisions
# ----------------------------------------------------------------------
@dataclass(slots=True, frozen=True)
class Authorized:
    """Access granted; ``confirmed`` is ``None`` when no prompt was needed."""

    command: str
    confirmed: bool | None = None

    @property
    def exit_code(self) -> ExitCode:
        return ExitCode.OK


@dataclass(slots=True, frozen=True)
class Denied:
    """Access refused because admin privileges are missing."""

    command: str
    reason: str

    @property
    def exit_code(self) -> ExitCode:
        return ExitCode.FAILURE


@dataclass(slots=True, frozen=True)
class Cancelled:
    """The user declined the confirmation prompt."""

    command: str
    action: str

    @property
    def exit_code(self) -> ExitCode:
        return ExitCode.OK


AccessDecision = Authorized | Denied | Cancelled


@dataclass(slots=True, frozen=True)
class AdminCommandOptions:
    """Per-command gate policy."""

    require_confirmation: bool = False
    action: str | None = None
    warning: str = DEFAULT_WARNING


# ----------------------------------------------------------------------
# Gate
# ----------------------------------------------------------------------
class AdminGate:
    """Single seam through which privileged command handlers run."""

    def __init__(
        self,
        auth: AuthorizationContext,
        logger: LogSink,
        confirmation: ConfirmationPort | None = None,
        *,
        console: Console | None = None,
        err_console: Console | None = None,
        argv: Sequence[str] | None = None,
        verbose: bool = False,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self.auth = auth
        self.logger = logger
        self.confirmation = confirmation or TerminalConfirmation()
        self.console = console or Console()
        self.err_console = err_console or Console(stderr=True)
        self.argv = list(argv) if argv is not None else sys.argv[1:]
        self.verbose = verbose
        self._clock = clock or (lambda: datetime.now(UTC))

    def is_admin(self) -> bool:
        """Return whether the current invocation holds admin privileges."""
        return self.auth.is_admin

    def check_access(self, command_name: str = "This command") -> Authorized | Denied:
        """Refuse non-admin callers, printing remediation instructions."""
        if self.auth.is_admin:
            return Authorized(command_name)

        reason = (
            f"{command_name} requires admin privileges. "
            f"Set {ADMIN_ENV_VARS[0]}=true to enable admin mode."
        )
        self.err_console.print(f"[red]Access Denied: {escape(reason)}[/red]")
        self.err_console.print("[yellow]Hint: Run with admin privileges:[/yellow]")
        self.err_console.print(f"[dim]   export {ADMIN_ENV_VARS[0]}=true[/dim]")
        rerun = " ".join([PROGRAM_NAME, *self.argv])
        self.err_console.print(f"[dim]   {escape(rerun)}[/dim]")
        self.logger.error("Admin access denied for command:", command_name)
        return Denied(command_name, reason)

    def has_access(self, command_name: str = "command") -> bool:
        """Probe access without printing; denials are logged as warnings."""
        if not self.auth.is_admin:
            self.logger.warn("Admin access denied for command:", command_name)
        return self.auth.is_admin

    def prompt_confirmation(self, action: str, warning: str = DEFAULT_WARNING) -> bool:
        """Show *warning* and *action*, then ask the confirmation port."""
        self.console.print(f"[yellow]Warning: {escape(warning)}[/yellow]")
        self.console.print(f"[dim]You are about to: {escape(action)}[/dim]")
        self.console.print()

        confirmed = bool(self.confirmation.ask(CONFIRMATION_QUESTION))
        if confirmed:
            self.logger.info("Admin action confirmed:", action)
        else:
            self.logger.info("Admin action cancelled:", action)
        return confirmed

    def ensure_access(
        self,
        command_name: str,
        options: AdminCommandOptions | None = None,
    ) -> AccessDecision:
        """Check access and, when the policy requires it, ask for confirmation."""
        policy = options or AdminCommandOptions()
        decision = self.check_access(command_name)
        if isinstance(decision, Denied) or not policy.require_confirmation:
            return decision

        action = policy.action or command_name
        if not self.prompt_confirmation(action, policy.warning):
            self.console.print("[yellow]Operation cancelled.[/yellow]")
            return Cancelled(command_name, action)
        return Authorized(command_name, confirmed=True)

    def audit(
        self,
        command_name: str,
        *,
        action: str | None = None,
        args: Sequence[object] = (),
        options: Mapping[str, object] | None = None,
    ) -> dict[str, Any]:
        """Log an audit record for a privileged action and return it."""
        record: dict[str, Any] = {
            "action": action or command_name,
            "command": command_name,
            "user": self.auth.user,
            "timestamp": self._clock().isoformat(),
            "args": list(args),
            "options": dict(options or {}),
        }
        self.logger.info("Admin action performed:", record)
        return record

    def create_admin_command(
        self,
        command_name: str,
        handler: Callable[..., object],
        options: AdminCommandOptions | None = None,
    ) -> Callable[..., ExitCode]:
        """Wrap *handler* so access checks and auditing cannot be skipped."""
        policy = options or AdminCommandOptions()

        def wrapped(*args: object, **kwargs: object) -> ExitCode:
            try:
                decision = self.ensure_access(command_name, policy)
                if not isinstance(decision, Authorized):
                    return decision.exit_code
                self.audit(
                    command_name,
                    action=policy.action,
                    args=args,
                    options=kwargs,
                )
                handler(*args, **kwargs)
            except typer.Abort:
                raise
            except Exception as exc:
                self._report_failure(command_name, exc)
                return ExitCode.FAILURE
            self.logger.debug("Admin command completed:", command_name)
            return ExitCode.OK

        wrapped.__name__ = getattr(handler, "__name__", "admin_command")
        wrapped.__doc__ = getattr(handler, "__doc__", None)
        return wrapped

    def run(
        self,
        command_name: str,
        handler: Callable[..., object],
        options: AdminCommandOptions | None = None,
        *args: object,
        **kwargs: object,
    ) -> ExitCode:
        """Build the wrapper for *handler* and invoke it immediately."""
        return self.create_admin_command(command_name, handler, options)(*args, **kwargs)

    def _report_failure(self, command_name: str, exc: Exception) -> None:
        message = str(exc) or exc.__class__.__name__
        self.logger.error("Admin command error:", message)
        self.err_console.print(
            f"[red]Error executing {escape(command_name)}:[/red] {escape(message)}"
        )
        if self.verbose:
            self.logger.error("Traceback:", "".join(traceback.format_exception(exc)))


__all__ = [
    "ADMIN_ENV_VARS",
    "DEFAULT_WARNING",
    "AccessDecision",
    "AdminCommandOptions",
    "AdminEnvironment",
    "AdminGate",
    "AuthorizationContext",
    "AutoConfirmation",
    "Authorized",
    "Cancelled",
    "ConfirmationPort",
    "Denied",
    "TerminalConfirmation",
    "current_user",
    "inspect_admin_env",
    "is_admin",
    "resolve_editor",
]
