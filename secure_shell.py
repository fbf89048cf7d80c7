"""SecShell: a restricted command shell with policy gating and job supervision.

Public API:
    shell = SecShell(ShellConfig.from_env(), confirm_callback=terminal_confirm)
    shell.startup()
    response = shell.execute("ls -l | grep py")
    shell.run()                                   # interactive loop

Per-line stages: History -> Sanitize -> Tokenize -> Policy gate -> Dispatch
Dispatch targets: built-in handler | foreground | raw terminal | background job | pipeline

Every denial and every security-bypass execution is written to the audit log
before the user sees a message. No error raised while handling a line ends
the session.
"""

import argparse
import os
import re
import sys
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Any, Callable, Optional

from dotenv import load_dotenv

from audit_log import AuditLog
from command_parser import (
    MODE_BACKGROUND,
    MODE_RAW_TERMINAL,
    Command,
    sanitize_input,
    sanitize_path,
    tokenize,
)
from job_registry import JobRefresher, JobRegistry, format_jobs
from policy_engine import (
    PolicyDecision,
    SecuritySession,
    evaluate_command,
    resolve_trusted_executable,
)
from process_launcher import LaunchResult, ProcessLauncher
from shell_config import (
    CONFIG_FILE_MODE,
    SHELL_VERSION,
    ShellConfig,
)
from shell_errors import (
    CommandFailedError,
    CommandSyntaxError,
    ConfigError,
    SecShellError,
)

load_dotenv()


# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

STATUS_COMPLETED = "completed"
STATUS_DENIED = "denied"
STATUS_ERROR = "error"
STATUS_BACKGROUND = "background"
STATUS_EMPTY = "empty"

PAGER_COMMAND = "more"
MAX_HISTORY = 1000
DEFAULT_LOG_LINES = 50
PAGE_LINES = 24

_ENV_NAME_RE = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")
_HISTORY_REF_RE = re.compile(r"^!(\d+)$")


# Default confirmation: refuses everything (fail-closed)
def _deny_confirmation(prompt: str) -> bool:
    return False


def terminal_confirm(prompt: str) -> bool:
    """Ask on the terminal; anything but y/yes is a no."""
    try:
        answer = input(f"{prompt} [y/N]: ")
    except EOFError:
        return False
    return answer.strip().lower() in ("y", "yes")


# ---------------------------------------------------------------------------
# Command history
# ---------------------------------------------------------------------------

class CommandHistory:
    """In-memory history mirrored to the history file, with !! and !N expansion."""

    def __init__(self, path: Optional[Path] = None, limit: int = MAX_HISTORY):
        self._path = Path(path) if path else None
        self._limit = limit
        self._entries: list[str] = []

    @property
    def entries(self) -> list[str]:
        return list(self._entries)

    def load(self):
        if self._path is None or not self._path.exists():
            return
        try:
            with open(self._path) as f:
                lines = [line.rstrip("\n") for line in f if line.strip()]
        except OSError as e:
            raise ConfigError(f"Cannot read history file {self._path}: {e}")
        self._entries = lines[-self._limit:]

    def add(self, line: str):
        self._entries.append(line)
        del self._entries[:-self._limit]
        if self._path is None:
            return
        try:
            fd = os.open(self._path, os.O_WRONLY | os.O_APPEND | os.O_CREAT, CONFIG_FILE_MODE)
            with os.fdopen(fd, "a") as f:
                f.write(line + "\n")
        except OSError as e:
            raise ConfigError(f"Cannot write history file {self._path}: {e}")

    def clear(self):
        self._entries = []
        if self._path is None:
            return
        try:
            fd = os.open(self._path, os.O_WRONLY | os.O_TRUNC | os.O_CREAT, CONFIG_FILE_MODE)
            os.close(fd)
        except OSError as e:
            raise ConfigError(f"Cannot clear history file {self._path}: {e}")

    def expand(self, line: str) -> str:
        """Resolve '!!' (last command) and '!N' (N-th command, 1-based)."""
        if line == "!!":
            if not self._entries:
                raise CommandSyntaxError("!!: event not found")
            return self._entries[-1]
        match = _HISTORY_REF_RE.match(line)
        if match:
            index = int(match.group(1))
            if index < 1 or index > len(self._entries):
                raise CommandSyntaxError(f"!{index}: event not found")
            return self._entries[index - 1]
        return line


# ---------------------------------------------------------------------------
# Built-in command table
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class BuiltinCommand:
    name: str
    handler: Callable[[list[str]], int]
    summary: str
    usage: str = ""


# ---------------------------------------------------------------------------
# SecShell dispatcher
# ---------------------------------------------------------------------------

class SecShell:
    """Composition root: owns the security session, launcher, job registry and audit log."""

    def __init__(
        self,
        config: Optional[ShellConfig] = None,
        session: Optional[SecuritySession] = None,
        launcher: Optional[ProcessLauncher] = None,
        registry: Optional[JobRegistry] = None,
        audit_log: Optional[AuditLog] = None,
        confirm_callback: Optional[Callable[[str], bool]] = None,
        output: Any = None,
    ):
        self._config = config if config is not None else ShellConfig.from_env()
        self._output = output
        self._builtins = self._build_builtins()
        self._owns_session = session is None
        self._session = session if session is not None else SecuritySession.from_config(
            self._config, builtin_commands=self._builtins
        )
        self._launcher = launcher if launcher is not None else ProcessLauncher()
        self._registry = registry if registry is not None else JobRegistry()
        self._refresher = JobRefresher(self._registry, self._config.refresh_interval)
        self._audit = audit_log if audit_log is not None else AuditLog(self._config.audit_log_path)
        self._history = CommandHistory(self._config.history_path)
        self._confirm = confirm_callback if confirm_callback is not None else _deny_confirmation
        self._previous_dir: Optional[str] = None
        self._running = False

    @property
    def session(self) -> SecuritySession:
        return self._session

    @property
    def registry(self) -> JobRegistry:
        return self._registry

    @property
    def history(self) -> CommandHistory:
        return self._history

    @property
    def running(self) -> bool:
        return self._running

    @property
    def builtin_names(self) -> frozenset:
        return frozenset(self._builtins)

    # --- Lifecycle ---

    def startup(self) -> list[str]:
        """Prepare config files, load lists and history. Problems are reported, never fatal."""
        problems = []
        try:
            created = self._config.ensure_config_files()
            for path in created:
                self._log(f"Created {path}")
        except ConfigError as e:
            problems.append(e.message)
        if self._owns_session:
            problems.extend(self._session.load_lists())
        try:
            self._history.load()
        except ConfigError as e:
            problems.append(e.message)

        for problem in problems:
            self._audit.log_error("Startup configuration problem", error_detail=problem)
            self._log(f"WARNING: {problem}")
        return problems

    def run(self):
        """Interactive loop. Returns on `exit` or end of input."""
        self._running = True
        self._refresher.start()
        try:
            while self._running:
                try:
                    line = input(self._prompt())
                except EOFError:
                    self._print("")
                    break
                except KeyboardInterrupt:
                    self._print("^C")
                    continue
                try:
                    self.execute(line)
                except KeyboardInterrupt:
                    self._print("\nInterrupted")
                except Exception as e:
                    self._audit.log_error("Unexpected error while dispatching", error_detail=str(e))
                    self._log(f"Unexpected error: {e}")
        finally:
            self._running = False
            self._refresher.stop(timeout=self._config.refresh_interval + 1)

    # --- Main entry point ---

    def execute(self, line: str) -> dict[str, Any]:
        """Handle one input line and return a response dict.

        Returns:
            {"status", "command", "exit_code", "error", "reason", "message", "pid", "output"}
        """
        raw = line.strip()
        if not raw:
            return self._response(STATUS_EMPTY, raw, exit_code=0)

        # --- Stage 1: History expansion ---
        try:
            expanded = self._history.expand(raw)
        except CommandSyntaxError as e:
            return self._error_response(raw, e, dispatched=False)
        if expanded != raw:
            self._print(expanded)
            raw = expanded
        self._remember(raw)

        # --- Stage 2: Sanitize ---
        text = sanitize_input(raw)
        if not text:
            return self._response(STATUS_EMPTY, raw, exit_code=0)

        # --- Stage 3: Tokenize ---
        try:
            parsed = tokenize(text)
        except CommandSyntaxError as e:
            return self._error_response(raw, e, dispatched=False)
        for warning in parsed.warnings:
            self._audit.log_alert(f"Warning: {warning}")
            self._warn(warning)
        if parsed.is_empty:
            return self._response(STATUS_EMPTY, raw, exit_code=0)

        # --- Stage 4: Policy gate (every stage, before anything starts) ---
        decisions = []
        for stage in parsed.stages:
            decision = evaluate_command(self._session, stage.args, stage.stdout_path)
            if not decision.allowed:
                return self._denied_response(raw, decision)
            decisions.append(decision)
        for decision in decisions:
            if decision.bypassed:
                self._audit.log_alert(decision.message)
                self._log(decision.message)

        # --- Stage 5: Dispatch ---
        try:
            if parsed.is_pipeline:
                return self._run_pipeline(raw, parsed.stages)
            command = parsed.stages[0]
            if command.name in self._builtins:
                return self._run_builtin(raw, command)
            return self._run_external(raw, command)
        except SecShellError as e:
            return self._error_response(raw, e, dispatched=True)

    # --- Dispatch targets ---

    def _run_builtin(self, raw: str, command: Command) -> dict[str, Any]:
        builtin = self._builtins[command.name]
        exit_code = builtin.handler(list(command.args[1:]))
        self._audit.log_command(raw, exit_code)
        status = STATUS_COMPLETED if exit_code == 0 else STATUS_ERROR
        return self._response(status, raw, exit_code=exit_code)

    def _run_external(self, raw: str, command: Command) -> dict[str, Any]:
        if command.mode == MODE_BACKGROUND:
            job = self._launcher.start_background(
                command, self._registry, command_text=raw, on_finished=self._job_finished
            )
            self._audit.log_command(raw, 0)
            self._print(f"Started background job [{job.pid}]: {raw}")
            return self._response(STATUS_BACKGROUND, raw, exit_code=0, pid=job.pid)

        result = self._launcher.launch(command)
        return self._finish(raw, result)

    def _run_pipeline(self, raw: str, stages: list[Command]) -> dict[str, Any]:
        paged = stages[-1].name == PAGER_COMMAND
        external = stages[:-1] if paged else stages
        for stage in external:
            if stage.name in self._builtins:
                raise CommandSyntaxError(f"Built-in '{stage.name}' cannot be used in a pipeline")

        result = self._launcher.run_pipeline(external, capture_output=paged)
        if paged and result.output:
            self._page(result.output)
        return self._finish(raw, result)

    def _finish(self, raw: str, result: LaunchResult) -> dict[str, Any]:
        self._audit.log_command(raw, result.exit_code)
        if result.error:
            self._audit.log_error(f"Command failed: {raw}", error_detail=result.error)
            self._print(f"[ERROR] {result.error}")
            return self._response(
                STATUS_ERROR, raw,
                exit_code=result.exit_code,
                error=CommandFailedError.category,
                message=result.error,
                pid=result.pid,
                output=result.output or "",
            )
        return self._response(
            STATUS_COMPLETED, raw,
            exit_code=result.exit_code,
            pid=result.pid,
            output=result.output or "",
            interrupted=result.interrupted,
        )

    def _job_finished(self, pid: int, text: str, exit_code: int):
        self._audit.log_command(f"[job {pid}] {text}", exit_code)

    # --- Response builders ---

    def _response(self, status: str, command: str, **fields) -> dict[str, Any]:
        response = {
            "status": status,
            "command": command,
            "exit_code": None,
            "error": None,
            "reason": None,
            "message": "",
            "pid": None,
            "output": "",
        }
        response.update(fields)
        return response

    def _denied_response(self, raw: str, decision: PolicyDecision) -> dict[str, Any]:
        # Audit first, then tell the user
        self._audit.log_alert(decision.message)
        self._print(f"[DENIED] {decision.message}")
        return self._response(
            STATUS_DENIED, raw,
            exit_code=1,
            error="policy_denied",
            reason=decision.reason,
            message=decision.message,
        )

    def _error_response(self, raw: str, error: SecShellError, dispatched: bool) -> dict[str, Any]:
        self._audit.log_error(error.message, error_detail=error.category)
        if dispatched:
            self._audit.log_command(raw, error.exit_code)
        self._print(f"[ERROR] {error.message}")
        return self._response(
            STATUS_ERROR, raw,
            exit_code=error.exit_code,
            error=error.category,
            reason=getattr(error, "reason", None),
            message=error.message,
        )

    # --- Built-in handlers ---

    def _build_builtins(self) -> dict[str, BuiltinCommand]:
        table = [
            BuiltinCommand("help", self._cmd_help, "Show built-in commands", "help [command]"),
            BuiltinCommand("exit", self._cmd_exit, "Leave the shell (admin)"),
            BuiltinCommand("cd", self._cmd_cd, "Change directory", "cd [dir | -p | --prev]"),
            BuiltinCommand("history", self._cmd_history, "Show or clear command history",
                           "history [clear]"),
            BuiltinCommand("export", self._cmd_export, "Set environment variables (admin)",
                           "export VAR=value ..."),
            BuiltinCommand("env", self._cmd_env, "List environment variables"),
            BuiltinCommand("unset", self._cmd_unset, "Remove environment variables (admin)",
                           "unset VAR ..."),
            BuiltinCommand("allowed", self._cmd_allowed, "Show what may run",
                           "allowed [dirs|commands|bins|builtins|all]"),
            BuiltinCommand("whitelist", self._cmd_whitelist, "Show the whitelist"),
            BuiltinCommand("blacklist", self._cmd_blacklist, "Show the blacklist"),
            BuiltinCommand("reload-whitelist", self._cmd_reload_whitelist,
                           "Re-read the whitelist file (admin)"),
            BuiltinCommand("reload-blacklist", self._cmd_reload_blacklist,
                           "Re-read the blacklist file (admin)"),
            BuiltinCommand("edit-whitelist", self._cmd_edit_whitelist,
                           "Edit the whitelist file and reload it (admin)"),
            BuiltinCommand("edit-blacklist", self._cmd_edit_blacklist,
                           "Edit the blacklist file and reload it (admin)"),
            BuiltinCommand("toggle-security", self._cmd_toggle_security,
                           "Turn whitelist enforcement on/off (admin)"),
            BuiltinCommand("jobs", self._cmd_jobs, "Manage background jobs",
                           "jobs [list|stop PID|start PID|status PID|remove PID|clear-finished|help]"),
            BuiltinCommand("logs", self._cmd_logs, "Show recent audit log entries (admin)",
                           f"logs [N] (default {DEFAULT_LOG_LINES})"),
            BuiltinCommand("more", self._cmd_more, "Page through files", "more FILE ..."),
            BuiltinCommand("--version", self._cmd_version, "Show the shell version"),
        ]
        return {b.name: b for b in table}

    def _cmd_help(self, args: list[str]) -> int:
        if args:
            builtin = self._builtins.get(args[0])
            if builtin is None:
                raise CommandFailedError(f"help: no built-in named '{args[0]}'")
            self._print(f"{builtin.name}: {builtin.summary}")
            self._print(f"usage: {builtin.usage or builtin.name}")
            return 0
        self._print("Built-in commands:")
        for name in sorted(self._builtins):
            self._print(f"  {name:<18} {self._builtins[name].summary}")
        self._print("External commands must be whitelisted or live in a trusted directory.")
        return 0

    def _cmd_exit(self, args: list[str]) -> int:
        self._running = False
        self._print("Goodbye")
        return 0

    def _cmd_cd(self, args: list[str]) -> int:
        if not args:
            target = os.environ.get("HOME") or os.path.expanduser("~")
        elif args[0] in ("-p", "--prev"):
            if self._previous_dir is None:
                raise CommandFailedError("cd: no previous directory")
            target = self._previous_dir
        else:
            target = os.path.expanduser(sanitize_path(args[0]))

        current = os.getcwd()
        try:
            os.chdir(target)
        except OSError as e:
            raise CommandFailedError(f"cd: {target}: {e.strerror or e}")
        self._previous_dir = current
        return 0

    def _cmd_history(self, args: list[str]) -> int:
        if args and args[0] == "clear":
            self._history.clear()
            self._print("History cleared")
            return 0
        for index, entry in enumerate(self._history.entries, start=1):
            self._print(f"{index:>5}  {entry}")
        return 0

    def _cmd_export(self, args: list[str]) -> int:
        if not args:
            raise CommandFailedError("usage: export VAR=value ...")
        for assignment in args:
            name, sep, value = assignment.partition("=")
            if not sep or not _ENV_NAME_RE.match(name):
                raise CommandFailedError(f"export: invalid assignment '{assignment}'")
            os.environ[name] = value
        return 0

    def _cmd_env(self, args: list[str]) -> int:
        for name in sorted(os.environ):
            self._print(f"{name}={os.environ[name]}")
        return 0

    def _cmd_unset(self, args: list[str]) -> int:
        if not args:
            raise CommandFailedError("usage: unset VAR ...")
        for name in args:
            os.environ.pop(name, None)
        return 0

    def _cmd_allowed(self, args: list[str]) -> int:
        category = args[0] if args else "all"
        sections = {
            "dirs": ("Trusted directories", list(self._session.trusted_dirs)),
            "commands": ("Whitelisted commands", sorted(self._session.whitelist)),
            "builtins": ("Built-in commands", sorted(self._builtins)),
            "bins": ("Executables in trusted directories", self._trusted_executables()),
        }
        if category == "all":
            selected = ["dirs", "commands", "builtins"]
        elif category in sections:
            selected = [category]
        else:
            raise CommandFailedError(
                f"allowed: unknown category '{category}' (dirs|commands|bins|builtins|all)"
            )
        for key in selected:
            title, items = sections[key]
            self._print(f"{title}:")
            for item in items:
                self._print(f"  {item}")
        return 0

    def _trusted_executables(self) -> list[str]:
        names = set()
        for directory in self._session.trusted_dirs:
            try:
                entries = os.listdir(directory)
            except OSError:
                continue
            for name in entries:
                if resolve_trusted_executable(name, (directory,)):
                    names.add(name)
        return sorted(names)

    def _cmd_whitelist(self, args: list[str]) -> int:
        for name in self._session.whitelist:
            self._print(name)
        return 0

    def _cmd_blacklist(self, args: list[str]) -> int:
        if not self._session.blacklist:
            self._print("Blacklist is empty")
        for name in self._session.blacklist:
            self._print(name)
        return 0

    def _cmd_reload_whitelist(self, args: list[str]) -> int:
        names = self._session.reload_whitelist()
        self._audit.log_alert(f"Whitelist reloaded ({len(names)} commands)")
        self._print(f"Whitelist reloaded: {len(names)} commands")
        return 0

    def _cmd_reload_blacklist(self, args: list[str]) -> int:
        names = self._session.reload_blacklist()
        self._audit.log_alert(f"Blacklist reloaded ({len(names)} commands)")
        self._print(f"Blacklist reloaded: {len(names)} commands")
        return 0

    def _cmd_edit_whitelist(self, args: list[str]) -> int:
        exit_code = self._edit_file(self._config.whitelist_path)
        return exit_code or self._cmd_reload_whitelist([])

    def _cmd_edit_blacklist(self, args: list[str]) -> int:
        exit_code = self._edit_file(self._config.blacklist_path)
        return exit_code or self._cmd_reload_blacklist([])

    def _edit_file(self, path: Path) -> int:
        editor = Command(args=(self._config.editor, str(path)), mode=MODE_RAW_TERMINAL)
        result = self._launcher.launch(editor)
        if result.error:
            self._print(f"[ERROR] {result.error}")
        return result.exit_code

    def _cmd_toggle_security(self, args: list[str]) -> int:
        enabling = not self._session.bypass_enabled
        action = "DISABLE whitelist/trusted-directory enforcement" if enabling else "re-enable security checks"
        if not self._confirm(f"Really {action}?"):
            self._print("Security toggle cancelled")
            return 1
        bypass = self._session.toggle_bypass()
        state = "ENABLED" if bypass else "DISABLED"
        self._audit.log_alert(f"Security bypass {state} by admin user")
        self._print(f"Security bypass {state}")
        return 0

    def _cmd_jobs(self, args: list[str]) -> int:
        action = args[0] if args else "list"
        if action == "list":
            for line in format_jobs(self._registry.snapshots()):
                self._print(line)
            return 0
        if action == "clear-finished":
            removed = self._registry.clear_finished()
            self._print(f"Cleared {len(removed)} finished job(s)")
            return 0
        if action == "help":
            self._print(f"usage: {self._builtins['jobs'].usage}")
            return 0
        if action not in ("stop", "start", "resume", "status", "remove"):
            raise CommandFailedError(f"jobs: unknown action '{action}'")
        if len(args) < 2:
            raise CommandFailedError(f"usage: jobs {action} PID")
        try:
            pid = int(args[1])
        except ValueError:
            raise CommandFailedError(f"jobs: invalid PID '{args[1]}'")

        if action == "stop":
            self._print(self._registry.stop(pid))
        elif action in ("start", "resume"):
            self._print(self._registry.resume(pid))
        elif action == "remove":
            job = self._registry.remove(pid)
            self._print(f"Job [{pid}] removed ({job.status_label})")
        else:
            snap = self._registry.status(pid)
            for line in format_jobs([snap]):
                self._print(line)
            self._print(f"Started: {snap['started_at']:%Y-%m-%d %H:%M:%S}")
            if snap["ended_at"] is not None:
                self._print(f"Ended:   {snap['ended_at']:%Y-%m-%d %H:%M:%S}")
        return 0

    def _cmd_logs(self, args: list[str]) -> int:
        limit = DEFAULT_LOG_LINES
        if args:
            try:
                limit = int(args[0])
            except ValueError:
                raise CommandFailedError(f"logs: invalid count '{args[0]}'")
        lines = self._audit.format_entries(limit)
        self._page("\n".join(lines) if lines else "Audit log is empty")
        return 0

    def _cmd_more(self, args: list[str]) -> int:
        if not args:
            raise CommandFailedError("usage: more FILE ...")
        for name in args:
            path = os.path.expanduser(sanitize_path(name))
            try:
                with open(path, errors="replace") as f:
                    text = f.read()
            except OSError as e:
                raise CommandFailedError(f"more: {name}: {e.strerror or e}")
            if len(args) > 1:
                self._print(f"::::::::::::::\n{name}\n::::::::::::::")
            self._page(text)
        return 0

    def _cmd_version(self, args: list[str]) -> int:
        version = SHELL_VERSION
        try:
            version = self._config.version_path.read_text().strip() or SHELL_VERSION
        except OSError:
            pass
        self._print(f"SecShell {version}")
        return 0

    # --- Output helpers ---

    def _page(self, text: str):
        """Print text one screenful at a time when attached to a terminal."""
        lines = text.splitlines()
        interactive = self._output is None and os.isatty(0) and os.isatty(1)
        for start in range(0, len(lines), PAGE_LINES):
            for line in lines[start:start + PAGE_LINES]:
                self._print(line)
            if not interactive or start + PAGE_LINES >= len(lines):
                continue
            try:
                answer = input("--More-- (Enter to continue, q to quit) ")
            except EOFError:
                break
            if answer.strip().lower() == "q":
                break

    def _prompt(self) -> str:
        marker = "#" if self._session.is_admin() else "$"
        bypass = "[BYPASS] " if self._session.bypass_enabled else ""
        return f"{bypass}secshell:{os.getcwd()}{marker} "

    def _remember(self, line: str):
        try:
            self._history.add(line)
        except ConfigError as e:
            self._log(f"WARNING: {e.message}")

    def _print(self, message: str):
        print(message, file=self._output)

    def _warn(self, message: str):
        print(f"[WARNING] {message}", file=self._output)

    def _log(self, message: str):
        """Print to stderr with prefix."""
        print(f"[SecShell] {message}", file=sys.stderr)


# ---------------------------------------------------------------------------
# Main
# ---------------------------------------------------------------------------

def main(argv: Optional[list[str]] = None):
    parser = argparse.ArgumentParser(description="SecShell: restricted command shell with job supervision")
    parser.add_argument("--config-dir",        default=None, metavar="DIR",
                        help="Configuration directory (default: $SECSHELL_CONFIG_DIR or ~/.secshell)")
    parser.add_argument("--refresh-interval",  type=float, default=None, metavar="SECONDS",
                        help="Background job sampling interval (default: 2)")
    parser.add_argument("-c", "--command",     default=None, metavar="LINE",
                        help="Run one command line and exit with its status")
    parser.add_argument("--version",           action="version", version=f"SecShell {SHELL_VERSION}")
    args = parser.parse_args(argv)

    try:
        config = ShellConfig.from_env(
            config_dir=args.config_dir,
            refresh_interval=args.refresh_interval,
        )
    except ConfigError as e:
        print(f"[ERROR] {e.message}")
        sys.exit(1)

    shell = SecShell(config, confirm_callback=terminal_confirm)
    shell.startup()

    if args.command is not None:
        response = shell.execute(args.command)
        exit_code = response.get("exit_code")
        sys.exit(exit_code if isinstance(exit_code, int) else 0)

    W = 56
    print("=" * W)
    print(f"  SECSHELL {SHELL_VERSION}  |  {datetime.now():%Y-%m-%d %H:%M}")
    print("  Type 'help' for built-in commands.")
    print("=" * W)

    try:
        shell.run()
    except KeyboardInterrupt:
        print("\n[SecShell] Interrupted. Bye.")
        sys.exit(0)


if __name__ == "__main__":
    main()
