"""Process launcher: runs permitted commands under the right process discipline.

Public API:
    launcher = ProcessLauncher()
    result = launcher.launch(command)                       # foreground / raw terminal
    job = launcher.start_background(command, registry)      # returns immediately
    result = launcher.run_pipeline(stages, capture_output=False)
    launcher.forward_interrupt()                            # SIGINT -> child groups

Execution modes:
    foreground   own session/process group; the shell's SIGINT is forwarded
    raw_terminal shares the shell's group so the child gets terminal signals
                 directly; termios state is saved and restored around it
    background   own session/process group, stdin from /dev/null, waited on
                 by a daemon thread that records completion in the registry
    pipeline     every stage in its own group; all started before any wait

Launch failures raise LaunchError before anything is left running. Runtime
failures come back as a LaunchResult with `error` set.
"""

import os
import re
import shlex
import signal
import subprocess
import sys
import termios
import threading
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Any, Callable, Optional

from command_parser import MODE_BACKGROUND, MODE_RAW_TERMINAL, Command
from job_registry import Job, JobRegistry
from shell_errors import LaunchError


# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

EXIT_SUCCESS = 0
EXIT_REDIRECT_FAILED = 1
EXIT_NOT_EXECUTABLE = 126
EXIT_COMMAND_NOT_FOUND = 127
EXIT_SIGNAL_BASE = 128

# Color flags forced for well-known tools writing to the terminal
COLOR_FLAGS = {
    "ls": "--color=auto",
    "grep": "--color=always",
    "diff": "--color=auto",
}

_ENV_VAR_RE = re.compile(r"\$(?:\{(\w+)\}|(\w+))")


def exit_code_from_returncode(returncode: int) -> int:
    """Popen returncode -> shell exit code (signal N becomes 128+N)."""
    if returncode < 0:
        return EXIT_SIGNAL_BASE - returncode
    return returncode


def _signal_name(signum: int) -> str:
    try:
        return signal.Signals(signum).name
    except ValueError:
        return f"signal {signum}"


def expand_environment(text: str, environ=None) -> str:
    """Substitute $VAR and ${VAR}; unknown variables become empty."""
    env = os.environ if environ is None else environ
    return _ENV_VAR_RE.sub(lambda m: env.get(m.group(1) or m.group(2), ""), text)


@dataclass
class LaunchResult:
    exit_code: int
    error: Optional[str] = None
    interrupted: bool = False
    signaled: bool = False
    output: Optional[str] = None
    pid: Optional[int] = None

    @property
    def succeeded(self) -> bool:
        return self.error is None


# ---------------------------------------------------------------------------
# ProcessLauncher
# ---------------------------------------------------------------------------

class ProcessLauncher:
    """Starts OS processes for the dispatcher. Owns all signal handling."""

    def __init__(
        self,
        stdin: Any = None,
        stdout: Any = None,
        stderr: Any = None,
        environ: Optional[dict] = None,
        terminal_fd: Optional[int] = 0,
    ):
        self._stdin = stdin
        self._stdout = stdout
        self._stderr = stderr
        self._environ = environ
        self._terminal_fd = terminal_fd
        self._active_groups: list[int] = []
        self._interrupted = False

    # --- Public entry points ---

    def launch(self, command: Command) -> LaunchResult:
        if command.mode == MODE_BACKGROUND:
            raise LaunchError("Background commands are started with start_background()")
        if command.mode == MODE_RAW_TERMINAL:
            return self.run_raw_terminal(command)
        return self.run_foreground(command)

    def run_foreground(self, command: Command) -> LaunchResult:
        """Run in a new process group and wait, forwarding SIGINT to the group."""
        args = self.prepare_arguments(command.args, colorize=command.stdout_path is None)
        with self._interrupt_forwarding():
            with self._redirections(command) as (stdin, stdout):
                process = self._spawn(args, stdin, stdout, new_group=True)
            self._active_groups.append(process.pid)
            returncode = process.wait()
        result = self._result(returncode, command.name)
        result.pid = process.pid
        return result

    def run_raw_terminal(self, command: Command) -> LaunchResult:
        """Hand the terminal to the child; restore terminal mode whatever happens."""
        args = list(command.args)
        self._interrupted = False
        with self._terminal_state():
            process = self._spawn(args, self._stdin, self._stdout, new_group=False)
            # The child shares our group and handles Ctrl-C itself
            with self._signal_disposition(signal.SIG_IGN):
                returncode = process.wait()
        result = self._result(returncode, command.name)
        result.pid = process.pid
        return result

    def start_background(
        self,
        command: Command,
        registry: JobRegistry,
        command_text: Optional[str] = None,
        on_finished: Optional[Callable[[int, str, int], None]] = None,
    ) -> Job:
        """Start without waiting and register the job. Completion is recorded by a daemon thread."""
        args = self.prepare_arguments(command.args, colorize=False)
        text = command_text or shlex.join(command.args)
        with self._redirections(command) as (stdin, stdout):
            if command.stdin_path is None:
                stdin = subprocess.DEVNULL
            process = self._spawn(args, stdin, stdout, new_group=True)

        job = registry.add(process.pid, text, process)
        waiter = threading.Thread(
            target=self._await_job,
            args=(process, registry, text, on_finished),
            name=f"job-waiter-{process.pid}",
            daemon=True,
        )
        waiter.start()
        return job

    def run_pipeline(self, stages: list[Command], capture_output: bool = False) -> LaunchResult:
        """Connect stages stdout -> stdin, start them all, then wait for all.

        With capture_output the last stage's output is returned in
        LaunchResult.output instead of reaching the terminal.
        """
        if not stages:
            raise LaunchError("Empty pipeline")

        processes: list[subprocess.Popen] = []
        last = len(stages) - 1
        output = None

        with self._interrupt_forwarding():
            upstream = self._stdin
            try:
                for index, stage in enumerate(stages):
                    is_last = index == last
                    args = self.prepare_arguments(stage.args, colorize=is_last and not capture_output)
                    if not is_last or capture_output:
                        stdout = subprocess.PIPE
                    else:
                        stdout = self._stdout
                    process = self._spawn(args, upstream, stdout, new_group=True)
                    if processes and processes[-1].stdout is not None:
                        # The next stage holds its own copy of the read end
                        processes[-1].stdout.close()
                    processes.append(process)
                    self._active_groups.append(process.pid)
                    upstream = process.stdout
            except LaunchError:
                self._abort(processes)
                raise

            if capture_output and processes[-1].stdout is not None:
                with processes[-1].stdout as pipe:
                    output = pipe.read().decode("utf-8", errors="replace")

            returncodes = [p.wait() for p in processes]

        result = self._result(returncodes[-1], stages[-1].name)
        if not result.interrupted and any(rc == -signal.SIGINT for rc in returncodes):
            result = LaunchResult(exit_code=result.exit_code, interrupted=True, signaled=True)
        result.output = output
        result.pid = processes[-1].pid
        return result

    def forward_interrupt(self, signum: int = signal.SIGINT):
        """Send `signum` to every process group the launcher is currently waiting on."""
        for pgid in list(self._active_groups):
            try:
                os.killpg(pgid, signum)
            except (ProcessLookupError, PermissionError):
                # Group already gone
                continue

    # --- Argument handling ---

    def prepare_arguments(self, args, colorize: bool = True) -> list[str]:
        """Apply echo environment substitution and terminal color flags."""
        args = list(args)
        if not args:
            return args
        program = os.path.basename(args[0])
        if program == "echo":
            args = [args[0]] + [expand_environment(a, self._environ) for a in args[1:]]
        if colorize and program in COLOR_FLAGS:
            if not any(a.startswith("--color") for a in args[1:]):
                args.insert(1, COLOR_FLAGS[program])
        return args

    # --- Internals ---

    def _spawn(self, args: list[str], stdin: Any, stdout: Any, new_group: bool) -> subprocess.Popen:
        try:
            return subprocess.Popen(
                args,
                stdin=stdin,
                stdout=stdout,
                stderr=self._stderr,
                env=self._environ,
                start_new_session=new_group,
            )
        except FileNotFoundError:
            raise LaunchError(f"Command not found: {args[0]}", exit_code=EXIT_COMMAND_NOT_FOUND)
        except PermissionError:
            raise LaunchError(f"Permission denied: {args[0]}", exit_code=EXIT_NOT_EXECUTABLE)
        except OSError as e:
            raise LaunchError(f"Failed to start '{args[0]}': {e}", exit_code=EXIT_NOT_EXECUTABLE)

    @contextmanager
    def _redirections(self, command: Command):
        """Open redirection targets before anything starts; close the parent's copies after."""
        stdin, stdout = self._stdin, self._stdout
        opened = []
        try:
            if command.stdin_path is not None:
                try:
                    stdin = open(command.stdin_path, "rb")
                except OSError as e:
                    raise LaunchError(
                        f"Cannot open input file '{command.stdin_path}': {e.strerror or e}",
                        exit_code=EXIT_REDIRECT_FAILED,
                    )
                opened.append(stdin)
            if command.stdout_path is not None:
                try:
                    stdout = open(command.stdout_path, "wb")
                except OSError as e:
                    raise LaunchError(
                        f"Cannot open output file '{command.stdout_path}': {e.strerror or e}",
                        exit_code=EXIT_REDIRECT_FAILED,
                    )
                opened.append(stdout)
            yield stdin, stdout
        finally:
            for f in opened:
                f.close()

    @contextmanager
    def _signal_disposition(self, handler):
        """Install a SIGINT handler for the duration of the block (main thread only)."""
        installed = True
        previous = None
        try:
            previous = signal.signal(signal.SIGINT, handler)
        except ValueError:
            # Not the main thread; signals are delivered elsewhere
            installed = False
        try:
            yield
        finally:
            if installed:
                signal.signal(signal.SIGINT, previous if previous is not None else signal.SIG_DFL)

    @contextmanager
    def _interrupt_forwarding(self):
        self._interrupted = False
        self._active_groups = []
        try:
            with self._signal_disposition(self._handle_interrupt):
                yield
        finally:
            self._active_groups = []

    def _handle_interrupt(self, signum, frame):
        self._interrupted = True
        self.forward_interrupt(signum)

    @contextmanager
    def _terminal_state(self):
        fd = self._terminal_fd
        saved = None
        if fd is not None and os.isatty(fd):
            try:
                saved = termios.tcgetattr(fd)
            except termios.error as e:
                self._log(f"Cannot save terminal state: {e}")
        try:
            yield
        finally:
            if saved is not None:
                try:
                    termios.tcsetattr(fd, termios.TCSADRAIN, saved)
                except termios.error as e:
                    self._log(f"WARNING: Cannot restore terminal state: {e}")

    def _result(self, returncode: int, name: str) -> LaunchResult:
        exit_code = exit_code_from_returncode(returncode)
        if returncode == 0:
            return LaunchResult(exit_code=EXIT_SUCCESS)
        signaled = returncode < 0
        if (signaled and -returncode == signal.SIGINT) or self._interrupted:
            return LaunchResult(exit_code=exit_code, interrupted=True, signaled=signaled)
        if signaled:
            return LaunchResult(
                exit_code=exit_code,
                signaled=True,
                error=f"'{name}' terminated by {_signal_name(-returncode)}",
            )
        return LaunchResult(exit_code=exit_code, error=f"'{name}' exited with status {exit_code}")

    def _abort(self, processes: list[subprocess.Popen]):
        """Tear down stages that started before a later stage failed to launch."""
        for process in processes:
            try:
                os.killpg(process.pid, signal.SIGTERM)
            except (ProcessLookupError, PermissionError):
                pass
            if process.stdout is not None:
                process.stdout.close()
            process.wait()

    def _await_job(self, process: subprocess.Popen, registry: JobRegistry, text: str,
                   on_finished: Optional[Callable[[int, str, int], None]]):
        exit_code = exit_code_from_returncode(process.wait())
        registry.mark_finished(process.pid, exit_code)
        if on_finished is not None:
            try:
                on_finished(process.pid, text, exit_code)
            except Exception as e:
                self._log(f"Job completion hook failed for [{process.pid}]: {e}")

    def _log(self, message: str):
        print(f"[Process Launcher] {message}", file=sys.stderr)
