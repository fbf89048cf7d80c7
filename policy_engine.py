"""Policy engine: decides whether a command may run at all.

Public API:
    session = SecuritySession.from_config(config, builtin_commands=names)
    decision = evaluate_command(session, ["rm", "-rf", "/tmp/x"])
    decision = is_allowed(session, "ls", is_admin=False, bypass_enabled=False)

Decision order for is_allowed():
    1. admin-required command, caller not admin   -> denied (admin_required)
    2. blacklisted                                -> denied (blacklisted)
    3. admin with bypass, not admin-required      -> allowed (bypassed)
    4. built-in, whitelisted or in a trusted dir  -> allowed
    5. anything else                              -> denied (not_whitelisted)

The critical-path guards (check_critical_paths, check_redirect_target) run first and
cannot be relaxed by admin status or the bypass flag.
"""

import grp
import os
import pwd
import sys
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, Iterable, Optional

from shell_config import (
    CONFIG_FILE_MODE,
    DEFAULT_ADMIN_GROUPS,
    DEFAULT_TRUSTED_DIRS,
    DEFAULT_WHITELIST,
    ShellConfig,
)
from shell_errors import ConfigError, PolicyError


# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

REASON_NOT_WHITELISTED = "not_whitelisted"
REASON_BLACKLISTED = "blacklisted"
REASON_ADMIN_REQUIRED = "admin_required"
REASON_CRITICAL_PATH = "critical_path_protected"

# Built-ins that change security state or leave the shell
ADMIN_BUILTINS = frozenset({
    "exit", "logs", "export", "unset",
    "edit-blacklist", "edit-whitelist", "reload-blacklist", "reload-whitelist",
    "toggle-security",
})

# Privilege escalation and interactive shells would escape the policy engine
_ESCALATION_COMMANDS = frozenset({"sudo", "su", "doas"})
_INTERACTIVE_SHELLS = frozenset({"sh", "bash", "dash", "zsh", "ksh", "csh", "tcsh", "fish"})

ADMIN_REQUIRED_COMMANDS = ADMIN_BUILTINS | _ESCALATION_COMMANDS | _INTERACTIVE_SHELLS

DESTRUCTIVE_COMMANDS = frozenset({"rm", "rmdir", "unlink", "shred", "mv", "truncate"})


# ---------------------------------------------------------------------------
# Admin determination
# ---------------------------------------------------------------------------

def is_admin(admin_groups: Iterable[str] = DEFAULT_ADMIN_GROUPS) -> bool:
    """True if the process runs as root or its user belongs to an admin group.

    Queried from the OS group database on every call, never cached.
    """
    if os.geteuid() == 0:
        return True
    wanted = set(admin_groups)
    try:
        user = pwd.getpwuid(os.getuid())
        gids = os.getgrouplist(user.pw_name, user.pw_gid)
    except (KeyError, OSError) as e:
        print(f"[Policy Engine] Cannot resolve groups for uid {os.getuid()}: {e}", file=sys.stderr)
        return False

    for gid in gids:
        try:
            if grp.getgrgid(gid).gr_name in wanted:
                return True
        except KeyError:
            continue
    return False


# ---------------------------------------------------------------------------
# Command list files
# ---------------------------------------------------------------------------

def load_command_list(path) -> list[str]:
    """Read one command name per line; blank lines are skipped."""
    try:
        with open(path) as f:
            return [line.strip() for line in f if line.strip()]
    except OSError as e:
        raise ConfigError(f"Cannot read command list {path}: {e}")


def save_command_list(path, names: Iterable[str]) -> None:
    """Write command names one per line with owner-only permissions."""
    content = "".join(f"{name}\n" for name in names)
    try:
        fd = os.open(path, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, CONFIG_FILE_MODE)
        with os.fdopen(fd, "w") as f:
            f.write(content)
        os.chmod(path, CONFIG_FILE_MODE)
    except OSError as e:
        raise ConfigError(f"Cannot write command list {path}: {e}")


# ---------------------------------------------------------------------------
# Decision types
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class PolicyDecision:
    allowed: bool
    command: str
    reason: Optional[str] = None
    bypassed: bool = False
    detail: str = ""

    @property
    def message(self) -> str:
        if self.allowed:
            if self.bypassed:
                return f"SECURITY BYPASS: Admin user executing command with security disabled: {self.command}"
            return f"Command permitted: {self.command}"
        if self.reason == REASON_ADMIN_REQUIRED:
            return f"Permission denied: '{self.command}' requires admin privileges"
        if self.reason == REASON_BLACKLISTED:
            return f"Command '{self.command}' is blacklisted and cannot be executed"
        if self.reason == REASON_CRITICAL_PATH:
            return f"Attempt to delete or overwrite the critical file/directory '{self.detail}' is forbidden."
        return f"Command not permitted: {self.command}"


def _allow(command: str, bypassed: bool = False) -> PolicyDecision:
    return PolicyDecision(allowed=True, command=command, bypassed=bypassed)


def _deny(command: str, reason: str, detail: str = "") -> PolicyDecision:
    return PolicyDecision(allowed=False, command=command, reason=reason, detail=detail)


# ---------------------------------------------------------------------------
# SecuritySession
# ---------------------------------------------------------------------------

@dataclass
class SecuritySession:
    """Process-wide security state, owned by the dispatcher.

    whitelist and blacklist are tuples that reloads replace wholesale, so a
    concurrent reader always sees either the old or the new list.
    """

    whitelist: tuple[str, ...] = DEFAULT_WHITELIST
    blacklist: tuple[str, ...] = ()
    admin_commands: frozenset = ADMIN_REQUIRED_COMMANDS
    builtin_commands: frozenset = frozenset()
    trusted_dirs: tuple[str, ...] = DEFAULT_TRUSTED_DIRS
    critical_paths: tuple[str, ...] = ()
    bypass_enabled: bool = False
    admin_check: Callable[[], bool] = field(default=is_admin, repr=False)
    whitelist_path: Optional[Path] = None
    blacklist_path: Optional[Path] = None

    @classmethod
    def from_config(cls, config: ShellConfig, builtin_commands: Iterable[str] = (),
                    admin_check: Optional[Callable[[], bool]] = None) -> "SecuritySession":
        groups = tuple(config.admin_groups)
        session = cls(
            builtin_commands=frozenset(builtin_commands),
            trusted_dirs=tuple(config.trusted_dirs),
            critical_paths=config.critical_paths(),
            admin_check=admin_check or (lambda: is_admin(groups)),
            whitelist_path=config.whitelist_path,
            blacklist_path=config.blacklist_path,
        )
        return session

    def is_admin(self) -> bool:
        return bool(self.admin_check())

    # --- Reloads ---

    def reload_whitelist(self) -> tuple[str, ...]:
        """Re-read the whitelist file. An empty file falls back to the defaults."""
        names = load_command_list(self.whitelist_path) if self.whitelist_path else []
        self.whitelist = tuple(names) if names else DEFAULT_WHITELIST
        return self.whitelist

    def reload_blacklist(self) -> tuple[str, ...]:
        names = load_command_list(self.blacklist_path) if self.blacklist_path else []
        self.blacklist = tuple(names)
        return self.blacklist

    def load_lists(self) -> list[str]:
        """Startup load. Unreadable files fall back to defaults; returns the problems."""
        problems = []
        try:
            self.reload_whitelist()
        except ConfigError as e:
            self.whitelist = DEFAULT_WHITELIST
            problems.append(e.message)
        try:
            self.reload_blacklist()
        except ConfigError as e:
            self.blacklist = ()
            problems.append(e.message)
        return problems

    # --- Security bypass ---

    def set_bypass(self, enabled: bool) -> bool:
        if not self.is_admin():
            raise PolicyError(
                "Permission denied: 'toggle-security' requires admin privileges",
                reason=REASON_ADMIN_REQUIRED,
            )
        self.bypass_enabled = enabled
        return self.bypass_enabled

    def toggle_bypass(self) -> bool:
        return self.set_bypass(not self.bypass_enabled)


# ---------------------------------------------------------------------------
# Checks
# ---------------------------------------------------------------------------

def resolve_trusted_executable(name: str, trusted_dirs: Iterable[str]) -> Optional[str]:
    """Return the path of `name` inside a trusted directory, if it is executable there."""
    if not name or os.sep in name or name in (".", ".."):
        return None
    for directory in trusted_dirs:
        candidate = os.path.join(directory, name)
        if os.path.isfile(candidate) and os.access(candidate, os.X_OK):
            return candidate
    return None


def is_allowed(session: SecuritySession, command_name: str,
               is_admin: bool, bypass_enabled: bool) -> PolicyDecision:
    """Pure decision for one command name against the session's current lists.

    The admin-required set and the blacklist match on the basename, so
    /usr/bin/nc is treated like nc.
    """
    program = os.path.basename(command_name)
    admin_required = command_name in session.admin_commands or program in session.admin_commands
    if admin_required and not is_admin:
        return _deny(command_name, REASON_ADMIN_REQUIRED)

    if command_name in session.blacklist or program in session.blacklist:
        return _deny(command_name, REASON_BLACKLISTED)

    if is_admin and bypass_enabled and not admin_required:
        return _allow(command_name, bypassed=True)

    if (command_name in session.builtin_commands
            or command_name in session.whitelist
            or resolve_trusted_executable(command_name, session.trusted_dirs)):
        return _allow(command_name)

    return _deny(command_name, REASON_NOT_WHITELISTED)


def _guards(target: str, critical: str) -> bool:
    """True if removing `target` would remove `critical` (same path or an ancestor)."""
    if target == critical:
        return True
    return critical.startswith(target.rstrip(os.sep) + os.sep)


def check_critical_paths(args, critical_paths: Iterable[str]) -> Optional[PolicyDecision]:
    """Deny destructive commands aimed at security-critical files. None if harmless."""
    if not args:
        return None
    program = os.path.basename(args[0])
    if program not in DESTRUCTIVE_COMMANDS:
        return None

    critical = tuple(critical_paths)
    end_of_options = False
    for arg in args[1:]:
        if not end_of_options:
            if arg == "--":
                end_of_options = True
                continue
            if arg.startswith("-"):
                continue
        if not arg:
            continue
        # ~ is expanded here although nothing expands it at launch, so the check errs strict
        target = os.path.realpath(os.path.expanduser(arg))
        for path in critical:
            if _guards(target, path):
                return _deny(program, REASON_CRITICAL_PATH, detail=arg)
    return None


def check_redirect_target(command_name: str, stdout_path: Optional[str],
                          critical_paths: Iterable[str]) -> Optional[PolicyDecision]:
    """Deny output redirection onto a security-critical file, which would truncate it."""
    if not stdout_path:
        return None
    target = os.path.realpath(stdout_path)
    for path in critical_paths:
        if target == path:
            return _deny(command_name, REASON_CRITICAL_PATH, detail=stdout_path)
    return None


def evaluate_command(session: SecuritySession, args,
                     stdout_path: Optional[str] = None) -> PolicyDecision:
    """Full gate for one argument vector: critical paths first, then is_allowed()."""
    name = args[0] if args else ""
    guard = (check_critical_paths(args, session.critical_paths)
             or check_redirect_target(name, stdout_path, session.critical_paths))
    if guard is not None:
        return guard
    return is_allowed(session, name, session.is_admin(), session.bypass_enabled)
