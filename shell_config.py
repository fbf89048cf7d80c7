"""Configuration for SecShell: config directory layout and environment overrides.

Public API:
    config = ShellConfig.from_env()
    config.ensure_config_files()
    config.whitelist_path, config.critical_paths()

Environment variables (a .env file is honoured by the CLI through python-dotenv):
    SECSHELL_CONFIG_DIR        config directory (default: ~/.secshell)
    SECSHELL_REFRESH_INTERVAL  job sampling interval in seconds (default: 2)
    SECSHELL_TRUSTED_DIRS      ':'-separated trusted executable directories
    SECSHELL_ADMIN_GROUPS      ','-separated administrative OS groups
    SECSHELL_EDITOR            editor used by edit-whitelist / edit-blacklist
"""

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional

from shell_errors import ConfigError


# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

SHELL_VERSION = "1.0.0"

DEFAULT_CONFIG_DIR = "~/.secshell"
DEFAULT_REFRESH_INTERVAL = 2.0
DEFAULT_EDITOR = "nano"

WHITELIST_FILE = ".whitelist"
BLACKLIST_FILE = ".blacklist"
VERSION_FILE = ".ver"
HISTORY_FILE = ".history"
AUDIT_LOG_FILE = ".secshell_audit.log"

CONFIG_DIR_MODE = 0o700
CONFIG_FILE_MODE = 0o600

DEFAULT_TRUSTED_DIRS = ("/usr/bin/", "/bin/", "/opt/", "/usr/local/bin/")
DEFAULT_ADMIN_GROUPS = ("sudo", "admin", "wheel", "root")

DEFAULT_WHITELIST = (
    "sudo", "apt", "ls", "cd", "pwd", "cp", "mv", "rm", "mkdir", "rmdir",
    "touch", "cat", "echo", "grep", "find", "chmod", "chown", "ps", "kill",
    "top", "df", "du", "ifconfig", "netstat", "ping", "ip", "clear",
    "vim", "nano", "emacs", "nvim",
)


def _split_env_list(value: Optional[str], sep: str) -> tuple[str, ...]:
    if not value:
        return ()
    return tuple(item.strip() for item in value.split(sep) if item.strip())


def create_private_file(path: Path, content: str = "") -> None:
    """Create `path` with owner-only permissions if it does not exist yet."""
    fd = os.open(path, os.O_WRONLY | os.O_CREAT | os.O_EXCL, CONFIG_FILE_MODE)
    with os.fdopen(fd, "w") as f:
        f.write(content)


# ---------------------------------------------------------------------------
# ShellConfig
# ---------------------------------------------------------------------------

@dataclass
class ShellConfig:
    config_dir: Path = field(default_factory=lambda: Path(DEFAULT_CONFIG_DIR).expanduser())
    refresh_interval: float = DEFAULT_REFRESH_INTERVAL
    trusted_dirs: tuple[str, ...] = DEFAULT_TRUSTED_DIRS
    admin_groups: tuple[str, ...] = DEFAULT_ADMIN_GROUPS
    editor: str = DEFAULT_EDITOR

    def __post_init__(self):
        self.config_dir = Path(self.config_dir).expanduser()

    @classmethod
    def from_env(cls, environ: Optional[dict] = None, **overrides) -> "ShellConfig":
        """Build a config from environment variables; keyword overrides win."""
        env = os.environ if environ is None else environ
        values = {
            "config_dir": Path(env.get("SECSHELL_CONFIG_DIR") or DEFAULT_CONFIG_DIR).expanduser(),
            "editor": env.get("SECSHELL_EDITOR") or env.get("EDITOR") or DEFAULT_EDITOR,
        }

        interval = env.get("SECSHELL_REFRESH_INTERVAL")
        if interval:
            try:
                values["refresh_interval"] = float(interval)
            except ValueError:
                raise ConfigError(f"SECSHELL_REFRESH_INTERVAL is not a number: {interval!r}")
            if values["refresh_interval"] <= 0:
                raise ConfigError("SECSHELL_REFRESH_INTERVAL must be positive")

        trusted = _split_env_list(env.get("SECSHELL_TRUSTED_DIRS"), ":")
        if trusted:
            values["trusted_dirs"] = trusted
        groups = _split_env_list(env.get("SECSHELL_ADMIN_GROUPS"), ",")
        if groups:
            values["admin_groups"] = groups

        values.update({k: v for k, v in overrides.items() if v is not None})
        return cls(**values)

    # --- Paths ---

    @property
    def whitelist_path(self) -> Path:
        return self.config_dir / WHITELIST_FILE

    @property
    def blacklist_path(self) -> Path:
        return self.config_dir / BLACKLIST_FILE

    @property
    def version_path(self) -> Path:
        return self.config_dir / VERSION_FILE

    @property
    def history_path(self) -> Path:
        return self.config_dir / HISTORY_FILE

    @property
    def audit_log_path(self) -> Path:
        return self.config_dir / AUDIT_LOG_FILE

    def critical_paths(self) -> tuple[str, ...]:
        """Absolute paths that no command may delete, whoever runs it."""
        paths = (
            self.audit_log_path,
            self.blacklist_path,
            self.whitelist_path,
            self.version_path,
            self.history_path,
            self.config_dir,
        )
        return tuple(os.path.realpath(p) for p in paths)

    # --- Setup ---

    def ensure_config_files(self) -> list[Path]:
        """Create the config directory and any missing files. Returns the files created."""
        created = []
        try:
            self.config_dir.mkdir(mode=CONFIG_DIR_MODE, parents=True, exist_ok=True)
            seeds = {
                self.whitelist_path: "\n".join(DEFAULT_WHITELIST) + "\n",
                self.blacklist_path: "",
                self.version_path: SHELL_VERSION + "\n",
                self.history_path: "",
                self.audit_log_path: "",
            }
            for path, content in seeds.items():
                if not path.exists():
                    create_private_file(path, content)
                    created.append(path)
        except OSError as e:
            raise ConfigError(f"Cannot prepare config directory {self.config_dir}: {e}")
        return created
