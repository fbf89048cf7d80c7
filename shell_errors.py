"""Error taxonomy for SecShell.

Every error raised by a shell component derives from SecShellError so the
dispatcher can catch them in one place and turn them into a response dict.
None of them ever ends the interactive session.
"""

from typing import Optional


class SecShellError(Exception):
    """Base class for all recoverable shell errors."""

    category = "error"

    def __init__(self, message: str, exit_code: int = 1):
        super().__init__(message)
        self.message = message
        self.exit_code = exit_code


class PolicyError(SecShellError):
    """A command was denied by the policy engine."""

    category = "policy_denied"

    def __init__(self, message: str, reason: Optional[str] = None):
        super().__init__(message, exit_code=1)
        self.reason = reason


class LaunchError(SecShellError):
    """A process could not be started (missing binary, permission, redirection)."""

    category = "launch_failure"


class CommandFailedError(SecShellError):
    """A process started but exited non-zero or was killed by a signal."""

    category = "command_failed"


class ConfigError(SecShellError):
    """A whitelist/blacklist/history/config file could not be read or written."""

    category = "config_error"


class RegistryError(SecShellError):
    """An operation referenced a job id the registry does not know."""

    category = "no_such_job"


class CommandSyntaxError(SecShellError):
    """The command line could not be tokenized into a runnable command."""

    category = "syntax_error"

    def __init__(self, message: str):
        super().__init__(message, exit_code=2)
