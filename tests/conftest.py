"""Shared fixtures for SecShell tests.

Fixtures are auto-injected by pytest. Helper functions are in helpers.py.
"""

import io
import sys
from pathlib import Path

import pytest

# Add parent directory and tests directory to path
sys.path.insert(0, str(Path(__file__).parent.parent))
sys.path.insert(0, str(Path(__file__).parent))

from job_registry import JobRegistry
from policy_engine import SecuritySession
from secure_shell import SecShell
from shell_config import ShellConfig
from helpers import TEST_WHITELIST, AdminSwitch, FakeKill, RecordingLauncher


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------

@pytest.fixture
def tmp_config(tmp_path):
    """Config rooted in a temp dir, no trusted directories, fast job sampling."""
    config = ShellConfig(
        config_dir=tmp_path / "secshell",
        trusted_dirs=(),
        refresh_interval=0.05,
        editor="true",
    )
    config.ensure_config_files()
    return config


@pytest.fixture
def make_session(tmp_config):
    """Factory fixture to build SecuritySession values in isolation."""
    def _make(
        whitelist=TEST_WHITELIST,
        blacklist=(),
        admin=False,
        bypass=False,
        builtins=(),
        trusted_dirs=(),
    ):
        return SecuritySession(
            whitelist=tuple(whitelist),
            blacklist=tuple(blacklist),
            builtin_commands=frozenset(builtins),
            trusted_dirs=tuple(trusted_dirs),
            critical_paths=tmp_config.critical_paths(),
            bypass_enabled=bypass,
            admin_check=admin if callable(admin) else AdminSwitch(admin),
            whitelist_path=tmp_config.whitelist_path,
            blacklist_path=tmp_config.blacklist_path,
        )
    return _make


@pytest.fixture
def make_shell(tmp_config):
    """Factory fixture to create SecShell instances with a recording launcher."""
    def _make(
        whitelist=TEST_WHITELIST,
        blacklist=(),
        admin=False,
        bypass=False,
        launcher=None,
        registry=None,
        confirm_callback=None,
        output=None,
    ):
        shell = SecShell(
            config=tmp_config,
            launcher=launcher if launcher is not None else RecordingLauncher(),
            registry=registry if registry is not None else JobRegistry(kill=FakeKill()),
            confirm_callback=confirm_callback,
            output=output if output is not None else io.StringIO(),
        )
        shell.startup()
        shell.session.whitelist = tuple(whitelist)
        shell.session.blacklist = tuple(blacklist)
        shell.session.admin_check = admin if callable(admin) else AdminSwitch(admin)
        shell.session.bypass_enabled = bypass
        return shell
    return _make


@pytest.fixture
def shell_user(make_shell):
    """Shell for an ordinary (non-admin) user."""
    return make_shell()


@pytest.fixture
def shell_admin(make_shell):
    """Shell for an admin user, security checks on."""
    return make_shell(admin=True)


@pytest.fixture
def shell_bypass(make_shell):
    """Shell for an admin user with the security bypass enabled."""
    return make_shell(admin=True, bypass=True)
