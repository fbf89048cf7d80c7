"""Critical-path guard: the shell's own security files cannot be deleted or overwritten.

Tests CP.01–CP.12. P0 (unconditional protection) and P1 (argument handling).
"""

import os

import pytest

from policy_engine import (
    REASON_CRITICAL_PATH,
    check_critical_paths,
    check_redirect_target,
    evaluate_command,
)


# ---------------------------------------------------------------------------
# P0 — MUST PASS
# ---------------------------------------------------------------------------

@pytest.mark.p0
class TestUnconditionalGuard:

    def test_cp01_rm_audit_log_denied_under_admin_bypass(self, make_session, tmp_config):
        """CP.01: rm <audit-log> is denied even for an admin with bypass enabled."""
        session = make_session(admin=True, bypass=True)
        decision = evaluate_command(session, ["rm", str(tmp_config.audit_log_path)])
        assert not decision.allowed
        assert decision.reason == REASON_CRITICAL_PATH
        assert "forbidden" in decision.message

    @pytest.mark.parametrize("attr", [
        "audit_log_path", "whitelist_path", "blacklist_path",
        "version_path", "history_path", "config_dir",
    ])
    def test_cp02_every_critical_path_protected(self, make_session, tmp_config, attr):
        """CP.02: Each security-critical path is protected from rm -rf."""
        session = make_session(admin=True, bypass=True)
        target = str(getattr(tmp_config, attr))
        decision = evaluate_command(session, ["rm", "-rf", target])
        assert decision.reason == REASON_CRITICAL_PATH

    @pytest.mark.parametrize("program", ["rm", "/bin/rm", "rmdir", "unlink", "shred", "mv", "truncate"])
    def test_cp03_destructive_programs(self, tmp_config, program):
        """CP.03: All destructive operators are guarded, by basename."""
        decision = check_critical_paths([program, str(tmp_config.whitelist_path)],
                                        tmp_config.critical_paths())
        assert decision is not None
        assert decision.reason == REASON_CRITICAL_PATH

    def test_cp04_parent_directory_protected(self, make_session, tmp_config):
        """CP.04: Removing a directory that contains the config dir is denied."""
        session = make_session(admin=True, bypass=True)
        parent = str(tmp_config.config_dir.parent)
        assert evaluate_command(session, ["rm", "-rf", parent]).reason == REASON_CRITICAL_PATH
        assert evaluate_command(session, ["rm", "-rf", "/"]).reason == REASON_CRITICAL_PATH


# ---------------------------------------------------------------------------
# P1 — SHOULD PASS
# ---------------------------------------------------------------------------

@pytest.mark.p1
class TestArgumentHandling:

    def test_cp05_relative_path_resolved(self, make_session, tmp_config, monkeypatch):
        """CP.05: Relative targets are resolved against the working directory."""
        monkeypatch.chdir(tmp_config.config_dir)
        session = make_session(admin=True)
        assert evaluate_command(session, ["rm", ".whitelist"]).reason == REASON_CRITICAL_PATH
        assert evaluate_command(session, ["rm", "./../secshell/.history"]).reason == REASON_CRITICAL_PATH

    def test_cp06_flags_skipped_until_double_dash(self, tmp_config):
        """CP.06: Flags are ignored; after '--' every argument is a path."""
        critical = tmp_config.critical_paths()
        assert check_critical_paths(["rm", "-f", "--", str(tmp_config.audit_log_path)], critical)
        assert check_critical_paths(["rm", "-f", "-r"], critical) is None

    def test_cp07_unrelated_files_allowed(self, make_session, tmp_path):
        """CP.07: rm of an ordinary file goes on to the normal policy check."""
        session = make_session(whitelist=("rm",))
        other = tmp_path / "scratch.txt"
        other.write_text("x")
        assert evaluate_command(session, ["rm", str(other)]).allowed

    def test_cp08_sibling_with_common_prefix_allowed(self, make_session, tmp_config):
        """CP.08: A sibling whose name merely starts like the config dir is not protected."""
        session = make_session(whitelist=("rm",))
        sibling = str(tmp_config.config_dir) + "-backup"
        assert evaluate_command(session, ["rm", "-rf", sibling]).allowed

    def test_cp09_non_destructive_command_not_guarded(self, make_session, tmp_config):
        """CP.09: Reading a critical file is a normal policy decision."""
        session = make_session(whitelist=("cat",))
        assert evaluate_command(session, ["cat", str(tmp_config.audit_log_path)]).allowed

    def test_cp10_tilde_expanded(self, make_session, tmp_config, monkeypatch):
        """CP.10: ~ in a target is expanded before comparison."""
        monkeypatch.setenv("HOME", str(tmp_config.config_dir.parent))
        session = make_session(admin=True, bypass=True)
        target = os.path.join("~", tmp_config.config_dir.name, ".blacklist")
        assert evaluate_command(session, ["rm", target]).reason == REASON_CRITICAL_PATH

    @pytest.mark.parametrize("attr", ["whitelist_path", "blacklist_path", "audit_log_path"])
    def test_cp11_redirect_onto_critical_file_denied(self, make_session, tmp_config, attr):
        """CP.11: Output redirection onto a critical file is denied under admin bypass."""
        session = make_session(admin=True, bypass=True)
        target = str(getattr(tmp_config, attr))
        decision = evaluate_command(session, ["echo"], stdout_path=target)
        assert not decision.allowed
        assert decision.reason == REASON_CRITICAL_PATH
        assert decision.detail == target
        assert "overwrite" in decision.message

    def test_cp12_redirect_elsewhere_allowed(self, make_session, tmp_config, tmp_path, monkeypatch):
        """CP.12: Redirecting to an ordinary file is decided by the normal rules."""
        session = make_session(whitelist=("echo",))
        assert check_redirect_target("echo", None, tmp_config.critical_paths()) is None
        assert evaluate_command(session, ["echo"], stdout_path=str(tmp_path / "out.txt")).allowed

        monkeypatch.chdir(tmp_config.config_dir)
        decision = evaluate_command(session, ["echo"], stdout_path=".whitelist")
        assert decision.reason == REASON_CRITICAL_PATH
