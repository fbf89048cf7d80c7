"""Policy engine: decision order, admin gate, blacklist, bypass and trusted directories.

Tests PE.01–PE.18. P0 (security invariants) and P1 (lookup behaviour).
"""

import os
from unittest.mock import MagicMock, patch

import pytest

from helpers import AdminSwitch
from policy_engine import (
    ADMIN_REQUIRED_COMMANDS,
    REASON_ADMIN_REQUIRED,
    REASON_BLACKLISTED,
    REASON_NOT_WHITELISTED,
    evaluate_command,
    is_admin,
    is_allowed,
    resolve_trusted_executable,
)


# ---------------------------------------------------------------------------
# P0 — MUST PASS
# ---------------------------------------------------------------------------

@pytest.mark.p0
class TestSecurityInvariants:

    @pytest.mark.parametrize("admin, bypass", [
        pytest.param(False, False, id="user"),
        pytest.param(False, True, id="user-bypass"),
        pytest.param(True, False, id="admin"),
        pytest.param(True, True, id="admin-bypass"),
    ])
    def test_pe01_blacklist_is_absolute(self, make_session, admin, bypass):
        """PE.01: Blacklisted + whitelisted command is denied for every caller."""
        session = make_session(whitelist=("ls", "dd"), blacklist=("dd",))
        decision = is_allowed(session, "dd", is_admin=admin, bypass_enabled=bypass)
        assert not decision.allowed
        assert decision.reason == REASON_BLACKLISTED

    @pytest.mark.parametrize("command", sorted(ADMIN_REQUIRED_COMMANDS))
    @pytest.mark.parametrize("bypass", [False, True])
    def test_pe02_admin_required_denied_for_users(self, make_session, command, bypass):
        """PE.02: Admin-required names are denied to non-admins, whitelisted or not."""
        session = make_session(whitelist=(command,), builtins=(command,))
        decision = is_allowed(session, command, is_admin=False, bypass_enabled=bypass)
        assert not decision.allowed
        assert decision.reason == REASON_ADMIN_REQUIRED

    def test_pe03_bypass_relaxes_whitelist_for_admin_only(self, make_session):
        """PE.03: Admin + bypass may run unlisted commands; the decision says so."""
        session = make_session(whitelist=("ls",))
        admin = is_allowed(session, "nmap", is_admin=True, bypass_enabled=True)
        assert admin.allowed and admin.bypassed
        assert "SECURITY BYPASS" in admin.message

        user = is_allowed(session, "nmap", is_admin=False, bypass_enabled=True)
        assert not user.allowed
        assert user.reason == REASON_NOT_WHITELISTED

    def test_pe04_bypass_never_covers_admin_required_set(self, make_session):
        """PE.04: Under bypass, admin-required names still need a normal allow."""
        session = make_session(whitelist=("ls",))
        decision = is_allowed(session, "bash", is_admin=True, bypass_enabled=True)
        assert not decision.allowed
        assert decision.reason == REASON_NOT_WHITELISTED
        assert not decision.bypassed

    def test_pe05_decision_is_not_cached(self, make_session):
        """PE.05: Replacing the whitelist changes the next decision."""
        session = make_session(whitelist=("ls",))
        assert is_allowed(session, "tree", False, False).reason == REASON_NOT_WHITELISTED
        session.whitelist = ("ls", "tree")
        assert is_allowed(session, "tree", False, False).allowed
        assert is_allowed(session, "tree", False, False) == is_allowed(session, "tree", False, False)

    def test_pe06_admin_status_rechecked_every_evaluation(self, make_session):
        """PE.06: evaluate_command asks the OS admin check on every call."""
        switch = AdminSwitch(admin=True)
        session = make_session(admin=switch, builtins=("reload-whitelist",))
        assert evaluate_command(session, ["reload-whitelist"]).allowed
        switch.admin = False
        decision = evaluate_command(session, ["reload-whitelist"])
        assert decision.reason == REASON_ADMIN_REQUIRED
        assert switch.calls == 2

    def test_pe07_blacklist_matches_full_path(self, make_session):
        """PE.07: /usr/bin/nc is blacklisted like nc, even under admin bypass."""
        session = make_session(blacklist=("nc",))
        decision = is_allowed(session, "/usr/bin/nc", is_admin=True, bypass_enabled=True)
        assert not decision.allowed
        assert decision.reason == REASON_BLACKLISTED

    @pytest.mark.parametrize("command", ["/bin/bash", "/usr/bin/sudo"])
    def test_pe08_admin_required_matches_full_path(self, make_session, command):
        """PE.08: An admin-required program named by path still needs admin."""
        session = make_session(whitelist=("ls",))
        decision = is_allowed(session, command, is_admin=False, bypass_enabled=False)
        assert decision.reason == REASON_ADMIN_REQUIRED
        bypassed = is_allowed(session, command, is_admin=True, bypass_enabled=True)
        assert not bypassed.bypassed


# ---------------------------------------------------------------------------
# P1 — SHOULD PASS
# ---------------------------------------------------------------------------

@pytest.mark.p1
class TestAllowRules:

    def test_pe10_whitelisted_allowed(self, make_session):
        """PE.10: Whitelisted name -> allowed, not bypassed."""
        decision = is_allowed(make_session(whitelist=("ls",)), "ls", False, False)
        assert decision.allowed and not decision.bypassed

    def test_pe11_builtin_allowed(self, make_session):
        """PE.11: Built-in names are allowed without whitelisting."""
        session = make_session(whitelist=(), builtins=("jobs",))
        assert is_allowed(session, "jobs", False, False).allowed

    def test_pe12_unknown_denied_with_message(self, make_session):
        """PE.12: Unknown name -> not_whitelisted with a readable message."""
        decision = is_allowed(make_session(), "nc", False, False)
        assert decision.reason == REASON_NOT_WHITELISTED
        assert decision.message == "Command not permitted: nc"

    def test_pe13_trusted_directory_lookup(self, make_session, tmp_path):
        """PE.13: Executables in a trusted dir are allowed; plain files are not."""
        trusted = tmp_path / "trusted"
        trusted.mkdir()
        tool = trusted / "mytool"
        tool.write_text("#!/bin/sh\nexit 0\n")
        tool.chmod(0o755)
        data = trusted / "notes"
        data.write_text("not a program")
        data.chmod(0o644)

        session = make_session(whitelist=(), trusted_dirs=(str(trusted) + "/",))
        assert is_allowed(session, "mytool", False, False).allowed
        assert not is_allowed(session, "notes", False, False).allowed
        assert resolve_trusted_executable("mytool", session.trusted_dirs) == os.path.join(
            str(trusted) + "/", "mytool"
        )

    @pytest.mark.parametrize("name", ["../trusted/mytool", "/bin/sh", "..", ""])
    def test_pe14_trusted_lookup_rejects_paths(self, tmp_path, name):
        """PE.14: Names with separators never resolve through trusted directories."""
        assert resolve_trusted_executable(name, (str(tmp_path),)) is None

    def test_pe15_admin_messages(self, make_session):
        """PE.15: Denial messages name the reason."""
        session = make_session(blacklist=("dd",))
        assert "requires admin privileges" in is_allowed(session, "exit", False, False).message
        assert "blacklisted" in is_allowed(session, "dd", True, False).message


@pytest.mark.p1
class TestAdminDetection:

    def test_pe16_root_is_admin(self):
        """PE.16: Effective uid 0 is always admin."""
        with patch("policy_engine.os.geteuid", return_value=0):
            assert is_admin()

    def test_pe17_admin_group_membership(self):
        """PE.17: Membership in an admin group makes the caller admin."""
        names = {1000: "alice", 27: "sudo", 100: "users"}
        with patch("policy_engine.os.geteuid", return_value=1000), \
             patch("policy_engine.pwd.getpwuid", return_value=MagicMock(pw_name="alice", pw_gid=1000)), \
             patch("policy_engine.os.getgrouplist", return_value=[1000, 27]), \
             patch("policy_engine.grp.getgrgid", side_effect=lambda gid: MagicMock(gr_name=names[gid])):
            assert is_admin()
            assert not is_admin(admin_groups=("wheel",))

    def test_pe18_lookup_failure_is_not_admin(self):
        """PE.18: An unknown user is treated as non-admin."""
        with patch("policy_engine.os.geteuid", return_value=1000), \
             patch("policy_engine.pwd.getpwuid", side_effect=KeyError("no such uid")):
            assert not is_admin()
