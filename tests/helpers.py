"""Shared helper functions and classes for SecShell tests.

Import these in test files: from helpers import RecordingLauncher, read_audit_records, ...
Fixtures are in conftest.py and are auto-injected by pytest.
"""

import json
import threading
import time
from pathlib import Path
from unittest.mock import MagicMock

from process_launcher import LaunchResult


TEST_WHITELIST = ("ls", "echo", "cat", "grep", "wc", "sort", "sleep", "rm", "mv", "true", "false")


# ---------------------------------------------------------------------------
# Privilege helper
# ---------------------------------------------------------------------------

class AdminSwitch:
    """Admin check that can be flipped mid-test and counts how often it is asked."""

    def __init__(self, admin=False):
        self.admin = admin
        self.calls = 0

    def __call__(self):
        self.calls += 1
        return self.admin


# ---------------------------------------------------------------------------
# Process helpers
# ---------------------------------------------------------------------------

class FakeKill:
    """Stand-in for os.killpg that records (pid, signal) pairs."""

    def __init__(self, error=None):
        self.calls = []
        self.error = error

    def __call__(self, pid, sig):
        self.calls.append((pid, sig))
        if self.error is not None:
            raise self.error


def mock_process(pid=4242, returncode=0, stdout=None):
    """Create a mock subprocess.Popen object."""
    process = MagicMock()
    process.pid = pid
    process.stdout = stdout
    process.wait.return_value = returncode
    process.returncode = returncode
    return process


class RecordingLauncher:
    """Launcher double: records what the dispatcher asked for, starts nothing."""

    def __init__(self, exit_code=0, error=None, output=None, launch_error=None, next_pid=5000):
        self.exit_code = exit_code
        self.error = error
        self.output = output
        self.launch_error = launch_error
        self.next_pid = next_pid
        self.launched = []
        self.pipelines = []
        self.background = []

    def launch(self, command):
        if self.launch_error is not None:
            raise self.launch_error
        self.launched.append(command)
        return LaunchResult(exit_code=self.exit_code, error=self.error, pid=self.next_pid)

    def run_pipeline(self, stages, capture_output=False):
        if self.launch_error is not None:
            raise self.launch_error
        self.pipelines.append((list(stages), capture_output))
        return LaunchResult(
            exit_code=self.exit_code,
            error=self.error,
            output=self.output if capture_output else None,
        )

    def start_background(self, command, registry, command_text=None, on_finished=None):
        if self.launch_error is not None:
            raise self.launch_error
        self.background.append(command)
        pid = self.next_pid
        self.next_pid += 1
        return registry.add(pid, command_text or " ".join(command.args), None)

    @property
    def started_anything(self):
        return bool(self.launched or self.pipelines or self.background)


# ---------------------------------------------------------------------------
# Audit log reader helper
# ---------------------------------------------------------------------------

def read_audit_records(path):
    """Read all audit records from a JSONL audit file."""
    filepath = Path(path)
    if not filepath.exists():
        return []
    records = []
    for line in filepath.read_text().strip().split("\n"):
        if line:
            records.append(json.loads(line))
    return records


def audit_messages(path, entry_type=None):
    return [
        r["message"] for r in read_audit_records(path)
        if entry_type is None or r["type"] == entry_type
    ]


# ---------------------------------------------------------------------------
# Timing helper
# ---------------------------------------------------------------------------

def wait_until(predicate, timeout=5.0, interval=0.02):
    """Poll predicate() until it is true or the timeout expires. Returns the last result."""
    deadline = time.monotonic() + timeout
    result = predicate()
    while not result and time.monotonic() < deadline:
        time.sleep(interval)
        result = predicate()
    return result


def run_in_thread(target, *args):
    thread = threading.Thread(target=target, args=args, daemon=True)
    thread.start()
    return thread
