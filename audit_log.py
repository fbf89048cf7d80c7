"""Tamper-evident audit trail for SecShell.

Public API:
    audit = AuditLog(config.audit_log_path)
    audit.log_command("ls -l", exit_code=0)
    audit.log_alert("Command 'rm' is blacklisted and cannot be executed")
    audit.log_error("Failed to start 'foo'", error_detail="No such file or directory")
    entries = audit.read_entries()      # each entry carries a "verified" flag

One JSON object per line. Each entry carries a SHA-256 hash computed over the
entry serialized with an empty hash field, so edits to a line are detectable.
Write failures are reported on stderr and never block command execution.
"""

import getpass
import hashlib
import json
import os
import socket
import sys
import threading
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Optional

import psutil

from shell_config import CONFIG_FILE_MODE


# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

ENTRY_COMMAND = "COMMAND"
ENTRY_ERROR = "ERROR"
ENTRY_ALERT = "ALERT"

TAMPERED_MARKER = "[TAMPERED?]"
HASH_MISSING_MARKER = "[HASH MISSING/INVALID]"


@dataclass
class AuditEntry:
    timestamp: str
    type: str
    user_id: int
    user_name: str
    hostname: str
    pid: int
    message: str
    ip_addresses: list[str] = field(default_factory=list)
    exit_code: Optional[int] = None
    error_detail: Optional[str] = None
    hash: str = ""


def compute_entry_hash(entry: dict[str, Any]) -> str:
    """SHA-256 over the entry with its hash field blanked."""
    unhashed = dict(entry, hash="")
    payload = json.dumps(unhashed, sort_keys=True, default=str)
    return hashlib.sha256(payload.encode("utf-8")).hexdigest()


def _local_ip_addresses() -> list[str]:
    addresses = []
    try:
        interfaces = psutil.net_if_addrs()
    except (OSError, psutil.Error):
        return addresses
    for name, addrs in sorted(interfaces.items()):
        for addr in addrs:
            if addr.family not in (socket.AF_INET, socket.AF_INET6):
                continue
            if addr.address.startswith("127.") or addr.address == "::1":
                continue
            addresses.append(addr.address.split("%")[0])
    return addresses


def _current_user_name() -> str:
    try:
        return getpass.getuser()
    except (KeyError, OSError):
        return str(os.getuid())


# ---------------------------------------------------------------------------
# AuditLog
# ---------------------------------------------------------------------------

class AuditLog:
    """Append-only JSONL audit file shared by the dispatcher and job threads."""

    def __init__(self, path):
        self._path = Path(path)
        self._lock = threading.Lock()
        self._user_id = os.getuid()
        self._user_name = _current_user_name()
        self._hostname = socket.gethostname()
        self._ip_addresses = _local_ip_addresses()

    @property
    def path(self) -> Path:
        return self._path

    def log_command(self, command: str, exit_code: int) -> Optional[AuditEntry]:
        return self._record(ENTRY_COMMAND, command, exit_code=exit_code)

    def log_error(self, message: str, error_detail: Optional[str] = None) -> Optional[AuditEntry]:
        return self._record(ENTRY_ERROR, message, error_detail=error_detail)

    def log_alert(self, message: str) -> Optional[AuditEntry]:
        return self._record(ENTRY_ALERT, message)

    def _record(self, entry_type: str, message: str, exit_code: Optional[int] = None,
                error_detail: Optional[str] = None) -> Optional[AuditEntry]:
        entry = AuditEntry(
            timestamp=datetime.now(timezone.utc).isoformat(),
            type=entry_type,
            user_id=self._user_id,
            user_name=self._user_name,
            hostname=self._hostname,
            pid=os.getpid(),
            message=message,
            ip_addresses=list(self._ip_addresses),
            exit_code=exit_code,
            error_detail=error_detail,
        )
        entry.hash = compute_entry_hash(asdict(entry))

        try:
            self._append(entry)
        except Exception as e:
            print(f"WARNING: Audit log write failure: {e}", file=sys.stderr)
            return None
        return entry

    def _append(self, entry: AuditEntry):
        line = json.dumps(asdict(entry), default=str) + "\n"
        with self._lock:
            self._path.parent.mkdir(parents=True, exist_ok=True)
            fd = os.open(self._path, os.O_WRONLY | os.O_APPEND | os.O_CREAT, CONFIG_FILE_MODE)
            with os.fdopen(fd, "a") as f:
                f.write(line)
                f.flush()
                os.fsync(f.fileno())

    # --- Reading ---

    def read_entries(self, limit: Optional[int] = None) -> list[dict[str, Any]]:
        """Load entries, newest last, with each entry's hash checked.

        Unparseable lines come back as {"raw": line, "verified": False}.
        """
        if not self._path.exists():
            return []
        entries = []
        with open(self._path) as f:
            for line in f:
                line = line.strip()
                if not line:
                    continue
                try:
                    entry = json.loads(line)
                except json.JSONDecodeError:
                    entries.append({"raw": line, "verified": False, "hash_present": False})
                    continue
                if not isinstance(entry, dict):
                    entries.append({"raw": line, "verified": False, "hash_present": False})
                    continue
                stored = entry.get("hash") or ""
                entry["hash_present"] = bool(stored)
                entry["verified"] = bool(stored) and stored == compute_entry_hash(
                    {k: v for k, v in entry.items() if k not in ("verified", "hash_present")}
                )
                entries.append(entry)
        if limit is not None and limit >= 0:
            entries = entries[-limit:] if limit else []
        return entries

    def format_entries(self, limit: Optional[int] = None) -> list[str]:
        lines = []
        for entry in self.read_entries(limit):
            if "raw" in entry:
                lines.append(f"{HASH_MISSING_MARKER} {entry['raw']}")
                continue
            marker = ""
            if not entry["hash_present"]:
                marker = f"{HASH_MISSING_MARKER} "
            elif not entry["verified"]:
                marker = f"{TAMPERED_MARKER} "
            line = (f"{marker}{entry.get('timestamp', '')} [{entry.get('type', '')}] "
                    f"{entry.get('user_name', '')}: {entry.get('message', '')}")
            if entry.get("exit_code") is not None:
                line += f" (exit {entry['exit_code']})"
            if entry.get("error_detail"):
                line += f" - {entry['error_detail']}"
            lines.append(line)
        return lines
