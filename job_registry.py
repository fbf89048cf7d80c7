"""Background job tracking for SecShell.

Public API:
    registry = JobRegistry()
    job = registry.add(proc.pid, "sleep 60 &", proc)
    registry.stop(pid) / registry.resume(pid) / registry.status(pid)
    registry.clear_finished()
    refresher = JobRefresher(registry, interval=2.0); refresher.start()

Locking: the registry's own lock only guards the pid -> Job mapping. Every
field of a Job is read and written under that Job's lock. Nothing ever holds
two job locks at once, and the structural lock is never held while a job lock
is taken.
"""

from __future__ import annotations

import os
import signal
import sys
import threading
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable, Optional

import psutil

from shell_config import DEFAULT_REFRESH_INTERVAL
from shell_errors import RegistryError


# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

JOB_RUNNING = "running"
JOB_STOPPED = "stopped"
JOB_COMPLETED = "completed"
JOB_FAILED = "failed"
JOB_TERMINATED = "terminated"

FINISHED_STATUSES = frozenset({JOB_COMPLETED, JOB_FAILED, JOB_TERMINATED})

# Cooperative interruption: the job may catch it and decide whether to exit
STOP_SIGNAL = signal.SIGINT
RESUME_SIGNAL = signal.SIGCONT

_BYTES_PER_MB = 1024 * 1024

_PSUTIL_STOPPED = frozenset({psutil.STATUS_STOPPED, psutil.STATUS_TRACING_STOP})


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _log(message: str):
    print(f"[Job Registry] {message}", file=sys.stderr)


# ---------------------------------------------------------------------------
# Job
# ---------------------------------------------------------------------------

@dataclass(eq=False)
class Job:
    pid: int
    command: str
    process: Any = field(default=None, repr=False)
    status: str = JOB_RUNNING
    started_at: datetime = field(default_factory=_now)
    ended_at: Optional[datetime] = None
    exit_code: Optional[int] = None
    cpu_percent: float = 0.0
    memory_mb: float = 0.0
    thread_count: int = 0
    lock: threading.Lock = field(default_factory=threading.Lock, repr=False)
    _ps_process: Any = field(default=None, repr=False)

    @property
    def is_finished(self) -> bool:
        return self.status in FINISHED_STATUSES

    @property
    def status_label(self) -> str:
        if self.status == JOB_FAILED and self.exit_code is not None:
            return f"failed with code {self.exit_code}"
        return self.status

    def snapshot(self) -> dict[str, Any]:
        """Copy of the job's fields taken under its lock."""
        with self.lock:
            return {
                "pid": self.pid,
                "command": self.command,
                "status": self.status,
                "status_label": self.status_label,
                "started_at": self.started_at,
                "ended_at": self.ended_at,
                "exit_code": self.exit_code,
                "cpu_percent": self.cpu_percent,
                "memory_mb": self.memory_mb,
                "thread_count": self.thread_count,
            }


# ---------------------------------------------------------------------------
# Sampling
# ---------------------------------------------------------------------------

def sample_job(job: Job) -> None:
    """Refresh CPU, memory, thread count and run/stop status from the live process.

    The OS is queried without the job lock held; only the field updates take it.
    """
    with job.lock:
        if job.is_finished:
            return
        ps_process = job._ps_process

    try:
        if ps_process is None:
            ps_process = psutil.Process(job.pid)
        with ps_process.oneshot():
            cpu = ps_process.cpu_percent(interval=None)
            memory = ps_process.memory_info().rss / _BYTES_PER_MB
            threads = ps_process.num_threads()
            state = ps_process.status()
    except psutil.NoSuchProcess:
        with job.lock:
            if not job.is_finished:
                job.status = JOB_TERMINATED
                job.ended_at = job.ended_at or _now()
        return
    except psutil.AccessDenied as e:
        _log(f"Access denied sampling job [{job.pid}]: {e}")
        return

    with job.lock:
        job._ps_process = ps_process
        if job.is_finished:
            return
        job.cpu_percent = cpu
        job.memory_mb = memory
        job.thread_count = threads
        if state in _PSUTIL_STOPPED:
            job.status = JOB_STOPPED
        elif state != psutil.STATUS_ZOMBIE and job.status != JOB_STOPPED:
            # A stopped job stays stopped until resumed, even if it ignored the interrupt
            job.status = JOB_RUNNING


# ---------------------------------------------------------------------------
# JobRegistry
# ---------------------------------------------------------------------------

class JobRegistry:
    """Concurrent pid -> Job table. Iteration order is unspecified."""

    def __init__(self, sampler: Callable[[Job], None] = sample_job,
                 kill: Callable[[int, int], None] = os.killpg):
        self._jobs: dict[int, Job] = {}
        self._lock = threading.Lock()
        self._sampler = sampler
        self._kill = kill

    def __len__(self) -> int:
        with self._lock:
            return len(self._jobs)

    # --- Structure ---

    def add(self, pid: int, command: str, process: Any = None) -> Job:
        job = Job(pid=pid, command=command, process=process)
        with self._lock:
            self._jobs[pid] = job
        _log(f"Job [{pid}] added: {command}")
        return job

    def remove(self, pid: int) -> Job:
        with self._lock:
            job = self._jobs.pop(pid, None)
        if job is None:
            raise RegistryError(f"No such job: {pid}")
        return job

    def get(self, pid: int) -> Optional[Job]:
        with self._lock:
            return self._jobs.get(pid)

    def require(self, pid: int) -> Job:
        job = self.get(pid)
        if job is None:
            raise RegistryError(f"No such job: {pid}")
        return job

    def list(self) -> list[Job]:
        with self._lock:
            return list(self._jobs.values())

    def snapshots(self) -> list[dict[str, Any]]:
        return [job.snapshot() for job in self.list()]

    # --- Control ---

    def stop(self, pid: int) -> str:
        """Interrupt a running job. Marks it stopped only if the OS took the signal."""
        job = self.require(pid)
        with job.lock:
            if job.status != JOB_RUNNING:
                return f"Job [{pid}] is not running"
            try:
                self._kill(pid, STOP_SIGNAL)
            except (ProcessLookupError, PermissionError) as e:
                return f"Failed to stop job [{pid}]: {e}"
            job.status = JOB_STOPPED
        return f"Job [{pid}] stopped"

    def resume(self, pid: int) -> str:
        job = self.require(pid)
        with job.lock:
            if job.status == JOB_RUNNING:
                return f"Job [{pid}] is already running"
            if job.is_finished:
                return f"Job [{pid}] has already finished ({job.status_label})"
            try:
                self._kill(pid, RESUME_SIGNAL)
            except (ProcessLookupError, PermissionError) as e:
                return f"Failed to resume job [{pid}]: {e}"
            job.status = JOB_RUNNING
        return f"Job [{pid}] resumed"

    def status(self, pid: int) -> dict[str, Any]:
        job = self.require(pid)
        self._sample(job)
        return job.snapshot()

    def mark_finished(self, pid: int, exit_code: int) -> Optional[Job]:
        """Record process completion. A job already cleared by the user is ignored."""
        job = self.get(pid)
        if job is None:
            return None
        with job.lock:
            job.exit_code = exit_code
            job.ended_at = _now()
            job.status = JOB_COMPLETED if exit_code == 0 else JOB_FAILED
        return job

    def clear_finished(self) -> list[int]:
        """Drop every job that is not running. Returns the removed pids."""
        removed = []
        for job in self.list():
            with job.lock:
                running = job.status == JOB_RUNNING
            if running:
                continue
            with self._lock:
                if self._jobs.get(job.pid) is job:
                    del self._jobs[job.pid]
                    removed.append(job.pid)
        return removed

    # --- Monitoring ---

    def refresh_all(self):
        for job in self.list():
            self._sample(job)

    def _sample(self, job: Job):
        try:
            self._sampler(job)
        except Exception as e:
            _log(f"Sampling job [{job.pid}] failed: {e}")


class JobRefresher:
    """Daemon thread that samples every job at a fixed interval."""

    def __init__(self, registry: JobRegistry, interval: float = DEFAULT_REFRESH_INTERVAL):
        self._registry = registry
        self._interval = interval
        self._stop_event = threading.Event()
        self._thread: Optional[threading.Thread] = None

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def start(self):
        if self.running:
            return
        self._stop_event.clear()
        self._thread = threading.Thread(target=self._run, name="job-refresher", daemon=True)
        self._thread.start()

    def stop(self, timeout: Optional[float] = None):
        self._stop_event.set()
        if self._thread is not None:
            self._thread.join(timeout)
            self._thread = None

    def _run(self):
        while not self._stop_event.wait(self._interval):
            self._registry.refresh_all()


# ---------------------------------------------------------------------------
# Presentation
# ---------------------------------------------------------------------------

def format_jobs(snapshots: list[dict[str, Any]]) -> list[str]:
    """Render job snapshots as a table, ordered by pid."""
    if not snapshots:
        return ["No background jobs"]
    lines = [f"{'PID':>7}  {'STATUS':<22} {'CPU%':>6} {'MEM(MB)':>8} {'THR':>4}  COMMAND"]
    for snap in sorted(snapshots, key=lambda s: s["pid"]):
        lines.append(
            f"{snap['pid']:>7}  {snap['status_label']:<22} {snap['cpu_percent']:>6.1f} "
            f"{snap['memory_mb']:>8.1f} {snap['thread_count']:>4}  {snap['command']}"
        )
    return lines
