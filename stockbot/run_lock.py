"""Cross-process run lock for an output directory.

Only one search or download run may use an output directory at a time. The
lock is a small JSON record at ``<output>/_meta/.lock`` created with
O_CREAT | O_EXCL, so two processes racing for it cannot both succeed.

When signal handling is enabled the lock also owns the shutdown sequence:
the first SIGINT/SIGTERM marks the record ``interrupted``, runs the
registered shutdown callbacks in order, releases the lock and exits; a second
signal during that sequence exits immediately without cleanup.
"""
from __future__ import annotations

import json
import logging
import os
import signal
import sys
import threading
from dataclasses import asdict, dataclass
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional

from .artifacts import lock_path

logger = logging.getLogger(__name__)

PHASES = ("search", "download")
RUNNING = "running"
INTERRUPTED = "interrupted"

_HANDLED_SIGNALS = tuple(
    s for s in (getattr(signal, "SIGINT", None), getattr(signal, "SIGTERM", None)) if s is not None
)


class LockConflictError(RuntimeError):
    """Raised when another run already holds the lock.

    Attributes:
        pid: Process id recorded by the holder (None if unreadable)
        started_at: Start timestamp recorded by the holder
        lock_path: Path of the lock file
    """

    def __init__(self, pid: Optional[int], started_at: Optional[str], path: str):
        super().__init__(
            f"Another process is running (PID {pid}, started {started_at}).\n"
            f"If the process is not running, delete {path}"
        )
        self.pid = pid
        self.started_at = started_at
        self.lock_path = path


@dataclass
class LockRecord:
    pid: int
    started_at: str
    phase: str
    status: str = RUNNING

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "LockRecord":
        return cls(
            pid=int(data.get("pid", 0)),
            started_at=str(data.get("started_at", "")),
            phase=str(data.get("phase", "")),
            status=str(data.get("status", RUNNING)),
        )


class RunLock:
    """Mutual exclusion and interrupt bookkeeping for one output directory."""

    def __init__(self, output_dir: str, handle_signals: bool = True):
        """Initialize the lock.

        Args:
            output_dir: Run output directory
            handle_signals: Install SIGINT/SIGTERM handlers on acquire
                (only possible from the main thread)
        """
        self.path = lock_path(output_dir)
        self.handle_signals = handle_signals
        self._callbacks: List[Callable[[], None]] = []
        self._shutdown_in_progress = False
        self._previous_handlers: Dict[int, Any] = {}
        self._held = False

    @property
    def held(self) -> bool:
        return self._held

    def acquire(self, phase: str) -> LockRecord:
        """Create the lock record for this process.

        Raises:
            ValueError: Unknown phase
            LockConflictError: A record already exists
        """
        if phase not in PHASES:
            raise ValueError(f"phase must be one of {PHASES}, got {phase!r}")

        os.makedirs(os.path.dirname(self.path), exist_ok=True)
        record = LockRecord(
            pid=os.getpid(),
            started_at=datetime.now(timezone.utc).isoformat(),
            phase=phase,
        )

        try:
            fd = os.open(self.path, os.O_CREAT | os.O_EXCL | os.O_WRONLY, 0o644)
        except FileExistsError:
            existing = self._read_quietly()
            raise LockConflictError(
                existing.pid if existing else None,
                existing.started_at if existing else None,
                self.path,
            ) from None

        with os.fdopen(fd, "w", encoding="utf-8") as f:
            json.dump(record.to_dict(), f, indent=2)

        self._held = True
        logger.debug("Acquired run lock %s for %s phase", self.path, phase)

        if self.handle_signals:
            self._install_signal_handlers()
        return record

    def release(self) -> None:
        """Delete the lock record; no error if it is already gone."""
        try:
            os.remove(self.path)
        except FileNotFoundError:
            pass
        except OSError as e:
            logger.warning("Could not remove lock file %s: %s", self.path, e)
        self._held = False
        self._restore_signal_handlers()

    def update_status(self, status: str) -> None:
        """Rewrite the record's status if the record exists."""
        record = self._read_quietly()
        if record is None:
            return
        record.status = status
        try:
            with open(self.path, "w", encoding="utf-8") as f:
                json.dump(record.to_dict(), f, indent=2)
        except OSError as e:
            logger.warning("Could not update lock status: %s", e)

    def exists(self) -> bool:
        return os.path.exists(self.path)

    def read(self) -> LockRecord:
        """Read the current record.

        Raises:
            FileNotFoundError: No lock record
            ValueError: Record is not valid JSON
        """
        with open(self.path, "r", encoding="utf-8") as f:
            return LockRecord.from_dict(json.load(f))

    def on_shutdown(self, callback: Callable[[], None]) -> None:
        """Register a callback run (in registration order) on the first interrupt."""
        self._callbacks.append(callback)

    def shutdown(self) -> None:
        """Run the interrupt sequence without exiting: mark, clean up, release."""
        self.update_status(INTERRUPTED)
        for callback in list(self._callbacks):
            try:
                callback()
            except Exception:
                logger.exception("Shutdown callback failed")
        self.release()

    def _read_quietly(self) -> Optional[LockRecord]:
        try:
            return self.read()
        except (OSError, ValueError, TypeError):
            return None

    def _handle_signal(self, signum: int, frame: Any) -> None:
        if self._shutdown_in_progress:
            print("\nForce exit...", file=sys.stderr)
            os._exit(1)

        self._shutdown_in_progress = True
        logger.warning("Received signal %s, shutting down gracefully (repeat to force exit)", signum)
        self.shutdown()
        logger.info("Shutdown complete.")
        sys.exit(0)

    def _install_signal_handlers(self) -> None:
        if threading.current_thread() is not threading.main_thread():
            logger.debug("Not in main thread; signal handlers not installed")
            return
        for sig in _HANDLED_SIGNALS:
            self._previous_handlers[sig] = signal.getsignal(sig)
            signal.signal(sig, self._handle_signal)

    def _restore_signal_handlers(self) -> None:
        if not self._previous_handlers or threading.current_thread() is not threading.main_thread():
            return
        for sig, handler in self._previous_handlers.items():
            try:
                signal.signal(sig, handler if handler is not None else signal.SIG_DFL)
            except (TypeError, ValueError) as e:
                logger.debug("Could not restore handler for signal %s: %s", sig, e)
        self._previous_handlers.clear()
