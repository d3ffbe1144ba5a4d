"""Checkpoint state for resumable builds.

A build tracks every task id in exactly one of three ordered sets:
waiting, downloading (in flight) and done. ``CheckpointStore`` owns those
sets, serializes transitions against snapshots, and persists the current
snapshot to ``build.json`` exactly once per process, either on normal
completion or from a termination hook.
"""

from __future__ import annotations

import asyncio
import atexit
import json
import logging
import os
import signal
import sys
import threading
from dataclasses import dataclass
from pathlib import Path
from types import TracebackType
from typing import Any, Callable, Iterable, Optional

from .models import TaskState


logger = logging.getLogger(__name__)

TERMINATION_SIGNALS = ("SIGINT", "SIGTERM", "SIGUSR1", "SIGUSR2")

EXIT_INTERRUPTED = 0
EXIT_FAULT = 1
EXIT_FLUSH_FAILED = 2


class CheckpointError(RuntimeError):
    """Raised when a checkpoint file is unreadable or malformed."""


class CheckpointNotFound(CheckpointError):
    """Raised when no checkpoint exists at the given path."""


class CheckpointWriteError(CheckpointError):
    """Raised when the checkpoint cannot be persisted."""


class InvalidTransitionError(RuntimeError):
    """Raised when a task is moved out of a state it is not in."""


@dataclass(frozen=True)
class Checkpoint:
    """Immutable snapshot of the three id sets."""

    waiting_ids: tuple[str, ...] = ()
    downloading_ids: tuple[str, ...] = ()
    done_ids: tuple[str, ...] = ()

    def to_dict(self) -> dict[str, Any]:
        return {
            "waitingIds": list(self.waiting_ids),
            "downloadingIds": list(self.downloading_ids),
            "doneIds": list(self.done_ids),
        }

    @classmethod
    def from_dict(cls, data: Any) -> "Checkpoint":
        if not isinstance(data, dict):
            raise CheckpointError("Checkpoint must be a JSON object")

        def _ids(key: str) -> tuple[str, ...]:
            value = data.get(key, [])
            if not isinstance(value, list) or not all(isinstance(v, str) for v in value):
                raise CheckpointError(f"Checkpoint field {key!r} must be a list of strings")
            return tuple(value)

        return cls(
            waiting_ids=_ids("waitingIds"),
            downloading_ids=_ids("downloadingIds"),
            done_ids=_ids("doneIds"),
        )

    def reconciled(self) -> "Checkpoint":
        """Return a copy with in-flight ids moved back to waiting.

        In-flight ids in a loaded checkpoint come from an unclean shutdown,
        so they are treated as not yet done.
        """
        waiting = list(self.waiting_ids)
        seen = set(waiting)
        for task_id in self.downloading_ids:
            if task_id not in seen:
                waiting.append(task_id)
                seen.add(task_id)
        return Checkpoint(waiting_ids=tuple(waiting), downloading_ids=(), done_ids=self.done_ids)

    @property
    def total(self) -> int:
        return len(self.waiting_ids) + len(self.downloading_ids) + len(self.done_ids)

    def progress_fraction(self) -> float:
        total = self.total
        if total == 0:
            return 1.0
        return len(self.done_ids) / total


def load_checkpoint(path: Path) -> Checkpoint:
    """Load a checkpoint from disk.

    Raises:
        CheckpointNotFound: If no file exists at ``path``.
        CheckpointError: If the file cannot be read or decoded.
    """
    path = Path(path)
    try:
        text = path.read_text(encoding="utf-8")
    except FileNotFoundError as e:
        raise CheckpointNotFound(f"No checkpoint at {path}") from e
    except OSError as e:
        raise CheckpointError(f"Failed to read checkpoint {path}: {e}") from e

    try:
        data = json.loads(text)
    except json.JSONDecodeError as e:
        raise CheckpointError(f"Checkpoint {path} is not valid JSON: {e}") from e
    return Checkpoint.from_dict(data)


def write_checkpoint(path: Path, checkpoint: Checkpoint) -> None:
    """Write a checkpoint atomically (temp file + rename)."""
    path = Path(path)
    tmp_path = path.with_name(f".{path.name}.tmp")
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path.write_text(json.dumps(checkpoint.to_dict(), indent=2), encoding="utf-8")
        os.replace(tmp_path, path)
    except OSError as e:
        raise CheckpointWriteError(f"Failed to write checkpoint {path}: {e}") from e


ProgressCallback = Callable[[Checkpoint], None]
TerminateCallback = Callable[[int], None]


def _terminate_process(code: int) -> None:
    logging.shutdown()
    # Worker threads still running downloads would block a normal interpreter exit.
    os._exit(code)


class CheckpointStore:
    """Owner of the waiting / in-flight / done sets.

    Transitions and snapshots are mutually exclusive. Observers are notified
    through ``on_progress`` after every transition.
    """

    def __init__(
        self,
        waiting_ids: Iterable[str] = (),
        downloading_ids: Iterable[str] = (),
        done_ids: Iterable[str] = (),
        *,
        on_progress: Optional[ProgressCallback] = None,
    ) -> None:
        # dicts keep insertion order and give O(1) membership.
        self._sets: dict[TaskState, dict[str, None]] = {
            TaskState.WAITING: dict.fromkeys(waiting_ids),
            TaskState.IN_FLIGHT: dict.fromkeys(downloading_ids),
            TaskState.DONE: dict.fromkeys(done_ids),
        }
        seen: set[str] = set()
        for ids in self._sets.values():
            overlap = seen.intersection(ids)
            if overlap:
                raise ValueError(f"Task ids present in more than one state: {sorted(overlap)}")
            seen.update(ids)

        self._on_progress = on_progress
        self._lock = threading.Lock()
        self._flushed = False
        self._hooks_installed = False
        self._terminate: TerminateCallback = _terminate_process
        self._hook_path: Optional[Path] = None
        self._hook_loop: Optional[asyncio.AbstractEventLoop] = None
        self._loop_signals: list[int] = []
        self._previous_handlers: dict[int, Any] = {}
        self._previous_excepthook: Optional[Callable[..., Any]] = None

    @classmethod
    def from_checkpoint(cls, checkpoint: Checkpoint, *, on_progress: Optional[ProgressCallback] = None) -> "CheckpointStore":
        return cls(
            checkpoint.waiting_ids,
            checkpoint.downloading_ids,
            checkpoint.done_ids,
            on_progress=on_progress,
        )

    # ------------------------------------------------------------------
    # Transitions
    # ------------------------------------------------------------------

    def state_of(self, task_id: str) -> Optional[TaskState]:
        with self._lock:
            for state, ids in self._sets.items():
                if task_id in ids:
                    return state
        return None

    def is_waiting(self, task_id: str) -> bool:
        return self.state_of(task_id) is TaskState.WAITING

    def mark_in_flight(self, task_id: str) -> None:
        self._move(task_id, TaskState.WAITING, TaskState.IN_FLIGHT)

    def mark_done(self, task_id: str) -> None:
        self._move(task_id, TaskState.IN_FLIGHT, TaskState.DONE)

    def _move(self, task_id: str, src: TaskState, dst: TaskState) -> None:
        with self._lock:
            if task_id not in self._sets[src]:
                raise InvalidTransitionError(
                    f"Cannot move {task_id!r} to {dst.value}: not {src.value}"
                )
            del self._sets[src][task_id]
            self._sets[dst][task_id] = None
            snap = self._snapshot_locked()
        logger.debug("%s: %s -> %s", task_id, src.value, dst.value)
        if self._on_progress is not None:
            self._on_progress(snap)

    def _snapshot_locked(self) -> Checkpoint:
        return Checkpoint(
            waiting_ids=tuple(self._sets[TaskState.WAITING]),
            downloading_ids=tuple(self._sets[TaskState.IN_FLIGHT]),
            done_ids=tuple(self._sets[TaskState.DONE]),
        )

    def snapshot(self) -> Checkpoint:
        with self._lock:
            return self._snapshot_locked()

    def waiting_ids(self) -> list[str]:
        with self._lock:
            return list(self._sets[TaskState.WAITING])

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------

    @property
    def flushed(self) -> bool:
        return self._flushed

    def flush(self, path: Path) -> bool:
        """Persist the current snapshot.

        Only the first call writes; later calls are no-ops and return False.

        Raises:
            CheckpointWriteError: If the write fails.
        """
        with self._lock:
            if self._flushed:
                return False
            self._flushed = True
            snap = self._snapshot_locked()
        write_checkpoint(path, snap)
        logger.info(
            "Checkpoint saved to %s (waiting=%d, downloading=%d, done=%d)",
            path, len(snap.waiting_ids), len(snap.downloading_ids), len(snap.done_ids),
        )
        return True

    # ------------------------------------------------------------------
    # Termination hooks
    # ------------------------------------------------------------------

    def install_termination_hooks(
        self,
        path: Path,
        *,
        loop: Optional[asyncio.AbstractEventLoop] = None,
        terminate: Optional[TerminateCallback] = None,
    ) -> None:
        """Flush to ``path`` on the first termination signal, fault or exit.

        Signals are routed through ``loop`` when given, so the handler runs
        between event-loop steps rather than in the middle of a transition.
        Installing twice is a no-op.
        """
        if self._hooks_installed:
            return
        self._hooks_installed = True
        self._hook_path = Path(path)
        self._hook_loop = loop
        if terminate is not None:
            self._terminate = terminate

        for name in TERMINATION_SIGNALS:
            signum = getattr(signal, name, None)
            if signum is None:
                continue
            if loop is not None:
                try:
                    loop.add_signal_handler(signum, self._on_signal, signum)
                    self._loop_signals.append(signum)
                    continue
                except (NotImplementedError, RuntimeError, ValueError):
                    pass  # Windows event loops have no add_signal_handler
            try:
                self._previous_handlers[signum] = signal.signal(
                    signum, lambda s, _frame: self._on_signal(s)
                )
            except (OSError, ValueError):
                logger.debug("Cannot install handler for %s", name)

        self._previous_excepthook = sys.excepthook
        sys.excepthook = self._on_fault
        atexit.register(self._on_exit)

    def uninstall_termination_hooks(self) -> None:
        if not self._hooks_installed:
            return
        if self._hook_loop is not None:
            for signum in self._loop_signals:
                self._hook_loop.remove_signal_handler(signum)
        for signum, previous in self._previous_handlers.items():
            signal.signal(signum, previous)
        if self._previous_excepthook is not None:
            sys.excepthook = self._previous_excepthook
        atexit.unregister(self._on_exit)
        self._loop_signals.clear()
        self._previous_handlers.clear()
        self._hooks_installed = False

    def _flush_for_exit(self) -> bool:
        assert self._hook_path is not None
        try:
            self.flush(self._hook_path)
        except CheckpointWriteError:
            logger.exception("Failed to save checkpoint; build state may be lost")
            return False
        return True

    def _on_signal(self, signum: int) -> None:
        if self._flushed:
            return
        logger.warning("Received %s, saving checkpoint before exit", signal.Signals(signum).name)
        ok = self._flush_for_exit()
        self._terminate(EXIT_INTERRUPTED if ok else EXIT_FLUSH_FAILED)

    def _on_fault(
        self,
        exc_type: type[BaseException],
        exc: BaseException,
        tb: Optional[TracebackType],
    ) -> None:
        if not self._flushed:
            logger.error("Uncaught %s, saving checkpoint before exit", exc_type.__name__)
            ok = self._flush_for_exit()
        else:
            ok = True
        hook = self._previous_excepthook or sys.__excepthook__
        hook(exc_type, exc, tb)
        self._terminate(EXIT_FAULT if ok else EXIT_FLUSH_FAILED)

    def _on_exit(self) -> None:
        if self._flushed:
            return
        if not self._flush_for_exit():
            self._terminate(EXIT_FLUSH_FAILED)
