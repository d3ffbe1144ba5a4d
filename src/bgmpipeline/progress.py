from __future__ import annotations

import sys
import threading
from typing import Optional, TextIO

from .checkpoint import Checkpoint


def format_progress(snap: Checkpoint) -> str:
    pct = int(snap.progress_fraction() * 100)
    return (
        f"{pct}% (Waiting: {len(snap.waiting_ids)}, "
        f"Downloading: {len(snap.downloading_ids)}, Done: {len(snap.done_ids)})"
    )


class ProgressReporter:
    """Single-line console progress, rewritten in place.

    ``line_open`` is true while the cursor sits at the end of the progress
    line; the console log handler calls ``break_line`` before writing.
    """

    def __init__(self, stream: Optional[TextIO] = None) -> None:
        self.stream = stream or sys.stdout
        self.last_line = ""
        self.line_open = False
        self._lock = threading.Lock()

    def __call__(self, snap: Checkpoint) -> None:
        line = format_progress(snap)
        with self._lock:
            if line == self.last_line:
                return
            self.last_line = line
            print(f"\r{line}", end="", file=self.stream, flush=True)
            self.line_open = True

    def break_line(self) -> None:
        with self._lock:
            if self.line_open:
                print(file=self.stream, flush=True)
                self.line_open = False
                # Redraw on the next update even if the counts are unchanged.
                self.last_line = ""

    def finish(self, message: str) -> None:
        with self._lock:
            print(f"\n{message}" if self.line_open else message, file=self.stream, flush=True)
            self.line_open = False
