"""Data models for acquisition tasks."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Dict, Mapping, Optional


class TaskState(str, Enum):
    """Lifecycle state of a task within a build."""
    WAITING = "waiting"
    IN_FLIGHT = "in_flight"
    DONE = "done"


@dataclass(frozen=True)
class TaskMetadata:
    """Display metadata for a task.

    Only ``artist``, ``title`` and ``year`` are embedded into output files;
    the rest is informational.
    """

    artist: str = ""
    title: str = ""
    year: str = ""
    album_artist: str = ""
    title_alt: Optional[str] = None

    def tag_fields(self) -> Dict[str, str]:
        return {"artist": self.artist, "title": self.title, "year": self.year}


@dataclass(frozen=True)
class Task:
    """One unit of acquisition work, keyed by ``group/name``."""

    group: str
    name: str
    metadata: TaskMetadata
    target_path: Path
    remote_id: str = ""

    @property
    def id(self) -> str:
        return task_id(self.group, self.name)

    @property
    def has_remote_source(self) -> bool:
        return bool(self.remote_id)


# Read-only id -> Task lookup built once per run.
Index = Mapping[str, Task]


def task_id(group: str, name: str) -> str:
    return f"{group}/{name}"

