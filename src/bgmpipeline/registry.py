"""Build the task universe from the manifest and a prior checkpoint."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Collection, Iterable, Optional

from .checkpoint import Checkpoint
from .manifest import ManifestEntry
from .models import Index, Task, TaskMetadata, task_id


logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Registry:
    index: Index
    waiting_ids: tuple[str, ...]
    done_ids: tuple[str, ...]


def task_from_entry(entry: ManifestEntry, dist_dir: Path, fmt: str = "mp3") -> Task:
    meta = entry.metadata
    group = entry.source.structure
    return Task(
        group=group,
        name=entry.filename,
        metadata=TaskMetadata(
            artist=meta.artist,
            title=meta.title,
            year=meta.year,
            album_artist=meta.album_artist,
            title_alt=meta.title_alt,
        ),
        target_path=Path(dist_dir) / group / f"{entry.filename}.{fmt}",
        remote_id=entry.youtube,
    )


def build_registry(
    entries: Iterable[ManifestEntry],
    prior: Optional[Checkpoint] = None,
    *,
    dist_dir: Path,
    local_ids: Collection[str] = (),
    fmt: str = "mp3",
) -> Registry:
    """Compute the index and initial waiting set.

    An entry is eligible when it has a remote id or is present in
    ``local_ids``. Ids already done in ``prior`` are excluded from the
    waiting set; in-flight ids from ``prior`` are simply waiting again.
    Later duplicates of an id are ignored.
    """
    local = set(local_ids)
    index: dict[str, Task] = {}
    skipped = 0
    for entry in entries:
        tid = task_id(entry.source.structure, entry.filename)
        if not entry.youtube and tid not in local:
            skipped += 1
            continue
        if tid in index:
            logger.debug("Duplicate manifest id %s ignored", tid)
            continue
        index[tid] = task_from_entry(entry, dist_dir, fmt)

    prior_done = set(prior.done_ids) if prior is not None else set()
    waiting = tuple(tid for tid in index if tid not in prior_done)
    # Done ids carry over even if the manifest dropped them, so they stay recorded.
    done = tuple(prior.done_ids) if prior is not None else ()

    if skipped:
        logger.info("Skipped %d manifest entries with no usable source", skipped)
    logger.info("Registry: %d eligible tasks, %d waiting, %d already done", len(index), len(waiting), len(done))
    return Registry(index=index, waiting_ids=waiting, done_ids=done)
