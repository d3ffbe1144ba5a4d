"""Resolve tasks to tagged audio files.

Two strategies:

- Local extraction: pull audio straight out of the asset containers. Runs
  once, in bulk, before the engine starts, because it is fully local.
- Remote acquisition: download + transcode from the task's remote locator.
  Runs per task under the execution engine.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Mapping, Optional

from .checkpoint import CheckpointStore
from .container import CatalogEntry, ExtractResult, ExtractStatus
from .ingest.models import DEFAULT_URL_TEMPLATE, RemoteLocator
from .ingest.remote import RemoteSource
from .models import Index, Task
from .tagging import TagSet, tag_bytes_async, write_tags_async
from .utils import ensure_dir, write_bytes


logger = logging.getLogger(__name__)


class UnresolvableTaskError(RuntimeError):
    """Raised when a task has no remote locator and was not found locally."""


@dataclass
class LocalExtractionReport:
    resolved: list[str] = field(default_factory=list)
    empty: list[str] = field(default_factory=list)
    errors: dict[str, str] = field(default_factory=dict)


def _tags_for(task: Task) -> TagSet:
    return TagSet.from_mapping(task.metadata.tag_fields())


class SourceResolver:
    def __init__(
        self,
        store: CheckpointStore,
        index: Index,
        *,
        remote: RemoteSource,
        catalog: Optional[Mapping[str, CatalogEntry]] = None,
        url_template: str = DEFAULT_URL_TEMPLATE,
        timeout_seconds: Optional[float] = None,
    ) -> None:
        self.store = store
        self.index = index
        self.remote = remote
        self.catalog = catalog or {}
        self.url_template = url_template
        self.timeout_seconds = timeout_seconds

    async def extract_local(self) -> LocalExtractionReport:
        """Satisfy every waiting task that the local catalog can provide.

        Nodes that yield no payload are skipped; those tasks stay waiting for
        remote acquisition. Must complete before the engine starts.
        """
        report = LocalExtractionReport()
        for tid, entry in self.catalog.items():
            task = self.index.get(tid)
            if task is None or not self.store.is_waiting(tid):
                continue

            try:
                result = await asyncio.to_thread(entry.node.extract)
            except Exception as e:
                result = ExtractResult.failure(e)
            if result.status is ExtractStatus.EMPTY:
                logger.debug("Local node %s has no audio payload, skipping", tid)
                report.empty.append(tid)
                continue
            if result.status is ExtractStatus.ERROR:
                logger.warning("Local node %s could not be extracted: %s", tid, result.error)
                report.errors[tid] = f"{type(result.error).__name__}: {result.error}"
                continue

            self.store.mark_in_flight(tid)
            try:
                await ensure_dir(task.target_path.parent)
                data = await tag_bytes_async(result.data, _tags_for(task))
                await write_bytes(task.target_path, data)
            except Exception as e:
                # Stays in flight; the next run picks it up as waiting.
                logger.exception("Failed to write local asset %s", tid)
                report.errors[tid] = f"{type(e).__name__}: {e}"
                continue
            self.store.mark_done(tid)
            report.resolved.append(tid)

        logger.info(
            "Local extraction: %d resolved, %d empty, %d errors",
            len(report.resolved), len(report.empty), len(report.errors),
        )
        return report

    async def acquire(self, tid: str) -> None:
        """Remote strategy for a single waiting task.

        On failure the exception propagates and the task stays in flight.
        """
        task = self.index[tid]
        self.store.mark_in_flight(tid)
        if not task.has_remote_source:
            raise UnresolvableTaskError(f"{tid} has no remote source and was not found locally")

        locator = RemoteLocator(task.remote_id, self.url_template)
        await ensure_dir(task.target_path.parent)
        fetch = self.remote.fetch(locator, task.target_path)
        if self.timeout_seconds:
            await asyncio.wait_for(fetch, timeout=self.timeout_seconds)
        else:
            await fetch
        await write_tags_async(task.target_path, _tags_for(task))
        self.store.mark_done(tid)
