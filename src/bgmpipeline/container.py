"""Local asset containers.

The pipeline only needs a narrow view of a container: a list of named
images, each holding named sound nodes that can lazily produce raw audio
bytes. ``AssetContainer`` describes that view; ``ArchiveContainer`` is the
bundled implementation over a zip archive whose members are laid out as
``<Image>.img/<Sound>``.
"""

from __future__ import annotations

import asyncio
import logging
import zipfile
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Iterable, Iterator, Optional, Protocol, Sequence

from .models import task_id


logger = logging.getLogger(__name__)

IMAGE_SUFFIX = ".img"


class ExtractStatus(str, Enum):
    OK = "ok"
    EMPTY = "empty"  # Placeholder node with no audio payload
    ERROR = "error"


@dataclass(frozen=True)
class ExtractResult:
    """Outcome of pulling audio out of a sound node."""

    status: ExtractStatus
    data: bytes = b""
    error: Optional[BaseException] = None

    @property
    def ok(self) -> bool:
        return self.status is ExtractStatus.OK

    @classmethod
    def success(cls, data: bytes) -> "ExtractResult":
        if not data:
            return cls(ExtractStatus.EMPTY)
        return cls(ExtractStatus.OK, data=data)

    @classmethod
    def failure(cls, error: BaseException) -> "ExtractResult":
        return cls(ExtractStatus.ERROR, error=error)


class SoundNode(Protocol):
    name: str

    def extract(self) -> ExtractResult: ...


class ContainerImage(Protocol):
    name: str

    def sound_nodes(self) -> Sequence[SoundNode]: ...


class AssetContainer(Protocol):
    name: str

    def images(self) -> Sequence[ContainerImage]: ...


# ---------------------------------------------------------------------------
# Zip-backed container
# ---------------------------------------------------------------------------

@dataclass
class ArchiveSoundNode:
    archive_path: Path
    member: str
    name: str

    def extract(self) -> ExtractResult:
        try:
            with zipfile.ZipFile(self.archive_path) as zf:
                data = zf.read(self.member)
        except Exception as e:
            # zlib.error on a bad deflate stream, RuntimeError on encrypted members.
            return ExtractResult.failure(e)
        return ExtractResult.success(data)


@dataclass
class ArchiveImage:
    name: str
    nodes: list[ArchiveSoundNode]

    def sound_nodes(self) -> Sequence[ArchiveSoundNode]:
        return self.nodes


class ArchiveContainer:
    """Read-only container over a zip archive.

    Each top-level directory named ``*.img`` is an image; files directly
    below it are sound nodes named after the file stem. Zero-length members
    are placeholders and extract as ``EMPTY``.
    """

    def __init__(self, path: Path) -> None:
        self.path = Path(path)
        self.name = self.path.name
        self._images: Optional[list[ArchiveImage]] = None

    def _scan(self) -> list[ArchiveImage]:
        grouped: dict[str, list[ArchiveSoundNode]] = {}
        with zipfile.ZipFile(self.path) as zf:
            for info in zf.infolist():
                if info.is_dir():
                    continue
                parts = info.filename.split("/")
                if len(parts) != 2 or not parts[0].endswith(IMAGE_SUFFIX):
                    continue
                image_name, file_name = parts
                grouped.setdefault(image_name, []).append(
                    ArchiveSoundNode(self.path, info.filename, Path(file_name).stem)
                )
        return [ArchiveImage(name, nodes) for name, nodes in grouped.items()]

    def images(self) -> Sequence[ArchiveImage]:
        if self._images is None:
            self._images = self._scan()
        return self._images


def open_containers(containers_dir: Path, filenames: Iterable[str]) -> list[AssetContainer]:
    """Open every container that exists and parses; skip the rest."""
    opened: list[AssetContainer] = []
    for filename in filenames:
        path = Path(containers_dir) / filename
        if not path.exists():
            logger.info("Asset container %s not found, skipping", path)
            continue
        container = ArchiveContainer(path)
        try:
            container.images()
        except (OSError, zipfile.BadZipFile) as e:
            logger.warning("Asset container %s could not be parsed: %s", path, e)
            continue
        opened.append(container)
    return opened


# ---------------------------------------------------------------------------
# Catalog
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class CatalogEntry:
    task_id: str
    group: str
    node: SoundNode


def _group_name(image_name: str) -> str:
    if image_name.endswith(IMAGE_SUFFIX):
        return image_name[: -len(IMAGE_SUFFIX)]
    return image_name


def iter_catalog(containers: Iterable[AssetContainer], category_prefix: str = "Bgm") -> Iterator[CatalogEntry]:
    for container in containers:
        for image in container.images():
            if not image.name.startswith(category_prefix):
                continue
            group = _group_name(image.name)
            for node in image.sound_nodes():
                yield CatalogEntry(task_id(group, node.name), group, node)


async def build_catalog(containers: Iterable[AssetContainer], category_prefix: str = "Bgm") -> dict[str, CatalogEntry]:
    """Enumerate every sound node in sound-bearing images, keyed by task id.

    The first container to provide an id wins.
    """
    def _collect() -> dict[str, CatalogEntry]:
        catalog: dict[str, CatalogEntry] = {}
        for entry in iter_catalog(containers, category_prefix):
            catalog.setdefault(entry.task_id, entry)
        return catalog

    catalog = await asyncio.to_thread(_collect)
    logger.info("Local catalog: %d sound nodes", len(catalog))
    return catalog
