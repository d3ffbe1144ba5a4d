"""ID3 tag writing for output files.

Only artist, title and year are embedded. Artist strings may hold several
names separated by NUL; those become a multi-valued TPE1 frame.
"""

from __future__ import annotations

import asyncio
import io
from dataclasses import dataclass
from pathlib import Path
from typing import Mapping

from mutagen.id3 import ID3, ID3NoHeaderError, TDRC, TIT2, TPE1


@dataclass(frozen=True)
class TagSet:
    artist: str = ""
    title: str = ""
    year: str = ""

    @classmethod
    def from_mapping(cls, data: Mapping[str, str]) -> "TagSet":
        return cls(
            artist=data.get("artist", "") or "",
            title=data.get("title", "") or "",
            year=data.get("year", "") or "",
        )


def _apply(tags: ID3, tag_set: TagSet) -> None:
    if tag_set.artist:
        names = [a for a in tag_set.artist.split("\x00") if a]
        tags.setall("TPE1", [TPE1(encoding=3, text=names)])
    if tag_set.title:
        tags.setall("TIT2", [TIT2(encoding=3, text=[tag_set.title])])
    if tag_set.year:
        tags.setall("TDRC", [TDRC(encoding=3, text=[tag_set.year])])


def write_tags(path: Path, tag_set: TagSet) -> None:
    """Embed tags into an existing audio file in place."""
    try:
        tags = ID3(str(path))
    except ID3NoHeaderError:
        tags = ID3()
    _apply(tags, tag_set)
    tags.save(str(path))


def tag_bytes(data: bytes, tag_set: TagSet) -> bytes:
    """Return a copy of ``data`` with tags embedded."""
    buf = io.BytesIO(data)
    try:
        tags = ID3(buf)
    except ID3NoHeaderError:
        tags = ID3()
    buf.seek(0)
    _apply(tags, tag_set)
    tags.save(buf)
    return buf.getvalue()


async def write_tags_async(path: Path, tag_set: TagSet) -> None:
    await asyncio.to_thread(write_tags, path, tag_set)


async def tag_bytes_async(data: bytes, tag_set: TagSet) -> bytes:
    return await asyncio.to_thread(tag_bytes, data, tag_set)
