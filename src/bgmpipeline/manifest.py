"""BGM manifest fetching and parsing.

The manifest is a JSON array published by maplebgm-db. Each entry describes
one track: its display metadata, the client data structure it lives in, and
(optionally) a YouTube video id.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Iterable, Optional

import requests


logger = logging.getLogger(__name__)


class ManifestError(RuntimeError):
    """Raised when the manifest cannot be fetched or decoded."""


@dataclass(frozen=True)
class BgmMetadata:
    artist: str = ""
    title: str = ""
    year: str = ""
    album_artist: str = ""
    title_alt: Optional[str] = None

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "BgmMetadata":
        return cls(
            artist=str(data.get("artist") or ""),
            title=str(data.get("title") or ""),
            year=str(data.get("year") or ""),
            album_artist=str(data.get("albumArtist") or ""),
            title_alt=data.get("titleAlt") or None,
        )


@dataclass(frozen=True)
class BgmSource:
    structure: str
    client: Optional[str] = None
    date: Optional[str] = None
    version: Optional[str] = None

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "BgmSource":
        return cls(
            structure=str(data.get("structure") or ""),
            client=data.get("client") or None,
            date=data.get("date") or None,
            version=data.get("version") or None,
        )


@dataclass(frozen=True)
class ManifestEntry:
    filename: str
    source: BgmSource
    metadata: BgmMetadata = field(default_factory=BgmMetadata)
    youtube: str = ""
    description: str = ""
    mark: str = ""

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "ManifestEntry":
        return cls(
            filename=str(data.get("filename") or ""),
            source=BgmSource.from_dict(data.get("source") or {}),
            metadata=BgmMetadata.from_dict(data.get("metadata") or {}),
            youtube=str(data.get("youtube") or ""),
            description=str(data.get("description") or ""),
            mark=str(data.get("mark") or ""),
        )


def parse_manifest(data: Any) -> list[ManifestEntry]:
    """Decode the raw manifest document into entries.

    Entries that are not objects or lack a filename/structure are dropped.
    """
    if not isinstance(data, list):
        raise ManifestError(f"Manifest must be a JSON array, got {type(data).__name__}")

    entries: list[ManifestEntry] = []
    for raw in data:
        if not isinstance(raw, dict):
            logger.debug("Skipping non-object manifest entry: %r", raw)
            continue
        entry = ManifestEntry.from_dict(raw)
        if not entry.filename or not entry.source.structure:
            logger.debug("Skipping manifest entry without filename/structure: %r", raw)
            continue
        entries.append(entry)
    return entries


def fetch_manifest(url: str, timeout: float = 30.0, session: Optional[requests.Session] = None) -> list[ManifestEntry]:
    """Download and parse the manifest.

    Raises:
        ManifestError: On network failure, non-2xx status or bad JSON.
    """
    http = session or requests
    try:
        r = http.get(url, timeout=timeout)
        r.raise_for_status()
        payload = r.json()
    except requests.RequestException as e:
        raise ManifestError(f"Failed to fetch manifest from {url}: {e}") from e
    except ValueError as e:
        raise ManifestError(f"Manifest at {url} is not valid JSON: {e}") from e

    entries = parse_manifest(payload)
    logger.info("Fetched manifest: %d entries from %s", len(entries), url)
    return entries


def count_with_remote(entries: Iterable[ManifestEntry]) -> int:
    return sum(1 for e in entries if e.youtube)
