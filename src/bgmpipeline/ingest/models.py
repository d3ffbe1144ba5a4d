"""Data models for remote audio ingest."""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Optional


DEFAULT_URL_TEMPLATE = "https://youtu.be/{id}"


@dataclass(frozen=True)
class RemoteLocator:
    """Where to fetch a task's audio from."""

    video_id: str
    url_template: str = DEFAULT_URL_TEMPLATE

    @property
    def url(self) -> str:
        return self.url_template.format(id=self.video_id)


@dataclass
class DownloadResult:
    audio_path: Path
    video_id: str = ""


@dataclass(frozen=True)
class AcquireOptions:
    """Options for download + transcode.

    ``timeout_seconds`` also bounds each yt-dlp socket read, so a stalled
    download thread gives up instead of outliving its cancelled task.
    """

    fmt: str = "mp3"
    bitrate: str = "192k"
    timeout_seconds: Optional[float] = None
