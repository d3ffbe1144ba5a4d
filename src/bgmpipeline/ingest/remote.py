"""Remote acquisition: download, transcode, write to the target path."""

from __future__ import annotations

import asyncio
import functools
import logging
import shutil
import tempfile
import threading
from pathlib import Path
from typing import Protocol

from ..ffmpeg import transcode_audio
from .models import AcquireOptions, RemoteLocator
from .ytdlp_runner import download_audio


logger = logging.getLogger(__name__)


class RemoteSource(Protocol):
    async def fetch(self, locator: RemoteLocator, target_path: Path) -> Path:
        """Produce an audio file at ``target_path`` from ``locator``."""
        ...


class YtDlpRemoteSource:
    """Download with yt-dlp, transcode with ffmpeg.

    Each fetch uses its own temporary work directory next to the target, so
    concurrent fetches never share intermediate files. Cancelling a fetch
    signals the download thread and kills a running ffmpeg.
    """

    def __init__(self, options: AcquireOptions | None = None) -> None:
        self.options = options or AcquireOptions()

    async def fetch(self, locator: RemoteLocator, target_path: Path) -> Path:
        target_path = Path(target_path)
        work_dir = Path(await asyncio.to_thread(
            tempfile.mkdtemp, prefix=".bgm-", dir=str(target_path.parent)
        ))
        cancel = threading.Event()
        download = functools.partial(
            download_audio,
            locator.url,
            work_dir,
            socket_timeout=self.options.timeout_seconds,
            cancel_event=cancel,
        )
        try:
            result = await asyncio.to_thread(download)
            logger.debug("Downloaded %s (%s) -> %s", locator.url, result.video_id, result.audio_path.name)
            await transcode_audio(
                result.audio_path,
                target_path,
                fmt=self.options.fmt,
                bitrate=self.options.bitrate,
            )
        except asyncio.CancelledError:
            cancel.set()
            raise
        finally:
            await asyncio.to_thread(shutil.rmtree, work_dir, True)
        return target_path
