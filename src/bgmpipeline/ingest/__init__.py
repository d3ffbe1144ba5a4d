"""Remote ingest: fetch audio for tasks that the local containers cannot satisfy.

- yt-dlp download of the best audio stream
- ffmpeg transcode to the target format
"""

from .models import AcquireOptions, DownloadResult, RemoteLocator
from .remote import RemoteSource, YtDlpRemoteSource
from .ytdlp_runner import DownloadCancelled, DownloadError, download_audio

__all__ = [
    "AcquireOptions",
    "DownloadCancelled",
    "DownloadError",
    "DownloadResult",
    "RemoteLocator",
    "RemoteSource",
    "YtDlpRemoteSource",
    "download_audio",
]
