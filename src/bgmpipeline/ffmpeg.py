from __future__ import annotations

import asyncio
import shutil
from pathlib import Path
from typing import Sequence

from .utils import subprocess_flags as _subprocess_flags


class TranscodeError(RuntimeError):
    """Raised when ffmpeg exits with a non-zero status."""


def _require_cmd(cmd: str) -> str:
    path = shutil.which(cmd)
    if not path:
        raise RuntimeError(
            f"Required executable '{cmd}' not found in PATH. "
            "Install ffmpeg and ensure it is available on PATH."
        )
    return path


AUDIO_CODECS = {
    "mp3": "libmp3lame",
    "m4a": "aac",
    "ogg": "libvorbis",
    "opus": "libopus",
}


def build_transcode_cmd(ffmpeg: str, src: Path, dst: Path, *, fmt: str = "mp3", bitrate: str = "192k") -> list[str]:
    codec = AUDIO_CODECS.get(fmt)
    if codec is None:
        raise ValueError(f"Unsupported audio format: {fmt!r}")
    return [
        ffmpeg,
        "-hide_banner",
        "-loglevel", "error",
        "-y",
        "-i", str(src),
        "-vn",
        "-c:a", codec,
        "-b:a", bitrate,
        "-f", fmt if fmt != "m4a" else "ipod",
        str(dst),
    ]


async def run_ffmpeg(cmd: Sequence[str]) -> None:
    proc = await asyncio.create_subprocess_exec(
        *cmd,
        stdout=asyncio.subprocess.DEVNULL,
        stderr=asyncio.subprocess.PIPE,
        **_subprocess_flags(),
    )
    try:
        _, stderr = await proc.communicate()
    except asyncio.CancelledError:
        # A timed-out or interrupted task must not leave ffmpeg writing the .part file.
        if proc.returncode is None:
            proc.kill()
            await proc.wait()
        raise
    if proc.returncode != 0:
        tail = stderr.decode("utf-8", errors="replace").strip().splitlines()[-5:]
        raise TranscodeError(f"ffmpeg exited with {proc.returncode}: {' | '.join(tail)}")


async def transcode_audio(src: Path, dst: Path, *, fmt: str = "mp3", bitrate: str = "192k") -> Path:
    """Transcode ``src`` to an audio-only file at ``dst``.

    Output goes to a ``.part`` sibling first and is renamed into place, so a
    killed ffmpeg never leaves a truncated file at ``dst``.
    """
    ffmpeg = _require_cmd("ffmpeg")
    dst = Path(dst)
    part = dst.with_name(dst.name + ".part")
    try:
        await run_ffmpeg(build_transcode_cmd(ffmpeg, Path(src), part, fmt=fmt, bitrate=bitrate))
        part.replace(dst)
    finally:
        if part.exists():
            part.unlink()
    return dst
