"""Small helpers shared by the subprocess and file-writing code."""

from __future__ import annotations

import asyncio
import sys
from pathlib import Path
from typing import Any, Dict


def subprocess_flags() -> Dict[str, Any]:
    """Extra kwargs for ffmpeg/git child processes.

    On Windows this keeps each child from flashing a console window, which
    matters when twenty downloads are transcoding at once.
    """
    if sys.platform == "win32":
        return {"creationflags": 0x08000000}  # CREATE_NO_WINDOW
    return {}


async def ensure_dir(path: Path) -> Path:
    await asyncio.to_thread(path.mkdir, parents=True, exist_ok=True)
    return path


async def write_bytes(path: Path, data: bytes) -> None:
    await asyncio.to_thread(path.write_bytes, data)
