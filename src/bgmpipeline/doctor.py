from __future__ import annotations

import importlib.util
import shutil
import subprocess
from dataclasses import dataclass
from typing import Dict, Optional

from .utils import subprocess_flags as _subprocess_flags


@dataclass(frozen=True)
class DoctorReport:
    ok: bool
    checks: Dict[str, Dict[str, object]]


def _which(cmd: str) -> Optional[str]:
    return shutil.which(cmd)


def _version(cmd: str, flag: str = "-version") -> str:
    try:
        out = subprocess.check_output([cmd, flag], text=True, stderr=subprocess.STDOUT, **_subprocess_flags())
        return out.splitlines()[0].strip()
    except (OSError, subprocess.CalledProcessError) as e:
        return f"error: {type(e).__name__}: {e}"


def run_doctor() -> DoctorReport:
    checks: Dict[str, Dict[str, object]] = {}

    ffmpeg_path = _which("ffmpeg")
    checks["ffmpeg"] = {
        "found": ffmpeg_path is not None,
        "path": ffmpeg_path,
        "version": _version("ffmpeg") if ffmpeg_path else None,
    }

    git_path = _which("git")
    checks["git"] = {
        "found": git_path is not None,
        "path": git_path,
        "version": _version("git", "--version") if git_path else None,
        "note": "Only needed when seed.enabled is true",
    }

    for module in ("yt_dlp", "mutagen"):
        checks[module] = {"installed": importlib.util.find_spec(module) is not None}

    ok = bool(
        checks["ffmpeg"]["found"]
        and checks["yt_dlp"]["installed"]
        and checks["mutagen"]["installed"]
    )
    return DoctorReport(ok=ok, checks=checks)
