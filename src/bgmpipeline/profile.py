from __future__ import annotations

import copy
from pathlib import Path
from typing import Any, Dict, Optional

import yaml


DEFAULT_MANIFEST_URL = "https://raw.githubusercontent.com/maplestory-music/maplebgm-db/prod/bgm.min.json"


def default_profile() -> Dict[str, Any]:
    return {
        "paths": {
            "containers_dir": "wz",
            "dist_dir": "dist",
            "checkpoint": None,  # None = <dist_dir>/build.json
        },
        "manifest": {
            "url": DEFAULT_MANIFEST_URL,
            "timeout_seconds": 30,
        },
        "containers": {
            "files": ["Sound.wz", "Sound2.wz"],
            "category_prefix": "Bgm",
        },
        "engine": {
            "concurrency": 20,
        },
        "remote": {
            "url_template": "https://youtu.be/{id}",
            "timeout_seconds": None,  # None = wait forever
        },
        "output": {
            "format": "mp3",
            "bitrate": "192k",
        },
        "logging": {
            "level": "INFO",
            "file": None,
            "module_levels": {},  # e.g. {"engine": "DEBUG"}
        },
        "seed": {
            "enabled": False,
            "repo": "https://github.com/maple-pod/bgm.git",
            "branch": "gh-pages",
        },
    }


def _deep_merge(base: Dict[str, Any], override: Dict[str, Any]) -> Dict[str, Any]:
    out = copy.deepcopy(base)
    for key, value in override.items():
        if isinstance(value, dict) and isinstance(out.get(key), dict):
            out[key] = _deep_merge(out[key], value)
        else:
            out[key] = value
    return out


def load_profile(profile_path: Optional[Path]) -> Dict[str, Any]:
    if profile_path is None:
        return default_profile()

    profile_path = Path(profile_path)
    if not profile_path.exists():
        raise FileNotFoundError(f"Profile not found: {profile_path}")

    data = yaml.safe_load(profile_path.read_text(encoding="utf-8")) or {}
    if not isinstance(data, dict):
        raise ValueError("Profile YAML must be a mapping")
    return _deep_merge(default_profile(), data)


def apply_overrides(profile: Dict[str, Any], overrides: Dict[str, Any]) -> Dict[str, Any]:
    """Apply dotted-key overrides (e.g. ``{"engine.concurrency": 4}``).

    ``None`` values are skipped so unset CLI flags leave the profile alone.
    """
    out = copy.deepcopy(profile)
    for dotted, value in overrides.items():
        if value is None:
            continue
        section = out
        *parents, leaf = dotted.split(".")
        for part in parents:
            section = section.setdefault(part, {})
        section[leaf] = value
    return out
