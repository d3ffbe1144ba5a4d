"""Seed the output directory from the previously published build.

The published build lives on a git branch. Seeding does a blob-less,
no-checkout clone so that only the checkpoint (and .gitignore) are
materialized, then marks every already-done output as unchanged so the
working tree doesn't report them as deleted.
"""

from __future__ import annotations

import asyncio
import logging
import shutil
from pathlib import Path
from typing import Iterable, Sequence

from .utils import subprocess_flags as _subprocess_flags


logger = logging.getLogger(__name__)

# git update-index takes paths on the command line; keep each call well under ARG_MAX.
_UPDATE_INDEX_BATCH = 500


class SeedError(RuntimeError):
    """Raised when a git step fails."""


async def _git(args: Sequence[str], cwd: Path | None = None) -> str:
    git = shutil.which("git")
    if not git:
        raise SeedError("git not found in PATH")
    proc = await asyncio.create_subprocess_exec(
        git, *args,
        cwd=str(cwd) if cwd else None,
        stdout=asyncio.subprocess.PIPE,
        stderr=asyncio.subprocess.PIPE,
        **_subprocess_flags(),
    )
    out, err = await proc.communicate()
    if proc.returncode != 0:
        raise SeedError(f"git {args[0]} failed ({proc.returncode}): {err.decode('utf-8', 'replace').strip()}")
    return out.decode("utf-8", "replace")


async def seed_output_dir(dist_dir: Path, *, repo: str, branch: str, checkpoint_name: str = "build.json") -> None:
    dist_dir = Path(dist_dir)
    if dist_dir.exists():
        await asyncio.to_thread(shutil.rmtree, dist_dir)
    dist_dir.parent.mkdir(parents=True, exist_ok=True)

    logger.info("Seeding %s from %s (%s)", dist_dir, repo, branch)
    await _git(["clone", "-b", branch, "--filter=blob:none", "--no-checkout", repo, str(dist_dir)])
    await _git(["reset", "HEAD"], cwd=dist_dir)
    await _git(["checkout", "--", checkpoint_name, ".gitignore"], cwd=dist_dir)


async def mark_unchanged(dist_dir: Path, rel_paths: Iterable[str]) -> int:
    paths = list(rel_paths)
    for i in range(0, len(paths), _UPDATE_INDEX_BATCH):
        batch = paths[i:i + _UPDATE_INDEX_BATCH]
        await _git(["update-index", "--assume-unchanged", "--", *batch], cwd=dist_dir)
    logger.info("Marked %d outputs as assume-unchanged", len(paths))
    return len(paths)
