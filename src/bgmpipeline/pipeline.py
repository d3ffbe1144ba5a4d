"""End-to-end BGM build.

Order of operations:

1. Load the prior checkpoint (seeding the output directory first if enabled
   and no checkpoint exists).
2. Fetch the manifest and enumerate the local asset containers.
3. Build the task registry and the checkpoint store; install termination
   hooks so any exit path persists state.
4. Resolve everything possible from the local containers.
5. Drain the remaining waiting tasks through remote acquisition.
6. Flush the checkpoint.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Optional, Sequence

from .checkpoint import (
    Checkpoint,
    CheckpointNotFound,
    CheckpointStore,
    ProgressCallback,
    TerminateCallback,
    load_checkpoint,
)
from .container import AssetContainer, build_catalog, open_containers
from .engine import EngineReport, ExecutionEngine
from .ingest.models import AcquireOptions
from .ingest.remote import RemoteSource, YtDlpRemoteSource
from .manifest import ManifestEntry, count_with_remote, fetch_manifest
from .registry import build_registry
from .resolver import LocalExtractionReport, SourceResolver
from .seed import mark_unchanged, seed_output_dir


logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class BuildConfig:
    containers_dir: Path = Path("wz")
    dist_dir: Path = Path("dist")
    checkpoint_path: Optional[Path] = None
    manifest_url: str = ""
    manifest_timeout: float = 30.0
    container_files: tuple[str, ...] = ("Sound.wz", "Sound2.wz")
    category_prefix: str = "Bgm"
    concurrency: int = 20
    url_template: str = "https://youtu.be/{id}"
    remote_timeout: Optional[float] = None
    fmt: str = "mp3"
    bitrate: str = "192k"
    seed_enabled: bool = False
    seed_repo: str = ""
    seed_branch: str = "gh-pages"

    @property
    def checkpoint(self) -> Path:
        return self.checkpoint_path or self.dist_dir / "build.json"

    @classmethod
    def from_profile(cls, profile: Dict[str, Any]) -> "BuildConfig":
        paths = profile.get("paths", {})
        manifest = profile.get("manifest", {})
        containers = profile.get("containers", {})
        remote = profile.get("remote", {})
        output = profile.get("output", {})
        seed = profile.get("seed", {})
        checkpoint = paths.get("checkpoint")
        remote_timeout = remote.get("timeout_seconds")
        return cls(
            containers_dir=Path(paths.get("containers_dir", "wz")),
            dist_dir=Path(paths.get("dist_dir", "dist")),
            checkpoint_path=Path(checkpoint) if checkpoint else None,
            manifest_url=str(manifest.get("url", "")),
            manifest_timeout=float(manifest.get("timeout_seconds", 30)),
            container_files=tuple(containers.get("files", ("Sound.wz", "Sound2.wz"))),
            category_prefix=str(containers.get("category_prefix", "Bgm")),
            concurrency=int(profile.get("engine", {}).get("concurrency", 20)),
            url_template=str(remote.get("url_template", "https://youtu.be/{id}")),
            remote_timeout=float(remote_timeout) if remote_timeout else None,
            fmt=str(output.get("format", "mp3")),
            bitrate=str(output.get("bitrate", "192k")),
            seed_enabled=bool(seed.get("enabled", False)),
            seed_repo=str(seed.get("repo", "")),
            seed_branch=str(seed.get("branch", "gh-pages")),
        )


@dataclass
class BuildReport:
    checkpoint: Checkpoint
    local: LocalExtractionReport = field(default_factory=LocalExtractionReport)
    engine: EngineReport = field(default_factory=EngineReport)

    @property
    def ok(self) -> bool:
        return self.engine.ok and not self.checkpoint.waiting_ids and not self.checkpoint.downloading_ids


async def load_prior_checkpoint(config: BuildConfig) -> Optional[Checkpoint]:
    """Load the previous run's checkpoint, reconciled for resumption.

    Returns None when there was no prior run.
    """
    try:
        prior = load_checkpoint(config.checkpoint)
    except CheckpointNotFound:
        if not config.seed_enabled:
            logger.info("No checkpoint at %s, starting fresh", config.checkpoint)
            return None
        await seed_output_dir(
            config.dist_dir,
            repo=config.seed_repo,
            branch=config.seed_branch,
            checkpoint_name=config.checkpoint.name,
        )
        prior = load_checkpoint(config.checkpoint)
        await mark_unchanged(config.dist_dir, [f"{tid}.{config.fmt}" for tid in prior.done_ids])

    if prior.downloading_ids:
        logger.info("Re-queueing %d tasks left in flight by the previous run", len(prior.downloading_ids))
    return prior.reconciled()


async def run_build(
    config: BuildConfig,
    *,
    entries: Optional[Sequence[ManifestEntry]] = None,
    containers: Optional[Sequence[AssetContainer]] = None,
    remote: Optional[RemoteSource] = None,
    on_progress: Optional[ProgressCallback] = None,
    install_hooks: bool = True,
    terminate: Optional[TerminateCallback] = None,
) -> BuildReport:
    """Run one build.

    Args:
        config: Paths and tuning
        entries: Manifest entries (fetched from ``config.manifest_url`` if None)
        containers: Local asset containers (opened from ``config.containers_dir`` if None)
        remote: Remote source (yt-dlp + ffmpeg if None)
        on_progress: Called with a snapshot after every state transition
        install_hooks: Persist state on signals/faults/exit
        terminate: Process-exit function used by the hooks (tests swap it out)

    Returns:
        BuildReport with the final checkpoint
    """
    prior = await load_prior_checkpoint(config)

    if entries is None:
        entries = await asyncio.to_thread(fetch_manifest, config.manifest_url, config.manifest_timeout)
    logger.info("Manifest: %d entries, %d with a remote source", len(entries), count_with_remote(entries))

    if containers is None:
        containers = await asyncio.to_thread(open_containers, config.containers_dir, config.container_files)
    catalog = await build_catalog(containers, config.category_prefix)

    registry = build_registry(
        entries,
        prior,
        dist_dir=config.dist_dir,
        local_ids=catalog.keys(),
        fmt=config.fmt,
    )
    store = CheckpointStore(registry.waiting_ids, (), registry.done_ids, on_progress=on_progress)
    if install_hooks:
        store.install_termination_hooks(
            config.checkpoint,
            loop=asyncio.get_running_loop(),
            terminate=terminate,
        )

    try:
        resolver = SourceResolver(
            store,
            registry.index,
            remote=remote or YtDlpRemoteSource(AcquireOptions(
                fmt=config.fmt,
                bitrate=config.bitrate,
                timeout_seconds=config.remote_timeout,
            )),
            catalog=catalog,
            url_template=config.url_template,
            timeout_seconds=config.remote_timeout,
        )
        local_report = await resolver.extract_local()

        engine = ExecutionEngine(config.concurrency)
        engine_report = await engine.run(store.waiting_ids(), resolver.acquire)

        store.flush(config.checkpoint)
    finally:
        # Unflushed state stays guarded by the fault/exit hooks.
        if install_hooks and store.flushed:
            store.uninstall_termination_hooks()

    return BuildReport(checkpoint=store.snapshot(), local=local_report, engine=engine_report)
